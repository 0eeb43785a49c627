"""
Turn-state machine for a live session.

Owns the session status and the current emotion, decides when outbound capture is gated,
and runs the post-speech completion watch and cooldown window.

    IDLE        - no session
    CONNECTING  - devices acquired / remote handshake in progress
    LISTENING   - waiting for or receiving user speech
    THINKING    - remote asked for tool calls, waiting for the model to continue
    SPEAKING    - model audio or text is arriving / playing
    ERROR       - device or connection failure; sticky until the next start()
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

COOLDOWN_S = 1.0            # trailing grace period after model speech drains
DRAIN_POLL_MIN_S = 0.05     # shortest re-arm of the completion watch


class SessionStatus(str, Enum):
    IDLE = "Idle"
    CONNECTING = "Connecting"
    LISTENING = "Listening"
    THINKING = "Thinking"
    SPEAKING = "Speaking"
    ERROR = "Error"


class Emotion(str, Enum):
    NEUTRAL = "NEUTRAL"
    HAPPY = "HAPPY"
    SARCASTIC = "SARCASTIC"
    WITTY = "WITTY"
    HELPFUL = "HELPFUL"
    THINKING = "THINKING"

    @classmethod
    def from_tag(cls, tag: str) -> Optional["Emotion"]:
        try:
            return cls(tag)
        except ValueError:
            return None


RUNNING = (SessionStatus.LISTENING, SessionStatus.THINKING, SessionStatus.SPEAKING)

_TRANSITIONS: Dict[SessionStatus, Set[SessionStatus]] = {
    SessionStatus.IDLE:       {SessionStatus.CONNECTING, SessionStatus.ERROR},
    SessionStatus.CONNECTING: {SessionStatus.LISTENING, SessionStatus.ERROR, SessionStatus.IDLE},
    SessionStatus.LISTENING:  {SessionStatus.THINKING, SessionStatus.SPEAKING, SessionStatus.ERROR, SessionStatus.IDLE},
    SessionStatus.THINKING:   {SessionStatus.LISTENING, SessionStatus.SPEAKING, SessionStatus.ERROR, SessionStatus.IDLE},
    SessionStatus.SPEAKING:   {SessionStatus.LISTENING, SessionStatus.THINKING, SessionStatus.ERROR, SessionStatus.IDLE},
    SessionStatus.ERROR:      {SessionStatus.CONNECTING, SessionStatus.IDLE},
}


class IllegalTransition(ValueError):
    pass


class TurnStateMachine:
    def __init__(
        self,
        cooldown_s: float = COOLDOWN_S,
        on_status: Optional[Callable[[SessionStatus], None]] = None,
        on_emotion: Optional[Callable[[Emotion], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._status = SessionStatus.IDLE
        self._emotion = Emotion.NEUTRAL
        self.cooldown_s = cooldown_s
        self.on_status = on_status
        self.on_emotion = on_emotion
        self._loop = loop
        self._watch_handle: Optional[asyncio.TimerHandle] = None
        self._cooldown_handle: Optional[asyncio.TimerHandle] = None
        self._cooldown_active = False
        self._time_remaining: Optional[Callable[[], float]] = None

    # ---- readers ----
    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def emotion(self) -> Emotion:
        return self._emotion

    @property
    def cooldown_active(self) -> bool:
        return self._cooldown_active

    @property
    def is_running(self) -> bool:
        return self._status in RUNNING

    @property
    def watching_completion(self) -> bool:
        return self._watch_handle is not None

    def capture_gated(self, model_speaking: bool) -> bool:
        """True while outbound mic audio must be replaced by silence."""
        return model_speaking or self._cooldown_active

    # ---- writers ----
    def transition(self, target: SessionStatus, reason: str = "") -> None:
        if target == self._status:
            return
        if target not in _TRANSITIONS[self._status]:
            raise IllegalTransition(
                f"Illegal status transition: {self._status.value} -> {target.value}"
                + (f" ({reason})" if reason else "")
            )
        prev = self._status
        self._status = target
        logger.info(f"[Status]: {prev.value} -> {target.value}" + (f" ({reason})" if reason else ""))
        if self.on_status:
            try:
                self.on_status(target)
            except Exception as e:
                logger.error(f"[StatusCallback] Error: {e}")

    def set_emotion(self, emotion: Emotion) -> None:
        if emotion == self._emotion:
            return
        self._emotion = emotion
        if self.on_emotion:
            try:
                self.on_emotion(emotion)
            except Exception as e:
                logger.error(f"[EmotionCallback] Error: {e}")

    def begin_connecting(self) -> None:
        self.cancel_timers()
        self.set_emotion(Emotion.NEUTRAL)
        self.transition(SessionStatus.CONNECTING, "start")

    def handshake_ok(self) -> None:
        if self._status == SessionStatus.CONNECTING:
            self.transition(SessionStatus.LISTENING, "session open")

    def fail(self, reason: str = "") -> None:
        self.cancel_timers()
        self.transition(SessionStatus.ERROR, reason)

    def go_idle(self) -> None:
        self.cancel_timers()
        self.set_emotion(Emotion.NEUTRAL)
        self.transition(SessionStatus.IDLE, "stop")

    def tool_call(self) -> None:
        if not self.is_running:
            return
        self.set_emotion(Emotion.THINKING)
        self.transition(SessionStatus.THINKING, "tool call")

    def audio_received(self) -> None:
        if self.is_running:
            self._resume_speaking()
            self.transition(SessionStatus.SPEAKING)

    def input_fragment(self) -> None:
        if not self.is_running:
            return
        self.set_emotion(Emotion.NEUTRAL)
        self.transition(SessionStatus.LISTENING)

    def output_fragment(self) -> None:
        if self.is_running:
            self._resume_speaking()
            self.transition(SessionStatus.SPEAKING)

    def interrupted(self) -> None:
        self.cancel_timers()
        self.set_emotion(Emotion.NEUTRAL)
        if self.is_running:
            self.transition(SessionStatus.LISTENING, "interrupted")

    # ---- completion watch + cooldown ----
    def turn_complete(self, time_remaining: Callable[[], float]) -> None:
        """
        Arm the completion watch: a one-shot timer re-armed until queued playback has drained,
        followed by the cooldown window. `time_remaining` reports seconds of audio still queued.
        """
        if not self.is_running:
            return
        self._time_remaining = time_remaining
        self._cancel_watch()
        self._arm_watch(time_remaining, 0.0)

    def _resume_speaking(self) -> None:
        # The model started talking again inside the cooldown: wait for the new audio to drain first.
        if not self._cooldown_active or self._time_remaining is None:
            return
        self._cancel_cooldown()
        self._cancel_watch()
        self._arm_watch(self._time_remaining, 0.0)

    def _arm_watch(self, time_remaining: Callable[[], float], delay: float) -> None:
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        self._watch_handle = loop.call_later(delay, self._check_drained, time_remaining)

    def _check_drained(self, time_remaining: Callable[[], float]) -> None:
        self._watch_handle = None
        if not self.is_running:
            return
        remaining = time_remaining()
        if remaining > 0:
            self._arm_watch(time_remaining, max(remaining, DRAIN_POLL_MIN_S))
            return
        self._start_cooldown()

    def _start_cooldown(self) -> None:
        self._cancel_cooldown()
        self._cooldown_active = True
        logger.debug(f"[Status] Cooldown for {self.cooldown_s:.2f}s")
        self._cooldown_handle = self._loop.call_later(self.cooldown_s, self._end_cooldown)

    def _end_cooldown(self) -> None:
        self._cooldown_handle = None
        self._cooldown_active = False
        if self._status in (SessionStatus.IDLE, SessionStatus.ERROR):
            return
        self.set_emotion(Emotion.NEUTRAL)
        if self.is_running:
            self.transition(SessionStatus.LISTENING, "cooldown over")

    def _cancel_watch(self) -> None:
        if self._watch_handle is not None:
            self._watch_handle.cancel()
            self._watch_handle = None

    def _cancel_cooldown(self) -> None:
        if self._cooldown_handle is not None:
            self._cooldown_handle.cancel()
            self._cooldown_handle = None
        self._cooldown_active = False

    def cancel_timers(self) -> None:
        self._cancel_watch()
        self._cancel_cooldown()
        self._time_remaining = None
