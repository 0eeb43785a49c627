#!/usr/bin/env python3
"""
Live spoken conversation with a remote conversational model.

Core pieces:
- Microphone capture resampled to 16 kHz PCM and streamed continuously, muted to silence
  while the model is speaking and during the post-speech cooldown.
- Gapless scheduled playback of the model's 24 kHz audio with barge-in interruption.
- Listening / Thinking / Speaking turn state, transcript assembly and remote tool calls.
- Optional camera frames streamed alongside the audio.

Usable as a CLI entry point (`jarvis-live`) or as a library component.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Set, Union

import numpy as np
from dotenv import load_dotenv

from .actions import Actions
from .audio_codec import PCM16Payload, encode
from .capture import CAMERA_INTERVAL_S, CAPTURE_BLOCK_SIZE, CameraCapture, MicrophoneCapture
from .devices import list_sound_devices
from .engine import ConversationEngine
from .errors import DeviceAcquisitionFailure
from .playback import PlaybackScheduler, SoundDeviceOutput
from .remote import (
    DEFAULT_MODEL,
    DEFAULT_VOICE,
    GeminiLiveSession,
    InboundEvent,
    RemoteSession,
    SessionCallbacks,
    SessionConfig,
)
from .tools import ToolDispatcher
from .transcript import DEFAULT_TRANSCRIPT_PATH, TranscriptAssembler, TranscriptEntry, TranscriptStore
from .turn_state import COOLDOWN_S, Emotion, SessionStatus, TurnStateMachine

logger = logging.getLogger(__name__)


# ----------- CONFIG -----------
RESTART_DELAY_S   = 0.5    # let the OS release audio devices between quick stop/start toggles
MIC_BLOCK_SIZE    = CAPTURE_BLOCK_SIZE
CAMERA_INDEX      = 0
CAMERA_FRAME_S    = CAMERA_INTERVAL_S
# --------------------------------------------------------------------


class LiveDialogManager:
    """
    Owns one live session at a time: devices, remote session, timers and the conversation engine.

    start() and stop() are serialized; start() always fully tears down a previous session
    before acquiring devices again. stop() can be called any number of times, and abandons a
    start() that is still connecting.
    """

    def __init__(self,
                 session_factory: Callable[[], RemoteSession],
                 actions: Optional[Actions] = None,
                 transcript_path: Union[str, Path] = DEFAULT_TRANSCRIPT_PATH,
                 mic_index: Optional[int] = None,
                 speaker_index: Optional[int] = None,
                 camera_index: int = CAMERA_INDEX,
                 cooldown_s: float = COOLDOWN_S,
                 restart_delay_s: float = RESTART_DELAY_S,
                 on_status: Optional[Callable[[SessionStatus], None]] = None,
                 on_emotion: Optional[Callable[[Emotion], None]] = None,
                 on_transcript: Optional[Callable[[TranscriptEntry], None]] = None,
                 on_interim: Optional[Callable[[Optional[str]], None]] = None,
                 mic_factory: Callable[..., MicrophoneCapture] = MicrophoneCapture,
                 output_factory: Callable[..., SoundDeviceOutput] = SoundDeviceOutput,
                 camera_factory: Callable[..., CameraCapture] = CameraCapture,
                 ):
        """
        Args:
            session_factory: Builds a fresh, unconnected RemoteSession for every start().

            actions: Local actions available to remote tool calls. Defaults to Actions().

            transcript_path: JSON-lines file the committed transcript is loaded from and
                    appended to after every turn.

            mic_index / speaker_index: sounddevice indices; None uses the system default.

            camera_index: OpenCV camera index used by toggle_camera().

            cooldown_s: Seconds after the model's audio drains during which user
                    transcription is ignored and the microphone stays muted.

            restart_delay_s: Pause between tearing down an old session and acquiring
                    devices for a new one.

            on_status / on_emotion / on_transcript / on_interim: Observer callbacks, called
                    on the event loop thread. Exceptions they raise are logged and ignored.
        """
        self.session_factory = session_factory
        self.actions = actions or Actions()
        self.mic_index = mic_index
        self.speaker_index = speaker_index
        self.camera_index = camera_index
        self.restart_delay_s = restart_delay_s
        self.mic_factory = mic_factory
        self.output_factory = output_factory
        self.camera_factory = camera_factory

        self.state = TurnStateMachine(cooldown_s=cooldown_s, on_status=on_status, on_emotion=on_emotion)
        self.assembler = TranscriptAssembler(TranscriptStore(transcript_path),
                                             on_entry=on_transcript, on_interim=on_interim)
        self.dispatcher = ToolDispatcher(self.actions)
        self.engine = ConversationEngine(self.state, self.assembler, self.dispatcher)

        self._lifecycle_lock: Optional[asyncio.Lock] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._generation = 0
        self._streaming = False
        self._session: Optional[RemoteSession] = None
        self._mic: Optional[MicrophoneCapture] = None
        self._output: Optional[SoundDeviceOutput] = None
        self._scheduler: Optional[PlaybackScheduler] = None
        self._camera: Optional[CameraCapture] = None
        self._pending_sends: Set[asyncio.Task] = set()
        self._failure_tasks: Set[asyncio.Task] = set()
        self._start_task: Optional[asyncio.Task] = None
        self._aborted_start: Optional[asyncio.Task] = None

    # ---- readers ----
    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @property
    def emotion(self) -> Emotion:
        return self.state.emotion

    @property
    def transcript(self) -> List[TranscriptEntry]:
        return self.assembler.entries

    @property
    def interim_text(self) -> Optional[str]:
        return self.assembler.interim_text

    @property
    def is_camera_on(self) -> bool:
        return self._camera is not None

    @property
    def scheduler(self) -> Optional[PlaybackScheduler]:
        return self._scheduler

    def _lock(self) -> asyncio.Lock:
        if self._lifecycle_lock is None:
            self._lifecycle_lock = asyncio.Lock()
        return self._lifecycle_lock

    # ---- lifecycle ----
    async def start(self) -> bool:
        """
        Start a new session. Returns True once the remote session is open, False when startup
        failed or was abandoned by a concurrent stop().
        """
        task = asyncio.ensure_future(self._start())
        self._start_task = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._aborted_start is task:
                return False
            raise
        finally:
            if self._start_task is task:
                self._start_task = None
            if self._aborted_start is task:
                self._aborted_start = None

    async def _start(self) -> bool:
        async with self._lock():
            await self._teardown()
            if self.state.status != SessionStatus.IDLE:
                self.state.go_idle()
            if self.restart_delay_s > 0:
                await asyncio.sleep(self.restart_delay_s)

            self._loop = asyncio.get_running_loop()
            gen = self._generation
            self.state.begin_connecting()
            try:
                self._mic = self.mic_factory(self._on_mic_frame, device=self.mic_index, block_size=MIC_BLOCK_SIZE)
                self._mic.start()

                self._output = self.output_factory(device=self.speaker_index)
                self._output.start()
                self._scheduler = PlaybackScheduler(self._output)

                self._session = self.session_factory()
                self.engine.attach(self._scheduler, self._session)
                await self._session.connect(SessionCallbacks(
                    on_open=lambda: self._on_open(gen),
                    on_message=lambda events: self._on_message(gen, events),
                    on_error=lambda exc: self._on_error(gen, exc),
                    on_close=lambda reason: self._on_close(gen, reason),
                ))
            except DeviceAcquisitionFailure as e:
                logger.error(f"[Session] Device unavailable: {e}")
                self.state.fail("device unavailable")
                await self._teardown()
                return False
            except Exception as e:
                logger.error(f"[Session] Failed to start assistant: {e}")
                self.state.fail("connect failed")
                await self._teardown()
                return False
            return True

    async def stop(self) -> None:
        """
        Stop the session and release everything. Safe to call repeatedly, before start(), or
        while start() is still connecting (the pending start is abandoned).
        """
        pending = self._start_task
        if pending is not None and not pending.done():
            logger.info("[Session] Abandoning start in progress.")
            self._aborted_start = pending
            pending.cancel()
            await asyncio.wait([pending])
        async with self._lock():
            await self._teardown()
            self.state.go_idle()

    async def _fail(self, gen: int, reason: str) -> None:
        async with self._lock():
            if gen != self._generation:
                return
            self.state.fail(reason)
            await self._teardown()

    async def _teardown(self) -> None:
        # Invalidate callbacks of the session being torn down and stop event handling
        # before anything below yields.
        self._generation += 1
        self._streaming = False
        self._best_effort("detach engine", self.engine.detach)
        self.state.cancel_timers()

        camera, self._camera = self._camera, None
        mic, self._mic = self._mic, None
        scheduler, self._scheduler = self._scheduler, None
        output, self._output = self._output, None
        session, self._session = self._session, None

        if camera is not None:
            self._best_effort("cancel camera timer", camera.cancel_timer)
        if scheduler is not None:
            self._best_effort("stop playback", scheduler.interrupt)
        if mic is not None:
            self._best_effort("disconnect capture", mic.stop)
            self._best_effort("release microphone", mic.close)
        if camera is not None:
            await self._best_effort_async("release camera", camera.release)
        if output is not None:
            self._best_effort("close output clock", output.close)
        if session is not None:
            await self._best_effort_async("close remote session", session.close)

        for task in list(self._pending_sends):
            task.cancel()
        self._pending_sends.clear()
        self.assembler.reset_pending()

    @staticmethod
    def _best_effort(step: str, fn: Callable[[], object]) -> None:
        try:
            fn()
        except Exception as e:
            logger.warning(f"[Session] Teardown step '{step}' failed: {e}")

    @staticmethod
    async def _best_effort_async(step: str, fn: Callable[[], Awaitable[object]]) -> None:
        try:
            await fn()
        except Exception as e:
            logger.warning(f"[Session] Teardown step '{step}' failed: {e}")

    # ---- remote callbacks (event loop thread) ----
    def _on_open(self, gen: int) -> None:
        if gen != self._generation:
            return
        self._streaming = True
        self.state.handshake_ok()

    def _on_message(self, gen: int, events: List[InboundEvent]) -> None:
        if gen != self._generation:
            return
        self.engine.submit(events)

    def _on_error(self, gen: int, exc: Exception) -> None:
        if gen != self._generation:
            return
        logger.error(f"[Session] Remote error: {exc}")
        self._schedule_failure(gen, "remote error")

    def _on_close(self, gen: int, reason: str) -> None:
        if gen != self._generation:
            return
        logger.info(f"[Session] Remote closed: {reason}")
        self._schedule_failure(gen, "remote closed")

    def _schedule_failure(self, gen: int, reason: str) -> None:
        task = asyncio.ensure_future(self._fail(gen, reason))
        self._failure_tasks.add(task)
        task.add_done_callback(self._failure_tasks.discard)

    # ---- outbound audio (PortAudio thread -> event loop) ----
    def _on_mic_frame(self, frame: np.ndarray, sample_rate: int) -> None:
        loop = self._loop
        scheduler = self._scheduler
        if not self._streaming or loop is None or scheduler is None:
            return
        gated = self.state.capture_gated(scheduler.is_speaking())
        payload = encode(frame, sample_rate, gated=gated)
        try:
            loop.call_soon_threadsafe(self._send_audio_nowait, payload)
        except RuntimeError:
            pass  # loop closed during shutdown

    def _send_audio_nowait(self, payload: PCM16Payload) -> None:
        session = self._session
        if session is None or not self._streaming:
            return
        task = asyncio.ensure_future(session.send_audio(payload))
        self._pending_sends.add(task)
        task.add_done_callback(self._on_send_done)

    def _on_send_done(self, task: asyncio.Task) -> None:
        self._pending_sends.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug(f"[Session] Audio send failed: {exc}")

    # ---- camera ----
    async def toggle_camera(self) -> bool:
        """Turn camera streaming on or off for the active session. Returns whether the camera is on."""
        if self._session is None or not self._streaming:
            logger.info("[Camera] Cannot toggle camera, session not active.")
            return False
        if self._camera is not None:
            camera, self._camera = self._camera, None
            await self._best_effort_async("release camera", camera.release)
            return False
        gen = self._generation
        camera = self.camera_factory(self._send_video_frame, device_index=self.camera_index, interval_s=CAMERA_FRAME_S)
        try:
            await camera.open()
        except DeviceAcquisitionFailure as e:
            logger.error(f"[Camera] Error accessing camera: {e}")
            return False
        if gen != self._generation:
            # session ended while the camera was opening
            await self._best_effort_async("release camera", camera.release)
            return False
        self._camera = camera
        return True

    async def _send_video_frame(self, b64_jpeg: str) -> None:
        session = self._session
        if session is not None and self._streaming:
            await session.send_video_frame(b64_jpeg)

    # ---- transcript ----
    def clear_transcript(self) -> None:
        self.assembler.clear()

    def close(self) -> None:
        """Release process-wide resources (pending alarms). Call after the final stop()."""
        self.actions.close()

    async def wait_idle(self) -> None:
        """Wait for queued inbound events to be processed."""
        await self.engine.drain()


# ---------------- Main ----------------
COMMANDS = "Press 'q' then Enter to quit; 's' to stop/start; 'c' to toggle camera; 'x' to clear transcript."


async def _start_session(dm: LiveDialogManager, camera: bool = False) -> None:
    if await dm.start() and camera:
        await dm.toggle_camera()


async def _stdin_commands(dm: LiveDialogManager, quit_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    starts: Set[asyncio.Task] = set()
    while not quit_event.is_set():
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            quit_event.set()
            break
        cmd = line.strip().lower()
        if cmd == "q":
            quit_event.set()
        elif cmd == "s":
            if dm.status in (SessionStatus.IDLE, SessionStatus.ERROR):
                # keep reading commands while connecting so 's' can abandon the attempt
                task = asyncio.ensure_future(_start_session(dm))
                starts.add(task)
                task.add_done_callback(starts.discard)
            else:
                await dm.stop()
        elif cmd == "c":
            on = await dm.toggle_camera()
            logger.info(f"[Camera] {'ON' if on else 'OFF'}")
        elif cmd == "x":
            dm.clear_transcript()
            logger.info("[Transcript] Cleared.")


async def run(args: argparse.Namespace) -> int:
    api_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
    if not api_key:
        logger.error("Please export GEMINI_API_KEY with your Gemini API key.")
        return 2

    config = SessionConfig(
        model=os.environ.get("JARVIS_MODEL", DEFAULT_MODEL),
        voice=os.environ.get("JARVIS_VOICE", DEFAULT_VOICE),
    )

    def _on_emotion(emotion: Emotion):
        logger.info(f"[Emotion]: {emotion.value}")

    def _on_interim(text: Optional[str]):
        if text:
            logger.debug(f"[Interim]: {text}")

    dm = LiveDialogManager(
        session_factory=lambda: GeminiLiveSession(api_key, config),
        transcript_path=os.environ.get("JARVIS_TRANSCRIPT_PATH", str(DEFAULT_TRANSCRIPT_PATH)),
        mic_index=_env_int("JARVIS_MIC_INDEX"),
        speaker_index=_env_int("JARVIS_SPEAKER_INDEX"),
        camera_index=_env_int("JARVIS_CAMERA_INDEX") or CAMERA_INDEX,
        on_emotion=_on_emotion,
        on_interim=_on_interim,
    )
    for entry in dm.transcript[-10:]:
        logger.info(f"[History] {entry.speaker.value}: {entry.text}")

    quit_event = asyncio.Event()
    print(COMMANDS)
    first = asyncio.ensure_future(_start_session(dm, args.camera))
    try:
        await _stdin_commands(dm, quit_event)
    finally:
        await dm.stop()
        await asyncio.gather(first, return_exceptions=True)
        dm.close()
    return 0


def _env_int(name: str) -> Optional[int]:
    value = os.environ.get(name, "").strip()
    try:
        return int(value) if value else None
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}")
        return None


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="jarvis-live", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--list-devices", action="store_true", help="list sound devices and exit")
    parser.add_argument("--camera", action="store_true", help="stream the camera from the start")
    args = parser.parse_args(argv)

    if args.list_devices:
        list_sound_devices()
        return 0
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 0


def cli():
    load_dotenv()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            format="%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    sys.exit(main())


if __name__ == "__main__":
    cli()
