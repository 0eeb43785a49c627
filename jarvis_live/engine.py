import asyncio
import logging
from typing import Iterable, Optional

from .playback import PlaybackScheduler
from .remote import (
    AudioChunk,
    InboundEvent,
    InputTranscription,
    Interrupted,
    OutputTranscription,
    RemoteSession,
    ToolCallBatch,
    TurnComplete,
)
from .tools import ToolDispatcher
from .transcript import TranscriptAssembler
from .turn_state import TurnStateMachine

logger = logging.getLogger(__name__)


class ConversationEngine:
    """
    Applies inbound events to the turn state, playback scheduler, transcript and tool dispatcher.

    Events are queued and handled one at a time by a single consumer task, in arrival order.
    A failure while handling one event is logged and the consumer moves on to the next.
    """

    def __init__(self, state: TurnStateMachine, assembler: TranscriptAssembler, dispatcher: ToolDispatcher):
        self.state = state
        self.assembler = assembler
        self.dispatcher = dispatcher
        self.scheduler: Optional[PlaybackScheduler] = None
        self.session: Optional[RemoteSession] = None
        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None

    # ---- wiring ----
    def attach(self, scheduler: PlaybackScheduler, session: Optional[RemoteSession] = None) -> None:
        self.scheduler = scheduler
        self.session = session
        self._queue = asyncio.Queue()
        self._consumer = asyncio.create_task(self._consume())

    def detach(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()
            self._consumer = None
        self._queue = None
        self.scheduler = None
        self.session = None

    def submit(self, events: Iterable[InboundEvent]) -> None:
        if self._queue is None:
            return
        for event in events:
            self._queue.put_nowait(event)

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def _consume(self) -> None:
        queue = self._queue
        while True:
            event = await queue.get()
            try:
                await self.handle(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"[Engine] Error processing {type(event).__name__}: {e}")
            finally:
                queue.task_done()

    # ---- event handling ----
    def input_suppressed(self) -> bool:
        speaking = self.scheduler.is_speaking() if self.scheduler else False
        return speaking or self.state.cooldown_active

    async def handle(self, event: InboundEvent) -> None:
        if isinstance(event, ToolCallBatch):
            await self._handle_tool_calls(event)
        elif isinstance(event, InputTranscription):
            if self.assembler.add_input(event.text, suppressed=self.input_suppressed()):
                self.state.input_fragment()
        elif isinstance(event, OutputTranscription):
            emotion = self.assembler.add_output(event.text)
            if emotion is not None:
                self.state.set_emotion(emotion)
            self.state.output_fragment()
        elif isinstance(event, AudioChunk):
            if self.scheduler is not None and self.scheduler.schedule(event.data) is not None:
                self.state.audio_received()
        elif isinstance(event, Interrupted):
            if self.scheduler is not None:
                self.scheduler.interrupt()
            self.state.interrupted()
        elif isinstance(event, TurnComplete):
            self.assembler.complete_turn()
            remaining = self.scheduler.time_remaining if self.scheduler else (lambda: 0.0)
            self.state.turn_complete(remaining)
        else:
            logger.warning(f"[Engine] Ignoring unknown event {event!r}")

    async def _handle_tool_calls(self, batch: ToolCallBatch) -> None:
        self.state.tool_call()
        session = self.session
        for request in batch.calls:
            result = self.dispatcher.dispatch(request)
            if session is None or self.session is not session:
                logger.info(f"[Tools] Session stopped, discarding result for {request.name} ({request.id})")
                continue
            try:
                await session.send_tool_result(result.id, result.name, result.result)
            except Exception as e:
                logger.error(f"[Tools] Failed to send result for {request.name}: {e}")
