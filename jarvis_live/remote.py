"""
Remote conversational session.

The engine only sees `RemoteSession`: connect with callbacks, send audio/video/tool results,
close. Inbound server messages are flattened into ordered event lists so a single message
carrying, say, a transcription fragment, an audio part and turn-complete is processed in
that order.
"""

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

import websockets
from google import genai
from google.genai import types

from .audio_codec import PCM16Payload
from .errors import RemoteProtocolError, RemoteSessionClosed, RemoteSessionError
from .tools import FUNCTION_DECLARATIONS, ToolCallRequest

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-native-audio-preview-09-2025"
DEFAULT_VOICE = "Kore"
DEFAULT_PERSONA = """You are JARVIS, a friendly, smart voice assistant with a warm, energetic personality.

Core directives:
1. Answer questions concisely; this is a spoken conversation, do not ramble.
2. You can see the user's camera feed when it is on. Analyse it when relevant.
3. Use your tools freely: 'searchWeb' to show results, 'playSongOnYoutube' for music,
   'setAlarm' for timers, 'getCurrentTime' and 'tellJoke' when asked.
4. Start every response with an emotion tag: [NEUTRAL], [THINKING], [HAPPY], [WITTY],
   [SARCASTIC] or [HELPFUL]. Example: "[HAPPY] Sure thing, checking that now."
5. Do not ask "Is there anything else?".
"""


# ---------------- Inbound events ----------------
@dataclass(frozen=True)
class AudioChunk:
    data: Union[str, bytes]  # base64 text or raw PCM16 @ 24 kHz


@dataclass(frozen=True)
class InputTranscription:
    text: str


@dataclass(frozen=True)
class OutputTranscription:
    text: str


@dataclass(frozen=True)
class ToolCallBatch:
    calls: List[ToolCallRequest]


@dataclass(frozen=True)
class Interrupted:
    pass


@dataclass(frozen=True)
class TurnComplete:
    pass


InboundEvent = Union[AudioChunk, InputTranscription, OutputTranscription, ToolCallBatch, Interrupted, TurnComplete]


def parse_server_message(message: Any) -> List[InboundEvent]:
    """Flatten one Live API server message into events, in processing order."""
    events: List[InboundEvent] = []
    try:
        tool_call = getattr(message, "tool_call", None)
        if tool_call and tool_call.function_calls:
            calls = []
            for fc in tool_call.function_calls:
                if not fc.name:
                    raise RemoteProtocolError("function call without a name")
                calls.append(ToolCallRequest(id=fc.id or "", name=fc.name, args=dict(fc.args or {})))
            events.append(ToolCallBatch(calls))

        sc = getattr(message, "server_content", None)
        if sc:
            if sc.input_transcription and sc.input_transcription.text:
                events.append(InputTranscription(sc.input_transcription.text))
            elif sc.output_transcription and sc.output_transcription.text:
                events.append(OutputTranscription(sc.output_transcription.text))

            if sc.model_turn and sc.model_turn.parts:
                for part in sc.model_turn.parts:
                    blob = part.inline_data
                    if blob and blob.data and (blob.mime_type or "audio/").startswith("audio/"):
                        events.append(AudioChunk(blob.data))

            if sc.interrupted:
                events.append(Interrupted())
            if sc.turn_complete:
                events.append(TurnComplete())
    except RemoteProtocolError:
        raise
    except (AttributeError, TypeError, ValueError) as e:
        raise RemoteProtocolError(f"malformed server message: {e}") from e
    return events


# ---------------- Session contract ----------------
@dataclass
class SessionConfig:
    """Connection parameters passed once at open time."""
    model: str = DEFAULT_MODEL
    system_instruction: str = DEFAULT_PERSONA
    voice: str = DEFAULT_VOICE
    function_declarations: List[Dict[str, Any]] = field(default_factory=lambda: list(FUNCTION_DECLARATIONS))
    input_transcription: bool = True
    output_transcription: bool = True


@dataclass
class SessionCallbacks:
    on_open: Callable[[], None]
    on_message: Callable[[List[InboundEvent]], None]
    on_error: Callable[[Exception], None]
    on_close: Callable[[str], None]


class RemoteSession:
    """Opaque bidirectional session with the conversational service."""

    async def connect(self, callbacks: SessionCallbacks) -> None:
        raise NotImplementedError

    async def send_audio(self, payload: PCM16Payload) -> None:
        raise NotImplementedError

    async def send_video_frame(self, b64_jpeg: str) -> None:
        raise NotImplementedError

    async def send_tool_result(self, call_id: str, name: str, result: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class GeminiLiveSession(RemoteSession):
    """RemoteSession over the google-genai Live API."""

    def __init__(self, api_key: str, config: Optional[SessionConfig] = None, client: Optional[genai.Client] = None):
        self.config = config or SessionConfig()
        self.client = client or genai.Client(api_key=api_key)
        self._session_context = None
        self.session = None
        self._callbacks: Optional[SessionCallbacks] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._closing = False

    def _live_config(self) -> types.LiveConnectConfig:
        cfg = self.config
        return types.LiveConnectConfig(
            response_modalities=["AUDIO"],
            system_instruction=types.Content(parts=[types.Part(text=cfg.system_instruction)]),
            input_audio_transcription=types.AudioTranscriptionConfig() if cfg.input_transcription else None,
            output_audio_transcription=types.AudioTranscriptionConfig() if cfg.output_transcription else None,
            # Live API takes tools as raw dicts
            tools=[{"function_declarations": cfg.function_declarations}] if cfg.function_declarations else None,
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=cfg.voice)
                )
            ),
        )

    async def connect(self, callbacks: SessionCallbacks) -> None:
        self._callbacks = callbacks
        self._closing = False
        logger.info(f"[Remote] Connecting to {self.config.model} (voice={self.config.voice})")
        try:
            self._session_context = self.client.aio.live.connect(model=self.config.model, config=self._live_config())
            self.session = await self._session_context.__aenter__()
        except Exception as e:
            self._session_context = None
            raise RemoteSessionError(f"could not open live session: {e}") from e
        callbacks.on_open()
        self._receive_task = asyncio.create_task(self._receive_loop())

    async def _receive_loop(self) -> None:
        cb = self._callbacks
        try:
            while not self._closing:
                async for message in self.session.receive():
                    try:
                        events = parse_server_message(message)
                    except RemoteProtocolError as e:
                        logger.warning(f"[Remote] {e}")
                        continue
                    if events:
                        cb.on_message(events)
        except asyncio.CancelledError:
            raise
        except websockets.exceptions.ConnectionClosedOK as e:
            if not self._closing:
                cb.on_close(f"closed by server ({e.code})")
        except Exception as e:
            if not self._closing:
                cb.on_error(RemoteSessionError(str(e)))

    def _require_session(self):
        if self._closing:
            raise RemoteSessionClosed("live session is closing")
        if self.session is None:
            raise RemoteSessionError("live session is not open")
        return self.session

    async def send_audio(self, payload: PCM16Payload) -> None:
        session = self._require_session()
        await session.send_realtime_input(
            audio=types.Blob(data=base64.b64decode(payload.data), mime_type=payload.mime_type)
        )

    async def send_video_frame(self, b64_jpeg: str) -> None:
        session = self._require_session()
        await session.send_realtime_input(video=types.Blob(data=base64.b64decode(b64_jpeg), mime_type="image/jpeg"))

    async def send_tool_result(self, call_id: str, name: str, result: str) -> None:
        session = self._require_session()
        await session.send_tool_response(
            function_responses=[types.FunctionResponse(id=call_id, name=name, response={"result": result})]
        )

    async def close(self) -> None:
        self._closing = True
        if self._receive_task is not None:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"[Remote] Receive task ended with {e}")
            self._receive_task = None
        if self._session_context is not None:
            try:
                await self._session_context.__aexit__(None, None, None)
            finally:
                self._session_context = None
                self.session = None
