from .actions import Actions
from .audio_codec import PCM16Payload, decode_pcm16, encode, resample_linear
from .dialogue_manager import LiveDialogManager
from .engine import ConversationEngine
from .errors import (
    AudioDecodeError,
    DeviceAcquisitionFailure,
    JarvisLiveError,
    RemoteProtocolError,
    RemoteSessionClosed,
    RemoteSessionError,
    ToolExecutionFailure,
)
from .playback import OutputClock, PlaybackScheduler, SoundDeviceOutput
from .remote import GeminiLiveSession, RemoteSession, SessionCallbacks, SessionConfig
from .tools import ToolCallRequest, ToolCallResult, ToolDispatcher
from .transcript import Speaker, TranscriptAssembler, TranscriptEntry, TranscriptStore
from .turn_state import Emotion, SessionStatus, TurnStateMachine

__all__ = [
    "Actions",
    "AudioDecodeError",
    "ConversationEngine",
    "DeviceAcquisitionFailure",
    "Emotion",
    "GeminiLiveSession",
    "JarvisLiveError",
    "LiveDialogManager",
    "OutputClock",
    "PCM16Payload",
    "PlaybackScheduler",
    "RemoteProtocolError",
    "RemoteSession",
    "RemoteSessionClosed",
    "RemoteSessionError",
    "SessionCallbacks",
    "SessionConfig",
    "SessionStatus",
    "SoundDeviceOutput",
    "Speaker",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDispatcher",
    "ToolExecutionFailure",
    "TranscriptAssembler",
    "TranscriptEntry",
    "TranscriptStore",
    "TurnStateMachine",
    "decode_pcm16",
    "encode",
    "resample_linear",
]
