"""
Tool dispatch for remote function calls.

Every tool the model may call is a variant with a typed argument record, built from the
request's loose argument mapping. Unknown names and failing actions never raise to the
caller: each request yields exactly one result string, correlated by id.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Type, Union

from .actions import Actions
from .errors import ToolExecutionFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCallRequest:
    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallResult:
    id: str
    name: str
    result: str


def _require_str(args: Mapping[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str):
        raise ToolExecutionFailure(f"missing '{key}'")
    return value


def _require_number(args: Mapping[str, Any], key: str) -> float:
    value = args.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ToolExecutionFailure(f"'{key}' must be a number")
    return value


@dataclass(frozen=True)
class SearchWeb:
    query: str

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "SearchWeb":
        return cls(query=_require_str(args, "query"))


@dataclass(frozen=True)
class PlaySongOnYoutube:
    query: str

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "PlaySongOnYoutube":
        return cls(query=_require_str(args, "query"))


@dataclass(frozen=True)
class SetAlarm:
    delay_in_seconds: float
    label: str = "Alarm"

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "SetAlarm":
        label = args.get("label")
        return cls(
            delay_in_seconds=_require_number(args, "delayInSeconds"),
            label=label if isinstance(label, str) and label.strip() else "Alarm",
        )


@dataclass(frozen=True)
class GetCurrentTime:
    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "GetCurrentTime":
        return cls()


@dataclass(frozen=True)
class TellJoke:
    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "TellJoke":
        return cls()


@dataclass(frozen=True)
class UnknownTool:
    name: str


ToolCall = Union[SearchWeb, PlaySongOnYoutube, SetAlarm, GetCurrentTime, TellJoke, UnknownTool]

REGISTRY: Dict[str, Type] = {
    "searchWeb": SearchWeb,
    "playSongOnYoutube": PlaySongOnYoutube,
    "setAlarm": SetAlarm,
    "getCurrentTime": GetCurrentTime,
    "tellJoke": TellJoke,
}

# Sent once at connect time.
FUNCTION_DECLARATIONS: List[Dict[str, Any]] = [
    {
        "name": "searchWeb",
        "description": 'Searches the web for a given query and opens the results in a new tab. '
                       'Use this when the user explicitly asks to "open" a search or see results.',
        "parameters": {
            "type": "OBJECT",
            "properties": {"query": {"type": "STRING", "description": "The search query"}},
            "required": ["query"],
        },
    },
    {
        "name": "playSongOnYoutube",
        "description": "Searches for a song or video on YouTube and opens it in a new tab.",
        "parameters": {
            "type": "OBJECT",
            "properties": {"query": {"type": "STRING", "description": "The song or artist to search for"}},
            "required": ["query"],
        },
    },
    {
        "name": "setAlarm",
        "description": "Sets an alarm or timer.",
        "parameters": {
            "type": "OBJECT",
            "properties": {
                "delayInSeconds": {"type": "NUMBER", "description": "The delay in seconds until the alarm goes off."},
                "label": {"type": "STRING", "description": "A label for the alarm."},
            },
            "required": ["delayInSeconds"],
        },
    },
    {"name": "getCurrentTime", "description": "Gets the current time."},
    {"name": "tellJoke", "description": "Tells a random joke."},
]


def parse_call(request: ToolCallRequest) -> ToolCall:
    variant = REGISTRY.get(request.name)
    if variant is None:
        return UnknownTool(request.name)
    return variant.from_args(request.args or {})


class ToolDispatcher:
    def __init__(self, actions: Actions):
        self.actions = actions

    def run(self, call: ToolCall) -> str:
        if isinstance(call, SearchWeb):
            return self.actions.search_web(call.query)
        if isinstance(call, PlaySongOnYoutube):
            return self.actions.play_song_on_youtube(call.query)
        if isinstance(call, SetAlarm):
            return self.actions.set_alarm(call.delay_in_seconds, call.label)
        if isinstance(call, GetCurrentTime):
            return self.actions.get_current_time()
        if isinstance(call, TellJoke):
            return self.actions.tell_joke()
        if isinstance(call, UnknownTool):
            return f"I am not familiar with the function {call.name}."
        raise TypeError(f"unhandled tool variant {type(call).__name__}")

    def dispatch(self, request: ToolCallRequest) -> ToolCallResult:
        try:
            call = parse_call(request)
            if isinstance(call, UnknownTool):
                logger.error(f"[Tools] Unknown function call: {request.name}")
            result = str(self.run(call))
        except Exception as e:
            logger.error(f"[Tools] Error executing tool {request.name}: {e}")
            result = f"Error executing tool: {e}"
        logger.info(f"[Tools] {request.name}({request.args}) -> {result}")
        return ToolCallResult(id=request.id, name=request.name, result=result)
