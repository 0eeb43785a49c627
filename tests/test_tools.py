import time

import pytest

from jarvis_live.actions import JOKES, Actions, describe_delay
from jarvis_live.tools import SetAlarm, ToolCallRequest, ToolDispatcher, UnknownTool, parse_call


@pytest.fixture
def opened():
    return []


@pytest.fixture
def dispatcher(opened):
    actions = Actions(open_url=opened.append, clock=lambda: time.strptime("14:05", "%H:%M"))
    yield ToolDispatcher(actions)
    actions.close()


def test_unknown_tool_keeps_id(dispatcher):
    result = dispatcher.dispatch(ToolCallRequest("call-7", "foo", {}))
    assert result.id == "call-7"
    assert result.name == "foo"
    assert result.result == "I am not familiar with the function foo."


def test_search_web_opens_results(dispatcher, opened):
    result = dispatcher.dispatch(ToolCallRequest("1", "searchWeb", {"query": "weather in Pune"}))
    assert result.result == 'Searching Google for "weather in Pune".'
    assert opened == ["https://www.google.com/search?q=weather+in+Pune"]


def test_play_song(dispatcher, opened):
    result = dispatcher.dispatch(ToolCallRequest("2", "playSongOnYoutube", {"query": "Daft Punk"}))
    assert result.result == 'Searching YouTube for "Daft Punk".'
    assert opened == ["https://www.youtube.com/results?search_query=Daft+Punk"]


def test_missing_argument_becomes_error_result(dispatcher, opened):
    result = dispatcher.dispatch(ToolCallRequest("3", "searchWeb", {}))
    assert result.result.startswith("Error executing tool:")
    assert opened == []


def test_action_failure_becomes_error_result():
    def broken(url):
        raise RuntimeError("no browser")

    result = ToolDispatcher(Actions(open_url=broken)).dispatch(
        ToolCallRequest("4", "searchWeb", {"query": "x"}))
    assert result.result == "Error executing tool: no browser"


def test_set_alarm(dispatcher):
    result = dispatcher.dispatch(ToolCallRequest("5", "setAlarm", {"delayInSeconds": 90, "label": "Tea"}))
    assert result.result == 'OK, I\'ve set an alarm for "Tea" to go off in 1 minute and 30 seconds.'
    assert dispatcher.actions.pending_alarms == 1
    dispatcher.actions.close()
    assert dispatcher.actions.pending_alarms == 0


def test_set_alarm_defaults_label():
    assert parse_call(ToolCallRequest("6", "setAlarm", {"delayInSeconds": 5})) == SetAlarm(5, "Alarm")


def test_set_alarm_rejects_non_numbers(dispatcher):
    result = dispatcher.dispatch(ToolCallRequest("7", "setAlarm", {"delayInSeconds": "soon"}))
    assert result.result == "Error executing tool: 'delayInSeconds' must be a number"


def test_set_alarm_rejects_non_positive(dispatcher):
    result = dispatcher.dispatch(ToolCallRequest("8", "setAlarm", {"delayInSeconds": 0}))
    assert result.result == "I can only set alarms for a positive number of seconds."


def test_alarm_rings():
    rang = []
    actions = Actions(on_alarm=rang.append)
    actions.set_alarm(0.01, "Pasta")
    deadline = time.time() + 2.0
    while not rang and time.time() < deadline:
        time.sleep(0.01)
    assert rang == ["Pasta"]


def test_current_time(dispatcher):
    assert dispatcher.dispatch(ToolCallRequest("9", "getCurrentTime", {})).result == "The current time is 14:05."


def test_joke(dispatcher):
    assert dispatcher.dispatch(ToolCallRequest("10", "tellJoke", {})).result in JOKES
    assert len(JOKES) == 4


def test_blank_query_still_searches(dispatcher, opened):
    result = dispatcher.dispatch(ToolCallRequest("11", "searchWeb", {"query": "  "}))
    assert result.result == 'Searching Google for "  ".'
    assert opened == ["https://www.google.com/search?q=++"]


def test_parse_unknown():
    assert parse_call(ToolCallRequest("x", "launchRocket", {"when": "now"})) == UnknownTool("launchRocket")


@pytest.mark.parametrize("delay,text", [(5, "5 seconds"), (60, "1 minute"), (125, "2 minutes and 5 seconds"), (1.5, "1.5 seconds")])
def test_describe_delay(delay, text):
    assert describe_delay(delay) == text
