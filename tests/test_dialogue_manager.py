import asyncio
import base64

import numpy as np

from fakes import FakeCamera, FakeClock, FakeMic, FakeSession, pcm_chunk
from jarvis_live.actions import Actions
from jarvis_live.dialogue_manager import LiveDialogManager
from jarvis_live.remote import AudioChunk, InputTranscription, OutputTranscription, ToolCallBatch, TurnComplete
from jarvis_live.tools import ToolCallRequest
from jarvis_live.turn_state import SessionStatus


class Harness:
    def __init__(self, tmp_path, mic_fails=False, connect_fails=False, camera_fails=False,
                 hang_connect=False, close_delay=0.0):
        self.sessions = []
        self.mics = []
        self.outputs = []
        self.cameras = []
        self.statuses = []
        self.opened_urls = []

        def session_factory():
            s = FakeSession(fail_connect=connect_fails, hang_connect=hang_connect, close_delay=close_delay)
            self.sessions.append(s)
            return s

        def mic_factory(on_frame, device=None, block_size=4096):
            m = FakeMic(on_frame, device, block_size, fail=mic_fails)
            self.mics.append(m)
            return m

        def output_factory(device=None):
            o = FakeClock(device)
            self.outputs.append(o)
            return o

        def camera_factory(on_frame, device_index=0, interval_s=0.2):
            c = FakeCamera(on_frame, device_index, interval_s, fail=camera_fails)
            self.cameras.append(c)
            return c

        self.dm = LiveDialogManager(
            session_factory,
            actions=Actions(open_url=self.opened_urls.append),
            transcript_path=tmp_path / "transcript.jsonl",
            cooldown_s=0.01,
            restart_delay_s=0,
            on_status=self.statuses.append,
            mic_factory=mic_factory,
            output_factory=output_factory,
            camera_factory=camera_factory,
        )


def test_stop_before_start_is_a_no_op(tmp_path):
    async def runner():
        h = Harness(tmp_path)
        await h.dm.stop()
        await h.dm.stop()
        assert h.dm.status == SessionStatus.IDLE
        assert h.statuses == []

    asyncio.run(runner())


def test_start_then_stop_releases_everything(tmp_path):
    async def runner():
        h = Harness(tmp_path)
        assert await h.dm.start()
        assert h.dm.status == SessionStatus.LISTENING
        assert h.outputs[0].started and h.mics[0].started

        await h.dm.stop()
        await h.dm.stop()
        assert h.dm.status == SessionStatus.IDLE
        assert h.statuses == [SessionStatus.CONNECTING, SessionStatus.LISTENING, SessionStatus.IDLE]
        assert h.mics[0].stopped and h.mics[0].closed
        assert h.outputs[0].closed == 1
        assert h.sessions[0].closed == 1

    asyncio.run(runner())


def test_microphone_denied_ends_in_error(tmp_path):
    async def runner():
        h = Harness(tmp_path, mic_fails=True)
        assert not await h.dm.start()
        assert h.dm.status == SessionStatus.ERROR
        assert h.sessions == []
        assert h.outputs == []
        assert not h.mics[0].started

    asyncio.run(runner())


def test_failed_handshake_ends_in_error(tmp_path):
    async def runner():
        h = Harness(tmp_path, connect_fails=True)
        assert not await h.dm.start()
        assert h.dm.status == SessionStatus.ERROR
        assert h.mics[0].closed
        assert h.sessions[0].closed == 1

        # a fresh start is allowed from Error
        h.sessions.clear()
        await h.dm.stop()
        assert h.dm.status == SessionStatus.IDLE

    asyncio.run(runner())


def test_remote_close_moves_to_error(tmp_path):
    async def runner():
        h = Harness(tmp_path)
        await h.dm.start()
        h.sessions[0].callbacks.on_close("server went away")
        await asyncio.sleep(0.05)
        assert h.dm.status == SessionStatus.ERROR
        assert h.sessions[0].closed == 1
        assert h.mics[0].closed

        await h.dm.stop()
        assert h.dm.status == SessionStatus.IDLE

    asyncio.run(runner())


def test_restart_tears_down_previous_session_and_ignores_its_callbacks(tmp_path):
    async def runner():
        h = Harness(tmp_path)
        await h.dm.start()
        await h.dm.start()
        assert len(h.sessions) == 2
        assert h.sessions[0].closed == 1
        assert h.sessions[1].closed == 0
        assert h.dm.status == SessionStatus.LISTENING

        h.sessions[0].callbacks.on_error(RuntimeError("late error from old socket"))
        h.sessions[0].callbacks.on_message([OutputTranscription("stale")])
        await asyncio.sleep(0.05)
        assert h.dm.status == SessionStatus.LISTENING
        assert h.dm.interim_text is None
        await h.dm.stop()

    asyncio.run(runner())


def test_microphone_frames_are_streamed_and_gated(tmp_path):
    async def runner():
        h = Harness(tmp_path)
        await h.dm.start()
        mic = h.mics[0]
        mic.on_frame(np.full(4800, 0.5, dtype=np.float32), 48000)
        await asyncio.sleep(0.02)
        session = h.sessions[0]
        assert len(session.audio) == 1
        assert session.audio[0].mime_type == "audio/pcm;rate=16000"
        first = np.frombuffer(base64.b64decode(session.audio[0].data), dtype="<i2")
        assert len(first) == 1600 and first.any()

        # model audio queued ahead of the clock mutes the microphone
        h.dm.scheduler.schedule(pcm_chunk(2400))
        mic.on_frame(np.full(4800, 0.5, dtype=np.float32), 48000)
        await asyncio.sleep(0.02)
        second = np.frombuffer(base64.b64decode(session.audio[1].data), dtype="<i2")
        assert len(second) == 1600 and not second.any()

        await h.dm.stop()
        mic.on_frame(np.full(4800, 0.5, dtype=np.float32), 48000)
        await asyncio.sleep(0.02)
        assert len(session.audio) == 2

    asyncio.run(runner())


def test_full_turn_is_persisted(tmp_path):
    async def runner():
        h = Harness(tmp_path)
        await h.dm.start()
        h.sessions[0].callbacks.on_message([InputTranscription("Open cats")])
        h.sessions[0].callbacks.on_message([
            ToolCallBatch([ToolCallRequest("c1", "searchWeb", {"query": "cats"})]),
        ])
        h.sessions[0].callbacks.on_message([
            OutputTranscription("[HELPFUL] Opening cats."),
            AudioChunk(pcm_chunk(240)),
            TurnComplete(),
        ])
        await h.dm.wait_idle()
        assert h.opened_urls == ["https://www.google.com/search?q=cats"]
        assert h.sessions[0].tool_results == [("c1", "searchWeb", 'Searching Google for "cats".')]
        assert [e.text for e in h.dm.transcript] == ["Open cats", "Opening cats."]
        await h.dm.stop()
        h.dm.close()

        again = Harness(tmp_path)
        assert [e.text for e in again.dm.transcript] == ["Open cats", "Opening cats."]
        again.dm.clear_transcript()
        assert again.dm.transcript == []

    asyncio.run(runner())


def test_messages_after_stop_are_dropped(tmp_path):
    async def runner():
        h = Harness(tmp_path)
        await h.dm.start()
        callbacks = h.sessions[0].callbacks
        await h.dm.stop()
        callbacks.on_message([ToolCallBatch([ToolCallRequest("c1", "tellJoke", {})])])
        await asyncio.sleep(0.02)
        assert h.sessions[0].tool_results == []
        assert h.dm.status == SessionStatus.IDLE

    asyncio.run(runner())


def test_camera_toggle(tmp_path):
    async def runner():
        h = Harness(tmp_path)
        assert not await h.dm.toggle_camera()

        await h.dm.start()
        assert await h.dm.toggle_camera()
        assert h.dm.is_camera_on
        await h.cameras[0].on_frame("anBlZw==")
        assert h.sessions[0].frames == ["anBlZw=="]

        assert not await h.dm.toggle_camera()
        assert h.cameras[0].released
        assert not h.dm.is_camera_on

        await h.dm.toggle_camera()
        await h.dm.stop()
        assert h.cameras[1].released
        assert not h.dm.is_camera_on

    asyncio.run(runner())


def test_camera_failure_keeps_session_running(tmp_path):
    async def runner():
        h = Harness(tmp_path, camera_fails=True)
        await h.dm.start()
        assert not await h.dm.toggle_camera()
        assert h.dm.status == SessionStatus.LISTENING
        await h.dm.stop()

    asyncio.run(runner())


def test_stop_abandons_a_handshake_that_never_completes(tmp_path):
    async def runner():
        h = Harness(tmp_path, hang_connect=True)
        starting = asyncio.ensure_future(h.dm.start())
        await asyncio.sleep(0.02)
        assert h.dm.status == SessionStatus.CONNECTING

        await asyncio.wait_for(h.dm.stop(), 1.0)
        assert h.dm.status == SessionStatus.IDLE
        assert await asyncio.wait_for(starting, 1.0) is False
        assert h.sessions[0].closed == 1
        assert h.mics[0].closed
        assert h.outputs[0].closed == 1

        # the manager is usable again afterwards
        h.sessions.clear()
        await h.dm.stop()
        assert h.dm.status == SessionStatus.IDLE

    asyncio.run(runner())


def test_cancelling_the_caller_of_start_still_cancels(tmp_path):
    async def runner():
        h = Harness(tmp_path, hang_connect=True)
        starting = asyncio.ensure_future(h.dm.start())
        await asyncio.sleep(0.02)
        starting.cancel()
        try:
            await starting
        except asyncio.CancelledError:
            pass
        assert starting.cancelled()
        await h.dm.stop()
        assert h.dm.status == SessionStatus.IDLE
        assert h.sessions[0].closed == 1

    asyncio.run(runner())


def test_stop_drops_queued_tool_calls_while_session_closes(tmp_path):
    async def runner():
        h = Harness(tmp_path, close_delay=0.05)
        await h.dm.start()
        h.sessions[0].callbacks.on_message([
            ToolCallBatch([ToolCallRequest("c1", "searchWeb", {"query": "x"})]),
        ])
        await h.dm.stop()
        await asyncio.sleep(0.02)
        assert h.sessions[0].tool_results == []
        assert h.opened_urls == []
        assert h.dm.status == SessionStatus.IDLE

    asyncio.run(runner())
