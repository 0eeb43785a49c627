import asyncio
import base64
from typing import List

import numpy as np

from jarvis_live.errors import DeviceAcquisitionFailure, RemoteSessionError
from jarvis_live.playback import OutputClock
from jarvis_live.remote import RemoteSession


def pcm_chunk(n_samples: int, value: int = 1000) -> str:
    return base64.b64encode(np.full(n_samples, value, dtype="<i2").tobytes()).decode("ascii")


class FakeClock(OutputClock):
    def __init__(self, device=None, start_at: float = 0.0):
        self.t = start_at
        self.played = []
        self.cancelled = []
        self.started = False
        self.closed = 0

    def start(self):
        self.started = True

    def now(self) -> float:
        return self.t

    def play(self, segment, on_ended):
        self.played.append((segment, on_ended))

    def cancel(self, segment):
        self.cancelled.append(segment)

    def finish(self, segment):
        for seg, on_ended in self.played:
            if seg is segment:
                on_ended(seg)

    def close(self):
        self.closed += 1


class FakeMic:
    def __init__(self, on_frame, device=None, block_size=4096, fail=False):
        self.on_frame = on_frame
        self.device = device
        self.block_size = block_size
        self.fail = fail
        self.started = False
        self.stopped = False
        self.closed = False

    def start(self):
        if self.fail:
            raise DeviceAcquisitionFailure("permission denied")
        self.started = True

    def stop(self):
        self.stopped = True

    def close(self):
        self.closed = True


class FakeCamera:
    def __init__(self, on_frame, device_index=0, interval_s=0.2, fail=False):
        self.on_frame = on_frame
        self.device_index = device_index
        self.fail = fail
        self.opened = False
        self.released = False

    async def open(self):
        if self.fail:
            raise DeviceAcquisitionFailure("no camera")
        self.opened = True

    def cancel_timer(self):
        pass

    async def release(self):
        self.released = True


class FakeSession(RemoteSession):
    def __init__(self, fail_connect: bool = False, hang_connect: bool = False, close_delay: float = 0.0):
        self.fail_connect = fail_connect
        self.hang_connect = hang_connect
        self.close_delay = close_delay
        self.callbacks = None
        self.audio = []
        self.frames: List[str] = []
        self.tool_results = []
        self.closed = 0
        self.on_tool_result = None

    async def connect(self, callbacks):
        self.callbacks = callbacks
        if self.fail_connect:
            raise RemoteSessionError("handshake refused")
        if self.hang_connect:
            await asyncio.Event().wait()
        callbacks.on_open()

    async def send_audio(self, payload):
        self.audio.append(payload)

    async def send_video_frame(self, b64_jpeg):
        self.frames.append(b64_jpeg)

    async def send_tool_result(self, call_id, name, result):
        self.tool_results.append((call_id, name, result))
        if self.on_tool_result:
            self.on_tool_result()

    async def close(self):
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        self.closed += 1
