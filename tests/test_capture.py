import asyncio
import threading

import pytest

from jarvis_live.capture import CameraCapture
from jarvis_live.errors import DeviceAcquisitionFailure


class SlowCapture:
    """VideoCapture stand-in whose read blocks until the test lets it finish."""

    def __init__(self, opened=True):
        self.opened = opened
        self.reading = False
        self.read_started = threading.Event()
        self.let_read_finish = threading.Event()
        self.released = False
        self.released_during_read = None

    def isOpened(self):
        return self.opened

    def read(self):
        self.reading = True
        self.read_started.set()
        self.let_read_finish.wait(2.0)
        self.reading = False
        return False, None

    def release(self):
        self.released_during_read = self.reading
        self.released = True


class StubCamera(CameraCapture):
    def __init__(self, cap, **kw):
        super().__init__(self._frame, **kw)
        self.cap = cap

    async def _frame(self, b64):
        pass

    def _open_device(self):
        return self.cap


def test_release_waits_for_in_flight_read():
    async def runner():
        cap = SlowCapture()
        camera = StubCamera(cap, interval_s=0.01)
        await camera.open()
        assert camera.is_open
        assert await asyncio.to_thread(cap.read_started.wait, 1.0)

        release = asyncio.ensure_future(camera.release())
        await asyncio.sleep(0.05)
        assert not cap.released

        cap.let_read_finish.set()
        await asyncio.wait_for(release, 1.0)
        assert cap.released
        assert cap.released_during_read is False
        assert not camera.is_open

    asyncio.run(runner())


def test_unopened_camera_is_a_device_failure():
    async def runner():
        cap = SlowCapture(opened=False)
        camera = StubCamera(cap)
        with pytest.raises(DeviceAcquisitionFailure):
            await camera.open()
        assert cap.released
        assert not camera.is_open

    asyncio.run(runner())


def test_release_twice_is_harmless():
    async def runner():
        cap = SlowCapture()
        cap.let_read_finish.set()
        camera = StubCamera(cap, interval_s=0.01)
        await camera.open()
        await camera.release()
        await camera.release()
        assert cap.released

    asyncio.run(runner())
