import asyncio
import base64
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Awaitable, Callable, Optional

import numpy as np

from .devices import log_sound_devices, native_input_rate
from .errors import DeviceAcquisitionFailure

logger = logging.getLogger(__name__)

CAPTURE_BLOCK_SIZE = 4096
CAMERA_INTERVAL_S = 0.2   # 5 fps
CAMERA_JPEG_QUALITY = 80


# ---------------- Microphone ----------------
class MicrophoneCapture:
    """
    Continuous mono float32 capture at the device's native rate. Each block is handed to
    `on_frame(samples, sample_rate)` on the PortAudio thread.
    """
    def __init__(self, on_frame: Callable[[np.ndarray, int], None], device=None,
                 block_size: int = CAPTURE_BLOCK_SIZE, sample_rate: Optional[int] = None):
        self.on_frame = on_frame
        self.device = device
        self.block_size = block_size
        self.sample_rate = sample_rate
        self.stream = None
        log_sound_devices()

    def _cb(self, indata, frames, time_info, status):
        # Keep the callback tiny: copy the mono slice and hand it on, never block.
        if status:
            logger.debug(f"[Mic] Input status: {status}")
        mono = indata[:, 0].copy()
        try:
            self.on_frame(mono, self.sample_rate)
        except Exception as e:
            logger.debug(f"[Mic] Frame handler error: {e}")

    def start(self):
        try:
            import sounddevice as sd

            if self.sample_rate is None:
                self.sample_rate = native_input_rate(self.device)
            self.stream = sd.InputStream(
                samplerate=self.sample_rate, channels=1, dtype="float32",
                blocksize=self.block_size, callback=self._cb, device=self.device,
            )
            self.stream.start()
        except DeviceAcquisitionFailure:
            raise
        except Exception as e:
            self.stream = None
            raise DeviceAcquisitionFailure(f"could not open microphone {self.device}: {e}") from e
        logger.info(f"[Mic] Capturing at {self.sample_rate} Hz, {self.block_size}-sample blocks")

    def stop(self):
        if self.stream is not None:
            self.stream.stop()

    def close(self):
        if self.stream is not None:
            stream, self.stream = self.stream, None
            stream.close()


# ---------------- Camera ----------------
class CameraCapture:
    """
    Grabs one still frame per `interval_s`, JPEG-encodes it and hands the base64 to `on_frame`.

    Every VideoCapture call (open, read, release) runs on one dedicated worker thread, so a
    release queued while a read is in flight only runs once that read has returned.
    """

    def __init__(self, on_frame: Callable[[str], Awaitable[None]], device_index: int = 0,
                 interval_s: float = CAMERA_INTERVAL_S, jpeg_quality: int = CAMERA_JPEG_QUALITY):
        self.on_frame = on_frame
        self.device_index = device_index
        self.interval_s = interval_s
        self.jpeg_quality = jpeg_quality
        self._cap = None
        self._task: Optional[asyncio.Task] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    def _open_device(self):
        import cv2

        return cv2.VideoCapture(self.device_index)

    async def _on_camera_thread(self, fn, *args):
        return await asyncio.get_running_loop().run_in_executor(self._executor, fn, *args)

    async def open(self):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="camera")
        try:
            cap = await self._on_camera_thread(self._open_device)
        except Exception as e:
            self._shutdown_executor()
            raise DeviceAcquisitionFailure(f"could not open camera {self.device_index}: {e}") from e
        if not cap.isOpened():
            await self._on_camera_thread(cap.release)
            self._shutdown_executor()
            raise DeviceAcquisitionFailure(f"could not open camera {self.device_index}")
        self._cap = cap
        self._task = asyncio.create_task(self._run(cap))
        logger.info(f"[Camera] Streaming camera {self.device_index} every {self.interval_s:.2f}s")

    def _encode(self, frame) -> Optional[str]:
        import cv2

        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            return None
        return base64.b64encode(buf.tobytes()).decode("ascii")

    async def _run(self, cap):
        while self._cap is cap:
            ret, frame = await self._on_camera_thread(cap.read)
            if ret:
                b64 = self._encode(frame)
                if b64:
                    try:
                        await self.on_frame(b64)
                    except Exception as e:
                        # session may be closing; frames are best-effort
                        logger.debug(f"[Camera] Dropped frame: {e}")
            await asyncio.sleep(self.interval_s)

    def cancel_timer(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def release(self):
        self.cancel_timer()
        cap, self._cap = self._cap, None
        if cap is not None:
            await self._on_camera_thread(cap.release)
        self._shutdown_executor()

    def _shutdown_executor(self):
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
