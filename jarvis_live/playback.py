import logging
import threading
from typing import Callable, List, Optional, Set, Union

import numpy as np

from .audio_codec import OUTPUT_SAMPLE_RATE, decode_pcm16
from .errors import AudioDecodeError, DeviceAcquisitionFailure

logger = logging.getLogger(__name__)

OUTPUT_BLOCK_MS = 20


class ScheduledSegment:
    """One decoded chunk placed on the output timeline."""

    def __init__(self, samples: np.ndarray, start_time: float, sample_rate: int):
        self.samples = samples
        self.start_time = start_time
        self.sample_rate = sample_rate
        self.duration = len(samples) / float(sample_rate)
        self.stopped = False

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def __repr__(self):
        return f"ScheduledSegment(start={self.start_time:.3f}, duration={self.duration:.3f})"


class OutputClock:
    """
    Output audio clock: knows the current playback time and can play a segment at
    `segment.start_time`. Implementations call `on_ended(segment)` when a segment has
    been rendered to the end; cancelled segments never report.
    """

    def now(self) -> float:
        raise NotImplementedError

    def play(self, segment: ScheduledSegment, on_ended: Callable[[ScheduledSegment], None]) -> None:
        raise NotImplementedError

    def cancel(self, segment: ScheduledSegment) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class SoundDeviceOutput(OutputClock):
    """
    Output playback via sounddevice (PortAudio). The clock is the number of frames handed to
    the device; every callback mixes whatever scheduled segments overlap the block.
    """
    def __init__(self, device=None, sample_rate: int = OUTPUT_SAMPLE_RATE, block_ms: int = OUTPUT_BLOCK_MS):
        self.sample_rate = sample_rate
        self._lock = threading.Lock()
        self._frames_rendered = 0
        self._active: List[tuple] = []  # (segment, start_frame, on_ended)
        self._closed = False
        try:
            import sounddevice as sd
            self._stream = sd.OutputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="float32",
                blocksize=sample_rate * block_ms // 1000,
                device=device,
                latency=0.35,                   # extra slack to reduce underruns
                callback=self._cb,
            )
        except Exception as e:
            raise DeviceAcquisitionFailure(f"could not open output device {device}: {e}") from e

    # ---- internal callback ----
    def _cb(self, outdata, frames, time_info, status):
        if status:
            logger.debug(f"[Playback] Output status: {status}")
        mix = np.zeros(frames, dtype=np.float32)
        finished = []
        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            keep = []
            for entry in self._active:
                segment, seg_start, on_ended = entry
                seg_end = seg_start + len(segment.samples)
                if seg_start < block_end and seg_end > block_start:
                    lo = max(seg_start, block_start)
                    hi = min(seg_end, block_end)
                    mix[lo - block_start:hi - block_start] += segment.samples[lo - seg_start:hi - seg_start]
                if seg_end <= block_end:
                    finished.append((segment, on_ended))
                else:
                    keep.append(entry)
            self._active = keep
            self._frames_rendered = block_end
        outdata[:, 0] = np.clip(mix, -1.0, 1.0)
        for segment, on_ended in finished:
            try:
                on_ended(segment)
            except Exception as e:
                logger.error(f"[Playback] on_ended error: {e}")

    # ---- public API ----
    def start(self):
        self._stream.start()

    def now(self) -> float:
        with self._lock:
            return self._frames_rendered / float(self.sample_rate)

    def play(self, segment: ScheduledSegment, on_ended: Callable[[ScheduledSegment], None]) -> None:
        start_frame = int(round(segment.start_time * self.sample_rate))
        with self._lock:
            self._active.append((segment, start_frame, on_ended))

    def cancel(self, segment: ScheduledSegment) -> None:
        with self._lock:
            self._active = [entry for entry in self._active if entry[0] is not segment]

    def close(self):
        if self._closed:
            return
        self._closed = True
        with self._lock:
            self._active = []
        try:
            self._stream.stop()
            self._stream.close()
        except Exception as e:
            logger.warning(f"[Playback] Closing output stream failed: {e}")


class PlaybackScheduler:
    """
    Schedules inbound PCM chunks back-to-back on the output clock.

    `next_start_time` is the watermark: the earliest time the next chunk may begin. Each chunk
    starts at max(watermark, now), so playback is gapless when chunks arrive early and never
    lands in the past when they arrive late.
    """

    def __init__(self, clock: OutputClock, sample_rate: int = OUTPUT_SAMPLE_RATE):
        self.clock = clock
        self.sample_rate = sample_rate
        self._lock = threading.Lock()
        self._next_start_time = 0.0
        self._outstanding: Set[ScheduledSegment] = set()

    @property
    def next_start_time(self) -> float:
        with self._lock:
            return self._next_start_time

    @property
    def outstanding(self) -> int:
        with self._lock:
            return len(self._outstanding)

    def schedule(self, chunk: Union[str, bytes]) -> Optional[ScheduledSegment]:
        try:
            samples = decode_pcm16(chunk)
        except AudioDecodeError as e:
            logger.warning(f"[Playback] Dropping malformed chunk: {e}")
            return None

        with self._lock:
            start_time = max(self._next_start_time, self.clock.now())
            segment = ScheduledSegment(samples, start_time, self.sample_rate)
            self._outstanding.add(segment)
            self._next_start_time = start_time + segment.duration
            self.clock.play(segment, self._on_segment_ended)
        return segment

    def _on_segment_ended(self, segment: ScheduledSegment) -> None:
        with self._lock:
            self._outstanding.discard(segment)

    def interrupt(self) -> int:
        """Stop every queued segment and pull the watermark back to the clock. Returns how many were stopped."""
        with self._lock:
            segments = list(self._outstanding)
            self._outstanding.clear()
            for segment in segments:
                segment.stopped = True
                try:
                    self.clock.cancel(segment)
                except Exception as e:
                    logger.warning(f"[Playback] Failed to stop {segment}: {e}")
            self._next_start_time = self.clock.now()
        if segments:
            logger.info(f"[Playback] Interrupted, dropped {len(segments)} queued segment(s).")
        return len(segments)

    def is_speaking(self) -> bool:
        with self._lock:
            return self.clock.now() < self._next_start_time

    def time_remaining(self) -> float:
        """Seconds of audio still queued ahead of the clock."""
        with self._lock:
            return max(0.0, self._next_start_time - self.clock.now())

    def close(self) -> None:
        self.interrupt()
        self.clock.close()
