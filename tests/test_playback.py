import numpy as np
import pytest

from fakes import FakeClock, pcm_chunk
from jarvis_live.playback import PlaybackScheduler


def _scheduler(t=0.0):
    clock = FakeClock(start_at=t)
    return clock, PlaybackScheduler(clock)


def test_chunks_play_back_to_back():
    clock, sched = _scheduler()
    segs = [sched.schedule(pcm_chunk(2400)) for _ in range(3)]  # 0.1 s each at 24 kHz
    assert [s.start_time for s in segs] == pytest.approx([0.0, 0.1, 0.2])
    assert sched.next_start_time == pytest.approx(0.3)
    assert sched.outstanding == 3
    assert len(clock.played) == 3


def test_late_chunk_starts_at_clock_not_in_past():
    clock, sched = _scheduler()
    sched.schedule(pcm_chunk(2400))
    clock.t = 5.0
    seg = sched.schedule(pcm_chunk(1200))
    assert seg.start_time == pytest.approx(5.0)
    assert sched.next_start_time == pytest.approx(5.05)


def test_malformed_chunk_is_dropped():
    clock, sched = _scheduler()
    sched.schedule(pcm_chunk(2400))
    assert sched.schedule("%%% not audio %%%") is None
    assert sched.next_start_time == pytest.approx(0.1)
    assert sched.outstanding == 1


def test_interrupt_stops_everything_queued():
    clock, sched = _scheduler()
    segs = [sched.schedule(pcm_chunk(2400)) for _ in range(3)]
    clock.t = 0.05
    assert sched.interrupt() == 3
    assert sched.outstanding == 0
    assert all(s.stopped for s in segs)
    assert len(clock.cancelled) == 3
    assert sched.next_start_time == pytest.approx(0.05)
    assert not sched.is_speaking()


def test_interrupt_with_nothing_queued():
    _, sched = _scheduler()
    assert sched.interrupt() == 0


def test_finished_segments_leave_the_outstanding_set():
    clock, sched = _scheduler()
    first = sched.schedule(pcm_chunk(2400))
    sched.schedule(pcm_chunk(2400))
    clock.finish(first)
    assert sched.outstanding == 1


def test_speaking_and_time_remaining_follow_the_clock():
    clock, sched = _scheduler()
    sched.schedule(pcm_chunk(4800))
    assert sched.is_speaking()
    clock.t = 0.15
    assert sched.time_remaining() == pytest.approx(0.05)
    clock.t = 0.3
    assert not sched.is_speaking()
    assert sched.time_remaining() == 0.0


def test_close_closes_clock():
    clock, sched = _scheduler()
    sched.schedule(pcm_chunk(2400))
    sched.close()
    assert clock.closed == 1
    assert sched.outstanding == 0


def test_watermark_is_first_clock_plus_total_duration_under_jitter():
    rng = np.random.default_rng(7)
    clock, sched = _scheduler(t=0.37)
    first_clock = clock.t
    total = 0.0
    prev = None
    for n in rng.integers(240, 4800, size=25):
        seg = sched.schedule(pcm_chunk(int(n)))
        if prev is not None:
            assert seg.start_time == pytest.approx(prev.end_time)
        prev = seg
        total += int(n) / 24000.0
        # the clock wanders forward but stays behind what is already queued
        clock.t = min(clock.t + float(rng.uniform(0.0, 0.01)), sched.next_start_time)
    assert sched.next_start_time == pytest.approx(max(first_clock, 0.0) + total)
