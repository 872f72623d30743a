import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytest

from detelecine.collector import MetricsCollector, apply_frame_props
from detelecine.errors import RangeError


@dataclass
class FakeFrame:
    props: Dict[str, Any] = field(default_factory=dict)


def _props(frame: int) -> Dict[str, Any]:
    props: Dict[str, Any] = {
        "VFMMics": [0, frame, 2 * frame, 0, 0],
        "VFMMatch": 2 if frame == 4 else 1,
        "VDecimateMaxBlockDiff": 100 + frame,
    }
    if frame == 7:
        props["_Combed"] = 1
    if frame == 3:
        props["VDecimateDrop"] = 1
    return props


class ReadyClip:
    """Clip whose frame requests complete immediately."""

    def __init__(self, num_frames: int, failing_frame: Optional[int] = None) -> None:
        self.num_frames = num_frames
        self.failing_frame = failing_frame
        self.requested: List[int] = []

    def get_frame_async(self, n: int) -> "Future[FakeFrame]":
        self.requested.append(n)
        future: "Future[FakeFrame]" = Future()
        if n == self.failing_frame:
            future.set_exception(ValueError(f"frame {n} could not be rendered"))
        else:
            future.set_result(FakeFrame(_props(n)))
        return future


class ThreadedClip:
    """Clip rendering frames on a worker pool while tracking concurrency."""

    def __init__(self, num_frames: int, executor: ThreadPoolExecutor, bad_match_frame: Optional[int] = None) -> None:
        self.num_frames = num_frames
        self.executor = executor
        self.bad_match_frame = bad_match_frame
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0

    def _render(self, n: int) -> FakeFrame:
        time.sleep(0.002)
        props = _props(n)
        if n == self.bad_match_frame:
            props["VFMMatch"] = 7
        return FakeFrame(props)

    def _release(self, _future: "Future[FakeFrame]") -> None:
        with self.lock:
            self.active -= 1

    def get_frame_async(self, n: int) -> "Future[FakeFrame]":
        with self.lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        future = self.executor.submit(self._render, n)
        future.add_done_callback(self._release)
        return future


def test_collects_every_frame(make_project) -> None:
    project = make_project(10)
    progress: List[int] = []

    result = MetricsCollector(project, ReadyClip(10), max_requests=3, progress=lambda done, total: progress.append(done)).run()

    assert (result.frames_applied, result.frames_requested, result.cancelled) == (10, 10, False)
    assert progress == list(range(1, 11))
    assert project.get_mics(5) == (0, 5, 10, 0, 0)
    assert project.matches.original_matches() == "ccccnccccc"
    assert project.matches.matches() == "ccccnccccc"
    assert list(project.combed_frames) == [7]
    assert list(project.decimation.dropped_frames()) == [3]
    assert project.get_decimate_metric(9) == 109


def test_existing_matches_are_kept(make_project) -> None:
    project = make_project(10)
    project.set_match(0, "n")

    MetricsCollector(project, ReadyClip(10)).run()

    assert project.matches.matches() == "nccccccccc"


def test_partial_range(make_project) -> None:
    project = make_project(10)
    clip = ReadyClip(10)

    result = MetricsCollector(project, clip).run(2, 5)

    assert clip.requested == [2, 3, 4]
    assert result.frames_applied == 3
    assert project.get_mics(1) == (0, 0, 0, 0, 0)
    with pytest.raises(RangeError):
        MetricsCollector(project, clip).run(5, 11)


def test_cancel_stops_new_requests(make_project) -> None:
    project = make_project(20)
    clip = ReadyClip(20)
    collector = MetricsCollector(project, clip, max_requests=2)
    collector.progress = lambda done, total: collector.cancel() if done == 5 else None

    result = collector.run()

    assert result.cancelled
    assert result.frames_applied == 5
    assert len(clip.requested) < 20
    assert project.get_mics(4) == (0, 4, 8, 0, 0)
    assert project.get_mics(5) == (0, 0, 0, 0, 0)


def test_failed_request_is_reraised(make_project) -> None:
    project = make_project(10)
    clip = ReadyClip(10, failing_frame=3)

    with pytest.raises(ValueError, match="frame 3"):
        MetricsCollector(project, clip, max_requests=2).run()

    assert project.get_mics(2) == (0, 2, 4, 0, 0)
    assert max(clip.requested) < 9


def test_requests_in_flight_are_bounded(make_project) -> None:
    project = make_project(30)
    main_thread = threading.get_ident()
    callback_threads = set()

    with ThreadPoolExecutor(max_workers=8) as executor:
        clip = ThreadedClip(30, executor)
        result = MetricsCollector(
            project,
            clip,
            max_requests=3,
            progress=lambda done, total: callback_threads.add(threading.get_ident()),
        ).run()

    assert result.frames_applied == 30
    assert clip.peak <= 3
    assert callback_threads == {main_thread}
    assert project.get_decimate_metric(29) == 129


def test_unusable_frame_drains_requests_before_raising(make_project) -> None:
    project = make_project(30)

    with ThreadPoolExecutor(max_workers=8) as executor:
        clip = ThreadedClip(30, executor, bad_match_frame=2)
        with pytest.raises(RangeError, match="VFMMatch 7"):
            MetricsCollector(project, clip, max_requests=4).run()

        assert clip.active == 0
    assert project.get_original_match(2) == "c"


@pytest.mark.parametrize("max_requests, clip_frames", [(0, 10), (4, 12)])
def test_invalid_collectors_are_rejected(make_project, max_requests: int, clip_frames: int) -> None:
    with pytest.raises(RangeError):
        MetricsCollector(make_project(10), ReadyClip(clip_frames), max_requests=max_requests)


def test_apply_frame_props_validates_the_match(make_project) -> None:
    project = make_project(10)

    apply_frame_props(project, 0, {})
    assert not project.has_mics()
    with pytest.raises(RangeError):
        apply_frame_props(project, 0, {"VFMMatch": 7})
