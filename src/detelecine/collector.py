"""Gathering per-frame metrics from a clip prepared by the video engine."""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol, Tuple

from .errors import RangeError
from .matches import MATCH_CHARS
from .project import Project

logger = logging.getLogger(__name__)

__all__ = ["CollectionResult", "FrameSource", "MetricsCollector", "apply_frame_props", "open_metrics_clip"]

ProgressCallback = Callable[[int, int], None]


class FrameSource(Protocol):
    """Clip whose frames carry field-matching and decimation properties."""

    num_frames: int

    def get_frame_async(self, n: int) -> "Future[Any]": ...


@dataclass
class CollectionResult:
    frames_applied: int
    frames_requested: int
    cancelled: bool


def apply_frame_props(project: Project, frame: int, props: Mapping[str, Any]) -> None:
    """Copy the metrics found in one frame's properties into *project*; missing properties are skipped."""

    if "VFMMics" in props:
        project.set_mics(frame, [int(value) for value in props["VFMMics"]])
    if "VFMMatch" in props:
        match = int(props["VFMMatch"])
        if not 0 <= match < len(MATCH_CHARS):
            raise RangeError("read the match of frame", frame, problem=f"invalid VFMMatch {match}")
        project.set_original_match(frame, MATCH_CHARS[match])
    if props.get("_Combed"):
        project.add_combed_frame(frame)
    if props.get("VDecimateDrop"):
        project.add_decimated_frame(frame)
    if "VDecimateMaxBlockDiff" in props:
        project.set_decimate_metric(frame, int(props["VDecimateMaxBlockDiff"]))


def _filter_arguments(parameters: Mapping[str, float]) -> dict:
    return {key: int(value) if float(value).is_integer() else value for key, value in parameters.items()}


def open_metrics_clip(project: Project) -> FrameSource:
    """
    Build the clip whose frames carry the metrics of *project*.

    The source is opened with the project's source filter, trimmed, field
    matched with mics output enabled and run through VDecimate in dry-run
    mode, so the clip keeps one frame per post-source frame.

    Raises:
        RuntimeError: If VapourSynth cannot be imported.
    """
    try:
        import vapoursynth as vs  # type: ignore
    except Exception as exc:
        raise RuntimeError("VapourSynth is required to collect metrics") from exc

    core = vs.core
    source: Any = core
    for attribute in project.source_filter.split("."):
        source = getattr(source, attribute)
    clip = source(project.input_file)
    clip = core.std.Splice(clips=[clip[trim.first : trim.last + 1] for trim in project.trims])

    vfm_args = {"order": 1, **_filter_arguments(project.vfm_parameters), "micout": 1}
    clip = core.vivtc.VFM(clip, **vfm_args)
    vdecimate_args = {**_filter_arguments(project.vdecimate_parameters), "dryrun": True}
    return core.vivtc.VDecimate(clip, **vdecimate_args)


class MetricsCollector:
    """
    Request frames asynchronously and apply their metrics to a project.

    At most ``max_requests`` frames are in flight at once. Completed frames
    are handed back through a queue, so every model write happens on the
    thread that called :meth:`run`, in whatever order the frames finish.
    :meth:`cancel` may be called from any thread; it stops new requests and
    discards results still in flight without undoing frames already applied.
    """

    def __init__(
        self,
        project: Project,
        clip: FrameSource,
        *,
        max_requests: int = 8,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        if max_requests < 1:
            raise RangeError("collect metrics with request limit", max_requests)
        if clip.num_frames != project.num_frames():
            raise RangeError(
                "collect metrics from clip with length",
                clip.num_frames,
                problem=f"project has {project.num_frames()} frames",
            )
        self.project = project
        self.clip = clip
        self.max_requests = max_requests
        self.progress = progress
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self, start: int = 0, end: Optional[int] = None) -> CollectionResult:
        """
        Collect metrics for frames ``start..end - 1`` (the whole clip by default).

        Raises:
            RangeError: If the range lies outside the clip.
            Exception: Whatever a failed frame request or an unusable frame raised;
                remaining requests are drained first.
        """

        if end is None:
            end = self.clip.num_frames
        if start < 0 or end > self.clip.num_frames or start > end:
            raise RangeError("collect metrics for range", start, end - 1)

        total = end - start
        completed: "queue.Queue[Tuple[int, Future[Any]]]" = queue.Queue()
        next_frame = start
        in_flight = 0
        applied = 0
        failure: Optional[BaseException] = None

        logger.debug("Collecting metrics for frames %d to %d", start, end - 1)
        while True:
            while in_flight < self.max_requests and next_frame < end and failure is None and not self.cancelled:
                future = self.clip.get_frame_async(next_frame)
                future.add_done_callback(lambda done, n=next_frame: completed.put((n, done)))
                next_frame += 1
                in_flight += 1
            if in_flight == 0:
                break

            frame, future = completed.get()
            in_flight -= 1
            if failure is not None or self.cancelled:
                continue
            try:
                rendered = future.result()
                apply_frame_props(self.project, frame, rendered.props)
            except Exception as exc:
                logger.debug("Collecting frame %d failed: %s", frame, exc)
                failure = exc
                continue
            applied += 1
            if self.progress is not None:
                self.progress(applied, total)

        if failure is not None:
            raise failure

        matches = self.project.matches
        if applied and matches.has_original_matches() and not matches.has_matches():
            matches.load([], matches.original_matches())

        if self.cancelled:
            logger.info("Metrics collection cancelled after %d of %d frames", applied, total)
        else:
            logger.debug("Collected metrics for %d frames", applied)
        return CollectionResult(frames_applied=applied, frames_requested=next_frame - start, cancelled=self.cancelled)
