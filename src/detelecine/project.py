"""The project aggregate: source description, per-frame decisions, and every registry."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .datatypes import (
    Crop,
    DecimationPatternRange,
    DecimationRange,
    Depth,
    FrameRange,
    PatternGuessing,
    Position,
    Resize,
    Section,
    UIState,
)
from .decimation import CYCLE, DecimationTrack
from .errors import RangeError
from .matches import MATCH_CHARS, MatchTrack, match_index
from .ranges import RangeMap
from .registries import (
    BookmarkRegistry,
    CombedFrameRegistry,
    CustomListRegistry,
    FreezeFrameRegistry,
    InterlacedFadeRegistry,
    PresetRegistry,
    SectionRegistry,
)

logger = logging.getLogger(__name__)

__all__ = ["Mics", "Project"]

Mics = Tuple[int, int, int, int, int]
TrimLike = Union[FrameRange, Sequence[int]]

_ZERO_MICS: Mics = (0, 0, 0, 0, 0)


class Project:
    """
    Everything known about one telecined source and the operator's decisions for it.

    The five constructor arguments are the only things a persisted project must
    provide; all per-frame arrays are sized from the trimmed (post-source) frame
    count and every frame-indexed access is bounds-checked against it.

    Parameters:
        input_file (str): Path of the source video.
        fps (Tuple[int, int]): Source frame rate as ``(numerator, denominator)``.
        resolution (Tuple[int, int]): Source ``(width, height)``.
        trims (Iterable[FrameRange | Sequence[int]]): Inclusive source ranges kept, in any order.
        source_filter (str): Engine function used to open the source, e.g. ``bs.VideoSource``.
        interactive (bool): Whether the project carries interactive-only state when saved.

    Raises:
        RangeError: If the frame rate or resolution is not positive or the trims overlap.
    """

    def __init__(
        self,
        input_file: str,
        fps: Tuple[int, int],
        resolution: Tuple[int, int],
        trims: Iterable[TrimLike],
        source_filter: str,
        *,
        interactive: bool = True,
    ) -> None:
        fps_num, fps_den = (int(value) for value in fps)
        if fps_num <= 0 or fps_den <= 0:
            raise RangeError("use frame rate", fps_num, fps_den, "both terms must be positive")
        width, height = (int(value) for value in resolution)
        if width <= 0 or height <= 0:
            raise RangeError("use resolution", width, height, "both dimensions must be positive")

        self.input_file = input_file
        self.fps_num = fps_num
        self.fps_den = fps_den
        self.width = width
        self.height = height
        self.source_filter = source_filter
        self.interactive = interactive
        self.project_path: Optional[str] = None

        self.trims: RangeMap[FrameRange] = RangeMap()
        for trim in trims:
            if not isinstance(trim, FrameRange):
                first, last = trim
                trim = FrameRange(int(first), int(last))
            if trim.first < 0:
                raise RangeError("trim", trim.first, trim.last, "frame numbers must not be negative")
            self.trims.insert(trim)
        num_frames = self.trims.total_length()
        self._num_frames = num_frames

        self.vfm_parameters: Dict[str, float] = {}
        self.vdecimate_parameters: Dict[str, float] = {}

        self._mics: List[Mics] = [_ZERO_MICS] * num_frames
        self._decimate_metrics: List[int] = [0] * num_frames
        self.matches = MatchTrack(num_frames)
        self.decimation = DecimationTrack(num_frames)

        self.presets = PresetRegistry()
        self.sections = SectionRegistry(num_frames, self.presets.__contains__)
        self.custom_lists = CustomListRegistry(num_frames, self.presets.__contains__)
        self.presets.attach_referrer(self.sections)
        self.presets.attach_referrer(self.custom_lists)
        self.frozen_frames = FreezeFrameRegistry(num_frames)
        self.bookmarks = BookmarkRegistry(num_frames)
        self.combed_frames = CombedFrameRegistry(num_frames)
        self.interlaced_fades = InterlacedFadeRegistry(num_frames)

        self.pattern_guessing = PatternGuessing()
        self.ui = UIState()
        self.resize = Resize(width=width, height=height)
        self.crop = Crop()
        self.depth = Depth()

        logger.debug("Created project for %s with %d frames", input_file, num_frames)

    # Frame counts ---------------------------------------------------------

    def num_frames(self, position: Position = Position.POST_SOURCE) -> int:
        """Return the number of frames the clip has at *position* in the filter chain."""

        if position == Position.POST_DECIMATE:
            return self.decimation.num_frames_after
        return self._num_frames

    def _check_frame(self, frame: int, action: str) -> None:
        if frame < 0 or frame >= self._num_frames:
            raise RangeError(action, frame)

    # Per-frame metrics ----------------------------------------------------

    def get_mics(self, frame: int) -> Mics:
        self._check_frame(frame, "get the mics for frame")
        return self._mics[frame]

    def set_mics(self, frame: int, mics: Sequence[int]) -> None:
        self._check_frame(frame, "set the mics for frame")
        if len(mics) != len(MATCH_CHARS):
            raise RangeError("set the mics for frame", frame, problem=f"expected 5 values, got {len(mics)}")
        self._mics[frame] = tuple(int(value) for value in mics)  # type: ignore[assignment]

    def get_mic(self, frame: int, match: str) -> int:
        return self.get_mics(frame)[match_index(match)]

    def has_mics(self) -> bool:
        return any(mics != _ZERO_MICS for mics in self._mics)

    def get_decimate_metric(self, frame: int) -> int:
        self._check_frame(frame, "get the decimation metric for frame")
        return self._decimate_metrics[frame]

    def set_decimate_metric(self, frame: int, metric: int) -> None:
        self._check_frame(frame, "set the decimation metric for frame")
        self._decimate_metrics[frame] = int(metric)

    def has_decimate_metrics(self) -> bool:
        return any(self._decimate_metrics)

    # Matches --------------------------------------------------------------

    def get_match(self, frame: int) -> str:
        return self.matches.get_match(frame)

    def set_match(self, frame: int, match: str) -> None:
        self.matches.set_match(frame, match)

    def get_original_match(self, frame: int) -> str:
        return self.matches.get_original_match(frame)

    def set_original_match(self, frame: int, match: str) -> None:
        self.matches.set_original_match(frame, match)

    def cycle_match(self, frame: int) -> str:
        return self.matches.cycle_match(frame)

    def cycle_match_bcn(self, frame: int) -> str:
        return self.matches.cycle_match_bcn(frame)

    def reset_range_matches(self, start: int, end: int) -> None:
        """Restore the detected matches of ``start..end`` (inclusive, either order)."""

        self.matches.reset_range(start, end)

    def reset_section_matches(self, section_start: int) -> None:
        self.sections.get(section_start)
        self.matches.reset_range(section_start, self.section_end(section_start) - 1)

    def set_section_matches_from_pattern(self, section_start: int, pattern: str) -> None:
        """Apply a 5-symbol match pattern cyclically from the start of a section."""

        self.sections.get(section_start)
        if len(pattern) != CYCLE:
            raise RangeError(
                f"apply match pattern '{pattern}' to section starting at",
                section_start,
                problem="pattern must have five symbols",
            )
        self.matches.apply_pattern(section_start, self.section_end(section_start), pattern)

    def set_section_decimation_from_pattern(self, section_start: int, pattern: str) -> None:
        """Mark frames decimated wherever the cyclic *pattern* has ``d``; clear the others."""

        self.sections.get(section_start)
        if len(pattern) != CYCLE:
            raise RangeError(
                f"apply decimation pattern '{pattern}' to section starting at",
                section_start,
                problem="pattern must have five symbols",
            )
        for frame in range(section_start, self.section_end(section_start)):
            if pattern[(frame - section_start) % CYCLE] == "d":
                self.decimation.add(frame)
            else:
                self.decimation.delete(frame)

    # Decimation -----------------------------------------------------------

    def add_decimated_frame(self, frame: int) -> bool:
        return self.decimation.add(frame)

    def delete_decimated_frame(self, frame: int) -> bool:
        return self.decimation.delete(frame)

    def is_decimated_frame(self, frame: int) -> bool:
        return self.decimation.is_decimated(frame)

    def clear_decimated_frames_from_cycle(self, frame: int) -> None:
        self.decimation.clear_cycle(frame)

    def frame_number_after_decimation(self, frame: int) -> int:
        return self.decimation.frame_number_after_decimation(frame)

    def decimation_ranges(self) -> List[DecimationRange]:
        return self.decimation.decimation_ranges()

    def decimation_pattern_ranges(self) -> List[DecimationPatternRange]:
        return self.decimation.decimation_pattern_ranges()

    # Combed frames and fades ----------------------------------------------

    def add_combed_frame(self, frame: int) -> None:
        self.combed_frames.add(frame)

    def delete_combed_frame(self, frame: int) -> None:
        self.combed_frames.delete(frame)

    def is_combed_frame(self, frame: int) -> bool:
        return frame in self.combed_frames

    def add_interlaced_fade(self, frame: int, field_difference: float) -> None:
        self.interlaced_fades.add(frame, field_difference)

    # Sections -------------------------------------------------------------

    def find_section(self, frame: int) -> Section:
        return self.sections.find(frame)

    def find_next_section(self, frame: int) -> Optional[Section]:
        return self.sections.find_next(frame)

    def section_end(self, frame: int) -> int:
        """Return the exclusive end frame of the section containing *frame*."""

        return self.sections.end(frame)

    # Searches -------------------------------------------------------------

    def _mic_of_current_match(self, frame: int) -> int:
        return self._mics[frame][match_index(self.matches.get_match(frame))]

    def find_next_high_mic(self, frame: int, minimum: Optional[int] = None) -> Optional[int]:
        """Return the first frame after *frame* whose mic for its current match is at least *minimum*."""

        if minimum is None:
            minimum = self.ui.mic_search_minimum
        for candidate in range(max(frame + 1, 0), self._num_frames):
            if self._mic_of_current_match(candidate) >= minimum:
                return candidate
        return None

    def find_previous_high_mic(self, frame: int, minimum: Optional[int] = None) -> Optional[int]:
        if minimum is None:
            minimum = self.ui.mic_search_minimum
        for candidate in range(min(frame, self._num_frames) - 1, -1, -1):
            if self._mic_of_current_match(candidate) >= minimum:
                return candidate
        return None

    def find_next_c_match_sequence(self, frame: int, minimum_length: Optional[int] = None) -> Optional[int]:
        """
        Return the start of the next run of at least *minimum_length* consecutive ``c`` matches.

        Only runs starting after *frame* are considered.
        """

        if minimum_length is None:
            minimum_length = self.ui.c_match_sequences_minimum
        if minimum_length < 1:
            raise RangeError("search for c match sequences of length", minimum_length)
        matches = self.matches.matches()
        run_start = None
        for candidate in range(max(frame + 1, 0), self._num_frames):
            if matches[candidate] == "c":
                if run_start is None:
                    run_start = candidate
                if candidate - run_start + 1 >= minimum_length:
                    return run_start
            else:
                run_start = None
        return None

    def frame_to_time(self, frame: int) -> str:
        """Format the timestamp of *frame* as ``HH:MM:SS.mmm``."""

        milliseconds = (frame * self.fps_den * 1000 // self.fps_num) % 1000
        seconds_total = frame * self.fps_den // self.fps_num
        hours, remainder = divmod(seconds_total, 3600)
        minutes, seconds = divmod(remainder, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{milliseconds:03d}"

    # Output settings ------------------------------------------------------

    def set_crop(self, left: int, top: int, right: int, bottom: int) -> None:
        values = (left, top, right, bottom)
        if any(value < 0 for value in values):
            raise RangeError("crop by", min(values), problem="crop values must not be negative")
        if left + right >= self.width or top + bottom >= self.height:
            raise RangeError("crop by", left + right, top + bottom, "nothing would be left of the picture")
        self.crop.left, self.crop.top, self.crop.right, self.crop.bottom = values

    def set_crop_enabled(self, enabled: bool) -> None:
        self.crop.enabled = enabled

    def set_crop_early(self, early: bool) -> None:
        self.crop.early = early

    def set_resize(self, width: int, height: int, filter: str) -> None:
        if width <= 0 or height <= 0:
            raise RangeError("resize to", width, height, "dimensions must be positive")
        self.resize.width = width
        self.resize.height = height
        self.resize.filter = filter

    def set_resize_enabled(self, enabled: bool) -> None:
        self.resize.enabled = enabled

    def set_bit_depth(self, bits: int, float_samples: bool, dither: str) -> None:
        if bits < 8 or bits > 32:
            raise RangeError("convert to bit depth", bits, problem="bits must be between 8 and 32")
        self.depth.bits = bits
        self.depth.float_samples = float_samples
        self.depth.dither = dither

    def set_bit_depth_enabled(self, enabled: bool) -> None:
        self.depth.enabled = enabled

    # Interactive state ----------------------------------------------------

    def set_zoom(self, ratio: int) -> None:
        if ratio < 1:
            raise RangeError("set zoom ratio", ratio, problem="ratio must be at least 1")
        self.ui.zoom = ratio

    def set_last_visited_frame(self, frame: int) -> None:
        self._check_frame(frame, "remember last visited frame")
        self.ui.last_visited_frame = frame

    def set_ui_state(self, state: str) -> None:
        self.ui.state = state

    def set_ui_geometry(self, geometry: str) -> None:
        self.ui.geometry = geometry

    def set_shown_frame_rates(self, shown: Sequence[bool]) -> None:
        if len(shown) != 5:
            raise RangeError("set shown frame rates", len(shown), problem="expected five flags")
        self.ui.shown_frame_rates = [bool(flag) for flag in shown]

    def set_mic_search_minimum(self, minimum: int) -> None:
        if minimum < 0:
            raise RangeError("set mic search minimum", minimum)
        self.ui.mic_search_minimum = minimum

    def set_c_match_sequences_minimum(self, minimum: int) -> None:
        if minimum < 1:
            raise RangeError("set c match sequences minimum", minimum)
        self.ui.c_match_sequences_minimum = minimum
