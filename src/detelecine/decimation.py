"""Per-cycle decimation marks and pre/post-decimation frame numbering."""

from __future__ import annotations

from typing import FrozenSet, Iterator, List, Set

from .datatypes import DecimationPatternRange, DecimationRange
from .errors import RangeError

__all__ = ["CYCLE", "DecimationTrack"]

CYCLE = 5


class DecimationTrack:
    """
    Set of dropped in-cycle offsets for every cycle of five source frames.

    The post-decimation frame count is cached and only changes when a mark is
    actually added or removed, so repeated toggles are idempotent.
    """

    def __init__(self, num_frames: int) -> None:
        if num_frames < 0:
            raise RangeError("create decimation track with length", num_frames)
        self._num_frames = num_frames
        self._cycles: List[Set[int]] = [set() for _ in range((num_frames + CYCLE - 1) // CYCLE)]
        self._num_frames_after = num_frames

    @property
    def num_frames(self) -> int:
        """Number of frames before decimation."""

        return self._num_frames

    @property
    def num_frames_after(self) -> int:
        """Number of frames left after decimation."""

        return self._num_frames_after

    @property
    def num_cycles(self) -> int:
        return len(self._cycles)

    def _check_frame(self, frame: int, action: str) -> None:
        if frame < 0 or frame >= self._num_frames:
            raise RangeError(action, frame)

    def add(self, frame: int) -> bool:
        """Mark *frame* as dropped; return whether the state changed."""

        self._check_frame(frame, "mark for decimation frame")
        cycle = self._cycles[frame // CYCLE]
        if frame % CYCLE in cycle:
            return False
        cycle.add(frame % CYCLE)
        self._num_frames_after -= 1
        return True

    def delete(self, frame: int) -> bool:
        """Unmark *frame*; return whether the state changed."""

        self._check_frame(frame, "delete decimated frame")
        cycle = self._cycles[frame // CYCLE]
        if frame % CYCLE not in cycle:
            return False
        cycle.discard(frame % CYCLE)
        self._num_frames_after += 1
        return True

    def is_decimated(self, frame: int) -> bool:
        self._check_frame(frame, "check if decimated frame")
        return frame % CYCLE in self._cycles[frame // CYCLE]

    def clear_cycle(self, frame: int) -> None:
        """Drop every mark in the cycle containing *frame*."""

        self._check_frame(frame, "clear decimated frames from cycle containing frame")
        cycle = self._cycles[frame // CYCLE]
        self._num_frames_after += len(cycle)
        cycle.clear()

    def clear_range(self, start: int, end: int) -> None:
        """Unmark every frame in ``start..end - 1``."""

        for frame in range(max(0, start), min(end, self._num_frames)):
            self.delete(frame)

    def dropped_offsets(self, cycle: int) -> FrozenSet[int]:
        if cycle < 0 or cycle >= len(self._cycles):
            raise RangeError("get dropped offsets of cycle", cycle)
        return frozenset(self._cycles[cycle])

    def dropped_frames(self) -> Iterator[int]:
        """Yield every dropped source frame in ascending order."""

        for index, cycle in enumerate(self._cycles):
            for offset in sorted(cycle):
                yield index * CYCLE + offset

    def has_decimation(self) -> bool:
        return self._num_frames_after != self._num_frames

    def frame_number_after_decimation(self, frame: int) -> int:
        """
        Translate a source frame number into the decimated clip's numbering.

        Frames before the clip map to 0 and frames past its end map to the
        decimated frame count. A dropped frame maps to the next kept frame,
        except in the run of dropped frames ending the clip, which maps back
        onto the previous kept frame so that inclusive ranges stay inside the
        clip.
        """

        if frame < 0:
            return 0
        if frame >= self._num_frames:
            return self._num_frames_after

        cycle_number, position = divmod(frame, CYCLE)
        out_frame = cycle_number * CYCLE
        out_frame -= sum(len(cycle) for cycle in self._cycles[:cycle_number])
        dropped = self._cycles[cycle_number]
        out_frame += sum(1 for offset in range(position) if offset not in dropped)

        if position in dropped and self._in_dropped_tail(frame):
            out_frame -= 1

        return max(out_frame, 0)

    def _in_dropped_tail(self, frame: int) -> bool:
        return all(
            (later % CYCLE) in self._cycles[later // CYCLE] for later in range(frame, self._num_frames)
        )

    def decimation_ranges(self) -> List[DecimationRange]:
        """Collapse consecutive cycles dropping the same number of frames."""

        ranges: List[DecimationRange] = []
        current = -1
        for index, cycle in enumerate(self._cycles):
            if len(cycle) != current:
                current = len(cycle)
                ranges.append(DecimationRange(start=index * CYCLE, num_dropped=current))
        return ranges

    def decimation_pattern_ranges(self) -> List[DecimationPatternRange]:
        """Collapse consecutive cycles dropping the same offsets."""

        ranges: List[DecimationPatternRange] = []
        current: FrozenSet[int] | None = None
        for index, cycle in enumerate(self._cycles):
            offsets = frozenset(cycle)
            if offsets != current:
                current = offsets
                ranges.append(DecimationPatternRange(start=index * CYCLE, dropped_offsets=offsets))
        return ranges
