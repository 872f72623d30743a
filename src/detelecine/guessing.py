"""
Automatic field-match and decimation pattern guessing.

Two strategies classify each section: one fits fixed 3:2 pulldown patterns
against the per-frame mics, the other looks for the seam left by pulldown in
the matches the field matcher detected. Both finish by choosing which of the
two duplicate frames in every cycle gets decimated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .datatypes import (
    DropDuplicate,
    FailureReason,
    GuessingMethod,
    Patterns,
    UseThirdNMatch,
)
from .decimation import CYCLE
from .matches import match_index
from .project import Project

logger = logging.getLogger(__name__)

__all__ = ["PatternGuesser", "PatternFit", "MATCH_TEMPLATES"]

# Indexed by the in-cycle position of the "nc" seam.
MATCH_TEMPLATES: Tuple[str, ...] = ("ncccn", "nnccc", "cnncc", "ccnnc", "cccnn")

_MIC_PATTERNS: Tuple[Tuple[Patterns, str], ...] = (
    (Patterns.CCCNN, "cccnn"),
    (Patterns.CCNNN, "ccnnn"),
    (Patterns.CCCCC, "ccccc"),
)

# Fixed acceptance thresholds for guessing from matches, in percent.
_BEST_MINIMUM_PERCENT = 40.0
_BEST_LEAD_PERCENT = 10.0

_C = match_index("c")
_N = match_index("n")
_B = match_index("b")


@dataclass(frozen=True)
class PatternFit:
    """Best phase of one candidate pattern over a section."""

    pattern: str
    offset: int
    deviation: int

    def symbol(self, frame: int) -> str:
        return self.pattern[(frame - self.offset) % CYCLE]

    @property
    def first_duplicate(self) -> int:
        return (4 + self.offset) % CYCLE

    @property
    def is_degenerate(self) -> bool:
        return "n" not in self.pattern


class PatternGuesser:
    """
    Guess match and decimation patterns section by section and write them into a project.

    Failures are recorded in ``project.pattern_guessing.failures``, keyed by
    section start; a successful guess removes any failure recorded earlier
    for the same section.
    """

    def __init__(self, project: Project) -> None:
        self.project = project

    # Bookkeeping ----------------------------------------------------------

    def _fail(self, section_start: int, reason: FailureReason) -> bool:
        self.project.pattern_guessing.failures[section_start] = reason
        logger.info("Pattern guessing failed for section starting at %d: %s", section_start, reason.value)
        return False

    def _succeed(self, section_start: int) -> bool:
        self.project.pattern_guessing.failures.pop(section_start, None)
        return True

    def _section_bounds(self, section_start: int) -> Tuple[int, int]:
        self.project.sections.get(section_start)
        return section_start, self.project.section_end(section_start)

    def _fix_last_frame(self, section_end: int) -> None:
        project = self.project
        last = section_end - 1
        match = project.get_match(last)
        if section_end == project.num_frames() and match == "n":
            match = "b"
        mics = project.get_mics(last)
        if mics[match_index(match)] > mics[_B] * 2:
            match = "b"
        project.set_match(last, match)

    # From mics ------------------------------------------------------------

    def fit_patterns(self, section_start: int, use_patterns: Patterns = Patterns.all()) -> Optional[PatternFit]:
        """
        Return the candidate pattern and phase deviating least from the mics of a section.

        The deviation of a frame is how much worse the pattern's match is than
        the alternative (``c`` for ``n`` and vice versa), never negative.
        """

        start, end = self._section_bounds(section_start)
        mics = [self.project.get_mics(frame) for frame in range(start, end)]
        best: Optional[PatternFit] = None
        for flag, pattern in _MIC_PATTERNS:
            if not use_patterns & flag:
                continue
            candidate: Optional[PatternFit] = None
            offsets = range(CYCLE) if "n" in pattern else range(1)
            for offset in offsets:
                deviation = 0
                for index, frame_mics in enumerate(mics):
                    symbol = pattern[(start + index - offset) % CYCLE]
                    chosen, alternative = (_N, _C) if symbol == "n" else (_C, _N)
                    deviation += max(0, frame_mics[chosen] - frame_mics[alternative])
                if candidate is None or deviation < candidate.deviation:
                    candidate = PatternFit(pattern, offset, deviation)
            if candidate is not None and (best is None or candidate.deviation < best.deviation):
                best = candidate
        return best

    def guess_section_patterns_from_mics(
        self,
        section_start: int,
        minimum_length: int,
        use_patterns: Patterns = Patterns.all(),
        drop_duplicate: DropDuplicate = DropDuplicate.FIRST,
    ) -> bool:
        start, end = self._section_bounds(section_start)
        if end - start < max(minimum_length, 1):
            return self._fail(start, FailureReason.SECTION_TOO_SHORT)

        fit = self.fit_patterns(start, use_patterns)
        if fit is None or fit.deviation > end - start:
            return self._fail(start, FailureReason.AMBIGUOUS_PATTERN)

        logger.debug(
            "Section starting at %d fits %s at offset %d (deviation %d)",
            start,
            fit.pattern,
            fit.offset,
            fit.deviation,
        )
        for frame in range(start, end):
            self.project.set_match(frame, fit.symbol(frame))
        self._fix_last_frame(end)

        if fit.is_degenerate:
            self.project.decimation.clear_range(start, end)
        else:
            self.apply_pattern_guessing_decimation(start, end, fit.first_duplicate, drop_duplicate)
        return self._succeed(start)

    # From matches ---------------------------------------------------------

    def seam_positions(self, section_start: int) -> List[int]:
        """Count the ``nc`` transitions of the detected matches per in-cycle position."""

        start, end = self._section_bounds(section_start)
        original = self.project.matches.original_matches()
        positions = [0] * CYCLE
        for frame in range(start, min(end, self.project.num_frames() - 1)):
            if original[frame] == "n" and original[frame + 1] == "c":
                positions[frame % CYCLE] += 1
        return positions

    def guess_section_patterns_from_matches(
        self,
        section_start: int,
        minimum_length: int,
        third_n_match: UseThirdNMatch = UseThirdNMatch.NEVER,
        drop_duplicate: DropDuplicate = DropDuplicate.FIRST,
    ) -> bool:
        start, end = self._section_bounds(section_start)
        if end - start < max(minimum_length, 1):
            return self._fail(start, FailureReason.SECTION_TOO_SHORT)

        positions = self.seam_positions(start)
        total = sum(positions)
        best = max(range(CYCLE), key=lambda position: (positions[position], -position))
        next_best = max(
            (position for position in range(CYCLE) if position != best),
            key=lambda position: (positions[position], -position),
        )
        best_percent = positions[best] * 100 / total if total else 0.0
        next_best_percent = positions[next_best] * 100 / total if total else 0.0

        if not (best_percent > _BEST_MINIMUM_PERCENT and best_percent - next_best_percent > _BEST_LEAD_PERCENT):
            logger.debug(
                "Section starting at %d: seam at %d in %.1f%% of cycles, runner-up %.1f%%",
                start,
                best,
                best_percent,
                next_best_percent,
            )
            return self._fail(start, FailureReason.AMBIGUOUS_PATTERN)

        self.apply_pattern_guessing_decimation(start, end, best, drop_duplicate)

        pattern = list(MATCH_TEMPLATES[best])
        if third_n_match == UseThirdNMatch.ALWAYS:
            pattern[(best + 3) % CYCLE] = "n"

        project = self.project
        for frame in range(start, end):
            symbol = pattern[frame % CYCLE]
            if (
                third_n_match == UseThirdNMatch.IF_PRETTIER
                and symbol == "c"
                and pattern[(frame + 1) % CYCLE] == "n"
            ):
                mics = project.get_mics(frame)
                symbol = "n" if mics[_N] < mics[_C] else "c"
            project.set_match(frame, symbol)
        self._fix_last_frame(end)
        return self._succeed(start)

    # Decimation -----------------------------------------------------------

    def apply_pattern_guessing_decimation(
        self,
        section_start: int,
        section_end: int,
        first_duplicate: int,
        drop_duplicate: DropDuplicate,
    ) -> None:
        """
        Decimate one of the two duplicates ``first_duplicate`` and ``first_duplicate + 1`` in every cycle.

        Marks inside ``section_start..section_end - 1`` are replaced; marks of
        neighbouring sections sharing a boundary cycle are left alone.
        """

        project = self.project
        num_frames = project.num_frames()

        # The duplicates straddle two cycles, so per-cycle comparisons make no sense.
        if drop_duplicate == DropDuplicate.UGLIER_PER_CYCLE and first_duplicate == 4:
            drop_duplicate = DropDuplicate.UGLIER_PER_SECTION

        section_drop: Optional[int] = None
        if drop_duplicate == DropDuplicate.UGLIER_PER_SECTION:
            drop_n = drop_c = 0
            for frame in range(section_start, min(section_end, num_frames - 1)):
                if frame % CYCLE != first_duplicate:
                    continue
                if project.get_mics(frame)[_N] > project.get_mics(frame + 1)[_C]:
                    drop_n += 1
                else:
                    drop_c += 1
            section_drop = first_duplicate if drop_n > drop_c else (first_duplicate + 1) % CYCLE
        elif drop_duplicate == DropDuplicate.FIRST:
            section_drop = first_duplicate
        elif drop_duplicate == DropDuplicate.SECOND:
            section_drop = (first_duplicate + 1) % CYCLE

        first_cycle = section_start // CYCLE
        last_cycle = (section_end - 1) // CYCLE
        for cycle in range(first_cycle, last_cycle + 1):
            cycle_start = cycle * CYCLE
            project.decimation.clear_range(max(section_start, cycle_start), min(section_end, cycle_start + CYCLE))

            drop = section_drop
            if drop_duplicate == DropDuplicate.UGLIER_PER_CYCLE:
                drop = self._uglier_in_cycle(cycle, first_cycle, last_cycle, section_start, section_end, first_duplicate)
                if drop is None:
                    continue

            drop_frame = cycle_start + drop
            if section_start <= drop_frame < section_end:
                project.decimation.add(drop_frame)

    def _uglier_in_cycle(
        self,
        cycle: int,
        first_cycle: int,
        last_cycle: int,
        section_start: int,
        section_end: int,
        first_duplicate: int,
    ) -> Optional[int]:
        # Partial cycles at the section edges only hold one of the duplicates, or none.
        if cycle == first_cycle:
            if section_start % CYCLE > first_duplicate + 1:
                return None
            if section_start % CYCLE > first_duplicate:
                return first_duplicate + 1
        elif cycle == last_cycle:
            if (section_end - 1) % CYCLE < first_duplicate:
                return None
            if (section_end - 1) % CYCLE < first_duplicate + 1:
                return first_duplicate

        first = cycle * CYCLE + first_duplicate
        if first + 1 >= self.project.num_frames():
            return first_duplicate
        if self.project.get_mics(first)[_N] > self.project.get_mics(first + 1)[_C]:
            return first_duplicate
        return first_duplicate + 1

    # Whole project --------------------------------------------------------

    def guess_project_patterns_from_mics(
        self,
        minimum_length: int,
        use_patterns: Patterns = Patterns.all(),
        drop_duplicate: DropDuplicate = DropDuplicate.FIRST,
    ) -> int:
        """Guess every section from mics; return the number of sections that failed."""

        guessing = self.project.pattern_guessing
        guessing.failures.clear()
        for section in list(self.project.sections):
            self.guess_section_patterns_from_mics(section.start, minimum_length, use_patterns, drop_duplicate)

        guessing.method = GuessingMethod.FROM_MICS
        guessing.minimum_length = minimum_length
        guessing.use_patterns = use_patterns
        guessing.decimation = drop_duplicate
        return self._summarize()

    def guess_project_patterns_from_matches(
        self,
        minimum_length: int,
        third_n_match: UseThirdNMatch = UseThirdNMatch.NEVER,
        drop_duplicate: DropDuplicate = DropDuplicate.FIRST,
    ) -> int:
        """Guess every section from the detected matches; return the number of sections that failed."""

        guessing = self.project.pattern_guessing
        guessing.failures.clear()
        for section in list(self.project.sections):
            self.guess_section_patterns_from_matches(section.start, minimum_length, third_n_match, drop_duplicate)

        guessing.method = GuessingMethod.FROM_MATCHES
        guessing.minimum_length = minimum_length
        guessing.third_n_match = third_n_match
        guessing.decimation = drop_duplicate
        return self._summarize()

    def _summarize(self) -> int:
        failures = len(self.project.pattern_guessing.failures)
        logger.info(
            "Pattern guessing finished: %d of %d sections failed",
            failures,
            len(self.project.sections),
        )
        return failures
