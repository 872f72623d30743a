"""Per-frame field-match decisions."""

from __future__ import annotations

from typing import Iterable, List, Sequence

from .errors import RangeError

__all__ = ["MATCH_CHARS", "MatchTrack", "match_index"]

# Order matches the layout of the five per-frame mics.
MATCH_CHARS = "pcnbu"


def match_index(match: str) -> int:
    """Return the position of *match* inside a mics tuple."""

    index = MATCH_CHARS.find(match) if len(match) == 1 else -1
    if index < 0:
        raise ValueError(f"Invalid match character {match!r}; expected one of {MATCH_CHARS!r}")
    return index


def _check_match(match: str, action: str, frame: int) -> None:
    if len(match) != 1 or match not in MATCH_CHARS:
        raise RangeError(action, frame, problem=f"invalid match {match!r}")


class MatchTrack:
    """
    Current and as-detected match symbols for every post-source frame.

    Both arrays stay empty until the first write; an empty array reads as
    ``c`` everywhere.
    """

    def __init__(self, num_frames: int) -> None:
        if num_frames < 0:
            raise RangeError("create match track with length", num_frames)
        self._num_frames = num_frames
        self._current: List[str] = []
        self._original: List[str] = []

    @property
    def num_frames(self) -> int:
        return self._num_frames

    def _check_frame(self, frame: int, action: str) -> None:
        if frame < 0 or frame >= self._num_frames:
            raise RangeError(action, frame)

    def _materialise(self, track: List[str]) -> List[str]:
        if not track:
            track.extend("c" * self._num_frames)
        return track

    def get_match(self, frame: int) -> str:
        self._check_frame(frame, "get the match of frame")
        return self._current[frame] if self._current else "c"

    def set_match(self, frame: int, match: str) -> None:
        self._check_frame(frame, "set the match of frame")
        _check_match(match, "set the match of frame", frame)
        self._materialise(self._current)[frame] = match

    def get_original_match(self, frame: int) -> str:
        self._check_frame(frame, "get the original match of frame")
        return self._original[frame] if self._original else "c"

    def set_original_match(self, frame: int, match: str) -> None:
        self._check_frame(frame, "set the original match of frame")
        _check_match(match, "set the original match of frame", frame)
        self._materialise(self._original)[frame] = match

    def has_matches(self) -> bool:
        return bool(self._current)

    def has_original_matches(self) -> bool:
        return bool(self._original)

    def matches(self) -> str:
        """Return the current matches of every frame as one string."""

        return "".join(self._current) if self._current else "c" * self._num_frames

    def original_matches(self) -> str:
        return "".join(self._original) if self._original else "c" * self._num_frames

    def load(self, matches: Iterable[str], original_matches: Iterable[str]) -> None:
        """
        Replace both tracks with persisted symbols.

        Missing trailing entries default to ``c``; surplus entries are ignored.
        When only original matches are supplied the current track starts as a copy.
        """

        current = self._padded(matches, "load matches")
        original = self._padded(original_matches, "load original matches")
        if current is None and original is not None:
            current = list(original)
        self._current = current or []
        self._original = original or []

    def _padded(self, symbols: Iterable[str], action: str) -> List[str] | None:
        values = list(symbols)[: self._num_frames]
        if not values:
            return None
        for frame, match in enumerate(values):
            if not isinstance(match, str):
                raise RangeError(action, frame, problem=f"invalid match {match!r}")
            _check_match(match, action, frame)
        values.extend("c" * (self._num_frames - len(values)))
        return values

    def cycle_match_bcn(self, frame: int) -> str:
        """Advance *frame* through n -> c -> b -> n and return the new match."""

        match = self.get_match(frame)
        last = self._num_frames - 1
        if match == "n":
            match = "c"
        elif match == "c":
            match = "n" if frame == 0 else "b"
        elif match == "b":
            match = "c" if frame == last else "n"
        self.set_match(frame, match)
        return match

    def cycle_match(self, frame: int) -> str:
        """
        Advance *frame* through u -> b -> n -> c -> p -> u and return the new match.

        ``p``/``b`` are skipped on the first frame and ``n``/``u`` on the last
        one, since those matches would reach outside the clip.
        """

        match = self.get_match(frame)
        last = self._num_frames - 1
        if match == "u":
            match = "n" if frame == 0 else "b"
        elif match == "b":
            match = "c" if frame == last else "n"
        elif match == "n":
            match = "c"
        elif match == "c":
            match = "u" if frame == 0 else "p"
        elif match == "p":
            match = "b" if frame == last else "u"
        self.set_match(frame, match)
        return match

    def reset_range(self, start: int, end: int) -> None:
        """Copy the original matches of ``start..end`` (inclusive) over the current ones."""

        if start > end:
            start, end = end, start
        if start < 0 or end >= self._num_frames:
            raise RangeError("reset the matches for range", start, end)
        original = self.original_matches()
        current = self._materialise(self._current)
        current[start : end + 1] = original[start : end + 1]

    def apply_pattern(self, start: int, end: int, pattern: Sequence[str]) -> None:
        """
        Apply *pattern* cyclically to frames ``start..end - 1``, counting from *start*.

        Frames at either edge of the clip keep their match when the pattern
        would give them one pointing outside the clip.
        """

        if not pattern:
            raise ValueError("Pattern must not be empty")
        for symbol in pattern:
            _check_match(symbol, "apply match pattern at frame", start)
        if start < 0 or end > self._num_frames or start > end:
            raise RangeError("apply match pattern to range", start, end - 1)
        last = self._num_frames - 1
        current = self._materialise(self._current)
        for offset in range(end - start):
            frame = start + offset
            symbol = pattern[offset % len(pattern)]
            if frame == 0 and symbol in "pb":
                continue
            if frame == last and symbol in "nu":
                continue
            current[frame] = symbol
