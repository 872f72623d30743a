"""Ordered store of non-overlapping inclusive frame intervals."""

from __future__ import annotations

from bisect import bisect_left, bisect_right, insort
from typing import Dict, Generic, Iterator, List, Optional, Protocol, TypeVar

from .errors import RangeError

__all__ = ["Interval", "RangeMap"]


class Interval(Protocol):
    """Anything with an inclusive ``first``/``last`` pair of frame numbers."""

    @property
    def first(self) -> int: ...

    @property
    def last(self) -> int: ...


T = TypeVar("T", bound=Interval)


class RangeMap(Generic[T]):
    """
    Map of disjoint closed intervals keyed by their first frame.

    Lookups go through a sorted list of interval starts, so ``find`` and the
    overlap check in ``insert`` only ever inspect the neighbours of a frame.
    """

    def __init__(self) -> None:
        self._starts: List[int] = []
        self._items: Dict[int, T] = {}

    def __len__(self) -> int:
        return len(self._starts)

    def __iter__(self) -> Iterator[T]:
        return (self._items[start] for start in self._starts)

    def __contains__(self, start: object) -> bool:
        return start in self._items

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RangeMap):
            return NotImplemented
        return list(self) == list(other)

    def __repr__(self) -> str:
        return f"RangeMap({list(self)!r})"

    def get(self, start: int) -> Optional[T]:
        """Return the interval that begins exactly at *start*."""

        return self._items.get(start)

    def predecessor(self, frame: int) -> Optional[T]:
        """Return the interval with the greatest start ``<= frame``."""

        index = bisect_right(self._starts, frame)
        if index == 0:
            return None
        return self._items[self._starts[index - 1]]

    def successor(self, frame: int) -> Optional[T]:
        """Return the interval with the smallest start ``> frame``."""

        index = bisect_right(self._starts, frame)
        if index == len(self._starts):
            return None
        return self._items[self._starts[index]]

    def find(self, frame: int) -> Optional[T]:
        """Return the interval containing *frame*, or ``None``."""

        candidate = self.predecessor(frame)
        if candidate is not None and candidate.first <= frame <= candidate.last:
            return candidate
        return None

    def overlapping(self, first: int, last: int) -> Optional[T]:
        """Return an existing interval sharing at least one frame with ``first..last``."""

        found = self.find(first)
        if found is not None:
            return found
        following = self.successor(first)
        if following is not None and following.first <= last:
            return following
        return None

    def insert(self, item: T) -> None:
        """
        Add *item* to the map.

        Raises:
            RangeError: If ``item.first > item.last`` or the interval overlaps an existing one.
        """

        if item.first > item.last:
            raise RangeError("insert range", item.first, item.last, "first frame is after last frame")
        clash = self.overlapping(item.first, item.last)
        if clash is not None:
            raise RangeError(
                "insert range",
                item.first,
                item.last,
                f"overlaps ({clash.first},{clash.last})",
            )
        insort(self._starts, item.first)
        self._items[item.first] = item

    def erase(self, start: int) -> bool:
        """Remove the interval starting at *start*; return whether one was removed."""

        if start not in self._items:
            return False
        del self._items[start]
        del self._starts[bisect_left(self._starts, start)]
        return True

    def clear(self) -> None:
        self._starts.clear()
        self._items.clear()

    def total_length(self) -> int:
        """Return the number of frames covered by all intervals."""

        return sum(item.last - item.first + 1 for item in self)
