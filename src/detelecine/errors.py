"""Exception hierarchy for the project model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

__all__ = [
    "ProjectError",
    "RangeError",
    "InvalidNameError",
    "ReferentialError",
    "FormatError",
]


class ProjectError(RuntimeError):
    """Base class for all project model failures."""


@dataclass(eq=False)
class RangeError(ProjectError):
    """Raised when a frame, index or range falls outside its bounds or overlaps another range."""

    action: str
    first: int
    last: Optional[int] = None
    problem: str = "value out of range"

    def __str__(self) -> str:
        if self.last is None:
            where = str(self.first)
        else:
            where = f"({self.first},{self.last})"
        return f"Can't {self.action} {where}: {self.problem}."


@dataclass(eq=False)
class InvalidNameError(ProjectError):
    """Raised when a name is not identifier-safe or is already taken."""

    action: str
    name: str
    problem: str = (
        "name is invalid. Use only letters, numbers, and the underscore character. "
        "The first character cannot be a number"
    )

    def __str__(self) -> str:
        return f"Can't {self.action} '{self.name}': {self.problem}."


@dataclass(eq=False)
class ReferentialError(ProjectError):
    """Raised when an operation references a preset, section or list that does not exist."""

    action: str
    name: str
    problem: str = "no such item"

    def __str__(self) -> str:
        return f"Can't {self.action} '{self.name}': {self.problem}."


@dataclass(eq=False)
class FormatError(ProjectError):
    """Raised when a persisted project document is malformed or incomplete."""

    path: str
    problem: str

    def __str__(self) -> str:
        return f"Couldn't open project file '{self.path}': {self.problem}."
