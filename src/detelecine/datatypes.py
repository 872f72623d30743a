"""Project entities, enumerations, and configuration dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntFlag
from typing import Dict, FrozenSet, List

from .errors import RangeError
from .ranges import RangeMap


class Position(str, Enum):
    """Stage of the filter chain a custom list or frame count refers to."""

    POST_SOURCE = "post source"
    POST_FIELD_MATCH = "post field match"
    POST_DECIMATE = "post decimate"

    @property
    def order(self) -> int:
        return _POSITION_ORDER.index(self)

    @classmethod
    def from_order(cls, order: int) -> "Position":
        if not 0 <= order < len(_POSITION_ORDER):
            raise RangeError("use filter chain position", order)
        return _POSITION_ORDER[order]


_POSITION_ORDER = (Position.POST_SOURCE, Position.POST_FIELD_MATCH, Position.POST_DECIMATE)


class UseThirdNMatch(str, Enum):
    """Whether pattern guessing from matches promotes a third ``c`` to ``n``."""

    ALWAYS = "always"
    NEVER = "never"
    IF_PRETTIER = "if it has lower mic"


class DropDuplicate(str, Enum):
    """Which of the two duplicates in each cycle pattern guessing decimates."""

    FIRST = "first duplicate"
    SECOND = "second duplicate"
    UGLIER_PER_CYCLE = "duplicate with higher mic per cycle"
    UGLIER_PER_SECTION = "duplicate with higher mic per section"


class Patterns(IntFlag):
    """Candidate match patterns considered when guessing from mics."""

    CCCNN = 1 << 0
    CCNNN = 1 << 1
    CCCCC = 1 << 2

    @classmethod
    def all(cls) -> "Patterns":
        return cls.CCCNN | cls.CCNNN | cls.CCCCC


class GuessingMethod(str, Enum):
    """Source of information used by the pattern guesser."""

    FROM_MATCHES = "from matches"
    FROM_MICS = "from mics"


class FailureReason(str, Enum):
    """Why pattern guessing gave up on a section."""

    SECTION_TOO_SHORT = "section too short"
    AMBIGUOUS_PATTERN = "ambiguous pattern"


@dataclass(frozen=True)
class FrameRange:
    """Inclusive range of source frames."""

    first: int
    last: int

    def __post_init__(self) -> None:
        if self.first > self.last:
            raise RangeError("create frame range", self.first, self.last, "first frame is after last frame")

    def __len__(self) -> int:
        return self.last - self.first + 1

    def __contains__(self, frame: object) -> bool:
        return isinstance(frame, int) and self.first <= frame <= self.last


@dataclass(frozen=True)
class FreezeFrame:
    """Frames ``first``..``last`` are all replaced by frame ``replacement``."""

    first: int
    last: int
    replacement: int


@dataclass
class Preset:
    """Named fragment of filter code applied to a clip called ``clip``."""

    name: str
    contents: str


@dataclass
class Section:
    """Run of frames starting at ``start`` sharing the same ordered presets."""

    start: int
    presets: List[str] = field(default_factory=list)


@dataclass
class CustomList:
    """Named set of frame ranges filtered with an extra preset at one chain position."""

    name: str
    preset: str = ""
    position: Position = Position.POST_SOURCE
    ranges: RangeMap[FrameRange] = field(default_factory=RangeMap)


@dataclass(frozen=True)
class Bookmark:
    frame: int
    description: str = ""


@dataclass(frozen=True)
class InterlacedFade:
    frame: int
    field_difference: float


@dataclass(frozen=True)
class DecimationRange:
    """Consecutive cycles starting at ``start`` that drop the same number of frames."""

    start: int
    num_dropped: int


@dataclass(frozen=True)
class DecimationPatternRange:
    """Consecutive cycles starting at ``start`` that drop the same in-cycle offsets."""

    start: int
    dropped_offsets: FrozenSet[int]


@dataclass
class Resize:
    enabled: bool = False
    width: int = 0
    height: int = 0
    filter: str = "spline16"


@dataclass
class Crop:
    enabled: bool = False
    early: bool = False
    left: int = 0
    top: int = 0
    right: int = 0
    bottom: int = 0


@dataclass
class Depth:
    enabled: bool = False
    bits: int = 8
    float_samples: bool = False
    dither: str = "random"


@dataclass
class PatternGuessing:
    """Parameters of the last pattern guessing run and the sections it failed on."""

    method: GuessingMethod = GuessingMethod.FROM_MICS
    minimum_length: int = 10
    third_n_match: UseThirdNMatch = UseThirdNMatch.NEVER
    decimation: DropDuplicate = DropDuplicate.FIRST
    use_patterns: Patterns = field(default_factory=Patterns.all)
    failures: Dict[int, FailureReason] = field(default_factory=dict)


@dataclass
class UIState:
    """Interactive session state persisted alongside the project."""

    zoom: int = 1
    last_visited_frame: int = 0
    geometry: str = ""
    state: str = ""
    shown_frame_rates: List[bool] = field(default_factory=lambda: [False, True, True, True, True])
    mic_search_minimum: int = 20
    c_match_sequences_minimum: int = 20


@dataclass
class GuessingConfig:
    """Default parameters for the ``guess`` command."""

    method: str = "mics"
    minimum_length: int = 10
    third_n_match: str = "never"
    decimation: str = "first"
    patterns: List[str] = field(default_factory=lambda: ["cccnn", "ccnnn", "ccccc"])


@dataclass
class ScriptConfig:
    """Defaults used when generating pipeline scripts."""

    source_filter: str = "bs.VideoSource"
    show_crop_in_preview: bool = False


@dataclass
class CollectorConfig:
    """Frame-metrics collection limits."""

    max_requests: int = 8


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class AppConfig:
    """Aggregated configuration loaded from the user-provided TOML file."""

    guessing: GuessingConfig = field(default_factory=GuessingConfig)
    script: ScriptConfig = field(default_factory=ScriptConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
