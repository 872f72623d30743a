"""
Collections of project entities that enforce their own invariants.

Every registry validates before it mutates, so a rejected call leaves it
unchanged. Registries announce successful changes to subscribed listeners,
which lets a presentation layer stay in sync without the model knowing about it.
"""

from __future__ import annotations

import keyword
from bisect import bisect_left, bisect_right, insort
from dataclasses import dataclass
from typing import (
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Protocol,
    Sequence,
    Union,
)

from .datatypes import (
    Bookmark,
    CustomList,
    FrameRange,
    FreezeFrame,
    InterlacedFade,
    Position,
    Preset,
    Section,
)
from .errors import InvalidNameError, RangeError, ReferentialError
from .ranges import RangeMap

__all__ = [
    "DEFAULT_PRESET_CONTENTS",
    "Change",
    "ChangeListener",
    "PresetReferrer",
    "is_name_safe_for_python",
    "SectionRegistry",
    "CustomListRegistry",
    "FreezeFrameRegistry",
    "PresetRegistry",
    "BookmarkRegistry",
    "CombedFrameRegistry",
    "InterlacedFadeRegistry",
]

DEFAULT_PRESET_CONTENTS = (
    "# The preset is a Python function. It takes a single parameter, called 'clip'.\n"
    "# Filter that and assign the result to the same variable.\n"
    "# The VapourSynth core object is called 'c'.\n"
)

ListKey = Union[int, str]


def is_name_safe_for_python(name: str) -> bool:
    """Return ``True`` when *name* can be used as a Python function or variable name."""

    if not name or keyword.iskeyword(name):
        return False
    for index, char in enumerate(name):
        if char == "_" or ("a" <= char <= "z") or ("A" <= char <= "Z"):
            continue
        if index and "0" <= char <= "9":
            continue
        return False
    return True


@dataclass(frozen=True)
class Change:
    """Notification describing one successful mutation."""

    registry: str
    kind: str
    key: object


ChangeListener = Callable[[Change], None]


class _Observable:
    _registry_name = ""

    def __init__(self) -> None:
        self._listeners: List[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register *listener* and return a callable that unregisters it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, kind: str, key: object) -> None:
        change = Change(self._registry_name, kind, key)
        for listener in list(self._listeners):
            listener(change)


class PresetReferrer(Protocol):
    """Registry holding references to presets by name."""

    def references_preset(self, name: str) -> bool: ...

    def rename_preset_references(self, old_name: str, new_name: str) -> None: ...

    def clear_preset_references(self, name: str) -> None: ...


PresetExists = Callable[[str], bool]


class SectionRegistry(_Observable):
    """Sections keyed by start frame; the section starting at frame 0 always exists."""

    _registry_name = "sections"

    def __init__(self, num_frames: int, preset_exists: PresetExists) -> None:
        super().__init__()
        self._num_frames = num_frames
        self._preset_exists = preset_exists
        self._starts: List[int] = [0]
        self._sections: Dict[int, Section] = {0: Section(start=0)}

    def __len__(self) -> int:
        return len(self._starts)

    def __iter__(self) -> Iterator[Section]:
        return (self._sections[start] for start in self._starts)

    def __contains__(self, start: object) -> bool:
        return start in self._sections

    def get(self, start: int) -> Section:
        try:
            return self._sections[start]
        except KeyError:
            raise ReferentialError("find section starting at", str(start), "no such section") from None

    def _check_presets(self, action: str, presets: Iterable[str]) -> None:
        for name in presets:
            if not self._preset_exists(name):
                raise ReferentialError(action, name, "no such preset")

    def add(self, start: int, presets: Sequence[str] = ()) -> Section:
        if start < 0 or start >= self._num_frames:
            raise RangeError("add section starting at", start)
        if start in self._sections:
            raise RangeError("add section starting at", start, problem="a section already starts there")
        self._check_presets(f"add section starting at {start} with preset", presets)
        section = Section(start=start, presets=list(presets))
        insort(self._starts, start)
        self._sections[start] = section
        self._notify("added", start)
        return section

    def delete(self, start: int) -> None:
        """Remove a section, merging its frames into the preceding one."""

        if start == 0:
            raise RangeError("delete section starting at", start, problem="the first section can't be deleted")
        if start not in self._sections:
            raise ReferentialError("delete section starting at", str(start), "no such section")
        del self._sections[start]
        del self._starts[bisect_left(self._starts, start)]
        self._notify("removed", start)

    def find(self, frame: int) -> Section:
        """Return the section containing *frame*."""

        if frame < 0 or frame >= self._num_frames:
            raise RangeError("find the section of frame", frame)
        return self._sections[self._starts[bisect_right(self._starts, frame) - 1]]

    def find_next(self, frame: int) -> Optional[Section]:
        """Return the first section starting after *frame*, if any."""

        index = bisect_right(self._starts, frame)
        if index == len(self._starts):
            return None
        return self._sections[self._starts[index]]

    def end(self, frame: int) -> int:
        """Return the exclusive end frame of the section containing *frame*."""

        following = self.find_next(frame)
        return following.start if following is not None else self._num_frames

    def is_last(self, start: int) -> bool:
        return self.find_next(start) is None

    def append_preset(self, start: int, preset_name: str) -> None:
        section = self.get(start)
        self._check_presets(f"assign to section starting at {start} preset", [preset_name])
        section.presets.append(preset_name)
        self._notify("changed", start)

    def set_presets(self, start: int, preset_names: Sequence[str]) -> None:
        section = self.get(start)
        self._check_presets(f"assign to section starting at {start} preset", preset_names)
        section.presets = list(preset_names)
        self._notify("changed", start)

    def set_preset_name(self, start: int, index: int, preset_name: str) -> None:
        section = self.get(start)
        self._check_index(section, index)
        self._check_presets(f"assign to section starting at {start} preset", [preset_name])
        section.presets[index] = preset_name
        self._notify("changed", start)

    def delete_preset(self, start: int, index: int) -> None:
        section = self.get(start)
        self._check_index(section, index)
        del section.presets[index]
        self._notify("changed", start)

    def move_preset_up(self, start: int, index: int) -> None:
        section = self.get(start)
        self._check_index(section, index)
        if index == 0:
            return
        presets = section.presets
        presets[index - 1], presets[index] = presets[index], presets[index - 1]
        self._notify("changed", start)

    def move_preset_down(self, start: int, index: int) -> None:
        section = self.get(start)
        self._check_index(section, index)
        presets = section.presets
        if index == len(presets) - 1:
            return
        presets[index], presets[index + 1] = presets[index + 1], presets[index]
        self._notify("changed", start)

    @staticmethod
    def _check_index(section: Section, index: int) -> None:
        if index < 0 or index >= len(section.presets):
            raise RangeError(f"use preset index of section starting at {section.start}:", index)

    def references_preset(self, name: str) -> bool:
        return any(name in section.presets for section in self)

    def rename_preset_references(self, old_name: str, new_name: str) -> None:
        for section in self:
            if old_name in section.presets:
                section.presets = [new_name if preset == old_name else preset for preset in section.presets]
                self._notify("changed", section.start)

    def clear_preset_references(self, name: str) -> None:
        for section in self:
            if name in section.presets:
                section.presets = [preset for preset in section.presets if preset != name]
                self._notify("changed", section.start)


class CustomListRegistry(_Observable):
    """User-ordered custom lists, addressed by index or by name."""

    _registry_name = "custom lists"

    def __init__(self, num_frames: int, preset_exists: PresetExists) -> None:
        super().__init__()
        self._num_frames = num_frames
        self._preset_exists = preset_exists
        self._lists: List[CustomList] = []

    def __len__(self) -> int:
        return len(self._lists)

    def __iter__(self) -> Iterator[CustomList]:
        return iter(list(self._lists))

    def __contains__(self, name: object) -> bool:
        return any(custom_list.name == name for custom_list in self._lists)

    def index_of(self, key: ListKey) -> int:
        if isinstance(key, int):
            if key < 0 or key >= len(self._lists):
                raise RangeError("find custom list with index", key, problem="index out of range")
            return key
        for index, custom_list in enumerate(self._lists):
            if custom_list.name == key:
                return index
        raise ReferentialError("find custom list", key, "no such list")

    def get(self, key: ListKey) -> CustomList:
        return self._lists[self.index_of(key)]

    def in_position(self, position: Position) -> List[CustomList]:
        return [custom_list for custom_list in self._lists if custom_list.position == position]

    def add(
        self,
        name: str,
        preset: str = "",
        position: Union[Position, int, str] = Position.POST_SOURCE,
        ranges: Iterable[FrameRange] = (),
    ) -> CustomList:
        action = "add custom list"
        position = _coerce_position(position, action, name)
        if not is_name_safe_for_python(name):
            raise InvalidNameError(action, name)
        if name in self:
            raise InvalidNameError(action, name, "a list with this name already exists")
        if preset and not self._preset_exists(preset):
            raise ReferentialError(f"add custom list '{name}' with preset", preset, "no such preset")
        range_map: RangeMap[FrameRange] = RangeMap()
        for frame_range in ranges:
            self._check_range(name, frame_range.first, frame_range.last)
            range_map.insert(frame_range)
        custom_list = CustomList(name=name, preset=preset, position=position, ranges=range_map)
        self._lists.append(custom_list)
        self._notify("added", name)
        return custom_list

    def rename(self, key: ListKey, new_name: str) -> None:
        index = self.index_of(key)
        old_name = self._lists[index].name
        if old_name == new_name:
            return
        action = f"rename custom list '{old_name}' to"
        if new_name in self:
            raise InvalidNameError(action, new_name, "new name is already in use")
        if not is_name_safe_for_python(new_name):
            raise InvalidNameError(action, new_name)
        self._lists[index].name = new_name
        self._notify("changed", new_name)

    def delete(self, key: ListKey) -> None:
        index = self.index_of(key)
        removed = self._lists.pop(index)
        self._notify("removed", removed.name)

    def move_up(self, key: ListKey) -> None:
        index = self.index_of(key)
        if index == 0:
            return
        self._lists[index - 1], self._lists[index] = self._lists[index], self._lists[index - 1]
        self._notify("moved", self._lists[index - 1].name)

    def move_down(self, key: ListKey) -> None:
        index = self.index_of(key)
        if index == len(self._lists) - 1:
            return
        self._lists[index], self._lists[index + 1] = self._lists[index + 1], self._lists[index]
        self._notify("moved", self._lists[index + 1].name)

    def set_preset(self, key: ListKey, preset: str) -> None:
        custom_list = self.get(key)
        if preset and not self._preset_exists(preset):
            raise ReferentialError(f"assign to custom list '{custom_list.name}' preset", preset, "no such preset")
        custom_list.preset = preset
        self._notify("changed", custom_list.name)

    def set_position(self, key: ListKey, position: Union[Position, int, str]) -> None:
        custom_list = self.get(key)
        custom_list.position = _coerce_position(position, "move custom list", custom_list.name)
        self._notify("changed", custom_list.name)

    def _check_range(self, name: str, first: int, last: int) -> None:
        if first < 0 or first >= self._num_frames or last < 0 or last >= self._num_frames:
            raise RangeError(f"add to custom list '{name}' range", first, last)

    def add_range(self, key: ListKey, first: int, last: int) -> None:
        custom_list = self.get(key)
        if first > last:
            first, last = last, first
        self._check_range(custom_list.name, first, last)
        custom_list.ranges.insert(FrameRange(first, last))
        self._notify("changed", custom_list.name)

    def delete_range(self, key: ListKey, first: int) -> None:
        custom_list = self.get(key)
        if not custom_list.ranges.erase(first):
            raise RangeError(
                f"delete from custom list '{custom_list.name}' range starting at",
                first,
                problem="no such range",
            )
        self._notify("changed", custom_list.name)

    def find_range(self, key: ListKey, frame: int) -> Optional[FrameRange]:
        return self.get(key).ranges.find(frame)

    def references_preset(self, name: str) -> bool:
        return any(custom_list.preset == name for custom_list in self._lists)

    def rename_preset_references(self, old_name: str, new_name: str) -> None:
        for custom_list in self._lists:
            if custom_list.preset == old_name:
                custom_list.preset = new_name
                self._notify("changed", custom_list.name)

    def clear_preset_references(self, name: str) -> None:
        for custom_list in self._lists:
            if custom_list.preset == name:
                custom_list.preset = ""
                self._notify("changed", custom_list.name)


def _coerce_position(position: Union[Position, int, str], action: str, name: str) -> Position:
    if isinstance(position, Position):
        return position
    if isinstance(position, int):
        return Position.from_order(position)
    try:
        return Position(position)
    except ValueError:
        raise InvalidNameError(action, name, f"unknown filter chain position {position!r}") from None


class FreezeFrameRegistry(_Observable):
    """Non-overlapping freeze frames keyed by their first frame."""

    _registry_name = "frozen frames"

    def __init__(self, num_frames: int) -> None:
        super().__init__()
        self._num_frames = num_frames
        self._ranges: RangeMap[FreezeFrame] = RangeMap()

    def __len__(self) -> int:
        return len(self._ranges)

    def __iter__(self) -> Iterator[FreezeFrame]:
        return iter(self._ranges)

    def add(self, first: int, last: int, replacement: int) -> FreezeFrame:
        if first > last:
            first, last = last, first
        limit = self._num_frames
        if not (0 <= first < limit and 0 <= last < limit and 0 <= replacement < limit):
            raise RangeError("add freeze frame", first, last, f"values out of range (replacement {replacement})")
        freeze_frame = FreezeFrame(first=first, last=last, replacement=replacement)
        self._ranges.insert(freeze_frame)
        self._notify("added", first)
        return freeze_frame

    def delete(self, first: int) -> None:
        if not self._ranges.erase(first):
            raise RangeError("delete freeze frame starting at", first, problem="no such freeze frame")
        self._notify("removed", first)

    def find(self, frame: int) -> Optional[FreezeFrame]:
        return self._ranges.find(frame)


class PresetRegistry(_Observable):
    """Presets keyed by name; renames and deletions cascade into every referrer."""

    _registry_name = "presets"

    def __init__(self) -> None:
        super().__init__()
        self._presets: Dict[str, Preset] = {}
        self._referrers: List[PresetReferrer] = []

    def attach_referrer(self, referrer: PresetReferrer) -> None:
        self._referrers.append(referrer)

    def __len__(self) -> int:
        return len(self._presets)

    def __iter__(self) -> Iterator[Preset]:
        return (self._presets[name] for name in sorted(self._presets))

    def __contains__(self, name: object) -> bool:
        return name in self._presets

    def names(self) -> List[str]:
        return sorted(self._presets)

    def _get(self, action: str, name: str) -> Preset:
        try:
            return self._presets[name]
        except KeyError:
            raise ReferentialError(action, name, "no such preset") from None

    def add(self, name: str, contents: Optional[str] = None) -> Preset:
        if not is_name_safe_for_python(name):
            raise InvalidNameError("add preset", name)
        if name in self._presets:
            raise InvalidNameError("add preset", name, "a preset with this name already exists")
        preset = Preset(name=name, contents=DEFAULT_PRESET_CONTENTS if contents is None else contents)
        self._presets[name] = preset
        self._notify("added", name)
        return preset

    def rename(self, old_name: str, new_name: str) -> None:
        if old_name == new_name:
            return
        action = f"rename preset '{old_name}' to"
        preset = self._get(action, old_name)
        if not is_name_safe_for_python(new_name):
            raise InvalidNameError(action, new_name, "new name is invalid")
        if new_name in self._presets:
            raise InvalidNameError(action, new_name, "new name is already in use")
        del self._presets[old_name]
        preset.name = new_name
        self._presets[new_name] = preset
        for referrer in self._referrers:
            referrer.rename_preset_references(old_name, new_name)
        self._notify("changed", new_name)

    def delete(self, name: str) -> None:
        self._get("delete preset", name)
        del self._presets[name]
        for referrer in self._referrers:
            referrer.clear_preset_references(name)
        self._notify("removed", name)

    def contents(self, name: str) -> str:
        return self._get("retrieve the contents of preset", name).contents

    def set_contents(self, name: str, contents: str) -> None:
        self._get("modify the contents of preset", name).contents = contents
        self._notify("changed", name)

    def is_in_use(self, name: str) -> bool:
        self._get("check if in use preset", name)
        return any(referrer.references_preset(name) for referrer in self._referrers)


class BookmarkRegistry(_Observable):
    """Annotations attached to single frames."""

    _registry_name = "bookmarks"

    def __init__(self, num_frames: int) -> None:
        super().__init__()
        self._num_frames = num_frames
        self._frames: List[int] = []
        self._bookmarks: Dict[int, Bookmark] = {}

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[Bookmark]:
        return (self._bookmarks[frame] for frame in self._frames)

    def __contains__(self, frame: object) -> bool:
        return frame in self._bookmarks

    def get(self, frame: int) -> Optional[Bookmark]:
        return self._bookmarks.get(frame)

    def add(self, frame: int, description: str = "") -> Bookmark:
        if frame < 0 or frame >= self._num_frames:
            raise RangeError("add bookmark at frame", frame)
        if frame in self._bookmarks:
            raise RangeError("add bookmark at frame", frame, problem="frame is already bookmarked")
        bookmark = Bookmark(frame=frame, description=description)
        insort(self._frames, frame)
        self._bookmarks[frame] = bookmark
        self._notify("added", frame)
        return bookmark

    def set_description(self, frame: int, description: str) -> None:
        if frame not in self._bookmarks:
            raise RangeError("describe bookmark at frame", frame, problem="no such bookmark")
        self._bookmarks[frame] = Bookmark(frame=frame, description=description)
        self._notify("changed", frame)

    def delete(self, frame: int) -> None:
        if frame not in self._bookmarks:
            raise RangeError("delete bookmark at frame", frame, problem="no such bookmark")
        del self._bookmarks[frame]
        del self._frames[bisect_left(self._frames, frame)]
        self._notify("removed", frame)

    def find_next(self, frame: int) -> Optional[Bookmark]:
        index = bisect_right(self._frames, frame)
        if index == len(self._frames):
            return None
        return self._bookmarks[self._frames[index]]

    def find_previous(self, frame: int) -> Optional[Bookmark]:
        index = bisect_left(self._frames, frame)
        if index == 0:
            return None
        return self._bookmarks[self._frames[index - 1]]


class CombedFrameRegistry(_Observable):
    """Frames the field matcher still considered combed."""

    _registry_name = "combed frames"

    def __init__(self, num_frames: int) -> None:
        super().__init__()
        self._num_frames = num_frames
        self._frames: List[int] = []

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._frames))

    def __contains__(self, frame: object) -> bool:
        if not isinstance(frame, int):
            return False
        index = bisect_left(self._frames, frame)
        return index < len(self._frames) and self._frames[index] == frame

    def add(self, frame: int) -> None:
        if frame < 0 or frame >= self._num_frames:
            raise RangeError("mark as combed frame", frame)
        if frame in self:
            return
        insort(self._frames, frame)
        self._notify("added", frame)

    def delete(self, frame: int) -> None:
        if frame not in self:
            return
        del self._frames[bisect_left(self._frames, frame)]
        self._notify("removed", frame)


class InterlacedFadeRegistry(_Observable):
    """Frames whose fields differ enough to look like an interlaced fade."""

    _registry_name = "interlaced fades"

    def __init__(self, num_frames: int) -> None:
        super().__init__()
        self._num_frames = num_frames
        self._fades: Dict[int, InterlacedFade] = {}

    def __len__(self) -> int:
        return len(self._fades)

    def __iter__(self) -> Iterator[InterlacedFade]:
        return (self._fades[frame] for frame in sorted(self._fades))

    def get(self, frame: int) -> Optional[InterlacedFade]:
        return self._fades.get(frame)

    def add(self, frame: int, field_difference: float) -> InterlacedFade:
        if frame < 0 or frame >= self._num_frames:
            raise RangeError("add interlaced fade at frame", frame)
        fade = InterlacedFade(frame=frame, field_difference=float(field_difference))
        self._fades[frame] = fade
        self._notify("added", frame)
        return fade

    def delete(self, frame: int) -> None:
        if self._fades.pop(frame, None) is not None:
            self._notify("removed", frame)
