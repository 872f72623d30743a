from typing import List

import pytest

from detelecine.datatypes import FrameRange, FreezeFrame, Position
from detelecine.errors import InvalidNameError, RangeError, ReferentialError
from detelecine.project import Project
from detelecine.registries import (
    DEFAULT_PRESET_CONTENTS,
    Change,
    is_name_safe_for_python,
)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("deblock", True),
        ("_fix2", True),
        ("Upper_Case", True),
        ("2fix", False),
        ("", False),
        ("with-dash", False),
        ("with space", False),
        ("class", False),
        ("café", False),
    ],
)
def test_is_name_safe_for_python(name: str, expected: bool) -> None:
    assert is_name_safe_for_python(name) is expected


def test_first_section_always_exists_and_cannot_be_deleted(project: Project) -> None:
    assert [section.start for section in project.sections] == [0]

    with pytest.raises(RangeError):
        project.sections.delete(0)
    with pytest.raises(ReferentialError):
        project.sections.delete(7)

    assert len(project.sections) == 1


def test_deleting_a_section_merges_it_into_the_previous_one(project: Project) -> None:
    project.sections.add(5)
    project.sections.add(12)
    assert project.section_end(7) == 12

    project.sections.delete(12)

    assert project.find_section(15).start == 5
    assert project.section_end(7) == 20
    assert project.find_next_section(5) is None


def test_section_validation_happens_before_mutation(project: Project) -> None:
    with pytest.raises(RangeError):
        project.sections.add(20)
    with pytest.raises(ReferentialError):
        project.sections.add(5, ["missing"])
    project.sections.add(5)
    with pytest.raises(RangeError):
        project.sections.add(5)

    assert [section.start for section in project.sections] == [0, 5]
    assert project.sections.get(5).presets == []


def test_section_preset_list_editing(project: Project) -> None:
    project.presets.add("a")
    project.presets.add("b")
    project.sections.append_preset(0, "a")
    project.sections.append_preset(0, "b")
    project.sections.append_preset(0, "a")

    project.sections.move_preset_up(0, 1)
    assert project.sections.get(0).presets == ["b", "a", "a"]
    project.sections.move_preset_down(0, 0)
    assert project.sections.get(0).presets == ["a", "b", "a"]
    project.sections.delete_preset(0, 2)
    assert project.sections.get(0).presets == ["a", "b"]
    with pytest.raises(RangeError):
        project.sections.delete_preset(0, 2)


def test_deleting_a_preset_clears_every_reference(project: Project) -> None:
    project.presets.add("deblock")
    project.presets.add("sharpen")
    project.sections.add(10, ["deblock", "sharpen"])
    project.sections.set_presets(0, ["deblock"])
    project.custom_lists.add("fades", "deblock")

    assert project.presets.is_in_use("deblock")
    project.presets.delete("deblock")

    assert project.sections.get(0).presets == []
    assert project.sections.get(10).presets == ["sharpen"]
    assert project.custom_lists.get("fades").preset == ""
    assert "deblock" not in project.presets


def test_renaming_a_preset_updates_every_reference(project: Project) -> None:
    project.presets.add("old", "clip = clip")
    project.sections.set_presets(0, ["old", "old"])
    project.custom_lists.add("fades", "old")

    project.presets.rename("old", "new")

    assert project.sections.get(0).presets == ["new", "new"]
    assert project.custom_lists.get(0).preset == "new"
    assert project.presets.contents("new") == "clip = clip"
    with pytest.raises(ReferentialError):
        project.presets.contents("old")


def test_preset_names_are_validated(project: Project) -> None:
    preset = project.presets.add("filter")
    assert preset.contents == DEFAULT_PRESET_CONTENTS

    with pytest.raises(InvalidNameError):
        project.presets.add("filter")
    with pytest.raises(InvalidNameError):
        project.presets.add("9lives")
    project.presets.add("other")
    with pytest.raises(InvalidNameError):
        project.presets.rename("filter", "other")

    assert project.presets.names() == ["filter", "other"]


def test_custom_list_crud(project: Project) -> None:
    project.presets.add("fix")
    project.custom_lists.add("first", "fix")
    project.custom_lists.add("second", position=1)
    project.custom_lists.add("third", position="post decimate")

    with pytest.raises(InvalidNameError):
        project.custom_lists.add("first")
    with pytest.raises(InvalidNameError):
        project.custom_lists.add("bad name")
    with pytest.raises(ReferentialError):
        project.custom_lists.add("fourth", "missing")
    with pytest.raises(ReferentialError):
        project.custom_lists.set_preset("second", "missing")

    assert project.custom_lists.get("second").position == Position.POST_FIELD_MATCH
    assert project.custom_lists.get(2).position == Position.POST_DECIMATE

    project.custom_lists.move_up("third")
    project.custom_lists.move_down(0)
    assert [custom_list.name for custom_list in project.custom_lists] == ["third", "first", "second"]

    project.custom_lists.rename("third", "renamed")
    project.custom_lists.delete(2)
    project.custom_lists.set_position("renamed", Position.POST_SOURCE)
    assert [custom_list.name for custom_list in project.custom_lists] == ["renamed", "first"]
    assert project.custom_lists.in_position(Position.POST_SOURCE)[0].name == "renamed"


def test_custom_list_ranges(project: Project) -> None:
    project.custom_lists.add("fades")

    project.custom_lists.add_range("fades", 9, 5)
    project.custom_lists.add_range("fades", 12, 14)
    with pytest.raises(RangeError):
        project.custom_lists.add_range("fades", 8, 12)
    with pytest.raises(RangeError):
        project.custom_lists.add_range("fades", 15, 20)

    assert project.custom_lists.find_range("fades", 6) == FrameRange(5, 9)
    assert project.custom_lists.find_range("fades", 10) is None

    project.custom_lists.delete_range("fades", 5)
    assert list(project.custom_lists.get("fades").ranges) == [FrameRange(12, 14)]
    with pytest.raises(RangeError):
        project.custom_lists.delete_range("fades", 5)


def test_freeze_frames(project: Project) -> None:
    project.frozen_frames.add(8, 4, 3)

    with pytest.raises(RangeError):
        project.frozen_frames.add(6, 10, 2)
    with pytest.raises(RangeError):
        project.frozen_frames.add(10, 12, 20)

    assert project.frozen_frames.find(5) == FreezeFrame(4, 8, 3)
    project.frozen_frames.delete(4)
    assert len(project.frozen_frames) == 0
    with pytest.raises(RangeError):
        project.frozen_frames.delete(4)


def test_bookmarks(project: Project) -> None:
    project.bookmarks.add(4, "scene change")
    project.bookmarks.add(12)

    with pytest.raises(RangeError):
        project.bookmarks.add(4)
    with pytest.raises(RangeError):
        project.bookmarks.add(-1)

    assert project.bookmarks.find_next(4).frame == 12
    assert project.bookmarks.find_previous(12).description == "scene change"
    assert project.bookmarks.find_previous(4) is None

    project.bookmarks.set_description(12, "credits")
    project.bookmarks.delete(4)
    assert [(bookmark.frame, bookmark.description) for bookmark in project.bookmarks] == [(12, "credits")]


def test_listeners_hear_successful_changes_only(project: Project) -> None:
    changes: List[Change] = []
    unsubscribe = project.sections.subscribe(changes.append)
    project.presets.add("fix")

    project.sections.add(5)
    with pytest.raises(RangeError):
        project.sections.add(5)
    project.sections.append_preset(5, "fix")
    project.sections.delete(5)
    unsubscribe()
    project.sections.add(6)

    assert [(change.kind, change.key) for change in changes] == [
        ("added", 5),
        ("changed", 5),
        ("removed", 5),
    ]
    assert all(change.registry == "sections" for change in changes)


def test_preset_cascade_notifies_referrers(project: Project) -> None:
    project.presets.add("fix")
    project.custom_lists.add("fades", "fix")
    changes: List[Change] = []
    project.custom_lists.subscribe(changes.append)

    project.presets.delete("fix")

    assert changes == [Change("custom lists", "changed", "fades")]
