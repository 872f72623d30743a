import json
from pathlib import Path

import pytest

from detelecine.datatypes import (
    DropDuplicate,
    FailureReason,
    FrameRange,
    GuessingMethod,
    Patterns,
    Position,
)
from detelecine.errors import FormatError
from detelecine.project import Project
from detelecine.serializer import (
    PROJECT_FORMAT_VERSION,
    REQUIRED_KEYS,
    project_from_json,
    project_to_json,
    read_project,
    write_project,
)


def _minimal_document(**extra) -> dict:
    document = {
        "input file": "/videos/episode01.m2ts",
        "input frame rate": [30000, 1001],
        "input resolution": [720, 480],
        "trim": [[0, 19]],
        "source filter": "bs.VideoSource",
    }
    document.update(extra)
    return document


def _populated(project: Project) -> Project:
    project.vfm_parameters = {"order": 1, "micmatch": 1}
    project.vdecimate_parameters = {"dupthresh": 1.1}
    project.set_mics(3, [1, 2, 3, 4, 5])
    project.set_match(4, "n")
    project.set_original_match(4, "b")
    project.add_combed_frame(7)
    project.add_decimated_frame(4)
    project.add_decimated_frame(9)
    project.set_decimate_metric(2, 1234)
    project.presets.add("deblock", "clip = c.deblock.Deblock(clip)")
    project.sections.add(10, ["deblock"])
    project.custom_lists.add("fades", "deblock", Position.POST_DECIMATE, [FrameRange(2, 5)])
    project.frozen_frames.add(12, 13, 11)
    project.add_interlaced_fade(15, 0.5)
    project.bookmarks.add(8, "sign")
    project.set_zoom(2)
    project.set_last_visited_frame(11)
    project.pattern_guessing.method = GuessingMethod.FROM_MATCHES
    project.pattern_guessing.decimation = DropDuplicate.UGLIER_PER_SECTION
    project.pattern_guessing.use_patterns = Patterns.CCCNN | Patterns.CCCCC
    project.pattern_guessing.failures[10] = FailureReason.SECTION_TOO_SHORT
    project.set_crop(4, 0, 4, 0)
    project.set_crop_enabled(True)
    project.set_bit_depth(16, False, "error_diffusion")
    project.set_bit_depth_enabled(True)
    return project


def test_round_trip_through_a_file(project: Project, tmp_path: Path) -> None:
    _populated(project)
    target = tmp_path / "nested" / "episode01.json"

    write_project(project, target)
    loaded = read_project(target)

    assert loaded.project_path == str(target)
    assert project_to_json(loaded) == project_to_json(project)
    assert loaded.custom_lists.get("fades").position == Position.POST_DECIMATE
    assert loaded.pattern_guessing.failures == {10: FailureReason.SECTION_TOO_SHORT}
    assert list(tmp_path.joinpath("nested").iterdir()) == [target]


def test_document_layout(project: Project) -> None:
    _populated(project)

    document = project_to_json(project)

    assert document["project format version"] == PROJECT_FORMAT_VERSION
    assert document["decimated frames"] == [4, 9]
    assert document["sections"] == [{"start": 0, "presets": []}, {"start": 10, "presets": ["deblock"]}]
    assert document["custom lists"][0]["position"] == "post decimate"
    assert document["user interface"]["pattern guessing"]["use patterns"] == 5
    assert document["user interface"]["bookmarks"] == [{"frame": 8, "description": "sign"}]
    assert "resize" not in document
    assert document["crop"]["left"] == 4


def test_non_interactive_projects_omit_interactive_state(make_project) -> None:
    project = make_project(interactive=False)

    document = project_to_json(project)

    for key in ("user interface", "presets", "frozen frames", "custom lists"):
        assert key not in document
    assert project_from_json(document).interactive is False
    assert project_from_json(_minimal_document(presets=[])).interactive is True


@pytest.mark.parametrize("missing", REQUIRED_KEYS)
def test_missing_required_key(missing: str) -> None:
    document = _minimal_document()
    del document[missing]

    with pytest.raises(FormatError) as excinfo:
        project_from_json(document, "broken.json")

    assert missing in str(excinfo.value)
    assert str(excinfo.value).startswith("Couldn't open project file 'broken.json'")


@pytest.mark.parametrize(
    "extra",
    [
        {"input frame rate": [30000]},
        {"trim": [[0, 9], [5, 12]]},
        {"decimated frames": [25]},
        {"sections": [{"start": 5, "presets": ["missing"]}]},
        {"custom lists": [{"name": "bad name"}]},
        {"mics": [[1, 2, 3]]},
        {"matches": ["x"]},
        {"sections": "nope"},
    ],
)
def test_invalid_values_become_format_errors(extra: dict) -> None:
    with pytest.raises(FormatError):
        project_from_json(_minimal_document(**extra))


def test_current_matches_default_to_the_detected_ones() -> None:
    project = project_from_json(_minimal_document(**{"original matches": list("cccnn" * 4)}))

    assert project.matches.matches() == "cccnn" * 4
    assert project.matches.original_matches() == "cccnn" * 4


@pytest.mark.parametrize("edited", [False, True])
def test_match_state_survives_a_round_trip(make_project, tmp_path: Path, edited: bool) -> None:
    project = make_project(10)
    project.set_original_match(3, "n")
    if edited:
        project.set_match(6, "b")
    target = tmp_path / "matches.json"

    write_project(project, target)
    loaded = read_project(target)

    assert loaded.matches.matches() == project.matches.matches()
    assert loaded.matches.original_matches() == project.matches.original_matches()
    assert loaded.get_match(3) == "c"
    assert loaded.get_original_match(3) == "n"


@pytest.mark.parametrize("key", ["matches", "original matches"])
@pytest.mark.parametrize("symbol", ["cx", "", 3])
def test_malformed_match_symbols_are_rejected(key: str, symbol) -> None:
    with pytest.raises(FormatError):
        project_from_json(_minimal_document(**{key: ["c", symbol, "n"]}))


def test_alternative_layouts_are_accepted() -> None:
    document = _minimal_document(
        **{
            "custom lists": [{"name": "fades", "position": 1, "frames": [[3, 1]]}],
            "pattern guessing": {"method": "from matches", "minimum length": 25},
        }
    )

    project = project_from_json(document)

    assert project.custom_lists.get("fades").position == Position.POST_FIELD_MATCH
    assert list(project.custom_lists.get("fades").ranges) == [FrameRange(1, 3)]
    assert project.pattern_guessing.method == GuessingMethod.FROM_MATCHES
    assert project.pattern_guessing.minimum_length == 25


def test_read_project_accepts_a_byte_order_mark(tmp_path: Path) -> None:
    target = tmp_path / "bom.json"
    target.write_bytes(b"\xef\xbb\xbf" + json.dumps(_minimal_document()).encode("utf-8"))

    assert read_project(target).num_frames() == 20


@pytest.mark.parametrize("contents", [b"{not json", b"[1, 2, 3]", b"\xff\xfe"])
def test_read_project_rejects_garbage(tmp_path: Path, contents: bytes) -> None:
    target = tmp_path / "garbage.json"
    target.write_bytes(contents)

    with pytest.raises(FormatError):
        read_project(target)


def test_read_project_reports_missing_files(tmp_path: Path) -> None:
    with pytest.raises(FormatError) as excinfo:
        read_project(tmp_path / "absent.json")

    assert "absent.json" in str(excinfo.value)
