"""Reading and writing projects as JSON documents."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence, Tuple, Union

from .datatypes import (
    DropDuplicate,
    FailureReason,
    GuessingMethod,
    Patterns,
    Position,
    UseThirdNMatch,
)
from .errors import FormatError, ProjectError
from .project import Project

logger = logging.getLogger(__name__)

__all__ = [
    "PROJECT_FORMAT_VERSION",
    "REQUIRED_KEYS",
    "project_to_json",
    "project_from_json",
    "read_project",
    "write_project",
]

PROJECT_FORMAT_VERSION = 1

REQUIRED_KEYS: Tuple[str, ...] = (
    "input file",
    "input frame rate",
    "input resolution",
    "trim",
    "source filter",
)

PathLike = Union[str, os.PathLike]


def project_to_json(project: Project) -> Dict[str, Any]:
    """
    Build the JSON-compatible document describing *project*.

    Interactive-only state (user interface, presets, frozen frames, custom
    lists and output settings) is written only for interactive projects;
    crop, resize and bit depth appear only while enabled.
    """

    num_frames = project.num_frames()
    document: Dict[str, Any] = {
        "project format version": PROJECT_FORMAT_VERSION,
        "input file": project.input_file,
        "input frame rate": [project.fps_num, project.fps_den],
        "input resolution": [project.width, project.height],
        "trim": [[trim.first, trim.last] for trim in project.trims],
        "source filter": project.source_filter,
        "vfm parameters": dict(project.vfm_parameters),
        "vdecimate parameters": dict(project.vdecimate_parameters),
        "mics": [list(project.get_mics(frame)) for frame in range(num_frames)] if project.has_mics() else [],
        "matches": (
            list(project.matches.matches())
            if project.matches.has_matches() or project.matches.has_original_matches()
            else []
        ),
        "original matches": (
            list(project.matches.original_matches()) if project.matches.has_original_matches() else []
        ),
        "combed frames": list(project.combed_frames),
        "decimated frames": list(project.decimation.dropped_frames()),
        "decimate metrics": (
            [project.get_decimate_metric(frame) for frame in range(num_frames)]
            if project.has_decimate_metrics()
            else []
        ),
        "sections": [{"start": section.start, "presets": list(section.presets)} for section in project.sections],
        "interlaced fades": [
            {"frame": fade.frame, "field difference": fade.field_difference} for fade in project.interlaced_fades
        ],
    }

    if not project.interactive:
        return document

    ui = project.ui
    guessing = project.pattern_guessing
    document["user interface"] = {
        "zoom": ui.zoom,
        "last visited frame": ui.last_visited_frame,
        "geometry": ui.geometry,
        "state": ui.state,
        "shown frame rates": list(ui.shown_frame_rates),
        "mic search minimum": ui.mic_search_minimum,
        "c match sequences minimum": ui.c_match_sequences_minimum,
        "bookmarks": [
            {"frame": bookmark.frame, "description": bookmark.description} for bookmark in project.bookmarks
        ],
        "pattern guessing": {
            "method": guessing.method.value,
            "minimum length": guessing.minimum_length,
            "use third n match": guessing.third_n_match.value,
            "decimate": guessing.decimation.value,
            "use patterns": int(guessing.use_patterns),
            "failures": [
                {"start": start, "reason": reason.value} for start, reason in sorted(guessing.failures.items())
            ],
        },
    }
    document["presets"] = [{"name": preset.name, "contents": preset.contents} for preset in project.presets]
    document["frozen frames"] = [
        [freeze.first, freeze.last, freeze.replacement] for freeze in project.frozen_frames
    ]
    document["custom lists"] = [
        {
            "name": custom_list.name,
            "preset": custom_list.preset,
            "position": custom_list.position.value,
            "frames": [[frame_range.first, frame_range.last] for frame_range in custom_list.ranges],
        }
        for custom_list in project.custom_lists
    ]
    if project.resize.enabled:
        document["resize"] = {
            "width": project.resize.width,
            "height": project.resize.height,
            "filter": project.resize.filter,
        }
    if project.crop.enabled:
        document["crop"] = {
            "early": project.crop.early,
            "left": project.crop.left,
            "top": project.crop.top,
            "right": project.crop.right,
            "bottom": project.crop.bottom,
        }
    if project.depth.enabled:
        document["depth"] = {
            "bits": project.depth.bits,
            "float samples": project.depth.float_samples,
            "dither": project.depth.dither,
        }
    return document


def _pair(value: Any, key: str) -> Tuple[int, int]:
    if not isinstance(value, Sequence) or isinstance(value, str) or len(value) != 2:
        raise ValueError(f"'{key}' must be a list of two numbers")
    return int(value[0]), int(value[1])


def _table(document: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = document.get(key, {})
    if not isinstance(value, Mapping):
        raise ValueError(f"'{key}' must be a JSON object")
    return value


def _array(document: Mapping[str, Any], key: str) -> List[Any]:
    value = document.get(key, [])
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a JSON array")
    return value


def _position(value: Any) -> Position:
    if isinstance(value, bool):
        raise ValueError(f"invalid custom list position {value!r}")
    if isinstance(value, (int, float)):
        return Position.from_order(int(value))
    return Position(value)


def project_from_json(document: Any, path: PathLike = "<memory>") -> Project:
    """
    Rebuild a project from a parsed JSON document.

    Missing optional keys take their defaults. Anything else that is wrong
    with the document, including values the model rejects, is reported as a
    :class:`FormatError` naming *path*.
    """

    if not isinstance(document, Mapping):
        raise FormatError(str(path), "file is not a valid project")
    for key in REQUIRED_KEYS:
        if key not in document:
            raise FormatError(str(path), f"project is missing JSON key '{key}'")
    try:
        return _build_project(document)
    except FormatError:
        raise
    except ProjectError as exc:
        raise FormatError(str(path), str(exc)) from exc
    except (AttributeError, KeyError, TypeError, ValueError, IndexError) as exc:
        raise FormatError(str(path), str(exc)) from exc


def _build_project(document: Mapping[str, Any]) -> Project:
    project = Project(
        input_file=str(document["input file"]),
        fps=_pair(document["input frame rate"], "input frame rate"),
        resolution=_pair(document["input resolution"], "input resolution"),
        trims=[_pair(trim, "trim") for trim in _array(document, "trim")],
        source_filter=str(document["source filter"]),
        interactive=_is_interactive(document),
    )
    num_frames = project.num_frames()

    project.vfm_parameters = {str(key): value for key, value in _table(document, "vfm parameters").items()}
    project.vdecimate_parameters = {
        str(key): value for key, value in _table(document, "vdecimate parameters").items()
    }

    for frame, mics in enumerate(_array(document, "mics")[:num_frames]):
        project.set_mics(frame, mics)

    project.matches.load(_array(document, "matches"), _array(document, "original matches"))

    for frame in _array(document, "combed frames"):
        project.add_combed_frame(int(frame))
    for frame in _array(document, "decimated frames"):
        project.add_decimated_frame(int(frame))
    for frame, metric in enumerate(_array(document, "decimate metrics")[:num_frames]):
        project.set_decimate_metric(frame, metric)

    for preset in _array(document, "presets"):
        project.presets.add(str(preset["name"]), str(preset.get("contents", "")))

    for freeze in _array(document, "frozen frames"):
        first, last, replacement = (int(value) for value in freeze)
        project.frozen_frames.add(first, last, replacement)

    for section in _array(document, "sections"):
        start = int(section["start"])
        presets = [str(name) for name in section.get("presets", [])]
        if start in project.sections:
            project.sections.set_presets(start, presets)
        else:
            project.sections.add(start, presets)

    for custom_list in _array(document, "custom lists"):
        project.custom_lists.add(
            str(custom_list["name"]),
            str(custom_list.get("preset", "")),
            _position(custom_list.get("position", Position.POST_SOURCE.value)),
        )
        name = str(custom_list["name"])
        for frame_range in custom_list.get("frames", []):
            first, last = _pair(frame_range, "frames")
            project.custom_lists.add_range(name, first, last)

    for fade in _array(document, "interlaced fades"):
        project.add_interlaced_fade(int(fade["frame"]), float(fade["field difference"]))

    _read_user_interface(project, document)
    _read_output_settings(project, document)
    return project


def _is_interactive(document: Mapping[str, Any]) -> bool:
    interactive_keys = ("user interface", "presets", "frozen frames", "custom lists")
    return any(key in document for key in interactive_keys)


def _read_user_interface(project: Project, document: Mapping[str, Any]) -> None:
    ui = _table(document, "user interface")
    project.set_zoom(int(ui.get("zoom", 1)))
    last_visited = int(ui.get("last visited frame", 0))
    if 0 <= last_visited < project.num_frames():
        project.set_last_visited_frame(last_visited)
    project.set_ui_geometry(str(ui.get("geometry", "")))
    project.set_ui_state(str(ui.get("state", "")))
    if "shown frame rates" in ui:
        project.set_shown_frame_rates(ui["shown frame rates"])
    if "mic search minimum" in ui:
        project.set_mic_search_minimum(int(ui["mic search minimum"]))
    if "c match sequences minimum" in ui:
        project.set_c_match_sequences_minimum(int(ui["c match sequences minimum"]))
    for bookmark in ui.get("bookmarks", []):
        project.bookmarks.add(int(bookmark["frame"]), str(bookmark.get("description", "")))

    # Older documents kept pattern guessing at the top level.
    guessing_json = ui.get("pattern guessing") or _table(document, "pattern guessing")
    if not guessing_json:
        return
    guessing = project.pattern_guessing
    guessing.method = GuessingMethod(guessing_json.get("method", GuessingMethod.FROM_MICS.value))
    guessing.minimum_length = int(guessing_json.get("minimum length", guessing.minimum_length))
    guessing.third_n_match = UseThirdNMatch(guessing_json.get("use third n match", UseThirdNMatch.NEVER.value))
    guessing.decimation = DropDuplicate(guessing_json.get("decimate", DropDuplicate.FIRST.value))
    guessing.use_patterns = Patterns(int(guessing_json.get("use patterns", int(Patterns.all()))))
    guessing.failures = {
        int(failure["start"]): FailureReason(failure["reason"]) for failure in guessing_json.get("failures", [])
    }


def _read_output_settings(project: Project, document: Mapping[str, Any]) -> None:
    resize = _table(document, "resize")
    if resize:
        project.set_resize(
            int(resize.get("width", project.width)),
            int(resize.get("height", project.height)),
            str(resize.get("filter", project.resize.filter)),
        )
        project.set_resize_enabled(True)

    crop = _table(document, "crop")
    if crop:
        project.set_crop(
            int(crop.get("left", 0)),
            int(crop.get("top", 0)),
            int(crop.get("right", 0)),
            int(crop.get("bottom", 0)),
        )
        project.set_crop_early(bool(crop.get("early", False)))
        project.set_crop_enabled(True)

    depth = _table(document, "depth")
    if depth:
        project.set_bit_depth(
            int(depth.get("bits", project.depth.bits)),
            bool(depth.get("float samples", False)),
            str(depth.get("dither", project.depth.dither)),
        )
        project.set_bit_depth_enabled(True)


def read_project(path: PathLike) -> Project:
    """
    Load a project file.

    Raises:
        FormatError: If the file cannot be read, is not JSON, or does not describe a valid project.
    """

    path_text = os.fspath(path)
    try:
        raw = Path(path).read_bytes()
    except OSError as exc:
        raise FormatError(path_text, exc.strerror or str(exc)) from exc
    if raw.startswith(b"\xef\xbb\xbf"):
        raw = raw[3:]
    try:
        document = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FormatError(path_text, f"file is not a valid JSON document ({exc})") from exc

    project = project_from_json(document, path_text)
    project.project_path = path_text
    logger.debug("Read project %s with %d frames", path_text, project.num_frames())
    return project


def write_project(project: Project, path: PathLike) -> None:
    """Write *project* to *path*, replacing the file atomically."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_name = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            delete=False,
            dir=str(target.parent),
            suffix=".tmp",
        ) as handle:
            temp_name = handle.name
            json.dump(project_to_json(project), handle, indent=4)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, target)
        temp_name = None
    finally:
        if temp_name and os.path.exists(temp_name):
            os.remove(temp_name)
    project.project_path = os.fspath(path)
    logger.debug("Wrote project %s", target)
