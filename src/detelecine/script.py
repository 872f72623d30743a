"""
Text generators consumed by the video engine: the final and preview pipeline
scripts, and v1 timecode files.

Every stage of the final script is emitted by its own function so the stage
order stays visible in :func:`generate_final_script`.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from .datatypes import CustomList, Position, Section
from .decimation import CYCLE
from .errors import ReferentialError
from .project import Project

logger = logging.getLogger(__name__)

__all__ = [
    "generate_final_script",
    "generate_preview_script",
    "generate_timecodes_v1",
    "escape_path",
]

# Indexed by the number of frames dropped per cycle.
_FRAME_RATES = ("30", "24", "18", "12", "6")
_TIMECODE_NUMERATORS = (30000, 24000, 18000, 12000, 6000)
_TIMECODE_DENOMINATOR = 1001
_DEFAULT_NUMERATOR = 24000

_PREVIEW_BORDER_COLOR = "[128, 230, 180]"


def escape_path(path: str) -> str:
    """Make *path* safe inside a single-quoted raw string literal."""

    return path.replace("'", "' r\"'\" r'")


def _header() -> str:
    return "import vapoursynth as vs\n\nc = vs.core\n\n"


def _presets(project: Project) -> str:
    script = ""
    for preset in project.presets:
        if not project.presets.is_in_use(preset.name):
            continue
        script += f"def {preset.name}(clip):\n"
        for line in preset.contents.split("\n"):
            script += f"    {line}\n"
        script += "    return clip\n\n\n"
    return script


def _source(project: Project) -> str:
    return f"src = c.{project.source_filter}(r'{escape_path(project.input_file)}')\n\n"


def _trims(project: Project) -> str:
    clips = "".join(f"src[{trim.first}:{trim.last + 1}]," for trim in project.trims)
    return f"src = c.std.Splice(clips=[{clips}])\n\n"


def _field_hint(project: Project) -> str:
    order = int(project.vfm_parameters.get("order", 1))
    return f"src = c.fh.FieldHint(clip=src, tff={order}, matches='{project.matches.matches()}')\n\n"


def _crop(project: Project) -> str:
    crop = project.crop
    return (
        f"src = c.std.Crop(clip=src, left={crop.left}, top={crop.top}, "
        f"right={crop.right}, bottom={crop.bottom})\n\n"
    )


def _show_crop(project: Project) -> str:
    crop = project.crop
    return (
        f"src = c.std.AddBorders(clip=src, left={crop.left}, top={crop.top}, "
        f"right={crop.right}, bottom={crop.bottom}, color={_PREVIEW_BORDER_COLOR})\n\n"
    )


def _merged_sections(sections: Sequence[Section]) -> List[Section]:
    merged: List[Section] = []
    for section in sections:
        if merged and merged[-1].presets == section.presets:
            continue
        merged.append(section)
    return merged


def _sections(project: Project) -> str:
    merged = _merged_sections(list(project.sections))
    script = ""
    splice = "src = c.std.Splice(mismatch=True, clips=["
    for index, section in enumerate(merged):
        name = f"section{section.start}"
        script += f"{name} = src"
        for preset in section.presets:
            script += f"\n{name} = {preset}({name})"
        end = str(merged[index + 1].start) if index + 1 < len(merged) else ""
        script += f"[{section.start}:{end}]\n"
        splice += f"{name},"
    return script + splice + "])\n\n"


def _maybe_translate(project: Project, frame: int, is_end: bool, position: Position) -> int:
    if position != Position.POST_DECIMATE:
        return frame
    if is_end:
        while frame > 0 and project.is_decimated_frame(frame):
            frame -= 1
    return project.frame_number_after_decimation(frame)


def _custom_list(project: Project, custom_list: CustomList, position: Position) -> str:
    if not custom_list.preset:
        raise ReferentialError("generate script for custom list", custom_list.name, "no preset assigned")

    def translate(frame: int, is_end: bool) -> int:
        return _maybe_translate(project, frame, is_end, position)

    list_name = f"cl_{custom_list.name}"
    script = f"{list_name} = {custom_list.preset}(src)\n"
    splice = "src = c.std.Splice(mismatch=True, clips=["

    ranges = list(custom_list.ranges)
    first = translate(ranges[0].first, False)
    if ranges[0].first > 0:
        splice += f"src[0:{first}],"
    splice += f"{list_name}[{first}:{translate(ranges[0].last, True) + 1}],"

    for previous, current in zip(ranges, ranges[1:]):
        previous_last = translate(previous.last, True)
        current_first = translate(current.first, False)
        current_last = translate(current.last, True)
        if current_first - previous_last > 1:
            splice += f"src[{previous_last + 1}:{current_first}],"
        splice += f"{list_name}[{current_first}:{current_last + 1}],"

    last_last = translate(ranges[-1].last, True)
    if last_last < translate(project.num_frames() - 1, True):
        splice += f"src[{last_last + 1}:]"

    return script + splice + "])\n\n"


def _custom_lists(project: Project, position: Position) -> str:
    return "".join(
        _custom_list(project, custom_list, position)
        for custom_list in project.custom_lists.in_position(position)
        if len(custom_list.ranges)
    )


def _freeze_frames(project: Project) -> str:
    frozen = list(project.frozen_frames)
    first = "".join(f"{freeze.first}," for freeze in frozen)
    last = "".join(f"{freeze.last}," for freeze in frozen)
    replacement = "".join(f"{freeze.replacement}," for freeze in frozen)
    return f"src = c.std.FreezeFrames(clip=src, first=[{first}], last=[{last}], replacement=[{replacement}])\n\n"


def _frame_rate_name(num_dropped: int) -> str:
    # A cycle with every frame dropped leaves nothing behind to time.
    return _FRAME_RATES[min(num_dropped, len(_FRAME_RATES) - 1)]


def _delete_frames(project: Project) -> str:
    ranges = project.decimation_ranges()
    num_frames = project.num_frames()
    script = ""
    used = sorted({_frame_rate_name(item.num_dropped) for item in ranges}, key=_FRAME_RATES.index)
    for rate in used:
        script += f"r{rate} = c.std.AssumeFPS(clip=src, fpsnum={rate}000, fpsden=1001)\n"

    script += "src = c.std.Splice(mismatch=True, clips=["
    for index, item in enumerate(ranges):
        end = ranges[index + 1].start if index + 1 < len(ranges) else num_frames
        script += f"r{_frame_rate_name(item.num_dropped)}[{item.start}:{end}],"
    script += "])\n"

    frames = "".join(f"{frame}," for frame in project.decimation.dropped_frames())
    script += f"src = c.std.DeleteFrames(clip=src, frames=[{frames}])\n\n"
    return script


def _select_every(project: Project) -> str:
    ranges = project.decimation_pattern_ranges()
    num_frames = project.num_frames()
    script = ""
    splice = "src = c.std.Splice(mismatch=True, clips=["
    for index, item in enumerate(ranges):
        end = ranges[index + 1].start if index + 1 < len(ranges) else num_frames
        if not item.dropped_offsets:
            splice += f"src[{item.start}:{end}],"
            continue
        # The last range may be shorter than a cycle; clips without frames are not allowed.
        if end - item.start <= len(item.dropped_offsets):
            break
        offsets = "".join(f"{offset}," for offset in range(CYCLE) if offset not in item.dropped_offsets)
        name = f"dec{item.start}"
        script += f"{name} = c.std.SelectEvery(clip=src[{item.start}:{end}], cycle=5, offsets=[{offsets}])\n"
        splice += f"{name},"
    return f"{script}\n{splice}])\n\n"


def _decimation(project: Project) -> str:
    delete_frames = _delete_frames(project)
    select_every = _select_every(project)
    return delete_frames if len(delete_frames) < len(select_every) else select_every


def _resize(project: Project) -> str:
    resize = project.resize
    kernel = resize.filter.capitalize()
    return f"src = c.resize.{kernel}(clip=src, width={resize.width}, height={resize.height})\n\n"


def _bit_depth(project: Project) -> str:
    depth = project.depth
    sample_type = "vs.FLOAT" if depth.float_samples else "vs.INTEGER"
    return (
        "src = c.resize.Point(clip=src, "
        f"format=src.format.replace(bits_per_sample={depth.bits}, sample_type={sample_type}), "
        f"dither_type='{depth.dither}')\n\n"
    )


def _set_output() -> str:
    return "src.set_output()\n"


def generate_final_script(project: Project) -> str:
    """
    Build the script that renders the fully processed clip.

    Raises:
        ReferentialError: If a custom list with frame ranges has no preset assigned.
    """

    crop = project.crop
    script = _header()
    script += _presets(project)
    script += _source(project)
    if crop.enabled and crop.early:
        script += _crop(project)
    script += _trims(project)
    script += _custom_lists(project, Position.POST_SOURCE)
    script += _field_hint(project)
    script += _custom_lists(project, Position.POST_FIELD_MATCH)
    script += _sections(project)
    if len(project.frozen_frames):
        script += _freeze_frames(project)
    if project.decimation.has_decimation():
        script += _decimation(project)
    script += _custom_lists(project, Position.POST_DECIMATE)
    if crop.enabled and not crop.early:
        script += _crop(project)
    if project.resize.enabled:
        script += _resize(project)
    if project.depth.enabled:
        script += _bit_depth(project)
    script += _set_output()
    logger.debug("Generated final script (%d characters)", len(script))
    return script


def generate_preview_script(project: Project, show_crop: bool = False) -> str:
    """Build the script used to inspect field matching, without sections or decimation."""

    script = _header()
    script += _source(project)
    script += _trims(project)
    script += _field_hint(project)
    if len(project.frozen_frames):
        script += _freeze_frames(project)
    if show_crop and project.crop.enabled:
        script += _crop(project)
        script += _show_crop(project)
    script += _set_output()
    return script


def generate_timecodes_v1(project: Project) -> str:
    """Describe the variable frame rate of the decimated clip as a v1 timecode file."""

    timecodes = "# timecode format v1\n"
    timecodes += f"Assume {_DEFAULT_NUMERATOR / _TIMECODE_DENOMINATOR:.12f}\n"

    ranges = project.decimation_ranges()
    num_frames = project.num_frames()
    for index, item in enumerate(ranges):
        if item.num_dropped >= len(_TIMECODE_NUMERATORS):
            continue
        numerator = _TIMECODE_NUMERATORS[item.num_dropped]
        if numerator == _DEFAULT_NUMERATOR:
            continue
        end = ranges[index + 1].start if index + 1 < len(ranges) else num_frames
        first = project.frame_number_after_decimation(item.start)
        last = project.frame_number_after_decimation(end) - 1
        timecodes += f"{first},{last},{numerator / _TIMECODE_DENOMINATOR:.12f}\n"
    return timecodes
