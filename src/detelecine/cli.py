"""Command-line front end for inspecting projects and generating their outputs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, cast

import click
from rich import print
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress
from rich.table import Table

from .collector import MetricsCollector, open_metrics_clip
from .config_loader import (
    DROP_DUPLICATE_POLICIES,
    GUESSING_METHODS,
    PATTERN_FLAGS,
    THIRD_N_MATCH_POLICIES,
    ConfigError,
    drop_duplicate_policy,
    guessing_method,
    load_config,
    pattern_flags,
    third_n_match_policy,
)
from .datatypes import AppConfig, GuessingMethod, Position
from .errors import ProjectError
from .guessing import PatternGuesser
from .project import Project
from .script import generate_final_script, generate_preview_script, generate_timecodes_v1
from .serializer import read_project, write_project

logger = logging.getLogger(__name__)

_LOG_FORMAT = "[%(levelname)s] %(message)s"


class CLIAppError(RuntimeError):
    """Raised when the CLI cannot complete its work."""

    def __init__(self, message: str, *, code: int = 1, rich_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code
        self.rich_message = rich_message or message


def _as_cli_error(exc: Exception) -> CLIAppError:
    message = str(exc)
    return CLIAppError(message, rich_message=f"[red]{escape(message)}[/red]")


def _config(ctx: click.Context) -> AppConfig:
    return cast(Dict[str, Any], ctx.obj)["config"]


def _load_project(path: str) -> Project:
    try:
        return read_project(path)
    except ProjectError as exc:
        raise _as_cli_error(exc) from exc


def _emit(text: str, output: Optional[str], label: str) -> None:
    if output is None:
        click.echo(text, nl=False)
        return
    try:
        Path(output).write_text(text, encoding="utf-8")
    except OSError as exc:
        raise CLIAppError(
            f"Couldn't write {label} to '{output}': {exc.strerror}",
            rich_message=f"[red]Couldn't write {label} to '{escape(output)}': {escape(str(exc.strerror))}[/red]",
        ) from exc
    print(f"[green]Wrote {label} to[/green] {escape(output)}")


def _exit_on_error(exc: CLIAppError) -> None:
    print(exc.rich_message)
    raise click.exceptions.Exit(exc.code) from exc


@click.group()
@click.option("--config", "config_path", default=None, help="Path to a TOML configuration file.")
@click.option("--verbose", is_flag=True, help="Show debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], verbose: bool) -> None:
    """Inspect telecined video projects and produce their scripts and timecodes."""

    try:
        config = load_config(config_path)
    except ConfigError as exc:
        _exit_on_error(_as_cli_error(exc))
        return
    level = logging.DEBUG if verbose else getattr(logging, config.logging.level)
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    params_map = cast(Dict[str, Any], ctx.ensure_object(dict))
    params_map.update({"config": config, "verbose": verbose})
    ctx.obj = params_map


def _parse_pair(value: str, separator: str, param_name: str) -> Tuple[int, int]:
    first, sep, second = value.partition(separator)
    try:
        if not sep:
            raise ValueError(value)
        return int(first), int(second)
    except ValueError:
        raise click.BadParameter(
            f"expected two integers separated by '{separator}', got {value!r}",
            param_hint=param_name,
        ) from None


@main.command("new")
@click.argument("input_file")
@click.option("--frames", "num_frames", type=click.IntRange(min=1), required=True, help="Frame count of the source.")
@click.option("--output", required=True, help="Where to write the new project.")
@click.option("--fps", default="30000/1001", show_default=True, help="Source frame rate as NUM/DEN.")
@click.option("--resolution", default="720x480", show_default=True, help="Source resolution as WIDTHxHEIGHT.")
@click.option("--source-filter", default=None, help="Override [script].source_filter.")
@click.option("--batch", is_flag=True, help="Create a project without interactive state.")
@click.pass_context
def new_command(
    ctx: click.Context,
    input_file: str,
    num_frames: int,
    output: str,
    fps: str,
    resolution: str,
    source_filter: Optional[str],
    batch: bool,
) -> None:
    """Create an empty project covering every frame of INPUT_FILE."""

    fps_pair = _parse_pair(fps, "/", "--fps")
    resolution_pair = _parse_pair(resolution, "x", "--resolution")
    try:
        project = Project(
            input_file,
            fps_pair,
            resolution_pair,
            [(0, num_frames - 1)],
            source_filter or _config(ctx).script.source_filter,
            interactive=not batch,
        )
        write_project(project, output)
    except ProjectError as exc:
        _exit_on_error(_as_cli_error(exc))
        return
    except OSError as exc:
        _exit_on_error(CLIAppError(f"Couldn't write project: {exc}"))
        return
    logger.debug("Created %s with %d frames", output, num_frames)
    print(f"[green]Created project[/green] {escape(output)}")


@main.command("info")
@click.argument("project_path", type=click.Path(dir_okay=False))
def info_command(project_path: str) -> None:
    """Summarise a project: frame counts, sections, custom lists and guessing failures."""

    try:
        project = _load_project(project_path)
    except CLIAppError as exc:
        _exit_on_error(exc)
        return

    table = Table(title=escape(project.input_file), show_header=False)
    table.add_column("Property", style="dim")
    table.add_column("Value", style="bright_white")
    table.add_row("Frame rate", f"{project.fps_num}/{project.fps_den}")
    table.add_row("Resolution", f"{project.width}x{project.height}")
    table.add_row("Source filter", escape(project.source_filter))
    for position in Position:
        table.add_row(f"Frames ({position.value})", str(project.num_frames(position)))
    table.add_row("Duration", project.frame_to_time(project.num_frames()))
    table.add_row("Sections", str(len(project.sections)))
    table.add_row("Presets", str(len(project.presets)))
    table.add_row("Custom lists", str(len(project.custom_lists)))
    table.add_row("Frozen frames", str(len(project.frozen_frames)))
    table.add_row("Combed frames", str(len(project.combed_frames)))
    table.add_row("Bookmarks", str(len(project.bookmarks)))
    table.add_row("Guessing failures", str(len(project.pattern_guessing.failures)))
    Console().print(table)


def _print_failures(project: Project) -> None:
    failures = project.pattern_guessing.failures
    if not failures:
        print("[green]Patterns guessed for every section.[/green]")
        return
    table = Table(title="Pattern guessing failures")
    table.add_column("Section start", justify="right")
    table.add_column("Time")
    table.add_column("Reason")
    for start, reason in sorted(failures.items()):
        table.add_row(str(start), project.frame_to_time(start), reason.value)
    Console().print(table)


@main.command("guess")
@click.argument("project_path", type=click.Path(dir_okay=False))
@click.option("--method", type=click.Choice(sorted(GUESSING_METHODS)), default=None, help="Override [guessing].method.")
@click.option("--minimum-length", type=click.IntRange(min=1), default=None, help="Override [guessing].minimum_length.")
@click.option(
    "--third-n-match",
    type=click.Choice(list(THIRD_N_MATCH_POLICIES)),
    default=None,
    help="Override [guessing].third_n_match (used when guessing from matches).",
)
@click.option(
    "--decimation",
    type=click.Choice(list(DROP_DUPLICATE_POLICIES)),
    default=None,
    help="Override [guessing].decimation.",
)
@click.option(
    "--pattern",
    "patterns",
    type=click.Choice(list(PATTERN_FLAGS)),
    multiple=True,
    help="Candidate pattern when guessing from mics; repeat to allow several.",
)
@click.option("--output", default=None, help="Write the updated project here instead of in place.")
@click.pass_context
def guess_command(
    ctx: click.Context,
    project_path: str,
    method: Optional[str],
    minimum_length: Optional[int],
    third_n_match: Optional[str],
    decimation: Optional[str],
    patterns: Tuple[str, ...],
    output: Optional[str],
) -> None:
    """Guess match and decimation patterns for every section of a project."""

    settings = _config(ctx).guessing
    try:
        project = _load_project(project_path)
        guesser = PatternGuesser(project)
        chosen_method = guessing_method(method or settings.method)
        length = minimum_length if minimum_length is not None else settings.minimum_length
        drop = drop_duplicate_policy(decimation or settings.decimation)
        if chosen_method == GuessingMethod.FROM_MICS:
            flags = pattern_flags(patterns or settings.patterns)
            guesser.guess_project_patterns_from_mics(length, flags, drop)
        else:
            third_n = third_n_match_policy(third_n_match or settings.third_n_match)
            guesser.guess_project_patterns_from_matches(length, third_n, drop)
        write_project(project, output or project_path)
    except CLIAppError as exc:
        _exit_on_error(exc)
        return
    except (ProjectError, ConfigError) as exc:
        _exit_on_error(_as_cli_error(exc))
        return
    except OSError as exc:
        _exit_on_error(CLIAppError(f"Couldn't write project: {exc}"))
        return

    _print_failures(project)
    print(f"[green]Saved project to[/green] {escape(output or project_path)}")


@main.command("collect")
@click.argument("project_path", type=click.Path(dir_okay=False))
@click.option("--start", type=click.IntRange(min=0), default=0, show_default=True, help="First frame to collect.")
@click.option("--end", type=click.IntRange(min=0), default=None, help="Frame after the last one to collect.")
@click.option("--max-requests", type=click.IntRange(min=1), default=None, help="Override [collector].max_requests.")
@click.option("--output", default=None, help="Write the updated project here instead of in place.")
@click.pass_context
def collect_command(
    ctx: click.Context,
    project_path: str,
    start: int,
    end: Optional[int],
    max_requests: Optional[int],
    output: Optional[str],
) -> None:
    """Read mics, matches, combing and decimation metrics from the source into a project."""

    limit = max_requests if max_requests is not None else _config(ctx).collector.max_requests
    try:
        project = _load_project(project_path)
        clip = open_metrics_clip(project)
    except CLIAppError as exc:
        _exit_on_error(exc)
        return
    except Exception as exc:
        _exit_on_error(_as_cli_error(exc))
        return

    try:
        with Progress(transient=True) as progress:
            task_id = progress.add_task("Collecting metrics", total=None)

            def _advance(done: int, total: int) -> None:
                progress.update(task_id, completed=done, total=total)

            collector = MetricsCollector(project, clip, max_requests=limit, progress=_advance)
            result = collector.run(start, end)
    except Exception as exc:
        _exit_on_error(_as_cli_error(exc))
        return
    try:
        write_project(project, output or project_path)
    except OSError as exc:
        _exit_on_error(CLIAppError(f"Couldn't write project: {exc}"))
        return

    logger.debug("Collected %d of %d requested frames", result.frames_applied, result.frames_requested)
    print(f"[green]Collected metrics for[/green] {result.frames_applied} frames")
    print(f"[green]Saved project to[/green] {escape(output or project_path)}")


@main.command("script")
@click.argument("project_path", type=click.Path(dir_okay=False))
@click.option("--output", default=None, help="Write the script to this file instead of standard output.")
@click.option("--preview", is_flag=True, help="Generate the field-matching preview script instead.")
@click.pass_context
def script_command(ctx: click.Context, project_path: str, output: Optional[str], preview: bool) -> None:
    """Generate the pipeline script of a project."""

    try:
        project = _load_project(project_path)
        if preview:
            text = generate_preview_script(project, show_crop=_config(ctx).script.show_crop_in_preview)
        else:
            text = generate_final_script(project)
        _emit(text, output, "script")
    except ProjectError as exc:
        _exit_on_error(_as_cli_error(exc))
    except CLIAppError as exc:
        _exit_on_error(exc)


@main.command("timecodes")
@click.argument("project_path", type=click.Path(dir_okay=False))
@click.option("--output", default=None, help="Write the timecodes to this file instead of standard output.")
def timecodes_command(project_path: str, output: Optional[str]) -> None:
    """Generate v1 timecodes for the decimated clip."""

    try:
        project = _load_project(project_path)
        _emit(generate_timecodes_v1(project), output, "timecodes")
    except CLIAppError as exc:
        _exit_on_error(exc)


@main.command("sections")
@click.argument("project_path", type=click.Path(dir_okay=False))
def sections_command(project_path: str) -> None:
    """List the sections of a project with their extents and presets."""

    try:
        project = _load_project(project_path)
    except CLIAppError as exc:
        _exit_on_error(exc)
        return

    table = Table(title="Sections")
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")
    table.add_column("Time")
    table.add_column("Presets")
    for section in project.sections:
        table.add_row(
            str(section.start),
            str(project.section_end(section.start) - 1),
            project.frame_to_time(section.start),
            escape(", ".join(section.presets)) or "[dim]none[/dim]",
        )
    Console().print(table)


if __name__ == "__main__":  # pragma: no cover
    main()
