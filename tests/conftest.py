from __future__ import annotations

from typing import Callable, Sequence

import pytest
from click.testing import CliRunner

from detelecine.project import Project

ProjectFactory = Callable[..., Project]


@pytest.fixture
def make_project() -> ProjectFactory:
    """Build projects over a single trim of ``num_frames`` frames."""

    def _make(num_frames: int = 20, *, section_starts: Sequence[int] = (), interactive: bool = True) -> Project:
        project = Project(
            "/videos/episode01.m2ts",
            (30000, 1001),
            (720, 480),
            [(0, num_frames - 1)],
            "bs.VideoSource",
            interactive=interactive,
        )
        for start in section_starts:
            project.sections.add(start)
        return project

    return _make


@pytest.fixture
def project(make_project: ProjectFactory) -> Project:
    return make_project()


@pytest.fixture
def runner() -> CliRunner:
    """Provide a Click runner configured for CLI smoke tests."""

    return CliRunner()
