import random

import pytest

from detelecine.datatypes import DecimationPatternRange, DecimationRange
from detelecine.decimation import DecimationTrack
from detelecine.errors import RangeError


def _track(num_frames: int, *dropped: int) -> DecimationTrack:
    track = DecimationTrack(num_frames)
    for frame in dropped:
        track.add(frame)
    return track


def test_toggling_is_idempotent() -> None:
    track = DecimationTrack(12)

    assert track.add(3) is True
    assert track.add(3) is False
    assert track.num_frames_after == 11
    assert track.delete(3) is True
    assert track.delete(3) is False
    assert track.num_frames_after == 12
    with pytest.raises(RangeError):
        track.add(12)


def test_frame_number_after_decimation() -> None:
    track = _track(15, 1, 6)

    assert [track.frame_number_after_decimation(frame) for frame in range(15)] == [
        0, 1, 1, 2, 3, 4, 5, 5, 6, 7, 8, 9, 10, 11, 12,
    ]
    assert track.frame_number_after_decimation(-3) == 0
    assert track.frame_number_after_decimation(15) == track.num_frames_after == 13


def test_dropped_last_frame_maps_onto_the_previous_frame() -> None:
    track = _track(10, 9)
    assert track.frame_number_after_decimation(9) == 8

    track = _track(10, 8, 9)
    assert [track.frame_number_after_decimation(frame) for frame in (7, 8, 9)] == [7, 7, 7]


@pytest.mark.parametrize("seed", range(20))
def test_mapping_is_monotonic(seed: int) -> None:
    rng = random.Random(seed)
    num_frames = rng.randint(1, 60)
    track = _track(num_frames, *(frame for frame in range(num_frames) if rng.random() < 0.3))

    mapped = [track.frame_number_after_decimation(frame) for frame in range(-2, num_frames + 2)]

    assert track.frame_number_after_decimation(0) == 0
    assert mapped == sorted(mapped)


@pytest.mark.parametrize("toggled", [0, 3, 7, 12, 18])
def test_toggling_only_moves_later_frames(toggled: int) -> None:
    track = _track(25, 1, 6, 11, 16, 21)
    before = [track.frame_number_after_decimation(frame) for frame in range(25)]

    if track.is_decimated(toggled):
        track.delete(toggled)
    else:
        track.add(toggled)
    after = [track.frame_number_after_decimation(frame) for frame in range(25)]

    assert before[:toggled] == after[:toggled]


def test_clear_cycle_and_range() -> None:
    track = _track(15, 1, 3, 6, 11)

    track.clear_cycle(4)
    assert list(track.dropped_frames()) == [6, 11]
    assert track.num_frames_after == 13

    track.clear_range(5, 11)
    assert list(track.dropped_frames()) == [11]
    assert track.dropped_offsets(2) == frozenset({1})


def test_decimation_ranges_collapse_equal_cycles() -> None:
    track = _track(20, 1, 6, 16, 18)

    assert track.decimation_ranges() == [
        DecimationRange(start=0, num_dropped=1),
        DecimationRange(start=10, num_dropped=0),
        DecimationRange(start=15, num_dropped=2),
    ]


def test_decimation_pattern_ranges_collapse_equal_offsets() -> None:
    track = _track(20, 1, 6, 12)

    assert track.decimation_pattern_ranges() == [
        DecimationPatternRange(start=0, dropped_offsets=frozenset({1})),
        DecimationPatternRange(start=10, dropped_offsets=frozenset({2})),
        DecimationPatternRange(start=15, dropped_offsets=frozenset()),
    ]
