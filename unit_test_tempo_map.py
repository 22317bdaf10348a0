from fractions import Fraction

import pytest

from midi_parser import TempoMarker
from tempo_map import DEFAULT_TEMPO, MalformedTempoMap, TempoMap


def test_default_tempo_without_markers():
    tempo_map = TempoMap([], ticks_per_beat=480)
    assert tempo_map.segments[0].tempo == DEFAULT_TEMPO
    assert tempo_map.ticks_to_ms(0) == 0.0
    assert tempo_map.ticks_to_ms(480) == 500.0
    assert tempo_map.ticks_to_ms(240) == 250.0


def test_tempo_changes_accumulate():
    markers = [TempoMarker(tick=0, tempo=500_000), TempoMarker(tick=960, tempo=250_000)]
    tempo_map = TempoMap(markers, ticks_per_beat=480)
    assert tempo_map.ticks_to_ms(960) == 1000.0
    assert tempo_map.ticks_to_ms(1440) == 1250.0
    assert tempo_map.ticks_to_ms(1920) == 1500.0


def test_implicit_default_before_first_marker():
    tempo_map = TempoMap([TempoMarker(tick=480, tempo=1_000_000)], ticks_per_beat=480)
    assert len(tempo_map.segments) == 2
    assert tempo_map.ticks_to_ms(480) == 500.0
    assert tempo_map.ticks_to_ms(960) == 1500.0


def test_last_marker_at_same_tick_wins():
    markers = [TempoMarker(tick=0, tempo=1_000_000), TempoMarker(tick=0, tempo=500_000)]
    tempo_map = TempoMap(markers, ticks_per_beat=96)
    assert len(tempo_map.segments) == 1
    assert tempo_map.ticks_to_ms(96) == 500.0


def test_ticks_to_ms_is_monotonic():
    markers = [
        TempoMarker(tick=0, tempo=600_000),
        TempoMarker(tick=100, tempo=300_000),
        TempoMarker(tick=250, tempo=900_000),
    ]
    tempo_map = TempoMap(markers, ticks_per_beat=120)
    times = [tempo_map.ticks_to_ms(tick) for tick in range(0, 500)]
    assert all(b > a for a, b in zip(times, times[1:]))


def test_unordered_markers_rejected():
    markers = [TempoMarker(tick=480, tempo=500_000), TempoMarker(tick=240, tempo=400_000)]
    with pytest.raises(MalformedTempoMap):
        TempoMap(markers, ticks_per_beat=480)


@pytest.mark.parametrize("ticks_per_beat", [0, -96])
def test_non_positive_resolution_rejected(ticks_per_beat):
    with pytest.raises(MalformedTempoMap):
        TempoMap([], ticks_per_beat=ticks_per_beat)


def test_non_positive_tempo_rejected():
    with pytest.raises(MalformedTempoMap):
        TempoMap([TempoMarker(tick=0, tempo=0)], ticks_per_beat=480)


def test_negative_tick_rejected():
    tempo_map = TempoMap([], ticks_per_beat=480)
    with pytest.raises(ValueError):
        tempo_map.ticks_to_ms(-1)


def test_times_are_exact():
    tempo_map = TempoMap([], ticks_per_beat=480)
    assert tempo_map.ticks_to_ms(1) == Fraction(25, 24)
    assert tempo_map.ticks_to_ms(62) - tempo_map.ticks_to_ms(14) == 50
