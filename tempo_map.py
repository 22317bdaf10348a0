#!/usr/bin/env python3
"""
Tick -> millisecond conversion from a MIDI tempo map.

Within one tempo segment the elapsed time is linear in ticks:
    (tick - segment_start_tick) * tempo_us_per_beat / ticks_per_beat / 1000
and segments add up. Times are kept as exact fractions of a millisecond.
A file without a tempo event at tick 0 plays at 120 BPM (500000 us per
quarter note) until its first tempo change.
"""

from __future__ import annotations

from bisect import bisect_right
from fractions import Fraction
from typing import Iterable, NamedTuple

from midi_parser import TempoMarker

DEFAULT_TEMPO = 500_000


class MalformedTempoMap(ValueError):
    """Tempo markers or resolution cannot describe a monotonic time axis."""


class TempoSegment(NamedTuple):
    start_tick: int
    start_ms: Fraction
    tempo: int


class TempoMap:
    """Monotonic, piecewise-linear mapping from absolute ticks to milliseconds."""

    def __init__(self, markers: Iterable[TempoMarker], ticks_per_beat: int) -> None:
        if int(ticks_per_beat) <= 0:
            raise MalformedTempoMap(f"ticks_per_beat must be >= 1, got {ticks_per_beat}")
        self.ticks_per_beat = int(ticks_per_beat)

        normalized: list[tuple[int, int]] = []
        previous_tick = 0
        for marker in markers:
            tick = int(marker.tick)
            tempo = int(marker.tempo)
            if tick < 0:
                raise MalformedTempoMap(f"Tempo marker at negative tick {tick}")
            if tick < previous_tick:
                raise MalformedTempoMap(
                    f"Tempo markers are not tick-ordered ({tick} after {previous_tick})"
                )
            if tempo <= 0:
                raise MalformedTempoMap(f"Tempo must be positive, got {tempo} at tick {tick}")
            if normalized and normalized[-1][0] == tick:
                # Last tempo event at a given tick wins.
                normalized[-1] = (tick, tempo)
            else:
                normalized.append((tick, tempo))
            previous_tick = tick

        if not normalized or normalized[0][0] != 0:
            normalized.insert(0, (0, DEFAULT_TEMPO))

        segments: list[TempoSegment] = []
        elapsed_ms = Fraction(0)
        for index, (tick, tempo) in enumerate(normalized):
            if index > 0:
                prev_tick, prev_tempo = normalized[index - 1]
                elapsed_ms += self._span_ms(tick - prev_tick, prev_tempo)
            segments.append(TempoSegment(start_tick=tick, start_ms=elapsed_ms, tempo=tempo))

        self.segments: tuple[TempoSegment, ...] = tuple(segments)
        self._starts = [segment.start_tick for segment in self.segments]

    def _span_ms(self, ticks: int, tempo: int) -> Fraction:
        return Fraction(int(ticks) * int(tempo), self.ticks_per_beat * 1000)

    def ticks_to_ms(self, tick: int) -> Fraction:
        tick = int(tick)
        if tick < 0:
            raise ValueError(f"tick must be >= 0, got {tick}")
        segment = self.segments[bisect_right(self._starts, tick) - 1]
        return segment.start_ms + self._span_ms(tick - segment.start_tick, segment.tempo)

    def __repr__(self) -> str:
        return (
            f"TempoMap(ticks_per_beat={self.ticks_per_beat}, "
            f"segments={len(self.segments)})"
        )
