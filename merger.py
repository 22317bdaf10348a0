#!/usr/bin/env python3
"""
Merge per-track note events into one stream ordered by real time.

Each track is converted to milliseconds through the tempo map and the tracks
are fanned in with a k-way merge. Events at the same instant are ordered by
the tie-break policy, then pitch, then track index, so the result does not
depend on the order the tracks are supplied in.
"""

from __future__ import annotations

import enum
import heapq
from fractions import Fraction
from typing import Iterable, Iterator, Sequence

from midi_parser import NoteKind, RawNoteEvent, TimedEvent
from tempo_map import TempoMap


class TieBreak(enum.Enum):
    NOTE_OFF_FIRST = "note_off_first"
    NOTE_ON_FIRST = "note_on_first"


_KIND_PRIORITY: dict[TieBreak, dict[NoteKind, int]] = {
    TieBreak.NOTE_OFF_FIRST: {NoteKind.NOTE_OFF: 0, NoteKind.NOTE_ON: 1},
    TieBreak.NOTE_ON_FIRST: {NoteKind.NOTE_ON: 0, NoteKind.NOTE_OFF: 1},
}


def event_sort_key(
    event: TimedEvent, tie_break: TieBreak = TieBreak.NOTE_OFF_FIRST
) -> tuple[Fraction, int, int, int, int]:
    return (
        event.time_ms,
        _KIND_PRIORITY[tie_break][event.kind],
        int(event.pitch),
        int(event.track),
        int(event.velocity),
    )


def _timed_track(
    track: Sequence[RawNoteEvent], tempo_map: TempoMap, tie_break: TieBreak
) -> Iterator[TimedEvent]:
    previous_tick = 0
    timed: list[TimedEvent] = []
    for event in track:
        if int(event.tick) < previous_tick:
            raise ValueError(
                f"Track {event.track} is not tick-ordered ({event.tick} after {previous_tick})"
            )
        previous_tick = int(event.tick)
        timed.append(
            TimedEvent(
                time_ms=tempo_map.ticks_to_ms(event.tick),
                kind=event.kind,
                pitch=int(event.pitch),
                velocity=int(event.velocity),
                track=int(event.track),
            )
        )
    # Already ordered by time; this only reorders events sharing a tick.
    timed.sort(key=lambda e: event_sort_key(e, tie_break))
    return iter(timed)


def merge_tracks(
    tracks: Iterable[Sequence[RawNoteEvent]],
    tempo_map: TempoMap,
    *,
    tie_break: TieBreak = TieBreak.NOTE_OFF_FIRST,
) -> list[TimedEvent]:
    """
    Merge tick-ordered per-track events into one TimedEvent list.

    Args:
        tracks: One tick-ordered RawNoteEvent sequence per track.
        tempo_map: Resolver used to stamp events with milliseconds.
        tie_break: Which note kind goes first when events share an instant.
    """
    tie_break = TieBreak(tie_break)
    streams = [_timed_track(track, tempo_map, tie_break) for track in tracks]
    return list(heapq.merge(*streams, key=lambda e: event_sort_key(e, tie_break)))
