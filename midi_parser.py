#!/usr/bin/env python3
"""
MIDI decoder for the performance tokenizer.

What this file does:
1. Loads a MIDI file with `mido`.
2. Walks every track separately, keeping absolute MIDI ticks per track.
3. Collects `set_tempo` meta events (from any track) as tempo markers.
4. Extracts note-on / note-off records per track. Everything else is ignored.

Nothing here converts ticks to real time; see `tempo_map.py` and `merger.py`.
"""

from __future__ import annotations

import argparse
import enum
import json
from dataclasses import asdict, dataclass
from fractions import Fraction
from pathlib import Path

try:
    import mido
except ModuleNotFoundError:
    mido = None


DRUM_CHANNEL = 9


class UnsupportedMidiFile(ValueError):
    """The MIDI container uses a layout this decoder does not handle."""


class NoteKind(enum.Enum):
    NOTE_ON = "note_on"
    NOTE_OFF = "note_off"


@dataclass(frozen=True, slots=True)
class TempoMarker:
    """Tempo change (microseconds per quarter note) at an absolute tick."""

    tick: int
    tempo: int


@dataclass(frozen=True, slots=True)
class RawNoteEvent:
    """A note-on or note-off with absolute time in MIDI ticks."""

    tick: int
    track: int
    kind: NoteKind
    pitch: int
    velocity: int


@dataclass(frozen=True, slots=True)
class TimedEvent:
    """A note-on or note-off with absolute time in milliseconds."""

    time_ms: Fraction
    kind: NoteKind
    pitch: int
    velocity: int
    track: int = 0


@dataclass(frozen=True, slots=True)
class DecodedMidi:
    ticks_per_beat: int
    tempo_markers: list[TempoMarker]
    tracks: list[list[RawNoteEvent]]

    @property
    def note_count(self) -> int:
        return sum(len(track) for track in self.tracks)


def _require_mido() -> None:
    if mido is None:
        raise ModuleNotFoundError(
            "mido is required for MIDI parsing. Install it with: pip install mido"
        )


def decode_midi(midi: "mido.MidiFile", *, ignore_drums: bool = False) -> DecodedMidi:
    """
    Decode a loaded MIDI file into tempo markers and per-track note events.

    Args:
        midi: A `mido.MidiFile`.
        ignore_drums: If True, drop channel 10 (index 9) note events.
    """
    if int(midi.type) == 2:
        raise UnsupportedMidiFile("Sequential (type 2) MIDI files are not supported")

    tempo_markers: list[TempoMarker] = []
    tracks: list[list[RawNoteEvent]] = []

    for track_index, track in enumerate(midi.tracks):
        abs_tick = 0
        notes: list[RawNoteEvent] = []

        for msg in track:
            abs_tick += int(msg.time)

            if msg.is_meta:
                if msg.type == "set_tempo":
                    tempo_markers.append(TempoMarker(tick=abs_tick, tempo=int(msg.tempo)))
                continue

            if msg.type not in ("note_on", "note_off"):
                continue
            if ignore_drums and msg.channel == DRUM_CHANNEL:
                continue

            # note_on with velocity 0 is a running-status note-off.
            if msg.type == "note_on" and int(msg.velocity) > 0:
                kind = NoteKind.NOTE_ON
            else:
                kind = NoteKind.NOTE_OFF

            notes.append(
                RawNoteEvent(
                    tick=abs_tick,
                    track=track_index,
                    kind=kind,
                    pitch=int(msg.note),
                    velocity=int(msg.velocity),
                )
            )

        tracks.append(notes)

    # Tracks each carry their own tempo events in type 1 files; the map is global.
    tempo_markers.sort(key=lambda marker: marker.tick)
    return DecodedMidi(
        ticks_per_beat=int(midi.ticks_per_beat),
        tempo_markers=tempo_markers,
        tracks=tracks,
    )


def parse_midi_file(midi_path: str | Path, *, ignore_drums: bool = False) -> DecodedMidi:
    """Load a .mid file with mido and decode it."""
    _require_mido()
    midi = mido.MidiFile(str(midi_path))
    return decode_midi(midi, ignore_drums=ignore_drums)


def decoded_to_dict(decoded: DecodedMidi, *, limit: int | None = None) -> dict:
    """JSON-friendly view of a decoded file; `limit` caps the events per track."""
    tracks = []
    for track in decoded.tracks:
        events = track if limit is None else track[: max(0, int(limit))]
        rows = []
        for event in events:
            payload = asdict(event)
            payload["kind"] = event.kind.value
            rows.append(payload)
        tracks.append(rows)
    return {
        "ticks_per_beat": decoded.ticks_per_beat,
        "tempo_markers": [asdict(marker) for marker in decoded.tempo_markers],
        "tracks": tracks,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Decode MIDI into tick-timed note events.")
    parser.add_argument("midi_path", help="Path to input MIDI file.")
    parser.add_argument("--ignore-drums", action="store_true", help="Drop channel 10 notes.")
    parser.add_argument("--out", help="Optional output JSON path.")
    parser.add_argument(
        "--print-limit",
        type=int,
        default=10,
        help="How many events per track to print when --out is not set.",
    )
    args = parser.parse_args()

    decoded = parse_midi_file(args.midi_path, ignore_drums=bool(args.ignore_drums))

    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(json.dumps(decoded_to_dict(decoded), indent=2), encoding="utf-8")
        print(f"Saved {decoded.note_count} note events to {out_path}")
    else:
        print(json.dumps(decoded_to_dict(decoded, limit=args.print_limit), indent=2))
        print(f"\nTracks: {len(decoded.tracks)}")
        print(f"Tempo markers: {len(decoded.tempo_markers)}")
        print(f"Total note events: {decoded.note_count}")


if __name__ == "__main__":
    main()
