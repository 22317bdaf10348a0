#!/usr/bin/env python3
"""
Render a performance token stream (.pt or .npy) back to a MIDI file.

The encoding is lossy: time is bucketed to 10 ms and velocity to 32 bins, so
this is meant for listening checks, not exact reconstruction.

Example:
    python tokens_to_midi.py piece.mid.pt --out piece_rendered.mid
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from token_io import load_tokens
from tokenizer import VOCAB

try:
    import mido
except ModuleNotFoundError:
    mido = None

RENDER_TEMPO = 500_000


@dataclass(frozen=True, slots=True)
class RenderedNote:
    pitch: int
    start_ms: int
    end_ms: int
    velocity: int


@dataclass(slots=True)
class _ParsedTokens:
    notes: list[RenderedNote]
    end_ms: int
    unmatched_note_offs: int


def _bin_to_velocity(bin_i: int) -> int:
    return max(1, min(127, int(bin_i) * VOCAB.velocity_step))


def tokens_to_note_events(tokens: Sequence[int]) -> _ParsedTokens:
    """Replay the token stream with a running clock and pair note-ons with note-offs."""
    clock_ms = 0
    velocity = _bin_to_velocity(VOCAB.velocity_bins // 2)
    # Per pitch: stack of (start_ms, velocity) for notes still sounding.
    open_notes: dict[int, list[tuple[int, int]]] = {}
    notes: list[RenderedNote] = []
    unmatched = 0

    for token in tokens:
        kind, payload = VOCAB.decode_token(int(token))
        if kind == "time_shift":
            clock_ms += VOCAB.decoded_ms(int(token))
        elif kind == "velocity":
            velocity = _bin_to_velocity(payload)
        elif kind == "note_on":
            open_notes.setdefault(payload, []).append((clock_ms, velocity))
        else:
            stack = open_notes.get(payload)
            if not stack:
                unmatched += 1
                continue
            start_ms, start_velocity = stack.pop(0)
            notes.append(
                RenderedNote(pitch=payload, start_ms=start_ms, end_ms=clock_ms, velocity=start_velocity)
            )

    for pitch, stack in open_notes.items():
        for start_ms, start_velocity in stack:
            notes.append(
                RenderedNote(pitch=pitch, start_ms=start_ms, end_ms=clock_ms, velocity=start_velocity)
            )

    notes.sort(key=lambda n: (n.start_ms, n.pitch))
    return _ParsedTokens(notes=notes, end_ms=clock_ms, unmatched_note_offs=unmatched)


def write_midi(
    notes: Sequence[RenderedNote],
    out_path: str | Path,
    *,
    ticks_per_beat: int = 480,
) -> None:
    if mido is None:
        raise ModuleNotFoundError(
            "mido is required for MIDI writing. Install it with: pip install mido"
        )

    def _ms_to_tick(ms: int) -> int:
        return int(round(mido.second2tick(ms / 1000.0, int(ticks_per_beat), RENDER_TEMPO)))

    scheduled: list[tuple[int, int, int, "mido.Message"]] = []
    # priority: NOTE_OFF(0) < NOTE_ON(1) at the same tick
    for note in notes:
        start_tick = _ms_to_tick(note.start_ms)
        end_tick = max(start_tick + 1, _ms_to_tick(note.end_ms))
        scheduled.append(
            (start_tick, 1, note.pitch, mido.Message("note_on", note=note.pitch, velocity=note.velocity))
        )
        scheduled.append(
            (end_tick, 0, note.pitch, mido.Message("note_off", note=note.pitch, velocity=0))
        )
    scheduled.sort(key=lambda x: (x[0], x[1], x[2]))

    track = mido.MidiTrack()
    track.append(mido.MetaMessage("set_tempo", tempo=RENDER_TEMPO, time=0))
    prev = 0
    for abs_tick, _prio, _pitch, msg in scheduled:
        track.append(msg.copy(time=int(abs_tick - prev)))
        prev = abs_tick
    track.append(mido.MetaMessage("end_of_track", time=0))

    midi = mido.MidiFile(type=1, ticks_per_beat=int(ticks_per_beat))
    midi.tracks.append(track)
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    midi.save(str(out_path))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Convert performance token IDs to MIDI.")
    parser.add_argument("tokens_path", type=str, help="Path to a .pt or .npy token file.")
    parser.add_argument("--out", type=str, required=True, help="Output MIDI path.")
    parser.add_argument("--ticks-per-beat", type=int, default=480, dest="ticks_per_beat")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    tokens = load_tokens(Path(args.tokens_path))
    parsed = tokens_to_note_events([int(t) for t in tokens])
    write_midi(parsed.notes, args.out, ticks_per_beat=int(args.ticks_per_beat))

    print(f"Loaded tokens: {len(tokens)}")
    print(f"Rendered notes: {len(parsed.notes)}")
    print(f"Duration: {parsed.end_ms / 1000.0:.2f}s")
    print(f"Skipped unmatched NOTE_OFF tokens: {parsed.unmatched_note_offs}")
    print(f"Wrote MIDI: {args.out}")


if __name__ == "__main__":
    main()
