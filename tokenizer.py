#!/usr/bin/env python3
"""
Performance-event MIDI tokenizer.

Vocabulary (388 ids):
- NOTE_ON     0..127   pitch
- NOTE_OFF    128..255 128 + pitch
- TIME_SHIFT  256..355 10 ms buckets, token t decodes to (t - 256 + 1) * 10 ms
- VELOCITY    356..387 356 + velocity // 4

Encoding walks the merged, millisecond-stamped note events in order. Before
each event the elapsed time since the previous event is emitted as TIME_SHIFT
tokens (split into 1000 ms pieces), then a VELOCITY token when a note-on's
velocity bin changes, then the note token itself.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, replace
from fractions import Fraction
from pathlib import Path
from typing import Iterable, Sequence

from merger import TieBreak, merge_tracks
from midi_parser import DecodedMidi, NoteKind, TimedEvent, parse_midi_file
from tempo_map import TempoMap


class VelocityOutOfRange(ValueError):
    """A note-on velocity does not fit the 32 velocity bins."""


class Vocabulary:
    """Fixed integer mapping for performance-event tokens."""

    NOTE_ON_OFFSET = 0
    NOTE_OFF_OFFSET = 128
    TIME_SHIFT_OFFSET = 256
    VELOCITY_OFFSET = 356

    def __init__(
        self,
        *,
        num_pitches: int = 128,
        time_shift_ms: int = 10,
        time_shift_bins: int = 100,
        velocity_bins: int = 32,
    ) -> None:
        self.num_pitches = int(num_pitches)
        self.time_shift_ms = int(time_shift_ms)
        self.time_shift_bins = int(time_shift_bins)
        self.velocity_bins = int(velocity_bins)
        self.velocity_step = 128 // self.velocity_bins

        self.max_time_shift_ms = self.time_shift_ms * self.time_shift_bins
        self.max_time_shift_token = self.TIME_SHIFT_OFFSET + self.time_shift_bins - 1
        self.vocab_size = self.VELOCITY_OFFSET + self.velocity_bins

    def _check_pitch(self, pitch: int) -> int:
        pitch_i = int(pitch)
        if not 0 <= pitch_i < self.num_pitches:
            raise ValueError(f"pitch must be in [0, {self.num_pitches - 1}], got {pitch_i}")
        return pitch_i

    def note_on_token(self, pitch: int) -> int:
        return self.NOTE_ON_OFFSET + self._check_pitch(pitch)

    def note_off_token(self, pitch: int) -> int:
        return self.NOTE_OFF_OFFSET + self._check_pitch(pitch)

    def velocity_bin(self, velocity: int) -> int:
        # Floor division keeps negative velocities negative, so they fail below.
        bin_i = int(velocity) // self.velocity_step
        if not 0 <= bin_i < self.velocity_bins:
            raise VelocityOutOfRange(
                f"velocity {velocity} quantizes to bin {bin_i}, "
                f"outside [0, {self.velocity_bins - 1}]"
            )
        return bin_i

    def velocity_token(self, velocity: int) -> int:
        return self.VELOCITY_OFFSET + self.velocity_bin(velocity)

    def time_shift_tokens(self, gap_ms: Fraction | float) -> list[int]:
        """
        TIME_SHIFT tokens for one gap.

        Full 1000 ms pieces become the largest token; the remainder gets one
        token only if it covers at least one 10 ms bucket. A 2450 ms gap gives
        [355, 355, 300]; a 5 ms gap gives [].
        """
        if gap_ms < 0:
            raise ValueError(f"gap_ms must be >= 0, got {gap_ms}")
        buckets = int(gap_ms // self.time_shift_ms)
        full, remainder = divmod(buckets, self.time_shift_bins)
        tokens = [self.max_time_shift_token] * full
        if remainder > 0:
            tokens.append(self.TIME_SHIFT_OFFSET + remainder - 1)
        return tokens

    def decoded_ms(self, token_id: int) -> int:
        token_i = int(token_id)
        if not self.TIME_SHIFT_OFFSET <= token_i <= self.max_time_shift_token:
            raise ValueError(f"token {token_i} is not a TIME_SHIFT token")
        return (token_i - self.TIME_SHIFT_OFFSET + 1) * self.time_shift_ms

    def decode_token(self, token_id: int) -> tuple[str, int]:
        token_i = int(token_id)
        if self.NOTE_ON_OFFSET <= token_i < self.NOTE_OFF_OFFSET:
            return ("note_on", token_i - self.NOTE_ON_OFFSET)
        if self.NOTE_OFF_OFFSET <= token_i < self.TIME_SHIFT_OFFSET:
            return ("note_off", token_i - self.NOTE_OFF_OFFSET)
        if self.TIME_SHIFT_OFFSET <= token_i < self.VELOCITY_OFFSET:
            return ("time_shift", token_i - self.TIME_SHIFT_OFFSET)
        if self.VELOCITY_OFFSET <= token_i < self.vocab_size:
            return ("velocity", token_i - self.VELOCITY_OFFSET)
        raise ValueError(f"index {token_i} not supported")

    def token_to_string(self, token_id: int) -> str:
        kind, payload = self.decode_token(token_id)
        if kind == "note_on":
            return f"NOTE_ON_{payload}"
        if kind == "note_off":
            return f"NOTE_OFF_{payload}"
        if kind == "time_shift":
            return f"SHIFT_{self.decoded_ms(token_id)}MS"
        return f"VEL_{payload}"


VOCAB = Vocabulary()


@dataclass(frozen=True, slots=True)
class TokenizerConfig:
    tie_break: str = TieBreak.NOTE_OFF_FIRST.value
    ignore_drums: bool = False


@dataclass(frozen=True, slots=True)
class EncoderState:
    """Running state between events; a fresh state starts every file."""

    last_event_time_ms: Fraction = Fraction(0)
    last_velocity_bin: int | None = None


def encode_step(
    state: EncoderState, event: TimedEvent, vocab: Vocabulary = VOCAB
) -> tuple[EncoderState, list[int]]:
    gap_ms = event.time_ms - state.last_event_time_ms
    if gap_ms < 0:
        raise AssertionError(
            f"events out of order: {event.time_ms} ms after {state.last_event_time_ms} ms"
        )

    tokens = vocab.time_shift_tokens(gap_ms)
    state = replace(state, last_event_time_ms=event.time_ms)

    if event.kind is NoteKind.NOTE_ON:
        velocity_bin = vocab.velocity_bin(event.velocity)
        if velocity_bin != state.last_velocity_bin:
            tokens.append(vocab.VELOCITY_OFFSET + velocity_bin)
            state = replace(state, last_velocity_bin=velocity_bin)
        tokens.append(vocab.note_on_token(event.pitch))
    else:
        tokens.append(vocab.note_off_token(event.pitch))

    return state, tokens


def encode_events(
    events: Iterable[TimedEvent],
    state: EncoderState | None = None,
    vocab: Vocabulary = VOCAB,
) -> list[int]:
    """Encode a time-ordered TimedEvent sequence into token ids."""
    if state is None:
        state = EncoderState()
    tokens: list[int] = []
    for event in events:
        state, step_tokens = encode_step(state, event, vocab)
        tokens.extend(step_tokens)
    return tokens


def tokenize_decoded(
    decoded: DecodedMidi,
    *,
    tie_break: TieBreak | str = TieBreak.NOTE_OFF_FIRST,
) -> list[int]:
    tempo_map = TempoMap(decoded.tempo_markers, decoded.ticks_per_beat)
    events = merge_tracks(decoded.tracks, tempo_map, tie_break=TieBreak(tie_break))
    return encode_events(events)


def tokenize_midi_path(midi_path: str | Path, config: TokenizerConfig | None = None) -> list[int]:
    """Parse one MIDI file and return its token ids."""
    if config is None:
        config = TokenizerConfig()
    decoded = parse_midi_file(midi_path, ignore_drums=bool(config.ignore_drums))
    return tokenize_decoded(decoded, tie_break=config.tie_break)


def _preview_tokens(tokens: Sequence[int], *, limit: int = 24) -> list[str]:
    return [VOCAB.token_to_string(int(token)) for token in tokens[: max(0, int(limit))]]


def main() -> None:
    parser = argparse.ArgumentParser(description="Tokenize MIDI into performance-event IDs.")
    parser.add_argument("midi_path", help="Path to input .mid file.")
    parser.add_argument(
        "--out",
        type=str,
        default=None,
        help="Optional output path (.pt or .npy) for saving token IDs.",
    )
    parser.add_argument(
        "--tie-break",
        choices=[policy.value for policy in TieBreak],
        default=TieBreak.NOTE_OFF_FIRST.value,
        help="Which note kind comes first when events share an instant.",
    )
    parser.add_argument("--ignore-drums", action="store_true", help="Drop channel 10 notes.")
    parser.add_argument("--preview", type=int, default=24, help="How many tokens to preview.")
    args = parser.parse_args()

    config = TokenizerConfig(tie_break=args.tie_break, ignore_drums=bool(args.ignore_drums))
    tokens = tokenize_midi_path(Path(args.midi_path), config)

    print(f"Token count: {len(tokens)}")
    print(f"Vocabulary size: {VOCAB.vocab_size}")
    print(f"Preview token IDs: {list(tokens[: max(0, int(args.preview))])}")
    print(f"Preview decoded: {_preview_tokens(tokens, limit=int(args.preview))}")

    if args.out:
        from token_io import save_tokens

        out_path = Path(args.out)
        fmt = "npy" if out_path.suffix.lower() == ".npy" else "pt"
        save_tokens(tokens, out_path, fmt=fmt)
        print(f"Saved token IDs to: {out_path}")


if __name__ == "__main__":
    main()
