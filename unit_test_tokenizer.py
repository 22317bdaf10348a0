from fractions import Fraction

import pytest

from midi_parser import DecodedMidi, NoteKind, RawNoteEvent, TempoMarker, TimedEvent
from tempo_map import MalformedTempoMap
from tokenizer import (
    VOCAB,
    EncoderState,
    VelocityOutOfRange,
    encode_events,
    encode_step,
    tokenize_decoded,
)

ON = NoteKind.NOTE_ON
OFF = NoteKind.NOTE_OFF


def _on(time_ms, pitch, velocity=64):
    return TimedEvent(time_ms=time_ms, kind=ON, pitch=pitch, velocity=velocity)


def _off(time_ms, pitch, velocity=0):
    return TimedEvent(time_ms=time_ms, kind=OFF, pitch=pitch, velocity=velocity)


def test_vocab_layout():
    assert VOCAB.vocab_size == 388
    assert VOCAB.max_time_shift_token == 355
    assert VOCAB.decode_token(0) == ("note_on", 0)
    assert VOCAB.decode_token(188) == ("note_off", 60)
    assert VOCAB.decode_token(300) == ("time_shift", 44)
    assert VOCAB.decode_token(387) == ("velocity", 31)
    for bad in (-1, 388):
        with pytest.raises(ValueError):
            VOCAB.decode_token(bad)


def test_time_shift_examples():
    assert VOCAB.time_shift_tokens(2450) == [355, 355, 300]
    assert VOCAB.time_shift_tokens(450) == [300]
    assert VOCAB.time_shift_tokens(5) == []
    assert VOCAB.time_shift_tokens(0) == []
    assert VOCAB.time_shift_tokens(10) == [256]
    assert VOCAB.time_shift_tokens(1000) == [355]
    assert VOCAB.time_shift_tokens(1005) == [355]
    assert VOCAB.time_shift_tokens(999.9) == [354]


def test_decoded_ms_inverse():
    assert VOCAB.decoded_ms(256) == 10
    assert VOCAB.decoded_ms(300) == 450
    assert VOCAB.decoded_ms(355) == 1000
    with pytest.raises(ValueError):
        VOCAB.decoded_ms(356)


def test_time_shift_sums_to_gap_rounded_down():
    for gap in list(range(0, 3100, 7)) + [12345.6, 99999]:
        tokens = VOCAB.time_shift_tokens(gap)
        decoded = [VOCAB.decoded_ms(t) for t in tokens]
        assert sum(decoded) == int(gap // 10) * 10
        assert all(ms <= 1000 for ms in decoded)


def test_pitch_mapping():
    assert encode_events([_on(0, 60, 64)])[-1] == 60
    assert encode_events([_off(0, 60)]) == [188]


def test_velocity_change_suppressed_for_same_bin():
    events = [_on(0, 60, 100), _on(10, 62, 103), _on(20, 64, 107)]
    tokens = encode_events(events)
    assert tokens == [356 + 25, 60, 256, 62, 256, 356 + 26, 64]
    assert sum(1 for t in tokens if t >= VOCAB.VELOCITY_OFFSET) == 2


def test_note_off_never_emits_velocity():
    events = [_on(0, 60, 100), _off(500, 60, 127), _on(500, 62, 101)]
    assert encode_events(events) == [381, 60, 305, 188, 62]


def test_velocity_out_of_range():
    events = [_on(i * 10, 60, v) for i, v in enumerate([100, 101, 103, 130])]
    with pytest.raises(VelocityOutOfRange):
        encode_events(events)
    with pytest.raises(VelocityOutOfRange):
        encode_events([_on(0, 60, -1)])


def test_long_gap_between_events():
    tokens = encode_events([_on(0, 60, 64), _off(2450, 60)])
    assert tokens == [372, 60, 355, 355, 300, 188]


def test_encode_step_threads_state():
    state = EncoderState()
    state, tokens = encode_step(state, _on(120, 60, 40))
    assert tokens == [267, 366, 60]
    assert state == EncoderState(last_event_time_ms=120.0, last_velocity_bin=10)
    state, tokens = encode_step(state, _off(125, 60))
    assert tokens == [188]
    assert state.last_event_time_ms == 125.0


def test_out_of_order_events_are_a_logic_fault():
    with pytest.raises(AssertionError):
        encode_events([_on(100, 60), _on(50, 62)])


def test_encoding_is_idempotent():
    events = [_on(0, 60, 90), _on(0, 64, 90), _off(480, 60), _on(1700, 67, 20), _off(4000, 64)]
    assert encode_events(events) == encode_events(events)


def test_tokenize_decoded_end_to_end():
    decoded = DecodedMidi(
        ticks_per_beat=480,
        tempo_markers=[],
        tracks=[
            [
                RawNoteEvent(tick=0, track=0, kind=ON, pitch=60, velocity=80),
                RawNoteEvent(tick=960, track=0, kind=OFF, pitch=60, velocity=0),
            ]
        ],
    )
    assert tokenize_decoded(decoded) == [376, 60, 355, 188]


def test_tokenize_decoded_note_off_before_reattack():
    decoded = DecodedMidi(
        ticks_per_beat=480,
        tempo_markers=[TempoMarker(tick=0, tempo=500_000)],
        tracks=[
            [
                RawNoteEvent(tick=0, track=0, kind=ON, pitch=60, velocity=80),
                RawNoteEvent(tick=480, track=0, kind=ON, pitch=60, velocity=80),
            ],
            [RawNoteEvent(tick=480, track=1, kind=OFF, pitch=60, velocity=0)],
        ],
    )
    assert tokenize_decoded(decoded) == [376, 60, 305, 188, 60]
    assert tokenize_decoded(decoded, tie_break="note_on_first") == [376, 60, 305, 60, 188]


def test_malformed_tempo_map_propagates():
    decoded = DecodedMidi(ticks_per_beat=0, tempo_markers=[], tracks=[[]])
    with pytest.raises(MalformedTempoMap):
        tokenize_decoded(decoded)


def _shift_ms(tokens):
    return sum(VOCAB.decoded_ms(t) for t in tokens if VOCAB.decode_token(t)[0] == "time_shift")


def test_fifty_ms_gap_at_480_ticks_per_beat():
    # One tick is 25/24 ms at 480 ticks per beat and 120 BPM; 48 ticks are exactly 50 ms.
    decoded = DecodedMidi(
        ticks_per_beat=480,
        tempo_markers=[],
        tracks=[
            [
                RawNoteEvent(tick=14, track=0, kind=ON, pitch=60, velocity=80),
                RawNoteEvent(tick=62, track=0, kind=OFF, pitch=60, velocity=0),
            ]
        ],
    )
    assert tokenize_decoded(decoded) == [256, 376, 60, 260, 188]


@pytest.mark.parametrize(
    "ticks_per_beat,tempo",
    [(480, 500_000), (96, 500_000), (384, 600_000), (960, 400_000), (120, 750_000)],
)
def test_tick_gaps_decode_to_exact_milliseconds(ticks_per_beat, tempo):
    for start in range(0, 97, 7):
        for gap_ticks in range(1, 4000):
            exact_ms = Fraction(gap_ticks * tempo, ticks_per_beat * 1000)
            if exact_ms % 10 != 0:
                continue
            decoded = DecodedMidi(
                ticks_per_beat=ticks_per_beat,
                tempo_markers=[TempoMarker(tick=0, tempo=tempo)],
                tracks=[
                    [
                        RawNoteEvent(tick=start, track=0, kind=ON, pitch=60, velocity=80),
                        RawNoteEvent(tick=start + gap_ticks, track=0, kind=OFF, pitch=60, velocity=0),
                    ]
                ],
            )
            tokens = tokenize_decoded(decoded)
            split = tokens.index(60)
            start_ms = Fraction(start * tempo, ticks_per_beat * 1000)
            assert _shift_ms(tokens[:split]) == int(start_ms // 10) * 10
            assert _shift_ms(tokens[split:]) == exact_ms
