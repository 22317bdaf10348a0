import pytest

from merger import TieBreak, merge_tracks
from midi_parser import NoteKind, RawNoteEvent, TempoMarker
from tempo_map import TempoMap

ON = NoteKind.NOTE_ON
OFF = NoteKind.NOTE_OFF


def _ev(tick, track, kind, pitch, velocity=64):
    return RawNoteEvent(tick=tick, track=track, kind=kind, pitch=pitch, velocity=velocity)


def _tempo_map():
    return TempoMap([TempoMarker(tick=0, tempo=500_000)], ticks_per_beat=480)


def test_tracks_are_interleaved_by_time():
    tracks = [
        [_ev(0, 0, ON, 60), _ev(960, 0, OFF, 60)],
        [_ev(480, 1, ON, 64), _ev(1440, 1, OFF, 64)],
    ]
    merged = merge_tracks(tracks, _tempo_map())
    assert [e.time_ms for e in merged] == [0.0, 500.0, 1000.0, 1500.0]
    assert [e.pitch for e in merged] == [60, 64, 60, 64]


def test_note_off_precedes_note_on_at_same_instant():
    tracks = [
        [_ev(0, 0, ON, 60), _ev(480, 0, ON, 60)],
        [_ev(480, 1, OFF, 60)],
    ]
    merged = merge_tracks(tracks, _tempo_map())
    assert [(e.time_ms, e.kind) for e in merged] == [(0.0, ON), (500.0, OFF), (500.0, ON)]


def test_note_on_first_policy():
    tracks = [[_ev(0, 0, OFF, 60), _ev(0, 0, ON, 62)]]
    merged = merge_tracks(tracks, _tempo_map(), tie_break=TieBreak.NOTE_ON_FIRST)
    assert [e.kind for e in merged] == [ON, OFF]
    merged = merge_tracks(tracks, _tempo_map(), tie_break="note_off_first")
    assert [e.kind for e in merged] == [OFF, ON]


def test_ties_ordered_by_pitch_then_track():
    tracks = [
        [_ev(0, 0, ON, 67), _ev(0, 0, ON, 60)],
        [_ev(0, 1, ON, 60)],
    ]
    merged = merge_tracks(tracks, _tempo_map())
    assert [(e.pitch, e.track) for e in merged] == [(60, 0), (60, 1), (67, 0)]


def test_track_order_does_not_change_result():
    tracks = [
        [_ev(0, 0, ON, 60), _ev(240, 0, OFF, 60), _ev(240, 0, ON, 62)],
        [_ev(0, 1, ON, 48), _ev(240, 1, OFF, 48)],
        [_ev(120, 2, ON, 72), _ev(240, 2, ON, 60)],
    ]
    forward = merge_tracks(tracks, _tempo_map())
    backward = merge_tracks(list(reversed(tracks)), _tempo_map())
    assert forward == backward


def test_merge_keeps_every_event_including_unmatched_note_off():
    tracks = [
        [_ev(0, 0, OFF, 50), _ev(10, 0, ON, 60), _ev(20, 0, ON, 60)],
        [],
        [_ev(5, 2, OFF, 61)],
    ]
    merged = merge_tracks(tracks, _tempo_map())
    assert len(merged) == 4
    times = [e.time_ms for e in merged]
    assert times == sorted(times)
    assert merged[0].kind is OFF and merged[0].pitch == 50


def test_merge_uses_tempo_map():
    tempo_map = TempoMap(
        [TempoMarker(tick=0, tempo=500_000), TempoMarker(tick=480, tempo=1_000_000)],
        ticks_per_beat=480,
    )
    merged = merge_tracks([[_ev(960, 0, ON, 60)]], tempo_map)
    assert merged[0].time_ms == 1500.0


def test_unordered_track_rejected():
    with pytest.raises(ValueError):
        merge_tracks([[_ev(100, 0, ON, 60), _ev(50, 0, OFF, 60)]], _tempo_map())
