import mido
import pytest

from midi_parser import NoteKind, UnsupportedMidiFile, decode_midi, parse_midi_file


def _type1_midi():
    midi = mido.MidiFile(type=1, ticks_per_beat=480)
    conductor = mido.MidiTrack()
    conductor.append(mido.MetaMessage("set_tempo", tempo=500_000, time=0))
    conductor.append(mido.MetaMessage("set_tempo", tempo=250_000, time=960))
    piano = mido.MidiTrack()
    piano.append(mido.Message("control_change", control=64, value=127, time=0))
    piano.append(mido.Message("note_on", note=60, velocity=90, time=0))
    piano.append(mido.Message("note_on", note=60, velocity=0, time=480))
    piano.append(mido.Message("note_off", note=62, velocity=40, time=10))
    drums = mido.MidiTrack()
    drums.append(mido.Message("note_on", channel=9, note=36, velocity=100, time=240))
    midi.tracks.extend([conductor, piano, drums])
    return midi


def test_decode_collects_tempo_and_notes_per_track():
    decoded = decode_midi(_type1_midi())
    assert decoded.ticks_per_beat == 480
    assert [(m.tick, m.tempo) for m in decoded.tempo_markers] == [(0, 500_000), (960, 250_000)]
    assert len(decoded.tracks) == 3
    assert decoded.tracks[0] == []
    piano = decoded.tracks[1]
    assert [(e.tick, e.kind, e.pitch) for e in piano] == [
        (0, NoteKind.NOTE_ON, 60),
        (480, NoteKind.NOTE_OFF, 60),
        (490, NoteKind.NOTE_OFF, 62),
    ]
    assert all(e.track == 1 for e in piano)
    assert decoded.note_count == 4


def test_ignore_drums():
    decoded = decode_midi(_type1_midi(), ignore_drums=True)
    assert decoded.tracks[2] == []
    assert decoded.note_count == 3


def test_sequential_files_rejected():
    midi = mido.MidiFile(type=2, ticks_per_beat=480)
    midi.tracks.append(mido.MidiTrack())
    with pytest.raises(UnsupportedMidiFile):
        decode_midi(midi)


def test_parse_midi_file_roundtrips_through_disk(tmp_path):
    path = tmp_path / "piece.mid"
    _type1_midi().save(str(path))
    decoded = parse_midi_file(path)
    assert decoded.note_count == 4
    assert decoded.tempo_markers[-1].tick == 960
