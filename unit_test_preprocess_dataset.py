import json
from concurrent.futures import Future
from concurrent.futures.process import BrokenProcessPool
from pathlib import Path

import mido
import numpy as np
import torch

from preprocess_dataset import ConversionJob, collect_result, output_path_for, run_conversion
from token_io import load_tokens, save_tokens
from tokenizer import TokenizerConfig, tokenize_midi_path
from tokens_to_midi import tokens_to_note_events, write_midi


def _write_piece(path, *, velocity=80, gap_ticks=960):
    midi = mido.MidiFile(type=0, ticks_per_beat=480)
    track = mido.MidiTrack()
    track.append(mido.MetaMessage("set_tempo", tempo=500_000, time=0))
    track.append(mido.Message("note_on", note=60, velocity=velocity, time=0))
    track.append(mido.Message("note_off", note=60, velocity=0, time=gap_ticks))
    midi.tracks.append(track)
    path.parent.mkdir(parents=True, exist_ok=True)
    midi.save(str(path))


def _make_input(tmp_path):
    input_dir = tmp_path / "midi"
    _write_piece(input_dir / "bach" / "a.mid")
    _write_piece(input_dir / "b.midi", velocity=20, gap_ticks=2352)
    (input_dir / "notes.txt").write_text("not midi", encoding="utf-8")
    (input_dir / "broken.mid").write_bytes(b"definitely not a midi file")
    return input_dir


def test_output_path_mirrors_input(tmp_path):
    out = output_path_for(Path("bach/a.mid"), tmp_path, "pt")
    assert out == tmp_path / "bach" / "a.mid.pt"


def test_tokenize_midi_path(tmp_path):
    path = tmp_path / "a.mid"
    _write_piece(path)
    assert tokenize_midi_path(path) == [376, 60, 355, 188]
    _write_piece(path, velocity=20, gap_ticks=2352)
    # 2352 ticks at 120 BPM = 2450 ms
    assert tokenize_midi_path(path, TokenizerConfig()) == [361, 60, 355, 355, 300, 188]


def test_run_conversion_reports_failures_and_continues(tmp_path):
    input_dir = _make_input(tmp_path)
    out_dir = tmp_path / "tokens"

    stats = run_conversion(input_dir, out_dir, config=TokenizerConfig(), fmt="npy", print_every=0)

    assert stats["files_total"] == 3
    assert stats["processed"] == 2
    assert stats["failed"] == 1
    assert sum(stats["error_kinds"].values()) == 1

    a_tokens = np.load(out_dir / "bach" / "a.mid.npy")
    assert a_tokens.dtype == np.int16
    assert a_tokens.tolist() == [376, 60, 355, 188]
    assert not (out_dir / "broken.mid.npy").exists()
    assert not list(out_dir.rglob("*.tmp"))

    records = [
        json.loads(line)
        for line in (out_dir / "manifest.jsonl").read_text(encoding="utf-8").splitlines()
    ]
    assert len(records) == 3
    failed = [r for r in records if "error" in r]
    assert len(failed) == 1
    assert failed[0]["rel_source"] == "broken.mid"
    assert failed[0]["error_kind"]

    config = json.loads((out_dir / "config.json").read_text(encoding="utf-8"))
    assert config["vocab_size"] == 388
    assert config["tokenizer_config"]["tie_break"] == "note_off_first"


def test_run_conversion_skips_existing_and_uses_workers(tmp_path):
    input_dir = _make_input(tmp_path)
    out_dir = tmp_path / "tokens"

    run_conversion(input_dir, out_dir, config=TokenizerConfig(), fmt="pt", workers=2, print_every=0)
    b_tokens = torch.load(str(out_dir / "b.midi.pt"))
    assert b_tokens.dtype == torch.int16
    assert b_tokens.tolist() == [361, 60, 355, 355, 300, 188]

    stats = run_conversion(input_dir, out_dir, config=TokenizerConfig(), fmt="pt", print_every=0)
    assert stats["skipped"] == 2
    assert stats["processed"] == 0


def test_save_and_load_tokens(tmp_path):
    for fmt in ("pt", "npy"):
        path = save_tokens([1, 2, 387], tmp_path / f"x.{fmt}", fmt=fmt)
        assert load_tokens(path).tolist() == [1, 2, 387]


def test_rendered_midi_tokenizes_back(tmp_path):
    tokens = [376, 60, 355, 188, 361, 64, 300, 192]
    parsed = tokens_to_note_events(tokens)
    assert [(n.pitch, n.start_ms, n.end_ms, n.velocity) for n in parsed.notes] == [
        (60, 0, 1000, 80),
        (64, 1000, 1450, 20),
    ]
    out = tmp_path / "rendered.mid"
    write_midi(parsed.notes, out)
    assert tokenize_midi_path(out) == tokens


def test_render_tolerates_unmatched_and_dangling_notes():
    parsed = tokens_to_note_events([188, 370, 60, 256])
    assert parsed.unmatched_note_offs == 1
    assert [(n.pitch, n.start_ms, n.end_ms) for n in parsed.notes] == [(60, 0, 10)]


def test_dead_worker_is_recorded_as_failure(tmp_path):
    job = ConversionJob(
        source=tmp_path / "midi" / "a.mid",
        rel_source=Path("a.mid"),
        out_path=tmp_path / "tokens" / "a.mid.pt",
        fmt="pt",
        config=TokenizerConfig(),
    )
    future = Future()
    future.set_exception(BrokenProcessPool("worker exited abruptly"))
    rec = collect_result(future, job)
    assert rec["rel_source"] == "a.mid"
    assert rec["error_kind"] == "BrokenProcessPool"
    assert "length" not in rec

    done = Future()
    done.set_result({"source": "x", "rel_source": "a.mid", "length": 4})
    assert collect_result(done, job)["length"] == 4
