#!/usr/bin/env python3
"""
Convert a folder of .mid files into per-file token tensors.

Outputs (the input folder structure is mirrored):
  out_dir/
    config.json          # frozen tokenizer config used for this export
    manifest.jsonl       # one line per MIDI: paths and length, or the error
    stats.json           # counts, length summary, error kinds
    <...>/<name>.mid.pt  # int16 token tensor per MIDI (or .npy with --format npy)

Files are independent, so they are converted in a process pool. A file that
fails (unreadable MIDI, malformed tempo map, velocity out of range, ...) is
reported and skipped; the rest of the batch continues.
"""

from __future__ import annotations

import argparse
import json
from collections import Counter
from concurrent.futures import Future, ProcessPoolExecutor, as_completed
from dataclasses import asdict, dataclass
from pathlib import Path

import numpy as np

from merger import TieBreak
from token_io import FORMATS, save_tokens
from tokenizer import VOCAB, TokenizerConfig, tokenize_midi_path

MIDI_EXTENSIONS = {".mid", ".midi"}


@dataclass(frozen=True, slots=True)
class ConversionJob:
    source: Path
    rel_source: Path
    out_path: Path
    fmt: str
    config: TokenizerConfig


def _iter_mid_files(root: Path) -> list[Path]:
    files: list[Path] = []
    for path in root.rglob("*"):
        if path.is_file() and path.suffix.lower() in MIDI_EXTENSIONS:
            files.append(path)
    files.sort()
    return files


def _safe_relpath(path: Path, root: Path) -> Path:
    try:
        return path.relative_to(root)
    except ValueError:
        return Path(path.name)


def output_path_for(rel: Path, out_root: Path, fmt: str) -> Path:
    """`a/b/x.mid` -> `out_root/a/b/x.mid.<fmt>`."""
    return out_root / rel.parent / f"{rel.name}.{fmt}"


def convert_file(job: ConversionJob) -> dict:
    """Tokenize and save one file. Never raises for data errors; returns a manifest record."""
    rec = {"source": str(job.source), "rel_source": str(job.rel_source)}
    try:
        tokens = tokenize_midi_path(job.source, job.config)
        save_tokens(tokens, job.out_path, fmt=job.fmt)
    except Exception as e:  # noqa: BLE001
        job.out_path.unlink(missing_ok=True)
        rec["error"] = f"{type(e).__name__}: {e}"
        rec["error_kind"] = type(e).__name__
        return rec

    rec["tokens"] = str(job.out_path)
    rec["length"] = int(len(tokens))
    return rec


def collect_result(future: Future, job: ConversionJob) -> dict:
    """Manifest record for a finished future; a worker that died becomes a failed record."""
    try:
        return future.result()
    except Exception as e:  # noqa: BLE001
        job.out_path.with_name(f"{job.out_path.name}.tmp").unlink(missing_ok=True)
        return {
            "source": str(job.source),
            "rel_source": str(job.rel_source),
            "error": f"{type(e).__name__}: {e}",
            "error_kind": type(e).__name__,
        }


def run_conversion(
    input_root: Path,
    out_root: Path,
    *,
    config: TokenizerConfig,
    fmt: str = "pt",
    workers: int = 1,
    overwrite: bool = False,
    limit: int | None = None,
    print_every: int = 200,
) -> dict:
    """Convert every MIDI file under `input_root`; returns the stats written to stats.json."""
    if fmt not in FORMATS:
        raise ValueError(f"format must be one of: {', '.join(FORMATS)}")
    if int(workers) < 1:
        raise ValueError("workers must be >= 1")
    if not input_root.exists():
        raise SystemExit(f"Input folder does not exist: {input_root}")

    out_root.mkdir(parents=True, exist_ok=True)

    # Freeze config used for this export.
    (out_root / "config.json").write_text(
        json.dumps(
            {
                "tokenizer_config": asdict(config),
                "vocab_size": int(VOCAB.vocab_size),
                "dtype": "int16",
                "format": fmt,
            },
            indent=2,
        ),
        encoding="utf-8",
    )

    midi_files = _iter_mid_files(input_root)
    if limit is not None:
        midi_files = midi_files[: int(limit)]

    jobs: list[ConversionJob] = []
    skipped = 0
    for midi_path in midi_files:
        rel = _safe_relpath(midi_path, input_root)
        out_path = output_path_for(rel, out_root, fmt)
        if out_path.exists() and not overwrite:
            skipped += 1
            continue
        jobs.append(
            ConversionJob(source=midi_path, rel_source=rel, out_path=out_path, fmt=fmt, config=config)
        )

    records: list[dict] = []
    processed = 0
    failed = 0
    error_counts: Counter[str] = Counter()

    def _collect(idx: int, rec: dict) -> None:
        nonlocal processed, failed
        records.append(rec)
        if "error" in rec:
            failed += 1
            error_counts[rec["error_kind"]] += 1
            print(f"Skipping {rec['source']}: {rec['error']}")
        else:
            processed += 1
        if int(print_every) > 0 and idx % int(print_every) == 0:
            lengths = [r["length"] for r in records if "length" in r]
            avg = (sum(lengths) / len(lengths)) if lengths else 0.0
            print(
                f"[{idx}/{len(jobs)}] processed={processed} skipped={skipped} failed={failed} "
                f"avg_len={avg:.1f}"
            )

    if int(workers) == 1:
        for idx, job in enumerate(jobs, start=1):
            _collect(idx, convert_file(job))
    else:
        with ProcessPoolExecutor(max_workers=int(workers)) as executor:
            futures = {executor.submit(convert_file, job): job for job in jobs}
            for idx, future in enumerate(as_completed(futures), start=1):
                _collect(idx, collect_result(future, futures[future]))

    records.sort(key=lambda r: r["rel_source"])
    manifest_path = out_root / "manifest.jsonl"
    with manifest_path.open("w", encoding="utf-8") as mf:
        for rec in records:
            mf.write(json.dumps(rec) + "\n")

    lengths = [int(r["length"]) for r in records if "length" in r]
    stats = {
        "input_dir": str(input_root),
        "out_dir": str(out_root),
        "files_total": int(len(midi_files)),
        "processed": int(processed),
        "skipped": int(skipped),
        "failed": int(failed),
        "error_kinds": dict(error_counts.most_common()),
        "length_min": int(min(lengths)) if lengths else None,
        "length_max": int(max(lengths)) if lengths else None,
        "length_mean": (sum(lengths) / len(lengths)) if lengths else None,
        "length_p95": float(np.percentile(np.asarray(lengths), 95)) if lengths else None,
    }
    (out_root / "stats.json").write_text(json.dumps(stats, indent=2), encoding="utf-8")
    print(f"Done. processed={processed} skipped={skipped} failed={failed}")
    print(f"Wrote: {manifest_path}")
    return stats


def main() -> None:
    p = argparse.ArgumentParser(description="Tokenize a folder of MIDI files into token tensors.")
    p.add_argument("input_dir", help="Folder containing .mid/.midi files (recursive).")
    p.add_argument("out_dir", help="Output folder (mirrors the input structure).")
    p.add_argument("--format", choices=FORMATS, default="pt", help="Token file format.")
    p.add_argument(
        "--tie-break",
        choices=[policy.value for policy in TieBreak],
        default=TieBreak.NOTE_OFF_FIRST.value,
        help="Which note kind comes first when events share an instant.",
    )
    p.add_argument("--ignore-drums", action="store_true", help="Drop MIDI channel 10 notes.")
    p.add_argument("--workers", type=int, default=1, help="Parallel worker processes.")
    p.add_argument("--overwrite", action="store_true", help="Overwrite existing token files.")
    p.add_argument("--limit", type=int, help="Only process first N MIDI files.")
    p.add_argument("--print-every", type=int, default=200, help="Progress logging interval.")
    args = p.parse_args()

    config = TokenizerConfig(tie_break=args.tie_break, ignore_drums=bool(args.ignore_drums))
    run_conversion(
        Path(args.input_dir),
        Path(args.out_dir),
        config=config,
        fmt=str(args.format),
        workers=int(args.workers),
        overwrite=bool(args.overwrite),
        limit=args.limit,
        print_every=int(args.print_every),
    )


if __name__ == "__main__":
    main()
