#!/usr/bin/env python3
"""
Save and load flat token sequences.

Two on-disk formats:
- "pt":  a 1D torch int16 tensor written with torch.save
- "npy": a 1D numpy int16 array written with np.save

Writes go to a temporary file next to the target and are moved into place
only once complete, so a failed conversion never leaves a partial file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Sequence

import numpy as np

try:
    import torch
except ModuleNotFoundError:
    torch = None

FORMATS = ("pt", "npy")
TOKEN_DTYPE = np.int16


def _require_torch() -> None:
    if torch is None:
        raise ModuleNotFoundError(
            "torch is required for .pt token files. Install it with: pip install torch"
        )


def tokens_to_array(tokens: Sequence[int]) -> np.ndarray:
    arr = np.asarray(tokens, dtype=np.int64).reshape(-1)
    info = np.iinfo(TOKEN_DTYPE)
    if arr.size > 0 and (int(arr.min()) < info.min or int(arr.max()) > info.max):
        raise ValueError(f"Token IDs do not fit in int16 (min={arr.min()}, max={arr.max()})")
    return arr.astype(TOKEN_DTYPE)


def save_tokens(tokens: Sequence[int], out_path: str | Path, *, fmt: str = "pt") -> Path:
    if fmt not in FORMATS:
        raise ValueError(f"fmt must be one of: {', '.join(FORMATS)}")

    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    arr = tokens_to_array(tokens)
    tmp_path = out_path.with_name(f"{out_path.name}.tmp")

    try:
        if fmt == "pt":
            _require_torch()
            torch.save(torch.from_numpy(arr), str(tmp_path))
        else:
            with tmp_path.open("wb") as f:
                np.save(f, arr, allow_pickle=False)
        os.replace(tmp_path, out_path)
    finally:
        tmp_path.unlink(missing_ok=True)

    return out_path


def load_tokens(path: str | Path) -> np.ndarray:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Token file not found: {path}")
    if path.suffix.lower() == ".npy":
        return np.load(path).reshape(-1)
    _require_torch()
    tensor = torch.load(str(path))
    return tensor.numpy().reshape(-1)
