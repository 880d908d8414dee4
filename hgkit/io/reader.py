from __future__ import annotations

import json
from pathlib import Path
from typing import Tuple

import numpy as np


def _as_pts(name: str, arr) -> np.ndarray:
    pts = np.asarray(arr, dtype=np.float64)
    if pts.ndim == 3 and pts.shape[1] == 1:
        pts = pts.reshape(-1, 2)  # OpenCV (N,1,2) layout
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise ValueError(f"load_correspondences: '{name}' must be (N,2), got {pts.shape}")
    return pts


def load_correspondences(path: str | Path) -> Tuple[np.ndarray, np.ndarray]:
    """Load matched points from ``.npz`` (arrays ``src``/``dst``) or ``.json``.

    JSON layout: {"src": [[x, y], ...], "dst": [[x, y], ...]}
    return: src (N,2), dst (N,2) float64
    """
    p = Path(path)
    suffix = p.suffix.lower()
    if suffix == ".npz":
        with np.load(p) as data:
            if "src" not in data or "dst" not in data:
                raise ValueError(f"load_correspondences: {p} lacks 'src'/'dst' arrays")
            src, dst = data["src"], data["dst"]
    elif suffix == ".json":
        with open(p, "r", encoding="utf-8") as f:
            rec = json.load(f)
        if not isinstance(rec, dict) or "src" not in rec or "dst" not in rec:
            raise ValueError(f"load_correspondences: {p} lacks 'src'/'dst' lists")
        src, dst = rec["src"], rec["dst"]
    else:
        raise ValueError(f"load_correspondences: unsupported file type '{suffix}'")

    src_np = _as_pts("src", src)
    dst_np = _as_pts("dst", dst)
    if src_np.shape != dst_np.shape:
        raise ValueError(f"load_correspondences: src {src_np.shape} and dst {dst_np.shape} differ")
    return src_np, dst_np
