from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np


def save_result(path: str | Path, H, inliers: int, extra: Optional[Dict[str, Any]] = None) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    payload: Dict[str, Any] = {
        "H": np.asarray(H, dtype=np.float64).reshape(3, 3).tolist(),
        "inliers": int(inliers),
    }
    if extra:
        payload.update(extra)
    with open(p, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    return p
