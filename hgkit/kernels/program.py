from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import torch

from ..core.types import HomographyType, SUPPORTED_DTYPES
from ..utils.device import device_key
from . import homography as hk

LOGGER = logging.getLogger(__name__)

ProgramKey = Tuple[str, torch.dtype, HomographyType]


@dataclass(frozen=True)
class HomographyProgram:
    """Kernel set specialised for one (device, dtype, estimator mode)."""

    device: torch.device
    dtype: torch.dtype
    htype: HomographyType
    eps: float
    evaluate: Callable[..., torch.Tensor]

    def compute_homography(self, H, A, V, x_src, y_src, x_dst, y_dst, rnd, iterations: int):
        return hk.compute_homography(H, A, V, x_src, y_src, x_dst, y_dst, rnd, iterations, self.eps)

    def compute_median(self, median, err_sorted, iterations: int):
        return hk.compute_median(median, err_sorted, iterations)

    def compute_lmeds_inliers(self, inliers, h, x_src, y_src, x_dst, y_dst, min_median: float, sigma_scale: float):
        return hk.compute_lmeds_inliers(inliers, h, x_src, y_src, x_dst, y_dst, min_median, sigma_scale, self.eps)


def _bind_evaluator(htype: HomographyType, eps: float) -> Callable[..., torch.Tensor]:
    if htype is HomographyType.RANSAC:

        def _eval(out, H, x_src, y_src, x_dst, y_dst, iterations, inlier_thr):
            return hk.eval_ransac(out, H, x_src, y_src, x_dst, y_dst, iterations, inlier_thr, eps)

    else:

        def _eval(out, H, x_src, y_src, x_dst, y_dst, iterations, inlier_thr):
            return hk.eval_lmeds(out, H, x_src, y_src, x_dst, y_dst, iterations, eps)

    return _eval


def build_program(device: torch.device, dtype: torch.dtype, htype: HomographyType) -> HomographyProgram:
    if dtype not in SUPPORTED_DTYPES:
        raise ValueError(f"Unsupported dtype for homography program: {dtype}")
    t0 = time.perf_counter()
    eps = float(torch.finfo(dtype).eps)
    # Warm the batched solver on the target device; first use loads its backend
    probe = torch.eye(9, dtype=dtype, device=device).expand(2, 9, 9).contiguous()
    torch.linalg.svd(probe)
    prog = HomographyProgram(device=device, dtype=dtype, htype=htype, eps=eps, evaluate=_bind_evaluator(htype, eps))
    LOGGER.info(
        "Built homography program device=%s dtype=%s mode=%s eps=%.3g in %.1f ms",
        device,
        dtype,
        htype.value,
        eps,
        (time.perf_counter() - t0) * 1000.0,
    )
    return prog


class ProgramRegistry:
    """Process-wide cache of compiled programs, each built at most once."""

    def __init__(self, builder: Callable[[torch.device, torch.dtype, HomographyType], HomographyProgram] = build_program):
        self._builder = builder
        self._programs: Dict[ProgramKey, HomographyProgram] = {}
        self._once: Dict[ProgramKey, threading.Lock] = {}
        self._guard = threading.Lock()
        self.builds = 0

    def _lock_for(self, key: ProgramKey) -> threading.Lock:
        with self._guard:
            lock = self._once.get(key)
            if lock is None:
                lock = threading.Lock()
                self._once[key] = lock
            return lock

    def get(self, device: torch.device, dtype: torch.dtype, htype: HomographyType) -> HomographyProgram:
        key = (device_key(device), dtype, htype)
        prog = self._programs.get(key)
        if prog is not None:
            return prog
        with self._lock_for(key):
            prog = self._programs.get(key)
            if prog is None:
                prog = self._builder(device, dtype, htype)
                self._programs[key] = prog
                self.builds += 1
            return prog

    def clear(self) -> None:
        with self._guard:
            self._programs.clear()
            self._once.clear()
            self.builds = 0


_REGISTRY: Optional[ProgramRegistry] = None
_REGISTRY_LOCK = threading.Lock()


def get_registry() -> ProgramRegistry:
    global _REGISTRY
    with _REGISTRY_LOCK:
        if _REGISTRY is None:
            _REGISTRY = ProgramRegistry()
        return _REGISTRY
