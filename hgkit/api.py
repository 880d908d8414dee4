from __future__ import annotations

import logging
import math
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np
import torch

from .core.errors import HomographyEstimationError, InvalidArgumentError
from .core.types import SUPPORTED_DTYPES, Correspondences, HomographyResult, HomographyType
from .kernels.program import get_registry
from .pipeline.base import EstimationState, Stage
from .pipeline.executor import run_stages
from .pipeline.stages.s10_build_candidates import BuildCandidates
from .pipeline.stages.s20_evaluate import EvaluateCandidates
from .pipeline.stages.s30_median_reduce import MedianReduce
from .pipeline.stages.s35_recount_inliers import RecountInliers
from .pipeline.stages.s40_max_reduce import MaxReduce
from .pipeline.stages.s50_copy_out import CopyOut
from .utils.arena import TransientArena
from .utils.device import DeviceLike, resolve_device

LOGGER = logging.getLogger(__name__)

MIN_SAMPLES = 4

LMEDS_CONFIDENCE = 0.99
LMEDS_OUTLIER_RATIO = 0.4

ArrayLike = Union[torch.Tensor, np.ndarray, Sequence[float]]


def default_stages() -> List[Stage]:
    return [
        BuildCandidates(),
        EvaluateCandidates(),
        MedianReduce(),
        RecountInliers(),
        MaxReduce(),
        CopyOut(),
    ]


def lmeds_iteration_cap(iterations: int) -> int:
    """Iterations needed to draw one outlier-free sample with 99% confidence at 40% outliers."""
    cap = int(math.log(1.0 - LMEDS_CONFIDENCE) / math.log(1.0 - (1.0 - LMEDS_OUTLIER_RATIO) ** MIN_SAMPLES))
    return max(1, min(int(iterations), cap))


def make_sample_indices(
    nsamples: int,
    iterations: int,
    seed: Optional[int] = None,
    device: DeviceLike = None,
) -> torch.Tensor:
    """(iterations, 4) long tensor; every row holds 4 distinct correspondence indices."""
    if nsamples < MIN_SAMPLES:
        raise InvalidArgumentError(f"need >= {MIN_SAMPLES} correspondences, got {nsamples}")
    if iterations < 1:
        raise InvalidArgumentError(f"iterations must be >= 1, got {iterations}")
    gen = torch.Generator()
    if seed is not None:
        gen.manual_seed(int(seed))
    else:
        gen.seed()
    weights = torch.ones(iterations, nsamples)
    rnd = torch.multinomial(weights, MIN_SAMPLES, replacement=False, generator=gen)
    return rnd.to(resolve_device(device))


def _as_1d(name: str, v: ArrayLike) -> torch.Tensor:
    t = v if isinstance(v, torch.Tensor) else torch.as_tensor(np.asarray(v))
    if t.ndim != 1:
        raise InvalidArgumentError(f"{name} must be 1-D, got shape {tuple(t.shape)}")
    if not (t.is_floating_point() or t.dtype in (torch.int32, torch.int64, torch.int16, torch.uint8)):
        raise InvalidArgumentError(f"{name} must be real valued, got {t.dtype}")
    return t


def _check_rnd(rnd: ArrayLike, iterations: int, nsamples: int) -> torch.Tensor:
    r = rnd if isinstance(rnd, torch.Tensor) else torch.as_tensor(np.asarray(rnd))
    if r.is_floating_point() or r.is_complex() or r.dtype == torch.bool:
        raise InvalidArgumentError(f"sample indices must be integers, got {r.dtype}")
    if r.ndim == 1:
        if r.numel() < MIN_SAMPLES * iterations:
            raise InvalidArgumentError(
                f"sample indices hold {r.numel()} entries, need {MIN_SAMPLES * iterations} for {iterations} iterations"
            )
        r = r[: MIN_SAMPLES * iterations].reshape(iterations, MIN_SAMPLES)
    elif r.ndim == 2 and r.shape[1] == MIN_SAMPLES:
        if r.shape[0] < iterations:
            raise InvalidArgumentError(f"sample indices hold {r.shape[0]} rows, need {iterations}")
        r = r[:iterations]
    else:
        raise InvalidArgumentError(f"sample indices must be (iterations, 4) or flat, got {tuple(r.shape)}")
    if int(r.min()) < 0 or int(r.max()) >= nsamples:
        raise InvalidArgumentError(f"sample indices must lie in [0, {nsamples})")
    return r.to(torch.long)


def _validate(
    x_src, y_src, x_dst, y_dst, rnd, iterations, nsamples, inlier_thr, htype, dtype, out
) -> Tuple[Correspondences, torch.Tensor, int, HomographyType]:
    try:
        ht = HomographyType.parse(htype)
    except ValueError as e:
        raise InvalidArgumentError(str(e)) from None
    if dtype not in SUPPORTED_DTYPES:
        raise InvalidArgumentError(f"dtype must be torch.float32 or torch.float64, got {dtype}")
    try:
        iterations = int(iterations)
        inlier_thr = float(inlier_thr)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(f"iterations and inlier_thr must be numeric: {e}") from None
    if iterations < 1:
        raise InvalidArgumentError(f"iterations must be >= 1, got {iterations}")
    if not (inlier_thr > 0.0) or not math.isfinite(inlier_thr):
        raise InvalidArgumentError(f"inlier_thr must be a finite value > 0, got {inlier_thr}")

    cols = [_as_1d(n, v) for n, v in (("x_src", x_src), ("y_src", y_src), ("x_dst", x_dst), ("y_dst", y_dst))]
    lens = [int(c.shape[0]) for c in cols]
    if len(set(lens)) != 1:
        raise InvalidArgumentError(f"correspondence sequences differ in length: {lens}")
    n = lens[0]
    if nsamples is not None and int(nsamples) != n:
        raise InvalidArgumentError(f"nsamples={nsamples} but sequences hold {n} entries")
    if n < MIN_SAMPLES:
        raise InvalidArgumentError(f"need >= {MIN_SAMPLES} correspondences, got {n}")

    if out is not None:
        if not isinstance(out, torch.Tensor) or tuple(out.shape) != (3, 3) or not out.is_contiguous():
            raise InvalidArgumentError("out must be a contiguous (3, 3) tensor")
        if out.dtype != dtype:
            raise InvalidArgumentError(f"out dtype {out.dtype} does not match {dtype}")

    r = _check_rnd(rnd, int(iterations), n)
    return Correspondences(*cols), r, int(iterations), ht


def _check_complete(S: EstimationState) -> None:
    # a custom stage list may stop before a winner is selected or copied out
    if S.best_idx is None or S.inliers_total is None:
        raise HomographyEstimationError("No stage selected a winning candidate", stage="select")
    if "copy_out" not in S.report:
        raise HomographyEstimationError("Winning candidate was never copied out", stage="copy_out")


def estimate_homography(
    x_src: ArrayLike,
    y_src: ArrayLike,
    x_dst: ArrayLike,
    y_dst: ArrayLike,
    rnd: ArrayLike,
    iterations: int,
    inlier_thr: float,
    htype: Union[HomographyType, str] = HomographyType.RANSAC,
    nsamples: Optional[int] = None,
    out: Optional[torch.Tensor] = None,
    device: DeviceLike = None,
    dtype: Optional[torch.dtype] = None,
    stages: Optional[List[Stage]] = None,
) -> HomographyResult:
    """Robust homography from point correspondences and precomputed minimal samples.

    Every iteration fits one candidate from its row of ``rnd``; the winner is the
    candidate with the most inliers (RANSAC) or the smallest median squared
    residual (LMedS). ``out``, when given, receives the winning 3x3 matrix.

    Raises:
        InvalidArgumentError: inputs rejected before any device work.
        HomographyEstimationError: a pipeline stage failed.
    """
    if dtype is None:
        dtype = out.dtype if isinstance(out, torch.Tensor) else torch.float32
    corr, r, iterations, ht = _validate(
        x_src, y_src, x_dst, y_dst, rnd, iterations, nsamples, inlier_thr, htype, dtype, out
    )
    dev = out.device if isinstance(out, torch.Tensor) and device is None else resolve_device(device)
    try:
        program = get_registry().get(dev, dtype, ht)
    except Exception as e:
        raise HomographyEstimationError(f"Program build failed on {dev}: {e}", stage="build_program") from e

    corr = corr.to(dev, dtype)
    r = r.to(dev)
    best_H = out if out is not None else torch.zeros(3, 3, dtype=dtype, device=dev)

    with TransientArena(dev, name="estimate") as arena:
        S = EstimationState(
            corr=corr,
            rnd=r,
            iterations=iterations,
            inlier_thr=float(inlier_thr),
            htype=ht,
            program=program,
            arena=arena,
            best_H=best_H,
        )
        try:
            S = run_stages(S, stages if stages is not None else default_stages())
            _check_complete(S)
        finally:
            S.drop_transients()

    LOGGER.debug("%s: iteration %d wins with %d inliers", ht.value, S.best_idx, S.inliers_total)
    return HomographyResult(H=best_H, inliers=int(S.inliers_total), index=int(S.best_idx), report=S.report)


def find_homography(
    src_pts: Any,
    dst_pts: Any,
    htype: Union[HomographyType, str] = HomographyType.RANSAC,
    inlier_thr: float = 3.0,
    iterations: int = 1000,
    seed: Optional[int] = None,
    device: DeviceLike = None,
    dtype: torch.dtype = torch.float32,
    adaptive_lmeds: bool = True,
) -> Tuple[np.ndarray, int]:
    """Host front-end over (N,2) point arrays; draws the samples itself.

    return: (H as (3,3) float64 numpy array, inlier count)
    """
    src = np.asarray(src_pts, dtype=np.float64).reshape(-1, 2)
    dst = np.asarray(dst_pts, dtype=np.float64).reshape(-1, 2)
    if src.shape != dst.shape:
        raise InvalidArgumentError(f"src/dst shapes differ: {src.shape} vs {dst.shape}")
    try:
        ht = HomographyType.parse(htype)
    except ValueError as e:
        raise InvalidArgumentError(str(e)) from None

    iters = int(iterations)
    if ht is HomographyType.LMEDS and adaptive_lmeds:
        capped = lmeds_iteration_cap(iters)
        if capped < iters:
            LOGGER.warning("LMedS: iterations lowered from %d to %d", iters, capped)
        iters = capped

    dev = resolve_device(device)
    rnd = make_sample_indices(src.shape[0], iters, seed=seed, device=dev)
    res = estimate_homography(
        src[:, 0], src[:, 1], dst[:, 0], dst[:, 1],
        rnd,
        iterations=iters,
        inlier_thr=inlier_thr,
        htype=ht,
        device=dev,
        dtype=dtype,
    )
    H = res.H.detach().to("cpu", torch.float64).numpy()
    return H, res.inliers
