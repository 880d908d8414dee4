"""
Batched homography kernels.

Every function here works on whole batches of candidates at once: one row of the
candidate bank per iteration, one column of the residual matrix per point pair.
Buffers are passed in pre-allocated and filled in place.
"""

from __future__ import annotations

import math
from typing import Iterator, Tuple

import torch

_SQRT2 = math.sqrt(2.0)

# LMedS robust scale (Rousseeuw & Leroy)
LMEDS_SIGMA_FACTOR = 1.4826
LMEDS_SIGMA_FLOOR = 1e-6

# upper bound on (iterations x nsamples) entries evaluated in one pass
_EVAL_CHUNK_ELEMS = 1 << 22


def _normalize_samples(pts: torch.Tensor, eps: float) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Hartley normalisation of each sample independently.

    pts: (I, 4, 2)
    return: normalised points (I, 4, 2), mean (I, 2), scale (I,)
    """
    mean = pts.mean(dim=1)
    centered = pts - mean[:, None, :]
    avg_norm = centered.norm(dim=-1).mean(dim=1)
    scale = torch.where(avg_norm > eps, _SQRT2 / avg_norm.clamp_min(eps), torch.ones_like(avg_norm))
    return centered * scale[:, None, None], mean, scale


def _denormalize(Hn: torch.Tensor, m_src, s_src, m_dst, s_dst) -> torch.Tensor:
    """H = inv(T_dst) @ Hn @ T_src with T = [[s, 0, -s*mx], [0, s, -s*my], [0, 0, 1]]."""
    I = Hn.shape[0]
    T_src = torch.zeros(I, 3, 3, dtype=Hn.dtype, device=Hn.device)
    T_src[:, 0, 0] = s_src
    T_src[:, 1, 1] = s_src
    T_src[:, 0, 2] = -s_src * m_src[:, 0]
    T_src[:, 1, 2] = -s_src * m_src[:, 1]
    T_src[:, 2, 2] = 1.0

    T_dst_inv = torch.zeros_like(T_src)
    T_dst_inv[:, 0, 0] = 1.0 / s_dst
    T_dst_inv[:, 1, 1] = 1.0 / s_dst
    T_dst_inv[:, 0, 2] = m_dst[:, 0]
    T_dst_inv[:, 1, 2] = m_dst[:, 1]
    T_dst_inv[:, 2, 2] = 1.0
    return T_dst_inv @ Hn @ T_src


def compute_homography(
    H: torch.Tensor,
    A: torch.Tensor,
    V: torch.Tensor,
    x_src: torch.Tensor,
    y_src: torch.Tensor,
    x_dst: torch.Tensor,
    y_dst: torch.Tensor,
    rnd: torch.Tensor,
    iterations: int,
    eps: float,
) -> torch.Tensor:
    """Fit one candidate per iteration from its 4-point sample.

    H: (iterations, 9) candidate bank, written
    A: (iterations, 9, 9) linear system workspace, written
    V: (iterations, 9, 9) right singular vectors, written
    rnd: (iterations, 4) long sample indices
    """
    idx = rnd[:iterations]
    src = torch.stack([x_src[idx], y_src[idx]], dim=-1)  # (I,4,2)
    dst = torch.stack([x_dst[idx], y_dst[idx]], dim=-1)
    src_n, m_src, s_src = _normalize_samples(src, eps)
    dst_n, m_dst, s_dst = _normalize_samples(dst, eps)

    x, y = src_n[..., 0], src_n[..., 1]
    u, v = dst_n[..., 0], dst_n[..., 1]

    A.zero_()
    even = A[:, 0:8:2, :]  # rows 0,2,4,6 (views)
    odd = A[:, 1:8:2, :]
    even[..., 0] = -x
    even[..., 1] = -y
    even[..., 2] = -1.0
    even[..., 6] = u * x
    even[..., 7] = u * y
    even[..., 8] = u
    odd[..., 3] = -x
    odd[..., 4] = -y
    odd[..., 5] = -1.0
    odd[..., 6] = v * x
    odd[..., 7] = v * y
    odd[..., 8] = v

    # row 8 stays zero so A is square; its null vector is the last right singular vector
    _, _, Vh = torch.linalg.svd(A)
    V.copy_(Vh.transpose(-1, -2))
    Hn = V[:, :, 8].reshape(-1, 3, 3)

    Hd = _denormalize(Hn, m_src, s_src, m_dst, s_dst)
    h22 = Hd[:, 2, 2]
    ok = h22.abs() > eps
    denom = torch.where(ok, h22, torch.ones_like(h22))
    Hd = Hd / denom[:, None, None]
    H.copy_(Hd.reshape(-1, 9))
    return H


def _project(Hm: torch.Tensor, x, y, eps: float):
    """Hm: (I,3,3); x, y: (N,) -> xp, yp: (I, N)."""
    x = x.unsqueeze(0)
    y = y.unsqueeze(0)
    z = Hm[:, 2, 0:1] * x + Hm[:, 2, 1:2] * y + Hm[:, 2, 2:3]
    sign = torch.where(z < 0, -torch.ones_like(z), torch.ones_like(z))
    z = torch.where(z.abs() < eps, sign * eps, z)
    xp = (Hm[:, 0, 0:1] * x + Hm[:, 0, 1:2] * y + Hm[:, 0, 2:3]) / z
    yp = (Hm[:, 1, 0:1] * x + Hm[:, 1, 1:2] * y + Hm[:, 1, 2:3]) / z
    return xp, yp


def squared_residuals(Hm: torch.Tensor, x_src, y_src, x_dst, y_dst, eps: float) -> torch.Tensor:
    """Squared forward reprojection error, (I, N); non-finite entries become the dtype max."""
    xp, yp = _project(Hm, x_src, y_src, eps)
    d = (x_dst.unsqueeze(0) - xp) ** 2 + (y_dst.unsqueeze(0) - yp) ** 2
    big = torch.finfo(d.dtype).max
    return torch.nan_to_num(d, nan=big, posinf=big, neginf=big)


def _row_chunks(iterations: int, nsamples: int) -> Iterator[Tuple[int, int]]:
    rows = max(1, _EVAL_CHUNK_ELEMS // max(nsamples, 1))
    for start in range(0, iterations, rows):
        yield start, min(iterations, start + rows)


def eval_ransac(
    inliers: torch.Tensor,
    H: torch.Tensor,
    x_src, y_src, x_dst, y_dst,
    iterations: int,
    inlier_thr: float,
    eps: float,
) -> torch.Tensor:
    """inliers: (iterations,) long, number of pairs with error < inlier_thr per candidate."""
    nsamples = int(x_src.shape[0])
    thr2 = float(inlier_thr) * float(inlier_thr)
    for a, b in _row_chunks(iterations, nsamples):
        Hm = H[a:b].reshape(-1, 3, 3)
        d = squared_residuals(Hm, x_src, y_src, x_dst, y_dst, eps)
        inliers[a:b] = (d < thr2).sum(dim=1)
    return inliers


def eval_lmeds(
    err: torch.Tensor,
    H: torch.Tensor,
    x_src, y_src, x_dst, y_dst,
    iterations: int,
    eps: float,
) -> torch.Tensor:
    """err: (iterations, nsamples), squared residual of every pair under every candidate."""
    nsamples = int(x_src.shape[0])
    for a, b in _row_chunks(iterations, nsamples):
        Hm = H[a:b].reshape(-1, 3, 3)
        err[a:b] = squared_residuals(Hm, x_src, y_src, x_dst, y_dst, eps)
    return err


def compute_median(median: torch.Tensor, err_sorted: torch.Tensor, iterations: int) -> torch.Tensor:
    """Median of every already-sorted residual row."""
    n = int(err_sorted.shape[1])
    mid = n // 2
    rows = err_sorted[:iterations]
    if n % 2 == 1:
        median.copy_(rows[:, mid])
    else:
        # halves first: rows may hold the dtype max
        median.copy_(rows[:, mid - 1] * 0.5 + rows[:, mid] * 0.5)
    return median


def lmeds_threshold(min_median: float, nsamples: int, sigma_scale: float) -> float:
    """Squared inlier threshold calibrated from the winning median."""
    dof = max(int(nsamples) - 4, 1)
    sigma = LMEDS_SIGMA_FACTOR * (1.0 + 5.0 / dof) * math.sqrt(max(float(min_median), 0.0))
    sigma = max(sigma, LMEDS_SIGMA_FLOOR)
    return (float(sigma_scale) * sigma) ** 2


def compute_lmeds_inliers(
    inliers: torch.Tensor,
    h: torch.Tensor,
    x_src, y_src, x_dst, y_dst,
    min_median: float,
    sigma_scale: float,
    eps: float,
) -> torch.Tensor:
    """inliers: (nsamples,) mask (1 = inlier) under the single candidate ``h`` (9,)."""
    nsamples = int(x_src.shape[0])
    dist_thr = lmeds_threshold(min_median, nsamples, sigma_scale)
    d = squared_residuals(h.reshape(1, 3, 3), x_src, y_src, x_dst, y_dst, eps)[0]
    inliers.copy_(d <= dist_thr)
    return inliers
