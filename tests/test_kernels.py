from __future__ import annotations

import numpy as np
import pytest
import torch

from hgkit.kernels import homography as hk
from conftest import H_TRUE, apply_H

EPS64 = float(torch.finfo(torch.float64).eps)


def _square(tx: float, ty: float):
    src = np.array([[0.0, 0.0], [10.0, 0.0], [10.0, 10.0], [0.0, 10.0]])
    dst = src + np.array([tx, ty])
    return src, dst


def _cols(src, dst, dtype=torch.float64):
    return tuple(torch.as_tensor(a, dtype=dtype) for a in (src[:, 0], src[:, 1], dst[:, 0], dst[:, 1]))


def _buffers(it: int, dtype=torch.float64):
    return torch.zeros(it, 9, dtype=dtype), torch.empty(it, 9, 9, dtype=dtype), torch.empty(it, 9, 9, dtype=dtype)


def test_compute_homography_translation_exact():
    src, dst = _square(5.0, -3.0)
    xs, ys, xd, yd = _cols(src, dst)
    H, A, V = _buffers(1)
    rnd = torch.tensor([[0, 1, 2, 3]])

    hk.compute_homography(H, A, V, xs, ys, xd, yd, rnd, 1, EPS64)

    expected = np.array([[1.0, 0.0, 5.0], [0.0, 1.0, -3.0], [0.0, 0.0, 1.0]])
    np.testing.assert_allclose(H[0].reshape(3, 3).numpy(), expected, atol=1e-8)
    # the ninth row of A is never written
    assert torch.all(A[:, 8, :] == 0)


def test_compute_homography_recovers_perspective_map():
    src = np.array([[10.0, 20.0], [600.0, 40.0], [580.0, 450.0], [30.0, 400.0], [300.0, 240.0]])
    dst = apply_H(H_TRUE, src)
    xs, ys, xd, yd = _cols(src, dst)
    H, A, V = _buffers(2)
    rnd = torch.tensor([[0, 1, 2, 3], [4, 1, 2, 3]])

    hk.compute_homography(H, A, V, xs, ys, xd, yd, rnd, 2, EPS64)

    for i in range(2):
        np.testing.assert_allclose(H[i].reshape(3, 3).numpy(), H_TRUE, rtol=1e-6, atol=1e-8)


def test_degenerate_sample_does_not_raise():
    src, dst = _square(1.0, 1.0)
    xs, ys, xd, yd = _cols(src, dst)
    H, A, V = _buffers(2)
    # repeated point and a healthy sample side by side
    rnd = torch.tensor([[0, 0, 0, 0], [0, 1, 2, 3]])

    hk.compute_homography(H, A, V, xs, ys, xd, yd, rnd, 2, EPS64)
    inl = torch.zeros(2, dtype=torch.long)
    hk.eval_ransac(inl, H, xs, ys, xd, yd, 2, 0.5, EPS64)

    assert 0 <= int(inl[0]) <= 4
    assert int(inl[1]) == 4


def test_eval_ransac_counts_strictly_below_threshold():
    src = np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [3.0, 0.0], [4.0, 0.0]])
    # offsets along x of 0, 1, 2, 3, 4 px under the identity
    dst = src + np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [3.0, 0.0], [4.0, 0.0]])
    xs, ys, xd, yd = _cols(src, dst)
    H = torch.eye(3, dtype=torch.float64).reshape(1, 9)
    inl = torch.zeros(1, dtype=torch.long)

    hk.eval_ransac(inl, H, xs, ys, xd, yd, 1, 2.0, EPS64)

    # 0 and 1 px pass; exactly 2 px does not
    assert int(inl[0]) == 2


def test_eval_lmeds_writes_squared_residuals():
    src = np.array([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0], [3.0, 3.0]])
    dst = src + np.array([[0.0, 0.0], [3.0, 4.0], [0.0, 1.0], [1.0, 0.0]])
    xs, ys, xd, yd = _cols(src, dst)
    H = torch.eye(3, dtype=torch.float64).reshape(1, 9).repeat(2, 1)
    err = torch.full((2, 4), -1.0, dtype=torch.float64)

    hk.eval_lmeds(err, H, xs, ys, xd, yd, 2, EPS64)

    np.testing.assert_allclose(err[0].numpy(), [0.0, 25.0, 1.0, 1.0])
    np.testing.assert_allclose(err[1].numpy(), err[0].numpy())


def test_squared_residuals_sanitises_non_finite():
    xs = torch.tensor([0.0, 1.0], dtype=torch.float64)
    ys = torch.tensor([0.0, 1.0], dtype=torch.float64)
    Hm = torch.full((1, 3, 3), float("nan"), dtype=torch.float64)

    d = hk.squared_residuals(Hm, xs, ys, xs, ys, EPS64)

    assert torch.all(d == torch.finfo(torch.float64).max)


@pytest.mark.parametrize(
    "rows, expected",
    [
        ([[1.0, 2.0, 3.0], [0.5, 4.0, 9.0]], [2.0, 4.0]),
        ([[1.0, 2.0, 3.0, 10.0], [0.0, 0.0, 6.0, 8.0]], [2.5, 3.0]),
    ],
)
def test_compute_median_odd_and_even(rows, expected):
    err = torch.tensor(rows, dtype=torch.float64)
    median = torch.empty(err.shape[0], dtype=torch.float64)

    hk.compute_median(median, err, err.shape[0])

    np.testing.assert_allclose(median.numpy(), expected)


def test_compute_median_does_not_overflow_at_dtype_max():
    big = torch.finfo(torch.float32).max
    err = torch.tensor([[1.0, big, big, big]], dtype=torch.float32)
    median = torch.empty(1, dtype=torch.float32)

    hk.compute_median(median, err, 1)

    assert torch.isfinite(median).all()
    assert float(median[0]) == big


def test_lmeds_threshold_formula():
    n, med, scale = 100, 0.25, 2.5
    sigma = 1.4826 * (1.0 + 5.0 / (n - 4)) * 0.5
    assert hk.lmeds_threshold(med, n, scale) == pytest.approx((scale * sigma) ** 2)


def test_lmeds_threshold_floor_and_four_points():
    # zero median falls back to the sigma floor
    assert hk.lmeds_threshold(0.0, 50, 2.5) == pytest.approx((2.5 * 1e-6) ** 2)
    # n == 4 is finite
    assert np.isfinite(hk.lmeds_threshold(1.0, 4, 2.5))


def test_compute_lmeds_inliers_mask():
    src = np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [3.0, 0.0], [4.0, 0.0]])
    dst = src.copy()
    dst[4, 0] += 50.0
    xs, ys, xd, yd = _cols(src, dst)
    h = torch.eye(3, dtype=torch.float64).reshape(9)
    mask = torch.zeros(5, dtype=torch.long)

    hk.compute_lmeds_inliers(mask, h, xs, ys, xd, yd, 0.01, 2.5, EPS64)

    assert mask.tolist() == [1, 1, 1, 1, 0]
