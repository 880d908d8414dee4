from __future__ import annotations

import numpy as np
import pytest
import torch

H_TRUE = np.array(
    [
        [1.02, 0.05, 12.0],
        [-0.03, 0.98, -7.0],
        [1.0e-4, -5.0e-5, 1.0],
    ],
    dtype=np.float64,
)


def apply_H(H: np.ndarray, pts: np.ndarray) -> np.ndarray:
    hom = np.hstack([pts, np.ones((pts.shape[0], 1))])
    prj = (H @ hom.T).T
    return prj[:, :2] / prj[:, 2:3]


@pytest.fixture
def cpu():
    return torch.device("cpu")


@pytest.fixture
def scene():
    """100 correspondences: the first 95 follow H_TRUE with 0.2 px noise, the last 5 are outliers."""
    rng = np.random.default_rng(7)
    n_in, n_out = 95, 5
    src_in = rng.uniform([0.0, 0.0], [640.0, 480.0], size=(n_in, 2))
    dst_in = apply_H(H_TRUE, src_in) + rng.normal(scale=0.2, size=(n_in, 2))

    src_out = rng.uniform([0.0, 0.0], [640.0, 480.0], size=(n_out, 2))
    dst_out = apply_H(H_TRUE, src_out) + rng.choice([-1.0, 1.0], size=(n_out, 2)) * rng.uniform(60.0, 150.0, size=(n_out, 2))

    src = np.vstack([src_in, src_out])
    dst = np.vstack([dst_in, dst_out])
    return {"src": src, "dst": dst, "n_inliers": n_in, "H": H_TRUE}


def columns(src: np.ndarray, dst: np.ndarray):
    return src[:, 0], src[:, 1], dst[:, 0], dst[:, 1]
