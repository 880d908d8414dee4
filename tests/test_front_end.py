from __future__ import annotations

import logging

import cv2
import numpy as np
import pytest
import torch

from hgkit.api import find_homography, lmeds_iteration_cap, make_sample_indices
from hgkit.core.errors import InvalidArgumentError
from hgkit.core.geometry import project_H


def test_lmeds_iteration_cap():
    # log(0.01) / log(1 - 0.6**4) ~= 33.4
    assert lmeds_iteration_cap(1000) == 33
    assert lmeds_iteration_cap(20) == 20
    assert lmeds_iteration_cap(0) == 1


def test_sample_indices_distinct_and_reproducible():
    a = make_sample_indices(10, 50, seed=5, device="cpu")
    b = make_sample_indices(10, 50, seed=5, device="cpu")
    assert a.shape == (50, 4)
    assert a.dtype == torch.long
    assert torch.equal(a, b)
    assert int(a.min()) >= 0 and int(a.max()) < 10
    for row in a.tolist():
        assert len(set(row)) == 4


def test_sample_indices_reject_small_inputs():
    with pytest.raises(InvalidArgumentError):
        make_sample_indices(3, 10)
    with pytest.raises(InvalidArgumentError):
        make_sample_indices(10, 0)


def test_find_homography_agrees_with_opencv(scene):
    src, dst = scene["src"], scene["dst"]
    n_in = scene["n_inliers"]

    H, inliers = find_homography(src, dst, "ransac", inlier_thr=3.0, iterations=300, seed=0, device="cpu")
    H_cv, _ = cv2.findHomography(src[:n_in], dst[:n_in], 0)

    assert H.shape == (3, 3) and H.dtype == np.float64
    assert inliers >= 90
    diff = np.linalg.norm(project_H(H, src[:n_in]) - project_H(H_cv, src[:n_in]), axis=1)
    assert np.median(diff) < 1.0


def test_find_homography_lmeds_caps_iterations(scene, caplog):
    src, dst = scene["src"], scene["dst"]

    with caplog.at_level(logging.WARNING, logger="hgkit.api"):
        H, inliers = find_homography(src, dst, "lmeds", iterations=500, seed=2, device="cpu", dtype=torch.float64)

    assert any("lowered from 500 to 33" in r.getMessage() for r in caplog.records)
    assert np.isfinite(H).all()
    assert 0 <= inliers <= len(src)


def test_find_homography_accepts_opencv_layout():
    src = np.array([[0.0, 0.0], [10.0, 0.0], [10.0, 10.0], [0.0, 10.0]], dtype=np.float32).reshape(-1, 1, 2)
    dst = src + np.float32(4.0)

    H, inliers = find_homography(src, dst, iterations=1, seed=0, device="cpu")

    np.testing.assert_allclose(project_H(H, src.reshape(-1, 2)), dst.reshape(-1, 2), atol=1e-3)
    assert inliers == 4


def test_find_homography_rejects_shape_mismatch():
    with pytest.raises(InvalidArgumentError):
        find_homography(np.zeros((5, 2)), np.zeros((6, 2)), device="cpu")
    with pytest.raises(InvalidArgumentError):
        find_homography(np.zeros((5, 2)), np.zeros((5, 2)), htype="prosac", device="cpu")
