from __future__ import annotations

from typing import Optional

import numpy as np
import cv2


def project_H(H, pts_xy) -> np.ndarray:
    """Projects (N,2) points through a 3x3 homography with OpenCV.

    return: (N,2) float64 points
    """
    pts = np.asarray(pts_xy, np.float64).reshape(-1, 1, 2)
    if pts.shape[0] == 0:
        return np.zeros((0, 2), np.float64)
    prj = cv2.perspectiveTransform(pts, np.asarray(H, np.float64))
    return prj.reshape(-1, 2)


def reprojection_errors(H, src_xy, dst_xy) -> np.ndarray:
    """Euclidean forward reprojection distance per point pair."""
    pred = project_H(H, src_xy)
    dst = np.asarray(dst_xy, np.float64).reshape(-1, 2)
    return np.linalg.norm(pred - dst, axis=1)


def inlier_mask(H, src_xy, dst_xy, thresh_px: float) -> np.ndarray:
    err = reprojection_errors(H, src_xy, dst_xy)
    # NaN distances (points mapped to infinity) compare False
    return err < float(thresh_px)


def rmse_inliers(H, src_xy, dst_xy, mask) -> Optional[float]:
    """Root mean square reprojection error over the masked pairs."""
    if H is None or mask is None or not np.any(mask):
        return None
    mask = np.asarray(mask, bool)
    src = np.asarray(src_xy, np.float64).reshape(-1, 2)[mask]
    dst = np.asarray(dst_xy, np.float64).reshape(-1, 2)[mask]
    err = reprojection_errors(H, src, dst)
    return float(np.sqrt(np.mean(err**2)))
