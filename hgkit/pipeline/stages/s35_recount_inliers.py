from __future__ import annotations

import torch

from ..base import EstimationState, Stage
from ..base import register
from ...core.types import HomographyType
from ...kernels.homography import lmeds_threshold
from ...kernels.reduce import sum_reduce


@register("s35_recount_inliers")
class RecountInliers(Stage):
    """Counts inliers of the LMedS winner at a threshold derived from its median."""

    required_inputs = ["best_idx_in_range", "min_median", "H"]
    produces = ["inliers_total", "report.recount"]
    STAGE_VERSION = "1.0.0"

    def __init__(self, sigma_scale: float = 2.5):
        super().__init__(sigma_scale=float(sigma_scale))
        self.sigma_scale = float(sigma_scale)

    def should_skip(self, S: EstimationState) -> bool:
        return S.htype is not HomographyType.LMEDS

    def run(self, S: EstimationState) -> EstimationState:
        c = S.corr
        h = S.H[S.best_idx]
        mask = S.arena.alloc("lmeds_inliers", (S.nsamples,), torch.long, fill=0)
        S.program.compute_lmeds_inliers(mask, h, c.x_src, c.y_src, c.x_dst, c.y_dst, S.min_median, self.sigma_scale)

        total = S.arena.alloc("total_inliers", (), torch.long, fill=0)
        sum_reduce(total, mask)
        S.inliers_total = int(total.item())
        S.report["recount"] = {
            "sigma_scale": self.sigma_scale,
            "dist_thr": lmeds_threshold(S.min_median, S.nsamples, self.sigma_scale),
            "inliers": S.inliers_total,
        }
        return S
