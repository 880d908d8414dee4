from __future__ import annotations

from ..base import EstimationState, Stage
from ..base import register


@register("s50_copy_out")
class CopyOut(Stage):
    required_inputs = ["H", "best_idx_in_range", "best_H", "inliers_total"]
    produces = ["report.copy_out"]
    STAGE_VERSION = "1.0.0"

    def run(self, S: EstimationState) -> EstimationState:
        # 9 coefficients at flat offset best_idx * 9 of the candidate bank
        src = S.H.reshape(-1).narrow(0, S.best_idx * 9, 9)
        S.best_H.view(-1).copy_(src)
        S.report["copy_out"] = {"index": S.best_idx, "inliers": S.inliers_total}
        return S
