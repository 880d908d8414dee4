from __future__ import annotations

from ..base import EstimationState, Stage
from ..base import register
from ...core.types import HomographyType
from ...kernels.reduce import HG_THREADS, ireduce


@register("s40_max_reduce")
class MaxReduce(Stage):
    required_inputs = ["inliers"]
    produces = ["best_idx", "inliers_total", "report.max_reduce"]
    STAGE_VERSION = "1.0.0"

    def __init__(self, block: int = HG_THREADS):
        super().__init__(block=int(block))
        self.block = int(block)

    def should_skip(self, S: EstimationState) -> bool:
        return S.htype is not HomographyType.RANSAC

    def run(self, S: EstimationState) -> EstimationState:
        red = ireduce(S.inliers, "max", block=self.block)
        S.best_idx = int(red.index.item())
        S.inliers_total = int(red.value.item())
        S.report["max_reduce"] = {
            "index": S.best_idx,
            "inliers": S.inliers_total,
            "levels": red.levels,
        }
        return S
