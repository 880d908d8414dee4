from __future__ import annotations

import logging

from ..base import EstimationState, Stage
from ..base import register
from ...core.types import HomographyType
from ...kernels.reduce import HG_THREADS, ireduce, sort_rows

LOGGER = logging.getLogger(__name__)


@register("s30_median_reduce")
class MedianReduce(Stage):
    required_inputs = ["err"]
    produces = ["best_idx", "min_median", "report.median"]
    STAGE_VERSION = "1.0.0"

    def __init__(self, block: int = HG_THREADS):
        super().__init__(block=int(block))
        self.block = int(block)

    def should_skip(self, S: EstimationState) -> bool:
        return S.htype is not HomographyType.LMEDS

    def run(self, S: EstimationState) -> EstimationState:
        it = S.iterations
        sort_rows(S.err)
        S.median = S.arena.alloc("median", (it,), S.program.dtype)
        S.program.compute_median(S.median, S.err, it)

        red = ireduce(S.median, "min", block=self.block)
        # blocking read-backs: the recount stage is parameterised by both
        S.min_median = float(red.value.item())
        S.best_idx = int(red.index.item())
        S.report["median"] = {
            "min_median": S.min_median,
            "index": S.best_idx,
            "levels": red.levels,
        }
        LOGGER.debug("min median %.6g at iteration %d (%d level(s))", S.min_median, S.best_idx, red.levels)
        return S
