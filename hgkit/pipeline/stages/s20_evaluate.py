from __future__ import annotations

import torch

from ..base import EstimationState, Stage
from ..base import register
from ...core.types import HomographyType


@register("s20_evaluate")
class EvaluateCandidates(Stage):
    """Scores every candidate against every correspondence.

    RANSAC keeps one inlier count per candidate; LMedS keeps the full residual
    matrix for the median stage.
    """

    required_inputs = ["corr", "H"]
    produces = ["report.evaluate"]
    STAGE_VERSION = "1.0.0"

    def run(self, S: EstimationState) -> EstimationState:
        it, n = S.iterations, S.nsamples
        c = S.corr
        if S.htype is HomographyType.RANSAC:
            S.inliers = S.arena.alloc("inliers", (it,), torch.long, fill=0)
            out = S.inliers
        else:
            big = torch.finfo(S.program.dtype).max
            S.err = S.arena.alloc("err", (it, n), S.program.dtype, fill=big)
            out = S.err
        S.program.evaluate(out, S.H, c.x_src, c.y_src, c.x_dst, c.y_dst, it, S.inlier_thr)
        S.report["evaluate"] = {"mode": S.htype.value, "nsamples": n, "inlier_thr": float(S.inlier_thr)}
        return S
