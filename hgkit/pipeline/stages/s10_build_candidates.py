from __future__ import annotations

from ..base import EstimationState, Stage
from ..base import register


@register("s10_build_candidates")
class BuildCandidates(Stage):
    """Fits one homography per iteration from its minimal sample."""

    required_inputs = ["corr", "rnd"]
    produces = ["H", "report.build"]
    STAGE_VERSION = "1.0.0"

    def run(self, S: EstimationState) -> EstimationState:
        it = S.iterations
        dtype = S.program.dtype
        S.H = S.arena.alloc("H", (it, 9), dtype, fill=0.0)

        # A and V only live for the solve
        with S.arena.scope("build") as ws:
            A = ws.alloc("A", (it, 9, 9), dtype)
            V = ws.alloc("V", (it, 9, 9), dtype)
            c = S.corr
            S.program.compute_homography(S.H, A, V, c.x_src, c.y_src, c.x_dst, c.y_dst, S.rnd, it)

        finite = S.H.isfinite().all(dim=1)
        S.report["build"] = {
            "iterations": it,
            "finite_candidates": int(finite.sum().item()),
        }
        return S
