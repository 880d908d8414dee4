from __future__ import annotations

import logging
import time
from typing import List

from .base import EstimationState, Stage
from .contract import ensure_versions
from ..core.errors import HomographyEstimationError
from ..utils.device import synchronize

LOGGER = logging.getLogger(__name__)


def _name(stage: Stage) -> str:
    return getattr(stage, "STAGE_NAME", "") or stage.__class__.__name__


def run_stages(S: EstimationState, stages: List[Stage]) -> EstimationState:
    """Run stages strictly in order, each one a full device barrier.

    A stage whose ``should_skip`` is true is recorded and passed over. The first
    failing stage aborts the run with ``HomographyEstimationError``.
    """
    ensure_versions(S)
    timings = S.report.setdefault("timings_ms", {})
    for s in stages:
        name = _name(s)
        if s.should_skip(S):
            S.report["versions"]["stage_versions"].append({
                "name": name,
                "version": getattr(s, "STAGE_VERSION", "0.0.0"),
                "skipped": True,
            })
            continue
        t0 = time.perf_counter()
        try:
            S = s(S)
            synchronize(S.device)
        except HomographyEstimationError:
            raise
        except Exception as e:
            S.report.setdefault("errors", {})["stage"] = name
            raise HomographyEstimationError(f"Stage '{name}' failed: {e}", stage=name) from e
        timings[name] = (time.perf_counter() - t0) * 1000.0
        LOGGER.debug("stage %s done in %.2f ms", name, timings[name])
    return S
