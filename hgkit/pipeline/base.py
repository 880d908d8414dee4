from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Type

import torch

from ..core.types import Correspondences, HomographyType
from ..kernels.program import HomographyProgram
from ..utils.arena import TransientArena


@dataclass
class EstimationState:
    corr: Correspondences
    rnd: torch.Tensor  # (iterations, 4) long
    iterations: int
    inlier_thr: float
    htype: HomographyType
    program: HomographyProgram
    arena: TransientArena
    best_H: torch.Tensor  # (3,3) output, owned by the caller
    # transient, filled by stages
    H: Optional[torch.Tensor] = None  # (iterations, 9) candidate bank
    err: Optional[torch.Tensor] = None  # (iterations, nsamples) LMedS residuals
    inliers: Optional[torch.Tensor] = None  # RANSAC: per-iteration counts
    median: Optional[torch.Tensor] = None  # (iterations,)
    best_idx: Optional[int] = None
    min_median: Optional[float] = None
    inliers_total: Optional[int] = None
    report: Dict[str, Any] = field(default_factory=dict)

    @property
    def nsamples(self) -> int:
        return self.corr.nsamples

    @property
    def device(self) -> torch.device:
        return self.arena.device

    def drop_transients(self) -> None:
        self.H = None
        self.err = None
        self.inliers = None
        self.median = None


class Stage:
    """Base class for pipeline stages with contract enforcement.

    Each stage may declare:
      - required_inputs: logical inputs (e.g., "corr", "H", "best_idx_in_range")
      - produces: outputs expected after run (e.g., "H", "best_idx", "report.median")
      - STAGE_VERSION: semantic version string, e.g., "1.0.0"
      - STAGE_NAME: set via @register or defaults to class name
    """

    required_inputs: List[str] = []
    produces: List[str] = []
    STAGE_VERSION: str = "1.0.0"
    STAGE_NAME: str = ""

    def __init__(self, **cfg):
        self.cfg = cfg

    def __call__(self, S: EstimationState) -> EstimationState:
        # Lazy import to avoid cycles
        from .contract import (
            ensure_versions,
            validate_required_inputs,
            validate_produces,
            add_stage_version,
        )

        ensure_versions(S)
        validate_required_inputs(self, S)
        S = self.run(S)
        validate_produces(self, S)
        add_stage_version(self, S)
        return S

    def run(self, S: EstimationState) -> EstimationState:  # pragma: no cover - interface
        raise NotImplementedError

    # the executor consults this to leave out the other estimator's branch
    def should_skip(self, S: EstimationState) -> bool:
        return False


REGISTRY: Dict[str, Type[Stage]] = {}


def register(name: str) -> Callable[[Type[Stage]], Type[Stage]]:
    def _wrap(cls: Type[Stage]) -> Type[Stage]:
        setattr(cls, "STAGE_NAME", name)
        REGISTRY[name] = cls
        return cls

    return _wrap
