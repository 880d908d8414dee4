from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

import torch


class HomographyType(str, Enum):
    RANSAC = "ransac"
    LMEDS = "lmeds"

    @classmethod
    def parse(cls, value: "HomographyType | str") -> "HomographyType":
        if isinstance(value, HomographyType):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown homography type: {value!r} (expected 'ransac' or 'lmeds')") from None


SUPPORTED_DTYPES = (torch.float32, torch.float64)


@dataclass
class Correspondences:
    """Four parallel 1-D tensors of equal length, one entry per point pair."""

    x_src: torch.Tensor
    y_src: torch.Tensor
    x_dst: torch.Tensor
    y_dst: torch.Tensor

    @property
    def nsamples(self) -> int:
        return int(self.x_src.shape[0])

    @property
    def device(self) -> torch.device:
        return self.x_src.device

    @property
    def dtype(self) -> torch.dtype:
        return self.x_src.dtype

    def to(self, device: torch.device, dtype: torch.dtype) -> "Correspondences":
        return Correspondences(
            x_src=self.x_src.to(device=device, dtype=dtype),
            y_src=self.y_src.to(device=device, dtype=dtype),
            x_dst=self.x_dst.to(device=device, dtype=dtype),
            y_dst=self.y_dst.to(device=device, dtype=dtype),
        )


@dataclass
class HomographyResult:
    H: torch.Tensor  # (3,3)
    inliers: int
    index: int  # winning iteration
    report: Dict[str, Any] = field(default_factory=dict)
