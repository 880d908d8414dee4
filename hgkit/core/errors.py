from __future__ import annotations

from typing import Optional


class InvalidArgumentError(ValueError):
    """Input rejected before any device work was dispatched."""


class HomographyEstimationError(RuntimeError):
    """A pipeline stage failed; the whole estimation call is aborted."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage
