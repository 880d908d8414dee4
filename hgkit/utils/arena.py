"""
Scoped ownership of transient device buffers.

Every buffer an estimation call needs is taken from a ``TransientArena`` and is
released when the arena (or the nested scope that allocated it) exits, whether the
block finished normally or raised.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Sequence

import torch

LOGGER = logging.getLogger(__name__)

_OUTSTANDING = 0
_OUTSTANDING_LOCK = threading.Lock()


def outstanding_buffers() -> int:
    """Number of arena buffers currently alive in this process."""
    with _OUTSTANDING_LOCK:
        return _OUTSTANDING


def _track(delta: int) -> None:
    global _OUTSTANDING
    with _OUTSTANDING_LOCK:
        _OUTSTANDING += delta


class TransientArena:
    def __init__(self, device: torch.device, name: str = "arena", parent: Optional["TransientArena"] = None):
        self.device = torch.device(device)
        self.name = name
        self.parent = parent
        self._buffers: Dict[str, torch.Tensor] = {}
        self._closed = False

    def __enter__(self) -> "TransientArena":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __contains__(self, key: str) -> bool:
        return key in self._buffers

    @property
    def live(self) -> int:
        return len(self._buffers)

    def scope(self, name: str) -> "TransientArena":
        """Child arena whose buffers are released when the ``with`` block ends."""
        return TransientArena(self.device, name=f"{self.name}/{name}", parent=self)

    def alloc(
        self,
        key: str,
        shape: Sequence[int],
        dtype: torch.dtype,
        fill: Optional[float] = None,
    ) -> torch.Tensor:
        if self._closed:
            raise RuntimeError(f"TransientArena '{self.name}' is already released")
        if key in self._buffers:
            raise KeyError(f"Buffer '{key}' already allocated in '{self.name}'")
        if fill is None:
            buf = torch.empty(tuple(shape), dtype=dtype, device=self.device)
        else:
            buf = torch.full(tuple(shape), fill, dtype=dtype, device=self.device)
        self._buffers[key] = buf
        _track(+1)
        return buf

    def get(self, key: str) -> torch.Tensor:
        return self._buffers[key]

    def free(self, key: str) -> None:
        if self._buffers.pop(key, None) is not None:
            _track(-1)

    def release(self) -> None:
        n = len(self._buffers)
        for key in list(self._buffers):
            self.free(key)
        self._closed = True
        if n:
            LOGGER.debug("%s: released %d buffer(s)", self.name, n)
