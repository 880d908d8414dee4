from __future__ import annotations

from dataclasses import dataclass

import torch

HG_THREADS = 256


def divup(a: int, b: int) -> int:
    return (a + b - 1) // b


@dataclass
class ArgReduction:
    value: torch.Tensor  # 0-d, on device
    index: torch.Tensor  # 0-d long, on device
    levels: int  # 1 when a single block answered directly


def _identity(values: torch.Tensor, op: str):
    if values.is_floating_point():
        return float("inf") if op == "min" else float("-inf")
    info = torch.iinfo(values.dtype)
    return info.max if op == "min" else info.min


def _select(values: torch.Tensor, op: str, dim: int) -> torch.Tensor:
    # argmin/argmax return the first extremal index
    return values.argmin(dim=dim) if op == "min" else values.argmax(dim=dim)


def ireduce(values: torch.Tensor, op: str, block: int = HG_THREADS) -> ArgReduction:
    """Arg-reduction of a 1-D tensor in two levels, lowest index on ties.

    Level one reduces each block of ``block`` consecutive entries to a (value, index)
    pair; level two reduces the block results and only runs when there is more
    than one block.
    """
    if op not in ("min", "max"):
        raise ValueError(f"ireduce: unsupported op '{op}'")
    if values.ndim != 1 or values.numel() == 0:
        raise ValueError("ireduce: expected a non-empty 1-D tensor")

    n = int(values.shape[0])
    nblocks = divup(n, block)
    padded = values
    if nblocks * block != n:
        pad = torch.full((nblocks * block - n,), _identity(values, op), dtype=values.dtype, device=values.device)
        padded = torch.cat([values, pad])
    blocks = padded.view(nblocks, block)

    local = _select(blocks, op, dim=1)  # (nblocks,)
    blk_val = blocks.gather(1, local.unsqueeze(1)).squeeze(1)
    offsets = torch.arange(nblocks, device=values.device, dtype=torch.long) * block
    blk_idx = local + offsets

    if nblocks == 1:
        return ArgReduction(value=blk_val[0], index=blk_idx[0], levels=1)

    j = _select(blk_val, op, dim=0)
    return ArgReduction(value=blk_val[j], index=blk_idx[j], levels=2)


def sum_reduce(out: torch.Tensor, values: torch.Tensor) -> torch.Tensor:
    out.copy_(values.sum())
    return out


def sort_rows(values: torch.Tensor) -> torch.Tensor:
    """Ascending stable sort of every row, written back in place."""
    sorted_vals, _ = torch.sort(values, dim=1, stable=True)
    values.copy_(sorted_vals)
    return values
