from __future__ import annotations

import pytest
import torch

from hgkit.utils.arena import TransientArena, outstanding_buffers


def test_release_on_normal_exit(cpu):
    base = outstanding_buffers()
    with TransientArena(cpu) as arena:
        a = arena.alloc("a", (4, 9), torch.float32, fill=0.0)
        arena.alloc("b", (4,), torch.long)
        assert a.shape == (4, 9)
        assert torch.all(a == 0)
        assert arena.live == 2
        assert outstanding_buffers() == base + 2
    assert arena.live == 0
    assert outstanding_buffers() == base


def test_release_on_error(cpu):
    base = outstanding_buffers()
    with pytest.raises(RuntimeError):
        with TransientArena(cpu) as arena:
            arena.alloc("a", (3,), torch.float64)
            raise RuntimeError("boom")
    assert outstanding_buffers() == base


def test_scope_releases_before_parent(cpu):
    base = outstanding_buffers()
    with TransientArena(cpu, name="outer") as arena:
        arena.alloc("keep", (2,), torch.float32)
        with arena.scope("inner") as ws:
            ws.alloc("tmp", (2, 9, 9), torch.float32)
            assert ws.name == "outer/inner"
            assert outstanding_buffers() == base + 2
        assert "keep" in arena
        assert ws.live == 0
        assert outstanding_buffers() == base + 1
    assert outstanding_buffers() == base


def test_duplicate_key_and_closed_arena(cpu):
    arena = TransientArena(cpu)
    arena.alloc("x", (1,), torch.float32)
    with pytest.raises(KeyError):
        arena.alloc("x", (1,), torch.float32)
    arena.release()
    with pytest.raises(RuntimeError):
        arena.alloc("y", (1,), torch.float32)


def test_free_is_idempotent(cpu):
    base = outstanding_buffers()
    arena = TransientArena(cpu)
    arena.alloc("x", (1,), torch.float32)
    arena.free("x")
    arena.free("x")
    assert outstanding_buffers() == base
    arena.release()
