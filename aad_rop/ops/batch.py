# aad_rop/ops/batch.py
"""
Batchers evaluate a function on `n` inputs packed side by side in one vector
and return the `n` outputs packed the same way: {1,2} and {3,4} travel as
{1,2,3,4}. `n` must divide the packed length.
"""
from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from ..core.pool import pool, pool_r
from ..core.vector_cache import VectorCache
from ..errors import ShapeError
from .slices import concat, concat_r, slice_result, slice_result_r


@runtime_checkable
class Batcher(Protocol):
    def batch(self, inp, n: int):
        ...


@runtime_checkable
class RBatcher(Protocol):
    def batch(self, inp, n: int):
        ...

    def batch_r(self, rv, inp, n: int):
        ...


def _sample_len(inp, n: int) -> int:
    size = len(inp.output())
    if n <= 0 or size % n:
        raise ShapeError(f"batch: count {n} does not divide input length {size}")
    return size // n


class FuncBatcher:
    """
    Turns a Func into a Batcher by splitting the packed input, applying the
    function to each piece and joining the outputs. The input is pooled so
    the n slices cost one traversal of its graph.
    """

    def __init__(self, f, cache: Optional[VectorCache] = None):
        self.f = f
        self.cache = cache

    def batch(self, inp, n: int):
        k = _sample_len(inp, n)

        def run(pooled):
            outs = [self.f.apply(slice_result(pooled, i * k, (i + 1) * k, self.cache))
                    for i in range(n)]
            return concat(*outs, cache=self.cache)

        return pool(inp, run)


class RFuncBatcher(FuncBatcher):
    """FuncBatcher for RFuncs."""

    def batch_r(self, rv, inp, n: int):
        k = _sample_len(inp, n)

        def run(pooled):
            outs = [self.f.apply_r(rv, slice_result_r(pooled, i * k, (i + 1) * k, self.cache))
                    for i in range(n)]
            return concat_r(*outs, cache=self.cache)

        return pool_r(inp, run)


class ComposedBatcher:
    """Runs the packed input through each sub-batcher in turn."""

    def __init__(self, batchers: Sequence):
        self.batchers = list(batchers)

    def batch(self, inp, n: int):
        for b in self.batchers:
            inp = b.batch(inp, n)
        return inp


class ComposedRBatcher(ComposedBatcher):
    def batch_r(self, rv, inp, n: int):
        for b in self.batchers:
            inp = b.batch_r(rv, inp, n)
        return inp
