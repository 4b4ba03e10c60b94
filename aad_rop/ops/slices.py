# aad_rop/ops/slices.py
"""Slicing, concatenation and repetition of node outputs."""
from __future__ import annotations

from typing import List

import numpy as np

from ..core.result import ResultBase, RResultBase
from ..core.vector_cache import alloc
from ..errors import ShapeError


def _check_bounds(op: str, r, start: int, end: int) -> None:
    n = len(r.output())
    if not 0 <= start <= end <= n:
        raise ShapeError(f"{op}: bounds [{start}, {end}) out of range for length {n}")


class SliceResult(ResultBase):
    """Components [start, end) of a node's output."""

    def __init__(self, r, start: int, end: int, cache=None):
        _check_bounds("slice", r, start, end)
        out = alloc(cache, end - start)
        out[:] = r.output()[start:end]
        super().__init__(out, (r,), cache)
        self.r = r
        self.start, self.end = start, end

    def propagate_gradient(self, upstream, grad) -> None:
        down = self._alloc(len(self.r.output()))
        down[self.start:self.end] = upstream
        self.r.propagate_gradient(down, grad)
        self._free(down)


class RSliceResult(RResultBase):
    def __init__(self, r, start: int, end: int, cache=None):
        _check_bounds("slice_r", r, start, end)
        out, r_out = alloc(cache, end - start), alloc(cache, end - start)
        out[:] = r.output()[start:end]
        r_out[:] = r.r_output()[start:end]
        super().__init__(out, r_out, (r,), cache)
        self.r = r
        self.start, self.end = start, end

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        n = len(self.r.output())
        down, down_r = self._alloc(n), self._alloc(n)
        down[self.start:self.end] = upstream
        down_r[self.start:self.end] = upstream_r
        self.r.propagate_r_gradient(down, down_r, rgrad, grad)
        self._free(down)
        self._free(down_r)


def slice_result(r, start: int, end: int, cache=None) -> SliceResult:
    return SliceResult(r, start, end, cache)


def slice_result_r(r, start: int, end: int, cache=None) -> RSliceResult:
    return RSliceResult(r, start, end, cache)


class Concat(ResultBase):
    """Outputs of several nodes joined first to last."""

    def __init__(self, results, cache=None):
        results = tuple(results)
        sizes = [len(r.output()) for r in results]
        out = alloc(cache, sum(sizes))
        offsets = np.cumsum([0] + sizes)
        for r, lo, hi in zip(results, offsets[:-1], offsets[1:]):
            out[lo:hi] = r.output()
        super().__init__(out, results, cache)
        self.bounds = list(zip(offsets[:-1], offsets[1:]))

    def propagate_gradient(self, upstream, grad) -> None:
        # Each input owns a disjoint window of upstream.
        for r, (lo, hi) in zip(self.inputs, self.bounds):
            if not r.constant(grad):
                r.propagate_gradient(upstream[lo:hi], grad)


class RConcat(RResultBase):
    def __init__(self, results, cache=None):
        results = tuple(results)
        sizes = [len(r.output()) for r in results]
        total = sum(sizes)
        out, r_out = alloc(cache, total), alloc(cache, total)
        offsets = np.cumsum([0] + sizes)
        for r, lo, hi in zip(results, offsets[:-1], offsets[1:]):
            out[lo:hi] = r.output()
            r_out[lo:hi] = r.r_output()
        super().__init__(out, r_out, results, cache)
        self.bounds = list(zip(offsets[:-1], offsets[1:]))

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        for r, (lo, hi) in zip(self.inputs, self.bounds):
            if not r.constant(rgrad, grad):
                r.propagate_r_gradient(upstream[lo:hi], upstream_r[lo:hi], rgrad, grad)


def concat(*results, cache=None) -> Concat:
    return Concat(results, cache)


def concat_r(*results, cache=None) -> RConcat:
    return RConcat(results, cache)


def _part_size(op: str, n: int, r) -> int:
    size = len(r.output())
    if n <= 0 or size % n:
        raise ShapeError(f"{op}: cannot split length {size} into {n} equal parts")
    return size // n


def split(n: int, r, cache=None) -> List[SliceResult]:
    """n equal consecutive slices of r."""
    k = _part_size("split", n, r)
    return [slice_result(r, i * k, (i + 1) * k, cache) for i in range(n)]


def split_r(n: int, r, cache=None) -> List[RSliceResult]:
    k = _part_size("split_r", n, r)
    return [slice_result_r(r, i * k, (i + 1) * k, cache) for i in range(n)]


class Repeated(ResultBase):
    """r's output tiled n times."""

    def __init__(self, r, n: int, cache=None):
        if n < 0:
            raise ShapeError(f"repeat: negative count {n}")
        size = len(r.output())
        out = alloc(cache, size * n)
        out.reshape(n, size)[:] = r.output()
        super().__init__(out, (r,), cache)
        self.r = r
        self.n = n

    def propagate_gradient(self, upstream, grad) -> None:
        size = len(self.r.output())
        down = self._alloc(size)
        np.sum(upstream.reshape(self.n, size), axis=0, out=down)
        self.r.propagate_gradient(down, grad)
        self._free(down)


class RRepeated(RResultBase):
    def __init__(self, r, n: int, cache=None):
        if n < 0:
            raise ShapeError(f"repeat_r: negative count {n}")
        size = len(r.output())
        out, r_out = alloc(cache, size * n), alloc(cache, size * n)
        out.reshape(n, size)[:] = r.output()
        r_out.reshape(n, size)[:] = r.r_output()
        super().__init__(out, r_out, (r,), cache)
        self.r = r
        self.n = n

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        size = len(self.r.output())
        down, down_r = self._alloc(size), self._alloc(size)
        np.sum(upstream.reshape(self.n, size), axis=0, out=down)
        np.sum(upstream_r.reshape(self.n, size), axis=0, out=down_r)
        self.r.propagate_r_gradient(down, down_r, rgrad, grad)
        self._free(down)
        self._free(down_r)


def repeat(r, n: int, cache=None) -> Repeated:
    return Repeated(r, n, cache)


def repeat_r(r, n: int, cache=None) -> RRepeated:
    return RRepeated(r, n, cache)
