# aad_rop/ops/func.py
"""
Reusable differentiable functions.

A Func maps a Result to a Result; an RFunc also maps an RResult to an RResult
given the RVector the caller differentiates along. Functions that hold their
own parameters (LinTran, LinAdd) read those parameters' tangents from the
RVector.
"""
from __future__ import annotations

from typing import Callable, Optional, Protocol, Sequence, runtime_checkable

from ..core.var import RVariable, Variable
from ..core.vector_cache import VectorCache
from ..errors import ShapeError
from .arithmetic import add, add_r
from .linalg import mat_mul, mat_mul_r, mat_mul_vec, mat_mul_vec_r, transpose, transpose_r
from .slices import repeat, repeat_r


@runtime_checkable
class Func(Protocol):
    def apply(self, inp):
        ...


@runtime_checkable
class RFunc(Protocol):
    def apply(self, inp):
        ...

    def apply_r(self, rv, inp):
        ...


class LambdaFunc:
    """Func (and RFunc, when `fn_r` is given) backed by plain callables."""

    def __init__(self, fn: Callable, fn_r: Optional[Callable] = None):
        self.fn = fn
        self.fn_r = fn_r

    def apply(self, inp):
        return self.fn(inp)

    def apply_r(self, rv, inp):
        if self.fn_r is None:
            raise TypeError("LambdaFunc was built without an R form")
        return self.fn_r(rv, inp)


class ComposedFunc:
    """Feeds each function's output into the next, first to last."""

    def __init__(self, funcs: Sequence):
        self.funcs = list(funcs)

    def apply(self, inp):
        for f in self.funcs:
            inp = f.apply(inp)
        return inp


class ComposedRFunc(ComposedFunc):
    def apply_r(self, rv, inp):
        for f in self.funcs:
            inp = f.apply_r(rv, inp)
        return inp


class LinTran:
    """
    Linear transformation by a row-major (rows x cols) matrix held in a
    Variable.

    Attributes
    ----------
    data : Variable
        The matrix entries, left to right then top to bottom.
    rows, cols : int
        Matrix dimensions; inputs have length `cols`, outputs `rows`.
    cache : VectorCache | None
        Buffer source for every node this function builds.
    """

    def __init__(self, data: Variable, rows: int, cols: int,
                 cache: Optional[VectorCache] = None):
        if len(data.vector) != rows * cols:
            raise ShapeError(f"LinTran: {len(data.vector)} entries for a {rows}x{cols} matrix")
        self.data = data
        self.rows, self.cols = rows, cols
        self.cache = cache

    def apply(self, inp):
        return mat_mul_vec(self.data, self.rows, self.cols, inp, self.cache)

    def apply_r(self, rv, inp):
        data = RVariable.from_rvector(self.data, rv, self.cache)
        return mat_mul_vec_r(data, self.rows, self.cols, inp, self.cache)

    def batch(self, inp, n: int):
        """Apply to `n` inputs packed back to back."""
        self._check_batch(inp, n)
        mat_t = transpose(self.data, self.rows, self.cols, self.cache)
        return mat_mul(inp, n, self.cols, mat_t, self.rows, self.cache)

    def batch_r(self, rv, inp, n: int):
        self._check_batch(inp, n)
        data = RVariable.from_rvector(self.data, rv, self.cache)
        mat_t = transpose_r(data, self.rows, self.cols, self.cache)
        return mat_mul_r(inp, n, self.cols, mat_t, self.rows, self.cache)

    def _check_batch(self, inp, n: int) -> None:
        if n <= 0 or len(inp.output()) != n * self.cols:
            raise ShapeError(
                f"LinTran.batch: {len(inp.output())} values are not {n} inputs of length {self.cols}"
            )


class LinAdd:
    """Adds the vector held in `var` to its input."""

    def __init__(self, var: Variable, cache: Optional[VectorCache] = None):
        self.var = var
        self.cache = cache

    def apply(self, inp):
        return add(inp, self.var, self.cache)

    def apply_r(self, rv, inp):
        return add_r(inp, RVariable.from_rvector(self.var, rv, self.cache), self.cache)

    def batch(self, inp, n: int):
        return add(inp, repeat(self.var, n, self.cache), self.cache)

    def batch_r(self, rv, inp, n: int):
        r_var = RVariable.from_rvector(self.var, rv, self.cache)
        return add_r(inp, repeat_r(r_var, n, self.cache), self.cache)
