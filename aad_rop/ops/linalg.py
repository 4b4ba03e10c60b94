# aad_rop/ops/linalg.py
"""
Linear-algebra nodes over row-major flat matrices.

Matrix products go through scipy's BLAS wrappers. A row-major (rows x cols)
buffer read in Fortran order is its (cols x rows) transpose, so every call
below runs on `flat.reshape(rows, cols).T` and never copies a matrix.
"""
from __future__ import annotations

from typing import Tuple

import numpy as np
from scipy.linalg import blas

from ..core.result import ResultBase, RResultBase
from ..core.vector_cache import alloc
from ..errors import ShapeError


# ------------------------------- BLAS helpers ------------------------------- #
def _fview(flat: np.ndarray, rows: int, cols: int) -> np.ndarray:
    """Fortran-ordered (cols x rows) view of a row-major (rows x cols) buffer."""
    return flat.reshape(rows, cols).T


def _gemv(mat: np.ndarray, rows: int, cols: int, vec: np.ndarray,
          trans: bool = False) -> np.ndarray:
    """M @ vec, or M^T @ vec when `trans` is set."""
    if rows == 0 or cols == 0:
        return np.zeros(cols if trans else rows, dtype=np.float64)
    # The Fortran view holds M^T, so BLAS' transpose flag is inverted.
    return blas.dgemv(1.0, _fview(mat, rows, cols), vec, trans=0 if trans else 1)


def _ger_into(dest: np.ndarray, rows: int, cols: int, u: np.ndarray, v: np.ndarray) -> None:
    """dest (row-major rows x cols) += outer(u, v)."""
    if rows == 0 or cols == 0:
        return
    a = _fview(dest, rows, cols)
    res = blas.dger(1.0, v, u, a=a, overwrite_a=True)
    if not np.shares_memory(res, dest):
        dest[:] = res.T.ravel()


def _gemm(a: np.ndarray, a_shape: Tuple[int, int], b: np.ndarray, b_shape: Tuple[int, int],
          trans_a: bool = False, trans_b: bool = False) -> np.ndarray:
    """Row-major flat op(A) @ op(B)."""
    m = a_shape[1] if trans_a else a_shape[0]
    n = b_shape[0] if trans_b else b_shape[1]
    k = a_shape[0] if trans_a else a_shape[1]
    if m == 0 or n == 0 or k == 0:
        return np.zeros(m * n, dtype=np.float64)
    af = _fview(a, *a_shape)
    bf = _fview(b, *b_shape)
    # C^T = op(B)^T op(A)^T, and C^T in Fortran order is C in row-major order.
    ct = blas.dgemm(1.0, bf, af, trans_a=int(trans_b), trans_b=int(trans_a))
    return ct.T.ravel()


def _check_matrix(op: str, mat, rows: int, cols: int) -> None:
    if rows < 0 or cols < 0 or len(mat.output()) != rows * cols:
        raise ShapeError(
            f"{op}: matrix has {len(mat.output())} entries, expected {rows}x{cols}"
        )


# =============================== mat_mul_vec =============================== #
class MatMulVec(ResultBase):
    """y = M x for a row-major (rows x cols) matrix M."""

    def __init__(self, mat, rows: int, cols: int, vec, cache=None):
        _check_matrix("mat_mul_vec", mat, rows, cols)
        if len(vec.output()) != cols:
            raise ShapeError(f"mat_mul_vec: vector length {len(vec.output())} != cols {cols}")
        out = alloc(cache, rows)
        out[:] = _gemv(mat.output(), rows, cols, vec.output())
        super().__init__(out, (mat, vec), cache)
        self.mat, self.vec = mat, vec
        self.rows, self.cols = rows, cols

    def propagate_gradient(self, upstream, grad) -> None:
        if not self.mat.constant(grad):
            down = self._alloc(self.rows * self.cols)
            _ger_into(down, self.rows, self.cols, upstream, self.vec.output())
            self.mat.propagate_gradient(down, grad)
            self._free(down)
        if not self.vec.constant(grad):
            down = self._alloc(self.cols)
            down[:] = _gemv(self.mat.output(), self.rows, self.cols, upstream, trans=True)
            self.vec.propagate_gradient(down, grad)
            self._free(down)


class RMatMulVec(RResultBase):
    def __init__(self, mat, rows: int, cols: int, vec, cache=None):
        _check_matrix("mat_mul_vec_r", mat, rows, cols)
        if len(vec.output()) != cols:
            raise ShapeError(f"mat_mul_vec_r: vector length {len(vec.output())} != cols {cols}")
        out, r_out = alloc(cache, rows), alloc(cache, rows)
        out[:] = _gemv(mat.output(), rows, cols, vec.output())
        r_out[:] = _gemv(mat.output(), rows, cols, vec.r_output())
        r_out += _gemv(mat.r_output(), rows, cols, vec.output())
        super().__init__(out, r_out, (mat, vec), cache)
        self.mat, self.vec = mat, vec
        self.rows, self.cols = rows, cols

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        mat, vec = self.mat, self.vec
        rows, cols = self.rows, self.cols
        if not mat.constant(rgrad, grad):
            down, down_r = self._alloc(rows * cols), self._alloc(rows * cols)
            _ger_into(down, rows, cols, upstream, vec.output())
            _ger_into(down_r, rows, cols, upstream_r, vec.output())
            _ger_into(down_r, rows, cols, upstream, vec.r_output())
            mat.propagate_r_gradient(down, down_r, rgrad, grad)
            self._free(down)
            self._free(down_r)
        if not vec.constant(rgrad, grad):
            down, down_r = self._alloc(cols), self._alloc(cols)
            down[:] = _gemv(mat.output(), rows, cols, upstream, trans=True)
            down_r[:] = _gemv(mat.output(), rows, cols, upstream_r, trans=True)
            down_r += _gemv(mat.r_output(), rows, cols, upstream, trans=True)
            vec.propagate_r_gradient(down, down_r, rgrad, grad)
            self._free(down)
            self._free(down_r)


def mat_mul_vec(mat, rows: int, cols: int, vec, cache=None) -> MatMulVec:
    return MatMulVec(mat, rows, cols, vec, cache)


def mat_mul_vec_r(mat, rows: int, cols: int, vec, cache=None) -> RMatMulVec:
    return RMatMulVec(mat, rows, cols, vec, cache)


# ================================= mat_mul ================================= #
def _check_mat_mul(op: str, a, a_rows: int, a_cols: int, b, b_cols: int) -> None:
    _check_matrix(op, a, a_rows, a_cols)
    _check_matrix(op, b, a_cols, b_cols)


class MatMul(ResultBase):
    """
    C = A B with A (a_rows x a_cols) and B (a_cols x b_cols), all row-major.

    With A holding one packed input per row this applies B^T to a batch.
    """

    def __init__(self, a, a_rows: int, a_cols: int, b, b_cols: int, cache=None):
        _check_mat_mul("mat_mul", a, a_rows, a_cols, b, b_cols)
        out = alloc(cache, a_rows * b_cols)
        out[:] = _gemm(a.output(), (a_rows, a_cols), b.output(), (a_cols, b_cols))
        super().__init__(out, (a, b), cache)
        self.a, self.b = a, b
        self.shape_a = (a_rows, a_cols)
        self.shape_b = (a_cols, b_cols)
        self.shape_c = (a_rows, b_cols)

    def propagate_gradient(self, upstream, grad) -> None:
        if not self.a.constant(grad):
            down = self._alloc(len(self.a.output()))
            down[:] = _gemm(upstream, self.shape_c, self.b.output(), self.shape_b, trans_b=True)
            self.a.propagate_gradient(down, grad)
            self._free(down)
        if not self.b.constant(grad):
            down = self._alloc(len(self.b.output()))
            down[:] = _gemm(self.a.output(), self.shape_a, upstream, self.shape_c, trans_a=True)
            self.b.propagate_gradient(down, grad)
            self._free(down)


class RMatMul(RResultBase):
    def __init__(self, a, a_rows: int, a_cols: int, b, b_cols: int, cache=None):
        _check_mat_mul("mat_mul_r", a, a_rows, a_cols, b, b_cols)
        sa, sb = (a_rows, a_cols), (a_cols, b_cols)
        out, r_out = alloc(cache, a_rows * b_cols), alloc(cache, a_rows * b_cols)
        out[:] = _gemm(a.output(), sa, b.output(), sb)
        r_out[:] = _gemm(a.r_output(), sa, b.output(), sb)
        r_out += _gemm(a.output(), sa, b.r_output(), sb)
        super().__init__(out, r_out, (a, b), cache)
        self.a, self.b = a, b
        self.shape_a, self.shape_b = sa, sb
        self.shape_c = (a_rows, b_cols)

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        a, b = self.a, self.b
        sa, sb, sc = self.shape_a, self.shape_b, self.shape_c
        if not a.constant(rgrad, grad):
            down, down_r = self._alloc(len(a.output())), self._alloc(len(a.output()))
            down[:] = _gemm(upstream, sc, b.output(), sb, trans_b=True)
            down_r[:] = _gemm(upstream_r, sc, b.output(), sb, trans_b=True)
            down_r += _gemm(upstream, sc, b.r_output(), sb, trans_b=True)
            a.propagate_r_gradient(down, down_r, rgrad, grad)
            self._free(down)
            self._free(down_r)
        if not b.constant(rgrad, grad):
            down, down_r = self._alloc(len(b.output())), self._alloc(len(b.output()))
            down[:] = _gemm(a.output(), sa, upstream, sc, trans_a=True)
            down_r[:] = _gemm(a.output(), sa, upstream_r, sc, trans_a=True)
            down_r += _gemm(a.r_output(), sa, upstream, sc, trans_a=True)
            b.propagate_r_gradient(down, down_r, rgrad, grad)
            self._free(down)
            self._free(down_r)


def mat_mul(a, a_rows: int, a_cols: int, b, b_cols: int, cache=None) -> MatMul:
    return MatMul(a, a_rows, a_cols, b, b_cols, cache)


def mat_mul_r(a, a_rows: int, a_cols: int, b, b_cols: int, cache=None) -> RMatMul:
    return RMatMul(a, a_rows, a_cols, b, b_cols, cache)


# ============================== outer product ============================== #
class OuterProduct(ResultBase):
    """Row-major a b^T."""

    def __init__(self, a, b, cache=None):
        na, nb = len(a.output()), len(b.output())
        out = alloc(cache, na * nb)
        np.outer(a.output(), b.output(), out=out.reshape(na, nb))
        super().__init__(out, (a, b), cache)
        self.a, self.b = a, b

    def propagate_gradient(self, upstream, grad) -> None:
        na, nb = len(self.a.output()), len(self.b.output())
        if not self.a.constant(grad):
            down = self._alloc(na)
            down[:] = _gemv(upstream, na, nb, self.b.output())
            self.a.propagate_gradient(down, grad)
            self._free(down)
        if not self.b.constant(grad):
            down = self._alloc(nb)
            down[:] = _gemv(upstream, na, nb, self.a.output(), trans=True)
            self.b.propagate_gradient(down, grad)
            self._free(down)


class ROuterProduct(RResultBase):
    def __init__(self, a, b, cache=None):
        na, nb = len(a.output()), len(b.output())
        out, r_out = alloc(cache, na * nb), alloc(cache, na * nb)
        np.outer(a.output(), b.output(), out=out.reshape(na, nb))
        np.outer(a.r_output(), b.output(), out=r_out.reshape(na, nb))
        r_out += np.outer(a.output(), b.r_output()).ravel()
        super().__init__(out, r_out, (a, b), cache)
        self.a, self.b = a, b

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        a, b = self.a, self.b
        na, nb = len(a.output()), len(b.output())
        if not a.constant(rgrad, grad):
            down, down_r = self._alloc(na), self._alloc(na)
            down[:] = _gemv(upstream, na, nb, b.output())
            down_r[:] = _gemv(upstream_r, na, nb, b.output())
            down_r += _gemv(upstream, na, nb, b.r_output())
            a.propagate_r_gradient(down, down_r, rgrad, grad)
            self._free(down)
            self._free(down_r)
        if not b.constant(rgrad, grad):
            down, down_r = self._alloc(nb), self._alloc(nb)
            down[:] = _gemv(upstream, na, nb, a.output(), trans=True)
            down_r[:] = _gemv(upstream_r, na, nb, a.output(), trans=True)
            down_r += _gemv(upstream, na, nb, a.r_output(), trans=True)
            b.propagate_r_gradient(down, down_r, rgrad, grad)
            self._free(down)
            self._free(down_r)


def outer_product(a, b, cache=None) -> OuterProduct:
    return OuterProduct(a, b, cache)


def outer_product_r(a, b, cache=None) -> ROuterProduct:
    return ROuterProduct(a, b, cache)


# ================================ transpose ================================ #
def _transposed(flat: np.ndarray, rows: int, cols: int, out: np.ndarray) -> np.ndarray:
    out.reshape(cols, rows)[:] = flat.reshape(rows, cols).T
    return out


class Transpose(ResultBase):
    """Row-major transpose of a (rows x cols) matrix."""

    def __init__(self, mat, rows: int, cols: int, cache=None):
        _check_matrix("transpose", mat, rows, cols)
        out = _transposed(mat.output(), rows, cols, alloc(cache, rows * cols))
        super().__init__(out, (mat,), cache)
        self.mat = mat
        self.rows, self.cols = rows, cols

    def propagate_gradient(self, upstream, grad) -> None:
        down = _transposed(upstream, self.cols, self.rows, self._alloc(len(upstream)))
        self.mat.propagate_gradient(down, grad)
        self._free(down)


class RTranspose(RResultBase):
    def __init__(self, mat, rows: int, cols: int, cache=None):
        _check_matrix("transpose_r", mat, rows, cols)
        out = _transposed(mat.output(), rows, cols, alloc(cache, rows * cols))
        r_out = _transposed(mat.r_output(), rows, cols, alloc(cache, rows * cols))
        super().__init__(out, r_out, (mat,), cache)
        self.mat = mat
        self.rows, self.cols = rows, cols

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        down = _transposed(upstream, self.cols, self.rows, self._alloc(len(upstream)))
        down_r = _transposed(upstream_r, self.cols, self.rows, self._alloc(len(upstream)))
        self.mat.propagate_r_gradient(down, down_r, rgrad, grad)
        self._free(down)
        self._free(down_r)


def transpose(mat, rows: int, cols: int, cache=None) -> Transpose:
    return Transpose(mat, rows, cols, cache)


def transpose_r(mat, rows: int, cols: int, cache=None) -> RTranspose:
    return RTranspose(mat, rows, cols, cache)


# ================================ scale_rows ================================ #
def _row_shape(op: str, mat, scales) -> Tuple[int, int]:
    rows = len(scales.output())
    size = len(mat.output())
    if rows == 0:
        if size:
            raise ShapeError(f"{op}: no scales for a {size}-entry matrix")
        return 0, 0
    if size % rows:
        raise ShapeError(f"{op}: {size} entries do not split into {rows} rows")
    return rows, size // rows


class ScaleRows(ResultBase):
    """Multiply row i of a row-major matrix by scales[i]."""

    def __init__(self, mat, scales, cache=None):
        rows, cols = _row_shape("scale_rows", mat, scales)
        out = alloc(cache, rows * cols)
        np.multiply(mat.output().reshape(rows, cols), scales.output()[:, None],
                    out=out.reshape(rows, cols))
        super().__init__(out, (mat, scales), cache)
        self.mat, self.scales = mat, scales
        self.rows, self.cols = rows, cols

    def propagate_gradient(self, upstream, grad) -> None:
        shape = (self.rows, self.cols)
        up = upstream.reshape(shape)
        if not self.scales.constant(grad):
            down = self._alloc(self.rows)
            np.einsum("ij,ij->i", up, self.mat.output().reshape(shape), out=down)
            self.scales.propagate_gradient(down, grad)
            self._free(down)
        if not self.mat.constant(grad):
            up *= self.scales.output()[:, None]
            self.mat.propagate_gradient(upstream, grad)


class RScaleRows(RResultBase):
    def __init__(self, mat, scales, cache=None):
        rows, cols = _row_shape("scale_rows_r", mat, scales)
        shape = (rows, cols)
        m, m_r = mat.output().reshape(shape), mat.r_output().reshape(shape)
        s, s_r = scales.output()[:, None], scales.r_output()[:, None]
        out, r_out = alloc(cache, rows * cols), alloc(cache, rows * cols)
        np.multiply(m, s, out=out.reshape(shape))
        np.multiply(m_r, s, out=r_out.reshape(shape))
        r_out.reshape(shape)[:] += m * s_r
        super().__init__(out, r_out, (mat, scales), cache)
        self.mat, self.scales = mat, scales
        self.rows, self.cols = rows, cols

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        shape = (self.rows, self.cols)
        up, up_r = upstream.reshape(shape), upstream_r.reshape(shape)
        m, m_r = self.mat.output().reshape(shape), self.mat.r_output().reshape(shape)
        s, s_r = self.scales.output()[:, None], self.scales.r_output()[:, None]
        if not self.scales.constant(rgrad, grad):
            down, down_r = self._alloc(self.rows), self._alloc(self.rows)
            np.einsum("ij,ij->i", up, m, out=down)
            np.einsum("ij,ij->i", up_r, m, out=down_r)
            down_r += np.einsum("ij,ij->i", up, m_r)
            self.scales.propagate_r_gradient(down, down_r, rgrad, grad)
            self._free(down)
            self._free(down_r)
        if not self.mat.constant(rgrad, grad):
            up_r *= s
            up_r += up * s_r
            up *= s
            self.mat.propagate_r_gradient(upstream, upstream_r, rgrad, grad)


def scale_rows(mat, scales, cache=None) -> ScaleRows:
    return ScaleRows(mat, scales, cache)


def scale_rows_r(mat, scales, cache=None) -> RScaleRows:
    return RScaleRows(mat, scales, cache)
