# aad_rop/ops/arithmetic.py
"""
Elementwise and algebraic nodes.

Every constructor evaluates eagerly and returns a node; the `_r` variants take
RResults and carry the tangent along. Backward rules may overwrite the
upstream buffer they are lent.

Division by zero and fractional powers of negatives are not guarded:
nan/inf propagate like IEEE-754 arithmetic (warnings are silenced).
"""
from __future__ import annotations

import numbers
from typing import Callable, Optional

import numpy as np

from ..core.result import ResultBase, RResultBase, check_same_length
from ..core.var import ConstResult, ConstRResult
from ..core.vector_cache import VectorCache, alloc
from ..errors import ShapeError

Deriv = Callable[[np.ndarray, np.ndarray], object]


# =============================== elementwise =============================== #
class Elementwise(ResultBase):
    """
    y = f(x) applied componentwise.

    `fn(x, out)` writes f(x) into `out`; `d1(x, y)` returns f'(x) (an array
    or a scalar).
    """

    def __init__(self, x, fn: Callable, d1: Deriv, cache: Optional[VectorCache] = None):
        out = alloc(cache, len(x.output()))
        with np.errstate(all="ignore"):
            fn(x.output(), out)
        super().__init__(out, (x,), cache)
        self.x = x
        self.d1 = d1

    def propagate_gradient(self, upstream, grad) -> None:
        with np.errstate(all="ignore"):
            upstream *= self.d1(self.x.output(), self.output_vec)
        self.x.propagate_gradient(upstream, grad)


class RElementwise(RResultBase):
    """
    R form of Elementwise.

    `d2(x, y)` returns f''(x); None marks a linear map, whose second
    derivative vanishes.
    """

    def __init__(self, x, fn: Callable, d1: Deriv, d2: Optional[Deriv] = None,
                 cache: Optional[VectorCache] = None):
        n = len(x.output())
        out = alloc(cache, n)
        r_out = alloc(cache, n)
        with np.errstate(all="ignore"):
            fn(x.output(), out)
            np.multiply(d1(x.output(), out), x.r_output(), out=r_out)
        super().__init__(out, r_out, (x,), cache)
        self.x = x
        self.d1 = d1
        self.d2 = d2

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        x, y = self.x.output(), self.output_vec
        down_r = self._alloc(len(y))
        with np.errstate(all="ignore"):
            d1 = self.d1(x, y)
            np.multiply(upstream_r, d1, out=down_r)
            if self.d2 is not None:
                down_r += upstream * self.d2(x, y) * self.x.r_output()
            upstream *= d1
        self.x.propagate_r_gradient(upstream, down_r, rgrad, grad)
        self._free(down_r)


class _ZeroPow(Elementwise):
    # x ** 0 is 1 everywhere, nan and 0 included.
    def constant(self, grad) -> bool:
        return True


class _RZeroPow(RElementwise):
    def constant(self, rgrad, grad=None) -> bool:
        return True


def scale(x, f: float, cache=None) -> Elementwise:
    f = float(f)
    return Elementwise(x, lambda v, out: np.multiply(v, f, out=out), lambda v, y: f, cache)


def scale_r(x, f: float, cache=None) -> RElementwise:
    f = float(f)
    return RElementwise(x, lambda v, out: np.multiply(v, f, out=out), lambda v, y: f,
                        None, cache)


def add_scaler(x, c: float, cache=None) -> Elementwise:
    c = float(c)
    return Elementwise(x, lambda v, out: np.add(v, c, out=out), lambda v, y: 1.0, cache)


def add_scaler_r(x, c: float, cache=None) -> RElementwise:
    c = float(c)
    return RElementwise(x, lambda v, out: np.add(v, c, out=out), lambda v, y: 1.0,
                        None, cache)


def square(x, cache=None) -> Elementwise:
    return Elementwise(x, lambda v, out: np.multiply(v, v, out=out),
                       lambda v, y: 2.0 * v, cache)


def square_r(x, cache=None) -> RElementwise:
    return RElementwise(x, lambda v, out: np.multiply(v, v, out=out),
                        lambda v, y: 2.0 * v, lambda v, y: 2.0, cache)


def inverse(x, cache=None) -> Elementwise:
    """1/x; the backward pass reuses the output: d(1/x) = -(1/x)**2."""
    return Elementwise(x, lambda v, out: np.divide(1.0, v, out=out),
                       lambda v, y: -(y * y), cache)


def inverse_r(x, cache=None) -> RElementwise:
    return RElementwise(x, lambda v, out: np.divide(1.0, v, out=out),
                        lambda v, y: -(y * y), lambda v, y: 2.0 * y * y * y, cache)


def pow(x, p: float, cache=None) -> Elementwise:
    """x ** p for a constant exponent. p == 0 yields a constant node."""
    p = float(p)
    fn = lambda v, out: np.power(v, p, out=out)
    if p == 0:
        return _ZeroPow(x, fn, lambda v, y: 0.0, cache)
    return Elementwise(x, fn, lambda v, y: p * np.power(v, p - 1.0), cache)


def pow_r(x, p: float, cache=None) -> RElementwise:
    p = float(p)
    fn = lambda v, out: np.power(v, p, out=out)
    if p == 0:
        return _RZeroPow(x, fn, lambda v, y: 0.0, None, cache)
    return RElementwise(x, fn,
                        lambda v, y: p * np.power(v, p - 1.0),
                        lambda v, y: p * (p - 1.0) * np.power(v, p - 2.0),
                        cache)


# ================================ sum / diff ================================ #
class Sum(ResultBase):
    """a + b, or a - b when `negate_b` is set."""

    def __init__(self, a, b, negate_b: bool = False, cache=None):
        n = check_same_length("sub" if negate_b else "add", (a, b))
        out = alloc(cache, n)
        (np.subtract if negate_b else np.add)(a.output(), b.output(), out=out)
        super().__init__(out, (a, b), cache)
        self.a, self.b = a, b
        self.negate_b = negate_b

    def propagate_gradient(self, upstream, grad) -> None:
        a_live = not self.a.constant(grad)
        b_live = not self.b.constant(grad)
        if a_live:
            if b_live:
                down = self._alloc(len(upstream))
                down[:] = upstream
                self.a.propagate_gradient(down, grad)
                self._free(down)
            else:
                self.a.propagate_gradient(upstream, grad)
        if b_live:
            if self.negate_b:
                np.negative(upstream, out=upstream)
            self.b.propagate_gradient(upstream, grad)


class RSum(RResultBase):
    def __init__(self, a, b, negate_b: bool = False, cache=None):
        n = check_same_length("sub_r" if negate_b else "add_r", (a, b))
        op = np.subtract if negate_b else np.add
        out, r_out = alloc(cache, n), alloc(cache, n)
        op(a.output(), b.output(), out=out)
        op(a.r_output(), b.r_output(), out=r_out)
        super().__init__(out, r_out, (a, b), cache)
        self.a, self.b = a, b
        self.negate_b = negate_b

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        a_live = not self.a.constant(rgrad, grad)
        b_live = not self.b.constant(rgrad, grad)
        if a_live:
            if b_live:
                down, down_r = self._alloc(len(upstream)), self._alloc(len(upstream))
                down[:] = upstream
                down_r[:] = upstream_r
                self.a.propagate_r_gradient(down, down_r, rgrad, grad)
                self._free(down)
                self._free(down_r)
            else:
                self.a.propagate_r_gradient(upstream, upstream_r, rgrad, grad)
        if b_live:
            if self.negate_b:
                np.negative(upstream, out=upstream)
                np.negative(upstream_r, out=upstream_r)
            self.b.propagate_r_gradient(upstream, upstream_r, rgrad, grad)


def add(a, b, cache=None) -> Sum:
    return Sum(a, b, cache=cache)


def add_r(a, b, cache=None) -> RSum:
    return RSum(a, b, cache=cache)


def sub(a, b, cache=None) -> Sum:
    return Sum(a, b, negate_b=True, cache=cache)


def sub_r(a, b, cache=None) -> RSum:
    return RSum(a, b, negate_b=True, cache=cache)


# ================================= product ================================= #
class Product(ResultBase):
    """Componentwise a * b."""

    def __init__(self, a, b, cache=None):
        n = check_same_length("mul", (a, b))
        out = alloc(cache, n)
        np.multiply(a.output(), b.output(), out=out)
        super().__init__(out, (a, b), cache)
        self.a, self.b = a, b

    def propagate_gradient(self, upstream, grad) -> None:
        if not self.a.constant(grad):
            down = self._alloc(len(upstream))
            np.multiply(upstream, self.b.output(), out=down)
            self.a.propagate_gradient(down, grad)
            self._free(down)
        if not self.b.constant(grad):
            upstream *= self.a.output()
            self.b.propagate_gradient(upstream, grad)


class RProduct(RResultBase):
    def __init__(self, a, b, cache=None):
        n = check_same_length("mul_r", (a, b))
        out, r_out = alloc(cache, n), alloc(cache, n)
        np.multiply(a.output(), b.output(), out=out)
        np.multiply(a.r_output(), b.output(), out=r_out)
        r_out += a.output() * b.r_output()
        super().__init__(out, r_out, (a, b), cache)
        self.a, self.b = a, b

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        a, b = self.a, self.b
        if not a.constant(rgrad, grad):
            down, down_r = self._alloc(len(upstream)), self._alloc(len(upstream))
            np.multiply(upstream, b.output(), out=down)
            np.multiply(upstream_r, b.output(), out=down_r)
            down_r += upstream * b.r_output()
            a.propagate_r_gradient(down, down_r, rgrad, grad)
            self._free(down)
            self._free(down_r)
        if not b.constant(rgrad, grad):
            upstream_r *= a.output()
            upstream_r += upstream * a.r_output()
            upstream *= a.output()
            b.propagate_r_gradient(upstream, upstream_r, rgrad, grad)


def mul(a, b, cache=None) -> Product:
    return Product(a, b, cache)


def mul_r(a, b, cache=None) -> RProduct:
    return RProduct(a, b, cache)


# ================================= quotient ================================= #
class Quotient(ResultBase):
    """Componentwise a / b."""

    def __init__(self, a, b, cache=None):
        n = check_same_length("div", (a, b))
        out = alloc(cache, n)
        with np.errstate(all="ignore"):
            np.divide(a.output(), b.output(), out=out)
        super().__init__(out, (a, b), cache)
        self.a, self.b = a, b

    def propagate_gradient(self, upstream, grad) -> None:
        a_live = not self.a.constant(grad)
        b_live = not self.b.constant(grad)
        denom = self.b.output()
        with np.errstate(all="ignore"):
            if b_live:
                # d(a/b)/db = -(a/b)/b
                down = self._alloc(len(upstream))
                np.multiply(upstream, self.output_vec, out=down)
                down /= denom
                np.negative(down, out=down)
            if a_live:
                upstream /= denom
        if a_live:
            self.a.propagate_gradient(upstream, grad)
        if b_live:
            self.b.propagate_gradient(down, grad)
            self._free(down)


class RQuotient(RResultBase):
    def __init__(self, a, b, cache=None):
        n = check_same_length("div_r", (a, b))
        out, r_out = alloc(cache, n), alloc(cache, n)
        with np.errstate(all="ignore"):
            np.divide(a.output(), b.output(), out=out)
            np.multiply(out, b.r_output(), out=r_out)
            np.subtract(a.r_output(), r_out, out=r_out)
            r_out /= b.output()
        super().__init__(out, r_out, (a, b), cache)
        self.a, self.b = a, b

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        a_live = not self.a.constant(rgrad, grad)
        b_live = not self.b.constant(rgrad, grad)
        out, out_r = self.output_vec, self.r_output_vec
        denom, denom_r = self.b.output(), self.b.r_output()
        with np.errstate(all="ignore"):
            if b_live:
                down = self._alloc(len(upstream))
                down_r = self._alloc(len(upstream))
                np.multiply(upstream, out, out=down)
                np.divide(down * denom_r, denom * denom, out=down_r)
                down_r -= (upstream_r * out + upstream * out_r) / denom
                down /= denom
                np.negative(down, out=down)
            if a_live:
                upstream_r -= upstream * denom_r / denom
                upstream_r /= denom
                upstream /= denom
        if a_live:
            self.a.propagate_r_gradient(upstream, upstream_r, rgrad, grad)
        if b_live:
            self.b.propagate_r_gradient(down, down_r, rgrad, grad)
            self._free(down)
            self._free(down_r)


def div(a, b, cache=None) -> Quotient:
    return Quotient(a, b, cache)


def div_r(a, b, cache=None) -> RQuotient:
    return RQuotient(a, b, cache)


# ========================== first-component scalars ========================== #
def _check_scaler(op: str, s) -> None:
    if len(s.output()) < 1:
        raise ShapeError(f"{op}: scaler input must have at least one component")


class ScaleFirst(ResultBase):
    """a * s[0]."""

    def __init__(self, a, s, cache=None):
        _check_scaler("scale_first", s)
        out = alloc(cache, len(a.output()))
        np.multiply(a.output(), s.output()[0], out=out)
        super().__init__(out, (a, s), cache)
        self.a, self.s = a, s

    def propagate_gradient(self, upstream, grad) -> None:
        if not self.s.constant(grad):
            down = self._alloc(len(self.s.output()))
            down[0] = np.dot(upstream, self.a.output())
            self.s.propagate_gradient(down, grad)
            self._free(down)
        if not self.a.constant(grad):
            upstream *= self.s.output()[0]
            self.a.propagate_gradient(upstream, grad)


class RScaleFirst(RResultBase):
    def __init__(self, a, s, cache=None):
        _check_scaler("scale_first_r", s)
        n = len(a.output())
        s0, s0_r = s.output()[0], s.r_output()[0]
        out, r_out = alloc(cache, n), alloc(cache, n)
        np.multiply(a.output(), s0, out=out)
        np.multiply(a.r_output(), s0, out=r_out)
        r_out += a.output() * s0_r
        super().__init__(out, r_out, (a, s), cache)
        self.a, self.s = a, s

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        a, s = self.a, self.s
        if not s.constant(rgrad, grad):
            down = self._alloc(len(s.output()))
            down_r = self._alloc(len(s.output()))
            down[0] = np.dot(upstream, a.output())
            down_r[0] = np.dot(upstream_r, a.output()) + np.dot(upstream, a.r_output())
            s.propagate_r_gradient(down, down_r, rgrad, grad)
            self._free(down)
            self._free(down_r)
        if not a.constant(rgrad, grad):
            s0, s0_r = s.output()[0], s.r_output()[0]
            upstream_r *= s0
            upstream_r += upstream * s0_r
            upstream *= s0
            a.propagate_r_gradient(upstream, upstream_r, rgrad, grad)


def scale_first(a, s, cache=None) -> ScaleFirst:
    return ScaleFirst(a, s, cache)


def scale_first_r(a, s, cache=None) -> RScaleFirst:
    return RScaleFirst(a, s, cache)


class AddFirst(ResultBase):
    """a + s[0]."""

    def __init__(self, a, s, cache=None):
        _check_scaler("add_first", s)
        out = alloc(cache, len(a.output()))
        np.add(a.output(), s.output()[0], out=out)
        super().__init__(out, (a, s), cache)
        self.a, self.s = a, s

    def propagate_gradient(self, upstream, grad) -> None:
        if not self.s.constant(grad):
            down = self._alloc(len(self.s.output()))
            down[0] = np.sum(upstream)
            self.s.propagate_gradient(down, grad)
            self._free(down)
        if not self.a.constant(grad):
            self.a.propagate_gradient(upstream, grad)


class RAddFirst(RResultBase):
    def __init__(self, a, s, cache=None):
        _check_scaler("add_first_r", s)
        n = len(a.output())
        out, r_out = alloc(cache, n), alloc(cache, n)
        np.add(a.output(), s.output()[0], out=out)
        np.add(a.r_output(), s.r_output()[0], out=r_out)
        super().__init__(out, r_out, (a, s), cache)
        self.a, self.s = a, s

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        if not self.s.constant(rgrad, grad):
            down = self._alloc(len(self.s.output()))
            down_r = self._alloc(len(self.s.output()))
            down[0] = np.sum(upstream)
            down_r[0] = np.sum(upstream_r)
            self.s.propagate_r_gradient(down, down_r, rgrad, grad)
            self._free(down)
            self._free(down_r)
        if not self.a.constant(rgrad, grad):
            self.a.propagate_r_gradient(upstream, upstream_r, rgrad, grad)


def add_first(a, s, cache=None) -> AddFirst:
    return AddFirst(a, s, cache)


def add_first_r(a, s, cache=None) -> RAddFirst:
    return RAddFirst(a, s, cache)


# ================================== sum all ================================== #
class SumAll(ResultBase):
    """[sum(a)]."""

    def __init__(self, a, cache=None):
        out = alloc(cache, 1)
        out[0] = np.sum(a.output())
        super().__init__(out, (a,), cache)
        self.a = a

    def propagate_gradient(self, upstream, grad) -> None:
        down = self._alloc(len(self.a.output()))
        down.fill(upstream[0])
        self.a.propagate_gradient(down, grad)
        self._free(down)


class RSumAll(RResultBase):
    def __init__(self, a, cache=None):
        out, r_out = alloc(cache, 1), alloc(cache, 1)
        out[0] = np.sum(a.output())
        r_out[0] = np.sum(a.r_output())
        super().__init__(out, r_out, (a,), cache)
        self.a = a

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        n = len(self.a.output())
        down, down_r = self._alloc(n), self._alloc(n)
        down.fill(upstream[0])
        down_r.fill(upstream_r[0])
        self.a.propagate_r_gradient(down, down_r, rgrad, grad)
        self._free(down)
        self._free(down_r)


def sum_all(a, cache=None) -> SumAll:
    return SumAll(a, cache)


def sum_all_r(a, cache=None) -> RSumAll:
    return RSumAll(a, cache)


# ================================ log domain ================================ #
def _shift(vec: np.ndarray) -> np.ndarray:
    # Infinite maxima would turn the shifted terms into nan.
    vec = np.array(vec, dtype=np.float64, ndmin=1)
    vec[~np.isfinite(vec)] = 0.0
    return vec


def add_log_domain(a, b, cache=None):
    """log(exp(a) + exp(b)), shifted by the componentwise maximum."""
    from .transcendental import exp, log

    check_same_length("add_log_domain", (a, b))
    shift = ConstResult(_shift(np.maximum(a.output(), b.output())))
    exp_sum = add(exp(sub(a, shift, cache), cache), exp(sub(b, shift, cache), cache), cache)
    return add(log(exp_sum, cache), shift, cache)


def add_log_domain_r(a, b, cache=None):
    from .transcendental import exp_r, log_r

    check_same_length("add_log_domain_r", (a, b))
    shift = ConstRResult(_shift(np.maximum(a.output(), b.output())), cache)
    exp_sum = add_r(exp_r(sub_r(a, shift, cache), cache),
                    exp_r(sub_r(b, shift, cache), cache), cache)
    return add_r(log_r(exp_sum, cache), shift, cache)


def sum_all_log_domain(a, cache=None):
    """[log(sum(exp(a)))], shifted by max(a)."""
    from .transcendental import exp, log

    m = float(_shift(np.max(a.output(), initial=-np.inf))[0])
    return add_scaler(log(sum_all(exp(add_scaler(a, -m, cache), cache), cache), cache), m, cache)


def sum_all_log_domain_r(a, cache=None):
    from .transcendental import exp_r, log_r

    m = float(_shift(np.max(a.output(), initial=-np.inf))[0])
    return add_scaler_r(log_r(sum_all_r(exp_r(add_scaler_r(a, -m, cache), cache), cache),
                              cache), m, cache)


# ============================ operator binding ============================ #
def _operand(other, r: bool):
    """Wrap an array-like as a constant node; leave nodes alone."""
    if hasattr(other, "output"):
        return other
    return ConstRResult(other) if r else ConstResult(other)


def _binary(plain, rform, scalar_fn=None):
    def op(self, other):
        r = isinstance(self, RResultBase)
        if isinstance(other, numbers.Real):
            if scalar_fn is None:
                return NotImplemented
            return scalar_fn(self, float(other), r)
        return (rform if r else plain)(self, _operand(other, r))
    return op


def _rbinary(plain, rform, scalar_fn=None):
    def op(self, other):
        r = isinstance(self, RResultBase)
        if isinstance(other, numbers.Real):
            if scalar_fn is None:
                return NotImplemented
            return scalar_fn(self, float(other), r)
        return (rform if r else plain)(_operand(other, r), self)
    return op


_scale = lambda self, f, r: (scale_r if r else scale)(self, f)
_shift_by = lambda self, c, r: (add_scaler_r if r else add_scaler)(self, c)

ResultBase.__add__ = _binary(add, add_r, _shift_by)
ResultBase.__radd__ = _rbinary(add, add_r, _shift_by)
ResultBase.__sub__ = _binary(sub, sub_r, lambda self, c, r: _shift_by(self, -c, r))
ResultBase.__rsub__ = _rbinary(sub, sub_r, lambda self, c, r: _shift_by(_scale(self, -1.0, r), c, r))
ResultBase.__mul__ = _binary(mul, mul_r, _scale)
ResultBase.__rmul__ = _rbinary(mul, mul_r, _scale)
ResultBase.__truediv__ = _binary(div, div_r, lambda self, f, r: _scale(self, 1.0 / f, r))
ResultBase.__rtruediv__ = _rbinary(
    div, div_r, lambda self, f, r: _scale((inverse_r if r else inverse)(self), f, r))
ResultBase.__pow__ = lambda self, p: ((pow_r if isinstance(self, RResultBase) else pow)(self, p)
                                      if isinstance(p, numbers.Real) else NotImplemented)
ResultBase.__neg__ = lambda self: _scale(self, -1.0, isinstance(self, RResultBase))
