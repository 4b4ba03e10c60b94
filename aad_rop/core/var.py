# aad_rop/core/var.py
from __future__ import annotations

from typing import Any, Optional

import numpy as np

from ..errors import ShapeError
from .result import ResultBase, RResultBase
from .vector_cache import VectorCache, alloc


def _as_vector(val: Any) -> np.ndarray:
    # Leaf vectors come from a number, a flat sequence or a 1-D array.
    if not isinstance(val, (int, float, list, tuple, np.ndarray)):
        raise TypeError(f"cannot build a leaf vector from {type(val).__name__}")
    vec = np.atleast_1d(np.asarray(val, dtype=np.float64))
    if vec.ndim != 1:
        raise ShapeError(f"Variable expects a flat vector, got shape {vec.shape}")
    return vec


class Variable(ResultBase):
    """
    Leaf parameter of a computation graph.

    The variable's identity, never its contents, is its key in Gradient,
    RGradient and RVector maps. Its vector may be mutated in place between
    evaluations (e.g. by an optimizer) but must not be resized while nodes
    built on it are alive.

    Attributes
    ----------
    vector : np.ndarray
        The parameter values (1-D float64). Arrays passed in that are already
        float64 are shared, not copied.
    name : Optional[str]
        Optional debug/pretty-print name.
    """

    def __init__(self, vector: Any, *, name: Optional[str] = None):
        super().__init__(_as_vector(vector), owned=False)
        self.name = name

    def __repr__(self):
        return f"Variable({self.output_vec!r}, name={self.name!r})"

    @property
    def vector(self) -> np.ndarray:
        return self.output_vec

    @vector.setter
    def vector(self, value: Any) -> None:
        self.output_vec = _as_vector(value)

    def constant(self, grad) -> bool:
        return self not in grad

    def propagate_gradient(self, upstream: np.ndarray, grad) -> None:
        if self in grad:
            grad[self] += upstream

    def release(self) -> None:
        # Leaves belong to the caller.
        pass

    # ------------------------------ persistence ------------------------------ #
    def serialize(self) -> bytes:
        from .serialize import encode_vector
        return encode_vector(self.output_vec)

    @classmethod
    def deserialize(cls, data: bytes) -> "Variable":
        from .serialize import decode_vector
        return cls(decode_vector(data))


class RVariable(RResultBase):
    """
    A Variable viewed as an RResult: its value plus a tangent direction.

    Use `RVariable.from_rvector` to pick the tangent out of an RVector; a
    variable without an entry gets a zero tangent.
    """

    def __init__(self, variable: Variable, r_output_vec: np.ndarray,
                 cache: Optional[VectorCache] = None, allocated: bool = False):
        r_vec = np.asarray(r_output_vec, dtype=np.float64)
        if len(r_vec) != len(variable.vector):
            raise ShapeError(
                f"tangent length {len(r_vec)} does not match variable length {len(variable.vector)}"
            )
        super().__init__(variable.vector, r_vec, cache=cache, owned=False)
        self.variable = variable
        if allocated:
            self._owned.append(r_vec)

    @classmethod
    def from_rvector(cls, variable: Variable, rv,
                     cache: Optional[VectorCache] = None) -> "RVariable":
        if variable in rv:
            return cls(variable, rv[variable], cache=cache)
        return cls(variable, alloc(cache, len(variable.vector)), cache=cache, allocated=True)

    def output(self) -> np.ndarray:
        return self.variable.vector

    def constant(self, rgrad, grad=None) -> bool:
        if self.variable in rgrad:
            return False
        return grad is None or self.variable not in grad

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        if grad is not None and self.variable in grad:
            grad[self.variable] += upstream
        if self.variable in rgrad:
            rgrad[self.variable] += upstream_r


class ConstResult(ResultBase):
    """A fixed vector that depends on no parameter."""

    def __init__(self, vector: Any):
        super().__init__(_as_vector(vector), owned=False)

    def constant(self, grad) -> bool:
        return True

    def propagate_gradient(self, upstream, grad) -> None:
        pass

    def release(self) -> None:
        pass


class ConstRResult(RResultBase):
    """A fixed vector with a zero tangent."""

    def __init__(self, vector: Any, cache: Optional[VectorCache] = None):
        vec = _as_vector(vector)
        super().__init__(vec, alloc(cache, len(vec)), cache=cache, owned=False)
        self._owned.append(self.r_output_vec)

    def constant(self, rgrad, grad=None) -> bool:
        return True

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        pass
