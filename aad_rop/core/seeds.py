# aad_rop/core/seeds.py

"""
Drivers that seed the adjoint of an output vector (1 for a length-1 output,
or a caller-supplied upstream) and run one backward pass into fresh
accumulators for the requested leaf parameters.
"""
from __future__ import annotations

from typing import Callable, Iterable, Optional, Tuple

import numpy as np

from ..errors import ShapeError
from .gradient import Gradient, RGradient, RVector


def _seed(result_out: np.ndarray, upstream: Optional[np.ndarray]) -> np.ndarray:
    if upstream is None:
        if len(result_out) != 1:
            raise ShapeError(
                f"a seed upstream is required for outputs of length {len(result_out)}"
            )
        return np.ones(1, dtype=np.float64)
    upstream = np.array(upstream, dtype=np.float64)  # callee may mutate it
    if upstream.shape != result_out.shape:
        raise ShapeError(f"upstream shape {upstream.shape} != output shape {result_out.shape}")
    return upstream


# ----------------------------- first order ----------------------------- #
def gradient(result, variables: Iterable, upstream: Optional[np.ndarray] = None) -> Gradient:
    """
    Gradient of `result` with respect to `variables`.

    Parameters
    ----------
    result    : Result to differentiate
    variables : leaf Variables to collect partials for
    upstream  : adjoint of the output; defaults to 1 for scalar outputs

    Returns
    -------
    Gradient  : {Variable: dL/dVariable}
    """
    grad = Gradient.for_vars(variables)
    seed = _seed(result.output(), upstream)
    if not result.constant(grad):
        result.propagate_gradient(seed, grad)
    return grad


# ----------------------------- R-operator ----------------------------- #
def r_gradient(result, variables: Iterable, upstream: Optional[np.ndarray] = None,
               upstream_r: Optional[np.ndarray] = None) -> Tuple[Gradient, RGradient]:
    """
    First-order gradient and its directional derivative for an RResult.

    `upstream_r` defaults to zero, i.e. the seed itself does not vary along
    the direction.
    """
    variables = list(variables)
    grad = Gradient.for_vars(variables)
    rgrad = RGradient.for_vars(variables)
    seed = _seed(result.output(), upstream)
    seed_r = np.zeros_like(seed) if upstream_r is None else _seed(result.output(), upstream_r)
    if not result.constant(rgrad, grad):
        result.propagate_r_gradient(seed, seed_r, rgrad, grad)
    return grad, rgrad


def hessian_vector_product(f: Callable[[RVector], object], variables: Iterable,
                           direction: RVector) -> RGradient:
    """
    Hessian of a scalar function times `direction` (Pearlmutter's R-operator).

    Parameters
    ----------
    f         : takes an RVector and returns a scalar RResult built from
                RVariable.from_rvector(...) leaves
    variables : Variables spanning the Hessian
    direction : RVector, {Variable: v}; missing entries mean zero

    Returns
    -------
    RGradient : {Variable: (H v) restricted to that Variable}
    """
    variables = list(variables)
    out = f(direction)
    rgrad = RGradient.for_vars(variables)
    seed = _seed(out.output(), None)
    if not out.constant(rgrad, None):
        out.propagate_r_gradient(seed, np.zeros(1, dtype=np.float64), rgrad, None)
    return rgrad
