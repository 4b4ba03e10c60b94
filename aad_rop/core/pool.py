# aad_rop/core/pool.py
"""
Pooling (checkpointing).

`pool(r, f)` evaluates `f` on a synthetic leaf that holds `r`'s output. During
backpropagation every adjoint that `f`'s graph sends towards `r` is summed
into that leaf's accumulator entry first, and `r` is then visited exactly
once with the total. Without pooling, a sub-graph consumed by k nodes is
traversed k times per backward pass.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

import numpy as np

from .gradient import Gradient, RGradient
from .result import ResultBase, RResultBase
from .var import RVariable, Variable

logger = logging.getLogger(__name__)


def _probe(size: int = 0) -> np.ndarray:
    return np.zeros(size, dtype=np.float64)


class PooledResult(ResultBase):
    """
    Output of `f` evaluated on pooled stand-ins for `pool_inputs`.

    Attributes
    ----------
    pool_inputs : tuple
        The real inputs, visited once each during backpropagation.
    pool_vars : list[Variable]
        Synthetic leaves holding the inputs' outputs.
    f_output : Result
        What `f` returned.
    """

    def __init__(self, pool_inputs: Sequence, pool_vars: List[Variable], f_output):
        super().__init__(f_output.output(), inputs=(f_output, *pool_inputs), owned=False)
        self.pool_inputs = tuple(pool_inputs)
        self.pool_vars = pool_vars
        self.f_output = f_output
        self._reach: List[Optional[bool]] = [None] * len(pool_vars)

    def output(self) -> np.ndarray:
        return self.f_output.output()

    def _reaches(self, i: int) -> bool:
        """Whether f's output depends on the i-th synthetic leaf (probed once)."""
        if self._reach[i] is None:
            probe = Gradient({self.pool_vars[i]: _probe()})
            self._reach[i] = not self.f_output.constant(probe)
        return self._reach[i]

    def _live_inputs(self, grad) -> List[int]:
        return [i for i, inp in enumerate(self.pool_inputs)
                if self._reaches(i) and not inp.constant(grad)]

    def constant(self, grad) -> bool:
        if not self.f_output.constant(grad):
            return False
        return not self._live_inputs(grad)

    def propagate_gradient(self, upstream: np.ndarray, grad) -> None:
        live = self._live_inputs(grad)
        for i in live:
            grad[self.pool_vars[i]] = self._alloc(len(self.pool_vars[i].vector))

        if not self.f_output.constant(grad):
            self.f_output.propagate_gradient(upstream, grad)

        downstream = [grad.pop(self.pool_vars[i]) for i in live]
        for i, down in zip(live, downstream):
            self.pool_inputs[i].propagate_gradient(down, grad)
            self._free(down)


class RPooledResult(RResultBase):
    """R counterpart of PooledResult; `f` receives RVariable stand-ins."""

    def __init__(self, pool_inputs: Sequence, pool_vars: List[Variable], f_output):
        super().__init__(f_output.output(), f_output.r_output(),
                         inputs=(f_output, *pool_inputs), owned=False)
        self.pool_inputs = tuple(pool_inputs)
        self.pool_vars = pool_vars
        self.f_output = f_output
        self._reach: List[Optional[bool]] = [None] * len(pool_vars)

    def output(self) -> np.ndarray:
        return self.f_output.output()

    def r_output(self) -> np.ndarray:
        return self.f_output.r_output()

    def _reaches(self, i: int) -> bool:
        if self._reach[i] is None:
            probe = RGradient({self.pool_vars[i]: _probe()})
            self._reach[i] = not self.f_output.constant(probe, None)
        return self._reach[i]

    def _live_inputs(self, rgrad, grad) -> List[int]:
        return [i for i, inp in enumerate(self.pool_inputs)
                if self._reaches(i) and not inp.constant(rgrad, grad)]

    def constant(self, rgrad, grad=None) -> bool:
        if not self.f_output.constant(rgrad, grad):
            return False
        return not self._live_inputs(rgrad, grad)

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        # The pooled leaves need first-order adjoints even if the caller
        # does not collect them.
        local_grad = Gradient() if grad is None else grad
        live = self._live_inputs(rgrad, grad)
        for i in live:
            size = len(self.pool_vars[i].vector)
            local_grad[self.pool_vars[i]] = self._alloc(size)
            rgrad[self.pool_vars[i]] = self._alloc(size)

        if not self.f_output.constant(rgrad, local_grad):
            self.f_output.propagate_r_gradient(upstream, upstream_r, rgrad, local_grad)

        downstream = [(local_grad.pop(self.pool_vars[i]), rgrad.pop(self.pool_vars[i]))
                      for i in live]
        for i, (down, down_r) in zip(live, downstream):
            self.pool_inputs[i].propagate_r_gradient(down, down_r, rgrad, grad)
            self._free(down)
            self._free(down_r)


def pool_all(inputs: Sequence, f: Callable[[List[Variable]], object]) -> PooledResult:
    """
    Pool several inputs at once. `f` receives one synthetic Variable per input,
    in order, and returns the Result to wrap.
    """
    pool_vars = [Variable(inp.output()) for inp in inputs]
    logger.debug("pooling %d input(s)", len(pool_vars))
    return PooledResult(inputs, pool_vars, f(pool_vars))


def pool(r, f: Callable[[Variable], object]) -> PooledResult:
    """Evaluate `f` on a pooled stand-in for `r`."""
    return pool_all([r], lambda vs: f(vs[0]))


def pool_all_r(inputs: Sequence, f: Callable[[List[RVariable]], object]) -> RPooledResult:
    """R form of pool_all; `f` receives RVariables carrying each input's tangent."""
    pool_vars = [Variable(inp.output()) for inp in inputs]
    r_vars = [RVariable(pv, inp.r_output()) for pv, inp in zip(pool_vars, inputs)]
    logger.debug("pooling %d R input(s)", len(pool_vars))
    return RPooledResult(inputs, pool_vars, f(r_vars))


def pool_r(r, f: Callable[[RVariable], object]) -> RPooledResult:
    """R form of pool."""
    return pool_all_r([r], lambda vs: f(vs[0]))
