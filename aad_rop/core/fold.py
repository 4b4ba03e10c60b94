# aad_rop/core/fold.py
"""
Sequential fold: thread a state through `step(state, input_i)`.

Every state boundary is pooled behind a fresh synthetic Variable, so a
backward pass visits each step once and costs linear time in the number of
inputs.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

import numpy as np

from .gradient import Gradient, RGradient
from .result import ResultBase, RResultBase
from .var import RVariable, Variable

logger = logging.getLogger(__name__)


class _FoldMixin:
    """
    Bookkeeping shared by the plain and R folds.

    `states[0]` is the initial state and `states[k + 1]` is the step applied
    to the pooled `states[k]` (held by `pool_vars[k]`) and the k-th input.
    """

    states: List
    pool_vars: List[Variable]
    _reach: List[Optional[bool]]

    def _state_constant(self, k: int, *grads) -> bool:
        raise NotImplementedError

    def _reaches(self, k: int) -> bool:
        """Whether states[k + 1] depends on its pooled predecessor."""
        if self._reach[k] is None:
            probe = RGradient({self.pool_vars[k]: np.zeros(0)})
            self._reach[k] = not self._state_constant(k + 1, probe)
        return self._reach[k]

    def _live_prefix(self, *grads) -> List[bool]:
        """
        live[k] is True when states[k] depends on a tracked parameter, either
        directly or through an earlier state.
        """
        live = [not self._state_constant(0, *grads)]
        for k in range(len(self.pool_vars)):
            live.append(not self._state_constant(k + 1, *grads)
                        or (live[k] and self._reaches(k)))
        return live


class FoldResult(_FoldMixin, ResultBase):
    def __init__(self, states: List, pool_vars: List[Variable]):
        super().__init__(states[-1].output(), inputs=states, owned=False)
        self.states = states
        self.pool_vars = pool_vars
        self._reach = [None] * len(pool_vars)

    def output(self) -> np.ndarray:
        return self.states[-1].output()

    def _state_constant(self, k: int, *grads) -> bool:
        return self.states[k].constant(grads[0])

    def constant(self, grad) -> bool:
        return not self._live_prefix(grad)[-1]

    def propagate_gradient(self, upstream: np.ndarray, grad) -> None:
        live = self._live_prefix(grad)
        state_up = upstream
        owned = False
        for k in reversed(range(len(self.pool_vars))):
            if not live[k + 1]:
                break
            pv = self.pool_vars[k]
            use_pool = live[k] and self._reaches(k)
            if use_pool:
                grad[pv] = self._alloc(len(pv.vector))
            self.states[k + 1].propagate_gradient(state_up, grad)
            if owned:
                self._free(state_up)
            if not use_pool:
                return
            state_up = grad.pop(pv)
            owned = True
        else:
            if live[0]:
                self.states[0].propagate_gradient(state_up, grad)
        if owned:
            self._free(state_up)


class RFoldResult(_FoldMixin, RResultBase):
    def __init__(self, states: List, pool_vars: List[Variable]):
        super().__init__(states[-1].output(), states[-1].r_output(),
                         inputs=states, owned=False)
        self.states = states
        self.pool_vars = pool_vars
        self._reach = [None] * len(pool_vars)

    def output(self) -> np.ndarray:
        return self.states[-1].output()

    def r_output(self) -> np.ndarray:
        return self.states[-1].r_output()

    def _state_constant(self, k: int, *grads) -> bool:
        rgrad = grads[0]
        grad = grads[1] if len(grads) > 1 else None
        return self.states[k].constant(rgrad, grad)

    def constant(self, rgrad, grad=None) -> bool:
        return not self._live_prefix(rgrad, grad)[-1]

    def propagate_r_gradient(self, upstream, upstream_r, rgrad, grad=None) -> None:
        live = self._live_prefix(rgrad, grad)
        local_grad = Gradient() if grad is None else grad
        state_up, state_up_r = upstream, upstream_r
        owned = False
        for k in reversed(range(len(self.pool_vars))):
            if not live[k + 1]:
                break
            pv = self.pool_vars[k]
            use_pool = live[k] and self._reaches(k)
            if use_pool:
                local_grad[pv] = self._alloc(len(pv.vector))
                rgrad[pv] = self._alloc(len(pv.vector))
            self.states[k + 1].propagate_r_gradient(state_up, state_up_r, rgrad, local_grad)
            if owned:
                self._free(state_up)
                self._free(state_up_r)
            if not use_pool:
                return
            state_up, state_up_r = local_grad.pop(pv), rgrad.pop(pv)
            owned = True
        else:
            if live[0]:
                self.states[0].propagate_r_gradient(state_up, state_up_r, rgrad, grad)
        if owned:
            self._free(state_up)
            self._free(state_up_r)


def fold(state0, inputs: Sequence, step: Callable):
    """
    Fold `step(state, input)` over `inputs`, starting from `state0`.

    Returns `state0` itself when `inputs` is empty.
    """
    if not inputs:
        return state0
    states = [state0]
    pool_vars: List[Variable] = []
    for inp in inputs:
        pv = Variable(states[-1].output())
        pool_vars.append(pv)
        states.append(step(pv, inp))
    logger.debug("fold over %d step(s)", len(pool_vars))
    return FoldResult(states, pool_vars)


def fold_r(state0, inputs: Sequence, step: Callable):
    """R form of fold; `step` receives an RVariable for the pooled state."""
    if not inputs:
        return state0
    states = [state0]
    pool_vars: List[Variable] = []
    for inp in inputs:
        pv = Variable(states[-1].output())
        pool_vars.append(pv)
        states.append(step(RVariable(pv, states[-1].r_output()), inp))
    logger.debug("R fold over %d step(s)", len(pool_vars))
    return RFoldResult(states, pool_vars)
