# aad_rop/functest/checker.py
"""
Finite-difference gradient checkers.

A checker compares the exact derivatives a function reports through the
engine with central-difference approximations:

    df/dx_i ≈ (f(x + δ e_i) - f(x - δ e_i)) / 2δ

`check()` raises AssertionError listing every mismatching entry (nan always
counts as a mismatch), so the checkers drop straight into pytest tests.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Sequence

import numpy as np

from ..config import EngineConfig
from ..core.gradient import Gradient, RGradient, RVector
from ..core.var import RVariable, Variable
from ..ops.func import ComposedFunc, ComposedRFunc
from .util import add_twice, mul_twice

logger = logging.getLogger(__name__)


def _mismatch(actual: float, expected: float, prec: float) -> bool:
    return bool(np.isnan(actual) or abs(actual - expected) > prec)


def _consistent(v1: np.ndarray, v2: np.ndarray, prec: float) -> bool:
    if len(v1) != len(v2):
        return False
    both_nan = np.isnan(v1) & np.isnan(v2)
    close = np.abs(v1 - v2) <= prec
    return bool(np.all(both_nan | close))


def _raise_if(errors: List[str], name: str) -> None:
    if errors:
        shown = "\n  ".join(errors[:20])
        more = f"\n  ... {len(errors) - 20} more" if len(errors) > 20 else ""
        raise AssertionError(f"{name}: {len(errors)} mismatch(es)\n  {shown}{more}")


@dataclass
class FuncChecker:
    """
    Checker for a Func.

    Attributes
    ----------
    f : Func
        Function under test.
    variables : list[Variable]
        Variables whose gradients are checked. Include `input` here to check
        the input gradient too.
    input : Variable
        What `f` is applied to.
    delta, prec : float | None
        Finite-difference step and comparison tolerance; None means the
        EngineConfig defaults (overridable through AAD_ROP_CHECK_*).
    """

    f: object
    variables: Sequence[Variable]
    input: Variable
    delta: Optional[float] = None
    prec: Optional[float] = None

    def _delta(self) -> float:
        return self.delta if self.delta is not None else EngineConfig.from_env().check_delta

    def _prec(self) -> float:
        return self.prec if self.prec is not None else EngineConfig.from_env().check_prec

    def _eval(self) -> np.ndarray:
        return self.f.apply(self.input).output().copy()

    def jacobian(self) -> List[Gradient]:
        """One exact Gradient per output component."""
        out = self.f.apply(self.input)
        jac = []
        for i in range(len(out.output())):
            grad = Gradient.for_vars(self.variables)
            upstream = np.zeros(len(out.output()))
            upstream[i] = 1.0
            if not out.constant(grad):
                out.propagate_gradient(upstream, grad)
            jac.append(grad)
        return jac

    def approx_partials(self, var: Variable, idx: int) -> np.ndarray:
        """Central-difference derivative of every output w.r.t. var[idx]."""
        delta = self._delta()
        old = var.vector[idx]
        var.vector[idx] = old + delta
        plus = self._eval()
        var.vector[idx] = old - delta
        minus = self._eval()
        var.vector[idx] = old
        return (plus - minus) / (2 * delta)

    def _check_gradient(self) -> List[str]:
        prec = self._prec()
        errors = []
        jac = self.jacobian()
        for var_idx, var in enumerate(self.variables):
            for elem in range(len(var.vector)):
                approx = self.approx_partials(var, elem)
                for out_idx, grad in enumerate(jac):
                    actual = grad[var][elem]
                    if _mismatch(actual, approx[out_idx], prec):
                        errors.append(f"var {var_idx}, output {out_idx}, entry {elem}: "
                                      f"expected {approx[out_idx]:.8g} got {actual:.8g}")
        return errors

    def check(self) -> None:
        _raise_if(self._check_gradient(), "gradient")

    def variants(self):
        """(label, checker) pairs that full_check runs."""
        yield "Standard", self
        for i in range(len(self.variables)):
            yield f"Vars[{i}]", replace(self, variables=[self.variables[i]])
        yield "Accumulation", replace(self, f=ComposedFunc([self.f, add_twice]))

    def full_check(self) -> None:
        """Check gradients of f, of f with one variable at a time, and of f + f."""
        for label, checker in self.variants():
            logger.debug("gradient check variant %s", label)
            try:
                checker.check()
            except AssertionError as exc:
                raise AssertionError(f"[{label}] {exc}") from exc


@dataclass
class RFuncChecker(FuncChecker):
    """
    Checker for an RFunc.

    Besides first-order gradients it checks the R-output against a finite
    difference along `rv`, the R-gradient against a finite difference of the
    exact gradient along `rv`, and that `apply` and `apply_r` agree.
    """

    rv: RVector = None

    def __post_init__(self):
        if self.rv is None:
            self.rv = RVector()

    def _r_input(self):
        return RVariable.from_rvector(self.input, self.rv)

    def _eval(self) -> np.ndarray:
        return self.f.apply_r(self.rv, self._r_input()).output().copy()

    def _exact(self):
        """Per-output (Gradient, RGradient) pairs from one R graph."""
        out = self.f.apply_r(self.rv, self._r_input())
        size = len(out.output())
        pairs = []
        for i in range(size):
            grad = Gradient.for_vars(self.variables)
            rgrad = RGradient.for_vars(self.variables)
            upstream = np.zeros(size)
            upstream[i] = 1.0
            if not out.constant(rgrad, grad):
                out.propagate_r_gradient(upstream, np.zeros(size), rgrad, grad)
            pairs.append((grad, rgrad))
        return pairs

    def jacobian(self) -> List[Gradient]:
        return [g for g, _ in self._exact()]

    def jacobian_r(self) -> List[RGradient]:
        return [rg for _, rg in self._exact()]

    def output_r(self) -> np.ndarray:
        return self.f.apply_r(self.rv, self._r_input()).r_output().copy()

    def _along_rv(self, fn: Callable[[], np.ndarray]) -> np.ndarray:
        """Central difference of fn() when every variable in rv moves along it."""
        delta = self._delta()
        backups = {v: v.vector.copy() for v in self.rv}
        for v, d in self.rv.items():
            v.vector -= delta * d
        minus = fn()
        for v, d in self.rv.items():
            v.vector += 2 * delta * d
        plus = fn()
        for v, backup in backups.items():
            v.vector[:] = backup
        return (plus - minus) / (2 * delta)

    def approx_output_r(self) -> np.ndarray:
        return self._along_rv(self._eval)

    def approx_partials_r(self, var: Variable, idx: int) -> np.ndarray:
        """Finite difference, along rv, of the exact partials w.r.t. var[idx]."""
        return self._along_rv(lambda: np.array([g[var][idx] for g in self.jacobian()]))

    def _check_r_output(self) -> List[str]:
        prec = self._prec()
        expected, actual = self.approx_output_r(), self.output_r()
        return [f"r-output {i}: expected {x:.8g} got {a:.8g}"
                for i, (x, a) in enumerate(zip(expected, actual)) if _mismatch(a, x, prec)]

    def _check_r_gradient(self) -> List[str]:
        prec = self._prec()
        errors = []
        jac = self.jacobian_r()
        for var_idx, var in enumerate(self.variables):
            for elem in range(len(var.vector)):
                approx = self.approx_partials_r(var, elem)
                for out_idx, rgrad in enumerate(jac):
                    actual = rgrad[var][elem]
                    if _mismatch(actual, approx[out_idx], prec):
                        errors.append(f"r-gradient: var {var_idx}, output {out_idx}, "
                                      f"entry {elem}: expected {approx[out_idx]:.8g} "
                                      f"got {actual:.8g}")
        return errors

    def _check_consistency(self) -> List[str]:
        prec = self._prec()
        errors = []
        plain_out = self.f.apply(self.input).output()
        r_out = self.f.apply_r(self.rv, self._r_input()).output()
        if not _consistent(plain_out, r_out, prec):
            errors.append(f"output inconsistency: apply gave {plain_out} apply_r gave {r_out}")

        plain = FuncChecker(self.f, self.variables, self.input, self.delta, self.prec)
        plain_jac, r_jac = plain.jacobian(), self.jacobian()
        if len(plain_jac) != len(r_jac):
            errors.append(f"jacobian counts: apply_r gave {len(r_jac)} apply gave {len(plain_jac)}")
            return errors
        for i, (g_r, g) in enumerate(zip(r_jac, plain_jac)):
            for var_idx, var in enumerate(self.variables):
                if not _consistent(g_r[var], g[var], prec):
                    errors.append(f"gradient {i} var {var_idx}: apply gave {g[var]} "
                                  f"apply_r gave {g_r[var]}")
        return errors

    def check(self) -> None:
        _raise_if(self._check_gradient(), "gradient")
        _raise_if(self._check_r_output(), "r-output")
        _raise_if(self._check_r_gradient(), "r-gradient")

    def check_consistency(self) -> None:
        _raise_if(self._check_consistency(), "consistency")

    def variants(self, include_square: bool = True):
        yield "Standard", self
        for i in range(len(self.variables)):
            yield f"Vars[{i}]", replace(self, variables=[self.variables[i]])
        yield "Accumulation", replace(self, f=ComposedRFunc([self.f, add_twice]))
        if include_square:
            yield "Square", replace(self, f=ComposedRFunc([self.f, mul_twice]))

    def full_check(self, include_square: bool = True) -> None:
        """
        R checks plus apply/apply_r consistency on f, on f with one variable
        at a time, on f + f and (optionally) on f * f, which exercises a
        non-zero upstream R-derivative.
        """
        for label, checker in self.variants(include_square):
            logger.debug("R gradient check variant %s", label)
            try:
                checker.check()
                checker.check_consistency()
            except AssertionError as exc:
                raise AssertionError(f"[{label}] {exc}") from exc
