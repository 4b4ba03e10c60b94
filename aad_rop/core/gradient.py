# aad_rop/core/gradient.py
"""
Identity-keyed accumulators.

Keys are `Variable` objects, which hash by identity. A missing key in a
Gradient means "not tracked"; a missing key in an RVector means zero tangent.
"""
from __future__ import annotations

from typing import Iterable

import numpy as np


class Gradient(dict):
    """
    Map Variable -> accumulated partial derivatives.

    Entries are pre-sized and zeroed before a backward pass. Every node sums
    into them (`+=`), so a parameter reached along several paths collects the
    sum of all contributions.
    """

    @classmethod
    def for_vars(cls, variables: Iterable) -> "Gradient":
        """Zeroed accumulator with one entry per variable."""
        return cls((v, np.zeros(len(v.vector), dtype=np.float64)) for v in variables)

    def zero(self) -> None:
        for vec in self.values():
            vec.fill(0.0)

    def add(self, other: "Gradient") -> None:
        """Add `other` into this gradient, ignoring keys this one does not track."""
        for var, vec in other.items():
            if var in self:
                self[var] += vec

    def scale(self, factor: float) -> None:
        for vec in self.values():
            vec *= factor

    def copy(self) -> "Gradient":
        """Copy with independent vectors."""
        return type(self)((var, vec.copy()) for var, vec in self.items())


class RGradient(Gradient):
    """Map Variable -> accumulated R-derivatives of the gradient."""


class RVector(dict):
    """Map Variable -> tangent direction."""

    def copy(self) -> "RVector":
        return type(self)((var, np.array(vec, dtype=np.float64)) for var, vec in self.items())
