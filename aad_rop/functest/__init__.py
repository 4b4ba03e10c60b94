# aad_rop/functest/__init__.py
"""Numeric gradient checking for functions built on the engine."""

from .checker import FuncChecker, RFuncChecker
from .util import add_twice, mul_twice

__all__ = ["FuncChecker", "RFuncChecker", "add_twice", "mul_twice"]
