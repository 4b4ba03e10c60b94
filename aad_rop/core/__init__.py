# aad_rop/core/__init__.py

"""
Core public API of the engine.

Exports:
    Variable, RVariable       : Leaf parameters and their tangent-carrying view.
    ConstResult, ConstRResult : Fixed vectors that depend on no parameter.
    Gradient, RGradient       : Identity-keyed accumulators for backpropagation.
    RVector                   : Tangent directions for the R-operator.
    Result, RResult           : Node protocols.
    VectorCache               : Reusable float64 buffer pool.
    pool, pool_r, pool_all, pool_all_r : Checkpoint a sub-graph behind a leaf.
    fold, fold_r              : Thread a state through a sequence of inputs.
    gradient, r_gradient, hessian_vector_product : Convenience drivers.
"""

from .var import Variable, RVariable, ConstResult, ConstRResult
from .gradient import Gradient, RGradient, RVector
from .result import Result, RResult, ResultBase, RResultBase
from .vector_cache import VectorCache
from .pool import pool, pool_r, pool_all, pool_all_r
from .fold import fold, fold_r
from .serialize import read_variable, write_variable
from .seeds import gradient, r_gradient, hessian_vector_product

__all__ = [
    "Variable", "RVariable", "ConstResult", "ConstRResult",
    "Gradient", "RGradient", "RVector",
    "Result", "RResult", "ResultBase", "RResultBase",
    "VectorCache",
    "pool", "pool_r", "pool_all", "pool_all_r",
    "fold", "fold_r",
    "read_variable", "write_variable",
    "gradient", "r_gradient", "hessian_vector_product",
]
