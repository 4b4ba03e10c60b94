# aad_rop/__init__.py
# Reverse-mode AD with R-operator (Hessian-vector) support over float64 vectors

import logging

from .core.var import Variable, RVariable, ConstResult, ConstRResult
from .core.gradient import Gradient, RGradient, RVector
from .core.result import Result, RResult
from .core.vector_cache import VectorCache
from .core.pool import pool, pool_r, pool_all, pool_all_r
from .core.fold import fold, fold_r
from .core.serialize import read_variable, write_variable
from .core.seeds import gradient, r_gradient, hessian_vector_product

# Operator overloading is registered on import
from . import ops
from .config import EngineConfig
from .errors import ShapeError, DeserializationError

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    # Core
    'Variable',
    'RVariable',
    'ConstResult',
    'ConstRResult',
    'Gradient',
    'RGradient',
    'RVector',
    'Result',
    'RResult',
    'VectorCache',
    # Checkpointing
    'pool',
    'pool_r',
    'pool_all',
    'pool_all_r',
    'fold',
    'fold_r',
    # Persistence
    'read_variable',
    'write_variable',
    # Drivers
    'gradient',
    'r_gradient',
    'hessian_vector_product',
    # Ops, config, errors
    'ops',
    'EngineConfig',
    'ShapeError',
    'DeserializationError',
]
