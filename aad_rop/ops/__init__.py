# aad_rop/ops/__init__.py

# Ensure operator overloading is registered
from . import arithmetic
from . import transcendental

# Convenience re-exports so users can do: from aad_rop.ops import mul, exp, ...
from .arithmetic import (
    add, add_r, sub, sub_r, mul, mul_r, div, div_r,
    scale, scale_r, scale_first, scale_first_r, add_scaler, add_scaler_r,
    add_first, add_first_r, pow, pow_r, inverse, inverse_r, square, square_r,
    sum_all, sum_all_r, add_log_domain, add_log_domain_r,
    sum_all_log_domain, sum_all_log_domain_r,
)
from .transcendental import (
    exp, exp_r, log, log_r, sigmoid, sigmoid_r, sin, sin_r, cos, cos_r,
    squared_norm, squared_norm_r, softmax, softmax_r,
)
from .linalg import (
    mat_mul_vec, mat_mul_vec_r, mat_mul, mat_mul_r, outer_product, outer_product_r,
    transpose, transpose_r, scale_rows, scale_rows_r,
)
from .slices import (
    slice_result, slice_result_r, concat, concat_r, split, split_r, repeat, repeat_r,
)
from .func import Func, RFunc, LambdaFunc, ComposedFunc, ComposedRFunc, LinTran, LinAdd
from .batch import (
    Batcher, RBatcher, FuncBatcher, RFuncBatcher, ComposedBatcher, ComposedRBatcher,
)

__all__ = [
    "add", "add_r", "sub", "sub_r", "mul", "mul_r", "div", "div_r",
    "scale", "scale_r", "scale_first", "scale_first_r", "add_scaler", "add_scaler_r",
    "add_first", "add_first_r", "pow", "pow_r", "inverse", "inverse_r",
    "square", "square_r", "sum_all", "sum_all_r",
    "add_log_domain", "add_log_domain_r", "sum_all_log_domain", "sum_all_log_domain_r",
    "exp", "exp_r", "log", "log_r", "sigmoid", "sigmoid_r", "sin", "sin_r",
    "cos", "cos_r", "squared_norm", "squared_norm_r", "softmax", "softmax_r",
    "mat_mul_vec", "mat_mul_vec_r", "mat_mul", "mat_mul_r",
    "outer_product", "outer_product_r", "transpose", "transpose_r",
    "scale_rows", "scale_rows_r",
    "slice_result", "slice_result_r", "concat", "concat_r",
    "split", "split_r", "repeat", "repeat_r",
    "Func", "RFunc", "LambdaFunc", "ComposedFunc", "ComposedRFunc", "LinTran", "LinAdd",
    "Batcher", "RBatcher", "FuncBatcher", "RFuncBatcher", "ComposedBatcher",
    "ComposedRBatcher",
]
