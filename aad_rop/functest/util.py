# aad_rop/functest/util.py
from ..ops.arithmetic import add, add_r, mul, mul_r
from ..ops.func import LambdaFunc

# x + x: backpropagation reaches x twice, so gradients must be summed into
# the accumulator rather than overwritten.
add_twice = LambdaFunc(lambda r: add(r, r), lambda rv, r: add_r(r, r))

# x * x: the upstream derivative for one factor is the other factor, so the
# upstream R-derivative seen by the inner function is non-zero.
mul_twice = LambdaFunc(lambda r: mul(r, r), lambda rv, r: mul_r(r, r))
