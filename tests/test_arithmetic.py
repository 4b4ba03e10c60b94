import math

import numpy as np
import pytest

from aad_rop import ConstResult, RVariable, RVector, ShapeError, Variable, gradient
from aad_rop.functest import FuncChecker, RFuncChecker
from aad_rop.ops import (
    LambdaFunc,
    add, add_r, add_first, add_first_r, add_log_domain, add_log_domain_r,
    add_scaler, add_scaler_r, div, div_r, inverse, inverse_r, mul, mul_r,
    pow, pow_r, scale, scale_r, scale_first, scale_first_r, square, square_r,
    sub, sub_r, sum_all, sum_all_r, sum_all_log_domain, sum_all_log_domain_r,
)


def make_vars():
    v1 = Variable([1.0, 2.0, -4.0, 3.0, -2.0])
    v2 = Variable([4.0, -2.0, 3.0, -0.5, 0.3])
    v3 = Variable([0.99196, 0.48826, 0.51066, 0.66715, 0.44423])
    v4 = Variable([0.509893, 0.874112, -0.080468, 0.372740, -0.172097])
    rv = RVector({
        v1: np.array([0.340162, -0.325063, 0.179612, 0.056463, -0.812274]),
        v3: np.array([0.59824, -0.63322, 0.13379, 0.99559, 0.53748]),
        v4: np.array([4.2222, 5.2762, -7.5762, 2.3420, -1.8927]),
    })
    return v1, v2, v3, v4, rv


def composite_func(v1, v2, v3, v4):
    def apply(r):
        sq1 = square(mul(scale(add(r, v1), -2), v2))
        sum1 = add_scaler(add(mul(sq1, v3), scale(v4, -0.5)), 2)
        powed = pow(pow(inverse(sum1), 2), 1 / 3.0)
        all_sum = sum_all(add_first(powed, v1))
        return scale_first(add_log_domain(v1, v2), all_sum)

    def apply_r(rv, r):
        w1, w2, w3, w4 = (RVariable.from_rvector(v, rv) for v in (v1, v2, v3, v4))
        sq1 = square_r(mul_r(scale_r(add_r(r, w1), -2), w2))
        sum1 = add_scaler_r(add_r(mul_r(sq1, w3), scale_r(w4, -0.5)), 2)
        powed = pow_r(pow_r(inverse_r(sum1), 2), 1 / 3.0)
        all_sum = sum_all_r(add_first_r(powed, w1))
        return scale_first_r(add_log_domain_r(w1, w2), all_sum)

    return LambdaFunc(apply, apply_r)


def test_composite_function_gradients():
    v1, v2, v3, v4, rv = make_vars()
    checker = RFuncChecker(
        f=composite_func(v1, v2, v3, v4),
        variables=[v1, v2, v3, v4],
        input=v4,
        rv=rv,
    )
    checker.full_check(include_square=False)


def test_composite_function_plain_checker():
    v1, v2, v3, v4, _ = make_vars()
    f = composite_func(v1, v2, v3, v4)
    FuncChecker(f=f, variables=[v1, v2, v3, v4], input=v4).full_check()


def test_forward_values():
    a = Variable([1.0, 2.0, 3.0])
    b = Variable([4.0, -1.0, 0.5])
    np.testing.assert_allclose(add(a, b).output(), [5.0, 1.0, 3.5])
    np.testing.assert_allclose(sub(a, b).output(), [-3.0, 3.0, 2.5])
    np.testing.assert_allclose(mul(a, b).output(), [4.0, -2.0, 1.5])
    np.testing.assert_allclose(div(a, b).output(), [0.25, -2.0, 6.0])
    np.testing.assert_allclose(scale(a, 3).output(), [3.0, 6.0, 9.0])
    np.testing.assert_allclose(add_scaler(a, -1).output(), [0.0, 1.0, 2.0])
    np.testing.assert_allclose(scale_first(a, b).output(), [4.0, 8.0, 12.0])
    np.testing.assert_allclose(add_first(a, b).output(), [5.0, 6.0, 7.0])
    np.testing.assert_allclose(inverse(b).output(), [0.25, -1.0, 2.0])
    np.testing.assert_allclose(square(b).output(), [16.0, 1.0, 0.25])
    np.testing.assert_allclose(pow(a, 3).output(), [1.0, 8.0, 27.0])
    np.testing.assert_allclose(sum_all(a).output(), [6.0])


BINARY_OPS = [
    (add, add_r), (sub, sub_r), (mul, mul_r), (div, div_r),
    (scale_first, scale_first_r), (add_first, add_first_r),
]


@pytest.mark.parametrize("plain,rform", BINARY_OPS)
def test_binary_ops_gradient(plain, rform):
    a = Variable([0.5, -1.5, 2.0, 0.7])
    b = Variable([1.3, 0.8, -0.6, 2.2])
    rv = RVector({a: np.array([0.3, -0.2, 0.9, 0.1]), b: np.array([-0.5, 0.4, 0.2, 0.7])})
    f = LambdaFunc(
        lambda inp: plain(inp, b),
        lambda rvec, inp: rform(inp, RVariable.from_rvector(b, rvec)),
    )
    RFuncChecker(f=f, variables=[a, b], input=a, rv=rv).full_check()


@pytest.mark.parametrize("plain,rform", [
    (lambda x: square(x), lambda x: square_r(x)),
    (lambda x: inverse(x), lambda x: inverse_r(x)),
    (lambda x: pow(x, 2.5), lambda x: pow_r(x, 2.5)),
    (lambda x: pow(x, -1.5), lambda x: pow_r(x, -1.5)),
    (lambda x: scale(x, -3.0), lambda x: scale_r(x, -3.0)),
    (lambda x: add_scaler(x, 4.0), lambda x: add_scaler_r(x, 4.0)),
    (lambda x: sum_all(x), lambda x: sum_all_r(x)),
])
def test_unary_ops_gradient(plain, rform):
    x = Variable([0.5, 1.5, 2.0, 0.7])
    rv = RVector({x: np.array([0.3, -0.2, 0.9, 0.1])})
    f = LambdaFunc(plain, lambda rvec, inp: rform(inp))
    RFuncChecker(f=f, variables=[x], input=x, rv=rv).full_check()


def test_accumulation_sums_both_paths():
    x = Variable([1.0, -2.0, 3.0])
    grad = gradient(sum_all(add(x, x)), [x])
    np.testing.assert_allclose(grad[x], [2.0, 2.0, 2.0])

    grad = gradient(sum_all(mul(x, x)), [x])
    np.testing.assert_allclose(grad[x], [2.0, -4.0, 6.0])


def test_pow_zero_is_constant():
    x = Variable([0.0, 2.0, np.nan])
    out = pow(x, 0)
    np.testing.assert_array_equal(out.output(), [1.0, 1.0, 1.0])
    assert out.constant({x: np.zeros(3)})

    rv = RVector({x: np.ones(3)})
    out_r = pow_r(RVariable.from_rvector(x, rv), 0)
    assert out_r.constant({x: np.zeros(3)}, {x: np.zeros(3)})
    np.testing.assert_array_equal(out_r.r_output(), [0.0, 0.0, 0.0])


def test_division_by_zero_propagates_inf():
    a = Variable([1.0, -1.0, 0.0])
    b = Variable([0.0, 0.0, 0.0])
    out = div(a, b).output()
    assert out[0] == np.inf
    assert out[1] == -np.inf
    assert np.isnan(out[2])

    out = pow(Variable([-8.0]), 0.5).output()
    assert np.isnan(out[0])


def test_length_mismatch_raises():
    a = Variable([1.0, 2.0])
    b = Variable([1.0, 2.0, 3.0])
    for op in (add, sub, mul, div):
        with pytest.raises(ShapeError):
            op(a, b)
    with pytest.raises(ShapeError):
        scale_first(a, Variable(np.zeros(0)))


def test_log_domain_is_stable():
    big = math.log(1e300)
    x = Variable([big, 1000.0, -1000.0])
    y = Variable([big, 1000.0, -1000.0])
    out = add_log_domain(x, y).output()
    expected = math.log(2) + 300 * math.log(10)
    np.testing.assert_allclose(out[0], expected, rtol=1e-12)
    np.testing.assert_allclose(out[1], 1000.0 + math.log(2), rtol=1e-12)
    np.testing.assert_allclose(out[2], -1000.0 + math.log(2), rtol=1e-12)

    total = sum_all_log_domain(Variable([1000.0, 1000.0])).output()
    np.testing.assert_allclose(total, [1000.0 + math.log(2)], rtol=1e-12)


def test_log_domain_gradients():
    x = Variable([1.0, -2.0, 5.0])
    y = Variable([0.5, 3.0, 4.0])
    rv = RVector({x: np.array([0.2, -0.4, 1.0]), y: np.array([0.7, 0.1, -0.3])})
    f = LambdaFunc(
        lambda inp: add_log_domain(inp, y),
        lambda rvec, inp: add_log_domain_r(inp, RVariable.from_rvector(y, rvec)),
    )
    RFuncChecker(f=f, variables=[x, y], input=x, rv=rv).full_check()

    f = LambdaFunc(sum_all_log_domain, lambda rvec, inp: sum_all_log_domain_r(inp))
    RFuncChecker(f=f, variables=[x], input=x, rv=rv).full_check()


def test_operator_overloads():
    a = Variable([1.0, 2.0, 4.0])
    b = Variable([2.0, 2.0, 2.0])
    np.testing.assert_allclose((a + b).output(), [3.0, 4.0, 6.0])
    np.testing.assert_allclose((a - b).output(), [-1.0, 0.0, 2.0])
    np.testing.assert_allclose((a * b).output(), [2.0, 4.0, 8.0])
    np.testing.assert_allclose((a / b).output(), [0.5, 1.0, 2.0])
    np.testing.assert_allclose((a + 1).output(), [2.0, 3.0, 5.0])
    np.testing.assert_allclose((1 - a).output(), [0.0, -1.0, -3.0])
    np.testing.assert_allclose((2 * a).output(), [2.0, 4.0, 8.0])
    np.testing.assert_allclose((4 / a).output(), [4.0, 2.0, 1.0])
    np.testing.assert_allclose((a ** 2).output(), [1.0, 4.0, 16.0])
    np.testing.assert_allclose((-a).output(), [-1.0, -2.0, -4.0])
    np.testing.assert_allclose((a * np.array([1.0, 0.0, -1.0])).output(), [1.0, 0.0, -4.0])

    rv = RVector({a: np.ones(3)})
    ra = RVariable.from_rvector(a, rv)
    out = ra * ra + 1
    np.testing.assert_allclose(out.output(), [2.0, 5.0, 17.0])
    np.testing.assert_allclose(out.r_output(), [2.0, 4.0, 8.0])


def test_constant_inputs_are_skipped():
    x = Variable([1.0, 2.0])
    c = ConstResult([3.0, 4.0])
    out = mul(x, c)
    grad = gradient(sum_all(out), [x])
    np.testing.assert_allclose(grad[x], [3.0, 4.0])
    assert out.constant({})
