import numpy as np

from aad_rop import (
    ConstResult, Gradient, RVariable, RVector, Variable, gradient,
    hessian_vector_product, pool, pool_all, pool_all_r, pool_r,
)
from aad_rop.functest import RFuncChecker
from aad_rop.ops import (
    LambdaFunc, add, add_scaler, add_scaler_r, add_r, exp, exp_r, mul, mul_r,
    pow, pow_r, sigmoid, sigmoid_r, square, square_r, sum_all, sum_all_r,
)


class Counting:
    """Protocol-only wrapper that counts backward visits."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = 0

    def output(self):
        return self.inner.output()

    def constant(self, grad):
        return self.inner.constant(grad)

    def propagate_gradient(self, upstream, grad):
        self.calls += 1
        self.inner.propagate_gradient(upstream, grad)

    def release(self):
        self.inner.release()


def test_pool_gradients():
    var = Variable([1, -2, 3, -4, 5])
    rv = RVector({var: np.array([1.0, -1, 2, -2, 3])})
    f = LambdaFunc(
        lambda r: pool(exp(sigmoid(r)), lambda p: pow(exp(add_scaler(p, 2)), 0.5)),
        lambda rvec, r: pool_r(exp_r(sigmoid_r(r)),
                               lambda p: pow_r(exp_r(add_scaler_r(p, 2)), 0.5)),
    )
    RFuncChecker(f=f, variables=[var], input=var, rv=rv).full_check()


def test_pool_visits_input_once():
    x = Variable([0.5, -1.0, 2.0])

    shared = Counting(square(x))
    pooled = pool(shared, lambda p: sum_all(add(mul(p, p), add(p, p))))
    pooled_grad = gradient(pooled, [x])
    assert shared.calls == 1

    direct = Counting(square(x))
    direct_out = sum_all(add(mul(direct, direct), add(direct, direct)))
    direct_grad = gradient(direct_out, [x])
    assert direct.calls == 4

    np.testing.assert_allclose(pooled_grad[x], direct_grad[x])
    np.testing.assert_array_equal(pooled.output(), direct_out.output())


def test_pool_leaves_accumulator_keys_alone():
    x = Variable([1.0, 2.0])
    out = pool(square(x), lambda p: sum_all(mul(p, p)))
    grad = Gradient.for_vars([x])
    assert not out.constant(grad)
    out.propagate_gradient(np.ones(1), grad)
    assert list(grad) == [x]
    np.testing.assert_allclose(grad[x], 4 * x.vector ** 3)


def test_pool_constancy():
    x = Variable([1.0, 2.0])
    y = Variable([3.0])
    tracked = Gradient.for_vars([x])

    # f ignores its pooled leaf
    ignoring = pool(square(x), lambda p: ConstResult([1.0]))
    assert ignoring.constant(tracked)

    # pooled input does not depend on a tracked variable
    untracked = pool(square(y), lambda p: mul(p, p))
    assert untracked.constant(tracked)

    # f depends on a tracked variable directly
    direct = pool(square(y), lambda p: sum_all(mul(x, x)))
    assert not direct.constant(tracked)

    uses = pool(square(x), lambda p: sum_all(p))
    assert not uses.constant(tracked)


def test_pool_all():
    a = Variable([1.0, 2.0])
    b = Variable([0.5, -1.5])
    rv = RVector({a: np.array([0.2, -0.1]), b: np.array([1.0, 0.4])})

    def plain(inp):
        return pool_all([square(inp), b], lambda vs: mul(add(vs[0], vs[1]), vs[0]))

    def rform(rvec, inp):
        rb = RVariable.from_rvector(b, rvec)
        return pool_all_r([square_r(inp), rb], lambda vs: mul_r(add_r(vs[0], vs[1]), vs[0]))

    out = plain(a).output()
    np.testing.assert_allclose(out, [(1 + 0.5) * 1, (4 - 1.5) * 4])
    RFuncChecker(f=LambdaFunc(plain, rform), variables=[a, b], input=a, rv=rv).full_check()


def test_pool_hessian_without_first_order_accumulator():
    x = Variable([1.0, 2.0])
    direction = RVector({x: np.array([1.0, 1.0])})

    def f(rv):
        rx = RVariable.from_rvector(x, rv)
        return sum_all_r(pool_r(square_r(rx), lambda p: mul_r(p, p)))

    hv = hessian_vector_product(f, [x], direction)
    np.testing.assert_allclose(hv[x], [12.0, 48.0])
