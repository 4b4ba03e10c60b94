import numpy as np
import pytest

from aad_rop import RVariable, RVector, ShapeError, Variable, gradient
from aad_rop.functest import RFuncChecker
from aad_rop.ops import (
    LambdaFunc, LinAdd, LinTran,
    mat_mul, mat_mul_r, mat_mul_vec, outer_product, outer_product_r,
    scale_rows, scale_rows_r, sum_all, transpose, transpose_r,
)

MAT1 = [1, 2, 3, 3, 4, 5, -6, 1, 7, 8, -10, 4]
MAT1_R = [0.40350, 0.75874, 0.87843, 0.86287,
          0.97869, 0.27141, 0.84472, 0.43952,
          0.49841, 0.46748, 0.71821, 0.57590]
MAT2 = [4, 2, 3]
MAT2_R = [0.45823, 0.66692, 0.14662]
VEC = [4, 3, 2, 1]
VEC_R = [0, -1, 3, -7]


@pytest.fixture
def mats():
    mat1, mat2, vec = Variable(MAT1), Variable(MAT2), Variable(VEC)
    rv = RVector({
        mat1: np.array(MAT1_R, dtype=float),
        mat2: np.array(MAT2_R, dtype=float),
        vec: np.array(VEC_R, dtype=float),
    })
    return mat1, mat2, vec, rv


def test_mat_mul_vec_output(mats):
    mat1, _, vec, _ = mats
    np.testing.assert_allclose(mat_mul_vec(mat1, 3, 4, vec).output(), [19, 20, 36])
    np.testing.assert_allclose(LinTran(mat1, 3, 4).apply(vec).output(), [19, 20, 36])


def test_lin_tran_gradients(mats):
    mat1, _, vec, rv = mats
    checker = RFuncChecker(f=LinTran(mat1, 3, 4), variables=[mat1, vec], input=vec, rv=rv)
    checker.full_check()


def test_mat_mul_vec_backward_values(mats):
    mat1, _, vec, _ = mats
    grad = gradient(mat_mul_vec(mat1, 3, 4, vec), [mat1, vec], upstream=[1.0, 0.0, 2.0])
    np.testing.assert_allclose(grad[vec], [15, 18, -17, 11])
    np.testing.assert_allclose(grad[mat1], [4, 3, 2, 1, 0, 0, 0, 0, 8, 6, 4, 2])


def test_lin_tran_batch(mats):
    mat1, _, _, rv = mats
    lt = LinTran(mat1, 3, 4)
    batch_in = Variable([4, 3, 2, 1, 0, 1, -1, 2])
    out = lt.batch(batch_in, 2).output()
    first = lt.apply(Variable([4, 3, 2, 1])).output()
    second = lt.apply(Variable([0, 1, -1, 2])).output()
    np.testing.assert_allclose(out, np.concatenate([first, second]))

    rv[batch_in] = np.array([0.5, -0.5, 1.0, 0.25, -1.0, 0.0, 0.75, 2.0])
    f = LambdaFunc(lambda inp: lt.batch(inp, 2), lambda rvec, inp: lt.batch_r(rvec, inp, 2))
    RFuncChecker(f=f, variables=[mat1, batch_in], input=batch_in, rv=rv).full_check()

    with pytest.raises(ShapeError):
        lt.batch(batch_in, 3)


def test_outer_product(mats):
    _, mat2, vec, rv = mats
    np.testing.assert_allclose(outer_product(vec, mat2).output(),
                               [16, 8, 12, 12, 6, 9, 8, 4, 6, 4, 2, 3])
    f = LambdaFunc(lambda inp: outer_product(inp, mat2),
                   lambda rvec, inp: outer_product_r(inp, RVariable.from_rvector(mat2, rvec)))
    RFuncChecker(f=f, variables=[vec, mat2], input=vec, rv=rv).full_check()


def test_mat_mul(mats):
    mat1, _, _, rv = mats
    a = Variable([0.5, -1.0, 2.0, 1.5, 0.25, -0.75])
    rv[a] = np.array([1.0, 0.5, -0.5, 0.0, 2.0, -1.0])
    out = mat_mul(a, 2, 3, mat1, 4).output()
    expected = np.array(a.vector).reshape(2, 3) @ np.array(MAT1, dtype=float).reshape(3, 4)
    np.testing.assert_allclose(out, expected.ravel())

    f = LambdaFunc(lambda inp: mat_mul(inp, 2, 3, mat1, 4),
                   lambda rvec, inp: mat_mul_r(inp, 2, 3, RVariable.from_rvector(mat1, rvec), 4))
    RFuncChecker(f=f, variables=[a, mat1], input=a, rv=rv).full_check()

    with pytest.raises(ShapeError):
        mat_mul(a, 3, 2, mat1, 4)


def test_transpose(mats):
    mat1, _, _, rv = mats
    out = transpose(mat1, 3, 4).output()
    np.testing.assert_array_equal(out, np.array(MAT1, dtype=float).reshape(3, 4).T.ravel())
    f = LambdaFunc(lambda inp: transpose(inp, 3, 4), lambda rvec, inp: transpose_r(inp, 3, 4))
    RFuncChecker(f=f, variables=[mat1], input=mat1, rv=rv).full_check()


def test_scale_rows(mats):
    mat1, _, _, rv = mats
    scales = Variable([2.0, -1.0, 0.5])
    rv[scales] = np.array([0.3, 0.6, -0.9])
    out = scale_rows(mat1, scales).output()
    np.testing.assert_allclose(out, [2, 4, 6, 6, -4, -5, 6, -1, 3.5, 4, -5, 2])

    f = LambdaFunc(lambda inp: scale_rows(inp, scales),
                   lambda rvec, inp: scale_rows_r(inp, RVariable.from_rvector(scales, rvec)))
    RFuncChecker(f=f, variables=[mat1, scales], input=mat1, rv=rv).full_check()

    with pytest.raises(ShapeError):
        scale_rows(mat1, Variable([1.0] * 5))


def test_lin_add():
    vec1 = Variable([1, 3, 2, 1])
    vec2 = Variable([5, -3, 5, 4])
    rv = RVector({vec1: np.array([0.5, -10, 5, 3.14]), vec2: np.array([0, 5, -15, -30.0])})
    la = LinAdd(vec1)
    np.testing.assert_allclose(la.apply(vec2).output(), [6, 0, 7, 5])
    RFuncChecker(f=la, variables=[vec1, vec2], input=vec2, rv=rv).full_check()

    packed = Variable([5, -3, 5, 4, 1, 1, 1, 1])
    np.testing.assert_allclose(la.batch(packed, 2).output(), [6, 0, 7, 5, 2, 4, 3, 2])
    grad = gradient(sum_all(la.batch(packed, 2)), [vec1])
    np.testing.assert_allclose(grad[vec1], [2, 2, 2, 2])


def test_mat_mul_vec_shape_errors(mats):
    mat1, _, vec, _ = mats
    with pytest.raises(ShapeError):
        mat_mul_vec(mat1, 4, 4, vec)
    with pytest.raises(ShapeError):
        mat_mul_vec(mat1, 4, 3, vec)
