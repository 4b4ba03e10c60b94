import threading

import numpy as np
import pytest

from aad_rop import EngineConfig, Gradient, Variable, VectorCache, fold
from aad_rop.ops import add, inverse, mat_mul_vec, mul, sigmoid, split, square, sum_all


def test_alloc_is_zeroed_and_reused():
    cache = VectorCache()
    vec = cache.alloc(4)
    np.testing.assert_array_equal(vec, np.zeros(4))
    vec[:] = 7.0
    cache.free(vec)
    assert cache.float_count() == 4

    again = cache.alloc(4)
    assert again is vec
    np.testing.assert_array_equal(again, np.zeros(4))
    assert cache.float_count() == 0

    other = cache.alloc(3)
    assert len(other) == 3


def test_max_floats_budget():
    cache = VectorCache(max_floats=5)
    cache.free(np.zeros(3))
    cache.free(np.zeros(3))
    assert cache.float_count() == 3
    cache.free(np.zeros(2))
    assert cache.float_count() == 5

    cache.clear()
    assert cache.float_count() == 0

    with pytest.raises(ValueError):
        VectorCache(max_floats=-1)


def test_views_are_not_cached():
    cache = VectorCache()
    base = np.zeros(10)
    cache.free(base[2:6])
    cache.free(np.zeros((2, 2)))
    cache.free(np.zeros(3, dtype=np.float32))
    assert cache.float_count() == 0


def test_concurrent_alloc_free():
    cache = VectorCache(max_floats=1000)

    def worker():
        for _ in range(500):
            vec = cache.alloc(8)
            assert not vec.any()
            vec += 1.0
            cache.free(vec)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert 0 < cache.float_count() <= 1000


def _model(x, mat, cache):
    hidden = [sigmoid(mat_mul_vec(mat, 2, 3, part, cache), cache)
              for part in split(2, x, cache)]
    folded = fold(Variable([1.5, 0.5]), hidden,
                  lambda s, h: add(mul(inverse(s, cache), h, cache), s, cache))
    return sum_all(square(folded, cache), cache)


def _grads(cache):
    x = Variable([0.3, -0.7, 1.1, 0.2, 0.9, -1.4])
    mat = Variable([0.5, -1.0, 2.0, 0.1, 0.4, -0.3])
    out = _model(x, mat, cache)
    grad = Gradient.for_vars([x, mat])
    out.propagate_gradient(np.ones(1), grad)
    value = out.output().copy()
    out.release()
    return value, grad[x], grad[mat]


def test_cache_does_not_change_results():
    plain = _grads(None)
    cache = VectorCache()
    first = _grads(cache)
    assert cache.float_count() > 0
    second = _grads(cache)
    for expected, got1, got2 in zip(plain, first, second):
        np.testing.assert_array_equal(expected, got1)
        np.testing.assert_array_equal(expected, got2)


def test_release_is_idempotent_and_frees_shared_inputs_once():
    cache = VectorCache()
    x = Variable([1.0, 2.0, 3.0])
    shared = square(x, cache)
    out = add(shared, shared, cache)
    out.release()
    assert cache.float_count() == 6
    out.release()
    shared.release()
    assert cache.float_count() == 6
    assert out.output() is None


def test_config_builds_cache():
    assert EngineConfig(cache_enabled=False).new_cache() is None
    cache = EngineConfig(cache_max_floats=16).new_cache()
    assert isinstance(cache, VectorCache)
    assert cache.max_floats == 16
