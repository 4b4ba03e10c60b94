# aad_rop/ops/transcendental.py
import numpy as np
from scipy.special import expit

from ..core.pool import pool, pool_r
from .arithmetic import (
    Elementwise, RElementwise,
    add_scaler, add_scaler_r, inverse, inverse_r, scale, scale_r,
    scale_first, scale_first_r, square, square_r, sum_all, sum_all_r,
)


def exp(x, cache=None):
    return Elementwise(x, lambda v, out: np.exp(v, out=out), lambda v, y: y, cache)


def exp_r(x, cache=None):
    return RElementwise(x, lambda v, out: np.exp(v, out=out),
                        lambda v, y: y, lambda v, y: y, cache)


def log(x, cache=None):
    return Elementwise(x, lambda v, out: np.log(v, out=out), lambda v, y: 1.0 / v, cache)


def log_r(x, cache=None):
    return RElementwise(x, lambda v, out: np.log(v, out=out),
                        lambda v, y: 1.0 / v, lambda v, y: -1.0 / (v * v), cache)


def sigmoid(x, cache=None):
    """
    Logistic function 1 / (1 + e^(-x)), evaluated with scipy's expit so large
    |x| neither overflows nor loses the tail.

    Derivative: σ'(x) = σ(x) (1 - σ(x))
    """
    return Elementwise(x, lambda v, out: expit(v, out=out), lambda v, y: y * (1.0 - y), cache)


def sigmoid_r(x, cache=None):
    # σ'' = σ (1 - σ) (1 - 2σ)
    return RElementwise(x, lambda v, out: expit(v, out=out),
                        lambda v, y: y * (1.0 - y),
                        lambda v, y: y * (1.0 - y) * (1.0 - 2.0 * y), cache)


def sin(x, cache=None):
    return Elementwise(x, lambda v, out: np.sin(v, out=out), lambda v, y: np.cos(v), cache)


def sin_r(x, cache=None):
    return RElementwise(x, lambda v, out: np.sin(v, out=out),
                        lambda v, y: np.cos(v), lambda v, y: -y, cache)


def cos(x, cache=None):
    return Elementwise(x, lambda v, out: np.cos(v, out=out), lambda v, y: -np.sin(v), cache)


def cos_r(x, cache=None):
    return RElementwise(x, lambda v, out: np.cos(v, out=out),
                        lambda v, y: -np.sin(v), lambda v, y: -y, cache)


def squared_norm(x, cache=None):
    """[sum(x_i^2)]"""
    return sum_all(square(x, cache), cache)


def squared_norm_r(x, cache=None):
    return sum_all_r(square_r(x, cache), cache)


def _temperature(temperature: float) -> float:
    # A zero temperature means the plain softmax.
    return 1.0 if temperature == 0 else float(temperature)


def _softmax_shift(x, temperature: float) -> float:
    out = x.output()
    if len(out) == 0:
        return 0.0
    m = float(np.max(out / temperature))
    return -m if np.isfinite(m) else 0.0


def softmax(x, temperature: float = 1.0, cache=None):
    """
    exp(x / T) / sum(exp(x / T)); T == 0 is treated as 1.

    The largest scaled entry is subtracted before exponentiating; the
    exponentials feed both the numerator and the normalizer, so they are
    pooled.
    """
    temperature = _temperature(temperature)
    shifted = add_scaler(scale(x, 1.0 / temperature, cache), _softmax_shift(x, temperature), cache)
    return pool(exp(shifted, cache),
                lambda e: scale_first(e, inverse(sum_all(e, cache), cache), cache))


def softmax_r(x, temperature: float = 1.0, cache=None):
    temperature = _temperature(temperature)
    shifted = add_scaler_r(scale_r(x, 1.0 / temperature, cache),
                           _softmax_shift(x, temperature), cache)
    return pool_r(exp_r(shifted, cache),
                  lambda e: scale_first_r(e, inverse_r(sum_all_r(e, cache), cache), cache))
