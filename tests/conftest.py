"""Shared fixtures and numerical gradient helpers."""
import os

# Tests run on the NumPy engine regardless of the machine.
os.environ.setdefault('LAYERWISE_DISABLE_CUDA', '1')
os.environ.setdefault('LAYERWISE_DISABLE_AUTO_THREADS', '1')

import numpy as np  # noqa: E402
import pytest  # noqa: E402

from layerwise.utils import reset_names  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_names():
    """Default layer names restart at 'dense', 'conv2d', ... for every test."""
    reset_names()
    yield
    reset_names()


@pytest.fixture
def rng():
    return np.random.default_rng(0)


def to_float64(layer):
    """Switch a built layer's weights to float64 so finite differences are accurate."""
    for store in (layer.params, layer.grads, layer.buffers):
        for key in list(store):
            store[key] = store[key].astype(np.float64)


def numerical_gradient(f, x, eps=1e-6):
    """Central-difference gradient of the scalar function ``f`` with respect to ``x`` (in place)."""
    grad = np.zeros_like(x)
    it = np.nditer(x, flags=['multi_index'])
    for _ in it:
        idx = it.multi_index
        orig = x[idx]
        x[idx] = orig + eps
        plus = f()
        x[idx] = orig - eps
        minus = f()
        x[idx] = orig
        grad[idx] = (plus - minus) / (2 * eps)
    return grad


def check_layer_gradients(layer, x, training=False, seed=0, rtol=1e-4, atol=1e-6):
    """Compare ``layer.backward`` against finite differences for inputs and weights.

    The scalar objective is ``sum(forward(x) * r)`` for a fixed random ``r``.
    """
    if not layer.built:
        layer.build((None,) + x.shape[1:])
    to_float64(layer)
    x = x.astype(np.float64)
    y = layer.forward(x, training=training)
    r = np.random.default_rng(seed).standard_normal(y.shape)
    dx = layer.backward(r)
    analytic = {k: np.array(g) for k, g in layer.grads.items()}

    def objective():
        return float((layer.forward(x, training=training) * r).sum())

    np.testing.assert_allclose(dx, numerical_gradient(objective, x), rtol=rtol, atol=atol)
    for name, param in layer.params.items():
        np.testing.assert_allclose(analytic[name], numerical_gradient(objective, param),
                                   rtol=rtol, atol=atol, err_msg=f"gradient of {name}")
