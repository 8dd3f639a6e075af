"""Activation functions.

Each activation exposes ``forward(x)`` and ``backward(x, y, grad)`` where
``y`` is the cached forward output, so layers can fuse an activation
without keeping a separate Activation layer around.
"""
from __future__ import annotations

import math

from . import backend


class ActivationFunction:
    name = 'activation'

    def forward(self, x):
        raise NotImplementedError

    def backward(self, x, y, grad):
        raise NotImplementedError

    def __call__(self, x):
        return self.forward(x)

    def get_config(self):
        return {}

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class Linear(ActivationFunction):
    name = 'linear'

    def forward(self, x):
        return x

    def backward(self, x, y, grad):
        return grad


class ReLU(ActivationFunction):
    name = 'relu'

    def forward(self, x):
        xp = backend.get_array_module(x)
        return xp.maximum(x, 0)

    def backward(self, x, y, grad):
        return grad * (x > 0)


class ReLU6(ActivationFunction):
    name = 'relu6'

    def forward(self, x):
        xp = backend.get_array_module(x)
        return xp.clip(x, 0, 6)

    def backward(self, x, y, grad):
        return grad * ((x > 0) & (x < 6))


class ELU(ActivationFunction):
    name = 'elu'

    def __init__(self, alpha: float = 1.0):
        self.alpha = alpha

    def forward(self, x):
        xp = backend.get_array_module(x)
        return xp.where(x > 0, x, self.alpha * (xp.exp(xp.minimum(x, 0)) - 1))

    def backward(self, x, y, grad):
        xp = backend.get_array_module(x)
        return grad * xp.where(x > 0, 1.0, y + self.alpha)

    def get_config(self):
        return {'alpha': self.alpha}


class SELU(ActivationFunction):
    name = 'selu'
    alpha = 1.6732632423543772
    scale = 1.0507009873554805

    def forward(self, x):
        xp = backend.get_array_module(x)
        return self.scale * xp.where(x > 0, x, self.alpha * (xp.exp(xp.minimum(x, 0)) - 1))

    def backward(self, x, y, grad):
        xp = backend.get_array_module(x)
        return grad * xp.where(x > 0, self.scale, y + self.scale * self.alpha)


class Sigmoid(ActivationFunction):
    name = 'sigmoid'

    def forward(self, x):
        xp = backend.get_array_module(x)
        return 1 / (1 + xp.exp(-xp.clip(x, -80, 80)))

    def backward(self, x, y, grad):
        return grad * y * (1 - y)


class HardSigmoid(ActivationFunction):
    """Piecewise linear sigmoid, ``clip(0.2 * x + 0.5, 0, 1)``."""
    name = 'hard_sigmoid'

    def forward(self, x):
        xp = backend.get_array_module(x)
        return xp.clip(0.2 * x + 0.5, 0, 1)

    def backward(self, x, y, grad):
        return grad * 0.2 * ((x > -2.5) & (x < 2.5))


class Tanh(ActivationFunction):
    name = 'tanh'

    def forward(self, x):
        xp = backend.get_array_module(x)
        return xp.tanh(x)

    def backward(self, x, y, grad):
        return grad * (1 - y ** 2)


class Softmax(ActivationFunction):
    name = 'softmax'

    def __init__(self, axis: int = -1):
        self.axis = axis

    def forward(self, x):
        xp = backend.get_array_module(x)
        e = xp.exp(x - x.max(axis=self.axis, keepdims=True))
        return e / e.sum(axis=self.axis, keepdims=True)

    def backward(self, x, y, grad):
        return y * (grad - (grad * y).sum(axis=self.axis, keepdims=True))

    def get_config(self):
        return {'axis': self.axis}


class LogSoftmax(ActivationFunction):
    name = 'log_softmax'

    def __init__(self, axis: int = -1):
        self.axis = axis

    def forward(self, x):
        xp = backend.get_array_module(x)
        shifted = x - x.max(axis=self.axis, keepdims=True)
        return shifted - xp.log(xp.exp(shifted).sum(axis=self.axis, keepdims=True))

    def backward(self, x, y, grad):
        xp = backend.get_array_module(x)
        return grad - xp.exp(y) * grad.sum(axis=self.axis, keepdims=True)

    def get_config(self):
        return {'axis': self.axis}


class Softplus(ActivationFunction):
    name = 'softplus'

    def forward(self, x):
        xp = backend.get_array_module(x)
        return xp.logaddexp(0, x)

    def backward(self, x, y, grad):
        return grad * Sigmoid().forward(x)


class Softsign(ActivationFunction):
    name = 'softsign'

    def forward(self, x):
        xp = backend.get_array_module(x)
        return x / (1 + xp.abs(x))

    def backward(self, x, y, grad):
        xp = backend.get_array_module(x)
        return grad / (1 + xp.abs(x)) ** 2


class Swish(ActivationFunction):
    name = 'swish'

    def forward(self, x):
        return x * Sigmoid().forward(x)

    def backward(self, x, y, grad):
        s = Sigmoid().forward(x)
        return grad * (s + x * s * (1 - s))


class Mish(ActivationFunction):
    name = 'mish'

    def forward(self, x):
        xp = backend.get_array_module(x)
        return x * xp.tanh(xp.logaddexp(0, x))

    def backward(self, x, y, grad):
        xp = backend.get_array_module(x)
        t = xp.tanh(xp.logaddexp(0, x))
        return grad * (t + x * (1 - t ** 2) * Sigmoid().forward(x))


class GELU(ActivationFunction):
    """Gaussian error linear unit, tanh approximation."""
    name = 'gelu'
    _c = math.sqrt(2.0 / math.pi)

    def forward(self, x):
        xp = backend.get_array_module(x)
        return 0.5 * x * (1 + xp.tanh(self._c * (x + 0.044715 * x ** 3)))

    def backward(self, x, y, grad):
        xp = backend.get_array_module(x)
        t = xp.tanh(self._c * (x + 0.044715 * x ** 3))
        dt = (1 - t ** 2) * self._c * (1 + 3 * 0.044715 * x ** 2)
        return grad * (0.5 * (1 + t) + 0.5 * x * dt)


class Exponential(ActivationFunction):
    name = 'exponential'

    def forward(self, x):
        xp = backend.get_array_module(x)
        return xp.exp(x)

    def backward(self, x, y, grad):
        return grad * y


class LiSHT(ActivationFunction):
    """Linearly scaled hyperbolic tangent, ``x * tanh(x)``."""
    name = 'lisht'

    def forward(self, x):
        xp = backend.get_array_module(x)
        return x * xp.tanh(x)

    def backward(self, x, y, grad):
        xp = backend.get_array_module(x)
        t = xp.tanh(x)
        return grad * (t + x * (1 - t ** 2))


NAME2ACTIVATION = {cls.name: cls for cls in [
    Linear, ReLU, ReLU6, ELU, SELU, Sigmoid, HardSigmoid, Tanh, Softmax, LogSoftmax,
    Softplus, Softsign, Swish, Mish, GELU, Exponential, LiSHT,
]}
NAME2ACTIVATION['silu'] = Swish


def get(identifier) -> ActivationFunction:
    """Resolve ``None``, a registered name, a serialized dict or an instance to an activation."""
    if identifier is None:
        return Linear()
    if isinstance(identifier, ActivationFunction):
        return identifier
    if isinstance(identifier, str):
        try:
            return NAME2ACTIVATION[identifier.lower()]()
        except KeyError:
            raise ValueError(f"Unknown activation {identifier!r}")
    if isinstance(identifier, dict):
        return deserialize(identifier)
    raise TypeError(f"Cannot interpret {identifier!r} as an activation")


def serialize(activation: ActivationFunction):
    """The registered name, or ``{'class', 'config'}`` when the activation has options."""
    config = activation.get_config()
    if not config:
        return activation.name
    return {'class': activation.name, 'config': config}


def deserialize(config) -> ActivationFunction:
    if isinstance(config, str):
        return get(config)
    try:
        cls = NAME2ACTIVATION[config['class']]
    except KeyError:
        raise ValueError(f"Unknown activation {config.get('class')!r}")
    return cls(**config.get('config', {}))
