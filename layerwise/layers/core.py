"""Core layers: inputs, fully connected, activations and dropout."""
from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from .. import activations, backend, initializers, regularizers
from ..exceptions import ShapeMismatchError
from .base import Layer, SymbolicTensor


class InputLayer(Layer):
    """Entry point of a model; ``input_shape`` excludes the batch dimension."""

    def __init__(self, input_shape: Sequence[Optional[int]], name: Optional[str] = None,
                 trainable: bool = False):
        super().__init__(name=name, trainable=False)
        shape = tuple(input_shape)
        for d in shape:
            if d is not None and (not isinstance(d, (int, np.integer)) or d < 1):
                raise ValueError(f"Input dimensions must be positive integers or None, got {shape}")
        self.shape = tuple(None if d is None else int(d) for d in shape)
        self.build((None,) + self.shape)
        self.inbound = []
        self._output_tensor = SymbolicTensor(self.output_shape, self, [])

    @property
    def output(self) -> SymbolicTensor:
        return self._output_tensor

    def forward(self, x, training=False):
        return x

    def backward(self, grad):
        return grad

    def get_config(self):
        return {'name': self.name, 'input_shape': list(self.shape)}


def Input(shape: Sequence[Optional[int]], name: Optional[str] = None) -> SymbolicTensor:
    """Create an input placeholder for a functional model."""
    return InputLayer(shape, name=name).output


class Dense(Layer):
    def __init__(self, units: int, activation=None, use_bias: bool = True,
                 kernel_initializer='glorot_uniform', bias_initializer='zeros',
                 kernel_regularizer=None, bias_regularizer=None,
                 name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        if not isinstance(units, (int, np.integer)) or units < 1:
            raise ValueError(f"`units` must be a positive integer, got {units!r}")
        self.units = int(units)
        self.activation = activations.get(activation)
        self.use_bias = use_bias
        self.kernel_initializer = initializers.get(kernel_initializer)
        self.bias_initializer = initializers.get(bias_initializer)
        self.kernel_regularizer = regularizers.get(kernel_regularizer)
        self.bias_regularizer = regularizers.get(bias_regularizer)

    def build(self, input_shape):
        in_features = input_shape[-1]
        if in_features is None:
            raise ShapeMismatchError(f"Dense layer '{self.name}' needs a known last dimension, got {input_shape}")
        self.add_weight('kernel', (in_features, self.units), self.kernel_initializer, self.kernel_regularizer)
        if self.use_bias:
            self.add_weight('bias', (self.units,), self.bias_initializer, self.bias_regularizer)
        super().build(input_shape)

    def compute_output_shape(self, input_shape):
        return tuple(input_shape[:-1]) + (self.units,)

    def forward(self, x, training=False):
        self.last_x = x
        z = x @ self.params['kernel']
        if self.use_bias:
            z = z + self.params['bias']
        self.last_z = z
        self.last_y = self.activation.forward(z)
        return self.last_y

    def backward(self, grad):
        x = self.last_x
        grad = self.activation.backward(self.last_z, self.last_y, grad)
        self.grads['kernel'][...] = x.reshape(-1, x.shape[-1]).T @ grad.reshape(-1, grad.shape[-1])
        if self.use_bias:
            self.grads['bias'][...] = grad.sum(axis=tuple(range(grad.ndim - 1)))
        return grad @ self.params['kernel'].T

    def get_config(self):
        config = super().get_config()
        config.update({
            'units': self.units,
            'activation': activations.serialize(self.activation),
            'use_bias': self.use_bias,
            'kernel_initializer': initializers.serialize(self.kernel_initializer),
            'bias_initializer': initializers.serialize(self.bias_initializer),
            'kernel_regularizer': regularizers.serialize(self.kernel_regularizer),
            'bias_regularizer': regularizers.serialize(self.bias_regularizer),
        })
        return config


class Activation(Layer):
    def __init__(self, activation='relu', name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        self.activation = activations.get(activation)

    def forward(self, x, training=False):
        self.last_x = x
        self.last_y = self.activation.forward(x)
        return self.last_y

    def backward(self, grad):
        return self.activation.backward(self.last_x, self.last_y, grad)

    def get_config(self):
        config = super().get_config()
        config['activation'] = activations.serialize(self.activation)
        return config


class LeakyReLU(Layer):
    def __init__(self, alpha: float = 0.3, name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        if alpha < 0:
            raise ValueError(f"`alpha` must be non-negative, got {alpha}")
        self.alpha = float(alpha)

    def forward(self, x, training=False):
        xp = backend.get_array_module(x)
        self.last_x = x
        return xp.where(x > 0, x, self.alpha * x)

    def backward(self, grad):
        xp = backend.get_array_module(grad)
        return grad * xp.where(self.last_x > 0, 1.0, self.alpha).astype(grad.dtype)

    def get_config(self):
        config = super().get_config()
        config['alpha'] = self.alpha
        return config


class Dropout(Layer):
    def __init__(self, rate: float = 0.5, seed: Optional[int] = None,
                 name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        if not 0 <= rate < 1:
            raise ValueError(f"`rate` must be in [0, 1), got {rate}")
        self.rate = float(rate)
        self.seed = seed
        self.rng = np.random.default_rng(seed)
        self.mask = None

    def forward(self, x, training=False):
        if training and self.rate > 0:
            keep = (self.rng.random(x.shape) >= self.rate) / (1 - self.rate)
            self.mask = backend.asarray(keep, dtype=x.dtype)
            return x * self.mask
        self.mask = None
        return x

    def backward(self, grad):
        if self.mask is None:
            return grad
        return grad * self.mask

    def get_config(self):
        config = super().get_config()
        config.update({'rate': self.rate, 'seed': self.seed})
        return config
