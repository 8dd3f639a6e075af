"""Batch normalization."""
from __future__ import annotations

from typing import Optional

from .. import backend, initializers, regularizers
from ..exceptions import ShapeMismatchError
from .base import Layer


class BatchNormalization(Layer):
    """Normalizes over every axis except ``axis``.

    Weight order matches Keras: gamma, beta (when enabled), then the
    non-trainable moving_mean and moving_variance. A frozen layer always
    normalizes with the moving statistics.
    """

    def __init__(self, axis: int = -1, momentum: float = 0.99, epsilon: float = 1e-3,
                 center: bool = True, scale: bool = True,
                 beta_initializer='zeros', gamma_initializer='ones',
                 moving_mean_initializer='zeros', moving_variance_initializer='ones',
                 beta_regularizer=None, gamma_regularizer=None,
                 name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        if not 0 <= momentum <= 1:
            raise ValueError(f"`momentum` must be in [0, 1], got {momentum}")
        if epsilon <= 0:
            raise ValueError(f"`epsilon` must be positive, got {epsilon}")
        self.axis = int(axis)
        self.momentum = float(momentum)
        self.epsilon = float(epsilon)
        self.center = center
        self.scale = scale
        self.beta_initializer = initializers.get(beta_initializer)
        self.gamma_initializer = initializers.get(gamma_initializer)
        self.moving_mean_initializer = initializers.get(moving_mean_initializer)
        self.moving_variance_initializer = initializers.get(moving_variance_initializer)
        self.beta_regularizer = regularizers.get(beta_regularizer)
        self.gamma_regularizer = regularizers.get(gamma_regularizer)

    def build(self, input_shape):
        ndim = len(input_shape)
        axis = self.axis % ndim if -ndim <= self.axis < ndim else None
        if axis is None or axis == 0:
            raise ShapeMismatchError(f"Invalid axis {self.axis} for input shape {tuple(input_shape)}")
        channels = input_shape[axis]
        if channels is None:
            raise ShapeMismatchError(f"Axis {self.axis} of '{self.name}' must have a known size")
        self._axis = axis
        self._reduce_axes = tuple(i for i in range(ndim) if i != axis)
        self._broadcast = tuple(channels if i == axis else 1 for i in range(ndim))
        if self.scale:
            self.add_weight('gamma', (channels,), self.gamma_initializer, self.gamma_regularizer)
        if self.center:
            self.add_weight('beta', (channels,), self.beta_initializer, self.beta_regularizer)
        self.add_weight('moving_mean', (channels,), self.moving_mean_initializer, trainable=False)
        self.add_weight('moving_variance', (channels,), self.moving_variance_initializer, trainable=False)
        super().build(input_shape)

    def _param(self, name, default):
        if name in self.params:
            return self.params[name].reshape(self._broadcast)
        return default

    def forward(self, x, training=False):
        xp = backend.get_array_module(x)
        self.batch_stats = training and self.trainable
        if self.batch_stats:
            mean = x.mean(axis=self._reduce_axes)
            var = x.var(axis=self._reduce_axes)
            m = self.momentum
            self.buffers['moving_mean'][...] = m * self.buffers['moving_mean'] + (1 - m) * mean
            self.buffers['moving_variance'][...] = m * self.buffers['moving_variance'] + (1 - m) * var
        else:
            mean = self.buffers['moving_mean']
            var = self.buffers['moving_variance']
        self.inv_std = (1.0 / xp.sqrt(var + self.epsilon)).reshape(self._broadcast)
        self.x_hat = (x - mean.reshape(self._broadcast)) * self.inv_std
        return self._param('gamma', 1.0) * self.x_hat + self._param('beta', 0.0)

    def backward(self, grad):
        x_hat = self.x_hat
        axes = self._reduce_axes
        if self.scale:
            self.grads['gamma'][...] = (grad * x_hat).sum(axis=axes)
        if self.center:
            self.grads['beta'][...] = grad.sum(axis=axes)
        dx_hat = grad * self._param('gamma', 1.0)
        if not self.batch_stats:
            return dx_hat * self.inv_std
        n = x_hat.size // x_hat.shape[self._axis]
        sum_dx_hat = dx_hat.sum(axis=axes, keepdims=True)
        sum_dx_hat_x_hat = (dx_hat * x_hat).sum(axis=axes, keepdims=True)
        return self.inv_std / n * (n * dx_hat - sum_dx_hat - x_hat * sum_dx_hat_x_hat)

    def get_config(self):
        config = super().get_config()
        config.update({
            'axis': self.axis,
            'momentum': self.momentum,
            'epsilon': self.epsilon,
            'center': self.center,
            'scale': self.scale,
            'beta_initializer': initializers.serialize(self.beta_initializer),
            'gamma_initializer': initializers.serialize(self.gamma_initializer),
            'moving_mean_initializer': initializers.serialize(self.moving_mean_initializer),
            'moving_variance_initializer': initializers.serialize(self.moving_variance_initializer),
            'beta_regularizer': regularizers.serialize(self.beta_regularizer),
            'gamma_regularizer': regularizers.serialize(self.gamma_regularizer),
        })
        return config
