"""Convolution layers.

Both ranks run through the same channels-last im2col + GEMM path: a
1D input ``(batch, steps, channels)`` is treated as an image of height 1.
The matrix multiply is where the array engine does the work; the backward
pass folds patch gradients back with ``kernels.col2im``.
"""
from __future__ import annotations

from typing import Optional

import numpy as np

from .. import activations, backend, initializers, kernels, regularizers
from ..exceptions import ShapeMismatchError
from ..shapes import (check_strides_and_dilation, conv_output_shape, normalize_padding,
                      normalize_tuple, spatial_padding)
from .base import Layer


def extract_patches(x_padded, kernel, strides, dilation):
    """View of shape (N, out_h, out_w, kh, kw, C) over a padded NHWC array."""
    xp = backend.get_array_module(x_padded)
    n, h_p, w_p, c = x_padded.shape
    kh, kw = kernel
    sh, sw = strides
    dh, dw = dilation
    out_h = (h_p - ((kh - 1) * dh + 1)) // sh + 1
    out_w = (w_p - ((kw - 1) * dw + 1)) // sw + 1
    s = x_padded.strides
    return xp.lib.stride_tricks.as_strided(
        x_padded,
        shape=(n, out_h, out_w, kh, kw, c),
        strides=(s[0], sh * s[1], sw * s[2], dh * s[1], dw * s[2], s[3]),
    )


class _Conv(Layer):
    rank = 2

    def __init__(self, filters: int, kernel_size, strides=1, padding: str = 'valid',
                 dilation_rate=1, activation=None, use_bias: bool = True,
                 kernel_initializer='glorot_uniform', bias_initializer='zeros',
                 kernel_regularizer=None, bias_regularizer=None,
                 name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        if not isinstance(filters, (int, np.integer)) or filters < 1:
            raise ValueError(f"`filters` must be a positive integer, got {filters!r}")
        self.filters = int(filters)
        self.kernel_size = normalize_tuple(kernel_size, self.rank, 'kernel_size')
        self.strides = normalize_tuple(strides, self.rank, 'strides')
        self.padding = normalize_padding(padding)
        self.dilation_rate = normalize_tuple(dilation_rate, self.rank, 'dilation_rate')
        check_strides_and_dilation(self.strides, self.dilation_rate)
        self.activation = activations.get(activation)
        self.use_bias = use_bias
        self.kernel_initializer = initializers.get(kernel_initializer)
        self.bias_initializer = initializers.get(bias_initializer)
        self.kernel_regularizer = regularizers.get(kernel_regularizer)
        self.bias_regularizer = regularizers.get(bias_regularizer)

    def build(self, input_shape):
        if len(input_shape) != self.rank + 2:
            raise ShapeMismatchError(
                f"{self.__class__.__name__} '{self.name}' expects {self.rank + 2}D input, "
                f"got shape {tuple(input_shape)}"
            )
        channels = input_shape[-1]
        if channels is None:
            raise ShapeMismatchError(f"The channel dimension of '{self.name}' must be known")
        self.add_weight('kernel', self.kernel_size + (channels, self.filters),
                        self.kernel_initializer, self.kernel_regularizer)
        if self.use_bias:
            self.add_weight('bias', (self.filters,), self.bias_initializer, self.bias_regularizer)
        super().build(input_shape)

    def compute_output_shape(self, input_shape):
        return conv_output_shape(input_shape, self.kernel_size, self.strides, self.padding,
                                 self.dilation_rate, self.filters)

    # 2D geometry; rank 1 gets a unit height
    def _geometry(self):
        if self.rank == 2:
            return self.kernel_size, self.strides, self.dilation_rate
        return (1,) + self.kernel_size, (1,) + self.strides, (1,) + self.dilation_rate

    def forward(self, x, training=False):
        xp = backend.get_array_module(x)
        x4 = x if self.rank == 2 else x[:, None, :, :]
        kernel, strides, dilation = self._geometry()
        n, h, w, c = x4.shape
        (pt, pb), (pl, pr) = spatial_padding((h, w), kernel, strides, self.padding, dilation)
        x_p = xp.pad(x4, ((0, 0), (pt, pb), (pl, pr), (0, 0)))
        patches = extract_patches(x_p, kernel, strides, dilation)
        _, out_h, out_w = patches.shape[:3]
        cols = patches.reshape(n * out_h * out_w, -1)
        w_col = self.params['kernel'].reshape(-1, self.filters)
        z = cols @ w_col
        if self.use_bias:
            z += self.params['bias']
        z = z.reshape(n, out_h, out_w, self.filters)
        if self.rank == 1:
            z = z[:, 0]
        y = self.activation.forward(z)
        self.cache = (cols, w_col, (out_h, out_w), (pt, pb, pl, pr), x_p.shape, x.shape)
        self.last_z, self.last_y = z, y
        return y

    def backward(self, grad):
        cols, w_col, (out_h, out_w), (pt, pb, pl, pr), padded_shape, x_shape = self.cache
        kernel, strides, dilation = self._geometry()
        grad = self.activation.backward(self.last_z, self.last_y, grad)
        n = grad.shape[0]
        grad_2d = grad.reshape(n * out_h * out_w, self.filters)
        self.grads['kernel'][...] = (cols.T @ grad_2d).reshape(self.params['kernel'].shape)
        if self.use_bias:
            self.grads['bias'][...] = grad_2d.sum(axis=0)
        dcols = (grad_2d @ w_col.T).reshape(n, out_h, out_w, kernel[0], kernel[1], padded_shape[3])
        dx_p = kernels.col2im(dcols, padded_shape, strides, dilation)
        dx = dx_p[:, pt:padded_shape[1] - pb, pl:padded_shape[2] - pr, :]
        return dx.reshape(x_shape)

    def get_config(self):
        config = super().get_config()
        config.update({
            'filters': self.filters,
            'kernel_size': list(self.kernel_size),
            'strides': list(self.strides),
            'padding': self.padding,
            'dilation_rate': list(self.dilation_rate),
            'activation': activations.serialize(self.activation),
            'use_bias': self.use_bias,
            'kernel_initializer': initializers.serialize(self.kernel_initializer),
            'bias_initializer': initializers.serialize(self.bias_initializer),
            'kernel_regularizer': regularizers.serialize(self.kernel_regularizer),
            'bias_regularizer': regularizers.serialize(self.bias_regularizer),
        })
        return config


class Conv2D(_Conv):
    """2D convolution over ``(batch, height, width, channels)`` inputs."""
    rank = 2


class Conv1D(_Conv):
    """1D convolution over ``(batch, steps, channels)`` inputs."""
    rank = 1
