"""Pooling layers (windowed and global)."""
from __future__ import annotations

from typing import Optional

from .. import backend, kernels
from ..exceptions import ShapeMismatchError
from ..shapes import conv_output_shape, normalize_padding, normalize_tuple, spatial_padding
from .base import Layer
from .conv import extract_patches


class _Pool(Layer):
    rank = 2
    mode = 'max'

    def __init__(self, pool_size=2, strides=None, padding: str = 'valid',
                 name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        self.pool_size = normalize_tuple(pool_size, self.rank, 'pool_size')
        self.strides = normalize_tuple(strides if strides is not None else self.pool_size,
                                       self.rank, 'strides')
        self.padding = normalize_padding(padding)

    def compute_output_shape(self, input_shape):
        if len(input_shape) != self.rank + 2:
            raise ShapeMismatchError(
                f"{self.__class__.__name__} '{self.name}' expects {self.rank + 2}D input, "
                f"got shape {tuple(input_shape)}"
            )
        return conv_output_shape(input_shape, self.pool_size, self.strides, self.padding,
                                 (1,) * self.rank, input_shape[-1])

    def _geometry(self):
        if self.rank == 2:
            return self.pool_size, self.strides
        return (1,) + self.pool_size, (1,) + self.strides

    def forward(self, x, training=False):
        xp = backend.get_array_module(x)
        x4 = x if self.rank == 2 else x[:, None, :, :]
        pool, strides = self._geometry()
        n, h, w, c = x4.shape
        (pt, pb), (pl, pr) = spatial_padding((h, w), pool, strides, self.padding)
        pads = ((0, 0), (pt, pb), (pl, pr), (0, 0))
        fill = -xp.inf if self.mode == 'max' else 0
        x_p = xp.pad(x4, pads, constant_values=fill)
        patches = extract_patches(x_p, pool, strides, (1, 1))
        _, out_h, out_w = patches.shape[:3]
        windows = patches.reshape(n, out_h, out_w, pool[0] * pool[1], c)
        if self.mode == 'max':
            argmax = windows.argmax(axis=3)
            y = xp.take_along_axis(windows, argmax[:, :, :, None, :], axis=3)[:, :, :, 0, :]
            aux = argmax
        else:
            # 'same' averages exclude the zero padding from the count
            ones = xp.pad(xp.ones((1, h, w, 1), dtype=x.dtype), pads)
            counts = extract_patches(ones, pool, strides, (1, 1)).sum(axis=(3, 4, 5))
            aux = counts[:, :, :, None]
            y = windows.sum(axis=3) / aux
        self.cache = (aux, x_p.shape, (pt, pb, pl, pr), x.shape)
        return y if self.rank == 2 else y[:, 0]

    def backward(self, grad):
        xp = backend.get_array_module(grad)
        aux, padded_shape, (pt, pb, pl, pr), x_shape = self.cache
        pool, strides = self._geometry()
        g4 = grad if self.rank == 2 else grad[:, None]
        if self.mode == 'max':
            dx_p = kernels.max_pool_scatter(g4, aux, padded_shape, pool, strides)
        else:
            n, out_h, out_w, c = g4.shape
            share = g4 / aux
            dcols = xp.broadcast_to(share[:, :, :, None, None, :], (n, out_h, out_w, pool[0], pool[1], c))
            dx_p = kernels.col2im(xp.ascontiguousarray(dcols), padded_shape, strides)
        dx = dx_p[:, pt:padded_shape[1] - pb, pl:padded_shape[2] - pr, :]
        return dx.reshape(x_shape)

    def get_config(self):
        config = super().get_config()
        config.update({
            'pool_size': list(self.pool_size),
            'strides': list(self.strides),
            'padding': self.padding,
        })
        return config


class MaxPool2D(_Pool):
    rank = 2
    mode = 'max'


class AvgPool2D(_Pool):
    rank = 2
    mode = 'avg'


class MaxPool1D(_Pool):
    rank = 1
    mode = 'max'


class AvgPool1D(_Pool):
    rank = 1
    mode = 'avg'


class _GlobalPool(Layer):
    rank = 2
    mode = 'avg'

    def compute_output_shape(self, input_shape):
        if len(input_shape) != self.rank + 2:
            raise ShapeMismatchError(
                f"{self.__class__.__name__} '{self.name}' expects {self.rank + 2}D input, "
                f"got shape {tuple(input_shape)}"
            )
        return (input_shape[0], input_shape[-1])

    def forward(self, x, training=False):
        axes = tuple(range(1, x.ndim - 1))
        self.last_x = x
        if self.mode == 'avg':
            self.last_y = x.mean(axis=axes)
        else:
            self.last_y = x.max(axis=axes)
        return self.last_y

    def backward(self, grad):
        x = self.last_x
        expand = (slice(None),) + (None,) * (x.ndim - 2) + (slice(None),)
        if self.mode == 'avg':
            spatial = x.size // (x.shape[0] * x.shape[-1])
            xp = backend.get_array_module(grad)
            return xp.broadcast_to(grad[expand] / spatial, x.shape).copy()
        # ties share the gradient evenly
        mask = (x == self.last_y[expand]).astype(grad.dtype)
        mask /= mask.sum(axis=tuple(range(1, x.ndim - 1)), keepdims=True)
        return mask * grad[expand]


class GlobalAvgPool2D(_GlobalPool):
    rank = 2
    mode = 'avg'


class GlobalMaxPool2D(_GlobalPool):
    rank = 2
    mode = 'max'


class GlobalAvgPool1D(_GlobalPool):
    rank = 1
    mode = 'avg'


class GlobalMaxPool1D(_GlobalPool):
    rank = 1
    mode = 'max'
