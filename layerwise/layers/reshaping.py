"""Layers that only move data around: flatten, reshape, permute, pad, crop, upsample."""
from __future__ import annotations

from typing import Optional, Sequence

from .. import backend
from ..exceptions import ShapeMismatchError
from ..shapes import normalize_tuple, num_elements
from .base import Layer


class Flatten(Layer):
    def compute_output_shape(self, input_shape):
        # (batch, H, W, C) -> (batch, H*W*C)
        if len(input_shape) <= 2:
            return tuple(input_shape)
        return (input_shape[0], num_elements(input_shape[1:]))

    def forward(self, x, training=False):
        self.orig_shape = x.shape
        return x.reshape(x.shape[0], -1)

    def backward(self, grad):
        return grad.reshape(self.orig_shape)


class Reshape(Layer):
    """Reshape the non-batch dimensions; one entry of ``target_shape`` may be -1."""

    def __init__(self, target_shape: Sequence[int], name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        self.target_shape = tuple(int(d) for d in target_shape)
        if sum(1 for d in self.target_shape if d == -1) > 1:
            raise ValueError(f"Only one dimension of `target_shape` may be -1, got {self.target_shape}")
        if any(d == 0 or d < -1 for d in self.target_shape):
            raise ValueError(f"Invalid `target_shape` {self.target_shape}")

    def compute_output_shape(self, input_shape):
        total = num_elements(input_shape[1:])
        known = 1
        for d in self.target_shape:
            if d != -1:
                known *= d
        if total is None:
            resolved = tuple(None if d == -1 else d for d in self.target_shape)
        elif -1 in self.target_shape:
            if total % known:
                raise ShapeMismatchError(
                    f"Cannot reshape input {tuple(input_shape)} into {self.target_shape}"
                )
            resolved = tuple(total // known if d == -1 else d for d in self.target_shape)
        else:
            if total != known:
                raise ShapeMismatchError(
                    f"Cannot reshape input {tuple(input_shape)} ({total} elements) into "
                    f"{self.target_shape} ({known} elements)"
                )
            resolved = self.target_shape
        return (input_shape[0],) + resolved

    def forward(self, x, training=False):
        self.orig_shape = x.shape
        return x.reshape((x.shape[0],) + self.target_shape)

    def backward(self, grad):
        return grad.reshape(self.orig_shape)

    def get_config(self):
        config = super().get_config()
        config['target_shape'] = list(self.target_shape)
        return config


class Permute(Layer):
    """Permute non-batch axes; ``dims`` is 1-indexed like in Keras."""

    def __init__(self, dims: Sequence[int], name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        self.dims = tuple(int(d) for d in dims)
        if sorted(self.dims) != list(range(1, len(self.dims) + 1)):
            raise ValueError(f"`dims` must be a permutation of 1..{len(self.dims)}, got {self.dims}")

    def compute_output_shape(self, input_shape):
        if len(input_shape) != len(self.dims) + 1:
            raise ShapeMismatchError(f"Permute{self.dims} cannot be applied to shape {tuple(input_shape)}")
        return (input_shape[0],) + tuple(input_shape[d] for d in self.dims)

    def forward(self, x, training=False):
        return x.transpose((0,) + self.dims)

    def backward(self, grad):
        inverse = [0] * (len(self.dims) + 1)
        for i, d in enumerate((0,) + self.dims):
            inverse[d] = i
        return grad.transpose(inverse)

    def get_config(self):
        config = super().get_config()
        config['dims'] = list(self.dims)
        return config


def _normalize_2d_amounts(value, name):
    """int | (sym_h, sym_w) | ((top, bottom), (left, right)) -> ((t, b), (l, r))"""
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"`{name}` must be non-negative, got {value}")
        return (value, value), (value, value)
    value = tuple(value)
    if len(value) != 2:
        raise ValueError(f"`{name}` must be an int, a pair or a pair of pairs, got {value!r}")
    if all(isinstance(v, int) for v in value):
        h, w = value
        result = ((h, h), (w, w))
    else:
        result = tuple(tuple(int(a) for a in v) for v in value)
        if any(len(v) != 2 for v in result):
            raise ValueError(f"`{name}` must be an int, a pair or a pair of pairs, got {value!r}")
    if any(a < 0 for v in result for a in v):
        raise ValueError(f"`{name}` must be non-negative, got {value!r}")
    return result


def _check_4d(layer, input_shape):
    if len(input_shape) != 4:
        raise ShapeMismatchError(
            f"{layer.__class__.__name__} '{layer.name}' expects (batch, H, W, C) input, got {tuple(input_shape)}"
        )


class ZeroPadding2D(Layer):
    def __init__(self, padding=(1, 1), name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        self.padding = _normalize_2d_amounts(padding, 'padding')

    def compute_output_shape(self, input_shape):
        _check_4d(self, input_shape)
        (t, b), (l, r) = self.padding
        h, w = input_shape[1], input_shape[2]
        return (input_shape[0],
                None if h is None else h + t + b,
                None if w is None else w + l + r,
                input_shape[3])

    def forward(self, x, training=False):
        xp = backend.get_array_module(x)
        (t, b), (l, r) = self.padding
        return xp.pad(x, ((0, 0), (t, b), (l, r), (0, 0)))

    def backward(self, grad):
        (t, b), (l, r) = self.padding
        return grad[:, t:grad.shape[1] - b, l:grad.shape[2] - r, :]

    def get_config(self):
        config = super().get_config()
        config['padding'] = [list(p) for p in self.padding]
        return config


class Cropping2D(Layer):
    def __init__(self, cropping=((0, 0), (0, 0)), name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        self.cropping = _normalize_2d_amounts(cropping, 'cropping')

    def compute_output_shape(self, input_shape):
        _check_4d(self, input_shape)
        (t, b), (l, r) = self.cropping
        h, w = input_shape[1], input_shape[2]
        out_h = None if h is None else h - t - b
        out_w = None if w is None else w - l - r
        if (out_h is not None and out_h <= 0) or (out_w is not None and out_w <= 0):
            raise ShapeMismatchError(f"Cropping {self.cropping} removes all of input {tuple(input_shape)}")
        return (input_shape[0], out_h, out_w, input_shape[3])

    def forward(self, x, training=False):
        self.orig_shape = x.shape
        (t, b), (l, r) = self.cropping
        return x[:, t:x.shape[1] - b, l:x.shape[2] - r, :]

    def backward(self, grad):
        xp = backend.get_array_module(grad)
        (t, b), (l, r) = self.cropping
        return xp.pad(grad, ((0, 0), (t, b), (l, r), (0, 0)))

    def get_config(self):
        config = super().get_config()
        config['cropping'] = [list(c) for c in self.cropping]
        return config


class UpSampling2D(Layer):
    """Nearest-neighbour upsampling by repeating rows and columns."""

    def __init__(self, size=(2, 2), name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        self.size = normalize_tuple(size, 2, 'size')

    def compute_output_shape(self, input_shape):
        _check_4d(self, input_shape)
        sh, sw = self.size
        h, w = input_shape[1], input_shape[2]
        return (input_shape[0], None if h is None else h * sh, None if w is None else w * sw, input_shape[3])

    def forward(self, x, training=False):
        xp = backend.get_array_module(x)
        sh, sw = self.size
        return xp.repeat(xp.repeat(x, sh, axis=1), sw, axis=2)

    def backward(self, grad):
        sh, sw = self.size
        n, h, w, c = grad.shape
        return grad.reshape(n, h // sh, sh, w // sw, sw, c).sum(axis=(2, 4))

    def get_config(self):
        config = super().get_config()
        config['size'] = list(self.size)
        return config
