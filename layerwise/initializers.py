"""Weight initializers.

Fans follow the Keras convention: dense kernels are ``(in, out)`` and
convolution kernels are ``(*spatial, in, out)``.
"""
from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np

from . import backend


def compute_fans(shape: Tuple[int, ...]) -> Tuple[float, float]:
    if len(shape) < 1:
        return 1.0, 1.0
    if len(shape) == 1:
        return float(shape[0]), float(shape[0])
    if len(shape) == 2:
        return float(shape[0]), float(shape[1])
    receptive_field = float(np.prod(shape[:-2]))
    return shape[-2] * receptive_field, shape[-1] * receptive_field


class Initializer:
    """Callable returning a host float32 array for a given shape."""
    name = 'initializer'

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def __call__(self, shape, dtype=backend.FLOATX):
        return self.generate(tuple(shape)).astype(dtype)

    def generate(self, shape):
        raise NotImplementedError

    def get_config(self):
        return {'seed': self.seed}


class Zeros(Initializer):
    name = 'zeros'

    def __init__(self):
        super().__init__()

    def generate(self, shape):
        return np.zeros(shape)

    def get_config(self):
        return {}


class Ones(Initializer):
    name = 'ones'

    def __init__(self):
        super().__init__()

    def generate(self, shape):
        return np.ones(shape)

    def get_config(self):
        return {}


class Constant(Initializer):
    name = 'constant'

    def __init__(self, value: float = 0.0):
        super().__init__()
        self.value = value

    def generate(self, shape):
        return np.full(shape, self.value)

    def get_config(self):
        return {'value': self.value}


class RandomNormal(Initializer):
    name = 'random_normal'

    def __init__(self, mean: float = 0.0, stddev: float = 0.05, seed: Optional[int] = None):
        super().__init__(seed)
        self.mean = mean
        self.stddev = stddev

    def generate(self, shape):
        return self._rng.normal(self.mean, self.stddev, size=shape)

    def get_config(self):
        return {'mean': self.mean, 'stddev': self.stddev, 'seed': self.seed}


class RandomUniform(Initializer):
    name = 'random_uniform'

    def __init__(self, minval: float = -0.05, maxval: float = 0.05, seed: Optional[int] = None):
        super().__init__(seed)
        if maxval <= minval:
            raise ValueError(f"maxval ({maxval}) must be greater than minval ({minval})")
        self.minval = minval
        self.maxval = maxval

    def generate(self, shape):
        return self._rng.uniform(self.minval, self.maxval, size=shape)

    def get_config(self):
        return {'minval': self.minval, 'maxval': self.maxval, 'seed': self.seed}


def _truncated_normal(rng, mean, stddev, shape):
    # Redraw anything further than two standard deviations from the mean
    values = rng.normal(0.0, 1.0, size=shape)
    outside = np.abs(values) > 2
    while outside.any():
        values[outside] = rng.normal(0.0, 1.0, size=int(outside.sum()))
        outside = np.abs(values) > 2
    return mean + stddev * values


class TruncatedNormal(Initializer):
    name = 'truncated_normal'

    def __init__(self, mean: float = 0.0, stddev: float = 0.05, seed: Optional[int] = None):
        super().__init__(seed)
        self.mean = mean
        self.stddev = stddev

    def generate(self, shape):
        return _truncated_normal(self._rng, self.mean, self.stddev, shape)

    def get_config(self):
        return {'mean': self.mean, 'stddev': self.stddev, 'seed': self.seed}


class VarianceScaling(Initializer):
    """Samples with variance ``scale / n`` where ``n`` depends on ``mode``."""
    name = 'variance_scaling'

    def __init__(self, scale: float = 1.0, mode: str = 'fan_in',
                 distribution: str = 'truncated_normal', seed: Optional[int] = None):
        super().__init__(seed)
        if scale <= 0:
            raise ValueError(f"`scale` must be positive, got {scale}")
        if mode not in ('fan_in', 'fan_out', 'fan_avg'):
            raise ValueError(f"Invalid `mode` {mode!r}")
        if distribution not in ('truncated_normal', 'untruncated_normal', 'uniform'):
            raise ValueError(f"Invalid `distribution` {distribution!r}")
        self.scale = scale
        self.mode = mode
        self.distribution = distribution

    def generate(self, shape):
        fan_in, fan_out = compute_fans(shape)
        if self.mode == 'fan_in':
            n = fan_in
        elif self.mode == 'fan_out':
            n = fan_out
        else:
            n = (fan_in + fan_out) / 2.0
        variance = self.scale / max(1.0, n)
        if self.distribution == 'truncated_normal':
            # std of a unit normal truncated to [-2, 2]
            stddev = math.sqrt(variance) / 0.87962566103423978
            return _truncated_normal(self._rng, 0.0, stddev, shape)
        if self.distribution == 'untruncated_normal':
            return self._rng.normal(0.0, math.sqrt(variance), size=shape)
        limit = math.sqrt(3.0 * variance)
        return self._rng.uniform(-limit, limit, size=shape)

    def get_config(self):
        return {'scale': self.scale, 'mode': self.mode,
                'distribution': self.distribution, 'seed': self.seed}


class _FixedVarianceScaling(VarianceScaling):
    _scale = 1.0
    _mode = 'fan_in'
    _distribution = 'uniform'

    def __init__(self, seed: Optional[int] = None):
        super().__init__(self._scale, self._mode, self._distribution, seed)

    def get_config(self):
        return {'seed': self.seed}


class GlorotUniform(_FixedVarianceScaling):
    name = 'glorot_uniform'
    _mode = 'fan_avg'


class GlorotNormal(_FixedVarianceScaling):
    name = 'glorot_normal'
    _mode = 'fan_avg'
    _distribution = 'truncated_normal'


class HeUniform(_FixedVarianceScaling):
    name = 'he_uniform'
    _scale = 2.0


class HeNormal(_FixedVarianceScaling):
    name = 'he_normal'
    _scale = 2.0
    _distribution = 'truncated_normal'


class LeCunUniform(_FixedVarianceScaling):
    name = 'lecun_uniform'


class LeCunNormal(_FixedVarianceScaling):
    name = 'lecun_normal'
    _distribution = 'truncated_normal'


class Orthogonal(Initializer):
    name = 'orthogonal'

    def __init__(self, gain: float = 1.0, seed: Optional[int] = None):
        super().__init__(seed)
        self.gain = gain

    def generate(self, shape):
        if len(shape) < 2:
            raise ValueError(f"Orthogonal initializer needs at least a 2D shape, got {shape}")
        rows = int(np.prod(shape[:-1]))
        cols = shape[-1]
        flat = self._rng.normal(0.0, 1.0, size=(max(rows, cols), min(rows, cols)))
        q, r = np.linalg.qr(flat)
        q *= np.sign(np.diag(r))
        if rows < cols:
            q = q.T
        return self.gain * q.reshape(shape)

    def get_config(self):
        return {'gain': self.gain, 'seed': self.seed}


class Identity(Initializer):
    name = 'identity'

    def __init__(self, gain: float = 1.0):
        super().__init__()
        self.gain = gain

    def generate(self, shape):
        if len(shape) != 2:
            raise ValueError(f"Identity initializer needs a 2D shape, got {shape}")
        return self.gain * np.eye(*shape)

    def get_config(self):
        return {'gain': self.gain}


NAME2INITIALIZER = {cls.name: cls for cls in [
    Zeros, Ones, Constant, RandomNormal, RandomUniform, TruncatedNormal, VarianceScaling,
    GlorotUniform, GlorotNormal, HeUniform, HeNormal, LeCunUniform, LeCunNormal,
    Orthogonal, Identity,
]}


def get(identifier) -> Initializer:
    if isinstance(identifier, Initializer):
        return identifier
    if isinstance(identifier, str):
        try:
            return NAME2INITIALIZER[identifier.lower()]()
        except KeyError:
            raise ValueError(f"Unknown initializer {identifier!r}")
    if isinstance(identifier, dict):
        return deserialize(identifier)
    raise TypeError(f"Cannot interpret {identifier!r} as an initializer")


def serialize(initializer: Initializer) -> dict:
    return {'class': initializer.name, 'config': initializer.get_config()}


def deserialize(config: dict) -> Initializer:
    try:
        cls = NAME2INITIALIZER[config['class']]
    except KeyError:
        raise ValueError(f"Unknown initializer {config.get('class')!r}")
    return cls(**config.get('config', {}))
