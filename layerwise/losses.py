"""Loss functions.

``forward(y_pred, y_true)`` returns the batch-mean loss as a Python float
and caches what ``backward()`` needs to return d(loss)/d(y_pred).
Per-sample losses average over the last axis, then over the batch.
"""
from __future__ import annotations

from . import backend

EPSILON = 1e-7


class Loss:
    name = 'loss'

    def forward(self, y_pred, y_true):
        y_pred = backend.asarray(y_pred)
        y_true = backend.asarray(y_true)
        self.y_pred = y_pred
        self.y_true = self._prepare_targets(y_true, y_pred)
        xp = backend.get_array_module(y_pred)
        return float(backend.to_cpu(self._loss(xp, y_pred, self.y_true)))

    def backward(self):
        xp = backend.get_array_module(self.y_pred)
        grad = self._grad(xp, self.y_pred, self.y_true)
        return grad.astype(self.y_pred.dtype, copy=False)

    def __call__(self, y_true, y_pred):
        return self.forward(y_pred, y_true)

    def _prepare_targets(self, y_true, y_pred):
        if y_true.shape != y_pred.shape:
            if y_true.size != y_pred.size:
                raise ValueError(f"{self.name}: targets of shape {tuple(y_true.shape)} do not match "
                                 f"predictions of shape {tuple(y_pred.shape)}")
            y_true = y_true.reshape(y_pred.shape)
        return y_true.astype(y_pred.dtype, copy=False)

    def _loss(self, xp, y_pred, y_true):
        raise NotImplementedError

    def _grad(self, xp, y_pred, y_true):
        raise NotImplementedError

    def get_config(self):
        return {}


class MeanSquaredError(Loss):
    name = 'mean_squared_error'

    def _loss(self, xp, p, t):
        return xp.mean((p - t) ** 2)

    def _grad(self, xp, p, t):
        return 2 * (p - t) / t.size


class MeanAbsoluteError(Loss):
    name = 'mean_absolute_error'

    def _loss(self, xp, p, t):
        return xp.mean(xp.abs(p - t))

    def _grad(self, xp, p, t):
        return xp.sign(p - t) / t.size


class MeanAbsolutePercentageError(Loss):
    name = 'mean_absolute_percentage_error'

    def _loss(self, xp, p, t):
        return 100 * xp.mean(xp.abs(t - p) / xp.maximum(xp.abs(t), EPSILON))

    def _grad(self, xp, p, t):
        return 100 * xp.sign(p - t) / xp.maximum(xp.abs(t), EPSILON) / t.size


class MeanSquaredLogarithmicError(Loss):
    name = 'mean_squared_logarithmic_error'

    def _loss(self, xp, p, t):
        diff = xp.log1p(xp.maximum(p, EPSILON)) - xp.log1p(xp.maximum(t, EPSILON))
        return xp.mean(diff ** 2)

    def _grad(self, xp, p, t):
        clipped = xp.maximum(p, EPSILON)
        diff = xp.log1p(clipped) - xp.log1p(xp.maximum(t, EPSILON))
        return 2 * diff / (1 + clipped) * (p > EPSILON) / t.size


class Huber(Loss):
    name = 'huber'

    def __init__(self, delta: float = 1.0):
        if delta <= 0:
            raise ValueError(f"`delta` must be positive, got {delta}")
        self.delta = float(delta)

    def _loss(self, xp, p, t):
        err = xp.abs(p - t)
        quadratic = xp.minimum(err, self.delta)
        return xp.mean(0.5 * quadratic ** 2 + self.delta * (err - quadratic))

    def _grad(self, xp, p, t):
        return xp.clip(p - t, -self.delta, self.delta) / t.size

    def get_config(self):
        return {'delta': self.delta}


class LogCosh(Loss):
    name = 'log_cosh'

    def _loss(self, xp, p, t):
        e = p - t
        return xp.mean(e + xp.logaddexp(0, -2 * e) - xp.log(2.0))

    def _grad(self, xp, p, t):
        return xp.tanh(p - t) / t.size


class BinaryCrossentropy(Loss):
    name = 'binary_crossentropy'

    def __init__(self, from_logits: bool = False):
        self.from_logits = from_logits

    def _loss(self, xp, p, t):
        if self.from_logits:
            # max(z, 0) - z * t + log(1 + exp(-|z|))
            return xp.mean(xp.maximum(p, 0) - p * t + xp.log1p(xp.exp(-xp.abs(p))))
        p = xp.clip(p, EPSILON, 1 - EPSILON)
        return -xp.mean(t * xp.log(p) + (1 - t) * xp.log(1 - p))

    def _grad(self, xp, p, t):
        if self.from_logits:
            return (1 / (1 + xp.exp(-xp.clip(p, -80, 80))) - t) / t.size
        p = xp.clip(p, EPSILON, 1 - EPSILON)
        return (p - t) / (p * (1 - p)) / t.size

    def get_config(self):
        return {'from_logits': self.from_logits}


def _softmax(xp, z):
    e = xp.exp(z - z.max(axis=-1, keepdims=True))
    return e / e.sum(axis=-1, keepdims=True)


class CategoricalCrossentropy(Loss):
    name = 'categorical_crossentropy'

    def __init__(self, from_logits: bool = False, label_smoothing: float = 0.0):
        if not 0 <= label_smoothing <= 1:
            raise ValueError(f"`label_smoothing` must be in [0, 1], got {label_smoothing}")
        self.from_logits = from_logits
        self.label_smoothing = float(label_smoothing)

    def _prepare_targets(self, y_true, y_pred):
        y_true = super()._prepare_targets(y_true, y_pred)
        if self.label_smoothing:
            k = y_pred.shape[-1]
            y_true = y_true * (1 - self.label_smoothing) + self.label_smoothing / k
        return y_true

    def _batch(self, p):
        return p.size // p.shape[-1]

    def _loss(self, xp, p, t):
        if self.from_logits:
            shifted = p - p.max(axis=-1, keepdims=True)
            log_probs = shifted - xp.log(xp.exp(shifted).sum(axis=-1, keepdims=True))
        else:
            p = p / p.sum(axis=-1, keepdims=True)
            log_probs = xp.log(xp.clip(p, EPSILON, 1 - EPSILON))
        return -(t * log_probs).sum() / self._batch(p)

    def _grad(self, xp, p, t):
        if self.from_logits:
            return (_softmax(xp, p) - t) / self._batch(p)
        total = p.sum(axis=-1, keepdims=True)
        clipped = xp.clip(p / total, EPSILON, 1 - EPSILON)
        return (-t / (clipped * total) + t.sum(axis=-1, keepdims=True) / total) / self._batch(p)

    def get_config(self):
        return {'from_logits': self.from_logits, 'label_smoothing': self.label_smoothing}


class SparseCategoricalCrossentropy(CategoricalCrossentropy):
    """Categorical crossentropy with integer class targets."""
    name = 'sparse_categorical_crossentropy'

    def __init__(self, from_logits: bool = False):
        super().__init__(from_logits=from_logits)

    def _prepare_targets(self, y_true, y_pred):
        xp = backend.get_array_module(y_pred)
        labels = y_true.reshape(-1).astype(xp.int64)
        k = y_pred.shape[-1]
        if labels.size * k != y_pred.size:
            raise ValueError(f"{self.name}: {labels.size} labels do not match predictions "
                             f"of shape {tuple(y_pred.shape)}")
        if labels.size and (int(labels.min()) < 0 or int(labels.max()) >= k):
            raise ValueError(f"{self.name}: labels must lie in [0, {k})")
        one_hot = xp.zeros((labels.size, k), dtype=y_pred.dtype)
        one_hot[xp.arange(labels.size), labels] = 1
        return one_hot.reshape(y_pred.shape)

    def get_config(self):
        return {'from_logits': self.from_logits}


def _signed_targets(xp, t):
    # {0, 1} labels become {-1, 1}
    return xp.where(t == 0, -1.0, t).astype(t.dtype)


class Hinge(Loss):
    name = 'hinge'

    def _loss(self, xp, p, t):
        t = _signed_targets(xp, t)
        return xp.mean(xp.maximum(1 - t * p, 0))

    def _grad(self, xp, p, t):
        t = _signed_targets(xp, t)
        return -t * (1 - t * p > 0) / t.size


class SquaredHinge(Loss):
    name = 'squared_hinge'

    def _loss(self, xp, p, t):
        t = _signed_targets(xp, t)
        return xp.mean(xp.maximum(1 - t * p, 0) ** 2)

    def _grad(self, xp, p, t):
        t = _signed_targets(xp, t)
        return -2 * t * xp.maximum(1 - t * p, 0) / t.size


class Poisson(Loss):
    name = 'poisson'

    def _loss(self, xp, p, t):
        return xp.mean(p - t * xp.log(p + EPSILON))

    def _grad(self, xp, p, t):
        return (1 - t / (p + EPSILON)) / t.size


NAME2LOSS = {cls.name: cls for cls in [
    MeanSquaredError, MeanAbsoluteError, MeanAbsolutePercentageError, MeanSquaredLogarithmicError,
    Huber, LogCosh, BinaryCrossentropy, CategoricalCrossentropy, SparseCategoricalCrossentropy,
    Hinge, SquaredHinge, Poisson,
]}
NAME2LOSS.update({
    'mse': MeanSquaredError,
    'mae': MeanAbsoluteError,
    'mape': MeanAbsolutePercentageError,
    'msle': MeanSquaredLogarithmicError,
    'cce': CategoricalCrossentropy,
    'bce': BinaryCrossentropy,
    'huber_loss': Huber,
    'logcosh': LogCosh,
})


def get(identifier) -> Loss:
    if isinstance(identifier, Loss):
        return identifier
    if isinstance(identifier, str):
        try:
            return NAME2LOSS[identifier.lower()]()
        except KeyError:
            raise ValueError(f"Unknown loss {identifier!r}")
    if isinstance(identifier, dict):
        return deserialize(identifier)
    raise TypeError(f"Cannot interpret {identifier!r} as a loss")


def serialize(loss: Loss) -> dict:
    return {'class': loss.name, 'config': loss.get_config()}


def deserialize(config: dict) -> Loss:
    try:
        cls = NAME2LOSS[config['class']]
    except KeyError:
        raise ValueError(f"Unknown loss {config.get('class')!r}")
    return cls(**config.get('config', {}))
