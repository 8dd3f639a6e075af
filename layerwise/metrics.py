"""Stateful metrics accumulated over an epoch."""
from __future__ import annotations

import math

from . import backend
from .losses import EPSILON


class Metric:
    name = 'metric'

    def __init__(self, name=None):
        if name is not None:
            self.name = name
        self.reset_state()

    def reset_state(self):
        self.total = 0.0
        self.count = 0

    def update_state(self, y_true, y_pred):
        y_pred = backend.asarray(y_pred)
        y_true = backend.asarray(y_true)
        xp = backend.get_array_module(y_pred)
        values = self._values(xp, y_true, y_pred)
        self.total += float(backend.to_cpu(values.sum()))
        self.count += int(values.size)

    def result(self) -> float:
        return self.total / self.count if self.count else 0.0

    def _values(self, xp, y_true, y_pred):
        """Per-sample metric values."""
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}(name='{self.name}')"


def _match(y_true, y_pred):
    if y_true.shape != y_pred.shape and y_true.size == y_pred.size:
        y_true = y_true.reshape(y_pred.shape)
    return y_true


class BinaryAccuracy(Metric):
    name = 'binary_accuracy'

    def __init__(self, threshold: float = 0.5, name=None):
        self.threshold = threshold
        super().__init__(name)

    def _values(self, xp, y_true, y_pred):
        y_true = _match(y_true, y_pred)
        return ((y_pred > self.threshold) == (y_true > 0.5)).astype(xp.float32)


class CategoricalAccuracy(Metric):
    name = 'categorical_accuracy'

    def _values(self, xp, y_true, y_pred):
        return (y_true.argmax(axis=-1) == y_pred.argmax(axis=-1)).astype(xp.float32)


class SparseCategoricalAccuracy(Metric):
    name = 'sparse_categorical_accuracy'

    def _values(self, xp, y_true, y_pred):
        labels = y_true.reshape(y_pred.shape[:-1]).astype(xp.int64)
        return (y_pred.argmax(axis=-1) == labels).astype(xp.float32)


class Accuracy(Metric):
    """Picks binary, categorical or sparse accuracy from the shapes it sees."""
    name = 'accuracy'
    threshold = 0.5

    def _values(self, xp, y_true, y_pred):
        if y_pred.ndim == 1 or y_pred.shape[-1] == 1:
            return BinaryAccuracy._values(self, xp, y_true, y_pred)
        if y_true.shape == y_pred.shape:
            return CategoricalAccuracy._values(self, xp, y_true, y_pred)
        return SparseCategoricalAccuracy._values(self, xp, y_true, y_pred)


class TopKCategoricalAccuracy(Metric):
    name = 'top_k_categorical_accuracy'

    def __init__(self, k: int = 5, name=None):
        self.k = k
        super().__init__(name)

    def _values(self, xp, y_true, y_pred):
        if y_true.shape == y_pred.shape:
            labels = y_true.argmax(axis=-1)
        else:
            labels = y_true.reshape(y_pred.shape[:-1]).astype(xp.int64)
        target_scores = xp.take_along_axis(y_pred, labels[..., None], axis=-1)
        # rank = number of classes scoring strictly higher than the target
        rank = (y_pred > target_scores).sum(axis=-1)
        return (rank < self.k).astype(xp.float32)


class MeanAbsoluteError(Metric):
    name = 'mae'

    def _values(self, xp, y_true, y_pred):
        return xp.abs(y_pred - _match(y_true, y_pred))


class MeanSquaredError(Metric):
    name = 'mse'

    def _values(self, xp, y_true, y_pred):
        return (y_pred - _match(y_true, y_pred)) ** 2


class RootMeanSquaredError(MeanSquaredError):
    name = 'rmse'

    def result(self):
        return math.sqrt(super().result())


class MeanAbsolutePercentageError(Metric):
    name = 'mape'

    def _values(self, xp, y_true, y_pred):
        y_true = _match(y_true, y_pred)
        return 100 * xp.abs(y_true - y_pred) / xp.maximum(xp.abs(y_true), EPSILON)


class MeanSquaredLogarithmicError(Metric):
    name = 'msle'

    def _values(self, xp, y_true, y_pred):
        y_true = _match(y_true, y_pred)
        return (xp.log1p(xp.maximum(y_pred, EPSILON)) - xp.log1p(xp.maximum(y_true, EPSILON))) ** 2


NAME2METRIC = {cls.name: cls for cls in [
    Accuracy, BinaryAccuracy, CategoricalAccuracy, SparseCategoricalAccuracy,
    TopKCategoricalAccuracy, MeanAbsoluteError, MeanSquaredError, RootMeanSquaredError,
    MeanAbsolutePercentageError, MeanSquaredLogarithmicError,
]}
NAME2METRIC.update({
    'acc': Accuracy,
    'mean_absolute_error': MeanAbsoluteError,
    'mean_squared_error': MeanSquaredError,
    'mean_absolute_percentage_error': MeanAbsolutePercentageError,
    'mean_squared_logarithmic_error': MeanSquaredLogarithmicError,
    'top_k_accuracy': TopKCategoricalAccuracy,
})


def get(identifier) -> Metric:
    if isinstance(identifier, Metric):
        return identifier
    if isinstance(identifier, str):
        try:
            cls = NAME2METRIC[identifier.lower()]
        except KeyError:
            raise ValueError(f"Unknown metric {identifier!r}")
        # keep the user's spelling as the log key ('acc' stays 'acc')
        return cls(name=identifier)
    raise TypeError(f"Cannot interpret {identifier!r} as a metric")
