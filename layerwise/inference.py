"""Prediction surface shared by trainable models and engine-backed inference models."""
from __future__ import annotations

from typing import Tuple

import numpy as np

from .exceptions import ModelClosedError


class InferenceModel:
    """Base class for anything that maps input arrays to output arrays.

    Subclasses implement ``predict``; the classification helpers and the
    resource lifecycle (``close`` / context manager) live here.
    """

    def __init__(self):
        self._closed = False

    def predict(self, x, batch_size: int = 32):
        raise NotImplementedError

    def predict_classes(self, x, batch_size: int = 32) -> np.ndarray:
        """Index of the highest scoring class for every sample."""
        probs = self._single_output(self.predict(x, batch_size=batch_size))
        if probs.ndim == 1 or probs.shape[-1] == 1:
            return (probs.reshape(probs.shape[0], -1)[:, 0] > 0.5).astype(np.int64)
        return probs.argmax(axis=-1)

    def predict_top_k(self, x, k: int = 5, batch_size: int = 32) -> Tuple[np.ndarray, np.ndarray]:
        """``(indices, scores)`` of the ``k`` best classes, best first."""
        probs = self._single_output(self.predict(x, batch_size=batch_size))
        if k < 1:
            raise ValueError(f"k must be positive, got {k}")
        k = min(k, probs.shape[-1])
        idx = np.argsort(-probs, axis=-1, kind='stable')[..., :k]
        return idx, np.take_along_axis(probs, idx, axis=-1)

    @staticmethod
    def _single_output(outputs):
        if isinstance(outputs, list):
            if len(outputs) != 1:
                raise ValueError(f"Expected a single output, the model produced {len(outputs)}")
            outputs = outputs[0]
        return np.asarray(outputs)

    def _check_open(self):
        if self._closed:
            raise ModelClosedError(f"{self.__class__.__name__} has been closed")

    def close(self):
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self):
        self._check_open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
