"""Utility helpers."""
from __future__ import annotations

import re
from collections import defaultdict
from typing import Any, Union

import numpy as np

from . import backend

# Type alias for arrays that could be NumPy or CuPy
ArrayLike = Union[np.ndarray, Any]

_name_counters = defaultdict(int)


def one_hot(labels: ArrayLike, num_classes: int) -> ArrayLike:
    """Convert integer labels to one-hot encoding, supporting both CPU and GPU arrays."""
    xp = backend.get_array_module(labels)
    labels = labels.reshape(-1).astype(xp.int64)
    if labels.size and (int(labels.min()) < 0 or int(labels.max()) >= num_classes):
        raise ValueError(f"Labels must lie in [0, {num_classes}), got range "
                         f"[{int(labels.min())}, {int(labels.max())}]")
    y = xp.zeros((labels.size, num_classes), dtype=backend.FLOATX)
    y[xp.arange(labels.size), labels] = 1
    return y


def to_snake_case(name: str) -> str:
    name = re.sub(r'(.)([A-Z][a-z]+)', r'\1_\2', name)
    return re.sub(r'([a-z])([A-Z])', r'\1_\2', name).lower()


def unique_name(prefix: str) -> str:
    """``dense``, ``dense_1``, ``dense_2``... per prefix, process-wide."""
    count = _name_counters[prefix]
    _name_counters[prefix] += 1
    return prefix if count == 0 else f"{prefix}_{count}"


def reset_names():
    _name_counters.clear()
