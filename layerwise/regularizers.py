"""Weight penalties added to the training loss."""
from __future__ import annotations

from . import backend


class Regularizer:
    name = 'regularizer'

    def __call__(self, w) -> float:
        raise NotImplementedError

    def gradient(self, w):
        raise NotImplementedError

    def get_config(self):
        return {}


class L1L2(Regularizer):
    name = 'l1_l2'

    def __init__(self, l1: float = 0.0, l2: float = 0.0):
        if l1 < 0 or l2 < 0:
            raise ValueError(f"Regularization factors must be non-negative, got l1={l1}, l2={l2}")
        self.l1 = float(l1)
        self.l2 = float(l2)

    def __call__(self, w):
        xp = backend.get_array_module(w)
        penalty = 0.0
        if self.l1:
            penalty += self.l1 * float(xp.abs(w).sum())
        if self.l2:
            penalty += self.l2 * float((w * w).sum())
        return penalty

    def gradient(self, w):
        xp = backend.get_array_module(w)
        grad = xp.zeros_like(w)
        if self.l1:
            grad += self.l1 * xp.sign(w)
        if self.l2:
            grad += 2 * self.l2 * w
        return grad

    def get_config(self):
        return {'l1': self.l1, 'l2': self.l2}


class L1(L1L2):
    name = 'l1'

    def __init__(self, l1: float = 0.01):
        super().__init__(l1=l1)

    def get_config(self):
        return {'l1': self.l1}


class L2(L1L2):
    name = 'l2'

    def __init__(self, l2: float = 0.01):
        super().__init__(l2=l2)

    def get_config(self):
        return {'l2': self.l2}


NAME2REGULARIZER = {cls.name: cls for cls in [L1, L2, L1L2]}


def get(identifier):
    if identifier is None or isinstance(identifier, Regularizer):
        return identifier
    if isinstance(identifier, str):
        try:
            return NAME2REGULARIZER[identifier.lower()]()
        except KeyError:
            raise ValueError(f"Unknown regularizer {identifier!r}")
    if isinstance(identifier, dict):
        return deserialize(identifier)
    raise TypeError(f"Cannot interpret {identifier!r} as a regularizer")


def serialize(regularizer):
    if regularizer is None:
        return None
    return {'class': regularizer.name, 'config': regularizer.get_config()}


def deserialize(config):
    if config is None:
        return None
    try:
        cls = NAME2REGULARIZER[config['class']]
    except KeyError:
        raise ValueError(f"Unknown regularizer {config.get('class')!r}")
    return cls(**config.get('config', {}))
