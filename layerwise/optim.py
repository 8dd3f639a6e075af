"""Optimizers.

``step`` receives ``(param, grad)`` pairs and updates the parameters in
place. Per-parameter state is keyed by the identity of the parameter
array, so freezing layers between steps does not shuffle state. Each
entry keeps its parameter alive, so an id is never reused while state
for it exists. ``forget`` releases the state of removed weights.
"""
from __future__ import annotations

from typing import Iterable, Tuple

from . import backend


class Optimizer:
    name = 'optimizer'

    def __init__(self, lr: float):
        if lr <= 0:
            raise ValueError(f"Learning rate must be positive, got {lr}")
        self.lr = lr
        self.weight_decay = 0.0
        self.clip_norm = None
        self.clip_value = None
        self.iterations = 0
        self.state = {}

    def configure(self, weight_decay: float = 0.0, clip_norm: float | None = None,
                  clip_value: float | None = None):
        if weight_decay < 0:
            raise ValueError(f"`weight_decay` must be non-negative, got {weight_decay}")
        if clip_norm is not None and clip_norm <= 0:
            raise ValueError(f"`clip_norm` must be positive, got {clip_norm}")
        if clip_value is not None and clip_value <= 0:
            raise ValueError(f"`clip_value` must be positive, got {clip_value}")
        self.weight_decay = weight_decay
        self.clip_norm = clip_norm
        self.clip_value = clip_value
        return self

    def _apply_regularization(self, p, g):
        xp = backend.get_array_module(g)
        if self.weight_decay > 0:
            g = g + self.weight_decay * p
        if self.clip_value is not None:
            g = xp.clip(g, -self.clip_value, self.clip_value)
        if self.clip_norm is not None:
            norm = float(xp.linalg.norm(g))
            if norm > self.clip_norm:
                g = g * (self.clip_norm / norm)
        return g

    def _has_state(self, p) -> bool:
        entry = self.state.get(id(p))
        return entry is not None and entry[0] is p

    def _slots(self, p, *names):
        """Per-parameter state arrays, zero-initialised on first use."""
        if not self._has_state(p):
            xp = backend.get_array_module(p)
            self.state[id(p)] = (p, {name: xp.zeros_like(p) for name in names})
        return self.state[id(p)][1]

    def forget(self, params: Iterable):
        """Drop the state held for ``params``."""
        for p in params:
            if self._has_state(p):
                del self.state[id(p)]

    def step(self, params_and_grads: Iterable[Tuple]):
        self.iterations += 1
        for p, g in params_and_grads:
            self._update(p, self._apply_regularization(p, g))

    def _update(self, p, g):
        raise NotImplementedError

    def reset(self):
        self.state = {}
        self.iterations = 0

    def get_config(self):
        return {'lr': self.lr}


class SGD(Optimizer):
    name = 'sgd'

    def __init__(self, lr=0.01, momentum=0.0, nesterov=False):
        super().__init__(lr)
        if momentum < 0:
            raise ValueError(f"`momentum` must be non-negative, got {momentum}")
        self.momentum = momentum
        self.nesterov = nesterov

    def _update(self, p, g):
        if self.momentum > 0:
            v = self._slots(p, 'velocity')['velocity']
            v *= self.momentum
            v -= self.lr * g
            if self.nesterov:
                p += self.momentum * v - self.lr * g
            else:
                p += v
        else:
            p -= self.lr * g

    def get_config(self):
        return {'lr': self.lr, 'momentum': self.momentum, 'nesterov': self.nesterov}


class Adam(Optimizer):
    name = 'adam'

    def __init__(self, lr=0.001, beta1=0.9, beta2=0.999, eps=1e-7, amsgrad=False):
        super().__init__(lr)
        self.beta1 = beta1
        self.beta2 = beta2
        self.eps = eps
        self.amsgrad = amsgrad

    def _update(self, p, g):
        xp = backend.get_array_module(p)
        s = self._slots(p, 'm', 'v', 'v_max')
        t = self.iterations
        s['m'][...] = self.beta1 * s['m'] + (1 - self.beta1) * g
        s['v'][...] = self.beta2 * s['v'] + (1 - self.beta2) * g * g
        m_hat = s['m'] / (1 - self.beta1 ** t)
        v = s['v']
        if self.amsgrad:
            xp.maximum(s['v_max'], v, out=s['v_max'])
            v = s['v_max']
        v_hat = v / (1 - self.beta2 ** t)
        p -= self.lr * m_hat / (xp.sqrt(v_hat) + self.eps)

    def get_config(self):
        return {'lr': self.lr, 'beta1': self.beta1, 'beta2': self.beta2,
                'eps': self.eps, 'amsgrad': self.amsgrad}


class AdaMax(Adam):
    """Adam with the infinity norm in place of the second moment."""
    name = 'adamax'

    def __init__(self, lr=0.001, beta1=0.9, beta2=0.999, eps=1e-7):
        super().__init__(lr, beta1, beta2, eps)

    def _update(self, p, g):
        xp = backend.get_array_module(p)
        s = self._slots(p, 'm', 'u')
        s['m'][...] = self.beta1 * s['m'] + (1 - self.beta1) * g
        xp.maximum(self.beta2 * s['u'], xp.abs(g), out=s['u'])
        p -= self.lr / (1 - self.beta1 ** self.iterations) * s['m'] / (s['u'] + self.eps)

    def get_config(self):
        return {'lr': self.lr, 'beta1': self.beta1, 'beta2': self.beta2, 'eps': self.eps}


class RMSProp(Optimizer):
    name = 'rmsprop'

    def __init__(self, lr=0.001, rho=0.9, momentum=0.0, eps=1e-7, centered=False):
        super().__init__(lr)
        self.rho = rho
        self.momentum = momentum
        self.eps = eps
        self.centered = centered

    def _update(self, p, g):
        xp = backend.get_array_module(p)
        s = self._slots(p, 'ms', 'mg', 'mom')
        s['ms'][...] = self.rho * s['ms'] + (1 - self.rho) * g * g
        denom = s['ms']
        if self.centered:
            s['mg'][...] = self.rho * s['mg'] + (1 - self.rho) * g
            denom = denom - s['mg'] ** 2
        step = self.lr * g / (xp.sqrt(denom) + self.eps)
        if self.momentum > 0:
            s['mom'][...] = self.momentum * s['mom'] + step
            step = s['mom']
        p -= step

    def get_config(self):
        return {'lr': self.lr, 'rho': self.rho, 'momentum': self.momentum,
                'eps': self.eps, 'centered': self.centered}


class AdaGrad(Optimizer):
    name = 'adagrad'

    def __init__(self, lr=0.01, initial_accumulator_value=0.1, eps=1e-7):
        super().__init__(lr)
        self.initial_accumulator_value = initial_accumulator_value
        self.eps = eps

    def _update(self, p, g):
        xp = backend.get_array_module(p)
        fresh = not self._has_state(p)
        acc = self._slots(p, 'acc')['acc']
        if fresh:
            acc += self.initial_accumulator_value
        acc += g * g
        p -= self.lr * g / (xp.sqrt(acc) + self.eps)

    def get_config(self):
        return {'lr': self.lr, 'initial_accumulator_value': self.initial_accumulator_value,
                'eps': self.eps}


class AdaDelta(Optimizer):
    name = 'adadelta'

    def __init__(self, lr=1.0, rho=0.95, eps=1e-7):
        super().__init__(lr)
        self.rho = rho
        self.eps = eps

    def _update(self, p, g):
        xp = backend.get_array_module(p)
        s = self._slots(p, 'acc_grad', 'acc_delta')
        s['acc_grad'][...] = self.rho * s['acc_grad'] + (1 - self.rho) * g * g
        delta = xp.sqrt(s['acc_delta'] + self.eps) / xp.sqrt(s['acc_grad'] + self.eps) * g
        s['acc_delta'][...] = self.rho * s['acc_delta'] + (1 - self.rho) * delta * delta
        p -= self.lr * delta

    def get_config(self):
        return {'lr': self.lr, 'rho': self.rho, 'eps': self.eps}


NAME2OPT = {cls.name: cls for cls in [SGD, Adam, AdaMax, RMSProp, AdaGrad, AdaDelta]}


def get(identifier, **kwargs) -> Optimizer:
    if isinstance(identifier, Optimizer):
        return identifier
    if isinstance(identifier, str):
        try:
            return NAME2OPT[identifier.lower()](**kwargs)
        except KeyError:
            raise ValueError(f"Unknown optimizer {identifier!r}")
    raise TypeError(f"Cannot interpret {identifier!r} as an optimizer")


def serialize(optimizer: Optimizer) -> dict:
    config = optimizer.get_config()
    config.update({'weight_decay': optimizer.weight_decay, 'clip_norm': optimizer.clip_norm,
                   'clip_value': optimizer.clip_value})
    return {'class': optimizer.name, 'config': config}


def deserialize(config: dict) -> Optimizer:
    options = dict(config.get('config', {}))
    regularization = {k: options.pop(k) for k in ('weight_decay', 'clip_norm', 'clip_value') if k in options}
    optimizer = get(config['class'], **options)
    return optimizer.configure(**{k: v for k, v in regularization.items() if v is not None})
