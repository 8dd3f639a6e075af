"""Training callbacks.

Callbacks receive the model through ``set_model`` and a ``logs`` dict of
the most recent results (``loss``, metric names, ``val_*`` entries and
``lr``). A callback ends training by setting ``model.stop_training``.
"""
from __future__ import annotations

import logging
import math
import warnings
from typing import Callable, Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class Callback:
    def __init__(self):
        self.model = None

    def set_model(self, model):
        self.model = model

    def on_train_begin(self, logs: Optional[Dict] = None):
        pass

    def on_train_end(self, logs: Optional[Dict] = None):
        pass

    def on_epoch_begin(self, epoch: int, logs: Optional[Dict] = None):
        pass

    def on_epoch_end(self, epoch: int, logs: Optional[Dict] = None):
        pass

    def on_train_batch_begin(self, batch: int, logs: Optional[Dict] = None):
        pass

    def on_train_batch_end(self, batch: int, logs: Optional[Dict] = None):
        pass


class CallbackList(Callback):
    """Fans every hook out to a list of callbacks."""

    def __init__(self, callbacks: Optional[List[Callback]] = None, model=None):
        super().__init__()
        self.callbacks = list(callbacks or [])
        if model is not None:
            self.set_model(model)

    def append(self, callback: Callback):
        self.callbacks.append(callback)
        if self.model is not None:
            callback.set_model(self.model)

    def set_model(self, model):
        super().set_model(model)
        for cb in self.callbacks:
            cb.set_model(model)

    def on_train_begin(self, logs=None):
        for cb in self.callbacks:
            cb.on_train_begin(logs)

    def on_train_end(self, logs=None):
        for cb in self.callbacks:
            cb.on_train_end(logs)

    def on_epoch_begin(self, epoch, logs=None):
        for cb in self.callbacks:
            cb.on_epoch_begin(epoch, logs)

    def on_epoch_end(self, epoch, logs=None):
        for cb in self.callbacks:
            cb.on_epoch_end(epoch, logs)

    def on_train_batch_begin(self, batch, logs=None):
        for cb in self.callbacks:
            cb.on_train_batch_begin(batch, logs)

    def on_train_batch_end(self, batch, logs=None):
        for cb in self.callbacks:
            cb.on_train_batch_end(batch, logs)


class History(Callback):
    """Records the epoch logs; returned by ``Model.fit``."""

    def __init__(self):
        super().__init__()
        self.epoch: List[int] = []
        self.history: Dict[str, List] = {}

    def on_train_begin(self, logs=None):
        self.epoch = []
        self.history = {}

    def on_epoch_end(self, epoch, logs=None):
        self.epoch.append(epoch)
        for k, v in (logs or {}).items():
            self.history.setdefault(k, []).append(v)

    def __getitem__(self, key):
        return self.history[key]


class _MonitorMixin:
    """Shared improvement test for callbacks watching one logged quantity."""

    def _init_monitor(self, monitor: str, mode: str, min_delta: float):
        if mode not in ('auto', 'min', 'max'):
            raise ValueError(f"`mode` must be 'auto', 'min' or 'max', got {mode!r}")
        if mode == 'auto':
            mode = 'max' if ('acc' in monitor or monitor.endswith('auc')) else 'min'
        self.monitor = monitor
        self.mode = mode
        self.min_delta = abs(min_delta)

    def _is_improvement(self, current, reference):
        if self.mode == 'max':
            return current > reference + self.min_delta
        return current < reference - self.min_delta

    def _initial_best(self):
        return -np.inf if self.mode == 'max' else np.inf

    def _current(self, logs):
        value = (logs or {}).get(self.monitor)
        if value is None:
            warnings.warn(
                f"{self.__class__.__name__} is monitoring '{self.monitor}', which is not available. "
                f"Available keys: {sorted((logs or {}).keys())}"
            )
        return value


class EarlyStopping(_MonitorMixin, Callback):
    def __init__(self, monitor: str = 'val_loss', min_delta: float = 0.0, patience: int = 0,
                 mode: str = 'auto', baseline: Optional[float] = None,
                 restore_best_weights: bool = False):
        super().__init__()
        self._init_monitor(monitor, mode, min_delta)
        self.patience = patience
        self.baseline = baseline
        self.restore_best_weights = restore_best_weights
        self.stopped_epoch = None

    def on_train_begin(self, logs=None):
        self.wait = 0
        self.stopped_epoch = None
        self.best = self.baseline if self.baseline is not None else self._initial_best()
        self.best_weights = None
        self.best_epoch = None

    def on_epoch_end(self, epoch, logs=None):
        current = self._current(logs)
        if current is None:
            return
        if self._is_improvement(current, self.best):
            self.best = current
            self.best_epoch = epoch
            self.wait = 0
            if self.restore_best_weights:
                self.best_weights = self.model.get_weights()
            return
        self.wait += 1
        if self.wait >= self.patience:
            self.stopped_epoch = epoch
            self.model.stop_training = True
            if self.restore_best_weights and self.best_weights is not None:
                self.model.set_weights(self.best_weights)
            logger.info("Early stopping at epoch %d. Best %s=%.4f", epoch + 1, self.monitor, self.best)


class ReduceLROnPlateau(_MonitorMixin, Callback):
    def __init__(self, monitor: str = 'val_loss', factor: float = 0.1, patience: int = 10,
                 mode: str = 'auto', min_delta: float = 1e-4, cooldown: int = 0, min_lr: float = 0.0):
        super().__init__()
        if not 0 < factor < 1:
            raise ValueError(f"`factor` must be in (0, 1), got {factor}")
        self._init_monitor(monitor, mode, min_delta)
        self.factor = factor
        self.patience = patience
        self.cooldown = cooldown
        self.min_lr = min_lr

    def on_train_begin(self, logs=None):
        self.wait = 0
        self.cooldown_counter = 0
        self.best = self._initial_best()

    def on_epoch_end(self, epoch, logs=None):
        current = self._current(logs)
        if current is None:
            return
        if self.cooldown_counter > 0:
            self.cooldown_counter -= 1
            self.wait = 0
        if self._is_improvement(current, self.best):
            self.best = current
            self.wait = 0
            return
        if self.cooldown_counter > 0:
            return
        self.wait += 1
        if self.wait >= self.patience:
            optimizer = self.model.optimizer
            if optimizer.lr > self.min_lr:
                old_lr = optimizer.lr
                optimizer.lr = max(self.min_lr, optimizer.lr * self.factor)
                logger.info("LR reduced from %g to %g", old_lr, optimizer.lr)
                self.cooldown_counter = self.cooldown
                self.wait = 0


class LearningRateScheduler(Callback):
    """Sets ``lr = schedule(epoch, lr)`` at the start of every epoch."""

    def __init__(self, schedule: Callable[[int, float], float]):
        super().__init__()
        self.schedule = schedule

    def on_epoch_begin(self, epoch, logs=None):
        lr = float(self.schedule(epoch, self.model.optimizer.lr))
        if lr <= 0 or not math.isfinite(lr):
            raise ValueError(f"Schedule returned an invalid learning rate {lr} for epoch {epoch}")
        self.model.optimizer.lr = lr


class TerminateOnNaN(Callback):
    def on_train_batch_end(self, batch, logs=None):
        loss = (logs or {}).get('loss')
        if loss is not None and not math.isfinite(loss):
            logger.warning("Batch %d: invalid loss %s, terminating training", batch, loss)
            self.model.stop_training = True


class ModelCheckpoint(_MonitorMixin, Callback):
    """Saves the model after each epoch.

    ``filepath`` may contain ``str.format`` fields filled from ``epoch``
    (1-based) and the epoch logs, e.g. ``'ckpt-{epoch:02d}-{val_loss:.2f}.h5'``.
    """

    def __init__(self, filepath: str, monitor: str = 'val_loss', save_best_only: bool = False,
                 mode: str = 'auto', save_weights_only: bool = False):
        super().__init__()
        self._init_monitor(monitor, mode, 0.0)
        self.filepath = str(filepath)
        self.save_best_only = save_best_only
        self.save_weights_only = save_weights_only

    def on_train_begin(self, logs=None):
        self.best = self._initial_best()

    def on_epoch_end(self, epoch, logs=None):
        logs = logs or {}
        if self.save_best_only:
            current = self._current(logs)
            if current is None or not self._is_improvement(current, self.best):
                return
            self.best = current
        try:
            path = self.filepath.format(epoch=epoch + 1, **logs)
        except KeyError as e:
            warnings.warn(
                f"ModelCheckpoint filepath '{self.filepath}' refers to {e}, which is not available. "
                f"Available keys: {sorted(logs)}; checkpoint skipped"
            )
            return
        if self.save_weights_only:
            self.model.save_weights(path)
        else:
            self.model.save(path)
        logger.info("Epoch %d: saved model to %s", epoch + 1, path)
