"""Trainable model base: compile, training loop, evaluation, prediction and persistence.

``Sequential`` and ``Functional`` supply the graph (``layers``, ``build``,
``forward``, ``backward``); everything that drives the array engine
through that graph lives here.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import numpy as np
from tqdm import tqdm

from . import backend, io, losses, optim
from . import metrics as metrics_module
from .callbacks import Callback, CallbackList, History
from .data import Dataset, as_dataset, concat_batches, num_samples
from .exceptions import NotCompiledError
from .inference import InferenceModel
from .layers import Layer
from .utils import to_snake_case, unique_name

logger = logging.getLogger(__name__)


def _cast(x):
    if isinstance(x, (list, tuple)):
        return [backend.asarray(a, dtype=backend.FLOATX) for a in x]
    return backend.asarray(x, dtype=backend.FLOATX)


def _format_logs(logs: Dict[str, float]) -> str:
    return ' - '.join(f"{k}: {v:.4g}" for k, v in logs.items())


class Model(InferenceModel):
    def __init__(self, name: Optional[str] = None):
        super().__init__()
        self.name = name or unique_name(to_snake_case(self.__class__.__name__))
        self.built = False
        self.input_shape = None
        self.output_shape = None
        self.optimizer: Optional[optim.Optimizer] = None
        self.loss: Optional[losses.Loss] = None
        self.metrics: List[metrics_module.Metric] = []
        self.stop_training = False

    # -- graph interface --------------------------------------------------

    @property
    def layers(self) -> List[Layer]:
        raise NotImplementedError

    @property
    def num_outputs(self) -> int:
        return 1

    def build(self, input_shape):
        raise NotImplementedError

    def forward(self, x, training: bool = False):
        raise NotImplementedError

    def backward(self, grad):
        raise NotImplementedError

    def get_config(self) -> Dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_config(cls, config: Dict[str, Any]):
        raise NotImplementedError

    def to_config(self) -> Dict[str, Any]:
        return {'class': self.__class__.__name__, 'config': self.get_config()}

    def _ensure_built(self, x):
        if self.built:
            return
        arrays = x if isinstance(x, (list, tuple)) else [x]
        shapes = [(None,) + tuple(a.shape[1:]) for a in arrays]
        self.build(shapes if len(shapes) > 1 else shapes[0])

    # -- configuration ----------------------------------------------------

    def compile(self, optimizer='adam', loss='mse', metrics=None, weight_decay: float = 0.0,
                clip_norm: float | None = None, clip_value: float | None = None, **opt_kwargs):
        if self.num_outputs != 1:
            raise ValueError(f"Model '{self.name}' has {self.num_outputs} outputs; "
                             f"training and evaluation need a single output")
        if opt_kwargs and isinstance(optimizer, optim.Optimizer):
            raise TypeError(f"Optimizer arguments {sorted(opt_kwargs)} given with an optimizer instance")
        self.optimizer = optim.get(optimizer, **opt_kwargs)
        if weight_decay or clip_norm is not None or clip_value is not None:
            self.optimizer.configure(weight_decay=weight_decay, clip_norm=clip_norm, clip_value=clip_value)
        self.loss = losses.get(loss)
        self.metrics = [metrics_module.get(m) for m in (metrics or [])]
        names = [m.name for m in self.metrics]
        if len(set(names)) != len(names) or 'loss' in names:
            raise ValueError(f"Metric names must be unique and differ from 'loss', got {names}")

    @property
    def compiled(self) -> bool:
        return self.optimizer is not None and self.loss is not None

    def _check_compiled(self):
        if not self.compiled:
            raise NotCompiledError(f"Model '{self.name}' must be compiled before training or evaluation")

    def get_training_config(self) -> Optional[Dict[str, Any]]:
        if not self.compiled:
            return None
        return {
            'optimizer': optim.serialize(self.optimizer),
            'loss': losses.serialize(self.loss),
            'metrics': [m.name for m in self.metrics],
        }

    # -- training ---------------------------------------------------------

    def _params_and_grads(self):
        for layer in self.layers:
            for p, g in layer.get_params_and_grads():
                yield p, g

    def _regularization_loss(self) -> float:
        return float(sum(layer.regularization_loss() for layer in self.layers))

    def _train_step(self, x, y):
        x = _cast(x)
        self._ensure_built(x)
        y = backend.asarray(y)
        y_pred = self.forward(x, training=True)
        loss_val = self.loss.forward(y_pred, y) + self._regularization_loss()
        self.backward(self.loss.backward())
        for layer in self.layers:
            layer.apply_regularization_grads()
        self.optimizer.step(self._params_and_grads())
        for m in self.metrics:
            m.update_state(y, y_pred)
        return loss_val

    def _test_step(self, x, y):
        x = _cast(x)
        self._ensure_built(x)
        y = backend.asarray(y)
        y_pred = self.forward(x, training=False)
        loss_val = self.loss.forward(y_pred, y) + self._regularization_loss()
        for m in self.metrics:
            m.update_state(y, y_pred)
        return loss_val

    def _batch_logs(self, loss_val: float) -> Dict[str, float]:
        logs = {'loss': loss_val}
        logs.update({m.name: m.result() for m in self.metrics})
        return logs

    def train_on_batch(self, x, y) -> Dict[str, float]:
        """One optimizer step; returns the loss and metrics of this batch."""
        self._check_open()
        self._check_compiled()
        for m in self.metrics:
            m.reset_state()
        return self._batch_logs(self._train_step(x, y))

    def test_on_batch(self, x, y) -> Dict[str, float]:
        self._check_open()
        self._check_compiled()
        for m in self.metrics:
            m.reset_state()
        return self._batch_logs(self._test_step(x, y))

    def fit(self, x, y=None, epochs: int = 1, batch_size: int = 32, validation_data=None,
            validation_split: float = 0.0, shuffle: bool = True,
            callbacks: Optional[List[Callback]] = None, num_threads: Optional[int] = None,
            verbose: bool = True, seed: Optional[int] = None) -> History:
        """Train for ``epochs`` passes over the data.

        ``x`` is an array, a list of arrays (multi-input models) or a
        ``Dataset``. ``validation_split`` holds out the trailing fraction of
        the data before shuffling; ``validation_data`` takes precedence.
        Returns the ``History`` callback.
        """
        self._check_open()
        self._check_compiled()
        train = as_dataset(x, y)
        if train.y is None:
            raise ValueError("fit() needs targets: pass `y` or a Dataset with labels")
        if len(train) == 0:
            raise ValueError("fit() got an empty dataset")
        val = None
        if validation_data is not None:
            val = validation_data if isinstance(validation_data, Dataset) else Dataset(*validation_data)
        elif validation_split:
            train, val = train.split(1 - validation_split)
        if not self.built:
            shapes = train.feature_shapes
            self.build(shapes if len(shapes) > 1 else shapes[0])

        history = History()
        cbs = CallbackList([history] + list(callbacks or []), model=self)
        rng = np.random.default_rng(seed)
        self.stop_training = False
        logs: Dict[str, float] = {}
        cbs.on_train_begin()
        for epoch in range(epochs):
            cbs.on_epoch_begin(epoch)
            for m in self.metrics:
                m.reset_state()
            total, count = 0.0, 0
            pbar = tqdm(
                train.batches(batch_size, shuffle=shuffle, num_threads=num_threads,
                              seed=int(rng.integers(2 ** 31))),
                total=train.num_batches(batch_size),
                desc=f"Epoch {epoch + 1}/{epochs}",
                disable=not verbose,
            )
            try:
                for step, (xb, yb) in enumerate(pbar):
                    cbs.on_train_batch_begin(step)
                    loss_val = self._train_step(xb, yb)
                    n = num_samples(xb)
                    total += loss_val * n
                    count += n
                    cbs.on_train_batch_end(step, {'loss': loss_val})
                    pbar.set_postfix(loss=total / count, **{m.name: m.result() for m in self.metrics})
                    if self.stop_training:
                        break
            finally:
                pbar.close()

            logs = {'loss': total / max(count, 1)}
            logs.update({m.name: m.result() for m in self.metrics})
            if val is not None:
                val_logs = self.evaluate(val, batch_size=batch_size)
                logs.update({f"val_{k}": v for k, v in val_logs.items()})
            logs['lr'] = self.optimizer.lr
            logger.info("Epoch %d/%d - %s", epoch + 1, epochs, _format_logs(logs))
            cbs.on_epoch_end(epoch, logs)
            if self.stop_training:
                break
        cbs.on_train_end(logs)
        return history

    def evaluate(self, x, y=None, batch_size: int = 32, verbose: bool = False) -> Dict[str, float]:
        """Loss and metrics over the whole dataset, weighted by batch size."""
        self._check_open()
        self._check_compiled()
        data = as_dataset(x, y)
        if data.y is None:
            raise ValueError("evaluate() needs targets: pass `y` or a Dataset with labels")
        if len(data) == 0:
            raise ValueError("evaluate() got an empty dataset")
        for m in self.metrics:
            m.reset_state()
        total, count = 0.0, 0
        batches = tqdm(data.batches(batch_size, shuffle=False, prefetch=0),
                       total=data.num_batches(batch_size), desc="Evaluate", disable=not verbose)
        for xb, yb in batches:
            n = num_samples(xb)
            total += self._test_step(xb, yb) * n
            count += n
        logs = {'loss': total / count}
        logs.update({m.name: m.result() for m in self.metrics})
        return logs

    # -- inference --------------------------------------------------------

    def predict(self, x, batch_size: int = 32, verbose: bool = False):
        """Batched forward pass in inference mode; returns host arrays."""
        self._check_open()
        data = as_dataset(x)
        if len(data) == 0:
            raise ValueError("predict() got no samples")
        outputs = []
        batches = tqdm(data.batches(batch_size, shuffle=False, prefetch=0),
                       total=data.num_batches(batch_size), desc="Predict", disable=not verbose)
        for xb, _ in batches:
            xb = _cast(xb)
            self._ensure_built(xb)
            outputs.append(self.forward(xb, training=False))
        if self.num_outputs > 1:
            return [concat_batches([o[i] for o in outputs]) for i in range(self.num_outputs)]
        return concat_batches(outputs)

    # -- layers and weights -----------------------------------------------

    def get_layer(self, name: str) -> Layer:
        for layer in self.layers:
            if layer.name == name:
                return layer
        raise ValueError(f"No layer named '{name}' in model '{self.name}'")

    def freeze(self, up_to: Optional[str] = None):
        """Mark layers non-trainable, all of them or those up to and including ``up_to``."""
        if up_to is not None:
            self.get_layer(up_to)
        for layer in self.layers:
            layer.trainable = False
            if layer.name == up_to:
                break

    def unfreeze(self):
        for layer in self.layers:
            layer.trainable = True

    def count_params(self, trainable_only: bool = False) -> int:
        return sum(layer.count_params(trainable_only) for layer in self.layers)

    def get_weights(self) -> List[np.ndarray]:
        return [w for layer in self.layers for w in layer.get_weights()]

    def set_weights(self, weights: List[np.ndarray]):
        weights = list(weights)
        expected = sum(len(layer.weight_names) for layer in self.layers)
        if len(weights) != expected:
            raise ValueError(f"Model '{self.name}' expects {expected} weight arrays, got {len(weights)}")
        offset = 0
        for layer in self.layers:
            n = len(layer.weight_names)
            layer.set_weights(weights[offset:offset + n])
            offset += n

    def summary(self, print_fn=print) -> str:
        """Keras-style table of layers, output shapes and parameter counts."""
        widths = (33, 26, 12)
        rule = '_' * sum(widths)
        lines = [f'Model: "{self.name}"', rule,
                 f"{'Layer (type)':<{widths[0]}}{'Output Shape':<{widths[1]}}{'Param #':<{widths[2]}}",
                 '=' * sum(widths)]
        for i, layer in enumerate(self.layers):
            label = f"{layer.name} ({layer.__class__.__name__})"
            shape = str(layer.output_shape) if layer.built else 'unbuilt'
            lines.append(f"{label:<{widths[0]}}{shape:<{widths[1]}}{layer.count_params():<{widths[2]}}")
            if i < len(self.layers) - 1:
                lines.append('')
        total = self.count_params()
        trainable = self.count_params(trainable_only=True)
        lines += ['=' * sum(widths),
                  f"Total params: {total:,}",
                  f"Trainable params: {trainable:,}",
                  f"Non-trainable params: {total - trainable:,}",
                  rule]
        text = '\n'.join(lines)
        if print_fn is not None:
            print_fn(text)
        return text

    # -- persistence ------------------------------------------------------

    def save(self, path: str):
        """Write ``<base>.json`` (architecture) and the weights file at ``path``."""
        io.save_model(self, path)

    def save_weights(self, path: str):
        io.save_weights(self, path)

    def load_weights(self, path: str):
        io.load_weights(self, path)

    @classmethod
    def load(cls, path: str) -> 'Model':
        model = io.load_model(path)
        if not isinstance(model, cls):
            raise TypeError(f"{path} holds a {model.__class__.__name__}, not a {cls.__name__}")
        return model
