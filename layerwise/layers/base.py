"""Layer base class and the symbolic tensors used to wire functional graphs."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .. import backend, initializers, regularizers
from ..exceptions import ShapeMismatchError
from ..utils import to_snake_case, unique_name

Shape = Tuple[Optional[int], ...]


class SymbolicTensor:
    """Placeholder for the output of a layer in a graph under construction.

    Carries only the static shape and the layer that produced it; the
    ``inbound`` tensors are the inputs that layer was called on.
    """

    def __init__(self, shape: Shape, layer: 'Layer', inbound: Optional[List['SymbolicTensor']] = None):
        self.shape = tuple(shape)
        self.layer = layer
        self.inbound = list(inbound or [])

    def __repr__(self):
        return f"<SymbolicTensor shape={self.shape} from '{self.layer.name}'>"


class Layer:
    """Abstract layer base class.

    Subclasses create their weights in ``build`` through ``add_weight`` and
    implement ``forward``/``backward`` on engine arrays. ``backward`` fills
    ``self.grads`` and returns the gradient with respect to the input.
    """
    multi_input = False

    def __init__(self, name: Optional[str] = None, trainable: bool = True):
        self.name = name or unique_name(to_snake_case(self.__class__.__name__))
        self.trainable = trainable
        self.built = False
        self.params: Dict[str, Any] = {}
        self.buffers: Dict[str, Any] = {}
        self.grads: Dict[str, Any] = {}
        self.regularizers: Dict[str, regularizers.Regularizer] = {}
        self.input_shape = None
        self.output_shape = None
        self.inbound: Optional[List[SymbolicTensor]] = None
        self._output_tensor: Optional[SymbolicTensor] = None

    # -- construction -----------------------------------------------------

    def build(self, input_shape):
        self.input_shape = input_shape
        self.output_shape = self.compute_output_shape(input_shape)
        self.built = True

    def compute_output_shape(self, input_shape):
        return input_shape

    def add_weight(self, name: str, shape: Tuple[int, ...], initializer, regularizer=None,
                   trainable: bool = True):
        value = backend.asarray(initializers.get(initializer)(shape))
        if trainable:
            self.params[name] = value
            self.grads[name] = backend.get_array_module(value).zeros_like(value)
            if regularizer is not None:
                self.regularizers[name] = regularizer
        else:
            self.buffers[name] = value
        return value

    def __call__(self, inputs):
        """Connect the layer into a graph, or run it eagerly on arrays."""
        tensors = list(inputs) if isinstance(inputs, (list, tuple)) else [inputs]
        if not all(isinstance(t, SymbolicTensor) for t in tensors):
            if any(isinstance(t, SymbolicTensor) for t in tensors):
                raise TypeError(f"Layer '{self.name}' got a mix of symbolic tensors and arrays")
            arrays = [backend.asarray(t) for t in tensors]
            if not self.built:
                shapes = [(None,) + tuple(a.shape[1:]) for a in arrays]
                self.build(shapes if self.multi_input else shapes[0])
            return self.forward(arrays if self.multi_input else arrays[0])

        if self.inbound is not None:
            raise ValueError(f"Layer '{self.name}' is already connected; shared layers are not supported")
        if not self.multi_input and len(tensors) != 1:
            raise ValueError(f"Layer '{self.name}' expects a single input, got {len(tensors)}")
        shapes = [t.shape for t in tensors]
        if not self.built:
            self.build(shapes if self.multi_input else shapes[0])
        self.inbound = tensors
        self._output_tensor = SymbolicTensor(self.output_shape, self, tensors)
        return self._output_tensor

    # -- execution --------------------------------------------------------

    def forward(self, x, training: bool = False):
        raise NotImplementedError

    def backward(self, grad):
        raise NotImplementedError

    def get_params_and_grads(self):
        if not self.trainable:
            return
        for k, v in self.params.items():
            yield v, self.grads[k]

    def regularization_loss(self) -> float:
        if not self.trainable:
            return 0.0
        return sum(reg(self.params[name]) for name, reg in self.regularizers.items())

    def apply_regularization_grads(self):
        if not self.trainable:
            return
        for name, reg in self.regularizers.items():
            self.grads[name] += reg.gradient(self.params[name])

    # -- weights ----------------------------------------------------------

    @property
    def weight_names(self) -> List[str]:
        return list(self.params) + list(self.buffers)

    def _weight(self, name):
        return self.params[name] if name in self.params else self.buffers[name]

    def get_weights(self) -> List[np.ndarray]:
        return [np.array(backend.to_cpu(self._weight(n))) for n in self.weight_names]

    def set_weights(self, weights) -> None:
        names = self.weight_names
        if len(weights) != len(names):
            raise ShapeMismatchError(
                f"Layer '{self.name}' expects {len(names)} weight arrays {names}, got {len(weights)}"
            )
        for name, value in zip(names, weights):
            target = self._weight(name)
            value = np.asarray(value)
            if tuple(value.shape) != tuple(target.shape):
                raise ShapeMismatchError(
                    f"Weight '{self.name}/{name}' has shape {tuple(target.shape)}, "
                    f"got {tuple(value.shape)}"
                )
            target[...] = backend.asarray(value, dtype=target.dtype)

    def count_params(self, trainable_only: bool = False) -> int:
        arrays = list(self.params.values())
        if trainable_only:
            if not self.trainable:
                return 0
        else:
            arrays += list(self.buffers.values())
        return int(sum(a.size for a in arrays))

    # -- serialization ----------------------------------------------------

    def get_config(self) -> Dict[str, Any]:
        return {'name': self.name, 'trainable': self.trainable}

    def to_config(self) -> Dict[str, Any]:
        return {'class': self.__class__.__name__, 'config': self.get_config()}

    @classmethod
    def from_config(cls, config: Dict[str, Any]):
        return cls(**config)

    def __repr__(self):
        return f"<{self.__class__.__name__} name='{self.name}' output_shape={self.output_shape}>"
