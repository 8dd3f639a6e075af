"""Linear stack of layers."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from . import layers as layers_module
from .exceptions import ShapeMismatchError
from .layers import InputLayer, Layer
from .model import Model


def shapes_compatible(expected, actual) -> bool:
    """Same rank and every dimension equal, ``None`` matching anything."""
    if len(expected) != len(actual):
        return False
    return all(a is None or b is None or a == b for a, b in zip(expected, actual))


class Sequential(Model):
    """Model whose layers each feed the next one.

    Builds as soon as the first layer is an ``InputLayer``; otherwise the
    shapes are inferred from the first batch seen by ``fit``/``predict``
    or from an explicit ``build(input_shape)``.
    """

    def __init__(self, layers: Optional[List[Layer]] = None, name: Optional[str] = None):
        super().__init__(name=name)
        self._layers: List[Layer] = []
        for layer in layers or []:
            self.add(layer)

    @property
    def layers(self) -> List[Layer]:
        return list(self._layers)

    def add(self, layer: Layer):
        if not isinstance(layer, Layer):
            raise TypeError(f"Sequential.add expects a Layer instance, got {type(layer).__name__}")
        if layer.multi_input:
            raise ValueError(f"{layer.__class__.__name__} takes several inputs; use a Functional model")
        if isinstance(layer, InputLayer) and self._layers:
            raise ValueError("An InputLayer can only be the first layer of a Sequential model")
        if any(existing.name == layer.name for existing in self._layers):
            raise ValueError(f"Duplicate layer name '{layer.name}' in model '{self.name}'")
        self._layers.append(layer)
        if isinstance(self._layers[0], InputLayer):
            self._build_from(self._layers[0].output_shape)

    def pop(self) -> Layer:
        if not self._layers:
            raise ValueError(f"Model '{self.name}' has no layers to pop")
        layer = self._layers.pop()
        if self.optimizer is not None:
            self.optimizer.forget(layer.params.values())
        if self.built:
            self.output_shape = self._layers[-1].output_shape if self._layers else self.input_shape
        return layer

    def build(self, input_shape):
        if isinstance(input_shape, list):
            raise ValueError("Sequential models take a single input")
        input_shape = tuple(input_shape)
        if self._layers and isinstance(self._layers[0], InputLayer):
            if not shapes_compatible(self._layers[0].output_shape, input_shape):
                raise ShapeMismatchError(f"Model '{self.name}' expects inputs of shape "
                                         f"{self._layers[0].output_shape}, got {input_shape}")
            input_shape = self._layers[0].output_shape
        self._build_from(input_shape)

    def _build_from(self, input_shape):
        if not self._layers:
            raise ValueError(f"Model '{self.name}' has no layers")
        shape = tuple(input_shape)
        for layer in self._layers:
            if layer.built:
                if not shapes_compatible(layer.input_shape, shape):
                    raise ShapeMismatchError(f"Layer '{layer.name}' was built for inputs of shape "
                                             f"{layer.input_shape}, got {shape}")
            else:
                layer.build(shape)
            shape = layer.output_shape
        self.input_shape = tuple(input_shape)
        self.output_shape = shape
        self.built = True

    def _check_input(self, x):
        if isinstance(x, list):
            if len(x) != 1:
                raise ValueError(f"Sequential model '{self.name}' takes one input array, got {len(x)}")
            x = x[0]
        if not shapes_compatible(self.input_shape, (None,) + tuple(x.shape[1:])):
            raise ShapeMismatchError(f"Model '{self.name}' expects inputs of shape {self.input_shape}, "
                                     f"got {tuple(x.shape)}")
        return x

    def forward(self, x, training: bool = False):
        x = self._check_input(x)
        for layer in self._layers:
            x = layer.forward(x, training=training)
        return x

    def backward(self, grad):
        for layer in reversed(self._layers):
            grad = layer.backward(grad)
        return grad

    def get_config(self) -> Dict[str, Any]:
        config = {'name': self.name, 'layers': [layer.to_config() for layer in self._layers]}
        if self.built and not isinstance(self._layers[0], InputLayer):
            config['input_shape'] = list(self.input_shape[1:])
        return config

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'Sequential':
        model = cls(name=config.get('name'))
        for layer_config in config['layers']:
            model.add(layers_module.deserialize(layer_config))
        if not model.built and config.get('input_shape') is not None:
            model.build((None,) + tuple(config['input_shape']))
        return model
