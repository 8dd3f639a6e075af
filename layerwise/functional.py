"""Graph model built by calling layers on symbolic tensors."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from . import layers as layers_module
from .exceptions import ShapeMismatchError
from .layers import InputLayer, Layer, SymbolicTensor
from .model import Model
from .sequential import shapes_compatible


def _as_list(x) -> list:
    return list(x) if isinstance(x, (list, tuple)) else [x]


class Functional(Model):
    """Directed acyclic graph of layers between ``Input`` tensors and outputs.

    Example:
        >>> inp = Input((16,))
        >>> h = Dense(8, activation='relu')(inp)
        >>> model = Functional(inp, Dense(1)(h))
    """

    def __init__(self, inputs, outputs, name: Optional[str] = None):
        super().__init__(name=name)
        self.inputs: List[SymbolicTensor] = _as_list(inputs)
        self.outputs: List[SymbolicTensor] = _as_list(outputs)
        if not self.inputs or not self.outputs:
            raise ValueError("A Functional model needs at least one input and one output")
        for t in self.inputs + self.outputs:
            if not isinstance(t, SymbolicTensor):
                raise TypeError(f"Functional model inputs and outputs must be symbolic tensors, got {t!r}")
        for t in self.inputs:
            if not isinstance(t.layer, InputLayer):
                raise ValueError(f"Model inputs must come from Input(), '{t.layer.name}' is a "
                                 f"{t.layer.__class__.__name__}")
        self._input_layers = [t.layer for t in self.inputs]
        self._output_layers = [t.layer for t in self.outputs]
        self._layers = self._topological_order()
        names = [layer.name for layer in self._layers]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate layer names in model '{self.name}': {duplicates}")
        shapes = [t.shape for t in self.inputs]
        outs = [t.shape for t in self.outputs]
        self.input_shape = shapes if len(shapes) > 1 else shapes[0]
        self.output_shape = outs if len(outs) > 1 else outs[0]
        self.built = True

    def _topological_order(self) -> List[Layer]:
        input_ids = {id(layer) for layer in self._input_layers}
        visited = set()
        order: List[Layer] = []
        for output in self.outputs:
            stack = [(output.layer, False)]
            while stack:
                layer, expanded = stack.pop()
                if expanded:
                    order.append(layer)
                    continue
                if id(layer) in visited:
                    continue
                visited.add(id(layer))
                if isinstance(layer, InputLayer) and id(layer) not in input_ids:
                    raise ValueError(f"Graph disconnected: '{layer.name}' is reached from the outputs "
                                     f"but is not one of the model inputs")
                stack.append((layer, True))
                for t in reversed(layer.inbound or []):
                    if id(t.layer) not in visited:
                        stack.append((t.layer, False))
        # model inputs first and in the order given, even the unused ones
        rest = [layer for layer in order if id(layer) not in input_ids]
        return list(self._input_layers) + rest

    @property
    def layers(self) -> List[Layer]:
        return list(self._layers)

    @property
    def num_outputs(self) -> int:
        return len(self.outputs)

    def build(self, input_shape):
        shapes = input_shape if isinstance(input_shape, list) else [input_shape]
        self._check_shapes(shapes)

    def _check_shapes(self, shapes):
        if len(shapes) != len(self.inputs):
            raise ValueError(f"Model '{self.name}' takes {len(self.inputs)} inputs, got {len(shapes)}")
        for t, shape in zip(self.inputs, shapes):
            if not shapes_compatible(t.shape, (None,) + tuple(shape[1:])):
                raise ShapeMismatchError(f"Input '{t.layer.name}' expects shape {t.shape}, "
                                         f"got {tuple(shape)}")

    def forward(self, x, training: bool = False):
        arrays = _as_list(x)
        self._check_shapes([a.shape for a in arrays])
        values = {id(layer): a for layer, a in zip(self._input_layers, arrays)}
        for layer in self._layers:
            if isinstance(layer, InputLayer):
                continue
            args = [values[id(t.layer)] for t in layer.inbound]
            values[id(layer)] = layer.forward(args if layer.multi_input else args[0], training=training)
        outputs = [values[id(layer)] for layer in self._output_layers]
        return outputs if len(outputs) > 1 else outputs[0]

    def backward(self, grad):
        """Backpropagate output gradients; fan-out gradients are summed.

        ``grad`` is one array per output (a bare array for single-output
        models). ``None`` entries contribute nothing.
        """
        seeds = _as_list(grad) if self.num_outputs > 1 else [grad]
        if len(seeds) != self.num_outputs:
            raise ValueError(f"Model '{self.name}' has {self.num_outputs} outputs, got {len(seeds)} gradients")
        pending: Dict[int, Any] = {}

        def accumulate(layer, g):
            key = id(layer)
            pending[key] = g if key not in pending else pending[key] + g

        for layer, g in zip(self._output_layers, seeds):
            if g is not None:
                accumulate(layer, g)
        input_grads = {}
        for layer in reversed(self._layers):
            g = pending.pop(id(layer), None)
            if g is None:
                continue
            if isinstance(layer, InputLayer):
                input_grads[id(layer)] = g
                continue
            dx = layer.backward(g)
            dxs = dx if layer.multi_input else [dx]
            for t, d in zip(layer.inbound, dxs):
                accumulate(t.layer, d)
        result = [input_grads.get(id(layer)) for layer in self._input_layers]
        return result if len(result) > 1 else result[0]

    def get_config(self) -> Dict[str, Any]:
        layer_configs = []
        for layer in self._layers:
            entry = layer.to_config()
            entry['inbound'] = [t.layer.name for t in layer.inbound or []]
            layer_configs.append(entry)
        return {
            'name': self.name,
            'layers': layer_configs,
            'inputs': [layer.name for layer in self._input_layers],
            'outputs': [layer.name for layer in self._output_layers],
        }

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'Functional':
        tensors: Dict[str, SymbolicTensor] = {}
        for entry in config['layers']:
            layer = layers_module.deserialize(entry)
            if isinstance(layer, InputLayer):
                tensors[layer.name] = layer.output
                continue
            try:
                inbound = [tensors[n] for n in entry['inbound']]
            except KeyError as e:
                raise ValueError(f"Layer '{layer.name}' refers to unknown inbound layer {e}") from None
            tensors[layer.name] = layer(inbound if layer.multi_input else inbound[0])
        try:
            inputs = [tensors[n] for n in config['inputs']]
            outputs = [tensors[n] for n in config['outputs']]
        except KeyError as e:
            raise ValueError(f"Model config refers to unknown layer {e}") from None
        return cls(inputs, outputs, name=config.get('name'))
