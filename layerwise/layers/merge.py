"""Layers combining several inputs; only usable in functional models."""
from __future__ import annotations

from typing import List, Optional

from .. import backend
from ..exceptions import ShapeMismatchError
from .base import Layer


def _merge_dims(a, b):
    if a is None:
        return b
    if b is None or a == b:
        return a
    return -1


class _Merge(Layer):
    multi_input = True
    min_inputs = 2
    max_inputs = None

    def build(self, input_shape):
        if not isinstance(input_shape, list) or len(input_shape) < self.min_inputs:
            raise ValueError(f"{self.__class__.__name__} '{self.name}' needs at least "
                             f"{self.min_inputs} inputs")
        if self.max_inputs is not None and len(input_shape) > self.max_inputs:
            raise ValueError(f"{self.__class__.__name__} '{self.name}' takes exactly "
                             f"{self.max_inputs} inputs, got {len(input_shape)}")
        super().build(input_shape)

    def compute_output_shape(self, input_shape):
        ranks = {len(s) for s in input_shape}
        if len(ranks) != 1:
            raise ShapeMismatchError(f"Inputs of '{self.name}' have different ranks: {input_shape}")
        merged = list(input_shape[0])
        for shape in input_shape[1:]:
            merged = [_merge_dims(a, b) for a, b in zip(merged, shape)]
        if -1 in merged:
            raise ShapeMismatchError(f"Inputs of '{self.name}' must have the same shape, got {input_shape}")
        return tuple(merged)

    def forward(self, inputs, training=False):
        self.last_inputs = list(inputs)
        self.last_y = self._merge(self.last_inputs)
        return self.last_y

    def _merge(self, inputs):
        raise NotImplementedError


class Add(_Merge):
    def _merge(self, inputs):
        out = inputs[0]
        for x in inputs[1:]:
            out = out + x
        return out

    def backward(self, grad) -> List:
        return [grad for _ in self.last_inputs]


class Subtract(_Merge):
    max_inputs = 2

    def _merge(self, inputs):
        return inputs[0] - inputs[1]

    def backward(self, grad):
        return [grad, -grad]


class Multiply(_Merge):
    def _merge(self, inputs):
        out = inputs[0]
        for x in inputs[1:]:
            out = out * x
        return out

    def backward(self, grad):
        grads = []
        for i in range(len(self.last_inputs)):
            g = grad
            for j, x in enumerate(self.last_inputs):
                if j != i:
                    g = g * x
            grads.append(g)
        return grads


class Average(_Merge):
    def _merge(self, inputs):
        return Add._merge(self, inputs) / len(inputs)

    def backward(self, grad):
        n = len(self.last_inputs)
        return [grad / n for _ in range(n)]


class _Extremum(_Merge):
    """Element-wise max/min; the first input holding the extremum gets the gradient."""
    reducer = 'max'

    def _merge(self, inputs):
        xp = backend.get_array_module(inputs[0])
        stacked = xp.stack(inputs)
        self.winner = stacked.argmax(axis=0) if self.reducer == 'max' else stacked.argmin(axis=0)
        return stacked.max(axis=0) if self.reducer == 'max' else stacked.min(axis=0)

    def backward(self, grad):
        return [grad * (self.winner == i) for i in range(len(self.last_inputs))]


class Maximum(_Extremum):
    reducer = 'max'


class Minimum(_Extremum):
    reducer = 'min'


class Concatenate(_Merge):
    def __init__(self, axis: int = -1, name: Optional[str] = None, trainable: bool = True):
        super().__init__(name=name, trainable=trainable)
        self.axis = int(axis)

    def compute_output_shape(self, input_shape):
        ranks = {len(s) for s in input_shape}
        if len(ranks) != 1:
            raise ShapeMismatchError(f"Inputs of '{self.name}' have different ranks: {input_shape}")
        ndim = ranks.pop()
        if not -ndim <= self.axis < ndim or self.axis % ndim == 0:
            raise ValueError(f"Invalid concatenation axis {self.axis} for rank {ndim} inputs")
        axis = self.axis % ndim
        merged = list(input_shape[0])
        total = 0
        for shape in input_shape:
            for i, (a, b) in enumerate(zip(merged, shape)):
                if i != axis:
                    merged[i] = _merge_dims(a, b)
            total = None if total is None or shape[axis] is None else total + shape[axis]
        if -1 in merged:
            raise ShapeMismatchError(
                f"Inputs of '{self.name}' must match except on axis {self.axis}, got {input_shape}"
            )
        merged[axis] = total
        return tuple(merged)

    def _merge(self, inputs):
        xp = backend.get_array_module(inputs[0])
        return xp.concatenate(inputs, axis=self.axis)

    def backward(self, grad):
        xp = backend.get_array_module(grad)
        sizes = [x.shape[self.axis] for x in self.last_inputs]
        offsets = [sum(sizes[:i + 1]) for i in range(len(sizes) - 1)]
        return xp.split(grad, offsets, axis=self.axis)

    def get_config(self):
        config = super().get_config()
        config['axis'] = self.axis
        return config
