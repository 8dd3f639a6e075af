"""Layer classes and the name registry used for (de)serialization."""
from .base import Layer, SymbolicTensor
from .core import Activation, Dense, Dropout, Input, InputLayer, LeakyReLU
from .reshaping import Cropping2D, Flatten, Permute, Reshape, UpSampling2D, ZeroPadding2D
from .conv import Conv1D, Conv2D
from .pooling import (AvgPool1D, AvgPool2D, GlobalAvgPool1D, GlobalAvgPool2D, GlobalMaxPool1D,
                      GlobalMaxPool2D, MaxPool1D, MaxPool2D)
from .normalization import BatchNormalization
from .merge import Add, Average, Concatenate, Maximum, Minimum, Multiply, Subtract

NAME2LAYER = {cls.__name__: cls for cls in [
    InputLayer, Dense, Activation, LeakyReLU, Dropout,
    Flatten, Reshape, Permute, ZeroPadding2D, Cropping2D, UpSampling2D,
    Conv1D, Conv2D,
    MaxPool1D, MaxPool2D, AvgPool1D, AvgPool2D,
    GlobalAvgPool1D, GlobalAvgPool2D, GlobalMaxPool1D, GlobalMaxPool2D,
    BatchNormalization,
    Add, Subtract, Multiply, Average, Maximum, Minimum, Concatenate,
]}


def serialize(layer: Layer) -> dict:
    return layer.to_config()


def deserialize(config: dict) -> Layer:
    try:
        cls = NAME2LAYER[config['class']]
    except KeyError:
        raise ValueError(f"Unknown layer class {config.get('class')!r}")
    return cls.from_config(dict(config.get('config', {})))


__all__ = ['Layer', 'SymbolicTensor', 'NAME2LAYER', 'serialize', 'deserialize'] + [
    'Input'] + list(NAME2LAYER)
