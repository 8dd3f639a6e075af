"""Shape arithmetic for convolution and pooling layers.

Shapes are tuples whose first entry is the batch dimension, ``None``
when unknown. Spatial sizes may also be ``None`` for variable-length
inputs; every helper here passes ``None`` through unchanged.
"""
from __future__ import annotations

from typing import Optional, Sequence, Tuple, Union

PADDING_MODES = ('valid', 'same', 'full')


def normalize_tuple(value: Union[int, Sequence[int]], n: int, name: str) -> Tuple[int, ...]:
    """Turn an int or an n-sequence of positive ints into an n-tuple."""
    if isinstance(value, int):
        values = (value,) * n
    else:
        try:
            values = tuple(value)
        except TypeError:
            raise ValueError(f"`{name}` must be an int or a sequence of {n} ints, got {value!r}")
        if len(values) != n:
            raise ValueError(f"`{name}` must have {n} elements, got {value!r}")
    for v in values:
        if not isinstance(v, int) or isinstance(v, bool) or v < 1:
            raise ValueError(f"`{name}` entries must be positive integers, got {value!r}")
    return values


def normalize_padding(value: str) -> str:
    padding = str(value).lower()
    if padding not in ('valid', 'same'):
        raise ValueError(f"`padding` must be 'valid' or 'same', got {value!r}")
    return padding


def check_strides_and_dilation(strides: Tuple[int, ...], dilation: Tuple[int, ...]) -> None:
    if any(s > 1 for s in strides) and any(d > 1 for d in dilation):
        raise ValueError(
            f"strides > 1 are not supported together with dilation_rate > 1 "
            f"(strides={strides}, dilation_rate={dilation})"
        )


def conv_output_length(length: Optional[int], filter_size: int, padding: str,
                       stride: int, dilation: int = 1) -> Optional[int]:
    """Output length of a convolution or pooling window along one axis."""
    if length is None:
        return None
    if padding not in PADDING_MODES:
        raise ValueError(f"Unknown padding {padding!r}")
    dilated = (filter_size - 1) * dilation + 1
    if padding == 'same':
        out = length
    elif padding == 'valid':
        out = length - dilated + 1
    else:
        out = length + dilated - 1
    if out <= 0:
        return 0
    return (out + stride - 1) // stride


def same_padding(length: int, filter_size: int, stride: int, dilation: int = 1) -> Tuple[int, int]:
    """(before, after) padding for 'same' mode; the odd pixel goes after."""
    dilated = (filter_size - 1) * dilation + 1
    out = (length + stride - 1) // stride
    total = max((out - 1) * stride + dilated - length, 0)
    before = total // 2
    return before, total - before


def spatial_padding(shape: Sequence[int], kernel: Sequence[int], strides: Sequence[int],
                    padding: str, dilation: Sequence[int] = None) -> Tuple[Tuple[int, int], ...]:
    """Per-axis (before, after) padding for a spatial shape."""
    dilation = dilation or (1,) * len(shape)
    if padding == 'valid':
        return tuple((0, 0) for _ in shape)
    return tuple(same_padding(l, k, s, d) for l, k, s, d in zip(shape, kernel, strides, dilation))


def conv_output_shape(input_shape: Sequence[Optional[int]], kernel: Sequence[int],
                      strides: Sequence[int], padding: str, dilation: Sequence[int],
                      channels: int) -> Tuple[Optional[int], ...]:
    """Output shape for a channels-last input ``(batch, *spatial, channels)``."""
    spatial = input_shape[1:-1]
    if len(spatial) != len(kernel):
        raise ValueError(
            f"Expected input with {len(kernel)} spatial dimensions, got shape {tuple(input_shape)}"
        )
    out = tuple(
        conv_output_length(l, k, padding, s, d)
        for l, k, s, d in zip(spatial, kernel, strides, dilation)
    )
    if any(o == 0 for o in out):
        raise ValueError(
            f"Input shape {tuple(input_shape)} is too small for kernel {tuple(kernel)} "
            f"with padding '{padding}'"
        )
    return (input_shape[0],) + out + (channels,)


def num_elements(shape: Sequence[Optional[int]]) -> Optional[int]:
    """Product of the non-batch dimensions, ``None`` if any is unknown."""
    total = 1
    for d in shape:
        if d is None:
            return None
        total *= d
    return total
