"""Inference on ONNX models through onnxruntime."""
from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import onnxruntime as ort

from . import backend
from .inference import InferenceModel

logger = logging.getLogger(__name__)

ONNX_DTYPES = {
    'tensor(float)': np.float32,
    'tensor(double)': np.float64,
    'tensor(float16)': np.float16,
    'tensor(int64)': np.int64,
    'tensor(int32)': np.int32,
    'tensor(int16)': np.int16,
    'tensor(int8)': np.int8,
    'tensor(uint8)': np.uint8,
    'tensor(bool)': np.bool_,
}


def _static_dim(d) -> Optional[int]:
    # symbolic ('batch', 'N') and unknown dims become None
    return d if isinstance(d, int) and d > 0 else None


def default_providers() -> List[str]:
    available = ort.get_available_providers()
    if backend.USE_CUDA and 'CUDAExecutionProvider' in available:
        return ['CUDAExecutionProvider', 'CPUExecutionProvider']
    return ['CPUExecutionProvider']


class OnnxInferenceModel(InferenceModel):
    """Wraps an ``onnxruntime.InferenceSession`` behind the ``predict`` surface.

    Args:
        path_or_bytes: Path to an ``.onnx`` file or the serialized model
        providers: Execution providers, CPU (or CUDA when the array engine
            runs on a GPU) by default
    """

    def __init__(self, path_or_bytes: Union[str, bytes], providers: Optional[Sequence[str]] = None,
                 session_options: Optional[ort.SessionOptions] = None):
        super().__init__()
        if isinstance(path_or_bytes, (str, os.PathLike)):
            path_or_bytes = os.fspath(path_or_bytes)
            if not os.path.exists(path_or_bytes):
                raise FileNotFoundError(f"ONNX model not found: {path_or_bytes}")
        self._session = ort.InferenceSession(path_or_bytes, sess_options=session_options,
                                             providers=list(providers or default_providers()))
        self._inputs = self._session.get_inputs()
        self._outputs = self._session.get_outputs()
        self._sample_shapes = [tuple(_static_dim(d) for d in (i.shape or [])[1:]) for i in self._inputs]
        logger.debug("Loaded ONNX model with inputs %s and outputs %s", self.input_names, self.output_names)

    @classmethod
    def load(cls, path: str, providers: Optional[Sequence[str]] = None) -> 'OnnxInferenceModel':
        return cls(path, providers=providers)

    # -- metadata ---------------------------------------------------------

    @property
    def input_names(self) -> List[str]:
        return [i.name for i in self._inputs]

    @property
    def output_names(self) -> List[str]:
        return [o.name for o in self._outputs]

    @property
    def input_shapes(self) -> List[Tuple[Optional[int], ...]]:
        """Full input shapes, batch axis included; unknown dims are ``None``."""
        return [(_static_dim(i.shape[0]) if i.shape else None,) + s
                for i, s in zip(self._inputs, self._sample_shapes)]

    @property
    def input_shape(self) -> Tuple[Optional[int], ...]:
        return self.input_shapes[0]

    @property
    def output_shapes(self) -> List[Tuple[Optional[int], ...]]:
        return [tuple(_static_dim(d) for d in (o.shape or [])) for o in self._outputs]

    @property
    def input_dtypes(self) -> List[type]:
        return [ONNX_DTYPES.get(i.type, np.float32) for i in self._inputs]

    def reshape(self, *dims: int):
        """Fix the per-sample shape of the first input, for models with symbolic dims."""
        if not dims or any(not isinstance(d, (int, np.integer)) or d < 1 for d in dims):
            raise ValueError(f"reshape() needs positive integer dimensions, got {dims}")
        declared = self._sample_shapes[0]
        if declared and len(declared) != len(dims):
            raise ValueError(f"Input '{self.input_names[0]}' has rank {len(declared) + 1}, "
                             f"cannot use per-sample shape {dims}")
        for have, want in zip(declared, dims):
            if have is not None and have != want:
                raise ValueError(f"Input '{self.input_names[0]}' has fixed sample shape {declared}, "
                                 f"got {dims}")
        self._sample_shapes[0] = tuple(int(d) for d in dims)

    # -- execution --------------------------------------------------------

    def _prepare(self, x, index: int) -> np.ndarray:
        x = np.asarray(backend.to_cpu(x))
        sample_shape = self._sample_shapes[index]
        if len(sample_shape) and all(d is not None for d in sample_shape):
            size = int(np.prod(sample_shape))
            if x.shape == sample_shape:
                x = x[None, ...]
            elif x.ndim == 1 and x.size == size:
                x = x.reshape((1,) + sample_shape)
            elif x.ndim == 2 and x.shape[1] == size and len(sample_shape) > 1:
                x = x.reshape((x.shape[0],) + sample_shape)
        elif x.ndim == len(sample_shape):
            x = x[None, ...]
        if x.ndim != len(sample_shape) + 1:
            raise ValueError(f"Input '{self.input_names[index]}' expects samples of shape "
                             f"{sample_shape}, got an array of shape {x.shape}")
        return x.astype(self.input_dtypes[index], copy=False)

    def _feeds(self, x) -> List[np.ndarray]:
        if isinstance(x, dict):
            missing = set(self.input_names) - set(x)
            if missing:
                raise ValueError(f"Missing inputs {sorted(missing)}")
            arrays = [x[name] for name in self.input_names]
        elif isinstance(x, (list, tuple)) and len(self._inputs) > 1:
            arrays = list(x)
        else:
            arrays = [x]
        if len(arrays) != len(self._inputs):
            raise ValueError(f"Model takes {len(self._inputs)} inputs, got {len(arrays)}")
        arrays = [self._prepare(a, i) for i, a in enumerate(arrays)]
        lengths = {len(a) for a in arrays}
        if len(lengths) != 1:
            raise ValueError(f"All inputs must have the same number of samples, got {sorted(lengths)}")
        return arrays

    def predict_all(self, x, batch_size: int = 32) -> Dict[str, np.ndarray]:
        """Run every output; returns ``{output_name: array}``."""
        self._check_open()
        arrays = self._feeds(x)
        n = len(arrays[0])
        fixed_batch = self.input_shapes[0][0]
        step = fixed_batch or batch_size
        if fixed_batch is not None and n % fixed_batch:
            raise ValueError(f"Model has a fixed batch size of {fixed_batch}, got {n} samples")
        chunks: List[List[np.ndarray]] = [[] for _ in self._outputs]
        for start in range(0, n, step):
            feed = {name: a[start:start + step] for name, a in zip(self.input_names, arrays)}
            for chunk, value in zip(chunks, self._session.run(self.output_names, feed)):
                chunk.append(np.asarray(value))
        return {name: np.concatenate(chunk, axis=0) for name, chunk in zip(self.output_names, chunks)}

    def predict(self, x, batch_size: int = 32) -> np.ndarray:
        """First model output for ``x`` (single samples and flat rows are reshaped)."""
        return self.predict_all(x, batch_size=batch_size)[self.output_names[0]]

    def close(self):
        self._session = None
        super().close()

    def __repr__(self):
        return f"<OnnxInferenceModel inputs={self.input_names} outputs={self.output_names}>"
