"""layerwise - Keras-style model building, training and model import over NumPy/CuPy and ONNX Runtime.

Provides:
- Layer classes (Dense, Conv1D/2D, pooling, BatchNormalization, merge and reshaping layers)
- Sequential and Functional models with compile / fit / evaluate / predict / save / load
- Optimizers, losses, metrics, initializers, regularizers and training callbacks
- Dataset utilities with threaded prefetching and MNIST-style IDX gzip loaders
- Import of Keras HDF5 / JSON models and inference on ONNX models via onnxruntime
"""
import logging as _logging
import os as _os

__version__ = '0.4.0'


def _auto_configure_threads():
    """Set BLAS / OpenMP thread counts to all available CPU cores if user
    hasn't specified them. Must run before NumPy loads heavy backends.

    Environment vars respected (won't override if already set):
    OMP_NUM_THREADS, OPENBLAS_NUM_THREADS, MKL_NUM_THREADS, NUMEXPR_NUM_THREADS.
    Disable by setting LAYERWISE_DISABLE_AUTO_THREADS=1.
    """
    if _os.environ.get('LAYERWISE_DISABLE_AUTO_THREADS') == '1':
        return
    cores = _os.cpu_count() or 1
    for var in [
        'OMP_NUM_THREADS', 'OPENBLAS_NUM_THREADS', 'MKL_NUM_THREADS', 'NUMEXPR_NUM_THREADS'
    ]:
        if var not in _os.environ:
            _os.environ[var] = str(cores)


_auto_configure_threads()
_logging.getLogger(__name__).addHandler(_logging.NullHandler())

from . import (activations, backend, callbacks, data, initializers, io, layers, losses,  # noqa: E402
               metrics, optim, regularizers, utils)
from .exceptions import (ModelClosedError, NotCompiledError, ShapeMismatchError,  # noqa: E402
                         UnsupportedLayerError)
from .functional import Functional  # noqa: E402
from .inference import InferenceModel  # noqa: E402
from .io import load_model, save_model  # noqa: E402
from .keras_import import load_keras_model, load_keras_weights, model_from_keras_json  # noqa: E402
from .layers import Input  # noqa: E402
from .model import Model  # noqa: E402
from .onnx_model import OnnxInferenceModel  # noqa: E402
from .sequential import Sequential  # noqa: E402

__all__ = [
    'activations', 'backend', 'callbacks', 'data', 'initializers', 'io', 'layers', 'losses',
    'metrics', 'optim', 'regularizers', 'utils',
    'Model', 'Sequential', 'Functional', 'Input', 'InferenceModel', 'OnnxInferenceModel',
    'save_model', 'load_model', 'load_keras_model', 'load_keras_weights', 'model_from_keras_json',
    'ShapeMismatchError', 'NotCompiledError', 'UnsupportedLayerError', 'ModelClosedError',
]
