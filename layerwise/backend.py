"""
Array engine selection.

CuPy is used as the GPU array engine when it is installed and a device
answers; NumPy is the CPU engine otherwise. Every layer asks this module
for the array module matching its inputs instead of importing numpy or
cupy directly.
"""
import os
import warnings

import numpy as np

try:
    import cupy as cp
    CUDA_AVAILABLE = True
    # An importable cupy without a working driver is common on CI machines
    try:
        cp.cuda.Device(0).use()
        cp.array([1, 2, 3])
    except Exception:
        CUDA_AVAILABLE = False
        cp = None
except ImportError:
    cp = None
    CUDA_AVAILABLE = False


def cuda_requested() -> bool:
    """Apply ``LAYERWISE_DISABLE_CUDA`` and ``LAYERWISE_FORCE_CUDA`` to the detected devices."""
    if os.environ.get('LAYERWISE_FORCE_CUDA', '0') == '1' and not CUDA_AVAILABLE:
        warnings.warn("CUDA was requested but is not available. Falling back to CPU.")
    return CUDA_AVAILABLE and os.environ.get('LAYERWISE_DISABLE_CUDA', '0') != '1'


USE_CUDA = cuda_requested()

FLOATX = np.float32


def get_array_module(arr=None):
    """``cupy`` or ``numpy`` matching ``arr``; the active engine when ``arr`` is None."""
    if not USE_CUDA:
        return np
    return cp if arr is None else cp.get_array_module(arr)


def to_cpu(arr):
    """Move array to host memory (NumPy)."""
    if USE_CUDA and isinstance(arr, cp.ndarray):
        return cp.asnumpy(arr)
    return arr


def to_gpu(arr):
    """Move array to the GPU if CUDA is in use."""
    if USE_CUDA and isinstance(arr, np.ndarray):
        return cp.asarray(arr)
    return arr


def asarray(arr, dtype=None):
    """Convert to the active engine's array type."""
    if USE_CUDA:
        return cp.asarray(arr, dtype=dtype)
    return np.asarray(arr, dtype=dtype)


def is_cuda_array(arr):
    return USE_CUDA and isinstance(arr, cp.ndarray)


def get_device_name():
    """Human readable name of the device the array engine runs on."""
    if USE_CUDA:
        try:
            device = cp.cuda.Device()
            props = cp.cuda.runtime.getDeviceProperties(device.id)
            name = props['name']
            if isinstance(name, bytes):
                name = name.decode()
            return f"CUDA:{device.id} ({name})"
        except Exception:
            return "CUDA (device info unavailable)"
    return "CPU"


def synchronize():
    """Wait for queued device work (no-op on CPU)."""
    if USE_CUDA:
        cp.cuda.Stream.null.synchronize()
