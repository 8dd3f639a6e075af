"""Native model persistence.

A saved model is two files side by side: ``<base>.json`` with the
architecture and training configuration, and the weights file itself.
Weights go to HDF5 (``.h5``/``.hdf5``, one group per layer) or to a NumPy
archive (``.npz``, keys ``"<layer>/<weight>"``).
"""
from __future__ import annotations

import json
import logging
import os
from typing import Dict

import h5py
import numpy as np

from . import losses, optim

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
HDF5_EXTENSIONS = ('.h5', '.hdf5')
NPZ_EXTENSIONS = ('.npz',)


def _weights_format(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    if ext in HDF5_EXTENSIONS:
        return 'hdf5'
    if ext in NPZ_EXTENSIONS:
        return 'npz'
    raise ValueError(f"Unsupported weights file extension '{ext}' for {path}; "
                     f"use one of {HDF5_EXTENSIONS + NPZ_EXTENSIONS}")


def _collect(model) -> Dict[str, Dict[str, np.ndarray]]:
    if not model.built:
        raise ValueError(f"Model '{model.name}' must be built before its weights can be saved")
    return {layer.name: dict(zip(layer.weight_names, layer.get_weights()))
            for layer in model.layers}


def save_weights(model, path: str):
    """Write every layer's weights (trainable and non-trainable) to ``path``."""
    fmt = _weights_format(path)
    weights = _collect(model)
    if fmt == 'hdf5':
        with h5py.File(path, 'w') as f:
            f.attrs['layer_names'] = [name.encode('utf8') for name in weights]
            f.attrs['format_version'] = FORMAT_VERSION
            for layer_name, arrays in weights.items():
                group = f.create_group(layer_name)
                group.attrs['weight_names'] = [name.encode('utf8') for name in arrays]
                for weight_name, value in arrays.items():
                    group.create_dataset(weight_name, data=value)
    else:
        np.savez(path, **{f"{layer_name}/{weight_name}": value
                          for layer_name, arrays in weights.items()
                          for weight_name, value in arrays.items()})
    logger.debug("Saved weights of %d layers to %s", len(weights), path)


def _decode(names) -> list:
    return [n.decode('utf8') if isinstance(n, bytes) else str(n) for n in names]


def read_weights(path: str) -> Dict[str, Dict[str, np.ndarray]]:
    """Weights file contents as ``{layer_name: {weight_name: array}}``."""
    fmt = _weights_format(path)
    if not os.path.exists(path):
        raise FileNotFoundError(f"Weights file not found: {path}")
    weights: Dict[str, Dict[str, np.ndarray]] = {}
    if fmt == 'hdf5':
        with h5py.File(path, 'r') as f:
            layer_names = _decode(f.attrs['layer_names']) if 'layer_names' in f.attrs else list(f.keys())
            for layer_name in layer_names:
                group = f[layer_name]
                weight_names = (_decode(group.attrs['weight_names'])
                                if 'weight_names' in group.attrs else list(group.keys()))
                weights[layer_name] = {n: group[n][()] for n in weight_names}
    else:
        with np.load(path) as data:
            for key in data.files:
                layer_name, _, weight_name = key.rpartition('/')
                weights.setdefault(layer_name, {})[weight_name] = data[key]
    return weights


def load_weights(model, path: str):
    """Load weights saved by ``save_weights`` into a built model, matched by layer name.

    Raises:
        ValueError: If a layer with weights has no entry in the file
        ShapeMismatchError: If a stored array does not match the layer's weight
    """
    if not model.built:
        raise ValueError(f"Model '{model.name}' must be built before loading weights")
    stored = read_weights(path)
    for layer in model.layers:
        names = layer.weight_names
        if not names:
            continue
        arrays = stored.get(layer.name)
        missing = [n for n in names if arrays is None or n not in arrays]
        if missing:
            raise ValueError(f"{path} has no weights {missing} for layer '{layer.name}'")
        layer.set_weights([arrays[n] for n in names])
    logger.debug("Loaded weights for model '%s' from %s", model.name, path)


def config_path(path: str) -> str:
    return os.path.splitext(path)[0] + '.json'


def save_model(model, path: str):
    """Save architecture, training configuration and weights.

    A path without an extension gets ``.h5``.
    """
    if not os.path.splitext(path)[1]:
        path += '.h5'
    save_weights(model, path)
    payload = model.to_config()
    payload['training_config'] = model.get_training_config()
    payload['format_version'] = FORMAT_VERSION
    with open(config_path(path), 'w', encoding='utf8') as f:
        json.dump(payload, f, indent=2)
    logger.info("Saved model '%s' to %s", model.name, path)
    return path


def model_from_config(config: dict):
    """Rebuild an uncompiled, freshly initialised model from ``Model.to_config()`` output."""
    from .functional import Functional
    from .sequential import Sequential

    registry = {'Sequential': Sequential, 'Functional': Functional}
    try:
        cls = registry[config['class']]
    except KeyError:
        raise ValueError(f"Unknown model class {config.get('class')!r}")
    return cls.from_config(config['config'])


def load_model(path: str, compile: bool = True):
    """Load a model written by ``save_model``."""
    if not os.path.splitext(path)[1]:
        path += '.h5'
    cfg_path = config_path(path)
    if not os.path.exists(cfg_path):
        raise FileNotFoundError(f"Model config not found: {cfg_path}")
    with open(cfg_path, 'r', encoding='utf8') as f:
        payload = json.load(f)
    model = model_from_config(payload)
    load_weights(model, path)
    training_config = payload.get('training_config')
    if compile and training_config:
        model.compile(optimizer=optim.deserialize(training_config['optimizer']),
                      loss=losses.deserialize(training_config['loss']),
                      metrics=training_config.get('metrics'))
    return model
