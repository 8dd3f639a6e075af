"""Import of Keras models saved as HDF5 (``model.save('m.h5')``) or JSON + HDF5 weights.

Keras 2 (tf.keras) and Keras 3 legacy-HDF5 layouts are both understood:
the architecture is the JSON ``model_config`` attribute of the file, the
weights live in the ``model_weights`` group (or at the root of a
weights-only file), one group per layer with a ``weight_names`` attribute
listing the arrays in Keras order. Only channels-last layers with a
layerwise counterpart can be imported.
"""
from __future__ import annotations

import inspect
import json
import logging
import os
from typing import Any, Dict, List

import h5py

from . import layers as layers_module
from . import losses, optim
from .exceptions import UnsupportedLayerError
from .functional import Functional
from .layers import InputLayer, Layer
from .metrics import NAME2METRIC
from .sequential import Sequential
from .utils import to_snake_case

logger = logging.getLogger(__name__)

KERAS_LAYER_ALIASES = {
    'MaxPooling1D': 'MaxPool1D',
    'MaxPooling2D': 'MaxPool2D',
    'AveragePooling1D': 'AvgPool1D',
    'AveragePooling2D': 'AvgPool2D',
    'AvgPool1D': 'AvgPool1D',
    'AvgPool2D': 'AvgPool2D',
    'GlobalAveragePooling1D': 'GlobalAvgPool1D',
    'GlobalAveragePooling2D': 'GlobalAvgPool2D',
    'GlobalMaxPooling1D': 'GlobalMaxPool1D',
    'GlobalMaxPooling2D': 'GlobalMaxPool2D',
    'Convolution1D': 'Conv1D',
    'Convolution2D': 'Conv2D',
}

KERAS_REGULARIZERS = {'L1': 'l1', 'L2': 'l2', 'L1L2': 'l1_l2', 'l1': 'l1', 'l2': 'l2', 'l1_l2': 'l1_l2'}

# Config entries describing the saved layer rather than its computation.
KERAS_METADATA_KEYS = {
    'dtype', 'dtype_policy', 'batch_input_shape', 'batch_shape', 'input_shape', 'sparse',
    'ragged', 'module', 'registered_name', 'build_config', 'seed', 'activity_regularizer',
    # checked before conversion
    'data_format', 'groups', 'interpolation', 'keepdims', 'noise_shape',
    'max_value', 'negative_slope', 'threshold',
}

# Options without a layerwise counterpart, accepted only at their Keras default.
KERAS_OPTION_DEFAULTS = {
    'kernel_constraint': None, 'bias_constraint': None, 'beta_constraint': None,
    'gamma_constraint': None, 'renorm': False, 'renorm_clipping': None, 'renorm_momentum': 0.99,
    'synchronized': False, 'fused': None, 'virtual_batch_size': None, 'adjustment': None,
    'lora_rank': None, 'lora_alpha': None, 'quantization_config': None,
}

KERAS_OPTIMIZER_ARGS = {
    'learning_rate': 'lr', 'lr': 'lr', 'beta_1': 'beta1', 'beta_2': 'beta2', 'epsilon': 'eps',
    'momentum': 'momentum', 'nesterov': 'nesterov', 'rho': 'rho', 'amsgrad': 'amsgrad',
    'centered': 'centered', 'initial_accumulator_value': 'initial_accumulator_value',
}


def _decode(value) -> str:
    return value.decode('utf8') if isinstance(value, bytes) else str(value)


def _accepted_kwargs(cls, config: Dict[str, Any]) -> Dict[str, Any]:
    accepted = inspect.signature(cls.__init__).parameters
    return {k: v for k, v in config.items() if k in accepted and k != 'self'}


def _check_dropped_options(class_name, layer_name, config, accepted):
    """Reject training options layerwise has no counterpart for unless they are at their Keras default."""
    for key, value in config.items():
        if key in accepted or key in KERAS_METADATA_KEYS:
            continue
        if key in KERAS_OPTION_DEFAULTS:
            if value != KERAS_OPTION_DEFAULTS[key]:
                raise UnsupportedLayerError(f"{class_name} '{layer_name}': {key}={value!r} is not supported")
        else:
            logger.warning("%s '%s': ignoring unknown Keras option %s=%r", class_name, layer_name, key, value)


# -- config conversion -----------------------------------------------------

def _convert_initializer(value):
    if value is None or isinstance(value, str):
        return value
    config = {k: v for k, v in value.get('config', {}).items() if k != 'dtype'}
    if config.get('distribution') == 'normal':
        config['distribution'] = 'truncated_normal'
    return {'class': to_snake_case(value.get('class_name', '')), 'config': config}


def _convert_regularizer(value):
    if value is None:
        return None
    if isinstance(value, str):
        return value
    class_name = value.get('class_name', '')
    try:
        name = KERAS_REGULARIZERS[class_name]
    except KeyError:
        raise UnsupportedLayerError(f"Unsupported Keras regularizer {class_name!r}")
    return {'class': name, 'config': {k: float(v) for k, v in value.get('config', {}).items()
                                      if k in ('l1', 'l2')}}


def _check_option(class_name, layer_name, config, key, allowed):
    value = config.get(key, allowed[0])
    if value not in allowed:
        raise UnsupportedLayerError(f"{class_name} '{layer_name}': {key}={value!r} is not supported")


def _batch_shape(config):
    shape = config.get('batch_input_shape', config.get('batch_shape'))
    if shape is None and config.get('input_shape') is not None:
        shape = [None] + list(config['input_shape'])
    return shape


def convert_layer_config(layer_config: Dict[str, Any]) -> Layer:
    """Create the layerwise layer for one Keras layer config ``{'class_name', 'config'}``."""
    class_name = layer_config['class_name']
    config = dict(layer_config.get('config', {}))
    name = config.get('name')

    for key in ('kernel_initializer', 'bias_initializer', 'beta_initializer', 'gamma_initializer',
                'moving_mean_initializer', 'moving_variance_initializer'):
        if key in config:
            config[key] = _convert_initializer(config[key])
    for key in ('kernel_regularizer', 'bias_regularizer', 'beta_regularizer', 'gamma_regularizer'):
        if key in config:
            config[key] = _convert_regularizer(config[key])
    if config.get('activity_regularizer') is not None:
        raise UnsupportedLayerError(f"{class_name} '{name}': activity regularizers are not supported")
    _check_option(class_name, name, config, 'data_format', ['channels_last', None])

    if class_name == 'InputLayer':
        shape = _batch_shape(config)
        if shape is None:
            raise UnsupportedLayerError(f"InputLayer '{name}' has no input shape")
        return InputLayer(shape[1:], name=name)
    if class_name == 'ReLU':
        if config.get('negative_slope') or config.get('threshold'):
            raise UnsupportedLayerError(f"ReLU '{name}': negative_slope/threshold are not supported")
        max_value = config.get('max_value')
        if max_value not in (None, 6, 6.0):
            raise UnsupportedLayerError(f"ReLU '{name}': max_value={max_value} is not supported")
        return layers_module.Activation('relu6' if max_value else 'relu', name=name,
                                        trainable=config.get('trainable', True))
    if class_name == 'Softmax':
        return layers_module.Activation('softmax', name=name)
    if class_name == 'LeakyReLU' and 'negative_slope' in config:
        config['alpha'] = config.pop('negative_slope')
    if class_name in ('Conv1D', 'Conv2D'):
        _check_option(class_name, name, config, 'groups', [1])
    if class_name == 'UpSampling2D':
        _check_option(class_name, name, config, 'interpolation', ['nearest'])
    if class_name.startswith('Global'):
        _check_option(class_name, name, config, 'keepdims', [False])
    if class_name == 'Dropout' and config.get('noise_shape') is not None:
        raise UnsupportedLayerError(f"Dropout '{name}': noise_shape is not supported")
    if class_name == 'BatchNormalization' and isinstance(config.get('axis'), (list, tuple)):
        if len(config['axis']) != 1:
            raise UnsupportedLayerError(f"BatchNormalization '{name}' over several axes is not supported")
        config['axis'] = config['axis'][0]

    cls = layers_module.NAME2LAYER.get(KERAS_LAYER_ALIASES.get(class_name, class_name))
    if cls is None or cls is InputLayer:
        raise UnsupportedLayerError(f"Keras layer class {class_name!r} ('{name}') has no layerwise counterpart")
    kwargs = _accepted_kwargs(cls, config)
    _check_dropped_options(class_name, name, config, kwargs)
    try:
        return cls(**kwargs)
    except (TypeError, ValueError) as e:
        raise UnsupportedLayerError(f"Cannot convert {class_name} '{name}': {e}") from e


def _inbound_names(layer_config: Dict[str, Any]) -> List[str]:
    """Names of the layers feeding a Keras functional layer."""
    nodes = layer_config.get('inbound_nodes') or []
    if len(nodes) > 1:
        raise UnsupportedLayerError(f"Layer '{layer_config['config'].get('name')}' is shared; "
                                    f"shared layers are not supported")
    if not nodes:
        return []
    node = nodes[0]
    if isinstance(node, dict):
        # Keras 3: {'args': [tensor or [tensors]], 'kwargs': {...}}
        names = []

        def visit(item):
            if isinstance(item, dict) and item.get('class_name') == '__keras_tensor__':
                names.append(item['config']['keras_history'][0])
            elif isinstance(item, (list, tuple)):
                for sub in item:
                    visit(sub)

        visit(node.get('args', []))
        return names
    # Keras 2: [[layer_name, node_index, tensor_index, kwargs], ...]
    return [entry[0] for entry in node]


def _endpoint_names(endpoints) -> List[str]:
    if endpoints and isinstance(endpoints[0], str):
        endpoints = [endpoints]
    return [e[0] for e in endpoints]


def _sequential_from_keras(config) -> Sequential:
    if isinstance(config, list):
        config = {'layers': config}
    model = Sequential(name=config.get('name'))
    for i, layer_config in enumerate(config['layers']):
        shape = _batch_shape(layer_config.get('config', {}))
        if i == 0 and layer_config['class_name'] != 'InputLayer' and shape is not None:
            model.add(InputLayer(shape[1:], name=f"{layer_config['config'].get('name', 'input')}_input"))
        model.add(convert_layer_config(layer_config))
    if not model.built and config.get('build_input_shape') is not None:
        model.build(tuple(config['build_input_shape']))
    return model


def _functional_from_keras(config) -> Functional:
    tensors = {}
    for layer_config in config['layers']:
        layer = convert_layer_config(layer_config)
        if isinstance(layer, InputLayer):
            tensors[layer.name] = layer.output
            continue
        inbound = [tensors[n] for n in _inbound_names(layer_config)]
        if not inbound:
            raise UnsupportedLayerError(f"Layer '{layer.name}' has no inbound layers")
        tensors[layer.name] = layer(inbound if layer.multi_input else inbound[0])
    inputs = [tensors[n] for n in _endpoint_names(config['input_layers'])]
    outputs = [tensors[n] for n in _endpoint_names(config['output_layers'])]
    return Functional(inputs, outputs, name=config.get('name'))


def model_from_keras_config(config: Dict[str, Any]):
    """Build a layerwise model from a Keras model config ``{'class_name', 'config'}``."""
    class_name = config.get('class_name')
    if class_name == 'Sequential':
        return _sequential_from_keras(config['config'])
    if class_name in ('Functional', 'Model'):
        return _functional_from_keras(config['config'])
    raise UnsupportedLayerError(f"Unsupported Keras model class {class_name!r}")


def model_from_keras_json(path_or_json: str):
    """Build a model from ``model.to_json()`` output, given as a path or a JSON string."""
    if os.path.exists(path_or_json):
        with open(path_or_json, 'r', encoding='utf8') as f:
            config = json.load(f)
    else:
        config = json.loads(path_or_json)
    return model_from_keras_config(config)


# -- weights ---------------------------------------------------------------

def load_keras_weights(model, path: str):
    """Copy the weights of a Keras HDF5 file into ``model``, matched by layer name."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Keras weights file not found: {path}")
    with h5py.File(path, 'r') as f:
        group = f['model_weights'] if 'model_weights' in f else f
        if 'layer_names' not in group.attrs:
            raise ValueError(f"{path} is not a Keras HDF5 weights file (no 'layer_names' attribute)")
        loaded = 0
        for layer_name in (_decode(n) for n in group.attrs['layer_names']):
            layer_group = group[layer_name]
            weight_names = [_decode(n) for n in layer_group.attrs.get('weight_names', [])]
            if not weight_names:
                continue
            try:
                layer = model.get_layer(layer_name)
            except ValueError:
                raise ValueError(f"{path} has weights for layer '{layer_name}' which the model lacks") from None
            layer.set_weights([layer_group[n][()] for n in weight_names])
            loaded += 1
    logger.info("Loaded Keras weights for %d layers from %s", loaded, path)


def _compile_from_keras(model, training_config: Dict[str, Any]):
    opt_config = training_config.get('optimizer_config', {})
    opt_name = opt_config.get('class_name', 'adam').lower()
    cls = optim.NAME2OPT.get(opt_name)
    if cls is None:
        logger.warning("Keras optimizer %r has no layerwise counterpart, model left uncompiled", opt_name)
        return
    opt_kwargs = {KERAS_OPTIMIZER_ARGS[k]: v for k, v in opt_config.get('config', {}).items()
                  if k in KERAS_OPTIMIZER_ARGS and not isinstance(v, dict)}

    loss = training_config.get('loss')
    if isinstance(loss, dict):
        loss_cls = losses.NAME2LOSS.get(to_snake_case(loss.get('class_name', '')))
        if loss_cls is None:
            raise UnsupportedLayerError(f"Unsupported Keras loss {loss.get('class_name')!r}")
        loss = loss_cls(**_accepted_kwargs(loss_cls, loss.get('config', {})))

    metrics = []
    for entry in training_config.get('metrics') or []:
        while isinstance(entry, list) and len(entry) == 1:
            entry = entry[0]
        if isinstance(entry, dict):
            entry = entry.get('config', {}).get('name', entry.get('class_name'))
        if isinstance(entry, str) and entry.lower() in NAME2METRIC:
            metrics.append(entry)
    model.compile(optimizer=cls(**_accepted_kwargs(cls, opt_kwargs)), loss=loss, metrics=metrics)


def load_keras_model(path: str, compile: bool = False):
    """Load architecture and weights from a Keras HDF5 model file.

    With ``compile=True`` the stored optimizer, loss and metrics are mapped
    onto their layerwise counterparts where they exist.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Keras model file not found: {path}")
    with h5py.File(path, 'r') as f:
        if 'model_config' not in f.attrs:
            raise ValueError(f"{path} holds no model architecture; use load_keras_weights() "
                             f"with a model built from its JSON config")
        config = json.loads(_decode(f.attrs['model_config']))
        training_config = f.attrs.get('training_config')
        training_config = json.loads(_decode(training_config)) if training_config is not None else None
        keras_version = _decode(f.attrs.get('keras_version', 'unknown'))
    logger.debug("Importing Keras %s model from %s", keras_version, path)
    model = model_from_keras_config(config)
    load_keras_weights(model, path)
    if compile and training_config:
        _compile_from_keras(model, training_config)
    return model
