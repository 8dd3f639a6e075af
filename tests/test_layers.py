"""Tests for layer shapes, argument validation and backward passes."""
import numpy as np
import pytest

from layerwise import layers
from layerwise.exceptions import ShapeMismatchError
from layerwise.layers import (Activation, Add, AvgPool1D, AvgPool2D, BatchNormalization, Concatenate,
                              Conv1D, Conv2D, Cropping2D, Dense, Dropout, Flatten, GlobalAvgPool1D,
                              GlobalAvgPool2D, GlobalMaxPool2D, Input, InputLayer, LeakyReLU, MaxPool1D,
                              MaxPool2D, Maximum, Multiply, Permute, Reshape, Subtract, UpSampling2D,
                              ZeroPadding2D)

from conftest import check_layer_gradients, numerical_gradient, to_float64


class TestLayerBase:
    """Naming, weights and configuration shared by all layers."""

    def test_default_names_are_unique(self):
        assert [Dense(2).name for _ in range(3)] == ['dense', 'dense_1', 'dense_2']
        assert Conv2D(1, 3).name == 'conv2d'
        assert BatchNormalization().name == 'batch_normalization'

    def test_set_weights_checks_shapes(self):
        layer = Dense(3)
        layer.build((None, 4))
        with pytest.raises(ShapeMismatchError):
            layer.set_weights([np.zeros((4, 2)), np.zeros(3)])
        with pytest.raises(ShapeMismatchError):
            layer.set_weights([np.zeros((4, 3))])

    def test_set_weights_is_in_place(self):
        layer = Dense(3)
        layer.build((None, 4))
        kernel = layer.params['kernel']
        layer.set_weights([np.ones((4, 3)), np.zeros(3)])
        assert layer.params['kernel'] is kernel
        np.testing.assert_array_equal(kernel, np.ones((4, 3)))

    def test_count_params(self):
        layer = Dense(3)
        layer.build((None, 4))
        assert layer.count_params() == 15
        layer.trainable = False
        assert layer.count_params(trainable_only=True) == 0

    def test_config_round_trip(self):
        layer = Conv2D(8, (3, 5), strides=2, padding='same', activation='relu', name='c')
        clone = layers.deserialize(layers.serialize(layer))
        assert isinstance(clone, Conv2D)
        assert clone.get_config() == layer.get_config()

    def test_unknown_layer_class(self):
        with pytest.raises(ValueError):
            layers.deserialize({'class': 'Transformer', 'config': {}})

    def test_eager_call_builds_the_layer(self, rng):
        layer = Dense(2)
        y = layer(rng.standard_normal((5, 3)).astype(np.float32))
        assert layer.built and y.shape == (5, 2)

    def test_layer_connects_only_once(self):
        inp = Input((4,))
        layer = Dense(2)
        layer(inp)
        with pytest.raises(ValueError):
            layer(inp)


class TestCoreLayers:
    """Dense, activation and dropout layers."""

    def test_dense_rejects_bad_units(self):
        with pytest.raises(ValueError):
            Dense(0)

    def test_dense_needs_known_features(self):
        with pytest.raises(ShapeMismatchError):
            Dense(2).build((None, None))

    def test_dense_gradients(self, rng):
        check_layer_gradients(Dense(3, activation='tanh'), rng.standard_normal((4, 5)))

    def test_dense_on_sequences(self, rng):
        check_layer_gradients(Dense(2), rng.standard_normal((2, 3, 4)))

    def test_activation_layer_gradients(self, rng):
        check_layer_gradients(Activation('softmax'), rng.standard_normal((3, 4)))

    def test_leaky_relu(self, rng):
        y = LeakyReLU(alpha=0.1).forward(np.array([[-2.0, 3.0]]))
        np.testing.assert_allclose(y, [[-0.2, 3.0]])
        check_layer_gradients(LeakyReLU(), rng.standard_normal((3, 4)))

    def test_dropout_inference_is_identity(self, rng):
        x = rng.standard_normal((4, 8))
        np.testing.assert_array_equal(Dropout(0.5).forward(x, training=False), x)

    def test_dropout_training_scales_kept_units(self):
        x = np.ones((200, 50), dtype=np.float32)
        y = Dropout(0.25, seed=0).forward(x, training=True)
        kept = y[y != 0]
        np.testing.assert_allclose(kept, 1 / 0.75, rtol=1e-6)
        assert 0.2 < (y == 0).mean() < 0.3

    def test_dropout_rate_bounds(self):
        with pytest.raises(ValueError):
            Dropout(1.0)

    def test_input_layer(self):
        layer = InputLayer((28, 28, 1))
        assert layer.output_shape == (None, 28, 28, 1)
        with pytest.raises(ValueError):
            InputLayer((0, 3))


class TestReshapingLayers:
    """Flatten, Reshape, Permute, padding, cropping and upsampling."""

    def test_flatten(self, rng):
        layer = Flatten()
        layer.build((None, 2, 3, 4))
        assert layer.output_shape == (None, 24)
        check_layer_gradients(Flatten(), rng.standard_normal((2, 2, 3, 4)))

    def test_reshape_infers_minus_one(self):
        layer = Reshape((-1, 4))
        layer.build((None, 2, 6))
        assert layer.output_shape == (None, 3, 4)

    def test_reshape_size_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            Reshape((5,)).build((None, 2, 3))

    def test_reshape_single_unknown(self):
        with pytest.raises(ValueError):
            Reshape((-1, -1))

    def test_permute(self, rng):
        layer = Permute((2, 1))
        layer.build((None, 3, 5))
        assert layer.output_shape == (None, 5, 3)
        check_layer_gradients(Permute((3, 1, 2)), rng.standard_normal((2, 2, 3, 4)))

    def test_zero_padding(self, rng):
        layer = ZeroPadding2D(((1, 2), (0, 1)))
        layer.build((None, 4, 4, 2))
        assert layer.output_shape == (None, 7, 5, 2)
        check_layer_gradients(ZeroPadding2D(1), rng.standard_normal((2, 3, 3, 2)))

    def test_cropping(self, rng):
        layer = Cropping2D(((1, 0), (1, 1)))
        layer.build((None, 5, 5, 1))
        assert layer.output_shape == (None, 4, 3, 1)
        check_layer_gradients(Cropping2D(1), rng.standard_normal((2, 4, 4, 2)))

    def test_upsampling(self, rng):
        x = np.arange(4, dtype=np.float32).reshape(1, 2, 2, 1)
        y = UpSampling2D(2).forward(x)
        assert y.shape == (1, 4, 4, 1)
        np.testing.assert_array_equal(y[0, :2, :2, 0], np.zeros((2, 2)))
        check_layer_gradients(UpSampling2D((2, 3)), rng.standard_normal((2, 2, 2, 3)))


class TestConvolution:
    """Conv1D / Conv2D output shapes and gradients."""

    @pytest.mark.parametrize('kwargs, expected', [
        ({'kernel_size': 3}, (None, 26, 26, 8)),
        ({'kernel_size': 3, 'padding': 'same'}, (None, 28, 28, 8)),
        ({'kernel_size': 3, 'strides': 2}, (None, 13, 13, 8)),
        ({'kernel_size': 3, 'dilation_rate': 2}, (None, 24, 24, 8)),
        ({'kernel_size': (5, 1), 'strides': (1, 2), 'padding': 'same'}, (None, 28, 14, 8)),
    ])
    def test_conv2d_output_shape(self, kwargs, expected):
        layer = Conv2D(8, **kwargs)
        layer.build((None, 28, 28, 1))
        assert layer.output_shape == expected
        assert layer.params['kernel'].shape == layer.kernel_size + (1, 8)

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            Conv2D(0, 3)
        with pytest.raises(ValueError):
            Conv2D(4, 3, padding='causal')
        with pytest.raises(ValueError):
            Conv2D(4, 3, strides=2, dilation_rate=2)

    def test_rank_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            Conv2D(4, 3).build((None, 28, 28))

    def test_matches_direct_convolution(self, rng):
        x = rng.standard_normal((2, 5, 6, 3))
        layer = Conv2D(4, (2, 3))
        layer.build((None, 5, 6, 3))
        to_float64(layer)
        y = layer.forward(x)
        k = layer.params['kernel']
        expected = np.zeros((2, 4, 4, 4))
        for i in range(4):
            for j in range(4):
                expected[:, i, j, :] = np.einsum('nhwc,hwcf->nf', x[:, i:i + 2, j:j + 3, :], k)
        np.testing.assert_allclose(y, expected, rtol=1e-10)

    @pytest.mark.parametrize('kwargs', [
        {'kernel_size': 3},
        {'kernel_size': 3, 'padding': 'same', 'activation': 'relu'},
        {'kernel_size': (2, 3), 'strides': 2, 'padding': 'same'},
        {'kernel_size': 2, 'dilation_rate': 2},
    ])
    def test_conv2d_gradients(self, kwargs, rng):
        check_layer_gradients(Conv2D(3, **kwargs), rng.standard_normal((2, 6, 5, 2)))

    def test_conv1d(self, rng):
        layer = Conv1D(4, 3, strides=2, padding='same')
        layer.build((None, 9, 2))
        assert layer.output_shape == (None, 5, 4)
        assert layer.params['kernel'].shape == (3, 2, 4)
        check_layer_gradients(Conv1D(3, 3, padding='same'), rng.standard_normal((2, 7, 2)))


class TestPooling:
    """Local and global pooling."""

    def test_max_pool_values(self):
        x = np.arange(16, dtype=np.float32).reshape(1, 4, 4, 1)
        y = MaxPool2D(2).forward(x)
        np.testing.assert_array_equal(y[0, :, :, 0], [[5, 7], [13, 15]])

    def test_same_avg_pool_excludes_padding(self):
        x = np.ones((1, 3, 3, 1), dtype=np.float32)
        layer = AvgPool2D(2, padding='same')
        y = layer.forward(x)
        assert y.shape == (1, 2, 2, 1)
        np.testing.assert_allclose(y, np.ones_like(y))

    def test_output_shapes(self):
        layer = MaxPool2D(3, strides=2, padding='same')
        layer.build((None, 7, 7, 4))
        assert layer.output_shape == (None, 4, 4, 4)
        layer = MaxPool1D(2)
        layer.build((None, 9, 3))
        assert layer.output_shape == (None, 4, 3)

    @pytest.mark.parametrize('layer_cls, kwargs', [
        (MaxPool2D, {'pool_size': 2}),
        (MaxPool2D, {'pool_size': 3, 'strides': 2, 'padding': 'same'}),
        (AvgPool2D, {'pool_size': 2}),
        (AvgPool2D, {'pool_size': 2, 'padding': 'same'}),
    ])
    def test_pool2d_gradients(self, layer_cls, kwargs, rng):
        check_layer_gradients(layer_cls(**kwargs), rng.standard_normal((2, 5, 5, 2)))

    def test_pool1d_gradients(self, rng):
        check_layer_gradients(MaxPool1D(2), rng.standard_normal((2, 6, 3)))
        check_layer_gradients(AvgPool1D(3, strides=1, padding='same'), rng.standard_normal((2, 6, 3)))

    def test_global_pools(self, rng):
        x = rng.standard_normal((2, 3, 4, 5))
        np.testing.assert_allclose(GlobalAvgPool2D().forward(x), x.mean(axis=(1, 2)))
        np.testing.assert_allclose(GlobalMaxPool2D().forward(x), x.max(axis=(1, 2)))
        check_layer_gradients(GlobalAvgPool2D(), x)
        check_layer_gradients(GlobalMaxPool2D(), x)
        check_layer_gradients(GlobalAvgPool1D(), rng.standard_normal((2, 6, 3)))


class TestBatchNormalization:
    """Batch statistics, moving averages and frozen behaviour."""

    def test_training_normalizes_batch(self, rng):
        layer = BatchNormalization()
        x = rng.standard_normal((64, 3)) * 5 + 2
        layer.build((None, 3))
        y = layer.forward(x, training=True)
        np.testing.assert_allclose(y.mean(axis=0), np.zeros(3), atol=1e-5)
        np.testing.assert_allclose(y.std(axis=0), np.ones(3), atol=1e-3)

    def test_moving_statistics_update(self, rng):
        layer = BatchNormalization(momentum=0.5)
        x = rng.standard_normal((32, 2)) + 4
        layer.build((None, 2))
        layer.forward(x, training=True)
        np.testing.assert_allclose(layer.buffers['moving_mean'], 0.5 * x.mean(axis=0), rtol=1e-5)

    def test_weight_order(self):
        layer = BatchNormalization()
        layer.build((None, 4, 4, 3))
        assert layer.weight_names == ['gamma', 'beta', 'moving_mean', 'moving_variance']
        assert layer.count_params() == 12
        assert layer.count_params(trainable_only=True) == 6

    def test_frozen_layer_uses_moving_statistics(self, rng):
        layer = BatchNormalization()
        layer.build((None, 3))
        layer.trainable = False
        x = rng.standard_normal((8, 3))
        np.testing.assert_allclose(layer.forward(x, training=True), x / np.sqrt(1 + 1e-3), rtol=1e-5)

    def test_training_gradients(self, rng):
        check_layer_gradients(BatchNormalization(), rng.standard_normal((6, 4)), training=True)

    def test_inference_gradients(self, rng):
        check_layer_gradients(BatchNormalization(), rng.standard_normal((2, 3, 3, 2)))

    def test_invalid_axis(self):
        with pytest.raises(ShapeMismatchError):
            BatchNormalization(axis=0).build((None, 3))


class TestMergeLayers:
    """Element-wise merges and concatenation."""

    def _check_merge(self, layer, arrays, rng):
        layer.build([(None,) + a.shape[1:] for a in arrays])
        y = layer.forward(arrays)
        r = rng.standard_normal(y.shape)
        grads = layer.backward(r)
        for a, g in zip(arrays, grads):
            numeric = numerical_gradient(lambda: float((layer.forward(arrays) * r).sum()), a)
            np.testing.assert_allclose(g, numeric, rtol=1e-5, atol=1e-7)
        return y

    def test_add(self, rng):
        a, b, c = (rng.standard_normal((2, 3)) for _ in range(3))
        np.testing.assert_allclose(self._check_merge(Add(), [a, b, c], rng), a + b + c)

    def test_subtract(self, rng):
        a, b = (rng.standard_normal((2, 3)) for _ in range(2))
        np.testing.assert_allclose(self._check_merge(Subtract(), [a, b], rng), a - b)

    def test_subtract_needs_two_inputs(self):
        with pytest.raises(ValueError):
            Subtract().build([(None, 3)] * 3)

    def test_multiply(self, rng):
        a, b = (rng.standard_normal((2, 3)) for _ in range(2))
        np.testing.assert_allclose(self._check_merge(Multiply(), [a, b], rng), a * b)

    def test_maximum(self, rng):
        a, b = (rng.standard_normal((2, 3)) for _ in range(2))
        np.testing.assert_allclose(self._check_merge(Maximum(), [a, b], rng), np.maximum(a, b))

    def test_concatenate(self, rng):
        a, b = rng.standard_normal((2, 3, 2)), rng.standard_normal((2, 3, 4))
        y = self._check_merge(Concatenate(axis=-1), [a, b], rng)
        assert y.shape == (2, 3, 6)

    def test_concatenate_shape_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            Concatenate(axis=-1).build([(None, 3, 2), (None, 4, 2)])

    def test_elementwise_shape_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            Add().build([(None, 3), (None, 4)])

    def test_single_input_rejected(self):
        with pytest.raises(ValueError):
            Add().build([(None, 3)])
