"""Tests for graph models built from symbolic tensors."""
import numpy as np
import pytest

from layerwise import Functional, Input, ShapeMismatchError
from layerwise.layers import Add, Concatenate, Dense, InputLayer, Multiply

from conftest import numerical_gradient, to_float64


def branching_model():
    inp = Input((3,), name='x')
    h = Dense(4, activation='tanh', name='trunk')(inp)
    a = Dense(2, activation='sigmoid', name='left')(h)
    b = Dense(2, name='right')(h)
    merged = Multiply(name='gate')([a, b])
    skip = Dense(2, name='skip')(inp)
    out = Dense(1, name='head')(Add(name='sum')([merged, skip]))
    return Functional(inp, out, name='branching')


class TestGraph:
    """Wiring, ordering and validation."""

    def test_topological_order(self):
        model = branching_model()
        names = [layer.name for layer in model.layers]
        assert names[0] == 'x'
        assert names[-1] == 'head'
        for layer in model.layers[1:]:
            for t in layer.inbound:
                assert names.index(t.layer.name) < names.index(layer.name)
        assert model.input_shape == (None, 3)
        assert model.output_shape == (None, 1)

    def test_inputs_must_be_symbolic(self):
        inp = Input((2,))
        with pytest.raises(TypeError):
            Functional(np.zeros((1, 2)), Dense(1)(inp))

    def test_inputs_must_come_from_input_layers(self):
        inp = Input((2,))
        h = Dense(2)(inp)
        with pytest.raises(ValueError):
            Functional(h, Dense(1)(h))

    def test_graph_disconnected(self):
        a = Input((2,))
        b = Input((2,))
        with pytest.raises(ValueError, match='disconnected'):
            Functional(a, Dense(1)(b))

    def test_shared_layer_rejected(self):
        inp = Input((2,))
        layer = Dense(2)
        layer(inp)
        with pytest.raises(ValueError):
            layer(inp)

    def test_duplicate_names(self):
        inp = Input((2,))
        out = Dense(1, name='d')(Dense(2, name='d')(inp))
        with pytest.raises(ValueError):
            Functional(inp, out)

    def test_eager_call(self):
        layer = Dense(2, kernel_initializer='ones')
        out = layer(np.ones((1, 3)))
        np.testing.assert_allclose(out, [[3.0, 3.0]])


class TestExecution:
    """Forward and backward passes through the graph."""

    def test_fan_out_gradients_accumulate(self):
        model = branching_model()
        for layer in model.layers:
            to_float64(layer)
        rng = np.random.default_rng(0)
        x = rng.standard_normal((5, 3))
        r = rng.standard_normal((5, 1))
        model.forward(x)
        dx = model.backward(r)
        grads = {layer.name: {k: np.array(g) for k, g in layer.grads.items()} for layer in model.layers}

        def objective():
            return float((model.forward(x) * r).sum())

        np.testing.assert_allclose(dx, numerical_gradient(objective, x), rtol=1e-4, atol=1e-6)
        for name in ('trunk', 'left', 'skip'):
            kernel = model.get_layer(name).params['kernel']
            np.testing.assert_allclose(grads[name]['kernel'], numerical_gradient(objective, kernel),
                                       rtol=1e-4, atol=1e-6)

    def test_multi_input_training(self):
        rng = np.random.default_rng(0)
        x1 = rng.standard_normal((64, 2)).astype(np.float32)
        x2 = rng.standard_normal((64, 3)).astype(np.float32)
        y = x1.sum(axis=1, keepdims=True) - x2[:, :1]
        a, b = Input((2,)), Input((3,))
        out = Dense(1)(Concatenate()([a, b]))
        model = Functional([a, b], out)
        assert model.input_shape == [(None, 2), (None, 3)]
        model.compile('sgd', 'mse', lr=0.05)
        history = model.fit([x1, x2], y, epochs=15, batch_size=16, verbose=False, seed=0)
        assert history['loss'][-1] < 0.1 * history['loss'][0]
        assert model.predict([x1, x2]).shape == (64, 1)

    def test_multi_input_count_checked(self):
        a, b = Input((2,)), Input((3,))
        model = Functional([a, b], Dense(1)(Concatenate()([a, b])))
        with pytest.raises(ValueError):
            model.predict(np.zeros((2, 2)))
        with pytest.raises(ShapeMismatchError):
            model.predict([np.zeros((2, 2)), np.zeros((2, 4))])

    def test_multi_output_predict_only(self):
        inp = Input((3,))
        h = Dense(4)(inp)
        model = Functional(inp, [Dense(1)(h), Dense(2, activation='softmax')(h)])
        assert model.num_outputs == 2
        first, second = model.predict(np.zeros((6, 3)), batch_size=4)
        assert first.shape == (6, 1) and second.shape == (6, 2)
        with pytest.raises(ValueError):
            model.compile('adam', 'mse')

    def test_backward_skips_missing_output_gradient(self):
        inp = Input((3,))
        h = Dense(4, name='shared')(inp)
        left, right = Dense(1, name='left')(h), Dense(1, name='right')(h)
        model = Functional(inp, [left, right])
        x = np.ones((2, 3), dtype=np.float32)
        model.forward(x)
        dx = model.backward([np.ones((2, 1), dtype=np.float32), None])
        expected = np.ones((2, 1)) @ model.get_layer('left').params['kernel'].T
        expected = expected @ model.get_layer('shared').params['kernel'].T
        np.testing.assert_allclose(dx, expected, rtol=1e-5)


class TestConfig:
    """Rebuilding a graph from its config."""

    def test_round_trip(self):
        model = branching_model()
        clone = Functional.from_config(model.get_config())
        assert [layer.name for layer in clone.layers] == [layer.name for layer in model.layers]
        clone.set_weights(model.get_weights())
        x = np.random.default_rng(1).standard_normal((4, 3))
        np.testing.assert_allclose(clone.predict(x), model.predict(x), rtol=1e-6)

    def test_inbound_names_recorded(self):
        config = branching_model().get_config()
        entries = {entry['config']['name']: entry for entry in config['layers']}
        assert entries['gate']['inbound'] == ['left', 'right']
        assert entries['x']['inbound'] == []
        assert config['inputs'] == ['x'] and config['outputs'] == ['head']

    def test_unknown_inbound(self):
        config = branching_model().get_config()
        config['layers'][-1]['inbound'] = ['missing']
        with pytest.raises(ValueError):
            Functional.from_config(config)

    def test_input_layer_config(self):
        layer = InputLayer((None, 4), name='seq')
        assert layer.get_config() == {'name': 'seq', 'input_shape': [None, 4]}
