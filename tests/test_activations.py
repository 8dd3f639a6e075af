"""Tests for activation functions."""
import numpy as np
import pytest

from layerwise import activations

from conftest import numerical_gradient


class TestSoftsign:
    """Softsign x / (1 + |x|)."""

    def test_forward_values(self):
        x = np.array([-100, -10, -1, 0, 1, 10, 100], dtype=np.float32)
        expected = np.array([-0.990099, -0.90909094, -0.5, 0.0, 0.5, 0.90909094, 0.990099],
                            dtype=np.float32)
        y = activations.get('softsign').forward(x)
        np.testing.assert_allclose(y, expected, rtol=1e-6)

    def test_gradient_at_zero_is_one(self):
        act = activations.Softsign()
        x = np.array([0.0])
        g = act.backward(x, act.forward(x), np.ones_like(x))
        assert g[0] == pytest.approx(1.0)


class TestKnownValues:
    """Spot values for the closed-form activations."""

    def test_relu6_clips(self):
        y = activations.get('relu6').forward(np.array([-3.0, 2.0, 9.0]))
        np.testing.assert_allclose(y, [0.0, 2.0, 6.0])

    def test_hard_sigmoid(self):
        y = activations.get('hard_sigmoid').forward(np.array([-5.0, 0.0, 1.0, 5.0]))
        np.testing.assert_allclose(y, [0.0, 0.5, 0.7, 1.0])

    def test_softmax_rows_sum_to_one(self, rng):
        y = activations.get('softmax').forward(rng.standard_normal((4, 6)))
        np.testing.assert_allclose(y.sum(axis=-1), np.ones(4))

    def test_sigmoid_is_stable_for_large_inputs(self):
        y = activations.get('sigmoid').forward(np.array([-1000.0, 1000.0]))
        assert np.all(np.isfinite(y))
        np.testing.assert_allclose(y, [0.0, 1.0], atol=1e-12)

    def test_lisht(self):
        y = activations.get('lisht').forward(np.array([-2.0, 0.0, 2.0]))
        t = 2.0 * np.tanh(2.0)
        np.testing.assert_allclose(y, [t, 0.0, t])


@pytest.mark.parametrize('name', [
    'linear', 'elu', 'selu', 'sigmoid', 'tanh', 'softmax', 'log_softmax', 'softplus',
    'softsign', 'swish', 'mish', 'gelu', 'exponential', 'lisht',
])
def test_backward_matches_finite_differences(name, rng):
    act = activations.get(name)
    x = rng.standard_normal((3, 5))
    r = rng.standard_normal((3, 5))
    analytic = act.backward(x, act.forward(x), r)
    numeric = numerical_gradient(lambda: float((act.forward(x) * r).sum()), x)
    np.testing.assert_allclose(analytic, numeric, rtol=1e-4, atol=1e-6)


class TestRegistry:
    """Resolving activations by name."""

    def test_none_is_linear(self):
        assert activations.get(None).name == 'linear'

    def test_names_are_case_insensitive(self):
        assert isinstance(activations.get('ReLU'), activations.ReLU)

    def test_silu_alias(self):
        assert isinstance(activations.get('silu'), activations.Swish)

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            activations.get('not_an_activation')

    def test_bad_type(self):
        with pytest.raises(TypeError):
            activations.get(3)

    def test_serialize_returns_name(self):
        assert activations.serialize(activations.get('gelu')) == 'gelu'

    def test_serialize_keeps_options(self):
        config = activations.serialize(activations.ELU(alpha=0.5))
        assert config == {'class': 'elu', 'config': {'alpha': 0.5}}
        assert activations.get(config).alpha == 0.5
        assert activations.get(activations.serialize(activations.Softmax(axis=1))).axis == 1

    def test_deserialize_unknown_class(self):
        with pytest.raises(ValueError):
            activations.get({'class': 'not_an_activation', 'config': {}})
