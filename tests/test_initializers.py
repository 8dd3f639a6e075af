"""Tests for weight initializers and regularizers."""
import numpy as np
import pytest

from layerwise import initializers, regularizers


class TestFans:
    """Fan computation for dense and convolution kernels."""

    def test_dense_kernel(self):
        assert initializers.compute_fans((64, 10)) == (64.0, 10.0)

    def test_conv_kernel(self):
        assert initializers.compute_fans((3, 3, 16, 32)) == (144.0, 288.0)


class TestInitializers:
    """Distribution and determinism of the built-in initializers."""

    def test_default_dtype_is_float32(self):
        assert initializers.get('glorot_uniform')((4, 5)).dtype == np.float32

    def test_constant_families(self):
        np.testing.assert_array_equal(initializers.Zeros()((2, 3)), np.zeros((2, 3)))
        np.testing.assert_array_equal(initializers.Ones()((3,)), np.ones(3))
        np.testing.assert_array_equal(initializers.Constant(0.5)((2,)), [0.5, 0.5])

    def test_seeded_initializers_are_reproducible(self):
        a = initializers.HeNormal(seed=7)((20, 30))
        b = initializers.HeNormal(seed=7)((20, 30))
        np.testing.assert_array_equal(a, b)

    def test_glorot_uniform_limit(self):
        w = initializers.GlorotUniform(seed=0)((100, 50))
        limit = np.sqrt(6.0 / 150)
        assert np.abs(w).max() <= limit + 1e-6

    def test_he_normal_std(self):
        w = initializers.HeNormal(seed=0)((400, 400))
        assert np.std(w) == pytest.approx(np.sqrt(2.0 / 400), rel=0.05)

    def test_truncated_normal_bounds(self):
        w = initializers.TruncatedNormal(stddev=0.1, seed=0)((1000,))
        assert np.abs(w).max() <= 0.2 + 1e-6

    def test_orthogonal_columns(self):
        w = initializers.Orthogonal(seed=0)((8, 4)).astype(np.float64)
        np.testing.assert_allclose(w.T @ w, np.eye(4), atol=1e-5)

    def test_identity(self):
        np.testing.assert_array_equal(initializers.Identity(gain=2.0)((3, 3)), 2 * np.eye(3))
        with pytest.raises(ValueError):
            initializers.Identity()((2, 2, 2))

    def test_variance_scaling_validates(self):
        with pytest.raises(ValueError):
            initializers.VarianceScaling(mode='fan_middle')
        with pytest.raises(ValueError):
            initializers.VarianceScaling(scale=0)


class TestInitializerRegistry:
    """Lookup and serialization."""

    def test_serialize_deserialize(self):
        init = initializers.RandomNormal(mean=1.0, stddev=0.5, seed=3)
        clone = initializers.deserialize(initializers.serialize(init))
        assert isinstance(clone, initializers.RandomNormal)
        assert clone.get_config() == init.get_config()

    def test_get_from_dict(self):
        init = initializers.get({'class': 'constant', 'config': {'value': 2.0}})
        np.testing.assert_array_equal(init((2,)), [2.0, 2.0])

    def test_unknown(self):
        with pytest.raises(ValueError):
            initializers.get('xavier_magic')


class TestRegularizers:
    """L1 / L2 penalties and their gradients."""

    def test_l2_penalty_and_gradient(self):
        w = np.array([1.0, -2.0])
        reg = regularizers.L2(0.1)
        assert reg(w) == pytest.approx(0.5)
        np.testing.assert_allclose(reg.gradient(w), [0.2, -0.4])

    def test_l1_penalty_and_gradient(self):
        w = np.array([1.0, -2.0, 0.0])
        reg = regularizers.L1(0.5)
        assert reg(w) == pytest.approx(1.5)
        np.testing.assert_allclose(reg.gradient(w), [0.5, -0.5, 0.0])

    def test_negative_factor(self):
        with pytest.raises(ValueError):
            regularizers.L1L2(l1=-1.0)

    def test_registry(self):
        assert regularizers.get(None) is None
        reg = regularizers.deserialize(regularizers.serialize(regularizers.L1L2(0.1, 0.2)))
        assert (reg.l1, reg.l2) == (0.1, 0.2)
