"""Tests for optimizers."""
import numpy as np
import pytest

from layerwise import optim


class TestUpdates:
    """Single update rules."""

    def test_sgd_step(self):
        p = np.array([1.0, 2.0])
        optim.SGD(lr=0.1).step([(p, np.array([0.5, 1.0]))])
        np.testing.assert_allclose(p, [0.95, 1.9])

    def test_sgd_momentum(self):
        p = np.array([1.0])
        g = np.array([1.0])
        opt = optim.SGD(lr=0.1, momentum=0.9)
        opt.step([(p, g)])
        opt.step([(p, g)])
        np.testing.assert_allclose(p, [1.0 - 0.1 - 0.19])

    def test_adam_first_step_is_lr_times_sign(self):
        p = np.array([0.0, 0.0])
        optim.Adam(lr=0.01).step([(p, np.array([3.0, -0.2]))])
        np.testing.assert_allclose(p, [-0.01, 0.01], rtol=1e-5)

    def test_state_is_per_parameter(self):
        a, b = np.zeros(2), np.zeros(3)
        opt = optim.Adam()
        opt.step([(a, np.ones(2)), (b, np.ones(3))])
        assert len(opt.state) == 2
        assert opt.iterations == 1
        opt.reset()
        assert opt.state == {} and opt.iterations == 0

    def test_forget_releases_state(self):
        a, b = np.zeros(2), np.zeros(2)
        opt = optim.Adam()
        opt.step([(a, np.ones(2)), (b, np.ones(2))])
        opt.forget([a])
        assert len(opt.state) == 1
        opt.forget([np.zeros(2)])
        assert len(opt.state) == 1

    def test_new_parameter_starts_fresh(self):
        opt = optim.SGD(lr=0.1, momentum=0.9)
        old = np.zeros(2)
        opt.step([(old, np.ones(2))])
        opt.forget([old])
        new = np.zeros(2)
        opt.step([(new, np.ones(2))])
        # no velocity carried over from the released parameter
        np.testing.assert_allclose(new, [-0.1, -0.1])

    def test_invalid_learning_rate(self):
        with pytest.raises(ValueError):
            optim.SGD(lr=0)


class TestGradientProcessing:
    """Weight decay and clipping applied before the update."""

    def test_clip_value(self):
        p = np.zeros(2)
        opt = optim.SGD(lr=1.0).configure(clip_value=0.5)
        opt.step([(p, np.array([2.0, -0.1]))])
        np.testing.assert_allclose(p, [-0.5, 0.1])

    def test_clip_norm(self):
        p = np.zeros(2)
        opt = optim.SGD(lr=1.0).configure(clip_norm=1.0)
        opt.step([(p, np.array([3.0, 4.0]))])
        np.testing.assert_allclose(p, [-0.6, -0.8])

    def test_weight_decay(self):
        p = np.array([2.0])
        optim.SGD(lr=0.1).configure(weight_decay=0.5).step([(p, np.array([0.0]))])
        np.testing.assert_allclose(p, [1.9])

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            optim.Adam().configure(clip_norm=0)


@pytest.mark.parametrize('name, kwargs', [
    ('sgd', {'lr': 0.1}),
    ('sgd', {'lr': 0.05, 'momentum': 0.9, 'nesterov': True}),
    ('adam', {'lr': 0.05}),
    ('adam', {'lr': 0.05, 'amsgrad': True}),
    ('adamax', {'lr': 0.05}),
    ('rmsprop', {'lr': 0.01}),
    ('rmsprop', {'lr': 0.01, 'momentum': 0.5}),
    ('adagrad', {'lr': 0.1}),
    ('adadelta', {}),
])
def test_minimizes_quadratic(name, kwargs):
    p = np.array([3.0, -2.0, 1.0])
    start = np.linalg.norm(p)
    opt = optim.get(name, **kwargs)
    for _ in range(100):
        opt.step([(p, p.copy())])
    assert np.linalg.norm(p) < start


class TestRegistry:
    """Lookup and serialization."""

    def test_get_passes_kwargs(self):
        opt = optim.get('rmsprop', lr=0.01, rho=0.8)
        assert isinstance(opt, optim.RMSProp) and opt.rho == 0.8

    def test_round_trip_keeps_gradient_processing(self):
        opt = optim.SGD(lr=0.02, momentum=0.5).configure(weight_decay=1e-4, clip_norm=2.0)
        clone = optim.deserialize(optim.serialize(opt))
        assert isinstance(clone, optim.SGD)
        assert clone.get_config() == opt.get_config()
        assert (clone.weight_decay, clone.clip_norm, clone.clip_value) == (1e-4, 2.0, None)

    def test_unknown(self):
        with pytest.raises(ValueError):
            optim.get('lbfgs')
