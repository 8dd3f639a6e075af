"""Tests for array engine selection through environment variables."""
import warnings

import numpy as np
import pytest

from layerwise import backend


class TestEngineSelection:
    """LAYERWISE_DISABLE_CUDA / LAYERWISE_FORCE_CUDA."""

    def test_suite_runs_on_numpy(self):
        assert backend.USE_CUDA is False
        assert backend.get_array_module() is np
        assert backend.get_device_name() == 'CPU'
        x = np.ones(3)
        assert backend.to_gpu(x) is x
        assert backend.to_cpu(x) is x

    def test_disable_overrides_available_device(self, monkeypatch):
        monkeypatch.setattr(backend, 'CUDA_AVAILABLE', True)
        monkeypatch.setenv('LAYERWISE_DISABLE_CUDA', '1')
        assert backend.cuda_requested() is False
        monkeypatch.setenv('LAYERWISE_DISABLE_CUDA', '0')
        assert backend.cuda_requested() is True

    def test_force_without_device_warns(self, monkeypatch):
        monkeypatch.setattr(backend, 'CUDA_AVAILABLE', False)
        monkeypatch.setenv('LAYERWISE_FORCE_CUDA', '1')
        monkeypatch.delenv('LAYERWISE_DISABLE_CUDA', raising=False)
        with pytest.warns(UserWarning, match='Falling back to CPU'):
            assert backend.cuda_requested() is False

    def test_force_with_device_is_silent(self, monkeypatch):
        monkeypatch.setattr(backend, 'CUDA_AVAILABLE', True)
        monkeypatch.setenv('LAYERWISE_FORCE_CUDA', '1')
        monkeypatch.delenv('LAYERWISE_DISABLE_CUDA', raising=False)
        with warnings.catch_warnings():
            warnings.simplefilter('error')
            assert backend.cuda_requested() is True
