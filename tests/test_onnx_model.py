"""Tests for ONNX inference through onnxruntime."""
import numpy as np
import pytest

from layerwise import ModelClosedError, OnnxInferenceModel
from layerwise.onnx_model import default_providers

onnx = pytest.importorskip('onnx')
from onnx import TensorProto, helper, numpy_helper  # noqa: E402

WEIGHTS = np.arange(18, dtype=np.float32).reshape(6, 3) / 10.0
BIAS = np.array([0.5, -0.5, 0.0], dtype=np.float32)


def build_classifier(batch='N'):
    """x[batch, 2, 3] -> reshape -> MatMul -> Add -> logits, Softmax -> probs."""
    nodes = [
        helper.make_node('Reshape', ['x', 'flat_shape'], ['flat']),
        helper.make_node('MatMul', ['flat', 'W'], ['xw']),
        helper.make_node('Add', ['xw', 'b'], ['logits']),
        helper.make_node('Softmax', ['logits'], ['probs'], axis=-1),
    ]
    graph = helper.make_graph(
        nodes, 'classifier',
        inputs=[helper.make_tensor_value_info('x', TensorProto.FLOAT, [batch, 2, 3])],
        outputs=[helper.make_tensor_value_info('logits', TensorProto.FLOAT, [batch, 3]),
                 helper.make_tensor_value_info('probs', TensorProto.FLOAT, [batch, 3])],
        initializer=[numpy_helper.from_array(np.array([-1, 6], dtype=np.int64), 'flat_shape'),
                     numpy_helper.from_array(WEIGHTS, 'W'),
                     numpy_helper.from_array(BIAS, 'b')],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid('', 13)])
    model.ir_version = 8
    return model


def build_symbolic_identity():
    graph = helper.make_graph(
        [helper.make_node('Relu', ['x'], ['y'])], 'relu',
        inputs=[helper.make_tensor_value_info('x', TensorProto.FLOAT, ['N', 'C'])],
        outputs=[helper.make_tensor_value_info('y', TensorProto.FLOAT, ['N', 'C'])],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid('', 13)])
    model.ir_version = 8
    return model


def expected_logits(x):
    return x.reshape(len(x), 6) @ WEIGHTS + BIAS


@pytest.fixture
def model_path(tmp_path):
    path = tmp_path / 'classifier.onnx'
    onnx.save(build_classifier(), str(path))
    return str(path)


@pytest.fixture
def samples():
    return np.random.default_rng(0).standard_normal((5, 2, 3)).astype(np.float32)


class TestMetadata:
    """Names, shapes and providers."""

    def test_names_and_shapes(self, model_path):
        model = OnnxInferenceModel(model_path)
        assert model.input_names == ['x']
        assert model.output_names == ['logits', 'probs']
        assert model.input_shape == (None, 2, 3)
        assert model.output_shapes == [(None, 3), (None, 3)]
        assert model.input_dtypes == [np.float32]

    def test_default_providers_on_cpu(self):
        assert default_providers() == ['CPUExecutionProvider']

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            OnnxInferenceModel(str(tmp_path / 'absent.onnx'))

    def test_from_bytes(self, samples):
        model = OnnxInferenceModel(build_classifier().SerializeToString())
        np.testing.assert_allclose(model.predict(samples), expected_logits(samples), rtol=1e-5, atol=1e-5)


class TestPredict:
    """Batched execution and input coercion."""

    def test_predict_all(self, model_path, samples):
        model = OnnxInferenceModel.load(model_path)
        outputs = model.predict_all(samples, batch_size=2)
        assert set(outputs) == {'logits', 'probs'}
        np.testing.assert_allclose(outputs['logits'], expected_logits(samples), rtol=1e-5, atol=1e-5)
        np.testing.assert_allclose(outputs['probs'].sum(axis=1), 1.0, rtol=1e-5)

    def test_single_sample_gets_batch_axis(self, model_path, samples):
        model = OnnxInferenceModel(model_path)
        assert model.predict(samples[0]).shape == (1, 3)
        assert model.predict(samples[0].reshape(6)).shape == (1, 3)

    def test_flat_rows_are_reshaped(self, model_path, samples):
        model = OnnxInferenceModel(model_path)
        np.testing.assert_allclose(model.predict(samples.reshape(5, 6)), expected_logits(samples),
                                   rtol=1e-5, atol=1e-5)

    def test_float64_input_is_cast(self, model_path, samples):
        model = OnnxInferenceModel(model_path)
        out = model.predict(samples.astype(np.float64))
        assert out.dtype == np.float32

    def test_dict_feed(self, model_path, samples):
        model = OnnxInferenceModel(model_path)
        assert model.predict({'x': samples}).shape == (5, 3)
        with pytest.raises(ValueError):
            model.predict({'y': samples})

    def test_wrong_shape(self, model_path):
        with pytest.raises(ValueError):
            OnnxInferenceModel(model_path).predict(np.zeros((2, 4), dtype=np.float32))

    def test_classification_helpers(self, model_path, samples):
        model = OnnxInferenceModel(model_path)
        logits = expected_logits(samples)
        np.testing.assert_array_equal(model.predict_classes(samples), logits.argmax(axis=1))
        idx, scores = model.predict_top_k(samples, k=2)
        assert idx.shape == (5, 2)
        assert np.all(scores[:, 0] >= scores[:, 1])

    def test_fixed_batch_size(self, tmp_path, samples):
        path = tmp_path / 'fixed.onnx'
        onnx.save(build_classifier(batch=1), str(path))
        model = OnnxInferenceModel(str(path))
        assert model.input_shape == (1, 2, 3)
        assert model.predict(samples).shape == (5, 3)


class TestReshapeAndLifecycle:
    """Symbolic dims and closing."""

    def test_reshape_symbolic_input(self, tmp_path):
        path = tmp_path / 'relu.onnx'
        onnx.save(build_symbolic_identity(), str(path))
        model = OnnxInferenceModel(str(path))
        assert model.input_shape == (None, None)
        model.reshape(4)
        out = model.predict(np.array([-1.0, 2.0, -3.0, 4.0], dtype=np.float32))
        np.testing.assert_array_equal(out, [[0.0, 2.0, 0.0, 4.0]])

    def test_reshape_validation(self, model_path):
        model = OnnxInferenceModel(model_path)
        with pytest.raises(ValueError):
            model.reshape(3, 2)
        with pytest.raises(ValueError):
            model.reshape(0)
        with pytest.raises(ValueError):
            model.reshape(2, 3, 1)

    def test_close(self, model_path, samples):
        with OnnxInferenceModel(model_path) as model:
            model.predict(samples)
        assert model.closed
        with pytest.raises(ModelClosedError):
            model.predict(samples)
