from __future__ import annotations

import numpy as np
import onnx
import pytest
from onnx.reference import ReferenceEvaluator

from mlgraph.backends import OnnxBackend, OnnxGraph, backend_registry
from mlgraph.context import Context
from mlgraph.ir import OperandDescriptor, OperandType
from mlgraph.ops import (
    BatchNormOptions,
    ClampOptions,
    Conv2dOptions,
    FilterOperandLayout,
    GemmOptions,
    InstanceNormOptions,
    LeakyReluOptions,
    PadOptions,
    Pool2dOptions,
    ReduceMeanOptions,
    ResampleOptions,
    SqueezeOptions,
)


@pytest.fixture
def onnx_context(errors) -> Context:
    return Context(backend=OnnxBackend(), on_uncaptured_error=errors.append)


@pytest.fixture
def onnx_builder(onnx_context):
    return onnx_context.create_graph_builder()


def make_input(builder, name: str, *dims: int, type: OperandType = OperandType.FLOAT32):
    return builder.input(name, OperandDescriptor(type, dims))


def make_constant(builder, array: np.ndarray):
    array = np.asarray(array, dtype=np.float32)
    return builder.constant(OperandDescriptor(OperandType.FLOAT32, array.shape), array)


def op_types(graph: OnnxGraph) -> list[str]:
    return [node.op_type for node in graph.model.graph.node]


def run(graph: OnnxGraph, **feeds: np.ndarray) -> list[np.ndarray]:
    return ReferenceEvaluator(graph.model).run(None, feeds)


def test_registry_has_onnx_backend() -> None:
    assert "onnx" in backend_registry.names()
    caps = backend_registry.create("onnx").capabilities()
    assert caps.name == "onnx"
    assert caps.opset_version == 14


def test_softmax_model(onnx_builder, errors) -> None:
    x = make_input(onnx_builder, "x", 2, 4)
    graph = onnx_builder.build({"y": onnx_builder.softmax(x)})

    assert errors == []
    assert isinstance(graph, OnnxGraph)
    assert op_types(graph) == ["Softmax", "Identity"]
    assert graph.output_names == ["y"]
    assert graph.model.opset_import[0].version == 14
    assert graph.serialized == graph.model.SerializeToString()

    data = np.array([[0.0, 1.0, 2.0, 3.0], [1.0, 1.0, 1.0, 1.0]], dtype=np.float32)
    (y,) = run(graph, x=data)
    np.testing.assert_allclose(y.sum(axis=1), [1.0, 1.0], rtol=1e-6)
    np.testing.assert_allclose(y[1], [0.25] * 4, rtol=1e-6)


def test_conv2d_with_fused_clamp_lowers_to_conv_then_clip(onnx_builder) -> None:
    x = make_input(onnx_builder, "x", 1, 1, 3, 3)
    w = make_constant(onnx_builder, np.ones((1, 1, 1, 1)) * 10.0)
    clamp = onnx_builder.clamp_operator(ClampOptions(min_value=0.0, max_value=6.0))
    y = onnx_builder.conv2d(x, w, Conv2dOptions(activation=clamp))
    graph = onnx_builder.build({"y": y})

    assert op_types(graph) == ["Conv", "Clip", "Identity"]
    data = np.array([-1.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8], dtype=np.float32).reshape(1, 1, 3, 3)
    (out,) = run(graph, x=data)
    np.testing.assert_allclose(out, np.clip(data * 10.0, 0.0, 6.0), rtol=1e-6)


def test_conv2d_with_embedded_relu_and_bias(onnx_builder) -> None:
    x = make_input(onnx_builder, "x", 1, 2, 4, 4)
    w = make_constant(onnx_builder, np.ones((3, 2, 3, 3)))
    b = make_constant(onnx_builder, np.array([0.0, -100.0, 1.0]))
    options = Conv2dOptions(padding=(1, 1, 1, 1), bias=b, activation=onnx_builder.relu_operator())
    graph = onnx_builder.build({"y": onnx_builder.conv2d(x, w, options)})

    assert op_types(graph) == ["Conv", "Relu", "Identity"]
    (out,) = run(graph, x=np.ones((1, 2, 4, 4), dtype=np.float32))
    assert out.shape == (1, 3, 4, 4)
    assert out[0, 0, 1, 1] == pytest.approx(18.0)
    assert (out[0, 1] == 0.0).all()


def test_unsupported_filter_layout_fails_at_ingestion(onnx_builder, errors) -> None:
    x = make_input(onnx_builder, "x", 1, 2, 4, 4)
    w = make_input(onnx_builder, "w", 3, 3, 2, 3)
    y = onnx_builder.conv2d(x, w, Conv2dOptions(filter_layout=FilterOperandLayout.HWIO))
    assert not y.is_error
    assert onnx_builder.build({"y": y}) is None
    assert errors[-1].code == "EUNSUPPORTED"


def test_split_outputs(onnx_builder) -> None:
    x = make_input(onnx_builder, "x", 4, 2)
    first, second = onnx_builder.split(x, [1, 3])
    graph = onnx_builder.build({"first": first, "second": second})

    data = np.arange(8, dtype=np.float32).reshape(4, 2)
    a, b = run(graph, x=data)
    np.testing.assert_array_equal(a, data[:1])
    np.testing.assert_array_equal(b, data[1:])


def test_batch_norm_without_scale_and_bias(onnx_builder) -> None:
    x = make_input(onnx_builder, "x", 1, 2, 1, 1)
    mean = make_constant(onnx_builder, np.array([1.0, 2.0]))
    var = make_constant(onnx_builder, np.array([4.0, 1.0]))
    y = onnx_builder.batch_norm(x, mean, var, BatchNormOptions(epsilon=0.0))
    graph = onnx_builder.build({"y": y})

    (out,) = run(graph, x=np.array([3.0, 4.0], dtype=np.float32).reshape(1, 2, 1, 1))
    np.testing.assert_allclose(out.ravel(), [1.0, 2.0], rtol=1e-6)


def test_gemm_and_elementwise(onnx_builder) -> None:
    a = make_input(onnx_builder, "a", 2, 3)
    b = make_constant(onnx_builder, np.arange(6).reshape(2, 3))
    c = make_constant(onnx_builder, np.array([1.0, 1.0]))
    y = onnx_builder.gemm(a, b, GemmOptions(c=c, b_transpose=True))
    z = onnx_builder.leaky_relu(onnx_builder.sub(y, make_constant(onnx_builder, [100.0])), LeakyReluOptions(0.5))
    graph = onnx_builder.build({"z": z})

    data = np.ones((2, 3), dtype=np.float32)
    (out,) = run(graph, a=data)
    expected = data @ np.arange(6, dtype=np.float32).reshape(2, 3).T + 1.0 - 100.0
    np.testing.assert_allclose(out, expected * 0.5, rtol=1e-6)


def test_shape_ops_lower(onnx_builder) -> None:
    x = make_input(onnx_builder, "x", 1, 2, 3)
    r = onnx_builder.reshape(x, [3, 2])
    t = onnx_builder.transpose(r)
    s = onnx_builder.squeeze(x, SqueezeOptions(axes=(0,)))
    m = onnx_builder.reduce_mean(s, ReduceMeanOptions(axes=(1,)))
    cat = onnx_builder.concat([t, s], 1)
    graph = onnx_builder.build({"cat": cat, "mean": m})

    data = np.arange(6, dtype=np.float32).reshape(1, 2, 3)
    out_cat, out_mean = run(graph, x=data)
    assert out_cat.shape == (2, 6)
    np.testing.assert_allclose(out_mean, data[0].mean(axis=1))


def test_pool_pad_resample_instance_norm(onnx_builder, errors) -> None:
    x = make_input(onnx_builder, "x", 1, 2, 4, 4)
    pooled = onnx_builder.max_pool2d(x, Pool2dOptions(window_dimensions=(2, 2), strides=(2, 2)))
    pads = onnx_builder.constant(
        OperandDescriptor(OperandType.INT32, (4, 2)), np.array([[0, 0], [0, 0], [1, 1], [1, 1]])
    )
    padded = onnx_builder.pad(pooled, pads, PadOptions(value=-1.0))
    resized = onnx_builder.resample(padded, ResampleOptions(scales=(1.0, 1.0, 2.0, 2.0)))
    normed = onnx_builder.instance_norm(resized, InstanceNormOptions())
    global_avg = onnx_builder.average_pool2d(x)
    graph = onnx_builder.build({"resized": resized, "normed": normed, "avg": global_avg})

    assert errors == []
    data = np.arange(32, dtype=np.float32).reshape(1, 2, 4, 4)
    out_resized, out_normed, out_avg = run(graph, x=data)
    assert out_resized.shape == (1, 2, 8, 8)
    assert out_resized[0, 0, 0, 0] == -1.0
    np.testing.assert_allclose(out_normed.mean(axis=(2, 3)), 0.0, atol=1e-5)
    np.testing.assert_allclose(out_avg.ravel(), data.mean(axis=(2, 3)).ravel())


def test_finished_graph_rejects_more_lowering(onnx_builder) -> None:
    x = make_input(onnx_builder, "x", 2, 2)
    graph = onnx_builder.build({"y": onnx_builder.relu(x)})
    assert graph.finish().code == "EFINISHED"
    assert graph.add_output("z", x).code == "EFINISHED"


def test_save_writes_model(onnx_builder, tmp_path) -> None:
    x = make_input(onnx_builder, "x", 2, 2)
    graph = onnx_builder.build({"y": onnx_builder.tanh(x)})
    path = tmp_path / "model.onnx"
    graph.save(path)
    loaded = onnx.load(str(path))
    assert [o.name for o in loaded.graph.output] == ["y"]


def test_user_names_do_not_collide_with_generated_names(onnx_builder, errors) -> None:
    x = make_input(onnx_builder, "relu_1", 2, 2)
    y = onnx_builder.relu(onnx_builder.relu(x))
    graph = onnx_builder.build({"relu_2": y, "constant_1": onnx_builder.sigmoid(x)})

    assert errors == []
    assert graph.output_names == ["relu_2", "constant_1"]
    generated = [name for node in graph.model.graph.node for name in node.output]
    assert all(name.startswith("mlgraph/") for name in generated if name not in graph.output_names)
    data = np.array([[-1.0, 2.0], [3.0, -4.0]], dtype=np.float32)
    out, _ = run(graph, relu_1=data)
    np.testing.assert_array_equal(out, np.maximum(data, 0.0))


def test_duplicate_user_names_are_rejected(onnx_builder, errors) -> None:
    x = make_input(onnx_builder, "x", 2)
    assert onnx_builder.build({"x": onnx_builder.relu(x)}) is None
    assert errors[-1].code == "ENAME"
