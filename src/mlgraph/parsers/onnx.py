from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np
import onnx
from onnx import numpy_helper

from mlgraph.errors import UnsupportedModelError
from mlgraph.ir.operand import Operand, OperandArray
from mlgraph.ir.types import OperandDescriptor, OperandType
from mlgraph.ops import (
    AutoPad,
    BatchNormOptions,
    ClampOptions,
    Conv2dOptions,
    GemmOptions,
    InstanceNormOptions,
    LeakyReluOptions,
    Pool2dOptions,
    ReduceMeanOptions,
    SplitOptions,
    SqueezeOptions,
    TransposeOptions,
)
from mlgraph.utils import get_logger

if TYPE_CHECKING:
    from mlgraph.builder import GraphBuilder

logger = get_logger(__name__)

_DTYPE_MAP = {
    onnx.TensorProto.FLOAT: OperandType.FLOAT32,
    onnx.TensorProto.FLOAT16: OperandType.FLOAT16,
    onnx.TensorProto.INT32: OperandType.INT32,
    onnx.TensorProto.UINT32: OperandType.UINT32,
    onnx.TensorProto.INT8: OperandType.INT8,
    onnx.TensorProto.UINT8: OperandType.UINT8,
}

_UNARY_NODES = {
    "Relu": "relu",
    "Sigmoid": "sigmoid",
    "Tanh": "tanh",
    "HardSwish": "hard_swish",
}

_BINARY_NODES = {
    "Add": "add",
    "Sub": "sub",
    "Mul": "mul",
    "Div": "div",
    "Max": "max",
    "Min": "min",
    "Pow": "pow",
    "MatMul": "matmul",
}

_AUTO_PADS = {
    "NOTSET": AutoPad.EXPLICIT,
    "VALID": AutoPad.EXPLICIT,
    "SAME_UPPER": AutoPad.SAME_UPPER,
    "SAME_LOWER": AutoPad.SAME_LOWER,
}


def _descriptor_from_value_info(vi: onnx.ValueInfoProto) -> OperandDescriptor:
    t = vi.type.tensor_type
    operand_type = _DTYPE_MAP.get(t.elem_type)
    if operand_type is None:
        raise UnsupportedModelError(f"Input '{vi.name}' has unsupported element type {t.elem_type}")
    dims: list[int] = []
    for d in t.shape.dim:
        if d.HasField("dim_value") and d.dim_value > 0:
            dims.append(int(d.dim_value))
        else:
            # symbolic or unknown -> 1
            dims.append(1)
    return OperandDescriptor(operand_type, tuple(dims))


def _parse_attributes(node: onnx.NodeProto) -> dict[str, Any]:
    attrs: dict[str, Any] = {}
    for a in node.attribute:
        if a.type == onnx.AttributeProto.INT:
            attrs[a.name] = int(a.i)
        elif a.type == onnx.AttributeProto.FLOAT:
            attrs[a.name] = float(a.f)
        elif a.type == onnx.AttributeProto.STRING:
            attrs[a.name] = a.s.decode("utf-8", errors="ignore")
        elif a.type == onnx.AttributeProto.INTS:
            attrs[a.name] = [int(x) for x in a.ints]
        elif a.type == onnx.AttributeProto.FLOATS:
            attrs[a.name] = [float(x) for x in a.floats]
        elif a.type == onnx.AttributeProto.TENSOR:
            attrs[a.name] = numpy_helper.to_array(a.t)
    return attrs


def _onnx_pads(pads: list[int]) -> tuple[int, int, int, int]:
    # [beginH, beginW, endH, endW] -> [beginH, endH, beginW, endW]
    if len(pads) != 4:
        raise UnsupportedModelError(f"Only 2-D pads are supported, got {pads}")
    begin_h, begin_w, end_h, end_w = pads
    return (begin_h, end_h, begin_w, end_w)


class OnnxImporter:
    """Replay an ONNX model as GraphBuilder calls.

    Every node goes through the same eager validation as hand-written calls:
    a node the builder rejects yields an error Operand and the error reaches
    the context's error sink, while the import itself carries on. Only
    constructs that cannot be expressed as builder calls at all raise
    UnsupportedModelError.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Callable[[onnx.NodeProto, dict[str, Any]], Sequence[Operand]]] = {
            "Conv": self._conv,
            "MaxPool": self._pool,
            "AveragePool": self._pool,
            "GlobalMaxPool": self._global_pool,
            "GlobalAveragePool": self._global_pool,
            "BatchNormalization": self._batch_norm,
            "InstanceNormalization": self._instance_norm,
            "Clip": self._clip,
            "LeakyRelu": self._leaky_relu,
            "Softmax": self._softmax,
            "Gemm": self._gemm,
            "Concat": self._concat,
            "Split": self._split,
            "Reshape": self._reshape,
            "Transpose": self._transpose,
            "Squeeze": self._squeeze,
            "ReduceMean": self._reduce_mean,
        }
        self.builder: GraphBuilder | None = None
        self._values: dict[str, Operand] = {}
        self._arrays: dict[str, np.ndarray] = {}

    def import_model(self, model_or_path: Any, builder: GraphBuilder) -> dict[str, Operand]:
        """Add the model's graph to ``builder`` and return its outputs by name."""
        model = self._load_model(model_or_path)
        self.builder = builder
        self._values = {}
        self._arrays = {}
        graph = model.graph

        for init in graph.initializer:
            self._arrays[init.name] = numpy_helper.to_array(init)

        for inp in graph.input:
            if inp.name in self._arrays:
                continue
            self._values[inp.name] = builder.input(inp.name, _descriptor_from_value_info(inp))

        for node in graph.node:
            self._import_node(node)

        outputs: dict[str, Operand] = {}
        for out in graph.output:
            outputs[out.name] = self._operand(out.name)
        logger.info(
            "Imported ONNX graph %r: %d nodes, %d outputs",
            graph.name,
            len(graph.node),
            len(outputs),
        )
        return outputs

    def _load_model(self, model_or_path: Any) -> onnx.ModelProto:
        if isinstance(model_or_path, onnx.ModelProto):
            return model_or_path
        if isinstance(model_or_path, (bytes, bytearray)):
            return onnx.load_model_from_string(bytes(model_or_path))
        if isinstance(model_or_path, (str, Path)):
            return onnx.load(str(model_or_path))
        raise TypeError("Unsupported model type for ONNX importer")

    def _import_node(self, node: onnx.NodeProto) -> None:
        attrs = _parse_attributes(node)
        if node.op_type in _UNARY_NODES:
            method = getattr(self.builder, _UNARY_NODES[node.op_type])
            results = [method(self._operand(node.input[0]))]
        elif node.op_type in _BINARY_NODES:
            method = getattr(self.builder, _BINARY_NODES[node.op_type])
            results = [method(self._operand(node.input[0]), self._operand(node.input[1]))]
        elif node.op_type in self._handlers:
            results = self._handlers[node.op_type](node, attrs)
        else:
            raise UnsupportedModelError(f"Unsupported ONNX op type: {node.op_type}")
        if isinstance(results, OperandArray) and results.is_error:
            # a rejected multi-output node still defines every output name
            results = [Operand.make_error(self.builder) for _ in node.output]
        for name, operand in zip(node.output, results):
            if name:
                self._values[name] = operand

    # value lookup

    def _operand(self, name: str) -> Operand:
        """Operand for a value name; initializers become constants on first use."""
        if name in self._values:
            return self._values[name]
        if name not in self._arrays:
            raise UnsupportedModelError(f"Value '{name}' is not produced by any node")
        array = self._arrays[name]
        if array.dtype == np.int64:
            array = array.astype(np.int32)
        elif array.dtype == np.float64:
            array = array.astype(np.float32)
        try:
            operand_type = OperandType.from_numpy(array.dtype)
        except ValueError as err:
            raise UnsupportedModelError(f"Initializer '{name}': {err}") from err
        descriptor = OperandDescriptor(operand_type, tuple(int(d) for d in array.shape))
        operand = self.builder.constant(descriptor, array)
        self._values[name] = operand
        return operand

    def _optional_operand(self, node: onnx.NodeProto, i: int) -> Operand | None:
        if len(node.input) > i and node.input[i]:
            return self._operand(node.input[i])
        return None

    def _const_input(self, node: onnx.NodeProto, i: int) -> np.ndarray | None:
        if len(node.input) <= i or not node.input[i]:
            return None
        name = node.input[i]
        if name not in self._arrays:
            raise UnsupportedModelError(f"{node.op_type} input '{name}' must be an initializer")
        return self._arrays[name]

    # node handlers

    def _conv(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        auto_pad = _AUTO_PADS.get(attrs.get("auto_pad", "NOTSET"))
        if auto_pad is None:
            raise UnsupportedModelError(f"Unsupported auto_pad {attrs['auto_pad']!r}")
        pads = attrs.get("pads", [0, 0, 0, 0])
        options = Conv2dOptions(
            padding=_onnx_pads(pads) if auto_pad is AutoPad.EXPLICIT else (0, 0, 0, 0),
            strides=tuple(attrs.get("strides", [1, 1])),
            dilations=tuple(attrs.get("dilations", [1, 1])),
            groups=attrs.get("group", 1),
            auto_pad=auto_pad,
            bias=self._optional_operand(node, 2),
        )
        return [self.builder.conv2d(self._operand(node.input[0]), self._operand(node.input[1]), options)]

    def _pool(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        if attrs.get("ceil_mode", 0):
            raise UnsupportedModelError("ceil_mode pooling is not supported")
        auto_pad = _AUTO_PADS.get(attrs.get("auto_pad", "NOTSET"))
        if auto_pad is None:
            raise UnsupportedModelError(f"Unsupported auto_pad {attrs['auto_pad']!r}")
        pads = attrs.get("pads", [0, 0, 0, 0])
        options = Pool2dOptions(
            window_dimensions=tuple(attrs["kernel_shape"]),
            padding=_onnx_pads(pads) if auto_pad is AutoPad.EXPLICIT else (0, 0, 0, 0),
            strides=tuple(attrs.get("strides", [1, 1])),
            dilations=tuple(attrs.get("dilations", [1, 1])),
            auto_pad=auto_pad,
        )
        x = self._operand(node.input[0])
        if node.op_type == "MaxPool":
            return [self.builder.max_pool2d(x, options)]
        return [self.builder.average_pool2d(x, options)]

    def _global_pool(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        x = self._operand(node.input[0])
        if node.op_type == "GlobalMaxPool":
            return [self.builder.max_pool2d(x)]
        return [self.builder.average_pool2d(x)]

    def _batch_norm(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        options = BatchNormOptions(
            scale=self._operand(node.input[1]),
            bias=self._operand(node.input[2]),
            epsilon=attrs.get("epsilon", 1e-5),
        )
        return [
            self.builder.batch_norm(
                self._operand(node.input[0]),
                self._operand(node.input[3]),
                self._operand(node.input[4]),
                options,
            )
        ]

    def _instance_norm(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        options = InstanceNormOptions(
            scale=self._operand(node.input[1]),
            bias=self._operand(node.input[2]),
            epsilon=attrs.get("epsilon", 1e-5),
        )
        return [self.builder.instance_norm(self._operand(node.input[0]), options)]

    def _clip(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        lo = self._const_input(node, 1)
        hi = self._const_input(node, 2)
        options = ClampOptions(
            min_value=float(lo) if lo is not None else attrs.get("min"),
            max_value=float(hi) if hi is not None else attrs.get("max"),
        )
        return [self.builder.clamp(self._operand(node.input[0]), options)]

    def _leaky_relu(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        options = LeakyReluOptions(alpha=attrs.get("alpha", 0.01))
        return [self.builder.leaky_relu(self._operand(node.input[0]), options)]

    def _softmax(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        x = self._operand(node.input[0])
        axis = attrs.get("axis", -1)
        if axis not in (-1, x.rank - 1):
            raise UnsupportedModelError("Softmax is only supported over the last axis")
        return [self.builder.softmax(x)]

    def _gemm(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        options = GemmOptions(
            c=self._optional_operand(node, 2),
            alpha=attrs.get("alpha", 1.0),
            beta=attrs.get("beta", 1.0),
            a_transpose=bool(attrs.get("transA", 0)),
            b_transpose=bool(attrs.get("transB", 0)),
        )
        return [self.builder.gemm(self._operand(node.input[0]), self._operand(node.input[1]), options)]

    def _concat(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        inputs = [self._operand(name) for name in node.input]
        axis = attrs["axis"]
        if axis < 0 and inputs:
            axis += inputs[0].rank
        return [self.builder.concat(inputs, axis)]

    def _split(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> OperandArray:
        sizes = self._const_input(node, 1)
        if sizes is not None:
            splits: list[int] | int = [int(s) for s in sizes]
        elif "split" in attrs:
            splits = attrs["split"]
        else:
            splits = len(node.output)
        options = SplitOptions(axis=attrs.get("axis", 0))
        return self.builder.split(self._operand(node.input[0]), splits, options)

    def _reshape(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        shape = self._const_input(node, 1)
        if shape is None:
            raise UnsupportedModelError("Reshape requires a constant shape input")
        new_shape = [int(d) for d in shape]
        if 0 in new_shape:
            raise UnsupportedModelError("Reshape with copied (0) dimensions is not supported")
        return [self.builder.reshape(self._operand(node.input[0]), new_shape)]

    def _transpose(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        perm = attrs.get("perm")
        options = TransposeOptions(permutation=tuple(perm) if perm is not None else None)
        return [self.builder.transpose(self._operand(node.input[0]), options)]

    def _squeeze(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        axes = self._const_input(node, 1)
        if axes is not None:
            axes_list = [int(a) for a in axes]
        else:
            axes_list = attrs.get("axes")
        options = SqueezeOptions(axes=tuple(axes_list) if axes_list else None)
        return [self.builder.squeeze(self._operand(node.input[0]), options)]

    def _reduce_mean(self, node: onnx.NodeProto, attrs: dict[str, Any]) -> list[Operand]:
        axes = self._const_input(node, 1)
        if axes is not None:
            axes_list = [int(a) for a in axes]
        else:
            axes_list = attrs.get("axes")
        options = ReduceMeanOptions(
            axes=tuple(axes_list) if axes_list is not None else None,
            keep_dimensions=bool(attrs.get("keepdims", 1)),
        )
        return [self.builder.reduce_mean(self._operand(node.input[0]), options)]
