"""Reference backend lowering the sorted operator list to an ONNX model."""

from __future__ import annotations

import functools
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, TypeVar

import numpy as np
import onnx
from onnx import TensorProto, helper, numpy_helper

from mlgraph.errors import BackendError, MaybeError
from mlgraph.ir.operand import Operand
from mlgraph.ir.operator import Operator
from mlgraph.ir.types import FusedOperator, OperandType
from mlgraph.ops import (
    AutoPad,
    BatchNorm,
    Binary,
    BinaryOpType,
    Clamp,
    Concat,
    Constant,
    Conv2d,
    FilterOperandLayout,
    Gemm,
    Input,
    InputOperandLayout,
    InstanceNorm,
    InterpolationMode,
    LeakyRelu,
    Pad,
    PaddingMode,
    Pool2d,
    Pool2dType,
    ReduceMean,
    Resample,
    Reshape,
    Split,
    Squeeze,
    Transpose,
    Unary,
    UnaryOpType,
)
from mlgraph.utils import get_logger

from .base import BackendCapabilities, Graph
from .registry import backend_registry

logger = get_logger(__name__)

DEFAULT_OPSET = 14

# Generated value names live under this prefix, apart from user input and output names.
GENERATED_PREFIX = "mlgraph/"

_ELEM_TYPES = {
    OperandType.FLOAT32: TensorProto.FLOAT,
    OperandType.FLOAT16: TensorProto.FLOAT16,
    OperandType.INT32: TensorProto.INT32,
    OperandType.UINT32: TensorProto.UINT32,
    OperandType.INT8: TensorProto.INT8,
    OperandType.UINT8: TensorProto.UINT8,
}

_UNARY_OPS = {
    UnaryOpType.RELU: "Relu",
    UnaryOpType.SIGMOID: "Sigmoid",
    UnaryOpType.TANH: "Tanh",
    UnaryOpType.HARD_SWISH: "HardSwish",
    UnaryOpType.SOFTMAX: "Softmax",
}

_BINARY_OPS = {
    BinaryOpType.ADD: "Add",
    BinaryOpType.SUB: "Sub",
    BinaryOpType.MUL: "Mul",
    BinaryOpType.DIV: "Div",
    BinaryOpType.MAX: "Max",
    BinaryOpType.MIN: "Min",
    BinaryOpType.POW: "Pow",
    BinaryOpType.MATMUL: "MatMul",
}

_PAD_MODES = {
    PaddingMode.CONSTANT: "constant",
    PaddingMode.EDGE: "edge",
    PaddingMode.REFLECTION: "reflect",
}

_RESIZE_MODES = {
    InterpolationMode.NEAREST_NEIGHBOR: "nearest",
    InterpolationMode.LINEAR: "linear",
}

F = TypeVar("F", bound=Callable[..., MaybeError])


def _lowering(fn: F) -> F:
    """Turn BackendErrors raised while lowering into returned errors."""

    @functools.wraps(fn)
    def wrapper(self: OnnxGraph, *args: Any) -> MaybeError:
        if self.model is not None:
            return BackendError("The graph is already finished.", code="EFINISHED")
        try:
            return fn(self, *args)
        except BackendError as err:
            return err

    return wrapper  # type: ignore[return-value]


def _webnn_pads(padding: Sequence[int]) -> list[int]:
    # [beginH, endH, beginW, endW] -> [beginH, beginW, endH, endW]
    begin_h, end_h, begin_w, end_w = padding
    return [begin_h, begin_w, end_h, end_w]


class OnnxGraph(Graph):
    """Collects ONNX nodes for each added operator; ``finish`` assembles the model."""

    def __init__(self, opset_version: int = DEFAULT_OPSET, producer_name: str = "mlgraph", name: str = "mlgraph") -> None:
        self.opset_version = opset_version
        self.producer_name = producer_name
        self.name = name
        self.nodes: list[onnx.NodeProto] = []
        self.inputs: list[onnx.ValueInfoProto] = []
        self.outputs: list[onnx.ValueInfoProto] = []
        self.initializers: list[onnx.TensorProto] = []
        self.model: onnx.ModelProto | None = None
        self.serialized: bytes | None = None
        self._values: dict[Operand, str] = {}
        self._used_names: set[str] = set()
        self._name_counters: dict[str, int] = {}

    # naming

    def _fresh_name(self, prefix: str) -> str:
        while True:
            n = self._name_counters.get(prefix, 0) + 1
            self._name_counters[prefix] = n
            name = f"{GENERATED_PREFIX}{prefix}_{n}"
            if name not in self._used_names:
                self._used_names.add(name)
                return name

    def _claim(self, name: str) -> None:
        if name in self._used_names:
            raise BackendError(f"The name '{name}' is already used in the graph.", code="ENAME")
        self._used_names.add(name)

    def _bind(self, operand: Operand | None, name: str) -> None:
        if operand is not None:
            self._values[operand] = name

    def _value(self, operand: Operand) -> str:
        try:
            return self._values[operand]
        except KeyError:
            raise BackendError("The operand has not been added to the graph.", code="EOPERAND") from None

    # emission helpers

    def _emit(self, op_type: str, inputs: Sequence[str], prefix: str, *, outputs: int = 1, **attrs: Any) -> list[str]:
        names = [self._fresh_name(prefix) for _ in range(outputs)]
        self.nodes.append(helper.make_node(op_type, list(inputs), names, **attrs))
        return names

    def _emit1(self, op_type: str, inputs: Sequence[str], prefix: str, **attrs: Any) -> str:
        return self._emit(op_type, inputs, prefix, **attrs)[0]

    def _initializer(self, array: np.ndarray, prefix: str) -> str:
        name = self._fresh_name(prefix)
        self.initializers.append(numpy_helper.from_array(np.asarray(array), name))
        return name

    def _scalar(self, value: float, like: Operand, prefix: str) -> str:
        return self._initializer(np.array(value, dtype=like.type.numpy_dtype), prefix)

    def _int64s(self, values: Sequence[int], prefix: str) -> str:
        return self._initializer(np.array(list(values), dtype=np.int64), prefix)

    def _activation(self, name: str, like: Operand, activation: Operator | None) -> str:
        """Emit an embedded fused activation as a trailing node."""
        if activation is None:
            return name
        fused = activation.fused_operator
        if fused is FusedOperator.RELU:
            return self._emit1("Relu", [name], "relu")
        if fused is FusedOperator.SIGMOID:
            return self._emit1("Sigmoid", [name], "sigmoid")
        if fused is FusedOperator.HARD_SWISH:
            return self._emit1("HardSwish", [name], "hard_swish")
        if fused is FusedOperator.LEAKY_RELU:
            return self._emit1("LeakyRelu", [name], "leaky_relu", alpha=float(activation.options.alpha))
        if fused is FusedOperator.CLAMP:
            return self._clip(name, like, activation.options.min_value, activation.options.max_value)
        raise BackendError(f"Unsupported fused activation {fused}.", code="EUNSUPPORTED")

    def _clip(self, name: str, like: Operand, min_value: float | None, max_value: float | None) -> str:
        inputs = [name]
        inputs.append(self._scalar(min_value, like, "clamp_min") if min_value is not None else "")
        if max_value is not None:
            inputs.append(self._scalar(max_value, like, "clamp_max"))
        while inputs[-1] == "":
            inputs.pop()
        return self._emit1("Clip", inputs, "clamp")

    def _check_nchw(self, layout: InputOperandLayout) -> None:
        if layout is not InputOperandLayout.NCHW:
            raise BackendError(f"Layout {layout.value} is not supported by the ONNX backend.", code="EUNSUPPORTED")

    # Graph hooks

    @_lowering
    def add_input(self, op: Input) -> MaybeError:
        self._claim(op.name)
        elem = _ELEM_TYPES[op.descriptor.type]
        self.inputs.append(helper.make_tensor_value_info(op.name, elem, list(op.descriptor.dimensions)))
        self._bind(op.primary_output, op.name)
        return None

    @_lowering
    def add_constant(self, op: Constant) -> MaybeError:
        self._bind(op.primary_output, self._initializer(op.value, "constant"))
        return None

    @_lowering
    def add_unary(self, op: Unary) -> MaybeError:
        x = self._value(op.inputs[0])
        attrs: dict[str, Any] = {}
        if op.op_type is UnaryOpType.SOFTMAX:
            attrs["axis"] = -1
        self._bind(op.primary_output, self._emit1(_UNARY_OPS[op.op_type], [x], op.op_type.value, **attrs))
        return None

    @_lowering
    def add_binary(self, op: Binary) -> MaybeError:
        a, b = (self._value(operand) for operand in op.inputs)
        self._bind(op.primary_output, self._emit1(_BINARY_OPS[op.op_type], [a, b], op.op_type.value))
        return None

    @_lowering
    def add_clamp(self, op: Clamp) -> MaybeError:
        x = op.inputs[0]
        out = self._clip(self._value(x), x, op.options.min_value, op.options.max_value)
        self._bind(op.primary_output, out)
        return None

    @_lowering
    def add_leaky_relu(self, op: LeakyRelu) -> MaybeError:
        x = self._value(op.inputs[0])
        self._bind(op.primary_output, self._emit1("LeakyRelu", [x], "leaky_relu", alpha=float(op.options.alpha)))
        return None

    @_lowering
    def add_conv2d(self, op: Conv2d) -> MaybeError:
        opts = op.options
        self._check_nchw(opts.input_layout)
        if opts.filter_layout is not FilterOperandLayout.OIHW:
            raise BackendError(
                f"Filter layout {opts.filter_layout.value} is not supported by the ONNX backend.",
                code="EUNSUPPORTED",
            )
        attrs: dict[str, Any] = {
            "strides": list(opts.strides),
            "dilations": list(opts.dilations),
            "group": int(opts.groups),
        }
        if opts.auto_pad is AutoPad.EXPLICIT:
            attrs["pads"] = _webnn_pads(opts.padding)
        else:
            attrs["auto_pad"] = opts.auto_pad.name
        inputs = [self._value(operand) for operand in op.inputs]
        out = self._emit1("Conv", inputs, "conv2d", **attrs)
        self._bind(op.primary_output, self._activation(out, op.inputs[0], opts.activation))
        return None

    @_lowering
    def add_pool2d(self, op: Pool2d) -> MaybeError:
        opts = op.options
        self._check_nchw(opts.layout)
        x = self._value(op.inputs[0])
        is_max = op.op_type is Pool2dType.MAX
        if opts.window_dimensions is None:
            out = self._emit1("GlobalMaxPool" if is_max else "GlobalAveragePool", [x], op.op_type.value)
            self._bind(op.primary_output, out)
            return None
        attrs: dict[str, Any] = {
            "kernel_shape": list(opts.window_dimensions),
            "strides": list(opts.strides),
        }
        if tuple(opts.dilations) != (1, 1):
            if not is_max:
                raise BackendError("Dilated average pooling is not supported.", code="EUNSUPPORTED")
            attrs["dilations"] = list(opts.dilations)
        if opts.auto_pad is AutoPad.EXPLICIT:
            attrs["pads"] = _webnn_pads(opts.padding)
        else:
            attrs["auto_pad"] = opts.auto_pad.name
        out = self._emit1("MaxPool" if is_max else "AveragePool", [x], op.op_type.value, **attrs)
        self._bind(op.primary_output, out)
        return None

    @_lowering
    def add_batch_norm(self, op: BatchNorm) -> MaybeError:
        x = op.inputs[0]
        axis = op.options.axis + x.rank if op.options.axis < 0 else op.options.axis
        if axis != 1:
            raise BackendError("BatchNormalization only normalizes axis 1.", code="EUNSUPPORTED")
        mean = self._value(op.mean)
        variance = self._value(op.variance)
        # ONNX needs scale and bias; derive 1s and 0s shaped like mean when absent.
        zeros = ones = None
        if op.scale is None or op.bias is None:
            zeros = self._emit1("Mul", [mean, self._scalar(0.0, x, "zero")], "zeros")
            ones = self._emit1("Add", [zeros, self._scalar(1.0, x, "one")], "ones")
        scale = self._value(op.scale) if op.scale is not None else ones
        bias = self._value(op.bias) if op.bias is not None else zeros
        out = self._emit1(
            "BatchNormalization",
            [self._value(x), scale, bias, mean, variance],
            "batch_norm",
            epsilon=float(op.options.epsilon),
        )
        self._bind(op.primary_output, self._activation(out, x, op.options.activation))
        return None

    @_lowering
    def add_instance_norm(self, op: InstanceNorm) -> MaybeError:
        self._check_nchw(op.options.layout)
        x_operand = op.inputs[0]
        x = self._value(x_operand)
        epsilon = float(op.options.epsilon)
        if op.scale is not None and op.bias is not None:
            out = self._emit1(
                "InstanceNormalization",
                [x, self._value(op.scale), self._value(op.bias)],
                "instance_norm",
                epsilon=epsilon,
            )
            self._bind(op.primary_output, out)
            return None
        # Decomposed over the spatial axes when scale or bias is missing.
        mean = self._emit1("ReduceMean", [x], "instance_mean", axes=[2, 3], keepdims=1)
        centered = self._emit1("Sub", [x, mean], "instance_centered")
        squared = self._emit1("Mul", [centered, centered], "instance_squared")
        variance = self._emit1("ReduceMean", [squared], "instance_variance", axes=[2, 3], keepdims=1)
        shifted = self._emit1("Add", [variance, self._scalar(epsilon, x_operand, "epsilon")], "instance_shifted")
        out = self._emit1("Div", [centered, self._emit1("Sqrt", [shifted], "instance_std")], "instance_norm")
        channel_axes = self._int64s([1, 2], "channel_axes")
        if op.scale is not None:
            scale = self._emit1("Unsqueeze", [self._value(op.scale), channel_axes], "instance_scale")
            out = self._emit1("Mul", [out, scale], "instance_scaled")
        if op.bias is not None:
            bias = self._emit1("Unsqueeze", [self._value(op.bias), channel_axes], "instance_bias")
            out = self._emit1("Add", [out, bias], "instance_biased")
        self._bind(op.primary_output, out)
        return None

    @_lowering
    def add_reduce_mean(self, op: ReduceMean) -> MaybeError:
        attrs: dict[str, Any] = {"keepdims": int(op.options.keep_dimensions)}
        if op.options.axes is not None:
            attrs["axes"] = list(op.options.axes)
        out = self._emit1("ReduceMean", [self._value(op.inputs[0])], "reduce_mean", **attrs)
        self._bind(op.primary_output, out)
        return None

    @_lowering
    def add_gemm(self, op: Gemm) -> MaybeError:
        opts = op.options
        out = self._emit1(
            "Gemm",
            [self._value(operand) for operand in op.inputs],
            "gemm",
            alpha=float(opts.alpha),
            beta=float(opts.beta),
            transA=int(opts.a_transpose),
            transB=int(opts.b_transpose),
        )
        self._bind(op.primary_output, out)
        return None

    @_lowering
    def add_concat(self, op: Concat) -> MaybeError:
        out = self._emit1("Concat", [self._value(operand) for operand in op.inputs], "concat", axis=op.axis)
        self._bind(op.primary_output, out)
        return None

    @_lowering
    def add_split(self, op: Split) -> MaybeError:
        inputs = [self._value(op.inputs[0])]
        if len(op.splits) > 1:
            inputs.append(self._int64s(op.splits, "splits"))
        names = self._emit("Split", inputs, "split", outputs=len(op.outputs), axis=op.options.axis)
        for operand, name in zip(op.outputs, names):
            self._bind(operand, name)
        return None

    @_lowering
    def add_reshape(self, op: Reshape) -> MaybeError:
        shape = self._int64s(op.new_shape, "new_shape")
        self._bind(op.primary_output, self._emit1("Reshape", [self._value(op.inputs[0]), shape], "reshape"))
        return None

    @_lowering
    def add_transpose(self, op: Transpose) -> MaybeError:
        out = self._emit1("Transpose", [self._value(op.inputs[0])], "transpose", perm=list(op.permutation))
        self._bind(op.primary_output, out)
        return None

    @_lowering
    def add_squeeze(self, op: Squeeze) -> MaybeError:
        axes = self._int64s(op.options.axes, "squeeze_axes")
        self._bind(op.primary_output, self._emit1("Squeeze", [self._value(op.inputs[0]), axes], "squeeze"))
        return None

    @_lowering
    def add_pad(self, op: Pad) -> MaybeError:
        mode = _PAD_MODES.get(op.options.mode)
        if mode is None:
            raise BackendError(f"Padding mode {op.options.mode.value} is not supported.", code="EUNSUPPORTED")
        x_operand, padding = op.inputs
        # [rank, 2] begin/end pairs -> ONNX [begin..., end...]
        pads = self._emit1("Cast", [self._value(padding)], "pads_int64", to=TensorProto.INT64)
        pads = self._emit1("Transpose", [pads], "pads_transposed", perm=[1, 0])
        pads = self._emit1("Reshape", [pads, self._int64s([-1], "pads_shape")], "pads")
        inputs = [self._value(x_operand), pads]
        if op.options.mode is PaddingMode.CONSTANT:
            inputs.append(self._scalar(op.options.value, x_operand, "pad_value"))
        self._bind(op.primary_output, self._emit1("Pad", inputs, "pad", mode=mode))
        return None

    @_lowering
    def add_resample(self, op: Resample) -> MaybeError:
        opts = op.options
        inputs = [self._value(op.inputs[0]), ""]
        if opts.scales is not None:
            inputs.append(self._initializer(np.array(opts.scales, dtype=np.float32), "scales"))
        else:
            inputs.extend(["", self._int64s(opts.sizes, "sizes")])
        out = self._emit1("Resize", inputs, "resample", mode=_RESIZE_MODES[opts.mode])
        self._bind(op.primary_output, out)
        return None

    @_lowering
    def add_output(self, name: str, operand: Operand) -> MaybeError:
        value = self._value(operand)
        self._claim(name)
        self.nodes.append(helper.make_node("Identity", [value], [name]))
        self.outputs.append(
            helper.make_tensor_value_info(name, _ELEM_TYPES[operand.type], [None] * operand.rank)
        )
        return None

    def finish(self) -> MaybeError:
        if self.model is not None:
            return BackendError("The graph is already finished.", code="EFINISHED")
        if not self.outputs:
            return BackendError("The graph has no outputs.", code="ENOOUTPUT")
        graph = helper.make_graph(
            self.nodes, self.name, self.inputs, self.outputs, initializer=self.initializers
        )
        self.model = helper.make_model(
            graph,
            producer_name=self.producer_name,
            opset_imports=[helper.make_opsetid("", self.opset_version)],
        )
        logger.debug("Finished ONNX graph with %d nodes", len(self.nodes))
        return None

    def compile(self) -> MaybeError:
        if self.model is None:
            return BackendError("The graph must be finished before compiling.", code="ENOTFINISHED")
        try:
            onnx.checker.check_model(self.model)
        except onnx.checker.ValidationError as err:
            return BackendError(f"ONNX model check failed: {err}", code="ECOMPILE")
        self.serialized = self.model.SerializeToString()
        return None

    @property
    def output_names(self) -> list[str]:
        return [vi.name for vi in self.outputs]

    def save(self, path: str | Path) -> None:
        if self.model is None:
            raise ValueError("The graph is not finished.")
        onnx.save(self.model, str(path))


class OnnxBackend:
    def __init__(self, opset_version: int = DEFAULT_OPSET, producer_name: str = "mlgraph") -> None:
        self.opset_version = opset_version
        self.producer_name = producer_name

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            name="onnx",
            opset_version=self.opset_version,
            metadata={"onnx": onnx.__version__},
        )

    def create_graph(self) -> Graph:
        return OnnxGraph(opset_version=self.opset_version, producer_name=self.producer_name)


backend_registry.register("onnx", OnnxBackend)
