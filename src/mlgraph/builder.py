from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from mlgraph.config import BuilderConfig
from mlgraph.errors import GraphCycleError, PreconditionError
from mlgraph.ir.operand import NamedOperands, Operand, OperandArray
from mlgraph.ir.operator import Operator
from mlgraph.ir.toposort import topological_sort
from mlgraph.ir.types import FusedOperator, OperandDescriptor
from mlgraph.ops import (
    BatchNorm,
    BatchNormOptions,
    Binary,
    BinaryOpType,
    Clamp,
    ClampOptions,
    Concat,
    Constant,
    Conv2d,
    Conv2dOptions,
    Gemm,
    GemmOptions,
    Input,
    InstanceNorm,
    InstanceNormOptions,
    LeakyRelu,
    LeakyReluOptions,
    Pad,
    PadOptions,
    Pool2d,
    Pool2dOptions,
    Pool2dType,
    ReduceMean,
    ReduceMeanOptions,
    Resample,
    ResampleOptions,
    Reshape,
    Split,
    SplitOptions,
    Squeeze,
    SqueezeOptions,
    Transpose,
    TransposeOptions,
    Unary,
    UnaryOpType,
)
from mlgraph.utils import get_logger

if TYPE_CHECKING:
    from mlgraph.backends.base import Graph
    from mlgraph.context import Context

logger = get_logger(__name__)


class GraphBuilder:
    """Builds a graph one operator at a time.

    Every call constructs an Operator over already-built Operands and
    validates it immediately. On failure the error goes to the context's error
    sink and the call returns an error sentinel of its result type, so chained
    calls stay well-typed and every later operator built on the sentinel fails
    its own validation.

    All operators live in ``operators`` in creation order; Operands refer back
    to their producer by index into that list.
    """

    def __init__(self, context: Context, *, is_error: bool = False) -> None:
        self.context = context
        self.is_error = is_error
        self.operators: list[Operator] = []
        self.input_names: set[str] = set()

    @classmethod
    def make_error(cls, context: Context) -> GraphBuilder:
        return cls(context, is_error=True)

    @property
    def config(self) -> BuilderConfig:
        return self.context.config

    def register_operator(self, operator: Operator) -> int:
        self.operators.append(operator)
        return len(self.operators) - 1

    # validation helpers

    def _validate(self, op: Operator) -> bool:
        if self.is_error:
            error = PreconditionError("This GraphBuilder object is an error.")
        else:
            error = op.validate()
        return not self.context.consumed_error(error)

    def _validate_for_operand(self, op: Operator) -> Operand:
        if not self._validate(op):
            return Operand.make_error(self)
        return op.primary_output

    def _validate_fused_operator(self, op: Operator) -> Operator:
        if not self._validate(op):
            return Operator.make_error(self)
        return op

    def _validate_array_operand(self, op: Operator) -> OperandArray:
        if not self._validate(op):
            return OperandArray.make_error(self)
        return OperandArray(self, op.outputs)

    # sources

    def input(self, name: str, descriptor: OperandDescriptor) -> Operand:
        op = Input(self, name, descriptor)
        result = self._validate_for_operand(op)
        if not result.is_error:
            self.input_names.add(name)
        return result

    def constant(self, descriptor: OperandDescriptor, value: Any) -> Operand:
        return self._validate_for_operand(Constant(self, descriptor, value))

    # element-wise binary

    def add(self, a: Operand, b: Operand) -> Operand:
        return self._validate_for_operand(Binary(self, BinaryOpType.ADD, a, b))

    def sub(self, a: Operand, b: Operand) -> Operand:
        return self._validate_for_operand(Binary(self, BinaryOpType.SUB, a, b))

    def mul(self, a: Operand, b: Operand) -> Operand:
        return self._validate_for_operand(Binary(self, BinaryOpType.MUL, a, b))

    def div(self, a: Operand, b: Operand) -> Operand:
        return self._validate_for_operand(Binary(self, BinaryOpType.DIV, a, b))

    def max(self, a: Operand, b: Operand) -> Operand:
        return self._validate_for_operand(Binary(self, BinaryOpType.MAX, a, b))

    def min(self, a: Operand, b: Operand) -> Operand:
        return self._validate_for_operand(Binary(self, BinaryOpType.MIN, a, b))

    def pow(self, a: Operand, b: Operand) -> Operand:
        return self._validate_for_operand(Binary(self, BinaryOpType.POW, a, b))

    def matmul(self, a: Operand, b: Operand) -> Operand:
        return self._validate_for_operand(Binary(self, BinaryOpType.MATMUL, a, b))

    # unary and activations

    def relu(self, input: Operand) -> Operand:
        return self._validate_for_operand(Unary(self, UnaryOpType.RELU, input))

    def relu_operator(self) -> Operator:
        return self._validate_fused_operator(Unary(self, UnaryOpType.RELU, fused_operator=FusedOperator.RELU))

    def sigmoid(self, input: Operand) -> Operand:
        return self._validate_for_operand(Unary(self, UnaryOpType.SIGMOID, input))

    def sigmoid_operator(self) -> Operator:
        return self._validate_fused_operator(
            Unary(self, UnaryOpType.SIGMOID, fused_operator=FusedOperator.SIGMOID)
        )

    def hard_swish(self, input: Operand) -> Operand:
        return self._validate_for_operand(Unary(self, UnaryOpType.HARD_SWISH, input))

    def hard_swish_operator(self) -> Operator:
        return self._validate_fused_operator(
            Unary(self, UnaryOpType.HARD_SWISH, fused_operator=FusedOperator.HARD_SWISH)
        )

    def tanh(self, input: Operand) -> Operand:
        return self._validate_for_operand(Unary(self, UnaryOpType.TANH, input))

    def softmax(self, input: Operand) -> Operand:
        return self._validate_for_operand(Unary(self, UnaryOpType.SOFTMAX, input))

    def leaky_relu(self, input: Operand, options: LeakyReluOptions | None = None) -> Operand:
        return self._validate_for_operand(LeakyRelu(self, input, options))

    def leaky_relu_operator(self, options: LeakyReluOptions | None = None) -> Operator:
        return self._validate_fused_operator(
            LeakyRelu(self, options=options, fused_operator=FusedOperator.LEAKY_RELU)
        )

    def clamp(self, input: Operand, options: ClampOptions | None = None) -> Operand:
        return self._validate_for_operand(Clamp(self, input, options))

    def clamp_operator(self, options: ClampOptions | None = None) -> Operator:
        return self._validate_fused_operator(Clamp(self, options=options, fused_operator=FusedOperator.CLAMP))

    # fused activation rewrite

    def _decomposed_activation(self, activation: Operator | None) -> Operator | None:
        """Return the activation if it must become a standalone node."""
        if activation is None or activation.is_error or activation.builder is not self:
            return None
        if activation.fused_operator not in self.config.decomposed_activations:
            return None
        return activation

    def _materialize_activation(self, activation: Operator, input: Operand) -> Operator:
        if activation.fused_operator is FusedOperator.CLAMP:
            return Clamp(self, input, activation.options)
        if activation.fused_operator is FusedOperator.LEAKY_RELU:
            return LeakyRelu(self, input, activation.options)
        return Unary(self, activation.op_type, input)

    def _with_activation(self, primary: Operator, activation: Operator) -> Operand:
        # primary was built without the activation; append it as its own node.
        if not self._validate(primary):
            return Operand.make_error(self)
        return self._validate_for_operand(self._materialize_activation(activation, primary.primary_output))

    # convolution and pooling

    def conv2d(self, input: Operand, filter: Operand, options: Conv2dOptions | None = None) -> Operand:
        activation = self._decomposed_activation(options.activation if options else None)
        if activation is not None:
            conv2d = Conv2d(self, input, filter, replace(options, activation=None))
            return self._with_activation(conv2d, activation)
        return self._validate_for_operand(Conv2d(self, input, filter, options))

    def average_pool2d(self, input: Operand, options: Pool2dOptions | None = None) -> Operand:
        return self._validate_for_operand(Pool2d(self, Pool2dType.AVERAGE, input, options))

    def max_pool2d(self, input: Operand, options: Pool2dOptions | None = None) -> Operand:
        return self._validate_for_operand(Pool2d(self, Pool2dType.MAX, input, options))

    # normalization

    def batch_norm(
        self,
        input: Operand,
        mean: Operand,
        variance: Operand,
        options: BatchNormOptions | None = None,
    ) -> Operand:
        activation = self._decomposed_activation(options.activation if options else None)
        if activation is not None:
            batch_norm = BatchNorm(self, input, mean, variance, replace(options, activation=None))
            return self._with_activation(batch_norm, activation)
        return self._validate_for_operand(BatchNorm(self, input, mean, variance, options))

    def instance_norm(self, input: Operand, options: InstanceNormOptions | None = None) -> Operand:
        return self._validate_for_operand(InstanceNorm(self, input, options))

    # reduction and linear algebra

    def reduce_mean(self, input: Operand, options: ReduceMeanOptions | None = None) -> Operand:
        return self._validate_for_operand(ReduceMean(self, input, options))

    def gemm(self, a: Operand, b: Operand, options: GemmOptions | None = None) -> Operand:
        return self._validate_for_operand(Gemm(self, a, b, options))

    # shape manipulation

    def concat(self, inputs: Sequence[Operand], axis: int) -> Operand:
        return self._validate_for_operand(Concat(self, inputs, axis))

    def split(self, input: Operand, splits: int | Sequence[int], options: SplitOptions | None = None) -> OperandArray:
        if isinstance(splits, int):
            splits = [splits]
        return self._validate_array_operand(Split(self, input, splits, options))

    def reshape(self, input: Operand, new_shape: Sequence[int]) -> Operand:
        return self._validate_for_operand(Reshape(self, input, new_shape))

    def transpose(self, input: Operand, options: TransposeOptions | None = None) -> Operand:
        return self._validate_for_operand(Transpose(self, input, options))

    def squeeze(self, input: Operand, options: SqueezeOptions | None = None) -> Operand:
        return self._validate_for_operand(Squeeze(self, input, options))

    def pad(self, input: Operand, padding: Operand, options: PadOptions | None = None) -> Operand:
        return self._validate_for_operand(Pad(self, input, padding, options))

    def resample(self, input: Operand, options: ResampleOptions | None = None) -> Operand:
        return self._validate_for_operand(Resample(self, input, options))

    # build

    def _reject(self, message: str) -> None:
        self.context.consumed_error(PreconditionError(message))
        logger.error(message)

    def build(self, named_operands: NamedOperands | Mapping[str, Operand]) -> Graph | None:
        """Sort, ingest, register outputs, finish and compile; None on any failure."""
        if self.is_error:
            self._reject("This GraphBuilder object is an error.")
            return None
        if isinstance(named_operands, NamedOperands):
            records = named_operands.records
        else:
            records = dict(named_operands)
        if not records:
            self._reject("The output named operands are empty.")
            return None
        for name, operand in records.items():
            if operand.is_error or operand.builder is not self:
                self._reject(f"The output operand '{name}' is invalid.")
                return None

        try:
            sorted_operators = topological_sort(records.values())
        except GraphCycleError as err:
            self.context.consumed_error(err)
            logger.error("Failed to sort the graph.")
            return None

        graph = self.context.create_graph()
        for op in sorted_operators:
            if op.is_error or self.context.consumed_error(op.add_to_graph(graph)):
                logger.error("Failed to add the operand when building graph.")
                return None
        for name, operand in records.items():
            if self.context.consumed_error(graph.add_output(name, operand)):
                logger.error("Failed to add output when building graph.")
                return None
        if self.context.consumed_error(graph.finish()):
            logger.error("Failed to finish building graph.")
            return None
        if self.context.consumed_error(graph.compile()):
            logger.error("Failed to compile the graph.")
            return None

        logger.debug("Built graph with %d operators and %d outputs", len(sorted_operators), len(records))
        return graph
