from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from mlgraph.errors import MaybeError, ValidationError
from mlgraph.ir.operand import Operand
from mlgraph.ir.operator import Operator, check_axis

from .conv import InputOperandLayout
from .elementwise import check_activation

if TYPE_CHECKING:
    from mlgraph.backends.base import Graph
    from mlgraph.builder import GraphBuilder


def _check_vector(operand: Operand | None, like: Operand, what: str) -> MaybeError:
    if operand is None:
        return None
    if operand.rank != 1:
        return ValidationError(f"Argument {what} is not a 1-D tensor.", code="ERANK")
    if operand.type is not like.type:
        return ValidationError(f"Argument {what} type is inconsistent.", code="ETYPE")
    return None


@dataclass(frozen=True)
class BatchNormOptions:
    scale: Operand | None = None
    bias: Operand | None = None
    axis: int = 1
    epsilon: float = 1e-5
    activation: Operator | None = None


class BatchNorm(Operator):
    kind = "batch_norm"

    def __init__(
        self,
        builder: GraphBuilder,
        input: Operand,
        mean: Operand,
        variance: Operand,
        options: BatchNormOptions | None = None,
    ) -> None:
        options = options or BatchNormOptions()
        inputs = [input, mean, variance]
        for extra in (options.scale, options.bias):
            if extra is not None:
                inputs.append(extra)
        super().__init__(builder, inputs, options)

    @property
    def mean(self) -> Operand:
        return self.inputs[1]

    @property
    def variance(self) -> Operand:
        return self.inputs[2]

    @property
    def scale(self) -> Operand | None:
        return self.options.scale

    @property
    def bias(self) -> Operand | None:
        return self.options.bias

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        input = self.inputs[0]
        if input.rank < 2:
            return ValidationError("Input dimensions is incorrect.", code="ERANK")
        for operand, what in (
            (self.mean, "mean"),
            (self.variance, "variance"),
            (self.scale, "scale"),
            (self.bias, "bias"),
        ):
            error = _check_vector(operand, input, what)
            if error is not None:
                return error
        opts: BatchNormOptions = self.options
        if not check_axis(opts.axis, input.rank):
            return ValidationError("axis is out of range.", code="EAXIS")
        if opts.epsilon < 0:
            return ValidationError("epsilon must be non-negative.", code="EOPTION")
        return check_activation(self, opts.activation)

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_batch_norm(self)


@dataclass(frozen=True)
class InstanceNormOptions:
    scale: Operand | None = None
    bias: Operand | None = None
    epsilon: float = 1e-5
    layout: InputOperandLayout = InputOperandLayout.NCHW


class InstanceNorm(Operator):
    kind = "instance_norm"

    def __init__(self, builder: GraphBuilder, input: Operand, options: InstanceNormOptions | None = None) -> None:
        options = options or InstanceNormOptions()
        inputs = [input]
        for extra in (options.scale, options.bias):
            if extra is not None:
                inputs.append(extra)
        super().__init__(builder, inputs, options)

    @property
    def scale(self) -> Operand | None:
        return self.options.scale

    @property
    def bias(self) -> Operand | None:
        return self.options.bias

    def output_rank(self) -> int | None:
        return 4

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        input = self.inputs[0]
        if input.rank != 4:
            return ValidationError("Input dimensions is incorrect.", code="ERANK")
        for operand, what in ((self.scale, "scale"), (self.bias, "bias")):
            error = _check_vector(operand, input, what)
            if error is not None:
                return error
        if self.options.epsilon < 0:
            return ValidationError("epsilon must be non-negative.", code="EOPTION")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_instance_norm(self)
