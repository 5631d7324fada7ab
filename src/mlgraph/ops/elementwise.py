from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from mlgraph.errors import MaybeError, ValidationError
from mlgraph.ir.operand import Operand
from mlgraph.ir.operator import Operator
from mlgraph.ir.types import FusedOperator

if TYPE_CHECKING:
    from mlgraph.backends.base import Graph
    from mlgraph.builder import GraphBuilder


class UnaryOpType(Enum):
    RELU = "relu"
    SIGMOID = "sigmoid"
    TANH = "tanh"
    HARD_SWISH = "hard_swish"
    SOFTMAX = "softmax"


class BinaryOpType(Enum):
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    MAX = "max"
    MIN = "min"
    POW = "pow"
    MATMUL = "matmul"


def _optional_input(operand: Operand | None) -> list[Operand]:
    return [operand] if operand is not None else []


def _check_arity(operator: Operator, expected: int) -> MaybeError:
    # Fused-role activations carry no inputs until they are materialized.
    actual = len(operator.inputs)
    if operator.is_fused_role:
        if actual != 0:
            return ValidationError(f"Fused {operator.kind} takes no inputs", code="EARITY")
        return None
    if actual != expected:
        return ValidationError(f"{operator.kind} expects {expected} input(s), got {actual}", code="EARITY")
    return None


class Unary(Operator):
    kind = "unary"

    def __init__(
        self,
        builder: GraphBuilder,
        op_type: UnaryOpType,
        input: Operand | None = None,
        *,
        fused_operator: FusedOperator | None = None,
    ) -> None:
        self.op_type = op_type
        super().__init__(builder, _optional_input(input), fused_operator=fused_operator)

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        error = _check_arity(self, 1)
        if error is not None:
            return error

        if self.op_type is UnaryOpType.SOFTMAX and not self.is_fused_role:
            if self.inputs[0].rank != 2:
                return ValidationError("Input dimensions is incorrect.", code="ERANK")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_unary(self)


class Binary(Operator):
    kind = "binary"

    def __init__(self, builder: GraphBuilder, op_type: BinaryOpType, a: Operand, b: Operand) -> None:
        self.op_type = op_type
        super().__init__(builder, [a, b])

    def output_rank(self) -> int | None:
        a, b = self.inputs
        rank = max(a.rank, b.rank)
        if self.op_type is not BinaryOpType.MATMUL:
            return rank
        if a.rank == 1 and b.rank == 1:
            return 0
        if a.rank == 1 or b.rank == 1:
            return max(rank - 1, 0)
        return rank

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        a, b = self.inputs
        if a.type is not b.type:
            return ValidationError("Argument types are inconsistent.", code="ETYPE")
        if self.op_type is BinaryOpType.MATMUL and (a.rank < 1 or b.rank < 1):
            return ValidationError("Matmul requires operands of rank >= 1.", code="ERANK")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_binary(self)


@dataclass(frozen=True)
class ClampOptions:
    min_value: float | None = None
    max_value: float | None = None


class Clamp(Operator):
    kind = "clamp"

    def __init__(
        self,
        builder: GraphBuilder,
        input: Operand | None = None,
        options: ClampOptions | None = None,
        *,
        fused_operator: FusedOperator | None = None,
    ) -> None:
        super().__init__(
            builder, _optional_input(input), options or ClampOptions(), fused_operator=fused_operator
        )

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        error = _check_arity(self, 1)
        if error is not None:
            return error
        lo, hi = self.options.min_value, self.options.max_value
        if lo is not None and hi is not None and lo > hi:
            return ValidationError("Clamp minValue must not exceed maxValue.", code="EOPTION")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_clamp(self)


@dataclass(frozen=True)
class LeakyReluOptions:
    alpha: float = 0.01


class LeakyRelu(Operator):
    kind = "leaky_relu"

    def __init__(
        self,
        builder: GraphBuilder,
        input: Operand | None = None,
        options: LeakyReluOptions | None = None,
        *,
        fused_operator: FusedOperator | None = None,
    ) -> None:
        super().__init__(
            builder, _optional_input(input), options or LeakyReluOptions(), fused_operator=fused_operator
        )

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        return _check_arity(self, 1)

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_leaky_relu(self)


def check_activation(operator: Operator, activation: Operator | None) -> MaybeError:
    """An embedded activation must be a valid fused-role operator of the same builder."""
    if activation is None:
        return None
    if activation.is_error or not activation.is_fused_role or activation.builder is not operator.builder:
        return ValidationError("The fused activation operator is invalid.", code="EOPTION")
    return None
