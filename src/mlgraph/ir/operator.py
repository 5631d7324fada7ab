from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, ClassVar

from mlgraph.errors import MaybeError, ValidationError

from .operand import Operand
from .types import FusedOperator, OperandType

if TYPE_CHECKING:
    from mlgraph.backends.base import Graph
    from mlgraph.builder import GraphBuilder


class Operator:
    """Base class for graph computation nodes.

    Constructing an Operator appends it to the builder's arena and creates its
    output Operands. Fused-role operators (activations meant to be embedded in
    another operator's options) take no inputs and produce no outputs.
    """

    kind: ClassVar[str] = "operator"

    def __init__(
        self,
        builder: GraphBuilder,
        inputs: Sequence[Operand] = (),
        options: Any = None,
        *,
        fused_operator: FusedOperator | None = None,
        is_error: bool = False,
    ) -> None:
        self.builder = builder
        self.inputs: list[Operand] = list(inputs)
        if any(operand is None for operand in self.inputs):
            raise TypeError(f"{type(self).__name__} inputs must be Operands, got None")
        self.options = options
        self.fused_operator = fused_operator
        self.is_error = is_error
        self.index: int | None = None
        self.outputs: list[Operand] = []
        if is_error:
            return
        self.index = builder.register_operator(self)
        if fused_operator is None:
            out_type = self.output_type()
            out_rank = self.output_rank()
            self.outputs = [
                Operand(builder, self, type=out_type, rank=out_rank)
                for _ in range(self.output_count())
            ]

    @classmethod
    def make_error(cls, builder: GraphBuilder) -> Operator:
        return Operator(builder, is_error=True)

    @property
    def primary_output(self) -> Operand | None:
        return self.outputs[0] if self.outputs else None

    @property
    def is_fused_role(self) -> bool:
        return self.fused_operator is not None

    # Output construction hooks; None keeps the input[0] default.
    def output_count(self) -> int:
        return 1

    def output_type(self) -> OperandType | None:
        return None

    def output_rank(self) -> int | None:
        return None

    def validate(self) -> MaybeError:
        for operand in self.inputs:
            if operand.is_error or operand.builder is not self.builder:
                return ValidationError("Argument inputs are invalid.", code="EINPUT")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        raise NotImplementedError

    def __repr__(self) -> str:
        if self.is_error:
            return "Operator(<error>)"
        return f"{type(self).__name__}(kind={self.kind!r}, index={self.index}, inputs={len(self.inputs)})"


def check_axis(axis: int, rank: int) -> bool:
    return -rank <= axis < rank


def check_axes(axes: Sequence[int], rank: int) -> bool:
    normalized = [a + rank if a < 0 else a for a in axes]
    return all(check_axis(a, rank) for a in axes) and len(set(normalized)) == len(normalized)
