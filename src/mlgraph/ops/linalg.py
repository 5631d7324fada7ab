from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from mlgraph.errors import MaybeError, ValidationError
from mlgraph.ir.operand import Operand
from mlgraph.ir.operator import Operator

if TYPE_CHECKING:
    from mlgraph.backends.base import Graph
    from mlgraph.builder import GraphBuilder


@dataclass(frozen=True)
class GemmOptions:
    c: Operand | None = None
    alpha: float = 1.0
    beta: float = 1.0
    a_transpose: bool = False
    b_transpose: bool = False


class Gemm(Operator):
    """alpha * A' * B' + beta * C, with A and B optionally transposed."""

    kind = "gemm"

    def __init__(self, builder: GraphBuilder, a: Operand, b: Operand, options: GemmOptions | None = None) -> None:
        options = options or GemmOptions()
        inputs = [a, b]
        if options.c is not None:
            inputs.append(options.c)
        super().__init__(builder, inputs, options)

    @property
    def c(self) -> Operand | None:
        return self.inputs[2] if len(self.inputs) > 2 else None

    def output_rank(self) -> int | None:
        return 2

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        a, b = self.inputs[0], self.inputs[1]
        if a.rank != 2 or b.rank != 2:
            return ValidationError("The inputs a and b must be 2-D tensors.", code="ERANK")
        if a.type is not b.type:
            return ValidationError("Argument types are inconsistent.", code="ETYPE")
        c = self.c
        if c is not None:
            if c.rank > 2:
                return ValidationError("The input c must be broadcastable to [M, N].", code="ERANK")
            if c.type is not a.type:
                return ValidationError("Argument types are inconsistent.", code="ETYPE")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_gemm(self)
