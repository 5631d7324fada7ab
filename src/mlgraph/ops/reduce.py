from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from mlgraph.errors import MaybeError, ValidationError
from mlgraph.ir.operand import Operand
from mlgraph.ir.operator import Operator, check_axes

if TYPE_CHECKING:
    from mlgraph.backends.base import Graph
    from mlgraph.builder import GraphBuilder


@dataclass(frozen=True)
class ReduceMeanOptions:
    axes: tuple[int, ...] | None = None
    keep_dimensions: bool = False


class ReduceMean(Operator):
    kind = "reduce_mean"

    def __init__(self, builder: GraphBuilder, input: Operand, options: ReduceMeanOptions | None = None) -> None:
        super().__init__(builder, [input], options or ReduceMeanOptions())

    def output_rank(self) -> int | None:
        if self.options.keep_dimensions:
            return None
        rank = self.inputs[0].rank
        axes = self.options.axes
        if axes is None:
            return 0
        return max(rank - len(axes), 0)

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        axes = self.options.axes
        if axes is not None and not check_axes(axes, self.inputs[0].rank):
            return ValidationError("axes are out of range or repeated.", code="EAXIS")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_reduce_mean(self)
