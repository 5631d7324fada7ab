from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from mlgraph.errors import MaybeError, ValidationError
from mlgraph.ir.operator import Operator
from mlgraph.ir.types import OperandDescriptor, OperandType

if TYPE_CHECKING:
    from mlgraph.backends.base import Graph
    from mlgraph.builder import GraphBuilder


class Input(Operator):
    kind = "input"

    def __init__(self, builder: GraphBuilder, name: str, descriptor: OperandDescriptor) -> None:
        self.name = name
        self.descriptor = descriptor
        super().__init__(builder)

    def output_type(self) -> OperandType | None:
        return self.descriptor.type

    def output_rank(self) -> int | None:
        return self.descriptor.rank

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        if not self.name:
            return ValidationError("The input name is empty.", code="EOPTION")
        if self.name in self.builder.input_names:
            return ValidationError(f"The input name '{self.name}' is already used.", code="EOPTION")
        if not self.descriptor.is_valid():
            return ValidationError("The input descriptor is invalid.", code="EOPTION")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_input(self)


class Constant(Operator):
    """A constant tensor; the data is kept as a numpy array of the descriptor's dtype."""

    kind = "constant"

    def __init__(self, builder: GraphBuilder, descriptor: OperandDescriptor, value: Any) -> None:
        self.descriptor = descriptor
        self._raw = np.asarray(value)
        super().__init__(builder)

    def output_type(self) -> OperandType | None:
        return self.descriptor.type

    def output_rank(self) -> int | None:
        return self.descriptor.rank

    @property
    def value(self) -> np.ndarray:
        return self._raw.astype(self.descriptor.type.numpy_dtype, copy=False).reshape(self.descriptor.dimensions)

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        if not self.descriptor.is_valid():
            return ValidationError("The constant descriptor is invalid.", code="EOPTION")
        if self._raw.size != self.descriptor.size:
            return ValidationError(
                f"The constant holds {self._raw.size} values, expected {self.descriptor.size}.",
                code="EOPTION",
            )
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_constant(self)
