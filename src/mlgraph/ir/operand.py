from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from typing import TYPE_CHECKING

from .types import OperandType

if TYPE_CHECKING:
    from mlgraph.builder import GraphBuilder

    from .operator import Operator


class Operand:
    """A graph value.

    An Operand is produced by exactly one Operator and never changes after
    construction. It does not own its producer: it keeps the producer's index
    in the builder's operator arena and looks it up on demand.
    """

    __slots__ = ("builder", "is_error", "_operator_index", "_type", "_rank")

    def __init__(
        self,
        builder: GraphBuilder,
        operator: Operator | None = None,
        *,
        type: OperandType | None = None,
        rank: int | None = None,
        is_error: bool = False,
    ) -> None:
        self.builder = builder
        self.is_error = is_error
        self._operator_index: int | None = None
        self._type = OperandType.FLOAT32
        self._rank = 0
        if operator is not None:
            self._operator_index = operator.index
            if operator.inputs:
                # The type and rank are the same as input[0] by default.
                primary_input = operator.inputs[0]
                self._type = primary_input.type
                self._rank = primary_input.rank
        if type is not None:
            self._type = type
        if rank is not None:
            self._rank = rank

    @classmethod
    def make_error(cls, builder: GraphBuilder) -> Operand:
        return cls(builder, is_error=True)

    @property
    def type(self) -> OperandType:
        return self._type

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def operator(self) -> Operator | None:
        if self._operator_index is None:
            return None
        return self.builder.operators[self._operator_index]

    def __repr__(self) -> str:
        if self.is_error:
            return "Operand(<error>)"
        producer = self.operator
        kind = producer.kind if producer is not None else None
        return f"Operand(type={self._type.value}, rank={self._rank}, operator={kind})"


class OperandArray(Sequence[Operand]):
    """Ordered outputs of a multi-output operator such as split."""

    def __init__(
        self, builder: GraphBuilder, operands: Sequence[Operand] = (), *, is_error: bool = False
    ) -> None:
        self.builder = builder
        self.is_error = is_error
        self._operands = tuple(operands)

    @classmethod
    def make_error(cls, builder: GraphBuilder) -> OperandArray:
        return cls(builder, is_error=True)

    def get_operand(self, index: int) -> Operand:
        return self._operands[index]

    @property
    def size(self) -> int:
        return len(self._operands)

    def __getitem__(self, index):  # type: ignore[override]
        return self._operands[index]

    def __len__(self) -> int:
        return len(self._operands)

    def __iter__(self) -> Iterator[Operand]:
        return iter(self._operands)


class NamedOperands:
    """Ordered mapping from output name to Operand, passed to ``build``."""

    def __init__(self, records: Mapping[str, Operand] | None = None) -> None:
        self._records: dict[str, Operand] = {}
        if records:
            for name, operand in records.items():
                self.set(name, operand)

    def set(self, name: str, operand: Operand) -> None:
        self._records[name] = operand

    @property
    def records(self) -> dict[str, Operand]:
        return dict(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, name: object) -> bool:
        return name in self._records
