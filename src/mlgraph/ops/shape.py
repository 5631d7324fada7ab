from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from mlgraph.errors import MaybeError, ValidationError
from mlgraph.ir.operand import Operand
from mlgraph.ir.operator import Operator, check_axes, check_axis
from mlgraph.ir.types import OperandType

if TYPE_CHECKING:
    from mlgraph.backends.base import Graph
    from mlgraph.builder import GraphBuilder


class Concat(Operator):
    kind = "concat"

    def __init__(self, builder: GraphBuilder, inputs: Sequence[Operand], axis: int) -> None:
        self.axis = axis
        super().__init__(builder, inputs)

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        if not self.inputs:
            return ValidationError("Concat expects at least one input.", code="EARITY")
        first = self.inputs[0]
        for operand in self.inputs[1:]:
            if operand.type is not first.type:
                return ValidationError("Argument types are inconsistent.", code="ETYPE")
            if operand.rank != first.rank:
                return ValidationError("Argument ranks are inconsistent.", code="ERANK")
        if not 0 <= self.axis < first.rank:
            return ValidationError("axis is out of range.", code="EAXIS")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_concat(self)


@dataclass(frozen=True)
class SplitOptions:
    axis: int = 0


class Split(Operator):
    """Splits the input along ``axis``.

    A single entry in ``splits`` is the number of equal parts; several
    entries are the sizes of each part.
    """

    kind = "split"

    def __init__(
        self,
        builder: GraphBuilder,
        input: Operand,
        splits: Sequence[int],
        options: SplitOptions | None = None,
    ) -> None:
        self.splits = tuple(int(s) for s in splits)
        super().__init__(builder, [input], options or SplitOptions())

    def output_count(self) -> int:
        if len(self.splits) == 1:
            return max(self.splits[0], 0)
        return len(self.splits)

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        if not self.splits or any(s <= 0 for s in self.splits):
            return ValidationError("splits must be positive integers.", code="EOPTION")
        if not check_axis(self.options.axis, self.inputs[0].rank):
            return ValidationError("axis is out of range.", code="EAXIS")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_split(self)


class Reshape(Operator):
    kind = "reshape"

    def __init__(self, builder: GraphBuilder, input: Operand, new_shape: Sequence[int]) -> None:
        self.new_shape = tuple(int(d) for d in new_shape)
        super().__init__(builder, [input])

    def output_rank(self) -> int | None:
        return len(self.new_shape)

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        if not self.new_shape:
            return ValidationError("newShape is empty.", code="EOPTION")
        if sum(1 for d in self.new_shape if d == -1) > 1:
            return ValidationError("newShape may contain at most one -1.", code="EOPTION")
        if any(d != -1 and d <= 0 for d in self.new_shape):
            return ValidationError("newShape dims must be positive (or -1 for infer).", code="EOPTION")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_reshape(self)


@dataclass(frozen=True)
class TransposeOptions:
    permutation: tuple[int, ...] | None = None


class Transpose(Operator):
    kind = "transpose"

    def __init__(self, builder: GraphBuilder, input: Operand, options: TransposeOptions | None = None) -> None:
        super().__init__(builder, [input], options or TransposeOptions())

    @property
    def permutation(self) -> tuple[int, ...]:
        perm = self.options.permutation
        if perm is None:
            return tuple(reversed(range(self.inputs[0].rank)))
        return tuple(perm)

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        rank = self.inputs[0].rank
        if sorted(self.permutation) != list(range(rank)):
            return ValidationError("permutation is invalid.", code="EOPTION")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_transpose(self)


@dataclass(frozen=True)
class SqueezeOptions:
    axes: tuple[int, ...] | None = None


class Squeeze(Operator):
    kind = "squeeze"

    def __init__(self, builder: GraphBuilder, input: Operand, options: SqueezeOptions | None = None) -> None:
        super().__init__(builder, [input], options or SqueezeOptions())

    def output_rank(self) -> int | None:
        axes = self.options.axes
        if axes is None:
            return None
        return max(self.inputs[0].rank - len(axes), 0)

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        axes = self.options.axes
        # Only ranks are tracked, so the squeezed dimensions must be named.
        if not axes:
            return ValidationError("Squeeze requires explicit axes.", code="EOPTION")
        if not check_axes(axes, self.inputs[0].rank):
            return ValidationError("axes are out of range or repeated.", code="EAXIS")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_squeeze(self)


class PaddingMode(Enum):
    CONSTANT = "constant"
    EDGE = "edge"
    REFLECTION = "reflection"
    SYMMETRIC = "symmetric"


@dataclass(frozen=True)
class PadOptions:
    mode: PaddingMode = PaddingMode.CONSTANT
    value: float = 0.0


class Pad(Operator):
    """Pads ``input``; ``padding`` is a [rank, 2] tensor of begin/end amounts."""

    kind = "pad"

    def __init__(
        self,
        builder: GraphBuilder,
        input: Operand,
        padding: Operand,
        options: PadOptions | None = None,
    ) -> None:
        super().__init__(builder, [input, padding], options or PadOptions())

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        padding = self.inputs[1]
        if padding.rank != 2:
            return ValidationError("The padding should has shape [n, 2].", code="ERANK")
        if padding.type not in (OperandType.INT32, OperandType.UINT32):
            return ValidationError("The padding should be an integer tensor.", code="ETYPE")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_pad(self)


class InterpolationMode(Enum):
    NEAREST_NEIGHBOR = "nearest-neighbor"
    LINEAR = "linear"


@dataclass(frozen=True)
class ResampleOptions:
    mode: InterpolationMode = InterpolationMode.NEAREST_NEIGHBOR
    scales: tuple[float, ...] | None = None
    sizes: tuple[int, ...] | None = None


class Resample(Operator):
    kind = "resample"

    def __init__(self, builder: GraphBuilder, input: Operand, options: ResampleOptions | None = None) -> None:
        super().__init__(builder, [input], options or ResampleOptions())

    def output_rank(self) -> int | None:
        return 4

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        if self.inputs[0].rank != 4:
            return ValidationError("Input dimensions is incorrect.", code="ERANK")
        scales, sizes = self.options.scales, self.options.sizes
        if scales is None and sizes is None:
            return ValidationError("scales or sizes must be set.", code="EOPTION")
        # scales take precedence when both are given.
        if scales is not None:
            if len(scales) != 4 or any(s <= 0 for s in scales):
                return ValidationError("scales must be 4 positive numbers.", code="EOPTION")
        elif len(sizes) != 4 or any(not isinstance(s, int) or s <= 0 for s in sizes):
            return ValidationError("sizes must be 4 positive integers.", code="EOPTION")
        return None

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_resample(self)
