from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from mlgraph.errors import MaybeError, ValidationError
from mlgraph.ir.operand import Operand
from mlgraph.ir.operator import Operator

from .elementwise import check_activation

if TYPE_CHECKING:
    from mlgraph.backends.base import Graph
    from mlgraph.builder import GraphBuilder


class InputOperandLayout(Enum):
    NCHW = "nchw"
    NHWC = "nhwc"


class FilterOperandLayout(Enum):
    OIHW = "oihw"
    HWIO = "hwio"
    OHWI = "ohwi"
    IHWO = "ihwo"


class AutoPad(Enum):
    EXPLICIT = "explicit"
    SAME_UPPER = "same-upper"
    SAME_LOWER = "same-lower"


class Pool2dType(Enum):
    AVERAGE = "average_pool2d"
    MAX = "max_pool2d"


def _positive_ints(values: tuple[int, ...], length: int) -> bool:
    return len(values) == length and all(isinstance(v, int) and v > 0 for v in values)


def _check_window_options(
    padding: tuple[int, ...], strides: tuple[int, ...], dilations: tuple[int, ...]
) -> MaybeError:
    if len(padding) != 4 or any(p < 0 for p in padding):
        return ValidationError("padding must be 4 non-negative integers.", code="EOPTION")
    if not _positive_ints(strides, 2):
        return ValidationError("strides must be 2 positive integers.", code="EOPTION")
    if not _positive_ints(dilations, 2):
        return ValidationError("dilations must be 2 positive integers.", code="EOPTION")
    return None


@dataclass(frozen=True)
class Conv2dOptions:
    padding: tuple[int, int, int, int] = (0, 0, 0, 0)
    strides: tuple[int, int] = (1, 1)
    dilations: tuple[int, int] = (1, 1)
    groups: int = 1
    auto_pad: AutoPad = AutoPad.EXPLICIT
    input_layout: InputOperandLayout = InputOperandLayout.NCHW
    filter_layout: FilterOperandLayout = FilterOperandLayout.OIHW
    bias: Operand | None = None
    activation: Operator | None = None


class Conv2d(Operator):
    kind = "conv2d"

    def __init__(
        self,
        builder: GraphBuilder,
        input: Operand,
        filter: Operand,
        options: Conv2dOptions | None = None,
    ) -> None:
        options = options or Conv2dOptions()
        inputs = [input, filter]
        if options.bias is not None:
            inputs.append(options.bias)
        super().__init__(builder, inputs, options)

    @property
    def bias(self) -> Operand | None:
        return self.inputs[2] if len(self.inputs) > 2 else None

    def output_rank(self) -> int | None:
        return 4

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        input, filter = self.inputs[0], self.inputs[1]
        if input.rank != 4:
            return ValidationError("Input dimensions is incorrect.", code="ERANK")
        if filter.rank != 4:
            return ValidationError("Filter dimensions is incorrect.", code="ERANK")
        if input.type is not filter.type:
            return ValidationError("Argument types are inconsistent.", code="ETYPE")
        bias = self.bias
        if bias is not None and (bias.rank != 1 or bias.type is not input.type):
            return ValidationError("Bias is invalid.", code="EOPTION")
        opts: Conv2dOptions = self.options
        error = _check_window_options(tuple(opts.padding), tuple(opts.strides), tuple(opts.dilations))
        if error is not None:
            return error
        if opts.groups <= 0:
            return ValidationError("groups must be positive.", code="EOPTION")
        return check_activation(self, opts.activation)

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_conv2d(self)


@dataclass(frozen=True)
class Pool2dOptions:
    window_dimensions: tuple[int, int] | None = None
    padding: tuple[int, int, int, int] = (0, 0, 0, 0)
    strides: tuple[int, int] = (1, 1)
    dilations: tuple[int, int] = (1, 1)
    auto_pad: AutoPad = AutoPad.EXPLICIT
    layout: InputOperandLayout = InputOperandLayout.NCHW


class Pool2d(Operator):
    kind = "pool2d"

    def __init__(
        self,
        builder: GraphBuilder,
        op_type: Pool2dType,
        input: Operand,
        options: Pool2dOptions | None = None,
    ) -> None:
        self.op_type = op_type
        super().__init__(builder, [input], options or Pool2dOptions())

    def output_rank(self) -> int | None:
        return 4

    def validate(self) -> MaybeError:
        error = super().validate()
        if error is not None:
            return error
        if self.inputs[0].rank != 4:
            return ValidationError("Input dimensions is incorrect.", code="ERANK")
        opts: Pool2dOptions = self.options
        window = opts.window_dimensions
        if window is not None and not _positive_ints(tuple(window), 2):
            return ValidationError("windowDimensions must be 2 positive integers.", code="EOPTION")
        return _check_window_options(tuple(opts.padding), tuple(opts.strides), tuple(opts.dilations))

    def add_to_graph(self, graph: Graph) -> MaybeError:
        return graph.add_pool2d(self)
