"""Operator catalog: one Operator subclass per kind, each with its own validation rules."""

from .conv import (
    AutoPad,
    Conv2d,
    Conv2dOptions,
    FilterOperandLayout,
    InputOperandLayout,
    Pool2d,
    Pool2dOptions,
    Pool2dType,
)
from .elementwise import (
    Binary,
    BinaryOpType,
    Clamp,
    ClampOptions,
    LeakyRelu,
    LeakyReluOptions,
    Unary,
    UnaryOpType,
)
from .linalg import Gemm, GemmOptions
from .normalization import BatchNorm, BatchNormOptions, InstanceNorm, InstanceNormOptions
from .reduce import ReduceMean, ReduceMeanOptions
from .shape import (
    Concat,
    InterpolationMode,
    Pad,
    PaddingMode,
    PadOptions,
    Resample,
    ResampleOptions,
    Reshape,
    Split,
    SplitOptions,
    Squeeze,
    SqueezeOptions,
    Transpose,
    TransposeOptions,
)
from .sources import Constant, Input

__all__ = [
    "AutoPad",
    "BatchNorm",
    "BatchNormOptions",
    "Binary",
    "BinaryOpType",
    "Clamp",
    "ClampOptions",
    "Concat",
    "Constant",
    "Conv2d",
    "Conv2dOptions",
    "FilterOperandLayout",
    "Gemm",
    "GemmOptions",
    "Input",
    "InputOperandLayout",
    "InstanceNorm",
    "InstanceNormOptions",
    "InterpolationMode",
    "LeakyRelu",
    "LeakyReluOptions",
    "Pad",
    "PadOptions",
    "PaddingMode",
    "Pool2d",
    "Pool2dOptions",
    "Pool2dType",
    "ReduceMean",
    "ReduceMeanOptions",
    "Resample",
    "ResampleOptions",
    "Reshape",
    "Split",
    "SplitOptions",
    "Squeeze",
    "SqueezeOptions",
    "Transpose",
    "TransposeOptions",
    "Unary",
    "UnaryOpType",
]
