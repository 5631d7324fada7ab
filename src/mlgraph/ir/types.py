from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class OperandType(Enum):
    FLOAT32 = "float32"
    FLOAT16 = "float16"
    INT32 = "int32"
    UINT32 = "uint32"
    INT8 = "int8"
    UINT8 = "uint8"

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype(self.value)

    @classmethod
    def from_numpy(cls, dtype: np.dtype | str) -> OperandType:
        name = np.dtype(dtype).name
        for member in cls:
            if member.value == name:
                return member
        raise ValueError(f"Unsupported operand dtype: {name}")


class FusedOperator(Enum):
    """Activation kinds that can be embedded in another operator's options."""

    CLAMP = "clamp"
    RELU = "relu"
    SIGMOID = "sigmoid"
    LEAKY_RELU = "leaky_relu"
    HARD_SWISH = "hard_swish"


@dataclass(frozen=True)
class OperandDescriptor:
    type: OperandType = OperandType.FLOAT32
    dimensions: tuple[int, ...] = field(default_factory=tuple)

    @property
    def rank(self) -> int:
        return len(self.dimensions)

    @property
    def size(self) -> int:
        n = 1
        for dim in self.dimensions:
            n *= dim
        return n

    def is_valid(self) -> bool:
        return all(isinstance(d, int) and d > 0 for d in self.dimensions)
