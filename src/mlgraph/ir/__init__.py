"""Graph node model: operands, operators and their ordering."""

from .operand import NamedOperands, Operand, OperandArray
from .operator import Operator
from .toposort import topological_sort
from .types import FusedOperator, OperandDescriptor, OperandType

__all__ = [
    "Operand",
    "OperandArray",
    "NamedOperands",
    "Operator",
    "OperandType",
    "OperandDescriptor",
    "FusedOperator",
    "topological_sort",
]
