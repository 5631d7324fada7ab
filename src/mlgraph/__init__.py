"""mlgraph: an eagerly validated computation-graph builder with pluggable backends."""

from mlgraph.backends import Backend, BackendCapabilities, Graph, OnnxBackend, backend_registry
from mlgraph.builder import GraphBuilder
from mlgraph.config import BuilderConfig
from mlgraph.context import Context
from mlgraph.errors import (
    BackendError,
    ErrorFilter,
    GraphCycleError,
    MLGraphError,
    PreconditionError,
    UnsupportedModelError,
    ValidationError,
)
from mlgraph.ir import FusedOperator, NamedOperands, Operand, OperandArray, OperandDescriptor, OperandType, Operator

__all__ = [
    "Backend",
    "BackendCapabilities",
    "BackendError",
    "BuilderConfig",
    "Context",
    "ErrorFilter",
    "FusedOperator",
    "Graph",
    "GraphBuilder",
    "GraphCycleError",
    "MLGraphError",
    "NamedOperands",
    "OnnxBackend",
    "Operand",
    "OperandArray",
    "OperandDescriptor",
    "OperandType",
    "Operator",
    "PreconditionError",
    "UnsupportedModelError",
    "ValidationError",
    "backend_registry",
]
