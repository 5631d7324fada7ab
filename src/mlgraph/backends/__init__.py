"""Backend contract, registry and the ONNX reference backend."""

from .base import Backend, BackendCapabilities, Graph
from .onnx import OnnxBackend, OnnxGraph
from .registry import BackendRegistry, backend_registry

__all__ = [
    "Backend",
    "BackendCapabilities",
    "Graph",
    "BackendRegistry",
    "backend_registry",
    "OnnxBackend",
    "OnnxGraph",
]
