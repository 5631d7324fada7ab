from .onnx import OnnxImporter

__all__ = ["OnnxImporter"]
