from __future__ import annotations

from enum import Enum


class ErrorFilter(Enum):
    """Which errors an error scope captures."""

    NONE = "none"
    VALIDATION = "validation"
    BACKEND = "backend"
    PRECONDITION = "precondition"


class MLGraphError(Exception):
    """Base error with an optional code, carried as a value through the builder."""

    filter: ErrorFilter = ErrorFilter.NONE

    def __init__(self, message: str, code: str = "EGRAPH") -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, code={self.code!r})"


class ValidationError(MLGraphError):
    """An operator's shape/type/arity contract is violated."""

    filter = ErrorFilter.VALIDATION

    def __init__(self, message: str, code: str = "EVALID") -> None:
        super().__init__(message, code)


class GraphCycleError(ValidationError):
    def __init__(self, message: str = "Cycle detected in graph") -> None:
        super().__init__(message, code="ECYCLE")


class BackendError(MLGraphError):
    """The backend rejected ingestion, output registration, finishing or compiling."""

    filter = ErrorFilter.BACKEND

    def __init__(self, message: str, code: str = "EBACKEND") -> None:
        super().__init__(message, code)


class PreconditionError(MLGraphError):
    filter = ErrorFilter.PRECONDITION

    def __init__(self, message: str, code: str = "EPRECONDITION") -> None:
        super().__init__(message, code)


class UnsupportedModelError(MLGraphError):
    """Raised by the importer for models it cannot express as builder calls."""

    def __init__(self, message: str, code: str = "EUNSUPPORTED") -> None:
        super().__init__(message, code)


MaybeError = MLGraphError | None
