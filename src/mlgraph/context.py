from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from mlgraph.backends import Backend, Graph, backend_registry
from mlgraph.builder import GraphBuilder
from mlgraph.config import BuilderConfig
from mlgraph.errors import ErrorFilter, MaybeError, MLGraphError
from mlgraph.utils import get_logger

logger = get_logger(__name__)


@dataclass
class ErrorScope:
    filter: ErrorFilter
    error: MLGraphError | None = None

    def captures(self, error: MLGraphError) -> bool:
        return self.filter is ErrorFilter.NONE or self.filter is error.filter


@dataclass
class Context:
    """Owns the backend, the builder configuration and the error sink.

    Every builder call and every build step hands its outcome to
    ``consumed_error``. An error is delivered to the innermost error scope
    whose filter matches it, otherwise to ``on_uncaptured_error``; either way
    it is consumed and does not affect later, unrelated calls.
    """

    backend: Backend | str | None = None
    config: BuilderConfig = field(default_factory=BuilderConfig)
    on_uncaptured_error: Callable[[MLGraphError], None] | None = None
    last_error: MLGraphError | None = field(default=None, init=False)
    _error_scopes: list[ErrorScope] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        if self.backend is None:
            self.backend = self.config.backend
        if isinstance(self.backend, str):
            self.backend = backend_registry.create(self.backend)
        caps = self.backend.capabilities()
        logger.debug("Created context for backend %s (opset=%s)", caps.name, caps.opset_version)

    def create_graph_builder(self) -> GraphBuilder:
        return GraphBuilder(self)

    def create_graph(self) -> Graph:
        return self.backend.create_graph()

    def consumed_error(self, error: MaybeError) -> bool:
        if error is None:
            return False
        self.handle_error(error)
        return True

    def handle_error(self, error: MLGraphError) -> None:
        logger.warning("%s [%s]: %s", type(error).__name__, error.code, error.message)
        self.last_error = error
        for scope in reversed(self._error_scopes):
            if scope.captures(error):
                if scope.error is None:
                    scope.error = error
                return
        if self.on_uncaptured_error is not None:
            self.on_uncaptured_error(error)

    def push_error_scope(self, filter: ErrorFilter = ErrorFilter.NONE) -> None:
        self._error_scopes.append(ErrorScope(filter))

    def pop_error_scope(self) -> MLGraphError | None:
        """Pop the innermost scope and return the first error it captured."""
        if not self._error_scopes:
            raise RuntimeError("pop_error_scope called without a matching push_error_scope")
        return self._error_scopes.pop().error
