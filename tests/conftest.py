from __future__ import annotations

from typing import Any

import pytest

from mlgraph.backends import BackendCapabilities, Graph
from mlgraph.context import Context
from mlgraph.errors import BackendError, MaybeError


class RecordingGraph(Graph):
    """Graph double that records every hook call; ``fail_at`` makes one stage fail."""

    def __init__(self, fail_at: str | None = None) -> None:
        self.fail_at = fail_at
        self.calls: list[tuple[str, Any]] = []

    def _record(self, stage: str, payload: Any) -> MaybeError:
        self.calls.append((stage, payload))
        if stage == self.fail_at:
            return BackendError(f"{stage} failed")
        return None

    def add_output(self, name: str, operand: Any) -> MaybeError:
        return self._record("add_output", name)

    def finish(self) -> MaybeError:
        return self._record("finish", None)

    def compile(self) -> MaybeError:
        return self._record("compile", None)

    @property
    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]


def _recording_hook(stage: str):
    def hook(self: RecordingGraph, op: Any) -> MaybeError:
        return self._record(stage, op)

    return hook


for _stage in [name for name in vars(Graph) if name.startswith("add_") and name != "add_output"]:
    setattr(RecordingGraph, _stage, _recording_hook(_stage))


class RecordingBackend:
    def __init__(self, fail_at: str | None = None) -> None:
        self.fail_at = fail_at
        self.graphs: list[RecordingGraph] = []

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(name="recording")

    def create_graph(self) -> RecordingGraph:
        graph = RecordingGraph(self.fail_at)
        self.graphs.append(graph)
        return graph


@pytest.fixture
def errors() -> list:
    return []


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def make_context(errors: list):
    def factory(fail_at: str | None = None, **kwargs: Any) -> Context:
        return Context(backend=RecordingBackend(fail_at), on_uncaptured_error=errors.append, **kwargs)

    return factory


@pytest.fixture
def context(backend: RecordingBackend, errors: list) -> Context:
    return Context(backend=backend, on_uncaptured_error=errors.append)


@pytest.fixture
def builder(context: Context):
    return context.create_graph_builder()
