from __future__ import annotations

import pytest

from mlgraph.backends import OnnxBackend
from mlgraph.context import Context
from mlgraph.errors import BackendError, ErrorFilter, PreconditionError, ValidationError
from mlgraph.ir import OperandDescriptor


def bad_softmax(builder):
    x = builder.input(f"x{len(builder.operators)}", OperandDescriptor(dimensions=(1, 2, 3)))
    return builder.softmax(x)


def test_uncaptured_errors_go_to_callback(context, builder, errors) -> None:
    bad_softmax(builder)
    assert len(errors) == 1
    assert context.last_error is errors[0]


def test_error_scope_captures_first_error(context, builder, errors) -> None:
    context.push_error_scope()
    bad_softmax(builder)
    bad_softmax(builder)
    captured = context.pop_error_scope()
    assert isinstance(captured, ValidationError)
    assert errors == []


def test_scope_filter_lets_other_errors_through(context, builder, errors) -> None:
    context.push_error_scope(ErrorFilter.BACKEND)
    bad_softmax(builder)
    assert context.pop_error_scope() is None
    assert len(errors) == 1


def test_innermost_matching_scope_wins(context, builder) -> None:
    context.push_error_scope(ErrorFilter.PRECONDITION)
    context.push_error_scope(ErrorFilter.VALIDATION)
    bad_softmax(builder)
    builder.build({})
    assert isinstance(context.pop_error_scope(), ValidationError)
    assert isinstance(context.pop_error_scope(), PreconditionError)


def test_consumed_error(context) -> None:
    assert context.consumed_error(None) is False
    assert context.consumed_error(BackendError("boom")) is True
    assert context.last_error.code == "EBACKEND"


def test_pop_without_push_raises(context) -> None:
    with pytest.raises(RuntimeError):
        context.pop_error_scope()


def test_backend_resolved_from_registry() -> None:
    context = Context()
    assert isinstance(context.backend, OnnxBackend)
    assert Context(backend="onnx").backend.capabilities().opset_version == 14


def test_unknown_backend_name_raises() -> None:
    with pytest.raises(KeyError):
        Context(backend="missing")
