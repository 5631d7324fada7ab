from __future__ import annotations

import logging

from mlgraph.builder import GraphBuilder
from mlgraph.errors import BackendError, GraphCycleError, PreconditionError
from mlgraph.ir import NamedOperands, Operand, OperandDescriptor
from mlgraph.ops import ClampOptions, Conv2dOptions


def make_input(builder, name: str, *dims: int):
    return builder.input(name, OperandDescriptor(dimensions=dims))


def test_build_calls_stages_in_order(builder, backend) -> None:
    x = make_input(builder, "x", 2, 10)
    y = builder.softmax(builder.relu(x))

    graph = builder.build({"y": y})

    assert graph is backend.graphs[-1]
    assert graph.stages == ["add_input", "add_unary", "add_unary", "add_output", "finish", "compile"]
    assert graph.calls[3] == ("add_output", "y")


def test_build_accepts_named_operands(builder) -> None:
    x = make_input(builder, "x", 4)
    named = NamedOperands({"a": builder.relu(x), "b": builder.tanh(x)})
    graph = builder.build(named)
    assert [payload for stage, payload in graph.calls if stage == "add_output"] == ["a", "b"]


def test_empty_outputs_fail_without_backend_calls(builder, backend, errors) -> None:
    make_input(builder, "x", 4)
    assert builder.build({}) is None
    assert backend.graphs == []
    assert isinstance(errors[-1], PreconditionError)
    assert errors[-1].message == "The output named operands are empty."


def test_error_builder_cannot_build(context, backend, errors) -> None:
    builder = GraphBuilder.make_error(context)
    assert builder.build({"y": Operand.make_error(builder)}) is None
    assert backend.graphs == []
    assert isinstance(errors[-1], PreconditionError)


def test_error_builder_rejects_every_call(context, errors) -> None:
    builder = GraphBuilder.make_error(context)
    assert make_input(builder, "x", 1).is_error
    assert errors[-1].code == "EPRECONDITION"


def test_error_output_is_rejected(builder, backend, errors) -> None:
    bad = builder.softmax(make_input(builder, "x", 1, 2, 3))
    assert builder.build({"y": bad}) is None
    assert backend.graphs == []
    assert isinstance(errors[-1], PreconditionError)


def test_output_from_another_builder_is_rejected(context, errors) -> None:
    b1 = context.create_graph_builder()
    b2 = context.create_graph_builder()
    y = b1.relu(make_input(b1, "x", 2))
    assert b2.build({"y": y}) is None
    assert isinstance(errors[-1], PreconditionError)


def test_cycle_aborts_build(builder, backend, errors) -> None:
    x = make_input(builder, "x", 2)
    a = builder.relu(x)
    b = builder.sigmoid(a)
    a.operator.inputs[0] = b
    assert builder.build({"b": b}) is None
    assert backend.graphs == []
    assert isinstance(errors[-1], GraphCycleError)


def test_failure_at_each_stage_stops_the_pipeline(make_context, errors, caplog) -> None:
    expected = {
        "add_unary": ("Failed to add the operand when building graph.", ["add_input", "add_unary"]),
        "add_output": ("Failed to add output when building graph.", ["add_input", "add_unary", "add_output"]),
        "finish": ("Failed to finish building graph.", ["add_input", "add_unary", "add_output", "finish"]),
        "compile": (
            "Failed to compile the graph.",
            ["add_input", "add_unary", "add_output", "finish", "compile"],
        ),
    }
    for stage, (message, stages) in expected.items():
        context = make_context(fail_at=stage)
        builder = context.create_graph_builder()
        y = builder.relu(make_input(builder, "x", 2))
        caplog.clear()
        with caplog.at_level(logging.ERROR, logger="mlgraph"):
            assert builder.build({"y": y}) is None
        assert context.backend.graphs[-1].stages == stages
        assert isinstance(errors[-1], BackendError)
        assert message in caplog.messages


def test_softmax_end_to_end_rank(builder, backend, errors) -> None:
    good = builder.softmax(make_input(builder, "a", 2, 10))
    assert builder.build({"y": good}) is not None

    bad = builder.softmax(make_input(builder, "b", 1, 2, 10))
    assert bad.is_error
    assert builder.build({"y": bad}) is None
    assert len(backend.graphs) == 1


def test_only_reachable_operators_are_ingested(builder) -> None:
    x = make_input(builder, "x", 2, 2)
    y = builder.relu(x)
    builder.sigmoid(x)
    graph = builder.build({"y": y})
    assert graph.stages.count("add_unary") == 1


def test_fused_clamp_is_ingested_as_standalone_node(builder) -> None:
    x = make_input(builder, "x", 1, 3, 8, 8)
    w = builder.constant(OperandDescriptor(dimensions=(4, 3, 3, 3)), [0.0] * 108)
    clamp = builder.clamp_operator(ClampOptions(min_value=0.0, max_value=6.0))
    y = builder.conv2d(x, w, Conv2dOptions(activation=clamp))
    graph = builder.build({"y": y})
    assert sorted(graph.stages[:2]) == ["add_constant", "add_input"]
    assert graph.stages[2:4] == ["add_conv2d", "add_clamp"]
