from __future__ import annotations

from mlgraph.ir import NamedOperands, Operand, OperandArray, OperandDescriptor, OperandType, Operator


def make_input(builder, name: str, *dims: int, type: OperandType = OperandType.FLOAT32) -> Operand:
    return builder.input(name, OperandDescriptor(type, dims))


def test_input_operand_takes_descriptor_type_and_rank(builder) -> None:
    x = make_input(builder, "x", 1, 3, 8, 8, type=OperandType.FLOAT16)
    assert not x.is_error
    assert x.type is OperandType.FLOAT16
    assert x.rank == 4
    assert x.operator.kind == "input"


def test_output_inherits_type_and_rank_from_first_input(builder) -> None:
    x = make_input(builder, "x", 2, 5, type=OperandType.INT32)
    y = builder.relu(x)
    assert y.type is OperandType.INT32
    assert y.rank == 2


def test_operator_override_replaces_inherited_rank(builder) -> None:
    x = make_input(builder, "x", 2, 3, 4)
    y = builder.reshape(x, [6, 4])
    z = builder.reduce_mean(x, None)
    assert y.rank == 2
    assert z.rank == 0


def test_operand_refers_to_producer_by_arena_index(builder) -> None:
    x = make_input(builder, "x", 4)
    y = builder.sigmoid(x)
    producer = y.operator
    assert producer is builder.operators[producer.index]
    assert producer.inputs == [x]


def test_error_operand_has_defaults_and_no_producer(builder) -> None:
    err = Operand.make_error(builder)
    assert err.is_error
    assert err.operator is None
    assert err.type is OperandType.FLOAT32
    assert err.rank == 0


def test_operator_without_inputs_defaults_to_float32_scalar(builder) -> None:
    op = Operator(builder)
    out = Operand(builder, op)
    assert out.type is OperandType.FLOAT32
    assert out.rank == 0
    assert out.operator is op


def test_operand_array_sequence_protocol(builder) -> None:
    x = make_input(builder, "x", 6, 2)
    parts = builder.split(x, 3)
    assert isinstance(parts, OperandArray)
    assert not parts.is_error
    assert parts.size == len(parts) == 3
    assert parts.get_operand(1) is parts[1]
    assert [p.rank for p in parts] == [2, 2, 2]


def test_operand_array_error_is_empty(builder) -> None:
    err = OperandArray.make_error(builder)
    assert err.is_error
    assert len(err) == 0


def test_named_operands_preserve_insertion_order(builder) -> None:
    a = make_input(builder, "a", 1)
    b = make_input(builder, "b", 1)
    named = NamedOperands()
    named.set("second", b)
    named.set("first", a)
    assert list(named.records) == ["second", "first"]
    assert "first" in named
    assert len(named) == 2
