from __future__ import annotations

from collections.abc import Iterable

from mlgraph.errors import GraphCycleError

from .operand import Operand
from .operator import Operator


def topological_sort(roots: Iterable[Operand]) -> list[Operator]:
    """
    Order the operators reachable from ``roots`` so that every operator comes
    after the producers of all its inputs.

    Depth-first with an explicit stack, so deep chains do not hit the
    recursion limit. An operator stays on the stack until all its input
    producers are done; shared producers are emitted once. Raises
    GraphCycleError if an operator is reached again while its own inputs are
    still pending, which only happens when edges were edited into a cycle.
    """
    nodes_to_do: list[Operator] = []
    nodes_done: set[Operator] = set()
    expanded: set[Operator] = set()
    result: list[Operator] = []

    for operand in roots:
        producer = operand.operator
        if producer is not None:
            nodes_to_do.append(producer)

    while nodes_to_do:
        node = nodes_to_do[-1]
        if node in nodes_done:
            nodes_to_do.pop()
            continue
        pending = [
            dep.operator
            for dep in node.inputs
            if dep.operator is not None and dep.operator not in nodes_done
        ]
        if not pending:
            result.append(node)
            nodes_to_do.pop()
            nodes_done.add(node)
            continue
        # Everything pushed above an expanded node is done before it is seen again.
        if node in expanded:
            raise GraphCycleError(f"Cycle detected in graph at operator {node.index} ({node.kind})")
        expanded.add(node)
        nodes_to_do.extend(pending)
    return result
