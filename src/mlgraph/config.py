from __future__ import annotations

from dataclasses import dataclass, field

from mlgraph.ir.types import FusedOperator


@dataclass(frozen=True)
class BuilderConfig:
    """Builder-level settings.

    ``decomposed_activations`` lists the fused activations that the builder
    materializes as a standalone node after Conv2d/BatchNorm instead of
    embedding them in the operator's options. Only clamp needs this today:
    some backends cannot fuse it, and an explicit node keeps its min/max
    visible in the graph.
    """

    decomposed_activations: frozenset[FusedOperator] = field(
        default_factory=lambda: frozenset({FusedOperator.CLAMP})
    )
    backend: str = "onnx"
