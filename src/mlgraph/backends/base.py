from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from mlgraph.errors import BackendError, MaybeError

if TYPE_CHECKING:
    from mlgraph.ir.operand import Operand
    from mlgraph.ir.operator import Operator
    from mlgraph.ops import (
        BatchNorm,
        Binary,
        Clamp,
        Concat,
        Constant,
        Conv2d,
        Gemm,
        Input,
        InstanceNorm,
        LeakyRelu,
        Pad,
        Pool2d,
        ReduceMean,
        Resample,
        Reshape,
        Split,
        Squeeze,
        Transpose,
        Unary,
    )


@dataclass
class BackendCapabilities:
    name: str
    opset_version: int | None = None
    metadata: dict[str, str] = field(default_factory=dict)


class Graph:
    """Backend graph under construction.

    The build pipeline calls one ``add_<kind>`` hook per sorted operator, then
    ``add_output`` per named output, then ``finish`` and ``compile``. Every
    hook reports failure by returning an error instead of raising. Hooks a
    backend does not override report the operator kind as unsupported.
    """

    def _unsupported(self, operator: Operator) -> MaybeError:
        return BackendError(f"{type(self).__name__} does not implement {operator.kind}.", code="EUNIMPLEMENTED")

    def add_input(self, op: Input) -> MaybeError:
        return self._unsupported(op)

    def add_constant(self, op: Constant) -> MaybeError:
        return self._unsupported(op)

    def add_unary(self, op: Unary) -> MaybeError:
        return self._unsupported(op)

    def add_binary(self, op: Binary) -> MaybeError:
        return self._unsupported(op)

    def add_clamp(self, op: Clamp) -> MaybeError:
        return self._unsupported(op)

    def add_leaky_relu(self, op: LeakyRelu) -> MaybeError:
        return self._unsupported(op)

    def add_conv2d(self, op: Conv2d) -> MaybeError:
        return self._unsupported(op)

    def add_pool2d(self, op: Pool2d) -> MaybeError:
        return self._unsupported(op)

    def add_batch_norm(self, op: BatchNorm) -> MaybeError:
        return self._unsupported(op)

    def add_instance_norm(self, op: InstanceNorm) -> MaybeError:
        return self._unsupported(op)

    def add_reduce_mean(self, op: ReduceMean) -> MaybeError:
        return self._unsupported(op)

    def add_gemm(self, op: Gemm) -> MaybeError:
        return self._unsupported(op)

    def add_concat(self, op: Concat) -> MaybeError:
        return self._unsupported(op)

    def add_split(self, op: Split) -> MaybeError:
        return self._unsupported(op)

    def add_reshape(self, op: Reshape) -> MaybeError:
        return self._unsupported(op)

    def add_transpose(self, op: Transpose) -> MaybeError:
        return self._unsupported(op)

    def add_squeeze(self, op: Squeeze) -> MaybeError:
        return self._unsupported(op)

    def add_pad(self, op: Pad) -> MaybeError:
        return self._unsupported(op)

    def add_resample(self, op: Resample) -> MaybeError:
        return self._unsupported(op)

    def add_output(self, name: str, operand: Operand) -> MaybeError:
        return BackendError(f"{type(self).__name__} does not implement add_output.", code="EUNIMPLEMENTED")

    def finish(self) -> MaybeError:
        return None

    def compile(self) -> MaybeError:
        return None


class Backend(Protocol):
    """Interface for graph backends."""

    def capabilities(self) -> BackendCapabilities: ...

    def create_graph(self) -> Graph: ...
