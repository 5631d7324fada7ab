from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from .base import Backend


@dataclass
class RegisteredBackend:
    name: str
    factory: Callable[[], Backend]


class BackendRegistry:
    def __init__(self) -> None:
        self._items: dict[str, RegisteredBackend] = {}

    def register(self, name: str, factory: Callable[[], Backend]) -> None:
        self._items[name] = RegisteredBackend(name=name, factory=factory)

    def get(self, name: str) -> RegisteredBackend | None:
        return self._items.get(name)

    def create(self, name: str) -> Backend:
        item = self.get(name)
        if not item:
            raise KeyError(f"Backend not found: {name}")
        return item.factory()

    def names(self) -> list[str]:
        return sorted(self._items)


backend_registry = BackendRegistry()
