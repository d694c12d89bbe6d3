"""
Operation Catalog
=================
The in-memory list of callable upstream operations.

A Catalog is built once per process by ``schema_loader.load_catalog`` and is
read-only afterwards. Consumers receive it by reference; nothing mutates it.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field


class Operation(BaseModel):
    """One normalized upstream action (method + path + parameter notes)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    description: str
    path: str
    method: str = "GET"
    params: dict[str, str] = Field(default_factory=dict)


class Catalog:
    """Ordered, immutable collection of operations."""

    def __init__(self, operations: Iterable[Operation]):
        self._operations: tuple[Operation, ...] = tuple(operations)
        self._by_id: dict[str, Operation] = {}
        for op in self._operations:
            self._by_id.setdefault(op.id, op)

    def __len__(self) -> int:
        return len(self._operations)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations)

    @property
    def operations(self) -> tuple[Operation, ...]:
        return self._operations

    def search(self, query: Optional[str] = None) -> list[Operation]:
        """Case-insensitive substring match on name or description.

        An empty or missing query returns everything in load order.
        """
        if not query:
            return list(self._operations)
        needle = query.lower()
        return [
            op for op in self._operations
            if needle in op.name.lower() or needle in op.description.lower()
        ]

    def find_by_id(self, item_id: str) -> Optional[Operation]:
        return self._by_id.get(item_id)
