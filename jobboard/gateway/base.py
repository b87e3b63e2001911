"""
Store gateway contract.

Thin record-level access to the remote store: row CRUD with filter
predicates and object put/get-url. No business logic lives behind this
protocol. Every method is a coroutine because every call is remote I/O.

Conditional writes report how many rows they touched; ``0`` means the
preconditions matched nothing and is distinct from ``NotFoundError``, which
callers establish with a follow-up ``get_by_id``.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

FILTER_OPS = frozenset({"eq", "neq", "gte", "lte", "in", "is"})


@dataclass(frozen=True)
class Filter:
    """A single column predicate, ANDed with its siblings."""

    column: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter op: {self.op}")
        if self.op == "is" and self.value is not None:
            raise ValueError("'is' filters only support None")

    def matches(self, row: Dict[str, Any]) -> bool:
        actual = row.get(self.column)
        if self.op == "eq":
            return actual == self.value
        if self.op == "neq":
            return actual != self.value
        if self.op == "is":
            return actual is None
        if self.op == "in":
            return actual in self.value
        if actual is None:
            return False
        if self.op == "gte":
            return actual >= self.value
        return actual <= self.value


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def in_(column: str, values: Sequence[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def is_null(column: str) -> Filter:
    return Filter(column, "is", None)


class StoreGateway(Protocol):
    """Protocol for remote store backends."""

    async def get_by_id(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one row by id, or None if it does not exist or is not visible."""
        ...

    async def select_where(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        """Fetch every row matching all filters."""
        ...

    async def update_where(
        self,
        table: str,
        record_id: str,
        patch: Dict[str, Any],
        preconditions: Sequence[Filter] = (),
    ) -> int:
        """Update one row if it exists and matches the preconditions. Returns rows affected."""
        ...

    async def update_many_where(
        self, table: str, filters: Sequence[Filter], patch: Dict[str, Any]
    ) -> int:
        """Update every row matching the filters. Returns rows affected."""
        ...

    async def insert(self, table: str, record: Dict[str, Any]) -> str:
        """Insert a row and return its id. Raises DuplicateRecordError on unique conflicts."""
        ...

    async def delete_by_id(self, table: str, record_id: str) -> bool:
        """Delete a row. Returns True if a row was removed."""
        ...

    async def put_object(
        self, bucket: str, key: str, data: bytes, content_type: Optional[str] = None
    ) -> str:
        """Store an object under ``key`` and return the key."""
        ...

    async def get_public_url(self, bucket: str, key: str) -> str:
        """Public URL of a stored object."""
        ...
