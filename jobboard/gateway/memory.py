"""In-memory store gateway for testing and local development.

Behaves like the remote store where it matters to the decision workflow:
conditional writes are atomic per call, unique constraints are enforced on
insert, and every call yields to the event loop first so concurrent
workflows interleave between steps the same way independent remote calls do.
"""

import asyncio
import copy
import itertools
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from jobboard.errors import DuplicateRecordError
from jobboard.gateway.base import Filter


class InMemoryStoreGateway:
    """Dict-backed store gateway.

    Args:
        unique_constraints: table -> column tuples that must be unique together,
            e.g. ``{"job_applications": [("job_id", "applicant_id")]}``.
        public_url_base: prefix for ``get_public_url``.
    """

    def __init__(
        self,
        unique_constraints: Optional[Dict[str, Iterable[Tuple[str, ...]]]] = None,
        public_url_base: str = "memory://storage",
    ):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._objects: Dict[str, Dict[str, bytes]] = {}
        self._unique = {
            table: [tuple(columns) for columns in constraints]
            for table, constraints in (unique_constraints or {}).items()
        }
        self._public_url_base = public_url_base.rstrip("/")
        # Strictly increasing timestamps keep created_at ordering deterministic.
        self._epoch = datetime.now(timezone.utc)
        self._ticks = itertools.count(1)
        self.calls: List[Tuple[str, str]] = []

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(table, {})

    def _now(self) -> str:
        tick = self._epoch + timedelta(microseconds=next(self._ticks))
        return tick.isoformat(timespec="microseconds")

    async def _io(self, method: str, table: str) -> None:
        self.calls.append((method, table))
        await asyncio.sleep(0)

    # === Rows ===

    def seed(self, table: str, record: Dict[str, Any]) -> str:
        """Insert a row synchronously, bypassing unique checks. Test setup only."""
        row = dict(record)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", self._now())
        self._table(table)[row["id"]] = row
        return row["id"]

    def rows(self, table: str) -> List[Dict[str, Any]]:
        """Snapshot of a table's rows."""
        return [copy.deepcopy(r) for r in self._table(table).values()]

    def row(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        found = self._table(table).get(record_id)
        return copy.deepcopy(found) if found is not None else None

    async def get_by_id(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        await self._io("get_by_id", table)
        return self.row(table, record_id)

    async def select_where(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        await self._io("select_where", table)
        rows = [r for r in self._table(table).values() if all(f.matches(r) for f in filters)]
        if order_by:
            rows.sort(
                key=lambda r: (r.get(order_by) is not None, r.get(order_by) or ""),
                reverse=descending,
            )
        return [copy.deepcopy(r) for r in rows]

    async def update_where(
        self,
        table: str,
        record_id: str,
        patch: Dict[str, Any],
        preconditions: Sequence[Filter] = (),
    ) -> int:
        await self._io("update_where", table)
        row = self._table(table).get(record_id)
        if row is None or not all(f.matches(row) for f in preconditions):
            return 0
        row.update(copy.deepcopy(patch))
        return 1

    async def update_many_where(
        self, table: str, filters: Sequence[Filter], patch: Dict[str, Any]
    ) -> int:
        await self._io("update_many_where", table)
        matched = [r for r in self._table(table).values() if all(f.matches(r) for f in filters)]
        for row in matched:
            row.update(copy.deepcopy(patch))
        return len(matched)

    async def insert(self, table: str, record: Dict[str, Any]) -> str:
        await self._io("insert", table)
        row = copy.deepcopy(record)
        row["id"] = row.get("id") or str(uuid.uuid4())
        row.setdefault("created_at", self._now())
        rows = self._table(table)
        if row["id"] in rows:
            raise DuplicateRecordError(table, f"id={row['id']}")
        for columns in self._unique.get(table, []):
            key = tuple(row.get(c) for c in columns)
            if any(tuple(r.get(c) for c in columns) == key for r in rows.values()):
                raise DuplicateRecordError(table, f"({', '.join(columns)})")
        rows[row["id"]] = row
        return row["id"]

    async def delete_by_id(self, table: str, record_id: str) -> bool:
        await self._io("delete_by_id", table)
        return self._table(table).pop(record_id, None) is not None

    # === Objects ===

    async def put_object(
        self, bucket: str, key: str, data: bytes, content_type: Optional[str] = None
    ) -> str:
        await self._io("put_object", bucket)
        objects = self._objects.setdefault(bucket, {})
        if key in objects:
            raise DuplicateRecordError(bucket, key)
        objects[key] = bytes(data)
        return key

    async def get_public_url(self, bucket: str, key: str) -> str:
        await self._io("get_public_url", bucket)
        return f"{self._public_url_base}/{bucket}/{key}"

    def object(self, bucket: str, key: str) -> Optional[bytes]:
        return self._objects.get(bucket, {}).get(key)
