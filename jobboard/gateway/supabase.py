"""
Supabase store gateway.

Runs each PostgREST / storage call of the synchronous supabase-py client in a
worker thread so the caller's event loop keeps one suspend point per store
call. Errors are translated at this boundary:

- PostgREST unique violations (SQLSTATE 23505) -> DuplicateRecordError
- any other PostgREST, HTTP or storage failure  -> StoreUnavailableError
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from jobboard.config import BoardSettings
from jobboard.errors import DuplicateRecordError, StoreUnavailableError
from jobboard.gateway.base import Filter

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def apply_filters(query, filters: Sequence[Filter]):
    """Translate gateway filters onto a PostgREST query builder."""
    for f in filters:
        if f.op == "eq":
            query = query.eq(f.column, f.value)
        elif f.op == "neq":
            query = query.neq(f.column, f.value)
        elif f.op == "gte":
            query = query.gte(f.column, f.value)
        elif f.op == "lte":
            query = query.lte(f.column, f.value)
        elif f.op == "in":
            query = query.in_(f.column, list(f.value))
        elif f.op == "is":
            query = query.is_(f.column, "null")
    return query


def _is_duplicate(exc: Exception) -> bool:
    code = getattr(exc, "code", None)
    if code == UNIQUE_VIOLATION:
        return True
    text = str(exc).lower()
    return "duplicate" in text or "already exists" in text


class SupabaseStoreGateway:
    """Store gateway backed by a supabase-py ``Client``."""

    def __init__(self, client: Client):
        self._client = client

    @classmethod
    def from_settings(cls, settings: BoardSettings) -> "SupabaseStoreGateway":
        if not settings.supabase_url or not settings.supabase_key:
            raise ValueError("JOBBOARD_SUPABASE_URL and JOBBOARD_SUPABASE_KEY must be set")
        return cls(create_client(settings.supabase_url, settings.supabase_key))

    @property
    def client(self) -> Client:
        return self._client

    async def _run(self, operation: str, table: str, fn: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(fn)
        except APIError as e:
            if _is_duplicate(e):
                raise DuplicateRecordError(table, e.message) from e
            logger.warning(f"Store call failed | op={operation} | table={table} | error={e}")
            raise StoreUnavailableError(f"{operation} on {table}", e) from e
        except httpx.HTTPError as e:
            logger.warning(f"Store transport failed | op={operation} | table={table} | error={e}")
            raise StoreUnavailableError(f"{operation} on {table}", e) from e

    # === Rows ===

    async def get_by_id(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        def _query():
            return self._client.table(table).select("*").eq("id", record_id).limit(1).execute()

        result = await self._run("get_by_id", table, _query)
        return result.data[0] if result.data else None

    async def select_where(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        def _query():
            query = apply_filters(self._client.table(table).select("*"), filters)
            if order_by:
                query = query.order(order_by, desc=descending)
            return query.execute()

        result = await self._run("select_where", table, _query)
        return result.data or []

    async def update_where(
        self,
        table: str,
        record_id: str,
        patch: Dict[str, Any],
        preconditions: Sequence[Filter] = (),
    ) -> int:
        def _update():
            query = self._client.table(table).update(patch).eq("id", record_id)
            return apply_filters(query, preconditions).execute()

        result = await self._run("update_where", table, _update)
        return len(result.data or [])

    async def update_many_where(
        self, table: str, filters: Sequence[Filter], patch: Dict[str, Any]
    ) -> int:
        if not filters:
            # PostgREST refuses unfiltered updates; so do we.
            raise ValueError("update_many_where requires at least one filter")

        def _update():
            return apply_filters(self._client.table(table).update(patch), filters).execute()

        result = await self._run("update_many_where", table, _update)
        return len(result.data or [])

    async def insert(self, table: str, record: Dict[str, Any]) -> str:
        def _insert():
            return self._client.table(table).insert(record).execute()

        result = await self._run("insert", table, _insert)
        if not result.data:
            raise StoreUnavailableError(f"insert on {table}")
        return result.data[0]["id"]

    async def delete_by_id(self, table: str, record_id: str) -> bool:
        def _delete():
            return self._client.table(table).delete().eq("id", record_id).execute()

        result = await self._run("delete_by_id", table, _delete)
        return bool(result.data)

    # === Objects ===

    async def put_object(
        self, bucket: str, key: str, data: bytes, content_type: Optional[str] = None
    ) -> str:
        options = {"content-type": content_type} if content_type else None

        def _upload():
            return self._client.storage.from_(bucket).upload(key, data, file_options=options)

        try:
            await asyncio.to_thread(_upload)
        except Exception as e:
            # storage3 exception classes differ between releases
            if _is_duplicate(e):
                raise DuplicateRecordError(bucket, key) from e
            logger.warning(f"Object upload failed | bucket={bucket} | key={key} | error={e}")
            raise StoreUnavailableError(f"put_object to {bucket}", e) from e
        return key

    async def get_public_url(self, bucket: str, key: str) -> str:
        def _url():
            return self._client.storage.from_(bucket).get_public_url(key)

        try:
            url = await asyncio.to_thread(_url)
        except Exception as e:
            raise StoreUnavailableError(f"get_public_url from {bucket}", e) from e
        # Older storage3 releases return {"publicURL": ...}
        if isinstance(url, dict):
            url = url.get("publicUrl") or url.get("publicURL") or ""
        return url.rstrip("?")
