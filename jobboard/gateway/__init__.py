"""Store gateway: record-level access to the remote store."""

from jobboard.gateway.base import (
    Filter,
    StoreGateway,
    eq,
    gte,
    in_,
    is_null,
    lte,
    neq,
)
from jobboard.gateway.memory import InMemoryStoreGateway
from jobboard.gateway.supabase import SupabaseStoreGateway

__all__ = [
    "Filter",
    "StoreGateway",
    "InMemoryStoreGateway",
    "SupabaseStoreGateway",
    "eq",
    "neq",
    "gte",
    "lte",
    "in_",
    "is_null",
]
