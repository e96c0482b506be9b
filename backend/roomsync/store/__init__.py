"""Room data store: CRUD, realtime change feeds and presence channels.

Usage:
    from roomsync.store import MemoryStore, build_store

    store = MemoryStore()
    sub = store.subscribe("messages", room_id, on_change)
    chan = store.channel(room_id, key="user-ab12cd3")
"""
from ..config import StoreSettings
from .base import Store, hash_session_token
from .duckdb_store import DuckDBStore
from .memory import MemoryStore
from .realtime import (
    ChangeEvent,
    ChangeType,
    PresenceChannel,
    PresenceHub,
    RealtimeHub,
    Subscription,
)


def build_store(settings: StoreSettings) -> Store:
    """Create the store selected in configuration."""
    if settings.backend == "duckdb":
        return DuckDBStore(settings.duckdb_path)
    return MemoryStore()


__all__ = [
    "Store",
    "MemoryStore",
    "DuckDBStore",
    "build_store",
    "hash_session_token",
    "ChangeEvent",
    "ChangeType",
    "PresenceChannel",
    "PresenceHub",
    "RealtimeHub",
    "Subscription",
]
