"""Store abstract interface: async CRUD, realtime feeds and room procedures.

Concrete stores implement four synchronous row primitives; everything else
(row preparation, change events, cascades, room activity and the session
procedures) lives here so every backend behaves the same.

Usage:
    store = MemoryStore()
    room = await store.create_room("1234", "public")
    sub = store.subscribe("messages", room["id"], on_change)
    row = await store.insert("messages", {"room_id": room["id"], ...})
"""
import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..errors import RoomNotFoundError, UsernameConflictError
from .realtime import (
    ChangeCallback,
    ChangeEvent,
    ChangeType,
    PresenceChannel,
    PresenceHub,
    RealtimeHub,
    Subscription,
)
from .schema import get_table, utcnow

logger = logging.getLogger(__name__)

Match = Dict[str, Any]


def hash_session_token(token: str) -> str:
    """Hash a session token the way it is persisted server-side."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def matches(row: dict, match: Optional[Match]) -> bool:
    """Equality match; list/tuple/set values mean membership."""
    for col, expected in (match or {}).items():
        value = row.get(col)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def parse_order(order_by: Optional[str]) -> Tuple[Optional[str], bool]:
    """Split ``"-created_at"`` into (column, descending)."""
    if not order_by:
        return None, False
    if order_by.startswith("-"):
        return order_by[1:], True
    return order_by, False


class Store(ABC):
    """Abstract base class for room data stores.

    Methods:
        insert/select/update/delete: Row CRUD with change-feed fan-out.
        subscribe: Per-room change feed for one table.
        channel: Per-room presence/broadcast channel.
        create_room_session: Server-trusted (room, token) -> username binding.
    """

    def __init__(
        self,
        realtime: Optional[RealtimeHub] = None,
        presence: Optional[PresenceHub] = None,
    ) -> None:
        self.realtime = realtime or RealtimeHub()
        self.presence = presence or PresenceHub()

    # ------------------------------------------------------------------
    # Row primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def _insert_row(self, table: str, row: dict) -> dict:
        """Persist a prepared row, raising UniqueViolationError on conflict."""

    @abstractmethod
    def _select_rows(
        self, table: str, match: Optional[Match], order_by: Optional[str]
    ) -> List[dict]:
        """Return copies of the matching rows."""

    @abstractmethod
    def _update_rows(
        self, table: str, match: Match, values: dict
    ) -> List[Tuple[dict, dict]]:
        """Apply ``values`` to matching rows and return (old, new) pairs."""

    @abstractmethod
    def _delete_rows(self, table: str, match: Match) -> List[dict]:
        """Remove matching rows and return them."""

    def close(self) -> None:
        """Release backend resources."""

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def insert(self, table: str, row: dict) -> dict:
        """Insert a row and return it with server-assigned ``id``/``created_at``.

        Raises:
            UniqueViolationError: If a unique key already exists.
            RoomNotFoundError: If the row references a missing room.
            StoreError: On any other rejection.
        """
        await asyncio.sleep(0)
        schema = get_table(table)
        prepared = schema.prepare(row)
        if table != "rooms":
            self._require_room(prepared.get("room_id"))

        created = self._insert_row(table, prepared)
        self.realtime.publish(ChangeEvent(table, ChangeType.INSERT, new=dict(created)))
        if table == "messages":
            self._touch_room(created["room_id"])

        # Yield once so realtime delivery interleaves with the caller's continuation
        await asyncio.sleep(0)
        return dict(created)

    async def select(
        self,
        table: str,
        match: Optional[Match] = None,
        order_by: Optional[str] = None,
    ) -> List[dict]:
        await asyncio.sleep(0)
        schema = get_table(table)
        schema.check_columns(match or {})
        column, _ = parse_order(order_by)
        if column:
            schema.check_columns([column])
        return self._select_rows(table, match, order_by)

    async def update(self, table: str, match: Match, values: dict) -> List[dict]:
        await asyncio.sleep(0)
        schema = get_table(table)
        schema.check_columns(list(match) + list(values))
        pairs = self._update_rows(table, match, values)
        for old, new in pairs:
            self.realtime.publish(ChangeEvent(table, ChangeType.UPDATE, new=dict(new), old=dict(old)))
        await asyncio.sleep(0)
        return [dict(new) for _, new in pairs]

    async def delete(self, table: str, match: Match) -> List[dict]:
        await asyncio.sleep(0)
        get_table(table).check_columns(match)
        removed = self._delete_cascade(table, match)
        await asyncio.sleep(0)
        return removed

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    def subscribe(
        self, table: str, room_id: Optional[str], callback: ChangeCallback
    ) -> Subscription:
        return self.realtime.subscribe(table, room_id, callback)

    def channel(self, room_id: str, key: str) -> PresenceChannel:
        return self.presence.channel(room_id, key)

    # ------------------------------------------------------------------
    # Room procedures
    # ------------------------------------------------------------------

    async def create_room(
        self,
        code: str,
        room_type: str = "public",
        password_hash: Optional[str] = None,
        creator_token: Optional[str] = None,
    ) -> dict:
        return await self.insert("rooms", {
            "code": code,
            "room_type": room_type,
            "password_hash": password_hash,
            "creator_token_hash": hash_session_token(creator_token) if creator_token else None,
        })

    async def find_room_by_code(self, code: str) -> Optional[dict]:
        rows = await self.select("rooms", {"code": code.upper()})
        return rows[0] if rows else None

    async def create_room_session(self, room_id: str, session_token: str, username: str) -> dict:
        """Bind (room, token) to ``username`` exactly once.

        Re-issuing with the same username refreshes ``last_seen_at``.

        Raises:
            RoomNotFoundError: If the room does not exist.
            UsernameConflictError: If the token is already bound to another name.
        """
        await asyncio.sleep(0)
        self._require_room(room_id)
        token_hash = hash_session_token(session_token)
        existing = self._select_rows(
            "room_sessions", {"room_id": room_id, "session_token_hash": token_hash}, None
        )
        if existing:
            current = existing[0]
            if current["username"] != username:
                raise UsernameConflictError(room_id, current["username"], username)
            updated = await self.update(
                "room_sessions", {"id": current["id"]}, {"last_seen_at": utcnow()}
            )
            return updated[0] if updated else current
        return await self.insert("room_sessions", {
            "room_id": room_id,
            "session_token_hash": token_hash,
            "username": username,
        })

    async def touch_room_session(self, room_id: str, session_token: str) -> bool:
        updated = await self.update(
            "room_sessions",
            {"room_id": room_id, "session_token_hash": hash_session_token(session_token)},
            {"last_seen_at": utcnow()},
        )
        return bool(updated)

    async def delete_room_session(self, room_id: str, session_token: str) -> bool:
        removed = await self.delete(
            "room_sessions",
            {"room_id": room_id, "session_token_hash": hash_session_token(session_token)},
        )
        return bool(removed)

    async def is_room_creator(self, room_id: str, session_token: str) -> bool:
        rooms = await self.select("rooms", {"id": room_id})
        if not rooms or not rooms[0].get("creator_token_hash"):
            return False
        return rooms[0]["creator_token_hash"] == hash_session_token(session_token)

    async def delete_expired_rooms(self, inactive_since: datetime) -> List[dict]:
        """Delete rooms whose last activity is older than ``inactive_since``."""
        rooms = await self.select("rooms")
        expired = [
            r["id"] for r in rooms
            if r.get("last_activity_at") is not None and r["last_activity_at"] < inactive_since
        ]
        if not expired:
            return []
        return await self.delete("rooms", {"id": expired})

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_room(self, room_id: Optional[str]) -> None:
        if not room_id or not self._select_rows("rooms", {"id": room_id}, None):
            raise RoomNotFoundError(str(room_id))

    def _touch_room(self, room_id: str) -> None:
        for old, new in self._update_rows("rooms", {"id": room_id}, {"last_activity_at": utcnow()}):
            self.realtime.publish(ChangeEvent("rooms", ChangeType.UPDATE, new=dict(new), old=dict(old)))

    def _delete_cascade(self, table: str, match: Match) -> List[dict]:
        if table == "rooms":
            room_ids = [r["id"] for r in self._select_rows("rooms", match, None)]
            if room_ids:
                for child in ("message_reactions", "messages", "room_sessions"):
                    self._delete_and_publish(child, {"room_id": room_ids})
            return self._delete_and_publish("rooms", {"id": room_ids}) if room_ids else []
        if table == "messages":
            message_ids = [r["id"] for r in self._select_rows("messages", match, None)]
            if message_ids:
                self._delete_and_publish("message_reactions", {"message_id": message_ids})
        return self._delete_and_publish(table, match)

    def _delete_and_publish(self, table: str, match: Match) -> List[dict]:
        removed = self._delete_rows(table, match)
        for row in removed:
            self.realtime.publish(ChangeEvent(table, ChangeType.DELETE, old=dict(row)))
        return [dict(r) for r in removed]
