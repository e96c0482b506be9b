"""Presence & typing engine for one room connection.

Each connection publishes ``{username, online_since, is_typing,
last_seen_message_id}`` on the room's presence channel and receives the full
state of every connection on each sync. The roster, the typing list and
"seen by" are pure derivations of the latest sync.

Publishing happens only when a tracked field changes, not per keystroke.
Presence is best-effort: failed pushes are logged and dropped.

The same channel carries two control broadcasts: ``kicked`` (creator-only)
and ``ai_thinking`` (room-wide assistant indicator).
"""
import asyncio
import logging
import random
import string
from typing import Callable, Dict, List, Optional, Set

from ..config import SyncSettings
from ..errors import NotRoomCreatorError
from ..session.manager import RoomSessionManager
from ..store.base import Store
from ..store.realtime import PresenceChannel
from ..store.schema import utcnow
from .schemas import KickNotice, PresenceEntry

logger = logging.getLogger(__name__)

KICKED_EVENT = "kicked"
AI_THINKING_EVENT = "ai_thinking"


def new_connection_key() -> str:
    return "user-" + "".join(random.choices(string.ascii_lowercase + string.digits, k=7))


class PresenceEngine:
    """Tracks this connection's presence and derives the room roster."""

    def __init__(
        self,
        store: Store,
        session: RoomSessionManager,
        settings: Optional[SyncSettings] = None,
        connection_key: Optional[str] = None,
    ) -> None:
        self.store = store
        self.session = session
        self.room_id = session.room_id
        self.settings = settings or SyncSettings()
        self.key = connection_key or new_connection_key()

        self.is_typing = False
        self.last_seen_message_id: Optional[str] = None
        self._online_since = utcnow().isoformat()
        self._entries: Dict[str, PresenceEntry] = {}
        self._ai_thinking = False

        self._channel: Optional[PresenceChannel] = None
        self._typing_timer: Optional[asyncio.TimerHandle] = None
        self._pushes: Set[asyncio.Task] = set()
        self._kick_listeners: List[Callable[[], None]] = []
        self._closed = False

    @property
    def ready(self) -> bool:
        return self.session.is_active and not self._closed and self._channel is not None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Join the presence channel and publish the initial state."""
        if not self.session.is_active or self._closed or self._channel is not None:
            return
        self._channel = (
            self.store.channel(self.room_id, self.key)
            .on_broadcast(KICKED_EVENT, self._on_kicked)
            .on_broadcast(AI_THINKING_EVENT, self._on_ai_thinking)
        )
        self._channel.on_sync(self._on_sync)
        await self._push()
        logger.info(f"[Presence] Tracked {self.key} in room {self.room_id}")

    async def close(self) -> None:
        """Clear timers, untrack and leave the channel. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._cancel_typing_timer()
        for task in list(self._pushes):
            task.cancel()
        self._pushes.clear()

        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            await channel.untrack()
        except Exception as e:
            logger.debug(f"[Presence] Untrack failed in room {self.room_id}: {e}")
        channel.close()

    def add_kick_listener(self, listener: Callable[[], None]) -> None:
        """Call ``listener`` when a kick notice names this participant."""
        self._kick_listeners.append(listener)

    # =========================================================================
    # Tracked state
    # =========================================================================

    def set_typing(self, flag: bool) -> None:
        """Set the typing flag; ``True`` also (re)arms the idle timer."""
        if self._closed or not self.session.is_active:
            return
        if flag:
            self._arm_typing_timer()
        else:
            self._cancel_typing_timer()
        if flag != self.is_typing:
            self.is_typing = flag
            self._schedule_push()

    def on_input_change(self, text: str) -> None:
        self.set_typing(bool(text.strip()))

    def mark_seen(self, message_id: Optional[str]) -> None:
        """Advance this connection's read pointer."""
        if self._closed or not self.session.is_active:
            return
        if message_id is None or message_id == self.last_seen_message_id:
            return
        self.last_seen_message_id = message_id
        self._schedule_push()

    def _arm_typing_timer(self) -> None:
        self._cancel_typing_timer()
        loop = asyncio.get_running_loop()
        self._typing_timer = loop.call_later(
            self.settings.typing_idle_seconds, self.set_typing, False
        )

    def _cancel_typing_timer(self) -> None:
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None

    def _state(self) -> dict:
        return {
            "username": self.session.username,
            "online_since": self._online_since,
            "is_typing": self.is_typing,
            "last_seen_message_id": self.last_seen_message_id,
        }

    def _schedule_push(self) -> None:
        if not self.ready:
            return
        task = asyncio.get_running_loop().create_task(self._push())
        self._pushes.add(task)
        task.add_done_callback(self._pushes.discard)

    async def _push(self) -> None:
        if not self.ready:
            return
        try:
            await self._channel.track(self._state())
        except Exception as e:
            logger.debug(f"[Presence] Track failed in room {self.room_id}: {e}")

    # =========================================================================
    # Derived roster
    # =========================================================================

    def _on_sync(self, state: Dict[str, dict]) -> None:
        if self._closed:
            return
        self._entries = {key: PresenceEntry.from_state(key, s) for key, s in state.items()}
        logger.debug(f"[Presence] Sync: {len(self._entries)} connections online in {self.room_id}")

    @property
    def entries(self) -> List[PresenceEntry]:
        return list(self._entries.values())

    @property
    def online_count(self) -> int:
        return len(self._entries)

    @property
    def online_users(self) -> List[str]:
        return sorted({e.username for e in self._entries.values() if e.username})

    @property
    def typing_users(self) -> List[str]:
        return sorted({
            e.username for e in self._entries.values()
            if e.is_typing and e.username and e.username != self.session.username
        })

    def get_seen_by(
        self,
        message_id: str,
        ordered_ids: List[str],
        author_name: Optional[str] = None,
    ) -> List[str]:
        """Usernames whose read pointer is at or after ``message_id``.

        The viewer and the message author are excluded. Callers should ask
        only for the viewer's most recent own message.
        """
        positions = {mid: i for i, mid in enumerate(ordered_ids)}
        target = positions.get(message_id)
        if target is None:
            return []
        seen = set()
        for entry in self._entries.values():
            if entry.username in (self.session.username, author_name):
                continue
            pos = positions.get(entry.last_seen_message_id)
            if pos is not None and pos >= target:
                seen.add(entry.username)
        return sorted(seen)

    # =========================================================================
    # Control broadcasts
    # =========================================================================

    @property
    def ai_thinking(self) -> bool:
        return self._ai_thinking

    async def set_ai_thinking(self, flag: bool) -> None:
        self._ai_thinking = flag
        if not self.ready:
            return
        try:
            await self._channel.broadcast(AI_THINKING_EVENT, {"thinking": flag})
        except Exception as e:
            logger.debug(f"[Presence] ai_thinking broadcast failed: {e}")

    def _on_ai_thinking(self, payload: dict) -> None:
        if not self._closed:
            self._ai_thinking = bool(payload.get("thinking"))

    async def kick_user(self, username: str) -> None:
        """Publish a kick notice for ``username``.

        Raises:
            NotRoomCreatorError: If this session did not create the room.
        """
        if not self.ready:
            return
        if not await self.store.is_room_creator(self.room_id, self.session.session_token):
            raise NotRoomCreatorError(self.room_id)
        notice = KickNotice(username=username, by=self.session.username)
        logger.info(f"[Presence] Kicking '{username}' from room {self.room_id}")
        await self._channel.broadcast(KICKED_EVENT, notice.model_dump())

    def _on_kicked(self, payload: dict) -> None:
        if self._closed or payload.get("username") != self.session.username:
            return
        for listener in list(self._kick_listeners):
            listener()
