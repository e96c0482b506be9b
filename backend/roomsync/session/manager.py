"""Room session manager: the verified participant binding for one room.

State machine::

    NOT_JOINED -> JOINING -> ACTIVE -> LEFT
         ^           |
         +-----------+  (join rejected)

``join()`` is the only place a username is bound to the session token; once
a token is bound the manager refuses to re-join under a different name. While
Active a heartbeat refreshes ``last_seen_at``; heartbeat failures are ignored.
The session leaves on explicit ``leave()``, on being kicked, or when the room
row disappears (24h inactivity expiry).

No message, presence or reaction engine does anything before ``is_active``.
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional

from ..errors import StoreError
from ..store.base import Store
from ..store.realtime import ChangeEvent, ChangeType, Subscription

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_SECONDS = 30.0


class SessionState(str, Enum):
    NOT_JOINED = "not_joined"
    JOINING = "joining"
    ACTIVE = "active"
    LEFT = "left"


class LeaveReason(str, Enum):
    """Why a session reached LEFT.

    Attributes:
        LEFT: The participant left on their own.
        KICKED: The room creator removed the participant.
        ROOM_DELETED: The room expired or was deleted mid-session.
    """
    LEFT = "left"
    KICKED = "kicked"
    ROOM_DELETED = "room_deleted"


StateListener = Callable[["RoomSessionManager"], None]


class RoomSessionManager:
    """Drives the participant record of one (room, session token)."""

    def __init__(
        self,
        store: Store,
        room_id: Optional[str],
        session_token: str,
        username: Optional[str],
        heartbeat_interval: float = DEFAULT_HEARTBEAT_SECONDS,
    ) -> None:
        self.store = store
        self.room_id = room_id
        self.session_token = session_token
        self.username = username
        self.heartbeat_interval = heartbeat_interval

        self.state = SessionState.NOT_JOINED
        self.leave_reason: Optional[LeaveReason] = None
        self._bound_username: Optional[str] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._room_watch: Optional[Subscription] = None
        self._listeners: List[StateListener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def can_join(self) -> bool:
        return (
            self.state == SessionState.NOT_JOINED
            and bool(self.room_id)
            and bool(self.username and self.username.strip())
        )

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: SessionState) -> None:
        if self.state == state:
            return
        logger.info(f"[Session] Room {self.room_id}: {self.state.value} -> {state.value}")
        self.state = state
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("[Session] State listener failed")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def set_username(self, username: str) -> bool:
        """Change the pending username; refused once the token is bound."""
        if self._bound_username is not None and username != self._bound_username:
            logger.warning(
                f"[Session] Refusing username change from '{self._bound_username}' "
                f"to '{username}' in room {self.room_id}"
            )
            return False
        self.username = username
        return True

    async def join(self) -> bool:
        """Create the server-side session row and become Active.

        Returns:
            True when Active, False if preconditions are missing or the
            store rejected the binding (state returns to NOT_JOINED).
        """
        if self.is_active:
            return True
        if not self.can_join:
            return False

        self._set_state(SessionState.JOINING)
        try:
            await self.store.create_room_session(self.room_id, self.session_token, self.username)
        except StoreError as e:
            logger.error(f"[Session] Failed to create room session in {self.room_id}: {e}")
            self._set_state(SessionState.NOT_JOINED)
            return False

        if self.state != SessionState.JOINING:
            # Left while the join was in flight; the row may postdate leave()'s delete
            if self.leave_reason != LeaveReason.ROOM_DELETED:
                try:
                    await self.store.delete_room_session(self.room_id, self.session_token)
                except StoreError as e:
                    logger.error(f"[Session] Error removing abandoned session in {self.room_id}: {e}")
            return False
        self._bound_username = self.username
        self._room_watch = self.store.subscribe("rooms", self.room_id, self._on_room_change)
        self._set_state(SessionState.ACTIVE)
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        return True

    async def leave(self, reason: LeaveReason = LeaveReason.LEFT) -> None:
        """Delete the session row and move to LEFT. Idempotent."""
        if self.state == SessionState.LEFT:
            return
        was_bound = self.state in (SessionState.ACTIVE, SessionState.JOINING)
        self.leave_reason = reason
        self._stop()
        self._set_state(SessionState.LEFT)

        if was_bound and reason != LeaveReason.ROOM_DELETED:
            try:
                await self.store.delete_room_session(self.room_id, self.session_token)
            except StoreError as e:
                logger.error(f"[Session] Error leaving room {self.room_id}: {e}")

    async def kicked(self) -> None:
        logger.info(f"[Session] '{self.username}' was kicked from room {self.room_id}")
        await self.leave(LeaveReason.KICKED)

    def room_deleted(self) -> None:
        """Force LEFT without touching the store; the room rows are gone."""
        if self.state == SessionState.LEFT:
            return
        logger.info(f"[Session] Room {self.room_id} no longer exists")
        self.leave_reason = LeaveReason.ROOM_DELETED
        self._stop()
        self._set_state(SessionState.LEFT)

    async def touch(self) -> None:
        """Refresh ``last_seen_at``; failures are not critical."""
        if not self.is_active:
            return
        try:
            await self.store.touch_room_session(self.room_id, self.session_token)
        except Exception as e:
            logger.debug(f"[Session] Heartbeat failed for room {self.room_id}: {e}")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _heartbeat_loop(self) -> None:
        while self.is_active:
            await asyncio.sleep(self.heartbeat_interval)
            await self.touch()

    def _on_room_change(self, event: ChangeEvent) -> None:
        if event.type == ChangeType.DELETE:
            self.room_deleted()

    def _stop(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        if self._room_watch is not None:
            self._room_watch.close()
            self._room_watch = None
