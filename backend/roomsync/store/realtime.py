"""In-process realtime fan-out: row change feeds and presence channels.

Both hubs deliver on the running event loop with ``loop.call_soon`` so a
subscriber is never invoked inline from the writer's call stack. Events for a
given room reach subscribers in the order they were published.

Thread Safety:
    Designed for a single asyncio event loop. Not thread-safe.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .schema import get_table

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """A committed row change.

    Attributes:
        table: Table the row belongs to.
        type: INSERT, UPDATE or DELETE.
        new: Row after the change (None for DELETE).
        old: Row before the change (None for INSERT).
    """
    table: str
    type: ChangeType
    new: Optional[dict] = None
    old: Optional[dict] = None

    @property
    def row(self) -> dict:
        return self.new if self.new is not None else (self.old or {})

    @property
    def room_id(self) -> Optional[str]:
        return get_table(self.table).room_of(self.row)


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle for one change-feed subscription. ``close()`` is idempotent."""

    def __init__(
        self,
        hub: "RealtimeHub",
        table: str,
        room_id: Optional[str],
        callback: ChangeCallback,
    ) -> None:
        self._hub = hub
        self.table = table
        self.room_id = room_id
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._hub._remove(self)


class RealtimeHub:
    """Fans committed row changes out to per-(table, room) subscribers."""

    def __init__(self) -> None:
        self._subscriptions: Dict[Tuple[str, Optional[str]], List[Subscription]] = {}
        self._paused = False
        self._held: List[ChangeEvent] = []

    def subscribe(
        self, table: str, room_id: Optional[str], callback: ChangeCallback
    ) -> Subscription:
        """Subscribe to changes of ``table`` scoped to ``room_id`` (None = all rooms)."""
        get_table(table)
        sub = Subscription(self, table, room_id, callback)
        self._subscriptions.setdefault((table, room_id), []).append(sub)
        logger.debug("Realtime subscribe: table=%s room=%s", table, room_id)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get((sub.table, sub.room_id), [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop((sub.table, sub.room_id), None)

    def subscriber_count(self, table: Optional[str] = None) -> int:
        return sum(
            len(subs) for (t, _), subs in self._subscriptions.items()
            if table is None or t == table
        )

    def publish(self, event: ChangeEvent) -> None:
        if self._paused:
            self._held.append(event)
            return
        self._schedule(event)

    def pause(self) -> None:
        """Hold events until ``resume()``, modelling transport latency."""
        self._paused = True

    def resume(self) -> None:
        self._paused = False
        held, self._held = self._held, []
        for event in held:
            self._schedule(event)

    def _schedule(self, event: ChangeEvent) -> None:
        targets = list(self._subscriptions.get((event.table, event.room_id), []))
        targets += self._subscriptions.get((event.table, None), [])
        if not targets:
            return
        loop = asyncio.get_running_loop()
        for sub in targets:
            loop.call_soon(self._deliver, sub, event)

    @staticmethod
    def _deliver(sub: Subscription, event: ChangeEvent) -> None:
        if sub.closed:
            return
        try:
            sub.callback(event)
        except Exception:
            logger.exception(
                "Realtime callback failed for %s %s", event.type.value, event.table
            )


# =============================================================================
# Presence
# =============================================================================

SyncCallback = Callable[[Dict[str, dict]], None]
BroadcastCallback = Callable[[dict], None]


class PresenceChannel:
    """One connection's view of a room's presence/broadcast channel."""

    def __init__(self, hub: "PresenceHub", room_id: str, key: str) -> None:
        self._hub = hub
        self.room_id = room_id
        self.key = key
        self.closed = False
        self._sync_callbacks: List[SyncCallback] = []
        self._broadcast_callbacks: Dict[str, List[BroadcastCallback]] = {}

    def on_sync(self, callback: SyncCallback) -> "PresenceChannel":
        self._sync_callbacks.append(callback)
        self._hub._schedule_sync(self)
        return self

    def on_broadcast(self, event: str, callback: BroadcastCallback) -> "PresenceChannel":
        self._broadcast_callbacks.setdefault(event, []).append(callback)
        return self

    async def track(self, state: dict) -> None:
        """Replace this connection's published state."""
        await asyncio.sleep(0)
        self._hub._track(self, dict(state))

    async def untrack(self) -> None:
        await asyncio.sleep(0)
        self._hub._untrack(self)

    async def broadcast(self, event: str, payload: dict) -> None:
        """Send an ephemeral event to every other connection in the room."""
        await asyncio.sleep(0)
        self._hub._broadcast(self, event, dict(payload))

    def presence_state(self) -> Dict[str, dict]:
        return self._hub.state(self.room_id)

    def close(self) -> None:
        """Leave the channel; the hub drops any tracked state."""
        if self.closed:
            return
        self.closed = True
        self._hub._close(self)


class PresenceHub:
    """Holds tracked presence state per room and delivers full-state syncs."""

    def __init__(self) -> None:
        self._channels: Dict[str, Dict[str, PresenceChannel]] = {}
        self._state: Dict[str, Dict[str, dict]] = {}

    def channel(self, room_id: str, key: str) -> PresenceChannel:
        chan = PresenceChannel(self, room_id, key)
        self._channels.setdefault(room_id, {})[key] = chan
        return chan

    def state(self, room_id: str) -> Dict[str, dict]:
        return {k: dict(v) for k, v in self._state.get(room_id, {}).items()}

    def _track(self, chan: PresenceChannel, state: dict) -> None:
        if chan.closed:
            return
        self._state.setdefault(chan.room_id, {})[chan.key] = state
        self._sync_room(chan.room_id)

    def _untrack(self, chan: PresenceChannel) -> None:
        room_state = self._state.get(chan.room_id, {})
        if room_state.pop(chan.key, None) is not None:
            self._sync_room(chan.room_id)
        if not room_state:
            self._state.pop(chan.room_id, None)

    def _close(self, chan: PresenceChannel) -> None:
        room = self._channels.get(chan.room_id, {})
        if room.get(chan.key) is chan:
            del room[chan.key]
        if not room:
            self._channels.pop(chan.room_id, None)
        self._untrack(chan)

    def _broadcast(self, sender: PresenceChannel, event: str, payload: dict) -> None:
        loop = asyncio.get_running_loop()
        for chan in list(self._channels.get(sender.room_id, {}).values()):
            if chan is sender:
                continue
            for cb in chan._broadcast_callbacks.get(event, []):
                loop.call_soon(self._deliver_broadcast, chan, cb, event, payload)

    def _sync_room(self, room_id: str) -> None:
        for chan in list(self._channels.get(room_id, {}).values()):
            self._schedule_sync(chan)

    def _schedule_sync(self, chan: PresenceChannel) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        for cb in chan._sync_callbacks:
            loop.call_soon(self._deliver_sync, chan, cb)

    def _deliver_sync(self, chan: PresenceChannel, cb: SyncCallback) -> None:
        if chan.closed:
            return
        try:
            cb(self.state(chan.room_id))
        except Exception:
            logger.exception("Presence sync callback failed in room %s", chan.room_id)

    @staticmethod
    def _deliver_broadcast(
        chan: PresenceChannel, cb: BroadcastCallback, event: str, payload: dict
    ) -> None:
        if chan.closed:
            return
        try:
            cb(payload)
        except Exception:
            logger.exception("Broadcast callback failed for event %s", event)
