"""Room connection: one participant's live view of one room.

``connect()`` wires the session manager, the message engine, the reaction
aggregator, the presence engine and (when a responder is configured) the
assistant trigger in the order they depend on each other, and returns a
handle whose ``close()`` tears everything down exactly once.

Usage:
    async with await connect(store, room_id, identity=identity) as conn:
        await conn.send_text("hello")
        print(conn.messages.messages)
"""
import asyncio
import logging
from typing import Callable, List, Optional

from .assistant.base import Responder
from .assistant.trigger import AssistantTrigger
from .config import SyncSettings
from .errors import SessionError
from .messages.engine import MessageSyncEngine
from .messages.schemas import FileUpload, Message, MessageType
from .presence.engine import PresenceEngine
from .reactions.aggregator import ReactionAggregator
from .reactions.schemas import ReactionGroup
from .session.identity import IdentityStore
from .session.manager import LeaveReason, RoomSessionManager, SessionState
from .storage.service import BlobStorage
from .store.base import Store

logger = logging.getLogger(__name__)


class RoomConnection:
    """Handle returned by ``connect()``.

    Attributes:
        session: Participant lifecycle.
        messages: Ordered message list engine.
        reactions: Reaction aggregator.
        presence: Roster, typing and read receipts.
        assistant: Mention trigger, or None when no responder is configured.
    """

    def __init__(
        self,
        session: RoomSessionManager,
        messages: MessageSyncEngine,
        reactions: ReactionAggregator,
        presence: PresenceEngine,
        assistant: Optional[AssistantTrigger] = None,
    ) -> None:
        self.session = session
        self.messages = messages
        self.reactions = reactions
        self.presence = presence
        self.assistant = assistant
        self._closed = False
        self._teardown: Optional[asyncio.Task] = None
        self._left_listeners: List[Callable[[LeaveReason], None]] = []

        self.session.add_listener(self._on_session_state)
        self.presence.add_kick_listener(self._on_kicked)

    @property
    def room_id(self) -> str:
        return self.session.room_id

    @property
    def username(self) -> str:
        return self.session.username

    @property
    def closed(self) -> bool:
        return self._closed

    def add_left_listener(self, listener: Callable[[LeaveReason], None]) -> None:
        """Call ``listener`` with the reason once the session reaches LEFT."""
        self._left_listeners.append(listener)

    # =========================================================================
    # Operations
    # =========================================================================

    async def send_text(self, content: str, message_type: MessageType = MessageType.TEXT) -> bool:
        self.presence.set_typing(False)
        return await self.messages.send_text(content, message_type)

    async def send_file(self, upload: FileUpload) -> bool:
        return await self.messages.send_file(upload)

    async def delete_message(self, message_id: str) -> bool:
        return await self.messages.delete_message(message_id)

    async def toggle_reaction(self, message_id: str, emoji: str) -> bool:
        return await self.reactions.toggle_reaction(message_id, emoji)

    def reactions_for(self, message_id: str) -> List[ReactionGroup]:
        return self.reactions.get_reactions_for_message(message_id)

    async def kick_user(self, username: str) -> None:
        await self.presence.kick_user(username)

    def on_input_change(self, text: str) -> None:
        self.presence.on_input_change(text)

    def mark_seen(self, message_id: Optional[str] = None) -> None:
        """Advance the read pointer, by default to the newest confirmed message."""
        if message_id is None:
            confirmed = [m for m in self.messages.messages if not m.is_temporary]
            if not confirmed:
                return
            message_id = confirmed[-1].id
        self.presence.mark_seen(message_id)

    def latest_own_message(self) -> Optional[Message]:
        for msg in reversed(self.messages.messages):
            if (not msg.is_temporary
                    and not msg.author.is_assistant
                    and msg.author_name == self.session.username):
                return msg
        return None

    def latest_own_seen_by(self) -> List[str]:
        """Who has read up to this participant's most recent own message."""
        own = self.latest_own_message()
        if own is None:
            return []
        return self.presence.get_seen_by(own.id, self.messages.message_ids, own.author_name)

    # =========================================================================
    # Teardown
    # =========================================================================

    async def close(self) -> None:
        """Leave the room and stop every engine. Idempotent."""
        if self._closed:
            return
        self._closed = True
        logger.info(f"Closing connection to room {self.room_id} as '{self.username}'")

        if self.assistant is not None:
            await self.assistant.close()
        await self.presence.close()
        self.reactions.close()
        self.messages.close()
        await self.session.leave()

    async def __aenter__(self) -> "RoomConnection":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _on_kicked(self) -> None:
        if self._closed:
            return
        self._schedule_teardown(self._kicked())

    async def _kicked(self) -> None:
        await self.session.kicked()
        await self.close()

    def _on_session_state(self, session: RoomSessionManager) -> None:
        if session.state != SessionState.LEFT:
            return
        reason = session.leave_reason or LeaveReason.LEFT
        for listener in list(self._left_listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception("Left listener failed")
        if not self._closed:
            self._schedule_teardown(self.close())

    def _schedule_teardown(self, coro) -> None:
        if self._teardown is not None and not self._teardown.done():
            coro.close()
            return
        self._teardown = asyncio.get_running_loop().create_task(coro)

    async def wait_closed(self) -> None:
        """Wait for a teardown started by a kick or room deletion."""
        if self._teardown is not None:
            await self._teardown


async def connect(
    store: Store,
    room_id: str,
    identity: Optional[IdentityStore] = None,
    session_token: Optional[str] = None,
    username: Optional[str] = None,
    responder: Optional[Responder] = None,
    storage: Optional[BlobStorage] = None,
    settings: Optional[SyncSettings] = None,
    connection_key: Optional[str] = None,
) -> RoomConnection:
    """Join ``room_id`` and start every engine.

    Either ``identity`` or both ``session_token`` and ``username`` must be
    given; explicit arguments win over the identity file.

    Raises:
        SessionError: If no identity is available or the join is refused.
    """
    settings = settings or SyncSettings()
    if identity is not None:
        session_token = session_token or identity.session_token
        username = username or identity.username
    if not session_token or not username or not username.strip():
        raise SessionError("A session token and a username are required to join a room")

    session = RoomSessionManager(
        store, room_id, session_token, username.strip(),
        heartbeat_interval=settings.heartbeat_interval_seconds,
    )
    if not await session.join():
        raise SessionError(f"Could not join room {room_id} as '{username}'")

    messages = MessageSyncEngine(store, session, storage=storage, settings=settings)
    messages.start()
    await messages.load()

    reactions = ReactionAggregator(store, session)
    reactions.start()
    await reactions.fetch_reactions(messages.message_ids)

    presence = PresenceEngine(store, session, settings=settings, connection_key=connection_key)
    await presence.start()

    assistant = None
    if responder is not None:
        assistant = AssistantTrigger(
            messages, responder, presence, context_size=settings.assistant_context_size
        )
        assistant.attach()

    logger.info(f"Connected to room {room_id} as '{session.username}'")
    return RoomConnection(session, messages, reactions, presence, assistant)
