"""Message store sync engine: optimistic writes reconciled with a change feed.

This module keeps one room's ordered, deduplicated message list consistent
with the store while the local user, other participants and the assistant
all write concurrently.

Key features:
    - Optimistic insert with a ``temp-`` id, replaced by the server row on ack
    - Rollback of the optimistic entry when the write fails
    - Realtime INSERT reconciliation that collapses the echo of our own write
    - List always sorted by ``created_at`` regardless of arrival order
    - Bounded LRU of deleted ids so late events never resurrect a message

Reconciliation:
    The store does not return the temp id with the realtime echo, so an
    INSERT from the feed is matched to a pending temporary entry by author
    and content. The same author sending identical content twice before
    either echo arrives can therefore collapse onto the wrong temp entry;
    both end up confirmed, only their list position may swap. With
    ``correlate_optimistic_writes`` enabled the temp id travels in
    ``client_ref`` and the match is exact.

Thread Safety:
    Designed for a single asyncio event loop. NOT thread-safe.
"""
import logging
import random
import string
import time
from collections import OrderedDict
from typing import Callable, List, Optional

from ..config import SyncSettings
from ..errors import StoreError, UploadError
from ..session.manager import RoomSessionManager
from ..storage.service import BlobStorage
from ..store.base import Store
from ..store.realtime import ChangeEvent, ChangeType, Subscription
from .schemas import Author, FileUpload, Message, MessageType, new_temp_id

logger = logging.getLogger(__name__)

# Maximum number of deleted message ids remembered per room
DELETED_ID_CACHE_SIZE = 1000

SendListener = Callable[[Message], None]


class MessageSyncEngine:
    """Owns the local message list of one room subscription.

    Every operation is a no-op returning ``False`` (or an empty result)
    until the room session is Active, and after ``close()``.
    """

    def __init__(
        self,
        store: Store,
        session: RoomSessionManager,
        storage: Optional[BlobStorage] = None,
        settings: Optional[SyncSettings] = None,
    ) -> None:
        self.store = store
        self.session = session
        self.room_id = session.room_id
        self.storage = storage
        self.settings = settings or SyncSettings()

        self._messages: List[Message] = []
        self._deleted_ids: "OrderedDict[str, bool]" = OrderedDict()
        self._send_listeners: List[SendListener] = []
        self._subscription: Optional[Subscription] = None
        self._closed = False
        self.loading = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def ready(self) -> bool:
        return self.session.is_active and not self._closed

    def start(self) -> None:
        """Subscribe to the room's message change feed."""
        if not self.ready or self._subscription is not None:
            return
        logger.info(f"[Messages] Subscribing to realtime for room {self.room_id}")
        self._subscription = self.store.subscribe("messages", self.room_id, self._on_change)

    async def load(self) -> List[Message]:
        """Fetch the room history, keeping any still-pending temporary entries."""
        if not self.ready:
            return []
        self.loading = True
        try:
            rows = await self.store.select(
                "messages", {"room_id": self.room_id}, order_by="created_at"
            )
        except StoreError as e:
            logger.error(f"[Messages] Error fetching messages for room {self.room_id}: {e}")
            return self.messages
        finally:
            self.loading = False

        if self._closed:
            return []
        pending = [m for m in self._messages if m.is_temporary]
        self._messages = [Message.from_row(r) for r in rows if r["id"] not in self._deleted_ids]
        self._messages.extend(pending)
        self._sort()
        return self.messages

    refetch = load

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        logger.info(f"[Messages] Unsubscribed from realtime for room {self.room_id}")

    def add_send_listener(self, listener: SendListener) -> None:
        """Register a callback invoked with each confirmed sent message."""
        self._send_listeners.append(listener)

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def message_ids(self) -> List[str]:
        return [m.id for m in self._messages]

    def get(self, message_id: str) -> Optional[Message]:
        for msg in self._messages:
            if msg.id == message_id:
                return msg
        return None

    # =========================================================================
    # Writes
    # =========================================================================

    async def send_text(
        self,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        author: Optional[Author] = None,
    ) -> bool:
        """Send a text or code message optimistically.

        Args:
            content: Message body; surrounding whitespace is stripped.
            message_type: TEXT or CODE.
            author: Defaults to the session's human participant.

        Returns:
            True once the store confirmed the write, False if it was rejected
            (the optimistic entry is rolled back and the caller may retry).
        """
        content = content.strip()
        if not content or not self.ready:
            return False

        author = author or Author.human(self.session.username)
        temp = self._optimistic(content, message_type, author)
        payload = {
            "room_id": self.room_id,
            "content": content,
            "type": message_type.value,
            "author_name": author.name,
            "author_kind": author.kind.value,
            "client_ref": temp.client_ref,
        }

        try:
            row = await self.store.insert("messages", payload)
        except StoreError as e:
            logger.warning(f"[Messages] Error sending message in room {self.room_id}: {e}")
            self._remove(temp.id)
            return False

        if self._closed:
            return True
        confirmed = self._confirm(temp.id, row)
        self._notify_sent(confirmed)
        return True

    async def send_file(self, upload: FileUpload) -> bool:
        """Upload a file and post a message referencing it.

        A placeholder ``Uploading {name}...`` entry is shown while the bytes
        are uploaded; it is removed if either the upload or the insert fails.
        """
        if not self.ready or self.storage is None:
            return False
        if upload.size > self.settings.max_upload_bytes:
            logger.warning(
                f"[Messages] File too large: {upload.name} ({upload.size} bytes, "
                f"limit {self.settings.max_upload_bytes})"
            )
            return False

        author = Author.human(self.session.username)
        temp = self._optimistic(f"Uploading {upload.name}...", MessageType.FILE, author)
        temp.file_name = upload.name
        temp.file_type = upload.mime_type

        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
        path = f"{self.room_id}/{int(time.time() * 1000)}-{suffix}.{upload.extension}"

        try:
            public_url = await self.storage.upload(path, upload.content, upload.mime_type)
            row = await self.store.insert("messages", {
                "room_id": self.room_id,
                "content": upload.name,
                "type": MessageType.FILE.value,
                "author_name": author.name,
                "author_kind": author.kind.value,
                "file_url": public_url,
                "file_name": upload.name,
                "file_type": upload.mime_type,
                "client_ref": temp.client_ref,
            })
        except (UploadError, StoreError) as e:
            logger.warning(f"[Messages] Error sending file {upload.name}: {e}")
            self._remove(temp.id)
            return False

        if self._closed:
            return True
        self._confirm(temp.id, row)
        return True

    async def delete_message(self, message_id: str) -> bool:
        """Delete a confirmed message, removing it locally first.

        Returns:
            True if the store accepted the delete; on failure the message is
            restored and False is returned.
        """
        if not self.ready:
            return False
        existing = self.get(message_id)
        if existing is not None and existing.is_temporary:
            return False

        if existing is not None:
            self._remove(message_id)
        self._remember_deleted(message_id)

        try:
            await self.store.delete("messages", {"id": message_id, "room_id": self.room_id})
        except StoreError as e:
            logger.warning(f"[Messages] Error deleting message {message_id}: {e}")
            self._deleted_ids.pop(message_id, None)
            if existing is not None and not self._closed and self.get(message_id) is None:
                self._messages.append(existing)
                self._sort()
            return False
        return True

    # =========================================================================
    # Realtime reconciliation
    # =========================================================================

    def _on_change(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        if event.type == ChangeType.INSERT:
            self.on_realtime_insert(event.new)
        elif event.type == ChangeType.UPDATE:
            self.on_realtime_update(event.new)
        elif event.type == ChangeType.DELETE:
            self.on_realtime_delete(event.old["id"])

    def on_realtime_insert(self, row: dict) -> None:
        """Merge an INSERT from the feed without ever duplicating a message."""
        incoming = Message.from_row(row)
        if incoming.id in self._deleted_ids or self.get(incoming.id) is not None:
            return

        index = self._find_pending(incoming)
        if index is not None:
            self._messages[index] = incoming
        else:
            self._messages.append(incoming)
        self._sort()

    def on_realtime_update(self, row: dict) -> None:
        incoming = Message.from_row(row)
        for i, msg in enumerate(self._messages):
            if msg.id == incoming.id:
                self._messages[i] = incoming
                self._sort()
                return

    def on_realtime_delete(self, message_id: str) -> None:
        self._remember_deleted(message_id)
        self._remove(message_id)

    # =========================================================================
    # Internal
    # =========================================================================

    def _optimistic(self, content: str, message_type: MessageType, author: Author) -> Message:
        temp_id = new_temp_id()
        temp = Message(
            id=temp_id,
            room_id=self.room_id,
            content=content,
            type=message_type,
            author_name=author.name,
            author_kind=author.kind,
            client_ref=temp_id if self.settings.correlate_optimistic_writes else None,
        )
        self._messages.append(temp)
        self._sort()
        return temp

    def _find_pending(self, incoming: Message) -> Optional[int]:
        if incoming.client_ref:
            for i, msg in enumerate(self._messages):
                if msg.id == incoming.client_ref:
                    return i
        for i, msg in enumerate(self._messages):
            if (msg.is_temporary
                    and msg.author_name == incoming.author_name
                    and msg.content == incoming.content):
                return i
        return None

    def _confirm(self, temp_id: str, row: dict) -> Message:
        """Swap a temporary entry for its acknowledged server row."""
        confirmed = Message.from_row(row)
        if confirmed.id in self._deleted_ids or self.get(confirmed.id) is not None:
            # Echo already reconciled (or the message was deleted meanwhile)
            self._remove(temp_id)
            return confirmed

        for i, msg in enumerate(self._messages):
            if msg.id == temp_id:
                self._messages[i] = confirmed
                break
        else:
            self._messages.append(confirmed)
        self._sort()
        return confirmed

    def _remove(self, message_id: str) -> None:
        self._messages = [m for m in self._messages if m.id != message_id]

    def _remember_deleted(self, message_id: str) -> None:
        self._deleted_ids[message_id] = True
        self._deleted_ids.move_to_end(message_id)
        while len(self._deleted_ids) > DELETED_ID_CACHE_SIZE:
            self._deleted_ids.popitem(last=False)

    def _sort(self) -> None:
        # list.sort is stable, so equal timestamps keep arrival order
        self._messages.sort(key=lambda m: m.created_at)

    def _notify_sent(self, message: Message) -> None:
        for listener in list(self._send_listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("[Messages] Send listener failed")
