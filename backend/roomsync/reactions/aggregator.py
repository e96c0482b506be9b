"""Per-message emoji reaction multisets with toggle semantics.

A unique-key violation on insert means someone (usually a double click of
ours) already inserted the same reaction; it is treated exactly like
"already reacted" and flips the operation into a removal.
"""
import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from ..errors import StoreError, UniqueViolationError
from ..session.manager import RoomSessionManager
from ..store.base import Store
from ..store.realtime import ChangeEvent, ChangeType, Subscription
from .schemas import Reaction, ReactionGroup

logger = logging.getLogger(__name__)

# Maximum number of removed reaction ids remembered per room
REMOVED_ID_CACHE_SIZE = 1000


class ReactionAggregator:
    """Owns the reaction map of one room subscription."""

    def __init__(self, store: Store, session: RoomSessionManager) -> None:
        self.store = store
        self.session = session
        self.room_id = session.room_id
        self._reactions: Dict[str, List[Reaction]] = {}
        # Ids already removed; a late insert ack or echo must not bring them back
        self._removed_ids: "OrderedDict[str, bool]" = OrderedDict()
        self._subscription: Optional[Subscription] = None
        self._closed = False

    @property
    def ready(self) -> bool:
        return self.session.is_active and not self._closed

    def start(self) -> None:
        if not self.ready or self._subscription is not None:
            return
        self._subscription = self.store.subscribe(
            "message_reactions", self.room_id, self._on_change
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    async def fetch_reactions(self, message_ids: Iterable[str]) -> None:
        """Load all reactions for the given messages, replacing local state."""
        ids = [mid for mid in message_ids if mid]
        if not ids or not self.ready:
            return
        try:
            rows = await self.store.select(
                "message_reactions", {"message_id": ids}, order_by="created_at"
            )
        except StoreError as e:
            logger.error(f"[Reactions] Error fetching reactions: {e}")
            return
        if self._closed:
            return

        reaction_map: Dict[str, List[Reaction]] = {}
        for row in rows:
            reaction = Reaction.from_row(row)
            reaction_map.setdefault(reaction.message_id, []).append(reaction)
        self._reactions = reaction_map

    # ------------------------------------------------------------------
    # Toggle
    # ------------------------------------------------------------------

    def has_reacted(self, message_id: str, emoji: str) -> bool:
        return any(
            r.emoji == emoji and r.author_name == self.session.username
            for r in self._reactions.get(message_id, [])
        )

    async def toggle_reaction(self, message_id: str, emoji: str) -> bool:
        """Add the viewer's reaction, or remove it if already present."""
        if not self.ready:
            return False
        if self.has_reacted(message_id, emoji):
            return await self._remove(message_id, emoji)
        return await self._add(message_id, emoji)

    async def _add(self, message_id: str, emoji: str) -> bool:
        try:
            row = await self.store.insert("message_reactions", {
                "room_id": self.room_id,
                "message_id": message_id,
                "author_name": self.session.username,
                "emoji": emoji,
            })
        except UniqueViolationError:
            logger.debug(f"[Reactions] {emoji} already on {message_id}, removing instead")
            return await self._remove(message_id, emoji)
        except StoreError as e:
            logger.error(f"[Reactions] Error adding reaction: {e}")
            return False

        if not self._closed:
            self._merge(Reaction.from_row(row))
        return True

    async def _remove(self, message_id: str, emoji: str) -> bool:
        try:
            removed = await self.store.delete("message_reactions", {
                "message_id": message_id,
                "author_name": self.session.username,
                "emoji": emoji,
            })
        except StoreError as e:
            logger.error(f"[Reactions] Error removing reaction: {e}")
            return False

        if not self._closed:
            gone = {row["id"] for row in removed}
            gone.update(
                r.id for r in self._reactions.get(message_id, [])
                if r.author_name == self.session.username and r.emoji == emoji
            )
            for reaction_id in gone:
                self._discard(reaction_id, message_id)
        return True

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_reactions_for_message(self, message_id: str) -> List[ReactionGroup]:
        """Group reactions by emoji in first-reacted order."""
        grouped: Dict[str, ReactionGroup] = {}
        for reaction in self._reactions.get(message_id, []):
            group = grouped.get(reaction.emoji)
            if group is None:
                group = grouped[reaction.emoji] = ReactionGroup(emoji=reaction.emoji, count=0)
            group.count += 1
            group.users.append(reaction.author_name)
        for group in grouped.values():
            group.has_reacted = self.session.username in group.users
        return list(grouped.values())

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    def _on_change(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        if event.type == ChangeType.INSERT:
            self._merge(Reaction.from_row(event.new))
        elif event.type == ChangeType.DELETE:
            self._discard(event.old["id"], event.old.get("message_id"))

    def _merge(self, reaction: Reaction) -> None:
        if reaction.id in self._removed_ids:
            return
        existing = self._reactions.setdefault(reaction.message_id, [])
        if not any(r.id == reaction.id for r in existing):
            existing.append(reaction)

    def _discard(self, reaction_id: str, message_id: Optional[str]) -> None:
        self._remember_removed(reaction_id)
        keys = [message_id] if message_id else list(self._reactions)
        for key in keys:
            if key in self._reactions:
                self._reactions[key] = [r for r in self._reactions[key] if r.id != reaction_id]

    def _remember_removed(self, reaction_id: str) -> None:
        self._removed_ids[reaction_id] = True
        self._removed_ids.move_to_end(reaction_id)
        while len(self._removed_ids) > REMOVED_ID_CACHE_SIZE:
            self._removed_ids.popitem(last=False)
