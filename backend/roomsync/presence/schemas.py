"""Presence data models."""
from typing import Optional

from pydantic import BaseModel, Field


class PresenceEntry(BaseModel):
    """State published by one live connection.

    A user with several open connections has several entries.

    Attributes:
        connection_key: Random key identifying the connection.
        username: Display name of the participant.
        online_since: ISO timestamp of when the connection started tracking.
        is_typing: Whether the participant is composing a message.
        last_seen_message_id: Newest message the participant has read.
    """
    connection_key: str
    username: str = ""
    online_since: Optional[str] = None
    is_typing: bool = False
    last_seen_message_id: Optional[str] = None

    @classmethod
    def from_state(cls, key: str, state: dict) -> "PresenceEntry":
        fields = {k: v for k, v in state.items() if k in cls.model_fields and k != "connection_key"}
        return cls(connection_key=key, **fields)


class KickNotice(BaseModel):
    """Payload of the ``kicked`` broadcast."""
    username: str = Field(..., min_length=1)
    by: Optional[str] = None
