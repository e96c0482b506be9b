"""Reaction data models."""
from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from ..store.schema import utcnow


class Reaction(BaseModel):
    """One emoji reaction row; unique per (message_id, author_name, emoji)."""
    id: str
    message_id: str
    author_name: str
    emoji: str
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: dict) -> "Reaction":
        return cls(**{k: v for k, v in row.items() if k in cls.model_fields and v is not None})


class ReactionGroup(BaseModel):
    """Reactions to one message grouped by emoji, as seen by the viewer."""
    emoji: str
    count: int
    users: List[str] = Field(default_factory=list)
    has_reacted: bool = False
