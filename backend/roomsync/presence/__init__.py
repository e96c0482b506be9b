"""Presence, typing and read-receipt tracking."""
from .engine import AI_THINKING_EVENT, KICKED_EVENT, PresenceEngine
from .schemas import KickNotice, PresenceEntry

__all__ = [
    "AI_THINKING_EVENT",
    "KICKED_EVENT",
    "KickNotice",
    "PresenceEngine",
    "PresenceEntry",
]
