"""Emoji reactions on messages."""
from .aggregator import ReactionAggregator
from .schemas import Reaction, ReactionGroup

__all__ = [
    "Reaction",
    "ReactionAggregator",
    "ReactionGroup",
]
