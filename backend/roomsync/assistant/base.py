"""Responder abstract interface for the room assistant.

A responder turns a question plus recent room messages into a reply. Every
implementation raises ResponderError on failure so the trigger can contain it.

Usage:
    from roomsync.assistant import OpenAIResponder

    responder = OpenAIResponder(api_key="sk-...")
    reply = await responder.respond("what is 2+2", context)
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

from ..messages.schemas import AuthorKind, Message


@dataclass
class ContextMessage:
    """One prior room message handed to the responder.

    Attributes:
        author: Display name of the sender.
        content: Message text.
        is_assistant: True when the assistant wrote it.
    """
    author: str
    content: str
    is_assistant: bool = False

    @classmethod
    def from_message(cls, message: Message) -> "ContextMessage":
        return cls(
            author=message.author_name,
            content=message.content,
            is_assistant=message.author_kind == AuthorKind.ASSISTANT,
        )

    def to_payload(self) -> dict:
        return {
            "username": self.author,
            "content": self.content,
            "authorKind": AuthorKind.ASSISTANT.value if self.is_assistant else AuthorKind.HUMAN.value,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "ContextMessage":
        return cls(
            author=str(payload.get("username", "")),
            content=str(payload.get("content", "")),
            is_assistant=payload.get("authorKind") == AuthorKind.ASSISTANT.value,
        )


class Responder(ABC):
    """Abstract base class for assistant reply generators."""

    @abstractmethod
    async def respond(self, question: str, context: List[ContextMessage]) -> str:
        """Generate a reply to ``question``.

        Args:
            question: Text following the mention.
            context: Most recent room messages, oldest first.

        Returns:
            str: The reply text.

        Raises:
            ResponderError: If the backend fails or returns nothing.
        """
        pass
