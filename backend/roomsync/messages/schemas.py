"""Message data models."""
import itertools
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..store.schema import utcnow

# Prefix of client-generated ids for messages not yet confirmed by the store
TEMP_ID_PREFIX = "temp-"

# Display name of the synthetic assistant participant
ASSISTANT_NAME = "Asu"

_temp_seq = itertools.count()


def new_temp_id() -> str:
    """Return ``temp-<epoch ms>-<seq>``; the sequence keeps same-millisecond sends distinct."""
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}-{next(_temp_seq)}"


def is_temp_id(message_id: str) -> bool:
    return message_id.startswith(TEMP_ID_PREFIX)


class MessageType(str, Enum):
    """Type of chat message.

    Attributes:
        TEXT: Plain text message.
        CODE: Code paste rendered as a block.
        FILE: File attachment with a public URL.
    """
    TEXT = "text"
    CODE = "code"
    FILE = "file"


class AuthorKind(str, Enum):
    HUMAN = "human"
    ASSISTANT = "assistant"


class Author(BaseModel):
    """Who wrote a message.

    The kind, not the name, decides whether a message came from the
    assistant, so a participant calling themselves "Asu" stays human.
    """
    kind: AuthorKind = AuthorKind.HUMAN
    name: str

    @classmethod
    def human(cls, name: str) -> "Author":
        return cls(kind=AuthorKind.HUMAN, name=name)

    @classmethod
    def assistant(cls) -> "Author":
        return cls(kind=AuthorKind.ASSISTANT, name=ASSISTANT_NAME)

    @property
    def is_assistant(self) -> bool:
        return self.kind == AuthorKind.ASSISTANT


class Message(BaseModel):
    """A chat message as held in the local list.

    Attributes:
        id: Server id, or a ``temp-`` id while the write is unconfirmed.
        room_id: Room this message belongs to.
        content: Text content (file name for file messages).
        type: text, code or file.
        author_name: Display name of the sender.
        author_kind: human or assistant.
        created_at: Commit time (local clock for temporary entries).
        file_url: Public URL of an uploaded file.
        file_name: Original file name.
        file_type: MIME type of the file.
        client_ref: Temp id echoed back by the store when correlation is on.
    """
    id: str
    room_id: str
    content: str
    type: MessageType = MessageType.TEXT
    author_name: str
    author_kind: AuthorKind = AuthorKind.HUMAN
    created_at: datetime = Field(default_factory=utcnow)
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    client_ref: Optional[str] = None

    @property
    def is_temporary(self) -> bool:
        return is_temp_id(self.id)

    @property
    def author(self) -> Author:
        return Author(kind=self.author_kind, name=self.author_name)

    @classmethod
    def from_row(cls, row: dict) -> "Message":
        return cls(**{k: v for k, v in row.items() if k in cls.model_fields and v is not None})


@dataclass
class FileUpload:
    """A file picked for upload.

    Attributes:
        name: Original file name.
        content: Raw bytes.
        mime_type: Declared MIME type.
    """
    name: str
    content: bytes
    mime_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return self.name.rsplit(".", 1)[-1] if "." in self.name else "bin"
