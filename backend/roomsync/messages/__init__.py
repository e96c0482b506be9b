"""Message list synchronization."""
from .engine import MessageSyncEngine
from .schemas import (
    ASSISTANT_NAME,
    TEMP_ID_PREFIX,
    Author,
    AuthorKind,
    FileUpload,
    Message,
    MessageType,
)

__all__ = [
    "ASSISTANT_NAME",
    "TEMP_ID_PREFIX",
    "Author",
    "AuthorKind",
    "FileUpload",
    "Message",
    "MessageSyncEngine",
    "MessageType",
]
