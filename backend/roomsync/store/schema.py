"""Table definitions shared by every store implementation."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Tuple

from ..errors import StoreError

TIMESTAMP_COLUMNS = frozenset({"created_at", "last_activity_at", "last_seen_at"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TableSchema:
    """Columns, unique keys and insert defaults of one table.

    Attributes:
        name: Table name.
        columns: All column names, ``id`` first.
        unique: Unique keys other than ``id``.
        room_column: Column that scopes a row to a room for realtime filtering.
        defaults: Static defaults applied on insert.
    """
    name: str
    columns: Tuple[str, ...]
    unique: Tuple[Tuple[str, ...], ...] = ()
    room_column: str = "room_id"
    defaults: Dict[str, object] = field(default_factory=dict)

    def prepare(self, row: dict) -> dict:
        """Validate a row for insert and fill server-assigned columns."""
        unknown = set(row) - set(self.columns)
        if unknown:
            raise StoreError(f"Unknown column(s) for {self.name}: {sorted(unknown)}")

        prepared = {col: None for col in self.columns}
        prepared.update(self.defaults)
        prepared.update({k: v for k, v in row.items() if v is not None})
        if not prepared.get("id"):
            prepared["id"] = str(uuid.uuid4())
        now = utcnow()
        for col in TIMESTAMP_COLUMNS & set(self.columns):
            if prepared.get(col) is None:
                prepared[col] = now
        return prepared

    def check_columns(self, names) -> None:
        unknown = set(names) - set(self.columns)
        if unknown:
            raise StoreError(f"Unknown column(s) for {self.name}: {sorted(unknown)}")

    def room_of(self, row: dict):
        return row.get(self.room_column)


MESSAGES = TableSchema(
    name="messages",
    columns=(
        "id", "room_id", "content", "type", "author_name", "author_kind",
        "created_at", "file_url", "file_name", "file_type", "client_ref",
    ),
    defaults={"type": "text", "author_kind": "human"},
)

MESSAGE_REACTIONS = TableSchema(
    name="message_reactions",
    columns=("id", "room_id", "message_id", "author_name", "emoji", "created_at"),
    unique=(("message_id", "author_name", "emoji"),),
)

ROOMS = TableSchema(
    name="rooms",
    columns=(
        "id", "code", "room_type", "password_hash", "creator_token_hash",
        "created_at", "last_activity_at",
    ),
    unique=(("code",),),
    room_column="id",
    defaults={"room_type": "public"},
)

ROOM_SESSIONS = TableSchema(
    name="room_sessions",
    columns=(
        "id", "room_id", "session_token_hash", "username", "created_at", "last_seen_at",
    ),
    unique=(("room_id", "session_token_hash"),),
)

TABLES: Dict[str, TableSchema] = {
    t.name: t for t in (MESSAGES, MESSAGE_REACTIONS, ROOMS, ROOM_SESSIONS)
}


def get_table(name: str) -> TableSchema:
    try:
        return TABLES[name]
    except KeyError:
        raise StoreError(f"Unknown table: {name}") from None
