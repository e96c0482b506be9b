"""DuckDB-backed store: persistent tables in an embedded database file.

Realtime fan-out stays in-process (RealtimeHub/PresenceHub); only rows are
persisted. Timestamps are stored as naive UTC and returned timezone-aware.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import duckdb

from ..errors import StoreError, UniqueViolationError
from .base import Match, Store, parse_order
from .realtime import PresenceHub, RealtimeHub
from .schema import TIMESTAMP_COLUMNS, get_table

logger = logging.getLogger(__name__)

_DDL = (
    """
    CREATE TABLE IF NOT EXISTS rooms (
        id                 VARCHAR PRIMARY KEY,
        code               VARCHAR NOT NULL UNIQUE,
        room_type          VARCHAR NOT NULL DEFAULT 'public',
        password_hash      VARCHAR,
        creator_token_hash VARCHAR,
        created_at         TIMESTAMP NOT NULL,
        last_activity_at   TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id          VARCHAR PRIMARY KEY,
        room_id     VARCHAR NOT NULL,
        content     VARCHAR NOT NULL,
        type        VARCHAR NOT NULL DEFAULT 'text',
        author_name VARCHAR NOT NULL,
        author_kind VARCHAR NOT NULL DEFAULT 'human',
        created_at  TIMESTAMP NOT NULL,
        file_url    VARCHAR,
        file_name   VARCHAR,
        file_type   VARCHAR,
        client_ref  VARCHAR
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_reactions (
        id          VARCHAR PRIMARY KEY,
        room_id     VARCHAR NOT NULL,
        message_id  VARCHAR NOT NULL,
        author_name VARCHAR NOT NULL,
        emoji       VARCHAR NOT NULL,
        created_at  TIMESTAMP NOT NULL,
        UNIQUE (message_id, author_name, emoji)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS room_sessions (
        id                 VARCHAR PRIMARY KEY,
        room_id            VARCHAR NOT NULL,
        session_token_hash VARCHAR NOT NULL,
        username           VARCHAR NOT NULL,
        created_at         TIMESTAMP NOT NULL,
        last_seen_at       TIMESTAMP NOT NULL,
        UNIQUE (room_id, session_token_hash)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(room_id)",
    "CREATE INDEX IF NOT EXISTS idx_reactions_room ON message_reactions(room_id)",
)


def _to_db(value):
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(column: str, value):
    if column in TIMESTAMP_COLUMNS and isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _where(match: Optional[Match]) -> Tuple[str, list]:
    if not match:
        return "", []
    clauses, params = [], []
    for col, expected in match.items():
        if isinstance(expected, (list, tuple, set, frozenset)):
            values = list(expected)
            if not values:
                clauses.append("FALSE")
                continue
            clauses.append(f"{col} IN ({', '.join('?' for _ in values)})")
            params.extend(_to_db(v) for v in values)
        elif expected is None:
            clauses.append(f"{col} IS NULL")
        else:
            clauses.append(f"{col} = ?")
            params.append(_to_db(expected))
    return " WHERE " + " AND ".join(clauses), params


class DuckDBStore(Store):
    """Store persisting rows to an embedded DuckDB database.

    All queries are synchronous (DuckDB is embedded and fast for chat-sized
    data); the async wrappers in :class:`Store` provide the suspension points.
    """

    def __init__(
        self,
        db_path: str = "roomsync.duckdb",
        realtime: Optional[RealtimeHub] = None,
        presence: Optional[PresenceHub] = None,
    ) -> None:
        super().__init__(realtime, presence)
        self._db_path = db_path
        self._conn: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(db_path)
        for statement in _DDL:
            self._conn.execute(statement)
        logger.info("[DuckDBStore] Initialized with db=%s", db_path)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise StoreError("DuckDB store is closed")
        return self._conn

    def _fetch(self, sql: str, params: list) -> List[dict]:
        try:
            cursor = self._connection().execute(sql, params)
            rows = cursor.fetchall()
        except duckdb.Error as e:
            raise StoreError(str(e)) from e
        columns = [d[0] for d in cursor.description]
        return [
            {col: _from_db(col, value) for col, value in zip(columns, row)}
            for row in rows
        ]

    def _insert_row(self, table: str, row: dict) -> dict:
        columns = list(get_table(table).columns)
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)}) RETURNING *"
        )
        try:
            cursor = self._connection().execute(sql, [_to_db(row.get(c)) for c in columns])
        except duckdb.ConstraintException as e:
            raise UniqueViolationError(table, self._conflicting_key(table, row)) from e
        except duckdb.Error as e:
            raise StoreError(str(e)) from e
        names = [d[0] for d in cursor.description]
        return {col: _from_db(col, value) for col, value in zip(names, cursor.fetchone())}

    def _conflicting_key(self, table: str, row: dict) -> tuple:
        for key in get_table(table).unique:
            match = {col: row.get(col) for col in key}
            if self._select_rows(table, match, None):
                return tuple(match.values())
        return (row.get("id"),)

    def _select_rows(
        self, table: str, match: Optional[Match], order_by: Optional[str]
    ) -> List[dict]:
        where, params = _where(match)
        sql = f"SELECT * FROM {table}{where}"
        column, descending = parse_order(order_by)
        if column:
            sql += f" ORDER BY {column} {'DESC' if descending else 'ASC'}"
        return self._fetch(sql, params)

    def _update_rows(self, table: str, match: Match, values: dict) -> List[Tuple[dict, dict]]:
        old_rows = {r["id"]: r for r in self._select_rows(table, match, None)}
        if not old_rows:
            return []
        assignments = ", ".join(f"{col} = ?" for col in values)
        where, params = _where({"id": list(old_rows)})
        new_rows = self._fetch(
            f"UPDATE {table} SET {assignments}{where} RETURNING *",
            [_to_db(v) for v in values.values()] + params,
        )
        return [(old_rows[r["id"]], r) for r in new_rows]

    def _delete_rows(self, table: str, match: Match) -> List[dict]:
        where, params = _where(match)
        return self._fetch(f"DELETE FROM {table}{where} RETURNING *", params)
