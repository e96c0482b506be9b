"""Dictionary-backed store used for tests and single-process embedding."""
import logging
from typing import Dict, List, Optional, Tuple

from ..errors import UniqueViolationError
from .base import Match, Store, matches, parse_order
from .realtime import PresenceHub, RealtimeHub
from .schema import TABLES, get_table

logger = logging.getLogger(__name__)


class MemoryStore(Store):
    """Store keeping every table as an ``id -> row`` dict in process memory."""

    def __init__(
        self,
        realtime: Optional[RealtimeHub] = None,
        presence: Optional[PresenceHub] = None,
    ) -> None:
        super().__init__(realtime, presence)
        self._tables: Dict[str, Dict[str, dict]] = {name: {} for name in TABLES}

    def _insert_row(self, table: str, row: dict) -> dict:
        rows = self._tables[table]
        if row["id"] in rows:
            raise UniqueViolationError(table, (row["id"],))
        for key in get_table(table).unique:
            values = tuple(row.get(col) for col in key)
            if any(tuple(r.get(col) for col in key) == values for r in rows.values()):
                raise UniqueViolationError(table, values)
        rows[row["id"]] = dict(row)
        return dict(row)

    def _select_rows(
        self, table: str, match: Optional[Match], order_by: Optional[str]
    ) -> List[dict]:
        found = [dict(r) for r in self._tables[table].values() if matches(r, match)]
        column, descending = parse_order(order_by)
        if column:
            found.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=descending)
        return found

    def _update_rows(self, table: str, match: Match, values: dict) -> List[Tuple[dict, dict]]:
        pairs = []
        for row in self._tables[table].values():
            if matches(row, match):
                old = dict(row)
                row.update(values)
                pairs.append((old, dict(row)))
        return pairs

    def _delete_rows(self, table: str, match: Match) -> List[dict]:
        rows = self._tables[table]
        doomed = [row_id for row_id, row in rows.items() if matches(row, match)]
        return [rows.pop(row_id) for row_id in doomed]
