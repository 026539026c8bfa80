"""Read helpers handed to on-deploy scripts.

Scripts receive a QueryHelper next to the raw connection so common checks
("does this table/column exist yet?", "how many rows still need fixing?")
don't have to be rewritten in every script.
"""

import re
import sqlite3
from typing import Any, Optional, Sequence

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class QueryHelper:
    """Thin query layer over a sqlite3 connection."""

    def __init__(self, connection: sqlite3.Connection):
        self._conn = connection

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def rows(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a query and return rows as dicts keyed by column name."""
        cursor = self._conn.execute(sql, tuple(params))
        columns = [d[0] for d in cursor.description or ()]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def scalar(self, sql: str, params: Sequence[Any] = ()) -> Optional[Any]:
        """Run a query and return the first column of the first row, or None."""
        row = self._conn.execute(sql, tuple(params)).fetchone()
        return row[0] if row else None

    def table_exists(self, name: str) -> bool:
        return self.scalar(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
        ) is not None

    def column_names(self, table: str) -> list[str]:
        """Column names of a table, in declaration order. Empty if no such table."""
        if not _IDENTIFIER_RE.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        return [row["name"] for row in self.rows(f"PRAGMA table_info({table})")]
