#!/usr/bin/env python3
# CUI // SP-CTI
"""Durable record store: insert, point lookup, filter, count, update.

Every call opens its own connection and closes it in a finally block, so a
SessionStore can be shared freely between threads. Where clauses are plain
equality maps; a value of None matches NULL. Identifiers are checked against
the known schema before being interpolated into SQL.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from patterngate.compat.db_utils import get_db_connection, get_db_path
from patterngate.db.init_db import KNOWN_TABLES, init_db
from patterngate.resilience.retry import retry_store

logger = logging.getLogger("patterngate.db.store")

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name or ""):
        raise ValueError(f"Invalid column name: {name!r}")
    return name


def _check_table(table: str) -> str:
    if table not in KNOWN_TABLES:
        raise ValueError(f"Unknown table '{table}'. Valid: {KNOWN_TABLES}")
    return table


def _where_clause(where: Optional[Dict[str, Any]]):
    if not where:
        return "", []
    parts, params = [], []
    for column, value in where.items():
        _check_identifier(column)
        if value is None:
            parts.append(f"{column} IS NULL")
        elif isinstance(value, (list, tuple, set)):
            values = list(value)
            if not values:
                parts.append("0")
                continue
            parts.append(f"{column} IN ({', '.join('?' for _ in values)})")
            params.extend(values)
        else:
            parts.append(f"{column} = ?")
            params.append(value)
    return " WHERE " + " AND ".join(parts), params


class SessionStore:
    """SQLite-backed record store used by every PatternGate component."""

    def __init__(self, db_path=None, initialize: bool = True):
        self.db_path = get_db_path(db_path)
        if initialize:
            init_db(self.db_path)

    def _connect(self):
        return get_db_connection(self.db_path)

    @retry_store()
    def insert(self, table: str, row: Dict[str, Any]) -> None:
        _check_table(table)
        columns = [_check_identifier(c) for c in row]
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        conn = self._connect()
        try:
            conn.execute(sql, [row[c] for c in columns])
            conn.commit()
        finally:
            conn.close()

    @retry_store()
    def get(self, table: str, **where) -> Optional[Dict[str, Any]]:
        """Return the first row matching every keyword condition, or None."""
        _check_table(table)
        clause, params = _where_clause(where)
        conn = self._connect()
        try:
            row = conn.execute(f"SELECT * FROM {table}{clause} LIMIT 1", params).fetchone()
        finally:
            conn.close()
        return dict(row) if row else None

    @retry_store()
    def filter(
        self,
        table: str,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        _check_table(table)
        clause, params = _where_clause(where)
        sql = f"SELECT * FROM {table}{clause}"
        if order_by:
            sql += f" ORDER BY {_check_identifier(order_by)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params = params + [int(limit), int(offset)]
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [dict(r) for r in rows]

    @retry_store()
    def count(self, table: str, where: Optional[Dict[str, Any]] = None) -> int:
        _check_table(table)
        clause, params = _where_clause(where)
        conn = self._connect()
        try:
            row = conn.execute(f"SELECT COUNT(*) FROM {table}{clause}", params).fetchone()
        finally:
            conn.close()
        return row[0] if row else 0

    @retry_store()
    def update(self, table: str, values: Dict[str, Any], where: Dict[str, Any]) -> int:
        """Apply values to matching rows. Returns the number of rows changed.

        Callers use the return value for compare-and-swap: include the
        expected current state in ``where`` and treat 0 as a lost race.
        """
        _check_table(table)
        if not where:
            raise ValueError("update() requires a where clause")
        assignments = ", ".join(f"{_check_identifier(c)} = ?" for c in values)
        clause, params = _where_clause(where)
        conn = self._connect()
        try:
            cursor = conn.execute(
                f"UPDATE {table} SET {assignments}{clause}",
                list(values.values()) + params,
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def group_count(self, table: str, column: str,
                    where: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
        """Count rows per distinct value of ``column``."""
        counts: Dict[str, int] = {}
        for row in self.filter(table, where=where):
            key = row.get(_check_identifier(column))
            counts[key] = counts.get(key, 0) + 1
        return counts

