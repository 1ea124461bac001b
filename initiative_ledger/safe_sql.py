"""
Centralized SQL construction with validated identifiers.

All dynamic SQL assembly lives here. Table and column names are validated
against _SAFE_IDENTIFIER_RE before interpolation. Values are always passed
as parameterized ? and never interpolated.

SQLite does not support parameterized identifiers (? works only for values,
not table/column names). Every f-string in this file is a validated-identifier
interpolation.
"""

# ruff: noqa: S608
# Identifiers are validated via _validate() before interpolation.

from __future__ import annotations

import re

_SAFE_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def _validate(name: str) -> str:
    """Validate that *name* is a safe SQL identifier.

    Returns the name unchanged if valid; raises ValueError otherwise.
    """
    if not _SAFE_IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


# ────────────────────────────────────────────────────────────
# PRAGMA helpers (SQLite metadata cannot bind identifiers with ?)
# ────────────────────────────────────────────────────────────


def pragma_table_info(table: str) -> str:
    """PRAGMA table_info for a validated table name."""
    return f"PRAGMA table_info([{_validate(table)}])"


def pragma_user_version_set(version: int) -> str:
    """PRAGMA user_version = N with int validation."""
    if not isinstance(version, int) or version < 0:
        raise ValueError(f"Invalid schema version: {version!r}")
    return f"PRAGMA user_version = {version}"


# ────────────────────────────────────────────────────────────
# DDL
# ────────────────────────────────────────────────────────────


def create_index(name: str, table: str, columns: list[str], unique: bool = False) -> str:
    """CREATE [UNIQUE] INDEX IF NOT EXISTS with validated names."""
    cols = ", ".join(_validate(c) for c in columns)
    kind = "UNIQUE INDEX" if unique else "INDEX"
    return f"CREATE {kind} IF NOT EXISTS [{_validate(name)}] ON [{_validate(table)}]({cols})"


def create_unique_expression_index(name: str, table: str, expression: str) -> str:
    """CREATE UNIQUE INDEX over an expression list. *expression* comes from the declarative schema only."""
    return (
        f"CREATE UNIQUE INDEX IF NOT EXISTS [{_validate(name)}] "
        f"ON [{_validate(table)}]({expression})"
    )


def delete_duplicates(table: str, key_expression: str) -> str:
    """Keep only the lowest id of each *key_expression* group. The expression comes from the declarative schema only."""
    t = _validate(table)
    return (
        f"DELETE FROM [{t}] WHERE id NOT IN "
        f"(SELECT MIN(id) FROM [{t}] GROUP BY {key_expression})"
    )


def add_column(table: str, column: str, ddl: str) -> str:
    """ALTER TABLE ADD COLUMN. *ddl* comes from the declarative schema only."""
    return f"ALTER TABLE [{_validate(table)}] ADD COLUMN [{_validate(column)}] {ddl}"


# ────────────────────────────────────────────────────────────
# DML: SELECT, INSERT, UPDATE, COUNT
# ────────────────────────────────────────────────────────────


def select(
    table: str,
    columns: str = "*",
    where: str | None = None,
    order_by: str | None = None,
    suffix: str = "",
) -> str:
    """Build SELECT with validated table name.

    *columns* is a raw column expression (e.g. ``"*"`` or ``"id, name"``).
    *where* is a raw WHERE clause without the keyword (e.g. ``"id = ?"``)
    and must use ``?`` for all values.
    """
    sql = f"SELECT {columns} FROM {_validate(table)}"
    if where:
        sql += f" WHERE {where}"
    if order_by:
        sql += f" ORDER BY {order_by}"
    if suffix:
        sql += f" {suffix}"
    return sql


def select_count(table: str, where: str | None = None) -> str:
    """Build SELECT COUNT(*) with validated table name."""
    sql = f"SELECT COUNT(*) as c FROM {_validate(table)}"
    if where:
        sql += f" WHERE {where}"
    return sql


def insert(table: str, columns: list[str]) -> str:
    """Build INSERT with validated table+column names."""
    _validate(table)
    for col in columns:
        _validate(col)
    cols = ", ".join(columns)
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({cols}) VALUES ({placeholders})"


def insert_or_ignore(table: str, columns: list[str]) -> str:
    """Build INSERT OR IGNORE, skipping rows that hit a uniqueness constraint."""
    return insert(table, columns).replace("INSERT INTO", "INSERT OR IGNORE INTO", 1)


def insert_if_absent(table: str, columns: list[str], where: str) -> str:
    """Build INSERT ... SELECT that adds the row only when no row matches *where*.

    Bind the column values first, then the *where* parameters.
    """
    _validate(table)
    for col in columns:
        _validate(col)
    cols = ", ".join(columns)
    placeholders = ", ".join("?" for _ in columns)
    return (
        f"INSERT OR IGNORE INTO {table} ({cols}) SELECT {placeholders} "
        f"WHERE NOT EXISTS (SELECT 1 FROM {table} WHERE {where})"
    )


def update(table: str, set_columns: list[str], where: str = "id = ?") -> str:
    """Build UPDATE SET with validated table+column names."""
    _validate(table)
    for col in set_columns:
        _validate(col)
    sets = ", ".join(f"{col} = ?" for col in set_columns)
    return f"UPDATE {table} SET {sets} WHERE {where}"
