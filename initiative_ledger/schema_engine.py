"""
Schema Convergence Engine — introspect, diff, apply.

Reads the declarative schema from initiative_ledger.schema and converges a
SQLite database to match:

  1. Creates missing tables.
  2. Adds missing columns to existing ledger tables (never to external ones).
  3. Collapses legacy duplicate rows and creates the unique expression
     indexes, then the secondary indexes. Both index steps are best effort.
  4. Sets PRAGMA user_version.

The engine never drops tables or columns. Table and column DDL failures
raise; index failures are logged and recorded in the results dict.
"""

import logging
import re
import sqlite3

from initiative_ledger import safe_sql, schema

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────
# SQLite ALTER TABLE column-safety
# ────────────────────────────────────────────────────────────

# Clauses that are valid in CREATE TABLE but not in ALTER TABLE ADD COLUMN
_STRIP_PATTERNS = [
    re.compile(r"\bPRIMARY\s+KEY\b", re.IGNORECASE),
    re.compile(r"\bAUTOINCREMENT\b", re.IGNORECASE),
    re.compile(r"\bUNIQUE\b", re.IGNORECASE),
    re.compile(r"\bREFERENCES\s+\w+\s*\([^)]*\)", re.IGNORECASE),
    re.compile(r"\bCHECK\s*\([^)]*\)", re.IGNORECASE),
]

# ALTER TABLE ADD COLUMN rejects non-constant defaults such as DEFAULT (strftime(...))
_EXPR_DEFAULT_RE = re.compile(r"\bDEFAULT\s*\(.*\)\s*$", re.IGNORECASE)


def make_alter_safe(col_def: str) -> str:
    """
    Transform a CREATE TABLE column definition into one safe for
    ALTER TABLE ADD COLUMN.

    SQLite restrictions on ALTER TABLE ADD COLUMN:
      - Cannot be PRIMARY KEY or AUTOINCREMENT
      - Cannot have UNIQUE constraint
      - Cannot have a non-constant DEFAULT
      - NOT NULL requires a DEFAULT
    """
    safe = col_def
    for pattern in _STRIP_PATTERNS:
        safe = pattern.sub("", safe)

    is_integer = safe.strip().upper().startswith("INTEGER")
    safe = _EXPR_DEFAULT_RE.sub("DEFAULT 0" if is_integer else "DEFAULT ''", safe)

    safe = re.sub(r"\s{2,}", " ", safe).strip()

    has_not_null = re.search(r"\bNOT\s+NULL\b", safe, re.IGNORECASE)
    has_default = re.search(r"\bDEFAULT\b", safe, re.IGNORECASE)
    if has_not_null and not has_default:
        safe = safe + (" DEFAULT 0" if is_integer else " DEFAULT ''")

    return safe


# ────────────────────────────────────────────────────────────
# Introspection helpers
# ────────────────────────────────────────────────────────────


def _get_existing_tables(conn: sqlite3.Connection) -> set[str]:
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row[0] for row in cursor.fetchall()}


def _get_existing_indexes(conn: sqlite3.Connection) -> set[str]:
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")
    return {row[0] for row in cursor.fetchall()}


def _get_existing_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    cursor = conn.execute(safe_sql.pragma_table_info(table))
    return {row[1] for row in cursor.fetchall()}


def _build_create_sql(table_name: str, table_def: dict) -> str:
    """Build a CREATE TABLE IF NOT EXISTS statement from schema declaration."""
    parts = []
    for col_name, col_ddl in table_def["columns"]:
        parts.append(f"    {col_name} {col_ddl}")
    for unique_cols in table_def.get("unique", []):
        parts.append(f"    UNIQUE({', '.join(unique_cols)})")
    body = ",\n".join(parts)
    return f"CREATE TABLE IF NOT EXISTS [{table_name}] (\n{body}\n)"


# ────────────────────────────────────────────────────────────
# converge
# ────────────────────────────────────────────────────────────


def converge(conn: sqlite3.Connection) -> dict:
    """
    Converge a database to match schema.TABLES / schema.INDEXES.

    Raises sqlite3.Error if a table cannot be created or altered. Returns a
    results dict for logging otherwise.
    """
    results = {
        "tables_created": [],
        "columns_added": [],
        "indexes_created": [],
        "duplicates_removed": [],
        "errors": [],
    }

    existing = _get_existing_tables(conn)

    # ── Phase 1: Tables and columns ──────────────────────────

    for table_name, table_def in schema.TABLES.items():
        if table_name not in existing:
            conn.execute(_build_create_sql(table_name, table_def))
            results["tables_created"].append(table_name)
            logger.info("schema_engine: created table %s", table_name)
            continue

        if table_def.get("external"):
            continue

        existing_cols = _get_existing_columns(conn, table_name)
        for col_name, col_ddl in table_def["columns"]:
            if col_name in existing_cols:
                continue
            conn.execute(safe_sql.add_column(table_name, col_name, make_alter_safe(col_ddl)))
            col_ref = f"{table_name}.{col_name}"
            results["columns_added"].append(col_ref)
            logger.info("schema_engine: added column %s", col_ref)

    # ── Phase 2: Identity indexes ────────────────────────────

    existing_indexes = _get_existing_indexes(conn)
    for idx_name, idx_table, expression in schema.UNIQUE_EXPRESSION_INDEXES:
        if idx_name in existing_indexes:
            continue
        try:
            # Rows written before the index existed may repeat a key
            removed = conn.execute(safe_sql.delete_duplicates(idx_table, expression)).rowcount
            if removed > 0:
                results["duplicates_removed"].append(f"{idx_table}: {removed}")
                logger.warning(
                    "schema_engine: removed %d duplicate rows from %s", removed, idx_table
                )
            conn.execute(safe_sql.create_unique_expression_index(idx_name, idx_table, expression))
            results["indexes_created"].append(idx_name)
        except sqlite3.Error as e:
            err = f"CREATE UNIQUE INDEX {idx_name}: {e}"
            results["errors"].append(err)
            logger.warning("schema_engine: %s", err)

    # ── Phase 3: Secondary indexes (best effort) ─────────────

    for idx_name, idx_table, idx_cols in schema.INDEXES:
        try:
            conn.execute(safe_sql.create_index(idx_name, idx_table, idx_cols))
            results["indexes_created"].append(idx_name)
        except sqlite3.Error as e:
            err = f"CREATE INDEX {idx_name}: {e}"
            results["errors"].append(err)
            logger.warning("schema_engine: %s", err)

    # ── Phase 4: Schema version ──────────────────────────────

    conn.execute(safe_sql.pragma_user_version_set(schema.SCHEMA_VERSION))
    results["schema_version"] = schema.SCHEMA_VERSION
    return results
