"""
Centralized Database Access for the initiative ledger.

Single source of truth for:
- Connection factory
- Lazy, exactly-once schema provisioning (delegated to schema_engine)
- Row decoding (``*_json`` columns to native structures) and JSON encoding

ALL ledger components go through a ``Database``. No direct sqlite3.connect()
elsewhere.
"""

import json
import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from initiative_ledger import safe_sql, schema, schema_engine
from initiative_ledger.config import Settings
from initiative_ledger.errors import NotFoundError, StorageUnavailableError
from initiative_ledger.observability.metrics import schema_provisions

logger = logging.getLogger(__name__)


def now_ts() -> int:
    """Current time as unix seconds."""
    return int(time.time())


# ============================================================
# JSON COLUMNS
# ============================================================


def to_json(value: Any) -> str | None:
    """Serialize a structured value for a ``*_json`` column. None stays NULL."""
    if value is None:
        return None
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", exclude_none=True)
    return json.dumps(value, default=str)


def decode_row(row: sqlite3.Row | None) -> dict | None:
    """Convert a row to a dict, decoding every ``*_json`` column."""
    if row is None:
        return None
    data = dict(row)
    for key, value in data.items():
        if key.endswith(schema.JSON_SUFFIX) and isinstance(value, str):
            try:
                data[key] = json.loads(value)
            except json.JSONDecodeError:
                logger.debug("Leaving undecodable %s as raw text", key)
    return data


def fetch_one(conn: sqlite3.Connection, sql: str, params: list | tuple = ()) -> dict | None:
    return decode_row(conn.execute(sql, params).fetchone())


def fetch_all(conn: sqlite3.Connection, sql: str, params: list | tuple = ()) -> list[dict]:
    return [decode_row(row) for row in conn.execute(sql, params).fetchall()]


def require_row(conn: sqlite3.Connection, table: str, row_id, entity: str | None = None) -> dict:
    """Fetch one row by id or raise NotFoundError."""
    row = fetch_one(conn, safe_sql.select(table, where="id = ?"), [row_id])
    if row is None:
        raise NotFoundError(entity or table, row_id)
    return row


# ============================================================
# SCHEMA PROVISIONING
# ============================================================


class SchemaProvisioner:
    """
    One-shot schema initialization for a single datastore.

    The first caller runs schema_engine.converge() under the lock; concurrent
    first callers block on the same lock and then see ``provisioned``. A
    failed run leaves ``provisioned`` False so the next call retries.
    """

    def __init__(self, connect: Callable[[], sqlite3.Connection]):
        self._connect = connect
        self._lock = threading.Lock()
        self._done = False
        self.last_result: dict | None = None

    @property
    def provisioned(self) -> bool:
        return self._done

    def ensure_schema(self) -> dict:
        if self._done:
            return self.last_result
        with self._lock:
            if self._done:
                return self.last_result

            conn = self._connect()
            try:
                results = schema_engine.converge(conn)
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                logger.error("Schema provisioning failed: %s", e)
                raise StorageUnavailableError(f"schema provisioning failed: {e}") from e
            finally:
                conn.close()

            if results["tables_created"]:
                logger.info("Tables created: %s", results["tables_created"])
            if results["columns_added"]:
                logger.info("Columns added: %s", results["columns_added"])
            if results["errors"]:
                logger.warning("Convergence errors: %s", results["errors"])
            logger.info("Schema ready at user_version %s", results["schema_version"])

            self.last_result = results
            self._done = True
            schema_provisions.inc()
            return results


# ============================================================
# DATABASE
# ============================================================


class Database:
    """
    Handle on one relational datastore.

    Every ``transaction()`` provisions the schema first, so no entry point
    can query before the tables exist.
    """

    def __init__(self, db_path: str | Path | None = None, settings: Settings | None = None):
        self.settings = settings or Settings()
        path = db_path or self.settings.db_path
        self.db_path = str(path) if path else None
        self.provisioner = SchemaProvisioner(self._connect)

    def _connect(self) -> sqlite3.Connection:
        if not self.db_path:
            raise StorageUnavailableError("Database not available: no db_path configured")
        if self.db_path == ":memory:" or "mode=memory" in self.db_path:
            # Each connection would open its own empty database
            raise StorageUnavailableError(
                "Database not available: in-memory databases cannot be shared across operations"
            )
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(f"Database not available: {e}") from e
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.settings.busy_timeout_seconds)
        except sqlite3.OperationalError as e:
            raise StorageUnavailableError(f"Database not available: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_schema(self) -> dict:
        return self.provisioner.ensure_schema()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Connection scoped to one ledger operation, committed on success.

        Usage:
            with db.transaction() as conn:
                conn.execute(...)
        """
        self.ensure_schema()
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
