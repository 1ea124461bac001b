"""
Test configuration — repo root on sys.path, an isolated ledger home per test,
and a temp SQLite database seeded with identity rows.

The identity tables are owned by an external module in production; tests
write them directly after the ledger has provisioned the schema.
"""

import sqlite3
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from initiative_ledger.db import Database  # noqa: E402
from initiative_ledger.service import LedgerService  # noqa: E402

# Individuals: 7 steward with a mixed-case address, 8 plain, 9 member of org 100
ADDRESS_7 = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"
ADDRESS_9 = "0x" + "9" * 40
ORG_RELIEF = 100
ORG_WATER = 101


@pytest.fixture(autouse=True)
def ledger_home(tmp_path, monkeypatch):
    """Point the ledger home at a temp dir so no test touches ~/.initiative_ledger."""
    home = tmp_path / "home"
    monkeypatch.setenv("INITIATIVE_LEDGER_HOME", str(home))
    monkeypatch.delenv("INITIATIVE_LEDGER_DB", raising=False)
    return home


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "ledger.db"


@pytest.fixture
def db(db_path):
    return Database(db_path)


@pytest.fixture
def service(db):
    return LedgerService(db)


def seed_identities(db: Database) -> None:
    with db.transaction() as conn:
        conn.executemany(
            "INSERT INTO individuals (id, email, first_name, last_name, eoa_address)"
            " VALUES (?, ?, ?, ?, ?)",
            [
                (7, "ada@example.org", "Ada", "Steward", ADDRESS_7),
                (8, "ben@example.org", "Ben", "Builder", None),
                (9, "cy@example.org", "Cy", "Member", ADDRESS_9),
            ],
        )
        conn.executemany(
            "INSERT INTO organizations (id, ens_name, org_name, agent_name) VALUES (?, ?, ?, ?)",
            [
                (ORG_RELIEF, "relief.eth", "Relief Network", "relief-agent"),
                (ORG_WATER, "water.eth", "Clean Water Co", None),
            ],
        )
        conn.execute(
            "INSERT INTO individual_organizations (individual_id, organization_id, role)"
            " VALUES (9, ?, 'member')",
            (ORG_RELIEF,),
        )


@pytest.fixture
def identities(db):
    seed_identities(db)
    return db


@pytest.fixture
def flood_relief(service, identities):
    """The canonical initiative: Flood Relief, created by individual 7."""
    return service.initiatives.create({"title": "Flood Relief", "created_by_individual_id": 7})


def query(db: Database, sql: str, params=()) -> list[dict]:
    """Raw read straight from the file, bypassing the ledger."""
    conn = sqlite3.connect(db.db_path)
    conn.row_factory = sqlite3.Row
    try:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]
    finally:
        conn.close()
