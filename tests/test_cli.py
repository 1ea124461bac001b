"""
Tests for the command-line entry point.
"""

import json

import pytest

from conftest import seed_identities
from initiative_ledger import cli
from initiative_ledger.db import Database
from initiative_ledger.service import LedgerService


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda *a, **k: None)


def _run(capsys, *argv):
    code = cli.main(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


class TestCli:
    def test_init(self, capsys, db_path):
        code, out, _ = _run(capsys, "--db", str(db_path), "init")
        assert code == 0
        result = json.loads(out)
        assert "initiatives" in result["tables_created"]
        assert db_path.exists()

    def test_initiatives_and_dashboard(self, capsys, db_path):
        db = Database(db_path)
        seed_identities(db)
        created = LedgerService(db).initiatives.create(
            {"title": "Flood Relief", "created_by_individual_id": 7}
        )

        code, out, _ = _run(
            capsys, "--db", str(db_path), "initiatives", "--scope", "mine", "--individual", "7"
        )
        assert code == 0
        assert [r["title"] for r in json.loads(out)] == ["Flood Relief"]

        code, out, _ = _run(capsys, "--db", str(db_path), "dashboard", str(created.record["id"]))
        assert code == 0
        assert json.loads(out)["counts"]["participants"] == 1

    def test_attestations_page(self, capsys, db_path):
        db = Database(db_path)
        seed_identities(db)
        LedgerService(db).initiatives.create({"title": "Flood Relief", "created_by_individual_id": 7})

        code, out, _ = _run(capsys, "--db", str(db_path), "attestations", "--limit", "1")
        assert code == 0
        page = json.loads(out)
        assert page["data"][0]["attestation_type"] == "initiative.created"
        assert page["has_more"] is False

    def test_not_found_is_reported(self, capsys, db_path):
        code, out, err = _run(capsys, "--db", str(db_path), "dashboard", "404")
        assert code == 2
        assert out == ""
        assert json.loads(err)["error"] == "not_found"

    def test_validation_error_is_reported(self, capsys, db_path):
        code, _, err = _run(capsys, "--db", str(db_path), "initiatives", "--scope", "bogus")
        assert code == 2
        assert json.loads(err)["field"] == "scope"
