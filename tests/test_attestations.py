"""
Tests for AttestationLedger — append-only event log and its newest-first feed.
"""

import pytest

from conftest import ADDRESS_7, query
from initiative_ledger.attestations import MAX_WINDOW, AttestationEvent, AttestationLedger, EventType
from initiative_ledger.errors import ValidationError
from initiative_ledger.observability.metrics import attestations_emitted


@pytest.fixture
def ledger(identities):
    return AttestationLedger(identities)


def _emit_many(ledger, n, initiative_id=1, attestation_type="test.event"):
    return [
        ledger.emit(
            AttestationEvent(attestation_type, payload={"n": i}, initiative_id=initiative_id)
        )
        for i in range(n)
    ]


class TestEmit:
    def test_returns_id_and_stores_row(self, ledger):
        att_id = ledger.emit(
            AttestationEvent(
                EventType.INITIATIVE_CREATED,
                payload={"title": "Flood Relief", "state": "draft"},
                initiative_id=3,
                actor_individual_id=7,
                chain_id=11155111,
                tx_hash="0xabc",
                external_uid="uid-1",
            )
        )
        row = ledger.list(initiative_id=3)[0]
        assert row["id"] == att_id
        assert row["attestation_type"] == "initiative.created"
        assert row["payload_json"] == {"title": "Flood Relief", "state": "draft"}
        assert row["actor_individual_id"] == 7
        assert row["eas_uid"] == "uid-1"
        assert row["created_at"] > 0

    @pytest.mark.parametrize("bad", ["", "   ", None])
    def test_type_required(self, ledger, bad):
        with pytest.raises(ValidationError) as exc:
            ledger.emit(AttestationEvent(bad))
        assert exc.value.field == "attestation_type"
        assert ledger.count() == 0

    def test_payload_optional(self, ledger):
        att_id = ledger.emit(AttestationEvent("note.added"))
        assert query(ledger.db, "SELECT payload_json FROM attestations WHERE id = ?", (att_id,)) == [
            {"payload_json": None}
        ]

    def test_counts_emissions(self, ledger):
        before = attestations_emitted.value
        _emit_many(ledger, 3)
        assert attestations_emitted.value == before + 3


class TestList:
    def test_newest_first(self, ledger):
        ids = _emit_many(ledger, 5)
        assert [r["id"] for r in ledger.list()] == sorted(ids, reverse=True)

    def test_scoped_to_initiative(self, ledger):
        _emit_many(ledger, 2, initiative_id=1)
        _emit_many(ledger, 3, initiative_id=2)
        rows = ledger.list(initiative_id=2)
        assert len(rows) == 3
        assert {r["initiative_id"] for r in rows} == {2}

    def test_limit_clamped(self, ledger):
        _emit_many(ledger, MAX_WINDOW + 5)
        assert len(ledger.list(limit=1000)) == MAX_WINDOW
        assert len(ledger.list()) == MAX_WINDOW
        assert len(ledger.list(limit=0)) == 1
        assert len(ledger.list(limit=3)) == 3


class TestPage:
    def test_cursor_walks_full_history(self, ledger):
        ids = _emit_many(ledger, 5)
        seen, cursor = [], None
        while True:
            page = ledger.page(limit=2, before=cursor)
            seen.extend(r["id"] for r in page.data)
            if not page.has_more:
                assert page.next_cursor is None
                break
            cursor = page.next_cursor
        assert seen == sorted(ids, reverse=True)

    def test_single_page(self, ledger):
        _emit_many(ledger, 2)
        page = ledger.page(limit=10)
        assert len(page.data) == 2
        assert page.has_more is False

    def test_bad_cursor(self, ledger):
        with pytest.raises(ValidationError) as exc:
            ledger.page(before="yesterday")
        assert exc.value.field == "before"


class TestRecord:
    def test_resolves_actor_address(self, ledger):
        row = ledger.record(
            {
                "attestation_type": "engagement.reviewed",
                "payload": {"score": 5},
                "engagement_id": 4,
                "actor_eoa": ADDRESS_7,
                "eas_uid": "0xfeed",
            }
        )
        assert row["actor_individual_id"] == 7
        assert row["eas_uid"] == "0xfeed"
        assert row["payload_json"] == {"score": 5}

    def test_type_required(self, ledger):
        with pytest.raises(ValidationError) as exc:
            ledger.record({"payload": {}})
        assert exc.value.field == "attestation_type"


class TestCount:
    def test_by_type(self, ledger):
        _emit_many(ledger, 2, attestation_type="a.b")
        _emit_many(ledger, 1, attestation_type="c.d")
        assert ledger.count() == 3
        assert ledger.count(attestation_type="a.b") == 2
        assert ledger.count(initiative_id=99) == 0


class TestImmutability:
    def test_package_never_updates_or_deletes_attestations(self):
        from pathlib import Path

        import initiative_ledger

        source = "\n".join(
            p.read_text() for p in Path(initiative_ledger.__file__).parent.rglob("*.py")
        )
        assert "UPDATE ATTESTATIONS" not in source.upper()
        assert "DELETE FROM ATTESTATIONS" not in source.upper()
        assert 'safe_sql.update("attestations"' not in source
