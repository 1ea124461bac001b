"""
Tests for OpportunityEngagementEngine — opportunities, engagements and the
fill cascade.
"""

import sqlite3

import pytest

from conftest import ADDRESS_9, ORG_RELIEF, query
from initiative_ledger.config import Settings
from initiative_ledger.db import Database
from initiative_ledger.errors import NotFoundError, ValidationError
from initiative_ledger.observability.metrics import best_effort_failures
from initiative_ledger.service import LedgerService


@pytest.fixture
def opportunity(service, flood_relief):
    return service.engagements.create_opportunity(
        flood_relief.record["id"], {"title": "Sandbag crew lead"}, 7
    ).record


def _by_type(db, attestation_type):
    return query(
        db, "SELECT * FROM attestations WHERE attestation_type = ? ORDER BY id", (attestation_type,)
    )


def _block_opportunity_updates(db):
    conn = sqlite3.connect(db.db_path)
    conn.execute(
        "CREATE TRIGGER block_fill BEFORE UPDATE ON opportunities"
        " BEGIN SELECT RAISE(ABORT, 'opportunities are read-only'); END"
    )
    conn.commit()
    conn.close()


class TestCreateOpportunity:
    def test_defaults_to_draft(self, service, opportunity):
        assert opportunity["status"] == "draft"
        assert opportunity["created_by_individual_id"] == 7
        rows = _by_type(service.db, "opportunity.created")
        assert len(rows) == 1
        assert rows[0]["opportunity_id"] == opportunity["id"]
        assert rows[0]["initiative_id"] == opportunity["initiative_id"]

    def test_open_is_published(self, service, flood_relief):
        result = service.engagements.create_opportunity(
            flood_relief.record["id"],
            {"title": "Boat pilot", "status": "open", "created_by_org_id": ORG_RELIEF},
            7,
        )
        assert result.record["status"] == "open"
        rows = _by_type(service.db, "opportunity.published")
        assert [r["id"] for r in rows] == [result.attestation_id]
        assert rows[0]["actor_org_id"] == ORG_RELIEF
        assert _by_type(service.db, "opportunity.created") == []

    def test_json_fields(self, service, flood_relief):
        record = service.engagements.create_opportunity(
            flood_relief.record["id"],
            {
                "title": "Surveyor",
                "required_skills": ["gis", "drone"],
                "budget_json": '{"amount": 800, "currency": "EUR", "cadence": "weekly"}',
            },
            7,
        ).record
        assert record["required_skills_json"] == ["gis", "drone"]
        assert record["budget_json"] == {"amount": 800.0, "currency": "EUR", "cadence": "weekly"}

    def test_validation(self, service, flood_relief):
        initiative_id = flood_relief.record["id"]
        with pytest.raises(ValidationError):
            service.engagements.create_opportunity(initiative_id, {"title": ""}, 7)
        with pytest.raises(ValidationError):
            service.engagements.create_opportunity(initiative_id, {"title": "x"}, None)
        with pytest.raises(NotFoundError):
            service.engagements.create_opportunity(404, {"title": "x"}, 7)

    def test_get(self, service, opportunity):
        assert service.engagements.get_opportunity(opportunity["id"])["title"] == "Sandbag crew lead"
        with pytest.raises(NotFoundError):
            service.engagements.get_opportunity(404)


class TestCreateEngagement:
    def test_defaults_to_proposed(self, service, opportunity):
        result = service.engagements.create_engagement(
            opportunity["id"], {"contributor_individual_id": 8}
        )
        record = result.record
        assert record["status"] == "proposed"
        assert record["initiative_id"] == opportunity["initiative_id"]
        assert result.side_effects == []
        assert service.engagements.get_opportunity(opportunity["id"])["status"] == "draft"
        rows = _by_type(service.db, "engagement.created")
        assert rows[0]["engagement_id"] == record["id"]

    def test_active_fills_opportunity(self, service, opportunity):
        result = service.engagements.create_engagement(
            opportunity["id"],
            {"contributor_individual_id": 8, "status": "active", "terms": {"rate": 40}},
            7,
        )
        assert service.engagements.get_opportunity(opportunity["id"])["status"] == "filled"
        assert not result.degraded
        assert [s.name for s in result.side_effects] == ["opportunity.fill"]
        assert result.record["terms_json"] == {"rate": 40.0}

        rows = _by_type(service.db, "engagement.activated")
        assert len(rows) == 1
        assert rows[0]["engagement_id"] == result.record["id"]
        assert rows[0]["opportunity_id"] == opportunity["id"]
        assert rows[0]["actor_individual_id"] == 7

    def test_contributor_from_address(self, service, opportunity):
        record = service.engagements.create_engagement(
            opportunity["id"], {"contributor_eoa": ADDRESS_9}
        ).record
        assert record["contributor_individual_id"] == 9

    def test_requesting_org_attributed(self, service, opportunity):
        service.engagements.create_engagement(
            opportunity["id"], {"requesting_organization_id": ORG_RELIEF}
        )
        assert _by_type(service.db, "engagement.created")[0]["actor_org_id"] == ORG_RELIEF

    def test_missing_opportunity(self, service, identities):
        with pytest.raises(NotFoundError):
            service.engagements.create_engagement(404, {"contributor_individual_id": 8})

    def test_fill_failure_is_reported_not_fatal(self, service, opportunity):
        _block_opportunity_updates(service.db)
        failures_before = best_effort_failures.value

        result = service.engagements.create_engagement(
            opportunity["id"], {"contributor_individual_id": 8, "status": "active"}, 7
        )

        assert result.degraded
        failed = result.failed_side_effects()
        assert failed[0].name == "opportunity.fill"
        assert "read-only" in failed[0].error
        assert best_effort_failures.value == failures_before + 1

        assert service.engagements.get_engagement(result.record["id"])["status"] == "active"
        assert service.engagements.get_opportunity(opportunity["id"])["status"] == "draft"
        assert len(_by_type(service.db, "engagement.activated")) == 1


class TestUpdateEngagement:
    @pytest.fixture
    def engagement(self, service, opportunity):
        return service.engagements.create_engagement(
            opportunity["id"], {"contributor_individual_id": 8}, 7
        ).record

    def test_activation_emits(self, service, engagement):
        result = service.engagements.update_engagement(engagement["id"], {"status": "active"}, 7)
        assert result.record["status"] == "active"
        rows = _by_type(service.db, "engagement.activated")
        assert [r["id"] for r in rows] == [result.attestation_id]
        assert '"from": "proposed"' in rows[0]["payload_json"]

    def test_activation_does_not_fill_by_default(self, service, engagement):
        result = service.engagements.update_engagement(engagement["id"], {"status": "active"}, 7)
        assert result.side_effects == []
        opportunity = service.engagements.get_opportunity(engagement["opportunity_id"])
        assert opportunity["status"] == "draft"

    def test_activation_fills_when_configured(self, db_path, engagement):
        service = LedgerService(Database(db_path, Settings(cascade_fill_on_update=True)))
        result = service.engagements.update_engagement(engagement["id"], {"status": "active"}, 7)
        assert [s.name for s in result.side_effects] == ["opportunity.fill"]
        opportunity = service.engagements.get_opportunity(engagement["opportunity_id"])
        assert opportunity["status"] == "filled"

    def test_other_transition(self, service, engagement):
        service.engagements.update_engagement(engagement["id"], {"status": "cancelled"})
        assert len(_by_type(service.db, "engagement.updated")) == 1

    def test_unchanged_status_is_silent(self, service, engagement):
        result = service.engagements.update_engagement(
            engagement["id"], {"status": "proposed", "terms": {"hours": 10}}
        )
        assert result.attestation_id is None
        assert result.record["terms_json"] == {"hours": 10.0}
        assert _by_type(service.db, "engagement.updated") == []

    def test_missing(self, service, identities):
        with pytest.raises(NotFoundError):
            service.engagements.update_engagement(404, {"status": "active"})
        with pytest.raises(NotFoundError):
            service.engagements.get_engagement(404)
