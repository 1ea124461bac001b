"""
Tests for the typed boundary, error envelopes and mutation results.
"""

import sqlite3

import pytest

from initiative_ledger.errors import NotFoundError, StorageUnavailableError, ValidationError
from initiative_ledger.models import (
    Actor,
    Budget,
    InitiativeCreate,
    InitiativePatch,
    InitiativeState,
    MilestonePatch,
    MilestoneStatus,
    ParticipantKind,
    ParticipantSeed,
    parse_input,
    patch_values,
)
from initiative_ledger.results import MutationResult, SideEffect, attempt


class TestTaggedEnum:
    def test_parse_known(self):
        assert InitiativeState.parse("funded") is InitiativeState.FUNDED

    def test_parse_legacy_value(self):
        assert MilestoneStatus.parse("paid") is MilestoneStatus.UNKNOWN

    def test_known_excludes_unknown(self):
        assert "unknown" not in InitiativeState.known()
        assert len(InitiativeState.known()) == 6

    def test_str_value(self):
        assert str(InitiativeState.DRAFT) == "draft"
        assert InitiativeState.DRAFT == "draft"


class TestParseInput:
    def test_translates_first_error(self):
        with pytest.raises(ValidationError) as exc:
            parse_input(ParticipantSeed, {"participant_kind": "robot"})
        assert exc.value.field == "participant_kind"
        assert exc.value.to_dict()["error"] == "validation_error"
        assert exc.value.to_dict()["field"] == "participant_kind"

    def test_strips_value_error_prefix(self):
        with pytest.raises(ValidationError) as exc:
            parse_input(InitiativePatch, {"title": "   "})
        assert exc.value.message == "title: is required"

    def test_passthrough_instance(self):
        seed = ParticipantSeed(participant_kind=ParticipantKind.INDIVIDUAL, individual_id=1)
        assert parse_input(ParticipantSeed, seed) is seed

    def test_none_is_empty(self):
        assert parse_input(MilestonePatch, None).model_fields_set == set()

    def test_bad_json_string(self):
        with pytest.raises(ValidationError) as exc:
            parse_input(MilestonePatch, {"evidence_json": "{not json"})
        assert exc.value.field.startswith("evidence")


class TestParticipantSeed:
    def test_clears_mismatched_target(self):
        seed = parse_input(
            ParticipantSeed,
            {"participant_kind": "organization", "organization_id": 5, "individual_id": 9},
        )
        assert seed.individual_id is None
        assert seed.target_id() == 5
        assert seed.target_field() == "organization_id"

    def test_blank_role_is_absent(self):
        seed = parse_input(ParticipantSeed, {"participant_kind": "individual", "role": " "})
        assert seed.role is None


class TestPatchValues:
    def test_only_supplied_fields(self):
        patch = parse_input(InitiativePatch, {"summary": None, "state": "funded"})
        values = patch_values(patch, {"summary": "summary", "state": "state", "title": "title"})
        assert values == {"summary": None, "state": "funded"}

    @pytest.mark.parametrize("state", ["paused", "unknown", None, ""])
    def test_unrecognized_state_not_supplied(self, state):
        patch = parse_input(InitiativePatch, {"state": state})
        assert "state" not in patch.model_fields_set
        assert patch_values(patch, {"state": "state"}) == {}

    def test_unmapped_fields_skipped(self):
        patch = parse_input(InitiativePatch, {"budget": {"amount": 1}})
        assert patch_values(patch, {"title": "title"}) == {}

    def test_typed_shape_keeps_extra_keys(self):
        patch = parse_input(InitiativePatch, {"budget_json": {"amount": 1, "tranche": "a"}})
        assert isinstance(patch.budget, Budget)
        assert patch.budget.model_dump(exclude_none=True) == {"amount": 1.0, "tranche": "a"}


class TestInitiativeCreate:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("archived", InitiativeState.DRAFT),
            ("unknown", InitiativeState.DRAFT),
            (None, InitiativeState.DRAFT),
            (" funded ", InitiativeState.FUNDED),
        ],
    )
    def test_requested_state(self, raw, expected):
        assert parse_input(InitiativeCreate, {"title": "x", "state": raw}).state is expected


class TestActor:
    def test_of_int(self):
        assert Actor.of(7).individual_id == 7

    def test_of_address(self):
        assert Actor.of("0xabc").address == "0xabc"

    def test_of_mapping(self):
        actor = Actor.of({"actor_individual_id": 3, "actor_org_id": 4})
        assert (actor.individual_id, actor.org_id) == (3, 4)

    def test_of_none(self):
        assert Actor.of(None) == Actor()

    def test_of_bool(self):
        with pytest.raises(ValidationError):
            Actor.of(False)


class TestErrors:
    def test_status_codes(self):
        assert ValidationError("title", "is required").status_code == 400
        assert NotFoundError("initiative", 3).status_code == 404
        assert StorageUnavailableError("down").status_code == 500

    def test_not_found_envelope(self):
        err = NotFoundError("initiative", 3)
        assert err.to_dict() == {"error": "not_found", "message": "initiative 3 not found"}
        assert (err.entity, err.entity_id) == ("initiative", 3)


class TestResults:
    def test_attempt_success(self):
        effect = attempt("noop", lambda: None, initiative_id=1)
        assert effect == SideEffect("noop", True, None, {"initiative_id": 1})

    def test_attempt_captures_sqlite_error(self):
        def boom():
            raise sqlite3.OperationalError("database is locked")

        effect = attempt("write", boom)
        assert not effect.ok
        assert effect.error == "database is locked"

    def test_attempt_propagates_other_errors(self):
        def boom():
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            attempt("write", boom)

    def test_mutation_result(self):
        result = MutationResult(
            {"id": 1},
            attestation_id=2,
            side_effects=[SideEffect("a", True), SideEffect("b", False, "x")],
        )
        assert result.degraded
        assert [s.name for s in result.failed_side_effects()] == ["b"]
        assert result.to_dict()["side_effects"][1] == {
            "name": "b",
            "ok": False,
            "error": "x",
            "detail": {},
        }
