"""
Initiative Store — initiatives, participants, workstreams, outcomes and
coalition tags.

Every mutation runs in one transaction together with its attestation.
Secondary writes that must not fail the request (the creator's steward
row, seeded participants, coalition tags) go through ``results.attempt``.
"""

from __future__ import annotations

import functools
import logging
import sqlite3
from typing import Any

from initiative_ledger import safe_sql
from initiative_ledger.actors import ActorResolver
from initiative_ledger.attestations import AttestationEvent, AttestationLedger, EventType
from initiative_ledger.db import Database, fetch_all, now_ts, require_row, to_json
from initiative_ledger.errors import ValidationError
from initiative_ledger.models import (
    InitiativeCreate,
    InitiativePatch,
    InitiativeState,
    ListScope,
    OutcomeCreate,
    ParticipantAction,
    ParticipantKind,
    ParticipantRole,
    ParticipantSeed,
    ParticipantStatus,
    WorkstreamCreate,
    parse_input,
    patch_values,
)
from initiative_ledger.results import MutationResult, attempt

logger = logging.getLogger(__name__)

_INITIATIVE_COLUMNS = [
    "title",
    "summary",
    "state",
    "created_by_individual_id",
    "created_by_org_id",
    "governance_json",
    "budget_json",
    "payout_rules_json",
    "metadata_json",
    "created_at",
    "updated_at",
]

_PARTICIPANT_COLUMNS = [
    "initiative_id",
    "participant_kind",
    "individual_id",
    "organization_id",
    "role",
    "status",
    "invited_by_individual_id",
    "created_at",
    "updated_at",
]

# Patch field -> column
_PATCH_COLUMNS = {
    "title": "title",
    "summary": "summary",
    "state": "state",
    "governance": "governance_json",
    "budget": "budget_json",
    "payout_rules": "payout_rules_json",
    "metadata": "metadata_json",
}

# Participant identity; IS matches the NULL side of the kind discriminant
_TARGET_WHERE = (
    "initiative_id = ? AND participant_kind = ? AND individual_id IS ? AND organization_id IS ?"
)

_PARTICIPANT_EVENTS = {
    ParticipantAction.ADD: EventType.PARTICIPANT_ADDED,
    ParticipantAction.REMOVE: EventType.PARTICIPANT_REMOVED,
    ParticipantAction.UPDATE: EventType.PARTICIPANT_UPDATED,
}

_PARTICIPANTS_SQL = """
    SELECT p.*,
           i.first_name, i.last_name, i.email, i.eoa_address AS individual_eoa,
           o.ens_name, o.org_name, o.agent_name
    FROM initiative_participants p
    LEFT JOIN individuals i ON i.id = p.individual_id
    LEFT JOIN organizations o ON o.id = p.organization_id
    WHERE p.initiative_id = ?
    ORDER BY p.status, p.role, p.created_at
"""

_ENGAGEMENTS_SQL = """
    SELECT e.*,
           op.title AS opportunity_title,
           ro.ens_name AS requesting_org_ens_name,
           ro.org_name AS requesting_org_name,
           ci.first_name AS contributor_first_name,
           ci.last_name AS contributor_last_name,
           ci.eoa_address AS contributor_eoa
    FROM engagements e
    LEFT JOIN opportunities op ON op.id = e.opportunity_id
    LEFT JOIN organizations ro ON ro.id = e.requesting_organization_id
    LEFT JOIN individuals ci ON ci.id = e.contributor_individual_id
    WHERE e.initiative_id = ?
    ORDER BY e.created_at DESC, e.id DESC
    LIMIT ?
"""

_MILESTONES_SQL = """
    SELECT m.*
    FROM milestones m
    JOIN engagements e ON e.id = m.engagement_id
    WHERE e.initiative_id = ?
    ORDER BY COALESCE(m.due_at, 9999999999), m.id
    LIMIT ?
"""

_COALITIONS_SQL = """
    SELECT c.organization_id, c.created_at, o.ens_name, o.org_name, o.agent_name
    FROM initiative_coalitions c
    LEFT JOIN organizations o ON o.id = c.organization_id
    WHERE c.initiative_id = ?
    ORDER BY c.id
"""

_COUNTS_SQL = """
    SELECT
      (SELECT COUNT(*) FROM initiative_participants WHERE initiative_id = :id) AS participants,
      (SELECT COUNT(*) FROM opportunities WHERE initiative_id = :id) AS opportunities,
      (SELECT COUNT(*) FROM engagements WHERE initiative_id = :id) AS engagements,
      (SELECT COUNT(*) FROM milestones m JOIN engagements e ON e.id = m.engagement_id
         WHERE e.initiative_id = :id) AS milestones,
      (SELECT COUNT(*) FROM attestations WHERE initiative_id = :id) AS attestations,
      (SELECT COUNT(*) FROM opportunities
         WHERE initiative_id = :id AND status = 'open') AS open_opportunities,
      (SELECT COUNT(*) FROM engagements
         WHERE initiative_id = :id AND status = 'active') AS active_engagements,
      (SELECT COUNT(*) FROM milestones m JOIN engagements e ON e.id = m.engagement_id
         WHERE e.initiative_id = :id AND m.status IN ('pending', 'submitted'))
         AS pending_milestones
"""


def _positive_id(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(field, "must be a positive integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(field, "must be a positive integer") from e
    if parsed <= 0:
        raise ValidationError(field, "must be a positive integer")
    return parsed


class InitiativeStore:
    def __init__(
        self,
        db: Database,
        actors: ActorResolver | None = None,
        ledger: AttestationLedger | None = None,
    ):
        self.db = db
        self.actors = actors or ActorResolver(db)
        self.ledger = ledger or AttestationLedger(db, self.actors)

    # ==================== Initiatives ====================

    def create(self, data: InitiativeCreate | dict) -> MutationResult:
        """
        Create an initiative and make its creator the first steward.

        The creator's participant row, seeded participants and coalition tags
        are best effort; the initiative row and its ``initiative.created``
        attestation are not.
        """
        req = parse_input(InitiativeCreate, data)
        with self.db.transaction() as conn:
            creator_id = self.actors.resolve_actor(
                req.created_by_individual_id, req.actor_address, conn=conn
            )
            if not creator_id:
                raise ValidationError("created_by_individual_id", "is required (number > 0)")

            now = now_ts()
            cursor = conn.execute(
                safe_sql.insert("initiatives", _INITIATIVE_COLUMNS),
                [
                    req.title,
                    req.summary,
                    req.state.value,
                    creator_id,
                    req.created_by_org_id,
                    to_json(req.governance),
                    to_json(req.budget),
                    to_json(req.payout_rules),
                    to_json(req.metadata),
                    now,
                    now,
                ],
            )
            initiative_id = cursor.lastrowid
            logger.info(
                "Initiative created: %s",
                req.title,
                extra={"initiative_id": initiative_id, "created_by": creator_id},
            )

            side_effects = []
            for raw_org in req.coalition_org_ids:
                side_effects.append(
                    attempt(
                        "initiative.coalition",
                        functools.partial(self._tag_coalition, conn, initiative_id, raw_org, now),
                        initiative_id=initiative_id,
                        organization_id=raw_org,
                    )
                )

            steward = ParticipantSeed(
                participant_kind=ParticipantKind.INDIVIDUAL,
                individual_id=creator_id,
                role=ParticipantRole.STEWARD.value,
                status=ParticipantStatus.ACTIVE.value,
            )
            side_effects.append(
                attempt(
                    "initiative.steward",
                    functools.partial(
                        self._insert_participant, conn, initiative_id, steward, creator_id, now
                    ),
                    initiative_id=initiative_id,
                    individual_id=creator_id,
                )
            )

            for raw_seed in req.initial_participants:
                side_effects.append(
                    attempt(
                        "initiative.participant",
                        functools.partial(
                            self._seed_participant, conn, initiative_id, raw_seed, creator_id, now
                        ),
                        initiative_id=initiative_id,
                    )
                )

            attestation_id = self.ledger.emit(
                AttestationEvent(
                    attestation_type=EventType.INITIATIVE_CREATED,
                    payload={"title": req.title, "state": req.state.value},
                    initiative_id=initiative_id,
                    actor_individual_id=creator_id,
                    actor_org_id=req.created_by_org_id,
                ),
                conn=conn,
            )
            record = require_row(conn, "initiatives", initiative_id, "initiative")
        return MutationResult(record, attestation_id, side_effects)

    def get(self, initiative_id: int) -> dict:
        with self.db.transaction() as conn:
            return require_row(conn, "initiatives", initiative_id, "initiative")

    def dashboard(self, initiative_id: int) -> dict:
        """Everything about one initiative in a single read."""
        list_limit = self.db.settings.list_limit
        with self.db.transaction() as conn:
            initiative = require_row(conn, "initiatives", initiative_id, "initiative")
            counts = dict(conn.execute(_COUNTS_SQL, {"id": initiative_id}).fetchone())
            return {
                "initiative": initiative,
                "participants": fetch_all(conn, _PARTICIPANTS_SQL, [initiative_id]),
                "coalitions": fetch_all(conn, _COALITIONS_SQL, [initiative_id]),
                "workstreams": fetch_all(
                    conn,
                    safe_sql.select(
                        "initiative_workstreams",
                        where="initiative_id = ?",
                        order_by="sort_order ASC, id ASC",
                    ),
                    [initiative_id],
                ),
                "outcomes": fetch_all(
                    conn,
                    safe_sql.select(
                        "initiative_outcomes", where="initiative_id = ?", order_by="id ASC"
                    ),
                    [initiative_id],
                ),
                "opportunities": fetch_all(
                    conn,
                    safe_sql.select(
                        "opportunities",
                        where="initiative_id = ?",
                        order_by="created_at DESC, id DESC",
                        suffix="LIMIT ?",
                    ),
                    [initiative_id, list_limit],
                ),
                "engagements": fetch_all(conn, _ENGAGEMENTS_SQL, [initiative_id, list_limit]),
                "milestones": fetch_all(
                    conn, _MILESTONES_SQL, [initiative_id, self.db.settings.milestone_limit]
                ),
                "attestations": self.ledger.list(initiative_id, list_limit, conn=conn),
                "counts": counts,
            }

    def update(self, initiative_id: int, patch: InitiativePatch | dict, actor) -> MutationResult:
        """Merge-patch an initiative. Absent fields keep their stored value."""
        req = parse_input(InitiativePatch, patch)
        with self.db.transaction() as conn:
            who = self.actors.attribution(actor, conn=conn)
            require_row(conn, "initiatives", initiative_id, "initiative")

            values = patch_values(req, _PATCH_COLUMNS)
            for column in values:
                if column.endswith("_json"):
                    values[column] = to_json(values[column])
            values["updated_at"] = now_ts()
            conn.execute(
                safe_sql.update("initiatives", list(values)), [*values.values(), initiative_id]
            )

            fields = sorted(set(req.model_fields_set) & set(_PATCH_COLUMNS))
            payload = {"fields": fields}
            for name in ("title", "summary", "state"):
                if name in req.model_fields_set:
                    value = getattr(req, name)
                    payload[name] = value.value if isinstance(value, InitiativeState) else value

            attestation_id = self.ledger.emit(
                AttestationEvent(
                    attestation_type=EventType.INITIATIVE_UPDATED,
                    payload=payload,
                    initiative_id=initiative_id,
                    actor_individual_id=who.individual_id,
                    actor_org_id=who.org_id,
                ),
                conn=conn,
            )
            record = require_row(conn, "initiatives", initiative_id, "initiative")
        return MutationResult(record, attestation_id)

    def list(
        self,
        individual_id: int | None = None,
        scope: str = "active",
        address: str | None = None,
        state: str | None = None,
        coalition_org_id: int | None = None,
    ) -> list[dict]:
        """
        Initiatives most recently updated first.

        ``active`` hides closed initiatives, ``all`` returns everything and
        ``mine`` keeps those the individual created or participates in,
        directly or through one of their organizations.
        """
        try:
            scope = ListScope(str(scope or ListScope.ACTIVE).strip().lower())
        except ValueError as e:
            raise ValidationError("scope", f"must be one of {[s.value for s in ListScope]}") from e

        where, params = [], []
        if state:
            parsed = InitiativeState.parse(str(state).strip().lower())
            if parsed == InitiativeState.UNKNOWN:
                raise ValidationError("state", f"must be one of {InitiativeState.known()}")
            where.append("i.state = ?")
            params.append(parsed.value)
        if coalition_org_id is not None:
            where.append(
                "EXISTS (SELECT 1 FROM initiative_coalitions c"
                " WHERE c.initiative_id = i.id AND c.organization_id = ?)"
            )
            params.append(_positive_id(coalition_org_id, "coalition_org_id"))
        if scope == ListScope.ACTIVE:
            where.append("i.state != ?")
            params.append(InitiativeState.CLOSED.value)

        with self.db.transaction() as conn:
            if scope == ListScope.MINE:
                me = self.actors.resolve_actor(individual_id, address, conn=conn)
                if not me:
                    return []
                where.append(self._mine_clause(conn, me, params))

            sql = "SELECT i.* FROM initiatives i"
            if where:
                sql += " WHERE " + " AND ".join(where)
            sql += " ORDER BY i.updated_at DESC, i.created_at DESC, i.id DESC LIMIT ?"
            params.append(self.db.settings.list_limit)
            return fetch_all(conn, sql, params)

    def _mine_clause(self, conn: sqlite3.Connection, me: int, params: list) -> str:
        org_ids = sorted(self.actors.resolve_organization_ids_for_individual(me, conn=conn))
        params.extend([me, me])
        clause = (
            "(i.created_by_individual_id = ?"
            " OR EXISTS (SELECT 1 FROM initiative_participants p WHERE p.initiative_id = i.id"
            " AND p.participant_kind = 'individual' AND p.individual_id = ?)"
        )
        if org_ids:
            placeholders = ", ".join("?" for _ in org_ids)
            clause += (
                " OR EXISTS (SELECT 1 FROM initiative_participants p WHERE p.initiative_id = i.id"
                f" AND p.participant_kind = 'organization' AND p.organization_id IN ({placeholders}))"
            )
            params.extend(org_ids)
        return clause + ")"

    # ==================== Participants ====================

    def participants(self, initiative_id: int) -> list[dict]:
        with self.db.transaction() as conn:
            require_row(conn, "initiatives", initiative_id, "initiative")
            return fetch_all(conn, _PARTICIPANTS_SQL, [initiative_id])

    def upsert_participant(
        self,
        initiative_id: int,
        action: str,
        change: ParticipantSeed | dict,
        actor=None,
    ) -> MutationResult:
        """
        Add, remove or update one participant.

        ``add`` is idempotent, ``remove`` flips status to removed and
        ``update`` merges role and status. The result record carries the
        initiative's participants after the change.
        """
        try:
            action = ParticipantAction(str(action).strip().lower())
        except ValueError as e:
            raise ValidationError(
                "action", f"must be one of {[a.value for a in ParticipantAction]}"
            ) from e
        seed = parse_input(ParticipantSeed, change)

        with self.db.transaction() as conn:
            require_row(conn, "initiatives", initiative_id, "initiative")
            target = seed.target_id()
            if not target or target <= 0:
                raise ValidationError(
                    seed.target_field(), f"is required for {seed.participant_kind} participants"
                )
            who = self.actors.attribution(actor, conn=conn, required=False)
            now = now_ts()

            payload = {
                "participant_kind": seed.participant_kind.value,
                "individual_id": seed.individual_id,
                "organization_id": seed.organization_id,
            }
            if action == ParticipantAction.ADD:
                self._insert_participant(conn, initiative_id, seed, who.individual_id, now)
                payload["role"] = seed.role or ParticipantRole.OBSERVER.value
                payload["status"] = seed.status or ParticipantStatus.INVITED.value
            elif action == ParticipantAction.REMOVE:
                conn.execute(
                    safe_sql.update(
                        "initiative_participants",
                        ["status", "updated_at"],
                        where=_TARGET_WHERE,
                    ),
                    [ParticipantStatus.REMOVED.value, now, *self._target_params(initiative_id, seed)],
                )
            else:
                conn.execute(
                    "UPDATE initiative_participants"
                    " SET role = COALESCE(?, role), status = COALESCE(?, status), updated_at = ?"
                    f" WHERE {_TARGET_WHERE}",
                    [seed.role, seed.status, now, *self._target_params(initiative_id, seed)],
                )
                payload["role"] = seed.role
                payload["status"] = seed.status

            attestation_id = self.ledger.emit(
                AttestationEvent(
                    attestation_type=_PARTICIPANT_EVENTS[action],
                    payload=payload,
                    initiative_id=initiative_id,
                    actor_individual_id=who.individual_id,
                    actor_org_id=who.org_id,
                ),
                conn=conn,
            )
            rows = fetch_all(conn, _PARTICIPANTS_SQL, [initiative_id])
        return MutationResult({"initiative_id": initiative_id, "participants": rows}, attestation_id)

    @staticmethod
    def _target_params(initiative_id: int, seed: ParticipantSeed) -> list:
        return [initiative_id, seed.participant_kind.value, seed.individual_id, seed.organization_id]

    @classmethod
    def _insert_participant(
        cls,
        conn: sqlite3.Connection,
        initiative_id: int,
        seed: ParticipantSeed,
        invited_by: int | None,
        now: int,
    ) -> int:
        """Add one participant unless the same target is already on the initiative.

        Returns 1 when a row was added.
        """
        target = seed.target_id()
        if not target or target <= 0:
            raise ValidationError(
                seed.target_field(), f"is required for {seed.participant_kind} participants"
            )
        cursor = conn.execute(
            safe_sql.insert_if_absent(
                "initiative_participants", _PARTICIPANT_COLUMNS, _TARGET_WHERE
            ),
            [
                initiative_id,
                seed.participant_kind.value,
                seed.individual_id,
                seed.organization_id,
                seed.role or ParticipantRole.OBSERVER.value,
                seed.status or ParticipantStatus.INVITED.value,
                invited_by,
                now,
                now,
                *cls._target_params(initiative_id, seed),
            ],
        )
        return cursor.rowcount

    def _seed_participant(
        self, conn: sqlite3.Connection, initiative_id: int, raw, invited_by: int, now: int
    ) -> int:
        return self._insert_participant(
            conn, initiative_id, parse_input(ParticipantSeed, raw), invited_by, now
        )

    @staticmethod
    def _tag_coalition(conn: sqlite3.Connection, initiative_id: int, raw_org, now: int) -> None:
        org_id = _positive_id(raw_org, "coalition_org_ids")
        conn.execute(
            safe_sql.insert_or_ignore(
                "initiative_coalitions",
                ["initiative_id", "organization_id", "created_at", "updated_at"],
            ),
            [initiative_id, org_id, now, now],
        )

    # ==================== Workstreams & outcomes ====================

    def create_workstream(
        self, initiative_id: int, data: WorkstreamCreate | dict, actor
    ) -> MutationResult:
        req = parse_input(WorkstreamCreate, data)
        with self.db.transaction() as conn:
            require_row(conn, "initiatives", initiative_id, "initiative")
            who = self.actors.attribution(actor, conn=conn)
            now = now_ts()
            cursor = conn.execute(
                safe_sql.insert(
                    "initiative_workstreams",
                    [
                        "initiative_id",
                        "title",
                        "description",
                        "status",
                        "sort_order",
                        "created_at",
                        "updated_at",
                    ],
                ),
                [
                    initiative_id,
                    req.title,
                    req.description,
                    req.status or "active",
                    req.sort_order,
                    now,
                    now,
                ],
            )
            workstream_id = cursor.lastrowid
            attestation_id = self.ledger.emit(
                AttestationEvent(
                    attestation_type=EventType.WORKSTREAM_CREATED,
                    payload={"workstream_id": workstream_id, "title": req.title},
                    initiative_id=initiative_id,
                    actor_individual_id=who.individual_id,
                    actor_org_id=who.org_id,
                ),
                conn=conn,
            )
            record = require_row(conn, "initiative_workstreams", workstream_id, "workstream")
        return MutationResult(record, attestation_id)

    def create_outcome(
        self, initiative_id: int, data: OutcomeCreate | dict, actor
    ) -> MutationResult:
        req = parse_input(OutcomeCreate, data)
        with self.db.transaction() as conn:
            require_row(conn, "initiatives", initiative_id, "initiative")
            who = self.actors.attribution(actor, conn=conn)
            now = now_ts()
            cursor = conn.execute(
                safe_sql.insert(
                    "initiative_outcomes",
                    ["initiative_id", "title", "metric_json", "status", "created_at", "updated_at"],
                ),
                [initiative_id, req.title, to_json(req.metric), req.status or "defined", now, now],
            )
            outcome_id = cursor.lastrowid
            attestation_id = self.ledger.emit(
                AttestationEvent(
                    attestation_type=EventType.OUTCOME_CREATED,
                    payload={"outcome_id": outcome_id, "title": req.title},
                    initiative_id=initiative_id,
                    actor_individual_id=who.individual_id,
                    actor_org_id=who.org_id,
                ),
                conn=conn,
            )
            record = require_row(conn, "initiative_outcomes", outcome_id, "outcome")
        return MutationResult(record, attestation_id)

