"""
Opportunity & Engagement Engine.

Opportunities are units of work published under an initiative; engagements
bind a contributor to one. Activating an engagement fills its opportunity.
The fill is a best-effort secondary write: when it fails the engagement
still stands and the failure is reported in the result's side effects.
"""

import functools
import logging
import sqlite3

from initiative_ledger import safe_sql
from initiative_ledger.actors import ActorResolver
from initiative_ledger.attestations import AttestationEvent, AttestationLedger, EventType
from initiative_ledger.db import Database, now_ts, require_row, to_json
from initiative_ledger.errors import ValidationError
from initiative_ledger.models import (
    EngagementCreate,
    EngagementPatch,
    EngagementStatus,
    OpportunityCreate,
    OpportunityStatus,
    parse_input,
    patch_values,
)
from initiative_ledger.results import MutationResult, SideEffect, attempt

logger = logging.getLogger(__name__)

_OPPORTUNITY_COLUMNS = [
    "initiative_id",
    "workstream_id",
    "title",
    "description",
    "required_skills_json",
    "budget_json",
    "status",
    "created_by_individual_id",
    "created_by_org_id",
    "created_at",
    "updated_at",
]

_ENGAGEMENT_COLUMNS = [
    "initiative_id",
    "opportunity_id",
    "requesting_organization_id",
    "contributor_individual_id",
    "contributor_agent_row_id",
    "terms_json",
    "status",
    "created_at",
    "updated_at",
]


def _activation_event(status: str) -> str:
    if status == EngagementStatus.ACTIVE:
        return EventType.ENGAGEMENT_ACTIVATED
    return EventType.ENGAGEMENT_CREATED


def fill_opportunity(conn: sqlite3.Connection, opportunity_id: int, now: int) -> None:
    """Mark an opportunity filled."""
    conn.execute(
        safe_sql.update("opportunities", ["status", "updated_at"]),
        [OpportunityStatus.FILLED.value, now, opportunity_id],
    )


class OpportunityEngagementEngine:
    def __init__(
        self,
        db: Database,
        actors: ActorResolver | None = None,
        ledger: AttestationLedger | None = None,
    ):
        self.db = db
        self.actors = actors or ActorResolver(db)
        self.ledger = ledger or AttestationLedger(db, self.actors)

    # ==================== Opportunities ====================

    def create_opportunity(
        self, initiative_id: int, data: OpportunityCreate | dict, actor
    ) -> MutationResult:
        """Publish (status ``open``) or draft an opportunity under an initiative."""
        req = parse_input(OpportunityCreate, data)
        with self.db.transaction() as conn:
            require_row(conn, "initiatives", initiative_id, "initiative")
            who = self.actors.attribution(actor, conn=conn)
            status = req.status or OpportunityStatus.DRAFT.value
            now = now_ts()
            cursor = conn.execute(
                safe_sql.insert("opportunities", _OPPORTUNITY_COLUMNS),
                [
                    initiative_id,
                    req.workstream_id,
                    req.title,
                    req.description,
                    to_json(req.required_skills),
                    to_json(req.budget),
                    status,
                    who.individual_id,
                    req.created_by_org_id,
                    now,
                    now,
                ],
            )
            opportunity_id = cursor.lastrowid
            event_type = (
                EventType.OPPORTUNITY_PUBLISHED
                if status == OpportunityStatus.OPEN
                else EventType.OPPORTUNITY_CREATED
            )
            attestation_id = self.ledger.emit(
                AttestationEvent(
                    attestation_type=event_type,
                    payload={"title": req.title, "status": status},
                    initiative_id=initiative_id,
                    opportunity_id=opportunity_id,
                    actor_individual_id=who.individual_id,
                    actor_org_id=req.created_by_org_id or who.org_id,
                ),
                conn=conn,
            )
            record = require_row(conn, "opportunities", opportunity_id, "opportunity")
        return MutationResult(record, attestation_id)

    def get_opportunity(self, opportunity_id: int) -> dict:
        with self.db.transaction() as conn:
            return require_row(conn, "opportunities", opportunity_id, "opportunity")

    # ==================== Engagements ====================

    def create_engagement(
        self, opportunity_id: int, data: EngagementCreate | dict, actor=None
    ) -> MutationResult:
        """
        Engage a contributor on an opportunity.

        The initiative defaults to the opportunity's. An ``active`` engagement
        emits ``engagement.activated`` and fills the opportunity.
        """
        req = parse_input(EngagementCreate, data)
        with self.db.transaction() as conn:
            opportunity = require_row(conn, "opportunities", opportunity_id, "opportunity")
            initiative_id = req.initiative_id or opportunity["initiative_id"]
            if not initiative_id or initiative_id <= 0:
                raise ValidationError("initiative_id", "is required")

            contributor_id = self.actors.resolve_actor(
                req.contributor_individual_id, req.contributor_address, conn=conn
            )
            who = self.actors.attribution(actor, conn=conn, required=False)
            status = req.status or EngagementStatus.PROPOSED.value
            now = now_ts()

            cursor = conn.execute(
                safe_sql.insert("engagements", _ENGAGEMENT_COLUMNS),
                [
                    initiative_id,
                    opportunity_id,
                    req.requesting_organization_id,
                    contributor_id,
                    req.contributor_agent_row_id,
                    to_json(req.terms),
                    status,
                    now,
                    now,
                ],
            )
            engagement_id = cursor.lastrowid
            attestation_id = self.ledger.emit(
                AttestationEvent(
                    attestation_type=_activation_event(status),
                    payload={"opportunity_id": opportunity_id, "status": status},
                    initiative_id=initiative_id,
                    opportunity_id=opportunity_id,
                    engagement_id=engagement_id,
                    actor_individual_id=who.individual_id,
                    actor_org_id=req.requesting_organization_id or who.org_id,
                ),
                conn=conn,
            )

            side_effects = []
            if status == EngagementStatus.ACTIVE:
                side_effects.append(self._cascade_fill(conn, opportunity_id, engagement_id, now))
            record = require_row(conn, "engagements", engagement_id, "engagement")
        return MutationResult(record, attestation_id, side_effects)

    def update_engagement(
        self, engagement_id: int, patch: EngagementPatch | dict, actor=None
    ) -> MutationResult:
        """
        Merge-patch status and terms.

        A status change emits ``engagement.activated`` (to active) or
        ``engagement.updated``. Activation fills the opportunity only when
        ``Settings.cascade_fill_on_update`` is set.
        """
        req = parse_input(EngagementPatch, patch)
        with self.db.transaction() as conn:
            existing = require_row(conn, "engagements", engagement_id, "engagement")
            who = self.actors.attribution(actor, conn=conn, required=False)

            values = patch_values(req, {"status": "status", "terms": "terms_json"})
            if values.get("status") is None:
                values.pop("status", None)
            if "terms_json" in values:
                values["terms_json"] = to_json(values["terms_json"])
            now = now_ts()
            values["updated_at"] = now
            conn.execute(
                safe_sql.update("engagements", list(values)), [*values.values(), engagement_id]
            )

            previous = existing["status"]
            current = values.get("status", previous)
            attestation_id = None
            side_effects: list[SideEffect] = []
            if current != previous:
                event_type = (
                    EventType.ENGAGEMENT_ACTIVATED
                    if current == EngagementStatus.ACTIVE
                    else EventType.ENGAGEMENT_UPDATED
                )
                attestation_id = self.ledger.emit(
                    AttestationEvent(
                        attestation_type=event_type,
                        payload={"from": previous, "to": current},
                        initiative_id=existing["initiative_id"],
                        opportunity_id=existing["opportunity_id"],
                        engagement_id=engagement_id,
                        actor_individual_id=who.individual_id,
                        actor_org_id=who.org_id,
                    ),
                    conn=conn,
                )
                if current == EngagementStatus.ACTIVE and self.db.settings.cascade_fill_on_update:
                    side_effects.append(
                        self._cascade_fill(conn, existing["opportunity_id"], engagement_id, now)
                    )
            record = require_row(conn, "engagements", engagement_id, "engagement")
        return MutationResult(record, attestation_id, side_effects)

    def get_engagement(self, engagement_id: int) -> dict:
        with self.db.transaction() as conn:
            return require_row(conn, "engagements", engagement_id, "engagement")

    @staticmethod
    def _cascade_fill(
        conn: sqlite3.Connection, opportunity_id: int, engagement_id: int, now: int
    ) -> SideEffect:
        return attempt(
            "opportunity.fill",
            functools.partial(fill_opportunity, conn, opportunity_id, now),
            opportunity_id=opportunity_id,
            engagement_id=engagement_id,
        )
