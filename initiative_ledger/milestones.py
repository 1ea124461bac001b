"""
Milestone Tracker — deliverables nested under an engagement.

Status transitions are attested with the engagement's initiative and
opportunity so the initiative's feed shows milestone progress. Setting a
milestone to the status it already has is a no-op for the ledger.
"""

import logging

from initiative_ledger import safe_sql
from initiative_ledger.actors import ActorResolver
from initiative_ledger.attestations import AttestationEvent, AttestationLedger, EventType
from initiative_ledger.db import Database, fetch_all, now_ts, require_row, to_json
from initiative_ledger.models import (
    MilestoneCreate,
    MilestonePatch,
    MilestoneStatus,
    parse_input,
    patch_values,
)
from initiative_ledger.results import MutationResult

logger = logging.getLogger(__name__)

_TRANSITION_EVENTS = {
    MilestoneStatus.SUBMITTED: EventType.MILESTONE_SUBMITTED,
    MilestoneStatus.VERIFIED: EventType.MILESTONE_VERIFIED,
    MilestoneStatus.REJECTED: EventType.MILESTONE_REJECTED,
}


def transition_event(status: str) -> str:
    """Attestation type for a milestone moving into *status*."""
    return _TRANSITION_EVENTS.get(MilestoneStatus.parse(status), EventType.MILESTONE_UPDATED)


class MilestoneTracker:
    def __init__(
        self,
        db: Database,
        actors: ActorResolver | None = None,
        ledger: AttestationLedger | None = None,
    ):
        self.db = db
        self.actors = actors or ActorResolver(db)
        self.ledger = ledger or AttestationLedger(db, self.actors)

    def create_milestone(
        self, engagement_id: int, data: MilestoneCreate | dict, actor
    ) -> MutationResult:
        req = parse_input(MilestoneCreate, data)
        with self.db.transaction() as conn:
            engagement = require_row(conn, "engagements", engagement_id, "engagement")
            who = self.actors.attribution(actor, conn=conn)
            status = req.status or MilestoneStatus.PENDING.value
            now = now_ts()
            cursor = conn.execute(
                safe_sql.insert(
                    "milestones",
                    [
                        "engagement_id",
                        "title",
                        "due_at",
                        "status",
                        "evidence_json",
                        "payout_json",
                        "created_at",
                        "updated_at",
                    ],
                ),
                [
                    engagement_id,
                    req.title,
                    req.due_at,
                    status,
                    to_json(req.evidence),
                    to_json(req.payout),
                    now,
                    now,
                ],
            )
            milestone_id = cursor.lastrowid
            attestation_id = self.ledger.emit(
                AttestationEvent(
                    attestation_type=EventType.MILESTONE_CREATED,
                    payload={"title": req.title, "status": status},
                    initiative_id=engagement["initiative_id"],
                    opportunity_id=engagement["opportunity_id"],
                    engagement_id=engagement_id,
                    milestone_id=milestone_id,
                    actor_individual_id=who.individual_id,
                    actor_org_id=who.org_id,
                ),
                conn=conn,
            )
            record = require_row(conn, "milestones", milestone_id, "milestone")
        return MutationResult(record, attestation_id)

    def update_milestone(
        self, milestone_id: int, patch: MilestonePatch | dict, actor=None
    ) -> MutationResult:
        """
        Merge-patch status, evidence and payout.

        A status change emits exactly one ``milestone.*`` attestation with
        payload ``{from, to}``; an unchanged status emits none.
        """
        req = parse_input(MilestonePatch, patch)
        with self.db.transaction() as conn:
            existing = require_row(conn, "milestones", milestone_id, "milestone")
            who = self.actors.attribution(actor, conn=conn, required=False)

            values = patch_values(
                req, {"status": "status", "evidence": "evidence_json", "payout": "payout_json"}
            )
            if values.get("status") is None:
                values.pop("status", None)
            for column in ("evidence_json", "payout_json"):
                if column in values:
                    values[column] = to_json(values[column])
            values["updated_at"] = now_ts()
            conn.execute(
                safe_sql.update("milestones", list(values)), [*values.values(), milestone_id]
            )

            previous = existing["status"]
            current = values.get("status", previous)
            attestation_id = None
            if current != previous:
                engagement = conn.execute(
                    "SELECT initiative_id, opportunity_id FROM engagements WHERE id = ?",
                    (existing["engagement_id"],),
                ).fetchone()
                attestation_id = self.ledger.emit(
                    AttestationEvent(
                        attestation_type=transition_event(current),
                        payload={"from": previous, "to": current},
                        initiative_id=engagement["initiative_id"] if engagement else None,
                        opportunity_id=engagement["opportunity_id"] if engagement else None,
                        engagement_id=existing["engagement_id"],
                        milestone_id=milestone_id,
                        actor_individual_id=who.individual_id,
                        actor_org_id=who.org_id,
                    ),
                    conn=conn,
                )
            else:
                logger.debug("Milestone %s status unchanged (%s)", milestone_id, previous)
            record = require_row(conn, "milestones", milestone_id, "milestone")
        return MutationResult(record, attestation_id)

    def get_milestone(self, milestone_id: int) -> dict:
        with self.db.transaction() as conn:
            return require_row(conn, "milestones", milestone_id, "milestone")

    def list_for_engagement(self, engagement_id: int) -> list[dict]:
        """Milestones of one engagement, soonest due first, undated last."""
        with self.db.transaction() as conn:
            require_row(conn, "engagements", engagement_id, "engagement")
            return fetch_all(
                conn,
                safe_sql.select(
                    "milestones",
                    where="engagement_id = ?",
                    order_by="COALESCE(due_at, 9999999999), id",
                    suffix="LIMIT ?",
                ),
                [engagement_id, self.db.settings.milestone_limit],
            )
