"""
Attestation Ledger — append-only record of every state-changing action.

Each mutation in the ledger produces exactly one attestation row describing
what happened, to which entities, and who did it. Rows are immutable: this
module only ever INSERTs into ``attestations`` and nothing in the package
issues UPDATE or DELETE against it.

Reads are a bounded newest-first feed. Callers needing the complete history
walk it with the cursor returned by ``page()``.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from initiative_ledger import safe_sql
from initiative_ledger.actors import ActorResolver
from initiative_ledger.db import Database, fetch_all, now_ts, to_json
from initiative_ledger.errors import ValidationError
from initiative_ledger.models import InputModel, parse_input
from initiative_ledger.observability.metrics import attestations_emitted

logger = logging.getLogger(__name__)

MAX_WINDOW = 200


class EventType:
    """Dotted attestation type names emitted by the ledger."""

    INITIATIVE_CREATED = "initiative.created"
    INITIATIVE_UPDATED = "initiative.updated"
    PARTICIPANT_ADDED = "initiative.participant.added"
    PARTICIPANT_REMOVED = "initiative.participant.removed"
    PARTICIPANT_UPDATED = "initiative.participant.updated"
    WORKSTREAM_CREATED = "initiative.workstream.created"
    OUTCOME_CREATED = "initiative.outcome.created"
    OPPORTUNITY_CREATED = "opportunity.created"
    OPPORTUNITY_PUBLISHED = "opportunity.published"
    ENGAGEMENT_CREATED = "engagement.created"
    ENGAGEMENT_ACTIVATED = "engagement.activated"
    ENGAGEMENT_UPDATED = "engagement.updated"
    MILESTONE_CREATED = "milestone.created"
    MILESTONE_SUBMITTED = "milestone.submitted"
    MILESTONE_VERIFIED = "milestone.verified"
    MILESTONE_REJECTED = "milestone.rejected"
    MILESTONE_UPDATED = "milestone.updated"


@dataclass
class AttestationEvent:
    """One event to append. Only ``attestation_type`` is required."""

    attestation_type: str
    payload: Any = None
    initiative_id: int | None = None
    opportunity_id: int | None = None
    engagement_id: int | None = None
    milestone_id: int | None = None
    actor_individual_id: int | None = None
    actor_org_id: int | None = None
    chain_id: int | None = None
    tx_hash: str | None = None
    external_uid: str | None = None


class AttestationRequest(InputModel):
    """Externally submitted attestation, e.g. one mirrored from a chain."""

    attestation_type: str
    payload: Any = None
    initiative_id: int | None = None
    opportunity_id: int | None = None
    engagement_id: int | None = None
    milestone_id: int | None = None
    actor_individual_id: int | None = None
    actor_address: str | None = Field(
        None, validation_alias=AliasChoices("actor_address", "actor_eoa")
    )
    actor_org_id: int | None = None
    chain_id: int | None = None
    tx_hash: str | None = None
    external_uid: str | None = Field(None, validation_alias=AliasChoices("external_uid", "eas_uid"))


class AttestationPage(BaseModel):
    """Cursor page over the newest-first feed."""

    data: list[dict] = Field(..., description="Attestations, newest first")
    next_cursor: str | None = Field(None, description="Pass as `before` to continue")
    has_more: bool = Field(..., description="Whether older attestations exist")


_COLUMNS = [
    "attestation_type",
    "payload_json",
    "initiative_id",
    "opportunity_id",
    "engagement_id",
    "milestone_id",
    "actor_individual_id",
    "actor_org_id",
    "chain_id",
    "tx_hash",
    "eas_uid",
    "created_at",
]


def _parse_cursor(before: str) -> tuple[int, int]:
    try:
        created_at, row_id = (int(part) for part in str(before).split(":", 1))
    except ValueError as e:
        raise ValidationError("before", "cursor must look like '<created_at>:<id>'") from e
    return created_at, row_id


def _clamp(limit: int | None) -> int:
    if limit is None:
        return MAX_WINDOW
    return max(1, min(int(limit), MAX_WINDOW))


class AttestationLedger:
    def __init__(self, db: Database, actors: ActorResolver | None = None):
        self.db = db
        self.actors = actors or ActorResolver(db)

    # ==================== Writes ====================

    def emit(self, event: AttestationEvent, conn: sqlite3.Connection | None = None) -> int:
        """Append one attestation. Returns its id."""
        if not isinstance(event.attestation_type, str) or not event.attestation_type.strip():
            raise ValidationError("attestation_type", "is required")

        if conn is None:
            with self.db.transaction() as own:
                return self._insert(own, event)
        return self._insert(conn, event)

    def record(self, data: AttestationRequest | dict) -> dict:
        """Resolve the actor of an externally submitted attestation and emit it."""
        req = parse_input(AttestationRequest, data)
        with self.db.transaction() as conn:
            actor_id = self.actors.resolve_actor(
                req.actor_individual_id, req.actor_address, conn=conn
            )
            event = AttestationEvent(
                attestation_type=req.attestation_type,
                payload=req.payload,
                initiative_id=req.initiative_id,
                opportunity_id=req.opportunity_id,
                engagement_id=req.engagement_id,
                milestone_id=req.milestone_id,
                actor_individual_id=actor_id,
                actor_org_id=req.actor_org_id,
                chain_id=req.chain_id,
                tx_hash=req.tx_hash,
                external_uid=req.external_uid,
            )
            att_id = self.emit(event, conn=conn)
            return fetch_all(conn, safe_sql.select("attestations", where="id = ?"), [att_id])[0]

    def _insert(self, conn: sqlite3.Connection, event: AttestationEvent) -> int:
        values = [
            event.attestation_type.strip(),
            to_json(event.payload),
            event.initiative_id,
            event.opportunity_id,
            event.engagement_id,
            event.milestone_id,
            event.actor_individual_id,
            event.actor_org_id,
            event.chain_id,
            event.tx_hash,
            event.external_uid,
            now_ts(),
        ]
        cursor = conn.execute(safe_sql.insert("attestations", _COLUMNS), values)
        attestations_emitted.inc()
        logger.info(
            "Attestation emitted: %s",
            event.attestation_type,
            extra={
                "attestation_id": cursor.lastrowid,
                **{k: v for k, v in asdict(event).items() if k != "payload" and v is not None},
            },
        )
        return cursor.lastrowid

    # ==================== Reads ====================

    def list(
        self,
        initiative_id: int | None = None,
        limit: int | None = None,
        before: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[dict]:
        """Newest-first attestations, at most 200, optionally scoped to an initiative."""
        if conn is None:
            with self.db.transaction() as own:
                return self._select(own, initiative_id, _clamp(limit), before)
        return self._select(conn, initiative_id, _clamp(limit), before)

    def page(
        self, initiative_id: int | None = None, limit: int | None = None, before: str | None = None
    ) -> AttestationPage:
        size = _clamp(limit)
        with self.db.transaction() as conn:
            rows = self._select(conn, initiative_id, size + 1, before)
        has_more = len(rows) > size
        rows = rows[:size]
        next_cursor = f"{rows[-1]['created_at']}:{rows[-1]['id']}" if has_more and rows else None
        return AttestationPage(data=rows, next_cursor=next_cursor, has_more=has_more)

    def count(self, initiative_id: int | None = None, attestation_type: str | None = None) -> int:
        where, params = [], []
        if initiative_id is not None:
            where.append("initiative_id = ?")
            params.append(initiative_id)
        if attestation_type:
            where.append("attestation_type = ?")
            params.append(attestation_type)
        sql = safe_sql.select_count("attestations", where=" AND ".join(where) or None)
        with self.db.transaction() as conn:
            return conn.execute(sql, params).fetchone()["c"]

    @staticmethod
    def _select(
        conn: sqlite3.Connection, initiative_id: int | None, limit: int, before: str | None
    ) -> list[dict]:
        where, params = [], []
        if initiative_id is not None:
            where.append("initiative_id = ?")
            params.append(initiative_id)
        if before:
            created_at, row_id = _parse_cursor(before)
            where.append("(created_at < ? OR (created_at = ? AND id < ?))")
            params.extend([created_at, created_at, row_id])
        sql = safe_sql.select(
            "attestations",
            where=" AND ".join(where) or None,
            order_by="created_at DESC, id DESC",
            suffix="LIMIT ?",
        )
        params.append(limit)
        return fetch_all(conn, sql, params)
