"""
LedgerService — one facade over every ledger component bound to a single
Database.

Usage:
    service = LedgerService.from_env()
    result = service.initiatives.create({"title": "Flood Relief", "created_by_individual_id": 7})
    service.attestations.list(result.record["id"])
"""

from pathlib import Path

from initiative_ledger.actors import ActorResolver
from initiative_ledger.attestations import AttestationLedger
from initiative_ledger.config import Settings
from initiative_ledger.db import Database
from initiative_ledger.engagements import OpportunityEngagementEngine
from initiative_ledger.initiatives import InitiativeStore
from initiative_ledger.milestones import MilestoneTracker


class LedgerService:
    def __init__(self, db: Database):
        self.db = db
        self.actors = ActorResolver(db)
        self.attestations = AttestationLedger(db, self.actors)
        self.initiatives = InitiativeStore(db, self.actors, self.attestations)
        self.engagements = OpportunityEngagementEngine(db, self.actors, self.attestations)
        self.milestones = MilestoneTracker(db, self.actors, self.attestations)

    @classmethod
    def from_env(
        cls, db_path: str | Path | None = None, config_file: str | Path | None = None, **overrides
    ) -> "LedgerService":
        """Build a service from ledger.yaml, environment defaults and *overrides*."""
        settings = Settings.load(config_file, **overrides)
        return cls(Database(db_path or settings.resolved_db_path(), settings))

    def ensure_schema(self) -> dict:
        return self.db.ensure_schema()
