"""
Mutation results: the primary record plus advisory side-effect outcomes.

Auxiliary writes (default steward participant, coalition tags, the
opportunity fill cascade) never fail a request. Their outcome travels back to
the caller in ``MutationResult.side_effects`` and is logged and counted, so a
failure is visible without being fatal.
"""

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from initiative_ledger.errors import LedgerError
from initiative_ledger.observability.metrics import best_effort_failures

logger = logging.getLogger(__name__)


@dataclass
class SideEffect:
    """Outcome of one best-effort secondary write."""

    name: str
    ok: bool
    error: str | None = None
    detail: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"name": self.name, "ok": self.ok, "error": self.error, "detail": self.detail}


@dataclass
class MutationResult:
    """Primary record of a mutation and the side effects attempted alongside it."""

    record: dict
    attestation_id: int | None = None
    side_effects: list[SideEffect] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when any side effect failed."""
        return any(not s.ok for s in self.side_effects)

    def failed_side_effects(self) -> list[SideEffect]:
        return [s for s in self.side_effects if not s.ok]

    def to_dict(self) -> dict:
        return {
            "record": self.record,
            "attestation_id": self.attestation_id,
            "side_effects": [s.to_dict() for s in self.side_effects],
        }


def attempt(name: str, action: Callable[[], Any], **detail) -> SideEffect:
    """
    Run one best-effort datastore write.

    sqlite3 and ledger errors are captured into the returned SideEffect, logged with
    structured context, and counted. Anything else propagates.
    """
    try:
        action()
    except (sqlite3.Error, LedgerError) as e:
        best_effort_failures.inc()
        logger.warning(
            "Best-effort side effect failed: %s",
            name,
            extra={"side_effect": name, "error": str(e), **detail},
        )
        return SideEffect(name=name, ok=False, error=str(e), detail=detail)
    return SideEffect(name=name, ok=True, detail=detail)
