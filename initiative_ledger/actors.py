"""
Actor resolution: wallet-style addresses to individuals, individuals to
the organizations they belong to.

Lookups fail closed. A malformed or unknown address resolves to None and the
caller decides whether a missing actor is fatal.
"""

import logging
import re
import sqlite3

from initiative_ledger.db import Database
from initiative_ledger.errors import ValidationError
from initiative_ledger.models import Actor

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def clean_address(raw) -> str | None:
    """Return the lowercased address if *raw* is a 20-byte 0x hex string, else None."""
    if not isinstance(raw, str):
        return None
    value = raw.strip()
    return value.lower() if _ADDRESS_RE.match(value) else None


class ActorResolver:
    def __init__(self, db: Database):
        self.db = db

    def resolve_individual_id_by_address(
        self, address, conn: sqlite3.Connection | None = None
    ) -> int | None:
        cleaned = clean_address(address)
        if not cleaned:
            return None
        if conn is None:
            with self.db.transaction() as own:
                return self._lookup_address(own, cleaned)
        return self._lookup_address(conn, cleaned)

    def resolve_organization_ids_for_individual(
        self, individual_id: int, conn: sqlite3.Connection | None = None
    ) -> set[int]:
        if conn is None:
            with self.db.transaction() as own:
                return self._lookup_orgs(own, individual_id)
        return self._lookup_orgs(conn, individual_id)

    def resolve_actor(
        self,
        individual_id: int | None = None,
        address: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> int | None:
        """A positive explicit id wins; otherwise fall back to the address lookup."""
        if isinstance(individual_id, int) and not isinstance(individual_id, bool) and individual_id > 0:
            return individual_id
        if address is not None:
            return self.resolve_individual_id_by_address(address, conn=conn)
        return None

    def attribution(
        self, actor, conn: sqlite3.Connection | None = None, required: bool = True
    ) -> Actor:
        """
        Resolve a loosely typed actor (id, address, mapping or Actor) into the
        individual and organization an attestation is credited to.

        Raises ValidationError when *required* and no individual resolves.
        """
        parsed = Actor.of(actor)
        resolved = self.resolve_actor(parsed.individual_id, parsed.address, conn=conn)
        if required and not resolved:
            raise ValidationError("actor_individual_id", "is required (number > 0)")
        org_id = parsed.org_id if parsed.org_id and parsed.org_id > 0 else None
        return Actor(individual_id=resolved, address=parsed.address, org_id=org_id)

    def actor_id(
        self, actor, conn: sqlite3.Connection | None = None, required: bool = True
    ) -> int | None:
        return self.attribution(actor, conn=conn, required=required).individual_id

    @staticmethod
    def _lookup_address(conn: sqlite3.Connection, cleaned: str) -> int | None:
        row = conn.execute(
            "SELECT id FROM individuals WHERE lower(eoa_address) = ? ORDER BY id LIMIT 1",
            (cleaned,),
        ).fetchone()
        if row is None:
            logger.debug("No individual for address %s", cleaned)
            return None
        return int(row["id"])

    @staticmethod
    def _lookup_orgs(conn: sqlite3.Connection, individual_id: int) -> set[int]:
        rows = conn.execute(
            "SELECT organization_id FROM individual_organizations WHERE individual_id = ?",
            (individual_id,),
        ).fetchall()
        return {int(r["organization_id"]) for r in rows if r["organization_id"] is not None}
