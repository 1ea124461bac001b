"""
Initiative Ledger - lifecycle state and attestation log for collaborative
initiatives.

Usage:
    from initiative_ledger import LedgerService

    service = LedgerService.from_env()
    result = service.initiatives.create({"title": "Flood Relief", "created_by_individual_id": 7})
"""

from .actors import ActorResolver, clean_address
from .attestations import AttestationEvent, AttestationLedger, AttestationPage, EventType
from .config import Settings
from .db import Database
from .engagements import OpportunityEngagementEngine
from .errors import LedgerError, NotFoundError, StorageUnavailableError, ValidationError
from .initiatives import InitiativeStore
from .milestones import MilestoneTracker
from .results import MutationResult, SideEffect
from .service import LedgerService

__version__ = "0.1.0"

__all__ = [
    # Facade
    "LedgerService",
    "Settings",
    "Database",
    # Components
    "ActorResolver",
    "clean_address",
    "AttestationLedger",
    "AttestationEvent",
    "AttestationPage",
    "EventType",
    "InitiativeStore",
    "OpportunityEngagementEngine",
    "MilestoneTracker",
    # Results and errors
    "MutationResult",
    "SideEffect",
    "LedgerError",
    "ValidationError",
    "NotFoundError",
    "StorageUnavailableError",
]
