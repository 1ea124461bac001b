"""
Observability module: structured logging, request IDs, metrics.

Usage:
    from initiative_ledger.observability import get_logger, RequestContext

    logger = get_logger(__name__)
    logger.info("Processing request", extra={"initiative_id": 1})

    with RequestContext(operation="dashboard"):
        logger.info("Request started")

Metrics:
    from initiative_ledger.observability import REGISTRY, best_effort_failures

    best_effort_failures.inc()
    REGISTRY.snapshot()
"""

from .context import RequestContext, current_context, get_request_id, new_request_id
from .logging import HumanFormatter, JSONFormatter, configure_logging, get_logger
from .metrics import (
    REGISTRY,
    Counter,
    attestations_emitted,
    best_effort_failures,
    schema_provisions,
)

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "JSONFormatter",
    "HumanFormatter",
    # Context
    "RequestContext",
    "get_request_id",
    "current_context",
    "new_request_id",
    # Metrics
    "REGISTRY",
    "Counter",
    "attestations_emitted",
    "best_effort_failures",
    "schema_provisions",
]
