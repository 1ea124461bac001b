"""
Log context for ledger operations.

A request id plus optional fields (the CLI command, an initiative id, ...)
stored in a ContextVar so every log line emitted while the context is open
can be correlated without threading the values through call signatures.
"""

import contextvars
import uuid
from typing import Any, Optional

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "initiative_ledger_log_context", default={}
)


def new_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:16]}"


def get_request_id() -> Optional[str]:
    return _log_context.get().get("request_id")


def current_context() -> dict[str, Any]:
    """Copy of the fields bound in the innermost open context."""
    return dict(_log_context.get())


class RequestContext:
    """
    Bind a request id and extra fields for the duration of a block.

    Nested contexts inherit the outer fields and the outer request id
    unless they supply their own:

        with RequestContext(operation="dashboard"):
            with RequestContext(initiative_id=3):
                logger.info("loading")  # request_id, operation, initiative_id
    """

    def __init__(self, request_id: Optional[str] = None, **fields: Any):
        self.request_id = request_id
        self.fields = {k: v for k, v in fields.items() if v is not None}
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> "RequestContext":
        merged = {**_log_context.get(), **self.fields}
        if self.request_id is not None:
            merged["request_id"] = self.request_id
        merged.setdefault("request_id", new_request_id())
        self.request_id = merged["request_id"]
        self._token = _log_context.set(merged)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None
