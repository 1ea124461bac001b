"""
Error taxonomy for ledger operations.

Each error carries the status code the HTTP layer maps it to and renders
itself as a small error envelope.
"""


class LedgerError(Exception):
    """Base class for every error raised by the ledger core."""

    status_code = 500
    error = "ledger_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class ValidationError(LedgerError):
    """A required field is missing or malformed."""

    status_code = 400
    error = "validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field

    def to_dict(self) -> dict:
        envelope = super().to_dict()
        envelope["field"] = self.field
        return envelope


class NotFoundError(LedgerError):
    """A referenced entity does not exist."""

    status_code = 404
    error = "not_found"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class StorageUnavailableError(LedgerError):
    """The datastore is not configured, cannot be opened, or cannot be provisioned."""

    status_code = 500
    error = "storage_unavailable"
