"""Error taxonomy shared by every engine.

Each error carries a stable ``kind`` that callers (the CLI, an API layer)
can switch on, plus the entity id and operation it concerns so failures
can be logged with enough context to act on.
"""

from typing import Optional


class CFOAssistantError(Exception):
    """Base class for all errors raised by the analytics core."""

    kind = "ERROR"

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id
        self.operation = operation

    def to_dict(self) -> dict[str, object]:
        """Serialize to a structured error payload."""
        return {
            "kind": self.kind,
            "message": self.message,
            "entityId": self.entity_id,
            "operation": self.operation,
        }


class NotFoundError(CFOAssistantError):
    """A referenced transaction, category, rule or document does not exist."""

    kind = "NOT_FOUND"


class ValidationError(CFOAssistantError):
    """Input was rejected before any mutation took place."""

    kind = "VALIDATION_FAILURE"


class UpstreamError(CFOAssistantError):
    """Fetching from the accounting provider (or a backing file) failed."""

    kind = "UPSTREAM_FAILURE"


class AlreadyReconciledError(CFOAssistantError):
    """The transaction has already been reconciled."""

    kind = "ALREADY_RECONCILED"
