"""Per-item outcome tally for batch operations."""

from dataclasses import dataclass, field


@dataclass
class ItemError:
    """Why a single batch item failed."""

    item_id: str
    kind: str
    message: str

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {"itemId": self.item_id, "kind": self.kind, "message": self.message}


@dataclass
class BatchResult:
    """Outcome of processing a batch item by item.

    Items are processed independently; one failure does not stop the batch.

    Attributes:
        total: Items considered.
        succeeded: Items changed successfully.
        failed: Items whose processing raised.
        skipped: Items left unchanged (e.g. no matching rule).
        errors: One entry per failed item.
    """

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[ItemError] = field(default_factory=list)

    def record_success(self) -> None:
        """Count a successfully processed item."""
        self.total += 1
        self.succeeded += 1

    def record_skip(self) -> None:
        """Count an item that needed no change."""
        self.total += 1
        self.skipped += 1

    def record_failure(self, item_id: str, kind: str, message: str) -> None:
        """Count a failed item and keep its error."""
        self.total += 1
        self.failed += 1
        self.errors.append(ItemError(item_id=item_id, kind=kind, message=message))

    @property
    def has_failures(self) -> bool:
        """Check if any item failed."""
        return self.failed > 0

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": [e.to_dict() for e in self.errors],
        }
