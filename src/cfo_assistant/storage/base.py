"""Abstract interfaces for the local transaction, category and rule stores."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Optional

from cfo_assistant.models.category import Category, CategoryRule
from cfo_assistant.models.transaction import TransactionKind, TransactionRecord, TransactionStatus
from cfo_assistant.utils.date_utils import is_date_in_range


@dataclass
class TransactionFilter:
    """Predicate over cached transactions.

    Criteria left as None are ignored.

    Attributes:
        user_id: Owning user.
        tenant_id: Provider organization.
        transaction_id: Local id.
        external_id: Provider document id.
        kind: Transaction origin.
        statuses: Accepted statuses.
        exclude_statuses: Rejected statuses.
        category_id: Required category.
        categorized: True for categorized only, False for uncategorized only.
        is_reconciled: Required reconciliation flag.
        date_from: Earliest date (inclusive).
        date_to: Latest date (inclusive).
        limit: Maximum number of records returned by ``find_all``.
    """

    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    transaction_id: Optional[str] = None
    external_id: Optional[str] = None
    kind: Optional[TransactionKind] = None
    statuses: Optional[tuple[TransactionStatus, ...]] = None
    exclude_statuses: Optional[tuple[TransactionStatus, ...]] = None
    category_id: Optional[str] = None
    categorized: Optional[bool] = None
    is_reconciled: Optional[bool] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    limit: Optional[int] = None

    def matches(self, record: TransactionRecord) -> bool:
        """Check if a record satisfies every criterion."""
        checks = (
            (self.user_id, record.user_id),
            (self.tenant_id, record.tenant_id),
            (self.transaction_id, record.id),
            (self.external_id, record.external_id),
            (self.kind, record.kind),
            (self.category_id, record.category_id),
            (self.is_reconciled, record.is_reconciled),
        )
        for expected, actual in checks:
            if expected is not None and expected != actual:
                return False

        if self.statuses is not None and record.status not in self.statuses:
            return False
        if self.exclude_statuses is not None and record.status in self.exclude_statuses:
            return False
        if self.categorized is not None and record.is_categorized != self.categorized:
            return False
        return is_date_in_range(record.date, self.date_from, self.date_to)


class TransactionStore(ABC):
    """CRUD over cached transaction records.

    Writes are last-writer-wins per record; no optimistic locking.
    """

    @abstractmethod
    def find_one(self, tx_filter: TransactionFilter) -> Optional[TransactionRecord]:
        """Return the first record matching the filter, or None."""

    @abstractmethod
    def find_all(self, tx_filter: TransactionFilter) -> list[TransactionRecord]:
        """Return records matching the filter, ordered by date then id."""

    @abstractmethod
    def create(self, record: TransactionRecord) -> TransactionRecord:
        """Persist a new record.

        Raises:
            ValidationError: If the record breaks an invariant or duplicates
                an existing (user, tenant, external id, kind) key.
        """

    @abstractmethod
    def update(self, record: TransactionRecord, patch: dict[str, object]) -> TransactionRecord:
        """Apply ``patch`` (attribute name to new value) to a stored record.

        Raises:
            NotFoundError: If the record is not stored.
            ValidationError: If the patched record breaks an invariant; the
                stored record is left unchanged.
        """


class CategoryStore(ABC):
    """Access to user-defined categories."""

    @abstractmethod
    def get(self, user_id: str, tenant_id: str, category_id: str) -> Optional[Category]:
        """Return a category by id, or None."""

    @abstractmethod
    def list_active(self, user_id: str, tenant_id: str) -> list[Category]:
        """Return active categories ordered by name."""

    @abstractmethod
    def create(self, category: Category) -> Category:
        """Persist a new category."""


class CategoryRuleStore(ABC):
    """Access to categorization rules."""

    @abstractmethod
    def list_active(
        self, user_id: str, tenant_id: str, automatic_only: bool = False
    ) -> list[CategoryRule]:
        """Return active rules ordered by ascending priority."""

    @abstractmethod
    def create(self, rule: CategoryRule) -> CategoryRule:
        """Persist a new rule."""

    @abstractmethod
    def update(self, rule: CategoryRule, patch: dict[str, object]) -> CategoryRule:
        """Apply ``patch`` to a stored rule."""
