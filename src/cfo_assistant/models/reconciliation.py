"""Reconciliation matching and sync result models."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from cfo_assistant.models.transaction import TransactionRecord
from cfo_assistant.utils.date_utils import date_to_iso
from cfo_assistant.utils.decimal_utils import format_currency


class DocumentType(Enum):
    """Kind of document a bank transaction can be reconciled against."""

    INVOICE = "INVOICE"
    BILL = "BILL"


@dataclass
class MatchCandidate:
    """An outstanding document that may settle a bank transaction.

    Attributes:
        document_id: Provider document id.
        document_type: INVOICE or BILL.
        confidence: Heuristic match score, 0-100.
        number: Invoice/bill number.
        reference: Document reference.
        contact_name: Customer or supplier name.
        document_date: Issue date.
        due_date: Due date.
        amount: Document total.
        amount_due: Outstanding amount.
    """

    document_id: str
    document_type: DocumentType
    confidence: int
    number: Optional[str] = None
    reference: Optional[str] = None
    contact_name: Optional[str] = None
    document_date: Optional[date] = None
    due_date: Optional[date] = None
    amount: Optional[Decimal] = None
    amount_due: Optional[Decimal] = None

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "id": self.document_id,
            "type": self.document_type.value,
            "number": self.number,
            "reference": self.reference,
            "date": date_to_iso(self.document_date),
            "dueDate": date_to_iso(self.due_date),
            "contact": self.contact_name,
            "amount": format_currency(self.amount) if self.amount is not None else None,
            "amountDue": format_currency(self.amount_due) if self.amount_due is not None else None,
            "confidence": self.confidence,
        }


@dataclass
class PotentialMatches:
    """Ranked candidates for one bank transaction (highest confidence first)."""

    transaction: TransactionRecord
    invoices: list[MatchCandidate] = field(default_factory=list)
    bills: list[MatchCandidate] = field(default_factory=list)

    @property
    def best(self) -> Optional[MatchCandidate]:
        """The highest-confidence candidate on either side."""
        candidates = self.invoices + self.bills
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.confidence)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "transaction": self.transaction.to_dict(),
            "invoices": [c.to_dict() for c in self.invoices],
            "bills": [c.to_dict() for c in self.bills],
        }


@dataclass
class SyncResult:
    """Counts from pulling bank transactions into the local store."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    from_date: Optional[date] = None
    to_date: Optional[date] = None

    @property
    def total(self) -> int:
        """Provider transactions processed."""
        return self.created + self.updated

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "total": self.total,
            "fromDate": date_to_iso(self.from_date),
            "toDate": date_to_iso(self.to_date),
        }


@dataclass
class ReconciliationStats:
    """Reconciliation progress over a window of bank transactions."""

    total: int
    reconciled: int
    from_date: date
    to_date: date

    @property
    def pending(self) -> int:
        """Bank transactions still unreconciled."""
        return self.total - self.reconciled

    @property
    def reconciled_percentage(self) -> int:
        """Reconciled share as a rounded percentage."""
        if self.total == 0:
            return 0
        return round(self.reconciled / self.total * 100)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "totalTransactions": self.total,
            "reconciledTransactions": self.reconciled,
            "pendingTransactions": self.pending,
            "reconciledPercentage": self.reconciled_percentage,
            "period": {"fromDate": self.from_date.isoformat(), "toDate": self.to_date.isoformat()},
        }
