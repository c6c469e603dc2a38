"""Locally cached transaction records."""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from cfo_assistant.exceptions import ValidationError
from cfo_assistant.utils.date_utils import parse_date, safe_parse_date
from cfo_assistant.utils.decimal_utils import format_currency, safe_decimal

# Free-form annotations written by categorization and reconciliation.
# Values are restricted to JSON/YAML scalars, lists and nested maps.
MetadataValue = Union[
    str, int, float, bool, None, list["MetadataValue"], dict[str, "MetadataValue"]
]
Metadata = dict[str, MetadataValue]


class TransactionKind(Enum):
    """Origin of a cached transaction."""

    BANK = "BANK"
    INVOICE = "INVOICE"
    BILL = "BILL"
    PAYMENT = "PAYMENT"
    CREDIT_NOTE = "CREDIT_NOTE"
    MANUAL = "MANUAL"


class TransactionStatus(Enum):
    """Local processing status of a transaction."""

    PENDING = "PENDING"
    CATEGORIZED = "CATEGORIZED"
    RECONCILED = "RECONCILED"
    VOIDED = "VOIDED"


def _parse_datetime(value: object) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        parsed = safe_parse_date(value)
        return datetime(parsed.year, parsed.month, parsed.day) if parsed else None


def _optional_str(value: object) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class TransactionRecord:
    """A transaction cached locally for one user and tenant.

    Created on first sync from a provider document and updated in place on
    later syncs; the upsert key is (user_id, tenant_id, external_id, kind).
    Records are never deleted; a cancelled provider document becomes VOIDED.

    Attributes:
        user_id: Owning user.
        tenant_id: Accounting-provider organization.
        kind: Where the transaction came from (BANK, INVOICE, ...).
        date: Transaction date.
        amount: Signed amount (negative = money out).
        external_id: Provider document id, if any.
        description: Free-text description.
        reference: Provider reference.
        contact_id: Provider contact id.
        contact_name: Provider contact name.
        account_id: Ledger/bank account id.
        account_code: Ledger account code.
        account_name: Ledger/bank account name.
        category_id: Assigned local category (None = uncategorized).
        status: Local processing status.
        is_reconciled: Whether the transaction is linked to a document.
        reconciliation_date: When it was reconciled.
        metadata: Annotations (categorization, reconciliation, provider data).
        last_synced_at: When the provider last supplied this record.
        id: Local identifier.
    """

    user_id: str
    tenant_id: str
    kind: TransactionKind
    date: date
    amount: Decimal
    external_id: Optional[str] = None
    description: str = ""
    reference: Optional[str] = None
    contact_id: Optional[str] = None
    contact_name: Optional[str] = None
    account_id: Optional[str] = None
    account_code: Optional[str] = None
    account_name: Optional[str] = None
    category_id: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING
    is_reconciled: bool = False
    reconciliation_date: Optional[datetime] = None
    metadata: Metadata = field(default_factory=dict)
    last_synced_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_categorized(self) -> bool:
        """Check if a category has been assigned."""
        return self.category_id is not None

    def get_metadata(self, path: str) -> MetadataValue:
        """Look up a metadata value by dotted path.

        Args:
            path: Key path such as ``"categorization.ruleId"``.

        Returns:
            The value, or None if any segment is missing.
        """
        current: MetadataValue = self.metadata
        for part in path.split("."):
            if not isinstance(current, dict) or part not in current:
                return None
            current = current[part]
        return current

    def validate(self) -> None:
        """Check the reconciliation invariant.

        Raises:
            ValidationError: If the record is flagged reconciled without
                RECONCILED status or a reconciliation date.
        """
        if self.is_reconciled and (
            self.status != TransactionStatus.RECONCILED
            or self.reconciliation_date is None
        ):
            raise ValidationError(
                "Reconciled transaction must have RECONCILED status and a reconciliation date",
                entity_id=self.id,
                operation="validate_transaction",
            )

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "TransactionRecord":
        """Create a record from its serialized (camelCase) form.

        Args:
            data: Dictionary as produced by ``to_dict``.

        Returns:
            A new TransactionRecord.
        """
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValidationError(
                "Transaction metadata must be a mapping",
                entity_id=_optional_str(data.get("id")),
                operation="load_transaction",
            )

        try:
            kind = TransactionKind(str(data["type"]).upper())
            status = TransactionStatus(str(data.get("status", "PENDING")).upper())
            tx_date = parse_date(data["date"])
        except (KeyError, ValueError) as e:
            raise ValidationError(
                f"Invalid transaction record: {e}",
                entity_id=_optional_str(data.get("id")),
                operation="load_transaction",
            ) from e

        record = cls(
            user_id=str(data.get("userId", "")),
            tenant_id=str(data.get("tenantId", "")),
            kind=kind,
            date=tx_date,
            amount=safe_decimal(data.get("amount")),
            external_id=_optional_str(data.get("externalId")),
            description=str(data.get("description") or ""),
            reference=_optional_str(data.get("reference")),
            contact_id=_optional_str(data.get("contactId")),
            contact_name=_optional_str(data.get("contactName")),
            account_id=_optional_str(data.get("accountId")),
            account_code=_optional_str(data.get("accountCode")),
            account_name=_optional_str(data.get("accountName")),
            category_id=_optional_str(data.get("categoryId")),
            status=status,
            is_reconciled=bool(data.get("isReconciled", False)),
            reconciliation_date=_parse_datetime(data.get("reconciliationDate")),
            metadata=dict(metadata),
            last_synced_at=_parse_datetime(data.get("lastSyncedAt")),
        )
        if data.get("id"):
            record.id = str(data["id"])
        return record

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON/YAML friendly dictionary."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "tenantId": self.tenant_id,
            "externalId": self.external_id,
            "type": self.kind.value,
            "date": self.date.isoformat(),
            "amount": format_currency(self.amount),
            "description": self.description,
            "reference": self.reference,
            "contactId": self.contact_id,
            "contactName": self.contact_name,
            "accountId": self.account_id,
            "accountCode": self.account_code,
            "accountName": self.account_name,
            "categoryId": self.category_id,
            "status": self.status.value,
            "isReconciled": self.is_reconciled,
            "reconciliationDate": (
                self.reconciliation_date.isoformat() if self.reconciliation_date else None
            ),
            "metadata": self.metadata,
            "lastSyncedAt": self.last_synced_at.isoformat() if self.last_synced_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"TransactionRecord(id={self.id!r}, date={self.date}, "
            f"amount={self.amount}, status={self.status.value})"
        )
