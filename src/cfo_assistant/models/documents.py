"""Accounting-provider document shapes.

Documents arrive in the provider's JSON shape. Both camelCase keys (as
emitted by the provider SDKs) and PascalCase keys (as emitted by the raw
REST API) are accepted.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from cfo_assistant.utils.date_utils import date_to_iso, days_between, safe_parse_date
from cfo_assistant.utils.decimal_utils import ZERO, format_currency, optional_decimal, safe_decimal

# Provider document statuses
STATUS_DRAFT = "DRAFT"
STATUS_SUBMITTED = "SUBMITTED"
STATUS_AUTHORISED = "AUTHORISED"
STATUS_PAID = "PAID"
STATUS_VOIDED = "VOIDED"
STATUS_DELETED = "DELETED"

# Repeating document status
STATUS_ACTIVE = "ACTIVE"

# Invoice types: receivable (sales invoice) and payable (bill)
TYPE_RECEIVABLE = "ACCREC"
TYPE_PAYABLE = "ACCPAY"


def get_field(data: dict[str, object], name: str, default: object = None) -> object:
    """Read a provider field by its camelCase name, falling back to PascalCase.

    Args:
        data: Provider document.
        name: camelCase field name, e.g. ``"amountDue"``.
        default: Value when neither spelling is present.

    Returns:
        Field value or default.
    """
    if name in data:
        return data[name]
    pascal = name[0].upper() + name[1:]
    if pascal in data:
        return data[pascal]
    return default


def _text(data: dict[str, object], name: str) -> Optional[str]:
    value = get_field(data, name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _mapping(data: dict[str, object], name: str) -> dict[str, object]:
    value = get_field(data, name)
    return value if isinstance(value, dict) else {}


class ScheduleUnit(Enum):
    """Recurrence unit of a repeating document."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


@dataclass
class Contact:
    """Customer or supplier reference on a document."""

    contact_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Contact":
        """Create from a provider contact object."""
        return cls(
            contact_id=_text(data, "contactID"),
            name=_text(data, "name"),
        )


@dataclass
class LineItem:
    """A single line on an invoice, bill or bank transaction."""

    line_amount: Decimal = ZERO
    description: Optional[str] = None
    account_code: Optional[str] = None
    account_name: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_amount: Optional[Decimal] = None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "LineItem":
        """Create from a provider line item object."""
        return cls(
            line_amount=safe_decimal(get_field(data, "lineAmount")),
            description=_text(data, "description"),
            account_code=_text(data, "accountCode"),
            account_name=_text(data, "accountName"),
            quantity=optional_decimal(get_field(data, "quantity")),
            unit_amount=optional_decimal(get_field(data, "unitAmount")),
        )


def _line_items(data: dict[str, object]) -> list[LineItem]:
    raw = get_field(data, "lineItems") or []
    if not isinstance(raw, list):
        return []
    return [LineItem.from_dict(item) for item in raw if isinstance(item, dict)]


@dataclass
class Invoice:
    """A sales invoice (ACCREC) or a bill (ACCPAY).

    Attributes:
        invoice_id: Provider id.
        invoice_type: ACCREC or ACCPAY.
        status: Provider status (AUTHORISED, PAID, ...).
        invoice_number: Human-facing number.
        reference: Free-text reference.
        invoice_date: Issue date.
        due_date: Payment due date.
        total: Document total.
        amount_due: Outstanding amount (None if the provider omitted it).
        amount_paid: Amount paid so far.
        contact: Customer or supplier.
        line_items: Document lines.
    """

    invoice_id: str
    invoice_type: str = TYPE_RECEIVABLE
    status: str = STATUS_DRAFT
    invoice_number: Optional[str] = None
    reference: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    total: Decimal = ZERO
    amount_due: Optional[Decimal] = None
    amount_paid: Decimal = ZERO
    contact: Contact = field(default_factory=Contact)
    line_items: list[LineItem] = field(default_factory=list)

    @property
    def is_bill(self) -> bool:
        """Check if this is a payable (bill)."""
        return self.invoice_type == TYPE_PAYABLE

    @property
    def contact_name(self) -> Optional[str]:
        """Contact name, if any."""
        return self.contact.name

    @property
    def outstanding(self) -> Decimal:
        """Amount still owed, falling back to the total when amount due is unknown."""
        if self.amount_due:
            return self.amount_due
        return self.total

    def days_overdue(self, as_of: date) -> int:
        """Whole days past the due date on ``as_of`` (0 if not overdue or undated)."""
        if self.due_date is None or self.due_date >= as_of:
            return 0
        return days_between(self.due_date, as_of)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Invoice":
        """Create from a provider invoice object."""
        return cls(
            invoice_id=_text(data, "invoiceID") or "",
            invoice_type=(_text(data, "type") or TYPE_RECEIVABLE).upper(),
            status=(_text(data, "status") or STATUS_DRAFT).upper(),
            invoice_number=_text(data, "invoiceNumber"),
            reference=_text(data, "reference"),
            invoice_date=safe_parse_date(get_field(data, "date")),
            due_date=safe_parse_date(get_field(data, "dueDate")),
            total=safe_decimal(get_field(data, "total")),
            amount_due=optional_decimal(get_field(data, "amountDue")),
            amount_paid=safe_decimal(get_field(data, "amountPaid")),
            contact=Contact.from_dict(_mapping(data, "contact")),
            line_items=_line_items(data),
        )

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "invoiceID": self.invoice_id,
            "type": self.invoice_type,
            "status": self.status,
            "invoiceNumber": self.invoice_number,
            "reference": self.reference,
            "date": date_to_iso(self.invoice_date),
            "dueDate": date_to_iso(self.due_date),
            "total": format_currency(self.total),
            "amountDue": format_currency(self.amount_due) if self.amount_due is not None else None,
            "contact": {"contactID": self.contact.contact_id, "name": self.contact.name},
        }


@dataclass
class BankAccountRef:
    """Bank account a bank transaction belongs to."""

    account_id: Optional[str] = None
    code: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "BankAccountRef":
        """Create from a provider bank account object."""
        return cls(
            account_id=_text(data, "accountID"),
            code=_text(data, "code"),
            name=_text(data, "name"),
        )


@dataclass
class BankTransaction:
    """A spend or receive money transaction on a bank account.

    The provider reports ``total`` as a positive number and encodes the
    direction in ``type`` (RECEIVE, SPEND, RECEIVE-OVERPAYMENT, ...).
    """

    bank_transaction_id: str
    transaction_type: str = "RECEIVE"
    status: str = STATUS_AUTHORISED
    transaction_date: Optional[date] = None
    total: Decimal = ZERO
    reference: Optional[str] = None
    sub_title: Optional[str] = None
    contact: Contact = field(default_factory=Contact)
    bank_account: BankAccountRef = field(default_factory=BankAccountRef)
    is_reconciled: bool = False
    line_items: list[LineItem] = field(default_factory=list)
    raw: dict[str, object] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_spend(self) -> bool:
        """Check if money leaves the account."""
        return self.transaction_type.startswith("SPEND")

    @property
    def signed_amount(self) -> Decimal:
        """Amount signed by direction: negative for spends."""
        magnitude = abs(self.total)
        return -magnitude if self.is_spend else magnitude

    @property
    def description(self) -> str:
        """Reference, falling back to the provider subtitle."""
        return self.reference or self.sub_title or ""

    @property
    def is_cancelled(self) -> bool:
        """Check if the provider deleted or voided this transaction."""
        return self.status in (STATUS_DELETED, STATUS_VOIDED)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "BankTransaction":
        """Create from a provider bank transaction object."""
        return cls(
            bank_transaction_id=_text(data, "bankTransactionID") or "",
            transaction_type=(_text(data, "type") or "RECEIVE").upper(),
            status=(_text(data, "status") or STATUS_AUTHORISED).upper(),
            transaction_date=safe_parse_date(get_field(data, "date")),
            total=safe_decimal(get_field(data, "total")),
            reference=_text(data, "reference"),
            sub_title=_text(data, "subTitle"),
            contact=Contact.from_dict(_mapping(data, "contact")),
            bank_account=BankAccountRef.from_dict(_mapping(data, "bankAccount")),
            is_reconciled=bool(get_field(data, "isReconciled", False)),
            line_items=_line_items(data),
            raw=dict(data),
        )


@dataclass
class Schedule:
    """Recurrence schedule of a repeating document.

    Attributes:
        unit: Recurrence unit (defaults to MONTHLY).
        interval: Number of units between occurrences (defaults to 1).
        next_scheduled_date: Next date the provider will raise the document.
        end_date: Date after which no more documents are raised.
    """

    unit: ScheduleUnit = ScheduleUnit.MONTHLY
    interval: int = 1
    next_scheduled_date: Optional[date] = None
    end_date: Optional[date] = None

    @classmethod
    def from_dict(cls, data: Optional[dict[str, object]]) -> "Schedule":
        """Create from a provider schedule object, defaulting to monthly."""
        if not data:
            return cls()

        unit_str = (_text(data, "unit") or ScheduleUnit.MONTHLY.value).upper()
        try:
            unit = ScheduleUnit(unit_str)
        except ValueError:
            unit = ScheduleUnit.MONTHLY

        # The provider calls the interval "period"
        raw_interval = get_field(data, "interval", get_field(data, "period"))
        try:
            interval = int(raw_interval) if raw_interval is not None else 1  # type: ignore[call-overload]
        except (TypeError, ValueError):
            interval = 1

        return cls(
            unit=unit,
            interval=max(interval, 1),
            next_scheduled_date=safe_parse_date(get_field(data, "nextScheduledDate")),
            end_date=safe_parse_date(get_field(data, "endDate")),
        )


@dataclass
class RepeatingDocument:
    """A repeating invoice or bill template."""

    document_id: str
    invoice_type: str = TYPE_RECEIVABLE
    status: str = STATUS_ACTIVE
    amount: Optional[Decimal] = None
    reference: Optional[str] = None
    contact: Contact = field(default_factory=Contact)
    schedule: Schedule = field(default_factory=Schedule)

    @property
    def is_active(self) -> bool:
        """Check if the template still raises documents."""
        return self.status == STATUS_ACTIVE

    @property
    def is_bill(self) -> bool:
        """Check if this template raises bills."""
        return self.invoice_type == TYPE_PAYABLE

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "RepeatingDocument":
        """Create from a provider repeating invoice object."""
        document_id = (
            _text(data, "repeatingInvoiceID")
            or _text(data, "repeatingBillID")
            or _text(data, "id")
            or ""
        )
        amount = optional_decimal(get_field(data, "amount"))
        if amount is None:
            amount = optional_decimal(get_field(data, "total"))

        schedule_data = get_field(data, "schedule")
        return cls(
            document_id=document_id,
            invoice_type=(_text(data, "type") or TYPE_RECEIVABLE).upper(),
            status=(_text(data, "status") or "").upper(),
            amount=amount,
            reference=_text(data, "reference"),
            contact=Contact.from_dict(_mapping(data, "contact")),
            schedule=Schedule.from_dict(schedule_data if isinstance(schedule_data, dict) else None),
        )
