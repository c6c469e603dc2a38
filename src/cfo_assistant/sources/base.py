"""Abstract interface to the accounting provider."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence, TypeVar

from cfo_assistant.models.documents import BankTransaction, Invoice, RepeatingDocument
from cfo_assistant.models.report import FinancialReport
from cfo_assistant.utils.date_utils import is_date_in_range

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 100

# Report names understood by the provider
PROFIT_AND_LOSS = "ProfitAndLoss"
BALANCE_SHEET = "BalanceSheet"


@dataclass
class DocumentFilter:
    """Filter applied when fetching provider documents.

    Every criterion left as None is ignored.

    Attributes:
        statuses: Accepted document statuses.
        invoice_type: ACCREC or ACCPAY.
        date_from: Earliest document date (inclusive).
        date_to: Latest document date (inclusive).
        amount_due_min: Smallest accepted amount due (inclusive).
        amount_due_max: Largest accepted amount due (inclusive).
        page: 1-based page number.
        page_size: Documents per page.
    """

    statuses: Optional[tuple[str, ...]] = None
    invoice_type: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    amount_due_min: Optional[Decimal] = None
    amount_due_max: Optional[Decimal] = None
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def _date_ok(self, d: Optional[date]) -> bool:
        if self.date_from is None and self.date_to is None:
            return True
        if d is None:
            return False
        return is_date_in_range(d, self.date_from, self.date_to)

    def _status_ok(self, status: str) -> bool:
        return self.statuses is None or status in self.statuses

    def matches_invoice(self, invoice: Invoice) -> bool:
        """Check an invoice or bill against the filter."""
        if not self._status_ok(invoice.status):
            return False
        if self.invoice_type is not None and invoice.invoice_type != self.invoice_type:
            return False
        if not self._date_ok(invoice.invoice_date):
            return False
        if self.amount_due_min is not None or self.amount_due_max is not None:
            if invoice.amount_due is None:
                return False
            if self.amount_due_min is not None and invoice.amount_due < self.amount_due_min:
                return False
            if self.amount_due_max is not None and invoice.amount_due > self.amount_due_max:
                return False
        return True

    def matches_bank_transaction(self, transaction: BankTransaction) -> bool:
        """Check a bank transaction against the filter."""
        return self._status_ok(transaction.status) and self._date_ok(transaction.transaction_date)

    def matches_repeating(self, document: RepeatingDocument) -> bool:
        """Check a repeating document against the filter."""
        return self._status_ok(document.status)

    def paginate(self, items: Sequence[T]) -> list[T]:
        """Return the requested page of ``items``."""
        start = (max(self.page, 1) - 1) * self.page_size
        return list(items[start:start + self.page_size])


@dataclass
class ReportOptions:
    """Parameters for a report fetch.

    Profit-and-loss reports cover ``from_date``..``to_date``; balance sheets
    are taken at ``as_of``. ``periods`` asks for that many extra comparison
    columns of ``timeframe`` (MONTH, QUARTER, YEAR).
    """

    from_date: Optional[date] = None
    to_date: Optional[date] = None
    as_of: Optional[date] = None
    periods: Optional[int] = None
    timeframe: str = "MONTH"
    extra: dict[str, str] = field(default_factory=dict)


class AccountingProvider(ABC):
    """Read-only access to one accounting provider's documents and reports.

    Implementations raise ``UpstreamError`` when a fetch fails.
    """

    @property
    def name(self) -> str:
        """Return provider name for logging."""
        return self.__class__.__name__

    @abstractmethod
    def fetch_invoices(self, tenant_id: str, doc_filter: DocumentFilter) -> list[Invoice]:
        """Fetch invoices (receivables, and payables unless filtered out).

        Args:
            tenant_id: Provider organization.
            doc_filter: Status, type, date, amount and page criteria.

        Returns:
            Matching invoices.
        """

    @abstractmethod
    def fetch_bills(self, tenant_id: str, doc_filter: DocumentFilter) -> list[Invoice]:
        """Fetch bills (ACCPAY invoices).

        Args:
            tenant_id: Provider organization.
            doc_filter: Status, date, amount and page criteria.

        Returns:
            Matching bills.
        """

    @abstractmethod
    def fetch_bank_transactions(
        self, tenant_id: str, doc_filter: DocumentFilter
    ) -> list[BankTransaction]:
        """Fetch spend/receive money transactions.

        Args:
            tenant_id: Provider organization.
            doc_filter: Status, date and page criteria.

        Returns:
            Matching bank transactions.
        """

    @abstractmethod
    def fetch_repeating_invoices(
        self, tenant_id: str, doc_filter: DocumentFilter
    ) -> list[RepeatingDocument]:
        """Fetch repeating invoice templates."""

    @abstractmethod
    def fetch_repeating_bills(
        self, tenant_id: str, doc_filter: DocumentFilter
    ) -> list[RepeatingDocument]:
        """Fetch repeating bill templates."""

    @abstractmethod
    def fetch_report(
        self, tenant_id: str, report_name: str, options: ReportOptions
    ) -> FinancialReport:
        """Fetch a named report such as ProfitAndLoss or BalanceSheet.

        Args:
            tenant_id: Provider organization.
            report_name: Provider report name.
            options: Report period parameters.

        Returns:
            The report tree.
        """
