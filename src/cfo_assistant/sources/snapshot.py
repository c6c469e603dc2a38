"""Accounting provider backed by exported JSON/YAML snapshot files.

Layout (per tenant directory, falling back to the snapshot root)::

    <root>/<tenant_id>/invoices.json
    <root>/<tenant_id>/bills.json              (optional; else ACCPAY invoices)
    <root>/<tenant_id>/bank_transactions.json
    <root>/<tenant_id>/repeating_invoices.json
    <root>/<tenant_id>/repeating_bills.json
    <root>/<tenant_id>/reports/ProfitAndLoss.json
    <root>/<tenant_id>/reports/BalanceSheet.json

Each collection file holds a list of provider documents, or the provider
envelope (``{"Invoices": [...]}``). ``.yaml``/``.yml`` files are accepted
in place of ``.json``. Missing collection files mean "no documents";
a missing report is an upstream failure.
"""

from pathlib import Path
from typing import Callable, Optional, TypeVar

import yaml

from cfo_assistant.exceptions import UpstreamError
from cfo_assistant.models.documents import (
    TYPE_PAYABLE,
    BankTransaction,
    Invoice,
    RepeatingDocument,
)
from cfo_assistant.models.report import FinancialReport
from cfo_assistant.sources.base import AccountingProvider, DocumentFilter, ReportOptions
from cfo_assistant.utils.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SNAPSHOT_EXTENSIONS = (".json", ".yaml", ".yml")

# Envelope keys the provider wraps collections in
ENVELOPE_KEYS = {
    "invoices": ("invoices", "Invoices"),
    "bills": ("bills", "Bills", "invoices", "Invoices"),
    "bank_transactions": ("bankTransactions", "BankTransactions"),
    "repeating_invoices": ("repeatingInvoices", "RepeatingInvoices"),
    "repeating_bills": ("repeatingBills", "RepeatingBills", "repeatingInvoices", "RepeatingInvoices"),
}


class SnapshotProvider(AccountingProvider):
    """Serve provider documents from files on disk."""

    def __init__(self, root: Path):
        """Initialize the provider.

        Args:
            root: Snapshot root directory.
        """
        self.root = Path(root)
        self._cache: dict[Path, object] = {}

    def _tenant_dir(self, tenant_id: str) -> Path:
        tenant_dir = self.root / tenant_id
        return tenant_dir if tenant_dir.is_dir() else self.root

    def _find_file(self, directory: Path, stem: str) -> Optional[Path]:
        for ext in SNAPSHOT_EXTENSIONS:
            candidate = directory / f"{stem}{ext}"
            if candidate.exists():
                return candidate
        return None

    def _load(self, path: Path, operation: str, tenant_id: str) -> object:
        if path in self._cache:
            return self._cache[path]

        try:
            with open(path, encoding="utf-8") as f:
                content = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise UpstreamError(
                f"Failed to read snapshot {path}: {e}",
                entity_id=tenant_id,
                operation=operation,
            ) from e

        logger.debug(f"Loaded snapshot {path}")
        self._cache[path] = content
        return content

    def _load_collection(self, tenant_id: str, stem: str, operation: str) -> list[dict[str, object]]:
        path = self._find_file(self._tenant_dir(tenant_id), stem)
        if path is None:
            logger.debug(f"No {stem} snapshot for tenant {tenant_id}")
            return []

        content = self._load(path, operation, tenant_id)
        if content is None:
            return []
        if isinstance(content, dict):
            for key in ENVELOPE_KEYS[stem]:
                if key in content:
                    content = content[key]
                    break
        if not isinstance(content, list):
            raise UpstreamError(
                f"Snapshot {path} must contain a list of documents",
                entity_id=tenant_id,
                operation=operation,
            )
        return [item for item in content if isinstance(item, dict)]

    def _fetch(
        self,
        tenant_id: str,
        stem: str,
        operation: str,
        parse: Callable[[dict[str, object]], T],
        keep: Callable[[T], bool],
        doc_filter: DocumentFilter,
    ) -> list[T]:
        documents = [parse(raw) for raw in self._load_collection(tenant_id, stem, operation)]
        matched = [d for d in documents if keep(d)]
        page = doc_filter.paginate(matched)
        logger.debug(f"{operation}: {len(page)} of {len(documents)} {stem} for tenant {tenant_id}")
        return page

    def fetch_invoices(self, tenant_id: str, doc_filter: DocumentFilter) -> list[Invoice]:
        """Fetch invoices from ``invoices.json``."""
        return self._fetch(
            tenant_id, "invoices", "fetch_invoices",
            Invoice.from_dict, doc_filter.matches_invoice, doc_filter,
        )

    def fetch_bills(self, tenant_id: str, doc_filter: DocumentFilter) -> list[Invoice]:
        """Fetch bills from ``bills.json``, or ACCPAY entries of ``invoices.json``."""
        stem = "bills"
        if self._find_file(self._tenant_dir(tenant_id), stem) is None:
            stem = "invoices"

        def keep(invoice: Invoice) -> bool:
            return invoice.invoice_type == TYPE_PAYABLE and doc_filter.matches_invoice(invoice)

        def parse(raw: dict[str, object]) -> Invoice:
            invoice = Invoice.from_dict(raw)
            if stem == "bills" and not (raw.get("type") or raw.get("Type")):
                invoice.invoice_type = TYPE_PAYABLE
            return invoice

        return self._fetch(tenant_id, stem, "fetch_bills", parse, keep, doc_filter)

    def fetch_bank_transactions(
        self, tenant_id: str, doc_filter: DocumentFilter
    ) -> list[BankTransaction]:
        """Fetch bank transactions from ``bank_transactions.json``."""
        return self._fetch(
            tenant_id, "bank_transactions", "fetch_bank_transactions",
            BankTransaction.from_dict, doc_filter.matches_bank_transaction, doc_filter,
        )

    def fetch_repeating_invoices(
        self, tenant_id: str, doc_filter: DocumentFilter
    ) -> list[RepeatingDocument]:
        """Fetch repeating invoices from ``repeating_invoices.json``."""
        return self._fetch(
            tenant_id, "repeating_invoices", "fetch_repeating_invoices",
            RepeatingDocument.from_dict, doc_filter.matches_repeating, doc_filter,
        )

    def fetch_repeating_bills(
        self, tenant_id: str, doc_filter: DocumentFilter
    ) -> list[RepeatingDocument]:
        """Fetch repeating bills from ``repeating_bills.json``."""
        def parse(raw: dict[str, object]) -> RepeatingDocument:
            document = RepeatingDocument.from_dict(raw)
            if not (raw.get("type") or raw.get("Type")):
                document.invoice_type = TYPE_PAYABLE
            return document

        return self._fetch(
            tenant_id, "repeating_bills", "fetch_repeating_bills",
            parse, doc_filter.matches_repeating, doc_filter,
        )

    def fetch_report(
        self, tenant_id: str, report_name: str, options: ReportOptions
    ) -> FinancialReport:
        """Fetch ``reports/<report_name>.json``.

        Snapshots are static, so the period in ``options`` is not applied.
        """
        path = self._find_file(self._tenant_dir(tenant_id) / "reports", report_name)
        if path is None:
            raise UpstreamError(
                f"Report {report_name} is not available for tenant {tenant_id}",
                entity_id=tenant_id,
                operation="fetch_report",
            )

        content = self._load(path, "fetch_report", tenant_id)
        if not isinstance(content, dict):
            raise UpstreamError(
                f"Report snapshot {path} must contain a mapping",
                entity_id=tenant_id,
                operation="fetch_report",
            )

        report = FinancialReport.from_dict(content)
        if not report.report_name:
            report.report_name = report_name
        logger.debug(
            f"Loaded {report_name} report for tenant {tenant_id} "
            f"(from={options.from_date}, to={options.to_date}, as_of={options.as_of})"
        )
        return report
