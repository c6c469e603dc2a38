"""Statistical anomaly detection over bank transactions, invoices, bills and margins.

Four sub-detectors run independently. When one of them fails (typically an
upstream fetch), the failure is logged and that detector contributes no
anomalies; the scan itself still completes.
"""

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional, Sequence

from cfo_assistant.config import AnomalyConfig
from cfo_assistant.models.anomaly import (
    Anomaly,
    AnomalyReport,
    AnomalyScan,
    AnomalyType,
    Period,
    Recommendation,
    Severity,
    TypeSummary,
)
from cfo_assistant.models.documents import (
    STATUS_AUTHORISED,
    TYPE_RECEIVABLE,
    BankTransaction,
    Invoice,
)
from cfo_assistant.models.report import FinancialReport
from cfo_assistant.sources.base import (
    PROFIT_AND_LOSS,
    AccountingProvider,
    DocumentFilter,
    ReportOptions,
)
from cfo_assistant.utils.date_utils import add_months
from cfo_assistant.utils.decimal_utils import quantize_cents
from cfo_assistant.utils.logging_config import LogContext, get_logger
from cfo_assistant.utils.stats import mean, standard_deviation, string_similarity

logger = get_logger(__name__)

# Profit-and-loss row labels used for margin analysis
REVENUE_ROW = "Revenue"
COST_OF_SALES_ROW = "Cost of Sales"
GROSS_PROFIT_ROW = "Gross Profit"
NET_PROFIT_ROW = "Net Profit"


def _money(value: float) -> str:
    return f"${value:,.2f}"


def _outlier_threshold(values: Sequence[float], multiplier: float) -> tuple[float, float]:
    """Return (mean, mean + multiplier * stddev)."""
    avg = mean(values)
    return avg, avg + multiplier * standard_deviation(values)


def detect_unusual_transactions(
    transactions: Sequence[BankTransaction],
    config: Optional[AnomalyConfig] = None,
) -> list[Anomaly]:
    """Flag bank transactions whose absolute amount is a statistical outlier."""
    config = config or AnomalyConfig()
    if not transactions:
        return []

    amounts = [abs(float(tx.total)) for tx in transactions]
    avg, threshold = _outlier_threshold(amounts, config.transaction_stddev_multiplier)

    anomalies = []
    for tx, amount in zip(transactions, amounts):
        if amount <= threshold:
            continue
        label = tx.reference or tx.sub_title or "Unknown"
        anomalies.append(Anomaly(
            anomaly_type=AnomalyType.UNUSUAL_TRANSACTION_AMOUNT,
            severity=Severity.MEDIUM,
            anomaly_date=tx.transaction_date,
            description=f"Unusually large transaction: {label} - {_money(amount)}",
            details={
                "transactionId": tx.bank_transaction_id,
                "reference": tx.reference,
                "description": tx.sub_title,
                "amount": tx.total,
                "averageAmount": round(avg, 2),
                "threshold": round(threshold, 2),
            },
        ))
    return anomalies


def _similar_text(a: BankTransaction, b: BankTransaction, threshold: float) -> bool:
    if a.reference and b.reference:
        return string_similarity(a.reference, b.reference) > threshold
    if a.description and b.description:
        return string_similarity(a.description, b.description) > threshold
    return False


def find_duplicate_clusters(
    transactions: Sequence[BankTransaction],
    config: Optional[AnomalyConfig] = None,
) -> list[list[BankTransaction]]:
    """Group likely duplicate bank transactions.

    Transactions are bucketed by absolute amount rounded to cents. Within a
    bucket, two transactions are linked when they are at most
    ``duplicate_window_days`` apart and their references (or descriptions)
    are similar. Clusters are the connected components of those links, so
    every transaction belongs to at most one cluster.

    Args:
        transactions: Bank transactions to inspect.
        config: Detection settings (defaults if None).

    Returns:
        Clusters of two or more transactions, each ordered by date.
    """
    config = config or AnomalyConfig()

    groups: dict[Decimal, list[BankTransaction]] = defaultdict(list)
    for tx in transactions:
        if tx.transaction_date is not None:
            groups[quantize_cents(abs(tx.total))].append(tx)

    clusters: list[list[BankTransaction]] = []
    for group in groups.values():
        if len(group) < 2:
            continue

        parent = list(range(len(group)))

        def find(i: int) -> int:
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        for i in range(len(group)):
            for j in range(i + 1, len(group)):
                a, b = group[i], group[j]
                days_apart = abs((a.transaction_date - b.transaction_date).days)  # type: ignore[operator]
                if days_apart <= config.duplicate_window_days and _similar_text(
                    a, b, config.duplicate_similarity_threshold
                ):
                    parent[find(j)] = find(i)

        members: dict[int, list[BankTransaction]] = defaultdict(list)
        for i, tx in enumerate(group):
            members[find(i)].append(tx)

        for cluster in members.values():
            if len(cluster) >= 2:
                clusters.append(sorted(cluster, key=lambda t: t.transaction_date))  # type: ignore[arg-type, return-value]

    return clusters


def detect_duplicate_transactions(
    transactions: Sequence[BankTransaction],
    config: Optional[AnomalyConfig] = None,
) -> list[Anomaly]:
    """Report each duplicate cluster as one anomaly."""
    anomalies = []
    for cluster in find_duplicate_clusters(transactions, config):
        amount = abs(cluster[0].total)
        anomalies.append(Anomaly(
            anomaly_type=AnomalyType.POTENTIAL_DUPLICATE_TRANSACTION,
            severity=Severity.HIGH,
            anomaly_date=cluster[0].transaction_date,
            description=(
                f"Potential duplicate transactions: {len(cluster)} transactions "
                f"for {_money(float(amount))} each"
            ),
            details={
                "transactionIds": [tx.bank_transaction_id for tx in cluster],
                "references": [tx.reference for tx in cluster],
                "amount": amount,
                "dates": [tx.transaction_date for tx in cluster],
            },
        ))
    return anomalies


def detect_invoice_anomalies(
    invoices: Sequence[Invoice],
    as_of: date,
    config: Optional[AnomalyConfig] = None,
) -> list[Anomaly]:
    """Flag outlier invoice totals and invoices long overdue at ``as_of``."""
    config = config or AnomalyConfig()
    anomalies: list[Anomaly] = []

    if invoices:
        totals = [float(inv.total) for inv in invoices]
        avg, threshold = _outlier_threshold(totals, config.invoice_stddev_multiplier)
        for inv, total in zip(invoices, totals):
            if total > threshold:
                anomalies.append(Anomaly(
                    anomaly_type=AnomalyType.UNUSUAL_INVOICE_AMOUNT,
                    severity=Severity.MEDIUM,
                    anomaly_date=inv.invoice_date,
                    description=f"Unusually large invoice: #{inv.invoice_number} - {_money(total)}",
                    details={
                        "invoiceId": inv.invoice_id,
                        "invoiceNumber": inv.invoice_number,
                        "contact": inv.contact_name,
                        "amount": inv.total,
                        "averageAmount": round(avg, 2),
                        "threshold": round(threshold, 2),
                    },
                ))

    for inv in invoices:
        if inv.status != STATUS_AUTHORISED:
            continue
        days_overdue = inv.days_overdue(as_of)
        if days_overdue <= config.overdue_days_threshold:
            continue
        amount = inv.outstanding
        anomalies.append(Anomaly(
            anomaly_type=AnomalyType.LONG_OVERDUE_INVOICE,
            severity=Severity.HIGH,
            anomaly_date=inv.due_date,
            description=(
                f"Invoice #{inv.invoice_number} is {days_overdue} days overdue - "
                f"{_money(float(amount))}"
            ),
            details={
                "invoiceId": inv.invoice_id,
                "invoiceNumber": inv.invoice_number,
                "contact": inv.contact_name,
                "amount": amount,
                "dueDate": inv.due_date,
                "daysOverdue": days_overdue,
            },
        ))

    return anomalies


def detect_expense_anomalies(
    bills: Sequence[Invoice],
    period: Period,
    config: Optional[AnomalyConfig] = None,
) -> list[Anomaly]:
    """Flag expense accounts where some bill lines are statistical outliers.

    Line items are grouped by account code; accounts with fewer than
    ``expense_min_data_points`` lines are skipped.
    """
    config = config or AnomalyConfig()

    by_account: dict[str, list[float]] = defaultdict(list)
    names: dict[str, Optional[str]] = {}
    for bill in bills:
        for line in bill.line_items:
            if not line.account_code:
                continue
            by_account[line.account_code].append(float(line.line_amount))
            names.setdefault(line.account_code, line.account_name)

    anomalies = []
    for code, amounts in by_account.items():
        if len(amounts) < config.expense_min_data_points:
            continue
        avg, threshold = _outlier_threshold(amounts, config.expense_stddev_multiplier)
        unusual = [a for a in amounts if a > threshold]
        if not unusual:
            continue
        name = names.get(code) or code
        anomalies.append(Anomaly(
            anomaly_type=AnomalyType.UNUSUAL_EXPENSE_PATTERN,
            severity=Severity.MEDIUM,
            period=period,
            description=f"Unusual spending in {name} ({code})",
            details={
                "accountCode": code,
                "accountName": names.get(code),
                "averageAmount": round(avg, 2),
                "threshold": round(threshold, 2),
                "unusualExpenses": len(unusual),
                "totalExpenses": len(amounts),
            },
        ))
    return anomalies


def _cell_number(row, index: int) -> float:
    if row is None or index >= len(row.cells):
        return 0.0
    value = row.cells[index].number
    return 0.0 if value is None else value


def detect_margin_anomalies(
    report: FinancialReport,
    config: Optional[AnomalyConfig] = None,
) -> list[Anomaly]:
    """Flag month-over-month gross and net margin drops.

    The report's value columns are periods; the last column is the total
    and is ignored. A drop is flagged when the margin falls by more than
    ``margin_decline_points`` and the previous margin was positive.
    """
    config = config or AnomalyConfig()

    revenue_row = report.find_row(REVENUE_ROW)
    cost_row = report.find_row(COST_OF_SALES_ROW)
    gross_row = report.find_row(GROSS_PROFIT_ROW)
    net_row = report.find_row(NET_PROFIT_ROW)
    if revenue_row is None or gross_row is None or net_row is None:
        logger.debug(f"Report {report.report_name} lacks margin rows, skipping margin check")
        return []

    months = []
    for i in range(1, len(revenue_row.cells) - 1):
        revenue = _cell_number(revenue_row, i)
        gross = _cell_number(gross_row, i)
        net = _cell_number(net_row, i)
        months.append({
            "period": report.column_label(i),
            "revenue": revenue,
            "costOfSales": _cell_number(cost_row, i),
            "grossMargin": gross / revenue * 100 if revenue else 0.0,
            "netMargin": net / revenue * 100 if revenue else 0.0,
        })

    anomalies = []
    checks = (
        ("grossMargin", AnomalyType.GROSS_MARGIN_DECLINE, "Gross"),
        ("netMargin", AnomalyType.NET_MARGIN_DECLINE, "Net"),
    )
    for previous, current in zip(months, months[1:]):
        for key, anomaly_type, label in checks:
            change = current[key] - previous[key]
            if change < -config.margin_decline_points and previous[key] > 0:
                anomalies.append(Anomaly(
                    anomaly_type=anomaly_type,
                    severity=Severity.HIGH,
                    period=Period(from_label=str(previous["period"]), to_label=str(current["period"])),
                    description=(
                        f"{label} profit margin declined from {previous[key]:.1f}% "
                        f"to {current[key]:.1f}%"
                    ),
                    details={
                        "currentPeriod": current["period"],
                        "previousPeriod": previous["period"],
                        "currentMargin": round(current[key], 2),
                        "previousMargin": round(previous[key], 2),
                        "change": round(change, 2),
                        "currentRevenue": current["revenue"],
                        "previousRevenue": previous["revenue"],
                    },
                ))
    return anomalies


def sort_anomalies(anomalies: Sequence[Anomaly]) -> list[Anomaly]:
    """Order by severity (HIGH first), then most recent first; undated last."""
    def key(anomaly: Anomaly) -> tuple[int, bool, int]:
        when = anomaly.sort_date
        return (anomaly.severity.rank, when is None, -when.toordinal() if when else 0)

    return sorted(anomalies, key=key)


def generate_recommendations(anomalies: Sequence[Anomaly]) -> list[Recommendation]:
    """Suggest follow-up actions for the kinds of anomaly found."""
    counts: dict[AnomalyType, int] = defaultdict(int)
    for anomaly in anomalies:
        counts[anomaly.anomaly_type] += 1

    recommendations = []

    duplicates = counts[AnomalyType.POTENTIAL_DUPLICATE_TRANSACTION]
    if duplicates:
        recommendations.append(Recommendation(
            priority=Severity.HIGH,
            recommendation="Review potential duplicate transactions",
            description=(
                f"Found {duplicates} potential duplicate transactions. Review these "
                "transactions and contact your bank if necessary."
            ),
            action_items=[
                "Compare transaction details for similarities",
                "Check bank statements for confirmation",
                "Request refunds for any confirmed duplicates",
            ],
        ))

    overdue = counts[AnomalyType.LONG_OVERDUE_INVOICE]
    if overdue:
        recommendations.append(Recommendation(
            priority=Severity.HIGH,
            recommendation="Address long overdue invoices",
            description=(
                f"Found {overdue} invoices that are significantly overdue. Take immediate "
                "action to collect these payments."
            ),
            action_items=[
                "Contact customers with overdue invoices",
                "Consider offering payment plans",
                "Review credit terms for these customers",
                "Implement stricter credit control procedures",
            ],
        ))

    if counts[AnomalyType.GROSS_MARGIN_DECLINE] or counts[AnomalyType.NET_MARGIN_DECLINE]:
        recommendations.append(Recommendation(
            priority=Severity.HIGH,
            recommendation="Investigate profit margin decline",
            description=(
                "Significant decline in profit margins detected. Review pricing strategy "
                "and cost structure."
            ),
            action_items=[
                "Analyze cost of goods sold for increases",
                "Review pricing strategy",
                "Identify specific products or services with margin erosion",
                "Evaluate supplier contracts and negotiate better terms",
            ],
        ))

    expenses = counts[AnomalyType.UNUSUAL_EXPENSE_PATTERN]
    if expenses:
        recommendations.append(Recommendation(
            priority=Severity.MEDIUM,
            recommendation="Review unusual expense patterns",
            description=(
                f"Found unusual spending patterns in {expenses} expense categories. Review "
                "these expenses for potential issues."
            ),
            action_items=[
                "Audit expense categories with unusual patterns",
                "Implement approval processes for large expenses",
                "Review vendor contracts in affected categories",
                "Consider setting budget alerts for these categories",
            ],
        ))

    return recommendations


def build_report(scan: AnomalyScan) -> AnomalyReport:
    """Group a scan by type and attach recommendations."""
    by_type: dict[AnomalyType, list[Anomaly]] = {}
    for anomaly in scan.anomalies:
        by_type.setdefault(anomaly.anomaly_type, []).append(anomaly)

    summaries = [
        TypeSummary(
            anomaly_type=anomaly_type,
            count=len(members),
            high_severity=sum(1 for a in members if a.severity == Severity.HIGH),
        )
        for anomaly_type, members in by_type.items()
    ]
    return AnomalyReport(
        scan=scan,
        by_type=by_type,
        type_summaries=summaries,
        recommendations=generate_recommendations(scan.anomalies),
    )


class AnomalyDetector:
    """Runs every sub-detector against a tenant's provider data."""

    def __init__(
        self,
        provider: AccountingProvider,
        config: Optional[AnomalyConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize anomaly detector.

        Args:
            provider: Source of transactions, invoices, bills and reports.
            config: Detection thresholds (defaults if None).
            clock: Returns the current time; injectable for tests.
        """
        self.provider = provider
        self.config = config or AnomalyConfig()
        self.clock = clock

    def _run(self, name: str, detector: Callable[[], list[Anomaly]]) -> list[Anomaly]:
        try:
            anomalies = detector()
        except Exception:
            logger.exception(f"{name} detection failed, continuing without it")
            return []
        logger.debug(f"{name} detection found {len(anomalies)} anomalies")
        return anomalies

    def _transactions(self, tenant_id: str, from_date: date, to_date: date) -> list[Anomaly]:
        transactions = self.provider.fetch_bank_transactions(tenant_id, DocumentFilter(
            date_from=from_date, date_to=to_date, page_size=self.config.page_size,
        ))
        return (
            detect_unusual_transactions(transactions, self.config)
            + detect_duplicate_transactions(transactions, self.config)
        )

    def _invoices(self, tenant_id: str, from_date: date, to_date: date) -> list[Anomaly]:
        invoices = self.provider.fetch_invoices(tenant_id, DocumentFilter(
            invoice_type=TYPE_RECEIVABLE,
            date_from=from_date,
            date_to=to_date,
            page_size=self.config.page_size,
        ))
        return detect_invoice_anomalies(invoices, to_date, self.config)

    def _expenses(self, tenant_id: str, from_date: date, to_date: date) -> list[Anomaly]:
        bills = self.provider.fetch_bills(tenant_id, DocumentFilter(
            date_from=from_date, date_to=to_date, page_size=self.config.page_size,
        ))
        period = Period(from_label=from_date.isoformat(), to_label=to_date.isoformat())
        return detect_expense_anomalies(bills, period, self.config)

    def _margins(
        self, tenant_id: str, from_date: date, to_date: date, months: int
    ) -> list[Anomaly]:
        report = self.provider.fetch_report(tenant_id, PROFIT_AND_LOSS, ReportOptions(
            from_date=from_date, to_date=to_date, periods=months, timeframe="MONTH",
        ))
        return detect_margin_anomalies(report, self.config)

    def detect(
        self,
        tenant_id: str,
        months: Optional[int] = None,
        to_date: Optional[date] = None,
    ) -> AnomalyScan:
        """Scan the ``months`` months ending at ``to_date`` (today if None).

        Returns:
            Sorted anomalies and the scan period.
        """
        months = months if months is not None else self.config.window_months
        to_date = to_date or self.clock().date()
        from_date = add_months(to_date, -months)

        with LogContext(logger, "detect_anomalies", tenant_id=tenant_id, months=months):
            anomalies = (
                self._run("Transaction", lambda: self._transactions(tenant_id, from_date, to_date))
                + self._run("Invoice", lambda: self._invoices(tenant_id, from_date, to_date))
                + self._run("Expense", lambda: self._expenses(tenant_id, from_date, to_date))
                + self._run(
                    "Profit margin",
                    lambda: self._margins(tenant_id, from_date, to_date, months),
                )
            )

        logger.info(
            f"Detected {len(anomalies)} anomalies for tenant {tenant_id} "
            f"between {from_date} and {to_date}"
        )
        return AnomalyScan(anomalies=sort_anomalies(anomalies), from_date=from_date, to_date=to_date)

    def generate_report(
        self,
        tenant_id: str,
        months: Optional[int] = None,
        to_date: Optional[date] = None,
    ) -> AnomalyReport:
        """Scan and summarize anomalies with recommendations."""
        return build_report(self.detect(tenant_id, months, to_date))
