"""Cash-flow forecasting and cash-flow issue detection.

``generate_forecast`` is a pure function of its inputs: the same documents,
start date and balance always produce the same timeline. ``CashFlowForecaster``
wires it to an accounting provider.
"""

import math
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional, Sequence

from cfo_assistant.config import ForecastConfig
from cfo_assistant.exceptions import ValidationError
from cfo_assistant.models.anomaly import Severity
from cfo_assistant.models.documents import (
    STATUS_AUTHORISED,
    TYPE_RECEIVABLE,
    Invoice,
    RepeatingDocument,
    Schedule,
    ScheduleUnit,
)
from cfo_assistant.models.forecast import (
    CashFlowIssue,
    CashFlowIssueReport,
    CashFlowIssueType,
    CashFlowItem,
    CashFlowSource,
    CashFlowTrend,
    DailyForecast,
    ForecastTimeline,
    PeriodForecast,
)
from cfo_assistant.sources.base import (
    BALANCE_SHEET,
    AccountingProvider,
    DocumentFilter,
    ReportOptions,
)
from cfo_assistant.utils.date_utils import add_months, add_years, month_end
from cfo_assistant.utils.decimal_utils import ZERO, format_currency, safe_decimal, sum_amounts
from cfo_assistant.utils.logging_config import LogContext, get_logger

logger = get_logger(__name__)

# Balance-sheet row holding the bank balance
BANK_ROW_LABEL = "Bank"

# (max days overdue, probability reduction); beyond the last step: 70
OVERDUE_PROBABILITY_STEPS = ((7, 10), (30, 30), (90, 50))
OVERDUE_PROBABILITY_FLOOR_STEP = 70

NEGATIVE_BALANCE_RECOMMENDATIONS = [
    "Accelerate customer payments",
    "Delay non-essential expenses",
    "Consider short-term financing options",
]
LOW_BALANCE_RECOMMENDATIONS = [
    "Review upcoming expenses",
    "Prioritize customer collections",
    "Prepare contingency plans",
]
SIGNIFICANT_OUTFLOW_RECOMMENDATIONS = [
    "Verify all large payments are necessary",
    "Consider renegotiating payment terms",
    "Ensure sufficient funds are available",
]
DECLINING_CASH_FLOW_RECOMMENDATIONS = [
    "Review pricing strategy",
    "Identify cost-saving opportunities",
    "Develop new revenue streams",
]


def estimate_payment_probability(
    invoice: Invoice,
    as_of: date,
    base_probability: int = 80,
) -> int:
    """Estimate the chance (%) that an invoice is paid on its due date.

    Starts at ``base_probability`` and drops with overdue age: 10 points up
    to a week overdue, 30 up to a month, 50 up to three months, 70 beyond.

    Args:
        invoice: Outstanding invoice.
        as_of: Reference date for overdue age.
        base_probability: Probability for an invoice not yet overdue.

    Returns:
        Probability clamped to 0-100.
    """
    probability = base_probability
    overdue = invoice.days_overdue(as_of)
    if overdue > 0:
        reduction = OVERDUE_PROBABILITY_FLOOR_STEP
        for max_days, step in OVERDUE_PROBABILITY_STEPS:
            if overdue <= max_days:
                reduction = step
                break
        probability -= reduction
    return max(0, min(100, probability))


def _advance(anchor: date, unit: ScheduleUnit, steps: int) -> date:
    if unit == ScheduleUnit.DAILY:
        return anchor + timedelta(days=steps)
    if unit == ScheduleUnit.WEEKLY:
        return anchor + timedelta(weeks=steps)
    if unit == ScheduleUnit.YEARLY:
        return add_years(anchor, steps)
    return add_months(anchor, steps)


def schedule_occurrences(schedule: Schedule, start: date, end: date) -> list[date]:
    """Expand a recurrence schedule into dates within ``[start, end]``.

    Occurrences are counted from the schedule's next scheduled date (or
    ``start`` when it has none); every occurrence is computed from that
    anchor so month-end dates do not drift.

    Args:
        schedule: Recurrence schedule.
        start: First day of the window.
        end: Last day of the window (inclusive).

    Returns:
        Occurrence dates in ascending order.
    """
    anchor = schedule.next_scheduled_date or start
    last = min(end, schedule.end_date) if schedule.end_date else end
    interval = max(schedule.interval, 1)

    occurrences: list[date] = []
    k = 0
    while True:
        occurrence = _advance(anchor, schedule.unit, k * interval)
        k += 1
        if occurrence > last:
            break
        if occurrence >= start:
            occurrences.append(occurrence)
    return occurrences


def _build_weeks(start: date, end: date, days: int) -> list[PeriodForecast]:
    weeks = []
    for i in range(math.ceil(days / 7)):
        week_start = start + timedelta(days=i * 7)
        weeks.append(PeriodForecast(
            start_date=week_start,
            end_date=min(week_start + timedelta(days=6), end),
        ))
    return weeks


def _build_months(start: date, end: date) -> list[PeriodForecast]:
    months = []
    period_start = start
    while period_start <= end:
        period_end = min(month_end(period_start), end)
        months.append(PeriodForecast(
            start_date=period_start,
            end_date=period_end,
            year=period_start.year,
            month=period_start.month,
        ))
        period_start = period_end + timedelta(days=1)
    return months


def _roll_up(periods: Iterable[PeriodForecast], daily: Sequence[DailyForecast]) -> None:
    for period in periods:
        days = [d for d in daily if period.start_date <= d.day <= period.end_date]
        period.total_inflow = sum_amounts(d.total_inflow for d in days)
        period.total_outflow = sum_amounts(d.total_outflow for d in days)
        if days:
            period.ending_balance = days[-1].running_balance


def _contact_label(name: Optional[str]) -> str:
    return name or "Unknown"


def generate_forecast(
    start_date: date,
    days: int,
    current_balance: Decimal,
    invoices: Iterable[Invoice] = (),
    bills: Iterable[Invoice] = (),
    repeating_invoices: Iterable[RepeatingDocument] = (),
    repeating_bills: Iterable[RepeatingDocument] = (),
    as_of: Optional[date] = None,
    config: Optional[ForecastConfig] = None,
) -> ForecastTimeline:
    """Project the cash position day by day.

    Invoices contribute inflows weighted by their payment probability;
    bills are full-weight outflows. Documents without a due date or amount
    due, or due outside the window, are skipped. Active repeating documents
    contribute one item per schedule occurrence in the window.

    Args:
        start_date: First forecast day.
        days: Number of days to forecast (at least 1).
        current_balance: Balance before the first day.
        invoices: Outstanding receivables.
        bills: Outstanding payables.
        repeating_invoices: Repeating invoice templates.
        repeating_bills: Repeating bill templates.
        as_of: Reference date for overdue age (defaults to ``start_date``).
        config: Forecast settings (defaults if None).

    Returns:
        The forecast timeline.

    Raises:
        ValidationError: If ``days`` is less than 1.
    """
    if days < 1:
        raise ValidationError(f"Forecast days must be at least 1, got {days}", operation="generate_forecast")

    config = config or ForecastConfig()
    as_of = as_of or start_date
    end_date = start_date + timedelta(days=days - 1)

    daily = [DailyForecast(day=start_date + timedelta(days=i)) for i in range(days)]
    by_date = {d.day: d for d in daily}

    for invoice in invoices:
        if invoice.due_date is None or not invoice.amount_due:
            continue
        day = by_date.get(invoice.due_date)
        if day is None:
            continue
        day.add_inflow(CashFlowItem(
            source=CashFlowSource.INVOICE,
            source_id=invoice.invoice_id,
            reference=invoice.invoice_number,
            description=f"Invoice {invoice.invoice_number} - {_contact_label(invoice.contact_name)}",
            contact_name=invoice.contact_name,
            amount=invoice.amount_due,
            probability=estimate_payment_probability(
                invoice, as_of, config.base_payment_probability
            ),
            due_date=invoice.due_date,
        ))

    for bill in bills:
        if bill.due_date is None or not bill.amount_due:
            continue
        day = by_date.get(bill.due_date)
        if day is None:
            continue
        day.add_outflow(CashFlowItem(
            source=CashFlowSource.BILL,
            source_id=bill.invoice_id,
            reference=bill.invoice_number,
            description=f"Bill {bill.invoice_number} - {_contact_label(bill.contact_name)}",
            contact_name=bill.contact_name,
            amount=bill.amount_due,
            probability=100,
            due_date=bill.due_date,
        ))

    repeating = (
        (repeating_invoices, CashFlowSource.REPEATING_INVOICE,
         config.repeating_invoice_probability, "Recurring Invoice"),
        (repeating_bills, CashFlowSource.REPEATING_BILL,
         config.repeating_bill_probability, "Recurring Bill"),
    )
    for documents, source, probability, label in repeating:
        for document in documents:
            if not document.is_active or not document.amount:
                continue
            for occurrence in schedule_occurrences(document.schedule, start_date, end_date):
                item = CashFlowItem(
                    source=source,
                    source_id=document.document_id,
                    reference=document.reference,
                    description=f"{label} - {_contact_label(document.contact.name)}",
                    contact_name=document.contact.name,
                    amount=document.amount,
                    probability=probability,
                    due_date=occurrence,
                )
                if source == CashFlowSource.REPEATING_INVOICE:
                    by_date[occurrence].add_inflow(item)
                else:
                    by_date[occurrence].add_outflow(item)

    balance = current_balance
    for day in daily:
        balance += day.net_cash_flow
        day.running_balance = balance

    timeline = ForecastTimeline(
        start_date=start_date,
        end_date=end_date,
        days=days,
        starting_balance=current_balance,
        daily=daily,
        weekly=_build_weeks(start_date, end_date, days),
        monthly=_build_months(start_date, end_date),
        lowest_balance=current_balance,
        lowest_balance_date=start_date,
        highest_balance=current_balance,
        highest_balance_date=start_date,
    )
    _roll_up(timeline.weekly, daily)
    _roll_up(timeline.monthly, daily)

    for day in daily:
        if day.running_balance < timeline.lowest_balance:
            timeline.lowest_balance = day.running_balance
            timeline.lowest_balance_date = day.day
        if day.running_balance > timeline.highest_balance:
            timeline.highest_balance = day.running_balance
            timeline.highest_balance_date = day.day

    return timeline


def analyze_weekly_trend(weeks: Sequence[PeriodForecast]) -> CashFlowTrend:
    """Classify week-over-week net cash flow direction.

    A direction wins when its changes outnumber the other direction's
    more than two to one.
    """
    if len(weeks) < 2:
        return CashFlowTrend.STABLE

    changes = [
        weeks[i].net_cash_flow - weeks[i - 1].net_cash_flow for i in range(1, len(weeks))
    ]
    positive = sum(1 for c in changes if c > 0)
    negative = sum(1 for c in changes if c < 0)

    if positive > negative * 2:
        return CashFlowTrend.IMPROVING
    if negative > positive * 2:
        return CashFlowTrend.DECLINING
    return CashFlowTrend.STABLE


def detect_cash_flow_issues(
    forecast: ForecastTimeline,
    config: Optional[ForecastConfig] = None,
) -> CashFlowIssueReport:
    """Flag negative or low balances, large outflows and a declining trend.

    Args:
        forecast: Forecast to inspect.
        config: Thresholds (defaults if None).

    Returns:
        Issues in detection order plus the forecast summary.
    """
    config = config or ForecastConfig()
    issues: list[CashFlowIssue] = []

    first_negative = next((d for d in forecast.daily if d.running_balance < 0), None)
    if first_negative is not None:
        issues.append(CashFlowIssue(
            issue_type=CashFlowIssueType.NEGATIVE_BALANCE,
            severity=Severity.HIGH,
            issue_date=first_negative.day,
            description=(
                f"Projected negative cash balance of "
                f"{format_currency(first_negative.running_balance)} on {first_negative.day.isoformat()}"
            ),
            recommendations=list(NEGATIVE_BALANCE_RECOMMENDATIONS),
        ))
    else:
        first_low = next(
            (
                d for d in forecast.daily
                if ZERO <= d.running_balance < config.low_balance_threshold
            ),
            None,
        )
        if first_low is not None:
            issues.append(CashFlowIssue(
                issue_type=CashFlowIssueType.LOW_BALANCE,
                severity=Severity.MEDIUM,
                issue_date=first_low.day,
                description=(
                    f"Projected low cash balance of "
                    f"{format_currency(first_low.running_balance)} on {first_low.day.isoformat()}"
                ),
                recommendations=list(LOW_BALANCE_RECOMMENDATIONS),
            ))

    for day in forecast.daily:
        if day.total_outflow > config.significant_outflow_threshold:
            issues.append(CashFlowIssue(
                issue_type=CashFlowIssueType.SIGNIFICANT_OUTFLOW,
                severity=Severity.MEDIUM,
                issue_date=day.day,
                description=(
                    f"Significant cash outflow of {format_currency(day.total_outflow)} "
                    f"on {day.day.isoformat()}"
                ),
                details=[
                    {"description": o.description, "amount": format_currency(o.amount)}
                    for o in day.outflows
                ],
                recommendations=list(SIGNIFICANT_OUTFLOW_RECOMMENDATIONS),
            ))

    trend = analyze_weekly_trend(forecast.weekly)
    if trend == CashFlowTrend.DECLINING:
        issues.append(CashFlowIssue(
            issue_type=CashFlowIssueType.DECLINING_CASH_FLOW,
            severity=Severity.MEDIUM,
            description="Cash flow is projected to decline over the forecast period",
            recommendations=list(DECLINING_CASH_FLOW_RECOMMENDATIONS),
        ))

    return CashFlowIssueReport(issues=issues, forecast=forecast, trend=trend)


class CashFlowForecaster:
    """Builds forecasts from a tenant's provider documents.

    Provider failures propagate as ``UpstreamError``: a forecast built from
    partial data would be misleading.
    """

    def __init__(
        self,
        provider: AccountingProvider,
        config: Optional[ForecastConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize forecaster.

        Args:
            provider: Source of invoices, bills and reports.
            config: Forecast settings (defaults if None).
            clock: Returns the current time; injectable for tests.
        """
        self.provider = provider
        self.config = config or ForecastConfig()
        self.clock = clock

    def current_balance(self, tenant_id: str, as_of: date) -> Decimal:
        """Read the bank balance from the balance sheet at ``as_of``."""
        report = self.provider.fetch_report(tenant_id, BALANCE_SHEET, ReportOptions(as_of=as_of))
        balance = safe_decimal(str(report.row_value(BANK_ROW_LABEL)))
        logger.debug(f"Bank balance for tenant {tenant_id} at {as_of}: {balance}")
        return balance

    def generate(
        self,
        tenant_id: str,
        start_date: Optional[date] = None,
        days: Optional[int] = None,
        current_balance: Optional[Decimal] = None,
        as_of: Optional[date] = None,
    ) -> ForecastTimeline:
        """Fetch outstanding and repeating documents and forecast.

        Args:
            tenant_id: Provider organization.
            start_date: First forecast day (today if None).
            days: Forecast horizon (config default if None).
            current_balance: Opening balance (balance sheet Bank row if None).
            as_of: Reference date for overdue age (``start_date`` if None).

        Returns:
            The forecast timeline.
        """
        start_date = start_date or self.clock().date()
        days = days if days is not None else self.config.days

        with LogContext(logger, "generate_forecast", tenant_id=tenant_id, days=days):
            page_size = self.config.page_size
            invoices = self.provider.fetch_invoices(tenant_id, DocumentFilter(
                statuses=(STATUS_AUTHORISED,), invoice_type=TYPE_RECEIVABLE, page_size=page_size,
            ))
            bills = self.provider.fetch_bills(tenant_id, DocumentFilter(
                statuses=(STATUS_AUTHORISED,), page_size=page_size,
            ))
            repeating_invoices = self.provider.fetch_repeating_invoices(
                tenant_id, DocumentFilter(page_size=page_size)
            )
            repeating_bills = self.provider.fetch_repeating_bills(
                tenant_id, DocumentFilter(page_size=page_size)
            )

            if current_balance is None:
                current_balance = self.current_balance(tenant_id, start_date)

            timeline = generate_forecast(
                start_date=start_date,
                days=days,
                current_balance=current_balance,
                invoices=invoices,
                bills=bills,
                repeating_invoices=repeating_invoices,
                repeating_bills=repeating_bills,
                as_of=as_of,
                config=self.config,
            )

        logger.info(
            f"Forecast for tenant {tenant_id}: {days} days from {start_date}, "
            f"{len(invoices)} invoices, {len(bills)} bills, "
            f"{len(repeating_invoices)} repeating invoices, {len(repeating_bills)} repeating bills"
        )
        return timeline

    def detect_issues(
        self,
        tenant_id: str,
        start_date: Optional[date] = None,
        days: Optional[int] = None,
        current_balance: Optional[Decimal] = None,
    ) -> CashFlowIssueReport:
        """Forecast, then flag cash-flow issues."""
        forecast = self.generate(tenant_id, start_date, days, current_balance)
        report = detect_cash_flow_issues(forecast, self.config)
        logger.info(f"Detected {len(report.issues)} cash-flow issues for tenant {tenant_id}")
        return report
