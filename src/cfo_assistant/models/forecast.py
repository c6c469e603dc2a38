"""Cash-flow forecast data models."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from cfo_assistant.models.anomaly import Severity
from cfo_assistant.utils.date_utils import date_to_iso
from cfo_assistant.utils.decimal_utils import ZERO, format_currency


class CashFlowSource(Enum):
    """What produced a forecast line."""

    INVOICE = "INVOICE"
    BILL = "BILL"
    REPEATING_INVOICE = "REPEATING_INVOICE"
    REPEATING_BILL = "REPEATING_BILL"


@dataclass
class CashFlowItem:
    """One expected inflow or outflow on a forecast day.

    ``amount`` is the face amount of the document; ``weighted_amount`` is the
    part that moves the running balance (amount x probability / 100).
    """

    source: CashFlowSource
    source_id: str
    description: str
    amount: Decimal
    probability: int = 100
    reference: Optional[str] = None
    contact_name: Optional[str] = None
    due_date: Optional[date] = None

    @property
    def weighted_amount(self) -> Decimal:
        """Face amount scaled by payment probability."""
        if self.probability == 100:
            return self.amount
        return self.amount * Decimal(self.probability) / Decimal(100)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "type": self.source.value,
            "id": self.source_id,
            "reference": self.reference,
            "description": self.description,
            "contact": self.contact_name,
            "amount": format_currency(self.amount),
            "probability": self.probability,
            "weightedAmount": format_currency(self.weighted_amount),
            "dueDate": date_to_iso(self.due_date),
        }


@dataclass
class DailyForecast:
    """Expected flows and projected balance for one day."""

    day: date
    inflows: list[CashFlowItem] = field(default_factory=list)
    outflows: list[CashFlowItem] = field(default_factory=list)
    total_inflow: Decimal = ZERO
    total_outflow: Decimal = ZERO
    running_balance: Decimal = ZERO

    @property
    def net_cash_flow(self) -> Decimal:
        """Weighted inflow minus outflow."""
        return self.total_inflow - self.total_outflow

    def add_inflow(self, item: CashFlowItem) -> None:
        """Record an inflow; only its weighted amount counts toward totals."""
        self.inflows.append(item)
        self.total_inflow += item.weighted_amount

    def add_outflow(self, item: CashFlowItem) -> None:
        """Record an outflow."""
        self.outflows.append(item)
        self.total_outflow += item.weighted_amount

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "date": self.day.isoformat(),
            "inflows": [i.to_dict() for i in self.inflows],
            "outflows": [o.to_dict() for o in self.outflows],
            "totalInflow": format_currency(self.total_inflow),
            "totalOutflow": format_currency(self.total_outflow),
            "netCashFlow": format_currency(self.net_cash_flow),
            "runningBalance": format_currency(self.running_balance),
        }


@dataclass
class PeriodForecast:
    """Week or month rollup of daily forecasts.

    The ending balance is the running balance of the period's last day.
    """

    start_date: date
    end_date: date
    total_inflow: Decimal = ZERO
    total_outflow: Decimal = ZERO
    ending_balance: Decimal = ZERO
    year: Optional[int] = None
    month: Optional[int] = None

    @property
    def net_cash_flow(self) -> Decimal:
        """Weighted inflow minus outflow over the period."""
        return self.total_inflow - self.total_outflow

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        result: dict[str, object] = {}
        if self.year is not None:
            result["year"] = self.year
            result["month"] = self.month
        result.update({
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "totalInflow": format_currency(self.total_inflow),
            "totalOutflow": format_currency(self.total_outflow),
            "netCashFlow": format_currency(self.net_cash_flow),
            "endingBalance": format_currency(self.ending_balance),
        })
        return result


@dataclass
class ForecastTimeline:
    """Projected cash position over a forecast window.

    Attributes:
        start_date: First forecast day.
        end_date: Last forecast day (inclusive).
        days: Number of daily buckets.
        starting_balance: Balance before the first day.
        daily: One entry per day.
        weekly: Seven-day rollups from the start date.
        monthly: Calendar-month rollups clipped to the window.
        lowest_balance: Minimum of the starting and running balances.
        lowest_balance_date: Day the minimum occurs.
        highest_balance: Maximum of the starting and running balances.
        highest_balance_date: Day the maximum occurs.
    """

    start_date: date
    end_date: date
    days: int
    starting_balance: Decimal
    daily: list[DailyForecast] = field(default_factory=list)
    weekly: list[PeriodForecast] = field(default_factory=list)
    monthly: list[PeriodForecast] = field(default_factory=list)
    lowest_balance: Decimal = ZERO
    lowest_balance_date: Optional[date] = None
    highest_balance: Decimal = ZERO
    highest_balance_date: Optional[date] = None

    @property
    def total_inflow(self) -> Decimal:
        """Weighted inflow over the whole window."""
        return sum((d.total_inflow for d in self.daily), ZERO)

    @property
    def total_outflow(self) -> Decimal:
        """Outflow over the whole window."""
        return sum((d.total_outflow for d in self.daily), ZERO)

    @property
    def net_cash_flow(self) -> Decimal:
        """Net change over the whole window."""
        return self.total_inflow - self.total_outflow

    @property
    def ending_balance(self) -> Decimal:
        """Running balance on the last day."""
        return self.daily[-1].running_balance if self.daily else self.starting_balance

    def summary_dict(self) -> dict[str, object]:
        """Headline figures without the per-day breakdown."""
        return {
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "startingBalance": format_currency(self.starting_balance),
            "lowestBalance": format_currency(self.lowest_balance),
            "lowestBalanceDate": date_to_iso(self.lowest_balance_date),
            "highestBalance": format_currency(self.highest_balance),
            "highestBalanceDate": date_to_iso(self.highest_balance_date),
            "totalInflow": format_currency(self.total_inflow),
            "totalOutflow": format_currency(self.total_outflow),
            "netCashFlow": format_currency(self.net_cash_flow),
        }

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        result = self.summary_dict()
        result.update({
            "days": self.days,
            "currentBalance": format_currency(self.starting_balance),
            "dailyForecasts": [d.to_dict() for d in self.daily],
            "weeklyForecasts": [w.to_dict() for w in self.weekly],
            "monthlyForecasts": [m.to_dict() for m in self.monthly],
        })
        return result


class CashFlowIssueType(Enum):
    """Problems the forecast can surface."""

    NEGATIVE_BALANCE = "NEGATIVE_BALANCE"
    LOW_BALANCE = "LOW_BALANCE"
    SIGNIFICANT_OUTFLOW = "SIGNIFICANT_OUTFLOW"
    DECLINING_CASH_FLOW = "DECLINING_CASH_FLOW"


class CashFlowTrend(Enum):
    """Direction of week-over-week net cash flow."""

    IMPROVING = "IMPROVING"
    STABLE = "STABLE"
    DECLINING = "DECLINING"


@dataclass
class CashFlowIssue:
    """A problem found in a forecast, with suggested actions."""

    issue_type: CashFlowIssueType
    severity: Severity
    description: str
    issue_date: Optional[date] = None
    details: list[dict[str, object]] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        result: dict[str, object] = {
            "type": self.issue_type.value,
            "severity": self.severity.value,
            "description": self.description,
        }
        if self.issue_date is not None:
            result["date"] = self.issue_date.isoformat()
        if self.details:
            result["details"] = self.details
        result["recommendations"] = list(self.recommendations)
        return result


@dataclass
class CashFlowIssueReport:
    """Issues found in a forecast plus the forecast headline figures."""

    issues: list[CashFlowIssue]
    forecast: ForecastTimeline
    trend: CashFlowTrend = CashFlowTrend.STABLE

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "issues": [i.to_dict() for i in self.issues],
            "trend": self.trend.value,
            "forecast": self.forecast.summary_dict(),
        }
