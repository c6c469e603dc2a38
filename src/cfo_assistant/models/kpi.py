"""Financial ratio, health score and KPI models.

Ratios, scores and percentages are floats; invoice and bill aggregates
are Decimals.
"""

from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from cfo_assistant.utils.decimal_utils import ZERO, format_currency


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _camel_dict(obj: object) -> dict[str, object]:
    return {_camel(k): v for k, v in asdict(obj).items()}  # type: ignore[call-overload]


@dataclass
class ReportFigures:
    """Line items extracted from the profit-and-loss and balance-sheet reports."""

    revenue: float = 0.0
    cost_of_sales: float = 0.0
    gross_profit: float = 0.0
    expenses: float = 0.0
    net_profit: float = 0.0
    interest_expense: float = 0.0
    operating_cash_flow: float = 0.0
    current_assets: float = 0.0
    total_assets: float = 0.0
    current_liabilities: float = 0.0
    total_liabilities: float = 0.0
    equity: float = 0.0
    accounts_receivable: float = 0.0
    accounts_payable: float = 0.0
    inventory: float = 0.0
    bank: float = 0.0

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return _camel_dict(self)


@dataclass
class FinancialRatios:
    """Standard ratios derived from report figures.

    Margins and returns are percentages. A ratio whose denominator is zero
    is reported as 0.
    """

    # Profitability
    gross_profit_margin: float = 0.0
    net_profit_margin: float = 0.0
    return_on_assets: float = 0.0
    return_on_equity: float = 0.0

    # Liquidity
    current_ratio: float = 0.0
    quick_ratio: float = 0.0
    cash_ratio: float = 0.0

    # Efficiency
    asset_turnover: float = 0.0
    inventory_turnover: float = 0.0
    receivables_turnover: float = 0.0
    payables_turnover: float = 0.0

    # Solvency
    debt_to_equity: float = 0.0
    debt_to_assets: float = 0.0
    interest_coverage: float = 0.0

    # Cash flow
    operating_cash_flow_ratio: float = 0.0

    # Working capital cycle (days)
    days_receivables: float = 0.0
    days_payables: float = 0.0
    days_inventory: float = 0.0
    cash_conversion_cycle: float = 0.0

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return _camel_dict(self)


@dataclass
class RatioAnalysis:
    """Ratios plus the figures and period they were computed from."""

    ratios: FinancialRatios
    figures: ReportFigures
    from_date: date
    to_date: date

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "ratios": self.ratios.to_dict(),
            "rawData": self.figures.to_dict(),
            "period": {"fromDate": self.from_date.isoformat(), "toDate": self.to_date.isoformat()},
        }


@dataclass
class ScoreMetric:
    """One input to a weighted score.

    ``value`` is mapped linearly onto 0-100 between ``min_value`` and
    ``max_value``. For inverse metrics (lower is better) ``min_value`` is the
    worst value and ``max_value`` the best, so min > max.
    """

    value: Optional[float]
    weight: float
    min_value: float
    max_value: float
    inverse: bool = False
    benchmark: Optional[float] = None


class HealthStatus(Enum):
    """Five-tier summary of the overall health score."""

    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    CONCERNING = "CONCERNING"
    CRITICAL = "CRITICAL"


@dataclass
class ComponentScores:
    """Sub-scores (0-100) making up the overall health score."""

    profitability: float
    liquidity: float
    efficiency: float
    solvency: float
    growth: float

    def to_dict(self) -> dict[str, object]:
        """Serialize with each score rounded to an integer."""
        return {k: round(v) for k, v in asdict(self).items()}


@dataclass
class HealthRecommendation:
    """Action suggested for a weak area of the business."""

    category: str
    issue: str
    recommendation: str

    def to_dict(self) -> dict[str, object]:
        """Serialize to a dictionary."""
        return asdict(self)


@dataclass
class HealthScore:
    """Composite business health score."""

    overall_score: float
    status: HealthStatus
    components: ComponentScores
    analysis: RatioAnalysis
    recommendations: list[HealthRecommendation] = field(default_factory=list)

    @property
    def ratios(self) -> FinancialRatios:
        """The ratios the score was computed from."""
        return self.analysis.ratios

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "overallScore": round(self.overall_score),
            "healthStatus": self.status.value,
            "componentScores": self.components.to_dict(),
            "ratios": self.analysis.ratios.to_dict(),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "period": {
                "fromDate": self.analysis.from_date.isoformat(),
                "toDate": self.analysis.to_date.isoformat(),
            },
        }


@dataclass
class RevenueKPIs:
    """Receivables aggregates over the KPI window."""

    total_revenue: Decimal = ZERO
    paid_revenue: Decimal = ZERO
    invoice_count: int = 0

    @property
    def unpaid_revenue(self) -> Decimal:
        """Invoiced but not yet paid."""
        return self.total_revenue - self.paid_revenue

    @property
    def collection_rate(self) -> float:
        """Paid share of invoiced revenue, as a percentage."""
        if self.total_revenue <= 0:
            return 0.0
        return float(self.paid_revenue / self.total_revenue * 100)

    @property
    def average_invoice_value(self) -> Decimal:
        """Mean invoice total."""
        if self.invoice_count == 0:
            return ZERO
        return self.total_revenue / self.invoice_count

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "totalRevenue": format_currency(self.total_revenue),
            "paidRevenue": format_currency(self.paid_revenue),
            "unpaidRevenue": format_currency(self.unpaid_revenue),
            "collectionRate": self.collection_rate,
            "avgInvoiceValue": format_currency(self.average_invoice_value),
        }


@dataclass
class ExpenseKPIs:
    """Payables aggregates over the KPI window."""

    total_expenses: Decimal = ZERO
    total_revenue: Decimal = ZERO

    @property
    def expense_to_revenue_ratio(self) -> float:
        """Expenses as a percentage of revenue."""
        if self.total_revenue <= 0:
            return 0.0
        return float(self.total_expenses / self.total_revenue * 100)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "totalExpenses": format_currency(self.total_expenses),
            "expenseToRevenueRatio": self.expense_to_revenue_ratio,
        }


@dataclass
class KPIReport:
    """Headline KPIs: health score plus revenue and expense aggregates."""

    health: HealthScore
    revenue: RevenueKPIs
    expenses: ExpenseKPIs

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        ratios = self.health.ratios
        return {
            "kpis": {
                "financial": {
                    "grossProfitMargin": ratios.gross_profit_margin,
                    "netProfitMargin": ratios.net_profit_margin,
                    "currentRatio": ratios.current_ratio,
                    "quickRatio": ratios.quick_ratio,
                    "debtToEquity": ratios.debt_to_equity,
                    "returnOnEquity": ratios.return_on_equity,
                },
                "revenue": self.revenue.to_dict(),
                "expenses": self.expenses.to_dict(),
                "efficiency": {
                    "daysReceivables": ratios.days_receivables,
                    "daysPayables": ratios.days_payables,
                    "daysInventory": ratios.days_inventory,
                    "cashConversionCycle": ratios.cash_conversion_cycle,
                },
                "health": {
                    "overallScore": round(self.health.overall_score),
                    "healthStatus": self.health.status.value,
                    "componentScores": self.health.components.to_dict(),
                },
            },
            "period": {
                "fromDate": self.health.analysis.from_date.isoformat(),
                "toDate": self.health.analysis.to_date.isoformat(),
            },
            "recommendations": [r.to_dict() for r in self.health.recommendations],
        }
