"""Financial ratios, business health score and headline KPIs."""

from datetime import date, datetime
from typing import Callable, Mapping, Optional, Sequence

from cfo_assistant.config import KPIConfig
from cfo_assistant.models.documents import STATUS_PAID, TYPE_RECEIVABLE, Invoice
from cfo_assistant.models.kpi import (
    ComponentScores,
    ExpenseKPIs,
    FinancialRatios,
    HealthRecommendation,
    HealthScore,
    HealthStatus,
    KPIReport,
    RatioAnalysis,
    ReportFigures,
    RevenueKPIs,
    ScoreMetric,
)
from cfo_assistant.models.report import FinancialReport
from cfo_assistant.sources.base import (
    BALANCE_SHEET,
    PROFIT_AND_LOSS,
    AccountingProvider,
    DocumentFilter,
    ReportOptions,
)
from cfo_assistant.utils.date_utils import add_months
from cfo_assistant.utils.decimal_utils import sum_amounts
from cfo_assistant.utils.logging_config import LogContext, get_logger

logger = get_logger(__name__)

DAYS_PER_YEAR = 365
NEUTRAL_SCORE = 50.0

# Placeholder until historical trend data is available
GROWTH_SCORE = 50.0

COMPONENT_WEIGHTS = {
    "profitability": 0.3,
    "liquidity": 0.25,
    "efficiency": 0.2,
    "solvency": 0.15,
    "growth": 0.1,
}

# Lower bound of each status tier, best first
STATUS_TIERS = (
    (80.0, HealthStatus.EXCELLENT),
    (65.0, HealthStatus.GOOD),
    (50.0, HealthStatus.FAIR),
    (35.0, HealthStatus.CONCERNING),
)

# Report row labels
PROFIT_AND_LOSS_ROWS = {
    "revenue": "Revenue",
    "cost_of_sales": "Cost of Sales",
    "gross_profit": "Gross Profit",
    "expenses": "Total Expenses",
    "net_profit": "Net Profit",
    "interest_expense": "Interest Expense",
    "operating_cash_flow": "Operating Cash Flow",
}
BALANCE_SHEET_ROWS = {
    "current_assets": "Total Current Assets",
    "total_assets": "Total Assets",
    "current_liabilities": "Total Current Liabilities",
    "total_liabilities": "Total Liabilities",
    "equity": "Total Equity",
    "accounts_receivable": "Accounts Receivable",
    "accounts_payable": "Accounts Payable",
    "inventory": "Inventory",
    "bank": "Bank",
}


def extract_figures(profit_and_loss: FinancialReport, balance_sheet: FinancialReport) -> ReportFigures:
    """Pull the line items used by the ratios out of the two reports.

    Missing rows count as 0.
    """
    values = {name: profit_and_loss.row_value(label) for name, label in PROFIT_AND_LOSS_ROWS.items()}
    values.update(
        {name: balance_sheet.row_value(label) for name, label in BALANCE_SHEET_ROWS.items()}
    )
    return ReportFigures(**values)


def _ratio(numerator: float, denominator: float) -> float:
    """Divide, treating a zero denominator as a zero ratio."""
    return numerator / denominator if denominator else 0.0


def calculate_ratios(figures: ReportFigures) -> FinancialRatios:
    """Derive profitability, liquidity, efficiency and solvency ratios.

    Margins and returns are percentages; days figures use a 365-day year.
    Any ratio with a zero denominator is 0.
    """
    f = figures
    days_receivables = _ratio(f.accounts_receivable, f.revenue) * DAYS_PER_YEAR
    days_payables = _ratio(f.accounts_payable, f.cost_of_sales) * DAYS_PER_YEAR
    days_inventory = _ratio(f.inventory, f.cost_of_sales) * DAYS_PER_YEAR

    return FinancialRatios(
        gross_profit_margin=_ratio(f.gross_profit, f.revenue) * 100,
        net_profit_margin=_ratio(f.net_profit, f.revenue) * 100,
        return_on_assets=_ratio(f.net_profit, f.total_assets) * 100,
        return_on_equity=_ratio(f.net_profit, f.equity) * 100,
        current_ratio=_ratio(f.current_assets, f.current_liabilities),
        quick_ratio=_ratio(f.current_assets - f.inventory, f.current_liabilities),
        cash_ratio=_ratio(f.bank, f.current_liabilities),
        asset_turnover=_ratio(f.revenue, f.total_assets),
        inventory_turnover=_ratio(f.cost_of_sales, f.inventory),
        receivables_turnover=_ratio(f.revenue, f.accounts_receivable),
        payables_turnover=_ratio(f.cost_of_sales, f.accounts_payable),
        debt_to_equity=_ratio(f.total_liabilities, f.equity),
        debt_to_assets=_ratio(f.total_liabilities, f.total_assets),
        interest_coverage=_ratio(f.net_profit, f.interest_expense),
        operating_cash_flow_ratio=_ratio(f.operating_cash_flow, f.current_liabilities),
        days_receivables=days_receivables,
        days_payables=days_payables,
        days_inventory=days_inventory,
        cash_conversion_cycle=days_receivables + days_inventory - days_payables,
    )


def _metric_score(metric: ScoreMetric) -> float:
    value = metric.value
    low, high = metric.min_value, metric.max_value
    if metric.inverse:
        # Lower is better: max_value is the best value, min_value the worst
        if value <= high:  # type: ignore[operator]
            return 100.0
        if value >= low:  # type: ignore[operator]
            return 0.0
        return 100.0 * (low - value) / (low - high)  # type: ignore[operator]
    if value >= high:  # type: ignore[operator]
        return 100.0
    if value <= low:  # type: ignore[operator]
        return 0.0
    return 100.0 * (value - low) / (high - low)  # type: ignore[operator]


def calculate_weighted_score(metrics: Mapping[str, ScoreMetric]) -> float:
    """Combine metrics into a 0-100 weighted score.

    Each metric is mapped linearly onto 0-100 between its bounds and
    clamped. Metrics without a value are ignored; with no usable metrics
    the score is neutral (50).
    """
    total_score = 0.0
    total_weight = 0.0
    for name, metric in metrics.items():
        if metric.value is None:
            logger.debug(f"Skipping metric {name} with no value")
            continue
        total_score += _metric_score(metric) * metric.weight
        total_weight += metric.weight
    if total_weight <= 0:
        return NEUTRAL_SCORE
    return total_score / total_weight


def profitability_metrics(ratios: FinancialRatios) -> dict[str, ScoreMetric]:
    return {
        "grossProfitMargin": ScoreMetric(ratios.gross_profit_margin, 0.3, 0, 80, benchmark=40),
        "netProfitMargin": ScoreMetric(ratios.net_profit_margin, 0.4, -10, 30, benchmark=10),
        "returnOnAssets": ScoreMetric(ratios.return_on_assets, 0.15, 0, 15, benchmark=5),
        "returnOnEquity": ScoreMetric(ratios.return_on_equity, 0.15, 0, 30, benchmark=15),
    }


def liquidity_metrics(ratios: FinancialRatios) -> dict[str, ScoreMetric]:
    return {
        "currentRatio": ScoreMetric(ratios.current_ratio, 0.4, 0.5, 3, benchmark=2),
        "quickRatio": ScoreMetric(ratios.quick_ratio, 0.4, 0.3, 2, benchmark=1),
        "cashRatio": ScoreMetric(ratios.cash_ratio, 0.2, 0.1, 1, benchmark=0.5),
    }


def efficiency_metrics(ratios: FinancialRatios) -> dict[str, ScoreMetric]:
    return {
        "assetTurnover": ScoreMetric(ratios.asset_turnover, 0.2, 0.5, 4, benchmark=2),
        "inventoryTurnover": ScoreMetric(ratios.inventory_turnover, 0.2, 2, 12, benchmark=6),
        "daysReceivables": ScoreMetric(
            ratios.days_receivables, 0.3, 90, 0, inverse=True, benchmark=30
        ),
        "daysPayables": ScoreMetric(ratios.days_payables, 0.3, 15, 60, benchmark=45),
    }


def solvency_metrics(ratios: FinancialRatios) -> dict[str, ScoreMetric]:
    return {
        "debtToEquity": ScoreMetric(ratios.debt_to_equity, 0.4, 3, 0, inverse=True, benchmark=1),
        "debtToAssets": ScoreMetric(ratios.debt_to_assets, 0.4, 1, 0, inverse=True, benchmark=0.5),
        "interestCoverage": ScoreMetric(ratios.interest_coverage, 0.2, 1, 10, benchmark=3),
    }


def score_components(ratios: FinancialRatios) -> ComponentScores:
    """Compute the five 0-100 sub-scores."""
    return ComponentScores(
        profitability=calculate_weighted_score(profitability_metrics(ratios)),
        liquidity=calculate_weighted_score(liquidity_metrics(ratios)),
        efficiency=calculate_weighted_score(efficiency_metrics(ratios)),
        solvency=calculate_weighted_score(solvency_metrics(ratios)),
        growth=GROWTH_SCORE,
    )


def overall_score(components: ComponentScores) -> float:
    """Weighted sum of the sub-scores."""
    return sum(getattr(components, name) * weight for name, weight in COMPONENT_WEIGHTS.items())


def health_status(score: float) -> HealthStatus:
    """Map an overall score onto its status tier."""
    for lower_bound, status in STATUS_TIERS:
        if score >= lower_bound:
            return status
    return HealthStatus.CRITICAL


def generate_recommendations(
    components: ComponentScores, ratios: FinancialRatios
) -> list[HealthRecommendation]:
    """Suggest actions for weak sub-scores and the ratios driving them."""
    recommendations = []

    def add(category: str, issue: str, text: str) -> None:
        recommendations.append(HealthRecommendation(category=category, issue=issue, recommendation=text))

    if components.profitability < 40:
        if ratios.gross_profit_margin < 20:
            add(
                "Profitability", "Low gross profit margin",
                "Review pricing strategy and cost of goods sold. Consider increasing prices "
                "or negotiating better terms with suppliers.",
            )
        if ratios.net_profit_margin < 5:
            add(
                "Profitability", "Low net profit margin",
                "Analyze operating expenses and identify areas for cost reduction. Focus on "
                "improving operational efficiency.",
            )

    if components.liquidity < 50:
        if ratios.current_ratio < 1.2:
            add(
                "Liquidity", "Low current ratio",
                "Improve working capital management. Consider extending payment terms with "
                "suppliers, accelerating customer payments, or reducing inventory levels.",
            )
        if ratios.quick_ratio < 0.8:
            add(
                "Liquidity", "Low quick ratio",
                "Focus on improving cash position. Consider invoice factoring, reducing credit "
                "terms for customers, or establishing a line of credit.",
            )

    if components.efficiency < 50:
        if ratios.days_receivables > 45:
            add(
                "Efficiency", "High days sales outstanding",
                "Improve accounts receivable management. Implement stricter credit policies, "
                "offer early payment discounts, or follow up on overdue invoices more aggressively.",
            )
        if ratios.days_inventory > 60:
            add(
                "Efficiency", "High inventory days",
                "Optimize inventory management. Implement just-in-time inventory practices, "
                "identify slow-moving items, or consider drop-shipping for certain products.",
            )

    if components.solvency < 50:
        if ratios.debt_to_equity > 2:
            add(
                "Solvency", "High debt-to-equity ratio",
                "Reduce debt levels. Consider debt consolidation, equity financing, or selling "
                "non-essential assets to pay down debt.",
            )
        if ratios.interest_coverage < 2:
            add(
                "Solvency", "Low interest coverage ratio",
                "Improve ability to service debt. Focus on increasing operating income or "
                "refinancing debt at lower interest rates.",
            )

    if ratios.cash_conversion_cycle > 60:
        add(
            "Cash Flow", "Long cash conversion cycle",
            "Optimize working capital cycle. Reduce inventory holding period, accelerate "
            "customer payments, and negotiate better terms with suppliers.",
        )

    return recommendations


def score_health(analysis: RatioAnalysis) -> HealthScore:
    """Turn a ratio analysis into a composite health score."""
    components = score_components(analysis.ratios)
    score = overall_score(components)
    return HealthScore(
        overall_score=score,
        status=health_status(score),
        components=components,
        analysis=analysis,
        recommendations=generate_recommendations(components, analysis.ratios),
    )


def summarize_revenue(invoices: Sequence[Invoice]) -> RevenueKPIs:
    """Invoiced and paid totals for receivable invoices."""
    return RevenueKPIs(
        total_revenue=sum_amounts(inv.total for inv in invoices),
        paid_revenue=sum_amounts(inv.total for inv in invoices if inv.status == STATUS_PAID),
        invoice_count=len(invoices),
    )


class KPICalculator:
    """Computes ratios, health scores and KPIs from provider reports.

    Report and document fetch failures propagate to the caller.
    """

    def __init__(
        self,
        provider: AccountingProvider,
        config: Optional[KPIConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.provider = provider
        self.config = config or KPIConfig()
        self.clock = clock

    def _period(self, months: Optional[int], to_date: Optional[date]) -> tuple[date, date]:
        months = months if months is not None else self.config.window_months
        to_date = to_date or self.clock().date()
        return add_months(to_date, -months), to_date

    def calculate_financial_ratios(
        self,
        tenant_id: str,
        months: Optional[int] = None,
        to_date: Optional[date] = None,
    ) -> RatioAnalysis:
        """Compute ratios from the profit and loss over the window and the balance sheet at its end.

        Args:
            tenant_id: Provider organization.
            months: Window length (config default if None).
            to_date: Window end (today if None).

        Returns:
            Ratios, the extracted figures and the period.
        """
        from_date, to_date = self._period(months, to_date)

        with LogContext(logger, "calculate_financial_ratios", tenant_id=tenant_id):
            profit_and_loss = self.provider.fetch_report(
                tenant_id, PROFIT_AND_LOSS, ReportOptions(from_date=from_date, to_date=to_date)
            )
            balance_sheet = self.provider.fetch_report(
                tenant_id, BALANCE_SHEET, ReportOptions(as_of=to_date)
            )
            figures = extract_figures(profit_and_loss, balance_sheet)
            ratios = calculate_ratios(figures)

        logger.debug(f"Calculated financial ratios for {from_date} to {to_date}")
        return RatioAnalysis(ratios=ratios, figures=figures, from_date=from_date, to_date=to_date)

    def calculate_health_score(
        self,
        tenant_id: str,
        months: Optional[int] = None,
        to_date: Optional[date] = None,
    ) -> HealthScore:
        """Compute the business health score for the window."""
        health = score_health(self.calculate_financial_ratios(tenant_id, months, to_date))
        logger.info(
            f"Business health score for tenant {tenant_id}: "
            f"{round(health.overall_score)} ({health.status.value})"
        )
        return health

    def calculate_kpis(
        self,
        tenant_id: str,
        months: Optional[int] = None,
        to_date: Optional[date] = None,
    ) -> KPIReport:
        """Combine the health score with invoice and bill aggregates.

        Only the first page of invoices and bills in the window is used.
        """
        health = self.calculate_health_score(tenant_id, months, to_date)
        from_date = health.analysis.from_date
        to_date = health.analysis.to_date

        with LogContext(logger, "calculate_kpis", tenant_id=tenant_id):
            invoices = self.provider.fetch_invoices(tenant_id, DocumentFilter(
                invoice_type=TYPE_RECEIVABLE, date_from=from_date, date_to=to_date,
            ))
            bills = self.provider.fetch_bills(tenant_id, DocumentFilter(
                date_from=from_date, date_to=to_date,
            ))

        revenue = summarize_revenue(invoices)
        expenses = ExpenseKPIs(
            total_expenses=sum_amounts(bill.total for bill in bills),
            total_revenue=revenue.total_revenue,
        )
        logger.info(f"Calculated KPIs from {len(invoices)} invoices and {len(bills)} bills")
        return KPIReport(health=health, revenue=revenue, expenses=expenses)
