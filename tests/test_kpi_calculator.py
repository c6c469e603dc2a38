"""Tests for financial ratios, health scoring and KPIs."""

from datetime import date, datetime
from decimal import Decimal
from typing import Callable
from unittest.mock import MagicMock

import pytest

from cfo_assistant.exceptions import UpstreamError
from cfo_assistant.models.documents import STATUS_PAID
from cfo_assistant.models.kpi import (
    FinancialRatios,
    HealthStatus,
    RatioAnalysis,
    ReportFigures,
    ScoreMetric,
)
from cfo_assistant.models.report import FinancialReport
from cfo_assistant.processing.kpi_calculator import (
    KPICalculator,
    calculate_ratios,
    calculate_weighted_score,
    extract_figures,
    health_status,
    score_health,
)
from cfo_assistant.sources.base import BALANCE_SHEET, PROFIT_AND_LOSS, AccountingProvider, ReportOptions
from factories import make_invoice, make_report


def profit_and_loss() -> FinancialReport:
    return make_report("ProfitAndLoss", {
        "Revenue": [1000],
        "Cost of Sales": [600],
        "Gross Profit": [400],
        "Total Expenses": [300],
        "Net Profit": [100],
        "Interest Expense": [20],
        "Operating Cash Flow": [150],
    })


def balance_sheet() -> FinancialReport:
    return make_report("BalanceSheet", {
        "Bank": [125],
        "Accounts Receivable": [100],
        "Inventory": [50],
        "Total Current Assets": [500],
        "Total Assets": [2000],
        "Accounts Payable": [60],
        "Total Current Liabilities": [250],
        "Total Liabilities": [1000],
        "Total Equity": [1000],
    })


def analysis_for(ratios: FinancialRatios) -> RatioAnalysis:
    return RatioAnalysis(
        ratios=ratios, figures=ReportFigures(), from_date=date(2024, 3, 15), to_date=date(2024, 6, 15)
    )


class TestWeightedScore:
    """Tests for the generic metric normalizer."""

    def test_linear_mapping_and_weights(self) -> None:
        """Test a half-way metric combined with a maxed-out heavier one."""
        score = calculate_weighted_score({
            "a": ScoreMetric(value=50, weight=1, min_value=0, max_value=100),
            "b": ScoreMetric(value=100, weight=3, min_value=0, max_value=100),
        })
        assert score == pytest.approx(87.5)

    @pytest.mark.parametrize("value,expected", [(200, 100.0), (-5, 0.0), (25, 25.0)])
    def test_clamped_at_bounds(self, value: float, expected: float) -> None:
        """Test that values outside the bounds clamp to 0 or 100."""
        metric = ScoreMetric(value=value, weight=1, min_value=0, max_value=100)
        assert calculate_weighted_score({"m": metric}) == pytest.approx(expected)

    def test_inverse_metric(self) -> None:
        """Test that lower is better when the metric is inverse."""
        metrics = {"days": ScoreMetric(value=45, weight=1, min_value=90, max_value=0, inverse=True)}
        assert calculate_weighted_score(metrics) == pytest.approx(50.0)

        metrics["days"].value = 120
        assert calculate_weighted_score(metrics) == 0.0
        metrics["days"].value = 0
        assert calculate_weighted_score(metrics) == 100.0

    def test_no_usable_metrics_is_neutral(self) -> None:
        """Test that zero total weight yields 50."""
        assert calculate_weighted_score({}) == 50.0
        assert calculate_weighted_score({
            "missing": ScoreMetric(value=None, weight=1, min_value=0, max_value=1),
        }) == 50.0


class TestHealthStatus:
    """Tests for status tier boundaries."""

    @pytest.mark.parametrize(
        "score,status",
        [
            (100, HealthStatus.EXCELLENT),
            (80, HealthStatus.EXCELLENT),
            (79.9, HealthStatus.GOOD),
            (65, HealthStatus.GOOD),
            (50, HealthStatus.FAIR),
            (35, HealthStatus.CONCERNING),
            (34.99, HealthStatus.CRITICAL),
            (0, HealthStatus.CRITICAL),
        ],
    )
    def test_tiers(self, score: float, status: HealthStatus) -> None:
        """Test that each tier starts at its lower bound."""
        assert health_status(score) == status


class TestRatios:
    """Tests for figure extraction and ratio derivation."""

    def test_extract_figures(self) -> None:
        """Test that labelled rows map onto figures and missing rows are 0."""
        figures = extract_figures(profit_and_loss(), balance_sheet())

        assert figures.revenue == 1000.0
        assert figures.current_liabilities == 250.0
        assert figures.bank == 125.0

        empty = extract_figures(make_report("ProfitAndLoss", {}), make_report("BalanceSheet", {}))
        assert empty == ReportFigures()

    def test_calculate_ratios(self) -> None:
        """Test every ratio family on a consistent set of figures."""
        ratios = calculate_ratios(extract_figures(profit_and_loss(), balance_sheet()))

        assert ratios.gross_profit_margin == pytest.approx(40.0)
        assert ratios.net_profit_margin == pytest.approx(10.0)
        assert ratios.return_on_assets == pytest.approx(5.0)
        assert ratios.return_on_equity == pytest.approx(10.0)
        assert ratios.current_ratio == pytest.approx(2.0)
        assert ratios.quick_ratio == pytest.approx(1.8)
        assert ratios.cash_ratio == pytest.approx(0.5)
        assert ratios.inventory_turnover == pytest.approx(12.0)
        assert ratios.debt_to_equity == pytest.approx(1.0)
        assert ratios.interest_coverage == pytest.approx(5.0)
        assert ratios.operating_cash_flow_ratio == pytest.approx(0.6)
        assert ratios.days_receivables == pytest.approx(36.5)
        assert ratios.days_payables == pytest.approx(36.5)
        assert ratios.cash_conversion_cycle == pytest.approx(50 / 600 * 365)

    def test_zero_denominators(self) -> None:
        """Test that every ratio is 0 when its denominator is 0."""
        assert calculate_ratios(ReportFigures()) == FinancialRatios()

        ratios = calculate_ratios(ReportFigures(accounts_receivable=500.0, inventory=80.0))
        assert ratios.days_receivables == 0.0
        assert ratios.days_inventory == 0.0
        assert ratios.current_ratio == 0.0


class TestScoreHealth:
    """Tests for the composite health score."""

    def test_weak_profitability_recommendations(self) -> None:
        """Test that a 15% gross and -5% net margin trigger both margin recommendations."""
        health = score_health(analysis_for(FinancialRatios(gross_profit_margin=15, net_profit_margin=-5)))

        assert health.components.profitability < 40
        assert health.components.profitability == pytest.approx(10.625)
        issues = [r.issue for r in health.recommendations]
        assert "Low gross profit margin" in issues
        assert "Low net profit margin" in issues
        assert health.status == HealthStatus.CRITICAL

    def test_component_weights(self) -> None:
        """Test the overall score on the sample figures."""
        ratios = calculate_ratios(extract_figures(profit_and_loss(), balance_sheet()))
        health = score_health(analysis_for(ratios))

        assert health.components.profitability == pytest.approx(45.0)
        assert health.components.growth == 50.0
        assert health.overall_score == pytest.approx(54.31, abs=0.01)
        assert health.status == HealthStatus.FAIR
        assert health.recommendations == []

    def test_long_cash_conversion_cycle(self) -> None:
        """Test the cash-flow recommendation independent of sub-scores."""
        health = score_health(analysis_for(FinancialRatios(cash_conversion_cycle=75)))
        assert health.recommendations[-1].issue == "Long cash conversion cycle"

    def test_to_dict_rounds_scores(self) -> None:
        """Test that the serialized score and components are integers."""
        health = score_health(analysis_for(FinancialRatios(gross_profit_margin=15, net_profit_margin=-5)))
        data = health.to_dict()

        assert data["overallScore"] == 26
        assert data["healthStatus"] == "CRITICAL"
        assert data["componentScores"]["profitability"] == 11  # type: ignore[index]


@pytest.fixture
def provider() -> MagicMock:
    """Provider serving the sample reports, two invoices and one bill."""
    mock = MagicMock(spec=AccountingProvider)

    def fetch_report(tenant_id: str, name: str, options: ReportOptions) -> FinancialReport:
        return profit_and_loss() if name == PROFIT_AND_LOSS else balance_sheet()

    mock.fetch_report.side_effect = fetch_report
    mock.fetch_invoices.return_value = [
        make_invoice("paid", amount_due="600.00", status=STATUS_PAID),
        make_invoice("open", amount_due="400.00"),
    ]
    mock.fetch_bills.return_value = [make_invoice("bill", amount_due="300.00", bill=True)]
    return mock


class TestKPICalculator:
    """Tests for the provider-backed calculator."""

    def test_reports_cover_window(self, provider: MagicMock, clock: Callable[[], datetime]) -> None:
        """Test that P&L covers the window and the balance sheet is taken at its end."""
        analysis = KPICalculator(provider, clock=clock).calculate_financial_ratios("t1")

        assert analysis.from_date == date(2024, 3, 15)
        assert analysis.to_date == date(2024, 6, 15)
        calls = {c.args[1]: c.args[2] for c in provider.fetch_report.call_args_list}
        assert calls[PROFIT_AND_LOSS].from_date == date(2024, 3, 15)
        assert calls[PROFIT_AND_LOSS].to_date == date(2024, 6, 15)
        assert calls[BALANCE_SHEET].as_of == date(2024, 6, 15)

    def test_calculate_kpis(self, provider: MagicMock, clock: Callable[[], datetime]) -> None:
        """Test revenue and expense aggregates alongside the health score."""
        report = KPICalculator(provider, clock=clock).calculate_kpis("t1", months=1)

        assert report.revenue.total_revenue == Decimal("1000.00")
        assert report.revenue.paid_revenue == Decimal("600.00")
        assert report.revenue.collection_rate == pytest.approx(60.0)
        assert report.revenue.average_invoice_value == Decimal("500.00")
        assert report.expenses.expense_to_revenue_ratio == pytest.approx(30.0)
        assert report.health.analysis.from_date == date(2024, 5, 15)

        data = report.to_dict()
        assert data["kpis"]["health"]["healthStatus"] == "FAIR"  # type: ignore[index]

    def test_no_invoices(self, provider: MagicMock, clock: Callable[[], datetime]) -> None:
        """Test that empty document lists give zero rates rather than errors."""
        provider.fetch_invoices.return_value = []
        provider.fetch_bills.return_value = []

        report = KPICalculator(provider, clock=clock).calculate_kpis("t1")

        assert report.revenue.collection_rate == 0.0
        assert report.revenue.average_invoice_value == Decimal("0")
        assert report.expenses.expense_to_revenue_ratio == 0.0

    def test_report_failure_propagates(self, provider: MagicMock, clock: Callable[[], datetime]) -> None:
        """Test that upstream failures reach the caller."""
        provider.fetch_report.side_effect = UpstreamError("report unavailable")

        with pytest.raises(UpstreamError):
            KPICalculator(provider, clock=clock).calculate_health_score("t1")
