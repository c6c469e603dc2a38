"""Tests for Excel workbook output."""

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

from openpyxl import load_workbook

from cfo_assistant.config import OutputConfig
from cfo_assistant.models.anomaly import Anomaly, AnomalyScan, AnomalyType, Severity
from cfo_assistant.models.forecast import CashFlowIssue, CashFlowIssueType
from cfo_assistant.models.kpi import (
    ExpenseKPIs,
    FinancialRatios,
    KPIReport,
    RatioAnalysis,
    ReportFigures,
    RevenueKPIs,
)
from cfo_assistant.output.excel_writer import ExcelWriter
from cfo_assistant.processing.anomaly_detector import build_report
from cfo_assistant.processing.forecaster import generate_forecast
from cfo_assistant.processing.kpi_calculator import score_health
from cfo_assistant.utils.sanitize import sanitize_cell
from factories import make_invoice


class TestSanitizeCell:
    """Tests for spreadsheet formula neutralization."""

    def test_formula_prefixes_quoted(self) -> None:
        """Test that formula-triggering text is prefixed with a quote."""
        assert sanitize_cell("=SUM(A1:A2)") == "'=SUM(A1:A2)"
        assert sanitize_cell("@cmd") == "'@cmd"
        assert sanitize_cell("-5 refund") == "'-5 refund"

    def test_other_values_unchanged(self) -> None:
        """Test that plain text and non-strings pass through."""
        assert sanitize_cell("Acme Ltd") == "Acme Ltd"
        assert sanitize_cell("") == ""
        assert sanitize_cell(12.5) == 12.5
        assert sanitize_cell(None) is None


class TestWriteForecast:
    """Tests for the forecast workbook."""

    def test_sheets_and_values(self, tmp_path: Path) -> None:
        """Test sheet layout, daily values and the issues sheet."""
        forecast = generate_forecast(
            date(2024, 6, 1), 10, Decimal("1000"),
            invoices=[make_invoice(amount_due="500.00", due_date=date(2024, 6, 3))],
        )
        issue = CashFlowIssue(
            issue_type=CashFlowIssueType.LOW_BALANCE,
            severity=Severity.MEDIUM,
            description="Cash balance projected to fall below $5,000.00",
            issue_date=date(2024, 6, 1),
            recommendations=["Chase overdue invoices", "Delay discretionary spend"],
        )
        path = tmp_path / "out" / "forecast.xlsx"

        ExcelWriter().write_forecast(path, forecast, issues=[issue])

        wb = load_workbook(path)
        assert wb.sheetnames == ["Summary", "Daily", "Weekly", "Monthly", "Cash Flow Issues"]

        daily = wb["Daily"]
        assert daily["A1"].value == "Date"
        assert daily["A2"].value == datetime(2024, 6, 1)
        assert daily["B4"].value == 400.0
        assert daily["E11"].value == 1400.0
        assert daily["F4"].value == "Invoice INV-001 - Acme Ltd"

        issues = wb["Cash Flow Issues"]
        assert issues["B2"].value == "LOW_BALANCE"
        assert issues["E2"].value == "Chase overdue invoices\nDelay discretionary spend"

    def test_no_issues_sheet_by_default(self, tmp_path: Path) -> None:
        """Test that the issues sheet is only written when issues are given."""
        path = tmp_path / "forecast.xlsx"
        ExcelWriter().write_forecast(path, generate_forecast(date(2024, 6, 1), 3, Decimal("0")))
        assert "Cash Flow Issues" not in load_workbook(path).sheetnames

    def test_money_format_uses_currency_symbol(self, tmp_path: Path) -> None:
        """Test that the configured symbol and precision shape the number format."""
        path = tmp_path / "forecast.xlsx"
        writer = ExcelWriter(OutputConfig(currency_symbol="£", decimal_places=0))
        writer.write_forecast(path, generate_forecast(date(2024, 6, 1), 3, Decimal("0")))

        cell = load_workbook(path)["Summary"]["B6"]
        assert cell.number_format.startswith("£#,##0_)")


class TestWriteAnomalyReport:
    """Tests for the anomaly workbook."""

    def test_sheets_and_sanitized_text(self, tmp_path: Path) -> None:
        """Test sheet layout, counts and formula neutralization."""
        anomaly = Anomaly(
            anomaly_type=AnomalyType.UNUSUAL_TRANSACTION_AMOUNT,
            severity=Severity.MEDIUM,
            description="=HYPERLINK(\"http://example.invalid\")",
            anomaly_date=date(2024, 5, 1),
            details={"amount": Decimal("10000"), "transactionId": "big"},
        )
        report = build_report(AnomalyScan(
            anomalies=[anomaly], from_date=date(2024, 3, 15), to_date=date(2024, 6, 15),
        ))
        path = tmp_path / "anomalies.xlsx"

        ExcelWriter().write_anomaly_report(path, report)

        wb = load_workbook(path)
        assert wb.sheetnames == ["Summary", "Anomalies", "Recommendations"]
        summary = wb["Summary"]
        assert summary["B2"].value == "2024-03-15 to 2024-06-15"
        assert summary["B5"].value == 1
        rows = wb["Anomalies"]
        assert rows["E2"].value.startswith("'=HYPERLINK")
        assert rows["F2"].value == "amount: 10000.00; transactionId: big"
        assert wb["Recommendations"].max_row == 1


class TestWriteKPIReport:
    """Tests for the KPI workbook."""

    def test_sheets(self, tmp_path: Path) -> None:
        """Test sheet layout, the headline score and a ratio row."""
        analysis = RatioAnalysis(
            ratios=FinancialRatios(gross_profit_margin=15, net_profit_margin=-5),
            figures=ReportFigures(revenue=1000.0),
            from_date=date(2024, 3, 15),
            to_date=date(2024, 6, 15),
        )
        report = KPIReport(
            health=score_health(analysis),
            revenue=RevenueKPIs(total_revenue=Decimal("1000"), paid_revenue=Decimal("600"), invoice_count=2),
            expenses=ExpenseKPIs(total_expenses=Decimal("300"), total_revenue=Decimal("1000")),
        )
        path = tmp_path / "kpis.xlsx"

        ExcelWriter().write_kpi_report(path, report)

        wb = load_workbook(path)
        assert wb.sheetnames == ["Health", "Ratios", "Raw Figures", "Recommendations"]
        assert wb["Health"]["B3"].value == 26
        assert wb["Health"]["B4"].value == "CRITICAL"
        assert wb["Ratios"]["A2"].value == "grossProfitMargin"
        assert wb["Ratios"]["B2"].value == 15
        assert wb["Raw Figures"]["B2"].value == 1000
        assert wb["Recommendations"]["B2"].value == "Low gross profit margin"
