"""Excel workbook writer for forecasts, anomaly reports and KPIs."""

from decimal import Decimal
from pathlib import Path
from typing import Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.worksheet.worksheet import Worksheet

from cfo_assistant.config import OutputConfig
from cfo_assistant.models.anomaly import AnomalyReport, Severity, to_json_value
from cfo_assistant.models.forecast import CashFlowIssue, ForecastTimeline, PeriodForecast
from cfo_assistant.models.kpi import HealthScore, KPIReport
from cfo_assistant.utils.logging_config import get_logger
from cfo_assistant.utils.sanitize import sanitize_cell

logger = get_logger(__name__)


class ExcelWriter:
    """Writes analytics results to Excel workbooks.

    Forecast workbooks hold Summary, Daily, Weekly, Monthly and (when
    issues are given) Cash Flow Issues sheets. Anomaly workbooks hold
    Summary, Anomalies and Recommendations. KPI workbooks hold Health,
    Ratios, Raw Figures and Recommendations.
    """

    def __init__(self, output_config: Optional[OutputConfig] = None):
        """Initialize Excel writer.

        Args:
            output_config: Currency symbol and precision (defaults if None).
        """
        self.output_config = output_config or OutputConfig()

        self.header_font = Font(bold=True, color="FFFFFF")
        self.header_fill = PatternFill(
            start_color="4472C4", end_color="4472C4", fill_type="solid"
        )
        self.title_font = Font(bold=True, size=14)
        self.section_font = Font(bold=True, size=12)
        self.severity_fonts = {
            Severity.HIGH: Font(bold=True, color="CC0000"),
            Severity.MEDIUM: Font(color="CC6600"),
            Severity.LOW: Font(color="006600"),
        }
        self.wrapped = Alignment(wrap_text=True, vertical="top")

    def _money_format(self) -> str:
        """Excel number format for money values."""
        symbol = self.output_config.currency_symbol
        places = "0" * self.output_config.decimal_places
        body = f"#,##0.{places}" if places else "#,##0"
        return f'{symbol}{body}_);[Red]({symbol}{body})'

    @staticmethod
    def _new_workbook() -> Workbook:
        wb = Workbook()
        if wb.active:
            wb.remove(wb.active)
        return wb

    @staticmethod
    def _save(wb: Workbook, output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        wb.save(output_path)
        logger.info(f"Excel workbook saved: {output_path}")

    def _write_headers(self, ws: Worksheet, row: int, headers: Sequence[str]) -> None:
        for col, header in enumerate(headers, 1):
            cell = ws.cell(row=row, column=col, value=header)
            cell.font = self.header_font
            cell.fill = self.header_fill

    def _money_cell(self, ws: Worksheet, row: int, column: int, amount: Decimal) -> None:
        cell = ws.cell(row=row, column=column, value=float(amount))
        cell.number_format = self._money_format()

    def _set_widths(self, ws: Worksheet, widths: dict[str, int]) -> None:
        for column, width in widths.items():
            ws.column_dimensions[column].width = width

    # Forecast

    def write_forecast(
        self,
        output_path: Path,
        forecast: ForecastTimeline,
        issues: Optional[Sequence[CashFlowIssue]] = None,
    ) -> None:
        """Write a cash-flow forecast workbook.

        Args:
            output_path: Path for output file.
            forecast: Forecast timeline.
            issues: Optional detected cash-flow issues.
        """
        logger.info(f"Writing forecast workbook to {output_path}")
        wb = self._new_workbook()

        self._create_forecast_summary(wb, forecast)
        self._create_daily_sheet(wb, forecast)
        self._create_period_sheet(wb, "Weekly", forecast.weekly)
        self._create_period_sheet(wb, "Monthly", forecast.monthly)
        if issues is not None:
            self._create_issues_sheet(wb, issues)

        self._save(wb, output_path)

    def _create_forecast_summary(self, wb: Workbook, forecast: ForecastTimeline) -> None:
        ws = wb.create_sheet("Summary")
        ws.cell(row=1, column=1, value="CASH FLOW FORECAST").font = self.title_font

        rows: list[tuple[str, object]] = [
            ("Start Date", forecast.start_date),
            ("End Date", forecast.end_date),
            ("Days", forecast.days),
            ("Starting Balance", forecast.starting_balance),
            ("Total Inflow", forecast.total_inflow),
            ("Total Outflow", forecast.total_outflow),
            ("Net Cash Flow", forecast.net_cash_flow),
            ("Ending Balance", forecast.ending_balance),
            ("Lowest Balance", forecast.lowest_balance),
            ("Lowest Balance Date", forecast.lowest_balance_date),
            ("Highest Balance", forecast.highest_balance),
            ("Highest Balance Date", forecast.highest_balance_date),
        ]
        for row, (label, value) in enumerate(rows, 3):
            ws.cell(row=row, column=1, value=label).font = Font(bold=True)
            if isinstance(value, Decimal):
                self._money_cell(ws, row, 2, value)
            else:
                ws.cell(row=row, column=2, value=value)

        self._set_widths(ws, {"A": 24, "B": 18})

    def _create_daily_sheet(self, wb: Workbook, forecast: ForecastTimeline) -> None:
        ws = wb.create_sheet("Daily")
        self._write_headers(ws, 1, [
            "Date", "Inflow", "Outflow", "Net", "Running Balance", "Items",
        ])

        for row, day in enumerate(forecast.daily, 2):
            ws.cell(row=row, column=1, value=day.day)
            self._money_cell(ws, row, 2, day.total_inflow)
            self._money_cell(ws, row, 3, day.total_outflow)
            self._money_cell(ws, row, 4, day.net_cash_flow)
            self._money_cell(ws, row, 5, day.running_balance)
            items = [i.description for i in day.inflows] + [o.description for o in day.outflows]
            ws.cell(row=row, column=6, value=sanitize_cell("; ".join(items)))

        self._set_widths(ws, {"A": 12, "B": 14, "C": 14, "D": 14, "E": 18, "F": 60})
        ws.freeze_panes = "A2"

    def _create_period_sheet(
        self, wb: Workbook, title: str, periods: Sequence[PeriodForecast]
    ) -> None:
        ws = wb.create_sheet(title)
        self._write_headers(ws, 1, [
            "Start Date", "End Date", "Inflow", "Outflow", "Net", "Ending Balance",
        ])

        for row, period in enumerate(periods, 2):
            ws.cell(row=row, column=1, value=period.start_date)
            ws.cell(row=row, column=2, value=period.end_date)
            self._money_cell(ws, row, 3, period.total_inflow)
            self._money_cell(ws, row, 4, period.total_outflow)
            self._money_cell(ws, row, 5, period.net_cash_flow)
            self._money_cell(ws, row, 6, period.ending_balance)

        self._set_widths(ws, {"A": 12, "B": 12, "C": 14, "D": 14, "E": 14, "F": 18})
        ws.freeze_panes = "A2"

    def _create_issues_sheet(self, wb: Workbook, issues: Sequence[CashFlowIssue]) -> None:
        ws = wb.create_sheet("Cash Flow Issues")
        self._write_headers(ws, 1, ["Date", "Type", "Severity", "Description", "Recommendations"])

        for row, issue in enumerate(issues, 2):
            ws.cell(row=row, column=1, value=issue.issue_date)
            ws.cell(row=row, column=2, value=issue.issue_type.value)
            severity_cell = ws.cell(row=row, column=3, value=issue.severity.value)
            severity_cell.font = self.severity_fonts[issue.severity]
            ws.cell(row=row, column=4, value=sanitize_cell(issue.description))
            cell = ws.cell(row=row, column=5, value="\n".join(issue.recommendations))
            cell.alignment = self.wrapped

        self._set_widths(ws, {"A": 12, "B": 22, "C": 10, "D": 60, "E": 70})
        ws.freeze_panes = "A2"

    # Anomalies

    def write_anomaly_report(self, output_path: Path, report: AnomalyReport) -> None:
        """Write an anomaly report workbook.

        Args:
            output_path: Path for output file.
            report: Anomaly report with recommendations.
        """
        logger.info(f"Writing anomaly workbook to {output_path}")
        wb = self._new_workbook()

        self._create_anomaly_summary(wb, report)
        self._create_anomalies_sheet(wb, report)
        self._create_anomaly_recommendations(wb, report)

        self._save(wb, output_path)

    def _create_anomaly_summary(self, wb: Workbook, report: AnomalyReport) -> None:
        ws = wb.create_sheet("Summary")
        ws.cell(row=1, column=1, value="ANOMALY REPORT").font = self.title_font
        ws.cell(row=2, column=1, value="Period")
        ws.cell(row=2, column=2, value=f"{report.scan.from_date} to {report.scan.to_date}")

        row = 4
        for label, severity in (("High", Severity.HIGH), ("Medium", Severity.MEDIUM), ("Low", Severity.LOW)):
            ws.cell(row=row, column=1, value=f"{label} Severity")
            ws.cell(row=row, column=2, value=report.count_by_severity(severity))
            row += 1
        ws.cell(row=row, column=1, value="Total").font = Font(bold=True)
        ws.cell(row=row, column=2, value=len(report.anomalies)).font = Font(bold=True)

        row += 2
        self._write_headers(ws, row, ["Type", "Count", "High Severity"])
        for summary in report.type_summaries:
            row += 1
            ws.cell(row=row, column=1, value=summary.anomaly_type.value)
            ws.cell(row=row, column=2, value=summary.count)
            ws.cell(row=row, column=3, value=summary.high_severity)

        self._set_widths(ws, {"A": 36, "B": 26, "C": 14})

    def _create_anomalies_sheet(self, wb: Workbook, report: AnomalyReport) -> None:
        ws = wb.create_sheet("Anomalies")
        self._write_headers(ws, 1, ["Date", "Period", "Type", "Severity", "Description", "Details"])

        for row, anomaly in enumerate(report.anomalies, 2):
            ws.cell(row=row, column=1, value=anomaly.anomaly_date)
            if anomaly.period is not None:
                ws.cell(
                    row=row, column=2,
                    value=sanitize_cell(f"{anomaly.period.from_label} - {anomaly.period.to_label}"),
                )
            ws.cell(row=row, column=3, value=anomaly.anomaly_type.value)
            severity_cell = ws.cell(row=row, column=4, value=anomaly.severity.value)
            severity_cell.font = self.severity_fonts[anomaly.severity]
            ws.cell(row=row, column=5, value=sanitize_cell(anomaly.description))
            details = to_json_value(anomaly.details)
            detail_text = "; ".join(f"{k}: {v}" for k, v in details.items())  # type: ignore[union-attr]
            ws.cell(row=row, column=6, value=sanitize_cell(detail_text))

        self._set_widths(ws, {"A": 12, "B": 24, "C": 34, "D": 10, "E": 60, "F": 80})
        ws.freeze_panes = "A2"

    def _create_anomaly_recommendations(self, wb: Workbook, report: AnomalyReport) -> None:
        ws = wb.create_sheet("Recommendations")
        self._write_headers(ws, 1, ["Priority", "Recommendation", "Description", "Action Items"])

        for row, rec in enumerate(report.recommendations, 2):
            ws.cell(row=row, column=1, value=rec.priority.value).font = self.severity_fonts[rec.priority]
            ws.cell(row=row, column=2, value=rec.recommendation)
            ws.cell(row=row, column=3, value=rec.description).alignment = self.wrapped
            ws.cell(row=row, column=4, value="\n".join(rec.action_items)).alignment = self.wrapped

        self._set_widths(ws, {"A": 10, "B": 40, "C": 60, "D": 60})

    # KPIs

    def write_kpi_report(self, output_path: Path, report: KPIReport) -> None:
        """Write a KPI workbook.

        Args:
            output_path: Path for output file.
            report: KPIs with the underlying health score.
        """
        logger.info(f"Writing KPI workbook to {output_path}")
        wb = self._new_workbook()

        self._create_health_sheet(wb, report)
        self._create_key_value_sheet(wb, "Ratios", report.health.ratios.to_dict(), money=False)
        self._create_key_value_sheet(
            wb, "Raw Figures", report.health.analysis.figures.to_dict(), money=True
        )
        self._create_health_recommendations(wb, report.health)

        self._save(wb, output_path)

    def _create_health_sheet(self, wb: Workbook, report: KPIReport) -> None:
        ws = wb.create_sheet("Health")
        health = report.health
        ws.cell(row=1, column=1, value="BUSINESS HEALTH").font = self.title_font
        ws.cell(row=2, column=1, value="Period")
        ws.cell(
            row=2, column=2,
            value=f"{health.analysis.from_date} to {health.analysis.to_date}",
        )
        ws.cell(row=3, column=1, value="Overall Score").font = Font(bold=True)
        ws.cell(row=3, column=2, value=round(health.overall_score))
        ws.cell(row=4, column=1, value="Status").font = Font(bold=True)
        ws.cell(row=4, column=2, value=health.status.value)

        row = 6
        ws.cell(row=row, column=1, value="Component Scores").font = self.section_font
        for name, score in health.components.to_dict().items():
            row += 1
            ws.cell(row=row, column=1, value=name.capitalize())
            ws.cell(row=row, column=2, value=score)

        row += 2
        ws.cell(row=row, column=1, value="Revenue").font = self.section_font
        revenue = report.revenue
        for label, amount in (
            ("Total Revenue", revenue.total_revenue),
            ("Paid Revenue", revenue.paid_revenue),
            ("Unpaid Revenue", revenue.unpaid_revenue),
            ("Average Invoice Value", revenue.average_invoice_value),
        ):
            row += 1
            ws.cell(row=row, column=1, value=label)
            self._money_cell(ws, row, 2, amount)
        row += 1
        ws.cell(row=row, column=1, value="Collection Rate %")
        ws.cell(row=row, column=2, value=round(revenue.collection_rate, 2))

        row += 2
        ws.cell(row=row, column=1, value="Expenses").font = self.section_font
        row += 1
        ws.cell(row=row, column=1, value="Total Expenses")
        self._money_cell(ws, row, 2, report.expenses.total_expenses)
        row += 1
        ws.cell(row=row, column=1, value="Expense to Revenue %")
        ws.cell(row=row, column=2, value=round(report.expenses.expense_to_revenue_ratio, 2))

        self._set_widths(ws, {"A": 26, "B": 26})

    def _create_key_value_sheet(
        self, wb: Workbook, title: str, values: dict[str, object], money: bool
    ) -> None:
        ws = wb.create_sheet(title)
        self._write_headers(ws, 1, ["Name", "Value"])
        for row, (name, value) in enumerate(values.items(), 2):
            ws.cell(row=row, column=1, value=name)
            cell = ws.cell(row=row, column=2, value=round(float(value), 4))  # type: ignore[arg-type]
            cell.number_format = self._money_format() if money else "0.00"
        self._set_widths(ws, {"A": 28, "B": 18})

    def _create_health_recommendations(self, wb: Workbook, health: HealthScore) -> None:
        ws = wb.create_sheet("Recommendations")
        self._write_headers(ws, 1, ["Category", "Issue", "Recommendation"])
        for row, rec in enumerate(health.recommendations, 2):
            ws.cell(row=row, column=1, value=rec.category)
            ws.cell(row=row, column=2, value=rec.issue)
            ws.cell(row=row, column=3, value=rec.recommendation).alignment = self.wrapped
        self._set_widths(ws, {"A": 16, "B": 32, "C": 90})
