"""Tabular financial report returned by the accounting provider.

Reports (ProfitAndLoss, BalanceSheet, ...) are a tree: sections hold rows,
rows hold cells, and the first cell of a row is its label. Column labels
come either from an explicit ``columns`` list or from the Header row.
"""

from dataclasses import dataclass, field
from typing import Iterator, Optional

from cfo_assistant.models.documents import get_field


def parse_number(value: object) -> Optional[float]:
    """Parse a report cell value as a float, or None if it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


@dataclass
class ReportCell:
    """A single cell."""

    value: object = None

    @property
    def text(self) -> str:
        """Cell value as a string."""
        return "" if self.value is None else str(self.value)

    @property
    def number(self) -> Optional[float]:
        """Cell value as a float, if numeric."""
        return parse_number(self.value)


@dataclass
class ReportRow:
    """A row, or a section holding nested rows."""

    cells: list[ReportCell] = field(default_factory=list)
    rows: list["ReportRow"] = field(default_factory=list)
    row_type: str = "Row"
    title: Optional[str] = None

    @property
    def label(self) -> Optional[str]:
        """The row label (first cell), or None for an empty row."""
        if not self.cells:
            return None
        return self.cells[0].text

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ReportRow":
        """Create from a provider row object."""
        raw_cells = get_field(data, "cells") or []
        raw_rows = get_field(data, "rows") or []
        title = get_field(data, "title")
        return cls(
            cells=[
                ReportCell(value=get_field(c, "value") if isinstance(c, dict) else c)
                for c in raw_cells  # type: ignore[union-attr]
            ],
            rows=[cls.from_dict(r) for r in raw_rows if isinstance(r, dict)],  # type: ignore[union-attr]
            row_type=str(get_field(data, "rowType") or "Row"),
            title=str(title) if title else None,
        )


@dataclass
class FinancialReport:
    """A named provider report.

    Attributes:
        report_name: e.g. ``"ProfitAndLoss"`` or ``"BalanceSheet"``.
        rows: Top-level rows and sections.
        columns: Column labels (index 0 is the label column).
        report_date: Date label the provider attached to the report.
    """

    report_name: str = ""
    rows: list[ReportRow] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)
    report_date: Optional[str] = None

    def iter_rows(self) -> Iterator[ReportRow]:
        """Yield every row depth-first, sections before their children."""
        stack = list(reversed(self.rows))
        while stack:
            row = stack.pop()
            yield row
            stack.extend(reversed(row.rows))

    def find_row(self, label: str) -> Optional[ReportRow]:
        """Find the first row (depth-first) whose label equals ``label`` exactly.

        Only rows with at least one value cell besides the label qualify.
        """
        for row in self.iter_rows():
            if len(row.cells) > 1 and row.label == label:
                return row
        return None

    def row_value(self, label: str, default: float = 0.0) -> float:
        """Numeric value in the last cell of the row labelled ``label``.

        Args:
            label: Exact row label, e.g. ``"Total Income"``.
            default: Returned when the row is missing or not numeric.

        Returns:
            The value as a float.
        """
        row = self.find_row(label)
        if row is None:
            return default
        value = row.cells[-1].number
        return default if value is None else value

    def column_label(self, index: int) -> str:
        """Label of column ``index``, or an empty string if unknown."""
        if 0 <= index < len(self.columns):
            return self.columns[index]
        return ""

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "FinancialReport":
        """Create from a provider report object.

        Accepts the bare report or the provider envelope
        ``{"reports": [report]}``.
        """
        reports = get_field(data, "reports")
        if isinstance(reports, list) and reports and isinstance(reports[0], dict):
            data = reports[0]

        rows = [
            ReportRow.from_dict(r)
            for r in (get_field(data, "rows") or [])  # type: ignore[union-attr]
            if isinstance(r, dict)
        ]

        raw_columns = get_field(data, "columns")
        if isinstance(raw_columns, list):
            columns = [
                str(get_field(c, "value") or "") if isinstance(c, dict) else str(c)
                for c in raw_columns
            ]
        else:
            header = next((r for r in rows if r.row_type == "Header"), None)
            columns = [c.text for c in header.cells] if header else []

        report_date = get_field(data, "reportDate")
        return cls(
            report_name=str(get_field(data, "reportName") or get_field(data, "reportID") or ""),
            rows=rows,
            columns=columns,
            report_date=str(report_date) if report_date else None,
        )
