"""Anomaly detection result models."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from cfo_assistant.utils.date_utils import date_to_iso, safe_parse_date
from cfo_assistant.utils.decimal_utils import format_currency


class Severity(Enum):
    """Severity of an anomaly or cash-flow issue."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Sort rank: HIGH sorts first."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.HIGH: 0, Severity.MEDIUM: 1, Severity.LOW: 2}


class AnomalyType(Enum):
    """Kinds of anomaly the detector reports."""

    UNUSUAL_TRANSACTION_AMOUNT = "UNUSUAL_TRANSACTION_AMOUNT"
    POTENTIAL_DUPLICATE_TRANSACTION = "POTENTIAL_DUPLICATE_TRANSACTION"
    UNUSUAL_INVOICE_AMOUNT = "UNUSUAL_INVOICE_AMOUNT"
    LONG_OVERDUE_INVOICE = "LONG_OVERDUE_INVOICE"
    UNUSUAL_EXPENSE_PATTERN = "UNUSUAL_EXPENSE_PATTERN"
    GROSS_MARGIN_DECLINE = "GROSS_MARGIN_DECLINE"
    NET_MARGIN_DECLINE = "NET_MARGIN_DECLINE"


def to_json_value(value: object) -> object:
    """Convert Decimals, dates, enums and containers to JSON-friendly values."""
    if isinstance(value, Decimal):
        return format_currency(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    return value


@dataclass
class Period:
    """A labelled period. Labels are ISO dates or provider column labels."""

    from_label: str
    to_label: str

    @property
    def end_date(self) -> Optional[date]:
        """The period end as a date, if the label parses as one."""
        return safe_parse_date(self.to_label)

    def to_dict(self) -> dict[str, object]:
        """Serialize to ``{fromDate, toDate}``."""
        return {"fromDate": self.from_label, "toDate": self.to_label}


@dataclass
class Anomaly:
    """A single detected anomaly.

    Attributes:
        anomaly_type: What was detected.
        severity: How urgent it is.
        description: Human-readable summary.
        anomaly_date: Date the anomaly refers to (transactions, invoices).
        period: Period the anomaly refers to (expenses, margins).
        details: Supporting figures and ids.
    """

    anomaly_type: AnomalyType
    severity: Severity
    description: str
    anomaly_date: Optional[date] = None
    period: Optional[Period] = None
    details: dict[str, object] = field(default_factory=dict)

    @property
    def sort_date(self) -> Optional[date]:
        """The anomaly date, or its period end when it only has a period."""
        if self.anomaly_date is not None:
            return self.anomaly_date
        if self.period is not None:
            return self.period.end_date
        return None

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-friendly dictionary."""
        result: dict[str, object] = {
            "type": self.anomaly_type.value,
            "severity": self.severity.value,
            "description": self.description,
        }
        if self.anomaly_date is not None:
            result["date"] = date_to_iso(self.anomaly_date)
        if self.period is not None:
            result["period"] = self.period.to_dict()
        result["details"] = to_json_value(self.details)
        return result


@dataclass
class Recommendation:
    """A follow-up action suggested by an anomaly report."""

    priority: Severity
    recommendation: str
    description: str
    action_items: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "priority": self.priority.value,
            "recommendation": self.recommendation,
            "description": self.description,
            "actionItems": list(self.action_items),
        }


@dataclass
class AnomalyScan:
    """Sorted anomalies found over a scan window."""

    anomalies: list[Anomaly]
    from_date: date
    to_date: date

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-friendly dictionary."""
        return {
            "anomalies": [a.to_dict() for a in self.anomalies],
            "period": {"fromDate": self.from_date.isoformat(), "toDate": self.to_date.isoformat()},
        }


@dataclass
class TypeSummary:
    """Per-type tally in an anomaly report."""

    anomaly_type: AnomalyType
    count: int
    high_severity: int

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "type": self.anomaly_type.value,
            "count": self.count,
            "highSeverity": self.high_severity,
        }


@dataclass
class AnomalyReport:
    """Anomaly scan plus summary counts and recommendations."""

    scan: AnomalyScan
    by_type: dict[AnomalyType, list[Anomaly]]
    type_summaries: list[TypeSummary]
    recommendations: list[Recommendation]

    @property
    def anomalies(self) -> list[Anomaly]:
        """All anomalies in sorted order."""
        return self.scan.anomalies

    def count_by_severity(self, severity: Severity) -> int:
        """Number of anomalies with the given severity."""
        return sum(1 for a in self.scan.anomalies if a.severity == severity)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-friendly dictionary."""
        return {
            "summary": {
                "totalAnomalies": len(self.scan.anomalies),
                "highSeverity": self.count_by_severity(Severity.HIGH),
                "mediumSeverity": self.count_by_severity(Severity.MEDIUM),
                "lowSeverity": self.count_by_severity(Severity.LOW),
                "byType": [s.to_dict() for s in self.type_summaries],
            },
            "anomalies": [a.to_dict() for a in self.scan.anomalies],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "period": {
                "fromDate": self.scan.from_date.isoformat(),
                "toDate": self.scan.to_date.isoformat(),
            },
        }
