"""Data models for transactions, categories, provider documents and analytics results."""

from cfo_assistant.models.anomaly import Anomaly, AnomalyReport, AnomalyScan, AnomalyType, Severity
from cfo_assistant.models.batch import BatchResult
from cfo_assistant.models.category import (
    Category,
    CategoryRule,
    CategoryType,
    ConditionOperator,
    RuleCondition,
)
from cfo_assistant.models.documents import (
    BankTransaction,
    Invoice,
    RepeatingDocument,
    Schedule,
    ScheduleUnit,
)
from cfo_assistant.models.forecast import (
    CashFlowIssue,
    CashFlowIssueType,
    DailyForecast,
    ForecastTimeline,
    PeriodForecast,
)
from cfo_assistant.models.kpi import FinancialRatios, HealthScore, HealthStatus, KPIReport, ScoreMetric
from cfo_assistant.models.reconciliation import DocumentType, MatchCandidate, PotentialMatches
from cfo_assistant.models.report import FinancialReport
from cfo_assistant.models.transaction import TransactionKind, TransactionRecord, TransactionStatus

__all__ = [
    "Anomaly",
    "AnomalyReport",
    "AnomalyScan",
    "AnomalyType",
    "Severity",
    "BatchResult",
    "Category",
    "CategoryRule",
    "CategoryType",
    "ConditionOperator",
    "RuleCondition",
    "BankTransaction",
    "Invoice",
    "RepeatingDocument",
    "Schedule",
    "ScheduleUnit",
    "CashFlowIssue",
    "CashFlowIssueType",
    "DailyForecast",
    "ForecastTimeline",
    "PeriodForecast",
    "FinancialRatios",
    "HealthScore",
    "HealthStatus",
    "KPIReport",
    "ScoreMetric",
    "DocumentType",
    "MatchCandidate",
    "PotentialMatches",
    "FinancialReport",
    "TransactionKind",
    "TransactionRecord",
    "TransactionStatus",
]
