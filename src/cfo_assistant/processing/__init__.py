"""Analytics and matching engines."""

from cfo_assistant.processing.anomaly_detector import (
    AnomalyDetector,
    build_report,
    sort_anomalies,
)
from cfo_assistant.processing.categorizer import Categorizer
from cfo_assistant.processing.forecaster import (
    CashFlowForecaster,
    detect_cash_flow_issues,
    generate_forecast,
)
from cfo_assistant.processing.kpi_calculator import (
    KPICalculator,
    calculate_weighted_score,
    score_health,
)
from cfo_assistant.processing.reconciler import (
    Reconciler,
    calculate_match_confidence,
    rank_candidates,
)
from cfo_assistant.processing.rule_engine import (
    evaluate_condition,
    evaluate_conditions,
    find_matching_rule,
    validate_conditions,
)

__all__ = [
    "AnomalyDetector",
    "build_report",
    "sort_anomalies",
    "Categorizer",
    "CashFlowForecaster",
    "detect_cash_flow_issues",
    "generate_forecast",
    "KPICalculator",
    "calculate_weighted_score",
    "score_health",
    "Reconciler",
    "calculate_match_confidence",
    "rank_candidates",
    "evaluate_condition",
    "evaluate_conditions",
    "find_matching_rule",
    "validate_conditions",
]
