"""CFO assistant: cash-flow forecasting, anomaly detection, KPIs and reconciliation."""

__version__ = "0.1.0"
