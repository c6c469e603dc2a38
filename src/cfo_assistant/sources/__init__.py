"""Accounting-provider interface and implementations."""

from cfo_assistant.sources.base import AccountingProvider, DocumentFilter, ReportOptions
from cfo_assistant.sources.snapshot import SnapshotProvider

__all__ = [
    "AccountingProvider",
    "DocumentFilter",
    "ReportOptions",
    "SnapshotProvider",
]
