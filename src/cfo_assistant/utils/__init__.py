"""Shared utilities: logging, dates, decimals, statistics, sanitization."""
