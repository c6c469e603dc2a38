"""Sanitization utilities for spreadsheet output."""

# Characters that trigger formula execution in spreadsheet applications
# when they appear at the start of a cell value (| covers DDE payloads)
_FORMULA_CHARS = ("=", "+", "-", "@", "\t", "\r", "\n", "|")


def sanitize_cell(value: object) -> object:
    """Make a value safe to write into a spreadsheet cell.

    Strings starting with a formula-triggering character are prefixed with
    a single quote (the OWASP CSV-injection mitigation). Contact names,
    references and descriptions come from the accounting provider and are
    user-controlled, so every text cell goes through here. Non-string values
    (numbers, dates, None) are returned unchanged.

    Args:
        value: Cell value.

    Returns:
        Sanitized value.
    """
    if not isinstance(value, str) or not value:
        return value

    if value.startswith(_FORMULA_CHARS):
        return "'" + value

    return value
