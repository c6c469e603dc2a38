"""Output generation for Excel exports."""

from cfo_assistant.output.excel_writer import ExcelWriter

__all__ = ["ExcelWriter"]
