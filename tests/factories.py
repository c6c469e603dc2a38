"""Builders for documents, records and reports used across tests."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from cfo_assistant.models.documents import (
    STATUS_AUTHORISED,
    TYPE_PAYABLE,
    TYPE_RECEIVABLE,
    BankTransaction,
    Contact,
    Invoice,
    LineItem,
)
from cfo_assistant.models.report import FinancialReport
from cfo_assistant.models.transaction import TransactionKind, TransactionRecord

FIXED_NOW = datetime(2024, 6, 15, 9, 30, 0)


def make_invoice(
    invoice_id: str = "inv-1",
    amount_due: Optional[str] = "1000.00",
    due_date: Optional[date] = date(2024, 6, 20),
    invoice_date: Optional[date] = date(2024, 6, 1),
    contact: str = "Acme Ltd",
    number: Optional[str] = "INV-001",
    reference: Optional[str] = None,
    status: str = STATUS_AUTHORISED,
    bill: bool = False,
    total: Optional[str] = None,
    lines: Optional[list[tuple[str, str, str]]] = None,
) -> Invoice:
    """Build an invoice or bill; ``lines`` are (account code, name, amount)."""
    due = Decimal(amount_due) if amount_due is not None else None
    return Invoice(
        invoice_id=invoice_id,
        invoice_type=TYPE_PAYABLE if bill else TYPE_RECEIVABLE,
        status=status,
        invoice_number=number,
        reference=reference,
        invoice_date=invoice_date,
        due_date=due_date,
        total=Decimal(total) if total is not None else (due or Decimal("0")),
        amount_due=due,
        contact=Contact(contact_id=f"c-{contact}", name=contact),
        line_items=[
            LineItem(line_amount=Decimal(amount), account_code=code, account_name=name)
            for code, name, amount in (lines or [])
        ],
    )


def make_bank_transaction(
    transaction_id: str,
    total: str,
    on: date,
    reference: Optional[str] = None,
    sub_title: Optional[str] = None,
    transaction_type: str = "RECEIVE",
) -> BankTransaction:
    """Build a provider bank transaction."""
    return BankTransaction(
        bank_transaction_id=transaction_id,
        transaction_type=transaction_type,
        transaction_date=on,
        total=Decimal(total),
        reference=reference,
        sub_title=sub_title,
    )


def make_record(
    amount: str = "-120.00",
    description: str = "Monthly bank fee",
    on: date = date(2024, 6, 10),
    **kwargs: object,
) -> TransactionRecord:
    """Build a cached bank transaction record for user u1 / tenant t1."""
    fields: dict[str, object] = {
        "user_id": "u1",
        "tenant_id": "t1",
        "kind": TransactionKind.BANK,
        "date": on,
        "amount": Decimal(amount),
        "description": description,
    }
    fields.update(kwargs)
    return TransactionRecord(**fields)  # type: ignore[arg-type]


def make_report(name: str, rows: dict[str, list[object]], columns: Optional[list[str]] = None) -> FinancialReport:
    """Build a report from ``{label: [values...]}`` in the provider's JSON shape."""
    data: dict[str, object] = {
        "reportName": name,
        "rows": [
            {
                "rowType": "Section",
                "title": "",
                "rows": [
                    {"rowType": "Row", "cells": [{"value": label}] + [{"value": v} for v in values]}
                    for label, values in rows.items()
                ],
            }
        ],
    }
    if columns is not None:
        data["columns"] = [{"value": c} for c in columns]
    return FinancialReport.from_dict(data)
