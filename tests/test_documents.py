"""Tests for provider document and report parsing."""

from datetime import date
from decimal import Decimal

import pytest

from cfo_assistant.models.documents import (
    TYPE_PAYABLE,
    BankTransaction,
    Invoice,
    RepeatingDocument,
    Schedule,
    ScheduleUnit,
)
from cfo_assistant.models.report import FinancialReport, parse_number
from cfo_assistant.utils.date_utils import add_months, parse_date, safe_parse_date
from factories import make_invoice


class TestParseDate:
    """Tests for provider and user date formats."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("2024-06-15", date(2024, 6, 15)),
            ("2024-06-15T00:00:00", date(2024, 6, 15)),
            ("2024-06-15T10:00:00+00:00", date(2024, 6, 15)),
            ("/Date(1718409600000+0000)/", date(2024, 6, 15)),
            ("/Date(1718409600000)/", date(2024, 6, 15)),
            ("06/15/2024", date(2024, 6, 15)),
            ("15-Jun-2024", date(2024, 6, 15)),
            ("20240615", date(2024, 6, 15)),
        ],
    )
    def test_formats(self, raw: str, expected: date) -> None:
        """Test each accepted format."""
        assert parse_date(raw) == expected

    def test_unparseable(self) -> None:
        """Test that junk raises in parse_date and defaults in safe_parse_date."""
        with pytest.raises(ValueError):
            parse_date("last tuesday")
        assert safe_parse_date("last tuesday") is None
        assert safe_parse_date(None, default=date(2024, 1, 1)) == date(2024, 1, 1)

    @pytest.mark.parametrize(
        "start,months,expected",
        [
            (date(2024, 1, 31), 1, date(2024, 2, 29)),
            (date(2024, 3, 31), -1, date(2024, 2, 29)),
            (date(2024, 6, 15), -3, date(2024, 3, 15)),
            (date(2024, 11, 30), 3, date(2025, 2, 28)),
        ],
    )
    def test_add_months_clamps_day(self, start: date, months: int, expected: date) -> None:
        """Test calendar-month arithmetic."""
        assert add_months(start, months) == expected


class TestInvoice:
    """Tests for invoice and bill parsing."""

    def test_from_camel_case(self) -> None:
        """Test the SDK's camelCase shape."""
        invoice = Invoice.from_dict({
            "invoiceID": "inv-9",
            "type": "ACCREC",
            "status": "AUTHORISED",
            "invoiceNumber": "INV-009",
            "date": "2024-05-01",
            "dueDate": "2024-05-31",
            "total": 1100,
            "amountDue": "1,100.00",
            "contact": {"contactID": "c-1", "name": "Acme Ltd"},
            "lineItems": [{"lineAmount": 1000, "accountCode": "200", "accountName": "Sales"}],
        })

        assert invoice.invoice_id == "inv-9"
        assert invoice.due_date == date(2024, 5, 31)
        assert invoice.amount_due == Decimal("1100.00")
        assert invoice.contact_name == "Acme Ltd"
        assert invoice.line_items[0].account_code == "200"
        assert invoice.days_overdue(date(2024, 6, 15)) == 15

    def test_from_pascal_case(self) -> None:
        """Test the raw REST API's PascalCase shape."""
        bill = Invoice.from_dict({
            "InvoiceID": "bill-1",
            "Type": "accpay",
            "Status": "authorised",
            "DueDate": "/Date(1718409600000+0000)/",
            "Total": "250.00",
        })

        assert bill.is_bill
        assert bill.invoice_type == TYPE_PAYABLE
        assert bill.status == "AUTHORISED"
        assert bill.due_date == date(2024, 6, 15)
        assert bill.amount_due is None
        assert bill.outstanding == Decimal("250.00")

    def test_outstanding_prefers_amount_due(self) -> None:
        """Test that the outstanding amount falls back to the total only when amount due is unset."""
        assert make_invoice(amount_due="40.00", total="100.00").outstanding == Decimal("40.00")
        assert make_invoice(amount_due=None, total="100.00").outstanding == Decimal("100.00")

    def test_not_overdue(self) -> None:
        """Test that undated or future invoices are 0 days overdue."""
        assert make_invoice(due_date=None).days_overdue(date(2024, 6, 15)) == 0
        assert make_invoice(due_date=date(2024, 7, 1)).days_overdue(date(2024, 6, 15)) == 0


class TestBankTransaction:
    """Tests for bank transaction parsing."""

    def test_spend_is_negative(self) -> None:
        """Test that direction comes from the type, not the sign of the total."""
        spend = BankTransaction.from_dict({
            "bankTransactionID": "bt-1", "type": "SPEND-OVERPAYMENT", "total": "75.50",
            "date": "2024-06-01", "subTitle": "Office supplies",
        })

        assert spend.signed_amount == Decimal("-75.50")
        assert spend.description == "Office supplies"
        assert spend.raw["type"] == "SPEND-OVERPAYMENT"

    def test_receive_and_cancelled(self) -> None:
        """Test receives stay positive and VOIDED or DELETED count as cancelled."""
        receive = BankTransaction.from_dict({"bankTransactionID": "bt-2", "total": 10, "status": "voided"})
        assert receive.signed_amount == Decimal("10")
        assert receive.is_cancelled
        assert not BankTransaction(bank_transaction_id="bt-3").is_cancelled


class TestRepeatingDocument:
    """Tests for repeating invoice templates."""

    def test_schedule_parsing(self) -> None:
        """Test that the provider's 'period' field is the interval."""
        document = RepeatingDocument.from_dict({
            "repeatingInvoiceID": "rep-1",
            "type": "ACCPAY",
            "status": "ACTIVE",
            "total": "99.00",
            "schedule": {"unit": "WEEKLY", "period": 2, "nextScheduledDate": "2024-06-20"},
        })

        assert document.is_bill
        assert document.is_active
        assert document.amount == Decimal("99.00")
        assert document.schedule.unit == ScheduleUnit.WEEKLY
        assert document.schedule.interval == 2
        assert document.schedule.next_scheduled_date == date(2024, 6, 20)

    def test_schedule_defaults(self) -> None:
        """Test that unknown units and bad intervals fall back to monthly, every 1."""
        assert Schedule.from_dict(None) == Schedule()
        schedule = Schedule.from_dict({"unit": "FORTNIGHTLY", "interval": "soon"})
        assert schedule.unit == ScheduleUnit.MONTHLY
        assert schedule.interval == 1
        assert Schedule.from_dict({"interval": 0}).interval == 1


class TestFinancialReport:
    """Tests for report tree navigation."""

    REPORT = {
        "reports": [{
            "reportName": "BalanceSheet",
            "reportDate": "30 June 2024",
            "rows": [
                {"rowType": "Header", "cells": [{"value": ""}, {"value": "30 Jun 2024"}]},
                {
                    "rowType": "Section",
                    "title": "Bank",
                    "rows": [
                        {"rowType": "Row", "cells": [{"value": "Bank"}, {"value": "1,250.00"}]},
                    ],
                },
                {
                    "rowType": "Section",
                    "title": "Current Assets",
                    "rows": [
                        {"rowType": "Row", "cells": [{"value": "Bank"}, {"value": "99"}]},
                        {"rowType": "SummaryRow", "cells": [{"value": "Total Current Assets"}, {"value": "4000"}]},
                    ],
                },
                {"rowType": "Row", "cells": [{"value": "Notes"}]},
            ],
        }]
    }

    def test_envelope_and_header_columns(self) -> None:
        """Test that the provider envelope is unwrapped and columns come from the header."""
        report = FinancialReport.from_dict(self.REPORT)

        assert report.report_name == "BalanceSheet"
        assert report.report_date == "30 June 2024"
        assert report.columns == ["", "30 Jun 2024"]
        assert report.column_label(1) == "30 Jun 2024"
        assert report.column_label(5) == ""

    def test_find_row_is_depth_first(self) -> None:
        """Test that the first matching row in document order wins."""
        report = FinancialReport.from_dict(self.REPORT)

        assert report.row_value("Bank") == 1250.0
        assert report.row_value("Total Current Assets") == 4000.0

    def test_missing_or_label_only_rows(self) -> None:
        """Test that rows without value cells are ignored and missing rows use the default."""
        report = FinancialReport.from_dict(self.REPORT)

        assert report.find_row("Notes") is None
        assert report.row_value("Inventory") == 0.0
        assert report.row_value("Inventory", default=-1.0) == -1.0

    @pytest.mark.parametrize(
        "value,expected",
        [(12, 12.0), ("1,234.5", 1234.5), ("", None), ("n/a", None), (None, None), (True, None)],
    )
    def test_parse_number(self, value: object, expected: object) -> None:
        """Test cell value coercion."""
        assert parse_number(value) == expected
