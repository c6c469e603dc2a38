"""Tests for cash-flow forecasting and issue detection."""

from datetime import date, datetime
from decimal import Decimal
from typing import Callable
from unittest.mock import MagicMock

import pytest

from cfo_assistant.config import ForecastConfig
from cfo_assistant.exceptions import UpstreamError, ValidationError
from cfo_assistant.models.documents import Contact, RepeatingDocument, Schedule, ScheduleUnit
from cfo_assistant.models.forecast import CashFlowIssueType, CashFlowSource, CashFlowTrend, PeriodForecast
from cfo_assistant.processing.forecaster import (
    CashFlowForecaster,
    analyze_weekly_trend,
    detect_cash_flow_issues,
    estimate_payment_probability,
    generate_forecast,
    schedule_occurrences,
)
from cfo_assistant.sources.base import AccountingProvider
from factories import make_invoice, make_report

START = date(2024, 6, 1)


def repeating(
    amount: str,
    unit: ScheduleUnit = ScheduleUnit.MONTHLY,
    interval: int = 1,
    next_date: date | None = None,
    end_date: date | None = None,
    status: str = "ACTIVE",
) -> RepeatingDocument:
    return RepeatingDocument(
        document_id=f"rep-{amount}",
        status=status,
        amount=Decimal(amount),
        contact=Contact(name="Subscriber"),
        schedule=Schedule(unit=unit, interval=interval, next_scheduled_date=next_date, end_date=end_date),
    )


class TestPaymentProbability:
    """Tests for the overdue-age probability heuristic."""

    @pytest.mark.parametrize(
        "due,expected",
        [
            (date(2024, 6, 10), 80),  # not yet due
            (date(2024, 6, 1), 80),  # due today
            (date(2024, 5, 25), 70),  # 7 days overdue
            (date(2024, 5, 2), 50),  # 30 days overdue
            (date(2024, 3, 3), 30),  # 90 days overdue
            (date(2024, 1, 1), 10),  # beyond 90 days
        ],
    )
    def test_steps_by_overdue_age(self, due: date, expected: int) -> None:
        """Test each step of the probability reduction."""
        assert estimate_payment_probability(make_invoice(due_date=due), START) == expected

    def test_clamped_at_zero(self) -> None:
        """Test that a low base probability does not go negative."""
        invoice = make_invoice(due_date=date(2023, 1, 1))
        assert estimate_payment_probability(invoice, START, base_probability=50) == 0


class TestScheduleOccurrences:
    """Tests for repeating schedule expansion."""

    def test_monthly_from_next_scheduled_date(self) -> None:
        """Test monthly occurrences anchored at the next scheduled date."""
        schedule = Schedule(next_scheduled_date=date(2024, 6, 15))
        assert schedule_occurrences(schedule, START, date(2024, 8, 29)) == [
            date(2024, 6, 15), date(2024, 7, 15), date(2024, 8, 15),
        ]

    def test_defaults_to_window_start(self) -> None:
        """Test that a schedule without a next date starts at the window start."""
        schedule = Schedule(unit=ScheduleUnit.WEEKLY, interval=2)
        assert schedule_occurrences(schedule, START, date(2024, 6, 30)) == [
            date(2024, 6, 1), date(2024, 6, 15), date(2024, 6, 29),
        ]

    def test_month_end_does_not_drift(self) -> None:
        """Test that Jan 31 monthly lands on Feb 29 then Mar 31."""
        schedule = Schedule(next_scheduled_date=date(2024, 1, 31))
        assert schedule_occurrences(schedule, date(2024, 1, 1), date(2024, 3, 31)) == [
            date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31),
        ]

    def test_past_anchor_skips_dates_before_window(self) -> None:
        """Test that occurrences before the window start are dropped."""
        schedule = Schedule(unit=ScheduleUnit.DAILY, interval=3, next_scheduled_date=date(2024, 5, 28))
        assert schedule_occurrences(schedule, START, date(2024, 6, 7)) == [
            date(2024, 6, 3), date(2024, 6, 6),
        ]

    def test_end_date_caps_occurrences(self) -> None:
        """Test that the schedule end date is respected."""
        schedule = Schedule(next_scheduled_date=date(2024, 6, 10), end_date=date(2024, 7, 1))
        assert schedule_occurrences(schedule, START, date(2024, 12, 31)) == [date(2024, 6, 10)]

    def test_yearly(self) -> None:
        """Test yearly schedules."""
        schedule = Schedule(unit=ScheduleUnit.YEARLY, next_scheduled_date=date(2024, 6, 20))
        assert schedule_occurrences(schedule, START, date(2025, 12, 31)) == [
            date(2024, 6, 20), date(2025, 6, 20),
        ]


class TestGenerateForecast:
    """Tests for the daily, weekly and monthly timeline."""

    def test_days_must_be_positive(self) -> None:
        """Test that a zero-day forecast is rejected."""
        with pytest.raises(ValidationError):
            generate_forecast(START, 0, Decimal("1000"))

    def test_buckets(self) -> None:
        """Test daily, weekly and calendar-month bucket boundaries."""
        forecast = generate_forecast(START, 45, Decimal("1000"))

        assert len(forecast.daily) == 45
        assert forecast.end_date == date(2024, 7, 15)
        assert len(forecast.weekly) == 7
        assert forecast.weekly[-1].start_date == date(2024, 7, 13)
        assert forecast.weekly[-1].end_date == date(2024, 7, 15)
        assert [(m.year, m.month) for m in forecast.monthly] == [(2024, 6), (2024, 7)]
        assert forecast.monthly[1].end_date == date(2024, 7, 15)

    def test_invoice_inflow_is_weighted(self) -> None:
        """Test that only the probability-weighted amount moves the balance."""
        invoice = make_invoice(amount_due="1000.00", due_date=date(2024, 6, 3))

        forecast = generate_forecast(START, 5, Decimal("0"), invoices=[invoice])

        day = forecast.daily[2]
        assert day.inflows[0].amount == Decimal("1000.00")
        assert day.inflows[0].probability == 80
        assert day.total_inflow == Decimal("800.00")
        assert day.running_balance == Decimal("800.00")
        assert day.inflows[0].source == CashFlowSource.INVOICE

    def test_bill_outflow_is_full_weight(self) -> None:
        """Test that bills are paid in full on their due date."""
        bill = make_invoice("bill-1", amount_due="300.00", due_date=date(2024, 6, 2), bill=True)

        forecast = generate_forecast(START, 3, Decimal("1000"), bills=[bill])

        assert forecast.daily[1].total_outflow == Decimal("300.00")
        assert forecast.daily[2].running_balance == Decimal("700.00")

    def test_skips_undated_unpaid_and_out_of_window(self) -> None:
        """Test that documents without due date, amount due, or outside the window are dropped."""
        invoices = [
            make_invoice("a", due_date=None),
            make_invoice("b", amount_due=None),
            make_invoice("c", amount_due="0"),
            make_invoice("d", due_date=date(2024, 5, 31)),
            make_invoice("e", due_date=date(2024, 6, 11)),
        ]
        forecast = generate_forecast(START, 10, Decimal("100"), invoices=invoices)

        assert all(not d.inflows for d in forecast.daily)
        assert forecast.lowest_balance == Decimal("100")

    def test_repeating_documents(self) -> None:
        """Test that active repeating documents add one item per occurrence."""
        forecast = generate_forecast(
            START, 61, Decimal("0"),
            repeating_invoices=[repeating("100.00", next_date=date(2024, 6, 5))],
            repeating_bills=[
                repeating("40.00", unit=ScheduleUnit.WEEKLY, next_date=date(2024, 6, 1)),
                repeating("999.00", status="DRAFT"),
            ],
        )

        inflows = [i for d in forecast.daily for i in d.inflows]
        outflows = [o for d in forecast.daily for o in d.outflows]
        assert [i.due_date for i in inflows] == [date(2024, 6, 5), date(2024, 7, 5)]
        assert all(i.probability == 80 and i.source == CashFlowSource.REPEATING_INVOICE for i in inflows)
        assert len(outflows) == 9
        assert all(o.probability == 100 for o in outflows)

    def test_running_balance_accumulates(self) -> None:
        """Test running[i] = running[i-1] + net[i] and the period ending balances."""
        forecast = generate_forecast(
            START, 40, Decimal("5000"),
            invoices=[make_invoice("i1", amount_due="2000.00", due_date=date(2024, 6, 10))],
            bills=[make_invoice("b1", amount_due="3500.00", due_date=date(2024, 6, 20), bill=True)],
        )

        previous = Decimal("5000")
        for day in forecast.daily:
            assert day.running_balance == previous + day.net_cash_flow
            previous = day.running_balance

        for period in forecast.weekly + forecast.monthly:
            last_day = next(d for d in forecast.daily if d.day == period.end_date)
            assert period.ending_balance == last_day.running_balance

        assert forecast.highest_balance == Decimal("6600.00")
        assert forecast.highest_balance_date == date(2024, 6, 10)
        assert forecast.lowest_balance == Decimal("3100.00")
        assert forecast.lowest_balance_date == date(2024, 6, 20)

    def test_is_deterministic(self) -> None:
        """Test that identical inputs give identical serialized output."""
        kwargs = dict(
            start_date=START,
            days=30,
            current_balance=Decimal("1234.56"),
            invoices=[make_invoice(due_date=date(2024, 6, 4))],
            bills=[make_invoice("b", due_date=date(2024, 6, 9), bill=True)],
            repeating_bills=[repeating("50.00", next_date=date(2024, 6, 2))],
        )
        assert generate_forecast(**kwargs).to_dict() == generate_forecast(**kwargs).to_dict()  # type: ignore[arg-type]

    def test_overdue_age_uses_as_of(self) -> None:
        """Test that overdue age is measured from ``as_of`` when given."""
        invoice = make_invoice(due_date=date(2024, 6, 2))
        forecast = generate_forecast(START, 5, Decimal("0"), invoices=[invoice], as_of=date(2024, 6, 12))
        assert forecast.daily[1].inflows[0].probability == 50


class TestWeeklyTrend:
    """Tests for the directional-majority trend heuristic."""

    def weeks(self, nets: list[int]) -> list[PeriodForecast]:
        return [
            PeriodForecast(start_date=START, end_date=START, total_inflow=Decimal(n))
            for n in nets
        ]

    def test_declining(self) -> None:
        """Test three drops and no rises."""
        assert analyze_weekly_trend(self.weeks([400, 300, 200, 100])) == CashFlowTrend.DECLINING

    def test_improving(self) -> None:
        """Test that three rises against one drop is improving."""
        assert analyze_weekly_trend(self.weeks([1, 2, 3, 4, 3])) == CashFlowTrend.IMPROVING

    def test_balanced_changes_are_stable(self) -> None:
        """Test that two rises and two drops are stable."""
        assert analyze_weekly_trend(self.weeks([1, 2, 3, 2, 1])) == CashFlowTrend.STABLE

    def test_single_week_is_stable(self) -> None:
        """Test that fewer than two weeks cannot have a trend."""
        assert analyze_weekly_trend(self.weeks([100])) == CashFlowTrend.STABLE


class TestDetectCashFlowIssues:
    """Tests for cash-flow issue detection."""

    def test_negative_balance_suppresses_low_balance(self) -> None:
        """Test that only the negative-balance issue is raised when balance goes below zero."""
        bill = make_invoice("b", amount_due="1500.00", due_date=date(2024, 6, 3), bill=True)
        forecast = generate_forecast(START, 7, Decimal("1000"), bills=[bill])

        report = detect_cash_flow_issues(forecast)

        types = [i.issue_type for i in report.issues]
        assert CashFlowIssueType.NEGATIVE_BALANCE in types
        assert CashFlowIssueType.LOW_BALANCE not in types
        negative = report.issues[0]
        assert negative.issue_date == date(2024, 6, 3)
        assert negative.severity.value == "HIGH"

    def test_low_balance(self) -> None:
        """Test the first day under the threshold is reported."""
        bill = make_invoice("b", amount_due="3000.00", due_date=date(2024, 6, 4), bill=True)
        forecast = generate_forecast(START, 7, Decimal("6000"), bills=[bill])

        report = detect_cash_flow_issues(forecast)

        assert report.issues[0].issue_type == CashFlowIssueType.LOW_BALANCE
        assert report.issues[0].issue_date == date(2024, 6, 4)

    def test_one_significant_outflow_issue_per_day(self) -> None:
        """Test that each day over the outflow threshold gets its own issue."""
        bills = [
            make_invoice("b1", amount_due="12000.00", due_date=date(2024, 6, 2), bill=True),
            make_invoice("b2", amount_due="11000.00", due_date=date(2024, 6, 5), bill=True),
            make_invoice("b3", amount_due="500.00", due_date=date(2024, 6, 6), bill=True),
        ]
        forecast = generate_forecast(START, 7, Decimal("100000"), bills=bills)

        report = detect_cash_flow_issues(forecast)

        outflow_days = [
            i.issue_date for i in report.issues
            if i.issue_type == CashFlowIssueType.SIGNIFICANT_OUTFLOW
        ]
        assert outflow_days == [date(2024, 6, 2), date(2024, 6, 5)]

    def test_thresholds_from_config(self) -> None:
        """Test custom low-balance threshold."""
        forecast = generate_forecast(START, 3, Decimal("800"))
        config = ForecastConfig(low_balance_threshold=Decimal("500"))

        assert detect_cash_flow_issues(forecast, config).issues == []
        assert detect_cash_flow_issues(forecast).issues[0].issue_type == CashFlowIssueType.LOW_BALANCE

    def test_declining_cash_flow(self) -> None:
        """Test that shrinking weekly net flow raises a declining issue."""
        invoices = [
            make_invoice(f"i{w}", amount_due=str(amount), due_date=date(2024, 6, 1 + 7 * w))
            for w, amount in enumerate([4000, 3000, 2000, 1000])
        ]
        forecast = generate_forecast(START, 28, Decimal("50000"), invoices=invoices)

        report = detect_cash_flow_issues(forecast)

        assert report.trend == CashFlowTrend.DECLINING
        assert report.issues[-1].issue_type == CashFlowIssueType.DECLINING_CASH_FLOW


class TestCashFlowForecaster:
    """Tests for the provider-backed forecaster."""

    @pytest.fixture
    def provider(self) -> MagicMock:
        """Provider with one invoice, one bill and a balance sheet."""
        mock = MagicMock(spec=AccountingProvider)
        mock.fetch_invoices.return_value = [make_invoice(due_date=date(2024, 6, 20))]
        mock.fetch_bills.return_value = [make_invoice("b", amount_due="200.00", due_date=date(2024, 6, 18), bill=True)]
        mock.fetch_repeating_invoices.return_value = []
        mock.fetch_repeating_bills.return_value = []
        mock.fetch_report.return_value = make_report("BalanceSheet", {"Bank": ["2,500.00"]})
        return mock

    def test_uses_bank_balance_and_clock(self, provider: MagicMock, clock: Callable[[], datetime]) -> None:
        """Test the opening balance comes from the balance sheet and the start from the clock."""
        forecaster = CashFlowForecaster(provider, ForecastConfig(days=30), clock=clock)

        forecast = forecaster.generate("t1")

        assert forecast.start_date == date(2024, 6, 15)
        assert forecast.days == 30
        assert forecast.starting_balance == Decimal("2500.00")
        assert provider.fetch_report.call_args.args[1] == "BalanceSheet"
        invoice_filter = provider.fetch_invoices.call_args.args[1]
        assert invoice_filter.invoice_type == "ACCREC"
        assert invoice_filter.statuses == ("AUTHORISED",)

    def test_explicit_balance_skips_report(self, provider: MagicMock, clock: Callable[[], datetime]) -> None:
        """Test that a supplied balance avoids the balance-sheet fetch."""
        forecaster = CashFlowForecaster(provider, clock=clock)

        forecaster.generate("t1", start_date=START, days=10, current_balance=Decimal("10"))

        provider.fetch_report.assert_not_called()

    def test_upstream_failure_propagates(self, provider: MagicMock, clock: Callable[[], datetime]) -> None:
        """Test that a failed fetch aborts the forecast."""
        provider.fetch_bills.side_effect = UpstreamError("provider unavailable")
        forecaster = CashFlowForecaster(provider, clock=clock)

        with pytest.raises(UpstreamError):
            forecaster.generate("t1", current_balance=Decimal("0"))

    def test_detect_issues(self, provider: MagicMock, clock: Callable[[], datetime]) -> None:
        """Test the issue report wraps the forecast."""
        forecaster = CashFlowForecaster(provider, clock=clock)

        report = forecaster.detect_issues("t1", days=14, current_balance=Decimal("1000"))

        assert report.forecast.days == 14
        assert report.issues[0].issue_type == CashFlowIssueType.LOW_BALANCE
