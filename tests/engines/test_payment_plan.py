"""
Tests for payment plan scheduling.

Covers:
- Splitting a total so installments sum exactly
- Weekly, bi-weekly and monthly due dates (month-end clamping)
- Overdue refresh and marking installments paid
- Round trip through the stored dict form
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fieldops_engines.payment_plan import (
    InstallmentStatus,
    PlanFrequency,
    add_months,
    build_payment_schedule,
    installment_to_dict,
    mark_installment_paid,
    next_payment_date,
    parse_installment,
    refresh_installment_statuses,
)

START = datetime(2024, 1, 31, tzinfo=timezone.utc)


class TestBuildSchedule:

    def test_three_way_split_sums_exactly(self):
        schedule = build_payment_schedule(Decimal("100"), 3, "monthly", START)

        assert [i.amount for i in schedule] == [
            Decimal("33.33"), Decimal("33.33"), Decimal("33.34"),
        ]
        assert sum(i.amount for i in schedule) == Decimal("100")

    def test_even_split(self):
        schedule = build_payment_schedule(Decimal("90"), 2, "weekly", START)

        assert [i.amount for i in schedule] == [Decimal("45.00"), Decimal("45.00")]

    def test_all_installments_start_pending(self):
        schedule = build_payment_schedule(Decimal("50"), 4, "weekly", START)

        assert {i.status for i in schedule} == {InstallmentStatus.PENDING}
        assert [i.index for i in schedule] == [0, 1, 2, 3]

    @pytest.mark.parametrize("count", [1, 13])
    def test_installment_count_bounds(self, count):
        with pytest.raises(ValueError):
            build_payment_schedule(Decimal("100"), count, "monthly", START)

    def test_total_must_be_positive(self):
        with pytest.raises(ValueError):
            build_payment_schedule(Decimal("0"), 3, "monthly", START)


class TestDueDates:

    def test_weekly(self):
        schedule = build_payment_schedule(Decimal("30"), 3, PlanFrequency.WEEKLY, START)

        assert [i.due_date.day for i in schedule] == [31, 7, 14]

    def test_bi_weekly_aliases(self):
        assert PlanFrequency("biweekly") == PlanFrequency.BI_WEEKLY
        assert PlanFrequency("Bi_Weekly") == PlanFrequency.BI_WEEKLY

    def test_unknown_frequency_is_monthly(self):
        assert PlanFrequency("quarterly") == PlanFrequency.MONTHLY

    def test_monthly_clamps_to_month_end(self):
        schedule = build_payment_schedule(Decimal("40"), 4, "monthly", START)

        assert [i.due_date.date().isoformat() for i in schedule] == [
            "2024-01-31", "2024-02-29", "2024-03-31", "2024-04-30",
        ]

    def test_add_months_across_year(self):
        assert add_months(datetime(2024, 11, 30), 3) == datetime(2025, 2, 28)


class TestInstallmentState:

    def setup_method(self):
        self.schedule = build_payment_schedule(Decimal("100"), 2, "monthly", START)

    def test_past_due_pending_becomes_overdue(self):
        refreshed = refresh_installment_statuses(
            self.schedule, datetime(2024, 2, 10, tzinfo=timezone.utc),
        )

        assert refreshed[0].status == InstallmentStatus.OVERDUE
        assert refreshed[1].status == InstallmentStatus.PENDING

    def test_mark_paid(self):
        paid_at = datetime(2024, 2, 1, tzinfo=timezone.utc)

        updated = mark_installment_paid(self.schedule, 0, Decimal("50"), "card", paid_at)

        assert updated[0].status == InstallmentStatus.PAID
        assert updated[0].payment_method == "card"
        assert next_payment_date(updated) == updated[1].due_date

    def test_paid_installments_never_overdue(self):
        updated = mark_installment_paid(self.schedule, 0, Decimal("50"), "cash", START)

        refreshed = refresh_installment_statuses(updated, datetime(2025, 1, 1, tzinfo=timezone.utc))

        assert refreshed[0].status == InstallmentStatus.PAID
        assert refreshed[1].status == InstallmentStatus.OVERDUE

    def test_mark_unknown_index(self):
        with pytest.raises(IndexError):
            mark_installment_paid(self.schedule, 5, Decimal("1"), "cash", START)

    def test_next_payment_date_none_when_all_paid(self):
        updated = mark_installment_paid(self.schedule, 0, Decimal("50"), "cash", START)
        updated = mark_installment_paid(updated, 1, Decimal("50"), "cash", START)

        assert next_payment_date(updated) is None

    def test_stored_form(self):
        stored = installment_to_dict(self.schedule[1])

        assert stored["due_date"] == "2024-02-29T00:00:00Z"
        assert stored["amount"] == "50.00"
        assert parse_installment(stored) == self.schedule[1]
