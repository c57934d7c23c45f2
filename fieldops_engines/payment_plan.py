"""
Payment plans -- splitting an invoice into scheduled installments.

Each installment but the last gets the per-installment share floored
to the cent; the last takes whatever remains, so the schedule always
sums exactly to the plan total.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import ROUND_FLOOR, Decimal
from enum import Enum
from typing import Any, Mapping, Sequence

from fieldops_kernel.db.types import ZERO, round_money, to_decimal
from fieldops_engines.due_dates import format_iso_datetime, parse_iso_datetime
from fieldops_engines.tracer import traced_engine

MIN_INSTALLMENTS = 2
MAX_INSTALLMENTS = 12

CENT = Decimal("0.01")


class PlanFrequency(str, Enum):
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"

    @classmethod
    def _missing_(cls, value):
        # "biweekly" and friends; anything unrecognised is monthly
        if isinstance(value, str):
            normalized = value.strip().lower().replace("_", "-")
            if normalized in ("biweekly", "bi-weekly", "fortnightly"):
                return cls.BI_WEEKLY
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.MONTHLY


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    OVERDUE = "overdue"
    PAID = "paid"


@dataclass(frozen=True)
class Installment:
    index: int
    due_date: datetime
    amount: Decimal
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_at: datetime | None = None
    paid_amount: Decimal = ZERO
    payment_method: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status != InstallmentStatus.PAID


def add_months(start: datetime, months: int) -> datetime:
    """Same day-of-month ``months`` later, clamped to the last day of short months."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def installment_due_date(start: datetime, frequency: PlanFrequency, index: int) -> datetime:
    if frequency == PlanFrequency.WEEKLY:
        return start + timedelta(days=7 * index)
    if frequency == PlanFrequency.BI_WEEKLY:
        return start + timedelta(days=14 * index)
    return add_months(start, index)


@traced_engine(
    "payment_plan",
    "1.0",
    fingerprint_fields=("plan_total", "installments", "frequency", "start_date"),
)
def build_payment_schedule(
    plan_total: Decimal,
    installments: int,
    frequency: PlanFrequency | str,
    start_date: datetime,
) -> tuple[Installment, ...]:
    """
    Split ``plan_total`` into ``installments`` payments starting on ``start_date``.

    Raises:
        ValueError: total not positive, or installments outside 2-12.
    """
    total = to_decimal(plan_total)
    if total <= 0:
        raise ValueError("Plan total must be positive")
    if not MIN_INSTALLMENTS <= installments <= MAX_INSTALLMENTS:
        raise ValueError(
            f"Installments must be between {MIN_INSTALLMENTS} and {MAX_INSTALLMENTS}"
        )
    freq = PlanFrequency(frequency)

    base_amount = (total / installments).quantize(CENT, rounding=ROUND_FLOOR)
    last_amount = round_money(total - base_amount * (installments - 1))

    return tuple(
        Installment(
            index=i,
            due_date=installment_due_date(start_date, freq, i),
            amount=last_amount if i == installments - 1 else base_amount,
        )
        for i in range(installments)
    )


def refresh_installment_statuses(
    schedule: Sequence[Installment], now: datetime,
) -> tuple[Installment, ...]:
    """Pending installments whose due date has passed become overdue."""
    return tuple(
        replace(inst, status=InstallmentStatus.OVERDUE)
        if inst.status == InstallmentStatus.PENDING and inst.due_date < now
        else inst
        for inst in schedule
    )


def mark_installment_paid(
    schedule: Sequence[Installment],
    index: int,
    amount: Decimal,
    method: str,
    paid_at: datetime,
) -> tuple[Installment, ...]:
    if not 0 <= index < len(schedule):
        raise IndexError(f"No installment {index} in a {len(schedule)}-part plan")
    return tuple(
        replace(
            inst,
            status=InstallmentStatus.PAID,
            paid_at=paid_at,
            paid_amount=amount,
            payment_method=method,
        )
        if inst.index == index
        else inst
        for inst in schedule
    )


def next_payment_date(schedule: Sequence[Installment]) -> datetime | None:
    """Earliest due date among unpaid installments."""
    open_dates = [inst.due_date for inst in schedule if inst.is_open]
    return min(open_dates) if open_dates else None


def installment_to_dict(inst: Installment) -> dict[str, Any]:
    return {
        "index": inst.index,
        "due_date": format_iso_datetime(inst.due_date),
        "amount": str(inst.amount),
        "status": inst.status.value,
        "paid_at": format_iso_datetime(inst.paid_at) if inst.paid_at else None,
        "paid_amount": str(inst.paid_amount),
        "payment_method": inst.payment_method,
    }


def parse_installment(raw: Mapping[str, Any]) -> Installment:
    paid_at = raw.get("paid_at")
    return Installment(
        index=int(raw["index"]),
        due_date=parse_iso_datetime(raw["due_date"]),
        amount=to_decimal(raw.get("amount")),
        status=InstallmentStatus(raw.get("status", "pending")),
        paid_at=parse_iso_datetime(paid_at) if paid_at else None,
        paid_amount=to_decimal(raw.get("paid_amount")),
        payment_method=raw.get("payment_method"),
    )
