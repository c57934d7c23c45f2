"""
Pure calculation engines: totals, due dates, balances, payment plans
and job costing. No I/O and no session access; callers pass values in
and persist what comes back.
"""

from fieldops_engines.balance import balance, client_outstanding_balance
from fieldops_engines.due_dates import PAYMENT_TERMS, resolve_due_date
from fieldops_engines.job_costing import JobProfitability, job_profitability
from fieldops_engines.payment_plan import (
    Installment,
    InstallmentStatus,
    PlanFrequency,
    build_payment_schedule,
    refresh_installment_statuses,
)
from fieldops_engines.totals import (
    DiscountType,
    LineItem,
    PricedItem,
    TextItem,
    Totals,
    compute_totals,
    job_total_value,
    normalize_line_items,
)

__all__ = [
    "PAYMENT_TERMS",
    "DiscountType",
    "Installment",
    "InstallmentStatus",
    "JobProfitability",
    "LineItem",
    "PlanFrequency",
    "PricedItem",
    "TextItem",
    "Totals",
    "balance",
    "build_payment_schedule",
    "client_outstanding_balance",
    "compute_totals",
    "job_profitability",
    "job_total_value",
    "normalize_line_items",
    "refresh_installment_statuses",
    "resolve_due_date",
]
