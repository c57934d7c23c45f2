"""Job costing: revenue against labour, expenses and materials."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping

from fieldops_kernel.db.types import ZERO, to_decimal
from fieldops_engines.totals import HUNDRED, LineItem, is_billable, job_total_value
from fieldops_engines.tracer import traced_engine


@dataclass(frozen=True)
class JobProfitability:
    revenue: Decimal
    labor_cost: Decimal
    expenses_cost: Decimal
    materials_cost: Decimal
    total_costs: Decimal
    profit: Decimal
    margin_percent: Decimal


def _labor_cost(entry: Mapping[str, Any]) -> Decimal:
    # An explicit cost wins; otherwise hours * rate
    cost = to_decimal(entry.get("cost") or entry.get("amount"))
    if cost:
        return cost
    return to_decimal(entry.get("hours")) * to_decimal(entry.get("rate"))


@traced_engine("job_costing", "1.0")
def job_profitability(
    line_items: Iterable[LineItem],
    total_value: Decimal | None = None,
    labor_entries: Iterable[Mapping[str, Any]] = (),
    expenses: Iterable[Mapping[str, Any]] = (),
) -> JobProfitability:
    """
    Profit and margin for a job.

    Revenue is the stored ``total_value`` when positive, else the value
    of the billable rows. Materials are ``qty * unit_cost`` over the
    same rows. Margin is a percentage of revenue, 0 when revenue is 0.
    """
    items = tuple(line_items)
    revenue = to_decimal(total_value)
    if revenue <= 0:
        revenue = job_total_value(items)

    labor_cost = sum((_labor_cost(e) for e in labor_entries), ZERO)
    expenses_cost = sum((to_decimal(e.get("amount")) for e in expenses), ZERO)
    materials_cost = sum(
        (to_decimal(item.qty) * to_decimal(item.unit_cost) for item in items if is_billable(item)),
        ZERO,
    )

    total_costs = labor_cost + expenses_cost + materials_cost
    profit = revenue - total_costs
    margin = profit / revenue * HUNDRED if revenue > 0 else ZERO

    return JobProfitability(
        revenue=revenue,
        labor_cost=labor_cost,
        expenses_cost=expenses_cost,
        materials_cost=materials_cost,
        total_costs=total_costs,
        profit=profit,
        margin_percent=margin,
    )
