"""
Totals Calculator -- pricing, discounts and tax for quotes, jobs and invoices.

Pure functions with no I/O. The order of operations is fixed so every
document can be recomputed and audited from its stored inputs:

    1. line subtotal      = qty * unit_price              (priced, non-optional)
    2. line discount      = percent of line subtotal, or a flat amount
    3. discounted         = max(0, subtotal - line discounts)
    4. document discount  = percent of discounted, or a flat amount
    5. after discounts    = max(0, discounted - document discount)
    6. tax                = after discounts * tax rate / 100;  total = after + tax
    7. original total     = subtotal + subtotal * tax rate / 100
       savings            = max(0, original total - total)

Text rows and optional rows stay on the document for display but add
nothing to any sum. Data-entry mistakes (unparseable numbers, NaN,
negative values, a discount larger than the subtotal) never raise: they
are treated as zero or clamped, so a half-filled form can still be saved.

Usage:
    from fieldops_engines.totals import PricedItem, compute_totals

    totals = compute_totals(
        [PricedItem(name="Gutter clean", qty=Decimal("2"), unit_price=Decimal("50"))],
        quote_discount_type="percent",
        quote_discount_value=Decimal("10"),
        tax_rate_percent=Decimal("15"),
    )
    totals.total  # Decimal("103.5")
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence, Union

from fieldops_kernel.db.types import ZERO, to_decimal
from fieldops_kernel.logging_config import get_logger
from fieldops_engines.tracer import traced_engine

logger = get_logger("engines.totals")

HUNDRED = Decimal("100")

# A document holds at most this many rows; extra rows are dropped on save.
MAX_LINE_ITEMS = 100


class DiscountType(str, Enum):
    """How a discount value is interpreted."""

    AMOUNT = "amount"
    PERCENT = "percent"

    @classmethod
    def parse(cls, value: Any) -> "DiscountType":
        """Anything other than "percent" is a flat amount."""
        if isinstance(value, DiscountType):
            return value
        if isinstance(value, str) and value.strip().lower() == "percent":
            return cls.PERCENT
        return cls.AMOUNT


@dataclass(frozen=True)
class PricedItem:
    """A billable row."""

    name: str = ""
    description: str = ""
    qty: Decimal = Decimal("1")
    unit_price: Decimal = ZERO
    unit_cost: Decimal = ZERO
    discount_type: DiscountType = DiscountType.AMOUNT
    discount_value: Decimal = ZERO
    is_optional: bool = False

    kind = "line_item"

    @property
    def line_subtotal(self) -> Decimal:
        return _non_negative(self.qty) * _non_negative(self.unit_price)


@dataclass(frozen=True)
class TextItem:
    """A display-only row (heading, note). Never priced."""

    description: str = ""

    kind = "text"


LineItem = Union[PricedItem, TextItem]


@dataclass(frozen=True)
class Totals:
    """Derived totals of a document. Never edited by hand."""

    subtotal_before_discount: Decimal
    line_discount_total: Decimal
    discounted_subtotal: Decimal
    quote_discount_amount: Decimal
    after_all_discounts: Decimal
    tax_amount: Decimal
    total: Decimal
    original_total: Decimal
    total_savings: Decimal

    @classmethod
    def zero(cls) -> "Totals":
        return cls(ZERO, ZERO, ZERO, ZERO, ZERO, ZERO, ZERO, ZERO, ZERO)


def _non_negative(value: Any) -> Decimal:
    amount = to_decimal(value)
    return amount if amount > 0 else ZERO


def is_billable(item: LineItem) -> bool:
    """True for priced rows that count towards totals."""
    return isinstance(item, PricedItem) and not item.is_optional


def _line_discount(item: PricedItem) -> Decimal:
    value = _non_negative(item.discount_value)
    if item.discount_type == DiscountType.PERCENT:
        return item.line_subtotal * value / HUNDRED
    return value


@traced_engine(
    "totals",
    "1.0",
    fingerprint_fields=(
        "line_items",
        "quote_discount_type",
        "quote_discount_value",
        "tax_rate_percent",
    ),
)
def compute_totals(
    line_items: Sequence[LineItem],
    quote_discount_type: DiscountType | str | None = DiscountType.AMOUNT,
    quote_discount_value: Any = ZERO,
    tax_rate_percent: Any = ZERO,
) -> Totals:
    """Compute document totals in the fixed order described in the module docstring."""
    subtotal_before_discount = ZERO
    line_discount_total = ZERO

    for item in line_items:
        if not is_billable(item):
            continue
        subtotal_before_discount += item.line_subtotal
        line_discount_total += _line_discount(item)

    discounted_subtotal = max(ZERO, subtotal_before_discount - line_discount_total)

    discount_value = _non_negative(quote_discount_value)
    if DiscountType.parse(quote_discount_type) == DiscountType.PERCENT:
        quote_discount_amount = discounted_subtotal * discount_value / HUNDRED
    else:
        quote_discount_amount = discount_value

    after_all_discounts = max(ZERO, discounted_subtotal - quote_discount_amount)

    tax_rate = _non_negative(tax_rate_percent)
    tax_amount = after_all_discounts * tax_rate / HUNDRED
    total = after_all_discounts + tax_amount

    original_total = subtotal_before_discount + subtotal_before_discount * tax_rate / HUNDRED
    total_savings = max(ZERO, original_total - total)

    return Totals(
        subtotal_before_discount=subtotal_before_discount,
        line_discount_total=line_discount_total,
        discounted_subtotal=discounted_subtotal,
        quote_discount_amount=quote_discount_amount,
        after_all_discounts=after_all_discounts,
        tax_amount=tax_amount,
        total=total,
        original_total=original_total,
        total_savings=total_savings,
    )


def job_total_value(line_items: Iterable[LineItem]) -> Decimal:
    """Undiscounted, untaxed value of a job's billable rows."""
    return sum((item.line_subtotal for item in line_items if is_billable(item)), ZERO)


# ---------------------------------------------------------------------------
# Stored representation
# ---------------------------------------------------------------------------


def _first(raw: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def parse_line_item(raw: LineItem | Mapping[str, Any]) -> LineItem:
    """
    Build a LineItem from a stored or user-submitted dict.

    The ``type`` tag decides the variant ("text" or, by default, a priced
    row). Both snake_case and camelCase keys are accepted, and ``price``
    is read as the unit price.
    """
    if isinstance(raw, (PricedItem, TextItem)):
        return raw
    if _first(raw, "type", "kind", default="line_item") == TextItem.kind:
        return TextItem(description=str(_first(raw, "description", "name", default="")))
    return PricedItem(
        name=str(_first(raw, "name", default="")),
        description=str(_first(raw, "description", default="")),
        qty=to_decimal(_first(raw, "qty", "quantity", default=1)),
        unit_price=to_decimal(_first(raw, "unit_price", "unitPrice", "price", default=0)),
        unit_cost=to_decimal(_first(raw, "unit_cost", "unitCost", "cost", default=0)),
        discount_type=DiscountType.parse(_first(raw, "discount_type", "discountType")),
        discount_value=to_decimal(_first(raw, "discount_value", "discountValue", default=0)),
        is_optional=bool(_first(raw, "is_optional", "isOptional", default=False)),
    )


def line_item_to_dict(item: LineItem) -> dict[str, Any]:
    """JSON-safe dict for persistence. Decimals are written as strings."""
    if isinstance(item, TextItem):
        return {"type": TextItem.kind, "description": item.description}
    return {
        "type": PricedItem.kind,
        "name": item.name,
        "description": item.description,
        "qty": str(item.qty),
        "unit_price": str(item.unit_price),
        "unit_cost": str(item.unit_cost),
        "discount_type": item.discount_type.value,
        "discount_value": str(item.discount_value),
        "is_optional": item.is_optional,
    }


def normalize_line_items(raw_items: Iterable[LineItem | Mapping[str, Any]] | None) -> tuple[LineItem, ...]:
    """Parse a list of rows, keeping at most MAX_LINE_ITEMS."""
    items = tuple(parse_line_item(raw) for raw in (raw_items or ()))
    if len(items) > MAX_LINE_ITEMS:
        logger.warning(
            "line_items_truncated",
            extra={"submitted": len(items), "kept": MAX_LINE_ITEMS},
        )
        items = items[:MAX_LINE_ITEMS]
    return items
