"""
Columns and helpers shared by priced documents (quotes, jobs, invoices).

Line items are stored as a JSON list of tagged rows; the totals columns
are always the output of ``compute_totals`` over the stored inputs and
are never written any other way.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping
from uuid import UUID

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from fieldops_kernel.db.types import ZERO, to_decimal
from fieldops_kernel.exceptions import ValidationError
from fieldops_engines.due_dates import parse_iso_datetime
from fieldops_engines.totals import (
    DiscountType,
    LineItem,
    Totals,
    compute_totals,
    line_item_to_dict,
    normalize_line_items,
)


class LineItemsMixin:
    """A JSON list of line items."""

    line_items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    def get_line_items(self) -> tuple[LineItem, ...]:
        return normalize_line_items(self.line_items or [])

    def set_line_items(self, items: Iterable[LineItem | Mapping[str, Any]] | None) -> None:
        self.line_items = [line_item_to_dict(item) for item in normalize_line_items(items)]


class PricedDocumentMixin(LineItemsMixin):
    """Pricing inputs plus the derived totals columns."""

    tax_rate: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    quote_discount_type: Mapped[str] = mapped_column(String(20), nullable=False, default="amount")
    quote_discount_value: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    subtotal_before_discount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    line_discount_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    discounted_subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    quote_discount_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    after_all_discounts: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    original_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_savings: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    def set_pricing(
        self,
        line_items: Iterable[LineItem | Mapping[str, Any]] | None,
        tax_rate: Any,
        quote_discount_type: Any,
        quote_discount_value: Any,
    ) -> Totals:
        """Store pricing inputs and recompute every totals column from them."""
        self.set_line_items(line_items)
        self.tax_rate = to_decimal(tax_rate)
        self.quote_discount_type = DiscountType.parse(quote_discount_type).value
        self.quote_discount_value = to_decimal(quote_discount_value)
        return self.recompute_totals()

    def recompute_totals(self) -> Totals:
        totals = compute_totals(
            self.get_line_items(),
            quote_discount_type=self.quote_discount_type,
            quote_discount_value=self.quote_discount_value,
            tax_rate_percent=self.tax_rate,
        )
        self.subtotal_before_discount = totals.subtotal_before_discount
        self.line_discount_total = totals.line_discount_total
        self.discounted_subtotal = totals.discounted_subtotal
        self.quote_discount_amount = totals.quote_discount_amount
        self.after_all_discounts = totals.after_all_discounts
        self.tax_amount = totals.tax_amount
        self.total = totals.total
        self.original_total = totals.original_total
        self.total_savings = totals.total_savings
        return totals

    def totals(self) -> Totals:
        return Totals(
            subtotal_before_discount=self.subtotal_before_discount,
            line_discount_total=self.line_discount_total,
            discounted_subtotal=self.discounted_subtotal,
            quote_discount_amount=self.quote_discount_amount,
            after_all_discounts=self.after_all_discounts,
            tax_amount=self.tax_amount,
            total=self.total,
            original_total=self.original_total,
            total_savings=self.total_savings,
        )


def coerce_uuid(field: str, value: Any, required: bool = True) -> UUID | None:
    """UUID from a UUID or its string form; ValidationError otherwise."""
    if value is None or value == "":
        if required:
            raise ValidationError(field, "is required")
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise ValidationError(field, f"not a valid id: {value!r}") from exc


def reject_unknown_keys(data: Mapping[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValidationError(sorted(unknown)[0], "is not an editable field")


def coerce_datetime(field: str, value: Any) -> datetime | None:
    """Aware datetime from a datetime or ISO-8601 string; None stays None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(str(value))
    except ValueError as exc:
        raise ValidationError(field, f"not an ISO-8601 timestamp: {value!r}") from exc
