"""
Quote domain models.

Frozen value objects returned by QuoteService. Money is Decimal; the
totals are derived by the totals engine and never edited directly.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from fieldops_engines.totals import LineItem, Totals


class QuoteStatus(str, Enum):
    """Quote lifecycle states."""
    DRAFT = "Draft"
    AWAITING_RESPONSE = "Awaiting Response"
    CHANGES_REQUESTED = "Changes Requested"
    APPROVED = "Approved"
    CONVERTED = "Converted"
    ARCHIVED = "Archived"

    @classmethod
    def _missing_(cls, value):
        # Older records stored "Sent" for quotes awaiting a response
        if value == "Sent":
            return cls.AWAITING_RESPONSE
        return None


@dataclass(frozen=True)
class Quote:
    """A price quote sent to a client."""
    id: UUID
    quote_number: str
    client_id: UUID
    status: QuoteStatus
    line_items: tuple[LineItem, ...]
    tax_rate: Decimal
    quote_discount_type: str
    quote_discount_value: Decimal
    totals: Totals
    created_at: datetime
    title: str = ""
    property_id: str | None = None
    property_snapshot: dict[str, Any] | None = None
    sent_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by_name: str | None = None
    declined_at: datetime | None = None
    declined_by_name: str | None = None
    converted_at: datetime | None = None
    archived_at: datetime | None = None
    public_approval_token: str | None = field(default=None, repr=False)

    @property
    def total(self) -> Decimal:
        return self.totals.total
