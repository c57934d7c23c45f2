"""
Invoice domain models.

An invoice's balance is never stored. It is derived by the balance
engine from the total, the append-only payments and any credit notes
that reference the invoice.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from fieldops_engines.payment_plan import Installment
from fieldops_engines.totals import LineItem, Totals


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""
    DRAFT = "Draft"
    SENT = "Sent"
    UNPAID = "Unpaid"
    PAID = "Paid"


@dataclass(frozen=True)
class Payment:
    """One recorded payment. Never modified or removed."""
    id: UUID
    amount: Decimal
    method: str
    created_at: datetime
    installment_index: int | None = None


@dataclass(frozen=True)
class Invoice:
    """A bill sent to a client, or a credit note against one."""
    id: UUID
    invoice_number: str
    client_id: UUID
    status: InvoiceStatus
    line_items: tuple[LineItem, ...]
    tax_rate: Decimal
    quote_discount_type: str
    quote_discount_value: Decimal
    totals: Totals
    issue_date: datetime
    due_term: str
    due_date: datetime
    created_at: datetime
    subject: str = ""
    job_id: UUID | None = None
    quote_id: UUID | None = None
    billing_address: str = ""
    service_address: str = ""
    is_credit_note: bool = False
    credit_for_invoice_id: UUID | None = None
    credit_reason: str | None = None
    sent_at: datetime | None = None
    paid_at: datetime | None = None
    payments: tuple[Payment, ...] = ()
    payment_plan: tuple[Installment, ...] = ()

    @property
    def total(self) -> Decimal:
        return self.totals.total
