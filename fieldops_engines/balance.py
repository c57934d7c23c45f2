"""
Balance Reconciler -- what a client still owes on an invoice.

    balance = max(0, total - sum(payments) - sum(credit notes issued against it))

Credit notes carry no balance of their own. An invoice marked Paid by
hand with no payments recorded (the legacy manual flow) has balance 0.

Works on any invoice-shaped object exposing ``id``, ``total``,
``status``, ``is_credit_note``, ``credit_for_invoice_id`` and
``payments`` (each with an ``amount``).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Protocol, Sequence
from uuid import UUID

from fieldops_kernel.db.types import ZERO, to_decimal

PAID_STATUS = "Paid"


class PaymentLike(Protocol):
    amount: Decimal


class InvoiceLike(Protocol):
    id: UUID
    total: Decimal
    status: Any
    is_credit_note: bool
    credit_for_invoice_id: UUID | None
    payments: Sequence[PaymentLike]


def amount_paid(invoice: InvoiceLike) -> Decimal:
    return sum((to_decimal(p.amount) for p in invoice.payments), ZERO)


def credits_applied(invoice: InvoiceLike, all_invoices: Iterable[InvoiceLike]) -> Decimal:
    """Total of credit notes issued against ``invoice``."""
    return sum(
        (
            to_decimal(other.total)
            for other in all_invoices
            if other.is_credit_note and other.credit_for_invoice_id == invoice.id
        ),
        ZERO,
    )


def balance(invoice: InvoiceLike, all_invoices: Iterable[InvoiceLike]) -> Decimal:
    """Outstanding balance of ``invoice``; ``all_invoices`` supplies its credit notes."""
    if invoice.is_credit_note:
        return ZERO
    paid = amount_paid(invoice)
    credits = credits_applied(invoice, all_invoices)
    if invoice.status == PAID_STATUS and paid == 0:
        return ZERO
    return max(ZERO, to_decimal(invoice.total) - paid - credits)


def client_outstanding_balance(invoices: Sequence[InvoiceLike]) -> Decimal:
    """Sum of balances over one client's invoices (credit notes net in, not added)."""
    return sum(
        (balance(inv, invoices) for inv in invoices if not inv.is_credit_note),
        ZERO,
    )
