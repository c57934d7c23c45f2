"""
Append-only persistence tests.

Verifies:
- Payments cannot be updated or deleted once flushed
- Audit log rows cannot be updated or deleted
- Audit writes are best-effort: a failed write never raises
"""

from contextlib import contextmanager
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from fieldops_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from fieldops_kernel.exceptions import ImmutabilityViolationError
from fieldops_kernel.models.audit_log import AuditAction, AuditLogModel
from fieldops_kernel.services.audit_service import AuditService
from fieldops_modules.invoices.orm import InvoicePaymentModel


@contextmanager
def disabled_immutability():
    """Temporarily remove the append-only listeners."""
    unregister_immutability_listeners()
    try:
        yield
    finally:
        register_immutability_listeners()


@pytest.fixture
def paid_invoice(back_office, client):
    invoice = back_office.create_invoice_from_draft({
        "client_id": client.id,
        "line_items": [{"name": "Call-out", "unit_price": "100"}],
    })
    return back_office.record_payment(invoice.id, "40", "cash")


def _payment(session, payment_id) -> InvoicePaymentModel:
    return session.execute(
        select(InvoicePaymentModel).where(InvoicePaymentModel.id == payment_id)
    ).scalar_one()


class TestPaymentImmutability:

    def test_update_blocked(self, session, paid_invoice):
        payment = _payment(session, paid_invoice.payments[0].id)
        payment.amount = Decimal("400")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "InvoicePayment"
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"

    def test_delete_blocked(self, session, paid_invoice):
        session.delete(_payment(session, paid_invoice.payments[0].id))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_balance_unchanged_after_blocked_update(self, back_office, session, paid_invoice):
        payment = _payment(session, paid_invoice.payments[0].id)
        payment.amount = Decimal("100")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

        assert back_office.get_balance(paid_invoice.id) == Decimal("60")

    def test_violation_logged(self, session, paid_invoice, captured_logs):
        payment = _payment(session, paid_invoice.payments[0].id)
        payment.method = "cheque"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["operation"] == "UPDATE"

    def test_listeners_can_be_lifted(self, session, paid_invoice):
        payment = _payment(session, paid_invoice.payments[0].id)

        with disabled_immutability():
            payment.method = "card"
            session.flush()

        payment.method = "cash"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAuditLogImmutability:

    def test_update_blocked(self, back_office, session, paid_invoice):
        row = back_office.audit.history(paid_invoice.id)[0]
        row.details = {"amount": "0"}

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "AuditLog"

    def test_delete_blocked(self, back_office, session, paid_invoice):
        session.delete(back_office.audit.history(paid_invoice.id)[0])

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class _FailingSession:
    """Session stand-in whose commit always fails."""

    def __init__(self):
        self.rolled_back = False

    def add(self, row):
        pass

    def commit(self):
        raise RuntimeError("database went away")

    def rollback(self):
        self.rolled_back = True


class TestBestEffortAudit:

    def test_failed_write_returns_none(self, clock, captured_logs):
        session = _FailingSession()
        audit = AuditService(session, clock, uuid4(), uuid4())

        result = audit.record(AuditAction.QUOTE_SENT, "quote", uuid4())

        assert result is None
        assert session.rolled_back
        failures = [r for r in captured_logs() if r["message"] == "audit_write_failed"]
        assert failures[0]["action"] == "quote_sent"
        assert failures[0]["exc_type"] == "RuntimeError"

    def test_successful_write(self, session, tenant, clock, actor_id):
        audit = AuditService(session, clock, tenant.id, actor_id)
        target = uuid4()

        row = audit.record(AuditAction.QUOTE_SENT, "quote", target, {"total": Decimal("1.5")})

        assert isinstance(row, AuditLogModel)
        assert audit.history(target)[0].details == {"total": "1.5"}
