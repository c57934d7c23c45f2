"""
Invoice, payment and credit-note tests.

Covers:
- Invoicing a completed job (once, whatever the number of completions)
- Manual invoice drafts and payment terms
- Payments: partial, settling, and every rejected case
- Credit notes: shared numbering, settlement, and rejected cases
- Manual status changes, client balances and payment plans
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from fieldops_kernel.domain.events import InvoicePaid
from fieldops_kernel.exceptions import (
    InvalidTransitionError,
    InvoiceNotFoundError,
    ValidationError,
)
from fieldops_engines.payment_plan import InstallmentStatus
from fieldops_engines.totals import PricedItem
from fieldops_modules.invoices import InvoiceStatus
from fieldops_modules.jobs import JobStatus


@pytest.fixture
def converted_job(back_office, approved_quote):
    return back_office.convert_quote_to_job(approved_quote.id, {"start": "2024-01-02T08:00:00Z"})


@pytest.fixture
def invoice(back_office, converted_job):
    """Completing the job invoices it."""
    back_office.update_job_status(converted_job.id, JobStatus.COMPLETED)
    return back_office.invoices.find_invoice_for_job(converted_job.id)


@pytest.fixture
def manual_invoice(back_office, client):
    return back_office.create_invoice_from_draft({
        "client_id": client.id,
        "line_items": [{"name": "Call-out", "unit_price": "100"}],
    })


# =============================================================================
# Invoicing jobs
# =============================================================================


class TestInvoiceFromJob:

    def test_completion_creates_invoice(self, invoice, converted_job, approved_quote):
        assert invoice is not None
        assert invoice.invoice_number == "INV-0001"
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.job_id == converted_job.id
        assert invoice.quote_id == approved_quote.id

    def test_pricing_carried_from_quote(self, invoice):
        assert invoice.tax_rate == Decimal("15")
        assert invoice.total == Decimal("103.5")

    def test_addresses_and_subject(self, invoice):
        assert invoice.subject == "Spring cleanup"
        assert invoice.service_address == "Home, 1 Main St, Springfield IL 62704, US"
        assert invoice.billing_address == "12 Analytical Way, London"

    def test_due_today_by_default(self, invoice, clock):
        assert invoice.due_term == "Due Today"
        assert invoice.issue_date == clock.now()
        assert invoice.due_date == invoice.issue_date

    def test_repeated_completion_invoices_once(self, back_office, converted_job, invoice):
        back_office.update_job_status(converted_job.id, JobStatus.COMPLETED)

        assert len(back_office.invoices.list_invoices(job_id=converted_job.id)) == 1

    def test_reopen_and_complete_invoices_once(self, back_office, converted_job, invoice):
        back_office.update_job_status(converted_job.id, JobStatus.IN_PROGRESS)
        back_office.update_job_status(converted_job.id, JobStatus.COMPLETED)

        assert len(back_office.invoices.list_invoices(job_id=converted_job.id)) == 1

    def test_explicit_second_invoice_rejected(self, back_office, converted_job, invoice):
        with pytest.raises(InvalidTransitionError) as exc_info:
            back_office.create_invoice_from_job(converted_job.id)

        assert "INV-0001" in exc_info.value.reason
        # The rejected attempt consumed nothing
        assert back_office.allocator.peek("invoice") == "INV-0002"

    def test_ensure_invoice_is_idempotent(self, back_office, converted_job, invoice):
        again = back_office.invoices.ensure_invoice_for_job(converted_job.id)

        assert again.id == invoice.id

    def test_job_without_lines_or_quote(self, back_office, client):
        job = back_office.create_job({
            "client_id": client.id,
            "title": "Emergency call",
            "start": "2024-01-01T08:00:00Z",
        })

        invoice = back_office.create_invoice_from_job(job.id)

        assert invoice.line_items == (
            PricedItem(name="Emergency call", qty=Decimal("1"), unit_price=Decimal("0")),
        )
        assert invoice.total == Decimal("0")
        assert invoice.quote_id is None

    def test_job_without_property_bills_to_billing_address(self, back_office):
        bare = back_office.create_client("Bare Client", billing_address="PO Box 7")
        job = back_office.create_job({"client_id": bare.id, "title": "Survey"})

        invoice = back_office.create_invoice_from_job(job.id)

        assert invoice.service_address == "PO Box 7"

    def test_credit_note_does_not_count_as_job_invoice(self, back_office, converted_job, invoice):
        back_office.issue_credit_note(invoice.id, "10")

        found = back_office.invoices.find_invoice_for_job(converted_job.id)

        assert found.id == invoice.id


# =============================================================================
# Manual drafts
# =============================================================================


class TestInvoiceFromDraft:

    def test_defaults(self, manual_invoice):
        assert manual_invoice.subject == "For services rendered"
        assert manual_invoice.billing_address == "12 Analytical Way, London"
        assert manual_invoice.total == Decimal("100")

    def test_payment_term(self, back_office, client):
        invoice = back_office.create_invoice_from_draft({
            "client_id": client.id,
            "issue_date": "2024-01-01T00:00:00Z",
            "due_term": "Net 30",
        })

        assert invoice.due_date == datetime(2024, 1, 31, tzinfo=timezone.utc)

    def test_unknown_term_is_due_on_issue(self, back_office, client):
        invoice = back_office.create_invoice_from_draft({
            "client_id": client.id,
            "issue_date": "2024-01-01T00:00:00Z",
            "due_term": "Net 90",
        })

        assert invoice.due_date == invoice.issue_date

    def test_unknown_field_rejected(self, back_office, client):
        with pytest.raises(ValidationError):
            back_office.create_invoice_from_draft({"client_id": client.id, "status": "Paid"})

    def test_send_sets_sent_at(self, back_office, clock, manual_invoice):
        sent = back_office.send_invoice(manual_invoice.id)

        assert sent.status == InvoiceStatus.SENT
        assert sent.sent_at == clock.now()

    def test_missing_invoice(self, back_office):
        with pytest.raises(InvoiceNotFoundError):
            back_office.send_invoice("00000000-0000-0000-0000-000000000003")


# =============================================================================
# Payments
# =============================================================================


class TestRecordPayment:

    def test_partial_payment(self, back_office, manual_invoice):
        updated = back_office.record_payment(manual_invoice.id, "20", "cash")

        assert updated.status == InvoiceStatus.DRAFT
        assert back_office.get_balance(manual_invoice.id) == Decimal("80")
        assert [p.amount for p in updated.payments] == [Decimal("20")]

    def test_full_payment_settles(self, back_office, clock, manual_invoice):
        back_office.record_payment(manual_invoice.id, "40", "cash")
        updated = back_office.record_payment(manual_invoice.id, "60", "card")

        assert updated.status == InvoiceStatus.PAID
        assert updated.paid_at == clock.now()
        assert back_office.get_balance(manual_invoice.id) == Decimal("0")

    def test_settling_payment_publishes_invoice_paid(self, back_office, event_bus, manual_invoice):
        seen = []
        event_bus.subscribe(InvoicePaid, seen.append)

        back_office.record_payment(manual_invoice.id, "30", "cash")
        assert seen == []

        back_office.record_payment(manual_invoice.id, "70", "cash")
        assert [e.invoice_id for e in seen] == [manual_invoice.id]

    @pytest.mark.parametrize("amount", ["0", "-5", "abc"])
    def test_non_positive_amount(self, back_office, manual_invoice, amount):
        with pytest.raises(ValidationError) as exc_info:
            back_office.record_payment(manual_invoice.id, amount, "cash")

        assert exc_info.value.field == "amount"

    def test_overpayment_rejected(self, back_office, manual_invoice):
        with pytest.raises(ValidationError):
            back_office.record_payment(manual_invoice.id, "100.01", "cash")

        assert back_office.invoices.get_invoice(manual_invoice.id).payments == ()

    def test_method_required(self, back_office, manual_invoice):
        with pytest.raises(ValidationError) as exc_info:
            back_office.record_payment(manual_invoice.id, "10", "  ")

        assert exc_info.value.field == "method"

    def test_paid_invoice_rejects_payment(self, back_office, manual_invoice):
        back_office.record_payment(manual_invoice.id, "100", "cash")

        with pytest.raises(InvalidTransitionError):
            back_office.record_payment(manual_invoice.id, "1", "cash")

    def test_credit_note_rejects_payment(self, back_office, manual_invoice):
        note = back_office.issue_credit_note(manual_invoice.id, "10")

        with pytest.raises(InvalidTransitionError):
            back_office.record_payment(note.id, "5", "cash")

    def test_payment_audited(self, back_office, manual_invoice):
        back_office.record_payment(manual_invoice.id, "20", "cash")

        rows = [r for r in back_office.audit.history(manual_invoice.id) if r.action == "payment_recorded"]
        assert rows[0].details["amount"] == "20.00"


# =============================================================================
# Credit notes
# =============================================================================


class TestCreditNotes:

    def test_credit_note_shape(self, back_office, clock, manual_invoice):
        note = back_office.issue_credit_note(manual_invoice.id, "30", "Damaged hedge")

        assert note.invoice_number == "CN-0002"
        assert note.is_credit_note
        assert note.credit_for_invoice_id == manual_invoice.id
        assert note.credit_reason == "Damaged hedge"
        assert note.status == InvoiceStatus.SENT
        assert note.sent_at == clock.now()
        assert note.tax_rate == Decimal("0")
        assert note.total == Decimal("30")

    def test_reduces_balance(self, back_office, manual_invoice):
        back_office.record_payment(manual_invoice.id, "20", "cash")
        back_office.issue_credit_note(manual_invoice.id, "30")

        assert back_office.get_balance(manual_invoice.id) == Decimal("50")
        assert back_office.invoices.get_invoice(manual_invoice.id).status == InvoiceStatus.DRAFT

    def test_full_credit_settles_original(self, back_office, event_bus, manual_invoice):
        seen = []
        event_bus.subscribe(InvoicePaid, seen.append)

        note = back_office.issue_credit_note(manual_invoice.id, "100")

        assert back_office.invoices.get_invoice(manual_invoice.id).status == InvoiceStatus.PAID
        assert back_office.get_balance(manual_invoice.id) == Decimal("0")
        assert back_office.get_balance(note.id) == Decimal("0")
        assert [e.entity_id for e in seen] == [manual_invoice.id]

    def test_credit_note_cannot_be_credited(self, back_office, manual_invoice):
        note = back_office.issue_credit_note(manual_invoice.id, "10")

        with pytest.raises(InvalidTransitionError):
            back_office.issue_credit_note(note.id, "5")

    @pytest.mark.parametrize("amount", ["0", "-1", "100.01"])
    def test_amount_bounds(self, back_office, manual_invoice, amount):
        with pytest.raises(ValidationError):
            back_office.issue_credit_note(manual_invoice.id, amount)

        assert back_office.invoices.credit_notes_for(manual_invoice.id) == []

    def test_credit_note_cannot_be_sent_or_paid(self, back_office, manual_invoice):
        note = back_office.issue_credit_note(manual_invoice.id, "10")

        with pytest.raises(InvalidTransitionError):
            back_office.send_invoice(note.id)
        with pytest.raises(InvalidTransitionError):
            back_office.mark_invoice_paid(note.id)

    def test_list_without_credit_notes(self, back_office, manual_invoice):
        back_office.issue_credit_note(manual_invoice.id, "10")

        numbers = [i.invoice_number for i in back_office.invoices.list_invoices(include_credit_notes=False)]

        assert numbers == ["INV-0001"]


# =============================================================================
# Manual status changes and balances
# =============================================================================


class TestInvoiceStatus:

    def test_mark_paid_by_hand(self, back_office, manual_invoice):
        paid = back_office.mark_invoice_paid(manual_invoice.id)

        assert paid.status == InvoiceStatus.PAID
        assert paid.payments == ()
        assert back_office.get_balance(manual_invoice.id) == Decimal("0")

    def test_mark_unpaid_only_after_send(self, back_office, manual_invoice):
        with pytest.raises(InvalidTransitionError):
            back_office.mark_invoice_unpaid(manual_invoice.id)

        back_office.send_invoice(manual_invoice.id)
        unpaid = back_office.mark_invoice_unpaid(manual_invoice.id)

        assert unpaid.status == InvoiceStatus.UNPAID

    def test_paid_is_final(self, back_office, manual_invoice):
        back_office.mark_invoice_paid(manual_invoice.id)

        with pytest.raises(InvalidTransitionError):
            back_office.send_invoice(manual_invoice.id)

    def test_client_balance(self, back_office, client, manual_invoice):
        second = back_office.create_invoice_from_draft({
            "client_id": client.id,
            "line_items": [{"name": "Follow-up", "unit_price": "50"}],
        })
        back_office.record_payment(manual_invoice.id, "20", "cash")
        back_office.issue_credit_note(second.id, "50")

        assert back_office.client_balance(client.id) == Decimal("80")


# =============================================================================
# Payment plans
# =============================================================================


class TestPaymentPlan:

    def test_plan_splits_outstanding_balance(self, back_office, manual_invoice):
        back_office.record_payment(manual_invoice.id, "10", "cash")

        invoice = back_office.set_up_payment_plan(
            manual_invoice.id, 3, "monthly", "2024-01-31T00:00:00Z",
        )

        amounts = [i.amount for i in invoice.payment_plan]
        assert amounts == [Decimal("30"), Decimal("30"), Decimal("30")]
        assert [i.due_date.day for i in invoice.payment_plan] == [31, 29, 31]

    def test_installment_payment(self, back_office, manual_invoice):
        back_office.set_up_payment_plan(manual_invoice.id, 2, "weekly")

        invoice = back_office.record_installment_payment(manual_invoice.id, 0, "card")

        assert invoice.payment_plan[0].status == InstallmentStatus.PAID
        assert invoice.payment_plan[0].payment_method == "card"
        assert invoice.payments[0].installment_index == 0
        assert back_office.get_balance(manual_invoice.id) == Decimal("50")

    def test_all_installments_settle_invoice(self, back_office, manual_invoice):
        back_office.set_up_payment_plan(manual_invoice.id, 2, "weekly")

        back_office.record_installment_payment(manual_invoice.id, 0, "card")
        invoice = back_office.record_installment_payment(manual_invoice.id, 1, "card")

        assert invoice.status == InvoiceStatus.PAID

    def test_installment_paid_twice_rejected(self, back_office, manual_invoice):
        back_office.set_up_payment_plan(manual_invoice.id, 2, "weekly")
        back_office.record_installment_payment(manual_invoice.id, 0, "card")

        with pytest.raises(InvalidTransitionError):
            back_office.record_installment_payment(manual_invoice.id, 0, "card")

    def test_unknown_installment(self, back_office, manual_invoice):
        back_office.set_up_payment_plan(manual_invoice.id, 2, "weekly")

        with pytest.raises(ValidationError):
            back_office.record_installment_payment(manual_invoice.id, 5, "card")

    def test_overdue_refresh(self, back_office, clock, manual_invoice):
        back_office.set_up_payment_plan(manual_invoice.id, 2, "weekly")
        clock.advance(int(timedelta(days=8).total_seconds()))

        plan = back_office.payment_plan(manual_invoice.id)

        # The first installment was due on the plan's start date
        assert [i.status for i in plan] == [InstallmentStatus.OVERDUE, InstallmentStatus.OVERDUE]

    @pytest.mark.parametrize("count", [1, 13])
    def test_installment_bounds(self, back_office, manual_invoice, count):
        with pytest.raises(ValidationError):
            back_office.set_up_payment_plan(manual_invoice.id, count)

    def test_no_plan_for_paid_invoice(self, back_office, manual_invoice):
        back_office.mark_invoice_paid(manual_invoice.id)

        with pytest.raises(InvalidTransitionError):
            back_office.set_up_payment_plan(manual_invoice.id, 2)
