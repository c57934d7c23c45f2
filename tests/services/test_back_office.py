"""
End-to-end tests for BackOfficeEngine.

Drives the full quote -> job -> invoice -> payment flow through the
command surface and checks the side effects that only exist at this
layer: outbound events, notification records, the JobCompleted invoice
handler and per-command log context.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from fieldops_kernel.domain.events import (
    InvoicePaid,
    InvoiceSent,
    JobCompleted,
    QuoteApproved,
    QuoteSent,
)
from fieldops_kernel.exceptions import InvalidTransitionError, TenantNotFoundError
from fieldops_kernel.logging_config import LogContext
from fieldops_kernel.models.notification import NotificationRecordModel
from fieldops_kernel.services.audit_service import NotificationRecorder
from fieldops_modules.invoices import InvoiceStatus
from fieldops_modules.jobs import JobStatus
from fieldops_modules.quotes import QuoteStatus
from fieldops_services.back_office import BackOfficeEngine, create_tenant

OUTBOUND = (QuoteSent, QuoteApproved, JobCompleted, InvoiceSent, InvoicePaid)


@pytest.fixture
def published(event_bus):
    """Every outbound event, in publish order."""
    seen = []
    for event_type in OUTBOUND:
        event_bus.subscribe(event_type, seen.append)
    return seen


def _notifications(session, tenant_id):
    return list(session.execute(
        select(NotificationRecordModel)
        .where(NotificationRecordModel.tenant_id == tenant_id)
    ).scalars())


def _run_full_flow(engine, client_id):
    quote = engine.create_quote({
        "client_id": client_id,
        "title": "Spring cleanup",
        "line_items": [{"name": "Mowing", "qty": 2, "unit_price": "50"}],
        "quote_discount_type": "percent",
        "quote_discount_value": 10,
        "tax_rate": 15,
    })
    engine.send_quote(quote.id)
    engine.approve_quote(quote.id, "Ada Lovelace")
    job = engine.convert_quote_to_job(quote.id, {"start": "2024-01-02T08:00:00Z"})
    engine.update_job_status(job.id, JobStatus.IN_PROGRESS)
    engine.update_job_status(job.id, JobStatus.COMPLETED)
    invoice = engine.invoices.find_invoice_for_job(job.id)
    engine.send_invoice(invoice.id)
    engine.record_payment(invoice.id, "103.50", "card")
    return quote, job, invoice


class TestFullFlow:

    def test_quote_to_paid_invoice(self, back_office, client):
        quote, job, invoice = _run_full_flow(back_office, client.id)

        assert back_office.quotes.get_quote(quote.id).status == QuoteStatus.CONVERTED
        assert back_office.jobs.get_job(job.id).status == JobStatus.COMPLETED
        assert back_office.invoices.get_invoice(invoice.id).status == InvoiceStatus.PAID
        assert back_office.get_balance(invoice.id) == Decimal("0")
        assert back_office.client_balance(client.id) == Decimal("0")

    def test_events_in_order(self, back_office, client, published):
        quote, job, invoice = _run_full_flow(back_office, client.id)

        assert [(e.event_type, e.entity_id) for e in published] == [
            ("QuoteSent", quote.id),
            ("QuoteApproved", quote.id),
            ("JobCompleted", job.id),
            ("InvoiceSent", invoice.id),
            ("InvoicePaid", invoice.id),
        ]
        assert all(e.tenant_id == back_office.tenant_id for e in published)

    def test_notifications_recorded(self, back_office, session, client):
        _run_full_flow(back_office, client.id)

        records = _notifications(session, back_office.tenant_id)

        assert sorted(r.event_type for r in records) == sorted(t.__name__ for t in OUTBOUND)
        messages = {r.event_type: r.message for r in records}
        assert messages["QuoteApproved"] == "Quote approved by client"

    def test_rejected_command_publishes_nothing(self, back_office, priced_draft, published):
        quote = back_office.create_quote(priced_draft)

        with pytest.raises(InvalidTransitionError):
            back_office.approve_quote(quote.id)

        assert published == []


class TestNotificationFailures:

    def test_failed_notification_does_not_block_command(
        self, back_office, session, priced_draft, monkeypatch, captured_logs,
    ):
        def broken(self, event):
            raise RuntimeError("notification store unavailable")

        monkeypatch.setattr(NotificationRecorder, "__call__", broken)
        quote = back_office.create_quote(priced_draft)

        sent = back_office.send_quote(quote.id)

        assert sent.status == QuoteStatus.AWAITING_RESPONSE
        assert back_office.quotes.get_quote(quote.id).status == QuoteStatus.AWAITING_RESPONSE
        assert _notifications(session, back_office.tenant_id) == []
        failures = [r for r in captured_logs() if r["message"] == "best_effort_subscriber_failed"]
        assert failures[0]["event_type"] == "QuoteSent"

    def test_invoice_handler_failure_propagates_and_can_be_redriven(
        self, back_office, approved_quote, monkeypatch,
    ):
        job = back_office.convert_quote_to_job(approved_quote.id, {"start": "2024-01-02T08:00:00Z"})

        def broken(self, event):
            raise RuntimeError("invoice store unavailable")

        with monkeypatch.context() as patch:
            patch.setattr(type(back_office.invoices), "handle_job_completed", broken)
            with pytest.raises(RuntimeError):
                back_office.update_job_status(job.id, JobStatus.COMPLETED)

        # The completion itself committed; completing again re-drives invoicing
        assert back_office.jobs.get_job(job.id).status == JobStatus.COMPLETED
        assert back_office.invoices.find_invoice_for_job(job.id) is None

        back_office.update_job_status(job.id, JobStatus.COMPLETED)

        assert back_office.invoices.find_invoice_for_job(job.id) is not None


class TestSharedEventBus:

    def test_tenants_do_not_invoice_each_others_jobs(
        self, back_office, session, event_bus, clock, test_config, actor_id, approved_quote,
    ):
        other_tenant = create_tenant(session, "Other Co", actor_id, config=test_config, clock=clock)
        other = BackOfficeEngine(
            session, other_tenant.id, actor_id,
            config=test_config, clock=clock, event_bus=event_bus,
        )
        job = back_office.convert_quote_to_job(approved_quote.id, {"start": "2024-01-02T08:00:00Z"})

        back_office.update_job_status(job.id, JobStatus.COMPLETED)

        assert back_office.invoices.find_invoice_for_job(job.id) is not None
        assert other.invoices.list_invoices() == []
        assert _notifications(session, other_tenant.id) == []

    def test_same_tenant_engines_record_each_event_once(
        self, back_office, session, event_bus, clock, test_config, actor_id, priced_draft,
    ):
        for _ in range(2):
            BackOfficeEngine(
                session, back_office.tenant_id, actor_id,
                config=test_config, clock=clock, event_bus=event_bus,
            )
        quote = back_office.create_quote(priced_draft)

        back_office.send_quote(quote.id)

        records = _notifications(session, back_office.tenant_id)
        assert [r.event_type for r in records] == ["QuoteSent"]
        assert event_bus.subscriber_count(QuoteSent) == 1
        assert event_bus.subscriber_count(JobCompleted) == 1

    def test_same_tenant_engines_invoice_a_completion_once(
        self, back_office, event_bus, clock, test_config, actor_id, session, approved_quote,
    ):
        newer = BackOfficeEngine(
            session, back_office.tenant_id, actor_id,
            config=test_config, clock=clock, event_bus=event_bus,
        )
        job = back_office.convert_quote_to_job(approved_quote.id, {"start": "2024-01-02T08:00:00Z"})

        back_office.update_job_status(job.id, JobStatus.COMPLETED)

        assert len(newer.invoices.list_invoices(job_id=job.id)) == 1

    def test_close_releases_subscriptions(self, back_office, event_bus):
        back_office.close()

        assert all(event_bus.subscriber_count(t) == 0 for t in OUTBOUND)

    def test_closing_a_replaced_engine_keeps_the_newer_one(
        self, back_office, event_bus, clock, test_config, actor_id, session,
    ):
        with BackOfficeEngine(
            session, back_office.tenant_id, actor_id,
            config=test_config, clock=clock, event_bus=event_bus,
        ):
            pass
        # The context exit closed the newer engine; the older one's handlers were already replaced
        assert event_bus.subscriber_count(JobCompleted) == 0

        newest = BackOfficeEngine(
            session, back_office.tenant_id, actor_id,
            config=test_config, clock=clock, event_bus=event_bus,
        )
        back_office.close()

        assert event_bus.subscriber_count(JobCompleted) == 1
        newest.close()
        assert event_bus.subscriber_count(JobCompleted) == 0


class TestCommandContext:

    def test_log_context_bound_per_command(self, back_office, priced_draft, captured_logs):
        quote = back_office.create_quote(priced_draft)
        back_office.send_quote(quote.id)

        records = captured_logs()
        created = next(r for r in records if r["message"] == "quote_created")
        sent = next(r for r in records if r["message"] == "quote_status_changed")

        assert created["tenant_id"] == str(back_office.tenant_id)
        assert sent["entity_id"] == str(quote.id)
        assert created["correlation_id"] != sent["correlation_id"]

    def test_context_cleared_after_command(self, back_office, priced_draft):
        back_office.create_quote(priced_draft)

        assert LogContext.get_all() == {}

    def test_unknown_tenant(self, session, db_engine, actor_id):
        with pytest.raises(TenantNotFoundError):
            BackOfficeEngine(session, uuid4(), actor_id)
