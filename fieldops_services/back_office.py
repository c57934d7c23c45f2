"""
fieldops_services.back_office -- the back-office command surface.

Responsibility:
    Wires every service for one tenant and actor, exposes the inbound
    commands (create/send/approve quotes, convert and complete jobs,
    invoice, take payments, issue credit notes) and publishes the
    outbound events once each command has committed.

Architecture position:
    Services -- the only layer that knows about the EventBus. Module
    services commit their own transactions and return DTOs; this class
    decides which event a committed change produces.

Event handling:
    - JobCompleted -> InvoiceService.handle_job_completed, an idempotent
      handler keyed by job id. Its errors propagate to the caller, who
      may simply complete the job again to re-drive it.
    - Every event -> NotificationRecorder, best-effort. A failure is
      logged and dropped; the committed change stands.

Usage:
    engine = BackOfficeEngine(session, tenant_id, actor_id)
    quote = engine.create_quote({"client_id": client.id, "line_items": [...]})
    engine.send_quote(quote.id)
    engine.approve_quote(quote.id, "Ada Lovelace")
    job = engine.convert_quote_to_job(quote.id)
    engine.update_job_status(job.id, "Completed")   # invoices the job
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Mapping, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from fieldops_config import EngineConfig, get_active_config
from fieldops_kernel.domain.clock import Clock, SystemClock
from fieldops_kernel.domain.events import (
    DomainEvent,
    EventBus,
    InvoicePaid,
    InvoiceSent,
    JobCompleted,
    QuoteApproved,
    QuoteSent,
)
from fieldops_kernel.logging_config import LogContext, get_logger
from fieldops_kernel.models.audit_log import AuditAction
from fieldops_kernel.models.tenant import TenantModel
from fieldops_kernel.services.audit_service import AuditService, NotificationRecorder
from fieldops_kernel.services.sequence_service import SequenceAllocator
from fieldops_kernel.services.tenant_service import TenantService
from fieldops_engines.job_costing import JobProfitability
from fieldops_engines.payment_plan import Installment
from fieldops_modules.clients import Client, ClientService
from fieldops_modules.invoices import Invoice, InvoiceService, InvoiceStatus
from fieldops_modules.jobs import Job, JobService, JobStatus
from fieldops_modules.quotes import Quote, QuoteService

logger = get_logger("services.back_office")

PUBLIC_SIGNER_NAME = "Client"

_OUTBOUND_EVENTS: tuple[type[DomainEvent], ...] = (
    QuoteSent,
    QuoteApproved,
    JobCompleted,
    InvoiceSent,
    InvoicePaid,
)


def create_tenant(
    session: Session,
    name: str,
    actor_id: UUID,
    config: EngineConfig | None = None,
    clock: Clock | None = None,
    default_tax_rate: Decimal | None = None,
    default_payment_term: str | None = None,
) -> TenantModel:
    """Create a tenant and its counter row, using configured defaults."""
    config = config or get_active_config()
    billing = config.billing
    return TenantService(session, clock or SystemClock()).create_tenant(
        name,
        actor_id,
        default_tax_rate=billing.default_tax_rate if default_tax_rate is None else default_tax_rate,
        default_payment_term=default_payment_term or billing.default_payment_term,
        numbering=config.numbering,
    )


class BackOfficeEngine:
    """Command surface for one tenant and actor.

    Contract:
        Receives a Session, the tenant and acting user, and optionally a
        config, Clock and EventBus. Constructs each service exactly once
        and shares the Session and Clock between them.

    Guarantees:
        - Events are published only after the change they describe has
          committed.
        - The JobCompleted invoice handler and the notification recorder
          only react to this engine's tenant, so one EventBus can be
          shared between engines.
        - Subscriptions are keyed by tenant. A newer engine for the same
          tenant on the same bus replaces the older engine's handlers, so
          every event is handled and recorded once however many engines
          have been built. ``close()`` releases them early.

    Non-goals:
        - Does NOT authenticate. Public (token) commands take the token
          as the capability and only authorize the transition itself.
    """

    def __init__(
        self,
        session: Session,
        tenant_id: UUID,
        actor_id: UUID,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
    ):
        self._session = session
        self._tenant_id = tenant_id
        self._actor_id = actor_id
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._event_bus = event_bus or EventBus()

        tenant = TenantService(session, self._clock).get_tenant(tenant_id)

        self._allocator = SequenceAllocator(
            session,
            tenant_id,
            numbering=self._config.numbering,
            max_attempts=self._config.sequence.max_attempts,
            backoff_seconds=self._config.sequence.backoff_seconds,
        )
        self._audit = AuditService(session, self._clock, tenant_id, actor_id)
        self._clients = ClientService(session, self._clock, tenant_id, actor_id)
        self._quotes = QuoteService(
            session, self._clock, tenant_id, actor_id,
            allocator=self._allocator,
            clients=self._clients,
            audit=self._audit,
            default_tax_rate=tenant.default_tax_rate,
        )
        self._jobs = JobService(
            session, self._clock, tenant_id, actor_id,
            allocator=self._allocator,
            clients=self._clients,
            quotes=self._quotes,
            audit=self._audit,
        )
        self._invoices = InvoiceService(
            session, self._clock, tenant_id, actor_id,
            allocator=self._allocator,
            clients=self._clients,
            quotes=self._quotes,
            jobs=self._jobs,
            audit=self._audit,
            default_tax_rate=tenant.default_tax_rate,
            default_payment_term=tenant.default_payment_term,
        )
        self._notifications = NotificationRecorder(session, self._clock, actor_id)

        self._invoice_key = ("invoice_on_completion", tenant_id)
        self._notification_key = ("notifications", tenant_id)
        self._event_bus.subscribe(JobCompleted, self._on_job_completed, key=self._invoice_key)
        for event_type in _OUTBOUND_EVENTS:
            self._event_bus.subscribe(
                event_type, self._record_notification,
                best_effort=True, key=self._notification_key,
            )

    def close(self) -> None:
        """Drop this engine's subscriptions, unless a newer engine has taken them over."""
        self._event_bus.unsubscribe(JobCompleted, self._on_job_completed, key=self._invoice_key)
        for event_type in _OUTBOUND_EVENTS:
            self._event_bus.unsubscribe(
                event_type, self._record_notification, key=self._notification_key,
            )

    def __enter__(self) -> "BackOfficeEngine":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # =========================================================================
    # Wiring
    # =========================================================================

    @property
    def tenant_id(self) -> UUID:
        return self._tenant_id

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def clients(self) -> ClientService:
        return self._clients

    @property
    def quotes(self) -> QuoteService:
        return self._quotes

    @property
    def jobs(self) -> JobService:
        return self._jobs

    @property
    def invoices(self) -> InvoiceService:
        return self._invoices

    @property
    def audit(self) -> AuditService:
        return self._audit

    @property
    def allocator(self) -> SequenceAllocator:
        return self._allocator

    def _on_job_completed(self, event: JobCompleted) -> None:
        if event.tenant_id != self._tenant_id:
            return
        self._invoices.handle_job_completed(event)

    def _record_notification(self, event: DomainEvent) -> None:
        if event.tenant_id != self._tenant_id:
            return
        self._notifications(event)

    @contextmanager
    def _command(self, name: str, entity_id: Any = None) -> Iterator[None]:
        with LogContext.bind(
            tenant_id=str(self._tenant_id),
            actor_id=str(self._actor_id),
            correlation_id=str(uuid4()),
            entity_id=str(entity_id) if entity_id is not None else None,
        ):
            logger.debug("command_started", extra={"command": name})
            yield

    def _publish(self, event: DomainEvent) -> None:
        self._event_bus.publish(event)

    # =========================================================================
    # Clients
    # =========================================================================

    def create_client(
        self,
        name: str,
        email: str = "",
        phone: str = "",
        billing_address: str = "",
        properties: Sequence[Mapping[str, Any]] = (),
    ) -> Client:
        with self._command("create_client"):
            client = self._clients.create_client(
                name,
                email=email,
                phone=phone,
                billing_address=billing_address,
                properties=properties,
            )
            self._audit.record(AuditAction.CLIENT_CREATED, "client", client.id, {"name": client.name})
            return client

    # =========================================================================
    # Quotes
    # =========================================================================

    def create_quote(self, draft: Mapping[str, Any]) -> Quote:
        with self._command("create_quote"):
            return self._quotes.create_quote(draft)

    def update_quote(self, quote_id: UUID, changes: Mapping[str, Any]) -> Quote:
        with self._command("update_quote", quote_id):
            return self._quotes.update_quote(quote_id, changes)

    def send_quote(self, quote_id: UUID) -> Quote:
        with self._command("send_quote", quote_id):
            quote = self._quotes.send_quote(quote_id)
            self._publish(QuoteSent(tenant_id=self._tenant_id, quote_id=quote.id))
            return quote

    def approve_quote(self, quote_id: UUID, signer_name: str | None = None) -> Quote:
        with self._command("approve_quote", quote_id):
            quote = self._quotes.approve_quote(quote_id, signer_name)
            self._publish(QuoteApproved(tenant_id=self._tenant_id, quote_id=quote.id))
            return quote

    def decline_quote(self, quote_id: UUID, signer_name: str | None = None) -> Quote:
        with self._command("decline_quote", quote_id):
            return self._quotes.decline_quote(quote_id, signer_name)

    def archive_quote(self, quote_id: UUID) -> Quote:
        with self._command("archive_quote", quote_id):
            return self._quotes.archive_quote(quote_id)

    def revert_quote_to_draft(self, quote_id: UUID) -> Quote:
        with self._command("revert_quote_to_draft", quote_id):
            return self._quotes.revert_quote_to_draft(quote_id)

    def create_similar_quote(self, quote_id: UUID) -> Quote:
        with self._command("create_similar_quote", quote_id):
            return self._quotes.create_similar_quote(quote_id)

    def issue_approval_token(self, quote_id: UUID) -> str:
        with self._command("issue_approval_token", quote_id):
            return self._quotes.issue_approval_token(quote_id)

    def approve_quote_by_token(self, token: str, signer_name: str | None = None) -> Quote:
        """Public approval link. The token is the capability."""
        quote_id = self._quotes.quote_id_for_token(token)
        return self.approve_quote(quote_id, signer_name or PUBLIC_SIGNER_NAME)

    def decline_quote_by_token(self, token: str, signer_name: str | None = None) -> Quote:
        quote_id = self._quotes.quote_id_for_token(token)
        return self.decline_quote(quote_id, signer_name or PUBLIC_SIGNER_NAME)

    # =========================================================================
    # Jobs
    # =========================================================================

    def convert_quote_to_job(
        self,
        quote_id: UUID,
        overrides: Mapping[str, Any] | None = None,
    ) -> Job:
        """Approved quote -> Converted, plus a new job, in one transaction."""
        with self._command("convert_quote_to_job", quote_id):
            return self._jobs.create_job_from_quote(quote_id, overrides)

    def create_job(self, data: Mapping[str, Any]) -> Job:
        with self._command("create_job", data.get("quote_id")):
            return self._jobs.create_job(data)

    def update_job_status(self, job_id: UUID, status: JobStatus | str) -> Job:
        """
        Move a job along its workflow.

        Completing (or re-completing) a job publishes JobCompleted, which
        invoices the job unless it already has a non-credit invoice.
        """
        with self._command("update_job_status", job_id):
            job = self._jobs.update_job_status(job_id, status)
            if job.status == JobStatus.COMPLETED:
                self._publish(JobCompleted(tenant_id=self._tenant_id, job_id=job.id))
            return job

    def update_job_details(self, job_id: UUID, changes: Mapping[str, Any]) -> Job:
        with self._command("update_job_details", job_id):
            return self._jobs.update_job_details(job_id, changes)

    def job_profitability(self, job_id: UUID) -> JobProfitability:
        return self._jobs.job_profitability(job_id)

    # =========================================================================
    # Invoices
    # =========================================================================

    def create_invoice_from_job(self, job_id: UUID) -> Invoice:
        with self._command("create_invoice_from_job", job_id):
            return self._invoices.create_invoice_from_job(job_id)

    def create_invoice_from_draft(self, draft: Mapping[str, Any]) -> Invoice:
        with self._command("create_invoice_from_draft"):
            return self._invoices.create_invoice_from_draft(draft)

    def send_invoice(self, invoice_id: UUID) -> Invoice:
        with self._command("send_invoice", invoice_id):
            invoice = self._invoices.send_invoice(invoice_id)
            self._publish(InvoiceSent(tenant_id=self._tenant_id, invoice_id=invoice.id))
            return invoice

    def mark_invoice_unpaid(self, invoice_id: UUID) -> Invoice:
        with self._command("mark_invoice_unpaid", invoice_id):
            return self._invoices.mark_invoice_unpaid(invoice_id)

    def mark_invoice_paid(self, invoice_id: UUID) -> Invoice:
        with self._command("mark_invoice_paid", invoice_id):
            invoice = self._invoices.mark_invoice_paid(invoice_id)
            self._publish(InvoicePaid(tenant_id=self._tenant_id, invoice_id=invoice.id))
            return invoice

    def record_payment(self, invoice_id: UUID, amount: Any, method: str) -> Invoice:
        with self._command("record_payment", invoice_id):
            invoice = self._invoices.record_payment(invoice_id, amount, method)
            if invoice.status == InvoiceStatus.PAID:
                self._publish(InvoicePaid(tenant_id=self._tenant_id, invoice_id=invoice.id))
            return invoice

    def set_up_payment_plan(
        self,
        invoice_id: UUID,
        installments: int,
        frequency: str = "monthly",
        start_date: Any = None,
    ) -> Invoice:
        with self._command("set_up_payment_plan", invoice_id):
            return self._invoices.set_up_payment_plan(
                invoice_id, installments, frequency, start_date,
            )

    def record_installment_payment(self, invoice_id: UUID, index: int, method: str) -> Invoice:
        with self._command("record_installment_payment", invoice_id):
            invoice = self._invoices.record_installment_payment(invoice_id, index, method)
            if invoice.status == InvoiceStatus.PAID:
                self._publish(InvoicePaid(tenant_id=self._tenant_id, invoice_id=invoice.id))
            return invoice

    def payment_plan(self, invoice_id: UUID) -> tuple[Installment, ...]:
        return self._invoices.payment_plan(invoice_id)

    def issue_credit_note(
        self,
        invoice_id: UUID,
        amount: Any,
        reason: str | None = None,
    ) -> Invoice:
        """
        Credit an invoice. Publishes InvoicePaid for the credited invoice
        when the credit note clears its balance.
        """
        with self._command("issue_credit_note", invoice_id):
            was_paid = self._invoices.get_invoice(invoice_id).status == InvoiceStatus.PAID
            note = self._invoices.issue_credit_note(invoice_id, amount, reason)
            credited = self._invoices.get_invoice(invoice_id)
            if not was_paid and credited.status == InvoiceStatus.PAID:
                self._publish(InvoicePaid(tenant_id=self._tenant_id, invoice_id=credited.id))
            return note

    # =========================================================================
    # Balances
    # =========================================================================

    def get_balance(self, invoice_id: UUID) -> Decimal:
        return self._invoices.get_balance(invoice_id)

    def client_balance(self, client_id: UUID) -> Decimal:
        return self._invoices.client_balance(client_id)
