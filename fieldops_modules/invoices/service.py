"""
Invoice Service -- invoices, credit notes, payments and balances.

Thin glue layer that:
1. Builds invoices from jobs (falling back to the originating quote) or drafts
2. Calls the due-date engine for ``due_date`` and the totals engine for totals
3. Calls SequenceAllocator so the invoice and its number commit together
4. Calls the balance engine after every payment or credit note and moves
   the invoice to Paid when nothing is left to pay

Invoices and credit notes share one counter; credit notes take the
``CN`` prefix. Payments are append-only child rows.

This service owns the transaction boundary. Audit rows are written after
the commit and never block it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldops_kernel.db.types import ZERO, round_money, to_decimal
from fieldops_kernel.domain.clock import Clock
from fieldops_kernel.domain.events import JobCompleted
from fieldops_kernel.exceptions import (
    InvalidTransitionError,
    InvoiceNotFoundError,
    QuoteNotFoundError,
    ValidationError,
)
from fieldops_kernel.logging_config import get_logger
from fieldops_kernel.models.audit_log import AuditAction
from fieldops_kernel.services.audit_service import AuditService
from fieldops_kernel.services.sequence_service import CounterKey, SequenceAllocator
from fieldops_engines.balance import balance, client_outstanding_balance
from fieldops_engines.due_dates import resolve_due_date
from fieldops_engines.payment_plan import (
    Installment,
    InstallmentStatus,
    build_payment_schedule,
    installment_to_dict,
    mark_installment_paid,
    parse_installment,
    refresh_installment_statuses,
)
from fieldops_engines.totals import DiscountType, PricedItem
from fieldops_modules._documents import (
    coerce_datetime,
    coerce_uuid,
    reject_unknown_keys,
)
from fieldops_modules.clients.models import format_service_address
from fieldops_modules.clients.service import ClientService
from fieldops_modules.invoices.models import Invoice, InvoiceStatus
from fieldops_modules.invoices.orm import InvoiceModel, InvoicePaymentModel
from fieldops_modules.invoices.workflows import INVOICE_WORKFLOW
from fieldops_modules.jobs.service import JobService
from fieldops_modules.quotes.service import QuoteService

logger = get_logger("modules.invoices.service")

DEFAULT_SUBJECT = "For services rendered"
DEFAULT_PAYMENT_TERM = "Due Today"

DRAFT_FIELDS = frozenset({
    "client_id",
    "job_id",
    "subject",
    "line_items",
    "tax_rate",
    "quote_discount_type",
    "quote_discount_value",
    "issue_date",
    "due_term",
    "billing_address",
    "service_address",
})


class InvoiceService:
    """
    Invoice operations for one tenant and actor.

    Transaction boundary: every public mutator commits on success and
    rolls back on failure.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        tenant_id: UUID,
        actor_id: UUID,
        allocator: SequenceAllocator,
        clients: ClientService,
        quotes: QuoteService,
        jobs: JobService,
        audit: AuditService,
        default_tax_rate: Any = ZERO,
        default_payment_term: str = DEFAULT_PAYMENT_TERM,
    ):
        self._session = session
        self._clock = clock
        self._tenant_id = tenant_id
        self._actor_id = actor_id
        self._allocator = allocator
        self._clients = clients
        self._quotes = quotes
        self._jobs = jobs
        self._audit = audit
        self._default_tax_rate = to_decimal(default_tax_rate)
        self._default_payment_term = default_payment_term or DEFAULT_PAYMENT_TERM

    # =========================================================================
    # Creation
    # =========================================================================

    def create_invoice_from_job(self, job_id: UUID) -> Invoice:
        """
        Bill a job.

        Line items come from the job, else from its quote, else a single
        zero-priced row named after the job. Tax and discount settings
        come from the quote, else the tenant defaults.

        Raises:
            InvalidTransitionError: a non-credit invoice already
                references the job.
            JobNotFoundError / ClientNotFoundError: unknown reference.
        """
        job = self._jobs.get_job(job_id)
        self._guard_no_invoice_for_job(job.id, job.status.value)

        quote = None
        if job.quote_id is not None:
            try:
                quote = self._quotes.get_quote(job.quote_id)
            except QuoteNotFoundError:
                # The quote link is a non-owning reference; bill from the job alone
                logger.warning("invoice_source_quote_missing", extra={
                    "job_id": str(job.id),
                    "quote_id": str(job.quote_id),
                })
        client = self._clients.get_client(job.client_id)

        if job.line_items:
            line_items = job.line_items
        elif quote is not None and quote.line_items:
            line_items = quote.line_items
        else:
            line_items = (PricedItem(name=job.title, qty=Decimal("1"), unit_price=ZERO),)

        if quote is not None:
            tax_rate = quote.tax_rate
            discount_type = quote.quote_discount_type
            discount_value = quote.quote_discount_value
        else:
            tax_rate = self._default_tax_rate
            discount_type = DiscountType.AMOUNT.value
            discount_value = ZERO

        issue_date = self._clock.now()
        due_term = self._default_payment_term

        def build(number: str) -> InvoiceModel:
            # Re-checked under the counter lock: a concurrent completion
            # may have billed the job since the first check
            self._guard_no_invoice_for_job(job.id, job.status.value)
            model = self._new_model(
                number=number,
                client_id=job.client_id,
                issue_date=issue_date,
                due_term=due_term,
                subject=job.title or (quote.title if quote else "") or DEFAULT_SUBJECT,
                job_id=job.id,
                quote_id=quote.id if quote else None,
                billing_address=client.billing_address,
                service_address=format_service_address(job.property_snapshot)
                or client.billing_address,
            )
            model.set_pricing(line_items, tax_rate, discount_type, discount_value)
            self._session.add(model)
            return model

        model = self._allocator.allocate(CounterKey.INVOICE, build)
        self._log_created(model)
        return model.to_dto()

    def ensure_invoice_for_job(self, job_id: UUID) -> Invoice:
        """
        Idempotent form of ``create_invoice_from_job``.

        Returns the job's existing non-credit invoice if there is one,
        otherwise creates it.
        """
        existing = self.find_invoice_for_job(job_id)
        if existing is not None:
            logger.info("job_already_invoiced", extra={
                "job_id": str(job_id),
                "invoice_id": str(existing.id),
            })
            return existing
        try:
            return self.create_invoice_from_job(job_id)
        except InvalidTransitionError:
            # Lost a race with another completion handler
            existing = self.find_invoice_for_job(job_id)
            if existing is None:
                raise
            return existing

    def handle_job_completed(self, event: JobCompleted) -> Invoice:
        """JobCompleted subscriber, keyed by job id."""
        return self.ensure_invoice_for_job(event.job_id)

    def create_invoice_from_draft(self, draft: Mapping[str, Any]) -> Invoice:
        """
        Create an invoice from a hand-built draft (the manual invoice flow).

        Raises:
            ValidationError: missing ``client_id`` or unknown field.
            ClientNotFoundError / JobNotFoundError: unknown reference.
        """
        reject_unknown_keys(draft, DRAFT_FIELDS)
        client_id = coerce_uuid("client_id", draft.get("client_id"))
        client = self._clients.get_client(client_id)
        job_id = coerce_uuid("job_id", draft.get("job_id"), required=False)
        if job_id is not None:
            self._jobs.get_model(job_id)

        issue_date = coerce_datetime("issue_date", draft.get("issue_date")) or self._clock.now()
        due_term = draft.get("due_term") or self._default_payment_term
        tax_rate = draft.get("tax_rate", self._default_tax_rate)

        def build(number: str) -> InvoiceModel:
            model = self._new_model(
                number=number,
                client_id=client.id,
                issue_date=issue_date,
                due_term=due_term,
                subject=draft.get("subject") or DEFAULT_SUBJECT,
                job_id=job_id,
                billing_address=draft.get("billing_address") or client.billing_address,
                service_address=draft.get("service_address") or "",
            )
            model.set_pricing(
                draft.get("line_items"),
                tax_rate,
                draft.get("quote_discount_type"),
                draft.get("quote_discount_value"),
            )
            self._session.add(model)
            return model

        model = self._allocator.allocate(CounterKey.INVOICE, build)
        self._log_created(model)
        return model.to_dto()

    def issue_credit_note(
        self,
        invoice_id: UUID,
        amount: Any,
        reason: str | None = None,
    ) -> Invoice:
        """
        Issue a credit note of ``amount`` against an invoice.

        The credit note is numbered from the shared invoice counter with
        the credit-note prefix. When it brings the credited invoice's
        balance to zero, that invoice becomes Paid in the same transaction.

        Raises:
            InvalidTransitionError: the target is itself a credit note.
            ValidationError: amount not positive or above the invoice total.
        """
        original = self.get_model(invoice_id)
        if original.is_credit_note:
            raise InvalidTransitionError(
                "invoice", original.id, original.status, "credit",
                "credit notes cannot be credited",
            )
        credit = round_money(to_decimal(amount))
        if credit <= 0:
            raise ValidationError("amount", "Credit amount must be positive")
        if credit > original.total:
            raise ValidationError(
                "amount", f"Credit {credit} exceeds invoice total {original.total}",
            )
        original_id = original.id

        def build(number: str) -> InvoiceModel:
            target = self.get_model(original_id)
            now = self._clock.now()
            note = self._new_model(
                number=number,
                client_id=target.client_id,
                issue_date=now,
                due_term=DEFAULT_PAYMENT_TERM,
                subject=f"Credit note for {target.invoice_number}",
                job_id=target.job_id,
                billing_address=target.billing_address,
                service_address=target.service_address,
            )
            note.is_credit_note = True
            note.credit_for_invoice_id = target.id
            note.credit_reason = reason
            note.status = InvoiceStatus.SENT.value
            note.sent_at = now
            note.set_pricing(
                [PricedItem(
                    name=f"Credit for {target.invoice_number}",
                    description=reason or "",
                    qty=Decimal("1"),
                    unit_price=credit,
                )],
                ZERO,
                DiscountType.AMOUNT,
                ZERO,
            )
            self._session.add(note)
            self._session.flush()
            self._settle_if_cleared(target)
            return note

        note = self._allocator.allocate(CounterKey.CREDIT_NOTE, build)

        logger.info("credit_note_issued", extra={
            "credit_note_id": str(note.id),
            "credit_note_number": note.invoice_number,
            "invoice_id": str(original_id),
            "amount": str(credit),
        })
        self._audit.record(
            AuditAction.CREDIT_NOTE_ISSUED, "invoice", original_id,
            {"credit_note_id": str(note.id), "amount": str(credit), "reason": reason},
        )
        return note.to_dto()

    # =========================================================================
    # Payments
    # =========================================================================

    def record_payment(
        self,
        invoice_id: UUID,
        amount: Any,
        method: str,
        installment_index: int | None = None,
    ) -> Invoice:
        """
        Append a payment and settle the invoice if its balance reaches 0.

        Raises:
            ValidationError: amount not positive or above the balance, or
                no payment method.
            InvalidTransitionError: credit note, or already Paid.
        """
        model = self.get_model(invoice_id)
        if model.is_credit_note:
            raise InvalidTransitionError(
                "invoice", model.id, model.status, "record payment",
                "credit notes are not payable",
            )
        if model.status == InvoiceStatus.PAID.value:
            raise InvalidTransitionError(
                "invoice", model.id, model.status, "record payment",
                "invoice is already paid",
            )
        paid = round_money(to_decimal(amount))
        if paid <= 0:
            raise ValidationError("amount", "Payment amount must be positive")
        if not method or not method.strip():
            raise ValidationError("method", "Payment method is required")
        outstanding = self._balance_of(model)
        if paid > outstanding:
            raise ValidationError(
                "amount", f"Payment {paid} exceeds outstanding balance {outstanding}",
            )

        schedule = None
        if installment_index is not None:
            schedule = self._schedule_of(model)
            try:
                schedule = mark_installment_paid(
                    schedule, installment_index, paid, method.strip(), self._clock.now(),
                )
            except IndexError as exc:
                raise ValidationError("installment_index", str(exc)) from exc

        now = self._clock.now()
        try:
            model.payments.append(InvoicePaymentModel(
                tenant_id=self._tenant_id,
                amount=paid,
                method=method.strip(),
                installment_index=installment_index,
                created_at=now,
                updated_at=now,
                created_by_id=self._actor_id,
            ))
            if schedule is not None:
                model.payment_plan = [installment_to_dict(i) for i in schedule]
            self._session.flush()
            self._settle_if_cleared(model)
            self._touch(model)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("payment_recorded", extra={
            "invoice_id": str(model.id),
            "invoice_number": model.invoice_number,
            "amount": str(paid),
            "method": method,
            "status": model.status,
        })
        self._audit.record(
            AuditAction.PAYMENT_RECORDED, "invoice", model.id,
            {"amount": str(paid), "method": method, "status": model.status},
        )
        return model.to_dto()

    def set_up_payment_plan(
        self,
        invoice_id: UUID,
        installments: int,
        frequency: str = "monthly",
        start_date: datetime | str | None = None,
    ) -> Invoice:
        """Split the invoice's outstanding balance into scheduled installments."""
        model = self.get_model(invoice_id)
        if model.is_credit_note or model.status == InvoiceStatus.PAID.value:
            raise InvalidTransitionError(
                "invoice", model.id, model.status, "set up payment plan",
                "nothing left to pay",
            )
        start = coerce_datetime("start_date", start_date) or self._clock.now()
        try:
            schedule = build_payment_schedule(
                self._balance_of(model), installments, frequency, start,
            )
        except ValueError as exc:
            raise ValidationError("installments", str(exc)) from exc

        model.payment_plan = [installment_to_dict(i) for i in schedule]
        self._touch(model)
        self._commit()

        logger.info("payment_plan_created", extra={
            "invoice_id": str(model.id),
            "installments": len(schedule),
            "frequency": str(frequency),
        })
        self._audit.record(
            AuditAction.PAYMENT_PLAN_CREATED, "invoice", model.id,
            {"installments": len(schedule), "frequency": str(frequency)},
        )
        return model.to_dto()

    def record_installment_payment(self, invoice_id: UUID, index: int, method: str) -> Invoice:
        """Pay one installment of the invoice's plan in full."""
        model = self.get_model(invoice_id)
        schedule = self._schedule_of(model)
        match = next((inst for inst in schedule if inst.index == index), None)
        if match is None:
            raise ValidationError("installment_index", f"No installment {index}")
        if match.status == InstallmentStatus.PAID:
            raise InvalidTransitionError(
                "invoice", model.id, model.status, "pay installment",
                f"installment {index} is already paid",
            )
        return self.record_payment(invoice_id, match.amount, method, installment_index=index)

    def payment_plan(self, invoice_id: UUID) -> tuple[Installment, ...]:
        """The invoice's installments, with past-due ones marked overdue."""
        return refresh_installment_statuses(
            self._schedule_of(self.get_model(invoice_id)), self._clock.now(),
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    def send_invoice(self, invoice_id: UUID) -> Invoice:
        model = self.get_model(invoice_id)
        self._apply(model, "send")
        if model.sent_at is None:
            model.sent_at = self._clock.now()
        return self._save_transition(model, AuditAction.INVOICE_SENT)

    def mark_invoice_unpaid(self, invoice_id: UUID) -> Invoice:
        model = self.get_model(invoice_id)
        self._apply(model, "mark_unpaid")
        return self._save_transition(model, AuditAction.INVOICE_STATUS_CHANGED)

    def mark_invoice_paid(self, invoice_id: UUID) -> Invoice:
        """Legacy manual mark-as-paid. Balance reads 0 afterwards even with no payments."""
        model = self.get_model(invoice_id)
        self._apply(model, "pay")
        model.paid_at = self._clock.now()
        return self._save_transition(model, AuditAction.INVOICE_STATUS_CHANGED)

    # =========================================================================
    # Balances and queries
    # =========================================================================

    def get_balance(self, invoice_id: UUID) -> Decimal:
        return self._balance_of(self.get_model(invoice_id))

    def client_balance(self, client_id: UUID) -> Decimal:
        """What a client owes across all their invoices, net of credit notes."""
        models = list(self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.tenant_id == self._tenant_id)
            .where(InvoiceModel.client_id == coerce_uuid("client_id", client_id))
        ).scalars())
        return client_outstanding_balance(models)

    def get_model(self, invoice_id: UUID) -> InvoiceModel:
        model = self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.tenant_id == self._tenant_id)
            .where(InvoiceModel.id == coerce_uuid("invoice_id", invoice_id))
        ).scalar_one_or_none()
        if model is None:
            raise InvoiceNotFoundError(invoice_id)
        return model

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        return self.get_model(invoice_id).to_dto()

    def find_invoice_for_job(self, job_id: UUID) -> Invoice | None:
        """The job's non-credit invoice, if one exists."""
        model = self._invoice_model_for_job(coerce_uuid("job_id", job_id))
        return model.to_dto() if model is not None else None

    def credit_notes_for(self, invoice_id: UUID) -> list[Invoice]:
        return [m.to_dto() for m in self._credit_note_models(invoice_id)]

    def list_invoices(
        self,
        status: InvoiceStatus | str | None = None,
        client_id: UUID | None = None,
        job_id: UUID | None = None,
        include_credit_notes: bool = True,
    ) -> list[Invoice]:
        stmt = select(InvoiceModel).where(InvoiceModel.tenant_id == self._tenant_id)
        if status is not None:
            stmt = stmt.where(InvoiceModel.status == InvoiceStatus(status).value)
        if client_id is not None:
            stmt = stmt.where(InvoiceModel.client_id == client_id)
        if job_id is not None:
            stmt = stmt.where(InvoiceModel.job_id == job_id)
        if not include_credit_notes:
            stmt = stmt.where(InvoiceModel.is_credit_note.is_(False))
        models = self._session.execute(stmt.order_by(InvoiceModel.invoice_number)).scalars()
        return [m.to_dto() for m in models]

    # =========================================================================
    # Internals
    # =========================================================================

    def _new_model(
        self,
        number: str,
        client_id: UUID,
        issue_date: datetime,
        due_term: str,
        subject: str,
        job_id: UUID | None = None,
        quote_id: UUID | None = None,
        billing_address: str = "",
        service_address: str = "",
    ) -> InvoiceModel:
        now = self._clock.now()
        return InvoiceModel(
            tenant_id=self._tenant_id,
            invoice_number=number,
            client_id=client_id,
            job_id=job_id,
            quote_id=quote_id,
            subject=subject,
            status=INVOICE_WORKFLOW.initial_state,
            issue_date=issue_date,
            due_term=due_term,
            due_date=resolve_due_date(issue_date, due_term),
            billing_address=billing_address or "",
            service_address=service_address or "",
            is_credit_note=False,
            created_at=now,
            updated_at=now,
            created_by_id=self._actor_id,
        )

    def _invoice_model_for_job(self, job_id: UUID) -> InvoiceModel | None:
        return self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.tenant_id == self._tenant_id)
            .where(InvoiceModel.job_id == job_id)
            .where(InvoiceModel.is_credit_note.is_(False))
            .order_by(InvoiceModel.created_at)
            .limit(1)
        ).scalar_one_or_none()

    def _guard_no_invoice_for_job(self, job_id: UUID, job_status: str) -> None:
        existing = self._invoice_model_for_job(job_id)
        if existing is not None:
            raise InvalidTransitionError(
                "job", job_id, job_status, "invoice",
                f"already invoiced as {existing.invoice_number}",
            )

    def _credit_note_models(self, invoice_id: UUID) -> list[InvoiceModel]:
        return list(self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.tenant_id == self._tenant_id)
            .where(InvoiceModel.is_credit_note.is_(True))
            .where(InvoiceModel.credit_for_invoice_id == invoice_id)
        ).scalars())

    def _balance_of(self, model: InvoiceModel) -> Decimal:
        return balance(model, self._credit_note_models(model.id))

    def _schedule_of(self, model: InvoiceModel) -> tuple[Installment, ...]:
        if not model.payment_plan:
            raise ValidationError("payment_plan", "Invoice has no payment plan")
        return tuple(parse_installment(raw) for raw in model.payment_plan)

    def _settle_if_cleared(self, model: InvoiceModel) -> None:
        """Move an unpaid invoice to Paid once its balance is zero. Stages only."""
        if model.status == InvoiceStatus.PAID.value:
            return
        if self._balance_of(model) > 0:
            return
        self._apply(model, "pay")
        model.paid_at = self._clock.now()
        self._touch(model)
        logger.info("invoice_settled", extra={
            "invoice_id": str(model.id),
            "invoice_number": model.invoice_number,
        })

    def _apply(self, model: InvoiceModel, action: str) -> None:
        if model.is_credit_note:
            raise InvalidTransitionError(
                "invoice", model.id, model.status, action, "credit notes do not change state",
            )
        transition = INVOICE_WORKFLOW.find_transition(model.status, action)
        if transition is None:
            logger.warning("invoice_transition_rejected", extra={
                "invoice_id": str(model.id),
                "current_state": model.status,
                "action": action,
            })
            raise InvalidTransitionError("invoice", model.id, model.status, action)
        model.status = transition.to_state

    def _touch(self, model: InvoiceModel) -> None:
        model.updated_at = self._clock.now()
        model.updated_by_id = self._actor_id

    def _commit(self) -> None:
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def _save_transition(self, model: InvoiceModel, action: AuditAction) -> Invoice:
        self._touch(model)
        self._commit()
        logger.info("invoice_status_changed", extra={
            "invoice_id": str(model.id),
            "invoice_number": model.invoice_number,
            "status": model.status,
        })
        self._audit.record(action, "invoice", model.id, {"status": model.status})
        return model.to_dto()

    def _log_created(self, model: InvoiceModel) -> None:
        logger.info("invoice_created", extra={
            "invoice_id": str(model.id),
            "invoice_number": model.invoice_number,
            "client_id": str(model.client_id),
            "job_id": str(model.job_id) if model.job_id else None,
            "total": str(model.total),
            "due_date": model.due_date,
        })
        self._audit.record(
            AuditAction.INVOICE_CREATED, "invoice", model.id,
            {
                "invoice_number": model.invoice_number,
                "job_id": str(model.job_id) if model.job_id else None,
            },
        )
