"""
Job Service -- job creation, quote conversion and status changes.

Jobs are created directly or converted from an Approved quote. A
conversion marks the quote Converted inside the same transaction that
allocates the job number, so either both happen or neither does.

Completing a job does not create the invoice here. The caller publishes
JobCompleted and the invoice service's idempotent handler reacts to it.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldops_kernel.domain.clock import Clock
from fieldops_kernel.exceptions import (
    InvalidTransitionError,
    JobNotFoundError,
    ValidationError,
)
from fieldops_kernel.logging_config import get_logger
from fieldops_kernel.models.audit_log import AuditAction
from fieldops_kernel.services.audit_service import AuditService
from fieldops_kernel.services.sequence_service import CounterKey, SequenceAllocator
from fieldops_engines.job_costing import JobProfitability, job_profitability
from fieldops_engines.totals import LineItem, PricedItem, job_total_value
from fieldops_modules._documents import (
    coerce_datetime,
    coerce_uuid,
    reject_unknown_keys,
)
from fieldops_modules.clients.models import resolve_property
from fieldops_modules.clients.service import ClientService
from fieldops_modules.jobs.models import Job, JobStatus
from fieldops_modules.jobs.orm import JobModel
from fieldops_modules.jobs.workflows import COMPLETED, JOB_WORKFLOW
from fieldops_modules.quotes.service import QuoteService

logger = get_logger("modules.jobs.service")

JOB_FIELDS = frozenset({
    "client_id",
    "quote_id",
    "title",
    "description",
    "property_id",
    "start",
    "end",
    "line_items",
    "assignees",
    "visits",
    "attachments",
})

DETAIL_FIELDS = frozenset({
    "title",
    "description",
    "property_id",
    "start",
    "end",
    "line_items",
    "assignees",
    "visits",
    "attachments",
    "labor_entries",
    "expenses",
})

_LIST_FIELDS = ("assignees", "visits", "attachments", "labor_entries", "expenses")


def fallback_job_title(
    quote_title: str | None,
    line_items: tuple[LineItem, ...],
    client_name: str,
) -> str:
    """Quote title, else the first row's name or description, else "Job for {client}"."""
    if quote_title and quote_title.strip():
        return quote_title.strip()
    if line_items:
        first = line_items[0]
        name = first.name if isinstance(first, PricedItem) else ""
        if name.strip():
            return name.strip()
        if first.description.strip():
            return first.description.strip()
    return f"Job for {client_name}"


class JobService:
    """
    Job operations for one tenant and actor.

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
        audit: AuditService,
    ):
        self._session = session
        self._clock = clock
        self._tenant_id = tenant_id
        self._actor_id = actor_id
        self._allocator = allocator
        self._clients = clients
        self._quotes = quotes
        self._audit = audit

    # =========================================================================
    # Creation
    # =========================================================================

    def create_job(self, data: Mapping[str, Any]) -> Job:
        """
        Create a job and allocate its job number.

        With ``quote_id`` the job is a conversion: client, property, line
        items and (when not given) the title come from the quote, and the
        quote is marked Converted in the same transaction.

        Raises:
            ValidationError: missing ``client_id`` or ``title``.
            ClientNotFoundError / QuoteNotFoundError: unknown reference.
            InvalidTransitionError: the quote is not Approved.
        """
        reject_unknown_keys(data, JOB_FIELDS)
        quote_id = coerce_uuid("quote_id", data.get("quote_id"), required=False)

        if quote_id is not None:
            quote = self._quotes.get_quote(quote_id)
            client_id = quote.client_id
            client = self._clients.get_client(client_id)
            line_items = data.get("line_items", quote.line_items)
            title = data.get("title") or fallback_job_title(
                quote.title, quote.line_items, client.name,
            )
            property_id = quote.property_id
            snapshot = dict(quote.property_snapshot) if quote.property_snapshot else None
            if data.get("property_id"):
                property_id, snapshot = resolve_property(client, data["property_id"])
        else:
            client_id = coerce_uuid("client_id", data.get("client_id"))
            title = (data.get("title") or "").strip()
            if not title:
                raise ValidationError("title", "Job title is required")
            client = self._clients.get_client(client_id)
            line_items = data.get("line_items")
            property_id, snapshot = resolve_property(client, data.get("property_id"))

        start = coerce_datetime("start", data.get("start"))
        end = coerce_datetime("end", data.get("end"))
        if start and end and end < start:
            raise ValidationError("end", "must not be before start")
        status = JobStatus.SCHEDULED if start else JobStatus.UNSCHEDULED

        def build(number: str) -> JobModel:
            if quote_id is not None:
                self._quotes.stage_conversion(quote_id)
            now = self._clock.now()
            model = JobModel(
                tenant_id=self._tenant_id,
                job_number=number,
                client_id=client_id,
                quote_id=quote_id,
                title=title,
                description=data.get("description") or "",
                status=status.value,
                property_id=property_id,
                property_snapshot=snapshot,
                start_at=start,
                end_at=end,
                assignees=list(data.get("assignees") or ()),
                visits=list(data.get("visits") or ()),
                attachments=list(data.get("attachments") or ()),
                labor_entries=[],
                expenses=[],
                created_at=now,
                updated_at=now,
                created_by_id=self._actor_id,
            )
            model.set_line_items(line_items)
            model.total_value = job_total_value(model.get_line_items())
            self._session.add(model)
            return model

        model = self._allocator.allocate(CounterKey.JOB, build)

        logger.info("job_created", extra={
            "job_id": str(model.id),
            "job_number": model.job_number,
            "client_id": str(client_id),
            "quote_id": str(quote_id) if quote_id else None,
            "status": model.status,
        })
        self._audit.record(
            AuditAction.JOB_CREATED, "job", model.id,
            {"job_number": model.job_number, "quote_id": str(quote_id) if quote_id else None},
        )
        if quote_id is not None:
            self._audit.record(
                AuditAction.QUOTE_CONVERTED, "quote", quote_id, {"job_id": str(model.id)},
            )
        return model.to_dto()

    def create_job_from_quote(
        self,
        quote_id: UUID,
        overrides: Mapping[str, Any] | None = None,
    ) -> Job:
        """Convert an Approved quote into a job."""
        return self.create_job({**(overrides or {}), "quote_id": quote_id})

    # =========================================================================
    # Updates
    # =========================================================================

    def update_job_status(self, job_id: UUID, status: JobStatus | str) -> Job:
        """
        Move a job to ``status`` along JOB_WORKFLOW.

        Completing a Completed job is a no-op that still returns the job,
        so the caller can re-publish JobCompleted.
        """
        try:
            target = JobStatus(status)
        except ValueError as exc:
            raise ValidationError("status", f"unknown job status: {status!r}") from exc

        model = self.get_model(job_id)
        current = model.status
        transition = JOB_WORKFLOW.find_transition_to(current, target.value)
        if transition is None:
            logger.warning("job_transition_rejected", extra={
                "job_id": str(model.id),
                "current_state": current,
                "target_state": target.value,
            })
            raise InvalidTransitionError(
                "job", model.id, current, f"move to {target.value}",
            )

        if transition.from_state == transition.to_state:
            logger.info("job_completion_repeated", extra={"job_id": str(model.id)})
            return model.to_dto()

        model.status = transition.to_state
        if transition.to_state == COMPLETED:
            model.completed_at = self._clock.now()
        else:
            model.completed_at = None
        self._touch(model)
        self._commit()

        logger.info("job_status_changed", extra={
            "job_id": str(model.id),
            "job_number": model.job_number,
            "from_state": current,
            "to_state": model.status,
        })
        self._audit.record(
            AuditAction.JOB_STATUS_CHANGED, "job", model.id,
            {"from": current, "to": model.status},
        )
        return model.to_dto()

    def update_job_details(self, job_id: UUID, changes: Mapping[str, Any]) -> Job:
        """Edit job content. ``total_value`` is recomputed from the line items."""
        reject_unknown_keys(changes, DETAIL_FIELDS)
        model = self.get_model(job_id)

        # Validate everything before touching the model
        title = model.title
        if "title" in changes:
            title = (changes["title"] or "").strip()
            if not title:
                raise ValidationError("title", "Job title is required")
        start = coerce_datetime("start", changes["start"]) if "start" in changes else model.start_at
        end = coerce_datetime("end", changes["end"]) if "end" in changes else model.end_at
        if start and end and end < start:
            raise ValidationError("end", "must not be before start")
        if "property_id" in changes:
            client = self._clients.get_client(model.client_id)
            model.property_id, model.property_snapshot = resolve_property(
                client, changes["property_id"],
            )

        model.title = title
        model.start_at = start
        model.end_at = end
        if "description" in changes:
            model.description = changes["description"] or ""
        for name in _LIST_FIELDS:
            if name in changes:
                setattr(model, name, list(changes[name] or ()))
        if "line_items" in changes:
            model.set_line_items(changes["line_items"])
        model.total_value = job_total_value(model.get_line_items())

        self._touch(model)
        self._commit()

        logger.info("job_updated", extra={
            "job_id": str(model.id),
            "fields": sorted(changes),
            "total_value": str(model.total_value),
        })
        self._audit.record(
            AuditAction.JOB_UPDATED, "job", model.id, {"fields": sorted(changes)},
        )
        return model.to_dto()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_model(self, job_id: UUID) -> JobModel:
        model = self._session.execute(
            select(JobModel)
            .where(JobModel.tenant_id == self._tenant_id)
            .where(JobModel.id == coerce_uuid("job_id", job_id))
        ).scalar_one_or_none()
        if model is None:
            raise JobNotFoundError(job_id)
        return model

    def get_job(self, job_id: UUID) -> Job:
        return self.get_model(job_id).to_dto()

    def list_jobs(
        self,
        status: JobStatus | str | None = None,
        client_id: UUID | None = None,
    ) -> list[Job]:
        stmt = select(JobModel).where(JobModel.tenant_id == self._tenant_id)
        if status is not None:
            stmt = stmt.where(JobModel.status == JobStatus(status).value)
        if client_id is not None:
            stmt = stmt.where(JobModel.client_id == client_id)
        models = self._session.execute(stmt.order_by(JobModel.job_number)).scalars()
        return [m.to_dto() for m in models]

    def job_profitability(self, job_id: UUID) -> JobProfitability:
        model = self.get_model(job_id)
        return job_profitability(
            model.get_line_items(),
            total_value=model.total_value,
            labor_entries=model.labor_entries or (),
            expenses=model.expenses or (),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _touch(self, model: JobModel) -> None:
        model.updated_at = self._clock.now()
        model.updated_by_id = self._actor_id

    def _commit(self) -> None:
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
