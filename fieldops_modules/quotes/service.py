"""
Quote Service -- quote creation, editing and lifecycle transitions.

Thin glue layer that:
1. Validates drafts and resolves the client's property snapshot
2. Calls the totals engine (via PricedDocumentMixin) on every pricing change
3. Calls SequenceAllocator so the quote and its number commit together
4. Enforces QUOTE_WORKFLOW on every status change

This service owns the transaction boundary. Audit rows are written after
the commit and never block it. Outbound events are published by the
caller (BackOfficeEngine) once a method has returned.

Usage:
    service = QuoteService(session, clock, tenant_id, actor_id, allocator, clients, audit)
    quote = service.create_quote({"client_id": client.id, "line_items": [...]})
    quote = service.send_quote(quote.id)
"""

from __future__ import annotations

import secrets
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldops_kernel.db.types import ZERO
from fieldops_kernel.domain.clock import Clock
from fieldops_kernel.exceptions import (
    InvalidTransitionError,
    QuoteNotFoundError,
)
from fieldops_kernel.logging_config import get_logger
from fieldops_kernel.models.audit_log import AuditAction
from fieldops_kernel.services.audit_service import AuditService
from fieldops_kernel.services.sequence_service import CounterKey, SequenceAllocator
from fieldops_modules._documents import coerce_uuid, reject_unknown_keys
from fieldops_modules.clients.models import resolve_property
from fieldops_modules.clients.service import ClientService
from fieldops_modules.quotes.models import Quote, QuoteStatus
from fieldops_modules.quotes.orm import QuoteModel
from fieldops_modules.quotes.workflows import EDITABLE_STATES, QUOTE_WORKFLOW

logger = get_logger("modules.quotes.service")

DRAFT_FIELDS = frozenset({
    "client_id",
    "property_id",
    "title",
    "line_items",
    "tax_rate",
    "quote_discount_type",
    "quote_discount_value",
})

# client_id is fixed once the quote exists
EDITABLE_FIELDS = DRAFT_FIELDS - {"client_id"}

DEFAULT_APPROVER_NAME = "Approved"
DEFAULT_DECLINER_NAME = "Client"


class QuoteService:
    """
    Quote operations for one tenant and actor.

    Transaction boundary: every public mutator commits on success and
    rolls back on failure. ``stage_conversion`` is the exception; it only
    stages changes for a caller that commits them with a new job.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        tenant_id: UUID,
        actor_id: UUID,
        allocator: SequenceAllocator,
        clients: ClientService,
        audit: AuditService,
        default_tax_rate: Any = ZERO,
    ):
        self._session = session
        self._clock = clock
        self._tenant_id = tenant_id
        self._actor_id = actor_id
        self._allocator = allocator
        self._clients = clients
        self._audit = audit
        self._default_tax_rate = default_tax_rate

    # =========================================================================
    # Creation
    # =========================================================================

    def create_quote(self, draft: Mapping[str, Any]) -> Quote:
        """
        Create a Draft quote and allocate its quote number.

        Raises:
            ValidationError: missing ``client_id``, unknown field, or a
                property that does not belong to the client.
            ClientNotFoundError: the client does not exist.
        """
        reject_unknown_keys(draft, DRAFT_FIELDS)
        client_id = coerce_uuid("client_id", draft.get("client_id"))
        client = self._clients.get_client(client_id)
        property_id, snapshot = resolve_property(client, draft.get("property_id"))

        def build(number: str) -> QuoteModel:
            model = self._new_model(
                number=number,
                client_id=client.id,
                title=draft.get("title") or "",
                property_id=property_id,
                property_snapshot=snapshot,
            )
            model.set_pricing(
                draft.get("line_items"),
                draft.get("tax_rate", self._default_tax_rate),
                draft.get("quote_discount_type"),
                draft.get("quote_discount_value"),
            )
            self._session.add(model)
            return model

        model = self._allocator.allocate(CounterKey.QUOTE, build)

        logger.info("quote_created", extra={
            "quote_id": str(model.id),
            "quote_number": model.quote_number,
            "client_id": str(client.id),
            "total": str(model.total),
        })
        self._audit.record(
            AuditAction.QUOTE_CREATED, "quote", model.id,
            {"quote_number": model.quote_number},
        )
        return model.to_dto()

    def create_similar_quote(self, quote_id: UUID) -> Quote:
        """
        Clone a quote's content into a fresh Draft with a new number.

        Identity, approval and conversion fields are not copied.
        """
        source = self.get_model(quote_id)
        line_items = source.get_line_items()
        tax_rate = source.tax_rate
        discount_type = source.quote_discount_type
        discount_value = source.quote_discount_value

        def build(number: str) -> QuoteModel:
            model = self._new_model(
                number=number,
                client_id=source.client_id,
                title=source.title,
                property_id=source.property_id,
                property_snapshot=dict(source.property_snapshot) if source.property_snapshot else None,
            )
            model.set_pricing(line_items, tax_rate, discount_type, discount_value)
            self._session.add(model)
            return model

        model = self._allocator.allocate(CounterKey.QUOTE, build)

        logger.info("quote_cloned", extra={
            "quote_id": str(model.id),
            "source_quote_id": str(quote_id),
            "quote_number": model.quote_number,
        })
        self._audit.record(
            AuditAction.QUOTE_CREATED, "quote", model.id,
            {"quote_number": model.quote_number, "cloned_from": str(quote_id)},
        )
        return model.to_dto()

    # =========================================================================
    # Editing
    # =========================================================================

    def update_quote(self, quote_id: UUID, changes: Mapping[str, Any]) -> Quote:
        """
        Edit content and pricing of a quote that has not been decided yet.

        Totals are recomputed from the merged inputs before saving.
        """
        reject_unknown_keys(changes, EDITABLE_FIELDS)
        model = self.get_model(quote_id)
        if model.status not in EDITABLE_STATES:
            raise InvalidTransitionError(
                "quote", model.id, model.status, "update",
                "only undecided quotes can be edited",
            )

        if "property_id" in changes:
            client = self._clients.get_client(model.client_id)
            model.property_id, model.property_snapshot = resolve_property(
                client, changes["property_id"],
            )
        if "title" in changes:
            model.title = changes["title"] or ""

        model.set_pricing(
            changes.get("line_items", model.get_line_items()),
            changes.get("tax_rate", model.tax_rate),
            changes.get("quote_discount_type", model.quote_discount_type),
            changes.get("quote_discount_value", model.quote_discount_value),
        )
        self._touch(model)
        self._commit()

        logger.info("quote_updated", extra={
            "quote_id": str(model.id),
            "fields": sorted(changes),
            "total": str(model.total),
        })
        self._audit.record(
            AuditAction.QUOTE_UPDATED, "quote", model.id, {"fields": sorted(changes)},
        )
        return model.to_dto()

    # =========================================================================
    # Transitions
    # =========================================================================

    def send_quote(self, quote_id: UUID) -> Quote:
        model = self.get_model(quote_id)
        self._apply(model, "send")
        if model.sent_at is None:
            model.sent_at = self._clock.now()
        return self._save_transition(model, AuditAction.QUOTE_SENT)

    def approve_quote(self, quote_id: UUID, signer_name: str | None = None) -> Quote:
        model = self.get_model(quote_id)
        self._apply(model, "approve")
        model.approved_at = self._clock.now()
        model.approved_by_name = (signer_name or "").strip() or DEFAULT_APPROVER_NAME
        return self._save_transition(
            model, AuditAction.QUOTE_APPROVED, {"signer": model.approved_by_name},
        )

    def decline_quote(self, quote_id: UUID, signer_name: str | None = None) -> Quote:
        model = self.get_model(quote_id)
        self._apply(model, "decline")
        model.declined_at = self._clock.now()
        model.declined_by_name = (signer_name or "").strip() or DEFAULT_DECLINER_NAME
        return self._save_transition(
            model, AuditAction.QUOTE_DECLINED, {"signer": model.declined_by_name},
        )

    def archive_quote(self, quote_id: UUID) -> Quote:
        model = self.get_model(quote_id)
        self._apply(model, "archive")
        model.archived_at = self._clock.now()
        return self._save_transition(model, AuditAction.QUOTE_ARCHIVED)

    def revert_quote_to_draft(self, quote_id: UUID) -> Quote:
        """Undo a send. Any approval or decline is cleared; ``sent_at`` is kept."""
        model = self.get_model(quote_id)
        self._apply(model, "revert")
        model.approved_at = None
        model.approved_by_name = None
        model.declined_at = None
        model.declined_by_name = None
        return self._save_transition(model, AuditAction.QUOTE_REVERTED)

    def stage_conversion(self, quote_id: UUID) -> QuoteModel:
        """
        Mark an Approved quote Converted without committing.

        Called from inside a job-number allocation so the conversion and
        the new job commit (or roll back) together.
        """
        model = self.get_model(quote_id)
        self._apply(model, "convert")
        model.converted_at = self._clock.now()
        self._touch(model)
        return model

    # =========================================================================
    # Public approval link
    # =========================================================================

    def issue_approval_token(self, quote_id: UUID) -> str:
        """Opaque token for the public approval link. Reused once issued."""
        model = self.get_model(quote_id)
        if model.public_approval_token:
            return model.public_approval_token
        model.public_approval_token = secrets.token_urlsafe(24)
        model.token_created_at = self._clock.now()
        self._touch(model)
        self._commit()
        logger.info("quote_approval_token_issued", extra={"quote_id": str(model.id)})
        return model.public_approval_token

    def get_quote_by_token(self, token: str) -> Quote:
        return self._get_model_by_token(token).to_dto()

    def quote_id_for_token(self, token: str) -> UUID:
        return self._get_model_by_token(token).id

    def _get_model_by_token(self, token: str) -> QuoteModel:
        if not token:
            raise QuoteNotFoundError("approval token")
        model = self._session.execute(
            select(QuoteModel)
            .where(QuoteModel.tenant_id == self._tenant_id)
            .where(QuoteModel.public_approval_token == token)
        ).scalar_one_or_none()
        if model is None:
            raise QuoteNotFoundError("approval token")
        return model

    # =========================================================================
    # Queries
    # =========================================================================

    def get_model(self, quote_id: UUID) -> QuoteModel:
        model = self._session.execute(
            select(QuoteModel)
            .where(QuoteModel.tenant_id == self._tenant_id)
            .where(QuoteModel.id == coerce_uuid("quote_id", quote_id))
        ).scalar_one_or_none()
        if model is None:
            raise QuoteNotFoundError(quote_id)
        return model

    def get_quote(self, quote_id: UUID) -> Quote:
        return self.get_model(quote_id).to_dto()

    def list_quotes(
        self,
        status: QuoteStatus | str | None = None,
        client_id: UUID | None = None,
    ) -> list[Quote]:
        stmt = select(QuoteModel).where(QuoteModel.tenant_id == self._tenant_id)
        if status is not None:
            stmt = stmt.where(QuoteModel.status == QuoteStatus(status).value)
        if client_id is not None:
            stmt = stmt.where(QuoteModel.client_id == client_id)
        models = self._session.execute(stmt.order_by(QuoteModel.quote_number)).scalars()
        return [m.to_dto() for m in models]

    # =========================================================================
    # Internals
    # =========================================================================

    def _new_model(
        self,
        number: str,
        client_id: UUID,
        title: str,
        property_id: str | None,
        property_snapshot: dict[str, Any] | None,
    ) -> QuoteModel:
        now = self._clock.now()
        return QuoteModel(
            tenant_id=self._tenant_id,
            quote_number=number,
            client_id=client_id,
            status=QUOTE_WORKFLOW.initial_state,
            title=title,
            property_id=property_id,
            property_snapshot=property_snapshot,
            created_at=now,
            updated_at=now,
            created_by_id=self._actor_id,
        )

    def _apply(self, model: QuoteModel, action: str) -> None:
        current = QuoteStatus(model.status).value
        transition = QUOTE_WORKFLOW.find_transition(current, action)
        if transition is None:
            reason = None
            guards = [t.guard for t in QUOTE_WORKFLOW.transitions if t.action == action and t.guard]
            if guards:
                reason = guards[0].description
            logger.warning("quote_transition_rejected", extra={
                "quote_id": str(model.id),
                "current_state": current,
                "action": action,
            })
            raise InvalidTransitionError("quote", model.id, current, action, reason)
        model.status = transition.to_state

    def _touch(self, model: QuoteModel) -> None:
        model.updated_at = self._clock.now()
        model.updated_by_id = self._actor_id

    def _commit(self) -> None:
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def _save_transition(
        self,
        model: QuoteModel,
        action: AuditAction,
        details: dict[str, Any] | None = None,
    ) -> Quote:
        self._touch(model)
        self._commit()
        logger.info("quote_status_changed", extra={
            "quote_id": str(model.id),
            "quote_number": model.quote_number,
            "status": model.status,
        })
        self._audit.record(action, "quote", model.id, {"status": model.status, **(details or {})})
        return model.to_dto()
