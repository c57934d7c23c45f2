"""
Best-effort side records: the audit trail and notification records.

Both are written in their own short transaction after the command they
describe has committed. A failure here is logged and dropped; it must
never undo or block the financial state change that already happened.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldops_kernel.domain.clock import Clock
from fieldops_kernel.domain.events import (
    DomainEvent,
    InvoicePaid,
    InvoiceSent,
    JobCompleted,
    QuoteApproved,
    QuoteSent,
)
from fieldops_kernel.logging_config import get_logger
from fieldops_kernel.models.audit_log import AuditAction, AuditLogModel
from fieldops_kernel.models.notification import NotificationRecordModel

logger = get_logger("services.audit")


def _jsonable(details: dict[str, Any]) -> dict[str, Any]:
    return {
        k: (v if isinstance(v, (str, int, float, bool, type(None), list, dict)) else str(v))
        for k, v in details.items()
    }


class AuditService:
    """Appends audit log rows for one tenant and actor."""

    def __init__(self, session: Session, clock: Clock, tenant_id: UUID, actor_id: UUID):
        self._session = session
        self._clock = clock
        self._tenant_id = tenant_id
        self._actor_id = actor_id

    def record(
        self,
        action: AuditAction,
        target_type: str,
        target_id: UUID,
        details: dict[str, Any] | None = None,
    ) -> AuditLogModel | None:
        """Write one audit row. Returns None if the write failed."""
        now = self._clock.now()
        row = AuditLogModel(
            tenant_id=self._tenant_id,
            action=AuditAction(action).value,
            target_type=target_type,
            target_id=target_id,
            details=_jsonable(details or {}),
            created_at=now,
            updated_at=now,
            created_by_id=self._actor_id,
        )
        try:
            self._session.add(row)
            self._session.commit()
        except Exception:
            self._session.rollback()
            logger.warning(
                "audit_write_failed",
                extra={
                    "action": AuditAction(action).value,
                    "target_type": target_type,
                    "target_id": str(target_id),
                },
                exc_info=True,
            )
            return None
        return row

    def history(self, target_id: UUID) -> list[AuditLogModel]:
        """Audit rows for one document, oldest first."""
        return list(
            self._session.execute(
                select(AuditLogModel)
                .where(AuditLogModel.tenant_id == self._tenant_id)
                .where(AuditLogModel.target_id == target_id)
                .order_by(AuditLogModel.created_at)
            ).scalars()
        )


_MESSAGES: dict[type, str] = {
    QuoteSent: "Quote sent to client",
    QuoteApproved: "Quote approved by client",
    JobCompleted: "Job completed",
    InvoiceSent: "Invoice sent to client",
    InvoicePaid: "Invoice paid in full",
}


class NotificationRecorder:
    """
    Event subscriber that records each outbound event for delivery.

    Registered on the EventBus with ``best_effort=True``.
    """

    def __init__(self, session: Session, clock: Clock, actor_id: UUID):
        self._session = session
        self._clock = clock
        self._actor_id = actor_id

    def __call__(self, event: DomainEvent) -> NotificationRecordModel:
        now = self._clock.now()
        record = NotificationRecordModel(
            tenant_id=event.tenant_id,
            event_type=event.event_type,
            entity_id=event.entity_id,
            message=_MESSAGES.get(type(event), event.event_type),
            created_at=now,
            updated_at=now,
            created_by_id=self._actor_id,
        )
        try:
            self._session.add(record)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.debug(
            "notification_recorded",
            extra={"event_type": event.event_type, "entity_id": str(event.entity_id)},
        )
        return record
