"""
Append-only audit trail of back-office commands.

One row per state-changing command (quote sent, payment recorded, ...).
Rows are written best-effort by AuditService and are immutable once
flushed (see db/immutability.py).
"""

from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fieldops_kernel.db.base import TenantScopedBase, UUIDString


class AuditAction(str, Enum):
    """Auditable back-office actions."""

    CLIENT_CREATED = "client_created"

    QUOTE_CREATED = "quote_created"
    QUOTE_UPDATED = "quote_updated"
    QUOTE_SENT = "quote_sent"
    QUOTE_APPROVED = "quote_approved"
    QUOTE_DECLINED = "quote_declined"
    QUOTE_ARCHIVED = "quote_archived"
    QUOTE_REVERTED = "quote_reverted"
    QUOTE_CONVERTED = "quote_converted"

    JOB_CREATED = "job_created"
    JOB_UPDATED = "job_updated"
    JOB_STATUS_CHANGED = "job_status_changed"

    INVOICE_CREATED = "invoice_created"
    INVOICE_SENT = "invoice_sent"
    INVOICE_STATUS_CHANGED = "invoice_status_changed"
    PAYMENT_RECORDED = "payment_recorded"
    PAYMENT_PLAN_CREATED = "payment_plan_created"
    CREDIT_NOTE_ISSUED = "credit_note_issued"


class AuditLogModel(TenantScopedBase):
    """One audit trail entry. Never updated, never deleted."""

    __tablename__ = "audit_logs"

    __table_args__ = (
        Index("idx_audit_logs_target", "tenant_id", "target_type", "target_id"),
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    target_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
