"""
Record of each outbound event handed to the notification collaborator.

Delivery itself (SMS, email, push) happens elsewhere; this table is the
engine's side of that contract, written best-effort.
"""

from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fieldops_kernel.db.base import TenantScopedBase, UUIDString


class NotificationRecordModel(TenantScopedBase):
    """One outbound event awaiting delivery."""

    __tablename__ = "notification_records"

    __table_args__ = (
        Index("idx_notification_records_entity", "tenant_id", "entity_id"),
    )

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
