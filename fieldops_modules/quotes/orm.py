"""SQLAlchemy model for quotes."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fieldops_kernel.db.base import TenantScopedBase, UUIDString
from fieldops_modules._documents import PricedDocumentMixin


class QuoteModel(PricedDocumentMixin, TenantScopedBase):
    """
    ORM model for quotes.

    ``quote_number`` is assigned once by the sequence allocator and
    unique per tenant. ``client_id`` is a plain reference, not a
    foreign key: quotes, jobs and invoices never cascade into each other.
    """

    __tablename__ = "quotes"

    __table_args__ = (
        UniqueConstraint("tenant_id", "quote_number", name="uq_quotes_tenant_number"),
        UniqueConstraint("public_approval_token", name="uq_quotes_approval_token"),
        Index("idx_quotes_tenant_client", "tenant_id", "client_id"),
        Index("idx_quotes_tenant_status", "tenant_id", "status"),
    )

    quote_number: Mapped[str] = mapped_column(String(50), nullable=False)
    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Draft")
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    property_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    property_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(nullable=True)
    declined_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(nullable=True)

    public_approval_token: Mapped[str | None] = mapped_column(String(128), nullable=True)
    token_created_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from fieldops_modules.quotes.models import Quote, QuoteStatus

        return Quote(
            id=self.id,
            quote_number=self.quote_number,
            client_id=self.client_id,
            status=QuoteStatus(self.status),
            line_items=self.get_line_items(),
            tax_rate=self.tax_rate,
            quote_discount_type=self.quote_discount_type,
            quote_discount_value=self.quote_discount_value,
            totals=self.totals(),
            created_at=self.created_at,
            title=self.title,
            property_id=self.property_id,
            property_snapshot=self.property_snapshot,
            sent_at=self.sent_at,
            approved_at=self.approved_at,
            approved_by_name=self.approved_by_name,
            declined_at=self.declined_at,
            declined_by_name=self.declined_by_name,
            converted_at=self.converted_at,
            archived_at=self.archived_at,
            public_approval_token=self.public_approval_token,
        )

    def __repr__(self) -> str:
        return f"<QuoteModel {self.quote_number} status={self.status} total={self.total}>"
