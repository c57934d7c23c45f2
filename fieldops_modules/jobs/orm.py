"""SQLAlchemy model for jobs."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fieldops_kernel.db.base import TenantScopedBase, UUIDString
from fieldops_kernel.db.types import ZERO
from fieldops_modules._documents import LineItemsMixin


class JobModel(LineItemsMixin, TenantScopedBase):
    """
    ORM model for jobs.

    ``quote_id`` is a non-owning back-reference to the quote the job was
    converted from. Assignees, visits, attachments, labour entries and
    expenses are stored as JSON lists on the job row.
    """

    __tablename__ = "jobs"

    __table_args__ = (
        UniqueConstraint("tenant_id", "job_number", name="uq_jobs_tenant_number"),
        Index("idx_jobs_tenant_client", "tenant_id", "client_id"),
        Index("idx_jobs_tenant_status", "tenant_id", "status"),
        Index("idx_jobs_quote", "quote_id"),
    )

    job_number: Mapped[str] = mapped_column(String(50), nullable=False)
    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    quote_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Unscheduled")
    property_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    property_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    start_at: Mapped[datetime | None] = mapped_column(nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    assignees: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    visits: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    labor_entries: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    expenses: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    total_value: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from fieldops_modules.jobs.models import Job, JobStatus

        return Job(
            id=self.id,
            job_number=self.job_number,
            client_id=self.client_id,
            title=self.title,
            status=JobStatus(self.status),
            line_items=self.get_line_items(),
            total_value=self.total_value,
            created_at=self.created_at,
            quote_id=self.quote_id,
            description=self.description or "",
            property_id=self.property_id,
            property_snapshot=self.property_snapshot,
            start=self.start_at,
            end=self.end_at,
            assignees=tuple(self.assignees or ()),
            visits=tuple(self.visits or ()),
            attachments=tuple(self.attachments or ()),
            labor_entries=tuple(self.labor_entries or ()),
            expenses=tuple(self.expenses or ()),
            completed_at=self.completed_at,
        )

    def __repr__(self) -> str:
        return f"<JobModel {self.job_number} status={self.status}>"
