"""Job domain models."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from fieldops_engines.totals import LineItem


class JobStatus(str, Enum):
    """Job lifecycle states."""
    UNSCHEDULED = "Unscheduled"
    DRAFT = "Draft"
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


@dataclass(frozen=True)
class Job:
    """Scheduled work at a client's property."""
    id: UUID
    job_number: str
    client_id: UUID
    title: str
    status: JobStatus
    line_items: tuple[LineItem, ...]
    total_value: Decimal
    created_at: datetime
    quote_id: UUID | None = None
    description: str = ""
    property_id: str | None = None
    property_snapshot: dict[str, Any] | None = None
    start: datetime | None = None
    end: datetime | None = None
    assignees: tuple[str, ...] = ()
    visits: tuple[dict[str, Any], ...] = ()
    attachments: tuple[dict[str, Any], ...] = ()
    labor_entries: tuple[dict[str, Any], ...] = ()
    expenses: tuple[dict[str, Any], ...] = ()
    completed_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == JobStatus.COMPLETED
