"""
Tenant and per-tenant sequence counters.

A tenant is one business account; every quote, job, invoice and client
row carries its ``tenant_id``. ``SequenceCounterModel`` is the one piece
of shared mutable state in the system: a single row per tenant holding
the next quote, job and invoice/credit-note numbers.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fieldops_kernel.db.base import Base, TrackedBase, UUIDString


class TenantModel(TrackedBase):
    """An isolated business-account data scope."""

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    default_tax_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    default_payment_term: Mapped[str] = mapped_column(
        String(50), nullable=False, default="Due Today",
    )


class SequenceCounterModel(Base):
    """
    Per-tenant document counters.

    Invoices and credit notes draw from the same ``next_inv_cn`` counter
    and differ only in prefix. ``version`` is bumped on every update; an
    UPDATE that finds a different version raises StaleDataError, which
    is how a concurrent allocation is detected on stores without row locks.
    """

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_sequence_counters_tenant"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    next_qu: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    prefix_qu: Mapped[str] = mapped_column(String(20), nullable=False, default="QU")

    next_job: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    prefix_job: Mapped[str] = mapped_column(String(20), nullable=False, default="JOB")

    next_inv_cn: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    prefix_inv: Mapped[str] = mapped_column(String(20), nullable=False, default="INV")
    prefix_cn: Mapped[str] = mapped_column(String(20), nullable=False, default="CN")

    padding: Mapped[int] = mapped_column(Integer, nullable=False, default=4)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
