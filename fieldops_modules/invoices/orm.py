"""SQLAlchemy models for invoices and their payments."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldops_kernel.db.base import TenantScopedBase, UUIDString
from fieldops_modules._documents import PricedDocumentMixin


class InvoiceModel(PricedDocumentMixin, TenantScopedBase):
    """
    ORM model for invoices and credit notes.

    ``job_id``, ``quote_id`` and ``credit_for_invoice_id`` are plain
    references resolved by lookup; no foreign keys, no cascades.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
        Index("idx_invoices_tenant_client", "tenant_id", "client_id"),
        Index("idx_invoices_tenant_status", "tenant_id", "status"),
        Index("idx_invoices_job", "tenant_id", "job_id"),
        Index("idx_invoices_credit_for", "tenant_id", "credit_for_invoice_id"),
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    job_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    quote_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    subject: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Draft")

    issue_date: Mapped[datetime]
    due_term: Mapped[str] = mapped_column(String(50), nullable=False)
    due_date: Mapped[datetime]

    billing_address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    service_address: Mapped[str] = mapped_column(Text, nullable=False, default="")

    is_credit_note: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    credit_for_invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    credit_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    payment_plan: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    payments: Mapped[list["InvoicePaymentModel"]] = relationship(
        back_populates="invoice",
        lazy="selectin",
        order_by="InvoicePaymentModel.created_at",
        cascade="save-update, merge",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from fieldops_engines.payment_plan import parse_installment
        from fieldops_modules.invoices.models import Invoice, InvoiceStatus

        return Invoice(
            id=self.id,
            invoice_number=self.invoice_number,
            client_id=self.client_id,
            status=InvoiceStatus(self.status),
            line_items=self.get_line_items(),
            tax_rate=self.tax_rate,
            quote_discount_type=self.quote_discount_type,
            quote_discount_value=self.quote_discount_value,
            totals=self.totals(),
            issue_date=self.issue_date,
            due_term=self.due_term,
            due_date=self.due_date,
            created_at=self.created_at,
            subject=self.subject,
            job_id=self.job_id,
            quote_id=self.quote_id,
            billing_address=self.billing_address or "",
            service_address=self.service_address or "",
            is_credit_note=self.is_credit_note,
            credit_for_invoice_id=self.credit_for_invoice_id,
            credit_reason=self.credit_reason,
            sent_at=self.sent_at,
            paid_at=self.paid_at,
            payments=tuple(p.to_dto() for p in self.payments),
            payment_plan=tuple(parse_installment(raw) for raw in (self.payment_plan or ())),
        )

    def __repr__(self) -> str:
        kind = "credit note" if self.is_credit_note else "invoice"
        return f"<InvoiceModel {kind} {self.invoice_number} status={self.status} total={self.total}>"


class InvoicePaymentModel(TenantScopedBase):
    """
    A payment against an invoice.

    Append-only: update and delete are blocked by the listeners in
    ``fieldops_kernel.db.immutability``.
    """

    __tablename__ = "invoice_payments"

    __table_args__ = (
        Index("idx_invoice_payments_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(50), nullable=False)
    installment_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    invoice: Mapped[InvoiceModel] = relationship(back_populates="payments")

    def to_dto(self):
        from fieldops_modules.invoices.models import Payment

        return Payment(
            id=self.id,
            amount=self.amount,
            method=self.method,
            created_at=self.created_at,
            installment_index=self.installment_index,
        )

    def __repr__(self) -> str:
        return f"<InvoicePaymentModel {self.amount} via {self.method}>"
