"""SQLAlchemy model for clients."""

from typing import Any

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fieldops_kernel.db.base import TenantScopedBase


class ClientModel(TenantScopedBase):
    """
    ORM model for clients.

    Properties are stored inline as a JSON list; they have no identity
    outside their client.
    """

    __tablename__ = "clients"

    __table_args__ = (
        Index("idx_clients_tenant_name", "tenant_id", "name"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    phone: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    billing_address: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    properties: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from fieldops_modules.clients.models import Client, Property

        return Client(
            id=self.id,
            name=self.name,
            email=self.email,
            phone=self.phone,
            billing_address=self.billing_address,
            properties=tuple(
                Property.from_dict(raw, index) for index, raw in enumerate(self.properties or [])
            ),
        )

    def __repr__(self) -> str:
        return f"<ClientModel {self.name}>"
