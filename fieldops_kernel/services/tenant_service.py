"""Tenant bootstrap and lookup."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from fieldops_kernel.domain.clock import Clock
from fieldops_kernel.exceptions import TenantNotFoundError, ValidationError
from fieldops_kernel.logging_config import get_logger
from fieldops_kernel.models.tenant import TenantModel
from fieldops_kernel.services.sequence_service import (
    NumberingDefaults,
    SequenceAllocator,
)

logger = get_logger("services.tenant")


class TenantService:
    """Creates tenants together with their counter row."""

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    def create_tenant(
        self,
        name: str,
        actor_id: UUID,
        default_tax_rate: Decimal = Decimal("0"),
        default_payment_term: str = "Due Today",
        numbering: NumberingDefaults | None = None,
    ) -> TenantModel:
        if not name or not name.strip():
            raise ValidationError("name", "Tenant name is required")
        if default_tax_rate < 0:
            raise ValidationError("default_tax_rate", "Tax rate cannot be negative")

        now = self._clock.now()
        tenant = TenantModel(
            name=name.strip(),
            default_tax_rate=default_tax_rate,
            default_payment_term=default_payment_term,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        try:
            self._session.add(tenant)
            self._session.flush()
            SequenceAllocator(self._session, tenant.id, numbering).ensure_counters()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "tenant_created",
            extra={"tenant_id": str(tenant.id), "tenant_name": tenant.name},
        )
        return tenant

    def get_tenant(self, tenant_id: UUID) -> TenantModel:
        tenant = self._session.get(TenantModel, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        return tenant
