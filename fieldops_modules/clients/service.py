"""
Client Service -- creating and looking up clients.

Usage:
    service = ClientService(session, clock, tenant_id, actor_id)
    client = service.create_client("Ada Lovelace", properties=[{"street1": "1 Main St"}])
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldops_kernel.domain.clock import Clock
from fieldops_kernel.exceptions import ClientNotFoundError, ValidationError
from fieldops_kernel.logging_config import get_logger
from fieldops_modules.clients.models import Client, Property
from fieldops_modules.clients.orm import ClientModel

logger = get_logger("modules.clients.service")


class ClientService:
    """Client CRUD for one tenant. Owns the transaction boundary."""

    def __init__(self, session: Session, clock: Clock, tenant_id: UUID, actor_id: UUID):
        self._session = session
        self._clock = clock
        self._tenant_id = tenant_id
        self._actor_id = actor_id

    def create_client(
        self,
        name: str,
        email: str = "",
        phone: str = "",
        billing_address: str = "",
        properties: Sequence[Mapping[str, Any]] = (),
    ) -> Client:
        if not name or not name.strip():
            raise ValidationError("name", "Client name is required")

        props = []
        for index, raw in enumerate(properties):
            uid = raw.get("uid") or raw.get("id") or str(uuid4())
            props.append(Property.from_dict({**raw, "uid": uid}, index).to_dict())

        now = self._clock.now()
        model = ClientModel(
            tenant_id=self._tenant_id,
            name=name.strip(),
            email=email.strip(),
            phone=phone.strip(),
            billing_address=billing_address.strip(),
            properties=props,
            created_at=now,
            updated_at=now,
            created_by_id=self._actor_id,
        )
        try:
            self._session.add(model)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("client_created", extra={"client_id": str(model.id)})
        return model.to_dto()

    def get_model(self, client_id: UUID) -> ClientModel:
        model = self._session.execute(
            select(ClientModel)
            .where(ClientModel.tenant_id == self._tenant_id)
            .where(ClientModel.id == client_id)
        ).scalar_one_or_none()
        if model is None:
            raise ClientNotFoundError(client_id)
        return model

    def get_client(self, client_id: UUID) -> Client:
        return self.get_model(client_id).to_dto()

    def list_clients(self) -> list[Client]:
        models = self._session.execute(
            select(ClientModel)
            .where(ClientModel.tenant_id == self._tenant_id)
            .order_by(ClientModel.name)
        ).scalars()
        return [m.to_dto() for m in models]
