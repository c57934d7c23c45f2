"""Clients and their service properties."""

from fieldops_modules.clients.models import (
    Client,
    Property,
    build_property_snapshot,
    format_service_address,
    resolve_property,
)
from fieldops_modules.clients.service import ClientService

__all__ = [
    "Client",
    "ClientService",
    "Property",
    "build_property_snapshot",
    "format_service_address",
    "resolve_property",
]
