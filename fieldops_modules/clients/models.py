"""
Client domain models.

A client owns a list of properties (service locations). Quotes and jobs
embed a *snapshot* of the property as it was when the document was
created, so later edits to the client never rewrite history.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping
from uuid import UUID

from fieldops_kernel.exceptions import ValidationError


@dataclass(frozen=True)
class Property:
    """A service location belonging to a client."""
    uid: str
    label: str = ""
    street1: str = ""
    street2: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = ""
    is_primary: bool = False
    access_code: str = ""
    locked_gate: bool = False

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], index: int = 0) -> "Property":
        return cls(
            uid=str(raw.get("uid") or raw.get("id") or index),
            label=str(raw.get("label") or ""),
            street1=str(raw.get("street1") or ""),
            street2=str(raw.get("street2") or ""),
            city=str(raw.get("city") or ""),
            state=str(raw.get("state") or ""),
            zip=str(raw.get("zip") or ""),
            country=str(raw.get("country") or ""),
            is_primary=bool(raw.get("is_primary") or raw.get("isPrimary")),
            access_code=str(raw.get("access_code") or raw.get("accessCode") or ""),
            locked_gate=bool(raw.get("locked_gate") or raw.get("lockedGate")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "label": self.label,
            "street1": self.street1,
            "street2": self.street2,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "country": self.country,
            "is_primary": self.is_primary,
            "access_code": self.access_code,
            "locked_gate": self.locked_gate,
        }


@dataclass(frozen=True)
class Client:
    """A customer of the business."""
    id: UUID
    name: str
    email: str = ""
    phone: str = ""
    billing_address: str = ""
    properties: tuple[Property, ...] = field(default_factory=tuple)

    def find_property(self, property_id: str | None = None) -> Property | None:
        """The named property, else the primary one, else the first."""
        if property_id:
            return next((p for p in self.properties if p.uid == property_id), None)
        return next((p for p in self.properties if p.is_primary), None) or (
            self.properties[0] if self.properties else None
        )


def build_property_snapshot(prop: Property | None) -> dict[str, Any] | None:
    """Frozen copy of a property for embedding in a quote or job."""
    if prop is None:
        return None
    snapshot = prop.to_dict()
    snapshot.pop("is_primary")
    return snapshot


def format_service_address(snapshot: Mapping[str, Any] | None) -> str:
    """
    One-line address from a property snapshot.

    ``"Home, 1 Main St, Springfield IL 62704, US"``; empty parts are skipped.
    """
    if not snapshot:
        return ""
    locality = " ".join(
        part for part in (snapshot.get("city"), snapshot.get("state"), snapshot.get("zip")) if part
    )
    parts = (
        snapshot.get("label"),
        snapshot.get("street1"),
        snapshot.get("street2"),
        locality,
        snapshot.get("country"),
    )
    return ", ".join(part for part in parts if part)


def resolve_property(
    client: Client, property_id: Any = None,
) -> tuple[str | None, dict[str, Any] | None]:
    """
    ``(property_id, snapshot)`` for a document about to reference ``client``.

    Without ``property_id`` the primary (or first) property is used, and a
    client with no properties gives ``(None, None)``.
    """
    requested = str(property_id) if property_id else None
    prop = client.find_property(requested)
    if requested and prop is None:
        raise ValidationError("property_id", f"{requested} is not a property of this client")
    return (prop.uid if prop else None), build_property_snapshot(prop)
