"""
Outbound domain events and the in-process bus that delivers them.

Events are published after the originating transaction commits, so a
subscriber never sees a document that was rolled back. A subscriber
registered with ``best_effort=True`` (notification records, for one)
has its failures logged and dropped; any other subscriber's error
propagates to the caller of ``publish``.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Hashable
from dataclasses import dataclass
from typing import Any, Callable
from uuid import UUID

from fieldops_kernel.logging_config import get_logger

logger = get_logger("domain.events")


@dataclass(frozen=True)
class DomainEvent:
    """Base for every outbound event."""
    tenant_id: UUID

    @property
    def event_type(self) -> str:
        return type(self).__name__

    @property
    def entity_id(self) -> UUID:
        raise NotImplementedError


@dataclass(frozen=True)
class QuoteSent(DomainEvent):
    quote_id: UUID

    @property
    def entity_id(self) -> UUID:
        return self.quote_id


@dataclass(frozen=True)
class QuoteApproved(DomainEvent):
    quote_id: UUID

    @property
    def entity_id(self) -> UUID:
        return self.quote_id


@dataclass(frozen=True)
class JobCompleted(DomainEvent):
    job_id: UUID

    @property
    def entity_id(self) -> UUID:
        return self.job_id


@dataclass(frozen=True)
class InvoiceSent(DomainEvent):
    invoice_id: UUID

    @property
    def entity_id(self) -> UUID:
        return self.invoice_id


@dataclass(frozen=True)
class InvoicePaid(DomainEvent):
    invoice_id: UUID

    @property
    def entity_id(self) -> UUID:
        return self.invoice_id


Handler = Callable[[Any], Any]


@dataclass(frozen=True)
class _Subscription:
    handler: Handler
    best_effort: bool
    key: Hashable | None = None


class EventBus:
    """
    Synchronous in-process publish/subscribe.

    A subscription made with a ``key`` is unique per event type: a later
    subscription with the same key replaces the earlier one. Long-lived
    buses use this so re-created owners (one engine per request, say)
    hold one handler each instead of accumulating them.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[type, list[_Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(
        self,
        event_type: type[DomainEvent],
        handler: Handler,
        best_effort: bool = False,
        key: Hashable | None = None,
    ) -> None:
        with self._lock:
            subs = self._subscriptions[event_type]
            if key is not None:
                kept = [s for s in subs if s.key != key]
                if len(kept) != len(subs):
                    logger.debug(
                        "subscription_replaced",
                        extra={"event_type": event_type.__name__, "key": repr(key)},
                    )
                subs[:] = kept
            subs.append(_Subscription(handler, best_effort, key))

    def unsubscribe(
        self,
        event_type: type[DomainEvent],
        handler: Handler | None = None,
        key: Hashable | None = None,
    ) -> int:
        """
        Remove subscriptions matching ``handler`` and/or ``key``.

        Returns how many were removed. Passing neither removes nothing.
        """
        if handler is None and key is None:
            return 0
        with self._lock:
            subs = self._subscriptions.get(event_type, [])
            kept = [
                s for s in subs
                if not (
                    (handler is None or s.handler == handler)
                    and (key is None or s.key == key)
                )
            ]
            removed = len(subs) - len(kept)
            subs[:] = kept
        return removed

    def subscriber_count(self, event_type: type[DomainEvent]) -> int:
        return len(self._subscriptions.get(event_type, ()))

    def publish(self, event: DomainEvent) -> None:
        """Deliver ``event`` to every subscriber of its type, in order."""
        logger.info(
            "event_published",
            extra={
                "event_type": event.event_type,
                "entity_id": str(event.entity_id),
            },
        )
        with self._lock:
            subs = list(self._subscriptions.get(type(event), ()))
        for sub in subs:
            if not sub.best_effort:
                sub.handler(event)
                continue
            try:
                sub.handler(event)
            except Exception:
                logger.warning(
                    "best_effort_subscriber_failed",
                    extra={
                        "event_type": event.event_type,
                        "entity_id": str(event.entity_id),
                        "handler": getattr(sub.handler, "__qualname__", repr(sub.handler)),
                    },
                    exc_info=True,
                )

    def publish_all(self, events: list[DomainEvent]) -> None:
        for event in events:
            self.publish(event)
