"""
SequenceAllocator -- human-readable document numbers under concurrency.

Responsibility:
    Issues ``QU-0005``-style numbers from the tenant's single counter row
    and commits the counter increment together with the new document in
    one transaction. Either both are persisted or neither is.

Concurrency:
    PostgreSQL serialises allocations with ``SELECT ... FOR UPDATE`` on
    the counter row. Every store additionally checks the row's
    ``version`` column on UPDATE, so a writer that read a stale counter
    fails with StaleDataError instead of reusing a number. Conflicts
    roll the whole transaction back and the allocation is re-run from
    the top (re-read, re-format, re-build), up to ``max_attempts``.
    Numbers are therefore unique and increasing in commit order.

Failure modes:
    - ConcurrencyFailureError: retry budget exhausted; nothing was
      persisted and no number was consumed.
    - Any non-conflict error raised by ``build`` or at commit
      (InvalidTransitionError, NotFoundError, an IntegrityError on the
      document itself) rolls back and propagates unchanged.

The ``build`` callback only stages ORM changes on the session. It is
re-invoked on every attempt, so it must not publish events, call out
over the network or touch module-level state.
"""

import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fieldops_kernel.exceptions import ConcurrencyFailureError
from fieldops_kernel.logging_config import get_logger
from fieldops_kernel.models.tenant import SequenceCounterModel

logger = get_logger("services.sequence")

T = TypeVar("T")

class _CounterCreationRace(Exception):
    """Another writer created the tenant's counter row first."""


# Errors that mean "another writer got there first". IntegrityError only
# counts while creating the counter row; anywhere else it is a real error.
_CONFLICT_ERRORS = (StaleDataError, OperationalError, _CounterCreationRace)


class CounterKey(str, Enum):
    """Which counter a document draws its number from."""

    QUOTE = "quote"
    JOB = "job"
    INVOICE = "invoice"
    CREDIT_NOTE = "credit_note"


# counter key -> (next-value column, prefix column)
_COUNTER_FIELDS: dict[CounterKey, tuple[str, str]] = {
    CounterKey.QUOTE: ("next_qu", "prefix_qu"),
    CounterKey.JOB: ("next_job", "prefix_job"),
    CounterKey.INVOICE: ("next_inv_cn", "prefix_inv"),
    CounterKey.CREDIT_NOTE: ("next_inv_cn", "prefix_cn"),
}


@dataclass(frozen=True)
class NumberingDefaults:
    """Values a tenant's counter row starts with on first use."""

    prefix_qu: str = "QU"
    prefix_job: str = "JOB"
    prefix_inv: str = "INV"
    prefix_cn: str = "CN"
    padding: int = 4
    first_qu: int = 1
    first_job: int = 1
    first_inv_cn: int = 1


def format_number(prefix: str, value: int, padding: int) -> str:
    """``format_number("QU", 5, 4) == "QU-0005"``. Longer values are not truncated."""
    return f"{prefix}-{str(value).zfill(padding)}"


class SequenceAllocator:
    """
    Allocates document numbers for one tenant.

    Owns the transaction boundary: ``allocate`` commits the session on
    success and rolls it back on failure.
    """

    def __init__(
        self,
        session: Session,
        tenant_id: UUID,
        numbering: NumberingDefaults | None = None,
        max_attempts: int = 5,
        backoff_seconds: float = 0.01,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session = session
        self._tenant_id = tenant_id
        self._numbering = numbering or NumberingDefaults()
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    def allocate(self, counter_key: CounterKey | str, build: Callable[[str], T]) -> T:
        """
        Take the next number for ``counter_key`` and commit it with ``build(number)``.

        Returns whatever ``build`` returned, after the commit.
        """
        key = CounterKey(counter_key)
        next_field, prefix_field = _COUNTER_FIELDS[key]

        for attempt in range(1, self._max_attempts + 1):
            try:
                counter = self._lock_counter()
                value = getattr(counter, next_field)
                number = format_number(
                    getattr(counter, prefix_field), value, counter.padding,
                )
                setattr(counter, next_field, value + 1)
                result = build(number)
                self._session.commit()
            except _CONFLICT_ERRORS as exc:
                self._session.rollback()
                logger.debug(
                    "sequence_conflict_retry",
                    extra={
                        "counter_key": key.value,
                        "attempt": attempt,
                        "max_attempts": self._max_attempts,
                        "error_type": type(exc).__name__,
                    },
                )
                if attempt < self._max_attempts and self._backoff_seconds > 0:
                    # Jitter keeps colliding writers from retrying in lockstep
                    self._sleep(self._backoff_seconds * attempt * random.uniform(0.5, 1.5))
                continue
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "sequence_allocated",
                extra={
                    "counter_key": key.value,
                    "number": number,
                    "attempt": attempt,
                },
            )
            return result

        logger.warning(
            "sequence_allocation_exhausted",
            extra={"counter_key": key.value, "attempts": self._max_attempts},
        )
        raise ConcurrencyFailureError(key.value, self._max_attempts)

    def peek(self, counter_key: CounterKey | str) -> str:
        """The number the next allocation would receive, without consuming it."""
        key = CounterKey(counter_key)
        next_field, prefix_field = _COUNTER_FIELDS[key]
        counter = self._get_counter()
        if counter is None:
            d = self._numbering
            first = {
                "next_qu": d.first_qu,
                "next_job": d.first_job,
                "next_inv_cn": d.first_inv_cn,
            }[next_field]
            return format_number(getattr(d, prefix_field), first, d.padding)
        return format_number(
            getattr(counter, prefix_field), getattr(counter, next_field), counter.padding,
        )

    def ensure_counters(self, **overrides) -> SequenceCounterModel:
        """
        Create the tenant's counter row if missing, applying ``overrides``.

        Existing rows get ``overrides`` applied in place. Flushes but does
        not commit. Intended for tenant bootstrap, migrations and tests.
        """
        counter = self._get_counter()
        if counter is None:
            counter = self._new_counter()
            self._session.add(counter)
        for name, value in overrides.items():
            if not hasattr(SequenceCounterModel, name) or name in ("id", "tenant_id", "version"):
                raise ValueError(f"Unknown counter field: {name}")
            setattr(counter, name, value)
        self._session.flush()
        return counter

    def _get_counter(self) -> SequenceCounterModel | None:
        return self._session.execute(
            select(SequenceCounterModel)
            .where(SequenceCounterModel.tenant_id == self._tenant_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_counter(self) -> SequenceCounterModel:
        counter = self._session.execute(
            select(SequenceCounterModel)
            .where(SequenceCounterModel.tenant_id == self._tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if counter is None:
            # First use. A racing creator surfaces as IntegrityError on
            # the unique tenant_id and the whole attempt is retried.
            counter = self._new_counter()
            self._session.add(counter)
            try:
                self._session.flush()
            except IntegrityError as exc:
                raise _CounterCreationRace(str(exc)) from exc
            logger.debug(
                "sequence_counter_created",
                extra={"tenant_id": str(self._tenant_id)},
            )
        return counter

    def _new_counter(self) -> SequenceCounterModel:
        d = self._numbering
        return SequenceCounterModel(
            tenant_id=self._tenant_id,
            next_qu=d.first_qu,
            prefix_qu=d.prefix_qu,
            next_job=d.first_job,
            prefix_job=d.prefix_job,
            next_inv_cn=d.first_inv_cn,
            prefix_inv=d.prefix_inv,
            prefix_cn=d.prefix_cn,
            padding=d.padding,
        )
