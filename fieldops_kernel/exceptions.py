"""
Typed exception hierarchy for the field-service back-office engine.

Every error carries a machine-readable ``code`` class attribute and
structured fields, so callers catch by type and API layers can report
``code`` without parsing messages.

    FieldOpsError (base)
    |
    +-- ValidationError              rejected before any write
    |
    +-- InvalidTransitionError       state unchanged
    |
    +-- NotFoundError
    |   +-- TenantNotFoundError
    |   +-- ClientNotFoundError
    |   +-- QuoteNotFoundError
    |   +-- JobNotFoundError
    |   +-- InvoiceNotFoundError
    |
    +-- ConcurrencyFailureError      retryable, nothing persisted
    |
    +-- ImmutabilityViolationError   append-only record touched

Discount/tax data-entry mistakes (discount larger than the subtotal,
negative or NaN inputs) are NOT errors: the totals engine clamps them.

Code                   | When raised
-----------------------|------------------------------------------------
VALIDATION_FAILED      | Missing client_id, empty title, non-positive amount
INVALID_TRANSITION     | Archiving a Draft quote, crediting a credit note
NOT_FOUND              | Referenced tenant/client/quote/job/invoice missing
CONCURRENCY_FAILURE    | Sequence transaction exhausted its retry budget
IMMUTABILITY_VIOLATION | Update/delete of a payment or audit row
"""

from uuid import UUID


class FieldOpsError(Exception):
    """
    Base exception for all back-office engine errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "FIELDOPS_ERROR"
    retryable: bool = False


class ValidationError(FieldOpsError):
    """Input rejected before any write."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidTransitionError(FieldOpsError):
    """Requested state transition is not allowed from the current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: UUID | str | None,
        current_state: str,
        action: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id) if entity_id is not None else None
        self.current_state = current_state
        self.action = action
        self.reason = reason
        message = (
            f"Cannot {action} {entity_type} {self.entity_id} "
            f"in state '{current_state}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Not-found exceptions


class NotFoundError(FieldOpsError):
    """Referenced record does not exist in the tenant's store."""

    code: str = "NOT_FOUND"
    entity_type: str = "record"

    def __init__(self, entity_id: UUID | str):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type.capitalize()} not found: {entity_id}")


class TenantNotFoundError(NotFoundError):
    """Tenant does not exist."""

    code: str = "TENANT_NOT_FOUND"
    entity_type = "tenant"


class ClientNotFoundError(NotFoundError):
    """Client does not exist."""

    code: str = "CLIENT_NOT_FOUND"
    entity_type = "client"


class QuoteNotFoundError(NotFoundError):
    """Quote does not exist."""

    code: str = "QUOTE_NOT_FOUND"
    entity_type = "quote"


class JobNotFoundError(NotFoundError):
    """Job does not exist."""

    code: str = "JOB_NOT_FOUND"
    entity_type = "job"


class InvoiceNotFoundError(NotFoundError):
    """Invoice does not exist."""

    code: str = "INVOICE_NOT_FOUND"
    entity_type = "invoice"


# Concurrency exceptions


class ConcurrencyFailureError(FieldOpsError):
    """
    Sequence allocation could not commit within the retry budget.

    Nothing was persisted and no number was consumed; the caller may
    retry the whole command.
    """

    code: str = "CONCURRENCY_FAILURE"
    retryable: bool = True

    def __init__(self, counter_key: str, attempts: int):
        self.counter_key = counter_key
        self.attempts = attempts
        super().__init__(
            f"Could not allocate {counter_key} number after {attempts} attempts"
        )


# Immutability exceptions


class ImmutabilityViolationError(FieldOpsError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
