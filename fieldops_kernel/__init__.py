"""
Field-service back-office kernel.

Persistence, typed errors, structured logging, time, workflow and event
primitives, and the per-tenant sequence allocator that every document
number comes from.
"""

from fieldops_kernel.exceptions import (
    ConcurrencyFailureError,
    FieldOpsError,
    ImmutabilityViolationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "ConcurrencyFailureError",
    "FieldOpsError",
    "ImmutabilityViolationError",
    "InvalidTransitionError",
    "NotFoundError",
    "ValidationError",
]
