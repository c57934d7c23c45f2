"""
ORM-level append-only enforcement.

Two kinds of rows are written once and never touched again:

Entity              | Why
--------------------|------------------------------------------------
InvoicePaymentModel | Payments are a ledger; balances are derived from them
AuditLogModel       | The audit trail must reflect what actually happened

SQLAlchemy fires ``before_update``/``before_delete`` before SQL is sent,
so a violation aborts the flush and the database is never modified.
Corrections are made by appending (a credit note, a new audit row).

Usage:
    register_immutability_listeners()    # once, after models are imported
    unregister_immutability_listeners()  # tests only
"""

from sqlalchemy import event

from fieldops_kernel.exceptions import ImmutabilityViolationError
from fieldops_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_payment_update(mapper, connection, target):
    _block("InvoicePayment", target, "UPDATE", "Payments are append-only")


def _check_payment_delete(mapper, connection, target):
    _block("InvoicePayment", target, "DELETE", "Payments cannot be removed")


def _check_audit_log_update(mapper, connection, target):
    _block("AuditLog", target, "UPDATE", "Audit log rows are immutable")


def _check_audit_log_delete(mapper, connection, target):
    _block("AuditLog", target, "DELETE", "Audit log rows cannot be deleted")


def _listeners():
    from fieldops_kernel.models.audit_log import AuditLogModel
    from fieldops_modules.invoices.orm import InvoicePaymentModel

    return [
        (InvoicePaymentModel, "before_update", _check_payment_update),
        (InvoicePaymentModel, "before_delete", _check_payment_delete),
        (AuditLogModel, "before_update", _check_audit_log_update),
        (AuditLogModel, "before_delete", _check_audit_log_delete),
    ]


def register_immutability_listeners() -> None:
    """Register the append-only listeners. Safe to call more than once."""
    for target, identifier, fn in _listeners():
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)


def unregister_immutability_listeners() -> None:
    """Remove the append-only listeners. FOR TESTING ONLY."""
    for target, identifier, fn in _listeners():
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)
