"""Kernel ORM models: tenants, counters, audit log, notification records."""

from fieldops_kernel.models.audit_log import AuditAction, AuditLogModel
from fieldops_kernel.models.notification import NotificationRecordModel
from fieldops_kernel.models.tenant import SequenceCounterModel, TenantModel

__all__ = [
    "AuditAction",
    "AuditLogModel",
    "NotificationRecordModel",
    "SequenceCounterModel",
    "TenantModel",
]
