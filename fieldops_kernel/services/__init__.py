"""Kernel services: sequence allocation, tenants, audit trail."""

from fieldops_kernel.services.audit_service import AuditService, NotificationRecorder
from fieldops_kernel.services.sequence_service import (
    CounterKey,
    NumberingDefaults,
    SequenceAllocator,
    format_number,
)
from fieldops_kernel.services.tenant_service import TenantService

__all__ = [
    "AuditService",
    "CounterKey",
    "NotificationRecorder",
    "NumberingDefaults",
    "SequenceAllocator",
    "TenantService",
    "format_number",
]
