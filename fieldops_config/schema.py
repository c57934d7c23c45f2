"""
Typed configuration schema.

Frozen dataclasses only; parsing and validation live in loader.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from fieldops_kernel.services.sequence_service import NumberingDefaults


@dataclass(frozen=True)
class SequenceConfig:
    """Retry budget for sequence allocation."""
    max_attempts: int = 5
    backoff_seconds: float = 0.01


@dataclass(frozen=True)
class BillingConfig:
    """Defaults applied when a tenant has none of its own."""
    default_payment_term: str = "Due Today"
    default_tax_rate: Decimal = Decimal("0")


@dataclass(frozen=True)
class EngineConfig:
    """The complete runtime configuration of the back-office engine."""
    config_id: str = "default"
    version: int = 1
    database_url: str = "sqlite:///fieldops.db"
    log_level: str = "INFO"
    sequence: SequenceConfig = field(default_factory=SequenceConfig)
    numbering: NumberingDefaults = field(default_factory=NumberingDefaults)
    billing: BillingConfig = field(default_factory=BillingConfig)
    checksum: str = ""
