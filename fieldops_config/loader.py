"""
YAML loader for EngineConfig.

Parse errors raise ValueError with the offending key in the message;
unknown keys are rejected so a typo never silently falls back to a
default.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping

import yaml

from fieldops_config.schema import BillingConfig, EngineConfig, SequenceConfig
from fieldops_kernel.services.sequence_service import NumberingDefaults

_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})

_TOP_LEVEL_KEYS = frozenset({
    "config_id", "version", "database_url", "log_level",
    "sequence", "numbering", "billing",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file yields an empty dict."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def merge_config(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``overrides`` into ``base`` (mappings merge, everything else replaces)."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def _section(data: Mapping[str, Any], name: str, allowed: set[str]) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"{name}: must be a mapping")
    unknown = set(section) - allowed
    if unknown:
        raise ValueError(f"{name}: unknown keys {sorted(unknown)}")
    return dict(section)


def _positive_int(section: str, key: str, value: Any, minimum: int = 1) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"{section}.{key}: must be an integer >= {minimum}, got {value!r}")
    return value


def parse_sequence(data: Mapping[str, Any]) -> SequenceConfig:
    raw = _section(data, "sequence", {"max_attempts", "backoff_seconds"})
    defaults = SequenceConfig()
    max_attempts = _positive_int("sequence", "max_attempts", raw.get("max_attempts", defaults.max_attempts))
    backoff = raw.get("backoff_seconds", defaults.backoff_seconds)
    if isinstance(backoff, bool) or not isinstance(backoff, (int, float)) or backoff < 0:
        raise ValueError(f"sequence.backoff_seconds: must be a number >= 0, got {backoff!r}")
    return SequenceConfig(max_attempts=max_attempts, backoff_seconds=float(backoff))


def parse_numbering(data: Mapping[str, Any]) -> NumberingDefaults:
    defaults = NumberingDefaults()
    allowed = set(defaults.__dataclass_fields__)
    raw = _section(data, "numbering", allowed)
    values: dict[str, Any] = {}
    for key in allowed:
        value = raw.get(key, getattr(defaults, key))
        if key.startswith("prefix_"):
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"numbering.{key}: must be a non-empty string")
            values[key] = value.strip()
        elif key == "padding":
            values[key] = _positive_int("numbering", key, value, minimum=0)
        else:
            values[key] = _positive_int("numbering", key, value)
    return NumberingDefaults(**values)


def parse_billing(data: Mapping[str, Any]) -> BillingConfig:
    raw = _section(data, "billing", {"default_payment_term", "default_tax_rate"})
    defaults = BillingConfig()
    term = raw.get("default_payment_term", defaults.default_payment_term)
    if not isinstance(term, str) or not term.strip():
        raise ValueError("billing.default_payment_term: must be a non-empty string")
    try:
        tax_rate = Decimal(str(raw.get("default_tax_rate", defaults.default_tax_rate)))
    except InvalidOperation as exc:
        raise ValueError("billing.default_tax_rate: must be a number") from exc
    if not tax_rate.is_finite() or tax_rate < 0:
        raise ValueError("billing.default_tax_rate: must be a finite number >= 0")
    return BillingConfig(default_payment_term=term.strip(), default_tax_rate=tax_rate)


def parse_engine_config(data: Mapping[str, Any]) -> EngineConfig:
    """Validate a raw mapping and build an EngineConfig."""
    unknown = set(data) - _TOP_LEVEL_KEYS
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

    database_url = data.get("database_url", EngineConfig.database_url)
    if not isinstance(database_url, str) or not database_url:
        raise ValueError("database_url: must be a non-empty string")

    log_level = str(data.get("log_level", EngineConfig.log_level)).upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"log_level: unknown level {log_level!r}")

    return EngineConfig(
        config_id=str(data.get("config_id", EngineConfig.config_id)),
        version=_positive_int("config", "version", data.get("version", EngineConfig.version)),
        database_url=database_url,
        log_level=log_level,
        sequence=parse_sequence(data),
        numbering=parse_numbering(data),
        billing=parse_billing(data),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: Mapping[str, Any]) -> str:
    """Deterministic SHA-256 of the raw configuration mapping."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
