"""
fieldops_config -- single public entrypoint for engine configuration.

``get_active_config()`` is the only way runtime code obtains settings.
Defaults live in ``sets/default.yaml``; a deployment passes its own
file, and tests pass ``overrides``. Every successful call logs a
``CONFIG_TRACE`` record carrying the config id, version and checksum.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from fieldops_config.loader import load_yaml_file, merge_config, parse_engine_config
from fieldops_config.schema import BillingConfig, EngineConfig, SequenceConfig
from fieldops_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(
    config_path: Path | str | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> EngineConfig:
    """
    Load, validate and return the engine configuration.

    ``config_path`` replaces the defaults file wholesale; missing keys
    fall back to the schema defaults. ``overrides`` is deep-merged on top.

    Raises:
        FileNotFoundError: ``config_path`` does not exist.
        ValueError: validation failed.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)
    if overrides:
        data = merge_config(data, overrides)

    config = parse_engine_config(data)

    _logger.info(
        "CONFIG_TRACE",
        extra={
            "trace_type": "CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
        },
    )
    return config


__all__ = [
    "BillingConfig",
    "EngineConfig",
    "SequenceConfig",
    "get_active_config",
]
