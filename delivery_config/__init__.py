"""
delivery_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``delivery_kernel`` and below
    ``delivery_services``.  The kernel MUST NEVER import from
    ``delivery_config``; ``bridges.py`` translates config values into
    kernel inputs.

Failure modes:
    - ``FileNotFoundError`` -- the configured YAML file does not exist.
    - ``ValueError`` / ``KeyError`` -- schema validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``DELIVERY_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying engine behaviour back to the configuration in force.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from delivery_config.loader import load_yaml_file, parse_engine_config
from delivery_config.schema import EngineConfig, RoleBindingDef

_logger = logging.getLogger("delivery_kernel.config")

CONFIG_PATH_ENV = "DELIVERY_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: ``path`` argument, then the ``DELIVERY_CONFIG_PATH``
    environment variable, then the bundled ``defaults.yaml``.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If a value fails validation.
        KeyError: If a required key is missing.
    """
    resolved = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    config = parse_engine_config(load_yaml_file(resolved))

    _logger.info(
        "DELIVERY_CONFIG_TRACE",
        extra={
            "trace_type": "DELIVERY_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "day_impact_mode": config.day_impact_mode,
            "config_path": str(resolved),
        },
    )
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "EngineConfig",
    "RoleBindingDef",
    "get_active_config",
]
