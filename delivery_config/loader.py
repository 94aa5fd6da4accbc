"""
Configuration Loader (``delivery_config.loader``).

Responsibility
--------------
Loads the engine YAML file and parses it into the frozen
``delivery_config.schema.EngineConfig``.  Runtime callers go through
``delivery_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required keys have no silent defaults.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id`` / ``version``  -> ``KeyError``.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from delivery_config.schema import DAY_IMPACT_MODES, EngineConfig, RoleBindingDef


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(name: str, value: Any) -> Decimal:
    # Floats go through str() so 0.01 stays 0.01
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def parse_role_binding(data: dict[str, Any]) -> RoleBindingDef:
    return RoleBindingDef(
        actor_id=str(data["actor_id"]),
        role=data["role"],
        project_reference=data.get("project_reference"),
    )


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """
    Parse an ``EngineConfig`` from the top-level YAML mapping.

    Raises:
        KeyError: if ``config_id`` or ``version`` is missing.
        ValueError: if a value is out of range.
    """
    engine = data.get("engine", {})
    references = data.get("references", {})

    mode = engine.get("day_impact_mode", "calendar")
    if mode not in DAY_IMPACT_MODES:
        raise ValueError(
            f"day_impact_mode must be one of {DAY_IMPACT_MODES}, got {mode!r}"
        )

    hours_per_day = parse_decimal("hours_per_day", engine.get("hours_per_day", 8))
    if hours_per_day <= 0:
        raise ValueError(f"hours_per_day must be positive, got {hours_per_day}")

    money_quantum = parse_decimal("money_quantum", engine.get("money_quantum", "0.01"))
    if money_quantum <= 0:
        raise ValueError(f"money_quantum must be positive, got {money_quantum}")

    currency = engine.get("currency", "GBP")
    if not isinstance(currency, str) or len(currency) != 3 or not currency.isalpha():
        raise ValueError(f"currency must be a 3-letter code, got {currency!r}")

    prefix = references.get("variation_prefix", "VAR")
    suffix = references.get("certificate_suffix", "CERT")
    for name, value in (("variation_prefix", prefix), ("certificate_suffix", suffix)):
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{name} must be a non-empty string")

    return EngineConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        day_impact_mode=mode,
        hours_per_day=hours_per_day,
        currency=currency.upper(),
        money_quantum=money_quantum,
        variation_reference_prefix=prefix,
        certificate_suffix=suffix,
        role_bindings=tuple(
            parse_role_binding(item) for item in data.get("role_bindings", [])
        ),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
