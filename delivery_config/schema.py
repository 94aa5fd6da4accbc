"""
Configuration schema (``delivery_config.schema``).

Frozen dataclasses describing the engine configuration as authored in
YAML.  Parsing lives in ``loader.py``; the only runtime entry point is
``delivery_config.get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


DAY_IMPACT_MODES = ("calendar", "working")


@dataclass(frozen=True)
class RoleBindingDef:
    """A static role assignment for an actor.

    ``project_reference`` of None applies the role on every project.
    """

    actor_id: str
    role: str
    project_reference: str | None = None


@dataclass(frozen=True)
class EngineConfig:
    """Engine-wide settings."""

    config_id: str
    version: int
    day_impact_mode: str = "calendar"
    hours_per_day: Decimal = Decimal("8")
    currency: str = "GBP"
    money_quantum: Decimal = Decimal("0.01")
    variation_reference_prefix: str = "VAR"
    certificate_suffix: str = "CERT"
    role_bindings: tuple[RoleBindingDef, ...] = field(default_factory=tuple)
    checksum: str = ""
