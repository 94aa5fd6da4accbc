"""
Config -> Kernel Bridges.

Functions that turn an ``EngineConfig`` into kernel-compatible inputs.
They live here because the kernel must never import ``delivery_config``.

Usage:
    from delivery_config.bridges import build_role_resolver, day_impact_mode

    config = get_active_config()
    resolver = build_role_resolver(config, project_ids)
"""

from __future__ import annotations

from typing import Mapping
from uuid import UUID

from delivery_config.schema import EngineConfig
from delivery_kernel.domain.roles import ProjectRole
from delivery_kernel.domain.schedule import DayImpactMode
from delivery_kernel.services.permission_gate import StaticRoleResolver


def day_impact_mode(config: EngineConfig) -> DayImpactMode:
    return DayImpactMode(config.day_impact_mode)


def build_role_resolver(
    config: EngineConfig,
    project_ids: Mapping[str, UUID] | None = None,
) -> StaticRoleResolver:
    """Build a StaticRoleResolver from the configured role bindings.

    ``project_ids`` maps project references to ids for bindings scoped to
    one project.

    Raises:
        ValueError: unknown role, malformed actor id, or a project
            reference missing from ``project_ids``.
    """
    project_ids = project_ids or {}
    resolver = StaticRoleResolver()
    for binding in config.role_bindings:
        role = ProjectRole(binding.role)
        actor_id = UUID(binding.actor_id)
        project_id = None
        if binding.project_reference is not None:
            if binding.project_reference not in project_ids:
                raise ValueError(
                    f"Role binding for {binding.actor_id} names unknown project "
                    f"{binding.project_reference!r}"
                )
            project_id = project_ids[binding.project_reference]
        resolver.assign(actor_id, role, project_id)
    return resolver
