"""
PermissionGate -- role-based authorization at every command boundary.

Responsibility:
    Resolves the actor's project-scoped role through a ``RoleResolver``
    and checks it against the static capability table in
    ``domain/permissions.py``.  No service branches on roles itself.

Architecture position:
    Kernel > Services.  Resolvers are collaborators: the kernel ships a
    dict-backed ``StaticRoleResolver`` and the membership-table backed
    ``MembershipRoleResolver``; an identity provider can supply its own.

Invariants enforced:
    - Fail closed: an actor with no role on the project is denied.
    - Every denial is logged with actor, project, role and operation.

Failure modes:
    - PermissionDeniedError.
"""

from typing import Mapping, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from delivery_kernel.domain.permissions import Operation, is_allowed
from delivery_kernel.domain.roles import Actor, ProjectRole
from delivery_kernel.exceptions import PermissionDeniedError
from delivery_kernel.logging_config import get_logger
from delivery_kernel.models.project import ProjectMemberModel

logger = get_logger("services.permission_gate")


class RoleResolver(Protocol):
    """Returns the actor's role on a project, or None if they have none."""

    def resolve_role(self, actor_id: UUID, project_id: UUID) -> ProjectRole | None:
        ...


class StaticRoleResolver:
    """
    Role resolver backed by a dict.

    Keys are ``(actor_id, project_id)``; an ``actor_id`` key alone applies
    to every project.
    """

    def __init__(self, roles: Mapping[object, ProjectRole] | None = None):
        self._roles: dict[object, ProjectRole] = dict(roles or {})

    def assign(self, actor_id: UUID, role: ProjectRole, project_id: UUID | None = None) -> None:
        key: object = (actor_id, project_id) if project_id is not None else actor_id
        self._roles[key] = role

    def resolve_role(self, actor_id: UUID, project_id: UUID) -> ProjectRole | None:
        role = self._roles.get((actor_id, project_id))
        if role is None:
            role = self._roles.get(actor_id)
        return role


class MembershipRoleResolver:
    """Role resolver reading the ``project_members`` table."""

    def __init__(self, session: Session):
        self._session = session

    def resolve_role(self, actor_id: UUID, project_id: UUID) -> ProjectRole | None:
        role = self._session.execute(
            select(ProjectMemberModel.role).where(
                ProjectMemberModel.actor_id == actor_id,
                ProjectMemberModel.project_id == project_id,
            )
        ).scalar_one_or_none()
        return ProjectRole(role) if role is not None else None


class PermissionGate:
    def __init__(self, resolver: RoleResolver):
        self._resolver = resolver

    def role_of(self, actor: Actor, project_id: UUID) -> ProjectRole | None:
        return self._resolver.resolve_role(actor.actor_id, project_id)

    def authorize(self, actor: Actor, project_id: UUID, operation: Operation) -> ProjectRole:
        """
        Return the actor's role if it may perform ``operation``.

        Raises:
            PermissionDeniedError: no role on the project, or the role
                lacks the capability.
        """
        role = self.role_of(actor, project_id)
        if not is_allowed(role, operation):
            logger.warning(
                "permission_denied",
                extra={
                    "actor_id": str(actor.actor_id),
                    "project_id": str(project_id),
                    "role": role.value if role is not None else None,
                    "operation": operation.value,
                },
            )
            raise PermissionDeniedError(
                actor_id=actor.actor_id,
                operation=operation.value,
                role=role.value if role is not None else None,
                project_id=project_id,
            )
        return role
