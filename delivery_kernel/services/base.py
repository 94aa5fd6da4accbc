"""
LifecycleService -- common base for the kernel's lifecycle services.

Responsibility:
    Holds the collaborators every lifecycle service needs (entity store,
    permission gate, audit recorder, clock) and the small helpers they
    share: resolving the owning project of a milestone, stamping a
    signature, raising the standard transition error.

Architecture position:
    Kernel > Services.  Services flush through the EntityStore and never
    commit or roll back; the command surface owns the transaction.
"""

from abc import ABC
from uuid import UUID

from delivery_kernel.domain.clock import Clock, SystemClock
from delivery_kernel.domain.roles import Actor, ProjectRole
from delivery_kernel.domain.signatures import Signature
from delivery_kernel.exceptions import InvalidStateTransitionError
from delivery_kernel.models.milestone import MilestoneModel
from delivery_kernel.services.audit_records import AuditRecorder
from delivery_kernel.services.entity_store import EntityStore
from delivery_kernel.services.permission_gate import PermissionGate


class LifecycleService(ABC):
    def __init__(
        self,
        store: EntityStore,
        gate: PermissionGate,
        recorder: AuditRecorder,
        clock: Clock | None = None,
    ):
        self._store = store
        self._gate = gate
        self._recorder = recorder
        self._clock = clock or SystemClock()

    def _project_of_milestone(self, milestone_id: UUID) -> UUID:
        return self._store.get(MilestoneModel, milestone_id).project_id

    def _signature(self, actor: Actor, role: ProjectRole) -> Signature:
        return Signature(
            signer_id=actor.actor_id,
            display_name=actor.display_name,
            role=role.value,
            signed_at=self._clock.now(),
        )

    @staticmethod
    def _illegal(
        entity_type: str,
        entity_id: UUID,
        current_state: str,
        operation: str,
        reason: str | None = None,
    ) -> InvalidStateTransitionError:
        return InvalidStateTransitionError(
            entity_type=entity_type,
            entity_id=entity_id,
            current_state=current_state,
            operation=operation,
            reason=reason,
        )
