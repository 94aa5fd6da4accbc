"""
MilestoneAggregator -- keeps derived milestone fields in step with deliverables.

Responsibility:
    Recomputes a milestone's ``status`` and ``progress`` from its persisted
    deliverable set.  Called by DeliverableService after every deliverable
    create, update or remove, inside the same transaction, so no reader
    ever sees a milestone derived from a stale deliverable set.

Architecture position:
    Kernel > Services.  The only writer of ``MilestoneModel.status`` and
    ``MilestoneModel.progress``.

Invariants enforced:
    - progress == half-up rounded mean of deliverable progress (0 if none).
    - completed iff non-empty and all delivered; not_started iff empty or
      all not started; otherwise in_progress.
"""

from uuid import UUID

from delivery_kernel.domain.deliverable import DeliverableStatus
from delivery_kernel.domain.milestone import (
    DeliverableProgress,
    MilestoneRollup,
    MilestoneStatus,
    aggregate,
)
from delivery_kernel.domain.roles import Actor, ProjectRole
from delivery_kernel.logging_config import get_logger
from delivery_kernel.models.milestone import MilestoneModel
from delivery_kernel.services.audit_records import AuditRecorder
from delivery_kernel.services.entity_store import EntityStore

logger = get_logger("services.milestone_aggregator")


class MilestoneAggregator:
    def __init__(self, store: EntityStore, recorder: AuditRecorder):
        self._store = store
        self._recorder = recorder

    def rollup(self, milestone_id: UUID) -> MilestoneRollup:
        """The derived fields as the persisted deliverables currently imply."""
        return aggregate(
            DeliverableProgress(progress=d.progress, status=DeliverableStatus(d.status))
            for d in self._store.deliverables_for(milestone_id)
        )

    def recompute(
        self,
        milestone_id: UUID,
        actor: Actor,
        role: ProjectRole | None,
        trigger: str,
    ) -> MilestoneModel:
        """Write the derived fields if they changed; return the milestone row."""
        rollup = self.rollup(milestone_id)
        before: dict = {}

        def _apply(row: MilestoneModel) -> None:
            before.update(status=row.status, progress=row.progress)
            row.status = rollup.status.value
            row.progress = rollup.progress

        milestone = self._store.reload(MilestoneModel, milestone_id)
        if (
            MilestoneStatus(milestone.status) is rollup.status
            and milestone.progress == rollup.progress
        ):
            return milestone

        milestone = self._store.conditional_update(MilestoneModel, milestone_id, _apply)
        after = {"status": rollup.status.value, "progress": rollup.progress}
        self._recorder.record(
            actor, role, "Milestone", milestone_id, "milestone.recompute",
            before=before, after=after, trigger=trigger,
        )
        logger.info(
            "milestone_recomputed",
            extra={
                "milestone_id": str(milestone_id),
                "trigger": trigger,
                "status_before": before["status"],
                "status": rollup.status.value,
                "progress_before": before["progress"],
                "progress": rollup.progress,
            },
        )
        return milestone
