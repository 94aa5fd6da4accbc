"""
BaselineService -- dual-signature baseline commitment.

Responsibility:
    Records supplier and customer signatures on a milestone's baseline
    and locks it when both are present; ``reset`` is the admin escape
    hatch that clears the lock and both slots.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - A filled slot is never signed again (InvalidStateTransitionError).
    - The second signature and ``baseline_locked = True`` land in the
      same write.
    - A baseline without start and end dates cannot be signed.
    - Every reset carries a reason, is audited, and is logged at WARNING.
"""

from uuid import UUID

from delivery_kernel.domain.milestone import Milestone, baseline_status
from delivery_kernel.domain.permissions import Operation, signing_operation
from delivery_kernel.domain.roles import Actor
from delivery_kernel.domain.signatures import SignaturePair, SignatureSide
from delivery_kernel.exceptions import ValidationError
from delivery_kernel.logging_config import get_logger
from delivery_kernel.models.milestone import MilestoneModel
from delivery_kernel.services.base import LifecycleService

logger = get_logger("services.baseline")

ENTITY = "Milestone"


class BaselineService(LifecycleService):
    def sign(
        self,
        actor: Actor,
        milestone_id: UUID,
        side: SignatureSide,
        expected_version: int | None = None,
    ) -> Milestone:
        operation = signing_operation("baseline", side)
        row = self._store.get(MilestoneModel, milestone_id)
        role = self._gate.authorize(actor, row.project_id, operation)
        before = row.to_dto()

        def _mutate(current: MilestoneModel) -> None:
            pair = current.signature_pair()
            state = baseline_status(pair).value
            if pair.is_filled(side):
                raise self._illegal(
                    "Baseline", milestone_id, state, f"sign baseline ({side.value})",
                    f"{side.value} has already signed",
                )
            if current.baseline_start is None or current.baseline_end is None:
                raise self._illegal(
                    "Baseline", milestone_id, state, f"sign baseline ({side.value})",
                    "baseline start and end dates must be set",
                )
            pair = pair.with_signature(side, self._signature(actor, role))
            current.store_signature_pair(pair)
            if pair.both_signed:
                current.baseline_locked = True
            current.updated_by_id = actor.actor_id

        expected = {"row_version": expected_version} if expected_version is not None else None
        row = self._store.conditional_update(MilestoneModel, milestone_id, _mutate, expected=expected)

        after = row.to_dto()
        self._recorder.record(
            actor, role, "Baseline", milestone_id, operation.value,
            before=before, after=after, side=side.value,
        )
        logger.info(
            "baseline_signed",
            extra={
                "milestone_id": str(milestone_id),
                "side": side.value,
                "baseline_status": after.baseline_status.value,
            },
        )
        if row.baseline_locked and not before.baseline_locked:
            logger.info("baseline_committed", extra={"milestone_id": str(milestone_id)})
        return after

    def reset(
        self,
        actor: Actor,
        milestone_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> Milestone:
        row = self._store.get(MilestoneModel, milestone_id)
        role = self._gate.authorize(actor, row.project_id, Operation.BASELINE_RESET)
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError(
                "A reason is required to reset a baseline",
                entity_type=ENTITY, entity_id=milestone_id, field="reason",
            )
        reason = reason.strip()
        before = row.to_dto()

        def _mutate(current: MilestoneModel) -> None:
            pair = current.signature_pair()
            if not pair.any_signed and not current.baseline_locked:
                raise self._illegal(
                    "Baseline", milestone_id, baseline_status(pair).value, "reset baseline",
                    "baseline carries no signatures",
                )
            current.store_signature_pair(SignaturePair())
            current.baseline_locked = False
            current.updated_by_id = actor.actor_id

        expected = {"row_version": expected_version} if expected_version is not None else None
        row = self._store.conditional_update(MilestoneModel, milestone_id, _mutate, expected=expected)

        after = row.to_dto()
        self._recorder.record(
            actor, role, "Baseline", milestone_id, Operation.BASELINE_RESET.value,
            before=before, after=after, reason=reason,
        )
        logger.warning(
            "baseline_reset",
            extra={
                "milestone_id": str(milestone_id),
                "reset_by": str(actor.actor_id),
                "reason": reason,
                "previous_status": before.baseline_status.value,
            },
        )
        return after
