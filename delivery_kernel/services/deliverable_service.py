"""
DeliverableService -- the per-deliverable workflow and delivery sign-off.

Responsibility:
    Executes deliverable commands (create, update, remove, set progress,
    submit for review, accept review, return for more work, sign delivery,
    reset sign-off) against the persisted row, then asks
    MilestoneAggregator to recompute the owning milestone in the same
    transaction.

Architecture position:
    Kernel > Services -- imperative shell around ``domain/deliverable.py``.

Invariants enforced:
    - Every guard runs against the status re-read immediately before the
      write (EntityStore.conditional_update).
    - Progress writes never touch a delivered deliverable; the only
      implicit status change is not_started <-> in_progress.
    - Delivery completes (progress 100, delivered) in the same write that
      fills the second signature slot.
    - Re-signing a filled delivery slot is an idempotent no-op.
    - Only an admin reset with a reason clears delivery signatures, and
      never after the milestone has a certificate.
    - ``status`` and ``progress`` are not accepted through ``update``.

Failure modes:
    - ValidationError, PermissionDeniedError, InvalidStateTransitionError,
      ImmutableFieldError, ConflictError, NotFoundError.
"""

from typing import Any, Iterable, Mapping
from uuid import UUID

from delivery_kernel.db.immutability import resetting_sign_off
from delivery_kernel.domain.clock import Clock
from delivery_kernel.domain.deliverable import (
    DELIVERABLE_WORKFLOW,
    DERIVED_FIELDS,
    DESCRIPTIVE_FIELDS,
    Deliverable,
    DeliverableLink,
    DeliverableStatus,
    status_after_progress,
    validate_progress,
)
from delivery_kernel.domain.permissions import Operation, signing_operation
from delivery_kernel.domain.roles import Actor, ProjectRole
from delivery_kernel.domain.signatures import SignaturePair, SignatureSide
from delivery_kernel.exceptions import ImmutableFieldError, ValidationError
from delivery_kernel.logging_config import get_logger
from delivery_kernel.models.deliverable import DeliverableLinkModel, DeliverableModel
from delivery_kernel.services.audit_records import AuditRecorder
from delivery_kernel.services.base import LifecycleService
from delivery_kernel.services.entity_store import EntityStore
from delivery_kernel.services.milestone_aggregator import MilestoneAggregator
from delivery_kernel.services.permission_gate import PermissionGate

logger = get_logger("services.deliverable")

ENTITY = "Deliverable"


def _require_text(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string", field=field)
    return value.strip()


def _require_reason(value: Any, deliverable_id: UUID, purpose: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"A reason is required to {purpose}",
            entity_type=ENTITY, entity_id=deliverable_id, field="reason",
        )
    return value.strip()


def _link_key(kind: Any, reference_id: UUID) -> tuple[str, UUID]:
    return (getattr(kind, "value", kind), reference_id)


class DeliverableService(LifecycleService):
    def __init__(
        self,
        store: EntityStore,
        gate: PermissionGate,
        recorder: AuditRecorder,
        aggregator: MilestoneAggregator,
        clock: Clock | None = None,
    ):
        super().__init__(store, gate, recorder, clock)
        self._aggregator = aggregator

    # Helpers

    def _authorize(self, actor: Actor, deliverable_id: UUID, operation: Operation):
        row = self._store.get(DeliverableModel, deliverable_id)
        project_id = self._project_of_milestone(row.milestone_id)
        role = self._gate.authorize(actor, project_id, operation)
        return row, role

    @staticmethod
    def _expect(expected_version: int | None) -> dict | None:
        return {"row_version": expected_version} if expected_version is not None else None

    def _finish(
        self,
        actor: Actor,
        role: ProjectRole,
        row: DeliverableModel,
        operation: Operation,
        before: Deliverable | None,
        **detail: Any,
    ) -> Deliverable:
        after = row.to_dto()
        self._recorder.record(
            actor, role, ENTITY, row.id, operation.value,
            before=before, after=after, **detail,
        )
        self._aggregator.recompute(row.milestone_id, actor, role, trigger=operation.value)
        return after

    def _set_links(self, row: DeliverableModel, links: Iterable[DeliverableLink]) -> None:
        wanted = {_link_key(link.kind, link.reference_id) for link in links}
        current = {_link_key(link.link_kind, link.reference_id): link for link in row.links}
        for key, link in current.items():
            if key not in wanted:
                row.links.remove(link)
        for kind, reference_id in sorted(wanted - current.keys(), key=str):
            row.links.append(DeliverableLinkModel(link_kind=kind, reference_id=reference_id))

    def _check_reference_free(self, milestone_id: UUID, reference: str, own_id: UUID | None = None):
        for other in self._store.deliverables_for(milestone_id):
            if other.reference == reference and other.id != own_id:
                raise ValidationError(
                    f"Deliverable reference {reference!r} already used on this milestone",
                    entity_type=ENTITY,
                    entity_id=other.id,
                    field="reference",
                )

    # Commands

    def create(
        self,
        actor: Actor,
        milestone_id: UUID,
        reference: str,
        name: str,
        description: str = "",
        links: Iterable[DeliverableLink] = (),
    ) -> Deliverable:
        project_id = self._project_of_milestone(milestone_id)
        role = self._gate.authorize(actor, project_id, Operation.DELIVERABLE_CREATE)
        reference = _require_text("reference", reference)
        name = _require_text("name", name)
        self._check_reference_free(milestone_id, reference)

        row = self._store.create(
            DeliverableModel,
            milestone_id=milestone_id,
            reference=reference,
            name=name,
            description=description or "",
            progress=0,
            status=DeliverableStatus.NOT_STARTED.value,
            created_by_id=actor.actor_id,
        )
        if links:
            self._set_links(row, links)
            self._store.flush(row)

        logger.info(
            "deliverable_created",
            extra={"deliverable_id": str(row.id), "milestone_id": str(milestone_id)},
        )
        return self._finish(actor, role, row, Operation.DELIVERABLE_CREATE, before=None)

    def update(
        self,
        actor: Actor,
        deliverable_id: UUID,
        changes: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> Deliverable:
        row, role = self._authorize(actor, deliverable_id, Operation.DELIVERABLE_UPDATE)
        for key in changes:
            if key in DERIVED_FIELDS:
                raise ValidationError(
                    f"'{key}' is not writable directly; use the workflow commands",
                    entity_type=ENTITY, entity_id=deliverable_id, field=key,
                )
            if key not in DESCRIPTIVE_FIELDS:
                raise ValidationError(
                    f"Unknown or read-only deliverable field '{key}'",
                    entity_type=ENTITY, entity_id=deliverable_id, field=key,
                )
        before = row.to_dto()
        if "reference" in changes:
            self._check_reference_free(
                row.milestone_id, _require_text("reference", changes["reference"]), deliverable_id
            )

        def _mutate(current: DeliverableModel) -> None:
            if current.status == DeliverableStatus.DELIVERED.value:
                raise ImmutableFieldError(
                    entity_type=ENTITY,
                    entity_id=deliverable_id,
                    field=next(iter(changes), None),
                    reason="delivered deliverables are frozen",
                    current_state=current.status,
                )
            if "reference" in changes:
                current.reference = _require_text("reference", changes["reference"])
            if "name" in changes:
                current.name = _require_text("name", changes["name"])
            if "description" in changes:
                current.description = changes["description"] or ""
            if "links" in changes:
                self._set_links(current, changes["links"])
            current.updated_by_id = actor.actor_id

        row = self._store.conditional_update(
            DeliverableModel, deliverable_id, _mutate, expected=self._expect(expected_version)
        )
        return self._finish(
            actor, role, row, Operation.DELIVERABLE_UPDATE, before, fields=sorted(changes)
        )

    def remove(self, actor: Actor, deliverable_id: UUID) -> Deliverable:
        row, role = self._authorize(actor, deliverable_id, Operation.DELIVERABLE_REMOVE)
        row = self._store.reload(DeliverableModel, deliverable_id)
        if row.status == DeliverableStatus.DELIVERED.value:
            raise ImmutableFieldError(
                entity_type=ENTITY,
                entity_id=deliverable_id,
                field=None,
                reason="delivered deliverables cannot be removed",
                current_state=row.status,
            )
        before = row.to_dto()
        milestone_id = row.milestone_id
        self._store.delete(row)

        self._recorder.record(
            actor, role, ENTITY, deliverable_id, Operation.DELIVERABLE_REMOVE.value,
            before=before, after=None,
        )
        self._aggregator.recompute(
            milestone_id, actor, role, trigger=Operation.DELIVERABLE_REMOVE.value
        )
        logger.info("deliverable_removed", extra={"deliverable_id": str(deliverable_id)})
        return before

    def set_progress(
        self,
        actor: Actor,
        deliverable_id: UUID,
        value: int,
        expected_version: int | None = None,
    ) -> Deliverable:
        row, role = self._authorize(actor, deliverable_id, Operation.DELIVERABLE_SET_PROGRESS)
        value = validate_progress(value)
        before = row.to_dto()

        def _mutate(current: DeliverableModel) -> None:
            status = DeliverableStatus(current.status)
            if status is DeliverableStatus.DELIVERED:
                raise self._illegal(
                    ENTITY, deliverable_id, status.value, "set progress on",
                    "delivered deliverables are frozen",
                )
            current.progress = value
            current.status = status_after_progress(status, value).value
            current.updated_by_id = actor.actor_id

        row = self._store.conditional_update(
            DeliverableModel, deliverable_id, _mutate, expected=self._expect(expected_version)
        )
        return self._finish(
            actor, role, row, Operation.DELIVERABLE_SET_PROGRESS, before, progress=value
        )

    def _advance(
        self,
        actor: Actor,
        deliverable_id: UUID,
        action: str,
        operation: Operation,
        expected_version: int | None,
        reason: str | None = None,
    ) -> Deliverable:
        row, role = self._authorize(actor, deliverable_id, operation)
        if reason is not None:
            reason = _require_reason(reason, deliverable_id, "return a deliverable for more work")
        before = row.to_dto()

        def _mutate(current: DeliverableModel) -> None:
            target = DELIVERABLE_WORKFLOW.target_of(current.status, action)
            if target is None:
                raise self._illegal(ENTITY, deliverable_id, current.status, action.replace("_", " "))
            current.status = target
            if reason is not None:
                current.return_reason = reason
            current.updated_by_id = actor.actor_id

        row = self._store.conditional_update(
            DeliverableModel, deliverable_id, _mutate, expected=self._expect(expected_version)
        )
        logger.info(
            "deliverable_transitioned",
            extra={
                "deliverable_id": str(deliverable_id),
                "action": action,
                "from_status": before.status.value,
                "to_status": row.status,
            },
        )
        detail = {"reason": reason} if reason is not None else {}
        return self._finish(actor, role, row, operation, before, **detail)

    def submit_for_review(
        self, actor: Actor, deliverable_id: UUID, expected_version: int | None = None
    ) -> Deliverable:
        return self._advance(
            actor, deliverable_id, "submit_for_review",
            Operation.DELIVERABLE_SUBMIT_FOR_REVIEW, expected_version,
        )

    def accept_review(
        self, actor: Actor, deliverable_id: UUID, expected_version: int | None = None
    ) -> Deliverable:
        return self._advance(
            actor, deliverable_id, "accept_review",
            Operation.DELIVERABLE_ACCEPT_REVIEW, expected_version,
        )

    def return_for_more_work(
        self,
        actor: Actor,
        deliverable_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> Deliverable:
        return self._advance(
            actor, deliverable_id, "return_for_more_work",
            Operation.DELIVERABLE_RETURN_FOR_MORE_WORK, expected_version,
            reason="" if reason is None else reason,
        )

    def sign_delivery(
        self,
        actor: Actor,
        deliverable_id: UUID,
        side: SignatureSide,
        expected_version: int | None = None,
    ) -> Deliverable:
        operation = signing_operation("deliverable", side)
        row, role = self._authorize(actor, deliverable_id, operation)
        before = row.to_dto()
        outcome = {"signed": False}

        def _mutate(current: DeliverableModel) -> None:
            pair = current.signature_pair()
            if pair.is_filled(side):
                return
            if current.status != DeliverableStatus.REVIEW_COMPLETE.value:
                raise self._illegal(
                    ENTITY, deliverable_id, current.status, f"sign delivery ({side.value})",
                    "delivery sign-off opens once review is complete",
                )
            pair = pair.with_signature(side, self._signature(actor, role))
            current.store_signature_pair(pair)
            if pair.both_signed:
                current.progress = 100
                current.status = DELIVERABLE_WORKFLOW.target_of(
                    current.status, "sign_delivery"
                )
            current.updated_by_id = actor.actor_id
            outcome["signed"] = True

        row = self._store.conditional_update(
            DeliverableModel, deliverable_id, _mutate, expected=self._expect(expected_version)
        )
        if not outcome["signed"]:
            logger.info(
                "deliverable_resign_ignored",
                extra={"deliverable_id": str(deliverable_id), "side": side.value},
            )
            return row.to_dto()

        if row.status == DeliverableStatus.DELIVERED.value:
            logger.info("deliverable_delivered", extra={"deliverable_id": str(deliverable_id)})
        return self._finish(actor, role, row, operation, before, side=side.value)

    def reset_sign_off(
        self,
        actor: Actor,
        deliverable_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> Deliverable:
        """
        Clear both delivery signatures and return the deliverable to
        review_complete.

        An administrative override outside the normal workflow, so it also
        reopens a delivered deliverable.  Refused once the milestone has a
        certificate, whose snapshot records the delivered set.
        """
        row, role = self._authorize(actor, deliverable_id, Operation.DELIVERABLE_RESET_SIGN_OFF)
        reason = _require_reason(reason, deliverable_id, "reset a delivery sign-off")
        before = row.to_dto()

        def _mutate(current: DeliverableModel) -> None:
            if not current.signature_pair().any_signed:
                raise self._illegal(
                    ENTITY, deliverable_id, current.status, "reset sign-off of",
                    "deliverable carries no delivery signatures",
                )
            certificate = self._store.certificate_for(current.milestone_id)
            if certificate is not None:
                raise self._illegal(
                    ENTITY, deliverable_id, current.status, "reset sign-off of",
                    f"milestone already has certificate {certificate.certificate_number}",
                )
            current.store_signature_pair(SignaturePair())
            current.status = DeliverableStatus.REVIEW_COMPLETE.value
            current.updated_by_id = actor.actor_id

        with resetting_sign_off(self._store.session):
            row = self._store.conditional_update(
                DeliverableModel, deliverable_id, _mutate, expected=self._expect(expected_version)
            )

        logger.warning(
            "deliverable_sign_off_reset",
            extra={
                "deliverable_id": str(deliverable_id),
                "reset_by": str(actor.actor_id),
                "reason": reason,
                "previous_status": before.status.value,
            },
        )
        return self._finish(
            actor, role, row, Operation.DELIVERABLE_RESET_SIGN_OFF, before, reason=reason
        )
