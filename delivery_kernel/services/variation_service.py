"""
VariationService -- the change-control engine.

Responsibility:
    Drafts, edits, submits, signs, rejects, applies and deletes
    variations (change requests).  Applying an approved variation is the
    only way a locked milestone baseline changes: every impacted
    milestone gets its current baseline appended to history, its dates
    shifted and its billable adjusted, and its ``baseline_version``
    incremented, all inside one transaction.

Architecture position:
    Kernel > Services.  Opens the ``amending_baseline`` scope of
    db/immutability.py around the apply write.

Invariants enforced:
    - Only drafts are edited; only draft, submitted or rejected variations
      are deleted (ImmutableFieldError otherwise).
    - Impacted milestones exist and belong to the variation's project.
    - A variation with no impacted milestone cannot be submitted.
    - Rejection only from ``submitted``; apply only from ``approved``.
    - Apply revises every baseline before writing any: a revision that
      would end before it starts or go negative aborts the whole apply.
    - Baseline history is append-only and ``baseline_version`` strictly
      increases.
    - Apply realigns the forecast (start, end, billable) to the revised
      baseline and sets ``billable``, the value a certificate bills, to
      the new contract value.

Failure modes:
    - ValidationError, PermissionDeniedError, InvalidStateTransitionError,
      ImmutableFieldError, ConflictError, NotFoundError.

Audit relevance:
    Apply records one ``variation.apply`` event on the variation plus a
    ``baseline.amend`` event per impacted milestone carrying the old and
    new baseline.
"""

from typing import Any, Iterable, Mapping
from uuid import UUID

from delivery_kernel.db.immutability import amending_baseline
from delivery_kernel.domain.clock import Clock
from delivery_kernel.domain.milestone import BaselineTriple
from delivery_kernel.domain.permissions import Operation, signing_operation
from delivery_kernel.domain.roles import Actor
from delivery_kernel.domain.schedule import DayImpactMode
from delivery_kernel.domain.signatures import SignatureSide
from delivery_kernel.domain.variation import (
    EDITABLE_FIELDS,
    VARIATION_WORKFLOW,
    MilestoneImpact,
    Variation,
    VariationStatus,
    VariationType,
    impact_totals,
    revise_baseline,
    sign_action,
    status_after_signature,
    validate_impact,
    variation_reference,
)
from delivery_kernel.exceptions import ImmutableFieldError, ValidationError
from delivery_kernel.logging_config import get_logger
from delivery_kernel.models.milestone import BaselineVersionModel, MilestoneModel
from delivery_kernel.models.project import ProjectModel
from delivery_kernel.models.variation import VariationImpactModel, VariationModel
from delivery_kernel.services.audit_records import AuditRecorder
from delivery_kernel.services.base import LifecycleService
from delivery_kernel.services.entity_store import EntityStore
from delivery_kernel.services.permission_gate import PermissionGate
from delivery_kernel.services.sequence_service import SequenceService
from delivery_kernel.utils.hashing import to_plain

logger = get_logger("services.variation")

ENTITY = "Variation"


def _variation_type(value: Any) -> VariationType:
    try:
        return VariationType(value)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown variation type {value!r}", entity_type=ENTITY, field="variation_type"
        ) from exc


def _require_text(field: str, value: Any, entity_id: UUID | None = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{field} must be a non-empty string",
            entity_type=ENTITY, entity_id=entity_id, field=field,
        )
    return value.strip()


def _baseline_dict(triple: BaselineTriple) -> dict[str, Any]:
    return {"start": triple.start, "end": triple.end, "billable": triple.billable}


class VariationService(LifecycleService):
    def __init__(
        self,
        store: EntityStore,
        gate: PermissionGate,
        recorder: AuditRecorder,
        sequences: SequenceService,
        clock: Clock | None = None,
        day_impact_mode: DayImpactMode = DayImpactMode.CALENDAR,
        reference_prefix: str = "VAR",
        certificate_suffix: str = "CERT",
    ):
        super().__init__(store, gate, recorder, clock)
        self._sequences = sequences
        self._mode = day_impact_mode
        self._prefix = reference_prefix
        self._suffix = certificate_suffix

    # Helpers

    def _load(self, actor: Actor, variation_id: UUID, operation: Operation):
        row = self._store.get(VariationModel, variation_id)
        role = self._gate.authorize(actor, row.project_id, operation)
        return row, role

    @staticmethod
    def _expect(expected_version: int | None) -> dict | None:
        return {"row_version": expected_version} if expected_version is not None else None

    def _check_impacts(
        self,
        project_id: UUID,
        variation_type: VariationType,
        impacts: Iterable[MilestoneImpact],
    ) -> list[MilestoneImpact]:
        checked: list[MilestoneImpact] = []
        seen: set[UUID] = set()
        for impact in impacts:
            validate_impact(variation_type, impact)
            if impact.milestone_id in seen:
                raise ValidationError(
                    f"Milestone {impact.milestone_id} is listed twice",
                    entity_type="Milestone", entity_id=impact.milestone_id, field="milestone_id",
                )
            milestone = self._store.get(MilestoneModel, impact.milestone_id)
            if milestone.project_id != project_id:
                raise ValidationError(
                    f"Milestone {milestone.reference} belongs to another project",
                    entity_type="Milestone", entity_id=impact.milestone_id, field="milestone_id",
                )
            seen.add(impact.milestone_id)
            checked.append(impact)
        return checked

    @staticmethod
    def _set_impacts(row: VariationModel, impacts: list[MilestoneImpact]) -> None:
        """Bring the impact rows in line with ``impacts``, updating in place."""
        existing = {impact.milestone_id: impact for impact in row.impacts}
        wanted = {impact.milestone_id for impact in impacts}
        for milestone_id, impact_row in existing.items():
            if milestone_id not in wanted:
                row.impacts.remove(impact_row)
        for position, impact in enumerate(impacts):
            impact_row = existing.get(impact.milestone_id)
            if impact_row is None:
                impact_row = VariationImpactModel(milestone_id=impact.milestone_id)
                row.impacts.append(impact_row)
            impact_row.position = position
            impact_row.cost_impact = impact.cost_impact
            impact_row.day_impact = impact.day_impact
            impact_row.shift_window = impact.shift_window

    def _require_editable(self, current: VariationModel, field: str | None) -> None:
        if VariationStatus(current.status) is not VariationStatus.DRAFT:
            raise ImmutableFieldError(
                entity_type=ENTITY,
                entity_id=current.id,
                field=field,
                reason="only draft variations can be edited",
                current_state=current.status,
            )

    def _transition(self, current: VariationModel, action: str, label: str) -> str:
        target = VARIATION_WORKFLOW.target_of(current.status, action)
        if target is None:
            raise self._illegal(ENTITY, current.id, current.status, label)
        return target

    def _record(self, actor, role, row, operation: Operation, before, **detail) -> Variation:
        after = row.to_dto()
        self._recorder.record(
            actor, role, ENTITY, row.id, operation.value, before=before, after=after, **detail
        )
        return after

    # Commands

    def get(self, actor: Actor, variation_id: UUID) -> Variation:
        row, _ = self._load(actor, variation_id, Operation.PROJECT_VIEW)
        return row.to_dto()

    def create(
        self,
        actor: Actor,
        project_id: UUID,
        title: str,
        variation_type: VariationType | str,
        description: str = "",
        reason: str = "",
        impacts: Iterable[MilestoneImpact] = (),
    ) -> Variation:
        self._store.get(ProjectModel, project_id)
        role = self._gate.authorize(actor, project_id, Operation.VARIATION_CREATE)
        title = _require_text("title", title)
        kind = _variation_type(variation_type)
        checked = self._check_impacts(project_id, kind, impacts)

        number = self._sequences.next_value(SequenceService.variation_sequence(project_id))
        row = VariationModel(
            project_id=project_id,
            reference=variation_reference(self._prefix, number),
            title=title,
            description=description or "",
            reason=reason or "",
            variation_type=kind.value,
            status=VariationStatus.DRAFT.value,
            created_by_id=actor.actor_id,
        )
        self._set_impacts(row, checked)
        self._store.session.add(row)
        self._store.flush(row)

        logger.info(
            "variation_created",
            extra={
                "variation_id": str(row.id),
                "reference": row.reference,
                "variation_type": kind.value,
                "impacted_milestones": len(checked),
            },
        )
        return self._record(actor, role, row, Operation.VARIATION_CREATE, before=None)

    def edit(
        self,
        actor: Actor,
        variation_id: UUID,
        changes: Mapping[str, Any] | None = None,
        impacts: Iterable[MilestoneImpact] | None = None,
        expected_version: int | None = None,
    ) -> Variation:
        row, role = self._load(actor, variation_id, Operation.VARIATION_EDIT)
        changes = dict(changes or {})
        for key in changes:
            if key not in EDITABLE_FIELDS:
                raise ValidationError(
                    f"Unknown or read-only variation field '{key}'",
                    entity_type=ENTITY, entity_id=variation_id, field=key,
                )
        if "title" in changes:
            changes["title"] = _require_text("title", changes["title"], variation_id)
        if "variation_type" in changes:
            changes["variation_type"] = _variation_type(changes["variation_type"])
        new_impacts = list(impacts) if impacts is not None else None
        before = row.to_dto()

        def _mutate(current: VariationModel) -> None:
            self._require_editable(current, next(iter(changes), "impacts"))
            kind = changes.get("variation_type", VariationType(current.variation_type))
            entries = new_impacts if new_impacts is not None else list(current.impact_entries())
            checked = self._check_impacts(current.project_id, kind, entries)
            if new_impacts is not None:
                self._set_impacts(current, checked)
            for key, value in changes.items():
                if key == "variation_type":
                    value = value.value
                elif key in ("description", "reason"):
                    value = value or ""
                setattr(current, key, value)
            current.updated_by_id = actor.actor_id

        row = self._store.conditional_update(
            VariationModel, variation_id, _mutate, expected=self._expect(expected_version)
        )
        fields = sorted(changes) + (["impacts"] if new_impacts is not None else [])
        logger.info(
            "variation_edited", extra={"variation_id": str(variation_id), "fields": fields}
        )
        return self._record(actor, role, row, Operation.VARIATION_EDIT, before, fields=fields)

    def submit(
        self, actor: Actor, variation_id: UUID, expected_version: int | None = None
    ) -> Variation:
        row, role = self._load(actor, variation_id, Operation.VARIATION_SUBMIT)
        before = row.to_dto()

        def _mutate(current: VariationModel) -> None:
            target = self._transition(current, "submit", "submit")
            entries = current.impact_entries()
            if not entries:
                raise ValidationError(
                    "A variation must impact at least one milestone before submission",
                    entity_type=ENTITY, entity_id=variation_id, field="impacts",
                )
            cost, days = impact_totals(VariationType(current.variation_type), entries)
            current.total_cost_impact = cost
            current.total_days_impact = days
            current.status = target
            current.submitted_at = self._clock.now()
            current.updated_by_id = actor.actor_id

        row = self._store.conditional_update(
            VariationModel, variation_id, _mutate, expected=self._expect(expected_version)
        )
        logger.info(
            "variation_submitted",
            extra={
                "variation_id": str(variation_id),
                "total_cost_impact": str(row.total_cost_impact),
                "total_days_impact": row.total_days_impact,
            },
        )
        return self._record(actor, role, row, Operation.VARIATION_SUBMIT, before)

    def sign(
        self,
        actor: Actor,
        variation_id: UUID,
        side: SignatureSide,
        expected_version: int | None = None,
    ) -> Variation:
        operation = signing_operation("variation", side)
        row, role = self._load(actor, variation_id, operation)
        before = row.to_dto()

        def _mutate(current: VariationModel) -> None:
            pair = current.signature_pair()
            if pair.is_filled(side):
                raise self._illegal(
                    ENTITY, variation_id, current.status, f"sign variation ({side.value})",
                    f"{side.value} has already signed",
                )
            self._transition(current, sign_action(side), f"sign variation ({side.value})")
            pair = pair.with_signature(side, self._signature(actor, role))
            current.store_signature_pair(pair)
            current.status = status_after_signature(pair).value
            current.updated_by_id = actor.actor_id

        row = self._store.conditional_update(
            VariationModel, variation_id, _mutate, expected=self._expect(expected_version)
        )
        logger.info(
            "variation_signed",
            extra={"variation_id": str(variation_id), "side": side.value, "status": row.status},
        )
        return self._record(actor, role, row, operation, before, side=side.value)

    def reject(
        self,
        actor: Actor,
        variation_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> Variation:
        row, role = self._load(actor, variation_id, Operation.VARIATION_REJECT)
        reason = _require_text("reason", reason, variation_id)
        before = row.to_dto()

        def _mutate(current: VariationModel) -> None:
            current.status = self._transition(current, "reject", "reject")
            current.rejection_reason = reason
            current.rejected_by_id = actor.actor_id
            current.rejected_at = self._clock.now()
            current.updated_by_id = actor.actor_id

        row = self._store.conditional_update(
            VariationModel, variation_id, _mutate, expected=self._expect(expected_version)
        )
        logger.info(
            "variation_rejected", extra={"variation_id": str(variation_id), "reason": reason}
        )
        return self._record(actor, role, row, Operation.VARIATION_REJECT, before, reason=reason)

    def apply(
        self, actor: Actor, variation_id: UUID, expected_version: int | None = None
    ) -> Variation:
        row, role = self._load(actor, variation_id, Operation.VARIATION_APPLY)
        before = row.to_dto()
        project = self._store.get(ProjectModel, row.project_id)
        amendments: list[tuple[MilestoneModel, BaselineTriple, BaselineTriple]] = []

        def _mutate(current: VariationModel) -> None:
            target = self._transition(current, "apply", "apply")
            kind = VariationType(current.variation_type)
            now = self._clock.now()

            # Revise every baseline before writing any of them.
            for impact in current.impact_entries():
                milestone = self._store.reload(MilestoneModel, impact.milestone_id)
                previous = milestone.baseline_triple()
                amendments.append(
                    (milestone, previous, revise_baseline(previous, kind, impact, self._mode))
                )

            for milestone, previous, revised in amendments:
                milestone.history.append(
                    BaselineVersionModel(
                        version=milestone.baseline_version,
                        baseline_start=previous.start,
                        baseline_end=previous.end,
                        baseline_billable=previous.billable,
                        variation_id=current.id,
                        superseded_at=now,
                        superseded_by_id=actor.actor_id,
                    )
                )
                milestone.baseline_start = revised.start
                milestone.baseline_end = revised.end
                milestone.baseline_billable = revised.billable
                milestone.baseline_version += 1
                # Forecast restarts from the new baseline; billable is the new contract value
                milestone.forecast_start = revised.start
                milestone.forecast_end = revised.end
                milestone.forecast_billable = revised.billable
                milestone.billable = revised.billable
                milestone.updated_by_id = actor.actor_id

            current.status = target
            current.applied_at = now
            current.certificate_number = f"{project.reference}-{current.reference}-{self._suffix}"
            current.certificate_data = to_plain({
                "certificate_number": current.certificate_number,
                "project_reference": project.reference,
                "variation_reference": current.reference,
                "title": current.title,
                "variation_type": kind.value,
                "reason": current.reason,
                "total_cost_impact": current.total_cost_impact,
                "total_days_impact": current.total_days_impact,
                "applied_at": now,
                "signatures": {
                    "supplier": current.supplier_signature,
                    "customer": current.customer_signature,
                },
                "milestones": [
                    {
                        "reference": milestone.reference,
                        "previous_baseline": _baseline_dict(previous),
                        "revised_baseline": _baseline_dict(revised),
                        "baseline_version": milestone.baseline_version,
                    }
                    for milestone, previous, revised in amendments
                ],
            })
            current.updated_by_id = actor.actor_id

        with amending_baseline(self._store.session):
            row = self._store.conditional_update(
                VariationModel, variation_id, _mutate, expected=self._expect(expected_version)
            )

        for milestone, previous, revised in amendments:
            self._recorder.record(
                actor, role, "Milestone", milestone.id, "baseline.amend",
                before=_baseline_dict(previous),
                after=_baseline_dict(revised),
                variation_id=variation_id,
                baseline_version=milestone.baseline_version,
            )
        logger.info(
            "variation_applied",
            extra={
                "variation_id": str(variation_id),
                "reference": row.reference,
                "certificate_number": row.certificate_number,
                "milestones_amended": len(amendments),
            },
        )
        return self._record(actor, role, row, Operation.VARIATION_APPLY, before)

    def delete(self, actor: Actor, variation_id: UUID) -> Variation:
        row, role = self._load(actor, variation_id, Operation.VARIATION_DELETE)
        row = self._store.reload(VariationModel, variation_id)
        before = row.to_dto()
        if not before.is_deletable:
            raise ImmutableFieldError(
                entity_type=ENTITY,
                entity_id=variation_id,
                field=None,
                reason="only draft, submitted or rejected variations can be deleted",
                current_state=row.status,
            )
        self._store.delete(row)
        self._recorder.record(
            actor, role, ENTITY, variation_id, Operation.VARIATION_DELETE.value, before=before
        )
        logger.info(
            "variation_deleted",
            extra={"variation_id": str(variation_id), "reference": before.reference},
        )
        return before
