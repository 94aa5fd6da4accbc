"""
MilestoneService -- milestone create/update/delete and baseline history.

Responsibility:
    Maintains the descriptive, schedule and financial fields of a
    milestone.  Derived ``status``/``progress`` belong to
    MilestoneAggregator; baseline sign-off belongs to BaselineService;
    locked baseline fields change only through an applied variation.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - ``status``/``progress`` are rejected as input (ValidationError).
    - Baseline fields are frozen while the baseline is locked or carries
      any signature; forecast fields are frozen once the milestone is
      completed (ImmutableFieldError).
    - Start never after end for the baseline and forecast windows;
      billable figures are never negative.
    - A milestone with a signed certificate, or referenced by any
      variation, is never deleted.

Failure modes:
    - ValidationError, PermissionDeniedError, ImmutableFieldError,
      ConflictError, NotFoundError.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from delivery_kernel.domain.certificate import CertificateStatus
from delivery_kernel.domain.milestone import (
    BASELINE_FIELDS,
    DERIVED_FIELDS,
    EDITABLE_FIELDS,
    FORECAST_FIELDS,
    BaselineSnapshot,
    Milestone,
    MilestoneStatus,
)
from delivery_kernel.domain.permissions import Operation
from delivery_kernel.domain.roles import Actor
from delivery_kernel.exceptions import ImmutableFieldError, ValidationError
from delivery_kernel.logging_config import get_logger
from delivery_kernel.models.milestone import MilestoneModel
from delivery_kernel.models.project import ProjectModel
from delivery_kernel.services.base import LifecycleService

logger = get_logger("services.milestone")

ENTITY = "Milestone"

_DATE_FIELDS = frozenset(
    {"baseline_start", "baseline_end", "forecast_start", "forecast_end", "actual_start"}
)
_MONEY_FIELDS = frozenset({"baseline_billable", "forecast_billable", "billable"})
_TEXT_FIELDS = frozenset({"reference", "name"})
_WINDOWS = (("baseline_start", "baseline_end"), ("forecast_start", "forecast_end"))


def _check_field_names(changes: Mapping[str, Any], entity_id: UUID | None) -> None:
    for key in changes:
        if key in DERIVED_FIELDS:
            raise ValidationError(
                f"'{key}' is derived from the deliverables and cannot be written",
                entity_type=ENTITY, entity_id=entity_id, field=key,
            )
        if key not in EDITABLE_FIELDS:
            raise ValidationError(
                f"Unknown or read-only milestone field '{key}'",
                entity_type=ENTITY, entity_id=entity_id, field=key,
            )


def _coerce(key: str, value: Any, entity_id: UUID | None) -> Any:
    if key in _DATE_FIELDS:
        if value is not None and (not isinstance(value, date) or hasattr(value, "hour")):
            raise ValidationError(
                f"{key} must be a date or None, got {value!r}",
                entity_type=ENTITY, entity_id=entity_id, field=key,
            )
        return value
    if key in _MONEY_FIELDS:
        if isinstance(value, bool) or not isinstance(value, (Decimal, int)):
            raise ValidationError(
                f"{key} must be a Decimal, got {value!r}",
                entity_type=ENTITY, entity_id=entity_id, field=key,
            )
        value = Decimal(value)
        if value < 0:
            raise ValidationError(
                f"{key} cannot be negative", entity_type=ENTITY, entity_id=entity_id, field=key,
            )
        return value
    if key in _TEXT_FIELDS:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(
                f"{key} must be a non-empty string",
                entity_type=ENTITY, entity_id=entity_id, field=key,
            )
        return value.strip()
    return value or ""


def _check_windows(row: MilestoneModel) -> None:
    for start_key, end_key in _WINDOWS:
        start, end = getattr(row, start_key), getattr(row, end_key)
        if start is not None and end is not None and end < start:
            raise ValidationError(
                f"{end_key} ({end}) is before {start_key} ({start})",
                entity_type=ENTITY, entity_id=row.id, field=end_key,
            )


class MilestoneService(LifecycleService):
    def _check_reference_free(self, project_id: UUID, reference: str, own_id: UUID | None = None):
        for other in self._store.milestones_for(project_id):
            if other.reference == reference and other.id != own_id:
                raise ValidationError(
                    f"Milestone reference {reference!r} already used on this project",
                    entity_type=ENTITY, entity_id=other.id, field="reference",
                )

    def get(self, actor: Actor, milestone_id: UUID) -> Milestone:
        row = self._store.get(MilestoneModel, milestone_id)
        self._gate.authorize(actor, row.project_id, Operation.PROJECT_VIEW)
        return row.to_dto()

    def create(
        self,
        actor: Actor,
        project_id: UUID,
        reference: str,
        name: str,
        **fields: Any,
    ) -> Milestone:
        self._store.get(ProjectModel, project_id)
        role = self._gate.authorize(actor, project_id, Operation.MILESTONE_CREATE)

        values = {"reference": reference, "name": name, **fields}
        _check_field_names(values, None)
        values = {key: _coerce(key, value, None) for key, value in values.items()}
        self._check_reference_free(project_id, values["reference"])

        row = MilestoneModel(
            project_id=project_id,
            status=MilestoneStatus.NOT_STARTED.value,
            progress=0,
            created_by_id=actor.actor_id,
            **values,
        )
        _check_windows(row)
        self._store.session.add(row)
        self._store.flush(row)

        after = row.to_dto()
        self._recorder.record(
            actor, role, ENTITY, row.id, Operation.MILESTONE_CREATE.value, after=after
        )
        logger.info(
            "milestone_created",
            extra={"milestone_id": str(row.id), "project_id": str(project_id)},
        )
        return after

    def update(
        self,
        actor: Actor,
        milestone_id: UUID,
        changes: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> Milestone:
        row = self._store.get(MilestoneModel, milestone_id)
        role = self._gate.authorize(actor, row.project_id, Operation.MILESTONE_UPDATE)
        _check_field_names(changes, milestone_id)
        values = {key: _coerce(key, value, milestone_id) for key, value in changes.items()}
        before = row.to_dto()
        if "reference" in values:
            self._check_reference_free(row.project_id, values["reference"], milestone_id)

        def _mutate(current: MilestoneModel) -> None:
            baseline_keys = sorted(BASELINE_FIELDS & values.keys())
            if baseline_keys and (current.baseline_locked or current.signature_pair().any_signed):
                raise ImmutableFieldError(
                    entity_type=ENTITY,
                    entity_id=milestone_id,
                    field=baseline_keys[0],
                    reason="baseline is committed or under signature; "
                           "use a variation or reset the baseline",
                    current_state=current.to_dto().baseline_status.value,
                )
            forecast_keys = sorted(FORECAST_FIELDS & values.keys())
            if forecast_keys and current.status == MilestoneStatus.COMPLETED.value:
                raise ImmutableFieldError(
                    entity_type=ENTITY,
                    entity_id=milestone_id,
                    field=forecast_keys[0],
                    reason="forecast is frozen once the milestone is completed",
                    current_state=current.status,
                )
            for key, value in values.items():
                setattr(current, key, value)
            _check_windows(current)
            current.updated_by_id = actor.actor_id

        expected = {"row_version": expected_version} if expected_version is not None else None
        row = self._store.conditional_update(MilestoneModel, milestone_id, _mutate, expected=expected)

        after = row.to_dto()
        self._recorder.record(
            actor, role, ENTITY, milestone_id, Operation.MILESTONE_UPDATE.value,
            before=before, after=after, fields=sorted(values),
        )
        logger.info(
            "milestone_updated",
            extra={"milestone_id": str(milestone_id), "fields": sorted(values)},
        )
        return after

    def delete(self, actor: Actor, milestone_id: UUID) -> Milestone:
        row = self._store.get(MilestoneModel, milestone_id)
        role = self._gate.authorize(actor, row.project_id, Operation.MILESTONE_DELETE)
        row = self._store.reload(MilestoneModel, milestone_id)
        before = row.to_dto()

        certificate = self._store.certificate_for(milestone_id)
        if certificate is not None and certificate.status == CertificateStatus.SIGNED.value:
            raise ImmutableFieldError(
                entity_type=ENTITY,
                entity_id=milestone_id,
                field=None,
                reason=f"certificate {certificate.certificate_number} is signed",
                current_state=row.status,
            )
        variations = self._store.variations_impacting(milestone_id)
        if variations:
            raise ImmutableFieldError(
                entity_type=ENTITY,
                entity_id=milestone_id,
                field=None,
                reason="referenced by variation(s) "
                       + ", ".join(v.reference for v in variations),
                current_state=row.status,
            )

        removed = self._store.deliverables_for(milestone_id)
        for deliverable in removed:
            self._store.delete(deliverable)
        if certificate is not None:
            self._store.delete(certificate)
        self._store.delete(row)

        self._recorder.record(
            actor, role, ENTITY, milestone_id, Operation.MILESTONE_DELETE.value,
            before=before,
            deliverables_removed=[d.reference for d in removed],
            certificate_removed=certificate.certificate_number if certificate else None,
        )
        logger.warning(
            "milestone_deleted",
            extra={
                "milestone_id": str(milestone_id),
                "deliverables_removed": len(removed),
            },
        )
        return before

    def history(self, actor: Actor, milestone_id: UUID) -> list[BaselineSnapshot]:
        """Superseded baselines, oldest first."""
        row = self._store.get(MilestoneModel, milestone_id)
        self._gate.authorize(actor, row.project_id, Operation.PROJECT_VIEW)
        return [snapshot.to_dto() for snapshot in row.history]
