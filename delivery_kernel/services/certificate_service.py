"""
CertificateService -- acceptance certificate generation and sign-off.

Responsibility:
    Generates the single acceptance certificate of a milestone once every
    deliverable is delivered, snapshotting the deliverable set and the
    billable value, then collects supplier and customer signatures in
    either order.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - At most one certificate per milestone.
    - Generation requires a non-empty, fully delivered deliverable set.
    - ``payment_value`` and the deliverable snapshot are fixed at
      generation.
    - A filled slot is never signed again; a signed certificate is
      immutable (service check plus ORM listener).
"""

from uuid import UUID

from delivery_kernel.domain.certificate import (
    Certificate,
    CertificateStatus,
    DeliverableSnapshotLine,
    certificate_number,
    certificate_status_for,
    generation_blocker,
)
from delivery_kernel.domain.clock import Clock
from delivery_kernel.domain.deliverable import DeliverableStatus
from delivery_kernel.domain.permissions import Operation, signing_operation
from delivery_kernel.domain.roles import Actor
from delivery_kernel.domain.signatures import SignatureSide
from delivery_kernel.logging_config import get_logger
from delivery_kernel.models.certificate import CertificateModel
from delivery_kernel.models.milestone import MilestoneModel
from delivery_kernel.models.project import ProjectModel
from delivery_kernel.services.audit_records import AuditRecorder
from delivery_kernel.services.base import LifecycleService
from delivery_kernel.services.entity_store import EntityStore
from delivery_kernel.services.permission_gate import PermissionGate

logger = get_logger("services.certificate")

ENTITY = "Certificate"


class CertificateService(LifecycleService):
    def __init__(
        self,
        store: EntityStore,
        gate: PermissionGate,
        recorder: AuditRecorder,
        clock: Clock | None = None,
        number_suffix: str = "CERT",
    ):
        super().__init__(store, gate, recorder, clock)
        self._suffix = number_suffix

    def generate(self, actor: Actor, milestone_id: UUID) -> Certificate:
        milestone = self._store.get(MilestoneModel, milestone_id)
        role = self._gate.authorize(actor, milestone.project_id, Operation.CERTIFICATE_GENERATE)

        existing = self._store.certificate_for(milestone_id)
        if existing is not None:
            raise self._illegal(
                ENTITY, milestone_id, existing.status, "generate certificate for",
                f"milestone already has certificate {existing.certificate_number}",
            )
        deliverables = self._store.deliverables_for(milestone_id)
        blocker = generation_blocker(DeliverableStatus(d.status) for d in deliverables)
        if blocker is not None:
            raise self._illegal(
                "Milestone", milestone_id, milestone.status, "generate certificate for", blocker,
            )

        project = self._store.get(ProjectModel, milestone.project_id)
        snapshot = sorted(
            (
                DeliverableSnapshotLine(
                    reference=d.reference, name=d.name, status=DeliverableStatus(d.status)
                )
                for d in deliverables
            ),
            key=lambda line: line.reference,
        )
        row = self._store.create(
            CertificateModel,
            milestone_id=milestone_id,
            certificate_number=certificate_number(
                project.reference, milestone.reference, self._suffix
            ),
            payment_value=milestone.billable,
            deliverable_snapshot=[line.to_dict() for line in snapshot],
            status=CertificateStatus.DRAFT.value,
            created_by_id=actor.actor_id,
        )

        after = row.to_dto()
        self._recorder.record(
            actor, role, ENTITY, row.id, Operation.CERTIFICATE_GENERATE.value,
            after=after, milestone_id=milestone_id,
        )
        logger.info(
            "certificate_generated",
            extra={
                "certificate_id": str(row.id),
                "certificate_number": row.certificate_number,
                "milestone_id": str(milestone_id),
                "payment_value": str(row.payment_value),
            },
        )
        return after

    def sign(
        self,
        actor: Actor,
        certificate_id: UUID,
        side: SignatureSide,
        expected_version: int | None = None,
    ) -> Certificate:
        operation = signing_operation("certificate", side)
        row = self._store.get(CertificateModel, certificate_id)
        role = self._gate.authorize(
            actor, self._project_of_milestone(row.milestone_id), operation
        )
        before = row.to_dto()

        def _mutate(current: CertificateModel) -> None:
            pair = current.signature_pair()
            if current.status == CertificateStatus.SIGNED.value or pair.is_filled(side):
                raise self._illegal(
                    ENTITY, certificate_id, current.status, f"sign certificate ({side.value})",
                    f"{side.value} has already signed",
                )
            pair = pair.with_signature(side, self._signature(actor, role))
            current.store_signature_pair(pair)
            current.status = certificate_status_for(pair).value
            if pair.both_signed:
                current.signed_at = self._clock.now()
            current.updated_by_id = actor.actor_id

        expected = {"row_version": expected_version} if expected_version is not None else None
        row = self._store.conditional_update(
            CertificateModel, certificate_id, _mutate, expected=expected
        )

        after = row.to_dto()
        self._recorder.record(
            actor, role, ENTITY, certificate_id, operation.value,
            before=before, after=after, side=side.value,
        )
        logger.info(
            "certificate_signed",
            extra={
                "certificate_id": str(certificate_id),
                "side": side.value,
                "status": row.status,
            },
        )
        return after

    def get_for_milestone(self, actor: Actor, milestone_id: UUID) -> Certificate | None:
        milestone = self._store.get(MilestoneModel, milestone_id)
        self._gate.authorize(actor, milestone.project_id, Operation.PROJECT_VIEW)
        row = self._store.certificate_for(milestone_id)
        return row.to_dto() if row is not None else None
