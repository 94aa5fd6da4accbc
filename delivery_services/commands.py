"""
delivery_services.commands -- the transport-agnostic command surface.

Responsibility:
    One method per engine command.  Each command runs in its own session
    and transaction: the kernel services flush, this layer commits on
    success and rolls back and re-raises on any error.  After commit the
    audit records the command produced are handed to the audit sink.

Architecture position:
    Services -- the outermost layer.  Any transport (HTTP handler, CLI,
    job) calls these methods with an ``Actor`` and plain values.

Invariants enforced:
    - All-or-nothing: a command either commits every write it made,
      including the milestone recompute it triggered, or none.
    - Audit records reach the sink only after commit; a rolled-back
      command emits nothing.
    - A sink failure never undoes the business commit: it becomes an
      ``AuditWarning`` on the result and a WARNING log.

Failure modes:
    - Every ``DeliveryKernelError`` subclass propagates unchanged.

Usage:
    service = DeliveryCommandService(get_session_factory())
    result = service.set_deliverable_progress(actor, deliverable_id, 40)
    result.entity.status       # DeliverableStatus.IN_PROGRESS
    result.warnings            # () unless the audit sink failed
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from delivery_config import get_active_config
from delivery_config.schema import EngineConfig
from delivery_kernel.domain.certificate import Certificate
from delivery_kernel.domain.clock import Clock, SystemClock
from delivery_kernel.domain.deliverable import Deliverable, DeliverableLink
from delivery_kernel.domain.milestone import Milestone
from delivery_kernel.domain.roles import Actor
from delivery_kernel.domain.signatures import SignatureSide
from delivery_kernel.domain.variation import MilestoneImpact, Variation, VariationType
from delivery_kernel.exceptions import DeliveryKernelError, ValidationError
from delivery_kernel.logging_config import LogContext, get_logger
from delivery_kernel.services.audit_records import AuditRecord, AuditSink
from delivery_kernel.services.permission_gate import RoleResolver
from delivery_services.audit_dispatch import LedgerAuditSink
from delivery_services.orchestrator import DeliveryOrchestrator

logger = get_logger("services.commands")

T = TypeVar("T")


@dataclass(frozen=True)
class AuditWarning:
    """An audit record the sink failed to accept after the commit stood."""

    operation: str
    entity_type: str
    entity_id: UUID
    error: str


@dataclass(frozen=True)
class CommandResult(Generic[T]):
    entity: T
    warnings: tuple[AuditWarning, ...] = ()

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


def _side(value: SignatureSide | str) -> SignatureSide:
    try:
        return SignatureSide(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown signature side {value!r}", field="side") from exc


class DeliveryCommandService:
    """
    Executes engine commands, one transaction each.

    ``role_resolver`` defaults to the project membership table;
    ``audit_sink`` defaults to the hash-chained ledger in the same
    database; ``config`` defaults to ``get_active_config()``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: EngineConfig | None = None,
        role_resolver: RoleResolver | None = None,
        audit_sink: AuditSink | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._config = config or get_active_config()
        self._role_resolver = role_resolver
        self._audit_sink = audit_sink or LedgerAuditSink(session_factory)
        self._clock = clock or SystemClock()

    @property
    def config(self) -> EngineConfig:
        return self._config

    # Transaction and audit plumbing

    def _run(
        self,
        command: str,
        actor: Actor,
        target_id: UUID | None,
        action: Callable[[DeliveryOrchestrator], T],
    ) -> CommandResult[T]:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor.actor_id),
            entity_id=str(target_id) if target_id is not None else None,
            command=command,
        ):
            session = self._session_factory()
            try:
                orchestrator = DeliveryOrchestrator(
                    session, self._config, self._role_resolver, self._clock
                )
                entity = action(orchestrator)
                session.commit()
            except DeliveryKernelError as exc:
                session.rollback()
                logger.info(
                    "command_rejected",
                    extra={"error_code": exc.code, "error_message": str(exc)},
                )
                raise
            except Exception:
                session.rollback()
                logger.error("command_failed", exc_info=True)
                raise
            finally:
                session.close()

            records = orchestrator.recorder.records
            warnings = self._dispatch(records)
            logger.info(
                "command_completed",
                extra={"audit_records": len(records), "audit_warnings": len(warnings)},
            )
            return CommandResult(entity=entity, warnings=warnings)

    def _dispatch(self, records: Iterable[AuditRecord]) -> tuple[AuditWarning, ...]:
        warnings: list[AuditWarning] = []
        for record in records:
            try:
                self._audit_sink.emit(record)
            except Exception as exc:
                logger.warning(
                    "audit_sink_failed",
                    extra={
                        "operation": record.operation,
                        "entity_type": record.entity_type,
                        "audited_entity_id": str(record.entity_id),
                        "error": repr(exc),
                    },
                    exc_info=True,
                )
                warnings.append(
                    AuditWarning(
                        operation=record.operation,
                        entity_type=record.entity_type,
                        entity_id=record.entity_id,
                        error=repr(exc),
                    )
                )
        return tuple(warnings)

    # Milestones

    def create_milestone(
        self, actor: Actor, project_id: UUID, reference: str, name: str, **fields: Any
    ) -> CommandResult[Milestone]:
        return self._run(
            "create_milestone", actor, project_id,
            lambda o: o.milestones.create(actor, project_id, reference, name, **fields),
        )

    def update_milestone(
        self,
        actor: Actor,
        milestone_id: UUID,
        changes: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> CommandResult[Milestone]:
        return self._run(
            "update_milestone", actor, milestone_id,
            lambda o: o.milestones.update(actor, milestone_id, changes, expected_version),
        )

    def delete_milestone(self, actor: Actor, milestone_id: UUID) -> CommandResult[Milestone]:
        return self._run(
            "delete_milestone", actor, milestone_id,
            lambda o: o.milestones.delete(actor, milestone_id),
        )

    # Deliverables

    def create_deliverable(
        self,
        actor: Actor,
        milestone_id: UUID,
        reference: str,
        name: str,
        description: str = "",
        links: Iterable[DeliverableLink] = (),
    ) -> CommandResult[Deliverable]:
        return self._run(
            "create_deliverable", actor, milestone_id,
            lambda o: o.deliverables.create(
                actor, milestone_id, reference, name, description, tuple(links)
            ),
        )

    def update_deliverable(
        self,
        actor: Actor,
        deliverable_id: UUID,
        changes: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> CommandResult[Deliverable]:
        return self._run(
            "update_deliverable", actor, deliverable_id,
            lambda o: o.deliverables.update(actor, deliverable_id, changes, expected_version),
        )

    def remove_deliverable(self, actor: Actor, deliverable_id: UUID) -> CommandResult[Deliverable]:
        return self._run(
            "remove_deliverable", actor, deliverable_id,
            lambda o: o.deliverables.remove(actor, deliverable_id),
        )

    def set_deliverable_progress(
        self,
        actor: Actor,
        deliverable_id: UUID,
        value: int,
        expected_version: int | None = None,
    ) -> CommandResult[Deliverable]:
        return self._run(
            "set_deliverable_progress", actor, deliverable_id,
            lambda o: o.deliverables.set_progress(actor, deliverable_id, value, expected_version),
        )

    def submit_deliverable_for_review(
        self, actor: Actor, deliverable_id: UUID, expected_version: int | None = None
    ) -> CommandResult[Deliverable]:
        return self._run(
            "submit_deliverable_for_review", actor, deliverable_id,
            lambda o: o.deliverables.submit_for_review(actor, deliverable_id, expected_version),
        )

    def accept_deliverable_review(
        self, actor: Actor, deliverable_id: UUID, expected_version: int | None = None
    ) -> CommandResult[Deliverable]:
        return self._run(
            "accept_deliverable_review", actor, deliverable_id,
            lambda o: o.deliverables.accept_review(actor, deliverable_id, expected_version),
        )

    def return_deliverable_for_more_work(
        self,
        actor: Actor,
        deliverable_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> CommandResult[Deliverable]:
        return self._run(
            "return_deliverable_for_more_work", actor, deliverable_id,
            lambda o: o.deliverables.return_for_more_work(
                actor, deliverable_id, reason, expected_version
            ),
        )

    def sign_deliverable_delivery(
        self,
        actor: Actor,
        deliverable_id: UUID,
        side: SignatureSide | str,
        expected_version: int | None = None,
    ) -> CommandResult[Deliverable]:
        signing_side = _side(side)
        return self._run(
            "sign_deliverable_delivery", actor, deliverable_id,
            lambda o: o.deliverables.sign_delivery(
                actor, deliverable_id, signing_side, expected_version
            ),
        )

    def reset_deliverable_sign_off(
        self,
        actor: Actor,
        deliverable_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> CommandResult[Deliverable]:
        return self._run(
            "reset_deliverable_sign_off", actor, deliverable_id,
            lambda o: o.deliverables.reset_sign_off(
                actor, deliverable_id, reason, expected_version
            ),
        )

    # Baseline

    def sign_baseline(
        self,
        actor: Actor,
        milestone_id: UUID,
        side: SignatureSide | str,
        expected_version: int | None = None,
    ) -> CommandResult[Milestone]:
        signing_side = _side(side)
        return self._run(
            "sign_baseline", actor, milestone_id,
            lambda o: o.baselines.sign(actor, milestone_id, signing_side, expected_version),
        )

    def reset_baseline(
        self,
        actor: Actor,
        milestone_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> CommandResult[Milestone]:
        return self._run(
            "reset_baseline", actor, milestone_id,
            lambda o: o.baselines.reset(actor, milestone_id, reason, expected_version),
        )

    # Certificates

    def generate_certificate(self, actor: Actor, milestone_id: UUID) -> CommandResult[Certificate]:
        return self._run(
            "generate_certificate", actor, milestone_id,
            lambda o: o.certificates.generate(actor, milestone_id),
        )

    def sign_certificate(
        self,
        actor: Actor,
        certificate_id: UUID,
        side: SignatureSide | str,
        expected_version: int | None = None,
    ) -> CommandResult[Certificate]:
        signing_side = _side(side)
        return self._run(
            "sign_certificate", actor, certificate_id,
            lambda o: o.certificates.sign(actor, certificate_id, signing_side, expected_version),
        )

    # Variations

    def create_variation(
        self,
        actor: Actor,
        project_id: UUID,
        title: str,
        variation_type: VariationType | str,
        description: str = "",
        reason: str = "",
        impacts: Iterable[MilestoneImpact] = (),
    ) -> CommandResult[Variation]:
        entries = tuple(impacts)
        return self._run(
            "create_variation", actor, project_id,
            lambda o: o.variations.create(
                actor, project_id, title, variation_type, description, reason, entries
            ),
        )

    def edit_variation(
        self,
        actor: Actor,
        variation_id: UUID,
        changes: Mapping[str, Any] | None = None,
        impacts: Iterable[MilestoneImpact] | None = None,
        expected_version: int | None = None,
    ) -> CommandResult[Variation]:
        entries = tuple(impacts) if impacts is not None else None
        return self._run(
            "edit_variation", actor, variation_id,
            lambda o: o.variations.edit(actor, variation_id, changes, entries, expected_version),
        )

    def submit_variation(
        self, actor: Actor, variation_id: UUID, expected_version: int | None = None
    ) -> CommandResult[Variation]:
        return self._run(
            "submit_variation", actor, variation_id,
            lambda o: o.variations.submit(actor, variation_id, expected_version),
        )

    def sign_variation(
        self,
        actor: Actor,
        variation_id: UUID,
        side: SignatureSide | str,
        expected_version: int | None = None,
    ) -> CommandResult[Variation]:
        signing_side = _side(side)
        return self._run(
            "sign_variation", actor, variation_id,
            lambda o: o.variations.sign(actor, variation_id, signing_side, expected_version),
        )

    def reject_variation(
        self,
        actor: Actor,
        variation_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> CommandResult[Variation]:
        return self._run(
            "reject_variation", actor, variation_id,
            lambda o: o.variations.reject(actor, variation_id, reason, expected_version),
        )

    def apply_variation(
        self, actor: Actor, variation_id: UUID, expected_version: int | None = None
    ) -> CommandResult[Variation]:
        return self._run(
            "apply_variation", actor, variation_id,
            lambda o: o.variations.apply(actor, variation_id, expected_version),
        )

    def delete_variation(self, actor: Actor, variation_id: UUID) -> CommandResult[Variation]:
        return self._run(
            "delete_variation", actor, variation_id,
            lambda o: o.variations.delete(actor, variation_id),
        )
