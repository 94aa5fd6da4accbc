"""
delivery_services.reporting -- read-side summaries.

Responsibility:
    Assembles the views a delivery dashboard needs from persisted rows:
    a milestone with its deliverables, certificate and baseline history;
    billing readiness per milestone; a variation summary per project; and
    the three-tier financial picture of a milestone computed by
    ``delivery_engines.financials``.

Architecture position:
    Services -- read only.  Opens its own session per call, never writes,
    and gates every call on the ``project.view`` capability.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from delivery_config import get_active_config
from delivery_config.schema import EngineConfig
from delivery_engines.financials import (
    EffortEntry,
    FinancialSummary,
    MarginResult,
    actual_from_effort,
    calculate_margin,
    summarize_financials,
)
from delivery_kernel.domain.certificate import Certificate, CertificateStatus
from delivery_kernel.domain.deliverable import Deliverable
from delivery_kernel.domain.milestone import BaselineSnapshot, Milestone, MilestoneStatus
from delivery_kernel.domain.permissions import Operation
from delivery_kernel.domain.roles import Actor
from delivery_kernel.domain.variation import Variation, VariationStatus
from delivery_kernel.models.milestone import MilestoneModel
from delivery_kernel.models.project import ProjectModel
from delivery_kernel.models.variation import VariationModel
from delivery_kernel.services.entity_store import EntityStore
from delivery_kernel.services.permission_gate import (
    MembershipRoleResolver,
    PermissionGate,
    RoleResolver,
)

_V = VariationStatus

# Reporting buckets for variation status
VARIATION_BUCKETS: dict[VariationStatus, str] = {
    _V.DRAFT: "draft",
    _V.SUBMITTED: "pending",
    _V.AWAITING_SUPPLIER_SIGNATURE: "pending",
    _V.AWAITING_CUSTOMER_SIGNATURE: "pending",
    _V.APPROVED: "approved",
    _V.APPLIED: "applied",
    _V.REJECTED: "rejected",
}


@dataclass(frozen=True)
class MilestoneSummary:
    milestone: Milestone
    deliverables: tuple[Deliverable, ...]
    certificate: Certificate | None
    baseline_history: tuple[BaselineSnapshot, ...]

    @property
    def ready_to_bill(self) -> bool:
        return self.certificate is not None and self.certificate.ready_to_bill


@dataclass(frozen=True)
class BillingReadiness:
    """Whether one milestone can be invoiced, and for how much."""

    milestone_id: UUID
    reference: str
    milestone_status: MilestoneStatus
    billable: Decimal
    certificate_number: str | None
    certificate_status: CertificateStatus | None
    payment_value: Decimal | None

    @property
    def ready_to_bill(self) -> bool:
        return self.certificate_status is CertificateStatus.SIGNED


@dataclass(frozen=True)
class VariationSummary:
    project_id: UUID
    counts: dict[str, int] = field(default_factory=dict)
    applied_cost_impact: Decimal = Decimal("0")
    applied_days_impact: int = 0

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass(frozen=True)
class MilestoneFinancials:
    milestone_id: UUID
    currency: str
    summary: FinancialSummary
    margin: MarginResult


class DeliveryReports:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: EngineConfig | None = None,
        role_resolver: RoleResolver | None = None,
    ):
        self._session_factory = session_factory
        self._config = config or get_active_config()
        self._role_resolver = role_resolver

    @contextmanager
    def _reading(self) -> Iterator[tuple[EntityStore, PermissionGate]]:
        session = self._session_factory()
        try:
            resolver = self._role_resolver or MembershipRoleResolver(session)
            yield EntityStore(session), PermissionGate(resolver)
        finally:
            session.rollback()
            session.close()

    def milestone_summary(self, actor: Actor, milestone_id: UUID) -> MilestoneSummary:
        with self._reading() as (store, gate):
            row = store.get(MilestoneModel, milestone_id)
            gate.authorize(actor, row.project_id, Operation.PROJECT_VIEW)
            certificate = store.certificate_for(milestone_id)
            return MilestoneSummary(
                milestone=row.to_dto(),
                deliverables=tuple(d.to_dto() for d in store.deliverables_for(milestone_id)),
                certificate=certificate.to_dto() if certificate is not None else None,
                baseline_history=tuple(h.to_dto() for h in row.history),
            )

    def billing_readiness(self, actor: Actor, project_id: UUID) -> tuple[BillingReadiness, ...]:
        """One line per milestone of the project, ordered by reference."""
        with self._reading() as (store, gate):
            store.get(ProjectModel, project_id)
            gate.authorize(actor, project_id, Operation.PROJECT_VIEW)
            lines = []
            for milestone in store.milestones_for(project_id):
                certificate = store.certificate_for(milestone.id)
                lines.append(
                    BillingReadiness(
                        milestone_id=milestone.id,
                        reference=milestone.reference,
                        milestone_status=MilestoneStatus(milestone.status),
                        billable=milestone.billable,
                        certificate_number=certificate.certificate_number if certificate else None,
                        certificate_status=(
                            CertificateStatus(certificate.status) if certificate else None
                        ),
                        payment_value=certificate.payment_value if certificate else None,
                    )
                )
            return tuple(lines)

    def get_variation(self, actor: Actor, variation_id: UUID) -> Variation:
        with self._reading() as (store, gate):
            row = store.get(VariationModel, variation_id)
            gate.authorize(actor, row.project_id, Operation.PROJECT_VIEW)
            return row.to_dto()

    def variation_summary(self, actor: Actor, project_id: UUID) -> VariationSummary:
        with self._reading() as (store, gate):
            store.get(ProjectModel, project_id)
            gate.authorize(actor, project_id, Operation.PROJECT_VIEW)
            variations = store.variations_for(project_id)
            counts = Counter(VARIATION_BUCKETS[VariationStatus(v.status)] for v in variations)
            applied = [v for v in variations if v.status == VariationStatus.APPLIED.value]
            return VariationSummary(
                project_id=project_id,
                counts=dict(counts),
                applied_cost_impact=sum(
                    (v.total_cost_impact for v in applied), Decimal("0")
                ),
                applied_days_impact=sum(v.total_days_impact for v in applied),
            )

    def milestone_financials(
        self,
        actor: Actor,
        milestone_id: UUID,
        effort: Iterable[EffortEntry] = (),
        expenses: Iterable[Decimal] = (),
    ) -> MilestoneFinancials:
        """
        Baseline, forecast and actual tiers of a milestone.

        Actual is the value of ``effort`` plus ``expenses``; margin compares
        the milestone's billable value against that actual cost.
        """
        with self._reading() as (store, gate):
            row = store.get(MilestoneModel, milestone_id)
            gate.authorize(actor, row.project_id, Operation.PROJECT_VIEW)
            project = store.get(ProjectModel, row.project_id)
            actual = actual_from_effort(
                effort,
                expenses,
                hours_per_day=self._config.hours_per_day,
                quantum=self._config.money_quantum,
            )
            return MilestoneFinancials(
                milestone_id=milestone_id,
                currency=project.currency or self._config.currency,
                summary=summarize_financials(
                    baseline=row.baseline_billable,
                    forecast=row.forecast_billable,
                    actual=actual,
                ),
                margin=calculate_margin(sell=row.billable, cost=actual),
            )
