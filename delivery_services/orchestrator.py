"""
delivery_services.orchestrator -- per-session DI container for kernel services.

Responsibility:
    Creates every kernel service exactly once for one session and wires
    them together.  No kernel service creates another internally.

Architecture position:
    Services -- the only place kernel services are constructed and
    composed.  Translates ``EngineConfig`` values into constructor
    arguments through ``delivery_config.bridges`` so the kernel never
    sees the config package.

Invariants enforced:
    - One EntityStore, one PermissionGate and one AuditRecorder per
      session; every service shares them, so audit records from a command
      and from the recompute it triggers land in the same recorder.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from delivery_config.bridges import day_impact_mode
from delivery_config.schema import EngineConfig
from delivery_kernel.domain.clock import Clock, SystemClock
from delivery_kernel.services.audit_records import AuditRecorder
from delivery_kernel.services.baseline_service import BaselineService
from delivery_kernel.services.certificate_service import CertificateService
from delivery_kernel.services.deliverable_service import DeliverableService
from delivery_kernel.services.entity_store import EntityStore
from delivery_kernel.services.milestone_aggregator import MilestoneAggregator
from delivery_kernel.services.milestone_service import MilestoneService
from delivery_kernel.services.permission_gate import (
    MembershipRoleResolver,
    PermissionGate,
    RoleResolver,
)
from delivery_kernel.services.sequence_service import SequenceService
from delivery_kernel.services.variation_service import VariationService


class DeliveryOrchestrator:
    """
    Kernel services bound to one session.

    Usage:
        orchestrator = DeliveryOrchestrator(session, config, clock=clock)
        orchestrator.deliverables.set_progress(actor, deliverable_id, 40)
        orchestrator.recorder.records  # audit records of the transaction

    ``role_resolver`` defaults to the project membership table read
    through the same session.
    """

    def __init__(
        self,
        session: Session,
        config: EngineConfig,
        role_resolver: RoleResolver | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.store = EntityStore(session)
        self.gate = PermissionGate(role_resolver or MembershipRoleResolver(session))
        self.recorder = AuditRecorder(self.clock)
        self.sequences = SequenceService(session)

        self.aggregator = MilestoneAggregator(self.store, self.recorder)
        self.milestones = MilestoneService(self.store, self.gate, self.recorder, self.clock)
        self.deliverables = DeliverableService(
            self.store, self.gate, self.recorder, self.aggregator, self.clock
        )
        self.baselines = BaselineService(self.store, self.gate, self.recorder, self.clock)
        self.certificates = CertificateService(
            self.store, self.gate, self.recorder, self.clock,
            number_suffix=config.certificate_suffix,
        )
        self.variations = VariationService(
            self.store,
            self.gate,
            self.recorder,
            self.sequences,
            self.clock,
            day_impact_mode=day_impact_mode(config),
            reference_prefix=config.variation_reference_prefix,
            certificate_suffix=config.certificate_suffix,
        )
