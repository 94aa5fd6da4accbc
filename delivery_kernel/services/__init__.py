"""Services for the delivery kernel (write side)."""

from delivery_kernel.services.auditor_service import AuditorService
from delivery_kernel.services.baseline_service import BaselineService
from delivery_kernel.services.certificate_service import CertificateService
from delivery_kernel.services.deliverable_service import DeliverableService
from delivery_kernel.services.entity_store import EntityStore
from delivery_kernel.services.milestone_aggregator import MilestoneAggregator
from delivery_kernel.services.milestone_service import MilestoneService
from delivery_kernel.services.permission_gate import (
    MembershipRoleResolver,
    PermissionGate,
    StaticRoleResolver,
)
from delivery_kernel.services.sequence_service import SequenceService
from delivery_kernel.services.variation_service import VariationService

__all__ = [
    "AuditorService",
    "BaselineService",
    "CertificateService",
    "DeliverableService",
    "EntityStore",
    "MembershipRoleResolver",
    "MilestoneAggregator",
    "MilestoneService",
    "PermissionGate",
    "SequenceService",
    "StaticRoleResolver",
    "VariationService",
]
