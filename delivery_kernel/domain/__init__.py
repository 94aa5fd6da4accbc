"""
Pure domain layer.

This package contains the delivery lifecycle rules and immutable DTOs
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

Time enters only through an injected ``Clock``.
"""

from delivery_kernel.domain.certificate import Certificate, CertificateStatus
from delivery_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from delivery_kernel.domain.deliverable import (
    Deliverable,
    DeliverableLink,
    DeliverableStatus,
    LinkKind,
)
from delivery_kernel.domain.milestone import (
    BaselineSnapshot,
    BaselineStatus,
    BaselineTriple,
    Milestone,
    MilestoneStatus,
)
from delivery_kernel.domain.permissions import Operation
from delivery_kernel.domain.roles import Actor, ProjectRole
from delivery_kernel.domain.schedule import DayImpactMode
from delivery_kernel.domain.signatures import Signature, SignaturePair, SignatureSide
from delivery_kernel.domain.variation import (
    MilestoneImpact,
    Variation,
    VariationStatus,
    VariationType,
)

__all__ = [
    "Actor",
    "BaselineSnapshot",
    "BaselineStatus",
    "BaselineTriple",
    "Certificate",
    "CertificateStatus",
    "Clock",
    "DayImpactMode",
    "Deliverable",
    "DeliverableLink",
    "DeliverableStatus",
    "DeterministicClock",
    "LinkKind",
    "Milestone",
    "MilestoneImpact",
    "MilestoneStatus",
    "Operation",
    "ProjectRole",
    "Signature",
    "SignaturePair",
    "SignatureSide",
    "SystemClock",
    "Variation",
    "VariationStatus",
    "VariationType",
]
