"""
Acceptance certificate rules (``delivery_kernel.domain.certificate``).

Responsibility
--------------
Certificate status derivation from its signature pair, the generation
precondition over the deliverable set, and the frozen DTOs.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.

Invariants enforced
-------------------
* A certificate may be generated only over a non-empty deliverable set in
  which every deliverable is delivered.
* Status is a function of the signature pair: no slot -> ``draft``, one
  slot -> awaiting the other side, both -> ``signed``.
* The deliverable snapshot is captured once and never changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable
from uuid import UUID

from delivery_kernel.domain.deliverable import DeliverableStatus
from delivery_kernel.domain.signatures import SignaturePair, SignatureSide


class CertificateStatus(str, Enum):
    DRAFT = "draft"
    AWAITING_SUPPLIER_SIGNATURE = "awaiting_supplier_signature"
    AWAITING_CUSTOMER_SIGNATURE = "awaiting_customer_signature"
    SIGNED = "signed"


@dataclass(frozen=True)
class DeliverableSnapshotLine:
    reference: str
    name: str
    status: DeliverableStatus

    def to_dict(self) -> dict[str, str]:
        return {"reference": self.reference, "name": self.name, "status": self.status.value}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> DeliverableSnapshotLine:
        return cls(
            reference=data["reference"],
            name=data["name"],
            status=DeliverableStatus(data["status"]),
        )


@dataclass(frozen=True)
class Certificate:
    id: UUID
    milestone_id: UUID
    certificate_number: str
    payment_value: Decimal
    deliverables: tuple[DeliverableSnapshotLine, ...]
    status: CertificateStatus
    sign_off: SignaturePair
    signed_at: datetime | None = None
    row_version: int = 1

    @property
    def ready_to_bill(self) -> bool:
        return self.status is CertificateStatus.SIGNED


def certificate_status_for(sign_off: SignaturePair) -> CertificateStatus:
    if sign_off.both_signed:
        return CertificateStatus.SIGNED
    awaiting = sign_off.awaiting
    if awaiting is SignatureSide.SUPPLIER:
        return CertificateStatus.AWAITING_SUPPLIER_SIGNATURE
    if awaiting is SignatureSide.CUSTOMER:
        return CertificateStatus.AWAITING_CUSTOMER_SIGNATURE
    return CertificateStatus.DRAFT


def generation_blocker(statuses: Iterable[DeliverableStatus]) -> str | None:
    """Why a certificate cannot be generated over these deliverables, or None."""
    items = list(statuses)
    if not items:
        return "milestone has no deliverables"
    outstanding = sum(1 for s in items if s is not DeliverableStatus.DELIVERED)
    if outstanding:
        return f"{outstanding} of {len(items)} deliverables not delivered"
    return None


def certificate_number(project_reference: str, milestone_reference: str, suffix: str) -> str:
    return f"{project_reference}-{milestone_reference}-{suffix}"
