"""
Module: delivery_kernel.models.certificate
Responsibility: ORM persistence for milestone acceptance certificates.
Architecture position: Kernel > Models.  May import from db/base.py and domain/.

Invariants enforced:
    - At most one certificate per milestone (unique milestone_id).
    - ``deliverable_snapshot`` is written once at generation.
    - A signed certificate is never updated or deleted (ORM listener,
      db/immutability.py).
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from delivery_kernel.db.base import TrackedBase, UUIDString
from delivery_kernel.domain.certificate import (
    Certificate,
    CertificateStatus,
    DeliverableSnapshotLine,
)
from delivery_kernel.models._signatures import SignatureSlotsMixin


class CertificateModel(SignatureSlotsMixin, TrackedBase):
    __tablename__ = "certificates"

    milestone_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("milestones.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    certificate_number: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    payment_value: Mapped[Decimal] = mapped_column(nullable=False)
    deliverable_snapshot: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(
        String(40), nullable=False, default=CertificateStatus.DRAFT.value
    )
    signed_at: Mapped[datetime | None]

    row_version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": row_version}

    def __repr__(self) -> str:
        return f"<CertificateModel {self.certificate_number} {self.status}>"

    def to_dto(self) -> Certificate:
        return Certificate(
            id=self.id,
            milestone_id=self.milestone_id,
            certificate_number=self.certificate_number,
            payment_value=self.payment_value,
            deliverables=tuple(
                DeliverableSnapshotLine.from_dict(line) for line in self.deliverable_snapshot
            ),
            status=CertificateStatus(self.status),
            sign_off=self.signature_pair(),
            signed_at=self.signed_at,
            row_version=self.row_version,
        )
