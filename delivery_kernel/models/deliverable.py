"""
Module: delivery_kernel.models.deliverable
Responsibility: ORM persistence for deliverables and their KPI / quality
    standard links.
Architecture position: Kernel > Models.  May import from db/base.py and domain/.

Invariants enforced:
    - A deliverable belongs to exactly one milestone (FK, cascade delete).
    - Once ``status`` is delivered the row is frozen (ORM listener,
      db/immutability.py).
    - The signature slots hold the delivery sign-off.
"""

from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from delivery_kernel.db.base import Base, TrackedBase, UUIDString
from delivery_kernel.domain.deliverable import (
    Deliverable,
    DeliverableLink,
    DeliverableStatus,
    LinkKind,
)
from delivery_kernel.models._signatures import SignatureSlotsMixin


class DeliverableModel(SignatureSlotsMixin, TrackedBase):
    __tablename__ = "deliverables"
    __table_args__ = (
        UniqueConstraint("milestone_id", "reference", name="uq_deliverable_reference"),
        Index("idx_deliverable_milestone", "milestone_id"),
    )

    milestone_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("milestones.id", ondelete="CASCADE"),
        nullable=False,
    )
    reference: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    progress: Mapped[int] = mapped_column(nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=DeliverableStatus.NOT_STARTED.value
    )
    return_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    row_version: Mapped[int] = mapped_column(nullable=False)

    links: Mapped[list["DeliverableLinkModel"]] = relationship(
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": row_version}

    def __repr__(self) -> str:
        return f"<DeliverableModel {self.reference} {self.status} {self.progress}%>"

    def link_set(self) -> frozenset[DeliverableLink]:
        return frozenset(
            DeliverableLink(kind=LinkKind(link.link_kind), reference_id=link.reference_id)
            for link in self.links
        )

    def to_dto(self) -> Deliverable:
        return Deliverable(
            id=self.id,
            milestone_id=self.milestone_id,
            reference=self.reference,
            name=self.name,
            description=self.description,
            progress=self.progress,
            status=DeliverableStatus(self.status),
            sign_off=self.signature_pair(),
            links=self.link_set(),
            return_reason=self.return_reason,
            row_version=self.row_version,
        )


class DeliverableLinkModel(Base):
    """One KPI or quality-standard reference on a deliverable."""

    __tablename__ = "deliverable_links"
    __table_args__ = (
        UniqueConstraint(
            "deliverable_id", "link_kind", "reference_id", name="uq_deliverable_link"
        ),
    )

    deliverable_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("deliverables.id", ondelete="CASCADE"),
        nullable=False,
    )
    link_kind: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
