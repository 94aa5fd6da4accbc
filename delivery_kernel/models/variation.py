"""
Module: delivery_kernel.models.variation
Responsibility: ORM persistence for variations (change requests) and the
    milestones each one impacts.
Architecture position: Kernel > Models.  May import from db/base.py and domain/.

Invariants enforced:
    - ``reference`` is unique per project (VAR-001, VAR-002, ...).
    - Impact rows reference milestones by id only; the variation service
      checks they belong to the variation's project.
    - ``total_cost_impact`` / ``total_days_impact`` are computed at submit.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from delivery_kernel.db.base import Base, TrackedBase, UUIDString
from delivery_kernel.domain.variation import (
    MilestoneImpact,
    Rejection,
    Variation,
    VariationStatus,
    VariationType,
)
from delivery_kernel.models._signatures import SignatureSlotsMixin


class VariationModel(SignatureSlotsMixin, TrackedBase):
    __tablename__ = "variations"
    __table_args__ = (
        UniqueConstraint("project_id", "reference", name="uq_variation_reference"),
        Index("idx_variation_project_status", "project_id", "status"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    reference: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    variation_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(
        String(40), nullable=False, default=VariationStatus.DRAFT.value
    )

    total_cost_impact: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_days_impact: Mapped[int] = mapped_column(nullable=False, default=0)

    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None]

    submitted_at: Mapped[datetime | None]
    applied_at: Mapped[datetime | None]
    certificate_number: Mapped[str | None] = mapped_column(String(120), nullable=True)
    certificate_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )

    row_version: Mapped[int] = mapped_column(nullable=False)

    impacts: Mapped[list["VariationImpactModel"]] = relationship(
        cascade="all, delete-orphan",
        order_by="VariationImpactModel.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": row_version}

    def __repr__(self) -> str:
        return f"<VariationModel {self.reference} {self.status}>"

    def impact_entries(self) -> tuple[MilestoneImpact, ...]:
        return tuple(
            impact.to_dto() for impact in sorted(self.impacts, key=lambda i: i.position)
        )

    def to_dto(self) -> Variation:
        rejection = None
        if self.rejection_reason is not None:
            rejection = Rejection(
                reason=self.rejection_reason,
                rejected_by=self.rejected_by_id,
                rejected_at=self.rejected_at,
            )
        return Variation(
            id=self.id,
            project_id=self.project_id,
            reference=self.reference,
            title=self.title,
            description=self.description,
            reason=self.reason,
            variation_type=VariationType(self.variation_type),
            status=VariationStatus(self.status),
            sign_off=self.signature_pair(),
            impacts=self.impact_entries(),
            total_cost_impact=self.total_cost_impact,
            total_days_impact=self.total_days_impact,
            rejection=rejection,
            submitted_at=self.submitted_at,
            applied_at=self.applied_at,
            certificate_number=self.certificate_number,
            certificate_data=self.certificate_data,
            row_version=self.row_version,
        )


class VariationImpactModel(Base):
    """One (milestone, cost impact, day impact) entry of a variation."""

    __tablename__ = "variation_milestones"
    __table_args__ = (
        UniqueConstraint("variation_id", "milestone_id", name="uq_variation_milestone"),
        Index("idx_variation_milestone_target", "milestone_id"),
    )

    variation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("variations.id", ondelete="CASCADE"),
        nullable=False,
    )
    milestone_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("milestones.id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False)
    cost_impact: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    day_impact: Mapped[int] = mapped_column(nullable=False, default=0)
    shift_window: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dto(self) -> MilestoneImpact:
        return MilestoneImpact(
            milestone_id=self.milestone_id,
            cost_impact=self.cost_impact,
            day_impact=self.day_impact,
            shift_window=self.shift_window,
        )
