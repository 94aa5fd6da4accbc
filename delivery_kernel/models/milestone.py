"""
Module: delivery_kernel.models.milestone
Responsibility: ORM persistence for milestones and their append-only baseline
    history.
Architecture position: Kernel > Models.  May import from db/base.py and domain/.

Invariants enforced:
    - ``status`` and ``progress`` are written only by MilestoneAggregator.
    - While ``baseline_locked`` is set, ``baseline_start``, ``baseline_end``
      and ``baseline_billable`` change only inside an ``amending_baseline``
      scope (ORM listener, db/immutability.py).
    - ``baseline_version`` starts at 1 and only increases.
    - BaselineVersionModel rows are never updated.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from delivery_kernel.db.base import Base, TrackedBase, UUIDString
from delivery_kernel.domain.milestone import (
    BaselineSnapshot,
    BaselineTriple,
    Milestone,
    MilestoneStatus,
)
from delivery_kernel.models._signatures import SignatureSlotsMixin


class MilestoneModel(SignatureSlotsMixin, TrackedBase):
    """
    A billable milestone.

    The signature slots hold the baseline commitment sign-off.
    """

    __tablename__ = "milestones"
    __table_args__ = (
        UniqueConstraint("project_id", "reference", name="uq_milestone_reference"),
        Index("idx_milestone_project", "project_id"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    reference: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    baseline_start: Mapped[date | None]
    baseline_end: Mapped[date | None]
    forecast_start: Mapped[date | None]
    forecast_end: Mapped[date | None]
    actual_start: Mapped[date | None]

    baseline_billable: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    forecast_billable: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    billable: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Derived from the deliverable set
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=MilestoneStatus.NOT_STARTED.value
    )
    progress: Mapped[int] = mapped_column(nullable=False, default=0)

    baseline_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    baseline_version: Mapped[int] = mapped_column(nullable=False, default=1)

    row_version: Mapped[int] = mapped_column(nullable=False)

    history: Mapped[list["BaselineVersionModel"]] = relationship(
        back_populates="milestone",
        cascade="all, delete-orphan",
        order_by="BaselineVersionModel.version",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": row_version}

    def __repr__(self) -> str:
        return f"<MilestoneModel {self.reference} {self.status}>"

    def baseline_triple(self) -> BaselineTriple:
        return BaselineTriple(
            start=self.baseline_start,
            end=self.baseline_end,
            billable=self.baseline_billable,
        )

    def to_dto(self) -> Milestone:
        return Milestone(
            id=self.id,
            project_id=self.project_id,
            reference=self.reference,
            name=self.name,
            description=self.description,
            baseline_start=self.baseline_start,
            baseline_end=self.baseline_end,
            forecast_start=self.forecast_start,
            forecast_end=self.forecast_end,
            actual_start=self.actual_start,
            baseline_billable=self.baseline_billable,
            forecast_billable=self.forecast_billable,
            billable=self.billable,
            status=MilestoneStatus(self.status),
            progress=self.progress,
            baseline_locked=self.baseline_locked,
            baseline_sign_off=self.signature_pair(),
            baseline_version=self.baseline_version,
            row_version=self.row_version,
        )


class BaselineVersionModel(Base):
    """A superseded baseline triple, recorded when a variation is applied."""

    __tablename__ = "milestone_baseline_versions"
    __table_args__ = (
        UniqueConstraint("milestone_id", "version", name="uq_baseline_version"),
    )

    milestone_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("milestones.id", ondelete="CASCADE"),
        nullable=False,
    )
    version: Mapped[int] = mapped_column(nullable=False)
    baseline_start: Mapped[date | None]
    baseline_end: Mapped[date | None]
    baseline_billable: Mapped[Decimal] = mapped_column(nullable=False)
    variation_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    superseded_at: Mapped[datetime] = mapped_column(nullable=False)
    superseded_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    milestone: Mapped[MilestoneModel] = relationship(back_populates="history")

    def to_dto(self) -> BaselineSnapshot:
        return BaselineSnapshot(
            milestone_id=self.milestone_id,
            version=self.version,
            baseline=BaselineTriple(
                start=self.baseline_start,
                end=self.baseline_end,
                billable=self.baseline_billable,
            ),
            superseded_at=self.superseded_at,
            variation_id=self.variation_id,
        )
