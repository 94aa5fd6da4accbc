"""
Module: delivery_kernel.models.project
Responsibility: ORM persistence for projects and project membership.
Architecture position: Kernel > Models.  May import from db/base.py and domain/.

Membership rows are what ``MembershipRoleResolver`` reads: one row per
(project, actor) carrying the actor's project-scoped role.
"""

from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from delivery_kernel.db.base import Base, TrackedBase, UUIDString


class ProjectModel(TrackedBase):
    """A contract under delivery; owns milestones and variations."""

    __tablename__ = "projects"

    reference: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GBP")

    def __repr__(self) -> str:
        return f"<ProjectModel {self.reference}>"


class ProjectMemberModel(Base):
    """An actor's role on one project."""

    __tablename__ = "project_members"
    __table_args__ = (
        UniqueConstraint("project_id", "actor_id", name="uq_project_member"),
        Index("idx_project_member_actor", "actor_id"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    role: Mapped[str] = mapped_column(String(30), nullable=False)
