"""
Project roles and actors.

The closed set of project-scoped roles an identity collaborator may return,
plus the ``Actor`` value every command carries.  Which roles may perform
which operation lives in ``domain/permissions.py``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class ProjectRole(str, Enum):
    """Closed set of project-scoped roles."""

    ADMIN = "admin"
    SUPPLIER_DELIVERY = "supplier-delivery"
    CUSTOMER_REVIEW = "customer-review"
    CONTRIBUTOR = "contributor"
    VIEWER = "viewer"


@dataclass(frozen=True)
class Actor:
    """The identity performing a command.

    ``display_name`` is copied into any signature the actor records.
    """

    actor_id: UUID
    display_name: str

    def __post_init__(self) -> None:
        if not self.display_name or not self.display_name.strip():
            raise ValueError("Actor display_name must be non-empty")
