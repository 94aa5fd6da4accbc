"""
Deliverable state machine (``delivery_kernel.domain.deliverable``).

Responsibility
--------------
Declares the deliverable lifecycle, the implicit status change driven by
progress writes, and the frozen ``Deliverable`` DTO returned to callers.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.  ``DeliverableService``
evaluates these rules against the freshly re-read persisted row.

Invariants enforced
-------------------
* ``progress`` is an integer in [0, 100].
* From ``not_started`` a positive progress moves to ``in_progress``;
  from ``in_progress`` zero progress moves back to ``not_started``.  No
  other progress write changes status.
* ``delivered`` is terminal and implies progress 100 with both delivery
  signatures present.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from delivery_kernel.domain.signatures import SignaturePair
from delivery_kernel.domain.workflow import Guard, Transition, Workflow
from delivery_kernel.exceptions import ValidationError


class DeliverableStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED_FOR_REVIEW = "submitted_for_review"
    RETURNED_FOR_MORE_WORK = "returned_for_more_work"
    REVIEW_COMPLETE = "review_complete"
    DELIVERED = "delivered"


class LinkKind(str, Enum):
    KPI = "kpi"
    QUALITY_STANDARD = "quality_standard"


_S = DeliverableStatus

DELIVERY_SIGNED_OFF = Guard(
    name="delivery_signed_off",
    description="Both supplier and customer delivery signatures are present",
)

DELIVERABLE_WORKFLOW = Workflow(
    name="deliverable",
    description="Deliverable completion, review and delivery sign-off",
    initial_state=_S.NOT_STARTED.value,
    states=tuple(s.value for s in DeliverableStatus),
    transitions=(
        Transition(_S.NOT_STARTED.value, _S.IN_PROGRESS.value, action="set_progress"),
        Transition(_S.IN_PROGRESS.value, _S.NOT_STARTED.value, action="set_progress"),
        Transition(_S.IN_PROGRESS.value, _S.SUBMITTED_FOR_REVIEW.value, action="submit_for_review"),
        Transition(
            _S.RETURNED_FOR_MORE_WORK.value, _S.SUBMITTED_FOR_REVIEW.value,
            action="submit_for_review",
        ),
        Transition(_S.SUBMITTED_FOR_REVIEW.value, _S.REVIEW_COMPLETE.value, action="accept_review"),
        Transition(
            _S.SUBMITTED_FOR_REVIEW.value, _S.RETURNED_FOR_MORE_WORK.value,
            action="return_for_more_work",
        ),
        Transition(
            _S.REVIEW_COMPLETE.value, _S.DELIVERED.value,
            action="sign_delivery", guard=DELIVERY_SIGNED_OFF,
        ),
    ),
    terminal_states=(_S.DELIVERED.value,),
)

DESCRIPTIVE_FIELDS = frozenset({"reference", "name", "description", "links"})
DERIVED_FIELDS = frozenset({"status", "progress"})


@dataclass(frozen=True)
class DeliverableLink:
    """Reference to a KPI or quality standard the deliverable evidences."""

    kind: LinkKind
    reference_id: UUID


@dataclass(frozen=True)
class Deliverable:
    id: UUID
    milestone_id: UUID
    reference: str
    name: str
    description: str
    progress: int
    status: DeliverableStatus
    sign_off: SignaturePair
    links: frozenset[DeliverableLink] = field(default_factory=frozenset)
    return_reason: str | None = None
    row_version: int = 1

    @property
    def is_delivered(self) -> bool:
        return self.status is DeliverableStatus.DELIVERED


def validate_progress(value: object) -> int:
    """Return ``value`` as a progress percentage or raise ``ValidationError``."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"Progress must be an integer, got {value!r}", field="progress"
        )
    if value < 0 or value > 100:
        raise ValidationError(
            f"Progress must be between 0 and 100, got {value}", field="progress"
        )
    return value


def status_after_progress(current: DeliverableStatus, value: int) -> DeliverableStatus:
    """The status implied by writing ``value`` as progress from ``current``."""
    if current is DeliverableStatus.NOT_STARTED and value > 0:
        return DeliverableStatus.IN_PROGRESS
    if current is DeliverableStatus.IN_PROGRESS and value == 0:
        return DeliverableStatus.NOT_STARTED
    return current
