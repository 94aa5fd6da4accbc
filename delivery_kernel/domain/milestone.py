"""
Milestone aggregation and baseline value objects (``delivery_kernel.domain.milestone``).

Responsibility
--------------
Pure rules deriving a milestone's ``status`` and ``progress`` from its
deliverable set, the baseline commitment status derived from the baseline
sign-off, and the frozen DTOs for milestones and superseded baselines.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.  ``MilestoneAggregator``
feeds these functions the persisted deliverable rows inside the same
transaction as the deliverable write.

Invariants enforced
-------------------
* ``progress`` is the half-up rounded mean of deliverable progress, or 0
  for an empty set.
* ``completed`` iff the set is non-empty and every deliverable is
  delivered; ``not_started`` iff the set is empty or every deliverable is
  not started; otherwise ``in_progress``.
* ``status`` and ``progress`` are never accepted as direct input.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable
from uuid import UUID

from delivery_kernel.domain.deliverable import DeliverableStatus
from delivery_kernel.domain.signatures import SignaturePair


class MilestoneStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class BaselineStatus(str, Enum):
    NOT_COMMITTED = "not_committed"
    AWAITING_OTHER_PARTY = "awaiting_other_party"
    COMMITTED = "committed"


DERIVED_FIELDS = frozenset({"status", "progress"})
BASELINE_FIELDS = frozenset({"baseline_start", "baseline_end", "baseline_billable"})
FORECAST_FIELDS = frozenset({"forecast_start", "forecast_end", "forecast_billable"})
SYSTEM_FIELDS = frozenset({"baseline_locked", "baseline_version", "row_version", "project_id", "id"})
EDITABLE_FIELDS = frozenset(
    {"reference", "name", "description", "actual_start", "billable"}
) | BASELINE_FIELDS | FORECAST_FIELDS


@dataclass(frozen=True)
class DeliverableProgress:
    """The two deliverable fields the aggregator reads."""

    progress: int
    status: DeliverableStatus


@dataclass(frozen=True)
class MilestoneRollup:
    progress: int
    status: MilestoneStatus


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def aggregate(deliverables: Iterable[DeliverableProgress]) -> MilestoneRollup:
    """Derive milestone progress and status from a deliverable set."""
    items = list(deliverables)
    if not items:
        return MilestoneRollup(progress=0, status=MilestoneStatus.NOT_STARTED)

    total = sum(d.progress for d in items)
    progress = round_half_up(Decimal(total) / Decimal(len(items)))

    if all(d.status is DeliverableStatus.DELIVERED for d in items):
        status = MilestoneStatus.COMPLETED
    elif all(d.status is DeliverableStatus.NOT_STARTED for d in items):
        status = MilestoneStatus.NOT_STARTED
    else:
        status = MilestoneStatus.IN_PROGRESS
    return MilestoneRollup(progress=progress, status=status)


def baseline_status(sign_off: SignaturePair) -> BaselineStatus:
    if sign_off.both_signed:
        return BaselineStatus.COMMITTED
    if sign_off.any_signed:
        return BaselineStatus.AWAITING_OTHER_PARTY
    return BaselineStatus.NOT_COMMITTED


@dataclass(frozen=True)
class BaselineTriple:
    """The committed schedule and cost figures of a milestone."""

    start: date | None
    end: date | None
    billable: Decimal


@dataclass(frozen=True)
class BaselineSnapshot:
    """A superseded baseline, kept in the milestone's append-only history."""

    milestone_id: UUID
    version: int
    baseline: BaselineTriple
    superseded_at: datetime
    variation_id: UUID | None = None


@dataclass(frozen=True)
class Milestone:
    id: UUID
    project_id: UUID
    reference: str
    name: str
    description: str
    baseline_start: date | None
    baseline_end: date | None
    forecast_start: date | None
    forecast_end: date | None
    actual_start: date | None
    baseline_billable: Decimal
    forecast_billable: Decimal
    billable: Decimal
    status: MilestoneStatus
    progress: int
    baseline_locked: bool
    baseline_sign_off: SignaturePair
    baseline_version: int
    row_version: int = 1

    @property
    def baseline_status(self) -> BaselineStatus:
        return baseline_status(self.baseline_sign_off)

    @property
    def baseline(self) -> BaselineTriple:
        return BaselineTriple(
            start=self.baseline_start,
            end=self.baseline_end,
            billable=self.baseline_billable,
        )
