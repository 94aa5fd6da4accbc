"""
Variation (change-control) rules (``delivery_kernel.domain.variation``).

Responsibility
--------------
The variation lifecycle, the mutable and deletable windows, how a
variation's type turns a day impact into a signed shift, and the pure
baseline revision applied per impacted milestone.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.  ``VariationService`` runs
these rules against persisted rows and records history.

Invariants enforced
-------------------
* Editable only in ``draft``; deletable only in ``draft``, ``submitted``
  or ``rejected``.
* Rejection is allowed only from ``submitted``.
* ``applied`` and ``rejected`` are terminal.
* A revised baseline never ends before it starts and never carries a
  negative billable value.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from delivery_kernel.domain.milestone import BaselineTriple
from delivery_kernel.domain.schedule import DayImpactMode, shift_date
from delivery_kernel.domain.signatures import SignaturePair, SignatureSide
from delivery_kernel.domain.workflow import Guard, Transition, Workflow
from delivery_kernel.exceptions import ValidationError


class VariationType(str, Enum):
    SCOPE_EXTENSION = "scope_extension"
    SCOPE_REDUCTION = "scope_reduction"
    TIME_EXTENSION = "time_extension"
    COST_ADJUSTMENT = "cost_adjustment"
    COMBINED = "combined"


class VariationStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    AWAITING_SUPPLIER_SIGNATURE = "awaiting_supplier_signature"
    AWAITING_CUSTOMER_SIGNATURE = "awaiting_customer_signature"
    APPROVED = "approved"
    APPLIED = "applied"
    REJECTED = "rejected"


_V = VariationStatus

BOTH_PARTIES_SIGNED = Guard(
    name="both_parties_signed",
    description="Supplier and customer have both signed the variation",
)

# "sign" transitions into an awaiting state are taken when the first slot is
# filled; the one into APPROVED requires BOTH_PARTIES_SIGNED.
VARIATION_WORKFLOW = Workflow(
    name="variation",
    description="Change request approval and application",
    initial_state=_V.DRAFT.value,
    states=tuple(s.value for s in VariationStatus),
    transitions=(
        Transition(_V.DRAFT.value, _V.SUBMITTED.value, action="submit"),
        Transition(_V.SUBMITTED.value, _V.AWAITING_CUSTOMER_SIGNATURE.value, action="sign_supplier"),
        Transition(_V.SUBMITTED.value, _V.AWAITING_SUPPLIER_SIGNATURE.value, action="sign_customer"),
        Transition(
            _V.AWAITING_SUPPLIER_SIGNATURE.value, _V.APPROVED.value,
            action="sign_supplier", guard=BOTH_PARTIES_SIGNED,
        ),
        Transition(
            _V.AWAITING_CUSTOMER_SIGNATURE.value, _V.APPROVED.value,
            action="sign_customer", guard=BOTH_PARTIES_SIGNED,
        ),
        Transition(_V.SUBMITTED.value, _V.REJECTED.value, action="reject"),
        Transition(_V.APPROVED.value, _V.APPLIED.value, action="apply"),
    ),
    terminal_states=(_V.APPLIED.value, _V.REJECTED.value),
)

EDITABLE_STATUSES = frozenset({VariationStatus.DRAFT})
DELETABLE_STATUSES = frozenset(
    {VariationStatus.DRAFT, VariationStatus.SUBMITTED, VariationStatus.REJECTED}
)
EDITABLE_FIELDS = frozenset({"title", "description", "reason", "variation_type"})


def sign_action(side: SignatureSide) -> str:
    return f"sign_{side.value}"


@dataclass(frozen=True)
class MilestoneImpact:
    """One milestone a variation changes.

    ``day_impact`` is the magnitude for extension and reduction types and
    the signed value for ``combined``.  ``shift_window`` moves the baseline
    start along with the end.
    """

    milestone_id: UUID
    cost_impact: Decimal = Decimal("0")
    day_impact: int = 0
    shift_window: bool = False


@dataclass(frozen=True)
class Rejection:
    reason: str
    rejected_by: UUID
    rejected_at: datetime


@dataclass(frozen=True)
class Variation:
    id: UUID
    project_id: UUID
    reference: str
    title: str
    description: str
    reason: str
    variation_type: VariationType
    status: VariationStatus
    sign_off: SignaturePair
    impacts: tuple[MilestoneImpact, ...]
    total_cost_impact: Decimal = Decimal("0")
    total_days_impact: int = 0
    rejection: Rejection | None = None
    submitted_at: datetime | None = None
    applied_at: datetime | None = None
    certificate_number: str | None = None
    certificate_data: dict[str, Any] | None = None
    row_version: int = 1

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES

    @property
    def is_deletable(self) -> bool:
        return self.status in DELETABLE_STATUSES


def status_after_signature(sign_off: SignaturePair) -> VariationStatus:
    """Status once ``sign_off`` holds at least one signature."""
    if sign_off.both_signed:
        return VariationStatus.APPROVED
    if sign_off.awaiting is SignatureSide.SUPPLIER:
        return VariationStatus.AWAITING_SUPPLIER_SIGNATURE
    return VariationStatus.AWAITING_CUSTOMER_SIGNATURE


def validate_impact(variation_type: VariationType, impact: MilestoneImpact) -> MilestoneImpact:
    """Check one impact entry against the variation type."""
    if isinstance(impact.day_impact, bool) or not isinstance(impact.day_impact, int):
        raise ValidationError(
            f"Day impact must be an integer, got {impact.day_impact!r}",
            field="day_impact",
        )
    if not isinstance(impact.cost_impact, Decimal):
        raise ValidationError(
            f"Cost impact must be a Decimal, got {impact.cost_impact!r}",
            field="cost_impact",
        )
    if variation_type is VariationType.COST_ADJUSTMENT and impact.day_impact != 0:
        raise ValidationError(
            "A cost adjustment carries no day impact",
            entity_type="Milestone",
            entity_id=impact.milestone_id,
            field="day_impact",
        )
    return impact


def signed_day_impact(variation_type: VariationType, day_impact: int) -> int:
    """Days to move the baseline: extensions add, reduction subtracts."""
    if variation_type in (VariationType.SCOPE_EXTENSION, VariationType.TIME_EXTENSION):
        return abs(day_impact)
    if variation_type is VariationType.SCOPE_REDUCTION:
        return -abs(day_impact)
    if variation_type is VariationType.COST_ADJUSTMENT:
        return 0
    return day_impact


def impact_totals(
    variation_type: VariationType, impacts: Iterable[MilestoneImpact]
) -> tuple[Decimal, int]:
    """(total cost impact, total signed day impact) across all entries."""
    items = list(impacts)
    cost = sum((i.cost_impact for i in items), Decimal("0"))
    days = sum(signed_day_impact(variation_type, i.day_impact) for i in items)
    return cost, days


def revise_baseline(
    current: BaselineTriple,
    variation_type: VariationType,
    impact: MilestoneImpact,
    mode: DayImpactMode = DayImpactMode.CALENDAR,
) -> BaselineTriple:
    """Apply one impact entry to a milestone baseline."""
    shift = signed_day_impact(variation_type, impact.day_impact)

    start, end = current.start, current.end
    if shift:
        if end is None or (impact.shift_window and start is None):
            raise ValidationError(
                "Cannot shift a baseline with no committed dates",
                entity_type="Milestone",
                entity_id=impact.milestone_id,
                field="baseline_end",
            )
        end = shift_date(end, shift, mode)
        if impact.shift_window:
            start = shift_date(start, shift, mode)

    if start is not None and end is not None and end < start:
        raise ValidationError(
            f"Revised baseline would end ({end}) before it starts ({start})",
            entity_type="Milestone",
            entity_id=impact.milestone_id,
            field="baseline_end",
        )

    billable = current.billable + impact.cost_impact
    if billable < 0:
        raise ValidationError(
            f"Revised baseline billable would be negative ({billable})",
            entity_type="Milestone",
            entity_id=impact.milestone_id,
            field="baseline_billable",
        )
    return BaselineTriple(start=start, end=end, billable=billable)


def variation_reference(prefix: str, number: int) -> str:
    return f"{prefix}-{number:03d}"
