"""
delivery_engines.financials -- effort valuation, margin and tier variance.

Responsibility:
    Convert logged effort into monetary value and compare the three
    financial tiers of a milestone: baseline (committed), forecast
    (projected) and actual.  Timesheets and expenses enter only as numeric
    inputs; nothing here knows how they are captured.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Consumed by the
    read-side reporting service.

Invariants enforced:
    - Every amount is a ``Decimal``; floats are rejected.
    - Money results are quantized half-up to the supplied quantum
      (default 0.01); variance percentages round half-up to whole
      numbers; margin percentages round half-up to one decimal place.
    - Division-by-zero safe: variance percentage is 0 when the reference
      is 0; margin is undefined (None) when sell or cost is 0.

Failure modes:
    - ValueError for negative hours, negative rates, a non-positive
      working day length, or non-Decimal input.

Usage:
    from delivery_engines.financials import calculate_variance

    result = calculate_variance(current=Decimal("1100"), reference=Decimal("1000"))
    result.direction   # VarianceDirection.OVER
    result.percentage  # 10
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable

from delivery_engines.tracer import traced_engine

HOURS_PER_DAY = Decimal("8")
MONEY_QUANTUM = Decimal("0.01")

GOOD_MARGIN_THRESHOLD = Decimal("25")
LOW_MARGIN_THRESHOLD = Decimal("10")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class VarianceDirection(str, Enum):
    OVER = "over"
    UNDER = "under"
    ON = "on"


class MarginHealth(str, Enum):
    GOOD = "good"
    LOW = "low"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class EffortEntry:
    """Hours logged at a day rate (a timesheet line, reduced to numbers)."""

    hours: Decimal
    day_rate: Decimal


@dataclass(frozen=True)
class VarianceResult:
    current: Decimal
    reference: Decimal
    amount: Decimal
    percentage: int
    direction: VarianceDirection


@dataclass(frozen=True)
class MarginResult:
    sell: Decimal
    cost: Decimal
    amount: Decimal | None
    percent: Decimal | None

    @property
    def health(self) -> MarginHealth:
        if self.percent is None:
            return MarginHealth.UNKNOWN
        if self.percent >= GOOD_MARGIN_THRESHOLD:
            return MarginHealth.GOOD
        if self.percent >= LOW_MARGIN_THRESHOLD:
            return MarginHealth.LOW
        return MarginHealth.CRITICAL


@dataclass(frozen=True)
class FinancialSummary:
    """The three tiers of one milestone and how the later two drift."""

    baseline: Decimal
    forecast: Decimal
    actual: Decimal
    forecast_variance: VarianceResult
    actual_variance: VarianceResult


def _require_decimal(name: str, value: object) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (Decimal, int)):
        raise ValueError(f"{name} must be a Decimal, got {type(value).__name__}")
    return Decimal(value)


def _require_non_negative(name: str, value: object) -> Decimal:
    amount = _require_decimal(name, value)
    if amount < _ZERO:
        raise ValueError(f"{name} must not be negative, got {amount}")
    return amount


def hours_to_days(hours: Decimal, hours_per_day: Decimal = HOURS_PER_DAY) -> Decimal:
    hours = _require_non_negative("hours", hours)
    hours_per_day = _require_decimal("hours_per_day", hours_per_day)
    if hours_per_day <= _ZERO:
        raise ValueError(f"hours_per_day must be positive, got {hours_per_day}")
    return hours / hours_per_day


@traced_engine("financials", "1.0", fingerprint_fields=("hours", "day_rate", "hours_per_day"))
def effort_value(
    hours: Decimal,
    day_rate: Decimal,
    hours_per_day: Decimal = HOURS_PER_DAY,
    quantum: Decimal = MONEY_QUANTUM,
) -> Decimal:
    """Monetary value of ``hours`` worked at ``day_rate``."""
    day_rate = _require_non_negative("day_rate", day_rate)
    days = hours_to_days(hours, hours_per_day)
    return (days * day_rate).quantize(quantum, rounding=ROUND_HALF_UP)


@traced_engine("financials", "1.0", fingerprint_fields=("hours_per_day",))
def actual_from_effort(
    entries: Iterable[EffortEntry],
    expenses: Iterable[Decimal] = (),
    hours_per_day: Decimal = HOURS_PER_DAY,
    quantum: Decimal = MONEY_QUANTUM,
) -> Decimal:
    """Actual cost: valued effort plus expense amounts."""
    total = _ZERO
    for entry in entries:
        total += effort_value(
            hours=entry.hours,
            day_rate=entry.day_rate,
            hours_per_day=hours_per_day,
            quantum=quantum,
        )
    for amount in expenses:
        total += _require_non_negative("expense", amount)
    return total.quantize(quantum, rounding=ROUND_HALF_UP)


@traced_engine("financials", "1.0", fingerprint_fields=("sell", "cost"))
def calculate_margin(sell: Decimal, cost: Decimal) -> MarginResult:
    """Margin of ``sell`` over ``cost``; undefined when either side is zero."""
    sell = _require_decimal("sell", sell)
    cost = _require_decimal("cost", cost)
    if sell == _ZERO or cost == _ZERO:
        return MarginResult(sell=sell, cost=cost, amount=None, percent=None)

    amount = sell - cost
    percent = (amount / sell * _HUNDRED).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return MarginResult(
        sell=sell,
        cost=cost,
        amount=amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP),
        percent=percent,
    )


@traced_engine("financials", "1.0", fingerprint_fields=("current", "reference"))
def calculate_variance(current: Decimal, reference: Decimal) -> VarianceResult:
    """How far ``current`` sits from ``reference`` (e.g. forecast vs baseline)."""
    current = _require_decimal("current", current)
    reference = _require_decimal("reference", reference)
    amount = current - reference

    if reference == _ZERO:
        percentage = 0
    else:
        percentage = int(
            (amount / reference * _HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )

    if amount > _ZERO:
        direction = VarianceDirection.OVER
    elif amount < _ZERO:
        direction = VarianceDirection.UNDER
    else:
        direction = VarianceDirection.ON

    return VarianceResult(
        current=current,
        reference=reference,
        amount=amount,
        percentage=percentage,
        direction=direction,
    )


def summarize_financials(
    baseline: Decimal, forecast: Decimal, actual: Decimal
) -> FinancialSummary:
    return FinancialSummary(
        baseline=baseline,
        forecast=forecast,
        actual=actual,
        forecast_variance=calculate_variance(current=forecast, reference=baseline),
        actual_variance=calculate_variance(current=actual, reference=baseline),
    )
