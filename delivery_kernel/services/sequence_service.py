"""
SequenceService -- monotonic sequence allocation via counter rows.

Responsibility:
    Hands out strictly increasing integers per named sequence: the global
    audit-event sequence and one variation-reference sequence per project.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by
    AuditorService and VariationService.

Invariants enforced:
    - Values come from a counter row locked with ``SELECT ... FOR UPDATE``
      (a no-op on SQLite, where the write lock serializes writers).  The
      aggregate-max-plus-one pattern is never used.
    - The increment is part of the caller's transaction; a rollback
      returns the value.

Failure modes:
    - Two transactions creating the same counter for the first time race
      on the unique name; the loser's flush raises IntegrityError, which
      is surfaced as ConflictError so the command can be retried.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from delivery_kernel.db.base import Base
from delivery_kernel.exceptions import ConflictError
from delivery_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """One named sequence and its current value."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def variation_sequence(project_id) -> str:
        return f"variation:{project_id}"

    def next_value(self, sequence_name: str) -> int:
        """Lock (or create) the counter row, increment it, return the new value."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=0)
            self._session.add(counter)

        counter.current_value += 1
        try:
            self._session.flush()
        except IntegrityError as exc:
            logger.warning(
                "sequence_counter_race",
                extra={"sequence_name": sequence_name},
            )
            raise ConflictError(entity_type="SequenceCounter", entity_id=sequence_name) from exc

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
