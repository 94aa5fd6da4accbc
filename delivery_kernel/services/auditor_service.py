"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Persists committed ``AuditRecord`` values as hash-chained ``AuditEvent``
    rows, validates the chain, and returns per-entity traces for review.

Architecture position:
    Kernel > Services -- imperative shell.  Driven by the ledger audit
    sink after a business transaction has committed.

Invariants enforced:
    - Sequence monotonicity via SequenceService.
    - Chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``; every event links to its predecessor.
    - Append-only: AuditEvent rows are protected by ORM listeners.

Failure modes:
    - AuditChainBrokenError: recomputed hash differs from the stored one,
      or prev_hash does not match the predecessor's hash.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from delivery_kernel.exceptions import AuditChainBrokenError
from delivery_kernel.logging_config import get_logger
from delivery_kernel.models.audit_event import AuditEvent
from delivery_kernel.services.audit_records import AuditRecord
from delivery_kernel.services.sequence_service import SequenceService
from delivery_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: str
    occurred_at: datetime
    actor_id: UUID
    actor_role: str | None
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events for one entity, oldest first."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(entry.action for entry in self.entries)


class AuditorService:
    """
    Creates and validates hash-chained audit events.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session):
        self._session = session
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_event = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last_event.hash if last_event else None

    def record(self, record: AuditRecord) -> AuditEvent:
        """Append ``record`` to the chain and flush."""
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload = record.payload()
        payload_hash = hash_payload(payload)
        event_hash = hash_audit_event(
            entity_type=record.entity_type,
            entity_id=str(record.entity_id),
            action=record.operation,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            action=record.operation,
            actor_id=record.actor_id,
            actor_role=record.actor_role,
            occurred_at=record.occurred_at,
            payload=payload,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": record.entity_type,
                "entity_id": str(record.entity_id),
                "action": record.operation,
                "seq": seq,
            },
        )
        return audit_event

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: at the first event whose hash or link
                does not verify.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(str(events[0].id), "None", events[0].prev_hash)

        for i, audit_event in enumerate(events):
            expected_payload_hash = hash_payload(audit_event.payload or {})
            if audit_event.payload_hash != expected_payload_hash:
                logger.critical("audit_chain_broken", extra={"seq": audit_event.seq})
                raise AuditChainBrokenError(
                    str(audit_event.id), expected_payload_hash, audit_event.payload_hash
                )

            expected_hash = hash_audit_event(
                entity_type=audit_event.entity_type,
                entity_id=str(audit_event.entity_id),
                action=audit_event.action,
                payload_hash=audit_event.payload_hash,
                prev_hash=audit_event.prev_hash,
            )
            if audit_event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": audit_event.seq})
                raise AuditChainBrokenError(str(audit_event.id), expected_hash, audit_event.hash)

            if i > 0 and audit_event.prev_hash != events[i - 1].hash:
                logger.critical("audit_chain_broken", extra={"seq": audit_event.seq})
                raise AuditChainBrokenError(
                    str(audit_event.id), events[i - 1].hash, audit_event.prev_hash or "None"
                )

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=e.seq,
                    action=e.action,
                    occurred_at=e.occurred_at,
                    actor_id=e.actor_id,
                    actor_role=e.actor_role,
                    payload=e.payload or {},
                    hash=e.hash,
                )
                for e in events
            ),
        )
