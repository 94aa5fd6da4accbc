"""
Audit records -- what a successful transition reports, and where it goes.

Responsibility:
    ``AuditRecord`` is the value every lifecycle service produces for a
    successful transition: actor, role at the time, entity type and id,
    operation, before/after snapshots and timestamp.  ``AuditRecorder``
    collects them inside a command's transaction; the command surface hands
    them to an ``AuditSink`` only after the transaction commits.

Architecture position:
    Kernel > Services.  No I/O here; sinks do the writing.

Invariants enforced:
    - Records are built from DTO snapshots, never from live ORM rows, so a
      rollback leaves nothing half-reported.
    - A command whose transaction rolls back never reaches a sink.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from delivery_kernel.domain.clock import Clock
from delivery_kernel.domain.roles import Actor, ProjectRole
from delivery_kernel.utils.hashing import to_plain


@dataclass(frozen=True)
class AuditRecord:
    actor_id: UUID
    actor_role: str | None
    entity_type: str
    entity_id: UUID
    operation: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    occurred_at: datetime
    detail: dict[str, Any] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        """The JSON-native payload stored with the audit event."""
        return to_plain({
            "actor_role": self.actor_role,
            "operation": self.operation,
            "before": self.before,
            "after": self.after,
            "detail": self.detail,
        })


class AuditSink(Protocol):
    """Destination for committed audit records."""

    def emit(self, record: AuditRecord) -> None:
        ...


class AuditRecorder:
    """Collects audit records for one command's transaction."""

    def __init__(self, clock: Clock):
        self._clock = clock
        self._records: list[AuditRecord] = []

    def record(
        self,
        actor: Actor,
        role: ProjectRole | None,
        entity_type: str,
        entity_id: UUID,
        operation: str,
        before: Any = None,
        after: Any = None,
        **detail: Any,
    ) -> AuditRecord:
        entry = AuditRecord(
            actor_id=actor.actor_id,
            actor_role=role.value if role is not None else None,
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            before=to_plain(before) if before is not None else None,
            after=to_plain(after) if after is not None else None,
            occurred_at=self._clock.now(),
            detail=to_plain(detail),
        )
        self._records.append(entry)
        return entry

    @property
    def records(self) -> tuple[AuditRecord, ...]:
        return tuple(self._records)

    def clear(self) -> None:
        self._records.clear()
