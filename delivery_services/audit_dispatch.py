"""
delivery_services.audit_dispatch -- audit sinks fed after commit.

Responsibility:
    ``LedgerAuditSink`` writes committed audit records into the
    hash-chained ``audit_events`` table through ``AuditorService``, in a
    session and transaction of its own, so a failing audit write never
    touches the business commit that produced the record.

Failure modes:
    - Any database error propagates to the caller, which reports it as
      an ``AuditWarning`` on the command result.
"""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy.orm import Session

from delivery_kernel.logging_config import get_logger
from delivery_kernel.services.audit_records import AuditRecord
from delivery_kernel.services.auditor_service import AuditorService

logger = get_logger("services.audit_dispatch")


class LedgerAuditSink:
    """Append each record to the audit hash chain."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def emit(self, record: AuditRecord) -> None:
        session = self._session_factory()
        try:
            event = AuditorService(session).record(record)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        logger.debug(
            "audit_record_emitted",
            extra={"seq": event.seq, "operation": record.operation},
        )


class CollectingAuditSink:
    """Keeps emitted records in memory; for embedding and tests."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    def emit(self, record: AuditRecord) -> None:
        self.records.append(record)
