"""
ORM-level immutability enforcement.

Services refuse illegal writes before they happen; these listeners are the
second line, catching any code path that mutates a frozen row through the
ORM.  They fire in ``before_update`` / ``before_delete``, so the SQL never
reaches the database.

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutableFieldError
    [before_delete] --> _check_*() --> ImmutableFieldError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities
------------------
Entity                | When frozen                          | Exception
----------------------|--------------------------------------|---------------------------
MilestoneModel        | baseline fields while baseline       | ``amending_baseline`` scope
                      | was locked before this flush         | (applyVariation)
CertificateModel      | once status was signed               | none
DeliverableModel      | once status was delivered            | ``resetting_sign_off`` scope
                      |                                      | (admin sign-off reset)
BaselineVersionModel  | always (updates)                     | none
AuditEvent            | always (updates and deletes)         | none

``updated_at``, ``updated_by_id`` and ``row_version`` are audit metadata and
may change on frozen rows.

"Was locked" / "was signed" is read from attribute history: the transition
INTO the frozen state is allowed, every change after it is not.

Usage::

    from delivery_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup, idempotent
"""

from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, object_session
from sqlalchemy.orm.attributes import get_history

from delivery_kernel.db.base import AUDIT_METADATA_FIELDS
from delivery_kernel.exceptions import ImmutableFieldError
from delivery_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_BASELINE_AMENDMENT_KEY = "delivery_kernel.baseline_amendment"
_SIGN_OFF_RESET_KEY = "delivery_kernel.sign_off_reset"
_LOCKED_BASELINE_FIELDS = ("baseline_start", "baseline_end", "baseline_billable")


@contextmanager
def _session_flag(session: Session, key: str) -> Generator[Session, None, None]:
    previous = session.info.get(key, False)
    session.info[key] = True
    try:
        yield session
    finally:
        session.info[key] = previous


def amending_baseline(session: Session):
    """
    Allow locked baseline fields to change for the duration of the block.

    Only the variation engine opens this scope, and it must flush inside
    it.  Nested use restores the outer value on exit.
    """
    return _session_flag(session, _BASELINE_AMENDMENT_KEY)


def resetting_sign_off(session: Session):
    """
    Allow a delivered deliverable to be written for the duration of the block.

    Opened only by the admin sign-off reset, which clears both delivery
    signatures and returns the deliverable to review_complete.
    """
    return _session_flag(session, _SIGN_OFF_RESET_KEY)


def _flag_set(target: Any, key: str) -> bool:
    session = object_session(target)
    return bool(session is not None and session.info.get(key))


def _value_before_flush(target: Any, key: str) -> Any:
    """The persisted value of ``key`` before the pending change, if any."""
    history = get_history(target, key)
    if history.deleted:
        return history.deleted[0]
    return getattr(target, key)


def _changed_fields(target: Any) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in AUDIT_METADATA_FIELDS and attr.history.has_changes()
    ]


def _blocked(entity_type: str, target: Any, field: str | None, operation: str, reason: str,
             current_state: str | None = None) -> ImmutableFieldError:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    return ImmutableFieldError(
        entity_type=entity_type,
        entity_id=target.id,
        field=field,
        reason=reason,
        current_state=current_state,
    )


def _check_locked_baseline(mapper, connection, target) -> None:
    """Locked baseline fields change only inside ``amending_baseline``."""
    if not _value_before_flush(target, "baseline_locked"):
        return
    if _flag_set(target, _BASELINE_AMENDMENT_KEY):
        return
    for key in _LOCKED_BASELINE_FIELDS:
        if get_history(target, key).has_changes():
            raise _blocked(
                "Milestone", target, key, "UPDATE",
                "baseline is locked; only an applied variation may change it",
                current_state="committed",
            )


def _check_certificate_update(mapper, connection, target) -> None:
    if _value_before_flush(target, "status") != "signed":
        return
    changed = _changed_fields(target)
    if changed:
        raise _blocked(
            "Certificate", target, changed[0], "UPDATE",
            "signed certificates are permanently immutable",
            current_state="signed",
        )


def _check_certificate_delete(mapper, connection, target) -> None:
    if _value_before_flush(target, "status") == "signed":
        raise _blocked(
            "Certificate", target, None, "DELETE",
            "signed certificates are permanently immutable",
            current_state="signed",
        )


def _check_deliverable_update(mapper, connection, target) -> None:
    if _value_before_flush(target, "status") != "delivered":
        return
    if _flag_set(target, _SIGN_OFF_RESET_KEY):
        return
    changed = _changed_fields(target)
    if changed:
        raise _blocked(
            "Deliverable", target, changed[0], "UPDATE",
            "delivered deliverables are frozen",
            current_state="delivered",
        )


def _check_baseline_version_update(mapper, connection, target) -> None:
    raise _blocked(
        "BaselineVersion", target, None, "UPDATE",
        "baseline history is append-only",
    )


def _check_audit_event_update(mapper, connection, target) -> None:
    raise _blocked("AuditEvent", target, None, "UPDATE", "audit events are append-only")


def _check_audit_event_delete(mapper, connection, target) -> None:
    raise _blocked("AuditEvent", target, None, "DELETE", "audit events are append-only")


def _listeners() -> list[tuple[type, str, Any]]:
    from delivery_kernel.models.audit_event import AuditEvent
    from delivery_kernel.models.certificate import CertificateModel
    from delivery_kernel.models.deliverable import DeliverableModel
    from delivery_kernel.models.milestone import BaselineVersionModel, MilestoneModel

    return [
        (MilestoneModel, "before_update", _check_locked_baseline),
        (CertificateModel, "before_update", _check_certificate_update),
        (CertificateModel, "before_delete", _check_certificate_delete),
        (DeliverableModel, "before_update", _check_deliverable_update),
        (BaselineVersionModel, "before_update", _check_baseline_version_update),
        (AuditEvent, "before_update", _check_audit_event_update),
        (AuditEvent, "before_delete", _check_audit_event_delete),
    ]


def register_immutability_listeners() -> None:
    """Register every immutability listener.  Safe to call more than once."""
    for model, identifier, fn in _listeners():
        if not event.contains(model, identifier, fn):
            event.listen(model, identifier, fn)


def unregister_immutability_listeners() -> None:
    """Remove every immutability listener.  FOR TESTS ONLY."""
    for model, identifier, fn in _listeners():
        if event.contains(model, identifier, fn):
            event.remove(model, identifier, fn)
