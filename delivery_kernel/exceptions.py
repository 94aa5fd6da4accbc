"""
Typed exception hierarchy for the delivery kernel.

Every error the engine reports is a typed class with a machine-readable
``code`` and structured attributes, so callers branch on type and read
fields instead of parsing messages.

    DeliveryKernelError (base)
    |
    +-- ValidationError               malformed or out-of-range input
    +-- PermissionDeniedError         role lacks the capability
    +-- InvalidStateTransitionError   operation illegal from persisted state
    +-- ImmutableFieldError           write outside the mutable window
    +-- ConflictError                 optimistic concurrency failure
    +-- NotFoundError                 entity does not exist
    |
    +-- AuditError
        +-- AuditChainBrokenError

Structured data
---------------
All subclasses carry ``entity_type``, ``entity_id``, ``field`` and
``current_state`` (any of which may be ``None``) so a transport can render
precise messages without inspecting the text.

Retry semantics
---------------
Only ``ConflictError`` sets ``retryable = True``.  A caller that loses a
race re-reads the entity and retries; every other error needs the caller
to change its input.
"""

from typing import Any


class DeliveryKernelError(Exception):
    """
    Base exception for all delivery kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "DELIVERY_KERNEL_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        entity_type: str | None = None,
        entity_id: Any = None,
        field: str | None = None,
        current_state: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id) if entity_id is not None else None
        self.field = field
        self.current_state = current_state
        super().__init__(message)


class ValidationError(DeliveryKernelError):
    """Input is malformed, out of range, or names a field that is not writable."""

    code: str = "VALIDATION_ERROR"


class PermissionDeniedError(DeliveryKernelError):
    """The actor's project-scoped role lacks the capability for an operation."""

    code: str = "PERMISSION_DENIED"

    def __init__(
        self,
        actor_id: Any,
        operation: str,
        role: str | None,
        project_id: Any = None,
    ):
        self.actor_id = str(actor_id)
        self.operation = operation
        self.role = role
        self.project_id = str(project_id) if project_id is not None else None
        held = role if role is not None else "no role"
        super().__init__(
            f"Actor {actor_id} ({held}) may not perform '{operation}'",
            entity_type="Project",
            entity_id=project_id,
        )


class InvalidStateTransitionError(DeliveryKernelError):
    """The operation is illegal from the entity's currently persisted state."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        current_state: str,
        operation: str,
        reason: str | None = None,
    ):
        self.operation = operation
        self.reason = reason
        message = (
            f"Cannot {operation} {entity_type} {entity_id} "
            f"from state '{current_state}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            entity_type=entity_type,
            entity_id=entity_id,
            current_state=current_state,
        )


class ImmutableFieldError(DeliveryKernelError):
    """A locked field was written, or an entity was edited past its mutable window."""

    code: str = "IMMUTABLE_FIELD"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        field: str | None,
        reason: str,
        current_state: str | None = None,
    ):
        self.reason = reason
        target = f"field '{field}' of " if field else ""
        super().__init__(
            f"Cannot modify {target}{entity_type} {entity_id}: {reason}",
            entity_type=entity_type,
            entity_id=entity_id,
            field=field,
            current_state=current_state,
        )


class ConflictError(DeliveryKernelError):
    """The entity changed underneath the writer; re-read and retry."""

    code: str = "CONFLICT"
    retryable: bool = True

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        field: str | None = None,
        expected: Any = None,
        actual: Any = None,
    ):
        self.expected = expected
        self.actual = actual
        if field is not None:
            detail = f"expected {field}={expected!r}, found {actual!r}"
        else:
            detail = "entity was modified by another transaction"
        super().__init__(
            f"Conflict on {entity_type} {entity_id}: {detail}",
            entity_type=entity_type,
            entity_id=entity_id,
            field=field,
        )


class NotFoundError(DeliveryKernelError):
    """No entity of the given type has the given identifier."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            f"{entity_type} {entity_id} not found",
            entity_type=entity_type,
            entity_id=entity_id,
        )


# Audit


class AuditError(DeliveryKernelError):
    """Base class for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}",
            entity_type="AuditEvent",
            entity_id=audit_event_id,
        )
