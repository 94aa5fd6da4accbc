"""
Capability table (``delivery_kernel.domain.permissions``).

Responsibility
--------------
Static mapping of every engine operation to the set of project roles that
may perform it.  Role-gated behaviour is decided here and nowhere else;
services ask ``PermissionGate`` which consults this table.

Architecture position
---------------------
**Kernel domain layer** -- pure data.  ZERO I/O.

Invariants enforced
-------------------
* Every ``Operation`` has an entry in ``CAPABILITIES``.
* Customer-side baseline, certificate and variation signatures are held
  by ``customer-review`` alone; admins may act for the supplier side.
* Admins may sign either side of a deliverable delivery sign-off.
* Resets that clear a signed state (baseline, delivery sign-off) are
  admin-only.
"""

from __future__ import annotations

from enum import Enum

from delivery_kernel.domain.roles import ProjectRole
from delivery_kernel.domain.signatures import SignatureSide


class Operation(str, Enum):
    """Every operation the engine gates."""

    PROJECT_VIEW = "project.view"

    MILESTONE_CREATE = "milestone.create"
    MILESTONE_UPDATE = "milestone.update"
    MILESTONE_DELETE = "milestone.delete"

    DELIVERABLE_CREATE = "deliverable.create"
    DELIVERABLE_UPDATE = "deliverable.update"
    DELIVERABLE_REMOVE = "deliverable.remove"
    DELIVERABLE_SET_PROGRESS = "deliverable.set_progress"
    DELIVERABLE_SUBMIT_FOR_REVIEW = "deliverable.submit_for_review"
    DELIVERABLE_ACCEPT_REVIEW = "deliverable.accept_review"
    DELIVERABLE_RETURN_FOR_MORE_WORK = "deliverable.return_for_more_work"
    DELIVERABLE_SIGN_SUPPLIER = "deliverable.sign_supplier"
    DELIVERABLE_SIGN_CUSTOMER = "deliverable.sign_customer"
    DELIVERABLE_RESET_SIGN_OFF = "deliverable.reset_sign_off"

    BASELINE_SIGN_SUPPLIER = "baseline.sign_supplier"
    BASELINE_SIGN_CUSTOMER = "baseline.sign_customer"
    BASELINE_RESET = "baseline.reset"

    CERTIFICATE_GENERATE = "certificate.generate"
    CERTIFICATE_SIGN_SUPPLIER = "certificate.sign_supplier"
    CERTIFICATE_SIGN_CUSTOMER = "certificate.sign_customer"

    VARIATION_CREATE = "variation.create"
    VARIATION_EDIT = "variation.edit"
    VARIATION_SUBMIT = "variation.submit"
    VARIATION_SIGN_SUPPLIER = "variation.sign_supplier"
    VARIATION_SIGN_CUSTOMER = "variation.sign_customer"
    VARIATION_REJECT = "variation.reject"
    VARIATION_APPLY = "variation.apply"
    VARIATION_DELETE = "variation.delete"


_ADMIN = ProjectRole.ADMIN
_SUPPLIER = ProjectRole.SUPPLIER_DELIVERY
_CUSTOMER = ProjectRole.CUSTOMER_REVIEW
_CONTRIBUTOR = ProjectRole.CONTRIBUTOR
_VIEWER = ProjectRole.VIEWER

_SUPPLIER_SIDE = frozenset({_SUPPLIER, _ADMIN})
_CUSTOMER_ONLY = frozenset({_CUSTOMER})

CAPABILITIES: dict[Operation, frozenset[ProjectRole]] = {
    Operation.PROJECT_VIEW: frozenset(ProjectRole),

    Operation.MILESTONE_CREATE: _SUPPLIER_SIDE,
    Operation.MILESTONE_UPDATE: _SUPPLIER_SIDE,
    Operation.MILESTONE_DELETE: frozenset({_ADMIN}),

    Operation.DELIVERABLE_CREATE: frozenset({_ADMIN, _SUPPLIER, _CONTRIBUTOR}),
    Operation.DELIVERABLE_UPDATE: frozenset({_ADMIN, _SUPPLIER, _CONTRIBUTOR}),
    Operation.DELIVERABLE_REMOVE: _SUPPLIER_SIDE,
    Operation.DELIVERABLE_SET_PROGRESS: frozenset({_SUPPLIER, _ADMIN, _CONTRIBUTOR}),
    Operation.DELIVERABLE_SUBMIT_FOR_REVIEW: _SUPPLIER_SIDE,
    Operation.DELIVERABLE_ACCEPT_REVIEW: frozenset({_CUSTOMER, _ADMIN}),
    Operation.DELIVERABLE_RETURN_FOR_MORE_WORK: frozenset({_CUSTOMER, _ADMIN}),
    Operation.DELIVERABLE_SIGN_SUPPLIER: _SUPPLIER_SIDE,
    Operation.DELIVERABLE_SIGN_CUSTOMER: frozenset({_CUSTOMER, _ADMIN}),
    Operation.DELIVERABLE_RESET_SIGN_OFF: frozenset({_ADMIN}),

    Operation.BASELINE_SIGN_SUPPLIER: _SUPPLIER_SIDE,
    Operation.BASELINE_SIGN_CUSTOMER: _CUSTOMER_ONLY,
    Operation.BASELINE_RESET: frozenset({_ADMIN}),

    Operation.CERTIFICATE_GENERATE: frozenset({_ADMIN, _SUPPLIER, _CUSTOMER}),
    Operation.CERTIFICATE_SIGN_SUPPLIER: _SUPPLIER_SIDE,
    Operation.CERTIFICATE_SIGN_CUSTOMER: _CUSTOMER_ONLY,

    Operation.VARIATION_CREATE: _SUPPLIER_SIDE,
    Operation.VARIATION_EDIT: _SUPPLIER_SIDE,
    Operation.VARIATION_SUBMIT: _SUPPLIER_SIDE,
    Operation.VARIATION_SIGN_SUPPLIER: _SUPPLIER_SIDE,
    Operation.VARIATION_SIGN_CUSTOMER: _CUSTOMER_ONLY,
    Operation.VARIATION_REJECT: frozenset({_SUPPLIER, _CUSTOMER, _ADMIN}),
    Operation.VARIATION_APPLY: _SUPPLIER_SIDE,
    Operation.VARIATION_DELETE: _SUPPLIER_SIDE,
}

# (entity kind, side) -> signing operation
SIGNING_OPERATIONS: dict[tuple[str, SignatureSide], Operation] = {
    ("deliverable", SignatureSide.SUPPLIER): Operation.DELIVERABLE_SIGN_SUPPLIER,
    ("deliverable", SignatureSide.CUSTOMER): Operation.DELIVERABLE_SIGN_CUSTOMER,
    ("baseline", SignatureSide.SUPPLIER): Operation.BASELINE_SIGN_SUPPLIER,
    ("baseline", SignatureSide.CUSTOMER): Operation.BASELINE_SIGN_CUSTOMER,
    ("certificate", SignatureSide.SUPPLIER): Operation.CERTIFICATE_SIGN_SUPPLIER,
    ("certificate", SignatureSide.CUSTOMER): Operation.CERTIFICATE_SIGN_CUSTOMER,
    ("variation", SignatureSide.SUPPLIER): Operation.VARIATION_SIGN_SUPPLIER,
    ("variation", SignatureSide.CUSTOMER): Operation.VARIATION_SIGN_CUSTOMER,
}


def roles_for(operation: Operation) -> frozenset[ProjectRole]:
    """Roles allowed to perform ``operation``."""
    return CAPABILITIES[operation]


def is_allowed(role: ProjectRole | None, operation: Operation) -> bool:
    """True iff ``role`` holds the capability for ``operation``."""
    if role is None:
        return False
    return role in CAPABILITIES[operation]


def signing_operation(kind: str, side: SignatureSide) -> Operation:
    """The operation gating a signature on one side of ``kind``'s sign-off."""
    return SIGNING_OPERATIONS[(kind, side)]
