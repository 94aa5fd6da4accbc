"""
Dual-signature value objects (``delivery_kernel.domain.signatures``).

Responsibility
--------------
One implementation of the two-party sign-off used by deliverable delivery,
baseline commitment, acceptance certificates and variations.  A
``SignaturePair`` holds an optional supplier slot and an optional customer
slot; ``both_signed`` is the derived "approved" accessor.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* A filled slot is never overwritten: ``with_signature`` raises
  ``ValueError`` if the slot is already filled.  Callers decide whether a
  repeat signature is a no-op or an invalid transition.
* Pairs are immutable; signing returns a new pair.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class SignatureSide(str, Enum):
    SUPPLIER = "supplier"
    CUSTOMER = "customer"

    @property
    def other(self) -> SignatureSide:
        if self is SignatureSide.SUPPLIER:
            return SignatureSide.CUSTOMER
        return SignatureSide.SUPPLIER


@dataclass(frozen=True)
class Signature:
    """A recorded approval: who, as which role, and when."""

    signer_id: UUID
    display_name: str
    role: str
    signed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "signer_id": str(self.signer_id),
            "display_name": self.display_name,
            "role": self.role,
            "signed_at": self.signed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Signature:
        return cls(
            signer_id=UUID(data["signer_id"]),
            display_name=data["display_name"],
            role=data["role"],
            signed_at=datetime.fromisoformat(data["signed_at"]),
        )


@dataclass(frozen=True)
class SignaturePair:
    """Two independent optional signature slots."""

    supplier: Signature | None = None
    customer: Signature | None = None

    def slot(self, side: SignatureSide) -> Signature | None:
        if side is SignatureSide.SUPPLIER:
            return self.supplier
        return self.customer

    def is_filled(self, side: SignatureSide) -> bool:
        return self.slot(side) is not None

    @property
    def both_signed(self) -> bool:
        return self.supplier is not None and self.customer is not None

    @property
    def any_signed(self) -> bool:
        return self.supplier is not None or self.customer is not None

    @property
    def awaiting(self) -> SignatureSide | None:
        """The side still to sign when exactly one slot is filled."""
        if self.supplier is not None and self.customer is None:
            return SignatureSide.CUSTOMER
        if self.customer is not None and self.supplier is None:
            return SignatureSide.SUPPLIER
        return None

    def with_signature(self, side: SignatureSide, signature: Signature) -> SignaturePair:
        if self.is_filled(side):
            raise ValueError(f"{side.value} signature slot is already filled")
        if side is SignatureSide.SUPPLIER:
            return SignaturePair(supplier=signature, customer=self.customer)
        return SignaturePair(supplier=self.supplier, customer=signature)

    def cleared(self) -> SignaturePair:
        return SignaturePair()
