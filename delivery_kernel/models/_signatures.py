"""
Module: delivery_kernel.models._signatures
Responsibility: Persist a ``SignaturePair`` as two nullable JSON slot columns
    on whichever entity owns a dual sign-off.
Architecture position: Kernel > Models.  Imports db/base and domain value
    objects only.
"""

from typing import Any

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from delivery_kernel.domain.signatures import Signature, SignaturePair


class SignatureSlotsMixin:
    """Supplier and customer signature slots stored as JSON objects."""

    supplier_signature: Mapped[dict[str, Any] | None] = mapped_column(
        JSON(none_as_null=True),
        nullable=True,
    )
    customer_signature: Mapped[dict[str, Any] | None] = mapped_column(
        JSON(none_as_null=True),
        nullable=True,
    )

    def signature_pair(self) -> SignaturePair:
        return SignaturePair(
            supplier=(
                Signature.from_dict(self.supplier_signature)
                if self.supplier_signature else None
            ),
            customer=(
                Signature.from_dict(self.customer_signature)
                if self.customer_signature else None
            ),
        )

    def store_signature_pair(self, pair: SignaturePair) -> None:
        self.supplier_signature = pair.supplier.to_dict() if pair.supplier else None
        self.customer_signature = pair.customer.to_dict() if pair.customer else None
