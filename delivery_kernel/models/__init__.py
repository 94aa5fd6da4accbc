"""
delivery_kernel.models -- ORM models for the delivery kernel.

``import_all_models()`` imports every model module so ``Base.metadata``
knows every table before ``create_all`` runs.
"""

from delivery_kernel.models.audit_event import AuditEvent
from delivery_kernel.models.certificate import CertificateModel
from delivery_kernel.models.deliverable import DeliverableLinkModel, DeliverableModel
from delivery_kernel.models.milestone import BaselineVersionModel, MilestoneModel
from delivery_kernel.models.project import ProjectMemberModel, ProjectModel
from delivery_kernel.models.variation import VariationImpactModel, VariationModel

__all__ = [
    "AuditEvent",
    "BaselineVersionModel",
    "CertificateModel",
    "DeliverableLinkModel",
    "DeliverableModel",
    "MilestoneModel",
    "ProjectMemberModel",
    "ProjectModel",
    "VariationImpactModel",
    "VariationModel",
    "import_all_models",
]


def import_all_models() -> None:
    """Import every module that declares a table."""
    import delivery_kernel.services.sequence_service  # noqa: F401  (SequenceCounter)
