"""
delivery_services -- command surface and read side over the delivery kernel.

Usage:
    from delivery_kernel.db.engine import get_session_factory
    from delivery_services import DeliveryCommandService

    commands = DeliveryCommandService(get_session_factory())
"""

from delivery_services.audit_dispatch import CollectingAuditSink, LedgerAuditSink
from delivery_services.commands import AuditWarning, CommandResult, DeliveryCommandService
from delivery_services.orchestrator import DeliveryOrchestrator
from delivery_services.reporting import DeliveryReports

__all__ = [
    "AuditWarning",
    "CollectingAuditSink",
    "CommandResult",
    "DeliveryCommandService",
    "DeliveryOrchestrator",
    "DeliveryReports",
    "LedgerAuditSink",
]
