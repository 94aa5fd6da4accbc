"""
ORM immutability listeners.

These go around the services and write rows directly, proving the
database layer refuses changes to frozen rows on its own.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from delivery_kernel.db.immutability import amending_baseline, resetting_sign_off
from delivery_kernel.domain.variation import MilestoneImpact
from delivery_kernel.exceptions import ImmutableFieldError
from delivery_kernel.models.audit_event import AuditEvent
from delivery_kernel.models.certificate import CertificateModel
from delivery_kernel.models.deliverable import DeliverableModel
from delivery_kernel.models.milestone import BaselineVersionModel, MilestoneModel


@pytest.fixture
def signed_certificate(commands, cast, milestone, make_deliverable, deliver):
    deliver(make_deliverable(milestone.id).id)
    certificate = commands.generate_certificate(cast.supplier, milestone.id).entity
    commands.sign_certificate(cast.supplier, certificate.id, "supplier")
    return commands.sign_certificate(cast.customer, certificate.id, "customer").entity


class TestLockedBaseline:
    def test_direct_write_blocked(self, session_factory, milestone, lock_baseline):
        lock_baseline(milestone.id)
        with session_factory() as s:
            row = s.get(MilestoneModel, milestone.id)
            row.baseline_billable = Decimal("1.00")
            with pytest.raises(ImmutableFieldError) as exc_info:
                s.flush()
            assert exc_info.value.field == "baseline_billable"
            s.rollback()

    def test_amendment_scope_allows_write(self, session_factory, milestone, lock_baseline):
        lock_baseline(milestone.id)
        with session_factory() as s:
            row = s.get(MilestoneModel, milestone.id)
            with amending_baseline(s):
                row.baseline_billable = Decimal("12000.00")
                s.flush()
            s.rollback()

    def test_unlocked_baseline_is_writable(self, session_factory, milestone):
        with session_factory() as s:
            row = s.get(MilestoneModel, milestone.id)
            row.baseline_billable = Decimal("9000.00")
            s.flush()
            s.rollback()

    def test_non_baseline_fields_stay_writable(self, session_factory, milestone, lock_baseline):
        lock_baseline(milestone.id)
        with session_factory() as s:
            row = s.get(MilestoneModel, milestone.id)
            row.description = "Updated scope notes"
            s.flush()
            s.rollback()


class TestSignedCertificate:
    def test_update_blocked(self, session_factory, signed_certificate):
        with session_factory() as s:
            row = s.get(CertificateModel, signed_certificate.id)
            row.payment_value = Decimal("1.00")
            with pytest.raises(ImmutableFieldError):
                s.flush()
            s.rollback()

    def test_delete_blocked(self, session_factory, signed_certificate):
        with session_factory() as s:
            s.delete(s.get(CertificateModel, signed_certificate.id))
            with pytest.raises(ImmutableFieldError):
                s.flush()
            s.rollback()


class TestDeliveredDeliverable:
    def test_update_blocked(self, session_factory, milestone, make_deliverable, deliver):
        delivered = deliver(make_deliverable(milestone.id).id)
        with session_factory() as s:
            row = s.get(DeliverableModel, delivered.id)
            row.name = "Renamed after delivery"
            with pytest.raises(ImmutableFieldError) as exc_info:
                s.flush()
            assert exc_info.value.current_state == "delivered"
            s.rollback()

    def test_sign_off_reset_scope_allows_write(
        self, session_factory, milestone, make_deliverable, deliver
    ):
        delivered = deliver(make_deliverable(milestone.id).id)
        with session_factory() as s:
            row = s.get(DeliverableModel, delivered.id)
            with resetting_sign_off(s):
                row.status = "review_complete"
                s.flush()
            s.rollback()

    def test_scope_ends_with_the_block(
        self, session_factory, milestone, make_deliverable, deliver
    ):
        delivered = deliver(make_deliverable(milestone.id).id)
        with session_factory() as s:
            with resetting_sign_off(s):
                pass
            row = s.get(DeliverableModel, delivered.id)
            row.status = "review_complete"
            with pytest.raises(ImmutableFieldError):
                s.flush()
            s.rollback()


class TestAppendOnlyRows:
    def test_audit_event_update_blocked(self, session_factory, commands, cast, milestone):
        commands.update_milestone(cast.supplier, milestone.id, {"name": "Renamed"})
        with session_factory() as s:
            event = s.execute(select(AuditEvent).limit(1)).scalar_one()
            event.action = "forged"
            with pytest.raises(ImmutableFieldError):
                s.flush()
            s.rollback()

    def test_audit_event_delete_blocked(self, session_factory, milestone):
        with session_factory() as s:
            s.delete(s.execute(select(AuditEvent).limit(1)).scalar_one())
            with pytest.raises(ImmutableFieldError):
                s.flush()
            s.rollback()

    def test_baseline_history_update_blocked(
        self, session_factory, commands, cast, project_id, milestone, lock_baseline, approve
    ):
        lock_baseline(milestone.id)
        variation = commands.create_variation(
            cast.supplier, project_id, "Extra budget", "cost_adjustment",
            impacts=[MilestoneImpact(milestone_id=milestone.id, cost_impact=Decimal("500"))],
        ).entity
        approve(variation.id)
        commands.apply_variation(cast.supplier, variation.id)

        with session_factory() as s:
            snapshot = s.execute(select(BaselineVersionModel)).scalar_one()
            snapshot.baseline_billable = Decimal("1.00")
            with pytest.raises(ImmutableFieldError):
                s.flush()
            s.rollback()
