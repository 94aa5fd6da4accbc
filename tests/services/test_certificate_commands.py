"""Acceptance certificate generation and dual-signature sign-off."""

from decimal import Decimal

import pytest

from delivery_kernel.domain.certificate import CertificateStatus
from delivery_kernel.domain.deliverable import DeliverableStatus
from delivery_kernel.exceptions import (
    InvalidStateTransitionError,
    PermissionDeniedError,
)

_C = CertificateStatus


@pytest.fixture
def delivered_milestone(milestone, make_deliverable, deliver):
    deliver(make_deliverable(milestone.id, reference="D-B", name="Build notes").id)
    deliver(make_deliverable(milestone.id, reference="D-A", name="Architecture").id)
    return milestone


class TestGenerate:
    def test_generation_blocked_by_work_in_progress(
        self, commands, cast, milestone, make_deliverable, deliver
    ):
        deliver(make_deliverable(milestone.id).id)
        pending = make_deliverable(milestone.id)
        commands.set_deliverable_progress(cast.supplier, pending.id, 60)

        with pytest.raises(InvalidStateTransitionError) as exc:
            commands.generate_certificate(cast.supplier, milestone.id)
        assert "1 of 2 deliverables not delivered" in str(exc.value)

    def test_generation_blocked_without_deliverables(self, commands, cast, milestone):
        with pytest.raises(InvalidStateTransitionError):
            commands.generate_certificate(cast.supplier, milestone.id)

    def test_draft_certificate(self, commands, cast, delivered_milestone):
        certificate = commands.generate_certificate(cast.customer, delivered_milestone.id).entity
        assert certificate.status is _C.DRAFT
        assert certificate.certificate_number == "PRJ-M01-CERT"
        assert certificate.payment_value == Decimal("10000.00")
        assert [line.reference for line in certificate.deliverables] == ["D-A", "D-B"]
        assert all(line.status is DeliverableStatus.DELIVERED for line in certificate.deliverables)
        assert not certificate.ready_to_bill

    def test_one_certificate_per_milestone(self, commands, cast, delivered_milestone):
        commands.generate_certificate(cast.supplier, delivered_milestone.id)
        with pytest.raises(InvalidStateTransitionError):
            commands.generate_certificate(cast.supplier, delivered_milestone.id)

    def test_snapshot_is_fixed(
        self, commands, cast, delivered_milestone, make_deliverable, reports
    ):
        commands.generate_certificate(cast.supplier, delivered_milestone.id)
        make_deliverable(delivered_milestone.id, reference="D-C")
        commands.update_milestone(cast.supplier, delivered_milestone.id, {"billable": Decimal("1")})

        summary = reports.milestone_summary(cast.viewer, delivered_milestone.id)
        assert len(summary.deliverables) == 3
        assert [line.reference for line in summary.certificate.deliverables] == ["D-A", "D-B"]
        assert summary.certificate.payment_value == Decimal("10000")

    def test_viewer_cannot_generate(self, commands, cast, delivered_milestone):
        with pytest.raises(PermissionDeniedError):
            commands.generate_certificate(cast.viewer, delivered_milestone.id)


class TestSignCertificate:
    def test_either_order_reaches_signed(self, commands, cast, make_milestone, make_deliverable, deliver):
        results = {}
        for order in (("supplier", "customer"), ("customer", "supplier")):
            milestone = make_milestone()
            deliver(make_deliverable(milestone.id).id)
            certificate = commands.generate_certificate(cast.supplier, milestone.id).entity
            signers = {"supplier": cast.supplier, "customer": cast.customer}

            first = commands.sign_certificate(signers[order[0]], certificate.id, order[0]).entity
            last = commands.sign_certificate(signers[order[1]], certificate.id, order[1]).entity
            results[order] = (first.status, last)

        assert results[("supplier", "customer")][0] is _C.AWAITING_CUSTOMER_SIGNATURE
        assert results[("customer", "supplier")][0] is _C.AWAITING_SUPPLIER_SIGNATURE
        for _, final in results.values():
            assert final.status is _C.SIGNED
            assert final.sign_off.both_signed
            assert final.signed_at is not None
            assert final.ready_to_bill

    def test_filled_slot_rejected(self, commands, cast, delivered_milestone):
        certificate = commands.generate_certificate(cast.supplier, delivered_milestone.id).entity
        commands.sign_certificate(cast.supplier, certificate.id, "supplier")
        with pytest.raises(InvalidStateTransitionError):
            commands.sign_certificate(cast.admin, certificate.id, "supplier")

    def test_signed_certificate_is_final(self, commands, cast, delivered_milestone):
        certificate = commands.generate_certificate(cast.supplier, delivered_milestone.id).entity
        commands.sign_certificate(cast.supplier, certificate.id, "supplier")
        commands.sign_certificate(cast.customer, certificate.id, "customer")
        with pytest.raises(InvalidStateTransitionError) as exc:
            commands.sign_certificate(cast.customer, certificate.id, "customer")
        assert exc.value.current_state == "signed"

    def test_admin_cannot_sign_for_customer(self, commands, cast, delivered_milestone):
        certificate = commands.generate_certificate(cast.supplier, delivered_milestone.id).entity
        with pytest.raises(PermissionDeniedError):
            commands.sign_certificate(cast.admin, certificate.id, "customer")

    def test_billing_readiness(self, commands, cast, delivered_milestone, make_milestone, reports, project_id):
        make_milestone("M02")
        certificate = commands.generate_certificate(cast.supplier, delivered_milestone.id).entity
        commands.sign_certificate(cast.supplier, certificate.id, "supplier")
        commands.sign_certificate(cast.customer, certificate.id, "customer")

        lines = reports.billing_readiness(cast.viewer, project_id)
        assert [line.reference for line in lines] == ["M01", "M02"]
        assert lines[0].ready_to_bill
        assert lines[0].certificate_number == "PRJ-M01-CERT"
        assert lines[0].payment_value == Decimal("10000")
        assert not lines[1].ready_to_bill
        assert lines[1].certificate_status is None
