"""
Deliverable workflow through the command surface.

Each command runs in its own transaction; the owning milestone's derived
status and progress are read back through the reporting side.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from delivery_kernel.domain.deliverable import DeliverableStatus
from delivery_kernel.domain.milestone import MilestoneStatus
from delivery_kernel.exceptions import (
    ConflictError,
    ImmutableFieldError,
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from delivery_kernel.services.auditor_service import AuditorService

_S = DeliverableStatus


def _milestone_state(reports, cast, milestone_id):
    return reports.milestone_summary(cast.viewer, milestone_id).milestone


class TestProgress:
    def test_progress_starts_and_unstarts_work(self, commands, cast, milestone, make_deliverable, reports):
        deliverable = make_deliverable(milestone.id)

        started = commands.set_deliverable_progress(cast.supplier, deliverable.id, 40).entity
        assert started.status is _S.IN_PROGRESS
        assert started.progress == 40
        m = _milestone_state(reports, cast, milestone.id)
        assert (m.status, m.progress) == (MilestoneStatus.IN_PROGRESS, 40)

        reset = commands.set_deliverable_progress(cast.supplier, deliverable.id, 0).entity
        assert reset.status is _S.NOT_STARTED
        m = _milestone_state(reports, cast, milestone.id)
        assert (m.status, m.progress) == (MilestoneStatus.NOT_STARTED, 0)

    def test_contributor_may_record_progress(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        result = commands.set_deliverable_progress(cast.contributor, deliverable.id, 25)
        assert result.entity.progress == 25

    @pytest.mark.parametrize("value", [-1, 101, 55.5])
    def test_out_of_range_progress(self, commands, cast, milestone, make_deliverable, value):
        deliverable = make_deliverable(milestone.id)
        with pytest.raises(ValidationError):
            commands.set_deliverable_progress(cast.supplier, deliverable.id, value)

    def test_delivered_progress_is_frozen(self, commands, cast, milestone, make_deliverable, deliver):
        deliverable = make_deliverable(milestone.id)
        deliver(deliverable.id)
        with pytest.raises(InvalidStateTransitionError) as exc:
            commands.set_deliverable_progress(cast.supplier, deliverable.id, 50)
        assert exc.value.current_state == "delivered"

    def test_unknown_deliverable(self, commands, cast):
        with pytest.raises(NotFoundError):
            commands.set_deliverable_progress(cast.supplier, uuid4(), 10)


class TestMilestoneRollup:
    def test_mixed_set_rounds_half_up(
        self, commands, cast, milestone, make_deliverable, deliver, reports
    ):
        first, second, third = (make_deliverable(milestone.id) for _ in range(3))
        deliver(first.id)
        deliver(second.id)
        commands.set_deliverable_progress(cast.supplier, third.id, 80)

        m = _milestone_state(reports, cast, milestone.id)
        assert m.progress == 93
        assert m.status is MilestoneStatus.IN_PROGRESS

    def test_no_deliverables(self, milestone, reports, cast):
        m = _milestone_state(reports, cast, milestone.id)
        assert (m.status, m.progress) == (MilestoneStatus.NOT_STARTED, 0)

    def test_all_delivered_completes_milestone(
        self, milestone, make_deliverable, deliver, reports, cast
    ):
        for _ in range(2):
            deliver(make_deliverable(milestone.id).id)
        m = _milestone_state(reports, cast, milestone.id)
        assert (m.status, m.progress) == (MilestoneStatus.COMPLETED, 100)

    def test_removal_recomputes(self, commands, cast, milestone, make_deliverable, reports):
        done = make_deliverable(milestone.id)
        idle = make_deliverable(milestone.id)
        commands.set_deliverable_progress(cast.supplier, done.id, 60)
        assert _milestone_state(reports, cast, milestone.id).progress == 30

        commands.remove_deliverable(cast.supplier, idle.id)
        assert _milestone_state(reports, cast, milestone.id).progress == 60

    def test_derived_fields_not_writable(self, commands, cast, milestone):
        with pytest.raises(ValidationError) as exc:
            commands.update_milestone(cast.supplier, milestone.id, {"progress": 50})
        assert exc.value.field == "progress"


class TestReviewCycle:
    def test_submit_requires_work_in_progress(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        with pytest.raises(InvalidStateTransitionError) as exc:
            commands.submit_deliverable_for_review(cast.supplier, deliverable.id)
        assert exc.value.current_state == "not_started"

    def test_return_and_resubmit(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        commands.set_deliverable_progress(cast.supplier, deliverable.id, 90)
        commands.submit_deliverable_for_review(cast.supplier, deliverable.id)

        returned = commands.return_deliverable_for_more_work(
            cast.customer, deliverable.id, "Missing appendix B"
        ).entity
        assert returned.status is _S.RETURNED_FOR_MORE_WORK
        assert returned.return_reason == "Missing appendix B"

        resubmitted = commands.submit_deliverable_for_review(cast.supplier, deliverable.id).entity
        assert resubmitted.status is _S.SUBMITTED_FOR_REVIEW

    def test_return_requires_reason(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        commands.set_deliverable_progress(cast.supplier, deliverable.id, 90)
        commands.submit_deliverable_for_review(cast.supplier, deliverable.id)
        with pytest.raises(ValidationError):
            commands.return_deliverable_for_more_work(cast.customer, deliverable.id, "  ")

    def test_supplier_cannot_accept_own_review(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        commands.set_deliverable_progress(cast.supplier, deliverable.id, 100)
        commands.submit_deliverable_for_review(cast.supplier, deliverable.id)
        with pytest.raises(PermissionDeniedError):
            commands.accept_deliverable_review(cast.supplier, deliverable.id)

    def test_contributor_cannot_submit(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        commands.set_deliverable_progress(cast.contributor, deliverable.id, 100)
        with pytest.raises(PermissionDeniedError):
            commands.submit_deliverable_for_review(cast.contributor, deliverable.id)

    def test_review_does_not_change_progress(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        commands.set_deliverable_progress(cast.supplier, deliverable.id, 70)
        commands.submit_deliverable_for_review(cast.supplier, deliverable.id)
        accepted = commands.accept_deliverable_review(cast.customer, deliverable.id).entity
        assert accepted.status is _S.REVIEW_COMPLETE
        assert accepted.progress == 70


class TestDeliverySignOff:
    def _review_complete(self, commands, cast, deliverable_id, progress=70):
        commands.set_deliverable_progress(cast.supplier, deliverable_id, progress)
        commands.submit_deliverable_for_review(cast.supplier, deliverable_id)
        commands.accept_deliverable_review(cast.customer, deliverable_id)

    def test_second_signature_delivers(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        self._review_complete(commands, cast, deliverable.id)

        half = commands.sign_deliverable_delivery(cast.customer, deliverable.id, "customer").entity
        assert half.status is _S.REVIEW_COMPLETE
        assert half.sign_off.awaiting.value == "supplier"

        done = commands.sign_deliverable_delivery(cast.supplier, deliverable.id, "supplier").entity
        assert done.status is _S.DELIVERED
        assert done.progress == 100
        assert done.sign_off.both_signed
        assert done.sign_off.supplier.display_name == "Sam Supplier"
        assert done.sign_off.customer.role == "customer-review"

    def test_sign_before_review_complete(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        commands.set_deliverable_progress(cast.supplier, deliverable.id, 100)
        with pytest.raises(InvalidStateTransitionError):
            commands.sign_deliverable_delivery(cast.supplier, deliverable.id, "supplier")

    def test_resign_is_a_no_op(self, commands, cast, milestone, make_deliverable, captured_logs):
        deliverable = make_deliverable(milestone.id)
        self._review_complete(commands, cast, deliverable.id)
        first = commands.sign_deliverable_delivery(cast.supplier, deliverable.id, "supplier").entity

        again = commands.sign_deliverable_delivery(cast.admin, deliverable.id, "supplier").entity
        assert again.row_version == first.row_version
        assert again.sign_off == first.sign_off
        assert any(r["message"] == "deliverable_resign_ignored" for r in captured_logs())

    def test_admin_signs_both_sides(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        self._review_complete(commands, cast, deliverable.id)
        commands.sign_deliverable_delivery(cast.admin, deliverable.id, "supplier")
        done = commands.sign_deliverable_delivery(cast.admin, deliverable.id, "customer").entity
        assert done.status is _S.DELIVERED

    def test_contributor_cannot_sign(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        self._review_complete(commands, cast, deliverable.id)
        with pytest.raises(PermissionDeniedError):
            commands.sign_deliverable_delivery(cast.contributor, deliverable.id, "supplier")

    def test_unknown_side(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        with pytest.raises(ValidationError) as exc:
            commands.sign_deliverable_delivery(cast.supplier, deliverable.id, "auditor")
        assert exc.value.field == "side"


class TestEditAndRemove:
    def test_update_descriptive_fields(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        updated = commands.update_deliverable(
            cast.contributor, deliverable.id, {"name": "Detailed design", "description": "v2"}
        ).entity
        assert updated.name == "Detailed design"
        assert updated.description == "v2"
        assert updated.row_version > deliverable.row_version

    @pytest.mark.parametrize("field", ["status", "progress"])
    def test_derived_fields_rejected(self, commands, cast, milestone, make_deliverable, field):
        deliverable = make_deliverable(milestone.id)
        with pytest.raises(ValidationError) as exc:
            commands.update_deliverable(cast.supplier, deliverable.id, {field: "delivered"})
        assert exc.value.field == field

    def test_delivered_is_frozen(self, commands, cast, milestone, make_deliverable, deliver):
        deliverable = make_deliverable(milestone.id)
        deliver(deliverable.id)
        with pytest.raises(ImmutableFieldError):
            commands.update_deliverable(cast.supplier, deliverable.id, {"name": "Renamed"})
        with pytest.raises(ImmutableFieldError):
            commands.remove_deliverable(cast.supplier, deliverable.id)

    def test_reference_unique_per_milestone(self, commands, cast, milestone, make_deliverable):
        make_deliverable(milestone.id, reference="D-1")
        with pytest.raises(ValidationError) as exc:
            make_deliverable(milestone.id, reference="D-1")
        assert exc.value.field == "reference"

    def test_stale_expected_version(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        commands.set_deliverable_progress(cast.supplier, deliverable.id, 10)
        with pytest.raises(ConflictError) as exc:
            commands.set_deliverable_progress(
                cast.supplier, deliverable.id, 20, expected_version=deliverable.row_version
            )
        assert exc.value.field == "row_version"

    def test_rejected_command_leaves_no_trace(
        self, commands, cast, milestone, make_deliverable, reports
    ):
        deliverable = make_deliverable(milestone.id)
        with pytest.raises(ValidationError):
            commands.set_deliverable_progress(cast.supplier, deliverable.id, 120)
        summary = reports.milestone_summary(cast.viewer, milestone.id)
        assert summary.deliverables[0].progress == 0
        assert summary.milestone.billable == Decimal("10000")


class TestSignOffReset:
    def test_admin_reopens_delivered_deliverable(
        self, commands, cast, milestone, make_deliverable, deliver, reports, session_factory
    ):
        deliverable = make_deliverable(milestone.id)
        deliver(deliverable.id)
        assert _milestone_state(reports, cast, milestone.id).status is MilestoneStatus.COMPLETED

        reset = commands.reset_deliverable_sign_off(
            cast.admin, deliverable.id, "Customer signed the wrong document"
        ).entity
        assert reset.status is _S.REVIEW_COMPLETE
        assert not reset.sign_off.any_signed
        assert _milestone_state(reports, cast, milestone.id).status is MilestoneStatus.IN_PROGRESS

        with session_factory() as s:
            trace = AuditorService(s).get_trace("Deliverable", deliverable.id)
        assert trace.actions[-1] == "deliverable.reset_sign_off"
        assert trace.entries[-1].payload["detail"]["reason"] == "Customer signed the wrong document"

    def test_deliverable_can_be_signed_again(
        self, commands, cast, milestone, make_deliverable, deliver
    ):
        deliverable = make_deliverable(milestone.id)
        deliver(deliverable.id)
        commands.reset_deliverable_sign_off(cast.admin, deliverable.id, "Re-sign")
        commands.sign_deliverable_delivery(cast.supplier, deliverable.id, "supplier")
        done = commands.sign_deliverable_delivery(cast.customer, deliverable.id, "customer").entity
        assert done.status is _S.DELIVERED

    def test_clears_a_single_signature(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        commands.set_deliverable_progress(cast.supplier, deliverable.id, 100)
        commands.submit_deliverable_for_review(cast.supplier, deliverable.id)
        commands.accept_deliverable_review(cast.customer, deliverable.id)
        commands.sign_deliverable_delivery(cast.supplier, deliverable.id, "supplier")

        reset = commands.reset_deliverable_sign_off(cast.admin, deliverable.id, "Wrong PM").entity
        assert reset.status is _S.REVIEW_COMPLETE
        assert not reset.sign_off.any_signed

    def test_logged_at_warning(
        self, commands, cast, milestone, make_deliverable, deliver, captured_logs
    ):
        deliverable = make_deliverable(milestone.id)
        deliver(deliverable.id)
        commands.reset_deliverable_sign_off(cast.admin, deliverable.id, "Re-sign")
        records = [r for r in captured_logs() if r["message"] == "deliverable_sign_off_reset"]
        assert records[0]["level"] == "WARNING"
        assert records[0]["previous_status"] == "delivered"

    @pytest.mark.parametrize("who", ["supplier", "customer", "contributor"])
    def test_admin_only(self, commands, cast, milestone, make_deliverable, deliver, who):
        deliverable = make_deliverable(milestone.id)
        deliver(deliverable.id)
        with pytest.raises(PermissionDeniedError):
            commands.reset_deliverable_sign_off(getattr(cast, who), deliverable.id, "Please")

    def test_reason_required(self, commands, cast, milestone, make_deliverable, deliver):
        deliverable = make_deliverable(milestone.id)
        deliver(deliverable.id)
        with pytest.raises(ValidationError) as exc:
            commands.reset_deliverable_sign_off(cast.admin, deliverable.id, "  ")
        assert exc.value.field == "reason"

    def test_nothing_to_reset(self, commands, cast, milestone, make_deliverable):
        deliverable = make_deliverable(milestone.id)
        with pytest.raises(InvalidStateTransitionError):
            commands.reset_deliverable_sign_off(cast.admin, deliverable.id, "Tidy up")

    def test_refused_once_certificate_exists(
        self, commands, cast, milestone, make_deliverable, deliver, reports
    ):
        deliverable = make_deliverable(milestone.id)
        deliver(deliverable.id)
        commands.generate_certificate(cast.supplier, milestone.id)
        with pytest.raises(InvalidStateTransitionError) as exc:
            commands.reset_deliverable_sign_off(cast.admin, deliverable.id, "Too late")
        assert "PRJ-M01-CERT" in exc.value.reason
        summary = reports.milestone_summary(cast.viewer, milestone.id)
        assert summary.deliverables[0].status is _S.DELIVERED
