"""Baseline commitment: dual signature, lock, and the admin reset."""

from decimal import Decimal

import pytest

from delivery_kernel.domain.milestone import BaselineStatus
from delivery_kernel.exceptions import (
    ImmutableFieldError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    ValidationError,
)


class TestSignBaseline:
    def test_supplier_then_customer_locks(self, commands, cast, milestone):
        half = commands.sign_baseline(cast.supplier, milestone.id, "supplier").entity
        assert half.baseline_status is BaselineStatus.AWAITING_OTHER_PARTY
        assert not half.baseline_locked

        committed = commands.sign_baseline(cast.customer, milestone.id, "customer").entity
        assert committed.baseline_status is BaselineStatus.COMMITTED
        assert committed.baseline_locked

    def test_signing_order_does_not_matter(self, commands, cast, make_milestone):
        first, second = make_milestone(), make_milestone()

        commands.sign_baseline(cast.supplier, first.id, "supplier")
        a = commands.sign_baseline(cast.customer, first.id, "customer").entity
        commands.sign_baseline(cast.customer, second.id, "customer")
        b = commands.sign_baseline(cast.supplier, second.id, "supplier").entity

        for m in (a, b):
            assert m.baseline_locked
            assert m.baseline_sign_off.both_signed
            assert m.baseline_sign_off.supplier.signer_id == cast.supplier.actor_id
            assert m.baseline_sign_off.customer.signer_id == cast.customer.actor_id

    def test_filled_slot_cannot_be_signed_again(self, commands, cast, milestone):
        commands.sign_baseline(cast.supplier, milestone.id, "supplier")
        with pytest.raises(InvalidStateTransitionError) as exc:
            commands.sign_baseline(cast.admin, milestone.id, "supplier")
        assert exc.value.current_state == "awaiting_other_party"

    def test_customer_slot_is_customer_review_only(self, commands, cast, milestone):
        with pytest.raises(PermissionDeniedError) as exc:
            commands.sign_baseline(cast.admin, milestone.id, "customer")
        assert exc.value.role == "admin"

    def test_admin_may_sign_supplier_side(self, commands, cast, milestone):
        signed = commands.sign_baseline(cast.admin, milestone.id, "supplier").entity
        assert signed.baseline_sign_off.supplier.role == "admin"

    def test_dates_required(self, commands, cast, make_milestone):
        undated = make_milestone(baseline_start=None, baseline_end=None)
        with pytest.raises(InvalidStateTransitionError):
            commands.sign_baseline(cast.supplier, undated.id, "supplier")

    def test_locked_baseline_refuses_direct_edit(self, commands, cast, milestone, lock_baseline):
        lock_baseline(milestone.id)
        with pytest.raises(ImmutableFieldError) as exc:
            commands.update_milestone(
                cast.supplier, milestone.id, {"baseline_billable": Decimal("9000")}
            )
        assert exc.value.field == "baseline_billable"

    def test_committed_logged(self, commands, cast, milestone, lock_baseline, captured_logs):
        lock_baseline(milestone.id)
        messages = [r["message"] for r in captured_logs()]
        assert messages.count("baseline_signed") == 2
        assert "baseline_committed" in messages


class TestResetBaseline:
    def test_admin_reset_unlocks(
        self, commands, cast, milestone, lock_baseline, captured_logs
    ):
        lock_baseline(milestone.id)
        reset = commands.reset_baseline(
            cast.admin, milestone.id, "Contract schedule re-baselined"
        ).entity
        assert not reset.baseline_locked
        assert reset.baseline_status is BaselineStatus.NOT_COMMITTED

        updated = commands.update_milestone(
            cast.supplier, milestone.id, {"baseline_billable": Decimal("9000")}
        ).entity
        assert updated.baseline_billable == Decimal("9000")

        records = [r for r in captured_logs() if r["message"] == "baseline_reset"]
        assert records[0]["level"] == "WARNING"
        assert records[0]["reason"] == "Contract schedule re-baselined"

    def test_admin_only(self, commands, cast, milestone, lock_baseline):
        lock_baseline(milestone.id)
        with pytest.raises(PermissionDeniedError):
            commands.reset_baseline(cast.supplier, milestone.id, "Please")

    def test_reason_required(self, commands, cast, milestone, lock_baseline):
        lock_baseline(milestone.id)
        with pytest.raises(ValidationError):
            commands.reset_baseline(cast.admin, milestone.id, "")

    def test_nothing_to_reset(self, commands, cast, milestone):
        with pytest.raises(InvalidStateTransitionError):
            commands.reset_baseline(cast.admin, milestone.id, "Tidy up")

    def test_reset_after_one_signature(self, commands, cast, milestone):
        commands.sign_baseline(cast.customer, milestone.id, "customer")
        reset = commands.reset_baseline(cast.admin, milestone.id, "Wrong dates").entity
        assert reset.baseline_sign_off.customer is None
