"""The static capability table."""

from uuid import uuid4

import pytest

from delivery_kernel.domain.permissions import (
    CAPABILITIES,
    SIGNING_OPERATIONS,
    Operation,
    is_allowed,
    signing_operation,
)
from delivery_kernel.domain.roles import Actor, ProjectRole
from delivery_kernel.domain.signatures import SignatureSide

_R = ProjectRole


class TestCapabilityTable:
    def test_every_operation_has_an_entry(self):
        assert set(CAPABILITIES) == set(Operation)

    def test_every_role_may_view(self):
        for role in ProjectRole:
            assert is_allowed(role, Operation.PROJECT_VIEW)

    def test_no_role_means_no_access(self):
        assert not is_allowed(None, Operation.PROJECT_VIEW)

    @pytest.mark.parametrize(
        "operation",
        [
            Operation.BASELINE_SIGN_CUSTOMER,
            Operation.CERTIFICATE_SIGN_CUSTOMER,
            Operation.VARIATION_SIGN_CUSTOMER,
        ],
    )
    def test_customer_signatures_are_customer_review_only(self, operation):
        assert CAPABILITIES[operation] == frozenset({_R.CUSTOMER_REVIEW})

    def test_admin_signs_either_delivery_side(self):
        assert is_allowed(_R.ADMIN, Operation.DELIVERABLE_SIGN_SUPPLIER)
        assert is_allowed(_R.ADMIN, Operation.DELIVERABLE_SIGN_CUSTOMER)

    def test_viewer_cannot_write(self):
        writes = set(Operation) - {Operation.PROJECT_VIEW}
        assert not any(is_allowed(_R.VIEWER, op) for op in writes)

    def test_contributor_edits_deliverables_but_cannot_sign(self):
        assert is_allowed(_R.CONTRIBUTOR, Operation.DELIVERABLE_SET_PROGRESS)
        assert not is_allowed(_R.CONTRIBUTOR, Operation.DELIVERABLE_SIGN_SUPPLIER)
        assert not is_allowed(_R.CONTRIBUTOR, Operation.DELIVERABLE_SUBMIT_FOR_REVIEW)

    def test_only_admin_resets_and_deletes_milestones(self):
        assert CAPABILITIES[Operation.BASELINE_RESET] == frozenset({_R.ADMIN})
        assert CAPABILITIES[Operation.MILESTONE_DELETE] == frozenset({_R.ADMIN})
        assert CAPABILITIES[Operation.DELIVERABLE_RESET_SIGN_OFF] == frozenset({_R.ADMIN})


class TestSigningOperations:
    def test_every_kind_has_both_sides(self):
        kinds = {kind for kind, _ in SIGNING_OPERATIONS}
        assert kinds == {"deliverable", "baseline", "certificate", "variation"}
        assert len(SIGNING_OPERATIONS) == 8

    def test_lookup(self):
        assert signing_operation("variation", SignatureSide.CUSTOMER) is (
            Operation.VARIATION_SIGN_CUSTOMER
        )


class TestActor:
    def test_display_name_required(self):
        with pytest.raises(ValueError):
            Actor(actor_id=uuid4(), display_name="  ")
