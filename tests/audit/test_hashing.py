"""Canonical JSON and plain-value reduction used by audit payloads."""

from datetime import date
from decimal import Decimal
from uuid import UUID

from delivery_kernel.domain.deliverable import DeliverableLink, LinkKind
from delivery_kernel.utils.hashing import canonicalize_json, hash_payload, to_plain

_ID = UUID("00000000-0000-0000-0000-000000000001")


class TestToPlain:
    def test_decimals_are_fixed_point(self):
        assert to_plain({"a": Decimal("10000.000000000"), "b": Decimal("0.50")}) == {
            "a": "10000",
            "b": "0.5",
        }

    def test_nested_dataclass_sets(self):
        links = frozenset({DeliverableLink(LinkKind.KPI, _ID)})
        assert to_plain({"links": links}) == {
            "links": [{"kind": "kpi", "reference_id": str(_ID)}]
        }

    def test_dates(self):
        assert to_plain({"d": date(2024, 3, 29)}) == {"d": "2024-03-29"}


class TestHashPayload:
    def test_key_order_and_scale_do_not_matter(self):
        a = {"x": Decimal("1.0"), "y": 2}
        b = {"y": 2, "x": Decimal("1.000")}
        assert canonicalize_json(a) == canonicalize_json(b)
        assert hash_payload(a) == hash_payload(b)

    def test_content_matters(self):
        assert hash_payload({"x": 1}) != hash_payload({"x": 2})
