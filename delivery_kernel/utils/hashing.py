"""
Deterministic hashing utilities.

All audit hashing must be reproducible: the same payload always produces
the same canonical JSON and therefore the same digest.
"""

import hashlib
import json
from dataclasses import fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Serializer for types json does not handle natively.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalized so 1000 and 1000.000000000 hash alike; fixed-point, never 1E+3
        return format(obj.normalize(), "f")
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted((to_plain(item) for item in obj), key=canonicalize_json)
    if is_dataclass(obj) and not isinstance(obj, type):
        return to_plain(obj)
    if isinstance(obj, bytes):
        return obj.hex()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """
    Convert data to a canonical JSON string: sorted keys, no whitespace,
    consistent handling of Decimal, dates, UUID, enums, sets and dataclasses.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_plain(data: Any) -> Any:
    """
    Reduce ``data`` to JSON-native types (dict, list, str, int, bool, None).

    Used to store snapshots in JSON columns, which cannot hold Decimal,
    UUID or dates.
    """
    if is_dataclass(data) and not isinstance(data, type):
        # Shallow, so nested sets of dataclasses reach the serializer intact
        data = {f.name: getattr(data, f.name) for f in fields(data)}
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Hash of one audit event, chained to its predecessor.

    Any change to an earlier event's fields changes every later hash.
    """
    components = [
        entity_type,
        str(entity_id),
        action,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
