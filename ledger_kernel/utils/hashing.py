"""
Deterministic hashing for the audit hash chain.

canonicalize_json() gives one byte-exact rendering of a payload (sorted keys,
no whitespace, normalized Decimal / date / UUID), so the same audit content
always hashes the same way on write and on chain validation.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"


def _json_serializer(obj: Any) -> Any:
    """Serialize the non-JSON types that appear in audit payloads."""
    if isinstance(obj, Decimal):
        # Normalize so 7.00 and 7 render identically
        return str(obj.normalize())
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """Canonical JSON: sorted keys, compact separators, normalized scalars."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_json_safe(data: Any) -> Any:
    """Round-trip through canonical JSON so stored values re-hash identically."""
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    """Hex SHA-256 of the canonical JSON of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_audit_record(
    target_type: str,
    target_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Chain hash for one audit record.

    hash = sha256(target_type | target_id | action | payload_hash | prev_hash)
    with "GENESIS" standing in for the missing predecessor of the first row.
    """
    components = [
        target_type,
        str(target_id),
        action,
        payload_hash,
        prev_hash or GENESIS_MARKER,
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
