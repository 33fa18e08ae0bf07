"""
Deterministic hashing utilities.

All hashing in the inventory kernel must be deterministic and reproducible.
This module provides the canonical hashing functions used throughout: payload
and audit-chain hashes, advisory lock keys, and reconciliation fingerprints.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

# Advisory lock keys are signed BIGINT in PostgreSQL; keep them non-negative.
LOCK_KEY_MASK = (1 << 63) - 1


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (datetime, UUID, Enum)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_json_safe(data: Any) -> Any:
    """Round-trip through canonical JSON so a value can be stored in a JSON column."""
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict | list) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
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
    Compute hash for an audit event.

    The hash includes all key fields plus the previous event's hash,
    creating a tamper-evident chain.
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


def advisory_lock_key(*parts: Any) -> int:
    """
    Deterministic 63-bit non-negative lock key for a tuple of values.

    The parts are joined with ':' and hashed with SHA-256; the first eight
    bytes of the digest, big-endian, masked to 63 bits, form the key.
    """
    name = ":".join(str(part) for part in parts)
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") & LOCK_KEY_MASK


def hash_findings(findings: list[dict]) -> str:
    """
    Order-independent fingerprint of a reconciliation's discrepancy set.

    Two runs over an unchanged ledger produce the same fingerprint even
    though their report and discrepancy ids differ.
    """
    ordered = sorted(
        findings,
        key=lambda f: (str(f["warehouse_id"]), str(f["sku_id"]), f["batch_lot"]),
    )
    return hash_payload({"findings": ordered})
