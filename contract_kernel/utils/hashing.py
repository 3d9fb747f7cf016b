"""
Deterministic hashing utilities.

All hashing in the contract kernel must be deterministic and reproducible.
This module provides the canonical hashing functions used by the audit
trail and the version ledger.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Remove trailing zeros for consistency
        return str(obj.normalize())
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, no whitespace, and Decimal/datetime/UUID/Enum values
    are rendered consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_snapshot(snapshot: str) -> str:
    """SHA-256 of a raw content snapshot, byte for byte."""
    return hashlib.sha256(snapshot.encode("utf-8")).hexdigest()


def hash_audit_entry(
    contract_id: str,
    seq: int,
    action: str,
    from_status: str | None,
    to_status: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute the chain hash for one audit log entry.

    The hash covers the entry's identity, its transition and the previous
    entry's hash for the same contract, forming a per-contract chain.

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        str(contract_id),
        str(seq),
        action,
        from_status or "NONE",
        to_status,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
