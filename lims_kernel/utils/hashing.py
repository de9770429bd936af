"""
Deterministic hashing.

Payload hashes, audit chain links and signature tokens are all SHA-256 hex
digests.  Payloads are hashed over their canonical JSON form (sorted keys,
no whitespace) so the same document always yields the same digest.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

GENESIS = "GENESIS"


def _canonical_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_canonical_default,
    )


def to_json_safe(data: Any) -> Any:
    """``data`` as plain JSON types, ready for a JSON column."""
    return json.loads(canonicalize_json(data))


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: Any) -> str:
    return sha256_hex(canonicalize_json(payload))


def hash_audit_record(
    entity_kind: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Chain link for one audit record.

    Covers the record's identifying fields, its payload hash and the
    previous record's hash; the first record links to ``GENESIS``.
    """
    return sha256_hex(
        "|".join((entity_kind, str(entity_id), action, payload_hash, prev_hash or GENESIS))
    )


def new_signature_hash() -> str:
    """Opaque attestation token stored on a filled signature slot."""
    return sha256_hex(uuid4().hex)
