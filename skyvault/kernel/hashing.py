"""
Content hashing and provenance chaining.

Every stored version carries a SHA-256 hash. The first version of a logical id
hashes its own payload; each later version hashes the previous version's hash
followed by its payload, giving a tamper-evident chain per logical id.
"""

import hashlib
import json
from typing import Any, Iterable, Optional, Tuple


def canonical_json(payload: Any) -> str:
    """Serialize a payload deterministically (sorted keys, compact)."""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def compute_content_hash(payload: Any, previous_hash: Optional[str] = None) -> str:
    """Compute the chained SHA-256 hash of a payload."""
    serialized = canonical_json(payload)
    if previous_hash:
        serialized = previous_hash + serialized
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def first_broken_link(
    versions: Iterable[Tuple[Any, Optional[str]]],
) -> Optional[int]:
    """
    Index of the first (payload, stored_hash) pair that does not match the
    chain, or None when the chain is intact.
    """
    previous: Optional[str] = None
    for index, (payload, stored_hash) in enumerate(versions):
        expected = compute_content_hash(payload, previous)
        if stored_hash != expected:
            return index
        previous = stored_hash
    return None
