"""Canonical hashing for deterministic outputs.

Plans, reports and transaction payloads are hashed from their canonical
JSON form so repeated runs over identical inputs can be compared byte for
byte.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json(data: Any) -> str:
    """Serialize to JSON with sorted keys and no insignificant whitespace."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def compute_hash(data: Any) -> str:
    """SHA256 hex digest of the canonical JSON form of ``data``."""
    return hashlib.sha256(canonical_json(data).encode()).hexdigest()


__all__ = ["canonical_json", "compute_hash"]
