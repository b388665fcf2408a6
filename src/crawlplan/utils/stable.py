"""Stable hashing utilities.

Canonical JSON (sorted keys, no whitespace) plus SHA-256, used for plan
fingerprints, replay ids and experiment bucketing. Values that JSON cannot
encode natively are rendered with ``str`` so any plan mapping hashes.
"""
from __future__ import annotations

import hashlib
import json
from typing import Any


def stable_json(obj: Any) -> str:
    """Canonical JSON: sorted keys, no whitespace, UTF-8 safe."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def stable_hash(obj: Any) -> str:
    """Deterministic SHA-256 hex digest of any JSON-like object."""
    return hashlib.sha256(stable_json(obj).encode("utf-8")).hexdigest()


def plan_fingerprint(plan: Any, n: int = 16) -> str:
    """Short fingerprint of a plan value (for audit records and logs)."""
    return stable_hash(plan)[:n]


def bucket(key: str, buckets: int = 10_000) -> int:
    """Map a key to a stable integer bucket in ``[0, buckets)``."""
    return int(stable_hash(key)[:12], 16) % max(1, buckets)
