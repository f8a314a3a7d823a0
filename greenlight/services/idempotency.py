"""Deterministic idempotency keys for job requests."""

import hashlib
import json
from datetime import datetime
from typing import Any

MAX_KEY_LENGTH = 200


def _sha1(text: str) -> str:
    return hashlib.sha1(text.encode()).hexdigest()


def canonicalize(value: Any) -> Any:
    """Recursively sort mapping keys so equal payloads serialize identically."""
    if isinstance(value, dict):
        return {str(k): canonicalize(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    return value


def canonical_json(value: Any) -> str:
    return json.dumps(canonicalize(value), separators=(",", ":"), default=str)


def build_key(*parts: Any) -> str:
    """
    Build a key from immutable identifiers, e.g. ``build_key("approval", id)``.

    Over-long keys keep a readable prefix and end with a digest of the full text.
    """
    if not parts:
        raise ValueError("build_key needs at least one part")
    key = ":".join(str(p) for p in parts)
    if len(key) <= MAX_KEY_LENGTH:
        return key
    return f"{key[:MAX_KEY_LENGTH - 41]}:{_sha1(key)}"


def payload_key(namespace: str, payload: Any) -> str:
    """Key derived from payload content; key order does not matter."""
    return f"{namespace}:{_sha1(canonical_json(payload))}"


def minute_bucket(now: datetime) -> str:
    return now.strftime("%Y-%m-%dT%H:%M")


def day_bucket(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")
