"""Cache key generation and key-prefix resolution."""

from __future__ import annotations

import hashlib
import json
from typing import Any

_SEPARATOR = ":"


def key_prefix(key: str) -> str:
    """Return the policy prefix of a key: ``"vehicles:live"`` -> ``"vehicles"``."""
    return key.split(_SEPARATOR, 1)[0]


def generate_cache_key(prefix: str, *parts: Any) -> str:
    """Build ``<prefix>:<sha256>`` from arbitrary JSON-serializable parts."""
    return f"{prefix}{_SEPARATOR}{hash_payload(list(parts))}"


def hash_payload(payload: Any) -> str:
    """Deterministic hash of any JSON-ish payload via sorted JSON."""
    serialized = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def estimate_size(value: Any) -> int:
    """Best-effort size of a value in bytes, from its JSON rendering."""
    try:
        return len(json.dumps(value, default=str).encode("utf-8"))
    except (TypeError, ValueError):
        return len(repr(value).encode("utf-8"))
