import hashlib
import json
import math
import time
from typing import Any


def current_timestamp_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def sha256_hex(payload: bytes) -> str:
    """SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(payload).hexdigest()


def canonical_json(data: Any) -> str:
    """
    Serialize data deterministically for hashing.

    Keys are sorted so the output is stable across storage backends that do
    not preserve key order (e.g. PostgreSQL JSONB).
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def leading_zero_digits(hex_digest: str) -> int:
    """Count the leading '0' characters of a hex digest."""
    return len(hex_digest) - len(hex_digest.lstrip("0"))


def is_finite_number(value: Any) -> bool:
    """True for ints/floats (not bools) and numeric strings that parse to a finite float."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, str):
        try:
            return math.isfinite(float(value))
        except ValueError:
            return False
    return False


def format_hash(hex_digest: str, length: int = 12) -> str:
    """Shorten a hash for log output."""
    if not hex_digest:
        return "<empty>"
    return f"{hex_digest[:length]}..." if len(hex_digest) > length else hex_digest
