"""
Evidence fingerprinting.

A fingerprint binds normalized media content to its claimed capture context:
the same image re-submitted with a different GPS position or capture time
produces a different fingerprint.
"""

import hashlib
from typing import Any, Mapping, Union

import structlog

from verity.core.exceptions import InvalidInput
from verity.core.utils import is_finite_number, format_hash

logger = structlog.get_logger()

METADATA_FIELDS = ("latitude", "longitude", "timestamp")
FIELD_SEPARATOR = b"|"

LATITUDE_RANGE = (-90.0, 90.0)
LONGITUDE_RANGE = (-180.0, 180.0)

BytesLike = Union[bytes, bytearray, memoryview]


def _field_text(value: Any) -> str:
    """Exact textual representation used in the hash preimage."""
    if isinstance(value, str):
        return value
    return str(value)


def validate_metadata(metadata: Mapping[str, Any]) -> None:
    """
    Raise InvalidInput unless latitude, longitude and timestamp are usable.

    Fields must be present and finite; latitude and longitude must also fall
    within LATITUDE_RANGE and LONGITUDE_RANGE.
    """
    if not isinstance(metadata, Mapping):
        raise InvalidInput("metadata must be a mapping with latitude, longitude and timestamp")

    for field in METADATA_FIELDS:
        value = metadata.get(field)
        if value is None:
            raise InvalidInput(f"missing metadata field: {field}")
        if isinstance(value, bool):
            raise InvalidInput(f"metadata field {field} must not be a boolean")

    for field, (low, high) in (("latitude", LATITUDE_RANGE), ("longitude", LONGITUDE_RANGE)):
        value = metadata[field]
        if not is_finite_number(value):
            raise InvalidInput(f"metadata field {field} must be a finite number, got {value!r}")
        if not low <= float(value) <= high:
            raise InvalidInput(f"metadata field {field} out of range [{low}, {high}]: {value!r}")

    timestamp = metadata["timestamp"]
    if isinstance(timestamp, str):
        if not timestamp.strip():
            raise InvalidInput("metadata field timestamp must not be empty")
    elif not is_finite_number(timestamp):
        raise InvalidInput(f"metadata field timestamp must be a string or finite number, got {timestamp!r}")


def compute_fingerprint(media_bytes: BytesLike, metadata: Mapping[str, Any]) -> str:
    """
    Compute the evidence fingerprint for normalized media plus capture metadata.

    Args:
        media_bytes: Normalized media content (non-empty)
        metadata: Mapping with latitude, longitude and timestamp (claimed capture time)

    Returns:
        64-character lowercase SHA-256 hex digest
    """
    if not isinstance(media_bytes, (bytes, bytearray, memoryview)):
        raise InvalidInput("media bytes must be bytes-like")
    if len(media_bytes) == 0:
        raise InvalidInput("media bytes must not be empty")

    validate_metadata(metadata)

    digest = hashlib.sha256(bytes(media_bytes))
    for field in METADATA_FIELDS:
        digest.update(FIELD_SEPARATOR)
        digest.update(_field_text(metadata[field]).encode("utf-8"))

    fingerprint = digest.hexdigest()
    logger.debug("Computed evidence fingerprint",
                 fingerprint=format_hash(fingerprint), media_size=len(media_bytes))
    return fingerprint
