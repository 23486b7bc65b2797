import pytest

from verity.core.exceptions import InvalidInput
from verity.services.fingerprint import compute_fingerprint


def test_fingerprint_is_deterministic(photo, meta):
    first = compute_fingerprint(photo, meta)
    second = compute_fingerprint(bytes(photo), dict(meta))
    assert first == second
    assert len(first) == 64
    int(first, 16)


def test_fingerprint_changes_with_any_media_byte(photo, meta):
    original = compute_fingerprint(photo, meta)
    for position in (0, len(photo) // 2, len(photo) - 1):
        altered = bytearray(photo)
        altered[position] ^= 0x01
        assert compute_fingerprint(bytes(altered), meta) != original


@pytest.mark.parametrize("field,value", [
    ("latitude", 40.7129),
    ("longitude", -74.007),
    ("timestamp", 1700000000001),
])
def test_fingerprint_changes_with_each_metadata_field(photo, meta, field, value):
    altered = dict(meta, **{field: value})
    assert compute_fingerprint(photo, altered) != compute_fingerprint(photo, meta)


def test_fingerprint_uses_exact_text_of_string_fields(photo, meta):
    as_text = dict(meta, latitude="40.7128")
    padded = dict(meta, latitude="40.71280")
    assert compute_fingerprint(photo, as_text) == compute_fingerprint(photo, meta)
    assert compute_fingerprint(photo, padded) != compute_fingerprint(photo, meta)


def test_fingerprint_accepts_form_strings(photo):
    fp = compute_fingerprint(photo, {"latitude": "51.5", "longitude": "-0.12", "timestamp": "2024-05-01T10:00:00Z"})
    assert len(fp) == 64


def test_fingerprint_fields_do_not_run_together(photo):
    a = compute_fingerprint(photo, {"latitude": 1, "longitude": 23, "timestamp": 5})
    b = compute_fingerprint(photo, {"latitude": 12, "longitude": 3, "timestamp": 5})
    assert a != b


@pytest.mark.parametrize("media", [b"", bytearray()])
def test_empty_media_rejected(media, meta):
    with pytest.raises(InvalidInput):
        compute_fingerprint(media, meta)


def test_non_bytes_media_rejected(meta):
    with pytest.raises(InvalidInput):
        compute_fingerprint("not bytes", meta)


@pytest.mark.parametrize("field", ["latitude", "longitude", "timestamp"])
def test_missing_metadata_field_rejected(photo, meta, field):
    del meta[field]
    with pytest.raises(InvalidInput):
        compute_fingerprint(photo, meta)


@pytest.mark.parametrize("field,value", [
    ("latitude", None),
    ("latitude", float("nan")),
    ("longitude", float("inf")),
    ("latitude", "north"),
    ("latitude", ""),
    ("latitude", True),
    ("latitude", 90.5),
    ("longitude", -181),
    ("timestamp", float("nan")),
    ("timestamp", "   "),
    ("timestamp", False),
])
def test_invalid_metadata_rejected(photo, meta, field, value):
    meta[field] = value
    with pytest.raises(InvalidInput):
        compute_fingerprint(photo, meta)


def test_metadata_must_be_mapping(photo):
    with pytest.raises(InvalidInput):
        compute_fingerprint(photo, [40.7, -74.0, 1700000000000])


@pytest.mark.parametrize("latitude,longitude", [(90, 180), (-90.0, -180.0), ("0", "0")])
def test_coordinate_range_bounds_are_inclusive(photo, meta, latitude, longitude):
    meta.update(latitude=latitude, longitude=longitude)
    assert len(compute_fingerprint(photo, meta)) == 64
