"""Tests for the stable hash and bucket mapping."""
import pytest

from app.services.hashing import (
    bucket,
    flag_hash_input,
    stable_hash,
    traffic_hash_input,
    variant_hash_input,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        # Published FNV-1a 32-bit test vectors
        ("", 0x811C9DC5),
        ("a", 0xE40C292C),
        ("foobar", 0xBF9CF968),
    ],
)
def test_stable_hash_matches_fnv1a_vectors(value, expected):
    assert stable_hash(value) == expected


def test_stable_hash_is_unsigned_32_bit(user_ids):
    for user_id in user_ids(1000):
        assert 0 <= stable_hash(user_id) <= 0xFFFFFFFF


def test_stable_hash_hashes_utf8_bytes():
    # "é" is the two bytes C3 A9 in UTF-8
    expected = 0x811C9DC5
    for byte in (0xC3, 0xA9):
        expected = ((expected ^ byte) * 0x01000193) & 0xFFFFFFFF

    assert stable_hash("é") == expected


def test_bucket_is_hash_mod_100(user_ids):
    for user_id in user_ids(1000):
        assert bucket(user_id) == stable_hash(user_id) % 100
        assert 0 <= bucket(user_id) < 100


def test_bucket_handles_empty_string():
    assert bucket("") == 0x811C9DC5 % 100


def test_hash_inputs_use_literal_separators():
    assert traffic_hash_input("u-42", "checkout") == "u-42:checkout"
    assert variant_hash_input("u-42", "checkout") == "u-42:checkout:variant"
    assert flag_hash_input("u-42", "new-search") == "u-42:new-search"


def test_bucket_spreads_over_all_values(user_ids):
    seen = {bucket(user_id) for user_id in user_ids(5000)}
    assert len(seen) == 100
