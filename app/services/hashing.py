"""
Stable hashing and bucketing.

Every decision in the engine goes through ``stable_hash``: 32-bit FNV-1a over
the UTF-8 bytes of the input. The algorithm is part of the contract, so any
other implementation (another service, a client SDK, a different language)
computes bit-identical buckets for the same input. Python's built-in ``hash``
is salted per process and must never be used here.
"""

# FNV-1a 32-bit constants
FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193
MASK_32 = 0xFFFFFFFF

BUCKET_COUNT = 100


def stable_hash(value: str) -> int:
    """Returns the unsigned 32-bit FNV-1a hash of ``value``."""
    h = FNV_OFFSET_BASIS
    for byte in value.encode("utf-8"):
        h ^= byte
        h = (h * FNV_PRIME) & MASK_32
    return h


def bucket(value: str) -> int:
    """Maps ``value`` to a bucket in [0, 100)."""
    return stable_hash(value) % BUCKET_COUNT


def traffic_hash_input(user_id: str, experiment_key: str) -> str:
    return f"{user_id}:{experiment_key}"


def variant_hash_input(user_id: str, experiment_key: str) -> str:
    # Distinct from the traffic input so inclusion and variant choice are independent draws
    return f"{user_id}:{experiment_key}:variant"


def flag_hash_input(user_id: str, flag_key: str) -> str:
    return f"{user_id}:{flag_key}"
