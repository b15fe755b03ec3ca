# src/tspend/chain/chainhash.py
from __future__ import annotations

from blake256.blake256 import blake_hash

HASH_SIZE = 32
ZERO_HASH = bytes(HASH_SIZE)


def hash_b(data: bytes) -> bytes:
    """Chain hash: 32-byte BLAKE-256 digest (14 rounds)."""
    return bytes(blake_hash(bytes(data)))


def is_zero_hash(h: str | bytes | None) -> bool:
    """True for an empty value or an all-zero hash in either form."""
    if not h:
        return True
    if isinstance(h, (bytes, bytearray)):
        return not any(h)
    return set(str(h).strip()) <= {"0"}


def hash_to_str(h: bytes) -> str:
    """Display form: byte-reversed hex, as node RPCs report hashes."""
    if len(h) != HASH_SIZE:
        raise ValueError(f"hash must be {HASH_SIZE} bytes; got {len(h)}")
    return h[::-1].hex()


def hash_from_str(s: str) -> bytes:
    raw = bytes.fromhex(str(s).strip())
    if len(raw) != HASH_SIZE:
        raise ValueError(f"hash must be {HASH_SIZE} bytes; got {len(raw)}")
    return raw[::-1]
