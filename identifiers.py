"""
Translation between the integer ids exposed by the API and the UUID keys the
database stores.

Two kinds of key live in the tables:

* translator keys, produced by ``to_storage_key``. They are RFC 9562 version 8
  UUIDs with a zero 48-bit prefix and the integer packed into the remaining
  custom bits. Every 64-bit identifier, signed or unsigned
  (``INT64_MIN <= n < UINT64_LIMIT``), has a key and
  ``to_integer(to_storage_key(n)) == n``. Negative integers carry a sign tag
  in ``rand_a``, so they never collide with the unsigned range, and distinct
  integers always give distinct keys.
* native keys (``uuid.uuid4()`` and friends, e.g. rows written by other
  tools). They have no integer preimage. ``display_digest`` maps them to a
  64-bit number for display only; two native keys collide with probability
  about ``k**2 / 2**65`` for ``k`` keys, and the digest can't be turned back
  into a key.
"""

import hashlib
import secrets
import uuid

UINT64_LIMIT = 1 << 64
INT64_MIN = -(1 << 63)

_VERSION = 8
_VARIANT_RFC4122 = 0b10
_LOW_BITS = 62
_LOW_MASK = (1 << _LOW_BITS) - 1

# rand_a layout: bit 2 is the sign tag, bits 0-1 the top two payload bits
_SIGN_TAG = 0b100
_HIGH_MASK = 0b11

# 53 bits keeps generated ids exact in JavaScript numbers.
_ALLOCATED_ID_BITS = 53


def to_storage_key(n: int) -> uuid.UUID:
    if not INT64_MIN <= n < UINT64_LIMIT:
        raise ValueError(f"identifier wider than 64 bits: {n}")

    rand_a = 0
    if n < 0:
        rand_a = _SIGN_TAG
        n += UINT64_LIMIT  # two's complement payload
    rand_a |= n >> _LOW_BITS

    value = _VERSION << 76  # prefix (bits 80..127) stays zero
    value |= rand_a << 64
    value |= _VARIANT_RFC4122 << 62
    value |= n & _LOW_MASK
    return uuid.UUID(int=value)


def is_translator_key(key: uuid.UUID) -> bool:
    value = key.int
    if value >> 80:
        return False
    if key.version != _VERSION or key.variant != uuid.RFC_4122:
        return False
    rand_a = (value >> 64) & 0xFFF
    if rand_a & ~(_SIGN_TAG | _HIGH_MASK):
        return False
    # a negative payload always has its top bit set
    return not rand_a & _SIGN_TAG or bool(rand_a & 0b10)


def to_integer(key: uuid.UUID) -> int:
    """Exact inverse of ``to_storage_key``; refuses any other key."""
    if not is_translator_key(key):
        raise ValueError(f"{key} was not produced by to_storage_key")
    value = key.int
    rand_a = (value >> 64) & 0xFFF
    n = ((rand_a & _HIGH_MASK) << _LOW_BITS) | (value & _LOW_MASK)
    if rand_a & _SIGN_TAG:
        n -= UINT64_LIMIT
    return n


def display_digest(key: uuid.UUID) -> int:
    """Lossy 64-bit summary of a native key, for display purposes only."""
    digest = hashlib.blake2b(key.bytes, digest_size=8).digest()
    return int.from_bytes(digest, "big")


def public_id(key: uuid.UUID) -> int:
    if is_translator_key(key):
        return to_integer(key)
    return display_digest(key)


def allocate_id() -> int:
    n = 0
    while n == 0:
        n = secrets.randbits(_ALLOCATED_ID_BITS)
    return n
