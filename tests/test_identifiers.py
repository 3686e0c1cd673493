import uuid

import pytest

from identifiers import (
    INT64_MIN,
    UINT64_LIMIT,
    allocate_id,
    display_digest,
    is_translator_key,
    public_id,
    to_integer,
    to_storage_key,
)

SAMPLES = [
    INT64_MIN,
    -(2**62) - 1,
    -42,
    -1,
    0,
    1,
    42,
    2**31,
    2**53 - 1,
    2**62 - 1,
    2**62,
    2**63 + 7,
    UINT64_LIMIT - 1,
]


@pytest.mark.parametrize("n", SAMPLES)
def test_round_trip_is_exact(n):
    assert to_integer(to_storage_key(n)) == n


def test_storage_key_is_deterministic():
    assert to_storage_key(12345) == to_storage_key(12345)


def test_distinct_integers_give_distinct_keys():
    keys = {to_storage_key(n) for n in SAMPLES}
    assert len(keys) == len(SAMPLES)


def test_storage_key_is_a_well_formed_uuid():
    key = to_storage_key(2**63 + 7)
    assert key.version == 8
    assert key.variant == uuid.RFC_4122
    assert uuid.UUID(str(key)) == key


@pytest.mark.parametrize("n", [INT64_MIN - 1, UINT64_LIMIT])
def test_integers_wider_than_64_bits_are_rejected(n):
    with pytest.raises(ValueError):
        to_storage_key(n)


def test_native_keys_are_not_translator_keys():
    native = uuid.uuid4()
    assert not is_translator_key(native)
    with pytest.raises(ValueError):
        to_integer(native)


def test_display_digest_is_stable_64_bit():
    native = uuid.UUID("0b7c9d4e-5f6a-4b8c-9d0e-1f2a3b4c5d6e")
    digest = display_digest(native)
    assert digest == display_digest(native)
    assert 0 <= digest < UINT64_LIMIT


def test_public_id_picks_exact_inverse_for_translator_keys():
    assert public_id(to_storage_key(77)) == 77
    native = uuid.uuid4()
    assert public_id(native) == display_digest(native)


def test_allocate_id_yields_positive_translatable_ids():
    ids = {allocate_id() for _ in range(100)}
    assert all(0 < n < 2**53 for n in ids)
    assert len(ids) == 100
    assert all(to_integer(to_storage_key(n)) == n for n in ids)


@pytest.mark.parametrize("negative", [-1, INT64_MIN])
def test_negative_ids_do_not_collide_with_unsigned_ones(negative):
    # same 64-bit payload, different sign tag
    assert to_storage_key(negative) != to_storage_key(negative + UINT64_LIMIT)
    assert to_integer(to_storage_key(negative)) == negative


def test_sign_tag_without_negative_payload_is_not_a_translator_key():
    forged = uuid.UUID(int=to_storage_key(5).int | (0b100 << 64))
    assert not is_translator_key(forged)
    with pytest.raises(ValueError):
        to_integer(forged)
