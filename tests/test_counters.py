import struct

import pytest

from rln_prover.counters import (
    DeserializeError,
    EpochCounters,
    EpochIncr,
    MergeStore,
    epoch_counters_merge,
    u64_counter_merge,
)

U64_MAX = 2**64 - 1


def test_epoch_counters_round_trip():
    counters = EpochCounters(epoch=1, epoch_slice=42, epoch_counter=12, epoch_slice_counter=U64_MAX)
    assert EpochCounters.from_bytes(counters.to_bytes()) == counters


def test_default_bytes_give_default_counters():
    assert EpochCounters.from_bytes(bytes(EpochCounters.SIZE)) == EpochCounters()
    assert EpochCounters().to_bytes() == bytes(32)


def test_epoch_incr_round_trip():
    incr = EpochIncr(epoch=1, epoch_slice=42, incr_value=1)
    data = incr.to_bytes()
    assert len(data) == 24
    assert EpochIncr.from_bytes(data) == incr


def test_short_buffer_raises():
    with pytest.raises(DeserializeError):
        EpochCounters.from_bytes(bytes(31))
    with pytest.raises(DeserializeError):
        EpochIncr.from_bytes(bytes(10))


def test_counter():
    store = MergeStore(u64_counter_merge)
    buffer = struct.pack("<Q", 42)
    store.merge_many("foo1", [buffer, buffer])
    assert struct.unpack("<Q", store.get("foo1"))[0] == 84


def test_counter_saturates_at_zero():
    store = MergeStore(u64_counter_merge)
    store.merge("k", struct.pack("<q", 5))
    store.merge("k", struct.pack("<q", -10))
    assert struct.unpack("<Q", store.get("k"))[0] == 0


def test_counter_saturates_at_max():
    existing = struct.pack("<Q", U64_MAX)
    result = u64_counter_merge(b"k", existing, [struct.pack("<q", 1)])
    assert struct.unpack("<Q", result)[0] == U64_MAX


def test_counter_rejects_bad_operand():
    with pytest.raises(DeserializeError):
        u64_counter_merge(b"k", None, [b"\x01"])


def test_counters():
    store = MergeStore(epoch_counters_merge)
    value_1 = EpochIncr(epoch=0, epoch_slice=0, incr_value=2).to_bytes()
    store.merge_many("foo1", [value_1, value_1])

    got = EpochCounters.from_bytes(store.get("foo1"))
    assert got.epoch_counter == 4
    assert got.epoch_slice_counter == 4
    assert store.get("baz42") is None

    # new epoch slice
    store.merge("foo1", EpochIncr(epoch=0, epoch_slice=1, incr_value=1).to_bytes())
    assert EpochCounters.from_bytes(store.get("foo1")) == EpochCounters(
        epoch=0, epoch_slice=1, epoch_counter=5, epoch_slice_counter=1
    )

    # new epoch
    store.merge("foo1", EpochIncr(epoch=1, epoch_slice=0, incr_value=3).to_bytes())
    assert EpochCounters.from_bytes(store.get("foo1")) == EpochCounters(
        epoch=1, epoch_slice=0, epoch_counter=3, epoch_slice_counter=3
    )


def test_new_epoch_resets_slice_to_zero():
    existing = EpochCounters(epoch=0, epoch_slice=5, epoch_counter=7, epoch_slice_counter=2).to_bytes()
    result = epoch_counters_merge(b"k", existing, [EpochIncr(2, 3, 1).to_bytes()])
    assert EpochCounters.from_bytes(result) == EpochCounters(2, 0, 1, 1)


def test_malformed_existing_value_is_treated_as_default():
    result = epoch_counters_merge(b"k", b"\x00\x01", [EpochIncr(0, 0, 2).to_bytes()])
    assert EpochCounters.from_bytes(result) == EpochCounters(0, 0, 2, 2)


def test_str_and_bytes_keys_are_the_same():
    store = MergeStore(u64_counter_merge)
    store.merge("foo1", struct.pack("<q", 3))
    assert store.get(b"foo1") == store.get("foo1")