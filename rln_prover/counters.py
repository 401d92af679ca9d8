"""Epoch counters stored as fixed-size little-endian records, with merge operators."""

from __future__ import annotations

import struct
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import ClassVar

U64_MAX = 2**64 - 1

_COUNTERS_LAYOUT = struct.Struct("<qqQQ")
_INCR_LAYOUT = struct.Struct("<qqQ")
_U64_LAYOUT = struct.Struct("<Q")
_I64_LAYOUT = struct.Struct("<q")

MergeOperator = Callable[[bytes, bytes | None, Sequence[bytes]], bytes | None]


class DeserializeError(ValueError):
    """A stored record is too short or malformed."""


def _saturating_add(value: int, delta: int) -> int:
    return max(0, min(value + delta, U64_MAX))


def _pack(layout: struct.Struct, *values: int) -> bytes:
    try:
        return layout.pack(*values)
    except struct.error as exc:
        raise ValueError(f"value out of range: {exc}") from exc


def _unpack(layout: struct.Struct, data: bytes, what: str) -> tuple[int, ...]:
    if len(data) < layout.size:
        raise DeserializeError(f"{what} needs {layout.size} bytes, got {len(data)}")
    return layout.unpack_from(data)


@dataclass(frozen=True)
class EpochCounters:
    """Transaction counters of one user for the current epoch and epoch slice."""

    epoch: int = 0
    epoch_slice: int = 0
    epoch_counter: int = 0
    epoch_slice_counter: int = 0

    SIZE: ClassVar[int] = _COUNTERS_LAYOUT.size

    def to_bytes(self) -> bytes:
        return _pack(
            _COUNTERS_LAYOUT,
            self.epoch,
            self.epoch_slice,
            self.epoch_counter,
            self.epoch_slice_counter,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> EpochCounters:
        return cls(*_unpack(_COUNTERS_LAYOUT, bytes(data), "epoch counters"))


@dataclass(frozen=True)
class EpochIncr:
    """An increment to apply to a user's epoch counters."""

    epoch: int = 0
    epoch_slice: int = 0
    incr_value: int = 0

    SIZE: ClassVar[int] = _INCR_LAYOUT.size

    def to_bytes(self) -> bytes:
        return _pack(_INCR_LAYOUT, self.epoch, self.epoch_slice, self.incr_value)

    @classmethod
    def from_bytes(cls, data: bytes) -> EpochIncr:
        return cls(*_unpack(_INCR_LAYOUT, bytes(data), "epoch increment"))


def _apply_incr(acc: EpochCounters, incr: EpochIncr) -> EpochCounters:
    value = incr.incr_value
    if acc == EpochCounters():
        return EpochCounters(incr.epoch, incr.epoch_slice, value, value)
    if incr.epoch != acc.epoch:
        return EpochCounters(incr.epoch, 0, value, value)
    if incr.epoch_slice != acc.epoch_slice:
        return EpochCounters(
            incr.epoch,
            incr.epoch_slice,
            _saturating_add(acc.epoch_counter, value),
            value,
        )
    return EpochCounters(
        acc.epoch,
        acc.epoch_slice,
        _saturating_add(acc.epoch_counter, value),
        _saturating_add(acc.epoch_slice_counter, value),
    )


def epoch_counters_merge(
    key: bytes, existing: bytes | None, operands: Iterable[bytes]
) -> bytes:
    """Fold serialized EpochIncr operands into the stored EpochCounters record."""
    try:
        acc = EpochCounters.from_bytes(existing or b"")
    except DeserializeError:
        acc = EpochCounters()
    for raw in operands:
        acc = _apply_incr(acc, EpochIncr.from_bytes(raw))
    return acc.to_bytes()


def u64_counter_merge(key: bytes, existing: bytes | None, operands: Iterable[bytes]) -> bytes:
    """Add signed 64-bit operands to an unsigned 64-bit counter, saturating at both ends."""
    if existing is None:
        value = 0
    else:
        if len(existing) != _U64_LAYOUT.size:
            raise DeserializeError(f"counter needs 8 bytes, got {len(existing)}")
        (value,) = _U64_LAYOUT.unpack(existing)
    for raw in operands:
        if len(raw) != _I64_LAYOUT.size:
            raise DeserializeError(f"counter increment needs 8 bytes, got {len(raw)}")
        (delta,) = _I64_LAYOUT.unpack(raw)
        value = _saturating_add(value, delta)
    return _U64_LAYOUT.pack(value)


def _as_key(key: str | bytes) -> bytes:
    return key.encode("utf-8") if isinstance(key, str) else bytes(key)


class MergeStore:
    """In-memory key-value store whose writes go through a merge operator."""

    def __init__(self, merge_operator: MergeOperator) -> None:
        self._merge_operator = merge_operator
        self._data: dict[bytes, bytes] = {}

    def merge(self, key: str | bytes, value: bytes) -> None:
        """Merge one operand into the value stored at ``key``."""
        self.merge_many(key, [value])

    def merge_many(self, key: str | bytes, values: Iterable[bytes]) -> None:
        """Merge several operands at once, as a single batch."""
        k = _as_key(key)
        operands = [bytes(v) for v in values]
        if not operands:
            return
        result = self._merge_operator(k, self._data.get(k), operands)
        if result is None:
            raise ValueError(f"merge operator failed for key {k!r}")
        self._data[k] = bytes(result)

    def get(self, key: str | bytes) -> bytes | None:
        return self._data.get(_as_key(key))