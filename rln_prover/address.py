"""Twenty-byte account addresses."""

from __future__ import annotations

import string
from dataclasses import dataclass

ADDRESS_SIZE = 20

_HEX_DIGITS = frozenset(string.hexdigits)


@dataclass(frozen=True, slots=True)
class Address:
    """An account address made of exactly 20 raw bytes."""

    value: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.value, (bytes, bytearray, memoryview)):
            raise TypeError(f"address must be bytes, got {type(self.value).__name__}")
        raw = bytes(self.value)
        if len(raw) != ADDRESS_SIZE:
            raise ValueError(f"address must be {ADDRESS_SIZE} bytes long, got {len(raw)}")
        object.__setattr__(self, "value", raw)

    @classmethod
    def parse(cls, value: str) -> Address:
        """Parse a hex address, with or without a 0x prefix, in any letter case."""
        if not isinstance(value, str):
            raise TypeError(f"address must be a string, got {type(value).__name__}")
        text = value.strip()
        if text[:2] in ("0x", "0X"):
            text = text[2:]
        if len(text) != ADDRESS_SIZE * 2 or not _HEX_DIGITS.issuperset(text):
            raise ValueError(f"invalid address: {value!r}")
        return cls(bytes.fromhex(text))

    @classmethod
    def from_bytes(cls, data: bytes) -> Address:
        """Build an address from its 20 raw bytes."""
        return cls(bytes(data))

    def is_zero(self) -> bool:
        """True for the all-zero address (used as sender of mint events)."""
        return not any(self.value)

    def __bytes__(self) -> bytes:
        return self.value

    def __str__(self) -> str:
        return "0x" + self.value.hex()