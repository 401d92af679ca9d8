"""Users to register at start-up when running with mocked contracts."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

from rln_prover.address import Address

_U64_MAX = 2**64 - 1


class MockUserError(Exception):
    """The mock user file could not be read or decoded."""


@dataclass(frozen=True)
class MockUser:
    """A user address with an initial transaction count."""

    address: Address
    tx_count: int


def _user_from_json(index: int, entry: Any) -> MockUser:
    if not isinstance(entry, dict):
        raise MockUserError(f"entry {index}: expected an object")
    try:
        raw_address = entry["address"]
        tx_count = entry["tx_count"]
    except KeyError as exc:
        raise MockUserError(f"entry {index}: missing field {exc.args[0]!r}") from exc
    if not isinstance(raw_address, str):
        raise MockUserError(f"entry {index}: address must be a string")
    try:
        address = Address.parse(raw_address)
    except ValueError as exc:
        raise MockUserError(f"entry {index}: {exc}") from exc
    if isinstance(tx_count, bool) or not isinstance(tx_count, int) or not 0 <= tx_count <= _U64_MAX:
        raise MockUserError(f"entry {index}: tx_count must be an unsigned 64-bit integer")
    return MockUser(address=address, tx_count=tx_count)


def read_mock_user(path: str | os.PathLike[str]) -> list[MockUser]:
    """Read a JSON list of ``{"address": ..., "tx_count": ...}`` objects."""
    try:
        with open(path, encoding="utf-8") as handle:
            raw = json.load(handle)
    except OSError as exc:
        raise MockUserError(str(exc)) from exc
    except ValueError as exc:
        raise MockUserError(str(exc)) from exc
    if not isinstance(raw, list):
        raise MockUserError("expected a list of users")
    return [_user_from_json(index, entry) for index, entry in enumerate(raw)]