"""Data passed to and produced by the proof services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from rln_prover.address import Address

TX_HASH_SIZE = 32


@dataclass(frozen=True)
class ProofGenerationData:
    """Everything a proof service needs to build an RLN proof for one transaction."""

    user_identity: Any
    rln_identifier: Any
    tx_counter: int
    tx_sender: Address
    tx_hash: bytes

    def __post_init__(self) -> None:
        if len(self.tx_hash) != TX_HASH_SIZE:
            raise ValueError(
                f"transaction hash must be {TX_HASH_SIZE} bytes long, got {len(self.tx_hash)}"
            )
        if self.tx_counter < 0:
            raise ValueError("transaction counter cannot be negative")
        object.__setattr__(self, "tx_hash", bytes(self.tx_hash))


@dataclass(frozen=True)
class ProofSendingData:
    """A computed proof, ready to be sent to listeners."""

    tx_hash: bytes
    tx_sender: Address
    proof: bytes