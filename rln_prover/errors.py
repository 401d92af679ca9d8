"""Error types raised by the prover."""

from __future__ import annotations

from enum import Enum, auto
from typing import Any


class AppError(Exception):
    """Base class for errors that stop one of the prover services."""


class HandleTransferError(Exception):
    """Failure while handling a token transfer event."""


class RegisterError(HandleTransferError):
    """A user could not be registered."""


class AlreadyRegisteredError(RegisterError):
    """The user is already registered."""

    def __init__(self, address: Any) -> None:
        super().__init__(f"User already registered: {address}")
        self.address = address


class FetchBalanceError(HandleTransferError):
    """The user balance could not be queried."""

    def __init__(self, cause: Any) -> None:
        super().__init__(f"Unable to query balance: {cause}")
        self.cause = cause


class RegistryError(AppError):
    """A transfer event could not be handled by the registry listener."""

    def __init__(self, cause: HandleTransferError) -> None:
        super().__init__(str(cause))
        self.cause = cause


class GetMerkleTreeProofError(Exception):
    """A Merkle proof for a user could not be produced."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Merkle tree error: {message}")
        self.message = message


class ProofErrorKind(Enum):
    """Stage at which proof generation failed."""

    PROOF = auto()
    SERIALIZATION = auto()
    SERIALIZATION_WRITE = auto()
    MERKLE_PROOF = auto()


_TEMPLATES = {
    ProofErrorKind.PROOF: "Proof generation failed: {}",
    ProofErrorKind.SERIALIZATION: "Proof serialization failed: {}",
    ProofErrorKind.SERIALIZATION_WRITE: "Proof serialization failed: {}",
    ProofErrorKind.MERKLE_PROOF: "{}",
}


def _render(kind: ProofErrorKind, detail: Any) -> str:
    return _TEMPLATES[kind].format(detail)


def _check_merkle(kind: ProofErrorKind, detail: Any) -> None:
    if kind is ProofErrorKind.MERKLE_PROOF and not isinstance(detail, GetMerkleTreeProofError):
        raise TypeError("a Merkle proof failure must carry a GetMerkleTreeProofError")


class ProofGenerationError(Exception):
    """Proof generation failed; ``cause`` holds the underlying error."""

    def __init__(self, kind: ProofErrorKind, cause: Any) -> None:
        kind = ProofErrorKind(kind)
        _check_merkle(kind, cause)
        super().__init__(_render(kind, cause))
        self.kind = kind
        self.cause = cause


class ProofGenerationStringError(Exception):
    """Proof generation failure reduced to plain data, safe to share between listeners."""

    def __init__(self, kind: ProofErrorKind, detail: str | GetMerkleTreeProofError) -> None:
        kind = ProofErrorKind(kind)
        _check_merkle(kind, detail)
        super().__init__(_render(kind, detail))
        self.kind = kind
        self.detail = detail

    @classmethod
    def from_error(cls, error: ProofGenerationError) -> ProofGenerationStringError:
        """Convert a ProofGenerationError, keeping Merkle proof errors as they are."""
        if not isinstance(error, ProofGenerationError):
            raise TypeError(f"expected ProofGenerationError, got {type(error).__name__}")
        if error.kind is ProofErrorKind.MERKLE_PROOF:
            return cls(error.kind, error.cause)
        return cls(error.kind, str(error.cause))