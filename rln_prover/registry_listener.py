"""Registration of users when Karma tokens are minted to them."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass
from typing import Any, Protocol

from rln_prover.address import Address
from rln_prover.errors import (
    AlreadyRegisteredError,
    FetchBalanceError,
    HandleTransferError,
    RegistryError,
)

logger = logging.getLogger(__name__)

U256_MAX = 2**256 - 1


def _check_u256(value: int, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= U256_MAX:
        raise ValueError(f"{what} must be an unsigned 256-bit integer, got {value!r}")
    return value


class KarmaAmountSource(Protocol):
    async def karma_amount(self, address: Address) -> int: ...


class UserRegistry(Protocol):
    def on_new_user(self, address: Address) -> Any: ...


@dataclass(frozen=True)
class TransferEvent:
    """A token Transfer event; a zero ``from_address`` marks a mint."""

    from_address: Address
    to_address: Address
    value: int

    def __post_init__(self) -> None:
        _check_u256(self.value, "transfer value")


class RegistryListener:
    """Registers users who receive at least ``minimal_amount`` Karma tokens."""

    def __init__(
        self,
        rpc_url: str,
        sc_address: Address,
        user_db: UserRegistry,
        minimal_amount: int,
    ) -> None:
        self.rpc_url = rpc_url
        self.sc_address = sc_address
        self.user_db = user_db
        self.minimal_amount = _check_u256(minimal_amount, "minimal amount")

    async def handle_transfer_event(
        self, karma_sc: KarmaAmountSource, transfer_event: TransferEvent
    ) -> Address:
        """Register the receiver of a mint if they hold enough tokens; return the receiver.

        Raises FetchBalanceError if the balance query fails, and the user
        database's RegisterError if registration fails.
        """
        to_address = transfer_event.to_address
        if transfer_event.from_address.is_zero():
            if transfer_event.value >= self.minimal_amount:
                should_register = True
            else:
                try:
                    balance = await karma_sc.karma_amount(to_address)
                except Exception as exc:
                    raise FetchBalanceError(exc) from exc
                should_register = balance >= self.minimal_amount
            if should_register:
                self.user_db.on_new_user(to_address)
        return to_address

    async def listen(self, karma_sc: KarmaAmountSource, events: AsyncIterable[Any]) -> None:
        """Handle a stream of events until it ends.

        Items that are not TransferEvent are logged and skipped; an already
        registered user is ignored; any other failure raises RegistryError.
        """
        async for event in events:
            if not isinstance(event, TransferEvent):
                logger.error("Error decoding log data: %r", event)
                continue
            try:
                address = await self.handle_transfer_event(karma_sc, event)
            except AlreadyRegisteredError as exc:
                logger.debug("Already registered: %s", exc.address)
            except HandleTransferError as exc:
                logger.error("Unexpected error: %s", exc)
                raise RegistryError(exc) from exc
            else:
                logger.info("Registered new user: %s", address)