import pytest

from rln_prover.address import Address
from rln_prover.errors import (
    AlreadyRegisteredError,
    FetchBalanceError,
    RegistryError,
)
from rln_prover.registry_listener import RegistryListener, TransferEvent

ZERO = Address(bytes(20))
ADDR_1 = Address.parse("0x" + "11" * 20)
ADDR_2 = Address.parse("0x" + "22" * 20)


class FakeUserDb:
    def __init__(self):
        self.users = {}

    def on_new_user(self, address):
        if address in self.users:
            raise AlreadyRegisteredError(address)
        self.users[address] = len(self.users)
        return self.users[address]

    def get_user(self, address):
        return self.users.get(address)


class FakeKarma:
    def __init__(self, balance=10):
        self.balance = balance
        self.calls = []

    async def karma_amount(self, address):
        self.calls.append(address)
        return self.balance


class FailingKarma:
    async def karma_amount(self, address):
        raise RuntimeError("rpc down")


def make_listener(db, minimal=25):
    return RegistryListener("", ZERO, db, minimal)


async def stream(items):
    for item in items:
        yield item


@pytest.mark.asyncio
async def test_handle_transfer_event():
    db = FakeUserDb()
    assert db.get_user(ADDR_2) is None
    listener = make_listener(db, 25)
    transfer = TransferEvent(ZERO, ADDR_2, 25)
    result = await listener.handle_transfer_event(FakeKarma(), transfer)
    assert result == ADDR_2
    assert db.get_user(ADDR_2) is not None
    assert db.get_user(ADDR_2) == 0


@pytest.mark.asyncio
async def test_small_mint_with_low_balance_not_registered():
    db = FakeUserDb()
    karma = FakeKarma(balance=10)
    result = await make_listener(db).handle_transfer_event(karma, TransferEvent(ZERO, ADDR_2, 5))
    assert result == ADDR_2
    assert db.users == {}
    assert karma.calls == [ADDR_2]


@pytest.mark.asyncio
async def test_small_mint_with_enough_balance_registered():
    db = FakeUserDb()
    karma = FakeKarma(balance=30)
    await make_listener(db).handle_transfer_event(karma, TransferEvent(ZERO, ADDR_2, 5))
    assert list(db.users) == [ADDR_2]


@pytest.mark.asyncio
async def test_plain_transfer_ignored():
    db = FakeUserDb()
    karma = FakeKarma()
    result = await make_listener(db).handle_transfer_event(karma, TransferEvent(ADDR_1, ADDR_2, 100))
    assert result == ADDR_2
    assert db.users == {}
    assert karma.calls == []


@pytest.mark.asyncio
async def test_balance_failure():
    db = FakeUserDb()
    with pytest.raises(FetchBalanceError) as info:
        await make_listener(db).handle_transfer_event(FailingKarma(), TransferEvent(ZERO, ADDR_2, 1))
    assert isinstance(info.value.cause, RuntimeError)


@pytest.mark.asyncio
async def test_already_registered():
    db = FakeUserDb()
    db.on_new_user(ADDR_2)
    with pytest.raises(AlreadyRegisteredError):
        await make_listener(db).handle_transfer_event(FakeKarma(), TransferEvent(ZERO, ADDR_2, 25))


@pytest.mark.asyncio
async def test_listen_skips_undecodable_and_already_registered():
    db = FakeUserDb()
    db.on_new_user(ADDR_1)
    events = [
        "garbage",
        TransferEvent(ZERO, ADDR_1, 30),
        TransferEvent(ZERO, ADDR_2, 30),
    ]
    await make_listener(db).listen(FakeKarma(), stream(events))
    assert list(db.users) == [ADDR_1, ADDR_2]


@pytest.mark.asyncio
async def test_listen_stops_on_balance_failure():
    db = FakeUserDb()
    events = [TransferEvent(ZERO, ADDR_1, 1), TransferEvent(ZERO, ADDR_2, 30)]
    with pytest.raises(RegistryError) as info:
        await make_listener(db).listen(FailingKarma(), stream(events))
    assert isinstance(info.value.cause, FetchBalanceError)
    assert db.users == {}


def test_transfer_value_must_be_u256():
    with pytest.raises(ValueError):
        TransferEvent(ZERO, ADDR_2, -1)
    with pytest.raises(ValueError):
        TransferEvent(ZERO, ADDR_2, 2**256)


def test_minimal_amount_must_be_u256():
    with pytest.raises(ValueError):
        RegistryListener("", ZERO, FakeUserDb(), -5)