import json

import pytest

from rln_prover.address import Address
from rln_prover.mock import MockUser, MockUserError, read_mock_user

ADDR_1 = "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"
ADDR_2 = "0xb20a608c624Ca5003905aA834De7156C68b2E1d0"


def _write(tmp_path, content):
    path = tmp_path / "users.json"
    path.write_text(content, encoding="utf-8")
    return path


def test_reads_users(tmp_path):
    path = _write(
        tmp_path,
        json.dumps([{"address": ADDR_1, "tx_count": 0}, {"address": ADDR_2, "tx_count": 7}]),
    )
    users = read_mock_user(path)
    assert users == [
        MockUser(Address.parse(ADDR_1), 0),
        MockUser(Address.parse(ADDR_2), 7),
    ]


def test_missing_file(tmp_path):
    with pytest.raises(MockUserError) as info:
        read_mock_user(tmp_path / "absent.json")
    assert isinstance(info.value.__cause__, OSError)


def test_invalid_json(tmp_path):
    with pytest.raises(MockUserError):
        read_mock_user(_write(tmp_path, "[{"))


@pytest.mark.parametrize(
    "entry",
    [
        {"address": "0x1234", "tx_count": 1},
        {"address": ADDR_1},
        {"tx_count": 1},
        {"address": ADDR_1, "tx_count": -1},
        {"address": ADDR_1, "tx_count": "1"},
    ],
)
def test_invalid_entries(tmp_path, entry):
    with pytest.raises(MockUserError):
        read_mock_user(_write(tmp_path, json.dumps([entry])))


def test_top_level_must_be_list(tmp_path):
    with pytest.raises(MockUserError):
        read_mock_user(_write(tmp_path, json.dumps({"address": ADDR_1, "tx_count": 1})))