"""Command-line options of the prover service, merged with an optional TOML config file."""

from __future__ import annotations

import argparse
import ipaddress
import logging
import tomllib
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from rln_prover.address import Address

logger = logging.getLogger(__name__)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

DEFAULT_WS_RPC_URL = "wss://rpc.example.com/ws"
DEFAULT_KSC_ADDRESS = "0x011b9de308BE357BbF24EfB387a270a14A04E5d2"
DEFAULT_RLNSC_ADDRESS = "0xc98994691E96D2f4CA2a718Bc8FDF30bd21d1c59"
DEFAULT_TSC_ADDRESS = "0x011b9de308BE357BbF24EfB387a270a14A04E5d2"

# Bounded channel carrying proofs to the verifier; too low a value can stall every proof service.
DEFAULT_BROADCAST_CHANNEL_SIZE = "100"
# Number of proof services (tasks) waiting for new transactions.
DEFAULT_PROOF_SERVICE_COUNT = "8"
# Channel used by the grpc service to hand transactions to the proof services.
DEFAULT_TRANSACTION_CHANNEL_SIZE = "100"
# Channel used by the grpc service to send generated proofs to the verifier.
DEFAULT_PROOF_SENDER_CHANNEL_SIZE = "100"

_TRUE_WORDS = frozenset({"true", "1", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "0", "no", "off"})


def _ip(value: Any) -> IPAddress:
    return ipaddress.ip_address(str(value).strip())


def _unsigned(bits: int, name: str) -> Callable[[Any], int]:
    limit = 2**bits - 1

    def convert(value: Any) -> int:
        if isinstance(value, bool):
            raise ValueError(f"expected an integer, got {value!r}")
        number = value if isinstance(value, int) else int(str(value).strip(), 10)
        if not 0 <= number <= limit:
            raise ValueError(f"{number} is not in 0..={limit}")
        return number

    convert.__name__ = name
    return convert


_u16 = _unsigned(16, "u16")
_usize = _unsigned(64, "usize")


def _url(value: Any) -> str:
    text = str(value).strip()
    parts = urlsplit(text)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"invalid url: {text!r}")
    return text


def _address(value: Any) -> Address:
    return Address.parse(str(value))


def _path(value: Any) -> Path:
    return Path(value)


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    word = str(value).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ValueError(f"invalid boolean: {value!r}")


_ip.__name__ = "ip"
_url.__name__ = "url"
_address.__name__ = "address"
_bool.__name__ = "bool"


@dataclass(frozen=True)
class _Option:
    dest: str
    flags: tuple[str, ...]
    convert: Callable[[Any], Any]
    help: str
    default: str | None = None
    group: str | None = None
    hidden: bool = False
    kind: str = "value"  # "value", "flag" or "optional_bool"

    def default_value(self) -> Any:
        if self.kind == "flag":
            return False
        return None if self.default is None else self.convert(self.default)

    def from_config(self, raw: Any) -> Any:
        try:
            return self.convert(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid value for {self.dest!r} in config: {exc}") from exc


_OPTIONS: tuple[_Option, ...] = (
    _Option("ip", ("-i", "--ip"), _ip, "Service ip", "::1"),
    _Option("port", ("-p", "--port"), _u16, "Service port", "50051"),
    _Option(
        "ws_rpc_url",
        ("-u", "--ws-rpc-url"),
        _url,
        "Websocket rpc url (e.g. wss://rpc.example.com/ws)",
        DEFAULT_WS_RPC_URL,
    ),
    _Option("db_path", ("--db",), _path, "Db path", "./storage/db"),
    _Option("merkle_tree_path", ("--tree",), _path, "Merkle tree path", "./storage/tree"),
    _Option(
        "ksc_address", ("-k", "--ksc"), _address, "Karma smart contract address",
        DEFAULT_KSC_ADDRESS,
    ),
    _Option(
        "rlnsc_address", ("-r", "--rlnsc"), _address, "RLN smart contract address",
        DEFAULT_RLNSC_ADDRESS,
    ),
    _Option(
        "tsc_address", ("-t", "--tsc"), _address, "KarmaTiers smart contract address",
        DEFAULT_TSC_ADDRESS,
    ),
    _Option(
        "mock_sc", ("--mock-sc",), _bool, "Test only - mock smart contracts",
        group="mock", kind="optional_bool",
    ),
    _Option(
        "mock_user", ("--mock-user",), _path,
        "Test only - register user (requires --mock-sc to be enabled)", group="mock",
    ),
    _Option(
        "config_path", ("-c", "--config"), _path, "Config file path", "./config.toml",
        group="config",
    ),
    _Option(
        "no_config", ("--no-config",), _bool, "Dont read a config file",
        group="config", kind="flag",
    ),
    _Option("metrics_ip", ("--metrics-ip",), _ip, "Prometheus Metrics ip", "::1"),
    _Option("metrics_port", ("--metrics-port",), _u16, "Metrics port", "30031"),
    _Option(
        "broadcast_channel_size", ("--broadcast-channel-size",), _usize,
        "Broadcast bounded channel size", DEFAULT_BROADCAST_CHANNEL_SIZE, hidden=True,
    ),
    _Option(
        "proof_service_count", ("--proof-service",), _u16,
        "Number of proof service (tasks) to generate proof", DEFAULT_PROOF_SERVICE_COUNT,
        hidden=True,
    ),
    _Option(
        "transaction_channel_size", ("--transaction-channel-size",), _usize,
        "Proof bounded channel size", DEFAULT_TRANSACTION_CHANNEL_SIZE, hidden=True,
    ),
    _Option(
        "proof_sender_channel_size", ("--proof-sender-channel-size",), _usize,
        "Proof bounded sender channel size", DEFAULT_PROOF_SENDER_CHANNEL_SIZE, hidden=True,
    ),
)

_OPTIONS_BY_DEST = {option.dest: option for option in _OPTIONS}


@dataclass(frozen=True)
class AppArgs:
    """Settings of the prover service."""

    ip: IPAddress
    port: int
    ws_rpc_url: str | None
    db_path: Path
    merkle_tree_path: Path
    ksc_address: Address | None
    rlnsc_address: Address | None
    tsc_address: Address | None
    mock_sc: bool | None
    mock_user: Path | None
    config_path: Path
    no_config: bool
    metrics_ip: IPAddress
    metrics_port: int
    broadcast_channel_size: int
    proof_service_count: int
    transaction_channel_size: int
    proof_sender_channel_size: int

    @classmethod
    def from_merged(
        cls,
        namespace: argparse.Namespace | Mapping[str, Any],
        explicit: Collection[str],
        config: Mapping[str, Any] | None = None,
    ) -> AppArgs:
        """Combine parsed options with a config: options given on the command line
        win, then values from the config, then the defaults."""
        given = vars(namespace) if isinstance(namespace, argparse.Namespace) else dict(namespace)
        settings = _normalize_keys(config or {})
        values: dict[str, Any] = {}
        for option in _OPTIONS:
            from_config = settings.get(option.dest)
            if option.dest in explicit or from_config is None:
                values[option.dest] = given.get(option.dest, option.default_value())
            else:
                values[option.dest] = option.from_config(from_config)
        return cls(**values)


def _normalize_keys(config: Mapping[str, Any]) -> dict[str, Any]:
    return {str(key).replace("-", "_"): value for key, value in config.items()}


def _build_parser(with_defaults: bool) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rln-prover",
        description="RLN prover service",
        argument_default=None if with_defaults else argparse.SUPPRESS,
    )
    groups = {
        "mock": parser.add_argument_group("mock"),
        "config": parser.add_argument_group("config"),
    }
    for option in _OPTIONS:
        target = groups[option.group] if option.group else parser
        kwargs: dict[str, Any] = {
            "dest": option.dest,
            "help": argparse.SUPPRESS if option.hidden else option.help,
        }
        if option.kind == "flag":
            kwargs["action"] = "store_true"
        else:
            kwargs["type"] = option.convert
            if option.kind == "optional_bool":
                kwargs["nargs"] = "?"
                kwargs["const"] = True
        if with_defaults and option.kind != "flag":
            kwargs["default"] = option.default
        target.add_argument(*option.flags, **kwargs)
    return parser


def build_parser() -> argparse.ArgumentParser:
    """The argument parser of the prover command."""
    return _build_parser(with_defaults=True)


def read_config(path: str | Path) -> dict[str, Any]:
    """Read settings from a TOML file; keys are option names such as ``port``."""
    with open(path, "rb") as handle:
        raw = tomllib.load(handle)
    settings = _normalize_keys(raw)
    unknown = sorted(set(settings) - set(_OPTIONS_BY_DEST))
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
    return {key: value for key, value in settings.items() if key in _OPTIONS_BY_DEST}


def parse_args(argv: list[str] | None = None) -> AppArgs:
    """Parse the command line and merge it with the config file unless --no-config is set."""
    parser = build_parser()
    namespace = parser.parse_args(argv)
    explicit = set(vars(_build_parser(with_defaults=False).parse_args(argv)))

    config: dict[str, Any] | None = None
    if not namespace.no_config:
        path: Path = namespace.config_path
        if path.is_file():
            config = read_config(path)
        elif "config_path" in explicit:
            parser.error(f"config file not found: {path}")
    return AppArgs.from_merged(namespace, explicit, config)