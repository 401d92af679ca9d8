# rln_prover

Building blocks for a Rate-Limiting-Nullifier (RLN) prover service. They
track epochs and epoch slices, count transactions per user, register users
when tokens are minted to them, read service settings and expose metrics.

The package needs Python 3.11 or later and has no third-party dependencies.

## Modules

| Module | Contents |
| --- | --- |
| `rln_prover.address` | `Address`, a 20-byte account address (`Address.parse`, `Address.from_bytes`, `is_zero`) |
| `rln_prover.epoch_service` | `EpochService` and its errors (`EpochServiceInitError`, `WaitUntilError`, `WaitUntilOutOfRangeError`, `WaitUntilTooLowError`, `EpochError`) |
| `rln_prover.counters` | `EpochCounters` and `EpochIncr` binary records, `epoch_counters_merge`, `u64_counter_merge` and the in-memory `MergeStore` |
| `rln_prover.proof_generation` | `ProofGenerationData` and `ProofSendingData` records |
| `rln_prover.registry_listener` | `TransferEvent` and `RegistryListener` |
| `rln_prover.mock` | `MockUser`, `MockUserError` and `read_mock_user` |
| `rln_prover.metrics` | `Metric`, `MetricsRegistry`, `GaugeWrapper` and `init_metrics` |
| `rln_prover.args` | `AppArgs`, `build_parser`, `parse_args` and `read_config` |
| `rln_prover.errors` | `AppError`, `RegistryError`, the `HandleTransferError` family, `GetMerkleTreeProofError`, `ProofGenerationError` and `ProofGenerationStringError` |

## Addresses

```python
from rln_prover.address import Address

addr = Address.parse("0x1111111111111111111111111111111111111111")
str(addr)        # '0x1111111111111111111111111111111111111111'
addr.is_zero()   # False
```

`Address.parse` accepts 40 hex digits, with or without a `0x` prefix and in
any letter case. Anything else raises `ValueError`.

## Epochs

`EpochService(epoch_slice_duration, genesis, now=None)` divides every day
after `genesis` into slices of `epoch_slice_duration` (a `timedelta`). The
slice duration must be at least two seconds and shorter than half a day, and
`genesis` must lie in the past. Otherwise `EpochServiceInitError` is raised.

- `compute_current_epoch(genesis, now)` returns the number of days since
  genesis and today's date.
- `compute_current_epoch_slice(now_date, epoch_slice_duration, now)` returns
  the index of the current slice within the day.
- `compute_epoch_slice_count(epoch_duration, epoch_slice_duration)` returns
  how many slices fit in an epoch.
- `compute_wait_until(now, monotonic_now)` returns
  `(epoch, epoch_slice, instant)`, where `instant` is the moment the next
  slice starts. It raises `WaitUntilTooLowError` when that moment is less
  than two seconds away, and `WaitUntilOutOfRangeError` when it is already
  past.
- The coroutine `listen_for_new_epoch()` runs until it is cancelled. It
  updates `current_epoch`, an `(epoch, epoch_slice)` pair, sets the
  `asyncio.Event` `epoch_changes` at every slice change, and records the
  epoch gauges and drift histogram in the default metrics registry. If the
  first wait cannot be computed, it raises `EpochError`. A wait that is too
  low is retried up to ten times first.

## Epoch counters

Each user's counters are a 32-byte little-endian record: the epoch, the
epoch slice, the epoch count and the slice count. Increments (`EpochIncr`,
24 bytes) are merged into that record. A new slice resets the slice count,
and a new epoch resets both counts. Additions saturate at 2**64 - 1.

```python
from rln_prover.counters import EpochCounters, EpochIncr, MergeStore, epoch_counters_merge

store = MergeStore(epoch_counters_merge)
incr = EpochIncr(epoch=0, epoch_slice=0, incr_value=2).to_bytes()
store.merge_many(b"user", [incr, incr])

counters = EpochCounters.from_bytes(store.get(b"user"))
print(counters.epoch_counter, counters.epoch_slice_counter)  # 4 4
```

`u64_counter_merge` is a plain counter. The stored value is an unsigned
64-bit integer and each operand is a signed 64-bit increment. The result is
clamped between 0 and 2**64 - 1. A record that is too short raises
`DeserializeError`.

## Registration on mint

`RegistryListener(rpc_url, sc_address, user_db, minimal_amount)` handles
`TransferEvent(from_address, to_address, value)` items. For a mint, that is
an event from the zero address, it registers `to_address` through
`user_db.on_new_user(address)` in two cases: when the minted value reaches
`minimal_amount`, or, failing that, when `karma_sc.karma_amount(address)`
does.

- `handle_transfer_event(karma_sc, event)` returns the receiver address. If
  the balance query fails, it raises `FetchBalanceError`.
- `listen(karma_sc, events)` consumes an async iterable of events. It skips
  and logs items that are not `TransferEvent`s and ignores
  `AlreadyRegisteredError`. Any other `HandleTransferError` is raised as a
  `RegistryError`.

## Settings

`parse_args(argv=None)` parses the command-line options (`--ip`, `--port`,
`--ws-rpc-url`, `--db`, `--tree`, `--ksc`, `--rlnsc`, `--tsc`, `--mock-sc`,
`--mock-user`, `--config`, `--no-config`, `--metrics-ip`, `--metrics-port`,
and the hidden channel-size and `--proof-service` options) into a frozen
`AppArgs`. It merges them with a TOML config file (default
`./config.toml`):

1. options given on the command line win;
2. then values from the config file;
3. then the defaults.

A missing default config file is ignored. A missing config file that was
named explicitly is an error. `--no-config` skips the file entirely.
`read_config(path)` reads such a file: it accepts keys with `-` or `_`,
ignores unknown keys and logs a warning for them.
`AppArgs.from_merged(namespace, explicit, config)` performs the merge on its
own.

## Mock users

`read_mock_user(path)` reads a JSON list of objects with an `address` and an
unsigned 64-bit `tx_count`:

```json
[{"address": "0x1111111111111111111111111111111111111111", "tx_count": 3}]
```

It raises `MockUserError` when the file cannot be read, is not valid JSON,
or holds a malformed entry.

## Metrics

`MetricsRegistry` is a thread-safe store of counters (`increment`), gauges
(`set_gauge`, `add_gauge`) and histograms (`observe`), keyed by name and
labels. `value` reads a series back. `render` produces the Prometheus text
format, with histograms written as `_sum` and `_count` summaries.

`GaugeWrapper` raises a labelled gauge by one when it is created and lowers
it once on `close()` or on leaving a `with` block.

`init_metrics(ip, port, registry=None)` registers the prover's metrics and
serves `render()` over HTTP from a background thread. It returns the
server.

## What the package does not do

- It has no command to start a prover.
- It does not serve gRPC requests.
- It does not compute or verify RLN proofs. `ProofGenerationData` and
  `ProofSendingData` only carry the data.
- It does not connect to a blockchain node. Events and balances come from
  whatever objects the caller passes to `RegistryListener`.
- It includes no user database and no persistent storage. `MergeStore`
  keeps its values in memory.

## Running the tests

Install the `test` extra, then run `pytest` from the project root.