"""Tracking of the current epoch (one day) and epoch slice (a fraction of a day)."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, TypeVar

from rln_prover.errors import AppError
from rln_prover.metrics import (
    DEFAULT_REGISTRY,
    EPOCH_SERVICE_CURRENT_EPOCH,
    EPOCH_SERVICE_CURRENT_EPOCH_SLICE,
    EPOCH_SERVICE_DRIFT_MILLIS,
)

logger = logging.getLogger(__name__)

EPOCH_DURATION = timedelta(days=1)
"""Duration of an epoch."""
WAIT_UNTIL_MIN_DURATION = timedelta(seconds=2)
"""Smallest wait accepted by EpochService.compute_wait_until."""
WAIT_UNTIL_MAX_COMPUTE_ERROR = 10
"""How many times the initial wait computation is retried when it is too low."""

_I32_MAX = 2**31 - 1
_ONE_SECOND = timedelta(seconds=1)
_METRIC_LABELS = {"prover": "epoch service"}

Clock = Callable[[], datetime]
T = TypeVar("T")


class EpochServiceInitError(ValueError):
    """The epoch service was given an invalid configuration."""


class WaitUntilError(Exception):
    """The time to wait until the next epoch slice could not be computed."""


class WaitUntilOutOfRangeError(WaitUntilError):
    """The next epoch slice start is already in the past."""

    def __init__(self, wait: timedelta) -> None:
        super().__init__(f"Computation error: negative wait duration {wait}")
        self.wait = wait


class WaitUntilTooLowError(WaitUntilError):
    """The next epoch slice starts too soon to be waited for reliably."""

    def __init__(self, wait: timedelta, minimum: timedelta) -> None:
        super().__init__(f"Wait until is too low: {wait} (min value: {minimum}")
        self.wait = wait
        self.minimum = minimum


class EpochError(AppError):
    """The epoch service stopped because of a WaitUntilError."""

    def __init__(self, cause: WaitUntilError) -> None:
        super().__init__(f"Epoch service error: {cause}")
        self.cause = cause


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _whole_seconds(duration: timedelta) -> int:
    return duration // _ONE_SECOND


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time(), tzinfo=timezone.utc)


class EpochService:
    """Keeps track of the current epoch and epoch slice and signals every change.

    The current ``(epoch, epoch_slice)`` pair starts at ``(0, 0)`` and is only
    initialised by ``listen_for_new_epoch``.
    """

    def __init__(
        self,
        epoch_slice_duration: timedelta,
        genesis: datetime,
        now: Clock | None = None,
    ) -> None:
        self._now: Clock = now if now is not None else _utc_now
        genesis = _as_utc(genesis)
        if genesis >= _as_utc(self._now()):
            raise EpochServiceInitError("genesis is in the future")

        seconds = _whole_seconds(epoch_slice_duration)
        if (
            seconds <= 0
            or seconds > _I32_MAX
            or epoch_slice_duration < WAIT_UNTIL_MIN_DURATION
            or epoch_slice_duration >= EPOCH_DURATION / 2
        ):
            raise EpochServiceInitError(
                "epoch slice duration is too large (cannot fit in i32) or == 0"
            )

        self.epoch_slice_duration = epoch_slice_duration
        self.genesis = genesis
        self.epoch_changes = asyncio.Event()
        self._lock = threading.Lock()
        self._current: tuple[int, int] = (0, 0)

    @property
    def current_epoch(self) -> tuple[int, int]:
        """The current ``(epoch, epoch_slice)`` pair."""
        with self._lock:
            return self._current

    def _set_current(self, epoch: int, epoch_slice: int) -> None:
        with self._lock:
            self._current = (epoch, epoch_slice)

    def compute_wait_until(self, now: Clock, monotonic_now: Callable[[], T]) -> tuple[int, int, Any]:
        """Return ``(epoch, epoch_slice, instant)`` where ``instant`` starts the next slice.

        ``instant`` is ``monotonic_now()`` plus the wait: seconds are added to a
        number, a timedelta to anything else.
        """
        current_epoch, now_date = self.compute_current_epoch(self.genesis, now)
        logger.debug("current epoch: %s", current_epoch)
        current_slice = self.compute_current_epoch_slice(
            now_date, self.epoch_slice_duration, now
        )
        logger.debug("current epoch slice: %s", current_slice)

        slice_next = _day_start(now_date) + self.epoch_slice_duration * (current_slice + 1)
        logger.debug("epoch slice next: %s", slice_next)

        wait = slice_next - _as_utc(now())
        if wait < timedelta(0):
            raise WaitUntilOutOfRangeError(wait)
        if wait < WAIT_UNTIL_MIN_DURATION:
            raise WaitUntilTooLowError(wait, WAIT_UNTIL_MIN_DURATION)

        start = monotonic_now()
        if isinstance(start, (int, float)):
            return current_epoch, current_slice, start + wait.total_seconds()
        return current_epoch, current_slice, start + wait

    @staticmethod
    def compute_epoch_slice_count(
        epoch_duration: timedelta, epoch_slice_duration: timedelta
    ) -> int:
        """Number of epoch slices in an epoch."""
        return _whole_seconds(epoch_duration) // _whole_seconds(epoch_slice_duration)

    @staticmethod
    def compute_current_epoch(genesis: datetime, now: Clock) -> tuple[int, date]:
        """Number of days since genesis, and today's date."""
        genesis_date = _as_utc(genesis).date()
        now_date = _as_utc(now()).date()
        if now_date < genesis_date:
            raise ValueError("current date is before genesis")
        return (now_date - genesis_date).days, now_date

    @staticmethod
    def compute_current_epoch_slice(
        now_date: date, epoch_slice_duration: timedelta, now: Clock
    ) -> int:
        """Index of the current epoch slice within ``now_date``."""
        seconds = _whole_seconds(epoch_slice_duration)
        if seconds <= 0 or seconds > _I32_MAX:
            raise ValueError("epoch slice duration must be between 1 second and 2**31-1 seconds")
        elapsed = _as_utc(now()) - _day_start(now_date)
        return elapsed // timedelta(seconds=seconds)

    async def listen_for_new_epoch(self) -> None:
        """Track epoch slices forever, setting ``epoch_changes`` at every change.

        Raises EpochError if the first wait cannot be computed.
        """
        loop = asyncio.get_running_loop()
        slice_count = self.compute_epoch_slice_count(EPOCH_DURATION, self.epoch_slice_duration)
        logger.debug("epoch slices in an epoch: %s", slice_count)

        retries = 0
        while True:
            try:
                epoch, epoch_slice, wait_until = self.compute_wait_until(self._now, loop.time)
                break
            except WaitUntilTooLowError as exc:
                logger.debug("wait until is too low, will retry after a sleep...")
                await asyncio.sleep(WAIT_UNTIL_MIN_DURATION.total_seconds())
                retries += 1
                if retries > WAIT_UNTIL_MAX_COMPUTE_ERROR:
                    logger.error(
                        "Too many errors while computing the initial wait until, aborting..."
                    )
                    raise EpochError(exc) from exc
            except WaitUntilError as exc:
                logger.error("Error computing the initial wait until: %s", exc)
                raise EpochError(exc) from exc

        self._set_current(epoch, epoch_slice)
        logger.debug("Initial epoch: %s, epoch slice: %s", epoch, epoch_slice)
        step = self.epoch_slice_duration.total_seconds()

        while True:
            await asyncio.sleep(max(0.0, wait_until - loop.time()))
            drift = loop.time() - wait_until
            logger.debug("awake, drift by: %.6f s", drift)
            DEFAULT_REGISTRY.observe(EPOCH_SERVICE_DRIFT_MILLIS.name, drift, _METRIC_LABELS)

            wait_until += step
            epoch_slice += 1
            if epoch_slice == slice_count:
                epoch_slice = 0
                epoch += 1
            self._set_current(epoch, epoch_slice)
            logger.debug("epoch: %s, epoch slice: %s", epoch, epoch_slice)

            DEFAULT_REGISTRY.set_gauge(EPOCH_SERVICE_CURRENT_EPOCH.name, epoch, _METRIC_LABELS)
            DEFAULT_REGISTRY.set_gauge(
                EPOCH_SERVICE_CURRENT_EPOCH_SLICE.name, epoch_slice, _METRIC_LABELS
            )
            self.epoch_changes.set()