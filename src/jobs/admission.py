"""
Admission control for scan submissions.

A per-requester window counter with a cooldown between accepted
submissions.  State lives in a bounded map; expired entries are
dropped lazily when read and the oldest entries are evicted when the
map is full, so no background sweep is needed.  Callers depend on
the ``AdmissionControl`` protocol so a shared store can replace the
in-process one.
"""

from __future__ import annotations

import collections
import dataclasses
import time
from collections.abc import Callable
from typing import Literal, Protocol

from src.utils import logger

log = logger.create_logger("Admission")

RefusalReason = Literal["window_exceeded", "cooldown"]


@dataclasses.dataclass(frozen=True)
class AdmissionDecision:
    """Whether a submission may proceed, and when to retry if not."""

    allowed: bool
    remaining: int
    retry_after_seconds: float = 0.0
    reason: RefusalReason | None = None


class AdmissionControl(Protocol):
    def check(self, requester: str) -> AdmissionDecision: ...


@dataclasses.dataclass
class _Entry:
    count: int
    window_ends_at: float
    last_accepted_at: float


class SlidingWindowAdmission:
    """In-process admission control for a single-worker deployment."""

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 600.0,
        cooldown_seconds: float = 10.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._cooldown = cooldown_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: collections.OrderedDict[str, _Entry] = collections.OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def _get_live(self, requester: str, now: float) -> _Entry | None:
        entry = self._entries.get(requester)
        if entry is not None and entry.window_ends_at <= now:
            del self._entries[requester]
            return None
        return entry

    def _store(self, requester: str, entry: _Entry) -> None:
        self._entries[requester] = entry
        self._entries.move_to_end(requester)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            log.debug("Evicted admission entry", {"requester": evicted})

    def check(self, requester: str) -> AdmissionDecision:
        """Record a submission attempt by *requester* and decide on it."""
        now = self._clock()
        entry = self._get_live(requester, now)

        if entry is None:
            self._store(requester, _Entry(count=1, window_ends_at=now + self._window, last_accepted_at=now))
            return AdmissionDecision(allowed=True, remaining=self._max_requests - 1)

        if now - entry.last_accepted_at < self._cooldown:
            return AdmissionDecision(
                allowed=False,
                remaining=0,
                retry_after_seconds=entry.last_accepted_at + self._cooldown - now,
                reason="cooldown",
            )

        if entry.count >= self._max_requests:
            return AdmissionDecision(
                allowed=False,
                remaining=0,
                retry_after_seconds=entry.window_ends_at - now,
                reason="window_exceeded",
            )

        entry.count += 1
        entry.last_accepted_at = now
        self._store(requester, entry)
        return AdmissionDecision(allowed=True, remaining=self._max_requests - entry.count)
