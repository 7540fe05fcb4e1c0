"""Cooldown gate limiting how often OTP codes are issued per requester."""

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class ThrottleDecision:
    """Outcome of a throttle check."""

    allowed: bool
    retry_after: int = 0


class Throttle(Protocol):
    """
    Contract for OTP issuance throttles.

    Implementations must make the read-compare-write in ``check_and_record``
    atomic, so that two concurrent requests for the same key cannot both pass.
    A shared store (Redis, a database) can replace the in-memory version
    without changing callers.
    """

    def check_and_record(
        self, key: str, window: float | None = None
    ) -> ThrottleDecision: ...


class InMemoryThrottle:
    """
    Process-local cooldown gate.

    For single-process deployments and tests. Each instance owns its own
    state, so multiple instances never interfere.
    """

    def __init__(
        self,
        window: float = 30,
        clock: Callable[[], float] = time.monotonic,
        prune_threshold: int = 10_000,
    ) -> None:
        """
        Args:
            window: Cooldown in seconds between two issuances for a key
            clock: Monotonic time source
            prune_threshold: Entry count above which stale keys are dropped
        """
        self.window = window
        self._clock = clock
        self._prune_threshold = prune_threshold
        self._last_issued: dict[str, float] = {}
        self._lock = threading.Lock()

    def check_and_record(
        self, key: str, window: float | None = None
    ) -> ThrottleDecision:
        """
        Allow and record an issuance for ``key``, or deny it.

        A denied call does not refresh the stored timestamp.

        Args:
            key: Requester key, see ``throttle_key``
            window: Cooldown override in seconds

        Returns:
            ThrottleDecision; when denied, ``retry_after`` is the remaining
            wait rounded up to whole seconds
        """
        window = self.window if window is None else window
        with self._lock:
            now = self._clock()
            last = self._last_issued.get(key)
            if last is not None:
                elapsed = now - last
                if elapsed < window:
                    retry_after = max(1, math.ceil(window - elapsed))
                    return ThrottleDecision(allowed=False, retry_after=retry_after)

            self._last_issued[key] = now
            if len(self._last_issued) > self._prune_threshold:
                self._prune(now, window)
            return ThrottleDecision(allowed=True)

    def reset(self) -> None:
        with self._lock:
            self._last_issued.clear()

    def __len__(self) -> int:
        return len(self._last_issued)

    def _prune(self, now: float, window: float) -> None:
        stale = [k for k, ts in self._last_issued.items() if now - ts >= window]
        for k in stale:
            del self._last_issued[k]


def client_address(forwarded_for: str | None, peer_host: str | None) -> str:
    """
    Best-effort client network identity.

    Uses the first ``X-Forwarded-For`` entry, then the direct peer address,
    then the literal ``"unknown"``.
    """
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    if peer_host:
        return peer_host.strip()
    return "unknown"


def throttle_key(
    email: str, forwarded_for: str | None = None, peer_host: str | None = None
) -> str:
    """Build the per-(email, origin) throttle key."""
    return f"{email.strip()}|{client_address(forwarded_for, peer_host)}".lower()
