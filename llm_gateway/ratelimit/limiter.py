"""Per-identity sliding-window admission control.

Each identity owns a window of admission timestamps covering the trailing
60 seconds.  Entries older than the window are pruned on every check, and
windows left empty are swept out once per window period, so memory stays
bounded by ``limit_per_minute`` per identity seen within the last two
windows.  State is in-process only and is lost on restart; admission is
advisory.

Thread-safe: every window carries its own ``threading.Lock``, so unrelated
identities never contend with each other.
"""

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from time import monotonic

WINDOW_SECONDS = 60.0


@dataclass
class RateLimitWindow:
    """Admission timestamps for one identity, oldest first."""

    timestamps: deque[float] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)
    # Set once the window has been swept out of the limiter.
    retired: bool = False

    def prune(self, cutoff: float) -> None:
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()


class SlidingWindowRateLimiter:
    """Approximate sliding-window limiter keyed by caller identity.

    Parameters
    ----------
    clock : callable, optional
        Returns the current time in seconds.  Defaults to ``time.monotonic``.
    window_seconds : float
        Length of the trailing window.
    """

    def __init__(
        self,
        clock: Callable[[], float] = monotonic,
        window_seconds: float = WINDOW_SECONDS,
    ) -> None:
        self._clock = clock
        self._window_seconds = window_seconds
        self._windows: dict[str, RateLimitWindow] = {}
        self._sweep_lock = threading.Lock()
        self._last_sweep: float | None = None

    def admit(self, identity: str, limit_per_minute: int) -> bool:
        """Record and accept a request, or reject it without recording."""
        if limit_per_minute <= 0:
            return True

        self._maybe_sweep()
        while True:
            # dict.setdefault is atomic, so two callers always share one window.
            window = self._windows.setdefault(identity, RateLimitWindow())
            with window.lock:
                if window.retired:
                    continue
                now = self._clock()
                window.prune(now - self._window_seconds)
                if len(window.timestamps) >= limit_per_minute:
                    return False
                window.timestamps.append(now)
                return True

    def usage(self, identity: str) -> int:
        """Return admissions recorded for an identity within the window."""
        window = self._windows.get(identity)
        if window is None:
            return 0
        with window.lock:
            window.prune(self._clock() - self._window_seconds)
            return len(window.timestamps)

    def tracked_identities(self) -> int:
        return len(self._windows)

    def sweep(self) -> int:
        """Drop windows with no admissions left inside the trailing window.

        Returns the number of identities removed.  Windows that are busy are
        left for the next sweep.
        """
        if not self._sweep_lock.acquire(blocking=False):
            return 0
        try:
            now = self._clock()
            self._last_sweep = now
            cutoff = now - self._window_seconds
            removed = 0
            for identity, window in list(self._windows.items()):
                if not window.lock.acquire(blocking=False):
                    continue
                try:
                    window.prune(cutoff)
                    if window.timestamps or self._windows.get(identity) is not window:
                        continue
                    window.retired = True
                    del self._windows[identity]
                    removed += 1
                finally:
                    window.lock.release()
            return removed
        finally:
            self._sweep_lock.release()

    def _maybe_sweep(self) -> None:
        now = self._clock()
        if self._last_sweep is None:
            self._last_sweep = now
        elif now - self._last_sweep >= self._window_seconds:
            self.sweep()
