"""Fixed-window, per-client rate limiting.

Each client identity gets a counter that resets at a single future instant
(``window_reset_at``).  Bursts of up to twice the limit are possible across a
window boundary; that is the accepted cost of the fixed-window scheme.

Client identities are attacker-influenced, so the number of remembered
records is capped: the least recently seen identity is evicted once the cap
is exceeded.
"""

import logging
import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class RateLimitRecord:
    count: int
    window_reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float
    now: float

    @property
    def retry_after(self) -> int:
        """Whole seconds until the window resets (at least 1)."""
        return max(1, math.ceil(self.reset_at - self.now))


class FixedWindowRateLimiter:
    """Thread-safe fixed-window counter keyed by client identity."""

    def __init__(
        self,
        max_requests: int = 20,
        window_seconds: float = 60.0,
        max_clients: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_clients = max_clients
        self._clock = clock
        self._records: OrderedDict[str, RateLimitRecord] = OrderedDict()
        self._lock = threading.Lock()

    def admit(self, identity: str) -> RateLimitDecision:
        """Count one request from *identity* and decide whether it may proceed."""
        with self._lock:
            now = self._clock()
            record = self._records.get(identity)

            if record is None or now > record.window_reset_at:
                record = RateLimitRecord(count=1, window_reset_at=now + self.window_seconds)
                self._records[identity] = record
                self._records.move_to_end(identity)
                self._evict()
                return RateLimitDecision(True, self.max_requests - 1, record.window_reset_at, now)

            self._records.move_to_end(identity)
            if record.count >= self.max_requests:
                return RateLimitDecision(False, 0, record.window_reset_at, now)

            record.count += 1
            return RateLimitDecision(True, self.max_requests - record.count, record.window_reset_at, now)

    def sweep(self) -> int:
        """Drop records whose window has expired.  Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, rec in self._records.items() if now > rec.window_reset_at]
            for key in expired:
                del self._records[key]
            return len(expired)

    def get(self, identity: str) -> RateLimitRecord | None:
        with self._lock:
            record = self._records.get(identity)
            if record is None:
                return None
            return RateLimitRecord(record.count, record.window_reset_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _evict(self) -> None:
        while len(self._records) > self.max_clients:
            key, _ = self._records.popitem(last=False)
            logger.debug("Evicted rate limit record for %s", key)
