"""In-memory usage ledger backed by a bounded deque."""

import threading
import time
import uuid
from collections import deque
from collections.abc import Callable
from datetime import datetime

from studybuddy_gateway.models import ActivityBucket, UsageLogEntry, UsageStats


class MemoryUsageLedger:
    """Process-lifetime ring of usage entries.  Nothing survives a restart."""

    def __init__(
        self,
        capacity: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._clock = clock
        # Left end is the most recent entry; maxlen drops from the right.
        self._entries: deque[UsageLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def record(
        self,
        *,
        endpoint: str,
        model: str,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        cost: float = 0.0,
        client_identity: str = "unknown",
        success: bool = True,
        error: str | None = None,
    ) -> UsageLogEntry:
        with self._lock:
            entry = UsageLogEntry(
                id=uuid.uuid4().hex[:12],
                timestamp=self._clock(),
                endpoint=endpoint,
                model=model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                cost=cost,
                client_identity=client_identity,
                success=success,
                error=error,
            )
            self._entries.appendleft(entry)
            return entry

    def list_entries(self, limit: int | None = None) -> list[UsageLogEntry]:
        with self._lock:
            entries = list(self._entries)
        if limit is not None:
            entries = entries[: max(0, limit)]
        return entries

    def stats(self) -> UsageStats:
        with self._lock:
            entries = list(self._entries)
            now = self._clock()

        today_start = datetime.fromtimestamp(now).replace(hour=0, minute=0, second=0, microsecond=0).timestamp()
        minute_ago = now - 60.0

        total = len(entries)
        successful = sum(1 for e in entries if e.success)
        total_tokens = sum(e.total_tokens for e in entries)
        today = [e for e in entries if e.timestamp >= today_start]

        return UsageStats(
            total_requests=total,
            successful_requests=successful,
            failed_requests=total - successful,
            success_rate=(successful / total * 100.0) if total else 0.0,
            total_tokens=total_tokens,
            total_cost=sum(e.cost for e in entries),
            average_tokens_per_request=(total_tokens / total) if total else 0.0,
            requests_per_minute=sum(1 for e in entries if e.timestamp >= minute_ago),
            requests_today=len(today),
            tokens_today=sum(e.total_tokens for e in today),
            cost_today=sum(e.cost for e in today),
        )

    def activity(self, window_minutes: int = 60) -> list[ActivityBucket]:
        with self._lock:
            entries = list(self._entries)
            now = self._clock()

        current_minute = int(now // 60) * 60
        counts: dict[int, int] = {}
        for i in range(window_minutes - 1, -1, -1):
            counts[current_minute - i * 60] = 0

        for e in entries:
            minute = int(e.timestamp // 60) * 60
            if minute in counts:
                counts[minute] += 1

        return [
            ActivityBucket(timestamp=_minute_label(minute), minute_start=float(minute), count=count)
            for minute, count in counts.items()
        ]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _minute_label(minute_start: int) -> str:
    t = datetime.fromtimestamp(minute_start)
    return f"{t.hour}:{t.minute:02d}"
