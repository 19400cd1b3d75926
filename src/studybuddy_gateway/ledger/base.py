"""UsageLedger protocol: the interface the relay and dashboard depend on."""

from typing import Protocol

from studybuddy_gateway.models import ActivityBucket, UsageLogEntry, UsageStats


class UsageLedger(Protocol):
    """Bounded record of completed upstream calls.

    Entries are immutable once recorded and are returned most-recent-first.
    Statistics are always derived from the current contents, never cached.
    """

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
        """Stamp and insert a new entry, evicting the oldest beyond capacity."""
        ...

    def list_entries(self, limit: int | None = None) -> list[UsageLogEntry]:
        """Return entries most-recent-first, optionally capped to *limit*."""
        ...

    def stats(self) -> UsageStats:
        """Recompute aggregate statistics from scratch."""
        ...

    def activity(self, window_minutes: int = 60) -> list[ActivityBucket]:
        """Per-minute request counts for the trailing window, oldest first."""
        ...

    def clear(self) -> None:
        """Drop every entry."""
        ...
