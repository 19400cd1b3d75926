"""Tests for MemoryUsageLedger."""

import threading
from datetime import datetime

import pytest
from studybuddy_gateway.ledger.memory_ledger import MemoryUsageLedger


def _record(ledger, *, success=True, prompt=10, completion=20, cost=0.01, error=None):
    return ledger.record(
        endpoint="/api/chat",
        model="gpt-4o-mini",
        prompt_tokens=prompt if success else 0,
        completion_tokens=completion if success else 0,
        cost=cost if success else 0.0,
        client_identity="1.2.3.4",
        success=success,
        error=error,
    )


class TestRecord:
    def test_assigns_id_and_timestamp(self, ledger, clock):
        entry = _record(ledger)
        assert entry.id
        assert entry.timestamp == clock.now
        assert entry.total_tokens == 30

    def test_ids_unique(self, ledger):
        ids = {_record(ledger).id for _ in range(50)}
        assert len(ids) == 50

    def test_most_recent_first(self, ledger, clock):
        first = _record(ledger)
        clock.advance(1)
        second = _record(ledger)
        assert [e.id for e in ledger.list_entries()] == [second.id, first.id]

    def test_entries_are_immutable(self, ledger):
        entry = _record(ledger)
        with pytest.raises(Exception):
            entry.cost = 99.0

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            MemoryUsageLedger(capacity=0)


class TestCapacity:
    @pytest.mark.parametrize("extra", [1, 7, 100])
    def test_evicts_oldest(self, make_clock, extra):
        clock = make_clock()
        ledger = MemoryUsageLedger(capacity=50, clock=clock)
        inserted = []
        for _ in range(50 + extra):
            inserted.append(_record(ledger).id)
            clock.advance(0.1)

        entries = ledger.list_entries()
        assert len(entries) == 50
        assert [e.id for e in entries] == list(reversed(inserted))[:50]

    def test_limit(self, ledger):
        for _ in range(5):
            _record(ledger)
        assert len(ledger.list_entries(3)) == 3
        assert len(ledger.list_entries()) == 5
        assert ledger.list_entries(0) == []

    def test_clear(self, ledger):
        _record(ledger)
        ledger.clear()
        assert ledger.list_entries() == []
        assert ledger.stats().total_requests == 0


class TestStats:
    def test_empty(self, ledger):
        stats = ledger.stats()
        assert stats.total_requests == 0
        assert stats.average_tokens_per_request == 0.0
        assert stats.success_rate == 0.0

    def test_totals(self, ledger):
        _record(ledger, prompt=10, completion=20, cost=0.5)
        _record(ledger, prompt=5, completion=5, cost=0.25)
        _record(ledger, success=False, error="boom")

        stats = ledger.stats()
        assert stats.total_requests == 3
        assert stats.successful_requests == 2
        assert stats.failed_requests == 1
        assert stats.total_tokens == 40
        assert stats.total_cost == pytest.approx(0.75)
        assert stats.average_tokens_per_request == pytest.approx(40 / 3)
        assert stats.success_rate == pytest.approx(200 / 3)

    def test_consistent_with_list(self, make_clock):
        clock = make_clock()
        ledger = MemoryUsageLedger(capacity=10, clock=clock)
        for i in range(25):
            _record(ledger, success=i % 3 != 0)
            clock.advance(5)

        stats = ledger.stats()
        entries = ledger.list_entries()
        assert stats.total_requests == len(entries) == 10
        assert stats.successful_requests + stats.failed_requests == stats.total_requests
        assert stats.total_tokens == sum(e.total_tokens for e in entries)

    def test_requests_per_minute(self, ledger, clock):
        _record(ledger)
        clock.advance(30)
        _record(ledger)
        clock.advance(40)
        # First entry is now 70s old
        assert ledger.stats().requests_per_minute == 1

    def test_today_uses_local_midnight(self, make_clock):
        midnight = datetime(2024, 3, 10, 0, 0, 0).timestamp()
        clock = make_clock(start=midnight - 120)
        ledger = MemoryUsageLedger(clock=clock)
        _record(ledger, prompt=100, completion=0, cost=1.0)  # yesterday
        clock.advance(180)
        _record(ledger, prompt=1, completion=2, cost=0.5)  # today

        stats = ledger.stats()
        assert stats.requests_today == 1
        assert stats.tokens_today == 3
        assert stats.cost_today == pytest.approx(0.5)
        assert stats.total_requests == 2


class TestActivity:
    def test_zero_filled_oldest_first(self, ledger):
        buckets = ledger.activity(60)
        assert len(buckets) == 60
        assert all(b.count == 0 for b in buckets)
        starts = [b.minute_start for b in buckets]
        assert starts == sorted(starts)
        assert starts[-1] - starts[0] == 59 * 60

    def test_counts_per_minute(self, make_clock):
        clock = make_clock(start=1_700_000_040.0)  # minute boundary
        ledger = MemoryUsageLedger(clock=clock)
        _record(ledger)
        _record(ledger)
        clock.advance(60)
        _record(ledger)
        clock.advance(30)

        buckets = ledger.activity(5)
        assert [b.count for b in buckets] == [0, 0, 0, 2, 1]

    def test_ignores_entries_outside_window(self, ledger, clock):
        _record(ledger)
        clock.advance(10 * 60)
        buckets = ledger.activity(5)
        assert sum(b.count for b in buckets) == 0

    def test_labels(self, ledger, clock):
        bucket = ledger.activity(1)[0]
        t = datetime.fromtimestamp(clock.now)
        assert bucket.timestamp == f"{t.hour}:{t.minute:02d}"


class TestConcurrency:
    def test_concurrent_records(self):
        ledger = MemoryUsageLedger(capacity=100)

        def worker():
            for _ in range(50):
                _record(ledger)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ledger.list_entries()) == 100
        assert ledger.stats().total_requests == 100
