"""Tests for ExpiryScheduler."""
import asyncio

import pytest

from navigator_keyvault.vault import (
    CredentialStatus,
    ExpiryPolicyEngine,
    ExpiryScheduler,
    MemoryCredentialStore,
)

from .conftest import NOW


class GatedStore(MemoryCredentialStore):
    """Store whose enumeration waits until the test opens the gate."""

    def __init__(self, records=None):
        super().__init__(records)
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()
        self.scans = 0

    async def list_active(self):
        self.scans += 1
        self.entered.set()
        await self.gate.wait()
        return await super().list_active()


class BrokenOnceStore(MemoryCredentialStore):
    def __init__(self, records=None):
        super().__init__(records)
        self.failures = 1

    async def list_active(self):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("database is down")
        return await super().list_active()


class TestTrigger:
    """Tests for manual runs."""

    @pytest.mark.asyncio
    async def test_trigger_runs_scan(self, make_record):
        """Test a trigger runs the engine and records stats."""
        record = make_record(days_old=90)
        store = MemoryCredentialStore([record])
        scheduler = ExpiryScheduler(ExpiryPolicyEngine(store), interval=3600)

        stats = await scheduler.trigger(now=NOW)

        assert stats["expired"] == 1
        assert scheduler.last_stats == stats
        assert scheduler.last_run_at is not None
        assert (await store.get(record.id)).status is CredentialStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_single_flight(self, make_record):
        """Test a trigger during an in-flight scan is skipped."""
        store = GatedStore([make_record(days_old=90)])
        scheduler = ExpiryScheduler(ExpiryPolicyEngine(store), interval=3600)

        first = asyncio.create_task(scheduler.trigger(now=NOW))
        await store.entered.wait()
        assert scheduler.in_flight is True

        assert await scheduler.trigger(now=NOW) is None
        assert store.scans == 1

        store.gate.set()
        stats = await first
        assert stats["expired"] == 1
        assert scheduler.in_flight is False

    @pytest.mark.asyncio
    async def test_failed_run_is_retried_next_time(self, make_record):
        """Test a failed scan returns None and the next one proceeds."""
        store = BrokenOnceStore([make_record(days_old=100)])
        scheduler = ExpiryScheduler(ExpiryPolicyEngine(store), interval=3600)

        assert await scheduler.trigger(now=NOW) is None
        assert scheduler.last_stats is None

        stats = await scheduler.trigger(now=NOW)
        assert stats["expired"] == 1


class TestLifecycle:
    """Tests for the background loop."""

    @pytest.mark.asyncio
    async def test_start_runs_immediately(self, make_record):
        """Test run_on_start performs a scan right after start."""
        store = GatedStore([make_record(days_old=365)])
        store.gate.set()
        scheduler = ExpiryScheduler(ExpiryPolicyEngine(store), interval=3600)

        await scheduler.start()
        assert scheduler.running is True
        for _ in range(100):
            if scheduler.last_stats is not None:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert scheduler.running is False
        assert store.scans == 1
        assert scheduler.last_stats["expired"] == 1

    @pytest.mark.asyncio
    async def test_start_without_initial_run(self, make_record):
        """Test run_on_start=False waits a full interval first."""
        store = GatedStore([make_record(days_old=365)])
        scheduler = ExpiryScheduler(
            ExpiryPolicyEngine(store), interval=3600, run_on_start=False,
        )
        await scheduler.start()
        await asyncio.sleep(0.01)
        await scheduler.stop()
        assert store.scans == 0

    @pytest.mark.asyncio
    async def test_repeats_on_interval(self, make_record):
        """Test the loop scans again after each interval."""
        store = GatedStore()
        store.gate.set()
        scheduler = ExpiryScheduler(ExpiryPolicyEngine(store), interval=0.01)
        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()
        assert store.scans >= 2

    @pytest.mark.asyncio
    async def test_stop_defers_remaining_records(self, make_record):
        """Test stopping mid-scan leaves unprocessed records untouched."""
        records = [make_record(days_old=100) for _ in range(3)]
        store = GatedStore(records)
        scheduler = ExpiryScheduler(ExpiryPolicyEngine(store), interval=3600)

        await scheduler.start()
        await store.entered.wait()
        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0)
        store.gate.set()
        await stopping

        statuses = [(await store.get(r.id)).status for r in records]
        assert statuses == [CredentialStatus.ACTIVE] * 3
        assert scheduler.last_stats["deferred"] == 3

    @pytest.mark.asyncio
    async def test_double_start_is_noop(self, store):
        scheduler = ExpiryScheduler(ExpiryPolicyEngine(store), interval=3600)
        await scheduler.start()
        task = scheduler._task
        await scheduler.start()
        assert scheduler._task is task
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self, store):
        scheduler = ExpiryScheduler(ExpiryPolicyEngine(store))
        await scheduler.stop()
        assert scheduler.running is False

    def test_invalid_interval(self, store):
        with pytest.raises(ValueError):
            ExpiryScheduler(ExpiryPolicyEngine(store), interval=0)
