"""
Expiry Scheduler — Runs the expiry policy engine on a fixed interval.

A single asyncio task sleeps between scans. Scans never overlap: a trigger
that arrives while a scan is in flight is skipped, not queued. Stopping the
scheduler lets the record being updated finish and leaves the rest of the
scan for the next start.
"""
import asyncio
import contextlib
import logging
from typing import Optional
from datetime import datetime

from .expiry import ExpiryPolicyEngine
from .models import utcnow

logger = logging.getLogger("navigator.keyvault")


class ExpiryScheduler:
    """Fixed-interval, single-flight runner for ExpiryPolicyEngine."""

    def __init__(
        self,
        engine: ExpiryPolicyEngine,
        interval: float = 86400,
        run_on_start: bool = True,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._engine = engine
        self._interval = interval
        self._run_on_start = run_on_start
        self._run_lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.last_run_at: Optional[datetime] = None
        self.last_stats: Optional[dict] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> bool:
        return self._run_lock.locked()

    async def start(self) -> None:
        """Start the background loop. No-op if it is already running."""
        if self.running:
            logger.warning("Expiry scheduler already running")
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name="keyvault-expiry")
        logger.info("Expiry scheduler started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        """Stop the loop, waiting for the record in progress to finish."""
        if self._task is None:
            return
        self._stopping.set()
        try:
            await self._task
        finally:
            self._task = None
            self._stopping.clear()
        logger.info("Expiry scheduler stopped")

    async def trigger(self, now: Optional[datetime] = None) -> Optional[dict]:
        """Run one scan now unless another is still in flight.

        Returns:
            The scan stats, or None if the run was skipped or failed.
        """
        if self._run_lock.locked():
            logger.warning("Expiry scan still in progress, skipping this run")
            return None
        async with self._run_lock:
            self.last_run_at = utcnow()
            try:
                stats = await self._engine.run_once(
                    now=now, should_stop=self._stopping.is_set,
                )
            except Exception as err:
                logger.error(
                    "Expiry scan failed, will retry on next run: %s", err,
                )
                return None
            self.last_stats = stats
            return stats

    async def _loop(self) -> None:
        if not self._run_on_start:
            await self._sleep()
        while not self._stopping.is_set():
            await self.trigger()
            await self._sleep()

    async def _sleep(self) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
