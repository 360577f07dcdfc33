"""
Expiry Policy Engine — Marks credentials whose rotation interval has lapsed.

A credential becomes due when it is ``active`` and the whole days elapsed
since ``last_rotated_at`` reach ``rotation_interval_days``. Due credentials
are moved to ``expired`` through the store's conditional update. Inactive
credentials are never touched, and nothing here reads or writes ciphertext.

Each scan is derived fresh from timestamps, so runs are idempotent and a
record that failed in one run is simply re-evaluated in the next.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional
from datetime import datetime

from .models import CredentialRecord, CredentialStatus, ensure_utc, utcnow
from .store import CredentialStore

logger = logging.getLogger("navigator.keyvault")

ExpiryListener = Callable[[CredentialRecord], Awaitable[None]]


def elapsed_days(since: datetime, now: datetime) -> int:
    """Whole days between two timestamps, truncated (never fractional).

    Naive timestamps are read as UTC.
    """
    return (ensure_utc(now) - ensure_utc(since)).days


class ExpiryPolicyEngine:
    """Evaluates rotation policy over every active credential.

    Records are independent, so they are evaluated concurrently, bounded by
    ``max_concurrency``. Listeners are awaited once per real transition.
    """

    def __init__(
        self,
        store: CredentialStore,
        max_concurrency: int = 10,
        listeners: Optional[list[ExpiryListener]] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._store = store
        self._max_concurrency = max_concurrency
        self._listeners: list[ExpiryListener] = list(listeners or [])

    def add_listener(self, listener: ExpiryListener) -> None:
        """Register a coroutine called with each newly expired record."""
        self._listeners.append(listener)

    @staticmethod
    def is_due(record: CredentialRecord, now: datetime) -> bool:
        """Return True if an active record has crossed its rotation threshold."""
        if record.status is not CredentialStatus.ACTIVE:
            return False
        return elapsed_days(record.last_rotated_at, now) >= record.rotation_interval_days

    async def run_once(
        self,
        now: Optional[datetime] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> dict:
        """Scan active credentials and expire the ones that are due.

        Args:
            now: Evaluation time, defaults to the current UTC time. A naive
                value is read as UTC.
            should_stop: Polled before each record; once it returns True the
                remaining records are left for the next run.

        Returns:
            Stats dict with keys: total, expired, skipped, errors, deferred.

        Raises:
            Exception: Whatever the store raises when it cannot enumerate
                credentials at all. Per-record failures are not raised.
        """
        now = ensure_utc(now) if now is not None else utcnow()
        records = await self._store.list_active()
        stats = {
            "total": len(records),
            "expired": 0,
            "skipped": 0,
            "errors": 0,
            "deferred": 0,
        }
        logger.info(
            "Starting expiry scan over %d active credential(s)", len(records),
        )

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _evaluate(record: CredentialRecord) -> None:
            async with semaphore:
                if should_stop is not None and should_stop():
                    stats["deferred"] += 1
                    return
                try:
                    if not self.is_due(record, now):
                        stats["skipped"] += 1
                        return
                    changed = await self._store.mark_expired(record.id, now)
                except Exception as err:
                    logger.error(
                        "Error expiring credential id=%s: %s", record.id, err,
                    )
                    stats["errors"] += 1
                    return
                if not changed:
                    # status moved on since enumeration
                    stats["skipped"] += 1
                    return
                stats["expired"] += 1
                logger.info(
                    "Credential expired: id=%s owner=%s age=%dd interval=%dd",
                    record.id, record.owner_id,
                    elapsed_days(record.last_rotated_at, now),
                    record.rotation_interval_days,
                )
                await self._notify(record.with_status(CredentialStatus.EXPIRED, now))

        await asyncio.gather(*(_evaluate(r) for r in records))

        logger.info("Expiry scan complete: %s", stats)
        return stats

    async def _notify(self, record: CredentialRecord) -> None:
        for listener in self._listeners:
            try:
                await listener(record)
            except Exception as err:
                logger.error(
                    "Expiry listener failed for credential id=%s: %s",
                    record.id, err,
                )
