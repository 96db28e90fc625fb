"""Periodic full-state reconciliation.

The poller is the correctness fallback for the push feed: every interval
it fetches the authoritative list and heals any divergence in the local
view. A poll that finds nothing to change produces no store notification.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..errors import PollFetchError, RemoteStoreError
from ..records import Bookmark, DurableId
from ..remote.base import RemoteStore
from ..store import RecordStore
from .identity import ActionKind, IdentityResolver

logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    """Outcome of one reconciliation pass."""

    inserted: int = 0
    promoted: int = 0
    updated: int = 0
    removed: int = 0
    kept_in_grace: int = 0
    error: str | None = None
    timestamp: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def changed(self) -> bool:
        return bool(self.inserted or self.promoted or self.updated or self.removed)


class ReconciliationPoller:
    """Fetches full remote state on an interval and diffs it into the store."""

    def __init__(
        self,
        store: RecordStore,
        resolver: IdentityResolver,
        remote: RemoteStore,
        owner_id: str,
        interval_seconds: float = 2.0,
        grace_seconds: float | None = None,
    ):
        """Initialize the poller.

        Args:
            store: Record store to reconcile.
            resolver: Identity resolver for remote-only records.
            remote: Remote store to fetch from.
            owner_id: Session owner whose bookmarks are fetched.
            interval_seconds: Seconds between polls.
            grace_seconds: Minimum age before a durable record missing from
                a poll is removed. Defaults to one poll interval.
        """
        self._store = store
        self._resolver = resolver
        self._remote = remote
        self.owner_id = owner_id
        self.interval = interval_seconds
        self.grace = interval_seconds if grace_seconds is None else grace_seconds
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._lock = asyncio.Lock()
        self._last_poll: datetime | None = None
        self.consecutive_failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_poll(self) -> datetime | None:
        """Timestamp of the last successful poll."""
        return self._last_poll

    async def start(self) -> None:
        """Start polling in a background task."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Reconciliation poller started (interval={self.interval}s, grace={self.grace}s)")

    async def stop(self) -> None:
        """Stop polling. No mutation is applied after this returns."""
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Reconciliation poller stopped")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Poll tick failed: {e}", exc_info=True)

    async def reconcile_now(self) -> PollResult:
        """Run a poll immediately, outside the interval schedule."""
        return await self.tick()

    async def tick(self) -> PollResult:
        """Fetch the full remote state and apply the difference.

        A failed fetch skips this tick; the next scheduled one retries.
        """
        async with self._lock:
            try:
                remote_records = await self._fetch()
            except PollFetchError as e:
                self.consecutive_failures += 1
                logger.warning(
                    f"Poll fetch failed ({self.consecutive_failures} consecutive): {e}"
                )
                return PollResult(error=str(e))

            if self._stop_event.is_set():
                return PollResult(error="poller stopped")

            self.consecutive_failures = 0
            result = self.diff_and_apply(remote_records)
            self._last_poll = result.timestamp

            if result.changed:
                logger.info(
                    f"Poll applied: inserted={result.inserted}, promoted={result.promoted}, "
                    f"updated={result.updated}, removed={result.removed}"
                )
            return result

    async def _fetch(self) -> list[Bookmark]:
        try:
            return await self._remote.fetch_all(self.owner_id)
        except RemoteStoreError as e:
            raise PollFetchError(str(e)) from e

    def diff_and_apply(self, remote_records: list[Bookmark]) -> PollResult:
        """Reconcile the store against an authoritative newest-first list.

        - Remote-only records are resolved (insert, promote or ignore),
          oldest first so the newest ends up at the head.
        - Records on both sides with different fields are updated in place.
        - Local durable records missing remotely are removed once older
          than the grace window. Transient records are never removed here.
        """
        result = PollResult(timestamp=datetime.now())
        remote_ids = {record.id for record in remote_records}

        with self._store.batch():
            for record in reversed(remote_records):
                if self._resolver.is_tombstoned(record.id):
                    continue

                current = self._store.get(record.id)
                if current is not None:
                    if current != record:
                        self._store.upsert(record)
                        result.updated += 1
                    continue

                action = self._resolver.resolve_duplicate(record, self._store.snapshot())
                if action.kind is ActionKind.INSERT:
                    self._store.upsert(record)
                    result.inserted += 1
                elif action.kind is ActionKind.PROMOTE:
                    self._store.replace(action.transient_id, record)
                    result.promoted += 1

            for record in self._store.snapshot():
                if not isinstance(record.id, DurableId) or record.id in remote_ids:
                    continue
                age = self._store.age(record.id)
                if age is not None and age < self.grace:
                    result.kept_in_grace += 1
                    continue
                self._store.remove(record.id)
                result.removed += 1

        return result

    def get_status(self) -> dict[str, Any]:
        """Get current poller status."""
        return {
            "owner_id": self.owner_id,
            "running": self.is_running,
            "interval_seconds": self.interval,
            "grace_seconds": self.grace,
            "last_poll": self._last_poll.isoformat() if self._last_poll else None,
            "consecutive_failures": self.consecutive_failures,
        }
