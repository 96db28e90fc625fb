"""Optimistic create/delete mutations reconciled against remote confirmation.

Each submission changes the record store immediately, then issues the
remote write in a background task. The outcome either confirms the
optimistic change or rolls it back; there are no retries.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from ..errors import InvalidTransition, RemoteWriteFailure
from ..records import Bookmark, CorrelationKey, DurableId, Identifier, TransientId
from ..remote.base import RemoteStore
from ..store import RecordStore
from .identity import IdentityResolver

logger = logging.getLogger(__name__)

FailureCallback = Callable[[RemoteWriteFailure], None]
ReconcileCallback = Callable[[], Awaitable[Any] | None]


class MutationKind(Enum):
    CREATE = "create"
    DELETE = "delete"


class MutationState(Enum):
    """Lifecycle of a pending mutation. Both outcomes are terminal."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


@dataclass
class PendingMutation:
    """Handle to an in-flight mutation.

    Holds identifiers only; record data lives in the store.
    """

    kind: MutationKind
    target: Identifier
    correlation: CorrelationKey | None = None
    durable_id: DurableId | None = None
    state: MutationState = MutationState.PENDING
    cancelled: bool = False
    error: RemoteWriteFailure | None = None

    def settle(self, state: MutationState) -> None:
        """Move to a terminal state.

        Raises:
            InvalidTransition: If already settled.
        """
        if self.state is not MutationState.PENDING:
            raise InvalidTransition(
                f"{self.kind.value} of {self.target} is already {self.state.value}"
            )
        if state is MutationState.PENDING:
            raise InvalidTransition("Cannot settle a mutation back to pending")
        self.state = state

    @property
    def is_pending(self) -> bool:
        return self.state is MutationState.PENDING


class MutationQueue:
    """Applies user mutations optimistically and reconciles the outcome."""

    def __init__(
        self,
        store: RecordStore,
        resolver: IdentityResolver,
        remote: RemoteStore,
        on_failure: FailureCallback | None = None,
        on_delete_failure: ReconcileCallback | None = None,
    ):
        """Initialize the mutation queue.

        Args:
            store: Record store to mutate optimistically.
            resolver: Identity resolver tracking pending creates.
            remote: Remote store receiving the writes.
            on_failure: Called once per rolled-back mutation.
            on_delete_failure: Called after a failed delete to force a
                full reconciliation fetch. May return an awaitable.
        """
        self._store = store
        self._resolver = resolver
        self._remote = remote
        self._on_failure = on_failure
        self._on_delete_failure = on_delete_failure
        self._mutations: list[PendingMutation] = []
        self._tasks: set[asyncio.Task] = set()

    def set_delete_failure_handler(self, handler: ReconcileCallback | None) -> None:
        """Replace the reconciliation hook (bound per session)."""
        self._on_delete_failure = handler

    # ==================== Submission ====================

    def submit_create(
        self, title: str, url: str, owner_id: str
    ) -> tuple[TransientId, "asyncio.Task[PendingMutation]"]:
        """Insert a transient bookmark and issue the remote create.

        Must be called from within the running event loop.

        Returns:
            Tuple of (transient id, task resolving to the settled mutation).
        """
        transient_id = self._resolver.reserve_transient()
        correlation = self._resolver.next_correlation(owner_id)

        pending = PendingMutation(
            kind=MutationKind.CREATE,
            target=transient_id,
            correlation=correlation,
        )
        self._mutations.append(pending)
        self._resolver.track(correlation, transient_id)

        self._store.upsert(
            Bookmark(
                id=transient_id,
                title=title,
                url=url,
                owner_id=owner_id,
                correlation=correlation,
            )
        )
        logger.debug(f"Optimistic create {transient_id} ({correlation.token})")

        task = self._spawn(self._run_create(pending, title, url, owner_id))
        return transient_id, task

    def submit_delete(self, identifier: Identifier) -> "asyncio.Task[PendingMutation]":
        """Remove a bookmark from the view and issue the remote delete.

        Deleting a transient record withdraws its pending create instead;
        if that create later succeeds, the new row is deleted remotely.

        Returns:
            Task resolving to the settled mutation.
        """
        pending = PendingMutation(kind=MutationKind.DELETE, target=identifier)
        self._mutations.append(pending)

        if isinstance(identifier, TransientId):
            self._withdraw_create(identifier)
            self._store.remove(identifier)
            pending.settle(MutationState.CONFIRMED)
            return self._spawn(self._settled(pending))

        self._resolver.tombstone(identifier)
        self._store.remove(identifier)
        logger.debug(f"Optimistic delete {identifier}")

        return self._spawn(self._run_delete(pending, identifier))

    # ==================== Outcomes ====================

    async def _run_create(
        self, pending: PendingMutation, title: str, url: str, owner_id: str
    ) -> PendingMutation:
        try:
            durable_id = await self._remote.create(
                title, url, owner_id, correlation=pending.correlation
            )
        except Exception as e:
            self._rollback_create(pending, e)
            return pending

        pending.durable_id = durable_id

        if pending.cancelled:
            # The user deleted the optimistic record before confirmation
            self._resolver.release(pending.correlation)
            pending.settle(MutationState.CONFIRMED)
            logger.info(f"Create {pending.target} confirmed as {durable_id} after withdrawal, deleting")
            self.submit_delete(durable_id)
            return pending

        transient_id = pending.target
        record = self._store.get(transient_id)
        if record is not None and self._resolver.is_tombstoned(durable_id):
            # Deleted remotely before the create call returned
            self._store.remove(transient_id)
        elif record is not None:
            self._store.replace(transient_id, record.with_id(durable_id))
        # Otherwise a push event or poll already promoted it

        self._resolver.release(pending.correlation)
        pending.settle(MutationState.CONFIRMED)
        logger.info(f"Create {transient_id} confirmed as {durable_id}")
        return pending

    def _rollback_create(self, pending: PendingMutation, cause: Exception) -> None:
        self._store.remove(pending.target)
        self._resolver.release(pending.correlation)

        pending.error = RemoteWriteFailure("create", pending.target, cause)
        pending.settle(MutationState.ROLLED_BACK)
        logger.warning(f"Create {pending.target} rolled back: {cause}")

        if not pending.cancelled:
            self._notify_failure(pending.error)

    async def _run_delete(self, pending: PendingMutation, identifier: DurableId) -> PendingMutation:
        try:
            await self._remote.delete(identifier)
        except Exception as e:
            self._resolver.revive(identifier)
            pending.error = RemoteWriteFailure("delete", identifier, e)
            pending.settle(MutationState.ROLLED_BACK)
            logger.warning(f"Delete {identifier} failed, reconciling: {e}")

            self._notify_failure(pending.error)
            await self._reconcile()
            return pending

        pending.settle(MutationState.CONFIRMED)
        logger.info(f"Delete {identifier} confirmed")
        return pending

    async def _settled(self, pending: PendingMutation) -> PendingMutation:
        return pending

    def _withdraw_create(self, transient_id: TransientId) -> None:
        for mutation in self._mutations:
            if (
                mutation.kind is MutationKind.CREATE
                and mutation.target == transient_id
                and mutation.is_pending
            ):
                mutation.cancelled = True
                self._resolver.cancel(mutation.correlation)
                return

    def _notify_failure(self, failure: RemoteWriteFailure) -> None:
        if self._on_failure is None:
            return
        try:
            self._on_failure(failure)
        except Exception as e:
            logger.error(f"Failure callback raised: {e}", exc_info=True)

    async def _reconcile(self) -> None:
        if self._on_delete_failure is None:
            return
        try:
            result = self._on_delete_failure()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Reconciliation after failed delete raised: {e}", exc_info=True)

    # ==================== Bookkeeping ====================

    def _spawn(self, coro) -> "asyncio.Task[PendingMutation]":
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._tasks:
            return
        # Nothing in flight; drop settled handles
        self._mutations = [m for m in self._mutations if m.is_pending]

    def pending(self) -> list[PendingMutation]:
        """Get mutations still awaiting the remote store."""
        return [m for m in self._mutations if m.is_pending]

    async def drain(self) -> list[PendingMutation]:
        """Wait for every in-flight mutation to settle."""
        results = []
        while self._tasks:
            results.extend(await asyncio.gather(*list(self._tasks)))
        return results
