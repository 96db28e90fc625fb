"""The bookmark sync engine: single owner of the reconciled view."""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable

from .auth import AuthSession, SessionChange
from .config import Config
from .errors import NoActiveSession, RemoteWriteFailure
from .push_channel import MQTTPushChannel
from .records import Identifier, TransientId
from .remote.base import RemoteStore
from .remote.client import RemoteStoreClient
from .session import SessionContext
from .store import RecordStore, Snapshot
from .sync.identity import IdentityResolver
from .sync.mutations import MutationQueue, PendingMutation
from .sync.push import PushIngestor

logger = logging.getLogger(__name__)

NotificationCallback = Callable[[RemoteWriteFailure], None]


class BookmarkSync:
    """Merges optimistic mutations, push events and polls into one view.

    All three sources mutate the store from the same event loop, so no
    locking is needed around it. Login resets the view and opens a new
    session; logout closes the session and empties the view.
    """

    def __init__(
        self,
        config: Config,
        remote: RemoteStore,
        push_channel: MQTTPushChannel | None = None,
        auth: AuthSession | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_notification: NotificationCallback | None = None,
    ):
        """Initialize the engine.

        Args:
            config: Application configuration.
            remote: Remote store collaborator.
            push_channel: Optional push channel; without one the engine
                relies on polling alone.
            auth: Session collaborator. A fresh signed-out one by default.
            clock: Monotonic time source for record ages.
            on_notification: Called once for every rolled-back mutation.
        """
        self.config = config
        self.auth = auth or AuthSession()
        self.store = RecordStore(clock=clock)
        self.resolver = IdentityResolver()
        self.ingestor = PushIngestor(self.store, self.resolver)
        self.mutations = MutationQueue(
            self.store,
            self.resolver,
            remote,
            on_failure=self._handle_failure,
        )
        self.notifications: deque[RemoteWriteFailure] = deque(maxlen=20)

        self._remote = remote
        self._push_channel = push_channel
        self._on_notification = on_notification
        self._session: SessionContext | None = None
        self._session_lock = asyncio.Lock()
        self._auth_unsubscribe: Callable[[], None] | None = None
        self._pending_changes: set[asyncio.Task] = set()

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Follow auth changes and open a session if already signed in."""
        if self._auth_unsubscribe is None:
            self._auth_unsubscribe = self.auth.subscribe(self._on_session_change)

        owner_id = self.auth.current_owner
        if owner_id:
            await self.handle_session_change(SessionChange(owner_id, self.auth.access_token))

    async def stop(self) -> None:
        """Close the session and stop following auth changes."""
        if self._auth_unsubscribe is not None:
            self._auth_unsubscribe()
            self._auth_unsubscribe = None

        for task in list(self._pending_changes):
            task.cancel()

        async with self._session_lock:
            await self._close_session()

    @property
    def session(self) -> SessionContext | None:
        return self._session

    def _on_session_change(self, change: SessionChange) -> None:
        task = asyncio.create_task(self.handle_session_change(change))
        self._pending_changes.add(task)
        task.add_done_callback(self._pending_changes.discard)

    async def handle_session_change(self, change: SessionChange) -> None:
        """Reset the view and swap sessions for a login or logout."""
        async with self._session_lock:
            await self._close_session()

            self.store.clear()
            self.resolver.reset()

            if change.owner_id is None:
                logger.info("No active session, sync suspended")
                return

            if isinstance(self._remote, RemoteStoreClient):
                self._remote.set_access_token(change.access_token)

            session = SessionContext(
                owner_id=change.owner_id,
                store=self.store,
                resolver=self.resolver,
                remote=self._remote,
                ingestor=self.ingestor,
                sync_config=self.config.sync,
                push_channel=self._push_channel,
            )
            self._session = session
            self.mutations.set_delete_failure_handler(session.poller.reconcile_now)
            await session.open()

    async def _close_session(self) -> None:
        if self._session is None:
            return
        session, self._session = self._session, None
        self.mutations.set_delete_failure_handler(None)
        await session.close()

    # ==================== User-facing operations ====================

    def snapshot(self) -> Snapshot:
        """Current bookmark list, newest first."""
        return self.store.snapshot()

    def subscribe(self, observer: Callable[[Snapshot], None]) -> Callable[[], None]:
        """Observe changes to the bookmark list."""
        return self.store.subscribe(observer)

    def add_bookmark(
        self, title: str, url: str
    ) -> tuple[TransientId, "asyncio.Task[PendingMutation]"]:
        """Optimistically add a bookmark for the signed-in owner.

        Raises:
            ValueError: If title or url is empty.
            NoActiveSession: If nobody is signed in.
        """
        title = title.strip()
        url = url.strip()
        if not title or not url:
            raise ValueError("Both title and url are required")

        owner_id = self._require_owner()
        return self.mutations.submit_create(title, url, owner_id)

    def delete_bookmark(self, identifier: Identifier) -> "asyncio.Task[PendingMutation]":
        """Optimistically delete a bookmark.

        Raises:
            NoActiveSession: If nobody is signed in.
        """
        self._require_owner()
        return self.mutations.submit_delete(identifier)

    def _require_owner(self) -> str:
        if self._session is None:
            raise NoActiveSession("Sign in before changing bookmarks")
        return self._session.owner_id

    def _handle_failure(self, failure: RemoteWriteFailure) -> None:
        self.notifications.append(failure)
        logger.warning(f"Change not saved: {failure}")
        if self._on_notification is not None:
            self._on_notification(failure)

    def get_status(self) -> dict[str, Any]:
        """Get current engine status."""
        return {
            "owner_id": self._session.owner_id if self._session else None,
            "records": len(self.store),
            "pending_mutations": len(self.mutations.pending()),
            "push_connected": bool(self._push_channel and self._push_channel.is_connected),
            "push_applied": self.ingestor.applied_count,
            "push_malformed": self.ingestor.malformed_count,
            "identity_conflicts": self.resolver.conflict_count,
            "poller": self._session.poller.get_status() if self._session else None,
        }


async def run_sync(
    config: Config,
    on_change: Callable[[Snapshot], None] | None = None,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run the sync engine until interrupted.

    Args:
        config: Configuration for the engine.
        on_change: Optional observer for bookmark list changes.
        stop_event: Event to signal the engine should stop.
    """
    remote = RemoteStoreClient(config.remote, access_token=config.auth.access_token)

    push_channel = None
    if config.mqtt.enabled:
        push_channel = MQTTPushChannel(config.mqtt)
        if not await push_channel.connect():
            logger.warning("Push channel unavailable, relying on polling")

    auth = AuthSession(config.auth.owner_id, config.auth.access_token)
    engine = BookmarkSync(config, remote, push_channel=push_channel, auth=auth)
    if on_change is not None:
        engine.subscribe(on_change)

    if not config.auth.owner_id:
        logger.warning("No owner configured, waiting for sign-in")

    stop = stop_event or asyncio.Event()
    try:
        await engine.start()
        await stop.wait()
    finally:
        await engine.stop()
        if push_channel is not None:
            await push_channel.disconnect()
