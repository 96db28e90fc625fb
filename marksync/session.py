"""Session-scoped ownership of the push subscription and poll timer."""

import logging

from .config import SyncConfig
from .push_channel import MQTTPushChannel, SubscriptionHandle
from .remote.base import RemoteStore
from .store import RecordStore
from .sync.identity import IdentityResolver
from .sync.poller import ReconciliationPoller
from .sync.push import PushIngestor

logger = logging.getLogger(__name__)


class SessionContext:
    """Owns every resource tied to one signed-in owner.

    ``open()`` acquires the push subscription and the poll task;
    ``close()`` releases both. Once closed, nothing from this session
    mutates the store again.
    """

    def __init__(
        self,
        owner_id: str,
        store: RecordStore,
        resolver: IdentityResolver,
        remote: RemoteStore,
        ingestor: PushIngestor,
        sync_config: SyncConfig,
        push_channel: MQTTPushChannel | None = None,
    ):
        self.owner_id = owner_id
        self._ingestor = ingestor
        self._push_channel = push_channel
        self._handle: SubscriptionHandle | None = None
        self._open = False
        self.poller = ReconciliationPoller(
            store=store,
            resolver=resolver,
            remote=remote,
            owner_id=owner_id,
            interval_seconds=sync_config.poll_interval_seconds,
            grace_seconds=sync_config.effective_grace_seconds,
        )

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        """Subscribe to pushes, load the initial state and start polling."""
        if self._open:
            return
        self._open = True

        # Subscribe before the initial fetch so no change falls in between
        self._ingestor.activate()
        if self._push_channel is not None:
            topic = self._push_channel.topic_for(self.owner_id)
            self._handle = self._push_channel.subscribe(topic, self._ingestor.on_message)

        result = await self.poller.reconcile_now()
        if not result.ok:
            logger.warning(f"Initial fetch for {self.owner_id} failed, poller will retry: {result.error}")

        if self._open:
            await self.poller.start()
        logger.info(f"Session opened for {self.owner_id}")

    async def close(self) -> None:
        """Unsubscribe and stop polling. Safe to call more than once."""
        if not self._open:
            return
        self._open = False

        if self._push_channel is not None and self._handle is not None:
            self._push_channel.unsubscribe(self._handle)
        self._handle = None
        self._ingestor.deactivate()

        await self.poller.stop()
        logger.info(f"Session closed for {self.owner_id}")
