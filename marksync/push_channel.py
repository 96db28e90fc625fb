"""MQTT push channel delivering bookmark change events."""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable

import paho.mqtt.client as mqtt

from .config import MQTTConfig

logger = logging.getLogger(__name__)

PayloadCallback = Callable[[str], None]


@dataclass(frozen=True)
class SubscriptionHandle:
    """Handle returned by ``subscribe``; pass it to ``unsubscribe``."""

    id: int
    topic: str


class MQTTPushChannel:
    """Async-facing MQTT subscriber.

    Paho runs its network loop on a background thread; every delivery is
    marshalled onto the asyncio loop, so callbacks run on the same
    execution context as every other store mutation.
    """

    def __init__(self, config: MQTTConfig):
        self.config = config

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._handle_connect
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect

        self._connected = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handle_ids = itertools.count(1)
        self._subscriptions: dict[SubscriptionHandle, PayloadCallback] = {}

    def topic_for(self, owner_id: str) -> str:
        """Topic carrying change events for an owner's bookmarks."""
        return f"{self.config.topic_prefix}/{owner_id}"

    # ==================== Paho callbacks (network thread) ====================

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Mark the channel online and restore subscriptions."""
        if reason_code == 0:
            self._connected = True
            logger.info(f"Push channel online ({self.config.broker}:{self.config.port})")

            # Re-establish subscriptions after a reconnect
            for topic in {handle.topic for handle in list(self._subscriptions)}:
                client.subscribe(topic)
                logger.debug(f"Restored subscription to {topic}")
        else:
            logger.error(f"Broker refused push channel connection: {reason_code}")

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Hand a raw change event to the event loop."""
        try:
            payload = msg.payload.decode("utf-8")
        except UnicodeDecodeError:
            # Left for the ingestor to reject as malformed
            payload = repr(msg.payload)

        logger.debug(f"Push event on {msg.topic} ({len(msg.payload)} bytes)")

        if self._loop and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self.dispatch, msg.topic, payload)

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Mark the channel offline; paho reconnects on its own."""
        self._connected = False
        logger.warning(f"Push channel offline ({reason_code}), polling continues")

    # ==================== Event loop side ====================

    def dispatch(self, topic: str, payload: str) -> None:
        """Deliver a payload to every live subscription matching ``topic``.

        Runs on the event loop. Subscriptions removed before this call
        receive nothing.
        """
        for handle, callback in list(self._subscriptions.items()):
            if handle not in self._subscriptions:
                continue
            if not mqtt.topic_matches_sub(handle.topic, topic):
                continue
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Push callback for {handle.topic} failed: {e}", exc_info=True)

    async def connect(self) -> bool:
        """Open the broker connection and start paho's network thread.

        Returns:
            True once the broker has accepted the connection, False on
            error or after ``connect_timeout_seconds``.
        """
        self._loop = asyncio.get_running_loop()

        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        try:
            self._client.connect(self.config.broker, self.config.port, keepalive=self.config.keepalive)
            self._client.loop_start()

            polls = max(1, int(self.config.connect_timeout_seconds / 0.1))
            for _ in range(polls):
                if self._connected:
                    return True
                await asyncio.sleep(0.1)

            logger.error(f"No answer from broker after {self.config.connect_timeout_seconds}s")
            return False

        except Exception as e:
            logger.error(f"Push channel connect failed: {e}")
            return False

    async def disconnect(self) -> None:
        """Disconnect from the MQTT broker and drop all subscriptions."""
        self._subscriptions.clear()
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False

    def subscribe(self, topic: str, callback: PayloadCallback) -> SubscriptionHandle:
        """Subscribe ``callback`` to payloads published on ``topic``.

        Returns:
            Handle identifying this subscription.
        """
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        handle = SubscriptionHandle(id=next(self._handle_ids), topic=topic)
        already_subscribed = any(h.topic == topic for h in self._subscriptions)
        self._subscriptions[handle] = callback

        if self._connected and not already_subscribed:
            self._client.subscribe(topic)
            logger.info(f"Subscribed to topic: {topic}")

        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Remove a subscription. Unknown handles are ignored."""
        if self._subscriptions.pop(handle, None) is None:
            return

        still_used = any(h.topic == handle.topic for h in self._subscriptions)
        if self._connected and not still_used:
            self._client.unsubscribe(handle.topic)
            logger.info(f"Unsubscribed from topic: {handle.topic}")

    @property
    def is_connected(self) -> bool:
        """Whether the broker connection is currently up."""
        return self._connected

    async def check_connection(self) -> bool:
        """Probe the broker with a throwaway client (status command)."""
        if self._connected:
            return True

        probe = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        try:
            probe.connect(self.config.broker, self.config.port, keepalive=5)
        except Exception as e:
            logger.debug(f"Broker probe failed: {e}")
            return False
        probe.disconnect()
        return True
