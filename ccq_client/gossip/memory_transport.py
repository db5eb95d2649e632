"""
In-process transport implementation.

This module provides a pub/sub bus that lives entirely inside the current
process. It is used for tests and local simulations: a fake responder can
be attached with add_publish_hook() and answer requests by calling inject().
"""
import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence

from ..exceptions import PublishError, TransportSetupError
from .transport import InboundMessage, QueueSubscription, Subscription, Transport

logger = logging.getLogger(__name__)

PublishHook = Callable[[str, bytes], None]


class InMemoryTransport(Transport):
    """
    A simple in-process implementation of the gossip transport.

    Published messages are delivered to every subscription on the same topic,
    including the publisher's own, tagged with this transport's peer ID.
    """

    def __init__(self, peer_id: str = "local"):
        """Initialize the in-memory transport."""
        self.peer_id = peer_id
        self.network_id: Optional[str] = None
        self.initialized = False
        self.published: List[InboundMessage] = []
        self._subscriptions: Dict[str, List[QueueSubscription]] = {}
        self._peers: Dict[str, List[str]] = {}
        self._hooks: List[PublishHook] = []
        self._lock = threading.RLock()

    def is_available(self) -> bool:
        """
        Check if in-memory transport is available.

        Returns:
            Always True since it has no dependencies
        """
        return True

    def initialize(
        self,
        network_id: str,
        bootstrap_peers: Sequence[str] = (),
        port: Optional[int] = None
    ) -> None:
        """
        Initialize the in-memory transport.

        Args:
            network_id: Network identifier (only recorded)
            bootstrap_peers: Ignored
            port: Ignored
        """
        if not network_id:
            raise TransportSetupError("network_id must not be empty")
        self.network_id = network_id
        self.initialized = True
        logger.debug(f"Initialized in-memory transport for {network_id} as {self.peer_id}")

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise TransportSetupError("In-memory transport not initialized")

    def add_peer(self, topic: str, peer_id: str) -> None:
        """Register a simulated peer on a topic."""
        with self._lock:
            self._peers.setdefault(topic, []).append(peer_id)

    def add_publish_hook(self, hook: PublishHook) -> None:
        """Call hook(topic, data) after every local publish."""
        with self._lock:
            self._hooks.append(hook)

    def list_peers(self, topic: str) -> List[str]:
        with self._lock:
            return list(self._peers.get(topic, []))

    def inject(self, topic: str, data: bytes, sender: str) -> None:
        """
        Deliver a message as if it came from another peer.

        Args:
            topic: Topic to deliver on
            data: Raw payload
            sender: Peer ID the message appears to come from
        """
        message = InboundMessage(data=bytes(data), sender=sender, topic=topic)
        with self._lock:
            subscriptions = list(self._subscriptions.get(topic, []))
        for sub in subscriptions:
            sub.deliver(message)

    def publish(self, topic: str, data: bytes) -> None:
        self._require_initialized()
        message = InboundMessage(data=bytes(data), sender=self.peer_id, topic=topic)
        with self._lock:
            self.published.append(message)
            hooks = list(self._hooks)
        logger.debug(f"Published {len(data)} bytes on {topic}")
        self.inject(topic, data, self.peer_id)
        for hook in hooks:
            try:
                hook(topic, bytes(data))
            except Exception as e:
                raise PublishError(f"Publish hook failed on {topic}: {e}") from e

    def subscribe(self, topic: str) -> Subscription:
        self._require_initialized()
        sub = QueueSubscription(topic)
        with self._lock:
            live = [s for s in self._subscriptions.get(topic, []) if not s.closed]
            live.append(sub)
            self._subscriptions[topic] = live
        logger.debug(f"Subscribed to {topic}")
        return sub

    def fail_subscriptions(self, topic: str, error: BaseException) -> None:
        """Break every subscription on a topic, as a dropped connection would."""
        with self._lock:
            subscriptions = self._subscriptions.pop(topic, [])
        for sub in subscriptions:
            sub.fail(error)

    def close(self) -> None:
        """Cancel every open subscription."""
        with self._lock:
            subscriptions = [s for subs in self._subscriptions.values() for s in subs]
            self._subscriptions.clear()
        for sub in subscriptions:
            sub.cancel()
        self.initialized = False
