"""
Transport layer for the gossip network.

This module provides an abstraction over the publish/subscribe network the
query protocol runs on. The correlator only needs publish, subscribe and a
blocking receive, so any pub/sub backend (an in-process bus for tests, a gRPC
relay in front of a libp2p host, ...) can be plugged in.
"""
import logging
import os
import queue
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..exceptions import StreamError, TransportSetupError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InboundMessage:
    """
    A message received on a subscribed topic.

    Attributes:
        data: Raw payload as published
        sender: Peer ID of the author
        topic: Topic the message arrived on
    """
    data: bytes
    sender: str
    topic: str = ""


class Subscription(ABC):
    """A live subscription to one topic."""

    @abstractmethod
    def next(self, timeout: Optional[float] = None) -> Optional[InboundMessage]:
        """
        Block until the next message arrives.

        Args:
            timeout: Seconds to wait; None blocks indefinitely

        Returns:
            The next message, or None if the timeout elapsed first

        Raises:
            StreamError: If the subscription was cancelled or broke
        """
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Stop receiving. Pending and future next() calls raise StreamError."""
        pass


# Queue items that are not messages
_CLOSED = object()


class QueueSubscription(Subscription):
    """
    Subscription backed by a thread-safe queue.

    Producers call deliver() / fail(); the consumer calls next().
    """

    def __init__(self, topic: str, maxsize: int = 0):
        self.topic = topic
        self._queue: "queue.Queue" = queue.Queue(maxsize=maxsize)
        self._error: Optional[BaseException] = None
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def deliver(self, message: InboundMessage) -> None:
        if not self._closed.is_set():
            self._queue.put(message)

    def fail(self, error: BaseException) -> None:
        """Break the subscription; the consumer sees StreamError."""
        if self._closed.is_set():
            return
        self._error = error
        self._closed.set()
        self._queue.put(_CLOSED)

    def cancel(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._queue.put(_CLOSED)

    def next(self, timeout: Optional[float] = None) -> Optional[InboundMessage]:
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            # Keep the marker in place so later calls fail the same way
            self._queue.put(_CLOSED)
            if self._error is not None:
                raise StreamError(f"subscription to {self.topic} failed: {self._error}") from self._error
            raise StreamError(f"subscription to {self.topic} was cancelled")
        return item


class Transport(ABC):
    """
    Abstract base class for gossip transport implementations.

    This class defines the interface that all transport implementations must follow,
    providing a unified API regardless of the underlying network stack.
    """

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if this transport is available for use.

        Returns:
            True if transport is available, False otherwise
        """
        pass

    @abstractmethod
    def initialize(
        self,
        network_id: str,
        bootstrap_peers: Sequence[str] = (),
        port: Optional[int] = None
    ) -> None:
        """
        Join the gossip network.

        Args:
            network_id: P2P network identifier (e.g. "/wormhole/mainnet/2/ccq")
            bootstrap_peers: Multiaddrs of bootstrap peers
            port: Listen port, where the backend has one

        Raises:
            TransportSetupError: If the network cannot be joined
        """
        pass

    @abstractmethod
    def publish(self, topic: str, data: bytes) -> None:
        """
        Publish a message on a topic.

        Raises:
            PublishError: If the message could not be handed to the network
        """
        pass

    @abstractmethod
    def subscribe(self, topic: str) -> Subscription:
        """Subscribe to a topic."""
        pass

    @abstractmethod
    def list_peers(self, topic: str) -> List[str]:
        """Peers currently known on a topic."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close any open connections or resources."""
        pass

    def wait_for_peers(
        self,
        topic: str,
        min_peers: int = 1,
        timeout: Optional[float] = None,
        poll_interval: float = 0.1,
        cancel_event: Optional[threading.Event] = None
    ) -> List[str]:
        """
        Block until at least min_peers are known on the topic.

        Returns:
            The peer list once the threshold is reached

        Raises:
            TransportSetupError: If the timeout elapses first or the wait is cancelled
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        logger.info(f"Waiting for peers on {topic}")
        while True:
            peers = self.list_peers(topic)
            if len(peers) >= min_peers:
                logger.info(f"Got peers: {len(peers)}")
                return peers
            if cancel_event is not None and cancel_event.is_set():
                raise TransportSetupError("Cancelled while waiting for peers")
            if deadline is not None and time.monotonic() >= deadline:
                raise TransportSetupError(
                    f"Only {len(peers)} of {min_peers} peers found on {topic} after {timeout}s"
                )
            time.sleep(poll_interval)

    def __enter__(self):
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager, closing the transport."""
        self.close()


def request_topic(network_id: str) -> str:
    """Topic requests are published on."""
    return f"{network_id}/ccq_req"


def response_topic(network_id: str) -> str:
    """Topic responders publish on."""
    return f"{network_id}/ccq_resp"


# Transport provider functions
def get_relay_transport(relay_url: Optional[str] = None) -> Optional[Transport]:
    """
    Get a gRPC relay transport if its dependencies and a relay URL are available.

    Args:
        relay_url: Relay URL; defaults to the CCQ_RELAY_URL environment variable

    Returns:
        Relay transport, or None if not available
    """
    relay_url = relay_url or os.environ.get("CCQ_RELAY_URL")
    if not relay_url:
        logger.debug("No relay URL configured")
        return None
    try:
        from .relay_transport import RelayTransport
    except ImportError:
        logger.debug("Relay transport not available")
        return None
    transport = RelayTransport(relay_url)
    if transport.is_available():
        return transport
    return None


def get_memory_transport() -> Transport:
    """
    Get an in-process transport.

    This always returns a valid transport since the in-memory implementation
    has no external dependencies. Messages only reach subscribers in the
    same process.
    """
    from .memory_transport import InMemoryTransport
    return InMemoryTransport()


def get_transport(prefer_relay: bool = True, relay_url: Optional[str] = None) -> Transport:
    """
    Get the best available transport implementation.

    Args:
        prefer_relay: Whether to prefer the gRPC relay if configured
        relay_url: Relay URL override

    Returns:
        Transport implementation
    """
    if prefer_relay:
        relay = get_relay_transport(relay_url)
        if relay:
            logger.info("Using gRPC relay transport")
            return relay

    # Fall back to the in-process bus
    logger.info("Using in-memory transport")
    return get_memory_transport()
