"""
gRPC relay transport implementation.

The relay is a sidecar that owns the libp2p host, joins the gossip network
and exposes topic publish/subscribe over the ccq.relay.v1.GossipRelay
service. This module is the client side of that service.
"""
import logging
import os
import threading
import urllib.parse
from typing import List, Optional, Sequence

import grpc

from ..exceptions import PublishError, StreamError, TransportSetupError
from . import proto
from ._deps import ensure_grpc_installed
from .transport import InboundMessage, QueueSubscription, Subscription, Transport

logger = logging.getLogger(__name__)

_METHOD_PREFIX = f"/{proto.RELAY_SERVICE}/"
_LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")


def _describe_rpc_error(e: grpc.RpcError) -> str:
    code = e.code() if callable(getattr(e, "code", None)) else None
    details = e.details() if callable(getattr(e, "details", None)) else str(e)
    return f"{code} - {details}"


class _RelaySubscription(QueueSubscription):
    """
    Subscription fed by a background thread draining the server stream.
    """

    def __init__(self, topic: str, call):
        super().__init__(topic)
        self._call = call
        self._pump = threading.Thread(target=self._run, name=f"relay-sub:{topic}", daemon=True)
        self._pump.start()

    def _run(self) -> None:
        try:
            for msg in self._call:
                self.deliver(InboundMessage(data=msg.data, sender=msg.from_peer, topic=self.topic))
        except grpc.RpcError as e:
            if e.code() == grpc.StatusCode.CANCELLED and self.closed:
                return
            logger.warning(f"Relay subscription to {self.topic} failed: {_describe_rpc_error(e)}")
            self.fail(e)
            return
        # Server closed the stream
        self.fail(StreamError("relay closed the stream"))

    def cancel(self) -> None:
        super().cancel()
        self._call.cancel()


class RelayTransport(Transport):
    """
    gRPC-based transport talking to a gossip relay sidecar.
    """

    def __init__(self, relay_url: str, timeout: Optional[float] = None, verify_ssl: bool = True):
        """
        Args:
            relay_url: URL of the relay (https://host:port, or http:// for localhost)
            timeout: Per-call timeout in seconds (defaults to CCQ_RELAY_TIMEOUT or 5s)
            verify_ssl: Whether to verify SSL certificates
        """
        self.relay_url = relay_url
        self.verify_ssl = verify_ssl
        self.timeout = timeout or float(os.environ.get("CCQ_RELAY_TIMEOUT", "5"))
        self.channel = None
        self.peer_id: Optional[str] = None
        self._join = None
        self._publish = None
        self._subscribe = None
        self._list_peers = None

    def is_available(self) -> bool:
        """
        Check if relay transport is available.

        Returns:
            True if gRPC is installed, False otherwise
        """
        try:
            return ensure_grpc_installed()
        except ImportError:
            return False

    def _validate_relay_url(self, url: str) -> None:
        """
        Refuse plaintext relays outside the local host.

        The relay sees every request we sign, so a remote one must be
        reached over TLS unless CCQ_INSECURE_RELAY=1.

        Raises:
            ValueError: If the URL can't be parsed or is plain HTTP to a remote host
        """
        try:
            parsed = urllib.parse.urlparse(url)
            host = parsed.hostname or ""
        except ValueError as e:
            raise ValueError(f"Invalid relay URL '{url}': {e}") from e

        if parsed.scheme == "https" or host in _LOOPBACK_HOSTS:
            return
        if os.environ.get("CCQ_INSECURE_RELAY") != "1":
            raise ValueError(
                f"Relay URL '{url}' must use HTTPS (got {parsed.scheme}://); "
                "set CCQ_INSECURE_RELAY=1 to allow plain HTTP to a remote relay"
            )

    def _create_channel(self, url: str, verify_ssl: bool) -> grpc.Channel:
        """
        Create a gRPC channel with optional custom CA.

        Args:
            url: Relay URL
            verify_ssl: Whether to verify SSL certificates

        Returns:
            gRPC channel
        """
        parsed = urllib.parse.urlparse(url)
        host = parsed.hostname or ""
        default_port = 443 if parsed.scheme == 'https' else 80
        port = parsed.port or default_port
        # IPv6 literals need brackets in a gRPC target
        target = f"[{host}]:{port}" if ":" in host else f"{host}:{port}"

        options = [
            # Keepalive settings; subscriptions are long lived
            ('grpc.keepalive_time_ms', 30000),
            ('grpc.keepalive_timeout_ms', 10000),
            ('grpc.http2.max_pings_without_data', 0),
            ('grpc.http2.min_time_between_pings_ms', 10000),
            ('grpc.max_send_message_length', 10 * 1024 * 1024),
            ('grpc.max_receive_message_length', 10 * 1024 * 1024),
        ]

        if parsed.scheme != "https" or not verify_ssl:
            logger.warning(f"Creating insecure gRPC channel to {target} (not recommended for production)")
            return grpc.insecure_channel(target, options=options)

        # CCQ_RELAY_CA replaces system roots unless CCQ_RELAY_APPEND_CA=1
        ca_path = os.environ.get("CCQ_RELAY_CA")
        append_ca = os.environ.get("CCQ_RELAY_APPEND_CA") == "1"
        if ca_path:
            try:
                with open(ca_path, 'rb') as f:
                    ca_data = f.read()
            except OSError as e:
                raise TransportSetupError(f"Failed to load custom CA certificate from {ca_path}: {e}") from e
            if append_ca:
                import certifi
                with open(certifi.where(), 'rb') as f:
                    ca_data = f.read() + b'\n' + ca_data
                logger.info(f"Using custom CA certificate from {ca_path} appended to system roots")
            else:
                logger.info(f"Using custom CA certificate from {ca_path} (replacing system roots)")
            creds = grpc.ssl_channel_credentials(root_certificates=ca_data)
        else:
            creds = grpc.ssl_channel_credentials()
        return grpc.secure_channel(target, creds, options=options)

    def initialize(
        self,
        network_id: str,
        bootstrap_peers: Sequence[str] = (),
        port: Optional[int] = None
    ) -> None:
        """
        Connect to the relay and ask it to join the gossip network.

        Raises:
            TransportSetupError: If the channel or the join fails
            ImportError: If gRPC is not installed
        """
        ensure_grpc_installed()
        try:
            self._validate_relay_url(self.relay_url)
        except ValueError as e:
            raise TransportSetupError(str(e)) from e

        try:
            self.channel = self._create_channel(self.relay_url, self.verify_ssl)
        except TransportSetupError:
            raise
        except Exception as e:
            raise TransportSetupError(f"Failed to initialize relay transport: {e}") from e

        self._join = self.channel.unary_unary(
            _METHOD_PREFIX + "Join",
            request_serializer=proto.JoinRequest.SerializeToString,
            response_deserializer=proto.JoinResponse.FromString,
        )
        self._publish = self.channel.unary_unary(
            _METHOD_PREFIX + "Publish",
            request_serializer=proto.PublishRequest.SerializeToString,
            response_deserializer=proto.PublishResponse.FromString,
        )
        self._subscribe = self.channel.unary_stream(
            _METHOD_PREFIX + "Subscribe",
            request_serializer=proto.SubscribeRequest.SerializeToString,
            response_deserializer=proto.PubsubMessage.FromString,
        )
        self._list_peers = self.channel.unary_unary(
            _METHOD_PREFIX + "ListPeers",
            request_serializer=proto.ListPeersRequest.SerializeToString,
            response_deserializer=proto.ListPeersResponse.FromString,
        )

        request = proto.JoinRequest(
            network_id=network_id,
            bootstrap_peers=list(bootstrap_peers),
            listen_port=port or 0,
        )
        try:
            response = self._join(request, timeout=self.timeout)
        except grpc.RpcError as e:
            if e.code() == grpc.StatusCode.DEADLINE_EXCEEDED:
                raise TransportSetupError(f"Joining {network_id} timed out after {self.timeout}s")
            raise TransportSetupError(f"Failed to join {network_id}: {_describe_rpc_error(e)}")
        self.peer_id = response.peer_id
        logger.info(f"Joined {network_id} via relay {self.relay_url} as peer {self.peer_id}, addrs={list(response.addrs)}")

    def _require_initialized(self) -> None:
        if self.channel is None:
            raise TransportSetupError("Relay transport not initialized")

    def publish(self, topic: str, data: bytes) -> None:
        self._require_initialized()
        try:
            self._publish(proto.PublishRequest(topic=topic, data=data), timeout=self.timeout)
        except grpc.RpcError as e:
            if e.code() == grpc.StatusCode.DEADLINE_EXCEEDED:
                raise PublishError(f"Publishing on {topic} timed out after {self.timeout}s")
            raise PublishError(f"Failed to publish on {topic}: {_describe_rpc_error(e)}")
        logger.debug(f"Published {len(data)} bytes on {topic}")

    def subscribe(self, topic: str) -> Subscription:
        self._require_initialized()
        # No deadline: the stream stays open until cancelled
        call = self._subscribe(proto.SubscribeRequest(topic=topic))
        logger.debug(f"Subscribed to {topic} via relay")
        return _RelaySubscription(topic, call)

    def list_peers(self, topic: str) -> List[str]:
        self._require_initialized()
        try:
            response = self._list_peers(proto.ListPeersRequest(topic=topic), timeout=self.timeout)
        except grpc.RpcError as e:
            raise TransportSetupError(f"Failed to list peers on {topic}: {_describe_rpc_error(e)}")
        return list(response.peers)

    def close(self) -> None:
        """Close the gRPC channel."""
        if self.channel is not None:
            try:
                self.channel.close()
                logger.debug("Relay transport closed")
            except Exception as e:
                logger.warning(f"Error closing relay transport: {e}")
            self.channel = None
