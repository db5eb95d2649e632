"""
Tests for the in-process transport.
"""
import threading

import pytest

from ccq_client.exceptions import PublishError, StreamError, TransportSetupError
from ccq_client.gossip.memory_transport import InMemoryTransport

TOPIC = "/wormhole/dev/ccq/ccq_resp"


@pytest.fixture
def bus():
    transport = InMemoryTransport(peer_id="me")
    transport.initialize("/wormhole/dev/ccq")
    yield transport
    transport.close()


class TestInMemoryTransport:
    """Tests for InMemoryTransport."""

    def test_is_available(self):
        assert InMemoryTransport().is_available() is True

    def test_requires_initialize(self):
        transport = InMemoryTransport()
        with pytest.raises(TransportSetupError):
            transport.publish(TOPIC, b"x")
        with pytest.raises(TransportSetupError):
            transport.subscribe(TOPIC)

    def test_empty_network_id(self):
        with pytest.raises(TransportSetupError):
            InMemoryTransport().initialize("")

    def test_publish_loops_back(self, bus):
        sub = bus.subscribe(TOPIC)
        bus.publish(TOPIC, b"hello")
        message = sub.next(timeout=1)
        assert message.data == b"hello"
        assert message.sender == "me"
        assert message.topic == TOPIC
        assert bus.published[0].data == b"hello"

    def test_topics_are_separate(self, bus):
        sub = bus.subscribe(TOPIC)
        bus.publish("other", b"x")
        assert sub.next(timeout=0.01) is None

    def test_inject_uses_sender(self, bus):
        sub = bus.subscribe(TOPIC)
        bus.inject(TOPIC, b"resp", sender="guardian")
        assert sub.next(timeout=1).sender == "guardian"

    def test_every_subscriber_gets_a_copy(self, bus):
        subs = [bus.subscribe(TOPIC) for _ in range(3)]
        bus.inject(TOPIC, b"x", sender="p")
        assert all(s.next(timeout=1).data == b"x" for s in subs)

    def test_cancelled_subscription_is_dropped(self, bus):
        first = bus.subscribe(TOPIC)
        first.cancel()
        second = bus.subscribe(TOPIC)
        bus.inject(TOPIC, b"x", sender="p")
        assert second.next(timeout=1).data == b"x"
        with pytest.raises(StreamError):
            first.next(timeout=0.01)

    def test_hook_failure_is_publish_error(self, bus):
        def broken(topic, data):
            raise RuntimeError("boom")

        bus.add_publish_hook(broken)
        with pytest.raises(PublishError, match="boom"):
            bus.publish(TOPIC, b"x")

    def test_fail_subscriptions(self, bus):
        sub = bus.subscribe(TOPIC)
        bus.fail_subscriptions(TOPIC, ConnectionError("gone"))
        with pytest.raises(StreamError, match="gone"):
            sub.next(timeout=1)
        # The failure sticks
        with pytest.raises(StreamError):
            sub.next(timeout=0.01)

    def test_close_cancels_subscriptions(self, bus):
        sub = bus.subscribe(TOPIC)
        bus.close()
        assert bus.initialized is False
        with pytest.raises(StreamError, match="cancelled"):
            sub.next(timeout=1)

    def test_next_blocks_until_delivery(self, bus):
        sub = bus.subscribe(TOPIC)
        timer = threading.Timer(0.05, bus.inject, args=(TOPIC, b"late", "p"))
        timer.start()
        try:
            assert sub.next(timeout=5).data == b"late"
        finally:
            timer.cancel()


class TestWaitForPeers:
    """Tests for the shared wait_for_peers loop."""

    def test_returns_once_enough_peers(self, bus):
        bus.add_peer("req", "p1")
        bus.add_peer("req", "p2")
        assert bus.wait_for_peers("req", min_peers=2, timeout=1) == ["p1", "p2"]

    def test_waits_for_late_peer(self, bus):
        timer = threading.Timer(0.05, bus.add_peer, args=("req", "p1"))
        timer.start()
        try:
            assert bus.wait_for_peers("req", timeout=5, poll_interval=0.01) == ["p1"]
        finally:
            timer.cancel()

    def test_timeout(self, bus):
        with pytest.raises(TransportSetupError, match="0 of 1"):
            bus.wait_for_peers("req", timeout=0.05, poll_interval=0.01)

    def test_cancelled(self, bus):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(TransportSetupError, match="Cancelled"):
            bus.wait_for_peers("req", cancel_event=cancel)

    def test_context_manager_closes(self):
        with InMemoryTransport() as transport:
            transport.initialize("net")
            assert transport.initialized
        assert not transport.initialized
