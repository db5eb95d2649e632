"""
Tests for transport selection.
"""
import os
from unittest.mock import MagicMock, patch

from ccq_client.gossip.memory_transport import InMemoryTransport
from ccq_client.gossip.transport import (
    get_relay_transport,
    get_transport,
    request_topic,
    response_topic,
)


class TestTopics:
    def test_topic_names(self):
        assert request_topic("/wormhole/mainnet/2/ccq") == "/wormhole/mainnet/2/ccq/ccq_req"
        assert response_topic("/wormhole/mainnet/2/ccq") == "/wormhole/mainnet/2/ccq/ccq_resp"


class TestTransportFactory:
    """Tests for get_transport and friends."""

    def test_no_relay_url_falls_back_to_memory(self):
        with patch.dict(os.environ, {}, clear=True):
            assert get_relay_transport() is None
            assert isinstance(get_transport(), InMemoryTransport)

    def test_prefer_relay_false(self):
        assert isinstance(get_transport(prefer_relay=False, relay_url="https://relay:443"), InMemoryTransport)

    def test_relay_from_env(self):
        with patch.dict(os.environ, {"CCQ_RELAY_URL": "https://relay.example.com:7070"}):
            transport = get_relay_transport()
        assert transport is not None
        assert transport.relay_url == "https://relay.example.com:7070"

    def test_relay_unavailable(self):
        with patch("ccq_client.gossip.relay_transport.RelayTransport.is_available", return_value=False):
            assert get_relay_transport("https://relay:443") is None
            assert isinstance(get_transport(relay_url="https://relay:443"), InMemoryTransport)

    def test_relay_preferred(self):
        fake = MagicMock()
        with patch("ccq_client.gossip.transport.get_relay_transport", return_value=fake):
            assert get_transport() is fake
