"""
Tests for matching broadcast responses to an outstanding request.

The exchange scenarios run against the in-memory transport with a publish
hook standing in for the guardians on the other side of the topic.
"""
import logging
import threading

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from ccq_client.correlator import Correlator
from ccq_client.exceptions import (
    QueryCancelledError,
    ResponseTimeoutError,
    ResultCountError,
    StreamError,
)
from ccq_client.gossip.envelope import (
    decode_envelope,
    encode_signed_request,
    encode_signed_response,
    signed_request_of,
)
from ccq_client.gossip.transport import InboundMessage
from ccq_client.query import (
    QueryResponsePublication,
    SignedQueryRequest,
    SignedQueryResponse,
    build_request,
)
from ccq_client.signing import Environment, sign_request
from conftest import WETH_NAME, WETH_TOTAL_SUPPLY, eth_call_response

DESCRIPTORS = [["name", "totalSupply"]]


@pytest.fixture
def correlator(signed_request, weth_request, weth_codec):
    return Correlator(signed_request, weth_request, decoder=weth_codec, descriptors=DESCRIPTORS)


@pytest.fixture
def respond_with(transport, devnet):
    """
    Install a fake guardian: when a request is published, inject the given
    (data, sender) messages on the response topic, in order.
    """
    def _install(*messages):
        def hook(topic, data):
            if topic != devnet.request_topic:
                return
            for payload, sender in messages:
                transport.inject(devnet.response_topic, payload, sender)
        transport.add_publish_hook(hook)
    return _install


def foreign_signed_request(weth_query, signer):
    """Someone else's request for the same data: same query, different nonce."""
    return sign_request(build_request(2, weth_query, nonce=43), signer, Environment.DEVNET)


class TestExchange:
    """End-to-end exchanges over the in-memory transport."""

    def test_exact_match(self, transport, devnet, correlator, signed_request, make_response, weth_results, respond_with):
        respond_with((make_response(signed_request, [eth_call_response(weth_results)]), "guardian-1"))
        subscription = transport.subscribe(devnet.response_topic)

        result = correlator.exchange(transport, devnet.request_topic, subscription, timeout=5)

        assert result.sender == "guardian-1"
        assert result.publication.request.matches(signed_request)
        assert [r.value for r in result.results] == [(WETH_NAME,), (WETH_TOTAL_SUPPLY,)]

    def test_publishes_signed_request_envelope(self, transport, devnet, correlator, signed_request):
        correlator.send(transport, devnet.request_topic)
        assert len(transport.published) == 1
        message = transport.published[0]
        assert message.topic == devnet.request_topic
        assert signed_request_of(decode_envelope(message.data)) == signed_request

    def test_foreign_response_skipped(
        self, transport, devnet, correlator, signed_request, weth_query, signer, make_response, weth_results, respond_with
    ):
        """A response to a different request is ignored, even when it arrives first."""
        foreign = foreign_signed_request(weth_query, signer)
        respond_with(
            (make_response(foreign, [eth_call_response([b"", b""])]), "guardian-1"),
            (make_response(signed_request, [eth_call_response(weth_results)]), "guardian-2"),
        )
        subscription = transport.subscribe(devnet.response_topic)

        result = correlator.exchange(transport, devnet.request_topic, subscription, timeout=5)

        assert result.sender == "guardian-2"
        assert result.results[0].value == (WETH_NAME,)

    def test_malformed_envelope_skipped(
        self, transport, devnet, correlator, signed_request, make_response, weth_results, respond_with, caplog
    ):
        respond_with(
            (b"\xff\xff\xff\xff random junk", "noisy-peer"),
            (b"\xff\xff\xff\xff random junk", "noisy-peer"),
            (make_response(signed_request, [eth_call_response(weth_results)]), "guardian-1"),
        )
        subscription = transport.subscribe(devnet.response_topic)

        with caplog.at_level(logging.INFO, logger="ccq_client.correlator"):
            result = correlator.exchange(transport, devnet.request_topic, subscription, timeout=5)

        assert result.sender == "guardian-1"
        # Repeated junk from one peer is only logged once
        assert caplog.text.count("Received invalid message from noisy-peer") == 1

    def test_request_envelope_on_response_topic_skipped(
        self, transport, devnet, correlator, signed_request, make_response, weth_results, respond_with
    ):
        respond_with(
            (encode_signed_request(signed_request), "confused-peer"),
            (make_response(signed_request, [eth_call_response(weth_results)]), "guardian-1"),
        )
        subscription = transport.subscribe(devnet.response_topic)
        result = correlator.exchange(transport, devnet.request_topic, subscription, timeout=5)
        assert result.sender == "guardian-1"

    def test_sender_filter(
        self, transport, devnet, signed_request, weth_request, weth_codec, make_response, weth_results, respond_with
    ):
        """With an allow-list, a valid response from any other peer is skipped."""
        response = make_response(signed_request, [eth_call_response(weth_results)])
        respond_with((response, "P1"), (response, "P2"))
        correlator = Correlator(
            signed_request,
            weth_request,
            allowed_senders={"P2"},
            decoder=weth_codec,
            descriptors=DESCRIPTORS,
        )
        subscription = transport.subscribe(devnet.response_topic)

        result = correlator.exchange(transport, devnet.request_topic, subscription, timeout=5)

        assert result.sender == "P2"

    def test_misaligned_response_discarded_then_valid_accepted(
        self, transport, devnet, correlator, signed_request, make_response, weth_results, respond_with
    ):
        respond_with(
            (make_response(signed_request, [eth_call_response(weth_results[:1])]), "guardian-1"),
            (make_response(signed_request, [eth_call_response(weth_results)]), "guardian-2"),
        )
        subscription = transport.subscribe(devnet.response_topic)
        result = correlator.exchange(transport, devnet.request_topic, subscription, timeout=5)
        assert result.sender == "guardian-2"

    def test_misaligned_response_raises_when_strict(
        self, transport, devnet, signed_request, weth_request, make_response, weth_results, respond_with
    ):
        respond_with((make_response(signed_request, [eth_call_response(weth_results[:1])]), "guardian-1"))
        correlator = Correlator(signed_request, weth_request, fail_on_invalid_response=True)
        subscription = transport.subscribe(devnet.response_topic)
        with pytest.raises(ResultCountError):
            correlator.exchange(transport, devnet.request_topic, subscription, timeout=5)


class TestTermination:
    """Exchanges that end without a verified response."""

    def test_timeout(self, transport, devnet, correlator):
        subscription = transport.subscribe(devnet.response_topic)
        with pytest.raises(ResponseTimeoutError) as exc_info:
            correlator.exchange(transport, devnet.request_topic, subscription, timeout=0.05)
        assert exc_info.value.timeout == 0.05
        assert exc_info.value.last_error is None

    def test_timeout_reports_last_rejection(
        self, transport, devnet, correlator, signed_request, make_response, weth_results, respond_with
    ):
        respond_with((make_response(signed_request, [eth_call_response(weth_results[:1])]), "guardian-1"))
        subscription = transport.subscribe(devnet.response_topic)
        with pytest.raises(ResponseTimeoutError) as exc_info:
            correlator.exchange(transport, devnet.request_topic, subscription, timeout=0.1)
        assert isinstance(exc_info.value.last_error, ResultCountError)

    def test_zero_timeout_still_reads_queued_response(
        self, transport, devnet, correlator, signed_request, make_response, weth_results
    ):
        subscription = transport.subscribe(devnet.response_topic)
        transport.inject(
            devnet.response_topic,
            make_response(signed_request, [eth_call_response(weth_results)]),
            "guardian-1",
        )
        result = correlator.wait(subscription, timeout=0)
        assert result.sender == "guardian-1"

    def test_zero_timeout_with_nothing_queued(self, transport, devnet, correlator):
        subscription = transport.subscribe(devnet.response_topic)
        with pytest.raises(ResponseTimeoutError) as exc_info:
            correlator.wait(subscription, timeout=0)
        assert exc_info.value.timeout == 0

    def test_cancelled_before_wait(self, transport, devnet, correlator):
        cancel = threading.Event()
        cancel.set()
        subscription = transport.subscribe(devnet.response_topic)
        with pytest.raises(QueryCancelledError):
            correlator.wait(subscription, cancel_event=cancel)

    def test_cancelled_while_waiting(self, transport, devnet, correlator):
        cancel = threading.Event()
        subscription = transport.subscribe(devnet.response_topic)
        timer = threading.Timer(0.05, cancel.set)
        timer.start()
        try:
            with pytest.raises(QueryCancelledError):
                correlator.wait(subscription, cancel_event=cancel, poll_interval=0.01)
        finally:
            timer.cancel()

    def test_stream_error(self, transport, devnet, correlator):
        subscription = transport.subscribe(devnet.response_topic)
        transport.fail_subscriptions(devnet.response_topic, ConnectionError("relay went away"))
        with pytest.raises(StreamError, match="relay went away"):
            correlator.wait(subscription, timeout=5)

    def test_cancelled_subscription(self, transport, devnet, correlator):
        subscription = transport.subscribe(devnet.response_topic)
        subscription.cancel()
        with pytest.raises(StreamError, match="cancelled"):
            correlator.wait(subscription)


class TestMatch:
    """Tests for the per-message correlation decision."""

    def test_on_chain_publication_never_matches(self, correlator, signed_request, make_response, weth_results):
        on_chain = SignedQueryRequest(query_request=signed_request.query_request, signature=b"")
        publication = QueryResponsePublication(
            request_chain_id=2,
            request=on_chain,
            per_chain_responses=(eth_call_response(weth_results),),
        )
        data = encode_signed_response(SignedQueryResponse(query_response=publication.marshal(), signature=b""))
        assert correlator.match(InboundMessage(data=data, sender="guardian-1")) is None

    def test_unparseable_publication_skipped(self, correlator):
        data = encode_signed_response(SignedQueryResponse(query_response=b"\x01\x00", signature=b""))
        assert correlator.match(InboundMessage(data=data, sender="guardian-1")) is None

    @settings(max_examples=100, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(data=st.data())
    def test_single_bit_flip_never_matches(self, correlator, signed_request, make_response, weth_results, data):
        """Flipping any one bit of the echoed request bytes or signature breaks correlation."""
        field = data.draw(st.sampled_from(["query_request", "signature"]))
        original = getattr(signed_request, field)
        bit = data.draw(st.integers(min_value=0, max_value=len(original) * 8 - 1))
        flipped = bytearray(original)
        flipped[bit // 8] ^= 1 << (bit % 8)
        tampered = signed_request.model_copy(update={field: bytes(flipped)})

        message = InboundMessage(
            data=make_response(tampered, [eth_call_response(weth_results)]),
            sender="guardian-1",
        )
        assert correlator.match(message) is None

    def test_empty_allow_list_accepts_nobody(self, signed_request, weth_request, make_response, weth_results):
        correlator = Correlator(signed_request, weth_request, allowed_senders=set())
        message = InboundMessage(
            data=make_response(signed_request, [eth_call_response(weth_results)]),
            sender="P2",
        )
        assert correlator.allowed_senders == frozenset()
        assert correlator.match(message) is None

    def test_no_allow_list_accepts_anyone(self, signed_request, weth_request, make_response, weth_results):
        correlator = Correlator(signed_request, weth_request, allowed_senders=None)
        message = InboundMessage(
            data=make_response(signed_request, [eth_call_response(weth_results)]),
            sender="P2",
        )
        assert correlator.match(message) is not None

    def test_exact_echo_matches(self, correlator, signed_request, make_response, weth_results):
        message = InboundMessage(
            data=make_response(signed_request, [eth_call_response(weth_results)]),
            sender="guardian-1",
        )
        correlated = correlator.match(message)
        assert correlated is not None
        assert correlated.sender == "guardian-1"
