"""
Response correlation.

The response topic is shared by every requester on the network, so the
transport cannot tell us which response is ours. A Correlator holds the
exact signed request it published and accepts only a response publication
that echoes both the request bytes and the signature byte for byte, then
checks that the response is structurally aligned with the request.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import AbstractSet, Any, List, Optional, Sequence

from pydantic import ValidationError

from ._rate_limited_log import rate_limited_log
from .exceptions import (
    QueryCancelledError,
    ResponseTimeoutError,
    VerificationError,
    WireFormatError,
)
from .gossip.envelope import decode_envelope, encode_signed_request, signed_response_of
from .gossip.transport import InboundMessage, Subscription, Transport
from .query import QueryRequest, QueryResponsePublication, SignedQueryRequest, SignedQueryResponse
from .verifier import DecodedResult, ResultDecoder, decode_results, verify_response

logger = logging.getLogger(__name__)

# Upper bound on a single blocking receive so cancellation is noticed promptly
DEFAULT_POLL_INTERVAL = 0.5


@dataclass(frozen=True)
class CorrelatedResponse:
    """A response publication whose embedded request matches ours."""
    sender: str
    signed_response: SignedQueryResponse
    publication: QueryResponsePublication


@dataclass(frozen=True)
class QueryResult:
    """
    Outcome of a successful exchange.

    Attributes:
        sender: Peer ID the accepted response came from
        signed_response: Raw response bytes and responder signature
        publication: Parsed response publication
        results: Decoded results in request order
    """
    sender: str
    signed_response: SignedQueryResponse
    publication: QueryResponsePublication
    results: List[DecodedResult] = field(default_factory=list)


class Correlator:
    """
    Matches broadcast responses to one outstanding signed request.

    A Correlator is bound to a single request; it keeps no state across
    messages, so one instance can be used from one thread per exchange.
    """

    def __init__(
        self,
        signed_request: SignedQueryRequest,
        request: QueryRequest,
        allowed_senders: Optional[AbstractSet[str]] = None,
        decoder: Optional[ResultDecoder] = None,
        descriptors: Optional[Sequence[Sequence[Any]]] = None,
        fail_on_invalid_response: bool = False
    ):
        """
        Args:
            signed_request: The exact bytes and signature that get published
            request: The request those bytes encode, used for verification
            allowed_senders: If set, only responses from these peer IDs are
                considered; an empty set accepts nobody
            decoder: decoder(descriptor, raw) applied to each result
            descriptors: Per-chain descriptor lists handed to the decoder
            fail_on_invalid_response: Raise on a correlated but malformed
                response instead of waiting for another one
        """
        self.signed_request = signed_request
        self.request = request
        self.allowed_senders = frozenset(allowed_senders) if allowed_senders is not None else None
        self.decoder = decoder
        self.descriptors = descriptors
        self.fail_on_invalid_response = fail_on_invalid_response

    def send(self, transport: Transport, topic: str) -> None:
        """Publish the signed request on the request topic."""
        transport.publish(topic, encode_signed_request(self.signed_request))
        logger.info(f"Published query request ({len(self.signed_request.query_request)} bytes) on {topic}")

    def match(self, message: InboundMessage) -> Optional[CorrelatedResponse]:
        """
        Decide whether an inbound message answers our request.

        Returns:
            The correlated response, or None if the message should be skipped
        """
        try:
            envelope = decode_envelope(message.data)
        except WireFormatError:
            rate_limited_log(
                f"Received invalid message from {message.sender}",
                level="info",
                key=f"invalid:{message.sender}",
                logger_instance=logger,
            )
            return None

        if self.allowed_senders is not None and message.sender not in self.allowed_senders:
            return None

        signed_response = signed_response_of(envelope)
        if signed_response is None:
            return None

        logger.debug(
            f"Query response received from {message.sender} "
            f"({len(signed_response.query_response)} bytes)"
        )
        try:
            publication = signed_response.publication()
        except (WireFormatError, ValidationError) as e:
            logger.warning(f"Failed to unmarshal response from {message.sender}: {e}")
            return None

        if not publication.request.matches(self.signed_request):
            # Stale response, or the answer to someone else's query
            rate_limited_log(
                f"Skipping response to a different request from {message.sender}",
                level="debug",
                key=f"foreign:{message.sender}",
                logger_instance=logger,
            )
            return None

        return CorrelatedResponse(
            sender=message.sender,
            signed_response=signed_response,
            publication=publication,
        )

    def accept(self, correlated: CorrelatedResponse) -> QueryResult:
        """
        Verify a correlated response and decode its results.

        Raises:
            VerificationError: If the response is not aligned with the request
        """
        verify_response(self.request, correlated.publication)
        results = decode_results(
            self.request,
            correlated.publication,
            decoder=self.decoder,
            descriptors=self.descriptors,
        )
        return QueryResult(
            sender=correlated.sender,
            signed_response=correlated.signed_response,
            publication=correlated.publication,
            results=results,
        )

    def wait(
        self,
        subscription: Subscription,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL
    ) -> QueryResult:
        """
        Consume the subscription until a verified matching response arrives.

        Args:
            subscription: Subscription to the response topic
            timeout: Seconds to wait in total; None waits indefinitely
            cancel_event: Set from another thread to abandon the exchange
            poll_interval: Longest single blocking receive

        Returns:
            QueryResult for the first verified matching response

        Raises:
            StreamError: The subscription broke
            QueryCancelledError: cancel_event was set
            ResponseTimeoutError: No verified response before the deadline
            VerificationError: A correlated response was malformed and
                fail_on_invalid_response is set
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        last_error: Optional[VerificationError] = None
        logger.info("Waiting for message...")

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise QueryCancelledError("Query exchange cancelled")

            wait_for = poll_interval
            expired = False
            if deadline is not None:
                remaining = deadline - time.monotonic()
                # Past the deadline, still take one look at what is already queued
                expired = remaining <= 0
                wait_for = max(0.0, min(wait_for, remaining))

            message = subscription.next(timeout=wait_for)
            correlated = self.match(message) if message is not None else None
            result = None
            if correlated is not None:
                try:
                    result = self.accept(correlated)
                except VerificationError as e:
                    logger.warning(f"Discarding malformed response from {correlated.sender}: {e}")
                    if self.fail_on_invalid_response:
                        raise
                    last_error = e

            if result is None:
                if expired:
                    raise ResponseTimeoutError(timeout, last_error)
                continue

            logger.info(
                f"Accepted response from {result.sender} with "
                f"{len(result.publication.per_chain_responses)} per chain responses"
            )
            return result

    def exchange(
        self,
        transport: Transport,
        request_topic: str,
        subscription: Subscription,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> QueryResult:
        """
        Publish the request and wait for its response.

        The subscription must already be open so a fast response isn't missed.
        """
        self.send(transport, request_topic)
        return self.wait(subscription, timeout=timeout, cancel_event=cancel_event)
