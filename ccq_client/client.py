"""
QueryClient - high-level client for cross-chain queries.
"""
import logging
import threading
from typing import Any, AbstractSet, Iterable, Optional, Sequence, Tuple, Union

from .abi import AbiCodec
from .config import QueryNetwork
from .correlator import Correlator, QueryResult
from .exceptions import TransportSetupError
from .gossip.transport import Transport
from .query import (
    ChainQueryRequest,
    EthCallData,
    EthCallQueryRequest,
    build_multi_request,
)
from .signing import LocalSigner, QuerySigner, sign_request
from .verifier import ResultDecoder

# Marks "use the client default" where None already means "wait forever"
_DEFAULT = object()


class QueryClient:
    """
    Client for sending signed queries over the gossip network.

    This client handles:
    1. Joining the network through a Transport
    2. Building and signing query requests
    3. Correlating, verifying and decoding the broadcast responses

    One client can run any number of exchanges, sequentially or from several
    threads; every exchange has its own subscription and correlator.
    """

    def __init__(
        self,
        transport: Transport,
        network: QueryNetwork,
        signer: Optional[QuerySigner] = None,
        priv_key: Optional[str] = None,
        allowed_senders: Optional[AbstractSet[str]] = None,
        timeout: Optional[float] = None,
        fail_on_invalid_response: bool = False,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the QueryClient

        Args:
            transport: Gossip transport (not yet initialized)
            network: Network settings (network id, environment, peers)
            signer: Custom signer (optional if priv_key provided)
            priv_key: Hex private key (optional if signer provided)
            allowed_senders: Only accept responses from these peer IDs
            timeout: Default response timeout in seconds; None waits forever
            fail_on_invalid_response: Raise instead of waiting on when a
                matching response fails verification
            logger: Optional logger instance

        Raises:
            ValueError: If neither priv_key nor signer is provided
            KeySetupError: If priv_key is malformed
        """
        if not priv_key and signer is None:
            raise ValueError("Either priv_key or signer must be provided")

        self.transport = transport
        self.network = network
        self.signer: QuerySigner = signer if signer is not None else LocalSigner(priv_key)
        # None means any peer; an empty set means no peer
        self.allowed_senders = frozenset(allowed_senders) if allowed_senders is not None else None
        self.timeout = timeout
        self.fail_on_invalid_response = fail_on_invalid_response
        self.logger = logger or logging.getLogger(__name__)
        self._started = False
        self._lock = threading.Lock()

    @property
    def address(self) -> str:
        """Requester address guardians will recover from our signatures"""
        return self.signer.address

    def start(
        self,
        min_peers: int = 0,
        peer_timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> None:
        """
        Join the network, optionally waiting until peers are visible.

        Args:
            min_peers: Wait for this many peers on the request topic (0 skips the wait)
            peer_timeout: Give up waiting for peers after this many seconds
            cancel_event: Abort the peer wait when set

        Raises:
            TransportSetupError: If the network can't be joined or peers don't show up
        """
        with self._lock:
            if self._started:
                return
            self.logger.info(
                f"Joining {self.network.ccq_network_id} as {self.address} "
                f"({len(self.network.bootstrap_peers)} bootstrap peers)"
            )
            self.transport.initialize(
                self.network.ccq_network_id,
                bootstrap_peers=self.network.bootstrap_peers,
                port=self.network.port,
            )
            self._started = True

        if min_peers > 0:
            self.transport.wait_for_peers(
                self.network.request_topic,
                min_peers=min_peers,
                timeout=peer_timeout,
                cancel_event=cancel_event,
            )

    def query(
        self,
        queries: Iterable[Tuple[int, ChainQueryRequest]],
        decoder: Optional[ResultDecoder] = None,
        descriptors: Optional[Sequence[Sequence[Any]]] = None,
        nonce: Optional[int] = None,
        timeout: Any = _DEFAULT,
        cancel_event: Optional[threading.Event] = None
    ) -> QueryResult:
        """
        Run one request/response exchange.

        Args:
            queries: (chain_id, query) pairs
            decoder: decoder(descriptor, raw) applied to every result
            descriptors: Per-chain descriptor lists aligned with the sub-queries
            nonce: Fixed nonce; random if omitted
            timeout: Seconds to wait for a response; defaults to the client timeout
            cancel_event: Abandon the exchange when set

        Returns:
            QueryResult for the first verified matching response

        Raises:
            TransportSetupError: If start() has not been called
            PublishError: If the request could not be published
            StreamError: If the response subscription broke
            QueryCancelledError: If cancel_event was set
            ResponseTimeoutError: If no verified response arrived in time
        """
        if not self._started:
            raise TransportSetupError("QueryClient.start() must be called before query()")
        if timeout is _DEFAULT:
            timeout = self.timeout

        request = build_multi_request(queries, nonce=nonce)
        signed = sign_request(request, self.signer, self.network.environment)
        correlator = Correlator(
            signed,
            request,
            allowed_senders=self.allowed_senders,
            decoder=decoder,
            descriptors=descriptors,
            fail_on_invalid_response=self.fail_on_invalid_response,
        )

        # Subscribe before publishing so a fast response can't be missed
        subscription = self.transport.subscribe(self.network.response_topic)
        try:
            self.logger.info(f"Sending query request nonce={request.nonce}")
            return correlator.exchange(
                self.transport,
                self.network.request_topic,
                subscription,
                timeout=timeout,
                cancel_event=cancel_event,
            )
        finally:
            subscription.cancel()

    def eth_call(
        self,
        chain_id: int,
        block_id: Union[int, str],
        contract: str,
        codec: AbiCodec,
        methods: Sequence[Union[str, Tuple[str, Sequence[Any]]]],
        nonce: Optional[int] = None,
        timeout: Any = _DEFAULT,
        cancel_event: Optional[threading.Event] = None
    ) -> QueryResult:
        """
        Query view functions of one contract at a given block.

        Args:
            chain_id: Chain to query
            block_id: Block number (int) or hex block id / tag
            contract: Contract address
            codec: ABI codec for the contract
            methods: Method names, or (name, args) pairs
            nonce: Fixed nonce; random if omitted
            timeout: Seconds to wait for a response; defaults to the client timeout
            cancel_event: Abandon the exchange when set

        Returns:
            QueryResult whose results are decoded with the codec
        """
        names = []
        call_data = []
        for method in methods:
            name, args = (method, ()) if isinstance(method, str) else method
            names.append(name)
            call_data.append(EthCallData(to=contract, data=codec.encode_call(name, args)))

        if isinstance(block_id, int):
            block_id = hex(block_id)
        query = EthCallQueryRequest(block_id=block_id, call_data=tuple(call_data))
        return self.query(
            [(chain_id, query)],
            decoder=codec,
            descriptors=[names],
            nonce=nonce,
            timeout=timeout,
            cancel_event=cancel_event,
        )

    def close(self) -> None:
        """Close the underlying transport."""
        self.transport.close()
        self._started = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
