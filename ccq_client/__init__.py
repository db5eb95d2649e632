"""
ccq_client - requester side of the cross-chain query protocol.

Build a query, sign it, publish it on the gossip network and pick the
matching response out of the shared response stream:

    client = QueryClient(get_transport(), QueryNetwork.from_name("mainnet"), priv_key=key)
    client.start(min_peers=1)
    result = client.eth_call(2, block, WETH_ADDRESS, AbiCodec(WETH_ABI), ["name", "totalSupply"])
"""
from .abi import AbiCodec, WETH_ABI, WETH_ADDRESS
from .client import QueryClient
from .config import NetworkConfig, QueryNetwork
from .correlator import CorrelatedResponse, Correlator, QueryResult
from .exceptions import (
    CCQError,
    ExchangeError,
    KeySetupError,
    PublishError,
    QueryCancelledError,
    ResponseCountError,
    ResponseTimeoutError,
    ResultCountError,
    SetupError,
    StreamError,
    TransportSetupError,
    UnsupportedVariantError,
    VariantMismatchError,
    VerificationError,
    VerificationFailure,
    WireFormatError,
)
from .gossip import InMemoryTransport, Transport, get_transport
from .keys import load_armored_key, load_signer, signer_from_env
from .query import (
    EthCallData,
    EthCallQueryRequest,
    EthCallQueryResponse,
    PerChainQueryRequest,
    PerChainQueryResponse,
    QueryRequest,
    QueryResponsePublication,
    SignedQueryRequest,
    SignedQueryResponse,
    build_multi_request,
    build_request,
)
from .signing import (
    Environment,
    LocalSigner,
    query_request_digest,
    query_response_digest,
    recover_signer,
    sign_digest,
    sign_request,
)
from .verifier import DecodedResult, decode_results, verify_response
from .version import __version__

__all__ = [
    "AbiCodec",
    "WETH_ABI",
    "WETH_ADDRESS",
    "QueryClient",
    "NetworkConfig",
    "QueryNetwork",
    "CorrelatedResponse",
    "Correlator",
    "QueryResult",
    "CCQError",
    "ExchangeError",
    "KeySetupError",
    "PublishError",
    "QueryCancelledError",
    "ResponseCountError",
    "ResponseTimeoutError",
    "ResultCountError",
    "SetupError",
    "StreamError",
    "TransportSetupError",
    "UnsupportedVariantError",
    "VariantMismatchError",
    "VerificationError",
    "VerificationFailure",
    "WireFormatError",
    "InMemoryTransport",
    "Transport",
    "get_transport",
    "load_armored_key",
    "load_signer",
    "signer_from_env",
    "EthCallData",
    "EthCallQueryRequest",
    "EthCallQueryResponse",
    "PerChainQueryRequest",
    "PerChainQueryResponse",
    "QueryRequest",
    "QueryResponsePublication",
    "SignedQueryRequest",
    "SignedQueryResponse",
    "build_multi_request",
    "build_request",
    "Environment",
    "LocalSigner",
    "query_request_digest",
    "query_response_digest",
    "recover_signer",
    "sign_digest",
    "sign_request",
    "DecodedResult",
    "decode_results",
    "verify_response",
    "__version__",
]
