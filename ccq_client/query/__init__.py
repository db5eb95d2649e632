"""
Query model for cross-chain queries.

Requests and responses are immutable pydantic models with a deterministic
big-endian wire encoding. Per-chain payloads are tagged variants; see
ChainQueryType for the registered tags.
"""
from .types import ChainQueryType, MSG_VERSION, SIGNATURE_LENGTH, CHAIN_ID_UNSET
from .request import (
    ChainQueryRequest,
    EthCallData,
    EthCallQueryRequest,
    PerChainQueryRequest,
    QueryRequest,
    SignedQueryRequest,
    build_request,
    build_multi_request,
    new_nonce,
)
from .response import (
    ChainQueryResponse,
    EthCallQueryResponse,
    PerChainQueryResponse,
    QueryResponsePublication,
    SignedQueryResponse,
)

__all__ = [
    'ChainQueryType',
    'MSG_VERSION',
    'SIGNATURE_LENGTH',
    'CHAIN_ID_UNSET',
    'ChainQueryRequest',
    'EthCallData',
    'EthCallQueryRequest',
    'PerChainQueryRequest',
    'QueryRequest',
    'SignedQueryRequest',
    'build_request',
    'build_multi_request',
    'new_nonce',
    'ChainQueryResponse',
    'EthCallQueryResponse',
    'PerChainQueryResponse',
    'QueryResponsePublication',
    'SignedQueryResponse',
]
