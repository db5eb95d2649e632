"""
Pytest fixtures for the ccq client tests.
"""
from datetime import datetime, timezone

import pytest
from eth_abi import encode

from ccq_client._rate_limited_log import reset_rate_limits
from ccq_client.abi import WETH_ABI, WETH_ADDRESS, AbiCodec
from ccq_client.config import NetworkConfig, QueryNetwork
from ccq_client.gossip.envelope import encode_signed_response
from ccq_client.gossip.memory_transport import InMemoryTransport
from ccq_client.query import (
    EthCallData,
    EthCallQueryRequest,
    EthCallQueryResponse,
    PerChainQueryResponse,
    QueryResponsePublication,
    SignedQueryResponse,
    build_request,
)
from ccq_client.signing import Environment, LocalSigner, query_response_digest, sign_request

# Well-known throwaway keys; never use them on a real network
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
RESPONDER_PRIVATE_KEY = "0x" + "11" * 32

TEST_NETWORK_ID = "/wormhole/dev"
WETH_NAME = "Wrapped Ether"
WETH_TOTAL_SUPPLY = 3_207_409_843_829_162_311_204_352
BLOCK_NUMBER = 19_000_000
BLOCK_HASH = bytes(range(32))
BLOCK_TIME = datetime(2024, 1, 13, 12, 0, 1, 250000, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _reset_state():
    """Keep rate-limit suppression and the network cache from leaking between tests."""
    reset_rate_limits()
    NetworkConfig._networks_cache = None
    yield
    reset_rate_limits()
    NetworkConfig._networks_cache = None


@pytest.fixture
def signer():
    return LocalSigner(TEST_PRIVATE_KEY)


@pytest.fixture
def responder_signer():
    return LocalSigner(RESPONDER_PRIVATE_KEY)


@pytest.fixture
def weth_codec():
    return AbiCodec(WETH_ABI)


@pytest.fixture
def weth_query(weth_codec):
    """eth_call of WETH name() and totalSupply() at BLOCK_NUMBER."""
    return EthCallQueryRequest(
        block_id=hex(BLOCK_NUMBER),
        call_data=(
            EthCallData(to=WETH_ADDRESS, data=weth_codec.encode_call("name")),
            EthCallData(to=WETH_ADDRESS, data=weth_codec.encode_call("totalSupply")),
        ),
    )


@pytest.fixture
def weth_request(weth_query):
    return build_request(2, weth_query, nonce=42)


@pytest.fixture
def signed_request(weth_request, signer):
    return sign_request(weth_request, signer, Environment.DEVNET)


@pytest.fixture
def weth_results():
    return (encode(["string"], [WETH_NAME]), encode(["uint256"], [WETH_TOTAL_SUPPLY]))


def eth_call_response(results, chain_id=2):
    return PerChainQueryResponse(
        chain_id=chain_id,
        response=EthCallQueryResponse(
            block_number=BLOCK_NUMBER,
            hash=BLOCK_HASH,
            time=BLOCK_TIME,
            results=tuple(results),
        ),
    )


@pytest.fixture
def make_response(responder_signer):
    """
    Build a serialized GossipMessage carrying a signed response.

    make_response(signed_request, per_chain_responses) -> bytes
    """
    def _make(signed, per_chain_responses):
        publication = QueryResponsePublication(
            request=signed,
            per_chain_responses=tuple(per_chain_responses),
        )
        body = publication.marshal()
        return encode_signed_response(SignedQueryResponse(
            query_response=body,
            signature=responder_signer.sign_digest(query_response_digest(body)),
        ))
    return _make


@pytest.fixture
def transport():
    transport = InMemoryTransport(peer_id="requester")
    transport.initialize(TEST_NETWORK_ID + "/ccq")
    yield transport
    transport.close()


@pytest.fixture
def devnet():
    return QueryNetwork.from_name("devnet")
