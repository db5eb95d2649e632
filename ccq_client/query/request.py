"""
Query request model and its deterministic wire encoding.

A QueryRequest bundles a random nonce with an ordered list of per-chain
queries. Each per-chain query carries a tagged variant payload; the tag
selects the request class on decode and the matching response class when a
publication is verified.
"""
import logging
import secrets
from typing import ClassVar, Dict, Iterable, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..exceptions import UnsupportedVariantError, WireFormatError
from ._codec import Reader, Writer
from .types import (
    ADDRESS_LENGTH,
    MAX_CALL_DATA,
    MAX_PER_CHAIN_QUERIES,
    MSG_VERSION,
    ChainQueryType,
)

logger = logging.getLogger(__name__)

# Registered request variants, keyed by wire tag
_REQUEST_VARIANTS: Dict[ChainQueryType, Type["ChainQueryRequest"]] = {}


def _hex_to_bytes(value):
    """Accept 0x-prefixed or bare hex strings wherever raw bytes are expected."""
    if isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else value
        try:
            return bytes.fromhex(text)
        except ValueError as e:
            raise ValueError(f"not a hex string: {value!r}") from e
    return value


def request_variant(cls):
    """Register a ChainQueryRequest subclass under its QUERY_TYPE."""
    _REQUEST_VARIANTS[cls.QUERY_TYPE] = cls
    return cls


class ChainQueryRequest(BaseModel):
    """Base class of the per-chain query variants."""
    model_config = ConfigDict(frozen=True)

    QUERY_TYPE: ClassVar[ChainQueryType]

    def marshal(self) -> bytes:
        raise NotImplementedError

    @classmethod
    def unmarshal(cls, data: bytes) -> "ChainQueryRequest":
        raise NotImplementedError


class EthCallData(BaseModel):
    """A single contract call: target address and ABI-encoded call data."""
    model_config = ConfigDict(frozen=True)

    to: bytes
    data: bytes

    @field_validator("to", "data", mode="before")
    @classmethod
    def _decode_hex(cls, v):
        return _hex_to_bytes(v)

    @field_validator("to")
    @classmethod
    def _check_address(cls, v: bytes) -> bytes:
        if len(v) != ADDRESS_LENGTH:
            raise ValueError(f"'to' must be {ADDRESS_LENGTH} bytes, got {len(v)}")
        return v


@request_variant
class EthCallQueryRequest(ChainQueryRequest):
    """eth_call of one or more contracts at a given block (number or hash)."""
    QUERY_TYPE: ClassVar[ChainQueryType] = ChainQueryType.ETH_CALL

    block_id: str
    call_data: Tuple[EthCallData, ...]

    @field_validator("call_data")
    @classmethod
    def _check_call_data(cls, v):
        if len(v) > MAX_CALL_DATA:
            raise ValueError(f"too many call data entries: {len(v)} > {MAX_CALL_DATA}")
        return v

    def marshal(self) -> bytes:
        w = Writer()
        w.sized(self.block_id.encode("utf-8"))
        w.u8(len(self.call_data))
        for cd in self.call_data:
            w.raw(cd.to)
            w.sized(cd.data)
        return w.getvalue()

    @classmethod
    def unmarshal(cls, data: bytes) -> "EthCallQueryRequest":
        r = Reader(data, "eth_call query request")
        try:
            block_id = r.sized().decode("utf-8")
        except UnicodeDecodeError as e:
            raise WireFormatError(f"block id is not valid utf-8: {e}") from e
        call_data = []
        for _ in range(r.u8()):
            to = r.raw(ADDRESS_LENGTH)
            call_data.append(EthCallData(to=to, data=r.sized()))
        r.finish()
        return cls(block_id=block_id, call_data=tuple(call_data))


class PerChainQueryRequest(BaseModel):
    """A query variant addressed to one chain."""
    model_config = ConfigDict(frozen=True)

    chain_id: int = Field(ge=0, le=0xFFFF)
    query: ChainQueryRequest

    @property
    def query_type(self) -> ChainQueryType:
        return self.query.QUERY_TYPE

    def marshal(self) -> bytes:
        return (
            Writer()
            .u16(self.chain_id)
            .u8(self.query_type)
            .sized(self.query.marshal())
            .getvalue()
        )

    @classmethod
    def read(cls, r: Reader) -> "PerChainQueryRequest":
        chain_id = r.u16()
        tag = r.u8()
        body = r.sized()
        try:
            variant = _REQUEST_VARIANTS[ChainQueryType(tag)]
        except (ValueError, KeyError):
            raise UnsupportedVariantError(tag)
        return cls(chain_id=chain_id, query=variant.unmarshal(body))


class QueryRequest(BaseModel):
    """
    A nonce plus an ordered list of per-chain queries.

    marshal() is deterministic: the digest that gets signed and the bytes
    used to correlate responses are both taken from it.
    """
    model_config = ConfigDict(frozen=True)

    nonce: int = Field(ge=0, le=0xFFFFFFFF)
    per_chain_queries: Tuple[PerChainQueryRequest, ...]

    @field_validator("per_chain_queries")
    @classmethod
    def _check_count(cls, v):
        if len(v) > MAX_PER_CHAIN_QUERIES:
            raise ValueError(f"too many per chain queries: {len(v)} > {MAX_PER_CHAIN_QUERIES}")
        return v

    def marshal(self) -> bytes:
        w = Writer().u8(MSG_VERSION).u32(self.nonce).u8(len(self.per_chain_queries))
        for pcq in self.per_chain_queries:
            w.raw(pcq.marshal())
        return w.getvalue()

    @classmethod
    def unmarshal(cls, data: bytes) -> "QueryRequest":
        r = Reader(data, "query request")
        version = r.u8()
        if version != MSG_VERSION:
            raise WireFormatError(f"unsupported query request version: {version}")
        nonce = r.u32()
        queries = tuple(PerChainQueryRequest.read(r) for _ in range(r.u8()))
        r.finish()
        return cls(nonce=nonce, per_chain_queries=queries)


class SignedQueryRequest(BaseModel):
    """
    Serialized request plus the signature over its digest.

    Produced once per exchange and used as the correlation key.
    """
    model_config = ConfigDict(frozen=True)

    query_request: bytes
    signature: bytes

    def matches(self, other: "SignedQueryRequest") -> bool:
        """Exact byte equality on both fields."""
        return self.query_request == other.query_request and self.signature == other.signature


def new_nonce() -> int:
    """Random unsigned 32-bit nonce."""
    return secrets.randbits(32)


def build_request(
    chain_id: int,
    query: ChainQueryRequest,
    nonce: Optional[int] = None
) -> QueryRequest:
    """
    Wrap a single query variant in a QueryRequest with a fresh nonce.

    Args:
        chain_id: Target chain identifier
        query: Query variant payload (e.g. EthCallQueryRequest)
        nonce: Explicit nonce, mostly useful in tests

    Returns:
        QueryRequest with one per-chain query
    """
    return build_multi_request([(chain_id, query)], nonce=nonce)


def build_multi_request(
    queries: Iterable[Tuple[int, ChainQueryRequest]],
    nonce: Optional[int] = None
) -> QueryRequest:
    """
    Build a QueryRequest from (chain_id, query) pairs, preserving order.
    """
    per_chain = tuple(
        PerChainQueryRequest(chain_id=chain_id, query=query) for chain_id, query in queries
    )
    request = QueryRequest(
        nonce=new_nonce() if nonce is None else nonce,
        per_chain_queries=per_chain,
    )
    logger.debug(f"Built query request nonce={request.nonce} with {len(per_chain)} per chain queries")
    return request
