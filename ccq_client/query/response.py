"""
Query response model and its wire encoding.
"""
from datetime import datetime, timedelta, timezone
from typing import ClassVar, Dict, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..exceptions import UnsupportedVariantError, WireFormatError
from ._codec import Reader, Writer
from .request import SignedQueryRequest, _hex_to_bytes
from .types import (
    CHAIN_ID_UNSET,
    HASH_LENGTH,
    MSG_VERSION,
    SIGNATURE_LENGTH,
    ChainQueryType,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MICROSECOND = timedelta(microseconds=1)

_RESPONSE_VARIANTS: Dict[ChainQueryType, Type["ChainQueryResponse"]] = {}


def response_variant(cls):
    """Register a ChainQueryResponse subclass under its QUERY_TYPE."""
    _RESPONSE_VARIANTS[cls.QUERY_TYPE] = cls
    return cls


class ChainQueryResponse(BaseModel):
    """Base class of the per-chain response variants."""
    model_config = ConfigDict(frozen=True)

    QUERY_TYPE: ClassVar[ChainQueryType]

    def marshal(self) -> bytes:
        raise NotImplementedError

    @classmethod
    def unmarshal(cls, data: bytes) -> "ChainQueryResponse":
        raise NotImplementedError


@response_variant
class EthCallQueryResponse(ChainQueryResponse):
    """Results of an eth_call query, one per call data entry."""
    QUERY_TYPE: ClassVar[ChainQueryType] = ChainQueryType.ETH_CALL

    block_number: int = Field(ge=0, le=0xFFFFFFFFFFFFFFFF)
    hash: bytes
    time: datetime
    results: Tuple[bytes, ...]

    @field_validator("hash", mode="before")
    @classmethod
    def _decode_hash(cls, v):
        return _hex_to_bytes(v)

    @field_validator("hash")
    @classmethod
    def _check_hash(cls, v: bytes) -> bytes:
        if len(v) != HASH_LENGTH:
            raise ValueError(f"block hash must be {HASH_LENGTH} bytes, got {len(v)}")
        return v

    @field_validator("time")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        # Naive timestamps are taken as UTC
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v < _EPOCH:
            raise ValueError(f"block time must not be before the Unix epoch, got {v.isoformat()}")
        return v

    @field_validator("results")
    @classmethod
    def _check_results(cls, v):
        if len(v) > 255:
            raise ValueError(f"too many results: {len(v)}")
        return v

    @property
    def time_us(self) -> int:
        return (self.time - _EPOCH) // _ONE_MICROSECOND

    def marshal(self) -> bytes:
        w = Writer().u64(self.block_number).raw(self.hash).u64(self.time_us).u8(len(self.results))
        for result in self.results:
            w.sized(result)
        return w.getvalue()

    @classmethod
    def unmarshal(cls, data: bytes) -> "EthCallQueryResponse":
        r = Reader(data, "eth_call query response")
        block_number = r.u64()
        block_hash = r.raw(HASH_LENGTH)
        time_us = r.u64()
        results = tuple(r.sized() for _ in range(r.u8()))
        r.finish()
        try:
            block_time = _EPOCH + timedelta(microseconds=time_us)
        except OverflowError as e:
            raise WireFormatError(f"block time out of range: {time_us}") from e
        return cls(block_number=block_number, hash=block_hash, time=block_time, results=results)


class PerChainQueryResponse(BaseModel):
    """A response variant from one chain, aligned by position with a per-chain query."""
    model_config = ConfigDict(frozen=True)

    chain_id: int = Field(ge=0, le=0xFFFF)
    response: ChainQueryResponse

    @property
    def query_type(self) -> ChainQueryType:
        return self.response.QUERY_TYPE

    def marshal(self) -> bytes:
        return (
            Writer()
            .u16(self.chain_id)
            .u8(self.query_type)
            .sized(self.response.marshal())
            .getvalue()
        )

    @classmethod
    def read(cls, r: Reader) -> "PerChainQueryResponse":
        chain_id = r.u16()
        tag = r.u8()
        body = r.sized()
        try:
            variant = _RESPONSE_VARIANTS[ChainQueryType(tag)]
        except (ValueError, KeyError):
            raise UnsupportedVariantError(tag)
        return cls(chain_id=chain_id, response=variant.unmarshal(body))


class QueryResponsePublication(BaseModel):
    """
    What a responder broadcasts: an echo of the signed request it answers
    plus one response per per-chain query.
    """
    model_config = ConfigDict(frozen=True)

    request_chain_id: int = Field(default=CHAIN_ID_UNSET, ge=0, le=0xFFFF)
    request: SignedQueryRequest
    per_chain_responses: Tuple[PerChainQueryResponse, ...]

    def marshal(self) -> bytes:
        w = Writer().u8(MSG_VERSION).u16(self.request_chain_id)
        if self.request_chain_id == CHAIN_ID_UNSET:
            if len(self.request.signature) != SIGNATURE_LENGTH:
                raise WireFormatError(
                    f"signature must be {SIGNATURE_LENGTH} bytes, got {len(self.request.signature)}"
                )
            w.raw(self.request.signature)
        w.sized(self.request.query_request)
        w.u8(len(self.per_chain_responses))
        for pcr in self.per_chain_responses:
            w.raw(pcr.marshal())
        return w.getvalue()

    @classmethod
    def unmarshal(cls, data: bytes) -> "QueryResponsePublication":
        r = Reader(data, "query response publication")
        version = r.u8()
        if version != MSG_VERSION:
            raise WireFormatError(f"unsupported query response version: {version}")
        request_chain_id = r.u16()
        # On-chain requests are authenticated by the chain, not by a signature
        signature = r.raw(SIGNATURE_LENGTH) if request_chain_id == CHAIN_ID_UNSET else b""
        query_request = r.sized()
        responses = tuple(PerChainQueryResponse.read(r) for _ in range(r.u8()))
        r.finish()
        return cls(
            request_chain_id=request_chain_id,
            request=SignedQueryRequest(query_request=query_request, signature=signature),
            per_chain_responses=responses,
        )


class SignedQueryResponse(BaseModel):
    """A serialized publication and the responder's signature over its digest."""
    model_config = ConfigDict(frozen=True)

    query_response: bytes
    signature: bytes

    def publication(self) -> QueryResponsePublication:
        return QueryResponsePublication.unmarshal(self.query_response)
