"""
Structural verification and result decoding for correlated responses.

A response that carries the exact signed request we sent still has to line
up with that request: one per-chain response per per-chain query, the same
variant at every index, and one result per sub-query. Only then are the raw
results handed to the caller's decoder.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .exceptions import (
    ResponseCountError,
    ResultCountError,
    UnsupportedVariantError,
    VariantMismatchError,
)
from .query import (
    ChainQueryRequest,
    ChainQueryResponse,
    ChainQueryType,
    EthCallQueryResponse,
    QueryRequest,
    QueryResponsePublication,
)

logger = logging.getLogger(__name__)

# decoder(descriptor, raw_result) -> decoded value; raises on failure
ResultDecoder = Callable[[Any, bytes], Any]


def _eth_call_sub_queries(query: ChainQueryRequest) -> Sequence[Any]:
    return query.call_data


def _eth_call_results(response: ChainQueryResponse) -> Sequence[bytes]:
    return response.results


def _eth_call_context(response: EthCallQueryResponse) -> Dict[str, Any]:
    return {
        "block_number": response.block_number,
        "hash": "0x" + response.hash.hex(),
        "time": response.time.isoformat(),
    }


# Per-variant accessors: (sub-queries of a request, results of a response, log context)
_VARIANTS: Dict[ChainQueryType, Tuple[Callable, Callable, Callable]] = {
    ChainQueryType.ETH_CALL: (_eth_call_sub_queries, _eth_call_results, _eth_call_context),
}


def _accessors(query_type, index: int):
    try:
        return _VARIANTS[query_type]
    except KeyError:
        raise UnsupportedVariantError(query_type, index)


@dataclass(frozen=True)
class DecodedResult:
    """
    Outcome of decoding one result.

    Attributes:
        chain_index: Index of the per-chain query
        call_index: Index of the sub-query within it
        chain_id: Chain the result came from
        descriptor: Descriptor handed to the decoder (e.g. ABI method name)
        raw: Raw result bytes
        value: Decoded value, or None on failure
        error: Decoder exception, or None on success
    """
    chain_index: int
    call_index: int
    chain_id: int
    descriptor: Any
    raw: bytes
    value: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def verify_response(request: QueryRequest, response: QueryResponsePublication) -> None:
    """
    Check that a response is structurally aligned with the request.

    Raises:
        ResponseCountError: Different number of per-chain entries
        UnsupportedVariantError: A request variant this client cannot verify
        VariantMismatchError: Variant tag differs at some index
        ResultCountError: Result count differs from sub-query count
    """
    queries = request.per_chain_queries
    responses = response.per_chain_responses
    if len(responses) != len(queries):
        raise ResponseCountError(len(queries), len(responses))

    for index, (pcq, pcr) in enumerate(zip(queries, responses)):
        sub_queries, results, _ = _accessors(pcq.query_type, index)
        if pcr.query_type != pcq.query_type:
            raise VariantMismatchError(index, pcq.query_type, pcr.query_type)
        expected = len(sub_queries(pcq.query))
        actual = len(results(pcr.response))
        if actual != expected:
            raise ResultCountError(index, expected, actual)


def _descriptor(descriptors: Optional[Sequence[Sequence[Any]]], chain_index: int, call_index: int) -> Any:
    if descriptors is None or chain_index >= len(descriptors):
        return None
    per_chain = descriptors[chain_index]
    if per_chain is None or call_index >= len(per_chain):
        return None
    return per_chain[call_index]


def decode_results(
    request: QueryRequest,
    response: QueryResponsePublication,
    decoder: Optional[ResultDecoder] = None,
    descriptors: Optional[Sequence[Sequence[Any]]] = None
) -> List[DecodedResult]:
    """
    Decode every result of a verified response.

    A decoder failure is recorded on that result only; sibling results are
    still decoded.

    Args:
        request: The request that was sent
        response: A response that passed verify_response()
        decoder: decoder(descriptor, raw) callable; raw bytes are kept if None
        descriptors: Per-chain lists of descriptors aligned with the sub-queries

    Returns:
        One DecodedResult per result, in request order
    """
    decoded = []
    for chain_index, pcr in enumerate(response.per_chain_responses):
        _, results, context = _accessors(pcr.query_type, chain_index)
        logger.info(f"Per chain query response index {chain_index} from chain {pcr.chain_id}")
        ctx = context(pcr.response)
        for call_index, raw in enumerate(results(pcr.response)):
            descriptor = _descriptor(descriptors, chain_index, call_index)
            value, error = raw, None
            if decoder is not None:
                try:
                    value = decoder(descriptor, raw)
                except Exception as e:
                    value, error = None, e
                    logger.warning(
                        f"Failed to decode result {chain_index}/{call_index} ({descriptor}): {e}"
                    )
            decoded.append(DecodedResult(
                chain_index=chain_index,
                call_index=call_index,
                chain_id=pcr.chain_id,
                descriptor=descriptor,
                raw=raw,
                value=value,
                error=error,
            ))
            if error is None:
                logger.info(
                    f"Found matching response idx={call_index} method={descriptor} "
                    f"resultDecoded={value!r} resultStr=0x{raw.hex()} {ctx}"
                )
    return decoded
