"""
Tests for structural verification and per-result decoding.
"""
import logging

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from ccq_client import verifier
from ccq_client.exceptions import (
    ResponseCountError,
    ResultCountError,
    UnsupportedVariantError,
    VariantMismatchError,
    VerificationError,
    VerificationFailure,
)
from ccq_client.query import (
    ChainQueryResponse,
    EthCallData,
    EthCallQueryRequest,
    PerChainQueryResponse,
    QueryResponsePublication,
    SignedQueryRequest,
    build_multi_request,
)
from ccq_client.verifier import decode_results, verify_response
from conftest import WETH_NAME, WETH_TOTAL_SUPPLY, eth_call_response

SIGNED = SignedQueryRequest(query_request=b"\x01", signature=b"\x00" * 65)
TO = b"\x22" * 20


def request_with(call_counts):
    """A request with one eth_call per entry, each with the given number of calls."""
    queries = [
        (2, EthCallQueryRequest(block_id="0x1", call_data=(EthCallData(to=TO, data=b"\x00"),) * n))
        for n in call_counts
    ]
    return build_multi_request(queries, nonce=1)


def response_with(result_counts):
    return QueryResponsePublication(
        request=SIGNED,
        per_chain_responses=tuple(eth_call_response([b"\x00"] * n) for n in result_counts),
    )


class _OtherResponse(ChainQueryResponse):
    """Response variant with an unregistered tag, for mismatch tests."""
    QUERY_TYPE = 99


class TestVerifyResponse:
    """Tests for verify_response."""

    def test_aligned_response_passes(self):
        verify_response(request_with([2, 1]), response_with([2, 1]))

    def test_zero_responses(self):
        with pytest.raises(ResponseCountError) as exc_info:
            verify_response(request_with([2]), response_with([]))
        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 0
        assert exc_info.value.reason == VerificationFailure.RESPONSE_COUNT

    @pytest.mark.parametrize("delta", [-1, 1])
    def test_result_count_off_by_one(self, delta):
        with pytest.raises(ResultCountError) as exc_info:
            verify_response(request_with([1, 2]), response_with([1, 2 + delta]))
        assert exc_info.value.index == 1
        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 2 + delta

    def test_variant_mismatch(self):
        response = QueryResponsePublication.model_construct(
            request=SIGNED,
            per_chain_responses=(
                PerChainQueryResponse.model_construct(chain_id=2, response=_OtherResponse()),
            ),
        )
        with pytest.raises(VariantMismatchError) as exc_info:
            verify_response(request_with([1]), response)
        assert exc_info.value.index == 0
        assert exc_info.value.reason == VerificationFailure.VARIANT_MISMATCH

    def test_variant_without_verifier(self, monkeypatch):
        """A request variant the verifier has no accessors for is rejected, not crashed on."""
        monkeypatch.setattr(verifier, "_VARIANTS", {})
        with pytest.raises(UnsupportedVariantError) as exc_info:
            verify_response(request_with([1]), response_with([1]))
        assert isinstance(exc_info.value, VerificationError)
        assert exc_info.value.index == 0

    @settings(max_examples=50, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(
        n=st.integers(min_value=0, max_value=6),
        m=st.integers(min_value=0, max_value=6),
    )
    def test_count_mismatch_always_rejected(self, n, m):
        """Any N != M per-chain entries fails with ResponseCountError."""
        request = request_with([1] * n)
        response = response_with([1] * m)
        if n == m:
            verify_response(request, response)
        else:
            with pytest.raises(ResponseCountError):
                verify_response(request, response)


class TestDecodeResults:
    """Tests for decode_results."""

    def test_raw_results_without_decoder(self):
        results = decode_results(request_with([2]), response_with([2]))
        assert [r.value for r in results] == [b"\x00", b"\x00"]
        assert all(r.ok for r in results)

    def test_weth_results_decoded(self, weth_request, weth_results, weth_codec):
        response = QueryResponsePublication(request=SIGNED, per_chain_responses=(eth_call_response(weth_results),))
        results = decode_results(
            weth_request,
            response,
            decoder=weth_codec,
            descriptors=[["name", "totalSupply"]],
        )
        assert [r.descriptor for r in results] == ["name", "totalSupply"]
        assert results[0].value == (WETH_NAME,)
        assert results[1].value == (WETH_TOTAL_SUPPLY,)
        assert results[1].chain_id == 2
        assert results[1].call_index == 1

    def test_decode_error_does_not_abort_siblings(self, weth_request, weth_results, weth_codec, caplog):
        """A result the decoder chokes on is reported; the next one is still decoded."""
        response = QueryResponsePublication(
            request=SIGNED,
            per_chain_responses=(eth_call_response([b"\x01\x02", weth_results[1]]),),
        )
        with caplog.at_level(logging.INFO, logger="ccq_client.verifier"):
            results = decode_results(
                weth_request,
                response,
                decoder=weth_codec,
                descriptors=[["name", "totalSupply"]],
            )
        assert not results[0].ok
        assert results[0].value is None
        assert results[0].raw == b"\x01\x02"
        assert results[1].ok
        assert results[1].value == (WETH_TOTAL_SUPPLY,)
        assert "Failed to decode result 0/0" in caplog.text
        assert "Found matching response idx=1" in caplog.text

    def test_missing_descriptors_are_none(self):
        seen = []

        def decoder(descriptor, raw):
            seen.append(descriptor)
            return len(raw)

        results = decode_results(request_with([2]), response_with([2]), decoder=decoder, descriptors=[["a"]])
        assert seen == ["a", None]
        assert [r.value for r in results] == [1, 1]
