"""
Exceptions for the CCQ client.
"""
from enum import Enum
from typing import Optional


class VerificationFailure(str, Enum):
    """
    Reason codes attached to a failed structural verification.
    """
    RESPONSE_COUNT = "RESPONSE_COUNT"
    VARIANT_MISMATCH = "VARIANT_MISMATCH"
    RESULT_COUNT = "RESULT_COUNT"
    UNSUPPORTED_VARIANT = "UNSUPPORTED_VARIANT"


class CCQError(Exception):
    """Base exception for all cross-chain query errors."""
    pass


class SetupError(CCQError):
    """Raised when the client cannot be set up (no request is sent)."""
    pass


class KeySetupError(SetupError):
    """Raised when signing key material is missing or malformed."""
    pass


class TransportSetupError(SetupError):
    """Raised when the gossip transport cannot be initialized."""
    pass


class PublishError(CCQError):
    """Raised when the signed request cannot be published."""
    pass


class WireFormatError(CCQError, ValueError):
    """Raised when bytes do not follow the CCQ wire layout."""
    pass


class VerificationError(CCQError):
    """Raised when a correlated response does not match the request structure."""

    def __init__(self, message: str, reason: Optional[VerificationFailure] = None, index: Optional[int] = None):
        self.reason = reason
        self.index = index
        super().__init__(message)


class ResponseCountError(VerificationError):
    """Raised when the number of per-chain responses differs from the number of queries."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"unexpected number of per chain query responses: expected {expected}, got {actual}",
            VerificationFailure.RESPONSE_COUNT,
        )


class VariantMismatchError(VerificationError):
    """Raised when a per-chain response variant does not match the query variant."""

    def __init__(self, index: int, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"per chain response {index} has type {actual}, expected {expected}",
            VerificationFailure.VARIANT_MISMATCH,
            index,
        )


class ResultCountError(VerificationError):
    """Raised when an eth_call response carries a different number of results than call data entries."""

    def __init__(self, index: int, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"unexpected number of results for per chain response {index}: expected {expected}, got {actual}",
            VerificationFailure.RESULT_COUNT,
            index,
        )


class UnsupportedVariantError(WireFormatError, VerificationError):
    """Raised for a query type this client does not know how to handle."""

    def __init__(self, query_type, index: Optional[int] = None):
        self.query_type = query_type
        VerificationError.__init__(
            self,
            f"unsupported query type: {query_type}",
            VerificationFailure.UNSUPPORTED_VARIANT,
            index,
        )


class ExchangeError(CCQError):
    """Base class for failures that end a request/response exchange."""
    pass


class StreamError(ExchangeError):
    """Raised when the response subscription breaks."""
    pass


class QueryCancelledError(ExchangeError):
    """Raised when the exchange is cancelled before a response arrives."""
    pass


class ResponseTimeoutError(ExchangeError):
    """Raised when no verified response arrives before the deadline."""

    def __init__(self, timeout: float, last_error: Optional[VerificationError] = None):
        self.timeout = timeout
        self.last_error = last_error
        message = f"no matching response received within {timeout}s"
        if last_error is not None:
            message += f" (last correlated response was rejected: {last_error})"
        super().__init__(message)
