"""
Conversion between query models and the protobuf gossip envelope.
"""
from typing import Optional

from google.protobuf.message import DecodeError

from ..exceptions import WireFormatError
from ..query import SignedQueryRequest, SignedQueryResponse
from . import proto


def encode_signed_request(signed: SignedQueryRequest) -> bytes:
    """Wrap a signed request in a GossipMessage and serialize it."""
    msg = proto.GossipMessage()
    msg.signed_query_request.query_request = signed.query_request
    msg.signed_query_request.signature = signed.signature
    return msg.SerializeToString()


def encode_signed_response(signed: SignedQueryResponse) -> bytes:
    """Wrap a signed response in a GossipMessage and serialize it."""
    msg = proto.GossipMessage()
    msg.signed_query_response.query_response = signed.query_response
    msg.signed_query_response.signature = signed.signature
    return msg.SerializeToString()


def decode_envelope(data: bytes) -> "proto.GossipMessage":
    """
    Parse a GossipMessage.

    Raises:
        WireFormatError: If the bytes are not a valid protobuf message
    """
    msg = proto.GossipMessage()
    try:
        msg.ParseFromString(data)
    except DecodeError as e:
        raise WireFormatError(f"invalid gossip message: {e}") from e
    return msg


def signed_response_of(msg: "proto.GossipMessage") -> Optional[SignedQueryResponse]:
    """Return the signed query response carried by the envelope, if that is its variant."""
    if msg.WhichOneof("message") != "signed_query_response":
        return None
    return SignedQueryResponse(
        query_response=msg.signed_query_response.query_response,
        signature=msg.signed_query_response.signature,
    )


def signed_request_of(msg: "proto.GossipMessage") -> Optional[SignedQueryRequest]:
    """Return the signed query request carried by the envelope, if that is its variant."""
    if msg.WhichOneof("message") != "signed_query_request":
        return None
    return SignedQueryRequest(
        query_request=msg.signed_query_request.query_request,
        signature=msg.signed_query_request.signature,
    )
