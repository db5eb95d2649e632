"""
Gossip network access for the ccq client.

The relay transport requires additional dependencies that can be installed with:
    pip install ccq-client[relay]
"""
from ._deps import ensure_grpc_installed
from .envelope import (
    decode_envelope,
    encode_signed_request,
    encode_signed_response,
    signed_request_of,
    signed_response_of,
)
from .memory_transport import InMemoryTransport
from .transport import (
    InboundMessage,
    QueueSubscription,
    Subscription,
    Transport,
    get_memory_transport,
    get_relay_transport,
    get_transport,
    request_topic,
    response_topic,
)

__all__ = [
    'ensure_grpc_installed',
    'decode_envelope',
    'encode_signed_request',
    'encode_signed_response',
    'signed_request_of',
    'signed_response_of',
    'InMemoryTransport',
    'InboundMessage',
    'QueueSubscription',
    'Subscription',
    'Transport',
    'get_memory_transport',
    'get_relay_transport',
    'get_transport',
    'request_topic',
    'response_topic',
]
