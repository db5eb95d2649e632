"""
Protocol buffer message classes for the gossip envelope, the relay service
and armored key bodies.

The classes are built from descriptors at import time so no generated
*_pb2 modules have to be checked in; the .proto files next to this module
are the reference definitions and must be kept in sync with the tables
below.
"""
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

_F = descriptor_pb2.FieldDescriptorProto

BYTES = _F.TYPE_BYTES
STRING = _F.TYPE_STRING
UINT32 = _F.TYPE_UINT32
BOOL = _F.TYPE_BOOL
MESSAGE = _F.TYPE_MESSAGE

OPTIONAL = _F.LABEL_OPTIONAL
REPEATED = _F.LABEL_REPEATED

# Private pool so these definitions never clash with other protos loaded in the process
_pool = descriptor_pool.DescriptorPool()


def _add_file(name, package, messages):
    """
    Register a proto3 file.

    Args:
        name: File name (e.g. "gossip.proto")
        package: Proto package
        messages: List of (message_name, fields, oneofs). Each field is
            (name, number, type, label, type_name, oneof_index).
    """
    fdp = descriptor_pb2.FileDescriptorProto(name=name, package=package, syntax="proto3")
    for msg_name, fields, oneofs in messages:
        msg = fdp.message_type.add(name=msg_name)
        for oneof in oneofs:
            msg.oneof_decl.add(name=oneof)
        for field_name, number, ftype, label, type_name, oneof_index in fields:
            field = msg.field.add(name=field_name, number=number, type=ftype, label=label)
            if type_name:
                field.type_name = type_name
            if oneof_index is not None:
                field.oneof_index = oneof_index
    _pool.AddSerializedFile(fdp.SerializeToString())


def _cls(full_name):
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(full_name))


_add_file("gossip.proto", "gossip.v1", [
    ("SignedQueryRequest", [
        ("query_request", 1, BYTES, OPTIONAL, None, None),
        ("signature", 2, BYTES, OPTIONAL, None, None),
    ], []),
    ("SignedQueryResponse", [
        ("query_response", 1, BYTES, OPTIONAL, None, None),
        ("signature", 2, BYTES, OPTIONAL, None, None),
    ], []),
    ("GossipMessage", [
        ("signed_query_request", 10, MESSAGE, OPTIONAL, ".gossip.v1.SignedQueryRequest", 0),
        ("signed_query_response", 11, MESSAGE, OPTIONAL, ".gossip.v1.SignedQueryResponse", 0),
    ], ["message"]),
])

_add_file("relay.proto", "ccq.relay.v1", [
    ("JoinRequest", [
        ("network_id", 1, STRING, OPTIONAL, None, None),
        ("bootstrap_peers", 2, STRING, REPEATED, None, None),
        ("listen_port", 3, UINT32, OPTIONAL, None, None),
    ], []),
    ("JoinResponse", [
        ("peer_id", 1, STRING, OPTIONAL, None, None),
        ("addrs", 2, STRING, REPEATED, None, None),
    ], []),
    ("PublishRequest", [
        ("topic", 1, STRING, OPTIONAL, None, None),
        ("data", 2, BYTES, OPTIONAL, None, None),
    ], []),
    ("PublishResponse", [], []),
    ("SubscribeRequest", [
        ("topic", 1, STRING, OPTIONAL, None, None),
    ], []),
    ("PubsubMessage", [
        ("data", 1, BYTES, OPTIONAL, None, None),
        ("from_peer", 2, STRING, OPTIONAL, None, None),
    ], []),
    ("ListPeersRequest", [
        ("topic", 1, STRING, OPTIONAL, None, None),
    ], []),
    ("ListPeersResponse", [
        ("peers", 1, STRING, REPEATED, None, None),
    ], []),
])

_add_file("keys.proto", "node.v1", [
    ("GuardianKey", [
        ("data", 1, BYTES, OPTIONAL, None, None),
        ("unsafe_deterministic_key", 2, BOOL, OPTIONAL, None, None),
    ], []),
])

GossipMessage = _cls("gossip.v1.GossipMessage")
SignedQueryRequest = _cls("gossip.v1.SignedQueryRequest")
SignedQueryResponse = _cls("gossip.v1.SignedQueryResponse")

JoinRequest = _cls("ccq.relay.v1.JoinRequest")
JoinResponse = _cls("ccq.relay.v1.JoinResponse")
PublishRequest = _cls("ccq.relay.v1.PublishRequest")
PublishResponse = _cls("ccq.relay.v1.PublishResponse")
SubscribeRequest = _cls("ccq.relay.v1.SubscribeRequest")
PubsubMessage = _cls("ccq.relay.v1.PubsubMessage")
ListPeersRequest = _cls("ccq.relay.v1.ListPeersRequest")
ListPeersResponse = _cls("ccq.relay.v1.ListPeersResponse")

GuardianKey = _cls("node.v1.GuardianKey")

RELAY_SERVICE = "ccq.relay.v1.GossipRelay"

__all__ = [
    'GossipMessage',
    'SignedQueryRequest',
    'SignedQueryResponse',
    'JoinRequest',
    'JoinResponse',
    'PublishRequest',
    'PublishResponse',
    'SubscribeRequest',
    'PubsubMessage',
    'ListPeersRequest',
    'ListPeersResponse',
    'GuardianKey',
    'RELAY_SERVICE',
]
