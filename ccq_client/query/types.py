"""
Constants and variant tags for the CCQ wire format.
"""
from enum import IntEnum

# Version byte leading every request and response publication.
MSG_VERSION = 1

# Signature length for off-chain (signed) requests: r || s || v.
SIGNATURE_LENGTH = 65

ADDRESS_LENGTH = 20
HASH_LENGTH = 32

# Count fields are a single byte on the wire.
MAX_PER_CHAIN_QUERIES = 255
MAX_CALL_DATA = 255

# Chain id carried by publications answering an off-chain request.
CHAIN_ID_UNSET = 0


class ChainQueryType(IntEnum):
    """
    Wire tag of a per-chain query and of the response answering it.
    """
    ETH_CALL = 1
