"""
Request digest and signing.

The digest is domain separated by environment so a signature valid on one
network can't be replayed on another:

    keccak256(prefix(environment) || keccak256(query_request_bytes))

Signatures are 65-byte recoverable secp256k1 signatures (r || s || v) with
v in {0, 1}, which is what guardians recover the requester address from.
"""
import logging
from enum import Enum
from typing import Protocol, Union

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError as EthKeysValidationError
from web3 import Web3

from .exceptions import KeySetupError
from .query import QueryRequest, SignedQueryRequest, SIGNATURE_LENGTH

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    """Network environment mixed into the request digest."""
    MAINNET = "mainnet"
    TESTNET = "testnet"
    DEVNET = "devnet"


# All prefixes are 35 bytes long
QUERY_REQUEST_PREFIXES = {
    Environment.MAINNET: b"mainnet_query_request_000000000000|",
    Environment.TESTNET: b"testnet_query_request_000000000000|",
    Environment.DEVNET: b"devnet_query_request_0000000000000|",
}

QUERY_RESPONSE_PREFIX = b"query_response_0000000000000000000|"


def _environment(env: Union[Environment, str]) -> Environment:
    try:
        return Environment(env)
    except ValueError:
        raise ValueError(f"Unknown environment '{env}'. Expected one of: {[e.value for e in Environment]}")


def query_request_digest(environment: Union[Environment, str], query_request: bytes) -> bytes:
    """
    Compute the digest a requester signs.

    Args:
        environment: Network environment (mainnet, testnet, devnet)
        query_request: Serialized QueryRequest bytes

    Returns:
        32-byte digest
    """
    prefix = QUERY_REQUEST_PREFIXES[_environment(environment)]
    return bytes(Web3.keccak(prefix + bytes(Web3.keccak(query_request))))


def query_response_digest(query_response: bytes) -> bytes:
    """Compute the digest a responder signs over a serialized publication."""
    return bytes(Web3.keccak(QUERY_RESPONSE_PREFIX + bytes(Web3.keccak(query_response))))


def recover_signer(digest: bytes, signature: bytes) -> str:
    """
    Recover the checksummed address that produced a signature.

    Raises:
        ValueError: If the signature is malformed or unrecoverable
    """
    if len(signature) != SIGNATURE_LENGTH:
        raise ValueError(f"signature must be {SIGNATURE_LENGTH} bytes, got {len(signature)}")
    try:
        sig = keys.Signature(signature_bytes=signature)
        return sig.recover_public_key_from_msg_hash(digest).to_checksum_address()
    except (BadSignature, EthKeysValidationError) as e:
        raise ValueError(f"failed to recover signer: {e}") from e


class QuerySigner(Protocol):
    """Protocol for custom request signers (HSM, remote KMS, ...)."""
    address: str

    def sign_digest(self, digest: bytes) -> bytes:
        """Return a 65-byte r || s || v signature with v in {0, 1}"""
        ...


class LocalSigner:
    """Signs digests with an in-process secp256k1 private key."""

    def __init__(self, private_key: Union[str, bytes]):
        """
        Args:
            private_key: Hex string (with or without 0x) or 32 raw bytes

        Raises:
            KeySetupError: If the key is malformed
        """
        try:
            self._account: LocalAccount = Account.from_key(private_key)
        except Exception as e:
            # eth-account raises ValueError or ValidationError depending on input type
            raise KeySetupError(f"Invalid signing key: {e}") from e
        self.address = self._account.address

    def sign_digest(self, digest: bytes) -> bytes:
        signed = self._account.unsafe_sign_hash(digest)
        # eth-account reports v as 27/28; the wire format wants the raw recovery id
        return (
            signed.r.to_bytes(32, "big")
            + signed.s.to_bytes(32, "big")
            + bytes([signed.v - 27])
        )


def sign_digest(digest: bytes, private_key: Union[str, bytes]) -> bytes:
    """Sign a 32-byte digest with a raw private key; see LocalSigner."""
    return LocalSigner(private_key).sign_digest(digest)


def sign_request(
    request: QueryRequest,
    signer: Union[QuerySigner, str, bytes],
    environment: Union[Environment, str] = Environment.MAINNET
) -> SignedQueryRequest:
    """
    Serialize and sign a query request.

    Args:
        request: The request to sign
        signer: Signer holding the requester key, or a raw private key
        environment: Network environment for domain separation

    Returns:
        SignedQueryRequest used both for publishing and as correlation key
    """
    if isinstance(signer, (str, bytes)):
        signer = LocalSigner(signer)
    query_request = request.marshal()
    digest = query_request_digest(environment, query_request)
    signature = signer.sign_digest(digest)
    if len(signature) != SIGNATURE_LENGTH:
        raise KeySetupError(f"Signer returned a {len(signature)}-byte signature, expected {SIGNATURE_LENGTH}")
    logger.debug(f"Signed query request nonce={request.nonce} as {signer.address}")
    return SignedQueryRequest(query_request=query_request, signature=signature)
