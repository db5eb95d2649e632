"""
Signing key loading.

Requester keys are stored as OpenPGP ASCII-armored blocks whose body is a
protobuf GuardianKey:

    -----BEGIN CCQ SERVER SIGNING KEY-----
    PublicKey: 0x...
    Description: ...

    <base64 GuardianKey>
    =<base64 CRC-24>
    -----END CCQ SERVER SIGNING KEY-----

Plain hex keys (in a file or the CCQ_SIGNER_KEY environment variable) are
accepted as well for development.
"""
import base64
import binascii
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

from google.protobuf.message import DecodeError

from .exceptions import KeySetupError
from .gossip import proto
from .signing import LocalSigner

logger = logging.getLogger(__name__)

CCQ_SERVER_SIGNING_KEY = "CCQ SERVER SIGNING KEY"

_BEGIN = "-----BEGIN "
_END = "-----END "
_DASHES = "-----"

_CRC24_INIT = 0xB704CE
_CRC24_POLY = 0x1864CFB


def crc24(data: bytes) -> int:
    """OpenPGP CRC-24 (RFC 4880 section 6.1)."""
    crc = _CRC24_INIT
    for byte in data:
        crc ^= byte << 16
        for _ in range(8):
            crc <<= 1
            if crc & 0x1000000:
                crc ^= _CRC24_POLY
    return crc & 0xFFFFFF


def decode_armor(text: str) -> Tuple[str, Dict[str, str], bytes]:
    """
    Decode an ASCII-armored block.

    Returns:
        Tuple of (block_type, headers, body)

    Raises:
        KeySetupError: If the armor is malformed or the checksum is wrong
    """
    lines = [line.strip() for line in text.strip().splitlines()]
    if not lines or not lines[0].startswith(_BEGIN) or not lines[0].endswith(_DASHES):
        raise KeySetupError("Missing armor BEGIN line")
    block_type = lines[0][len(_BEGIN):-len(_DASHES)]
    end_line = f"{_END}{block_type}{_DASHES}"
    try:
        end = lines.index(end_line)
    except ValueError:
        raise KeySetupError(f"Missing armor END line for {block_type}")

    headers: Dict[str, str] = {}
    i = 1
    while i < end and lines[i]:
        if ":" not in lines[i]:
            break
        key, _, value = lines[i].partition(":")
        headers[key.strip()] = value.strip()
        i += 1

    body_lines = [line for line in lines[i:end] if line]
    checksum = None
    if body_lines and body_lines[-1].startswith("="):
        checksum = body_lines.pop()[1:]
    try:
        body = base64.b64decode("".join(body_lines), validate=True)
    except binascii.Error as e:
        raise KeySetupError(f"Invalid armor body: {e}") from e

    if checksum is not None:
        try:
            expected = int.from_bytes(base64.b64decode(checksum, validate=True), "big")
        except binascii.Error as e:
            raise KeySetupError(f"Invalid armor checksum: {e}") from e
        if crc24(body) != expected:
            raise KeySetupError("Armor checksum mismatch")
    return block_type, headers, body


def encode_armor(block_type: str, body: bytes, headers: Optional[Dict[str, str]] = None) -> str:
    """Encode bytes as an ASCII-armored block with a CRC-24 checksum."""
    encoded = base64.b64encode(body).decode("ascii")
    out = [f"{_BEGIN}{block_type}{_DASHES}"]
    for key, value in (headers or {}).items():
        out.append(f"{key}: {value}")
    out.append("")
    out.extend(encoded[i:i + 64] for i in range(0, len(encoded), 64))
    out.append("=" + base64.b64encode(crc24(body).to_bytes(3, "big")).decode("ascii"))
    out.append(f"{_END}{block_type}{_DASHES}")
    return "\n".join(out) + "\n"


def armor_private_key(
    private_key: bytes,
    block_type: str = CCQ_SERVER_SIGNING_KEY,
    description: Optional[str] = None,
    unsafe_deterministic_key: bool = False
) -> str:
    """Armor a raw 32-byte private key as a GuardianKey block."""
    signer = LocalSigner(private_key)
    key = proto.GuardianKey(data=private_key, unsafe_deterministic_key=unsafe_deterministic_key)
    headers = {"PublicKey": signer.address}
    if description:
        headers["Description"] = description
    return encode_armor(block_type, key.SerializeToString(), headers)


def load_armored_key(
    path: Union[str, Path],
    block_type: str = CCQ_SERVER_SIGNING_KEY,
    unsafe_dev_mode: bool = False
) -> bytes:
    """
    Load a private key from an armored key file.

    Args:
        path: Key file path
        block_type: Expected armor block type
        unsafe_dev_mode: Allow keys flagged as deterministic (devnet only)

    Returns:
        Raw 32-byte private key

    Raises:
        KeySetupError: If the file can't be read or doesn't hold a usable key
    """
    try:
        text = Path(path).read_text()
    except OSError as e:
        raise KeySetupError(f"Failed to read key file {path}: {e}") from e

    found_type, headers, body = decode_armor(text)
    if found_type != block_type:
        raise KeySetupError(f"Invalid block type: {found_type}, expected {block_type}")

    key = proto.GuardianKey()
    try:
        key.ParseFromString(body)
    except DecodeError as e:
        raise KeySetupError(f"Failed to parse key body: {e}") from e

    if key.unsafe_deterministic_key and not unsafe_dev_mode:
        raise KeySetupError("Refusing to use deterministic key in production")

    logger.debug(f"Loaded armored key from {path} (PublicKey header: {headers.get('PublicKey', 'n/a')})")
    return key.data


def load_signer(
    source: Union[str, Path],
    block_type: str = CCQ_SERVER_SIGNING_KEY,
    unsafe_dev_mode: bool = False
) -> LocalSigner:
    """
    Build a signer from a key file (armored or hex) or a hex key string.

    Raises:
        KeySetupError: If no usable key can be loaded
    """
    path = Path(source)
    if path.is_file():
        try:
            text = path.read_text()
        except OSError as e:
            raise KeySetupError(f"Failed to read key file {path}: {e}") from e
        if _BEGIN in text:
            private_key = load_armored_key(path, block_type, unsafe_dev_mode)
        else:
            private_key = text.strip()
    else:
        private_key = str(source).strip()
        if not private_key:
            raise KeySetupError("Empty signing key")

    signer = LocalSigner(private_key)
    logger.info(f"Signing key loaded, publicKey={signer.address}")
    return signer


def signer_from_env(var: str = "CCQ_SIGNER_KEY") -> Optional[LocalSigner]:
    """
    Build a signer from an environment variable holding a key or key file path.

    Returns:
        LocalSigner, or None if the variable is unset
    """
    value = os.environ.get(var)
    if not value:
        return None
    return load_signer(value)
