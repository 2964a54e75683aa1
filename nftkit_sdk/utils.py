"""
Utility functions for the NFT Kit SDK.
"""
import re
import json
import base64
import hashlib
import urllib.parse
from typing import Any, Dict, Optional, Union

import base58
from eth_utils import is_address

DATA_URI_PREFIX = "data:application/json;base64,"
IPFS_SCHEME = "ipfs://"

_TEZOS_PREFIXES = ("tz1", "tz2", "tz3", "tz4", "KT1")
_BASE32_CID = re.compile(r"^b[a-z2-7]{58,}$")


def sha256_hex(data: Union[str, bytes]) -> str:
    """
    Calculate SHA-256 hash and return hex string

    Args:
        data: String or bytes to hash

    Returns:
        Hex digest string
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def to_big_int(value: Any, name: str = "value") -> int:
    """
    Coerce a token id or amount to a non-negative Python int.

    Accepts ints, decimal strings and ``0x`` hex strings. Python ints are
    arbitrary precision, so no width limit applies.

    Raises:
        ValueError: If the value is not a non-negative integer
    """
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got bool")
    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{name} must be an integer, got {value}")
        result = int(value)
    elif isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith("0x"):
                result = int(text, 16)
            else:
                result = int(text, 10)
        except ValueError:
            raise ValueError(f"{name} is not a valid integer: {value!r}")
    else:
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")

    if result < 0:
        raise ValueError(f"{name} must not be negative")
    return result


def is_valid_cid(cid: str) -> bool:
    """
    Check whether a string looks like an IPFS CID (v0 base58 or v1 base32).
    """
    if not isinstance(cid, str) or not cid:
        return False
    if cid.startswith("Qm") and len(cid) == 46:
        try:
            raw = base58.b58decode(cid)
        except ValueError:
            return False
        # sha2-256 multihash: 0x12 0x20 + 32-byte digest
        return len(raw) == 34 and raw[0] == 0x12 and raw[1] == 0x20
    return bool(_BASE32_CID.match(cid))


def extract_cid(uri: str) -> Optional[str]:
    """
    Extract the CID from ``ipfs://`` URIs, gateway URLs or bare CIDs.

    Returns:
        The CID, or None if the URI does not address IPFS content
    """
    path = ipfs_path(uri)
    return path.split("/", 1)[0] if path else None


def ipfs_path(uri: str) -> Optional[str]:
    """
    IPFS content path (``<cid>`` or ``<cid>/<path inside the directory>``)
    addressed by an ``ipfs://`` URI, gateway URL or bare CID.

    Returns:
        The content path, or None if the URI does not address IPFS content
    """
    if not isinstance(uri, str):
        return None
    if uri.startswith(IPFS_SCHEME):
        path = uri[len(IPFS_SCHEME):]
        if path.startswith("ipfs/"):
            path = path[len("ipfs/"):]
    elif uri.startswith(("http://", "https://")):
        parts = urllib.parse.urlparse(uri).path.split("/")
        if "ipfs" not in parts:
            return None
        path = "/".join(parts[parts.index("ipfs") + 1:])
    else:
        path = uri
    cid, _, rest = path.partition("/")
    if not is_valid_cid(cid):
        return None
    rest = rest.strip("/")
    return f"{cid}/{rest}" if rest else cid


def encode_data_uri(document: Dict[str, Any]) -> str:
    """Encode a JSON document as an on-chain ``data:`` token URI"""
    raw = json.dumps(document, separators=(",", ":"), sort_keys=False).encode("utf-8")
    return DATA_URI_PREFIX + base64.b64encode(raw).decode("ascii")


def decode_data_uri(uri: str) -> Dict[str, Any]:
    """
    Decode a ``data:application/json`` token URI (base64 or URL-encoded).

    Raises:
        ValueError: If the URI is not a JSON data URI
    """
    if not uri.startswith("data:application/json"):
        raise ValueError("Not a JSON data URI")
    header, _, payload = uri.partition(",")
    if header.endswith(";base64"):
        text = base64.b64decode(payload).decode("utf-8")
    else:
        text = urllib.parse.unquote(payload)
    return json.loads(text)


def is_tezos_address(address: str) -> bool:
    if not isinstance(address, str) or not address.startswith(_TEZOS_PREFIXES):
        return False
    try:
        # base58check: 3-byte prefix + 20-byte hash
        return len(base58.b58decode_check(address)) == 23
    except ValueError:
        return False


def is_ss58_address(address: str) -> bool:
    if not isinstance(address, str) or not 46 <= len(address) <= 50:
        return False
    try:
        raw = base58.b58decode(address)
    except ValueError:
        return False
    # prefix (1-2 bytes) + 32-byte public key + 2-byte checksum
    return len(raw) in (35, 36)


def is_evm_address(address: str) -> bool:
    return isinstance(address, str) and is_address(address)
