"""didanchor.core.encoding

Canonical bytes in, addresses out.

Two implementations that agree on this module agree on every commitment,
suffix, delta hash and content address.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from typing import Any

from didanchor.core.exceptions import InvalidInputError

# multihash: <code><length><digest>, sha2-256
SHA256_MULTIHASH_CODE = 0x12
SHA256_DIGEST_LENGTH = 32


def canonical_json(data: Any) -> str:
    """Canonical JSON serialization used for hashing and content addressing."""

    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def canonicalize(data: Any) -> bytes:
    return canonical_json(data).encode("utf-8")


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    if not isinstance(value, str):
        raise InvalidInputError("expected base64url string")
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError, ValueError) as e:
        raise InvalidInputError("malformed base64url string") from e


def multihash(data: bytes) -> bytes:
    """SHA-256 digest prefixed with its multihash code and length."""

    digest = hashlib.sha256(data).digest()
    return bytes([SHA256_MULTIHASH_CODE, SHA256_DIGEST_LENGTH]) + digest


def hash_then_encode(data: bytes) -> str:
    return b64url_encode(multihash(data))


def canonicalize_then_hash_then_encode(data: Any) -> str:
    return hash_then_encode(canonicalize(data))


def is_encoded_multihash(value: str) -> bool:
    """True if ``value`` decodes to a well-formed SHA-256 multihash."""

    try:
        raw = b64url_decode(value)
    except InvalidInputError:
        return False
    return (
        len(raw) == SHA256_DIGEST_LENGTH + 2
        and raw[0] == SHA256_MULTIHASH_CODE
        and raw[1] == SHA256_DIGEST_LENGTH
    )


def encode_json(data: Any) -> str:
    """base64url(canonical JSON). The on-wire form of deltas and suffix data."""

    return b64url_encode(canonicalize(data))


def decode_json(value: str) -> Any:
    raw = b64url_decode(value)
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidInputError("encoded value is not JSON") from e
