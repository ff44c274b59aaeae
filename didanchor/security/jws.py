"""didanchor.security.jws

Compact JWS (ES256K) for signed data.

The payload is canonical JSON, so the signing input for a given signed data
object is the same in every implementation.
"""

from __future__ import annotations

from typing import Any

from didanchor.core.encoding import b64url_decode, b64url_encode, canonicalize, decode_json
from didanchor.core.exceptions import InvalidInputError, InvalidSignatureError
from didanchor.security.keys import KeyPair, verify_signature

ALGORITHM = "ES256K"
_HEADER = {"alg": ALGORITHM}


def _split(jws: str) -> tuple[str, str, str]:
    if not isinstance(jws, str):
        raise InvalidInputError("signed data must be a compact JWS string")
    parts = jws.split(".")
    if len(parts) != 3 or not all(parts):
        raise InvalidInputError("signed data must have three non-empty segments")
    return parts[0], parts[1], parts[2]


def sign_compact(payload: dict[str, Any], key_pair: KeyPair) -> str:
    header = b64url_encode(canonicalize(_HEADER))
    body = b64url_encode(canonicalize(payload))
    signing_input = f"{header}.{body}".encode("ascii")
    return f"{header}.{body}.{b64url_encode(key_pair.sign(signing_input))}"


def decode_header(jws: str) -> dict[str, Any]:
    header, _, _ = _split(jws)
    obj = decode_json(header)
    if not isinstance(obj, dict):
        raise InvalidInputError("JWS header must be an object")
    return obj


def decode_payload(jws: str) -> dict[str, Any]:
    """Payload without verification. Verify before trusting it."""

    _, body, _ = _split(jws)
    obj = decode_json(body)
    if not isinstance(obj, dict):
        raise InvalidInputError("JWS payload must be an object")
    return obj


def verify_compact(jws: str, public_jwk: dict[str, Any]) -> bool:
    header, body, signature = _split(jws)
    if decode_header(jws).get("alg") != ALGORITHM:
        return False
    return verify_signature(public_jwk, b64url_decode(signature), f"{header}.{body}".encode("ascii"))


def require_valid(jws: str, public_jwk: dict[str, Any]) -> dict[str, Any]:
    """Verify and return the payload. Raises ``InvalidSignatureError``."""

    if not verify_compact(jws, public_jwk):
        raise InvalidSignatureError("signed data does not verify against the revealed key")
    return decode_payload(jws)

