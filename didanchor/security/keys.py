"""didanchor.security.keys

secp256k1 key pairs and the commitment-reveal scheme.

A commitment is the hash of a canonical public JWK. Publishing it says
"the next operation will be signed by the key behind this hash" without
revealing the key. Revealing it consumes it; the operation that reveals it
publishes the next one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature, encode_dss_signature

from didanchor.core.encoding import b64url_decode, b64url_encode, canonicalize_then_hash_then_encode
from didanchor.core.exceptions import CommitmentMismatchError, InvalidInputError

KEY_TYPE = "EC"
CURVE = "secp256k1"
_COORD_BYTES = 32

# The only members that identify an EC public key. Everything else (id, kid,
# use, d, ...) is dropped before hashing.
_COMMITTED_MEMBERS = ("crv", "kty", "x", "y")


def _int_to_b64(value: int) -> str:
    return b64url_encode(value.to_bytes(_COORD_BYTES, "big"))


def _b64_to_int(value: Any, name: str) -> int:
    if not isinstance(value, str) or not value:
        raise InvalidInputError(f"jwk member '{name}' is missing")
    raw = b64url_decode(value)
    if len(raw) != _COORD_BYTES:
        raise InvalidInputError(f"jwk member '{name}' must be {_COORD_BYTES} bytes")
    return int.from_bytes(raw, "big")


def _check_curve(jwk: dict[str, Any]) -> None:
    if not isinstance(jwk, dict):
        raise InvalidInputError("jwk must be an object")
    if jwk.get("kty") != KEY_TYPE or jwk.get("crv") != CURVE:
        raise InvalidInputError(f"jwk must be kty={KEY_TYPE} crv={CURVE}")


def canonical_public_jwk(jwk: dict[str, Any]) -> dict[str, str]:
    """Reduce a JWK to the members that are committed to."""

    _check_curve(jwk)
    missing = [m for m in _COMMITTED_MEMBERS if not isinstance(jwk.get(m), str)]
    if missing:
        raise InvalidInputError(f"jwk is missing {', '.join(missing)}")
    return {m: jwk[m] for m in _COMMITTED_MEMBERS}


def public_key_from_jwk(jwk: dict[str, Any]) -> ec.EllipticCurvePublicKey:
    _check_curve(jwk)
    numbers = ec.EllipticCurvePublicNumbers(
        x=_b64_to_int(jwk.get("x"), "x"),
        y=_b64_to_int(jwk.get("y"), "y"),
        curve=ec.SECP256K1(),
    )
    try:
        return numbers.public_key()
    except ValueError as e:
        raise InvalidInputError("jwk point is not on secp256k1") from e


def jwk_from_public_key(public_key: ec.EllipticCurvePublicKey) -> dict[str, str]:
    nums = public_key.public_numbers()
    return {"kty": KEY_TYPE, "crv": CURVE, "x": _int_to_b64(nums.x), "y": _int_to_b64(nums.y)}


@dataclass(frozen=True)
class KeyPair:
    """secp256k1 key pair. Only ever handed back to the caller."""

    private_key: ec.EllipticCurvePrivateKey

    @classmethod
    def generate(cls) -> KeyPair:
        return cls(private_key=ec.generate_private_key(ec.SECP256K1()))

    @classmethod
    def from_private_jwk(cls, jwk: dict[str, Any]) -> KeyPair:
        public = public_key_from_jwk(jwk)
        d = _b64_to_int(jwk.get("d"), "d")
        try:
            private = ec.derive_private_key(d, ec.SECP256K1())
        except ValueError as e:
            raise InvalidInputError("jwk private scalar is out of range") from e
        if jwk_from_public_key(private.public_key()) != jwk_from_public_key(public):
            raise InvalidInputError("jwk private scalar does not match its public point")
        return cls(private_key=private)

    def public_jwk(self) -> dict[str, str]:
        return jwk_from_public_key(self.private_key.public_key())

    def private_jwk(self) -> dict[str, str]:
        jwk = self.public_jwk()
        jwk["d"] = _int_to_b64(self.private_key.private_numbers().private_value)
        return jwk

    def commitment(self) -> str:
        return commit(self.public_jwk())

    def sign(self, data: bytes) -> bytes:
        """ES256K: ECDSA/SHA-256 over secp256k1, 64-byte ``r || s``."""

        der = self.private_key.sign(data, ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        return r.to_bytes(_COORD_BYTES, "big") + s.to_bytes(_COORD_BYTES, "big")


def generate_key_pair() -> KeyPair:
    return KeyPair.generate()


def verify_signature(public_jwk: dict[str, Any], signature: bytes, data: bytes) -> bool:
    if len(signature) != 2 * _COORD_BYTES:
        return False
    public = public_key_from_jwk(public_jwk)
    r = int.from_bytes(signature[:_COORD_BYTES], "big")
    s = int.from_bytes(signature[_COORD_BYTES:], "big")
    try:
        public.verify(encode_dss_signature(r, s), data, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True


def commit(public_jwk: dict[str, Any]) -> str:
    """Commitment to a public key. Same key, same commitment, everywhere."""

    return canonicalize_then_hash_then_encode(canonical_public_jwk(public_jwk))


def verify_reveal(revealed_jwk: dict[str, Any], expected_commitment: str | None) -> bool:
    if not expected_commitment:
        return False
    try:
        return commit(revealed_jwk) == expected_commitment
    except InvalidInputError:
        return False


def require_reveal(revealed_jwk: dict[str, Any], expected_commitment: str | None) -> None:
    """Raise unless ``revealed_jwk`` is the key behind ``expected_commitment``."""

    if not verify_reveal(revealed_jwk, expected_commitment):
        raise CommitmentMismatchError("revealed key does not match the stored commitment")
