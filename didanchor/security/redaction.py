"""didanchor.security.redaction

Secret redaction helpers.

Private key material must never reach a log line. Public JWKs, commitments
and suffixes are fine; a JWK ``d`` is not.
"""

from __future__ import annotations

import copy
import re
from typing import Any

_REDACTION_PATTERNS: list[tuple[str, str]] = [
    # Generic key/value
    (r"(?i)(password|secret|passphrase)\s*[:=]\s*[^\s\"']+", "[REDACTED]"),
    # JWK private scalar embedded in text: "d": "<b64url>"
    (r"\"d\"\s*:\s*\"[A-Za-z0-9_-]{20,}\"", "\"d\": \"[REDACTED]\""),
    # Raw secp256k1 private key hex
    (r"\b(0x)?[a-fA-F0-9]{64}\b", "[REDACTED]"),
]

_SENSITIVE_FIELD_NAMES = {
    "d",
    "password",
    "passphrase",
    "secret",
    "private_key",
    "private_keys",
    "private_jwk",
    "update_private_key",
    "recovery_private_key",
}


def redact_secrets(text: str) -> str:
    out = text
    for pattern, repl in _REDACTION_PATTERNS:
        out = re.sub(pattern, repl, out)
    return out


def sanitize_for_log(data: dict[str, Any]) -> dict[str, Any]:
    """Deep-copy and redact sensitive fields + embedded secrets."""

    def _walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            new: dict[str, Any] = {}
            for k, v in obj.items():
                if str(k).lower() in _SENSITIVE_FIELD_NAMES:
                    new[k] = "[REDACTED]"
                else:
                    new[k] = _walk(v)
            return new
        if isinstance(obj, (list, tuple)):
            return [_walk(v) for v in obj]
        if isinstance(obj, str):
            return redact_secrets(obj)
        return obj

    return _walk(copy.deepcopy(data))
