"""didanchor.security

Keys, commitments, signatures, and keeping secrets out of logs.
"""

from didanchor.security.keyfile import KeyFile
from didanchor.security.keys import KeyPair, commit, generate_key_pair, require_reveal, verify_reveal
from didanchor.security.redaction import redact_secrets, sanitize_for_log

__all__ = [
    "KeyFile",
    "KeyPair",
    "commit",
    "generate_key_pair",
    "require_reveal",
    "verify_reveal",
    "redact_secrets",
    "sanitize_for_log",
]
