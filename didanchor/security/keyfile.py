"""didanchor.security.keyfile

Private keys at rest.

Operation builders hand fresh private keys back to the caller. This module is
where a caller who wants them on disk puts them: one JSON file per DID
holding named private JWKs, encrypted with Fernet under a password-derived
key.
"""

from __future__ import annotations

import base64
import contextlib
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from didanchor.core.exceptions import InvalidInputError, KeyFileError
from didanchor.security.keys import KeyPair

_ITERATIONS = 480_000
_VERSION = 1

PASSWORD_ENV = "DIDANCHOR_KEY_PASSWORD"
DEV_MODE_ENV = "DIDANCHOR_DEV_MODE"


def _derive_fernet_key(password: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8")))


def _password() -> str | None:
    return os.environ.get(PASSWORD_ENV) or None


def _dev_mode() -> bool:
    return os.environ.get(DEV_MODE_ENV, "").lower() in ("1", "true", "yes")


@dataclass
class KeyFile:
    """Named private JWKs for one DID.

    Conventional names: ``update`` and ``recovery``, their staged successors
    ``next_update`` and ``next_recovery``, and ``doc:<id>`` per document key.
    """

    did_suffix: str
    keys: dict[str, dict[str, str]] = field(default_factory=dict)

    def put(self, name: str, key_pair: KeyPair) -> None:
        self.keys[name] = key_pair.private_jwk()

    def key_pair(self, name: str) -> KeyPair:
        jwk = self.keys.get(name)
        if jwk is None:
            raise KeyFileError(f"no key named '{name}' for {self.did_suffix}")
        try:
            return KeyPair.from_private_jwk(jwk)
        except InvalidInputError as e:
            raise KeyFileError(f"key '{name}' is not a valid private JWK") from e

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        blob: dict[str, Any] = {"did_suffix": self.did_suffix, "version": _VERSION}
        plaintext = json.dumps(self.keys, sort_keys=True).encode("utf-8")

        pw = _password()
        if pw:
            salt = os.urandom(16)
            f = Fernet(_derive_fernet_key(pw, salt))
            blob["keys_enc"] = base64.b64encode(f.encrypt(plaintext)).decode("ascii")
            blob["kdf"] = {
                "name": "pbkdf2_hmac_sha256",
                "iterations": _ITERATIONS,
                "salt_b64": base64.b64encode(salt).decode("ascii"),
            }
        else:
            if not _dev_mode():
                raise KeyFileError(
                    f"Cannot save plaintext keys without {DEV_MODE_ENV}=1. "
                    f"Set {PASSWORD_ENV} to encrypt keys at rest."
                )
            blob["keys"] = self.keys
            blob["warning"] = "DEVELOPMENT MODE: private keys stored unencrypted"

        path.write_text(json.dumps(blob, indent=2, sort_keys=True), encoding="utf-8")
        with contextlib.suppress(OSError):
            os.chmod(path, 0o600)

    @classmethod
    def load(cls, path: str | Path) -> KeyFile:
        path = Path(path)
        if not path.exists():
            raise KeyFileError(f"Key file not found: {path}")
        try:
            blob = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise KeyFileError(f"Key file is not JSON: {path}") from e

        if "keys_enc" in blob:
            pw = _password()
            if not pw:
                raise KeyFileError(f"Key file is encrypted; set {PASSWORD_ENV}")
            salt = base64.b64decode(blob["kdf"]["salt_b64"])
            f = Fernet(_derive_fernet_key(pw, salt))
            try:
                keys = json.loads(f.decrypt(base64.b64decode(blob["keys_enc"])))
            except InvalidToken as e:
                raise KeyFileError("Invalid password or corrupted key file") from e
        else:
            keys = blob.get("keys") or {}

        return cls(did_suffix=str(blob.get("did_suffix", "")), keys=dict(keys))
