from __future__ import annotations

from pathlib import Path

import pytest

from didanchor.core.exceptions import KeyFileError
from didanchor.security.keyfile import DEV_MODE_ENV, PASSWORD_ENV, KeyFile
from didanchor.security.keys import generate_key_pair


def test_encrypted_roundtrip(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(PASSWORD_ENV, "test-password")
    pair = generate_key_pair()
    kf = KeyFile(did_suffix="suffix")
    kf.put("update", pair)

    path = temp_dir / "keys" / "suffix.json"
    kf.save(path)

    raw = path.read_text()
    assert pair.private_jwk()["d"] not in raw
    assert "keys_enc" in raw

    loaded = KeyFile.load(path)
    assert loaded.did_suffix == "suffix"
    assert loaded.key_pair("update").public_jwk() == pair.public_jwk()


def test_wrong_password_fails(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(PASSWORD_ENV, "right")
    kf = KeyFile(did_suffix="s")
    kf.put("recovery", generate_key_pair())
    kf.save(temp_dir / "k.json")

    monkeypatch.setenv(PASSWORD_ENV, "wrong")
    with pytest.raises(KeyFileError, match="Invalid password"):
        KeyFile.load(temp_dir / "k.json")

    monkeypatch.delenv(PASSWORD_ENV)
    with pytest.raises(KeyFileError, match="encrypted"):
        KeyFile.load(temp_dir / "k.json")


def test_plaintext_requires_dev_mode(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(PASSWORD_ENV, raising=False)
    monkeypatch.delenv(DEV_MODE_ENV, raising=False)
    kf = KeyFile(did_suffix="s")
    kf.put("update", generate_key_pair())

    with pytest.raises(KeyFileError):
        kf.save(temp_dir / "k.json")

    monkeypatch.setenv(DEV_MODE_ENV, "1")
    kf.save(temp_dir / "k.json")
    assert "DEVELOPMENT MODE" in (temp_dir / "k.json").read_text()
    assert KeyFile.load(temp_dir / "k.json").keys == kf.keys


def test_missing_file_and_missing_key(temp_dir: Path) -> None:
    with pytest.raises(KeyFileError):
        KeyFile.load(temp_dir / "nope.json")
    with pytest.raises(KeyFileError):
        KeyFile(did_suffix="s").key_pair("update")
