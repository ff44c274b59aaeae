from __future__ import annotations

import json
import shutil
from pathlib import Path

import pytest

from didanchor import __version__
from didanchor.cli import main
from didanchor.core.database import OperationStore
from didanchor.security.keyfile import DEV_MODE_ENV, PASSWORD_ENV

REPO_ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture()
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    shutil.copytree(REPO_ROOT / "config", tmp_path / "config")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(PASSWORD_ENV, raising=False)
    monkeypatch.setenv(DEV_MODE_ENV, "1")
    return tmp_path


def _write(path: Path, obj: object) -> Path:
    path.write_text(json.dumps(obj), encoding="utf-8")
    return path


def _out(capsys: pytest.CaptureFixture[str]) -> str:
    return capsys.readouterr().out


def _keys(path: Path) -> dict[str, dict[str, str]]:
    return json.loads(path.read_text(encoding="utf-8"))["keys"]


def test_version(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--version"]) == 0
    assert __version__ in _out(capsys)


def test_no_command_is_usage_error() -> None:
    assert main([]) == 2


def test_create_anchor_resolve(workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    create_in = _write(
        workdir / "create.json",
        {
            "public_keys": [{"id": "k1", "purposes": ["general", "authentication"]}],
            "services": [{"id": "hub", "type": "IdentityHub", "endpoint": "https://hub.example.com"}],
        },
    )
    assert main(["create", "--input", str(create_in)]) == 0
    created = json.loads(_out(capsys))
    did = created["did"]
    assert did.startswith("did:anchor:test:")
    assert Path(created["keys"]).exists()

    # Unanchored: long form resolves, short form does not.
    assert main(["resolve", created["long_form_did"]]) == 0
    assert json.loads(_out(capsys))["id"] == did
    assert main(["resolve", did]) == 1

    assert main(["anchor"]) == 0
    assert _out(capsys).strip().startswith("1-ANCHOR-")

    assert main(["resolve", did, "--metadata"]) == 0
    result = json.loads(_out(capsys))
    doc = result["didDocument"]
    assert doc["authentication"] == [f"{did}#k1"]
    assert doc["service"][0]["serviceEndpoint"] == "https://hub.example.com"
    assert result["methodMetadata"]["status"] == "created"


def test_update_then_deactivate(workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    create_in = _write(workdir / "create.json", {"public_keys": [{"id": "k1", "purposes": ["general"]}]})
    keys = workdir / "keys.json"
    assert main(["create", "--input", str(create_in), "--keys-out", str(keys)]) == 0
    did = json.loads(_out(capsys))["did"]
    assert main(["anchor"]) == 0
    _out(capsys)

    update_in = _write(
        workdir / "update.json",
        {"add_public_keys": [{"id": "k2", "purposes": ["assertion"]}]},
    )
    assert main(["update", "--did", did, "--keys", str(keys), "--input", str(update_in)]) == 0
    assert main(["anchor"]) == 0
    _out(capsys)

    assert main(["resolve", did]) == 0
    doc = json.loads(_out(capsys))
    assert doc["assertionMethod"][0]["id"] == f"{did}#k2"

    assert main(["deactivate", "--did", did, "--keys", str(keys)]) == 0
    assert main(["anchor"]) == 0
    _out(capsys)

    assert main(["resolve", did]) == 1
    # Nothing follows a deactivation.
    assert main(["update", "--did", did, "--keys", str(keys), "--input", str(update_in)]) == 1


def test_anchor_with_empty_queue(workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["anchor"]) == 0
    assert "nothing to anchor" in capsys.readouterr().err


def test_missing_input_file_is_usage_error(workdir: Path) -> None:
    assert main(["create", "--input", str(workdir / "nope.json")]) == 2


def test_invalid_key_input_is_protocol_error(workdir: Path) -> None:
    bad = _write(workdir / "bad.json", {"public_keys": [{"id": "k1", "purposes": ["telepathy"]}]})
    assert main(["create", "--input", str(bad)]) == 1


def test_missing_config_is_usage_error(workdir: Path) -> None:
    assert main(["--config", str(workdir / "missing.yaml"), "anchor"]) == 2


def test_plaintext_keys_refused_without_dev_mode(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(DEV_MODE_ENV)
    create_in = _write(workdir / "create.json", {"public_keys": [{"id": "k1", "purposes": ["general"]}]})
    assert main(["create", "--input", str(create_in)]) == 1


def test_rotated_keys_wait_for_anchoring(workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    create_in = _write(workdir / "create.json", {"public_keys": [{"id": "k1", "purposes": ["general"]}]})
    keys = workdir / "keys.json"
    assert main(["create", "--input", str(create_in), "--keys-out", str(keys)]) == 0
    did = json.loads(_out(capsys))["did"]
    assert main(["anchor"]) == 0
    _out(capsys)

    recover_in = _write(workdir / "recover.json", {"public_keys": [{"id": "r1", "purposes": ["general"]}]})
    anchored = _keys(keys)
    assert main(["recover", "--did", did, "--keys", str(keys), "--input", str(recover_in)]) == 0
    staged = _keys(keys)
    assert staged["update"] == anchored["update"]
    assert staged["recovery"] == anchored["recovery"]
    assert {"next_update", "next_recovery"} <= staged.keys()

    # The queued recover is dropped and never anchored.
    with OperationStore(workdir / "data" / "operations.db") as store, store.conn:
        store.conn.execute("DELETE FROM pending")

    assert main(["recover", "--did", did, "--keys", str(keys), "--input", str(recover_in)]) == 0
    staged = _keys(keys)
    assert staged["recovery"] == anchored["recovery"]
    assert main(["anchor"]) == 0
    _out(capsys)

    update_in = _write(workdir / "update.json", {"add_public_keys": [{"id": "k2", "purposes": ["general"]}]})
    assert main(["update", "--did", did, "--keys", str(keys), "--input", str(update_in)]) == 0
    rotated = _keys(keys)
    assert rotated["update"] == staged["next_update"]
    assert rotated["recovery"] == staged["next_recovery"]
    assert "next_recovery" not in rotated
    assert main(["anchor"]) == 0
    _out(capsys)

    assert main(["resolve", did, "--metadata"]) == 0
    result = json.loads(_out(capsys))
    assert [k["id"] for k in result["didDocument"]["publicKey"]] == [f"{did}#r1", f"{did}#k2"]
    assert result["methodMetadata"]["status"] == "updated"

    assert main(["deactivate", "--did", did, "--keys", str(keys)]) == 0
    assert main(["anchor"]) == 0
    _out(capsys)
    assert main(["resolve", did]) == 1
