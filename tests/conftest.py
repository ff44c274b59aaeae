from __future__ import annotations

import logging
import shutil
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

# uv/pytest may run without installing the project; ensure repo root is importable.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from didanchor.batching.cas import MemoryCas  # noqa: E402
from didanchor.core.config import Config  # noqa: E402
from didanchor.protocol.models import DidState, PublicKeyPurpose  # noqa: E402
from didanchor.protocol.operations import CreateResult, build_create  # noqa: E402
from didanchor.protocol.patches import PublicKeyInput  # noqa: E402
from didanchor.protocol.state import apply_operation  # noqa: E402

GENERAL_AUTH = frozenset({PublicKeyPurpose.GENERAL, PublicKeyPurpose.AUTHENTICATION})


@pytest.fixture()
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture()
def test_config(temp_dir: Path) -> Config:
    """Config fixture that points data_dir and the file store to a temp directory."""

    cfg_dst_dir = temp_dir / "config"
    shutil.copytree(REPO_ROOT / "config", cfg_dst_dir)

    c = Config.from_yaml(cfg_dst_dir / "default.yaml")
    cas = c.cas.model_copy(update={"root": temp_dir / "data" / "cas"})
    return c.model_copy(update={"data_dir": temp_dir / "data", "config_dir": cfg_dst_dir, "cas": cas})


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    """configure_logging() detaches the package logger from root; undo that between tests."""

    yield
    logger = logging.getLogger("didanchor")
    for h in list(logger.handlers):
        if getattr(h, "_didanchor_handler", False):
            logger.removeHandler(h)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture()
def cas() -> MemoryCas:
    return MemoryCas()


@pytest.fixture()
def make_did() -> Callable[..., tuple[CreateResult, DidState]]:
    """Create a DID with one general+authentication key ``k1`` and apply it."""

    def _make(key_ids: tuple[str, ...] = ("k1",)) -> tuple[CreateResult, DidState]:
        result = build_create([PublicKeyInput(id=k, purposes=GENERAL_AUTH) for k in key_ids])
        return result, apply_operation(None, result.operation)

    return _make


@pytest.fixture()
def created(make_did: Callable[..., tuple[CreateResult, DidState]]) -> tuple[CreateResult, DidState]:
    return make_did()
