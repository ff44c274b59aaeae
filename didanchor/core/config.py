"""didanchor.core.config

Three config surfaces only:
1) `config/default.yaml` + `config/networks/<network>.yaml`
2) Environment variables (`DIDANCHOR_` prefix, `__` for nesting)
3) Explicit overrides passed by the caller

Everything else is derived.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from didanchor.core.exceptions import ConfigError


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class DidConfig(BaseModel):
    """DID scheme: ``did:<method>:<network>:<suffix>``."""

    method: str = "anchor"
    network: Literal["main", "test"] = "test"

    @field_validator("method")
    @classmethod
    def method_is_lowercase_alnum(cls, v: str) -> str:
        if not v or not v.isalnum() or v.lower() != v:
            raise ValueError("did method must be lowercase alphanumeric")
        return v


class BatchConfig(BaseModel):
    """Per-batch ceilings. Sizes are compressed bytes."""

    max_anchor_file_bytes: int = 1_000_000
    max_map_file_bytes: int = 1_000_000
    max_chunk_file_bytes: int = 10_000_000
    max_operations: int = 10_000

    @field_validator("max_anchor_file_bytes", "max_map_file_bytes", "max_chunk_file_bytes", "max_operations")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("batch ceilings must be >= 1")
        return v


class CasConfig(BaseModel):
    backend: Literal["memory", "file", "http"] = "file"
    root: Path = Path("data/cas")
    url: str = "http://127.0.0.1:5001/cas"
    timeout_s: float = 20.0
    max_retries: int = 3


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class Config(BaseSettings):
    """Root configuration. Single source of truth."""

    data_dir: Path = Path("data")
    config_dir: Path = Path("config")

    did: DidConfig = Field(default_factory=DidConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    cas: CasConfig = Field(default_factory=CasConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_prefix": "DIDANCHOR_", "env_nested_delimiter": "__"}

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        raw = yaml.safe_load(path.read_text()) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file must be a mapping: {path}")

        network = (raw.get("did") or {}).get("network", "test")
        network_path = path.parent / "networks" / f"{network}.yaml"
        if network_path.exists():
            network_data = yaml.safe_load(network_path.read_text()) or {}
            raw = _deep_merge(network_data, raw)

        return cls(**raw)

    @classmethod
    def from_repo_defaults(cls, repo_root: Path | None = None) -> Config:
        root = repo_root or Path.cwd()
        return cls.from_yaml(root / "config" / "default.yaml")
