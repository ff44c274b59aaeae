"""didanchor.batching.files

The three batch files.

- Anchor file: compact references for Create, Recover and Deactivate, plus
  the map file address. Its address goes on the ledger.
- Map file: compact references for Update, plus the chunk file address.
- Chunk file: every delta in the batch, Create then Recover then Update.

Each is canonical JSON, gzip-compressed before it is written.
"""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError

from didanchor.batching.cas import compress, decompress
from didanchor.core.encoding import canonicalize
from didanchor.core.exceptions import InvalidInputError

_F = TypeVar("_F", bound="BatchFile")


class CreateReference(BaseModel):
    suffix_data: str

    model_config = {"frozen": True}


class SignedReference(BaseModel):
    """Recover, Deactivate and Update: the suffix and its signed data."""

    did_suffix: str
    signed_data: str

    model_config = {"frozen": True}


class AnchorOperations(BaseModel):
    create: list[CreateReference] | None = None
    recover: list[SignedReference] | None = None
    deactivate: list[SignedReference] | None = None

    model_config = {"frozen": True}


class MapOperations(BaseModel):
    update: list[SignedReference] | None = None

    model_config = {"frozen": True}


class ChunkReference(BaseModel):
    chunk_file_uri: str

    model_config = {"frozen": True}


class BatchFile(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    def to_bytes(self) -> bytes:
        """Canonical JSON of the file, absent sections dropped."""

        return canonicalize(self.model_dump(mode="json", exclude_none=True))

    def compressed(self) -> bytes:
        return compress(self.to_bytes())

    @classmethod
    def from_compressed(cls: type[_F], data: bytes, max_size: int) -> _F:
        return cls.from_bytes(decompress(data, max_size))

    @classmethod
    def from_bytes(cls: type[_F], data: bytes) -> _F:
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise InvalidInputError(f"invalid {cls.__name__}: {e.errors()[0]['msg']}") from e


class AnchorFile(BatchFile):
    writer_lock_id: str | None = None
    map_file_uri: str | None = None
    operations: AnchorOperations = Field(default_factory=AnchorOperations)


class MapFile(BatchFile):
    chunks: list[ChunkReference]
    operations: MapOperations = Field(default_factory=MapOperations)


class ChunkFile(BatchFile):
    deltas: list[str]


def section(items: list[Any]) -> list[Any] | None:
    """Empty sections are omitted from the file, not written as ``[]``."""

    return items or None
