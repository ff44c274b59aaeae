"""didanchor.batching.batch

Batch encoder.

One anchoring round: many identifiers, at most one operation each, packed
into a chunk file, a map file and an anchor file. The ledger gets
``<count>-ANCHOR-<anchor file address>``.

Everything is checked before anything is written. A batch either fits and is
written whole (chunk, then map, then anchor) or nothing reaches the store.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from didanchor.batching.cas import ContentAddressableStore, compress, content_address
from didanchor.batching.files import (
    AnchorFile,
    AnchorOperations,
    BatchFile,
    ChunkFile,
    ChunkReference,
    CreateReference,
    MapFile,
    MapOperations,
    SignedReference,
    section,
)
from didanchor.core.config import BatchConfig
from didanchor.core.encoding import is_encoded_multihash
from didanchor.core.exceptions import (
    BeyondCountLimitError,
    CasError,
    FileSizeExceedsLimitError,
    InvalidInputError,
    RepeatedDidError,
)
from didanchor.protocol.models import (
    CreateOperation,
    DeactivateOperation,
    Operation,
    RecoverOperation,
    UpdateOperation,
    parse_operation,
)

logger = logging.getLogger(__name__)

ANCHOR_STRING_SEPARATOR = "-ANCHOR-"

# Decompressed files may be at most this many times their compressed ceiling.
MAX_DECOMPRESSION_RATIO = 3

_COUNT = re.compile(r"^[1-9][0-9]*$")


@dataclass(frozen=True)
class AnchoredBatch:
    anchor_string: str
    anchor_file_uri: str
    map_file_uri: str | None
    chunk_file_uri: str | None
    anchor_file: AnchorFile
    map_file: MapFile | None
    chunk_file: ChunkFile | None
    operations: tuple[Operation, ...]

    @property
    def operation_count(self) -> int:
        return len(self.operations)


@dataclass(frozen=True)
class _Groups:
    create: list[CreateOperation]
    recover: list[RecoverOperation]
    update: list[UpdateOperation]
    deactivate: list[DeactivateOperation]


def _require_unique(operations: Iterable[Operation]) -> None:
    seen: set[str] = set()
    for op in operations:
        suffix = op.did_suffix
        if suffix in seen:
            raise RepeatedDidError(f"{suffix} appears more than once in the batch")
        seen.add(suffix)


def _require_count(count: int, limits: BatchConfig) -> None:
    if count > limits.max_operations:
        raise BeyondCountLimitError(f"{count} operations, limit {limits.max_operations}")


def _encode_file(name: str, file: BatchFile, limit: int) -> bytes:
    """Compressed bytes of ``file``, within the ceilings a reader will apply."""

    raw = file.to_bytes()
    if len(raw) > limit * MAX_DECOMPRESSION_RATIO:
        raise FileSizeExceedsLimitError(
            f"{name} file is {len(raw)} bytes uncompressed, limit {limit * MAX_DECOMPRESSION_RATIO}"
        )
    data = compress(raw)
    if len(data) > limit:
        raise FileSizeExceedsLimitError(f"{name} file is {len(data)} bytes compressed, limit {limit}")
    return data


def _group(operations: Iterable[Operation]) -> _Groups:
    groups = _Groups(create=[], recover=[], update=[], deactivate=[])
    for op in operations:
        match op:
            case CreateOperation():
                groups.create.append(op)
            case RecoverOperation():
                groups.recover.append(op)
            case UpdateOperation():
                groups.update.append(op)
            case DeactivateOperation():
                groups.deactivate.append(op)
    return groups


def _signed_refs(ops: Iterable[RecoverOperation | UpdateOperation | DeactivateOperation]) -> list[SignedReference]:
    return [SignedReference(did_suffix=op.did_suffix, signed_data=op.signed_data) for op in ops]


def _write(cas: ContentAddressableStore, data: bytes, expected_uri: str) -> None:
    uri = cas.write(data)
    if uri != expected_uri:
        raise CasError(f"store returned {uri}, expected {expected_uri}")


def encode_batch(
    operations: Iterable[Operation | dict],
    cas: ContentAddressableStore,
    limits: BatchConfig | None = None,
    writer_lock_id: str | None = None,
) -> AnchoredBatch:
    limits = limits or BatchConfig()
    ops = [parse_operation(o) for o in operations]
    if not ops:
        raise InvalidInputError("batch is empty")
    _require_unique(ops)
    _require_count(len(ops), limits)

    groups = _group(ops)
    deltas = [op.delta for op in (*groups.create, *groups.recover, *groups.update)]

    chunk_file: ChunkFile | None = None
    chunk_bytes = b""
    chunk_uri: str | None = None
    map_file: MapFile | None = None
    map_bytes = b""
    map_uri: str | None = None

    if deltas:
        chunk_file = ChunkFile(deltas=deltas)
        chunk_bytes = _encode_file("chunk", chunk_file, limits.max_chunk_file_bytes)
        chunk_uri = content_address(chunk_bytes)

        map_file = MapFile(
            chunks=[ChunkReference(chunk_file_uri=chunk_uri)],
            operations=MapOperations(update=section(_signed_refs(groups.update))),
        )
        map_bytes = _encode_file("map", map_file, limits.max_map_file_bytes)
        map_uri = content_address(map_bytes)

    anchor_file = AnchorFile(
        writer_lock_id=writer_lock_id,
        map_file_uri=map_uri,
        operations=AnchorOperations(
            create=section([CreateReference(suffix_data=op.suffix_data) for op in groups.create]),
            recover=section(_signed_refs(groups.recover)),
            deactivate=section(_signed_refs(groups.deactivate)),
        ),
    )
    anchor_bytes = _encode_file("anchor", anchor_file, limits.max_anchor_file_bytes)
    anchor_uri = content_address(anchor_bytes)

    if chunk_uri is not None and map_uri is not None:
        _write(cas, chunk_bytes, chunk_uri)
        _write(cas, map_bytes, map_uri)
    _write(cas, anchor_bytes, anchor_uri)

    anchor_string = f"{len(ops)}{ANCHOR_STRING_SEPARATOR}{anchor_uri}"
    logger.info(
        "batch_anchored",
        extra={
            "operations": len(ops),
            "anchor_file_uri": anchor_uri,
            "anchor_bytes": len(anchor_bytes),
            "map_bytes": len(map_bytes),
            "chunk_bytes": len(chunk_bytes),
        },
    )
    return AnchoredBatch(
        anchor_string=anchor_string,
        anchor_file_uri=anchor_uri,
        map_file_uri=map_uri,
        chunk_file_uri=chunk_uri,
        anchor_file=anchor_file,
        map_file=map_file,
        chunk_file=chunk_file,
        operations=tuple(ops),
    )


def parse_anchor_string(anchor_string: str) -> tuple[int, str]:
    count, sep, uri = anchor_string.partition(ANCHOR_STRING_SEPARATOR)
    if not sep or not _COUNT.match(count):
        raise InvalidInputError(f"malformed anchor string: {anchor_string!r}")
    if not is_encoded_multihash(uri):
        raise InvalidInputError(f"anchor string does not end in a content address: {anchor_string!r}")
    return int(count), uri


def decode_batch(
    anchor_string: str,
    cas: ContentAddressableStore,
    limits: BatchConfig | None = None,
) -> list[Operation]:
    """Read a batch back from the store.

    Operations come back grouped Create, Recover, Update, Deactivate, each
    group in the order it was written.
    """

    limits = limits or BatchConfig()
    count, anchor_uri = parse_anchor_string(anchor_string)
    _require_count(count, limits)

    anchor = AnchorFile.from_compressed(
        cas.read(anchor_uri, limits.max_anchor_file_bytes),
        limits.max_anchor_file_bytes * MAX_DECOMPRESSION_RATIO,
    )
    creates = anchor.operations.create or []
    recovers = anchor.operations.recover or []
    deactivates = anchor.operations.deactivate or []
    updates: list[SignedReference] = []
    deltas: list[str] = []

    if anchor.map_file_uri is not None:
        map_file = MapFile.from_compressed(
            cas.read(anchor.map_file_uri, limits.max_map_file_bytes),
            limits.max_map_file_bytes * MAX_DECOMPRESSION_RATIO,
        )
        updates = map_file.operations.update or []
        if len(map_file.chunks) != 1:
            raise InvalidInputError(f"map file must reference exactly one chunk, found {len(map_file.chunks)}")
        chunk = ChunkFile.from_compressed(
            cas.read(map_file.chunks[0].chunk_file_uri, limits.max_chunk_file_bytes),
            limits.max_chunk_file_bytes * MAX_DECOMPRESSION_RATIO,
        )
        deltas = chunk.deltas

    expected_deltas = len(creates) + len(recovers) + len(updates)
    if len(deltas) != expected_deltas:
        raise InvalidInputError(f"chunk file has {len(deltas)} deltas, expected {expected_deltas}")

    remaining = iter(deltas)
    ops: list[Operation] = [CreateOperation(suffix_data=c.suffix_data, delta=next(remaining)) for c in creates]
    ops += [
        RecoverOperation(did_suffix=r.did_suffix, signed_data=r.signed_data, delta=next(remaining)) for r in recovers
    ]
    ops += [
        UpdateOperation(did_suffix=u.did_suffix, signed_data=u.signed_data, delta=next(remaining)) for u in updates
    ]
    ops += [DeactivateOperation(did_suffix=d.did_suffix, signed_data=d.signed_data) for d in deactivates]

    if len(ops) != count:
        raise InvalidInputError(f"anchor string declares {count} operations, files carry {len(ops)}")
    _require_unique(ops)
    logger.debug("batch_decoded", extra={"operations": count, "anchor_file_uri": anchor_uri})
    return ops
