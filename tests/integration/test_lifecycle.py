"""End-to-end: build operations, anchor them in batches, read them back, replay.

Nothing here talks to the network. Batches go to a file-backed content store
and anchored operations to a SQLite operation log.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from didanchor.batching.batch import decode_batch, encode_batch
from didanchor.batching.cas import FileCas
from didanchor.core.config import BatchConfig
from didanchor.core.database import OperationStore
from didanchor.core.encoding import encode_json
from didanchor.core.exceptions import (
    BeyondCountLimitError,
    DidDeactivatedError,
    FileSizeExceedsLimitError,
    RepeatedDidError,
)
from didanchor.protocol.models import CreateOperation, DidStatus, Operation, PublicKeyPurpose
from didanchor.protocol.operations import build_create, build_deactivate, build_recover, build_update
from didanchor.protocol.patches import PublicKeyInput, add_public_keys_patch
from didanchor.protocol.resolver import resolve
from didanchor.protocol.scheme import DidScheme
from didanchor.protocol.state import apply_operation, replay

GENERAL_AUTH = frozenset({PublicKeyPurpose.GENERAL, PublicKeyPurpose.AUTHENTICATION})


def _anchor(ops: list[Operation], cas: FileCas, store: OperationStore) -> None:
    """Anchor ``ops`` as one batch, then ingest the batch as an observer would."""

    batch = encode_batch(ops, cas)
    store.append_batch(decode_batch(batch.anchor_string, cas), batch.anchor_string)


def test_create_update_deactivate(temp_dir: Path) -> None:
    cas = FileCas(temp_dir / "cas")
    with OperationStore(temp_dir / "operations.db") as store:
        create = build_create([PublicKeyInput(id="k1", purposes=GENERAL_AUTH)])
        scheme = DidScheme(method="anchor", network="test", suffix=create.did_suffix)
        _anchor([create.operation], cas, store)

        state = replay(store.iter_operations(create.did_suffix))
        assert state is not None and state.status == DidStatus.CREATED
        assert resolve(state, scheme).authentication == [f"{scheme.did}#k1"]

        patch, new_keys = add_public_keys_patch(
            [PublicKeyInput(id="k2", purposes=frozenset({PublicKeyPurpose.GENERAL}))]
        )
        update = build_update(state, create.update_key, [patch], document_keys=new_keys)
        _anchor([update.operation], cas, store)

        state = replay(store.iter_operations(create.did_suffix))
        assert state is not None and state.status == DidStatus.UPDATED
        doc = resolve(state, scheme)
        assert [m.id for m in doc.public_key or []] == [f"{scheme.did}#k1", f"{scheme.did}#k2"]
        # Update rotates only the update commitment.
        assert state.update_commitment == update.update_key.commitment()
        assert state.recovery_commitment == create.recovery_key.commitment()

        deactivate = build_deactivate(state, create.recovery_key)
        _anchor([deactivate.operation], cas, store)

        final = replay(store.iter_operations(create.did_suffix))
        assert final is not None and final.deactivated
        with pytest.raises(DidDeactivatedError):
            resolve(final, scheme)
        with pytest.raises(DidDeactivatedError):
            build_update(final, update.update_key, [])

        # An update signed before deactivation is still refused afterwards.
        stale = build_update(state, update.update_key, [])
        with pytest.raises(DidDeactivatedError):
            apply_operation(final, stale.operation)

        assert store.verify_hash_chain() is True


def _history() -> tuple[list[Operation], list[str]]:
    """Two DIDs, five operations, in the order they were built."""

    a = build_create([PublicKeyInput(id="a1", purposes=GENERAL_AUTH)])
    b = build_create([PublicKeyInput(id="b1", purposes=GENERAL_AUTH)])
    a_state = apply_operation(None, a.operation)
    b_state = apply_operation(None, b.operation)

    a_update = build_update(a_state, a.update_key, [])
    a_state = apply_operation(a_state, a_update.operation)

    patch, _ = add_public_keys_patch([PublicKeyInput(id="b2", purposes=GENERAL_AUTH)])
    b_update = build_update(b_state, b.update_key, [patch])

    a_recover = build_recover(a_state, a.recovery_key, [PublicKeyInput(id="r1", purposes=GENERAL_AUTH)])

    ops = [a.operation, b.operation, a_update.operation, b_update.operation, a_recover.operation]
    return ops, [a.did_suffix, b.did_suffix]


def test_replay_is_independent_of_batch_grouping(temp_dir: Path) -> None:
    ops, suffixes = _history()
    create_a, create_b, update_a, update_b, recover_a = ops

    groupings = {
        "one_per_batch": [[op] for op in ops],
        "grouped": [[create_a, create_b], [update_a, update_b], [recover_a]],
        "reordered_within_batch": [[create_b, create_a], [update_b, update_a], [recover_a]],
    }

    final_states = {}
    for name, batches in groupings.items():
        cas = FileCas(temp_dir / name / "cas")
        with OperationStore(temp_dir / name / "operations.db") as store:
            for batch in batches:
                _anchor(batch, cas, store)
            final_states[name] = {s: replay(store.iter_operations(s)) for s in suffixes}

    first, *rest = final_states.values()
    assert all(states == first for states in rest)

    a_state = first[suffixes[0]]
    assert a_state is not None and a_state.status == DidStatus.RECOVERED
    assert a_state.document is not None and a_state.document.key_ids() == ["r1"]
    b_state = first[suffixes[1]]
    assert b_state is not None and b_state.document is not None
    assert b_state.document.key_ids() == ["b1", "b2"]


def test_repeated_did_writes_nothing(temp_dir: Path) -> None:
    root = temp_dir / "cas"
    cas = FileCas(root)
    create = build_create([PublicKeyInput(id="k1", purposes=GENERAL_AUTH)])
    state = apply_operation(None, create.operation)
    update = build_update(state, create.update_key, [])
    deactivate = build_deactivate(state, create.recovery_key)

    with pytest.raises(RepeatedDidError):
        encode_batch([update.operation, deactivate.operation], cas)
    assert [p for p in root.rglob("*") if p.is_file()] == []


def test_count_ceiling(temp_dir: Path) -> None:
    ops = [
        CreateOperation(suffix_data=encode_json({"n": i}), delta=encode_json({"p": []}))
        for i in range(10_001)
    ]
    root = temp_dir / "cas"
    with pytest.raises(BeyondCountLimitError):
        encode_batch(ops, FileCas(root))
    assert [p for p in root.rglob("*") if p.is_file()] == []


def test_oversized_chunk_is_rejected(temp_dir: Path) -> None:
    ops = [build_create([PublicKeyInput(id="k1", purposes=GENERAL_AUTH)]).operation for _ in range(3)]
    with pytest.raises(FileSizeExceedsLimitError):
        encode_batch(ops, FileCas(temp_dir / "cas"), BatchConfig(max_chunk_file_bytes=64))
