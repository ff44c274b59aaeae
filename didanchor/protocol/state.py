"""didanchor.protocol.state

DID state machine.

CREATED / UPDATED / RECOVERED -> UPDATED | RECOVERED | DEACTIVATED
DEACTIVATED is terminal.

``apply_operation`` is pure: same state and operation, same result. ``replay``
is a left fold of ``apply_operation`` over an identifier's operation log, so
replaying the same log always yields the same state regardless of how the
operations were batched.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Final

from didanchor.core.exceptions import (
    DeltaHashMismatchError,
    DidAnchorError,
    DidDeactivatedError,
    InputError,
    InvalidInputError,
    InvalidOperationOrderError,
)
from didanchor.protocol.models import (
    CreateOperation,
    DeactivateOperation,
    DeactivateSignedData,
    DidState,
    DidStatus,
    Operation,
    RecoverOperation,
    RecoverSignedData,
    UpdateOperation,
    UpdateSignedData,
    decode_delta,
    decode_signed_data,
    decode_suffix_data,
    delta_hash_of,
    operation_hash,
    parse_operation,
)
from didanchor.protocol.patches import apply_patches, require_replace_only, require_update_patches
from didanchor.security.jws import require_valid
from didanchor.security.keys import require_reveal

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Final[dict[DidStatus, set[DidStatus]]] = {
    DidStatus.CREATED: {DidStatus.UPDATED, DidStatus.RECOVERED, DidStatus.DEACTIVATED},
    DidStatus.UPDATED: {DidStatus.UPDATED, DidStatus.RECOVERED, DidStatus.DEACTIVATED},
    DidStatus.RECOVERED: {DidStatus.UPDATED, DidStatus.RECOVERED, DidStatus.DEACTIVATED},
    DidStatus.DEACTIVATED: set(),
}


def _transition(state: DidState, new_status: DidStatus, **changes: Any) -> DidState:
    if new_status not in ALLOWED_TRANSITIONS[state.status]:
        raise InvalidOperationOrderError(f"invalid transition {state.status} -> {new_status}")
    return state.model_copy(update={"status": new_status, **changes})


def _require_delta_hash(encoded_delta: str, signed_hash: str) -> None:
    if delta_hash_of(encoded_delta) != signed_hash:
        raise DeltaHashMismatchError("delta does not hash to the committed delta hash")


def _apply_create(op: CreateOperation) -> DidState:
    suffix_data = decode_suffix_data(op.suffix_data)
    _require_delta_hash(op.delta, suffix_data.delta_hash)
    delta = decode_delta(op.delta)
    replace = require_replace_only(delta.patches)
    document = apply_patches(None, [replace])
    return DidState(
        did_suffix=op.did_suffix,
        status=DidStatus.CREATED,
        document=document,
        update_commitment=delta.update_commitment,
        recovery_commitment=suffix_data.recovery_commitment,
        last_operation_hash=operation_hash(op),
    )


def _apply_update(state: DidState, op: UpdateOperation) -> DidState:
    signed = decode_signed_data(UpdateSignedData, op.signed_data)
    require_reveal(signed.previous_update_key, state.update_commitment)
    require_valid(op.signed_data, signed.previous_update_key)
    _require_delta_hash(op.delta, signed.delta_hash)
    delta = decode_delta(op.delta)
    require_update_patches(delta.patches)
    document = apply_patches(state.document, delta.patches)
    return _transition(
        state,
        DidStatus.UPDATED,
        document=document,
        update_commitment=delta.update_commitment,
        last_operation_hash=operation_hash(op),
    )


def _apply_recover(state: DidState, op: RecoverOperation) -> DidState:
    signed = decode_signed_data(RecoverSignedData, op.signed_data)
    require_reveal(signed.previous_recovery_key, state.recovery_commitment)
    require_valid(op.signed_data, signed.previous_recovery_key)
    _require_delta_hash(op.delta, signed.delta_hash)
    delta = decode_delta(op.delta)
    replace = require_replace_only(delta.patches)
    document = apply_patches(None, [replace])
    return _transition(
        state,
        DidStatus.RECOVERED,
        document=document,
        update_commitment=delta.update_commitment,
        recovery_commitment=signed.next_recovery_commitment,
        last_operation_hash=operation_hash(op),
    )


def _apply_deactivate(state: DidState, op: DeactivateOperation) -> DidState:
    signed = decode_signed_data(DeactivateSignedData, op.signed_data)
    require_reveal(signed.previous_recovery_key, state.recovery_commitment)
    require_valid(op.signed_data, signed.previous_recovery_key)
    if signed.did_suffix != state.did_suffix:
        raise InvalidInputError("signed suffix does not match the deactivated DID")
    return _transition(
        state,
        DidStatus.DEACTIVATED,
        document=None,
        update_commitment=None,
        recovery_commitment=None,
        last_operation_hash=operation_hash(op),
    )


def apply_operation(state: DidState | None, operation: Operation | dict) -> DidState:
    """Return the state after ``operation``. Raises; never returns a partial state."""

    op = parse_operation(operation)

    if state is not None and state.deactivated:
        raise DidDeactivatedError(f"{state.did_suffix} is deactivated")

    if isinstance(op, CreateOperation):
        if state is not None:
            raise InvalidOperationOrderError(f"{state.did_suffix} already exists")
        return _apply_create(op)

    if state is None:
        raise InvalidOperationOrderError(f"{op.type} before create for {op.did_suffix}")
    if op.did_suffix != state.did_suffix:
        raise InvalidInputError(f"operation targets {op.did_suffix}, state is {state.did_suffix}")

    match op:
        case UpdateOperation():
            return _apply_update(state, op)
        case RecoverOperation():
            return _apply_recover(state, op)
        case DeactivateOperation():
            return _apply_deactivate(state, op)
    raise InputError(f"unsupported operation type: {op.type}")


def replay(operations: Iterable[Operation | dict], *, strict: bool = True) -> DidState | None:
    """Fold an identifier's operation log into its current state.

    With ``strict=False`` an operation that fails protocol validation is
    skipped and logged. That is the losing side of a race: two operations
    revealing the same commitment, anchored in different batches.
    """

    state: DidState | None = None
    for index, operation in enumerate(operations):
        try:
            state = apply_operation(state, operation)
        except DidAnchorError as e:
            if strict:
                raise
            logger.warning(
                "operation_skipped",
                extra={
                    "index": index,
                    "code": e.code,
                    "did_suffix": state.did_suffix if state is not None else None,
                },
            )
    return state
