"""didanchor.protocol.operations

Operation builder.

Each builder checks the caller holds the key behind the prior state's
commitment, validates the change locally, and returns the operation together
with every freshly generated private key. Nothing private stays on the
operation.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from didanchor.core.exceptions import DidDeactivatedError, InputError
from didanchor.protocol.models import (
    CreateOperation,
    DeactivateOperation,
    DeactivateSignedData,
    Delta,
    DidState,
    Patch,
    RecoverOperation,
    RecoverSignedData,
    Replace,
    ServiceEndpoint,
    SuffixData,
    UpdateOperation,
    UpdateSignedData,
    delta_hash_of,
    parse_patch,
)
from didanchor.protocol.patches import (
    PublicKeyInput,
    apply_patches,
    build_document,
    require_update_patches,
)
from didanchor.security.jws import sign_compact
from didanchor.security.keys import KeyPair, require_reveal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreateResult:
    operation: CreateOperation
    did_suffix: str
    update_key: KeyPair
    recovery_key: KeyPair
    document_keys: dict[str, KeyPair] = field(default_factory=dict)


@dataclass(frozen=True)
class UpdateResult:
    operation: UpdateOperation
    did_suffix: str
    update_key: KeyPair
    document_keys: dict[str, KeyPair] = field(default_factory=dict)


@dataclass(frozen=True)
class RecoverResult:
    operation: RecoverOperation
    did_suffix: str
    update_key: KeyPair
    recovery_key: KeyPair
    document_keys: dict[str, KeyPair] = field(default_factory=dict)


@dataclass(frozen=True)
class DeactivateResult:
    operation: DeactivateOperation
    did_suffix: str


def _require_live(state: DidState) -> None:
    if state is None:
        raise InputError("prior state is required")
    if state.deactivated:
        raise DidDeactivatedError(f"{state.did_suffix} is deactivated")


def _encode_delta(patches: Sequence[Patch], update_key: KeyPair) -> tuple[str, str]:
    delta = Delta(patches=tuple(patches), update_commitment=update_key.commitment())
    encoded = delta.encode()
    return encoded, delta_hash_of(encoded)


def build_create(
    public_keys: Sequence[PublicKeyInput],
    services: Sequence[ServiceEndpoint] = (),
) -> CreateResult:
    document, document_keys = build_document(public_keys, services)
    update_key = KeyPair.generate()
    recovery_key = KeyPair.generate()

    delta, delta_hash = _encode_delta([Replace(document=document)], update_key)
    suffix_data = SuffixData(delta_hash=delta_hash, recovery_commitment=recovery_key.commitment())
    operation = CreateOperation(suffix_data=suffix_data.encode(), delta=delta)

    did_suffix = operation.did_suffix
    logger.info("create_built", extra={"did_suffix": did_suffix, "keys": len(document.public_keys)})
    return CreateResult(
        operation=operation,
        did_suffix=did_suffix,
        update_key=update_key,
        recovery_key=recovery_key,
        document_keys=document_keys,
    )


def build_update(
    prior_state: DidState,
    update_key: KeyPair,
    patches: Sequence[Patch | dict],
    *,
    document_keys: dict[str, KeyPair] | None = None,
) -> UpdateResult:
    """Sign ``patches`` with the key behind ``prior_state.update_commitment``.

    ``document_keys`` passes through private halves the caller generated for
    keys added by ``patches`` (see ``add_public_keys_patch``).
    """

    _require_live(prior_state)
    revealed = update_key.public_jwk()
    require_reveal(revealed, prior_state.update_commitment)

    parsed = [parse_patch(p) for p in patches]
    require_update_patches(parsed)
    # Reject locally what replay would reject later.
    apply_patches(prior_state.document, parsed)

    next_update_key = KeyPair.generate()
    delta, delta_hash = _encode_delta(parsed, next_update_key)
    signed = UpdateSignedData(delta_hash=delta_hash, previous_update_key=revealed)
    operation = UpdateOperation(
        did_suffix=prior_state.did_suffix,
        signed_data=sign_compact(signed.model_dump(mode="json"), update_key),
        delta=delta,
    )
    logger.info("update_built", extra={"did_suffix": prior_state.did_suffix, "patches": len(parsed)})
    return UpdateResult(
        operation=operation,
        did_suffix=prior_state.did_suffix,
        update_key=next_update_key,
        document_keys=dict(document_keys or {}),
    )


def build_recover(
    prior_state: DidState,
    recovery_key: KeyPair,
    public_keys: Sequence[PublicKeyInput],
    services: Sequence[ServiceEndpoint] = (),
) -> RecoverResult:
    _require_live(prior_state)
    revealed = recovery_key.public_jwk()
    require_reveal(revealed, prior_state.recovery_commitment)

    document, document_keys = build_document(public_keys, services)
    next_update_key = KeyPair.generate()
    next_recovery_key = KeyPair.generate()

    delta, delta_hash = _encode_delta([Replace(document=document)], next_update_key)
    signed = RecoverSignedData(
        delta_hash=delta_hash,
        previous_recovery_key=revealed,
        next_recovery_commitment=next_recovery_key.commitment(),
    )
    operation = RecoverOperation(
        did_suffix=prior_state.did_suffix,
        signed_data=sign_compact(signed.model_dump(mode="json"), recovery_key),
        delta=delta,
    )
    logger.info("recover_built", extra={"did_suffix": prior_state.did_suffix, "keys": len(document.public_keys)})
    return RecoverResult(
        operation=operation,
        did_suffix=prior_state.did_suffix,
        update_key=next_update_key,
        recovery_key=next_recovery_key,
        document_keys=document_keys,
    )


def build_deactivate(prior_state: DidState, recovery_key: KeyPair) -> DeactivateResult:
    _require_live(prior_state)
    revealed = recovery_key.public_jwk()
    require_reveal(revealed, prior_state.recovery_commitment)

    signed = DeactivateSignedData(did_suffix=prior_state.did_suffix, previous_recovery_key=revealed)
    operation = DeactivateOperation(
        did_suffix=prior_state.did_suffix,
        signed_data=sign_compact(signed.model_dump(mode="json"), recovery_key),
    )
    logger.info("deactivate_built", extra={"did_suffix": prior_state.did_suffix})
    return DeactivateResult(operation=operation, did_suffix=prior_state.did_suffix)
