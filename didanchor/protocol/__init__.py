"""didanchor.protocol

Operations, documents, and the state they replay into.
"""

from didanchor.protocol.models import (
    CreateOperation,
    DeactivateOperation,
    DidState,
    DidStatus,
    Document,
    PublicKey,
    PublicKeyPurpose,
    RecoverOperation,
    ServiceEndpoint,
    UpdateOperation,
    operation_hash,
    parse_operation,
)
from didanchor.protocol.operations import build_create, build_deactivate, build_recover, build_update
from didanchor.protocol.patches import PublicKeyInput, add_public_keys_patch, apply_patches, validate_document
from didanchor.protocol.resolver import resolution_result, resolve
from didanchor.protocol.scheme import DidScheme, long_form_did, state_from_long_form
from didanchor.protocol.state import apply_operation, replay

__all__ = [
    "CreateOperation",
    "DeactivateOperation",
    "DidScheme",
    "DidState",
    "DidStatus",
    "Document",
    "PublicKey",
    "PublicKeyInput",
    "PublicKeyPurpose",
    "RecoverOperation",
    "ServiceEndpoint",
    "UpdateOperation",
    "add_public_keys_patch",
    "apply_operation",
    "apply_patches",
    "build_create",
    "build_deactivate",
    "build_recover",
    "build_update",
    "long_form_did",
    "operation_hash",
    "parse_operation",
    "replay",
    "resolution_result",
    "resolve",
    "state_from_long_form",
    "validate_document",
]
