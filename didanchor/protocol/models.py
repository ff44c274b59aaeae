"""didanchor.protocol.models

One canonical definition of every protocol object.

Pydantic models own the wire. Anything that crosses a process boundary
(operations, deltas, documents, states) is defined here and nowhere else.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Annotated, Any, Literal, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_serializer, field_validator

from didanchor.core.encoding import (
    b64url_decode,
    canonicalize_then_hash_then_encode,
    decode_json,
    encode_json,
    hash_then_encode,
)
from didanchor.core.exceptions import IncorrectPatchActionError, InvalidInputError
from didanchor.security.jws import decode_payload
from didanchor.security.keys import canonical_public_jwk

_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,50}$")

DEFAULT_KEY_TYPE = "EcdsaSecp256k1VerificationKey2019"

_M = TypeVar("_M", bound=BaseModel)


def _check_id(v: str) -> str:
    if not _ID_PATTERN.match(v):
        raise ValueError("id must be 1-50 base64url characters")
    return v


class PublicKeyPurpose(StrEnum):
    GENERAL = "general"
    AUTHENTICATION = "authentication"
    ASSERTION = "assertion"
    AGREEMENT = "agreement"
    INVOCATION = "invocation"
    DELEGATION = "delegation"


class PatchAction(StrEnum):
    ADD_PUBLIC_KEYS = "add-public-keys"
    REMOVE_PUBLIC_KEYS = "remove-public-keys"
    ADD_SERVICE_ENDPOINTS = "add-service-endpoints"
    REMOVE_SERVICE_ENDPOINTS = "remove-service-endpoints"
    REPLACE = "replace"


class OperationType(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    RECOVER = "recover"
    DEACTIVATE = "deactivate"


# -----------------
# Document
# -----------------


class PublicKey(BaseModel):
    id: str
    type: str = DEFAULT_KEY_TYPE
    jwk: dict[str, str]
    purposes: frozenset[PublicKeyPurpose]

    model_config = {"frozen": True}

    @field_validator("id")
    @classmethod
    def id_is_base64url(cls, v: str) -> str:
        return _check_id(v)

    @field_validator("jwk")
    @classmethod
    def jwk_is_public_secp256k1(cls, v: dict[str, str]) -> dict[str, str]:
        if "d" in v:
            raise ValueError("document keys must not carry private material")
        try:
            return canonical_public_jwk(v)
        except InvalidInputError as e:
            raise ValueError(e.message) from e

    @field_validator("purposes")
    @classmethod
    def purposes_not_empty(cls, v: frozenset[PublicKeyPurpose]) -> frozenset[PublicKeyPurpose]:
        if not v:
            raise ValueError("a key needs at least one purpose")
        return v

    @field_serializer("purposes")
    def serialize_purposes(self, v: frozenset[PublicKeyPurpose]) -> list[str]:
        return sorted(str(p) for p in v)


class ServiceEndpoint(BaseModel):
    id: str
    type: str
    endpoint: str

    model_config = {"frozen": True}

    @field_validator("id")
    @classmethod
    def id_is_base64url(cls, v: str) -> str:
        return _check_id(v)

    @field_validator("type", "endpoint")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class Document(BaseModel):
    public_keys: tuple[PublicKey, ...] = ()
    service_endpoints: tuple[ServiceEndpoint, ...] = ()

    model_config = {"frozen": True}

    def key_ids(self) -> list[str]:
        return [k.id for k in self.public_keys]

    def service_ids(self) -> list[str]:
        return [s.id for s in self.service_endpoints]


# -----------------
# Patches
# -----------------


class AddPublicKeys(BaseModel):
    action: Literal[PatchAction.ADD_PUBLIC_KEYS] = PatchAction.ADD_PUBLIC_KEYS
    public_keys: tuple[PublicKey, ...]

    model_config = {"frozen": True}


class RemovePublicKeys(BaseModel):
    action: Literal[PatchAction.REMOVE_PUBLIC_KEYS] = PatchAction.REMOVE_PUBLIC_KEYS
    ids: tuple[str, ...]

    model_config = {"frozen": True}


class AddServiceEndpoints(BaseModel):
    action: Literal[PatchAction.ADD_SERVICE_ENDPOINTS] = PatchAction.ADD_SERVICE_ENDPOINTS
    service_endpoints: tuple[ServiceEndpoint, ...]

    model_config = {"frozen": True}


class RemoveServiceEndpoints(BaseModel):
    action: Literal[PatchAction.REMOVE_SERVICE_ENDPOINTS] = PatchAction.REMOVE_SERVICE_ENDPOINTS
    ids: tuple[str, ...]

    model_config = {"frozen": True}


class Replace(BaseModel):
    """Full reset. Only Create and Recover carry it."""

    action: Literal[PatchAction.REPLACE] = PatchAction.REPLACE
    document: Document

    model_config = {"frozen": True}


Patch = Annotated[
    AddPublicKeys | RemovePublicKeys | AddServiceEndpoints | RemoveServiceEndpoints | Replace,
    Field(discriminator="action"),
]

_patch_adapter: TypeAdapter[Any] = TypeAdapter(Patch)


def parse_patch(obj: Any) -> Patch:
    """Validate one patch. Unknown actions are ``IncorrectPatchActionError``."""

    if isinstance(obj, BaseModel):
        obj = obj.model_dump(mode="json")
    if not isinstance(obj, dict):
        raise InvalidInputError("patch must be an object")
    action = obj.get("action")
    if action not in {a.value for a in PatchAction}:
        raise IncorrectPatchActionError(f"unknown patch action: {action!r}")
    try:
        return _patch_adapter.validate_python(obj)
    except ValidationError as e:
        raise InvalidInputError(f"invalid '{action}' patch: {e.errors()[0]['msg']}") from e


# -----------------
# Delta, suffix data, signed data
# -----------------


class Delta(BaseModel):
    patches: tuple[Patch, ...]
    update_commitment: str

    model_config = {"frozen": True}

    def encode(self) -> str:
        return encode_json(self.model_dump(mode="json"))


class SuffixData(BaseModel):
    delta_hash: str
    recovery_commitment: str

    model_config = {"frozen": True}

    def encode(self) -> str:
        return encode_json(self.model_dump(mode="json"))


class UpdateSignedData(BaseModel):
    delta_hash: str
    previous_update_key: dict[str, str]

    model_config = {"frozen": True}


class RecoverSignedData(BaseModel):
    delta_hash: str
    previous_recovery_key: dict[str, str]
    next_recovery_commitment: str

    model_config = {"frozen": True}


class DeactivateSignedData(BaseModel):
    did_suffix: str
    previous_recovery_key: dict[str, str]

    model_config = {"frozen": True}


def _decode_model(model: type[BaseModel], encoded: str, what: str) -> Any:
    obj = decode_json(encoded)
    try:
        return model.model_validate(obj)
    except ValidationError as e:
        raise InvalidInputError(f"invalid {what}: {e.errors()[0]['msg']}") from e


def decode_delta(encoded: str) -> Delta:
    obj = decode_json(encoded)
    if not isinstance(obj, dict):
        raise InvalidInputError("delta must be an object")
    patches = obj.get("patches")
    if not isinstance(patches, list):
        raise InvalidInputError("delta.patches must be a list")
    # Surface unknown actions as IncorrectPatchAction rather than a schema error.
    parsed = tuple(parse_patch(p) for p in patches)
    commitment = obj.get("update_commitment")
    if not isinstance(commitment, str) or not commitment:
        raise InvalidInputError("delta.update_commitment is required")
    return Delta(patches=parsed, update_commitment=commitment)


def decode_suffix_data(encoded: str) -> SuffixData:
    return _decode_model(SuffixData, encoded, "suffix data")


def decode_signed_data(model: type[_M], jws: str) -> _M:
    """Unverified payload of ``jws`` as ``model``."""

    try:
        return model.model_validate(decode_payload(jws))
    except ValidationError as e:
        raise InvalidInputError(f"invalid signed data: {e.errors()[0]['msg']}") from e


def delta_hash_of(encoded_delta: str) -> str:
    """Hash of the delta bytes exactly as carried by the operation."""

    return hash_then_encode(b64url_decode(encoded_delta))


# -----------------
# Operations
# -----------------


class CreateOperation(BaseModel):
    type: Literal[OperationType.CREATE] = OperationType.CREATE
    suffix_data: str
    delta: str

    model_config = {"frozen": True}

    @property
    def did_suffix(self) -> str:
        return hash_then_encode(b64url_decode(self.suffix_data))


class UpdateOperation(BaseModel):
    type: Literal[OperationType.UPDATE] = OperationType.UPDATE
    did_suffix: str
    signed_data: str
    delta: str

    model_config = {"frozen": True}


class RecoverOperation(BaseModel):
    type: Literal[OperationType.RECOVER] = OperationType.RECOVER
    did_suffix: str
    signed_data: str
    delta: str

    model_config = {"frozen": True}


class DeactivateOperation(BaseModel):
    type: Literal[OperationType.DEACTIVATE] = OperationType.DEACTIVATE
    did_suffix: str
    signed_data: str

    model_config = {"frozen": True}


Operation = Annotated[
    CreateOperation | UpdateOperation | RecoverOperation | DeactivateOperation,
    Field(discriminator="type"),
]

_operation_adapter: TypeAdapter[Any] = TypeAdapter(Operation)


def parse_operation(obj: Any) -> Operation:
    """Validate (and normalize) an operation from JSON-like input."""

    if isinstance(obj, (CreateOperation, UpdateOperation, RecoverOperation, DeactivateOperation)):
        return obj
    try:
        return _operation_adapter.validate_python(obj)
    except ValidationError as e:
        raise InvalidInputError(f"invalid operation: {e.errors()[0]['msg']}") from e


def operation_hash(operation: Operation) -> str:
    return canonicalize_then_hash_then_encode(operation.model_dump(mode="json"))


# -----------------
# State
# -----------------


class DidStatus(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    RECOVERED = "recovered"
    DEACTIVATED = "deactivated"


class DidState(BaseModel):
    """Current state of one identifier. Replaced, never edited."""

    did_suffix: str
    status: DidStatus
    document: Document | None = None
    update_commitment: str | None = None
    recovery_commitment: str | None = None
    last_operation_hash: str

    model_config = {"frozen": True}

    @property
    def deactivated(self) -> bool:
        return self.status == DidStatus.DEACTIVATED
