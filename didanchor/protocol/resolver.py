"""didanchor.protocol.resolver

DID state -> DID document.

Keys and services are re-keyed ``<did>#<id>``. A key with the ``general``
purpose is embedded in ``publicKey``; its other purposes reference it by id.
A key without ``general`` is embedded directly in each relationship it has.

A deactivated state does not resolve. Callers get ``DidDeactivatedError``,
never an empty document.
"""

from __future__ import annotations

from typing import Any, Final

from pydantic import BaseModel, Field

from didanchor.core.exceptions import DidDeactivatedError, InvalidInputError
from didanchor.protocol.models import DidState, PublicKey, PublicKeyPurpose
from didanchor.protocol.scheme import DidScheme

DID_CONTEXT = "https://www.w3.org/ns/did/v1"

RELATIONSHIPS: Final[dict[PublicKeyPurpose, str]] = {
    PublicKeyPurpose.AUTHENTICATION: "authentication",
    PublicKeyPurpose.ASSERTION: "assertion_method",
    PublicKeyPurpose.AGREEMENT: "key_agreement",
    PublicKeyPurpose.INVOCATION: "capability_invocation",
    PublicKeyPurpose.DELEGATION: "capability_delegation",
}


class VerificationMethod(BaseModel):
    id: str
    type: str
    controller: str
    public_key_jwk: dict[str, str] = Field(alias="publicKeyJwk")

    model_config = {"frozen": True, "populate_by_name": True}


class Service(BaseModel):
    id: str
    type: str
    service_endpoint: str = Field(alias="serviceEndpoint")

    model_config = {"frozen": True, "populate_by_name": True}


Relationship = list[str | VerificationMethod] | None


class DidDocument(BaseModel):
    context: str = Field(default=DID_CONTEXT, alias="@context")
    id: str
    public_key: list[VerificationMethod] | None = Field(default=None, alias="publicKey")
    authentication: Relationship = None
    assertion_method: Relationship = Field(default=None, alias="assertionMethod")
    key_agreement: Relationship = Field(default=None, alias="keyAgreement")
    capability_invocation: Relationship = Field(default=None, alias="capabilityInvocation")
    capability_delegation: Relationship = Field(default=None, alias="capabilityDelegation")
    service: list[Service] | None = None

    model_config = {"frozen": True, "populate_by_name": True}

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _method(did: str, key: PublicKey) -> VerificationMethod:
    return VerificationMethod(id=f"{did}#{key.id}", type=key.type, controller=did, public_key_jwk=dict(key.jwk))


def resolve(state: DidState, scheme: DidScheme) -> DidDocument:
    if state.deactivated:
        raise DidDeactivatedError(f"{scheme.did} is deactivated")
    if state.did_suffix != scheme.suffix:
        raise InvalidInputError(f"state belongs to {state.did_suffix}, not {scheme.suffix}")
    document = state.document
    if document is None:
        raise InvalidInputError(f"{scheme.did} has no document")

    did = scheme.did
    public_key: list[VerificationMethod] = []
    relationships: dict[str, list[str | VerificationMethod]] = {name: [] for name in RELATIONSHIPS.values()}

    for key in document.public_keys:
        method = _method(did, key)
        general = PublicKeyPurpose.GENERAL in key.purposes
        if general:
            public_key.append(method)
        for purpose, name in RELATIONSHIPS.items():
            if purpose in key.purposes:
                relationships[name].append(method.id if general else method)

    services = [
        Service(id=f"{did}#{s.id}", type=s.type, service_endpoint=s.endpoint) for s in document.service_endpoints
    ]

    return DidDocument(
        id=did,
        public_key=public_key or None,
        service=services or None,
        **{name: entries or None for name, entries in relationships.items()},
    )


def resolution_result(state: DidState, scheme: DidScheme) -> dict[str, Any]:
    """Document plus the metadata a client needs to build the next operation."""

    document = resolve(state, scheme)
    return {
        "didDocument": document.to_json(),
        "methodMetadata": {
            "status": str(state.status),
            "updateCommitment": state.update_commitment,
            "recoveryCommitment": state.recovery_commitment,
            "lastOperationHash": state.last_operation_hash,
        },
    }
