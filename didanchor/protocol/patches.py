"""didanchor.protocol.patches

Patch engine.

A document is never edited in place. ``apply_patches`` folds a list of
patches over a document and returns the result, or raises on the first patch
that would break an invariant:

- key ids are unique
- service ids are unique
- at least one public key remains
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from didanchor.core.exceptions import (
    IncorrectPatchActionError,
    InsufficientKeysError,
    KeyDuplicatedError,
    NotFoundError,
    ServiceDuplicatedError,
)
from didanchor.protocol.models import (
    AddPublicKeys,
    AddServiceEndpoints,
    Document,
    Patch,
    PublicKey,
    PublicKeyPurpose,
    RemovePublicKeys,
    RemoveServiceEndpoints,
    Replace,
    ServiceEndpoint,
    parse_patch,
)
from didanchor.security.keys import KeyPair

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PublicKeyInput:
    """A key the caller wants in the document. The key pair is generated."""

    id: str
    purposes: frozenset[PublicKeyPurpose]


def _first_duplicate(ids: Iterable[str]) -> str | None:
    seen: set[str] = set()
    for i in ids:
        if i in seen:
            return i
        seen.add(i)
    return None


def validate_document(document: Document) -> Document:
    dup = _first_duplicate(document.key_ids())
    if dup is not None:
        raise KeyDuplicatedError(f"public key id '{dup}' appears more than once")
    dup = _first_duplicate(document.service_ids())
    if dup is not None:
        raise ServiceDuplicatedError(f"service id '{dup}' appears more than once")
    if not document.public_keys:
        raise InsufficientKeysError("document must keep at least one public key")
    return document


def _add_public_keys(document: Document, keys: Sequence[PublicKey]) -> Document:
    dup = _first_duplicate([*document.key_ids(), *(k.id for k in keys)])
    if dup is not None:
        raise KeyDuplicatedError(f"public key id '{dup}' already exists")
    return document.model_copy(update={"public_keys": (*document.public_keys, *keys)})


def _remove_public_keys(document: Document, ids: Sequence[str]) -> Document:
    present = set(document.key_ids())
    for i in ids:
        if i not in present:
            raise NotFoundError(f"public key id '{i}' not found")
    remaining = tuple(k for k in document.public_keys if k.id not in set(ids))
    if not remaining:
        raise InsufficientKeysError("cannot remove the last public key")
    return document.model_copy(update={"public_keys": remaining})


def _add_service_endpoints(document: Document, services: Sequence[ServiceEndpoint]) -> Document:
    dup = _first_duplicate([*document.service_ids(), *(s.id for s in services)])
    if dup is not None:
        raise ServiceDuplicatedError(f"service id '{dup}' already exists")
    return document.model_copy(update={"service_endpoints": (*document.service_endpoints, *services)})


def _remove_service_endpoints(document: Document, ids: Sequence[str]) -> Document:
    present = set(document.service_ids())
    for i in ids:
        if i not in present:
            raise NotFoundError(f"service id '{i}' not found")
    remaining = tuple(s for s in document.service_endpoints if s.id not in set(ids))
    return document.model_copy(update={"service_endpoints": remaining})


def apply_patch(document: Document, patch: Patch) -> Document:
    match patch:
        case AddPublicKeys(public_keys=keys):
            return _add_public_keys(document, keys)
        case RemovePublicKeys(ids=ids):
            return _remove_public_keys(document, ids)
        case AddServiceEndpoints(service_endpoints=services):
            return _add_service_endpoints(document, services)
        case RemoveServiceEndpoints(ids=ids):
            return _remove_service_endpoints(document, ids)
        case Replace(document=replacement):
            return validate_document(replacement)
    raise IncorrectPatchActionError(f"unsupported patch: {type(patch).__name__}")


def apply_patches(document: Document | None, patches: Iterable[Patch]) -> Document:
    """Apply ``patches`` in order. Later patches see the effect of earlier ones."""

    current = document if document is not None else Document()
    count = 0
    for raw in patches:
        current = apply_patch(current, parse_patch(raw))
        count += 1
    logger.debug(
        "patches_applied",
        extra={"patches": count, "keys": len(current.public_keys), "services": len(current.service_endpoints)},
    )
    return current


def require_update_patches(patches: Sequence[Patch]) -> None:
    """Update deltas add and remove. They never replace."""

    for p in patches:
        if isinstance(p, Replace):
            raise IncorrectPatchActionError("update deltas may not carry a 'replace' patch")


def require_replace_only(patches: Sequence[Patch]) -> Replace:
    """Create and Recover deltas are exactly one ``replace``."""

    if len(patches) != 1 or not isinstance(patches[0], Replace):
        raise IncorrectPatchActionError("create and recover deltas must be a single 'replace' patch")
    return patches[0]


def add_public_keys_patch(inputs: Sequence[PublicKeyInput]) -> tuple[AddPublicKeys, dict[str, KeyPair]]:
    """Generate a key pair per input; return the patch and the private halves."""

    dup = _first_duplicate(i.id for i in inputs)
    if dup is not None:
        raise KeyDuplicatedError(f"public key id '{dup}' appears more than once")
    private: dict[str, KeyPair] = {}
    keys: list[PublicKey] = []
    for item in inputs:
        pair = KeyPair.generate()
        private[item.id] = pair
        keys.append(PublicKey(id=item.id, jwk=pair.public_jwk(), purposes=item.purposes))
    return AddPublicKeys(public_keys=tuple(keys)), private


def build_document(
    inputs: Sequence[PublicKeyInput], services: Sequence[ServiceEndpoint] = ()
) -> tuple[Document, dict[str, KeyPair]]:
    """A fresh, validated document with generated keys."""

    patch, private = add_public_keys_patch(inputs)
    document = Document(public_keys=patch.public_keys, service_endpoints=tuple(services))
    return validate_document(document), private
