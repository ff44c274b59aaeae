"""didanchor.protocol.scheme

DID syntax: ``did:<method>:<network>:<suffix>``.

A long-form DID carries its own Create operation so it can be resolved
before it is anchored::

    did:anchor:test:<suffix>?sidetree-initial-state=<suffix_data>.<delta>

The shorter ``initial-state`` parameter name is still read.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from didanchor.core.encoding import is_encoded_multihash
from didanchor.core.exceptions import InvalidInputError
from didanchor.protocol.models import CreateOperation, DidState
from didanchor.protocol.state import apply_operation

SCHEME = "did"
INITIAL_STATE_PARAM = "sidetree-initial-state"
LONG_FORM_PARAMS = (INITIAL_STATE_PARAM, "initial-state")
NETWORKS = ("main", "test")

_METHOD = re.compile(r"^[a-z0-9]+$")


@dataclass(frozen=True, slots=True)
class DidScheme:
    method: str
    network: str
    suffix: str

    def __post_init__(self) -> None:
        if not _METHOD.match(self.method):
            raise InvalidInputError(f"invalid DID method: {self.method!r}")
        if self.network not in NETWORKS:
            raise InvalidInputError(f"invalid DID network: {self.network!r}")
        if not is_encoded_multihash(self.suffix):
            raise InvalidInputError("DID suffix is not an encoded multihash")

    @property
    def did(self) -> str:
        return f"{SCHEME}:{self.method}:{self.network}:{self.suffix}"

    def __str__(self) -> str:
        return self.did

    @classmethod
    def parse(cls, did: str) -> DidScheme:
        """Parse a short-form DID. Query parameters are not accepted here."""

        if not isinstance(did, str) or "?" in did:
            raise InvalidInputError(f"not a short-form DID: {did!r}")
        parts = did.split(":")
        if len(parts) != 4 or parts[0] != SCHEME:
            raise InvalidInputError(f"expected did:<method>:<network>:<suffix>, got {did!r}")
        return cls(method=parts[1], network=parts[2], suffix=parts[3])


def long_form_did(scheme: DidScheme, create: CreateOperation) -> str:
    if create.did_suffix != scheme.suffix:
        raise InvalidInputError("create operation does not belong to this DID")
    return f"{scheme.did}?{INITIAL_STATE_PARAM}={create.suffix_data}.{create.delta}"


def split_long_form(did: str) -> tuple[DidScheme, CreateOperation]:
    short, sep, query = did.partition("?")
    if not sep:
        raise InvalidInputError("not a long-form DID")
    name, eq, value = query.partition("=")
    if name not in LONG_FORM_PARAMS or not eq:
        raise InvalidInputError(f"long-form DID must carry '{INITIAL_STATE_PARAM}'")
    suffix_data, dot, delta = value.partition(".")
    if not dot or not suffix_data or not delta:
        raise InvalidInputError("initial state must be <suffix_data>.<delta>")

    scheme = DidScheme.parse(short)
    create = CreateOperation(suffix_data=suffix_data, delta=delta)
    if create.did_suffix != scheme.suffix:
        raise InvalidInputError("initial state does not hash to the DID suffix")
    return scheme, create


def state_from_long_form(did: str) -> tuple[DidScheme, DidState]:
    """Resolve an unanchored DID from the Create operation it carries."""

    scheme, create = split_long_form(did)
    return scheme, apply_operation(None, create)
