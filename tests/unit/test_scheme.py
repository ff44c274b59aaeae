from __future__ import annotations

import pytest

from didanchor.core.exceptions import InvalidInputError
from didanchor.protocol.models import DidState, DidStatus
from didanchor.protocol.operations import CreateResult
from didanchor.protocol.scheme import DidScheme, long_form_did, split_long_form, state_from_long_form

Made = tuple[CreateResult, DidState]


def test_did_format_and_parse(created: Made) -> None:
    result, _ = created
    scheme = DidScheme(method="anchor", network="test", suffix=result.did_suffix)
    assert scheme.did == f"did:anchor:test:{result.did_suffix}"
    assert str(scheme) == scheme.did
    assert DidScheme.parse(scheme.did) == scheme


@pytest.mark.parametrize(
    "did",
    [
        "did:anchor:test",
        "dod:anchor:test:x",
        "did:Anchor:test:{suffix}",
        "did:anchor:dev:{suffix}",
        "did:anchor:test:notahash",
        "did:anchor:test:{suffix}?initial-state=a.b",
    ],
)
def test_parse_rejects_malformed(created: Made, did: str) -> None:
    result, _ = created
    with pytest.raises(InvalidInputError):
        DidScheme.parse(did.format(suffix=result.did_suffix))


def test_long_form_resolves_without_anchoring(created: Made) -> None:
    result, state = created
    scheme = DidScheme(method="anchor", network="main", suffix=result.did_suffix)
    long_form = long_form_did(scheme, result.operation)

    assert long_form.startswith(scheme.did + "?sidetree-initial-state=")
    parsed, unanchored = state_from_long_form(long_form)
    assert parsed == scheme
    assert unanchored == state
    assert unanchored.status == DidStatus.CREATED


def test_long_form_reads_the_short_parameter_name(created: Made) -> None:
    result, state = created
    scheme = DidScheme(method="anchor", network="test", suffix=result.did_suffix)
    op = result.operation

    parsed, unanchored = state_from_long_form(f"{scheme.did}?initial-state={op.suffix_data}.{op.delta}")
    assert parsed == scheme
    assert unanchored == state


def test_long_form_must_hash_to_its_suffix(created: Made, make_did) -> None:
    result, _ = created
    other, _ = make_did()
    scheme = DidScheme(method="anchor", network="test", suffix=result.did_suffix)

    with pytest.raises(InvalidInputError):
        long_form_did(scheme, other.operation)

    forged = f"{scheme.did}?sidetree-initial-state={other.operation.suffix_data}.{other.operation.delta}"
    with pytest.raises(InvalidInputError):
        split_long_form(forged)


@pytest.mark.parametrize(
    "query", ["", "?state=a.b", "?sidetree-initial-state=", "?sidetree-initial-state=nodot", "?initial-state=nodot"]
)
def test_long_form_requires_initial_state(created: Made, query: str) -> None:
    result, _ = created
    with pytest.raises(InvalidInputError):
        split_long_form(f"did:anchor:test:{result.did_suffix}{query}")
