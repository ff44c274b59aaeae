"""didanchor.cli

Command line interface entry point for didanchor.

Design constraints:
- argparse-based.
- Lazy imports: do not import heavy dependencies at parse time.
- Non-interactive. Inputs are JSON files, secrets come from the environment.

Exit codes: 0 ok, 1 protocol error, 2 usage error.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from didanchor.core.config import Config
    from didanchor.core.database import OperationStore
    from didanchor.protocol.models import DidState
    from didanchor.protocol.patches import PublicKeyInput
    from didanchor.protocol.scheme import DidScheme
    from didanchor.security.keyfile import KeyFile

EPILOG = "Operations commit to their successors. The ledger only ever sees one string."


class UsageError(Exception):
    """Bad arguments or unreadable input files. Exit code 2."""


@dataclass(frozen=True)
class CliContext:
    repo_root: Path
    config: Config


def _repo_root_from_cwd() -> Path:
    return Path.cwd()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="didanchor",
        description="Ledger-anchored decentralized identifiers.",
        epilog=EPILOG,
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit.")
    parser.add_argument("--config", type=Path, default=None, help="Config file (default: config/default.yaml).")

    sub = parser.add_subparsers(dest="command")

    p_create = sub.add_parser("create", help="Build a Create operation and queue it")
    p_create.add_argument("--input", type=Path, required=True, help="JSON: {public_keys, services}")
    p_create.add_argument("--keys-out", type=Path, default=None, help="Where to save the new private keys.")

    p_update = sub.add_parser("update", help="Build an Update operation and queue it")
    p_update.add_argument("--did", required=True)
    p_update.add_argument("--keys", type=Path, required=True, help="Key file for this DID.")
    p_update.add_argument("--input", type=Path, required=True, help="JSON: {patches, add_public_keys}")

    p_recover = sub.add_parser("recover", help="Build a Recover operation and queue it")
    p_recover.add_argument("--did", required=True)
    p_recover.add_argument("--keys", type=Path, required=True, help="Key file for this DID.")
    p_recover.add_argument("--input", type=Path, required=True, help="JSON: {public_keys, services}")

    p_deactivate = sub.add_parser("deactivate", help="Build a Deactivate operation and queue it")
    p_deactivate.add_argument("--did", required=True)
    p_deactivate.add_argument("--keys", type=Path, required=True, help="Key file for this DID.")

    p_anchor = sub.add_parser("anchor", help="Write queued operations as one batch")
    p_anchor.add_argument("--writer-lock-id", default=None)

    p_resolve = sub.add_parser("resolve", help="Resolve a DID (short or long form)")
    p_resolve.add_argument("did")
    p_resolve.add_argument("--metadata", action="store_true", help="Include method metadata.")

    return parser


def _print_version() -> None:
    from didanchor import __version__

    print(f"didanchor v{__version__}")


def _load_config(repo_root: Path, path: Path | None) -> Config:
    from didanchor.core.config import Config

    if path is not None:
        return Config.from_yaml(path)
    default = repo_root / "config" / "default.yaml"
    return Config.from_yaml(default) if default.exists() else Config()


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise UsageError(f"input file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise UsageError(f"input file is not JSON: {path}") from e


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _open_store(ctx: CliContext) -> OperationStore:
    from didanchor.core.database import OperationStore

    return OperationStore(ctx.config.data_dir / "operations.db")


def _scheme(ctx: CliContext, suffix: str) -> DidScheme:
    from didanchor.protocol.scheme import DidScheme

    return DidScheme(method=ctx.config.did.method, network=ctx.config.did.network, suffix=suffix)


def _key_inputs(raw: Any) -> list[PublicKeyInput]:
    from didanchor.core.exceptions import InvalidInputError
    from didanchor.protocol.models import PublicKeyPurpose
    from didanchor.protocol.patches import PublicKeyInput

    if not isinstance(raw, list):
        raise InvalidInputError("public_keys must be a list")
    out: list[PublicKeyInput] = []
    for item in raw:
        try:
            purposes = frozenset(PublicKeyPurpose(p) for p in item["purposes"])
            out.append(PublicKeyInput(id=str(item["id"]), purposes=purposes))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInputError(f"malformed public key input: {item!r}") from e
    return out


def _services(raw: Any) -> list[Any]:
    from pydantic import ValidationError

    from didanchor.core.exceptions import InvalidInputError
    from didanchor.protocol.models import ServiceEndpoint

    try:
        return [ServiceEndpoint.model_validate(s) for s in (raw or [])]
    except ValidationError as e:
        raise InvalidInputError(f"malformed service: {e.errors()[0]['msg']}") from e


def _current_state(store: OperationStore, suffix: str) -> DidState:
    from didanchor.core.exceptions import InvalidOperationOrderError
    from didanchor.protocol.state import replay

    state = replay(store.iter_operations(suffix), strict=False)
    if state is None:
        raise InvalidOperationOrderError(f"{suffix} has no anchored Create")
    return state


def _save_document_keys(key_file: KeyFile, keys: dict[str, Any]) -> None:
    for key_id, pair in keys.items():
        key_file.put(f"doc:{key_id}", pair)


def _promote_keys(key_file: KeyFile, state: DidState) -> bool:
    """Move staged keys into place once the anchored state commits to them.

    ``update`` and ``recover`` stage their successor keys as ``next_update``
    and ``next_recovery``. The current keys stay usable until an anchored
    operation rotates them, so a queued operation that never lands costs
    nothing.
    """

    promoted = False
    for staged, name, commitment in (
        ("next_update", "update", state.update_commitment),
        ("next_recovery", "recovery", state.recovery_commitment),
    ):
        if staged not in key_file.keys or commitment is None:
            continue
        if key_file.key_pair(staged).commitment() == commitment:
            key_file.keys[name] = key_file.keys.pop(staged)
            promoted = True
    return promoted


def _cmd_create(ctx: CliContext, args: argparse.Namespace) -> int:
    from didanchor.protocol.operations import build_create
    from didanchor.protocol.scheme import long_form_did
    from didanchor.security.keyfile import KeyFile

    data = _read_json(args.input)
    result = build_create(_key_inputs(data.get("public_keys")), _services(data.get("services")))

    key_file = KeyFile(did_suffix=result.did_suffix)
    key_file.put("update", result.update_key)
    key_file.put("recovery", result.recovery_key)
    _save_document_keys(key_file, result.document_keys)
    keys_out = args.keys_out or ctx.config.data_dir / "keys" / f"{result.did_suffix}.json"
    key_file.save(keys_out)

    store = _open_store(ctx)
    try:
        store.add_pending(result.operation)
    finally:
        store.close()

    scheme = _scheme(ctx, result.did_suffix)
    _print_json({"did": scheme.did, "long_form_did": long_form_did(scheme, result.operation), "keys": str(keys_out)})
    return 0


def _cmd_update(ctx: CliContext, args: argparse.Namespace) -> int:
    from didanchor.protocol.operations import build_update
    from didanchor.protocol.patches import add_public_keys_patch
    from didanchor.protocol.scheme import DidScheme
    from didanchor.security.keyfile import KeyFile

    scheme = DidScheme.parse(args.did)
    key_file = KeyFile.load(args.keys)
    data = _read_json(args.input)

    patches: list[Any] = list(data.get("patches") or [])
    new_keys: dict[str, Any] = {}
    if data.get("add_public_keys"):
        patch, new_keys = add_public_keys_patch(_key_inputs(data["add_public_keys"]))
        patches.append(patch)

    store = _open_store(ctx)
    try:
        state = _current_state(store, scheme.suffix)
        _promote_keys(key_file, state)
        result = build_update(state, key_file.key_pair("update"), patches, document_keys=new_keys)
        store.add_pending(result.operation)
    finally:
        store.close()

    key_file.put("next_update", result.update_key)
    _save_document_keys(key_file, result.document_keys)
    key_file.save(args.keys)
    _print_json({"did": scheme.did, "queued": "update"})
    return 0


def _cmd_recover(ctx: CliContext, args: argparse.Namespace) -> int:
    from didanchor.protocol.operations import build_recover
    from didanchor.protocol.scheme import DidScheme
    from didanchor.security.keyfile import KeyFile

    scheme = DidScheme.parse(args.did)
    key_file = KeyFile.load(args.keys)
    data = _read_json(args.input)

    store = _open_store(ctx)
    try:
        state = _current_state(store, scheme.suffix)
        _promote_keys(key_file, state)
        result = build_recover(
            state,
            key_file.key_pair("recovery"),
            _key_inputs(data.get("public_keys")),
            _services(data.get("services")),
        )
        store.add_pending(result.operation)
    finally:
        store.close()

    key_file.put("next_update", result.update_key)
    key_file.put("next_recovery", result.recovery_key)
    _save_document_keys(key_file, result.document_keys)
    key_file.save(args.keys)
    _print_json({"did": scheme.did, "queued": "recover"})
    return 0


def _cmd_deactivate(ctx: CliContext, args: argparse.Namespace) -> int:
    from didanchor.protocol.operations import build_deactivate
    from didanchor.protocol.scheme import DidScheme
    from didanchor.security.keyfile import KeyFile

    scheme = DidScheme.parse(args.did)
    key_file = KeyFile.load(args.keys)

    store = _open_store(ctx)
    try:
        state = _current_state(store, scheme.suffix)
        promoted = _promote_keys(key_file, state)
        result = build_deactivate(state, key_file.key_pair("recovery"))
        store.add_pending(result.operation)
    finally:
        store.close()

    if promoted:
        key_file.save(args.keys)
    _print_json({"did": scheme.did, "queued": "deactivate"})
    return 0


def _cmd_anchor(ctx: CliContext, args: argparse.Namespace) -> int:
    from didanchor.batching.batch import encode_batch
    from didanchor.batching.cas import cas_from_config

    store = _open_store(ctx)
    try:
        pending = store.pending_operations(limit=ctx.config.batch.max_operations)
        if not pending:
            print("nothing to anchor", file=sys.stderr)
            return 0
        cas = cas_from_config(ctx.config.cas)
        batch = encode_batch(pending, cas, ctx.config.batch, writer_lock_id=args.writer_lock_id)
        store.append_batch(batch.operations, batch.anchor_string)
    finally:
        store.close()

    print(batch.anchor_string)
    return 0


def _cmd_resolve(ctx: CliContext, args: argparse.Namespace) -> int:
    from didanchor.protocol.resolver import resolution_result, resolve
    from didanchor.protocol.scheme import DidScheme, state_from_long_form

    if "?" in args.did:
        scheme, state = state_from_long_form(args.did)
    else:
        scheme = DidScheme.parse(args.did)
        store = _open_store(ctx)
        try:
            state = _current_state(store, scheme.suffix)
        finally:
            store.close()

    if args.metadata:
        _print_json(resolution_result(state, scheme))
    else:
        _print_json(resolve(state, scheme).to_json())
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        _print_version()
        return 0

    if not args.command:
        parser.print_help()
        return 2

    dispatch: dict[str, Callable[[CliContext, argparse.Namespace], int]] = {
        "create": _cmd_create,
        "update": _cmd_update,
        "recover": _cmd_recover,
        "deactivate": _cmd_deactivate,
        "anchor": _cmd_anchor,
        "resolve": _cmd_resolve,
    }

    fn = dispatch.get(str(args.command))
    if fn is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2

    from didanchor.core.exceptions import ConfigError, DidAnchorError
    from didanchor.core.log import configure_logging

    repo_root = _repo_root_from_cwd()
    try:
        config = _load_config(repo_root, args.config)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    configure_logging(config.logging)

    try:
        return int(fn(CliContext(repo_root=repo_root, config=config), args))
    except UsageError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except DidAnchorError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
