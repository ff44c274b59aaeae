#!/usr/bin/env python3
"""Check the didanchor import graph.

A module may import from its own layer or any layer below it, and the graph
must be acyclic. Layers, bottom up: primitives, keys and settings, the
protocol, storage and batching, the command line. Lazy imports inside
functions count.

Exit status 1 lists each offending import.
"""

import ast
import sys
from pathlib import Path

PACKAGE = "didanchor"

# Path prefix (without ".py") -> layer. Longest prefix wins.
LAYERS = {
    "didanchor/core/exceptions": 0,
    "didanchor/core/encoding": 0,
    "didanchor/security/redaction": 0,
    "didanchor/core/config": 1,
    "didanchor/core/log": 1,
    "didanchor/security/keys": 1,
    "didanchor/security/jws": 1,
    "didanchor/security/keyfile": 1,
    "didanchor/protocol/": 2,
    "didanchor/core/database": 3,
    "didanchor/batching/": 3,
    "didanchor/cli": 4,
}


def layer_of(path: str) -> int | None:
    """Layer of a slash-separated module path, or None for unlayered modules."""
    matches = [prefix for prefix in LAYERS if path.removesuffix(".py").startswith(prefix)]
    return LAYERS[max(matches, key=len)] if matches else None


def extract_imports(file_path: Path) -> list[str]:
    """Every module named by an import statement in ``file_path``."""
    try:
        tree = ast.parse(file_path.read_text(encoding="utf-8"))
    except (SyntaxError, UnicodeDecodeError):
        return []

    found: list[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            found.extend(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            found.append(node.module)
    return found


def check_circular_deps(graph: dict[str, set[str]]) -> list[str]:
    """One error per back edge found by a depth-first walk of ``graph``."""
    errors: list[str] = []
    finished: set[str] = set()
    stack: list[str] = []

    def walk(module: str) -> None:
        if module in stack:
            cycle = stack[stack.index(module) :] + [module]
            errors.append("CIRCULAR DEPENDENCY: " + " -> ".join(cycle))
            return
        if module in finished or module not in graph:
            return
        stack.append(module)
        for dep in sorted(graph[module]):
            walk(dep)
        stack.pop()
        finished.add(module)

    for module in sorted(graph):
        walk(module)
    return errors


def check_layer_violations(file_path: Path, imports: list[str], repo_root: Path) -> list[str]:
    """Imports in ``file_path`` that reach into a higher layer."""
    rel_path = file_path.relative_to(repo_root).as_posix()
    own = layer_of(rel_path)
    if own is None:
        return []

    errors = []
    for imp in imports:
        if not imp.startswith(PACKAGE + "."):
            continue
        target = layer_of(imp.replace(".", "/"))
        if target is not None and target > own:
            errors.append(f"LAYER VIOLATION: {rel_path} (layer {own}) imports {imp} (layer {target})")
    return errors


def validate(repo_root: Path) -> tuple[list[str], int]:
    """Return (violations, number of files checked)."""
    files = [f for f in sorted(repo_root.glob(f"{PACKAGE}/**/*.py")) if "__pycache__" not in f.parts]

    errors: list[str] = []
    graph: dict[str, set[str]] = {}
    for file in files:
        imports = extract_imports(file)
        graph[".".join(file.relative_to(repo_root).with_suffix("").parts)] = set(imports)
        errors.extend(check_layer_violations(file, imports, repo_root))

    errors.extend(check_circular_deps(graph))
    return errors, len(files)


def main() -> int:
    errors, checked = validate(Path(__file__).resolve().parent.parent)
    for error in errors:
        print(error, file=sys.stderr)
    print(f"{checked} files, {len(errors)} violation(s)")
    return 1 if errors else 0


if __name__ == "__main__":
    sys.exit(main())
