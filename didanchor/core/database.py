"""didanchor.core.database

Operation log: append-only, hash-chained, SQLite.

Every anchored operation is a row. Each row's hash covers the previous row's
hash and the operation hash, so rewriting history anywhere breaks the chain
from that point on. Replay reads an identifier's rows back in insertion
order.

Operations waiting for the next anchoring round live in ``pending``. They are
not part of the chain until they are anchored.
"""

from __future__ import annotations

import hashlib
import json
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from didanchor.core.encoding import canonical_json
from didanchor.core.exceptions import OperationStoreError
from didanchor.protocol.models import Operation, operation_hash, parse_operation

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT DEFAULT (datetime('now'))
);

-- ============================================================
-- Anchored operations (hash chain, append-only)
-- ============================================================
CREATE TABLE IF NOT EXISTS operations (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    operation_hash TEXT NOT NULL UNIQUE,
    did_suffix TEXT NOT NULL,
    type TEXT NOT NULL CHECK(type IN ('create', 'update', 'recover', 'deactivate')),
    operation TEXT NOT NULL,
    anchor_string TEXT,
    prev_hash TEXT,
    hash TEXT NOT NULL UNIQUE,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_operations_suffix ON operations(did_suffix);
CREATE INDEX IF NOT EXISTS idx_operations_anchor ON operations(anchor_string);

-- ============================================================
-- Pending operations (next anchoring round)
-- ============================================================
CREATE TABLE IF NOT EXISTS pending (
    did_suffix TEXT PRIMARY KEY,
    operation_hash TEXT NOT NULL UNIQUE,
    operation TEXT NOT NULL,
    created_at TEXT DEFAULT (datetime('now'))
);
"""

SCHEMA_VERSION = 1


def compute_chain_hash(*, prev_hash: str | None, op_hash: str) -> str:
    return hashlib.sha256(f"{prev_hash or ''}|{op_hash}".encode()).hexdigest()


@dataclass(frozen=True, slots=True)
class StoredOperation:
    seq: int
    operation_hash: str
    did_suffix: str
    operation: Operation
    anchor_string: str | None
    prev_hash: str | None
    hash: str


def _serialize(op: Operation) -> str:
    return canonical_json(op.model_dump(mode="json"))


@dataclass
class OperationStore:
    """Single-writer operation log. Writes serialize on one lock."""

    db_path: Path

    def __post_init__(self) -> None:
        self.db_path = Path(self.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_schema()
        self._last_hash = self._get_last_hash()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> OperationStore:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _init_schema(self) -> None:
        with self.conn:
            self.conn.executescript(SCHEMA)
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA synchronous=NORMAL")
            self.conn.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

    def _get_last_hash(self) -> str | None:
        row = self.conn.execute("SELECT hash FROM operations ORDER BY seq DESC LIMIT 1").fetchone()
        return None if row is None else str(row[0])

    def _row_to_stored(self, row: sqlite3.Row) -> StoredOperation:
        return StoredOperation(
            seq=int(row["seq"]),
            operation_hash=str(row["operation_hash"]),
            did_suffix=str(row["did_suffix"]),
            operation=parse_operation(json.loads(row["operation"])),
            anchor_string=row["anchor_string"],
            prev_hash=row["prev_hash"],
            hash=str(row["hash"]),
        )

    def _existing(self, op_hash: str) -> StoredOperation | None:
        row = self.conn.execute("SELECT * FROM operations WHERE operation_hash = ?", (op_hash,)).fetchone()
        return None if row is None else self._row_to_stored(row)

    def _insert(self, op: Operation, anchor_string: str | None) -> StoredOperation:
        op_hash = operation_hash(op)
        existing = self._existing(op_hash)
        if existing is not None:
            return existing

        prev = self._last_hash
        h = compute_chain_hash(prev_hash=prev, op_hash=op_hash)
        cur = self.conn.execute(
            """
            INSERT INTO operations (operation_hash, did_suffix, type, operation, anchor_string, prev_hash, hash)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (op_hash, op.did_suffix, str(op.type), _serialize(op), anchor_string, prev, h),
        )
        self._last_hash = h
        return StoredOperation(
            seq=int(cur.lastrowid or 0),
            operation_hash=op_hash,
            did_suffix=op.did_suffix,
            operation=op,
            anchor_string=anchor_string,
            prev_hash=prev,
            hash=h,
        )

    def append_operation(self, operation: Operation | dict, anchor_string: str | None = None) -> StoredOperation:
        """Append one operation. Appending the same operation again is a no-op."""

        op = parse_operation(operation)
        with self._lock:
            try:
                with self.conn:
                    return self._insert(op, anchor_string)
            except sqlite3.Error as e:
                self._last_hash = self._get_last_hash()
                raise OperationStoreError(str(e)) from e

    def append_batch(self, operations: Iterable[Operation | dict], anchor_string: str) -> list[StoredOperation]:
        """Append an anchored batch atomically, in batch order."""

        ops = [parse_operation(o) for o in operations]
        with self._lock:
            try:
                with self.conn:
                    out = [self._insert(op, anchor_string) for op in ops]
                    if not out:
                        return out
                    self.conn.execute(
                        f"DELETE FROM pending WHERE operation_hash IN ({','.join('?' * len(out))})",
                        tuple(s.operation_hash for s in out),
                    )
                    return out
            except sqlite3.Error as e:
                self._last_hash = self._get_last_hash()
                raise OperationStoreError(str(e)) from e

    def iter_operations(self, did_suffix: str) -> Iterator[Operation]:
        rows = self.conn.execute(
            "SELECT * FROM operations WHERE did_suffix = ? ORDER BY seq ASC", (did_suffix,)
        ).fetchall()
        for row in rows:
            yield self._row_to_stored(row).operation

    def stored_operations(self, did_suffix: str | None = None) -> list[StoredOperation]:
        if did_suffix is None:
            rows = self.conn.execute("SELECT * FROM operations ORDER BY seq ASC").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM operations WHERE did_suffix = ? ORDER BY seq ASC", (did_suffix,)
            ).fetchall()
        return [self._row_to_stored(r) for r in rows]

    def did_suffixes(self) -> list[str]:
        rows = self.conn.execute(
            "SELECT did_suffix FROM operations GROUP BY did_suffix ORDER BY MIN(seq) ASC"
        ).fetchall()
        return [str(r[0]) for r in rows]

    def verify_hash_chain(self) -> bool:
        prev: str | None = None
        for row in self.conn.execute("SELECT operation, prev_hash, hash FROM operations ORDER BY seq ASC"):
            op = parse_operation(json.loads(row["operation"]))
            if row["prev_hash"] != prev:
                return False
            expected = compute_chain_hash(prev_hash=prev, op_hash=operation_hash(op))
            if expected != str(row["hash"]):
                return False
            prev = expected
        return True

    # -----------------
    # Pending queue
    # -----------------

    def add_pending(self, operation: Operation | dict) -> str:
        """Queue an operation for the next batch. One per identifier."""

        op = parse_operation(operation)
        op_hash = operation_hash(op)
        with self._lock:
            try:
                with self.conn:
                    self.conn.execute(
                        "INSERT INTO pending (did_suffix, operation_hash, operation) VALUES (?, ?, ?)",
                        (op.did_suffix, op_hash, _serialize(op)),
                    )
            except sqlite3.IntegrityError as e:
                raise OperationStoreError(f"{op.did_suffix} already has a pending operation") from e
        return op_hash

    def pending_operations(self, limit: int | None = None) -> list[Operation]:
        q = "SELECT operation FROM pending ORDER BY created_at ASC, rowid ASC"
        params: tuple[Any, ...] = ()
        if limit is not None:
            q += " LIMIT ?"
            params = (limit,)
        return [parse_operation(json.loads(r[0])) for r in self.conn.execute(q, params).fetchall()]

    def pending_for(self, did_suffix: str) -> Operation | None:
        row = self.conn.execute("SELECT operation FROM pending WHERE did_suffix = ?", (did_suffix,)).fetchone()
        return None if row is None else parse_operation(json.loads(row[0]))
