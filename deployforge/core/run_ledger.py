"""Append-only, hash-chained Run Ledger backed by SQLite.

The ledger is the durable record of migration lifecycle progress. The
engine rebuilds every migration's state from it, so a run interrupted
mid-enact resumes at ``enacting`` instead of starting over.

Design:
- Append-only: only `append()` writes; no update, no delete.
- Hash-chained per scope: each entry includes SHA-256 of the previous
  entry in the same ``network/deployment`` scope.
- WAL journal mode for concurrent readers.
- entry_hash UNIQUE constraint for tamper detection.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from deployforge.core.hasher import canonical_json_bytes, compute_entry_hash, sha256_hex
from deployforge.models.ledger import LedgerEntry

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    scope                 TEXT NOT NULL,
    migration             TEXT NOT NULL,
    state_transition      TEXT NOT NULL DEFAULT '',
    event                 TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    input_hash            TEXT NOT NULL DEFAULT '',
    output_hash           TEXT NOT NULL DEFAULT '',
    error                 TEXT NOT NULL DEFAULT '',
    tool_version          TEXT NOT NULL,
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_SCOPE = """
CREATE INDEX IF NOT EXISTS idx_scope ON run_ledger(scope, id);
"""

_CREATE_IDX_SCOPE_MIGRATION = """
CREATE INDEX IF NOT EXISTS idx_scope_migration ON run_ledger(scope, migration, id);
"""

_FIELDS = (
    "entry_id",
    "scope",
    "migration",
    "state_transition",
    "event",
    "timestamp_utc",
    "input_hash",
    "output_hash",
    "error",
    "tool_version",
    "previous_entry_hash",
    "entry_hash",
)
_COLUMNS = ", ".join(_FIELDS)


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained Run Ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_SCOPE)
            conn.execute(_CREATE_IDX_SCOPE_MIGRATION)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal *entry* onto its scope's chain and persist it.

        Returns the entry with `previous_entry_hash` and `entry_hash` set.
        The insert is committed before this returns.
        """
        with self._connect() as conn:
            # BEGIN IMMEDIATE so two writers cannot both link to the same tip.
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE scope = ? ORDER BY id DESC LIMIT 1",
                (entry.scope,),
            ).fetchone()
            previous_hash = row[0] if row else ""

            entry_dict = entry.model_dump(mode="json")
            entry_dict["previous_entry_hash"] = previous_hash
            entry_dict["entry_hash"] = ""
            sealed = entry.model_copy(
                update={
                    "previous_entry_hash": previous_hash,
                    "entry_hash": compute_entry_hash(entry_dict),
                }
            )

            row_values = sealed.model_dump(mode="json")
            conn.execute(
                f"INSERT INTO run_ledger ({_COLUMNS}) "
                f"VALUES ({', '.join('?' for _ in _FIELDS)})",
                tuple(row_values[field] for field in _FIELDS),
            )
            conn.commit()
        return sealed

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def _select(
        self, where: str, params: tuple[Any, ...], *, newest_first: bool = False
    ) -> list[LedgerEntry]:
        order = "DESC LIMIT 1" if newest_first else "ASC"
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM run_ledger WHERE {where} ORDER BY id {order}",
                params,
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_latest(self, scope: str) -> LedgerEntry | None:
        """Return the most recent ledger entry for a scope, or None."""
        entries = self._select("scope = ?", (scope,), newest_first=True)
        return entries[0] if entries else None

    def get_migration_history(self, scope: str, migration: str) -> list[LedgerEntry]:
        """All entries for one migration in a scope, oldest first."""
        return self._select("scope = ? AND migration = ?", (scope, migration))

    def get_scope_entries(self, scope: str) -> list[LedgerEntry]:
        """Return all ledger entries for a scope, ordered chronologically."""
        return self._select("scope = ?", (scope,))

    def get_all_scopes(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT scope FROM run_ledger GROUP BY scope ORDER BY MIN(id)"
            ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, scope: str) -> bool:
        """Verify the hash chain integrity for a scope.

        Walks all entries in order, recomputes each entry_hash, and
        verifies that previous_entry_hash links match.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_scope_entries(scope):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )

            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, "
                    f"got {entry.entry_hash!r}"
                )

            prev_hash = entry.entry_hash

        return True

    def export_anchor(self, scope: str) -> dict[str, Any]:
        """Export a digest of the scope's chain for storage outside the ledger.

        Comparing a previously exported anchor against the current chain
        (``verify_chain`` plus the recorded ``root_hash``) detects rewrites.
        """
        entries = self.get_scope_entries(scope)
        anchor_payload = {
            "scope": scope,
            "entry_count": len(entries),
            "root_hash": entries[-1].entry_hash if entries else "",
            "first_entry_hash": entries[0].entry_hash if entries else "",
            "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        }
        anchor_payload["anchor_hash"] = sha256_hex(canonical_json_bytes(anchor_payload))
        return anchor_payload

    def verify_against_anchor(self, scope: str, anchor: dict[str, Any]) -> bool:
        """Check the current chain still extends a previously exported anchor.

        Entries appended after the anchor are fine; anything that changes
        or removes anchored entries raises ``LedgerIntegrityError``.
        """
        entries = self.get_scope_entries(scope)
        expected_count = anchor.get("entry_count", 0)
        if len(entries) < expected_count:
            raise LedgerIntegrityError(
                f"Chain for {scope} has {len(entries)} entries but "
                f"anchor expects at least {expected_count}."
            )
        if expected_count == 0:
            return True

        if entries[0].entry_hash != anchor.get("first_entry_hash", ""):
            raise LedgerIntegrityError(
                f"First entry of {scope} does not match the anchor; "
                f"the chain was rewritten from the start."
            )
        if entries[expected_count - 1].entry_hash != anchor.get("root_hash", ""):
            raise LedgerIntegrityError(
                f"Entry {expected_count} of {scope} does not match the anchor's "
                f"root hash; the chain was modified retroactively."
            )

        self.verify_chain(scope)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        """Convert a SQLite row tuple to a LedgerEntry."""
        return LedgerEntry(**dict(zip(_FIELDS, row)))
