"""
Outcome Ledger — append-only, hash-chained history of reconciliation passes.

Optional: only written when a ledger path is configured. It is a reporting
artefact; nothing reads it back to make a decision.

Behavioral Contract:
- Append-only. No entry is ever modified or deleted.
- Each entry is hashed together with the previous entry's hash (tamper-evident).
"""

import hashlib
import sqlite3
from typing import List, Optional

from quorum_guard.models.policy import ReconciliationOutcome


class OutcomeLedger:
    """SQLite-backed ledger of ReconciliationOutcome records."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the outcomes table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS outcomes (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                decision TEXT NOT NULL,
                simulated INTEGER NOT NULL,
                total_members INTEGER NOT NULL,
                online_count INTEGER NOT NULL,
                failed_steps INTEGER NOT NULL,
                started_at TEXT NOT NULL,
                signature TEXT NOT NULL,
                prior_hash TEXT,
                record_json TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def append(self, outcome: ReconciliationOutcome) -> str:
        """Append an outcome and return its chained signature."""
        prior_hash = self._get_latest_hash()
        record_json = outcome.model_dump_json()
        signature = _sign(record_json, prior_hash)

        self._conn.execute(
            """
            INSERT INTO outcomes (
                decision, simulated, total_members, online_count,
                failed_steps, started_at, signature, prior_hash, record_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                outcome.decision.value,
                int(outcome.simulated),
                outcome.assessment.total_members,
                outcome.assessment.online_count,
                len(outcome.failed_steps),
                outcome.started_at.isoformat(),
                signature,
                prior_hash,
                record_json,
            ),
        )
        self._conn.commit()
        return signature

    def _get_latest_hash(self) -> Optional[str]:
        row = self._conn.execute(
            "SELECT signature FROM outcomes ORDER BY seq DESC LIMIT 1"
        ).fetchone()
        return row["signature"] if row else None

    def query_recent(self, limit: int = 20) -> List[ReconciliationOutcome]:
        """Most recent outcomes, oldest first."""
        rows = self._conn.execute(
            "SELECT record_json FROM outcomes ORDER BY seq DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [
            ReconciliationOutcome.model_validate_json(r["record_json"])
            for r in reversed(rows)
        ]

    def verify_chain_integrity(self) -> bool:
        """Verify no entries have been altered or reordered."""
        rows = self._conn.execute(
            "SELECT record_json, signature, prior_hash FROM outcomes ORDER BY seq"
        ).fetchall()

        expected_prior = None
        for row in rows:
            if row["prior_hash"] != expected_prior:
                return False
            if row["signature"] != _sign(row["record_json"], row["prior_hash"]):
                return False
            expected_prior = row["signature"]
        return True

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) AS cnt FROM outcomes").fetchone()
        return row["cnt"]

    def close(self) -> None:
        self._conn.close()


def _sign(record_json: str, prior_hash: Optional[str]) -> str:
    digest = hashlib.sha256()
    digest.update((prior_hash or "").encode())
    digest.update(record_json.encode())
    return digest.hexdigest()
