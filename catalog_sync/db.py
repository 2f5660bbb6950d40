"""SQLite store for upload results and sync run history."""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, Optional, Set

from catalog_sync.config import DB_PATH
from catalog_sync.models import BatchSummary, OutcomeStatus, UploadOutcome

__all__ = [
    "DEFAULT_DB_PATH",
    "get_connection",
    "init_db",
    "record_outcome",
    "record_outcomes",
    "record_run",
    "get_upload",
    "get_uploaded_references",
    "get_sync_stats",
]

DEFAULT_DB_PATH = DB_PATH


@contextmanager
def get_connection(db_path: str = DEFAULT_DB_PATH) -> Generator[sqlite3.Connection, None, None]:
    """Context manager for database connections."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database schema."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()

        # Latest known state of every product reference
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS uploads (
                reference TEXT PRIMARY KEY,
                remote_id TEXT,
                status TEXT NOT NULL,
                reason TEXT,
                error TEXT,
                attempts INTEGER DEFAULT 1,
                initial_images INTEGER DEFAULT 0,
                remaining_images INTEGER DEFAULT 0,
                deferred_processed INTEGER DEFAULT 0,
                deferred_errors INTEGER DEFAULT 0,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sync_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source TEXT,
                started_at TEXT,
                finished_at TEXT,
                total INTEGER DEFAULT 0,
                success INTEGER DEFAULT 0,
                errors INTEGER DEFAULT 0,
                skipped INTEGER DEFAULT 0
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_uploads_status ON uploads(status)")
        conn.commit()


def _upsert_outcome(cursor: sqlite3.Cursor, outcome: UploadOutcome) -> None:
    deferred = outcome.deferred
    cursor.execute("""
        INSERT INTO uploads (reference, remote_id, status, reason, error, attempts,
                             initial_images, remaining_images, deferred_processed,
                             deferred_errors, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(reference) DO UPDATE SET
            remote_id = COALESCE(excluded.remote_id, uploads.remote_id),
            status = excluded.status,
            reason = excluded.reason,
            error = excluded.error,
            attempts = excluded.attempts,
            initial_images = excluded.initial_images,
            remaining_images = excluded.remaining_images,
            deferred_processed = excluded.deferred_processed,
            deferred_errors = excluded.deferred_errors,
            updated_at = excluded.updated_at
    """, (
        outcome.reference,
        outcome.remote_id,
        outcome.status.value,
        outcome.reason.value if outcome.reason else None,
        outcome.error,
        outcome.attempts,
        outcome.initial_images,
        outcome.remaining_images,
        deferred.processed if deferred else 0,
        deferred.errors if deferred else 0,
        outcome.timestamp,
    ))


def record_outcome(db_path: str, outcome: UploadOutcome) -> None:
    """Insert or update the stored state of one product."""
    record_outcomes(db_path, [outcome])


def record_outcomes(db_path: str, outcomes: Iterable[UploadOutcome]) -> None:
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        for outcome in outcomes:
            _upsert_outcome(cursor, outcome)
        conn.commit()


def record_run(db_path: str, source: str, summary: BatchSummary) -> int:
    """Store a finished run and return its ID."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO sync_runs (source, started_at, finished_at, total, success, errors, skipped)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            source,
            summary.started_at,
            summary.finished_at or datetime.now().isoformat(),
            summary.total,
            summary.success,
            summary.errors,
            summary.skipped,
        ))
        conn.commit()
        return cursor.lastrowid


def get_upload(db_path: str, reference: str) -> Optional[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM uploads WHERE reference = ?", (reference,))
        row = cursor.fetchone()
        return dict(row) if row else None


def get_uploaded_references(db_path: str = DEFAULT_DB_PATH) -> Set[str]:
    """References whose last upload created or updated the remote product."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT reference FROM uploads WHERE status IN (?, ?)",
            (OutcomeStatus.CREATED.value, OutcomeStatus.UPDATED.value),
        )
        return {row["reference"] for row in cursor.fetchall()}


def get_sync_stats(db_path: str = DEFAULT_DB_PATH) -> Dict[str, Any]:
    """Totals across all runs plus the current state per status."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute("""
            SELECT COUNT(*) AS runs,
                   COALESCE(SUM(total), 0) AS total,
                   COALESCE(SUM(success), 0) AS success,
                   COALESCE(SUM(errors), 0) AS errors,
                   COALESCE(SUM(skipped), 0) AS skipped,
                   MAX(finished_at) AS last_sync
            FROM sync_runs
        """)
        row = cursor.fetchone()

        cursor.execute("SELECT status, COUNT(*) AS count FROM uploads GROUP BY status")
        by_status = {r["status"]: r["count"] for r in cursor.fetchall()}

    total = row["total"]
    return {
        "runs": row["runs"],
        "total": total,
        "success": row["success"],
        "errors": row["errors"],
        "skipped": row["skipped"],
        "last_sync": row["last_sync"],
        "success_rate": round(row["success"] / total * 100, 1) if total else 0.0,
        "products_by_status": by_status,
    }
