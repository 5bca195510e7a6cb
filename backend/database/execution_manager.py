"""
Execution Manager - DuckDB checkpoints for job records.

The live job registry is in memory; this manager only persists snapshots of
it when a checkpoint is requested, and loads them back on startup.
"""

import duckdb
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Union

from config import JOBS_DB_PATH

from .job_store import JobRecord, JobStatus

logger = logging.getLogger(__name__)


class ExecutionManager:
    """Manages job checkpoint persistence in DuckDB."""

    def __init__(self, db_path: Union[str, Path, None] = None):
        self.db_path = Path(db_path or JOBS_DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()
        logger.info("Execution manager initialized with database: %s", self.db_path)

    def _init_database(self) -> None:
        """Create execution_jobs table if not exists."""
        conn = self._get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS execution_jobs (
                    job_id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    status TEXT NOT NULL,
                    progress INTEGER DEFAULT 0,
                    params_json TEXT,
                    results_json TEXT,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    completed_at TEXT
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """
        Get new database connection.

        DuckDB handles concurrency internally, each connection
        should be used from a single thread.
        """
        return duckdb.connect(str(self.db_path), read_only=False)

    def save_jobs(self, records: Iterable[JobRecord]) -> int:
        """
        Upsert job snapshots.

        Returns:
            Number of rows written
        """
        rows = [
            (
                record.id,
                record.kind,
                record.status.value,
                record.progress,
                json.dumps(record.params, default=str),
                json.dumps(record.results, default=str) if record.results is not None else None,
                record.error,
                record.created_at,
                record.updated_at,
                record.completed_at,
            )
            for record in records
        ]
        if not rows:
            return 0

        conn = self._get_connection()
        try:
            conn.executemany("""
                INSERT OR REPLACE INTO execution_jobs
                (job_id, kind, status, progress, params_json, results_json, error,
                 created_at, updated_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, rows)
            conn.commit()
            logger.info("Checkpointed %d jobs", len(rows))
            return len(rows)
        except duckdb.Error as e:
            logger.error("Failed to checkpoint jobs: %s", e)
            raise
        finally:
            conn.close()

    @staticmethod
    def _row_to_record(row) -> JobRecord:
        return JobRecord(
            id=row[0],
            kind=row[1],
            status=JobStatus(row[2]),
            progress=row[3] or 0,
            params=json.loads(row[4]) if row[4] else {},
            results=json.loads(row[5]) if row[5] else None,
            error=row[6],
            created_at=row[7],
            updated_at=row[8],
            completed_at=row[9],
        )

    def load_jobs(self, limit: Optional[int] = None) -> List[JobRecord]:
        """Checkpointed jobs, newest first."""
        query = """
            SELECT job_id, kind, status, progress, params_json, results_json, error,
                   created_at, updated_at, completed_at
            FROM execution_jobs
            ORDER BY created_at DESC
        """
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)

        conn = self._get_connection()
        try:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_record(row) for row in rows]
        finally:
            conn.close()

    def cleanup_old_jobs(self, days: int = 7) -> int:
        """
        Remove finished job checkpoints older than ``days``.

        Called before a restore so expired jobs never reach the registry.

        Returns:
            Number of jobs deleted
        """
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        conn = self._get_connection()
        try:
            count = conn.execute("""
                SELECT COUNT(*) FROM execution_jobs
                WHERE status IN ('completed', 'failed') AND created_at < ?
            """, (cutoff,)).fetchone()[0]
            conn.execute("""
                DELETE FROM execution_jobs
                WHERE status IN ('completed', 'failed') AND created_at < ?
            """, (cutoff,))
            conn.commit()
            logger.info("Cleaned up %d old jobs (older than %d days)", count, days)
            return count
        finally:
            conn.close()
