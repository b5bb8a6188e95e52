"""
Repository pattern for data access.

Handles database operations and data persistence logic.
"""

import json
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .db import DEFAULT_DB_PATH, connection
from .models import (
    BackgroundJob,
    CacheEntry,
    GenerationAudit,
    JobStatus,
    ModerationLog,
    PerformanceMetric,
    UsageRecord,
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Serialise timestamps with a fixed width so text ordering matches time ordering."""
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def _dt(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _json_or_none(value: Optional[str]):
    if value is None:
        return None
    return json.loads(value)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS account_tier (
        account_id TEXT PRIMARY KEY,
        tier TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS usage_record (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        account_id TEXT NOT NULL,
        feature TEXT NOT NULL,
        period_start TEXT NOT NULL,
        period_end TEXT NOT NULL,
        usage_count INTEGER NOT NULL DEFAULT 0,
        total_cost_cents INTEGER NOT NULL DEFAULT 0,
        subscription_tier TEXT,
        UNIQUE (account_id, feature, period_start)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS generation_request (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        feature TEXT NOT NULL,
        provider TEXT NOT NULL,
        prompt TEXT NOT NULL,
        status TEXT NOT NULL,
        result_location TEXT,
        cost_cents INTEGER NOT NULL DEFAULT 0,
        processing_time_ms INTEGER,
        error_message TEXT,
        created_at TEXT NOT NULL,
        completed_at TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_generation_request_account
    ON generation_request (account_id, feature, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS cache_entry (
        cache_key TEXT PRIMARY KEY,
        result_location TEXT NOT NULL,
        storage_path TEXT NOT NULL,
        content_type TEXT NOT NULL,
        size INTEGER NOT NULL,
        expires_at TEXT NOT NULL,
        hit_count INTEGER NOT NULL DEFAULT 0,
        last_accessed TEXT,
        metadata TEXT NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS background_job (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        payload TEXT NOT NULL,
        status TEXT NOT NULL,
        priority INTEGER NOT NULL DEFAULT 0,
        account_id TEXT,
        submitted_at TEXT NOT NULL,
        processed_at TEXT,
        completed_at TEXT,
        result TEXT,
        error TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_background_job_pending
    ON background_job (status, priority, submitted_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS moderation_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        request_id TEXT NOT NULL,
        account_id TEXT,
        flagged INTEGER NOT NULL,
        categories TEXT NOT NULL,
        confidence REAL NOT NULL,
        reason TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS performance_metric (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        metric_name TEXT NOT NULL,
        value REAL NOT NULL,
        unit TEXT NOT NULL,
        tags TEXT NOT NULL,
        recorded_at TEXT NOT NULL
    )
    """,
]


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create every table used by the generation pipeline if missing.

    Args:
        db_path: Path to SQLite database file
    """
    with connection(db_path) as conn:
        for statement in SCHEMA:
            conn.execute(statement)
        conn.commit()


class AccountRepository:
    """Subscription tier lookup for accounts."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_tier(self, account_id: str) -> Optional[str]:
        with connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT tier FROM account_tier WHERE account_id = ?", (account_id,)
            ).fetchone()
            return row[0] if row else None

    def set_tier(self, account_id: str, tier: str, now: Optional[datetime] = None) -> None:
        now = now or datetime.now()
        with connection(self.db_path) as conn:
            conn.execute("""
                INSERT INTO account_tier (account_id, tier, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(account_id) DO UPDATE SET
                    tier = excluded.tier,
                    updated_at = excluded.updated_at
            """, (account_id, tier, _ts(now)))
            conn.commit()


class UsageRepository:
    """Repository for per-period usage accumulators."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_record(self, account_id: str, feature: str, period_start: str) -> Optional[UsageRecord]:
        """Get the usage record for one billing period, if any usage was tracked."""
        with connection(self.db_path) as conn:
            row = conn.execute("""
                SELECT account_id, feature, period_start, period_end,
                       usage_count, total_cost_cents, subscription_tier
                FROM usage_record
                WHERE account_id = ? AND feature = ? AND period_start = ?
            """, (account_id, feature, period_start)).fetchone()
            if row is None:
                return None
            return UsageRecord(*row)

    def increment(
        self,
        account_id: str,
        feature: str,
        period_start: str,
        period_end: str,
        cost_cents: int,
        subscription_tier: Optional[str] = None,
    ) -> None:
        """Add one use and its cost to the period's record in a single statement.

        The upsert is atomic, so concurrent increments never lose updates.
        """
        with connection(self.db_path) as conn:
            conn.execute("""
                INSERT INTO usage_record
                (account_id, feature, period_start, period_end,
                 usage_count, total_cost_cents, subscription_tier)
                VALUES (?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT(account_id, feature, period_start) DO UPDATE SET
                    usage_count = usage_count + 1,
                    total_cost_cents = total_cost_cents + excluded.total_cost_cents,
                    subscription_tier = excluded.subscription_tier
            """, (account_id, feature, period_start, period_end, cost_cents, subscription_tier))
            conn.commit()

    def list_records(self, account_id: str) -> List[UsageRecord]:
        """All usage records for an account, newest period first."""
        with connection(self.db_path) as conn:
            rows = conn.execute("""
                SELECT account_id, feature, period_start, period_end,
                       usage_count, total_cost_cents, subscription_tier
                FROM usage_record
                WHERE account_id = ?
                ORDER BY period_start DESC, feature
            """, (account_id,)).fetchall()
            return [UsageRecord(*row) for row in rows]


class GenerationRepository:
    """Audit trail of provider attempts."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def start(self, audit: GenerationAudit) -> None:
        with connection(self.db_path) as conn:
            conn.execute("""
                INSERT INTO generation_request
                (id, account_id, feature, provider, prompt, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                audit.id,
                audit.account_id,
                audit.feature,
                audit.provider,
                audit.prompt,
                audit.status,
                _ts(audit.created_at),
            ))
            conn.commit()

    def complete(
        self,
        request_id: str,
        result_location: str,
        cost_cents: int,
        processing_time_ms: int,
        now: datetime,
    ) -> None:
        with connection(self.db_path) as conn:
            conn.execute("""
                UPDATE generation_request
                SET status = 'completed', result_location = ?, cost_cents = ?,
                    processing_time_ms = ?, completed_at = ?
                WHERE id = ?
            """, (result_location, cost_cents, processing_time_ms, _ts(now), request_id))
            conn.commit()

    def fail(self, request_id: str, error_message: str, processing_time_ms: int, now: datetime) -> None:
        with connection(self.db_path) as conn:
            conn.execute("""
                UPDATE generation_request
                SET status = 'failed', error_message = ?, processing_time_ms = ?,
                    completed_at = ?
                WHERE id = ?
            """, (error_message, processing_time_ms, _ts(now), request_id))
            conn.commit()

    def count_since(
        self,
        account_id: str,
        feature: str,
        since: datetime,
        status: Optional[str] = None,
    ) -> int:
        """Count attempts created at or after ``since``, optionally by status."""
        query = """
            SELECT COUNT(*) FROM generation_request
            WHERE account_id = ? AND feature = ? AND created_at >= ?
        """
        params = [account_id, feature, _ts(since)]
        if status:
            query += " AND status = ?"
            params.append(status)
        with connection(self.db_path) as conn:
            return conn.execute(query, params).fetchone()[0]

    def list_recent(
        self,
        account_id: Optional[str] = None,
        feature: Optional[str] = None,
        limit: int = 10,
    ) -> List[GenerationAudit]:
        """Get recent attempts with optional filtering, newest first."""
        query = """
            SELECT id, account_id, feature, provider, prompt, status, created_at,
                   result_location, cost_cents, processing_time_ms,
                   error_message, completed_at
            FROM generation_request
        """
        params = []
        conditions = []

        if account_id:
            conditions.append("account_id = ?")
            params.append(account_id)
        if feature:
            conditions.append("feature = ?")
            params.append(feature)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        with connection(self.db_path) as conn:
            audits = []
            for row in conn.execute(query, params).fetchall():
                audits.append(GenerationAudit(
                    id=row[0],
                    account_id=row[1],
                    feature=row[2],
                    provider=row[3],
                    prompt=row[4],
                    status=row[5],
                    created_at=_dt(row[6]),
                    result_location=row[7],
                    cost_cents=row[8],
                    processing_time_ms=row[9],
                    error_message=row[10],
                    completed_at=_dt(row[11]),
                ))
            return audits


_CACHE_COLUMNS = """
    cache_key, result_location, storage_path, content_type, size,
    expires_at, hit_count, last_accessed, metadata
"""


def _row_to_cache_entry(row: Tuple) -> CacheEntry:
    return CacheEntry(
        key=row[0],
        result_location=row[1],
        storage_path=row[2],
        content_type=row[3],
        size=row[4],
        expires_at=_dt(row[5]),
        hit_count=row[6],
        last_accessed=_dt(row[7]),
        metadata=json.loads(row[8]),
    )


class CacheRepository:
    """Metadata rows for the content-addressed result cache."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, key: str) -> Optional[CacheEntry]:
        with connection(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_CACHE_COLUMNS} FROM cache_entry WHERE cache_key = ?", (key,)
            ).fetchone()
            return _row_to_cache_entry(row) if row else None

    def upsert(self, entry: CacheEntry) -> None:
        """Insert or replace an entry; the last writer for a key wins."""
        with connection(self.db_path) as conn:
            conn.execute("""
                INSERT INTO cache_entry
                (cache_key, result_location, storage_path, content_type, size,
                 expires_at, hit_count, last_accessed, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                    result_location = excluded.result_location,
                    storage_path = excluded.storage_path,
                    content_type = excluded.content_type,
                    size = excluded.size,
                    expires_at = excluded.expires_at,
                    hit_count = excluded.hit_count,
                    last_accessed = excluded.last_accessed,
                    metadata = excluded.metadata
            """, (
                entry.key,
                entry.result_location,
                entry.storage_path,
                entry.content_type,
                entry.size,
                _ts(entry.expires_at),
                entry.hit_count,
                _ts(entry.last_accessed),
                json.dumps(entry.metadata, sort_keys=True),
            ))
            conn.commit()

    def record_hit(self, key: str, now: datetime) -> None:
        with connection(self.db_path) as conn:
            conn.execute("""
                UPDATE cache_entry
                SET hit_count = hit_count + 1, last_accessed = ?
                WHERE cache_key = ?
            """, (_ts(now), key))
            conn.commit()

    def delete(self, key: str) -> None:
        with connection(self.db_path) as conn:
            conn.execute("DELETE FROM cache_entry WHERE cache_key = ?", (key,))
            conn.commit()

    def list_expired(self, now: datetime) -> List[CacheEntry]:
        with connection(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT {_CACHE_COLUMNS} FROM cache_entry WHERE expires_at <= ?",
                (_ts(now),),
            ).fetchall()
            return [_row_to_cache_entry(row) for row in rows]

    def delete_expired(self, now: datetime) -> int:
        with connection(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM cache_entry WHERE expires_at <= ?", (_ts(now),))
            conn.commit()
            return cursor.rowcount

    def least_recently_accessed(self, limit: int) -> List[CacheEntry]:
        with connection(self.db_path) as conn:
            rows = conn.execute(f"""
                SELECT {_CACHE_COLUMNS} FROM cache_entry
                ORDER BY COALESCE(last_accessed, '') ASC, cache_key ASC
                LIMIT ?
            """, (limit,)).fetchall()
            return [_row_to_cache_entry(row) for row in rows]

    def totals(self) -> Dict[str, int]:
        with connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT COUNT(*), SUM(size), SUM(hit_count) FROM cache_entry"
            ).fetchone()
            return {
                "total_entries": row[0] or 0,
                "total_size": row[1] or 0,
                "total_hits": row[2] or 0,
            }

    def top_by_hits(self, limit: int = 10) -> List[CacheEntry]:
        with connection(self.db_path) as conn:
            rows = conn.execute(f"""
                SELECT {_CACHE_COLUMNS} FROM cache_entry
                ORDER BY hit_count DESC, cache_key ASC
                LIMIT ?
            """, (limit,)).fetchall()
            return [_row_to_cache_entry(row) for row in rows]


_JOB_COLUMNS = """
    id, type, payload, status, priority, account_id, submitted_at,
    processed_at, completed_at, result, error
"""


def _row_to_job(row: Tuple) -> BackgroundJob:
    return BackgroundJob(
        id=row[0],
        type=row[1],
        payload=json.loads(row[2]),
        status=row[3],
        priority=row[4],
        account_id=row[5],
        submitted_at=_dt(row[6]),
        processed_at=_dt(row[7]),
        completed_at=_dt(row[8]),
        result=_json_or_none(row[9]),
        error=row[10],
    )


class JobRepository:
    """Persistent backing for the background job queue."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def insert(self, job: BackgroundJob) -> None:
        with connection(self.db_path) as conn:
            conn.execute(f"""
                INSERT INTO background_job ({_JOB_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                job.id,
                job.type,
                json.dumps(job.payload, sort_keys=True),
                job.status,
                job.priority,
                job.account_id,
                _ts(job.submitted_at),
                _ts(job.processed_at),
                _ts(job.completed_at),
                json.dumps(job.result) if job.result is not None else None,
                job.error,
            ))
            conn.commit()

    def get(self, job_id: str) -> Optional[BackgroundJob]:
        with connection(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM background_job WHERE id = ?", (job_id,)
            ).fetchone()
            return _row_to_job(row) if row else None

    def list_for_account(self, account_id: str, limit: int = 50) -> List[BackgroundJob]:
        with connection(self.db_path) as conn:
            rows = conn.execute(f"""
                SELECT {_JOB_COLUMNS} FROM background_job
                WHERE account_id = ?
                ORDER BY submitted_at DESC
                LIMIT ?
            """, (account_id, limit)).fetchall()
            return [_row_to_job(row) for row in rows]

    def count_by_status(self, status: str) -> int:
        with connection(self.db_path) as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM background_job WHERE status = ?", (status,)
            ).fetchone()[0]

    def claim_next(self, max_processing: int, now: datetime) -> Optional[BackgroundJob]:
        """Atomically move the next pending job to processing.

        Selection (highest priority, then oldest submission) and the status
        change run inside one ``BEGIN IMMEDIATE`` transaction, which holds the
        database write lock. Competing claimants, in this or another process,
        wait for the lock and then see the job as already processing.

        Args:
            max_processing: Concurrency ceiling across all claimants
            now: Claim timestamp recorded as ``processed_at``

        Returns:
            The claimed job, or None if nothing is pending or the ceiling is reached
        """
        with connection(self.db_path) as conn:
            conn.isolation_level = None  # explicit transaction control
            conn.execute("BEGIN IMMEDIATE")
            try:
                processing = conn.execute(
                    "SELECT COUNT(*) FROM background_job WHERE status = ?",
                    (JobStatus.PROCESSING,),
                ).fetchone()[0]
                if processing >= max_processing:
                    conn.rollback()
                    return None

                row = conn.execute(f"""
                    SELECT {_JOB_COLUMNS} FROM background_job
                    WHERE status = ?
                    ORDER BY priority DESC, submitted_at ASC, rowid ASC
                    LIMIT 1
                """, (JobStatus.PENDING,)).fetchone()
                if row is None:
                    conn.rollback()
                    return None

                cursor = conn.execute("""
                    UPDATE background_job SET status = ?, processed_at = ?
                    WHERE id = ? AND status = ?
                """, (JobStatus.PROCESSING, _ts(now), row[0], JobStatus.PENDING))
                if cursor.rowcount != 1:
                    conn.rollback()
                    return None
                conn.commit()
            except Exception:
                if conn.in_transaction:
                    conn.rollback()
                raise

        job = _row_to_job(row)
        return BackgroundJob(
            id=job.id,
            type=job.type,
            payload=job.payload,
            status=JobStatus.PROCESSING,
            priority=job.priority,
            account_id=job.account_id,
            submitted_at=job.submitted_at,
            processed_at=now,
        )

    def finish(
        self,
        job_id: str,
        status: str,
        now: datetime,
        result: Optional[Dict] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Move a processing job to a terminal state exactly once.

        Returns:
            True if the job was processing and is now terminal
        """
        if status not in JobStatus.TERMINAL:
            raise ValueError(f"Not a terminal job status: {status}")
        with connection(self.db_path) as conn:
            cursor = conn.execute("""
                UPDATE background_job
                SET status = ?, completed_at = ?, result = ?, error = ?
                WHERE id = ? AND status = ?
            """, (
                status,
                _ts(now),
                json.dumps(result) if result is not None else None,
                error,
                job_id,
                JobStatus.PROCESSING,
            ))
            conn.commit()
            return cursor.rowcount == 1


class ModerationRepository:
    """Moderation verdict log."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def insert(self, log: ModerationLog) -> None:
        with connection(self.db_path) as conn:
            conn.execute("""
                INSERT INTO moderation_log
                (request_id, account_id, flagged, categories, confidence, reason, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                log.request_id,
                log.account_id,
                1 if log.flagged else 0,
                json.dumps(log.categories),
                log.confidence,
                log.reason,
                _ts(log.created_at),
            ))
            conn.commit()

    def list_flagged(self, limit: int = 50) -> List[ModerationLog]:
        with connection(self.db_path) as conn:
            rows = conn.execute("""
                SELECT request_id, account_id, flagged, categories, confidence,
                       created_at, reason
                FROM moderation_log
                WHERE flagged = 1
                ORDER BY created_at DESC
                LIMIT ?
            """, (limit,)).fetchall()
            return [
                ModerationLog(
                    request_id=row[0],
                    account_id=row[1],
                    flagged=bool(row[2]),
                    categories=json.loads(row[3]),
                    confidence=row[4],
                    created_at=_dt(row[5]),
                    reason=row[6],
                )
                for row in rows
            ]


class MetricsRepository:
    """Append-only telemetry samples."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def insert(self, metric: PerformanceMetric) -> None:
        with connection(self.db_path) as conn:
            conn.execute("""
                INSERT INTO performance_metric (metric_name, value, unit, tags, recorded_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                metric.metric_name,
                metric.value,
                metric.unit,
                json.dumps(metric.tags, sort_keys=True),
                _ts(metric.recorded_at),
            ))
            conn.commit()

    def list_recent(self, metric_name: Optional[str] = None, limit: int = 100) -> List[PerformanceMetric]:
        query = "SELECT metric_name, value, unit, tags, recorded_at FROM performance_metric"
        params = []
        if metric_name:
            query += " WHERE metric_name = ?"
            params.append(metric_name)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with connection(self.db_path) as conn:
            return [
                PerformanceMetric(
                    metric_name=row[0],
                    value=row[1],
                    unit=row[2],
                    tags=json.loads(row[3]),
                    recorded_at=_dt(row[4]),
                )
                for row in conn.execute(query, params).fetchall()
            ]
