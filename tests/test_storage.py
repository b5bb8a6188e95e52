"""
Unit tests for storage layer.

Tests schema creation, usage accumulation, cache rows and job claiming.
"""

import os
import tempfile
from datetime import datetime, timedelta

import pytest

from ai_gen_guard.core.errors import PersistenceError, StorageError
from ai_gen_guard.storage.blobs import LocalBlobStorage
from ai_gen_guard.storage.db import get_connection
from ai_gen_guard.storage.models import (
    BackgroundJob,
    CacheEntry,
    GenerationAudit,
    JobStatus,
    ModerationLog,
    PerformanceMetric,
)
from ai_gen_guard.storage.repository import (
    CacheRepository,
    GenerationRepository,
    JobRepository,
    MetricsRepository,
    ModerationRepository,
    UsageRepository,
    initialize_schema,
)


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify every table is created."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
                tables = {row[0] for row in cursor.fetchall()}
                assert {
                    "account_tier",
                    "usage_record",
                    "generation_request",
                    "cache_entry",
                    "background_job",
                    "moderation_log",
                    "performance_metric",
                } <= tables
            finally:
                conn.close()

    def test_schema_creation_is_idempotent(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)

    def test_missing_table_raises_persistence_error(self):
        """SQLite errors surface as PersistenceError."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "empty.db")
            with pytest.raises(PersistenceError, match="no such table"):
                UsageRepository(db_path).get_record("acct", "image_generation", "2024-01-01")


class TestUsageRepository:
    """Test per-period usage accumulation."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repo = UsageRepository(self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_increment_creates_then_accumulates(self):
        self.repo.increment("acct", "image_generation", "2024-01-01", "2024-01-31", 8, "tier_1")
        self.repo.increment("acct", "image_generation", "2024-01-01", "2024-01-31", 2, "tier_1")

        record = self.repo.get_record("acct", "image_generation", "2024-01-01")
        assert record.usage_count == 2
        assert record.total_cost_cents == 10
        assert record.period_end == "2024-01-31"

    def test_new_period_gets_new_record(self):
        self.repo.increment("acct", "image_generation", "2024-01-01", "2024-01-31", 8)
        self.repo.increment("acct", "image_generation", "2024-02-01", "2024-02-29", 8)

        january = self.repo.get_record("acct", "image_generation", "2024-01-01")
        february = self.repo.get_record("acct", "image_generation", "2024-02-01")
        assert january.usage_count == 1
        assert february.usage_count == 1
        assert len(self.repo.list_records("acct")) == 2

    def test_missing_record_is_none(self):
        assert self.repo.get_record("nobody", "image_generation", "2024-01-01") is None


class TestGenerationRepository:
    """Test the generation audit trail."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repo = GenerationRepository(self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _start(self, audit_id: str, created_at: datetime, account_id: str = "acct"):
        self.repo.start(GenerationAudit(
            id=audit_id,
            account_id=account_id,
            feature="image_generation",
            provider="openai",
            prompt="a red bicycle",
            status="processing",
            created_at=created_at,
        ))

    def test_complete_and_count(self):
        now = datetime(2024, 1, 15, 12, 0, 0)
        self._start("a", now)
        self._start("b", now)
        self.repo.complete("a", "https://example.com/a.png", 8, 1200, now)
        self.repo.fail("b", "timeout", 30000, now)

        since = datetime(2024, 1, 15)
        assert self.repo.count_since("acct", "image_generation", since) == 2
        assert self.repo.count_since("acct", "image_generation", since, status="completed") == 1

        audits = {audit.id: audit for audit in self.repo.list_recent(account_id="acct")}
        assert audits["a"].result_location == "https://example.com/a.png"
        assert audits["a"].cost_cents == 8
        assert audits["b"].status == "failed"
        assert audits["b"].error_message == "timeout"

    def test_count_since_excludes_older_rows(self):
        self._start("old", datetime(2024, 1, 14, 23, 59, 59))
        self._start("new", datetime(2024, 1, 15, 0, 0, 0))

        assert self.repo.count_since("acct", "image_generation", datetime(2024, 1, 15)) == 1


class TestCacheRepository:
    """Test cache metadata rows."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repo = CacheRepository(self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _entry(self, key: str, location: str, expires_at: datetime, size: int = 10) -> CacheEntry:
        return CacheEntry(
            key=key,
            result_location=location,
            storage_path=f"cached/{key}",
            content_type="text/uri-list",
            size=size,
            expires_at=expires_at,
            metadata={"provider": "openai"},
        )

    def test_upsert_last_writer_wins(self):
        expires = datetime(2024, 1, 8)
        self.repo.upsert(self._entry("k", "file:///first", expires))
        self.repo.upsert(self._entry("k", "file:///second", expires))

        entry = self.repo.get("k")
        assert entry.result_location == "file:///second"
        assert entry.metadata == {"provider": "openai"}
        assert self.repo.totals()["total_entries"] == 1

    def test_record_hit(self):
        self.repo.upsert(self._entry("k", "file:///x", datetime(2024, 1, 8)))
        self.repo.record_hit("k", datetime(2024, 1, 2))
        self.repo.record_hit("k", datetime(2024, 1, 3))

        entry = self.repo.get("k")
        assert entry.hit_count == 2
        assert entry.last_accessed == datetime(2024, 1, 3)

    def test_expired_rows(self):
        self.repo.upsert(self._entry("old", "file:///old", datetime(2024, 1, 1)))
        self.repo.upsert(self._entry("new", "file:///new", datetime(2024, 2, 1)))

        now = datetime(2024, 1, 15)
        assert [e.key for e in self.repo.list_expired(now)] == ["old"]
        assert self.repo.delete_expired(now) == 1
        assert self.repo.get("old") is None
        assert self.repo.get("new") is not None


class TestJobRepository:
    """Test job persistence and claiming."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repo = JobRepository(self.db_path)
        self.base = datetime(2024, 1, 1, 12, 0, 0)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _insert(self, job_id: str, priority: int, offset_seconds: int):
        self.repo.insert(BackgroundJob(
            id=job_id,
            type="image_generation",
            payload={"n": job_id},
            status=JobStatus.PENDING,
            priority=priority,
            account_id="acct",
            submitted_at=self.base + timedelta(seconds=offset_seconds),
        ))

    def test_claim_order_is_priority_then_age(self):
        self._insert("low-old", 0, 0)
        self._insert("high-new", 5, 10)
        self._insert("high-old", 5, 5)

        claimed = [self.repo.claim_next(10, self.base).id for _ in range(3)]
        assert claimed == ["high-old", "high-new", "low-old"]
        assert self.repo.claim_next(10, self.base) is None

    def test_claim_respects_concurrency_ceiling(self):
        for i in range(3):
            self._insert(f"job-{i}", 0, i)

        assert self.repo.claim_next(2, self.base) is not None
        assert self.repo.claim_next(2, self.base) is not None
        assert self.repo.claim_next(2, self.base) is None
        assert self.repo.count_by_status(JobStatus.PROCESSING) == 2

    def test_claim_marks_processing(self):
        self._insert("job", 0, 0)
        claimed = self.repo.claim_next(3, self.base)

        assert claimed.status == JobStatus.PROCESSING
        assert claimed.processed_at == self.base
        assert self.repo.get("job").status == JobStatus.PROCESSING

    def test_finish_is_single_transition(self):
        self._insert("job", 0, 0)
        self.repo.claim_next(3, self.base)

        assert self.repo.finish("job", JobStatus.COMPLETED, self.base, result={"ok": True})
        assert not self.repo.finish("job", JobStatus.FAILED, self.base, error="late")

        job = self.repo.get("job")
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"ok": True}
        assert job.error is None
        assert job.is_terminal

    def test_finish_rejects_non_terminal_status(self):
        with pytest.raises(ValueError, match="terminal"):
            self.repo.finish("job", JobStatus.PENDING, self.base)


class TestModerationAndMetrics:
    """Test moderation log and telemetry rows."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_only_flagged_logs_are_listed(self):
        repo = ModerationRepository(self.db_path)
        now = datetime(2024, 1, 1)
        repo.insert(ModerationLog("r1", "acct", True, ["violence"], 0.9, now, "Content flagged for: violence"))
        repo.insert(ModerationLog("r2", "acct", False, [], 0.01, now))

        flagged = repo.list_flagged()
        assert [log.request_id for log in flagged] == ["r1"]
        assert flagged[0].categories == ["violence"]

    def test_metrics_round_trip_tags(self):
        repo = MetricsRepository(self.db_path)
        repo.insert(PerformanceMetric("response_time", 120.0, "ms", {"provider": "openai"}, datetime(2024, 1, 1)))

        metrics = repo.list_recent("response_time")
        assert len(metrics) == 1
        assert metrics[0].tags == {"provider": "openai"}


class TestLocalBlobStorage:
    """Test filesystem blob storage."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_upload_read_delete(self):
        blobs = LocalBlobStorage(self.temp_dir)
        location = blobs.upload("cached/abc", b"data", "text/plain")

        assert location.startswith("file://")
        assert blobs.read("cached/abc") == b"data"

        blobs.delete(["cached/abc", "cached/missing"])
        assert not os.path.exists(os.path.join(self.temp_dir, "cached", "abc"))

    def test_base_url_locations(self):
        blobs = LocalBlobStorage(self.temp_dir, base_url="https://cdn.example.com/assets/")
        assert blobs.upload("a/b.mp3", b"x", "audio/mpeg") == "https://cdn.example.com/assets/a/b.mp3"

    def test_path_outside_root_rejected(self):
        blobs = LocalBlobStorage(self.temp_dir)
        with pytest.raises(StorageError):
            blobs.upload("../escape", b"x", "text/plain")
