"""
Unit tests for quota enforcement.

Tests the tier table, check ordering, usage tracking and period rollover.
"""

import os
import tempfile
from datetime import datetime, timedelta

import pytest

from ai_gen_guard.core.errors import QuotaExceeded, RateLimitExceeded
from ai_gen_guard.core.features import Feature, SubscriptionTier
from ai_gen_guard.core.quota import DEFAULT_TIER_LIMITS, QuotaGate, UsageLimit
from ai_gen_guard.storage.models import GenerationAudit
from ai_gen_guard.storage.repository import GenerationRepository, initialize_schema


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestUsageLimit:
    """Test tier limit values."""

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError, match="monthly must be a non-negative integer"):
            UsageLimit(-1, 0, 0, 0)

    def test_default_table(self):
        free = DEFAULT_TIER_LIMITS[SubscriptionTier.FREE]
        assert free[Feature.IMAGE_GENERATION] == UsageLimit(5, 2, 1, 100)
        assert free[Feature.VOICE_SYNTHESIS].monthly == 0
        assert DEFAULT_TIER_LIMITS[SubscriptionTier.TIER_1][Feature.VIDEO_GENERATION].monthly == 0
        assert DEFAULT_TIER_LIMITS[SubscriptionTier.TIER_2][Feature.VIDEO_GENERATION] == UsageLimit(20, 3, 1, 3000)


class TestQuotaGate:
    """Test quota checks against stored usage."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.clock = FakeClock(datetime(2024, 1, 15, 12, 0, 0))
        self.quota = QuotaGate(self.db_path, clock=self.clock)
        self.generations = GenerationRepository(self.db_path)
        self._audit_seq = 0

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _audit(self, account_id: str, feature: Feature, status: str, created_at: datetime = None):
        self._audit_seq += 1
        self.generations.start(GenerationAudit(
            id=f"audit-{self._audit_seq}",
            account_id=account_id,
            feature=feature.value,
            provider="openai",
            prompt="prompt",
            status=status,
            created_at=created_at or self.clock.now,
        ))

    def test_unknown_account_is_free_tier(self):
        assert self.quota.get_account_tier("new-account") == SubscriptionTier.FREE

    def test_set_account_tier(self):
        self.quota.set_account_tier("acct", SubscriptionTier.TIER_2)
        assert self.quota.get_account_tier("acct") == SubscriptionTier.TIER_2
        assert self.quota.can_access_feature("acct", Feature.VIDEO_GENERATION)

    def test_feature_without_allowance_is_denied(self):
        """A zero monthly allowance denies before any usage lookup."""
        assert not self.quota.can_access_feature("acct", Feature.VOICE_SYNTHESIS)

        status = self.quota.check_quota("acct", Feature.VOICE_SYNTHESIS)
        assert not status.allowed
        assert status.remaining == 0
        assert status.reason == "Monthly limit exceeded"
        assert status.reset_at == datetime(2024, 2, 1)

    def test_allowed_reports_tightest_headroom(self):
        status = self.quota.check_quota("acct", Feature.IMAGE_GENERATION)
        assert status.allowed
        # free image: 5 monthly, 2 daily
        assert status.remaining == 2
        assert status.reset_at == datetime(2024, 1, 16)
        assert status.reason is None

    def test_monthly_count_ceiling(self):
        for _ in range(5):
            self.quota.track_usage("acct", Feature.IMAGE_GENERATION, 1)

        status = self.quota.check_quota("acct", Feature.IMAGE_GENERATION)
        assert not status.allowed
        assert status.reason == "Monthly limit exceeded"

    def test_monthly_cost_ceiling(self):
        self.quota.set_account_tier("acct", SubscriptionTier.TIER_1)
        self.quota.track_usage("acct", Feature.IMAGE_GENERATION, 1000)

        status = self.quota.check_quota("acct", Feature.IMAGE_GENERATION)
        assert not status.allowed
        assert status.reason == "Monthly cost limit exceeded"
        assert status.reset_at == datetime(2024, 2, 1)

    def test_daily_ceiling_counts_completed_generations(self):
        self._audit("acct", Feature.IMAGE_GENERATION, "completed")
        self._audit("acct", Feature.IMAGE_GENERATION, "failed")
        assert self.quota.check_quota("acct", Feature.IMAGE_GENERATION).allowed

        self._audit("acct", Feature.IMAGE_GENERATION, "completed")
        status = self.quota.check_quota("acct", Feature.IMAGE_GENERATION)
        assert not status.allowed
        assert status.reason == "Daily limit exceeded"
        assert status.reset_at == datetime(2024, 1, 16)

    def test_yesterdays_generations_do_not_count(self):
        yesterday = self.clock.now - timedelta(days=1)
        self._audit("acct", Feature.IMAGE_GENERATION, "completed", yesterday)
        self._audit("acct", Feature.IMAGE_GENERATION, "completed", yesterday)

        assert self.quota.check_quota("acct", Feature.IMAGE_GENERATION).allowed

    def test_monthly_checked_before_daily(self):
        for _ in range(5):
            self.quota.track_usage("acct", Feature.IMAGE_GENERATION, 1)
        self._audit("acct", Feature.IMAGE_GENERATION, "completed")
        self._audit("acct", Feature.IMAGE_GENERATION, "completed")

        status = self.quota.check_quota("acct", Feature.IMAGE_GENERATION)
        assert status.reason == "Monthly limit exceeded"

    def test_enforce_raises_quota_exceeded(self):
        with pytest.raises(QuotaExceeded) as exc_info:
            self.quota.enforce("acct", Feature.VIDEO_GENERATION)
        assert exc_info.value.reason == "Monthly limit exceeded"
        assert exc_info.value.reset_at == datetime(2024, 2, 1)

    def test_rate_limit(self):
        quota = QuotaGate(self.db_path, rate_limit_per_minute=2, clock=self.clock)
        self._audit("acct", Feature.ADVANCED_EDITING, "failed", self.clock.now - timedelta(seconds=30))
        quota.enforce("acct", Feature.ADVANCED_EDITING)

        self._audit("acct", Feature.ADVANCED_EDITING, "failed", self.clock.now - timedelta(seconds=10))
        with pytest.raises(RateLimitExceeded) as exc_info:
            quota.enforce("acct", Feature.ADVANCED_EDITING)
        assert exc_info.value.reset_at == self.clock.now + timedelta(minutes=1)

    def test_rate_limit_window_slides(self):
        quota = QuotaGate(self.db_path, rate_limit_per_minute=1, clock=self.clock)
        self._audit("acct", Feature.ADVANCED_EDITING, "failed", self.clock.now - timedelta(minutes=2))

        quota.enforce("acct", Feature.ADVANCED_EDITING)

    def test_within_budget(self):
        self.quota.track_usage("acct", Feature.IMAGE_GENERATION, 95)

        assert self.quota.within_budget("acct", Feature.IMAGE_GENERATION, 5)
        assert not self.quota.within_budget("acct", Feature.IMAGE_GENERATION, 6)

    def test_track_usage_rejects_negative_cost(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            self.quota.track_usage("acct", Feature.IMAGE_GENERATION, -1)

    def test_usage_stats(self):
        self.quota.set_account_tier("acct", SubscriptionTier.TIER_1)
        self.quota.track_usage("acct", Feature.VOICE_SYNTHESIS, 3)
        self.quota.track_usage("acct", Feature.VOICE_SYNTHESIS, 4)

        stats = self.quota.get_usage_stats("acct", Feature.VOICE_SYNTHESIS)
        assert stats.used == 2
        assert stats.limit == 20
        assert stats.cost_used_cents == 7
        assert stats.cost_limit_cents == 500
        assert stats.reset_date == datetime(2024, 2, 1)
        assert stats.to_dict()["reset_date"] == "2024-02-01T00:00:00"

    def test_new_month_starts_fresh(self):
        self.clock.now = datetime(2024, 1, 31, 23, 0, 0)
        for _ in range(5):
            self.quota.track_usage("acct", Feature.IMAGE_GENERATION, 10)
        assert not self.quota.check_quota("acct", Feature.IMAGE_GENERATION).allowed

        self.clock.now = datetime(2024, 2, 1, 0, 30, 0)
        assert self.quota.get_usage_stats("acct", Feature.IMAGE_GENERATION).used == 0
        assert self.quota.check_quota("acct", Feature.IMAGE_GENERATION).allowed

    def test_december_rolls_into_next_year(self):
        self.clock.now = datetime(2024, 12, 20)
        status = self.quota.check_quota("acct", Feature.VOICE_SYNTHESIS)
        assert status.reset_at == datetime(2025, 1, 1)

    def test_custom_tier_limits(self):
        limits = {SubscriptionTier.FREE: {Feature.VOICE_SYNTHESIS: UsageLimit(1, 1, 1, 10)}}
        quota = QuotaGate(self.db_path, tier_limits=limits, clock=self.clock)

        assert quota.check_quota("acct", Feature.VOICE_SYNTHESIS).allowed
        # features missing from the table get no access
        assert not quota.can_access_feature("acct", Feature.IMAGE_GENERATION)
