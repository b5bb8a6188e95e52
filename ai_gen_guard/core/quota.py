"""
Subscription quotas and feature gating.

Implements per-tier usage ceilings with strict evaluation order:
1. Monthly count ceiling - A tier without monthly allowance is a hard deny
2. Monthly cost ceiling - Bounds provider spend per account
3. Daily count ceiling - Smooths usage within the month

Checks and usage tracking are separate calls. Two concurrent dispatches for
the same account can both pass ``check_quota`` before either records usage,
so usage may transiently exceed a ceiling under concurrency.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional

from .errors import QuotaExceeded, RateLimitExceeded
from .features import Feature, SubscriptionTier
from ai_gen_guard.storage.db import DEFAULT_DB_PATH
from ai_gen_guard.storage.repository import (
    AccountRepository,
    GenerationRepository,
    UsageRepository,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageLimit:
    """Ceilings for one tier and feature. Costs are in cents."""
    monthly: int
    daily: int
    per_request: int
    monthly_cost_cents: int

    def __post_init__(self):
        for name in ("monthly", "daily", "per_request", "monthly_cost_cents"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer")


DEFAULT_TIER_LIMITS: Dict[SubscriptionTier, Dict[Feature, UsageLimit]] = {
    SubscriptionTier.FREE: {
        Feature.IMAGE_GENERATION: UsageLimit(5, 2, 1, 100),
        Feature.VOICE_SYNTHESIS: UsageLimit(0, 0, 0, 0),
        Feature.VIDEO_GENERATION: UsageLimit(0, 0, 0, 0),
        Feature.ADVANCED_EDITING: UsageLimit(10, 5, 1, 150),
    },
    SubscriptionTier.TIER_1: {
        Feature.IMAGE_GENERATION: UsageLimit(50, 10, 3, 1000),
        Feature.VOICE_SYNTHESIS: UsageLimit(20, 5, 1, 500),
        Feature.VIDEO_GENERATION: UsageLimit(0, 0, 0, 0),
        Feature.ADVANCED_EDITING: UsageLimit(100, 20, 5, 700),
    },
    SubscriptionTier.TIER_2: {
        Feature.IMAGE_GENERATION: UsageLimit(200, 30, 10, 5000),
        Feature.VOICE_SYNTHESIS: UsageLimit(100, 15, 5, 2000),
        Feature.VIDEO_GENERATION: UsageLimit(20, 3, 1, 3000),
        Feature.ADVANCED_EDITING: UsageLimit(500, 50, 20, 1800),
    },
}

NO_ACCESS = UsageLimit(0, 0, 0, 0)


@dataclass(frozen=True)
class QuotaStatus:
    """Outcome of a quota check."""
    allowed: bool
    remaining: int
    reset_at: datetime
    reason: Optional[str] = None


@dataclass(frozen=True)
class UsageStats:
    """Month-to-date usage against the account's limits."""
    used: int
    limit: int
    cost_used_cents: int
    cost_limit_cents: int
    reset_date: datetime

    def to_dict(self) -> Dict:
        return {
            "used": self.used,
            "limit": self.limit,
            "cost_used_cents": self.cost_used_cents,
            "cost_limit_cents": self.cost_limit_cents,
            "reset_date": self.reset_date.isoformat(),
        }


def month_start(now: datetime) -> date:
    return now.date().replace(day=1)


def month_end(now: datetime) -> date:
    return next_month_start(now).date() - timedelta(days=1)


def next_month_start(now: datetime) -> datetime:
    if now.month == 12:
        return datetime(now.year + 1, 1, 1)
    return datetime(now.year, now.month + 1, 1)


def day_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, now.day)


def next_midnight(now: datetime) -> datetime:
    return day_start(now) + timedelta(days=1)


class QuotaGate:
    """Decides whether an account may use a feature right now.

    Monthly usage comes from the per-period usage records. Daily usage and
    the per-minute rate limit are counted from the generation audit trail.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        tier_limits: Optional[Dict[SubscriptionTier, Dict[Feature, UsageLimit]]] = None,
        rate_limit_per_minute: int = 10,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.tier_limits = tier_limits or DEFAULT_TIER_LIMITS
        self.rate_limit_per_minute = rate_limit_per_minute
        self.clock = clock
        self.accounts = AccountRepository(db_path)
        self.usage = UsageRepository(db_path)
        self.generations = GenerationRepository(db_path)

    def get_account_tier(self, account_id: str) -> SubscriptionTier:
        tier = self.accounts.get_tier(account_id)
        if tier is None:
            return SubscriptionTier.FREE
        return SubscriptionTier(tier)

    def set_account_tier(self, account_id: str, tier: SubscriptionTier) -> None:
        self.accounts.set_tier(account_id, tier.value, self.clock())

    def get_usage_limit(self, tier: SubscriptionTier, feature: Feature) -> UsageLimit:
        return self.tier_limits.get(tier, {}).get(feature, NO_ACCESS)

    def limit_for(self, account_id: str, feature: Feature) -> UsageLimit:
        return self.get_usage_limit(self.get_account_tier(account_id), feature)

    def can_access_feature(self, account_id: str, feature: Feature) -> bool:
        """A feature is accessible when the account's tier grants any monthly usage."""
        return self.limit_for(account_id, feature).monthly > 0

    def _monthly_usage(self, account_id: str, feature: Feature, now: datetime):
        record = self.usage.get_record(account_id, feature.value, month_start(now).isoformat())
        if record is None:
            return 0, 0
        return record.usage_count, record.total_cost_cents

    def check_quota(self, account_id: str, feature: Feature) -> QuotaStatus:
        """Evaluate monthly count, monthly cost, then daily count.

        Args:
            account_id: Account making the request
            feature: Feature being requested

        Returns:
            QuotaStatus for the first ceiling that tripped, or an allowed status
            with ``remaining`` set to the tighter of the monthly and daily headroom
        """
        now = self.clock()
        limit = self.limit_for(account_id, feature)
        monthly_reset = next_month_start(now)
        daily_reset = next_midnight(now)

        if limit.monthly == 0:
            return QuotaStatus(False, 0, monthly_reset, "Monthly limit exceeded")

        monthly_used, monthly_cost = self._monthly_usage(account_id, feature, now)
        if monthly_used >= limit.monthly:
            return QuotaStatus(False, 0, monthly_reset, "Monthly limit exceeded")

        if monthly_cost >= limit.monthly_cost_cents:
            return QuotaStatus(False, 0, monthly_reset, "Monthly cost limit exceeded")

        daily_used = self.generations.count_since(
            account_id, feature.value, day_start(now), status="completed"
        )
        if daily_used >= limit.daily:
            return QuotaStatus(False, 0, daily_reset, "Daily limit exceeded")

        remaining = min(limit.monthly - monthly_used, limit.daily - daily_used)
        return QuotaStatus(True, remaining, daily_reset)

    def check_rate_limit(self, account_id: str, feature: Feature) -> None:
        """Reject bursts above the per-minute attempt ceiling.

        Raises:
            RateLimitExceeded: If the account made too many attempts in the last minute
        """
        now = self.clock()
        window_start = now - timedelta(minutes=1)
        attempts = self.generations.count_since(account_id, feature.value, window_start)
        if attempts >= self.rate_limit_per_minute:
            raise RateLimitExceeded(
                "Rate limit exceeded. Please wait before making another request.",
                now + timedelta(minutes=1),
            )

    def enforce(self, account_id: str, feature: Feature) -> QuotaStatus:
        """Check quota and rate limit, raising on the first violation.

        Raises:
            QuotaExceeded: If any ceiling tripped
            RateLimitExceeded: If the per-minute ceiling tripped
        """
        status = self.check_quota(account_id, feature)
        if not status.allowed:
            logger.info("Quota denied for %s/%s: %s", account_id, feature.value, status.reason)
            raise QuotaExceeded(status.reason, status.reset_at)
        self.check_rate_limit(account_id, feature)
        return status

    def within_budget(self, account_id: str, feature: Feature, estimate_cents: int) -> bool:
        """Whether a generation costing ``estimate_cents`` fits the monthly cost ceiling."""
        now = self.clock()
        limit = self.limit_for(account_id, feature)
        _, monthly_cost = self._monthly_usage(account_id, feature, now)
        return monthly_cost + estimate_cents <= limit.monthly_cost_cents

    def track_usage(self, account_id: str, feature: Feature, cost_cents: int) -> None:
        """Record one successful generation against the current billing period.

        Must be called only after the provider call succeeded, and once per
        logical generation.
        """
        if cost_cents < 0:
            raise ValueError("cost_cents cannot be negative")
        now = self.clock()
        self.usage.increment(
            account_id,
            feature.value,
            month_start(now).isoformat(),
            month_end(now).isoformat(),
            cost_cents,
            self.get_account_tier(account_id).value,
        )

    def get_usage_stats(self, account_id: str, feature: Feature) -> UsageStats:
        now = self.clock()
        limit = self.limit_for(account_id, feature)
        used, cost = self._monthly_usage(account_id, feature, now)
        return UsageStats(
            used=used,
            limit=limit.monthly,
            cost_used_cents=cost,
            cost_limit_cents=limit.monthly_cost_cents,
            reset_date=next_month_start(now),
        )
