"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


class JobStatus:
    """Background job lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = (COMPLETED, FAILED)


@dataclass(frozen=True)
class UsageRecord:
    """Per-period usage accumulator for one account and feature.

    Counters only grow within a period. A new billing period gets a new
    record rather than a reset of the old one.
    """
    account_id: str
    feature: str
    period_start: str  # ISO date, first day of the month
    period_end: str  # ISO date, last day of the month
    usage_count: int
    total_cost_cents: int
    subscription_tier: Optional[str] = None


@dataclass(frozen=True)
class CacheEntry:
    """Metadata for a cached generation artifact."""
    key: str
    result_location: str
    storage_path: str
    content_type: str
    size: int
    expires_at: datetime
    hit_count: int = 0
    last_accessed: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BackgroundJob:
    """Deferred generation work owned by the job queue until terminal."""
    id: str
    type: str
    payload: Dict[str, Any]
    status: str
    priority: int
    account_id: Optional[str]
    submitted_at: datetime
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL


@dataclass(frozen=True)
class GenerationAudit:
    """One provider attempt for a generation request."""
    id: str
    account_id: str
    feature: str
    provider: str
    prompt: str
    status: str
    created_at: datetime
    result_location: Optional[str] = None
    cost_cents: int = 0
    processing_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class ModerationLog:
    """Persisted moderation verdict."""
    request_id: str
    account_id: Optional[str]
    flagged: bool
    categories: List[str]
    confidence: float
    created_at: datetime
    reason: Optional[str] = None


@dataclass(frozen=True)
class PerformanceMetric:
    """A single telemetry sample."""
    metric_name: str
    value: float
    unit: str
    tags: Dict[str, str]
    recorded_at: datetime
