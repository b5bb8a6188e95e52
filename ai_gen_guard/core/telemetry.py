"""
Telemetry sinks for generation metrics.

Recording is fire-and-forget from the pipeline's point of view: the
orchestrator logs and drops any error a sink raises.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from ai_gen_guard.storage.db import DEFAULT_DB_PATH
from ai_gen_guard.storage.models import PerformanceMetric
from ai_gen_guard.storage.repository import MetricsRepository

logger = logging.getLogger(__name__)


class TelemetrySink:
    """Interface for metric recorders."""

    def record(self, metric_name: str, value: float, unit: str, tags: Optional[Dict[str, str]] = None) -> None:
        raise NotImplementedError


class NullTelemetry(TelemetrySink):
    """Sink that discards every sample."""

    def record(self, metric_name: str, value: float, unit: str, tags: Optional[Dict[str, str]] = None) -> None:
        pass


class SqliteTelemetry(TelemetrySink):
    """Writes samples to the ``performance_metric`` table."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH, clock: Callable[[], datetime] = datetime.now):
        self.metrics = MetricsRepository(db_path)
        self.clock = clock

    def record(self, metric_name: str, value: float, unit: str, tags: Optional[Dict[str, str]] = None) -> None:
        self.metrics.insert(PerformanceMetric(
            metric_name=metric_name,
            value=float(value),
            unit=unit,
            tags={k: str(v) for k, v in (tags or {}).items()},
            recorded_at=self.clock(),
        ))
