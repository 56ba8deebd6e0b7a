"""
Per-feed performance history used to size fetch timeouts and break circuits
on feeds that keep failing.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

from curator.utils.error_monitoring import CircuitBreaker, CircuitState


class FeedStatus(Enum):
    """Feed health status"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILING = "failing"
    CIRCUIT_OPEN = "circuit_open"


@dataclass
class FetchRecord:
    timestamp: datetime
    success: bool
    response_time: float
    article_count: int = 0
    error: Optional[str] = None


@dataclass
class FeedPerformanceMetrics:
    """Performance metrics for a feed"""
    feed_id: str
    success_count: int = 0
    failure_count: int = 0
    avg_response_time: float = 0.0
    consecutive_failures: int = 0
    total_items_fetched: int = 0
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    history: Deque[FetchRecord] = field(default_factory=lambda: deque(maxlen=50))

    def success_rate(self) -> float:
        """Share of recorded attempts that succeeded (1.0 for an unseen feed)"""
        if not self.history:
            return 1.0
        return sum(1 for r in self.history if r.success) / len(self.history)

    def reliability(self) -> float:
        return self.success_rate() * 100


class FeedPerformanceTracker:
    """
    Tracks fetch outcomes per feed and derives adaptive timeouts.

    Slow or unreliable feeds get a larger timeout budget, capped so one feed
    cannot hold the whole batch hostage.
    """

    def __init__(self,
                 base_timeout: float = 6.0,
                 slow_timeout: float = 10.0,
                 fast_timeout: float = 4.0,
                 unreliable_padding: float = 2.0,
                 max_timeout: float = 12.0,
                 breaker: Optional[CircuitBreaker] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.base_timeout = base_timeout
        self.slow_timeout = slow_timeout
        self.fast_timeout = fast_timeout
        self.unreliable_padding = unreliable_padding
        self.max_timeout = max_timeout
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=5, success_threshold=3, recovery_timeout=15 * 60, clock=clock
        )
        self.metrics: Dict[str, FeedPerformanceMetrics] = {}
        self.logger = logging.getLogger(__name__)

    def get_metrics(self, feed_id: str) -> FeedPerformanceMetrics:
        if feed_id not in self.metrics:
            self.metrics[feed_id] = FeedPerformanceMetrics(feed_id=feed_id)
        return self.metrics[feed_id]

    def get_adaptive_timeout(self, feed_id: str) -> float:
        metrics = self.metrics.get(feed_id)
        if not metrics or not metrics.history:
            return self.base_timeout

        timeout = self.base_timeout
        if metrics.avg_response_time > 8:
            timeout = self.slow_timeout
        elif 0 < metrics.avg_response_time < 3:
            timeout = self.fast_timeout

        if metrics.reliability() < 50:
            timeout += self.unreliable_padding

        return min(timeout, self.max_timeout)

    def can_fetch(self, feed_id: str) -> bool:
        return self.breaker.should_attempt(feed_id)

    def record_success(self, feed_id: str, response_time: float, article_count: int) -> None:
        metrics = self.get_metrics(feed_id)
        metrics.success_count += 1
        metrics.consecutive_failures = 0
        metrics.total_items_fetched += article_count
        metrics.last_success = datetime.now()

        # Exponential moving average
        if metrics.avg_response_time == 0:
            metrics.avg_response_time = response_time
        else:
            metrics.avg_response_time = metrics.avg_response_time * 0.7 + response_time * 0.3

        metrics.history.append(FetchRecord(datetime.now(), True, response_time, article_count))
        self.breaker.record_success(feed_id)

    def record_failure(self, feed_id: str, response_time: float, error: str) -> None:
        metrics = self.get_metrics(feed_id)
        metrics.failure_count += 1
        metrics.consecutive_failures += 1
        metrics.last_failure = datetime.now()
        # Timeouts count toward the average so the next budget grows
        metrics.avg_response_time = (
            response_time if metrics.avg_response_time == 0
            else metrics.avg_response_time * 0.7 + response_time * 0.3
        )
        metrics.history.append(FetchRecord(datetime.now(), False, response_time, error=error))
        self.breaker.record_failure(feed_id)

    def status(self, feed_id: str) -> FeedStatus:
        if self.breaker.state(feed_id) == CircuitState.OPEN:
            return FeedStatus.CIRCUIT_OPEN
        metrics = self.metrics.get(feed_id)
        if not metrics:
            return FeedStatus.HEALTHY
        if metrics.consecutive_failures >= 5:
            return FeedStatus.FAILING
        if metrics.consecutive_failures >= 2 or metrics.success_rate() < 0.7:
            return FeedStatus.DEGRADED
        return FeedStatus.HEALTHY

    def get_performance_report(self) -> Dict[str, Any]:
        feed_health = {status.value: 0 for status in FeedStatus}
        for feed_id in self.metrics:
            feed_health[self.status(feed_id).value] += 1

        return {
            "feed_health": feed_health,
            "total_feeds_tracked": len(self.metrics),
            "feeds": {
                feed_id: {
                    "status": self.status(feed_id).value,
                    "reliability": round(m.reliability(), 1),
                    "avg_response_time": round(m.avg_response_time, 3),
                    "adaptive_timeout": self.get_adaptive_timeout(feed_id),
                    "total_items": m.total_items_fetched,
                }
                for feed_id, m in self.metrics.items()
            },
        }
