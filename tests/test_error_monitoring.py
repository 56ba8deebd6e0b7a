##########################################################################################
#
# Script name: test_error_monitoring.py
#
# Description: Error classification, circuit breaking and adaptive feed timeouts.
#
##########################################################################################

import pytest

from curator.services.feed_performance import FeedPerformanceTracker, FeedStatus
from curator.utils.error_monitoring import (
    CircuitBreaker,
    CircuitState,
    CriticalError,
    ErrorHandler,
    ErrorSeverity,
    is_rate_limit_message,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_rate_limit_messages_are_recognized() -> None:
    assert is_rate_limit_message('HTTP 429 Too Many Requests')
    assert is_rate_limit_message('RESOURCE_EXHAUSTED: Quota exceeded')
    assert not is_rate_limit_message('connection reset by peer')


def test_severity_depends_on_service_criticality() -> None:
    handler = ErrorHandler()
    assert handler.classify_severity(ValueError('API key not valid'), 'backend') == ErrorSeverity.CRITICAL
    assert handler.classify_severity(TimeoutError('timed out'), 'feeds') == ErrorSeverity.LOW
    assert handler.classify_severity(RuntimeError('429'), 'scheduler') == ErrorSeverity.HIGH
    assert handler.classify_severity(RuntimeError('boom'), 'content') == ErrorSeverity.LOW


def test_handle_error_records_history_and_patterns() -> None:
    handler = ErrorHandler()
    for _ in range(3):
        context = handler.handle_error(TimeoutError('feed timed out'), 'feeds', 'fetch', {'feed': 'x'})

    assert context.recovery_action is not None
    assert context.metadata == {'feed': 'x'}
    stats = handler.get_error_statistics()
    assert stats['total_errors'] == 3
    assert stats['by_service'] == {'feeds': 3}
    assert handler.detect_error_patterns() == ['Repeated pattern: TimeoutError in feeds occurred 3 times recently']


def test_circuit_opens_half_opens_and_closes() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=2, success_threshold=2, recovery_timeout=60, clock=clock)

    breaker.record_failure('feed')
    assert breaker.should_attempt('feed')
    breaker.record_failure('feed')
    assert breaker.is_open('feed')

    clock.now = 61
    assert breaker.state('feed') == CircuitState.HALF_OPEN
    breaker.record_success('feed')
    assert breaker.state('feed') == CircuitState.HALF_OPEN
    breaker.record_success('feed')
    assert breaker.state('feed') == CircuitState.CLOSED


def test_failure_while_half_open_reopens() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=10, clock=clock)
    breaker.record_failure('feed')
    clock.now = 11
    assert breaker.should_attempt('feed')
    breaker.record_failure('feed')
    assert breaker.is_open('feed')


def test_adaptive_timeouts_follow_feed_history() -> None:
    tracker = FeedPerformanceTracker()
    assert tracker.get_adaptive_timeout('new') == tracker.base_timeout

    tracker.record_success('quick', 1.0, 10)
    assert tracker.get_adaptive_timeout('quick') == tracker.fast_timeout

    tracker.record_failure('sluggish', 11.0, 'timeout')
    assert tracker.get_adaptive_timeout('sluggish') == tracker.slow_timeout + tracker.unreliable_padding
    assert tracker.get_adaptive_timeout('sluggish') <= tracker.max_timeout


def test_repeated_failures_open_the_feed_circuit() -> None:
    tracker = FeedPerformanceTracker(clock=FakeClock())
    for _ in range(5):
        tracker.record_failure('dead', 1.0, 'HTTP 500')

    assert not tracker.can_fetch('dead')
    assert tracker.status('dead') == FeedStatus.CIRCUIT_OPEN
    report = tracker.get_performance_report()
    assert report['feed_health']['circuit_open'] == 1


def test_critical_errors_raise_only_when_asked() -> None:
    quiet = ErrorHandler()
    context = quiet.handle_error(ValueError('API key not valid'), 'backend', 'generate')
    assert context.severity == ErrorSeverity.CRITICAL.value

    strict = ErrorHandler(raise_on_critical=True)
    with pytest.raises(CriticalError, match='backend:generate'):
        strict.handle_error(ValueError('API key not valid'), 'backend', 'generate')
    strict.handle_error(RuntimeError('boom'), 'content', 'extract')
