##########################################################################################
#
# Script name: test_rate_limiter.py
#
# Description: Per-caller sliding window behavior driven by a fake clock.
#
##########################################################################################

import pytest

from curator.services.rate_limiter import RateLimitExceededError, SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_one_request_per_window_per_caller() -> None:
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=30, clock=clock)

    assert limiter.try_acquire('alice')
    assert not limiter.try_acquire('alice')
    assert limiter.try_acquire('bob')

    clock.advance(29.9)
    assert not limiter.check_limit('alice')
    clock.advance(0.2)
    assert limiter.check_limit('alice')
    assert limiter.try_acquire('alice')


def test_window_slides_rather_than_resetting() -> None:
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=10, clock=clock)

    assert limiter.try_acquire('alice')
    clock.advance(6)
    assert limiter.try_acquire('alice')
    clock.advance(5)
    # first timestamp left the window, second is still inside
    assert limiter.try_acquire('alice')
    assert not limiter.try_acquire('alice')


def test_status_reports_wait_time() -> None:
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=30, clock=clock)
    limiter.record_request('alice')
    clock.advance(10)

    status = limiter.get_status('alice')
    assert status['requests_in_window'] == 1
    assert not status['can_request']
    assert status['next_available_in_ms'] == 20000

    with pytest.raises(RateLimitExceededError) as exc_info:
        limiter.acquire('alice')
    assert exc_info.value.retry_after == pytest.approx(20.0)


def test_inactive_callers_are_swept() -> None:
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(window_seconds=5, cleanup_interval=60, clock=clock)
    for caller in ('a', 'b', 'c'):
        limiter.record_request(caller)

    clock.advance(61)
    limiter.check_limit('d')

    assert limiter.get_global_stats()['tracked_callers'] == 0


def test_reset_and_clear_all() -> None:
    limiter = SlidingWindowRateLimiter(clock=FakeClock())
    limiter.record_request('alice')
    limiter.record_request('bob')
    limiter.reset('alice')
    assert limiter.check_limit('alice')
    assert not limiter.check_limit('bob')
    limiter.clear_all()
    assert limiter.check_limit('bob')
