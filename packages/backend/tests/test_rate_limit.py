"""Sliding-window rate limiter tests."""

from hassstream.realtime.clients import RateLimitState
from hassstream.realtime.rate_limit import RateLimiter


def test_allows_up_to_ceiling_then_denies():
    limiter = RateLimiter(window_seconds=60, max_requests=3)
    state = RateLimitState(window_start=0.0)

    assert [limiter.allow(state, 10.0) for _ in range(4)] == [True, True, True, False]
    assert state.count == 3


def test_denied_attempt_does_not_increment():
    limiter = RateLimiter(window_seconds=60, max_requests=1)
    state = RateLimitState(window_start=0.0)

    limiter.allow(state, 1.0)
    limiter.allow(state, 2.0)
    limiter.allow(state, 3.0)
    assert state.count == 1


def test_window_resets_after_expiry():
    limiter = RateLimiter(window_seconds=60, max_requests=2)
    state = RateLimitState(window_start=0.0)
    limiter.allow(state, 1.0)
    limiter.allow(state, 2.0)
    assert limiter.allow(state, 59.0) is False

    # Exactly 60s elapsed is still the same window
    assert limiter.allow(state, 60.0) is False

    assert limiter.allow(state, 60.5) is True
    assert state.window_start == 60.5
    assert state.count == 1


def test_reset_if_expired_reports_whether_it_reset():
    limiter = RateLimiter(window_seconds=60, max_requests=10)
    state = RateLimitState(count=7, window_start=100.0)

    assert limiter.reset_if_expired(state, 150.0) is False
    assert state.count == 7

    assert limiter.reset_if_expired(state, 161.0) is True
    assert state.count == 0
    assert state.window_start == 161.0
