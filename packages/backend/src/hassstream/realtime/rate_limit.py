"""Per-client sliding-window rate limiter.

Learn: Same shape as a per-minute request counter, but the window is
anchored to each client rather than to the wall-clock minute:

  - if more than `window_seconds` passed since window_start → reset
    (count = 0, window_start = now)
  - if count has reached `max_requests` → deny
  - otherwise count += 1 and allow

A denied delivery is replaced by one rate_limit_exceeded frame, sent by
the registry outside the limiter, so a saturated client can never make
the substitute itself recurse.
"""

from hassstream.realtime.clients import RateLimitState


class RateLimiter:
    """Sliding-window counter applied to a client's RateLimitState."""

    def __init__(self, window_seconds: float = 60.0, max_requests: int = 1000):
        self.window_seconds = window_seconds
        self.max_requests = max_requests

    def window_expired(self, state: RateLimitState, now: float) -> bool:
        return now - state.window_start > self.window_seconds

    def reset_if_expired(self, state: RateLimitState, now: float) -> bool:
        """Start a fresh window if the current one has run out."""
        if self.window_expired(state, now):
            state.count = 0
            state.window_start = now
            return True
        return False

    def allow(self, state: RateLimitState, now: float) -> bool:
        """Count one delivery attempt. False when the ceiling is reached."""
        self.reset_if_expired(state, now)
        if state.count >= self.max_requests:
            return False
        state.count += 1
        return True
