"""
Tests for the fixed-window rate limiter.

Run with: pytest tests/test_rate_limiter.py -v
"""

from campus_booking.rate_limiter import RateLimiter, clear_rate_limits, get_rate_limit_stats


class FakeClock:
    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


def make_limiter(**kwargs):
    clock = FakeClock()
    return RateLimiter(clock=clock, **kwargs), clock


class TestRateLimiter:

    def test_two_allowed_then_blocked(self):
        limiter, _ = make_limiter()
        assert limiter.check_rate_limit("1.2.3.4", max_requests=2) is True
        assert limiter.check_rate_limit("1.2.3.4", max_requests=2) is True
        assert limiter.check_rate_limit("1.2.3.4", max_requests=2) is False

    def test_blocked_calls_do_not_increment(self):
        limiter, _ = make_limiter()
        for _ in range(5):
            limiter.check_rate_limit("k", max_requests=2)
        assert limiter.records["k"].count == 2

    def test_window_reset(self):
        limiter, clock = make_limiter()
        limiter.check_rate_limit("k", max_requests=1, window_ms=1000)
        assert limiter.check_rate_limit("k", max_requests=1, window_ms=1000) is False

        clock.advance(1001)
        assert limiter.check_rate_limit("k", max_requests=1, window_ms=1000) is True

    def test_exactly_at_reset_is_still_same_window(self):
        limiter, clock = make_limiter()
        limiter.check_rate_limit("k", max_requests=1, window_ms=1000)
        clock.advance(1000)
        assert limiter.check_rate_limit("k", max_requests=1, window_ms=1000) is False

    def test_keys_are_independent(self):
        limiter, _ = make_limiter()
        assert limiter.check_rate_limit("a", max_requests=1) is True
        assert limiter.check_rate_limit("a", max_requests=1) is False
        assert limiter.check_rate_limit("b", max_requests=1) is True

    def test_default_policy_admits_ten(self):
        limiter, _ = make_limiter()
        results = [limiter.check_rate_limit("ip") for _ in range(11)]
        assert results == [True] * 10 + [False]

    def test_boundary_burst_admits_two_windows(self):
        """Known fixed-window limitation: 2 * max around a window edge."""
        limiter, clock = make_limiter()
        admitted = sum(limiter.check_rate_limit("ip", 5, 1000) for _ in range(5))
        clock.advance(1001)
        admitted += sum(limiter.check_rate_limit("ip", 5, 1000) for _ in range(5))
        assert admitted == 10

    def test_sweep_drops_expired_keys(self):
        limiter, clock = make_limiter(sweep_interval_seconds=60)
        limiter.check_rate_limit("old", window_ms=1000)
        clock.advance(61_000)
        limiter.check_rate_limit("new", window_ms=1000)
        assert "old" not in limiter.records
        assert "new" in limiter.records

    def test_sweep_keeps_live_windows(self):
        limiter, clock = make_limiter(sweep_interval_seconds=60)
        limiter.check_rate_limit("live", window_ms=120_000)
        clock.advance(61_000)
        limiter.check_rate_limit("other")
        assert limiter.records["live"].count == 1


class TestRateLimitUtilities:

    def test_stats(self):
        limiter, _ = make_limiter()
        for _ in range(3):
            limiter.check_rate_limit("busy")
        limiter.check_rate_limit("quiet")

        stats = get_rate_limit_stats(limiter)
        assert stats["total_tracked_keys"] == 2
        assert stats["top_keys"][0]["key"] == "busy"
        assert stats["top_keys"][0]["request_count"] == 3

    def test_clear_single_and_all(self):
        limiter, _ = make_limiter()
        limiter.check_rate_limit("a")
        limiter.check_rate_limit("b")

        clear_rate_limits("a", limiter=limiter)
        assert set(limiter.records) == {"b"}

        clear_rate_limits(limiter=limiter)
        assert limiter.records == {}
