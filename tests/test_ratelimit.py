"""Tests for RateLimiter.

Tests cover:
- No waiting when disabled
- Sleep is called when requests are too fast
- Slow requests don't cause unnecessary waits
- Targets are limited independently
"""

import threading
import time
from unittest.mock import patch

from http_executer.ratelimit import RateLimiter


class TestRateLimiter:
    def test_no_rate_limit_when_disabled(self) -> None:
        """When requests_per_second is None, no waiting occurs."""
        limiter = RateLimiter(None)

        with patch("http_executer.ratelimit.time.sleep") as mock_sleep:
            for _ in range(3):
                limiter.take("http://a.test")

            mock_sleep.assert_not_called()

    def test_sleep_called_when_requests_too_fast(self) -> None:
        """10 requests/second: a second take after 0.05s sleeps 0.05s."""
        with patch("http_executer.ratelimit.time.sleep") as mock_sleep, \
             patch("http_executer.ratelimit.time.monotonic") as mock_monotonic:
            base_time = 10000.0
            mock_monotonic.side_effect = [
                base_time,         # First take: now (no previous send)
                base_time,         # First take: record send time
                base_time + 0.05,  # Second take: now (0.05 < 0.1, needs sleep)
                base_time + 0.1,   # Second take: record send time after sleep
            ]

            limiter = RateLimiter(10.0)
            limiter.take("http://a.test")
            limiter.take("http://a.test")

            mock_sleep.assert_called_once()
            sleep_duration = mock_sleep.call_args[0][0]
            assert abs(sleep_duration - 0.05) < 0.001

    def test_slow_requests_do_not_sleep(self) -> None:
        with patch("http_executer.ratelimit.time.sleep") as mock_sleep, \
             patch("http_executer.ratelimit.time.monotonic") as mock_monotonic:
            base_time = 10000.0
            mock_monotonic.side_effect = [
                base_time,
                base_time,
                base_time + 0.5,  # Well past the 0.1s interval
                base_time + 0.5,
            ]

            limiter = RateLimiter(10.0)
            limiter.take("http://a.test")
            limiter.take("http://a.test")

            mock_sleep.assert_not_called()

    def test_targets_are_independent(self) -> None:
        with patch("http_executer.ratelimit.time.sleep") as mock_sleep, \
             patch("http_executer.ratelimit.time.monotonic") as mock_monotonic:
            mock_monotonic.return_value = 10000.0

            limiter = RateLimiter(10.0)
            limiter.take("http://a.test")
            limiter.take("http://b.test")

            mock_sleep.assert_not_called()

    def test_concurrent_takes_are_spaced(self) -> None:
        """Five concurrent takes at 50/s span at least four intervals."""
        limiter = RateLimiter(50.0)
        barrier = threading.Barrier(5)

        def take() -> None:
            barrier.wait()
            limiter.take("http://a.test")

        threads = [threading.Thread(target=take) for _ in range(5)]
        started = time.monotonic()
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert time.monotonic() - started >= 4 * 0.02 - 0.005
