"""Tests for backoff computation and in-call retries."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from punchlist.client.api import APIError, NetworkUnavailableError
from punchlist.client.sync.retry import compute_backoff, retry_with_backoff


class TestComputeBackoff:
    """Tests for compute_backoff."""

    def test_exponential_growth(self) -> None:
        delays = [compute_backoff(n, initial=1.0, maximum=60.0, multiplier=2.0) for n in (1, 2, 3, 4)]
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_maximum(self) -> None:
        assert compute_backoff(10, initial=1.0, maximum=30.0, multiplier=2.0) == 30.0

    def test_zero_initial_disables_backoff(self) -> None:
        assert compute_backoff(5, initial=0.0) == 0.0

    def test_jitter_bounds(self) -> None:
        low = compute_backoff(1, initial=10.0, jitter=0.1, rng=lambda: 0.0)
        high = compute_backoff(1, initial=10.0, jitter=0.1, rng=lambda: 0.9999999)
        assert low == pytest.approx(9.0)
        assert 10.0 < high <= 11.0


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    def test_success_first_try(self) -> None:
        func = MagicMock(return_value="ok")
        assert retry_with_backoff(func, sleep=lambda _: None) == "ok"
        assert func.call_count == 1

    def test_retries_network_errors(self) -> None:
        """Network failures should be retried with growing delays."""
        func = MagicMock(
            side_effect=[NetworkUnavailableError("down"), ConnectionError("reset"), "ok"]
        )
        sleeps: list[float] = []

        result = retry_with_backoff(
            func,
            max_retries=3,
            initial_backoff=1.0,
            backoff_multiplier=2.0,
            sleep=sleeps.append,
        )

        assert result == "ok"
        assert func.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_raises_after_exhausting(self) -> None:
        func = MagicMock(side_effect=NetworkUnavailableError("down"))
        with pytest.raises(NetworkUnavailableError):
            retry_with_backoff(func, max_retries=2, sleep=lambda _: None)
        assert func.call_count == 3

    def test_non_retryable_propagates_immediately(self) -> None:
        """Server rejections should not be retried in-call."""
        func = MagicMock(side_effect=APIError("bad request", 400))
        with pytest.raises(APIError):
            retry_with_backoff(func, max_retries=3, sleep=lambda _: None)
        assert func.call_count == 1
