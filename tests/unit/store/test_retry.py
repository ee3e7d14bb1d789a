"""Tests for store call retries."""

import pytest

from flock.core.errors import NotFoundError, UnavailableError
from flock.store import call_with_retry


class TestCallWithRetry:
    """Tests for call_with_retry."""

    def test_success_first_try(self):
        sleeps = []
        assert call_with_retry(lambda: 42, sleep=sleeps.append) == 42
        assert sleeps == []

    def test_retries_with_exponential_backoff(self):
        attempts = []
        sleeps = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise UnavailableError("timed out")
            return "ok"

        result = call_with_retry(flaky, max_retries=3, retry_delay=0.5, sleep=sleeps.append)
        assert result == "ok"
        assert len(attempts) == 3
        assert sleeps == [0.5, 1.0]

    def test_gives_up_after_max_retries(self):
        sleeps = []

        def down():
            raise UnavailableError("down")

        with pytest.raises(UnavailableError, match="down"):
            call_with_retry(down, max_retries=4, retry_delay=1, sleep=sleeps.append)
        assert sleeps == [1, 2, 4]

    def test_other_errors_not_retried(self):
        attempts = []

        def missing():
            attempts.append(1)
            raise NotFoundError("Members", "m1")

        with pytest.raises(NotFoundError):
            call_with_retry(missing, sleep=lambda _: None)
        assert len(attempts) == 1

    def test_at_least_one_attempt(self):
        assert call_with_retry(lambda: "ok", max_retries=0, sleep=lambda _: None) == "ok"

    def test_raises_last_error(self):
        errors = iter([UnavailableError("first"), UnavailableError("second")])

        def down():
            raise next(errors)

        with pytest.raises(UnavailableError, match="second"):
            call_with_retry(down, max_retries=2, sleep=lambda _: None)

    def test_single_attempt_does_not_sleep(self):
        sleeps = []

        def down():
            raise UnavailableError("down")

        with pytest.raises(UnavailableError):
            call_with_retry(down, max_retries=1, sleep=sleeps.append)
        assert sleeps == []
