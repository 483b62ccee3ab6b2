"""Test bounded exponential backoff."""

import pytest

from placement_engine.core.errors import CapacityExhausted, SecretResolutionFailure
from placement_engine.core.retry import RetryPolicy


class Flaky:
    def __init__(self, failures, error=CapacityExhausted):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error("not yet")
        return "done"


class TestRetryPolicy:
    """Test the backoff schedule and retry loop."""

    # -------------------------
    # DELAY TESTS
    # -------------------------

    def test_default_schedule(self):
        """Test the default 10/30/90 second schedule."""
        policy = RetryPolicy()
        assert [policy.calculate_delay(i) for i in range(3)] == [10.0, 30.0, 90.0]

    def test_delay_is_capped(self):
        """Test that delays never exceed the cap."""
        policy = RetryPolicy(max_delay=60.0)
        assert policy.calculate_delay(5) == 60.0

    # -------------------------
    # RUN TESTS
    # -------------------------

    def test_succeeds_after_transient_failures(self, clock):
        """Test that transient failures are retried until success."""
        policy = RetryPolicy(sleep=clock.sleep)
        operation = Flaky(failures=2)

        result = policy.run(operation, retry_on=(CapacityExhausted,))

        assert result == "done"
        assert operation.calls == 3
        assert clock.sleeps == [10.0, 30.0]

    def test_gives_up_after_max_attempts(self, clock):
        """Test that the last error is raised once attempts run out."""
        policy = RetryPolicy(max_attempts=4, sleep=clock.sleep)
        operation = Flaky(failures=10)

        with pytest.raises(CapacityExhausted):
            policy.run(operation, retry_on=(CapacityExhausted,))

        assert operation.calls == 4
        assert clock.sleeps == [10.0, 30.0, 90.0]

    def test_other_errors_are_not_retried(self, clock):
        """Test that errors outside retry_on propagate at once."""
        policy = RetryPolicy(sleep=clock.sleep)

        def operation():
            raise SecretResolutionFailure(["CS2_PW"])

        with pytest.raises(SecretResolutionFailure):
            policy.run(operation, retry_on=(CapacityExhausted,))

        assert clock.sleeps == []

    def test_before_retry_hook(self, clock):
        """Test that the hook sees each retried error."""
        seen = []
        policy = RetryPolicy(sleep=clock.sleep)

        policy.run(Flaky(failures=1), retry_on=(CapacityExhausted,), before_retry=seen.append)

        assert len(seen) == 1
        assert isinstance(seen[0], CapacityExhausted)
