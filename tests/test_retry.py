"""Unit tests for the bounded retry executor."""

import logging

import pytest

from checkout_service.retry import retry_with_backoff


class FlakyOperation:
    """Fails a fixed number of times, then returns a value."""

    def __init__(self, failures, result="ok"):
        self.failures = failures
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"falha {self.calls}")
        return self.result


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_returns_result_after_two_failures(self):
        """Two failures followed by a success should return the success."""
        operation = FlakyOperation(failures=2, result="pago")
        sleep = RecordingSleep()

        result = await retry_with_backoff(operation, max_attempts=3, base_delay=1.0, sleep=sleep)

        assert result == "pago"
        assert operation.calls == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_always_failing_operation_stops_after_budget(self):
        """An operation that always fails is attempted exactly max_attempts times."""
        operation = FlakyOperation(failures=10)
        sleep = RecordingSleep()

        with pytest.raises(ConnectionError, match="falha 3"):
            await retry_with_backoff(operation, max_attempts=3, base_delay=1.0, sleep=sleep)

        assert operation.calls == 3
        assert sum(sleep.delays) == 1.0 * 1 + 1.0 * 2

    @pytest.mark.asyncio
    async def test_delay_grows_linearly_with_attempt_number(self):
        operation = FlakyOperation(failures=4)
        sleep = RecordingSleep()

        await retry_with_backoff(operation, max_attempts=5, base_delay=2.0, sleep=sleep)

        assert sleep.delays == [2.0, 4.0, 6.0, 8.0]

    @pytest.mark.asyncio
    async def test_first_attempt_success_does_not_wait(self):
        operation = FlakyOperation(failures=0)
        sleep = RecordingSleep()

        assert await retry_with_backoff(operation, sleep=sleep) == "ok"
        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_single_attempt_propagates_immediately(self):
        operation = FlakyOperation(failures=1)
        sleep = RecordingSleep()

        with pytest.raises(ConnectionError):
            await retry_with_backoff(operation, max_attempts=1, sleep=sleep)

        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_zero_attempts_rejected(self):
        with pytest.raises(ValueError):
            await retry_with_backoff(FlakyOperation(failures=0), max_attempts=0)

    @pytest.mark.asyncio
    async def test_default_sleep_with_zero_delay(self):
        """The real asyncio.sleep is used when no sleep is injected."""
        operation = FlakyOperation(failures=2)

        assert await retry_with_backoff(operation, base_delay=0) == "ok"
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_failures_logged_under_module_logger(self, caplog):
        operation = FlakyOperation(failures=1)

        with caplog.at_level(logging.WARNING, logger="checkout_service.retry"):
            await retry_with_backoff(operation, sleep=RecordingSleep())

        assert [r.name for r in caplog.records] == ["checkout_service.retry"]
        assert caplog.records[0].levelno == logging.WARNING
