import pytest

from shared.utils.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from shared.utils.retry import retry_with_backoff


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


async def failing():
    raise ConnectionError("sin red")


async def ok():
    return "ok"


async def test_opens_after_threshold_and_fails_fast():
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30, clock=FakeClock())

    for _ in range(2):
        with pytest.raises(ConnectionError):
            await breaker.call(failing)

    assert breaker.state == CircuitState.OPEN
    assert breaker.is_open
    with pytest.raises(CircuitOpenError):
        await breaker.call(ok)


async def test_half_open_recovers_on_success():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=clock)
    with pytest.raises(ConnectionError):
        await breaker.call(failing)

    clock.now = 31
    assert not breaker.is_open
    assert await breaker.call(ok) == "ok"
    assert breaker.state == CircuitState.CLOSED


async def test_half_open_failure_reopens():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=30, clock=clock)
    for _ in range(3):
        with pytest.raises(ConnectionError):
            await breaker.call(failing)

    clock.now = 40
    with pytest.raises(ConnectionError):
        await breaker.call(failing)
    assert breaker.state == CircuitState.OPEN


async def test_unexpected_exceptions_do_not_count():
    breaker = CircuitBreaker(failure_threshold=1, expected_exceptions=(ConnectionError,))

    async def broken():
        raise KeyError("bug")

    with pytest.raises(KeyError):
        await breaker.call(broken)
    assert breaker.state == CircuitState.CLOSED


async def test_reset_closes_circuit():
    breaker = CircuitBreaker(failure_threshold=1, clock=FakeClock())
    with pytest.raises(ConnectionError):
        await breaker.call(failing)

    breaker.reset()
    assert breaker.state == CircuitState.CLOSED
    assert await breaker.call(ok) == "ok"


async def test_retry_with_backoff_eventually_succeeds():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("intermitente")
        return "ok"

    assert await retry_with_backoff(flaky, max_retries=3, initial_delay=0) == "ok"
    assert len(calls) == 3


async def test_retry_with_backoff_gives_up():
    calls = []

    async def down():
        calls.append(1)
        raise ConnectionError("caído")

    with pytest.raises(ConnectionError):
        await retry_with_backoff(down, max_retries=2, initial_delay=0, exceptions=(ConnectionError,))
    assert len(calls) == 3
