"""
Tests for hookgate/services/circuit_breaker.py.
"""
import threading

import pytest

from hookgate.services.circuit_breaker import CircuitBreaker, CircuitOpenError

URL = "https://consumer.example.com/hooks"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTransitions:
    def test_opens_at_threshold(self):
        breaker = CircuitBreaker(clock=FakeClock())
        assert breaker.record_failure(URL, 3) is False
        assert breaker.record_failure(URL, 3) is False
        assert breaker.allowed(URL, 300)
        assert breaker.record_failure(URL, 3) is True
        assert not breaker.allowed(URL, 300)

    def test_check_raises_while_open(self):
        clock = FakeClock()
        breaker = CircuitBreaker(clock=clock)
        for _ in range(2):
            breaker.record_failure(URL, 2)
        clock.now += 100
        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.check(URL, 300)
        assert exc_info.value.endpoint == URL
        assert exc_info.value.retry_in == 200

    def test_closes_after_cooldown_keeping_count(self):
        clock = FakeClock()
        breaker = CircuitBreaker(clock=clock)
        for _ in range(2):
            breaker.record_failure(URL, 2)
        clock.now += 300
        breaker.check(URL, 300)
        state = breaker.state(URL)
        assert not state.is_open
        assert state.failure_count == 2
        # One more failure re-opens immediately
        assert breaker.record_failure(URL, 2) is True

    def test_success_resets_counter(self):
        breaker = CircuitBreaker(clock=FakeClock())
        breaker.record_failure(URL, 3)
        breaker.record_failure(URL, 3)
        breaker.record_success(URL)
        assert breaker.state(URL).failure_count == 0
        assert breaker.record_failure(URL, 3) is False

    def test_endpoints_are_independent(self):
        breaker = CircuitBreaker(clock=FakeClock())
        breaker.record_failure(URL, 1)
        assert not breaker.allowed(URL, 300)
        assert breaker.allowed("https://other.example.com", 300)


class TestManualControl:
    def test_open_and_close(self):
        breaker = CircuitBreaker(clock=FakeClock())
        breaker.open(URL)
        assert not breaker.allowed(URL, 300)
        breaker.close(URL)
        assert breaker.allowed(URL, 300)
        assert breaker.state(URL).failure_count == 0

    def test_state_is_a_copy(self):
        breaker = CircuitBreaker(clock=FakeClock())
        snapshot = breaker.state(URL)
        snapshot.is_open = True
        assert breaker.allowed(URL, 300)

    def test_all_states_reset_clear(self):
        breaker = CircuitBreaker(clock=FakeClock())
        breaker.record_failure(URL, 5)
        breaker.record_failure("https://b.example.com", 5)
        assert set(breaker.all_states()) == {URL, "https://b.example.com"}
        breaker.reset(URL)
        assert set(breaker.all_states()) == {"https://b.example.com"}
        breaker.clear()
        assert breaker.all_states() == {}


class TestConcurrency:
    def test_failures_from_many_threads_are_all_counted(self):
        breaker = CircuitBreaker(clock=FakeClock())
        opened = []

        def worker():
            for _ in range(250):
                if breaker.record_failure(URL, 1000):
                    opened.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        state = breaker.state(URL)
        assert state.failure_count == 2000
        assert state.is_open
        assert len(opened) == 1

    def test_success_interleaved_with_failures_leaves_consistent_state(self):
        breaker = CircuitBreaker(clock=FakeClock())
        barrier = threading.Barrier(5)

        def failing():
            barrier.wait()
            for _ in range(100):
                breaker.record_failure(URL, 10_000)

        def succeeding():
            barrier.wait()
            for _ in range(100):
                breaker.record_success(URL)

        threads = [threading.Thread(target=failing) for _ in range(4)]
        threads.append(threading.Thread(target=succeeding))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        state = breaker.state(URL)
        assert 0 <= state.failure_count <= 400
        assert not state.is_open

        breaker.record_success(URL)
        assert breaker.state(URL).failure_count == 0
