from orchestra.utils.circuit_breaker import CircuitBreaker, CircuitState


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def breaker(clock):
    return CircuitBreaker(failure_threshold=3, success_threshold=2, reset_timeout=30, failure_window=60, clock=clock)


def test_circuit_opens_after_threshold_failures():
    clock = FakeClock()
    cb = breaker(clock)

    for _ in range(2):
        cb.record_failure("coder", "boom")
    assert cb.is_allowed("coder")

    cb.record_failure("coder", "boom")

    assert cb.get_state("coder") is CircuitState.OPEN
    assert not cb.is_allowed("coder")
    assert cb.is_allowed("tester")


def test_half_open_after_reset_timeout_and_closes_after_successes():
    clock = FakeClock()
    cb = breaker(clock)
    for _ in range(3):
        cb.record_failure("coder")

    clock.advance(30)
    assert cb.is_allowed("coder")
    assert cb.get_state("coder") is CircuitState.HALF_OPEN

    cb.record_success("coder")
    assert cb.get_state("coder") is CircuitState.HALF_OPEN
    cb.record_success("coder")

    assert cb.get_state("coder") is CircuitState.CLOSED
    assert cb.get_stats("coder").failure_count == 0


def test_failure_while_half_open_reopens():
    clock = FakeClock()
    cb = breaker(clock)
    for _ in range(3):
        cb.record_failure("coder")
    clock.advance(31)
    cb.is_allowed("coder")

    cb.record_failure("coder", "still broken")

    assert cb.get_state("coder") is CircuitState.OPEN
    assert not cb.is_allowed("coder")


def test_failures_outside_the_window_do_not_count():
    clock = FakeClock()
    cb = breaker(clock)
    cb.record_failure("coder")
    cb.record_failure("coder")

    clock.advance(61)
    cb.record_failure("coder")

    assert cb.get_state("coder") is CircuitState.CLOSED
    assert cb.get_stats("coder").failure_count == 1


def test_reset_clears_state():
    clock = FakeClock()
    cb = breaker(clock)
    for _ in range(3):
        cb.record_failure("coder")
        cb.record_failure("tester")

    cb.reset("coder")
    assert cb.is_allowed("coder")
    assert not cb.is_allowed("tester")

    cb.reset_all()
    assert cb.is_allowed("tester")
