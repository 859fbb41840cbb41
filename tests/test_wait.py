from __future__ import annotations

import pytest

from vradriver.core.exceptions import TransientPollError, WaitTimeoutError
from vradriver.wait import wait_for

pytestmark = [pytest.mark.unit]


class _Script:
    """Check that plays back a script of results; exceptions are raised."""

    def __init__(self, *steps: bool | BaseException) -> None:
        self._steps = list(steps)
        self.calls = 0

    def __call__(self) -> bool:
        step = self._steps[min(self.calls, len(self._steps) - 1)]
        self.calls += 1
        if isinstance(step, BaseException):
            raise step
        return step


class _Clock:
    """Monotonic clock advanced only by its own sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestWaitForSuccess:
    def test_immediate_success_never_sleeps(self):
        sleeps: list[float] = []
        check = _Script(True)

        wait_for(check, sleep=sleeps.append)

        assert check.calls == 1
        assert sleeps == []

    def test_success_on_third_call_sleeps_twice(self):
        sleeps: list[float] = []
        check = _Script(False, False, True)

        wait_for(check, interval=5.0, sleep=sleeps.append)

        assert check.calls == 3
        assert sleeps == [5.0, 5.0]

    def test_only_true_counts_as_done(self):
        sleeps: list[float] = []
        check = _Script(None, 0, True)  # type: ignore[arg-type]

        wait_for(check, sleep=sleeps.append)

        assert check.calls == 3

    def test_tick_reports_elapsed_and_interval(self):
        ticks: list[tuple[float, float]] = []
        check = _Script(False, False, True)

        wait_for(
            check,
            interval=2.5,
            on_tick=lambda elapsed, interval: ticks.append((elapsed, interval)),
            sleep=lambda _: None,
        )

        assert len(ticks) == 2
        assert all(interval == 2.5 for _, interval in ticks)
        assert all(elapsed >= 0 for elapsed, _ in ticks)


class TestWaitForRetries:
    def test_one_error_then_success_with_one_retry(self):
        check = _Script(RuntimeError("flaky"), True)

        wait_for(check, max_retries=1, sleep=lambda _: None)

        assert check.calls == 2

    def test_two_errors_with_one_retry_raises(self):
        first, second = RuntimeError("first"), RuntimeError("second")
        check = _Script(first, second, True)

        with pytest.raises(TransientPollError) as exc_info:
            wait_for(check, max_retries=1, sleep=lambda _: None)

        assert check.calls == 2
        assert exc_info.value.attempts == 2
        assert exc_info.value.__cause__ is second

    def test_five_retries_allows_six_attempts(self):
        check = _Script(ValueError("boom"))

        with pytest.raises(TransientPollError):
            wait_for(check, max_retries=5, sleep=lambda _: None)

        assert check.calls == 6

    def test_zero_retries_first_error_is_fatal(self):
        sleeps: list[float] = []
        check = _Script(ValueError("boom"), True)

        with pytest.raises(TransientPollError):
            wait_for(check, max_retries=0, sleep=sleeps.append)

        assert check.calls == 1
        assert sleeps == []

    def test_errors_reported_with_attempt_index(self):
        errors: list[tuple[str, int]] = []
        check = _Script(ValueError("a"), ValueError("b"), True)

        wait_for(
            check,
            max_retries=2,
            on_error=lambda e, attempt: errors.append((str(e), attempt)),
            sleep=lambda _: None,
        )

        assert errors == [("a", 1), ("b", 2)]

    def test_interleaved_false_results_do_not_consume_retries(self):
        check = _Script(ValueError("a"), False, False, True)

        wait_for(check, max_retries=1, sleep=lambda _: None)

        assert check.calls == 4

    def test_keyboard_interrupt_is_not_retried(self):
        check = _Script(KeyboardInterrupt(), True)

        with pytest.raises(KeyboardInterrupt):
            wait_for(check, max_retries=3, sleep=lambda _: None)

        assert check.calls == 1


class TestWaitForTimeout:
    def test_budget_spent_raises_timeout(self):
        check = _Script(False)

        with pytest.raises(WaitTimeoutError) as exc_info:
            wait_for(check, max_wait_time=0, sleep=lambda _: None)

        assert check.calls == 1
        assert exc_info.value.budget == 0

    def test_timeout_wins_over_remaining_retries(self):
        check = _Script(ValueError("boom"))

        with pytest.raises(WaitTimeoutError):
            wait_for(check, max_wait_time=0, max_retries=10, sleep=lambda _: None)

        assert check.calls == 1

    def test_budget_running_out_mid_sleep_is_not_slept_through(self):
        clock = _Clock()
        check = _Script(False, True)

        with pytest.raises(WaitTimeoutError) as exc_info:
            wait_for(check, max_wait_time=1, interval=2, sleep=clock.sleep, clock=clock)

        assert check.calls == 1
        assert clock.sleeps == []
        assert exc_info.value.elapsed == 0

    def test_no_attempt_starts_after_the_deadline(self):
        clock = _Clock()
        check = _Script(False)

        with pytest.raises(WaitTimeoutError) as exc_info:
            wait_for(check, max_wait_time=12, interval=5, sleep=clock.sleep, clock=clock)

        assert check.calls == 3
        assert clock.sleeps == [5, 5]
        assert exc_info.value.elapsed == 10
        assert exc_info.value.budget == 12

    def test_last_attempt_inside_the_budget_runs(self):
        clock = _Clock()
        check = _Script(False, False, True)

        wait_for(check, max_wait_time=10.5, interval=5, sleep=clock.sleep, clock=clock)

        assert check.calls == 3
        assert clock.sleeps == [5, 5]

    def test_slow_check_counts_against_the_budget(self):
        clock = _Clock()

        def slow_check() -> bool:
            clock.now += 8
            return False

        with pytest.raises(WaitTimeoutError):
            wait_for(slow_check, max_wait_time=10, interval=5, sleep=clock.sleep, clock=clock)

        assert clock.sleeps == []
