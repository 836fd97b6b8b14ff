import itertools
import threading
import time

import pytest

from containerbench import engine
from containerbench.config import ConfigurationError, OnOperationError, RunConfig
from containerbench.engine import (
    BenchmarkAborted,
    BenchmarkCoordinator,
    DeadlineStop,
    FatalOperationError,
    OperationError,
    SignalStop,
    WorkerAborted,
    partition_round_robin,
    run_benchmark,
    run_worker,
)
from containerbench.percentiles import DEFAULT_RATES, tail_averages


def ticking_clock():
    counter = itertools.count()
    return lambda: float(next(counter))


class CountingLimiter:
    def __init__(self) -> None:
        self.calls = 0

    def wait(self, count: int = 1, cancel=None) -> float:
        self.calls += count
        return 0.0


class TestWorkerLoop:
    def test_zero_period_still_makes_one_call(self):
        calls = []
        result = run_worker(lambda: calls.append(1), DeadlineStop(0))
        assert len(calls) == 1
        assert len(result.latencies) == 1
        assert result.latencies[0] >= 0
        assert isinstance(result.latencies[0], int)

    def test_deadline_checked_after_each_call(self):
        calls = []
        result = run_worker(lambda: calls.append(1), DeadlineStop(3, clock=ticking_clock()))
        assert len(calls) == 3
        assert len(result.latencies) == 3

    def test_signal_observed_at_iteration_boundary(self):
        stop = threading.Event()
        calls = []

        def invoke():
            calls.append(1)
            if len(calls) == 5:
                stop.set()

        result = run_worker(invoke, SignalStop(stop))
        assert len(calls) == 5
        assert len(result.latencies) == 5

    def test_signal_set_before_start_runs_once(self):
        stop = threading.Event()
        stop.set()
        result = run_worker(lambda: None, SignalStop(stop))
        assert len(result.latencies) == 1

    def test_finite_targets_in_order(self):
        seen = []
        result = run_worker(seen.append, targets=["a", "b", "c"])
        assert seen == ["a", "b", "c"]
        assert len(result.latencies) == 3
        assert result.failures == 0

    def test_finite_targets_cancelled_early(self):
        stop = threading.Event()
        seen = []

        def invoke(target):
            seen.append(target)
            stop.set()

        run_worker(invoke, SignalStop(stop), targets=["a", "b", "c"])
        assert seen == ["a"]

    def test_requires_termination_or_targets(self):
        with pytest.raises(ConfigurationError):
            run_worker(lambda: None)

    def test_limiter_acquired_per_call(self):
        limiter = CountingLimiter()
        result = run_worker(lambda: None, DeadlineStop(4, clock=ticking_clock()), limiter=limiter)
        assert limiter.calls == len(result.latencies) == 4

    def test_sleeps_interval_between_calls(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr(engine.time, "sleep", sleeps.append)
        run_worker(lambda: None, DeadlineStop(3, clock=ticking_clock()), interval_s=0.25)
        assert sleeps == [0.25, 0.25]

    def test_zero_interval_never_sleeps(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr(engine.time, "sleep", sleeps.append)
        run_worker(lambda: None, DeadlineStop(3, clock=ticking_clock()))
        assert sleeps == []

    def test_skip_sample_policy(self):
        calls = itertools.count()

        def invoke():
            if next(calls) % 2:
                raise OperationError("boom")

        result = run_worker(
            invoke,
            DeadlineStop(6, clock=ticking_clock()),
            on_error=OnOperationError.SKIP_SAMPLE,
        )
        assert result.failures == 3
        assert len(result.latencies) == 3

    def test_record_as_failure_policy(self):
        def invoke():
            raise OperationError("boom")

        result = run_worker(
            invoke,
            DeadlineStop(4, clock=ticking_clock()),
            on_error=OnOperationError.RECORD_AS_FAILURE,
        )
        assert result.failures == 4
        assert len(result.latencies) == 4


class TestPartition:
    def test_round_robin_by_index(self):
        assert partition_round_robin(list(range(10)), 3) == [[0, 3, 6, 9], [1, 4, 7], [2, 5, 8]]

    def test_fewer_targets_than_workers(self):
        assert partition_round_robin(["a"], 3) == [["a"], [], []]

    def test_is_a_set_partition(self):
        targets = [f"id-{i}" for i in range(23)]
        table = partition_round_robin(targets, 4)
        flat = [item for sublist in table for item in sublist]
        assert sorted(flat) == sorted(targets)
        sizes = [len(sublist) for sublist in table]
        assert max(sizes) - min(sizes) <= 1

    def test_rejects_non_positive_workers(self):
        with pytest.raises(ConfigurationError):
            partition_round_robin([1, 2], 0)


class TestCoordinator:
    def test_finite_mode_processes_every_target_once(self):
        seen = []
        lock = threading.Lock()

        def invoke(target):
            with lock:
                seen.append(target)

        targets = [f"c{i}" for i in range(10)]
        result = run_benchmark(invoke, RunConfig(workers=3, targets=targets))
        assert sorted(seen) == sorted(targets)
        assert result.samples == 10
        assert result.worker_samples == [4, 3, 3]

    def test_more_workers_than_targets(self):
        result = run_benchmark(lambda target: None, RunConfig(workers=5, targets=["a", "b"]))
        assert result.worker_samples == [1, 1, 0, 0, 0]

    def test_combined_size_is_sum_of_workers(self):
        stop = threading.Event()
        timer = threading.Timer(0.2, stop.set)
        timer.start()
        result = run_benchmark(lambda: time.sleep(0.001), RunConfig(workers=3, stop_event=stop))
        timer.join()
        assert len(result.latencies) == sum(result.worker_samples)
        assert all(count >= 1 for count in result.worker_samples)

    def test_zero_period_gives_one_sample_per_worker(self):
        result = run_benchmark(lambda: None, RunConfig(workers=3, test_period_s=0))
        assert result.worker_samples == [1, 1, 1]

    @pytest.mark.parametrize(
        "config",
        [
            RunConfig(workers=0, test_period_s=1),
            RunConfig(workers=-2, test_period_s=1),
            RunConfig(workers=2, qps=-1, test_period_s=1),
            RunConfig(workers=2, targets=[]),
            RunConfig(workers=2, test_period_s=1, stop_event=threading.Event()),
            RunConfig(workers=2),
        ],
    )
    def test_configuration_errors_before_any_call(self, config):
        calls = []
        with pytest.raises(ConfigurationError):
            run_benchmark(lambda *args: calls.append(args), config)
        assert calls == []

    def test_abort_policy_stops_all_workers(self):
        counter = itertools.count(1)
        lock = threading.Lock()

        def invoke():
            with lock:
                n = next(counter)
            time.sleep(0.001)
            if n == 20:
                raise OperationError("backend said no")

        started = time.monotonic()
        with pytest.raises(BenchmarkAborted) as excinfo:
            run_benchmark(invoke, RunConfig(workers=4, test_period_s=30))
        assert time.monotonic() - started < 10
        assert isinstance(excinfo.value.__cause__, OperationError)
        assert excinfo.value.worker is not None

    def test_fatal_error_aborts_whatever_the_policy(self):
        def invoke():
            raise FatalOperationError("daemon gone")

        with pytest.raises(BenchmarkAborted) as excinfo:
            run_benchmark(
                invoke,
                RunConfig(workers=2, test_period_s=5, on_error=OnOperationError.SKIP_SAMPLE),
            )
        assert isinstance(excinfo.value.__cause__, FatalOperationError)

    def test_unexpected_exception_aborts(self):
        def invoke():
            raise RuntimeError("bug")

        with pytest.raises(BenchmarkAborted) as excinfo:
            run_benchmark(invoke, RunConfig(workers=2, test_period_s=5))
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_failures_are_counted(self):
        def invoke(target):
            if target.endswith("x"):
                raise OperationError(target)

        result = run_benchmark(
            invoke,
            RunConfig(
                workers=2,
                targets=["a", "bx", "c", "dx", "ex"],
                on_error=OnOperationError.SKIP_SAMPLE,
            ),
        )
        assert result.failures == 3
        assert result.samples == 2

    def test_concurrent_runs_do_not_interfere(self):
        outcome = {}

        def failing():
            raise OperationError("nope")

        def run_failing():
            try:
                run_benchmark(failing, RunConfig(workers=2, test_period_s=5), name="failing")
            except BenchmarkAborted:
                outcome["failing"] = "aborted"

        def run_healthy():
            result = run_benchmark(
                lambda: time.sleep(0.001),
                RunConfig(workers=2, test_period_s=0.3),
                name="healthy",
            )
            outcome["healthy"] = result.samples

        threads = [threading.Thread(target=run_failing), threading.Thread(target=run_healthy)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcome["failing"] == "aborted"
        assert outcome["healthy"] > 2

    def test_coordinator_validates_on_construction(self):
        with pytest.raises(ConfigurationError):
            BenchmarkCoordinator(lambda: None, RunConfig(workers=0, test_period_s=1))

    def test_rate_limit_caps_aggregate_calls(self):
        qps, period, workers = 20.0, 1.0, 2
        result = run_benchmark(lambda: None, RunConfig(workers=workers, qps=qps, test_period_s=period))
        assert result.samples <= qps * period + workers * 2 + 2

    def test_end_to_end_rate_limited_fixed_latency(self):
        result = run_benchmark(
            lambda: time.sleep(0.005),
            RunConfig(workers=4, qps=100, test_period_s=2),
        )
        assert 150 <= result.samples <= 215
        assert min(result.latencies) >= 4_500_000
        p50, p75, p95, p99 = tail_averages(result.latencies, DEFAULT_RATES)
        assert 4.5 <= p50 <= p75 <= p95 <= p99
        assert p50 < 50.0


class TestAbortSurface:
    def test_run_worker_raises_public_abort(self):
        def invoke():
            raise OperationError("backend said no")

        with pytest.raises(WorkerAborted) as excinfo:
            run_worker(invoke, DeadlineStop(5, clock=ticking_clock()))
        assert isinstance(excinfo.value.__cause__, OperationError)

    def test_system_exit_in_worker_aborts_run(self):
        def invoke():
            raise SystemExit(3)

        with pytest.raises(BenchmarkAborted) as excinfo:
            run_benchmark(invoke, RunConfig(workers=2, test_period_s=5))
        assert isinstance(excinfo.value.__cause__, SystemExit)

    def test_abort_interrupts_rate_limited_wait(self):
        # one token per 30s: the second worker would otherwise sleep out the deficit
        def invoke():
            raise OperationError("backend said no")

        started = time.monotonic()
        with pytest.raises(BenchmarkAborted):
            run_benchmark(invoke, RunConfig(workers=2, qps=1 / 30, burst=1, test_period_s=60))
        assert time.monotonic() - started < 10
