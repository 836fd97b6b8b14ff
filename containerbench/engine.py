"""Concurrent benchmark engine.

Workers repeatedly invoke an operation, time each call with
``time.perf_counter_ns`` and keep their latencies private until the
coordinator joins them and concatenates the sequences in worker order.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence, TypeVar

from .config import ConfigurationError, OnOperationError, RunConfig
from .ratelimit import TokenBucket

LOGGER = logging.getLogger("containerbench.engine")

T = TypeVar("T")


class OperationError(Exception):
    """Raised by an operation invoker when a single call fails."""


class FatalOperationError(OperationError):
    """Raised by an operation invoker when the backend cannot be used any more."""


class BenchmarkAborted(Exception):
    """Raised by the coordinator when a worker aborts the run."""

    def __init__(self, message: str, worker: int | None = None) -> None:
        super().__init__(message)
        self.worker = worker


class WorkerAborted(Exception):
    """Raised by ``run_worker`` when a failure aborts the run.

    The failing ``OperationError`` is available as ``__cause__``.
    """


class DeadlineStop:
    """Stop once the loop has run for ``period_s`` seconds."""

    def __init__(self, period_s: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.period_s = period_s
        self._clock = clock

    def bind(self) -> Callable[[], bool]:
        started = self._clock()
        return lambda: self._clock() - started >= self.period_s


class SignalStop:
    """Stop at the first iteration boundary after ``event`` is set."""

    def __init__(self, event: threading.Event) -> None:
        self.event = event

    def bind(self) -> Callable[[], bool]:
        return self.event.is_set


@dataclass
class WorkerResult:
    latencies: list[int] = field(default_factory=list)
    failures: int = 0


@dataclass
class BenchmarkResult:
    latencies: list[int]
    failures: int
    worker_samples: list[int]
    started_at: float
    finished_at: float

    @property
    def samples(self) -> int:
        return len(self.latencies)

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def throughput_per_second(self) -> float:
        if self.duration_s == 0:
            return 0.0
        return self.samples / self.duration_s


def run_worker(
    invoke: Callable[..., Any],
    termination: DeadlineStop | SignalStop | None = None,
    *,
    targets: Sequence[Any] | None = None,
    interval_s: float = 0.0,
    limiter: TokenBucket | None = None,
    on_error: OnOperationError = OnOperationError.ABORT_RUN,
    abort_event: threading.Event | None = None,
) -> WorkerResult:
    """Run one worker loop and return its latencies in call order.

    Without ``targets`` the loop calls ``invoke()`` until ``termination``
    fires; at least one call is always made. With ``targets`` it calls
    ``invoke(target)`` once per target and ``termination`` only cancels early.
    An abort raises ``WorkerAborted`` chained to the failure that caused it.
    """
    if targets is None and termination is None:
        raise ConfigurationError("worker loop needs a termination condition or targets")

    result = WorkerResult()
    should_stop = termination.bind() if termination is not None else (lambda: False)

    def aborted() -> bool:
        return abort_event is not None and abort_event.is_set()

    def step(args: tuple[Any, ...]) -> None:
        if limiter is not None:
            limiter.wait(1, cancel=abort_event)
            if aborted():
                return
        start = time.perf_counter_ns()
        try:
            invoke(*args)
        except FatalOperationError as exc:
            raise WorkerAborted(str(exc)) from exc
        except OperationError as exc:
            end = time.perf_counter_ns()
            result.failures += 1
            if on_error is OnOperationError.ABORT_RUN:
                raise WorkerAborted(str(exc)) from exc
            if on_error is OnOperationError.RECORD_AS_FAILURE:
                result.latencies.append(end - start)
            LOGGER.debug("operation failed (%s): %s", on_error.value, exc)
            return
        end = time.perf_counter_ns()
        result.latencies.append(end - start)

    def pause() -> None:
        if interval_s == 0:
            return
        if abort_event is not None:
            abort_event.wait(interval_s)
        else:
            time.sleep(interval_s)

    if targets is not None:
        for index, target in enumerate(targets):
            step((target,))
            if aborted() or should_stop():
                break
            if index < len(targets) - 1:
                pause()
        return result

    while True:
        step(())
        if aborted() or should_stop():
            return result
        pause()


def partition_round_robin(targets: Sequence[T], workers: int) -> list[list[T]]:
    """Deal ``targets`` to ``workers`` sublists by index, balanced within one."""
    if workers <= 0:
        raise ConfigurationError(f"worker count must be > 0, got {workers!r}")
    table: list[list[T]] = [[] for _ in range(workers)]
    for index, target in enumerate(targets):
        table[index % workers].append(target)
    return table


class BenchmarkCoordinator:
    """Fan a run out to N worker threads and join their latencies.

    Each coordinator owns its abort event and error list, so several runs
    may execute in the same process without sharing state.
    """

    def __init__(self, invoke: Callable[..., Any], config: RunConfig, name: str = "benchmark") -> None:
        config.validate()
        self._invoke = invoke
        self._config = config
        self._name = name
        self._abort_event = threading.Event()
        self._lock = threading.Lock()
        self._errors: list[tuple[int, BaseException]] = []

    def run(self) -> BenchmarkResult:
        config = self._config
        limiter = None
        if config.rate_limited:
            limiter = TokenBucket(config.qps, config.bucket_capacity)

        assignments: list[Sequence[Any] | None]
        if config.finite:
            assignments = list(partition_round_robin(list(config.targets), config.workers))
        else:
            assignments = [None] * config.workers

        results: list[WorkerResult | None] = [None] * config.workers

        def runner(index: int) -> None:
            targets = assignments[index]
            if targets is not None and not targets:
                results[index] = WorkerResult()
                return
            try:
                results[index] = run_worker(
                    self._invoke,
                    self._termination(),
                    targets=targets,
                    interval_s=config.interval_s,
                    limiter=limiter,
                    on_error=config.on_error,
                    abort_event=self._abort_event,
                )
            except WorkerAborted as exc:
                self._fail(index, exc.__cause__ or exc)
            except BaseException as exc:  # noqa: BLE001
                LOGGER.exception("worker %d of %s crashed", index, self._name)
                self._fail(index, exc)

        LOGGER.info(
            "Starting %s with %d worker(s) (qps=%s, period=%s, targets=%s)",
            self._name,
            config.workers,
            config.qps or "unlimited",
            config.test_period_s,
            len(config.targets) if config.finite else "-",
        )
        started_at = time.time()
        threads = [
            threading.Thread(target=runner, args=(index,), name=f"{self._name}-worker-{index}", daemon=True)
            for index in range(config.workers)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        finished_at = time.time()

        if self._errors:
            index, error = self._errors[0]
            raise BenchmarkAborted(
                f"{self._name} aborted by worker {index}: {error}",
                worker=index,
            ) from error

        latencies: list[int] = []
        failures = 0
        worker_samples = []
        for result in results:
            latencies.extend(result.latencies)
            failures += result.failures
            worker_samples.append(len(result.latencies))

        LOGGER.info(
            "Finished %s: %d sample(s), %d failure(s) in %.2fs",
            self._name,
            len(latencies),
            failures,
            finished_at - started_at,
        )
        return BenchmarkResult(
            latencies=latencies,
            failures=failures,
            worker_samples=worker_samples,
            started_at=started_at,
            finished_at=finished_at,
        )

    def _termination(self) -> DeadlineStop | SignalStop | None:
        config = self._config
        if config.stop_event is not None:
            return SignalStop(config.stop_event)
        if config.test_period_s is not None:
            return DeadlineStop(config.test_period_s)
        return None

    def _fail(self, index: int, error: BaseException) -> None:
        LOGGER.warning("worker %d of %s aborting run: %s", index, self._name, error)
        with self._lock:
            self._errors.append((index, error))
        self._abort_event.set()


def run_benchmark(invoke: Callable[..., Any], config: RunConfig, name: str = "benchmark") -> BenchmarkResult:
    """Validate ``config``, run it to completion and return the joined latencies."""
    return BenchmarkCoordinator(invoke, config, name=name).run()
