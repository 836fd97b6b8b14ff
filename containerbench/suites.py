from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Sequence

import pandas as pd

from .collector import ResultCollector
from .config import BenchmarkCase, BenchmarkSuite, ConfigurationError, OnOperationError, RunConfig
from .engine import run_benchmark
from .operations import DockerOperations
from .percentiles import DEFAULT_RATES, PercentileSummary, summarize
from .report import ResultReporter

LOGGER = logging.getLogger("containerbench.suites")


class ContainerPool:
    """Containers created by the suites, so they can be reused and removed."""

    def __init__(self, operations: DockerOperations) -> None:
        self._operations = operations
        self._lock = threading.Lock()
        self.dead: list[str] = []
        self.alive: list[str] = []

    def all_ids(self) -> list[str]:
        with self._lock:
            return [*self.dead, *self.alive]

    def add_alive(self, container_id: str) -> None:
        with self._lock:
            self.alive.append(container_id)

    def forget(self, container_ids: Sequence[str]) -> None:
        gone = set(container_ids)
        with self._lock:
            self.dead = [cid for cid in self.dead if cid not in gone]
            self.alive = [cid for cid in self.alive if cid not in gone]

    def resize(self, dead: int, alive: int, shrink: bool = True) -> None:
        self._resize(self.dead, dead, self._operations.create_dead_containers, shrink)
        self._resize(self.alive, alive, self._operations.create_alive_containers, shrink)

    def _resize(
        self,
        bucket: list[str],
        wanted: int,
        create: Callable[[int], list[str]],
        shrink: bool,
    ) -> None:
        if len(bucket) < wanted:
            missing = wanted - len(bucket)
            LOGGER.info("Creating %d container(s)", missing)
            bucket.extend(create(missing))
        elif shrink and len(bucket) > wanted:
            surplus = bucket[wanted:]
            del bucket[wanted:]
            self._operations.cleanup(surplus)

    def clear(self) -> None:
        ids = self.all_ids()
        with self._lock:
            self.dead.clear()
            self.alive.clear()
        if ids:
            self._operations.cleanup(ids)


class SuiteRunner:
    """Run benchmark suites against Docker and report one row per case."""

    def __init__(
        self,
        operations: DockerOperations,
        reporter: ResultReporter,
        collector: ResultCollector,
        rates: Sequence[float] = DEFAULT_RATES,
        on_error: OnOperationError = OnOperationError.ABORT_RUN,
        until_signal: bool = False,
    ) -> None:
        self._operations = operations
        self._reporter = reporter
        self._collector = collector
        self._rates = tuple(rates)
        self._on_error = on_error
        self._until_signal = until_signal
        self._pool = ContainerPool(operations)
        self._current_stop: threading.Event | None = None

    @property
    def pool(self) -> ContainerPool:
        return self._pool

    def interrupt(self) -> None:
        """Stop the running case at its workers' next iteration."""
        if self._current_stop is not None:
            self._current_stop.set()

    def run_suite(self, suite: BenchmarkSuite) -> pd.DataFrame:
        self._reporter.title(suite.title)
        self._reporter.env(
            {
                "image": self._operations.image,
                "cases": len(suite.cases),
                "on_error": self._on_error.value,
                "until_signal": self._until_signal,
            }
        )
        self._reporter.labels(*suite.labels)
        try:
            for case in suite.cases:
                self.run_case(suite, case)
        finally:
            if suite.cleanup:
                self._pool.clear()
        return self._collector.build_dataframe(suite.label)

    def run_case(self, suite: BenchmarkSuite, case: BenchmarkCase) -> PercentileSummary:
        LOGGER.info(
            "Running case %s (operation=%s, workers=%d, qps=%s, period=%ss)",
            case.name,
            case.operation,
            case.workers,
            case.qps,
            case.period_s,
        )
        if case.operation != "create-start":
            self._pool.resize(
                case.dead_containers,
                case.alive_containers,
                shrink=case.operation != "stop-remove",
            )

        invoke, targets = self._invoker(case)
        stop_event = None
        period = case.period_s
        if targets is None and self._until_signal:
            stop_event = threading.Event()
            period = None
        self._current_stop = stop_event

        config = RunConfig(
            workers=case.workers,
            qps=case.qps,
            test_period_s=None if targets is not None else period,
            stop_event=stop_event,
            interval_s=case.interval_s,
            targets=targets,
            on_error=self._on_error,
        )
        try:
            result = run_benchmark(invoke, config, name=case.name)
        finally:
            self._current_stop = None
            if targets is not None:
                self._pool.forget(targets)

        summary = summarize(result, self._rates)
        variables = {label: case.variables.get(label, "") for label in suite.labels}
        self._reporter.row(
            summary,
            *variables.values(),
            started_at=result.started_at,
            finished_at=result.finished_at,
        )
        self._collector.record(suite.label, case.name, variables, summary, result)
        if result.failures:
            LOGGER.warning("Case %s recorded %d failed call(s)", case.name, result.failures)
        return summary

    def _invoker(self, case: BenchmarkCase) -> tuple[Callable[..., Any], list[str] | None]:
        operations = self._operations
        if case.operation == "list-all":
            return (lambda: operations.list_all(True)), None
        if case.operation == "list-alive":
            return (lambda: operations.list_all(False)), None
        if case.operation == "inspect":
            ids = self._pool.all_ids()
            if not ids:
                raise ConfigurationError(f"case {case.name} needs containers to inspect")
            return operations.random_inspector(ids), None
        if case.operation == "create-start":

            def create_and_start() -> None:
                self._pool.add_alive(operations.create_and_start())

            return create_and_start, None
        if case.operation == "stop-remove":
            return operations.stop_and_remove, operations.benchmark_container_ids()
        raise ConfigurationError(f"unknown operation {case.operation!r}")


def run_plan_suites(
    runner: SuiteRunner,
    suites: Sequence[BenchmarkSuite],
    on_suite_done: Callable[[BenchmarkSuite, pd.DataFrame], None] | None = None,
) -> dict[str, pd.DataFrame]:
    results: dict[str, pd.DataFrame] = {}
    for suite in suites:
        LOGGER.info("Executing benchmark suite: %s", suite.label)
        frame = runner.run_suite(suite)
        results[suite.label] = frame
        if on_suite_done is not None:
            on_suite_done(suite, frame)
    return results
