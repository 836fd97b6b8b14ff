from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Iterator, Sequence


class ConfigurationError(ValueError):
    """Raised when a benchmark run is misconfigured; no worker is started."""


class OnOperationError(str, enum.Enum):
    """What a worker does when a single operation invocation fails."""

    ABORT_RUN = "abort_run"
    SKIP_SAMPLE = "skip_sample"
    RECORD_AS_FAILURE = "record_as_failure"


@dataclass(frozen=True)
class RunConfig:
    """Parameters of a single engine run.

    Exactly one of ``test_period_s`` (deadline mode) and ``stop_event``
    (signal mode) governs an unbounded run. Passing ``targets`` selects
    finite-input mode instead; there ``stop_event`` only cancels early.
    """

    workers: int
    qps: float = 0.0
    burst: int | None = None
    test_period_s: float | None = None
    stop_event: threading.Event | None = None
    interval_s: float = 0.0
    targets: Sequence[str] | None = None
    on_error: OnOperationError = OnOperationError.ABORT_RUN

    @property
    def finite(self) -> bool:
        return self.targets is not None

    @property
    def rate_limited(self) -> bool:
        return self.qps > 0

    @property
    def bucket_capacity(self) -> int:
        return self.burst if self.burst is not None else self.workers

    def validate(self) -> None:
        if not isinstance(self.workers, int) or self.workers <= 0:
            raise ConfigurationError(f"worker count must be a positive integer, got {self.workers!r}")
        if self.qps < 0:
            raise ConfigurationError(f"qps must be >= 0, got {self.qps!r}")
        if self.burst is not None and self.burst <= 0:
            raise ConfigurationError(f"burst must be > 0, got {self.burst!r}")
        if self.interval_s < 0:
            raise ConfigurationError(f"interval must be >= 0, got {self.interval_s!r}")
        if self.test_period_s is not None and self.test_period_s < 0:
            raise ConfigurationError(f"test period must be >= 0, got {self.test_period_s!r}")

        if self.finite:
            if len(self.targets) == 0:
                raise ConfigurationError("finite-input run requires a non-empty target list")
            if self.test_period_s is not None:
                raise ConfigurationError("finite-input run does not take a test period")
            return

        if self.test_period_s is not None and self.stop_event is not None:
            raise ConfigurationError("pass either a test period or a stop event, not both")
        if self.test_period_s is None and self.stop_event is None:
            raise ConfigurationError("run needs a test period, a stop event or a target list")


OPERATIONS: tuple[str, ...] = (
    "list-all",
    "list-alive",
    "inspect",
    "create-start",
    "stop-remove",
)


@dataclass(frozen=True)
class BenchmarkCase:
    """One engine run against a prepared container population."""

    name: str
    operation: str
    workers: int = 1
    qps: float = 0.0
    period_s: float = 10.0
    interval_s: float = 0.0
    dead_containers: int = 0
    alive_containers: int = 0
    variables: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.operation not in OPERATIONS:
            raise ConfigurationError(f"unknown operation {self.operation!r}")


@dataclass(frozen=True)
class BenchmarkSuite:
    """Group of cases sweeping one variable, reported as one table."""

    label: str
    title: str
    labels: tuple[str, ...]
    sweep: str
    cases: Sequence[BenchmarkCase]
    chart_filename: str
    series: str | None = None
    cleanup: bool = True
    description: str | None = None


@dataclass
class BenchmarkPlan:
    suites: list[BenchmarkSuite] = field(default_factory=list)

    def __iter__(self) -> Iterator[BenchmarkSuite]:
        return iter(self.suites)

    def select(self, labels: Sequence[str]) -> BenchmarkPlan:
        if not labels:
            return self
        known = {suite.label for suite in self.suites}
        unknown = [label for label in labels if label not in known]
        if unknown:
            raise ConfigurationError(f"unknown suite(s): {', '.join(unknown)}")
        return BenchmarkPlan([suite for suite in self.suites if suite.label in labels])


CONTAINER_COUNTS: tuple[int, ...] = (0, 25, 50, 100)
LIST_INTERVALS: tuple[float, ...] = (0.0, 0.05, 0.1, 0.2)
ROUTINE_COUNTS: tuple[int, ...] = (1, 2, 4, 8)
QPS_VALUES: tuple[float, ...] = (2.0, 5.0, 10.0)


def default_benchmark_plan(
    workers: int = 4,
    period_s: float = 10.0,
    interval_s: float = 0.0,
    qps_values: Sequence[float] = QPS_VALUES,
) -> BenchmarkPlan:
    """Return the standard container benchmark suites."""

    list_cases = []
    for state in ("dead", "alive"):
        for count in CONTAINER_COUNTS:
            for operation in ("list-all", "list-alive"):
                list_cases.append(
                    BenchmarkCase(
                        name=f"{operation}-{state}-{count}",
                        operation=operation,
                        period_s=period_s,
                        interval_s=interval_s,
                        dead_containers=count if state == "dead" else 0,
                        alive_containers=count if state == "alive" else 0,
                        variables={
                            "operation": f"{operation}/{state}",
                            "containers": str(count),
                        },
                    )
                )

    suites = [
        BenchmarkSuite(
            label="list",
            title="Benchmark list latency while the number of containers grows",
            labels=("operation", "containers"),
            sweep="containers",
            series="operation",
            chart_filename="list_latency.png",
            cases=list_cases,
        ),
        BenchmarkSuite(
            label="list-interval",
            title="Benchmark list latency against the interval between calls",
            labels=("interval",),
            sweep="interval",
            chart_filename="list_interval_latency.png",
            cases=[
                BenchmarkCase(
                    name=f"list-all-interval-{interval}",
                    operation="list-all",
                    period_s=period_s,
                    interval_s=interval,
                    dead_containers=CONTAINER_COUNTS[-1],
                    variables={"interval": f"{interval:0.4f}"},
                )
                for interval in LIST_INTERVALS
            ],
        ),
        BenchmarkSuite(
            label="list-parallel",
            title="Benchmark parallel list latency against the number of workers",
            labels=("workers",),
            sweep="workers",
            chart_filename="list_parallel_latency.png",
            cases=[
                BenchmarkCase(
                    name=f"list-all-parallel-{routines}",
                    operation="list-all",
                    workers=routines,
                    period_s=period_s,
                    interval_s=interval_s,
                    dead_containers=CONTAINER_COUNTS[-1],
                    variables={"workers": str(routines)},
                )
                for routines in ROUTINE_COUNTS
            ],
        ),
        BenchmarkSuite(
            label="inspect-parallel",
            title="Benchmark parallel inspect latency against the number of workers",
            labels=("workers",),
            sweep="workers",
            chart_filename="inspect_parallel_latency.png",
            cases=[
                BenchmarkCase(
                    name=f"inspect-parallel-{routines}",
                    operation="inspect",
                    workers=routines,
                    period_s=period_s,
                    interval_s=interval_s,
                    dead_containers=CONTAINER_COUNTS[-1],
                    variables={"workers": str(routines)},
                )
                for routines in ROUTINE_COUNTS
            ],
        ),
        BenchmarkSuite(
            label="start",
            title="Benchmark container create and start latency against qps",
            labels=("qps", "workers"),
            sweep="qps",
            chart_filename="start_latency.png",
            cleanup=False,
            cases=[
                BenchmarkCase(
                    name=f"create-start-qps-{qps:g}",
                    operation="create-start",
                    workers=workers,
                    qps=qps,
                    period_s=period_s,
                    variables={"qps": f"{qps:0.4f}", "workers": str(workers)},
                )
                for qps in qps_values
            ],
        ),
        BenchmarkSuite(
            label="stop",
            title="Benchmark container stop and remove latency against qps",
            labels=("qps", "workers"),
            sweep="qps",
            chart_filename="stop_latency.png",
            description="Stops and removes every container present when the case starts.",
            cases=[
                BenchmarkCase(
                    name=f"stop-remove-qps-{qps:g}",
                    operation="stop-remove",
                    workers=workers,
                    qps=qps,
                    alive_containers=int(qps * period_s),
                    variables={"qps": f"{qps:0.4f}", "workers": str(workers)},
                )
                for qps in qps_values
            ],
        ),
    ]
    return BenchmarkPlan(suites=suites)
