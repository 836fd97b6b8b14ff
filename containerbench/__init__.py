"""
Latency benchmark harness for the Docker container API.

The engine fans a configurable number of worker threads out over an
operation, optionally behind a shared token bucket, and reduces the joined
per-call latencies into tail-average percentiles. The suites and the CLI
drive it against a Docker daemon and write tables and charts.
"""

from .config import ConfigurationError, OnOperationError, RunConfig
from .engine import (
    BenchmarkAborted,
    BenchmarkCoordinator,
    BenchmarkResult,
    DeadlineStop,
    FatalOperationError,
    OperationError,
    SignalStop,
    WorkerAborted,
    partition_round_robin,
    run_benchmark,
    run_worker,
)
from .percentiles import DEFAULT_RATES, PercentileSummary, summarize, tail_averages
from .ratelimit import TokenBucket

__all__ = [
    "BenchmarkAborted",
    "BenchmarkCoordinator",
    "BenchmarkResult",
    "ConfigurationError",
    "DEFAULT_RATES",
    "DeadlineStop",
    "FatalOperationError",
    "OnOperationError",
    "OperationError",
    "PercentileSummary",
    "RunConfig",
    "SignalStop",
    "TokenBucket",
    "WorkerAborted",
    "partition_round_robin",
    "run_benchmark",
    "run_worker",
    "summarize",
    "tail_averages",
]
