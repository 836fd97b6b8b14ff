from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
from pathlib import Path

import pandas as pd

from .charts import render_suite_chart
from .collector import ResultCollector
from .config import BenchmarkPlan, BenchmarkSuite, ConfigurationError, OnOperationError, default_benchmark_plan
from .engine import BenchmarkAborted, FatalOperationError, OperationError
from .operations import DockerOperations
from .percentiles import DEFAULT_RATES
from .report import ResultReporter
from .suites import SuiteRunner, run_plan_suites

LOGGER = logging.getLogger("containerbench")


def _float_list(value: str) -> list[float]:
    try:
        return [float(item) for item in value.split(",") if item.strip()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected comma-separated numbers, got {value!r}") from exc


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Container runtime latency benchmark")
    parser.add_argument(
        "--suite",
        action="append",
        default=[],
        help="Suite to run (repeatable); all suites when omitted",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=int(os.environ.get("CONTAINERBENCH_WORKERS", "4")),
        help="Worker count for the rate-limited start/stop suites",
    )
    parser.add_argument(
        "--qps",
        type=_float_list,
        default=_float_list(os.environ.get("CONTAINERBENCH_QPS", "2,5,10")),
        help="Comma-separated aggregate rates swept by the start/stop suites",
    )
    parser.add_argument(
        "--period",
        type=float,
        default=float(os.environ.get("CONTAINERBENCH_PERIOD", "10")),
        help="Test period of each case in seconds",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=float(os.environ.get("CONTAINERBENCH_INTERVAL", "0")),
        help="Seconds to sleep between calls of one worker",
    )
    parser.add_argument(
        "--until-signal",
        action="store_true",
        help="Run every unbounded case until SIGINT instead of for --period seconds",
    )
    parser.add_argument(
        "--image",
        default=os.environ.get("CONTAINERBENCH_IMAGE", "ubuntu"),
        help="Docker image used for benchmark containers",
    )
    parser.add_argument(
        "--on-error",
        choices=[policy.value for policy in OnOperationError],
        default=os.environ.get("CONTAINERBENCH_ON_ERROR", OnOperationError.ABORT_RUN.value),
        help="What to do when a single operation fails",
    )
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("CONTAINERBENCH_OUTPUT_DIR", "benchmark-results"),
        help="Directory to store benchmark artefacts (charts and CSV files)",
    )
    parser.add_argument(
        "--no-charts",
        action="store_true",
        help="Skip chart rendering",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned benchmark cases without executing them",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("CONTAINERBENCH_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_plan(args: argparse.Namespace) -> BenchmarkPlan:
    plan = default_benchmark_plan(
        workers=args.workers,
        period_s=args.period,
        interval_s=args.interval,
        qps_values=args.qps,
    )
    return plan.select(args.suite)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        plan = build_plan(args)
    except ConfigurationError as exc:
        LOGGER.error("Invalid benchmark configuration: %s", exc)
        return 2

    if args.dry_run:
        _print_plan(plan)
        return 0

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    LOGGER.info("Benchmark output directory: %s", output_dir)
    LOGGER.info("Container image: %s", args.image)

    try:
        operations = DockerOperations(image=args.image)
    except FatalOperationError:
        LOGGER.exception("failed to connect to the Docker daemon")
        return 1

    collector = ResultCollector(DEFAULT_RATES)
    runner = SuiteRunner(
        operations,
        ResultReporter(rates=DEFAULT_RATES),
        collector,
        on_error=OnOperationError(args.on_error),
        until_signal=args.until_signal,
    )
    if args.until_signal:
        signal.signal(signal.SIGINT, lambda signum, frame: runner.interrupt())

    manifest: dict[str, dict[str, object]] = {}

    def save_suite(suite: BenchmarkSuite, frame: pd.DataFrame) -> None:
        summary_path = collector.write_csv(output_dir, suite.label)
        entry: dict[str, object] = {"summary": str(summary_path), "cases": len(frame)}
        if not args.no_charts:
            entry["chart"] = str(render_suite_chart(suite, frame, output_dir))
        manifest[suite.label] = entry

    exit_code = 0
    try:
        run_plan_suites(runner, list(plan), on_suite_done=save_suite)
    except ConfigurationError as exc:
        LOGGER.error("Invalid benchmark configuration: %s", exc)
        exit_code = 2
    except BenchmarkAborted as exc:
        LOGGER.error("Benchmark aborted: %s", exc)
        exit_code = 1
    except OperationError as exc:
        LOGGER.error("Benchmark setup failed: %s", exc)
        exit_code = 1
    except KeyboardInterrupt:
        print("stopping benchmark", file=sys.stderr)
        runner.pool.clear()
        exit_code = 130

    manifest_path = output_dir / "benchmark_manifest.json"
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)
    LOGGER.info("Benchmark manifest written to %s", manifest_path)
    return exit_code


def _print_plan(plan: BenchmarkPlan) -> None:
    for suite in plan:
        print(f"Suite: {suite.label} ({suite.title})")
        for case in suite.cases:
            print(
                f"  - {case.name}: operation={case.operation}, workers={case.workers}, "
                f"qps={case.qps}, period={case.period_s}s interval={case.interval_s}s "
                f"dead={case.dead_containers} alive={case.alive_containers}"
            )


if __name__ == "__main__":
    sys.exit(main())
