from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

import pandas as pd

from .engine import BenchmarkResult
from .percentiles import PercentileSummary, rate_label

LOGGER = logging.getLogger("containerbench.collector")

BASE_COLUMNS = [
    "suite",
    "case",
    "samples",
    "failures",
    "duration_s",
    "throughput_per_s",
    "started_at",
    "finished_at",
]


@dataclass
class CaseRecord:
    suite: str
    case: str
    variables: dict[str, str]
    summary: PercentileSummary
    result: BenchmarkResult


def _slug(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", value)


class ResultCollector:
    """Keeps every case summary and its raw latencies for tables and charts."""

    def __init__(self, rates: Sequence[float]) -> None:
        self._rates = tuple(rates)
        self._lock = threading.Lock()
        self._records: list[CaseRecord] = []

    @property
    def percentile_columns(self) -> list[str]:
        return [f"{rate_label(rate)}_ms" for rate in self._rates]

    def record(
        self,
        suite: str,
        case: str,
        variables: Mapping[str, str],
        summary: PercentileSummary,
        result: BenchmarkResult,
    ) -> None:
        with self._lock:
            self._records.append(
                CaseRecord(
                    suite=suite,
                    case=case,
                    variables=dict(variables),
                    summary=summary,
                    result=result,
                )
            )

    def records(self, suite: str | None = None) -> list[CaseRecord]:
        with self._lock:
            rows = list(self._records)
        if suite is None:
            return rows
        return [record for record in rows if record.suite == suite]

    def build_dataframe(self, suite: str | None = None) -> pd.DataFrame:
        records = self.records(suite)
        if not records:
            return pd.DataFrame(columns=[*BASE_COLUMNS, *self.percentile_columns])

        rows: list[dict[str, Any]] = []
        for record in records:
            row: dict[str, Any] = {
                "suite": record.suite,
                "case": record.case,
                "samples": record.result.samples,
                "failures": record.result.failures,
                "duration_s": record.result.duration_s,
                "throughput_per_s": record.result.throughput_per_second,
                "started_at": record.result.started_at,
                "finished_at": record.result.finished_at,
            }
            row.update(zip(self.percentile_columns, record.summary.values))
            row.update(record.variables)
            rows.append(row)
        return pd.DataFrame(rows)

    def raw_dataframe(self, suite: str, case: str) -> pd.DataFrame:
        for record in self.records(suite):
            if record.case == case:
                return pd.DataFrame({"latency_ns": record.result.latencies})
        raise KeyError(f"{suite}/{case}")

    def write_csv(self, output_dir: Path, suite: str) -> Path:
        output_dir.mkdir(parents=True, exist_ok=True)
        summary_path = output_dir / f"{_slug(suite)}__summary.csv"
        self.build_dataframe(suite).to_csv(summary_path, index=False)
        for record in self.records(suite):
            raw_path = output_dir / f"{_slug(suite)}__{_slug(record.case)}__latencies.csv"
            pd.DataFrame({"latency_ns": record.result.latencies}).to_csv(raw_path, index=False)
        LOGGER.info("Saved %s results to %s", suite, summary_path)
        return summary_path
