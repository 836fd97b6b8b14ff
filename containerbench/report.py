from __future__ import annotations

import sys
from datetime import datetime
from typing import Mapping, Sequence, TextIO

from .percentiles import DEFAULT_RATES, PercentileSummary, rate_label


def format_timestamp(ts: float) -> str:
    moment = datetime.fromtimestamp(ts)
    return f"{moment.day:02d}:{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"


def itoas(*nums: int) -> list[str]:
    return [f"{num:d}" for num in nums]


def ftoas(*nums: float) -> list[str]:
    return [f"{num:0.4f}" for num in nums]


class ResultReporter:
    """Tab separated result table printed while the suites run.

    Each result is printed twice, stamped with the start and the end of the
    run it summarises, so the table plots as steps over wall-clock time.
    """

    def __init__(self, stream: TextIO | None = None, rates: Sequence[float] = DEFAULT_RATES) -> None:
        self._stream = stream or sys.stdout
        self._rates = tuple(rates)

    def title(self, text: str) -> None:
        self._write("")
        self._write(text)

    def env(self, variables: Mapping[str, object]) -> None:
        self._write(" ".join(f"{key}={value}" for key, value in variables.items()) + " ")

    def labels(self, *labels: str) -> None:
        columns = ["time", *(f"%{rate_label(rate)[1:]}" for rate in self._rates), *labels]
        self._write("\t".join(columns))

    def row(
        self,
        summary: PercentileSummary,
        *variables: str,
        started_at: float,
        finished_at: float,
    ) -> None:
        cells = "\t".join([*(f"{value:.2f}" for value in summary.values), *variables])
        self._write(f"{format_timestamp(started_at)}\t{cells}")
        self._write(f"{format_timestamp(finished_at)}\t{cells}")

    def _write(self, line: str) -> None:
        print(line, file=self._stream)
        self._stream.flush()
