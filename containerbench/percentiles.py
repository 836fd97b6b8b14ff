from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Sequence

import numpy as np

from .engine import BenchmarkResult

DEFAULT_RATES: tuple[float, ...] = (0.5, 0.75, 0.95, 0.99)
NS_PER_MS = 1_000_000


def _check_rate(rate: float) -> None:
    if not 0.0 < rate < 1.0:
        raise ValueError(f"percentile rate must be in (0, 1), got {rate!r}")


def tail_count(size: int, rate: float) -> int:
    """Number of worst samples that make up the tail for ``rate``."""
    _check_rate(rate)
    # 1 - 0.99 is not exactly 0.01; round away the binary noise before ceil.
    return max(math.ceil(round((1.0 - rate) * size, 9)), 1)


def tail_averages(
    latencies: Iterable[int],
    rates: Sequence[float] = DEFAULT_RATES,
    scale: float = NS_PER_MS,
) -> list[float]:
    """Mean of the worst ``ceil((1 - r) * len)`` samples for every rate ``r``.

    This is a tail average rather than an order statistic: p99 over 100
    samples is the single largest sample, p50 is the mean of the upper half.
    Values are divided by ``scale`` (nanoseconds to milliseconds by default).
    An empty input yields ``0.0`` for every rate.
    """
    for rate in rates:
        _check_rate(rate)

    ordered = np.sort(np.fromiter(latencies, dtype=np.int64), kind="stable")
    if ordered.size == 0:
        return [0.0 for _ in rates]

    values = []
    for rate in rates:
        n = tail_count(ordered.size, rate)
        values.append(float(ordered[-n:].mean()) / scale)
    return values


def tail_average(latencies: Iterable[int], rate: float, scale: float = NS_PER_MS) -> float:
    return tail_averages(latencies, (rate,), scale)[0]


def rate_label(rate: float) -> str:
    """``0.5`` -> ``p50``, ``0.999`` -> ``p99.9``."""
    return "p" + f"{rate * 100:.4f}".rstrip("0").rstrip(".")


@dataclass(frozen=True)
class PercentileSummary:
    rates: tuple[float, ...]
    values: tuple[float, ...]
    samples: int
    failures: int = 0
    unit: str = "ms"
    extra: dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> dict[str, float]:
        return {rate_label(rate): value for rate, value in zip(self.rates, self.values)}

    def value_for(self, rate: float) -> float:
        try:
            return self.values[self.rates.index(rate)]
        except ValueError:
            raise KeyError(rate) from None

    def label(self, rate: float) -> str:
        return rate_label(rate)


def summarize(
    latencies: BenchmarkResult | Iterable[int],
    rates: Sequence[float] = DEFAULT_RATES,
    failures: int | None = None,
    scale: float = NS_PER_MS,
    unit: str = "ms",
    **labels: str,
) -> PercentileSummary:
    """Reduce a run (or bare latencies in nanoseconds) to a summary.

    When given a ``BenchmarkResult`` its own failure count is used unless
    ``failures`` is passed explicitly.
    """
    if isinstance(latencies, BenchmarkResult):
        if failures is None:
            failures = latencies.failures
        latencies = latencies.latencies
    samples = list(latencies)
    values = tail_averages(samples, rates, scale)
    return PercentileSummary(
        rates=tuple(rates),
        values=tuple(values),
        samples=len(samples),
        failures=failures or 0,
        unit=unit,
        extra=dict(labels),
    )
