from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .config import BenchmarkSuite

LOGGER = logging.getLogger("containerbench.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 150
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["legend.fontsize"] = 9


def render_suite_chart(suite: BenchmarkSuite, frame: pd.DataFrame, output_dir: Path) -> Path:
    """Plot every percentile column of ``frame`` against the suite's swept variable."""
    chart_path = output_dir / suite.chart_filename
    percentile_columns = [column for column in frame.columns if column.startswith("p") and column.endswith("_ms")]

    if frame.empty or suite.sweep not in frame.columns or not percentile_columns:
        LOGGER.warning("No latency data available for %s chart", suite.label)
        return chart_path

    id_columns = [suite.sweep] + ([suite.series] if suite.series else [])
    long_df = frame.melt(
        id_vars=id_columns,
        value_vars=percentile_columns,
        var_name="percentile",
        value_name="latency_ms",
    )
    long_df["percentile"] = long_df["percentile"].str.removesuffix("_ms")
    long_df[suite.sweep] = pd.to_numeric(long_df[suite.sweep], errors="coerce")
    long_df = long_df[np.isfinite(long_df[suite.sweep])]

    fig, ax = plt.subplots(figsize=(10, 6))
    sns.lineplot(
        data=long_df,
        x=suite.sweep,
        y="latency_ms",
        hue="percentile",
        style=suite.series,
        markers=True,
        dashes=bool(suite.series),
        ax=ax,
    )
    ax.set_title(suite.title, fontweight="bold", pad=15)
    ax.set_xlabel(suite.sweep, fontweight="semibold")
    ax.set_ylabel("Tail-average latency (ms)", fontweight="semibold")
    ax.set_ylim(bottom=0)
    ax.legend(loc="upper left", frameon=True)

    output_dir.mkdir(parents=True, exist_ok=True)
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white", edgecolor="none")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path
