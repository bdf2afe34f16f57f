from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Sequence

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .metrics import Category

LOGGER = logging.getLogger("provbench.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 300
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["legend.fontsize"] = 9

CATEGORY_COLORS = {
    Category.CANONICALIZE.value: "#6A994E",
    Category.WRITE.value: "#2E86AB",
    Category.READ.value: "#F18F01",
}

CATEGORY_NAMES = {
    Category.CANONICALIZE.value: "Canonicalize",
    Category.WRITE.value: "Write dispatch",
    Category.READ.value: "Read",
}

SUMMARY_COLUMNS = ["category", "count", "mean_ms", "p50_ms", "p95_ms", "p99_ms", "max_ms"]


def load_series_file(path: Path) -> list[int]:
    """Read back a flushed timing file: one decimal integer per line."""
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    return [int(line) for line in lines if line.strip()]


def series_frame(series: Mapping[Category | str, Sequence[int]]) -> pd.DataFrame:
    rows = []
    for category, durations in series.items():
        name = Category(category).value
        for index, duration in enumerate(durations):
            rows.append({"category": name, "sample": index, "duration_ms": int(duration)})
    return pd.DataFrame(rows, columns=["category", "sample", "duration_ms"])


def summarise_series(frame: pd.DataFrame) -> pd.DataFrame:
    summary = []
    for category in Category:
        values = frame.loc[frame["category"] == category.value, "duration_ms"].to_numpy()
        if values.size == 0:
            continue
        p50, p95, p99 = np.percentile(values, [50, 95, 99])
        summary.append(
            {
                "category": category.value,
                "count": int(values.size),
                "mean_ms": float(values.mean()),
                "p50_ms": float(p50),
                "p95_ms": float(p95),
                "p99_ms": float(p99),
                "max_ms": int(values.max()),
            }
        )
    return pd.DataFrame(summary, columns=SUMMARY_COLUMNS)


def render_latency_report(
    series: Mapping[Category | str, Sequence[int]],
    output_dir: Path,
) -> dict[str, Path]:
    """Write the summary CSV and latency charts for one run's timing series."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    frame = series_frame(series)

    summary_path = output_dir / "latency_summary.csv"
    summarise_series(frame).to_csv(summary_path, index=False)
    LOGGER.info("Latency summary written to %s", summary_path)

    artefacts = {"summary": summary_path}
    if frame.empty:
        LOGGER.warning("No latency samples available for charts")
        return artefacts

    distribution_path = output_dir / "latency_distribution.png"
    _render_distribution_chart(frame, distribution_path)
    artefacts["distribution"] = distribution_path

    timeline_path = output_dir / "latency_timeline.png"
    _render_timeline_chart(frame, timeline_path)
    artefacts["timeline"] = timeline_path
    return artefacts


def _category_order(frame: pd.DataFrame) -> list[str]:
    present = set(frame["category"].unique())
    return [category.value for category in Category if category.value in present]


def _render_distribution_chart(frame: pd.DataFrame, chart_path: Path) -> None:
    order = _category_order(frame)
    fig, ax = plt.subplots(figsize=(10, 6))
    sns.boxplot(
        data=frame,
        x="category",
        y="duration_ms",
        hue="category",
        order=order,
        hue_order=order,
        palette=[CATEGORY_COLORS[name] for name in order],
        ax=ax,
        linewidth=1.5,
        width=0.6,
        legend=False,
    )
    ax.set_xticks(range(len(order)))
    ax.set_xticklabels([CATEGORY_NAMES[name] for name in order])
    ax.set_xlabel("Operation", fontweight="semibold", labelpad=10)
    ax.set_ylabel("Latency (ms)", fontweight="semibold", labelpad=10)
    ax.set_ylim(bottom=0)
    ax.set_title("Latency Distribution by Operation", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, linestyle="--", linewidth=0.5, axis="y")
    ax.set_axisbelow(True)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)


def _render_timeline_chart(frame: pd.DataFrame, chart_path: Path) -> None:
    fig, ax = plt.subplots(figsize=(12, 6))
    for name in _category_order(frame):
        subset = frame[frame["category"] == name]
        ax.plot(
            subset["sample"],
            subset["duration_ms"],
            linewidth=1.2,
            alpha=0.85,
            color=CATEGORY_COLORS[name],
            label=CATEGORY_NAMES[name],
        )
    ax.set_xlabel("Document (corpus order)", fontweight="semibold")
    ax.set_ylabel("Latency (ms)", fontweight="semibold")
    ax.set_title("Per-Document Latency", fontweight="bold", pad=15)
    ax.legend(loc="upper right", frameon=True)
    ax.grid(True, alpha=0.3, linestyle="--")

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)


__all__ = [
    "load_series_file",
    "render_latency_report",
    "series_frame",
    "summarise_series",
]
