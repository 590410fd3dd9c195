from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

LOGGER = logging.getLogger("kvbench.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 300
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["xtick.labelsize"] = 9
plt.rcParams["ytick.labelsize"] = 10
plt.rcParams["legend.fontsize"] = 9
plt.rcParams["figure.titlesize"] = 14

LATENCY_COLUMNS = {
    "Average PUT Latency (ms)": "PUT",
    "Average GET Latency (ms)": "GET",
    "Overall Average Response Time (ms)": "Overall",
}

LATENCY_COLORS = {
    "PUT": "#2E86AB",
    "GET": "#F18F01",
    "Overall": "#6A994E",
}

GROUP_TITLES = {
    "thread-pool": "Thread Pool Tests Results",
    "connection-pool": "Connection Pool Tests Results",
}


def render_group_chart(group: str, table: pd.DataFrame, output_dir: Path) -> Path:
    """Throughput and latency side by side for every scenario in the group."""
    chart_path = output_dir / f"{group}__metrics.png"
    fig, (tps_ax, latency_ax) = plt.subplots(1, 2, figsize=(16, 6))

    if table.empty:
        LOGGER.warning("No scenarios to chart for %s", group)
    else:
        short_labels = [label.split(":", 1)[0] for label in table["Scenario"]]
        _render_tps_bars(tps_ax, short_labels, table["Transactions Per Second (TPS)"])
        _render_latency_bars(latency_ax, short_labels, table)

    fig.suptitle(GROUP_TITLES.get(group, group.replace("-", " ").title()), fontweight="bold")
    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path


def _render_tps_bars(ax: plt.Axes, labels: list[str], values: pd.Series) -> None:
    positions = np.arange(len(labels))
    bars = ax.bar(
        positions,
        values.to_numpy(),
        color="#2E86AB",
        alpha=0.8,
        edgecolor="white",
        linewidth=2,
    )
    ax.set_xticks(positions)
    ax.set_xticklabels(labels, rotation=45, ha="right")
    ax.set_ylabel("Transactions per second", fontweight="semibold")
    ax.set_title("Throughput", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")

    for bar in bars:
        height = bar.get_height()
        ax.text(
            bar.get_x() + bar.get_width() / 2.0,
            height,
            f"{height:.1f}",
            ha="center",
            va="bottom",
            fontsize=8,
        )


def _render_latency_bars(ax: plt.Axes, labels: list[str], table: pd.DataFrame) -> None:
    frame = table[list(LATENCY_COLUMNS)].rename(columns=LATENCY_COLUMNS)
    frame.insert(0, "scenario", labels)
    long_frame = frame.melt(id_vars="scenario", var_name="operation", value_name="latency_ms")

    sns.barplot(
        data=long_frame,
        x="scenario",
        y="latency_ms",
        hue="operation",
        hue_order=list(LATENCY_COLORS),
        palette=LATENCY_COLORS,
        ax=ax,
    )
    ax.set_xlabel("")
    ax.set_ylabel("Latency (ms)", fontweight="semibold")
    ax.set_title("Average Latency", fontweight="bold", pad=15)
    ax.tick_params(axis="x", labelrotation=45)
    ax.legend(title="Operation", frameon=True, fancybox=True)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")
    ax.set_ylim(bottom=0)
