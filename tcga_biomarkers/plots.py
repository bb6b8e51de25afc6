from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from lifelines import KaplanMeierFitter
from lifelines.statistics import logrank_test


def init_style() -> None:
    sns.set_theme(style="whitegrid", context="paper")
    sns.set_palette("colorblind")


def savefig(fig: plt.Figure, path: Path, *, dpi: int = 200) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)


def km_plot(
    df: pd.DataFrame,
    *,
    time_col: str,
    event_col: str,
    group_col: str,
    title: str,
    out_path: Path,
    group_labels: dict[object, str] | None = None,
    show_risk_table: bool = True,
) -> None:
    """Two-group Kaplan–Meier curves with the log-rank p in the title."""
    init_style()
    d = df[[time_col, event_col, group_col]].dropna()
    if d[group_col].nunique() != 2:
        return

    groups = sorted(d[group_col].unique())
    fig, ax = plt.subplots(figsize=(6.0, 4.8))
    kmfs: list[KaplanMeierFitter] = []
    for g in groups:
        sub = d[d[group_col] == g]
        kmf = KaplanMeierFitter()
        kmf.fit(sub[time_col], event_observed=sub[event_col], label=(group_labels or {}).get(g, str(g)))
        kmf.plot_survival_function(ax=ax, ci_show=True, linewidth=2)
        kmfs.append(kmf)

    a = d[d[group_col] == groups[0]]
    b = d[d[group_col] == groups[1]]
    p = logrank_test(a[time_col], b[time_col], event_observed_A=a[event_col], event_observed_B=b[event_col]).p_value
    ax.set_title(f"{title}\nlog-rank p={p:.2e}")
    ax.set_xlabel("Days")
    ax.set_ylabel("Survival probability")
    ax.legend(title=None, frameon=True, loc="best")

    if show_risk_table:
        from lifelines.plotting import add_at_risk_counts

        add_at_risk_counts(*kmfs, ax=ax)
    savefig(fig, out_path)


def probability_histogram(
    probs: np.ndarray,
    labels: np.ndarray,
    *,
    title: str,
    out_path: Path,
    bins: int = 20,
) -> None:
    """Predicted probabilities, stacked by observed outcome."""
    init_style()
    d = pd.DataFrame({"probability": np.asarray(probs, dtype=float), "observed": np.asarray(labels)})
    d = d.dropna()
    d["observed"] = d["observed"].astype(int).astype(str)
    fig, ax = plt.subplots(figsize=(6.0, 4.2))
    sns.histplot(data=d, x="probability", hue="observed", bins=bins, binrange=(0.0, 1.0), multiple="stack", ax=ax)
    ax.set_title(title)
    ax.set_xlabel("Predicted probability")
    ax.set_ylabel("Samples")
    savefig(fig, out_path)


def roc_plot(roc: pd.DataFrame, *, auc: float, title: str, out_path: Path) -> None:
    init_style()
    fig, ax = plt.subplots(figsize=(5.0, 5.0))
    ax.plot(roc["fpr"], roc["tpr"], linewidth=2, label=f"AUC = {auc:.3f}")
    ax.plot([0, 1], [0, 1], linestyle="--", color="gray", linewidth=1)
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1.01)
    ax.set_xlabel("False positive rate")
    ax.set_ylabel("True positive rate")
    ax.set_title(title)
    ax.legend(loc="lower right", frameon=True)
    savefig(fig, out_path)


def effect_barplot(
    summary: pd.DataFrame,
    *,
    title: str,
    out_path: Path,
    n: int = 20,
    label_col: str = "feature",
    value_col: str = "estimate",
) -> None:
    """Horizontal bars of the top-n effects, with intervals when present."""
    init_style()
    d = summary.head(n)
    if d.empty:
        return
    fig, ax = plt.subplots(figsize=(7, max(4, 0.28 * len(d) + 1)))
    colors = np.where(d[value_col] >= 0, "#d62728", "#1f77b4")
    ax.barh(d[label_col].astype(str), d[value_col], color=colors)
    if {"ci_lower", "ci_upper"} <= set(d.columns):
        ax.hlines(d[label_col].astype(str), d["ci_lower"], d["ci_upper"], color="black", linewidth=1)
    ax.axvline(0, color="black", linewidth=0.8)
    ax.invert_yaxis()
    ax.set_xlabel(value_col)
    ax.set_title(title)
    savefig(fig, out_path)
