from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from tcga_biomarkers import plots
from tcga_biomarkers.errors import SchemaError
from tcga_biomarkers.fitting import FittedModel
from tcga_biomarkers.stats import rank_auc, roc_points

logger = logging.getLogger(__name__)


def summarize_effects(model: FittedModel, *, biomarkers_only: bool = True) -> pd.DataFrame:
    """
    Rank model terms by |estimate| (descending), ties broken by feature label
    so the ordering is reproducible. `std_error` is the uncertainty: the
    standard error for ML fits, the posterior SD for Bayesian fits.
    """
    coef = model.coefficients()
    if biomarkers_only:
        coef = coef[coef["is_biomarker"]]
    keep = ["feature", "estimate", "std_error"] + [c for c in ("ci_lower", "ci_upper", "p", "r_hat") if c in coef]
    out = coef[keep].copy()
    out["_abs"] = out["estimate"].abs()
    out = out.sort_values(["_abs", "feature"], ascending=[False, True], kind="mergesort").drop(columns="_abs")
    out["rank"] = np.arange(1, len(out) + 1)
    return out.reset_index(drop=True)


def predictions(data: pd.DataFrame, outcome_col: str, model: FittedModel) -> pd.DataFrame:
    """Observed outcome and predicted probability for every row with an observed outcome."""
    if outcome_col not in data.columns:
        raise SchemaError(outcome_col, table="evaluation")
    missing = [b for b in model.biomarkers if b not in data.columns]
    if missing:
        raise SchemaError(missing[0], table="evaluation")
    d = data.dropna(subset=[outcome_col])
    probs = model.predict(d)
    if probs.shape[0] != d.shape[0]:
        raise ValueError(f"model returned {probs.shape[0]} predictions for {d.shape[0]} rows")
    return pd.DataFrame({"observed": d[outcome_col].astype(float).to_numpy(), "predicted": probs}, index=d.index)


def model_auc(
    data: pd.DataFrame,
    outcome_col: str,
    model: FittedModel,
    *,
    h_gram: bool = False,
    roc_plot: bool = False,
    fig_dir: Path = Path("figures"),
    prefix: str = "model",
) -> float:
    """
    Area under the ROC curve of the model's predicted probabilities against
    the observed binary outcome. `h_gram` and `roc_plot` additionally write a
    histogram of predictions and the ROC curve to `fig_dir`; they never change
    the returned value.
    """
    pred = predictions(data, outcome_col, model)
    auc = rank_auc(pred["predicted"], pred["observed"])
    if auc is None:
        raise ValueError(f"AUC undefined: {outcome_col!r} has a single class among {len(pred)} samples")
    logger.info("AUC=%.3f (n=%d, events=%d)", auc, len(pred), int(pred["observed"].sum()))

    if h_gram:
        plots.probability_histogram(
            pred["predicted"].to_numpy(),
            pred["observed"].to_numpy(),
            title=f"{prefix}: predicted probabilities",
            out_path=fig_dir / f"{prefix}__probability_histogram.png",
        )
    if roc_plot:
        plots.roc_plot(
            roc_points(pred["predicted"], pred["observed"]),
            auc=auc,
            title=f"{prefix}: ROC",
            out_path=fig_dir / f"{prefix}__roc.png",
        )
    return auc


def plot_effects(summary: pd.DataFrame, *, out_path: Path, title: str, n: int = 20) -> None:
    plots.effect_barplot(summary, title=title, out_path=out_path, n=n)
