from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from lifelines import CoxPHFitter, KaplanMeierFitter
from lifelines.exceptions import ConvergenceError
from lifelines.statistics import logrank_test

from tcga_biomarkers.stats import fdr_bh

ENDPOINTS = ("OS", "DSS", "DFI", "PFI")

logger = logging.getLogger(__name__)


def _to_numeric(s: pd.Series) -> pd.Series:
    return pd.to_numeric(s, errors="coerce")


def binary_survival_outcome(
    df: pd.DataFrame, *, time_col: str, event_col: str, horizon_days: float
) -> pd.Series:
    """
    Dichotomise a (time, event) endpoint at a fixed horizon:
      1   event observed at or before the horizon
      0   followed beyond the horizon (event or not)
      NaN censored before the horizon, or missing time/event
    """
    time = _to_numeric(df[time_col])
    event = _to_numeric(df[event_col])
    out = pd.Series(np.nan, index=df.index, name=f"{event_col}_{int(horizon_days)}d")
    out[time > horizon_days] = 0.0
    out[(time <= horizon_days) & (event == 1)] = 1.0
    return out


def km_median_time(time: pd.Series, event: pd.Series) -> float | None:
    df = pd.DataFrame({"time": _to_numeric(time), "event": _to_numeric(event)}).dropna()
    if df.empty:
        return None
    km = KaplanMeierFitter()
    km.fit(df["time"], event_observed=df["event"])
    median = km.median_survival_time_
    if median is None or not np.isfinite(median):
        return None
    return float(median)


def km_logrank_p(time: pd.Series, event: pd.Series, group: pd.Series) -> float | None:
    df = pd.DataFrame({"time": _to_numeric(time), "event": _to_numeric(event), "group": group}).dropna()
    if df["group"].nunique() != 2:
        return None
    g0, g1 = sorted(df["group"].unique())
    a = df[df["group"] == g1]
    b = df[df["group"] == g0]
    res = logrank_test(a["time"], b["time"], event_observed_A=a["event"], event_observed_B=b["event"])
    return float(res.p_value)


def _cox_summary(cph: CoxPHFitter) -> pd.DataFrame:
    out = cph.summary.reset_index()
    return out.rename(columns={out.columns[0]: "term"})


def fit_cox_biomarkers(
    df: pd.DataFrame,
    *,
    time_col: str,
    event_col: str,
    biomarkers: list[str],
    covariates: list[str] | None = None,
    penalizer: float = 0.1,
    min_events: int = 5,
) -> pd.DataFrame:
    """
    Multivariable Cox PH on biomarker columns (+ optional covariates).
    Categorical covariates are one-hot encoded (first level dropped); constant
    columns are removed since lifelines cannot estimate them. Returns an empty
    frame when the data cannot support a fit.
    """
    covariates = covariates or []
    cols = [time_col, event_col, *biomarkers, *covariates]
    missing = [c for c in cols if c not in df.columns]
    if missing:
        logger.debug("cox skipped: missing columns %s", missing)
        return pd.DataFrame()

    model_df = df[cols].copy()
    for c in [time_col, event_col, *biomarkers]:
        model_df[c] = _to_numeric(model_df[c])
    cat_cols = [c for c in covariates if model_df[c].dtype == "object"]
    for c in covariates:
        if c not in cat_cols:
            model_df[c] = _to_numeric(model_df[c])
    if cat_cols:
        model_df = model_df.dropna(subset=cat_cols)
        model_df = pd.get_dummies(model_df, columns=cat_cols, drop_first=True, dtype=float)

    # lifelines does not accept NaNs
    model_df = model_df.dropna()
    if model_df.empty or float(model_df[event_col].sum()) < min_events:
        return pd.DataFrame()

    for c in list(model_df.columns):
        if c in {time_col, event_col}:
            continue
        if model_df[c].nunique(dropna=True) <= 1:
            model_df = model_df.drop(columns=[c])
    if not any(b in model_df.columns for b in biomarkers):
        return pd.DataFrame()

    cph = CoxPHFitter(penalizer=penalizer)
    try:
        cph.fit(model_df, duration_col=time_col, event_col=event_col)
    except (ConvergenceError, np.linalg.LinAlgError) as e:
        logger.warning("cox fit did not converge (%d rows): %s", model_df.shape[0], e)
        return pd.DataFrame()

    out = _cox_summary(cph)
    out["n"] = int(model_df.shape[0])
    out["events"] = int(model_df[event_col].sum())
    return out


def biomarker_survival_screen(
    clinical: pd.DataFrame,
    matrix: pd.DataFrame,
    *,
    time_col: str,
    event_col: str,
    min_carriers: int = 3,
    penalizer: float = 0.1,
) -> pd.DataFrame:
    """
    One row per biomarker: carriers vs non-carriers log-rank p and the
    univariable Cox hazard ratio. `clinical` and `matrix` are both indexed by
    sample id; only shared samples are used.
    """
    common = clinical.index.intersection(matrix.index)
    if common.empty:
        return pd.DataFrame()
    base = clinical.loc[common, [time_col, event_col]].copy()

    rows: list[dict] = []
    for feature in matrix.columns:
        carrier = (matrix.loc[common, feature] > 0).astype(int)
        n_carriers = int(carrier.sum())
        if n_carriers < min_carriers or n_carriers > len(carrier) - min_carriers:
            continue
        d = base.assign(carrier=carrier)
        row: dict[str, object] = {
            "feature": feature,
            "n": int(d.shape[0]),
            "n_carriers": n_carriers,
            "p_logrank": km_logrank_p(d[time_col], d[event_col], d["carrier"]),
        }
        cox = fit_cox_biomarkers(
            d, time_col=time_col, event_col=event_col, biomarkers=["carrier"], penalizer=penalizer
        )
        if not cox.empty and "carrier" in cox["term"].values:
            r = cox[cox["term"] == "carrier"].iloc[0]
            row.update(
                {
                    "hr": float(r["exp(coef)"]),
                    "hr_lower": float(r["exp(coef) lower 95%"]),
                    "hr_upper": float(r["exp(coef) upper 95%"]),
                    "p_cox": float(r["p"]),
                }
            )
        rows.append(row)

    if not rows:
        return pd.DataFrame()
    out = pd.DataFrame(rows)
    out["fdr_logrank"] = fdr_bh(out["p_logrank"].to_numpy(dtype=float))
    return out.sort_values(["fdr_logrank", "p_logrank", "feature"], kind="mergesort").reset_index(drop=True)


def summarize_endpoint_by_group(
    df: pd.DataFrame, *, time_col: str, event_col: str, group_col: str
) -> pd.DataFrame:
    rows: list[dict] = []
    for g, sub in df.groupby(group_col, dropna=False):
        rows.append(
            {
                "group": g,
                "n": int(sub.shape[0]),
                "events": int(_to_numeric(sub[event_col]).fillna(0).astype(int).sum()),
                "km_median_days": km_median_time(sub[time_col], sub[event_col]),
            }
        )
    return pd.DataFrame(rows)
