from __future__ import annotations

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.metrics import roc_curve
from statsmodels.stats.multitest import fdrcorrection


def fdr_bh(pvalues: np.ndarray) -> np.ndarray:
    p = np.asarray(pvalues, dtype=float)
    p = np.where(np.isfinite(p), p, 1.0)
    if p.size == 0:
        return p
    _, q = fdrcorrection(p, alpha=0.05, method="indep")
    return q


def _scores_labels(scores: object, labels: object) -> tuple[np.ndarray, np.ndarray]:
    s = np.asarray(scores, dtype=float).reshape(-1)
    y = np.asarray(labels, dtype=float).reshape(-1)
    if s.shape != y.shape:
        raise ValueError(f"scores and labels differ in length: {s.size} != {y.size}")
    ok = np.isfinite(s) & np.isfinite(y)
    s, y = s[ok], y[ok]
    bad = set(np.unique(y).tolist()) - {0.0, 1.0}
    if bad:
        raise ValueError(f"labels must be binary 0/1, got {sorted(bad)}")
    return s, y


def rank_auc(scores: object, labels: object) -> float | None:
    """
    ROC AUC via the Mann–Whitney U statistic with mid-ranks for tied scores:
      AUC = (R_pos - n_pos (n_pos + 1) / 2) / (n_pos n_neg)
    Pairs with a non-finite score or label are dropped. Returns None unless
    both classes are present.
    """
    s, y = _scores_labels(scores, labels)
    pos = y == 1.0
    n_pos = float(pos.sum())
    n_neg = float(s.size - pos.sum())
    if n_pos == 0 or n_neg == 0:
        return None
    r = stats.rankdata(s, method="average")
    u = float(np.sum(r[pos])) - n_pos * (n_pos + 1.0) / 2.0
    return float(u / (n_pos * n_neg))


def roc_points(scores: object, labels: object) -> pd.DataFrame:
    """Empirical ROC curve (fpr, tpr, threshold), starting at (0, 0)."""
    s, y = _scores_labels(scores, labels)
    if np.unique(y).size < 2:
        return pd.DataFrame(columns=["fpr", "tpr", "threshold"])
    fpr, tpr, thr = roc_curve(y.astype(int), s)
    return pd.DataFrame({"fpr": fpr, "tpr": tpr, "threshold": thr})
