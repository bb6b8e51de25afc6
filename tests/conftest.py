from __future__ import annotations

from dataclasses import dataclass, field

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from tcga_biomarkers.config import MutationColumns


@dataclass
class CannedResult:
    estimates: dict[str, float]
    score_col: str | None = None

    def coefficients(self) -> pd.DataFrame:
        terms = list(self.estimates)
        est = np.array([self.estimates[t] for t in terms], dtype=float)
        return pd.DataFrame(
            {
                "term": terms,
                "estimate": est,
                "std_error": np.full(len(terms), 0.1),
                "ci_lower": est - 0.2,
                "ci_upper": est + 0.2,
            }
        )

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        if self.score_col is None:
            return np.full(len(data), 0.5)
        return data[self.score_col].to_numpy(dtype=float)


@dataclass
class RecordingBackend:
    """Test double: records every call and returns canned coefficients."""

    estimates: dict[str, float] = field(default_factory=dict)
    error: Exception | None = None
    name: str = "recording"
    calls: list[tuple[str, pd.DataFrame]] = field(default_factory=list)

    def fit(self, formula: str, data: pd.DataFrame) -> CannedResult:
        self.calls.append((formula, data.copy()))
        if self.error is not None:
            raise self.error
        return CannedResult(dict(self.estimates))


@pytest.fixture
def mutations() -> pd.DataFrame:
    return pd.DataFrame(
        {
            MutationColumns.SAMPLE: ["S1", "S1", "S2", "S1"],
            MutationColumns.GENE: ["BRAF", "NRAS", "BRAF", "BRAF"],
            MutationColumns.EFFECT: ["Missense_Mutation", "Missense_Mutation", "Nonsense_Mutation", "Missense_Mutation"],
            MutationColumns.AMINO_ACID: ["p.V600E", "p.Q61R", "p.R100*", "p.V600K"],
        }
    )


@pytest.fixture
def outcome() -> pd.DataFrame:
    return pd.DataFrame({"sample": ["S1", "S2", "S3"], "outcome": [1, 0, 1], "age": [60.0, 45.0, 70.0]})


@pytest.fixture
def logistic_data() -> tuple[pd.DataFrame, pd.DataFrame]:
    """400 samples; `BRAF:V600E` raises the odds of the outcome, `NRAS` is noise."""
    rng = np.random.default_rng(7)
    n = 400
    samples = [f"S{i:03d}" for i in range(n)]
    braf = rng.random(n) < 0.4
    nras = rng.random(n) < 0.3
    logit = -1.0 + 2.0 * braf
    y = (rng.random(n) < 1.0 / (1.0 + np.exp(-logit))).astype(int)

    rows = []
    for s, b, r in zip(samples, braf, nras):
        if b:
            rows.append((s, "BRAF", "Missense_Mutation", "p.V600E"))
        if r:
            rows.append((s, "NRAS", "Missense_Mutation", "p.Q61R"))
    muts = pd.DataFrame(rows, columns=MutationColumns.ALL)
    outcome = pd.DataFrame({"sample": samples, "outcome": y})
    return outcome, muts
