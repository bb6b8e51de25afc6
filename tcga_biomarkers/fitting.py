from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Mapping, Protocol, Union

import numpy as np
import pandas as pd
import patsy
import statsmodels.api as sm
import statsmodels.formula.api as smf
from scipy.special import expit

from tcga_biomarkers.config import FitConfig, MutationColumns
from tcga_biomarkers.errors import FittingError, KeyMismatchError, SchemaError
from tcga_biomarkers.features import RuleLike, build_biomarker_matrix, drop_rare_features, join_outcome
from tcga_biomarkers.formula import ModelFormula

logger = logging.getLogger(__name__)

COEF_COLUMNS = ["term", "estimate", "std_error", "ci_lower", "ci_upper"]


class BackendResult(Protocol):
    def coefficients(self) -> pd.DataFrame:
        """One row per model term with columns COEF_COLUMNS (extra columns allowed)."""
        ...

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        """Predicted outcome probability per row of `data`."""
        ...


class FittingBackend(Protocol):
    name: str

    def fit(self, formula: str, data: pd.DataFrame) -> BackendResult:
        ...


_GLM_FAMILIES = {
    "binomial": sm.families.Binomial,
    "poisson": sm.families.Poisson,
    "gaussian": sm.families.Gaussian,
}


@dataclass(frozen=True)
class GlmResult:
    result: object

    def coefficients(self) -> pd.DataFrame:
        res = self.result
        ci = res.conf_int()
        return pd.DataFrame(
            {
                "term": res.params.index.astype(str),
                "estimate": res.params.to_numpy(dtype=float),
                "std_error": res.bse.to_numpy(dtype=float),
                "ci_lower": ci.iloc[:, 0].to_numpy(dtype=float),
                "ci_upper": ci.iloc[:, 1].to_numpy(dtype=float),
                "p": res.pvalues.to_numpy(dtype=float),
            }
        )

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        return np.asarray(self.result.predict(data), dtype=float)


@dataclass(frozen=True)
class GlmBackend:
    """Maximum-likelihood GLM through statsmodels' formula interface."""

    family: str = "binomial"
    name: str = "glm"

    def fit(self, formula: str, data: pd.DataFrame) -> GlmResult:
        if self.family not in _GLM_FAMILIES:
            raise ValueError(f"unknown GLM family {self.family!r}; choose from {sorted(_GLM_FAMILIES)}")
        model = smf.glm(formula, data=data, family=_GLM_FAMILIES[self.family]())
        return GlmResult(model.fit())


@dataclass(frozen=True)
class BayesianResult:
    draws: np.ndarray  # (n_draws, n_terms)
    terms: tuple[str, ...]
    design_info: patsy.DesignInfo
    rhat: np.ndarray
    idata: object = field(repr=False)

    def coefficients(self) -> pd.DataFrame:
        lo, hi = np.quantile(self.draws, [0.025, 0.975], axis=0)
        return pd.DataFrame(
            {
                "term": list(self.terms),
                "estimate": self.draws.mean(axis=0),
                "std_error": self.draws.std(axis=0, ddof=1),
                "ci_lower": lo,
                "ci_upper": hi,
                "r_hat": self.rhat,
            }
        )

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        (x,) = patsy.build_design_matrices([self.design_info], data, return_type="dataframe")
        # posterior mean of the success probability, averaged over draws
        return expit(x.to_numpy(dtype=float) @ self.draws.T).mean(axis=1)


@dataclass(frozen=True)
class BayesianLogisticBackend:
    """
    Bernoulli-logit GLM sampled with PyMC (NUTS). Coefficients get independent
    Normal(0, prior_scale) priors, the intercept Normal(0, intercept_prior_scale).
    Chains, parallel workers and seed come from `config`.
    """

    config: FitConfig = field(default_factory=FitConfig)
    name: str = "bayes"

    def fit(self, formula: str, data: pd.DataFrame) -> BayesianResult:
        import arviz as az
        import pymc as pm

        cfg = self.config
        y, x = patsy.dmatrices(formula, data, return_type="dataframe")
        yv = y.iloc[:, 0].to_numpy(dtype=float)
        if not set(np.unique(yv)) <= {0.0, 1.0}:
            raise ValueError(f"outcome {y.columns[0]!r} must be coded 0/1 for a logistic model")
        terms = tuple(str(c) for c in x.columns)
        sigma = np.array([cfg.intercept_prior_scale if t == "Intercept" else cfg.prior_scale for t in terms])

        with pm.Model(coords={"term": terms}):
            beta = pm.Normal("beta", mu=0.0, sigma=sigma, dims="term")
            pm.Bernoulli("y", logit_p=pm.math.dot(x.to_numpy(dtype=float), beta), observed=yv)
            idata = pm.sample(
                draws=cfg.draws,
                tune=cfg.tune,
                chains=cfg.chains,
                cores=cfg.cores,
                random_seed=cfg.seed,
                target_accept=cfg.target_accept,
                progressbar=cfg.progressbar,
            )

        post = idata.posterior["beta"].stack(sample=("chain", "draw")).transpose("sample", "term")
        rhat = az.rhat(idata, var_names=["beta"])["beta"].to_numpy()
        if np.any(rhat > 1.05):
            logger.warning("r_hat > 1.05 for %d terms; consider more draws/tune", int(np.sum(rhat > 1.05)))
        return BayesianResult(
            draws=np.asarray(post.values, dtype=float),
            terms=terms,
            design_info=x.design_info,
            rhat=np.asarray(rhat, dtype=float),
            idata=idata,
        )


def make_backend(name: str, *, config: FitConfig | None = None) -> FittingBackend:
    if name == "glm":
        return GlmBackend()
    if name == "bayes":
        return BayesianLogisticBackend(config=config or FitConfig())
    raise ValueError(f"unknown backend {name!r} (expected 'glm' or 'bayes')")


@dataclass(frozen=True)
class FittedModel:
    formula: ModelFormula
    outcome: str
    sample_col: str
    biomarkers: tuple[str, ...]
    term_labels: Mapping[str, str]
    backend: str
    join: str
    n_samples: int
    result: BackendResult = field(repr=False)

    def coefficients(self) -> pd.DataFrame:
        """Backend coefficient table plus `feature` (biomarker label or term) and `is_biomarker`."""
        coef = self.result.coefficients().copy()
        coef["term"] = coef["term"].astype(str)
        coef["is_biomarker"] = coef["term"].isin(list(self.term_labels))
        coef["feature"] = coef["term"].map(lambda t: self.term_labels.get(t, t))
        return coef

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        return np.asarray(self.result.predict(data), dtype=float)


def fit_model(
    outcome_data: pd.DataFrame,
    formula: Union[str, ModelFormula],
    biomarkers: pd.DataFrame,
    backend: FittingBackend,
    *,
    sample_col: str = MutationColumns.SAMPLE,
    join: str = "left",
) -> FittedModel:
    """
    Join outcome data to a biomarker matrix, expand the biomarker placeholder
    into one term per matrix column and fit through `backend`. The delegate is
    called exactly once; any exception it raises comes back as FittingError.
    """
    if isinstance(formula, str):
        formula = ModelFormula.parse(formula)
    if formula.outcome not in outcome_data.columns:
        raise SchemaError(formula.outcome, table="outcome")

    data = join_outcome(outcome_data, biomarkers, sample_col=sample_col, how=join)
    n_before = len(data)
    data = data.dropna(subset=[formula.outcome])
    if data.empty:
        raise KeyMismatchError(f"none of {n_before} joined samples has an observed outcome", sample_col=sample_col)
    if len(data) < n_before:
        logger.info("dropped %d samples with missing %s", n_before - len(data), formula.outcome)

    labels = [str(c) for c in biomarkers.columns]
    expanded = formula.expand(labels)
    rendered = expanded.render()
    backend_name = getattr(backend, "name", type(backend).__name__)

    logger.info("fitting %s on %d samples, %d biomarkers: %s", backend_name, len(data), len(labels), rendered)
    t0 = time.perf_counter()
    try:
        result = backend.fit(rendered, data)
    except Exception as e:
        raise FittingError(e, formula=rendered, backend=backend_name) from e
    logger.info("fit done (%.1fs)", time.perf_counter() - t0)

    return FittedModel(
        formula=expanded,
        outcome=formula.outcome,
        sample_col=sample_col,
        biomarkers=tuple(labels),
        term_labels=formula.term_labels(labels),
        backend=backend_name,
        join=join,
        n_samples=int(len(data)),
        result=result,
    )


def fit_biomarker_model(
    outcome_data: pd.DataFrame,
    formula: Union[str, ModelFormula],
    mutations: pd.DataFrame,
    rule: RuleLike,
    backend: FittingBackend,
    *,
    value: str = "presence",
    sample_col: str = MutationColumns.SAMPLE,
    mutation_sample_col: str = MutationColumns.SAMPLE,
    join: str = "left",
    min_feature_samples: int = 1,
) -> FittedModel:
    """Build the biomarker matrix from mutation events, then `fit_model`."""
    matrix = build_biomarker_matrix(mutations, rule, value=value, sample_col=mutation_sample_col)
    matrix = drop_rare_features(matrix, min_samples=min_feature_samples)
    return fit_model(outcome_data, formula, matrix, backend, sample_col=sample_col, join=join)
