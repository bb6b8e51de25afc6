from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path

import numpy as np
import pandas as pd

from tcga_biomarkers.config import FitConfig, MutationColumns, XenaDatasets
from tcga_biomarkers.features import (
    LABEL_RULES,
    build_biomarker_matrix,
    copy_number_events,
    drop_rare_features,
    join_outcome,
    top_features,
)
from tcga_biomarkers.fitting import fit_model, make_backend
from tcga_biomarkers.formula import ModelFormula
from tcga_biomarkers.io import ensure_dir, write_json, write_tsv
from tcga_biomarkers.plots import km_plot
from tcga_biomarkers.summary import model_auc, plot_effects, predictions, summarize_effects
from tcga_biomarkers.survival import (
    ENDPOINTS,
    binary_survival_outcome,
    biomarker_survival_screen,
    km_median_time,
    summarize_endpoint_by_group,
)
from tcga_biomarkers.xena_client import XenaClient


@dataclass(frozen=True)
class PipelineParams:
    cohort: str
    out_dir: Path
    cache_dir: Path = Path("cache")
    backend: str = "glm"
    label_rule: str = "gene"
    value: str = "presence"
    formula: str | None = None
    endpoint: str = "OS"
    horizon_days: int = 1095
    covariates: tuple[str, ...] = ()
    expression_genes: tuple[str, ...] = ()
    cnv_genes: tuple[str, ...] = ()
    min_feature_samples: int = 5
    max_features: int = 30
    join: str = "left"
    test_fraction: float = 0.0
    km_top_n: int = 5
    make_plots: bool = True
    seed: int = 0
    overwrite: bool = False
    show_progress: bool = True
    fit: FitConfig = field(default_factory=FitConfig)

    def __post_init__(self) -> None:
        if not 0.0 <= self.test_fraction < 1.0:
            raise ValueError(f"test_fraction must be in [0, 1), got {self.test_fraction}")

    @property
    def outcome_name(self) -> str:
        return f"{self.endpoint}_{self.horizon_days}d"


def _check_out_dir(out_dir: Path, *, overwrite: bool) -> None:
    if out_dir.exists():
        if out_dir.is_file():
            raise FileExistsError(f"--out must be a directory, but got an existing file: {out_dir}")
        if any(out_dir.iterdir()) and not overwrite:
            raise FileExistsError(f"Output directory is not empty: {out_dir} (use --overwrite or choose a new --out)")
    ensure_dir(out_dir)


def _endpoint_summary(clinical: pd.DataFrame) -> pd.DataFrame:
    rows: list[dict] = []
    for ep in ENDPOINTS:
        if ep not in clinical.columns or f"{ep}.time" not in clinical.columns:
            continue
        d = clinical[[ep, f"{ep}.time"]].dropna()
        rows.append(
            {
                "endpoint": ep,
                "n": int(d.shape[0]),
                "events": int(d[ep].astype(int).sum()),
                "km_median_days": km_median_time(d[f"{ep}.time"], d[ep]),
            }
        )
    return pd.DataFrame(rows)


def _zscore(x: pd.Series) -> pd.Series:
    x = pd.to_numeric(x, errors="coerce")
    return (x - x.mean()) / (x.std(ddof=0) + 1e-8)


def build_outcome_table(
    clinical: pd.DataFrame,
    *,
    params: PipelineParams,
    samples: list[str],
    expression: pd.DataFrame | None = None,
) -> pd.DataFrame:
    """
    Binary survival outcome plus requested clinical covariates and z-scored
    expression covariates (`<GENE>_expr`), restricted to `samples` with
    complete data.
    """
    logger = logging.getLogger(__name__)
    outcome = binary_survival_outcome(
        clinical, time_col=f"{params.endpoint}.time", event_col=params.endpoint, horizon_days=params.horizon_days
    ).rename(params.outcome_name)
    df = outcome.to_frame()
    for c in params.covariates:
        if c not in clinical.columns:
            logger.warning("covariate %r not in clinical table; skipped", c)
            continue
        num = pd.to_numeric(clinical[c], errors="coerce")
        df[c] = num if num.notna().mean() > 0.5 else clinical[c]
    if expression is not None:
        for gene in params.expression_genes:
            if gene in expression.index:
                df[f"{gene}_expr"] = _zscore(expression.loc[gene]).reindex(df.index)
            else:
                logger.warning("expression gene %r not found; skipped", gene)

    df = df.loc[[s for s in samples if s in df.index]]
    n0 = len(df)
    df = df.dropna()
    logger.info(
        "outcome %s: %d samples (%d events), %d dropped for censoring/missing covariates",
        params.outcome_name,
        len(df),
        int(df[params.outcome_name].sum()),
        n0 - len(df),
    )
    df.index.name = MutationColumns.SAMPLE
    return df


def _split(
    outcome: pd.DataFrame, *, outcome_col: str, test_fraction: float, seed: int
) -> tuple[pd.DataFrame, pd.DataFrame | None]:
    """Seeded train/hold-out split; both parts must be usable for fitting and AUC."""
    if test_fraction <= 0:
        return outcome, None
    rng = np.random.default_rng(seed)
    test_mask = rng.random(len(outcome)) < test_fraction
    train, test = outcome[~test_mask], outcome[test_mask]
    if train.empty or test.empty:
        raise ValueError(
            f"test_fraction={test_fraction} split {len(outcome)} samples into {len(train)} train / {len(test)} test"
        )
    if test[outcome_col].nunique() < 2:
        raise ValueError(f"hold-out split of {len(test)} samples has a single {outcome_col} class; AUC is undefined")
    return train, test


def run_pipeline(params: PipelineParams, *, client: XenaClient | None = None) -> dict[str, object]:
    logger = logging.getLogger(__name__)
    _check_out_dir(params.out_dir, overwrite=params.overwrite)
    table_dir = params.out_dir / "tables"
    fig_dir = params.out_dir / "figures"
    logger.info(
        "starting pipeline: cohort=%s backend=%s rule=%s value=%s outcome=%s join=%s seed=%d",
        params.cohort,
        params.backend,
        params.label_rule,
        params.value,
        params.outcome_name,
        params.join,
        params.seed,
    )
    client = client or XenaClient(cache_dir=params.cache_dir, show_progress=params.show_progress)
    t0 = time.perf_counter()

    clinical = client.fetch_clinical(params.cohort)
    write_tsv(_endpoint_summary(clinical), table_dir / "endpoints.tsv")

    mutations = client.fetch_mutations(params.cohort)
    if params.cnv_genes:
        cnv = client.fetch_copy_number(params.cohort, genes=list(params.cnv_genes))
        cnv_events = copy_number_events(cnv, genes=list(params.cnv_genes))
        logger.info("[%s] %d copy-number events added", params.cohort, len(cnv_events))
        mutations = pd.concat([mutations, cnv_events], ignore_index=True)
    expression = None
    if params.expression_genes:
        expression = client.fetch_expression(params.cohort, genes=list(params.expression_genes))
    logger.info("[%s] data loaded (%.1fs)", params.cohort, time.perf_counter() - t0)

    # zero-filled rows are only meaningful for samples that were sequenced
    sequenced = client.profiled_samples(XenaDatasets.MUT_VEC, clinical.index.astype(str).tolist())
    outcome = build_outcome_table(clinical, params=params, samples=sequenced, expression=expression)
    train, test = _split(
        outcome, outcome_col=params.outcome_name, test_fraction=params.test_fraction, seed=params.seed
    )

    matrix = build_biomarker_matrix(mutations, LABEL_RULES[params.label_rule], value=params.value, samples=outcome.index)
    matrix = drop_rare_features(matrix, min_samples=params.min_feature_samples)
    matrix = top_features(matrix, n=params.max_features)
    write_tsv(matrix, table_dir / "biomarker_matrix.tsv", index=True)
    logger.info("[%s] biomarker matrix: %d samples x %d features", params.cohort, *matrix.shape)

    time_col, event_col = f"{params.endpoint}.time", params.endpoint
    screen = biomarker_survival_screen(clinical, matrix, time_col=time_col, event_col=event_col)
    if not screen.empty:
        write_tsv(screen, table_dir / "biomarker_survival_screen.tsv")
        groups: list[pd.DataFrame] = []
        for feature in screen["feature"].head(params.km_top_n):
            d = clinical.loc[matrix.index, [time_col, event_col]].assign(carrier=(matrix[feature] > 0).astype(int))
            groups.append(
                summarize_endpoint_by_group(d, time_col=time_col, event_col=event_col, group_col="carrier").assign(
                    feature=feature
                )
            )
            if params.make_plots:
                safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in feature)
                km_plot(
                    d,
                    time_col=time_col,
                    event_col=event_col,
                    group_col="carrier",
                    title=f"{params.cohort} {params.endpoint}: {feature}",
                    out_path=fig_dir / "km" / f"{safe}.png",
                    group_labels={0: "wild-type", 1: feature},
                )
        write_tsv(pd.concat(groups, ignore_index=True), table_dir / "km_groups.tsv")

    covariates = [c for c in outcome.columns if c != params.outcome_name]
    formula = (
        ModelFormula.parse(params.formula)
        if params.formula
        else ModelFormula.additive(params.outcome_name, covariates=covariates)
    )
    backend = make_backend(params.backend, config=params.fit)
    model = fit_model(train, formula, matrix, backend, sample_col=MutationColumns.SAMPLE, join=params.join)

    summary = summarize_effects(model)
    write_tsv(summary, table_dir / "biomarker_effects.tsv")
    write_tsv(model.coefficients(), table_dir / "coefficients.tsv")
    if params.make_plots:
        plot_effects(summary, out_path=fig_dir / "biomarker_effects.png", title=f"{params.cohort}: {model.backend} effects")

    eval_data = join_outcome(test if test is not None else train, matrix, how=params.join)
    auc = model_auc(
        eval_data,
        params.outcome_name,
        model,
        h_gram=params.make_plots,
        roc_plot=params.make_plots,
        fig_dir=fig_dir,
        prefix=params.cohort,
    )
    write_tsv(predictions(eval_data, params.outcome_name, model), table_dir / "predictions.tsv", index=True)

    run = {
        "params": {k: (str(v) if isinstance(v, Path) else v) for k, v in asdict(params).items()},
        "formula": model.formula.render(),
        "n_train": model.n_samples,
        "n_eval": int(len(eval_data)),
        "auc_split": "test" if test is not None else "train",
        "auc": auc,
        "n_biomarkers": len(model.biomarkers),
        "elapsed_s": round(time.perf_counter() - t0, 1),
    }
    write_json(run, params.out_dir / "run_summary.json")
    logger.info("[%s] done: AUC=%.3f (%s) -> %s", params.cohort, auc, run["auc_split"], params.out_dir)
    return run
