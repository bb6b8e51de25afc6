import importlib.util
import json
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from tcga_biomarkers.config import MutationColumns, XenaDatasets
from tcga_biomarkers.pipeline import PipelineParams, _split, build_outcome_table, run_pipeline


@dataclass
class FakeClient:
    """Synthetic cohort: BRAF carriers die earlier, NRAS carriers are noise."""

    n: int = 240
    seed: int = 3

    def __post_init__(self) -> None:
        rng = np.random.default_rng(self.seed)
        self.samples = [f"TCGA-AA-{i:04d}-01" for i in range(self.n)]
        braf = rng.random(self.n) < 0.35
        nras = rng.random(self.n) < 0.25
        time = rng.exponential(np.where(braf, 500.0, 2500.0))
        censor = rng.uniform(200.0, 4000.0, self.n)
        self.clinical = pd.DataFrame(
            {
                "OS": (time <= censor).astype(int),
                "OS.time": np.minimum(time, censor).round(),
                "age_at_initial_pathologic_diagnosis": rng.normal(60, 10, self.n).round(),
                "cancer": "SKCM",
            },
            index=pd.Index(self.samples, name=MutationColumns.SAMPLE),
        )
        rows = []
        for s, b, r in zip(self.samples, braf, nras):
            if b:
                rows.append((s, "BRAF", "Missense_Mutation", "p.V600E"))
            if r:
                rows.append((s, "NRAS", "Missense_Mutation", "p.Q61R"))
        self.mutations = pd.DataFrame(rows, columns=MutationColumns.ALL)
        self.sequenced = self.samples[: self.n - 10]

    def fetch_clinical(self, cohort: str) -> pd.DataFrame:
        return self.clinical.copy()

    def fetch_mutations(self, cohort: str) -> pd.DataFrame:
        return self.mutations.copy()

    def profiled_samples(self, dataset: str, samples: list[str]) -> list[str]:
        assert dataset == XenaDatasets.MUT_VEC
        return [s for s in samples if s in set(self.sequenced)]

    def fetch_copy_number(self, cohort: str, *, genes: list[str]) -> pd.DataFrame:
        values = np.zeros((len(genes), self.n))
        values[:, ::8] = 1.5
        return pd.DataFrame(values, index=genes, columns=self.samples)

    def fetch_expression(self, cohort: str, *, genes: list[str]) -> pd.DataFrame:
        rng = np.random.default_rng(0)
        return pd.DataFrame(rng.normal(5, 2, (len(genes), self.n)), index=genes, columns=self.samples)


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


def test_build_outcome_table(client, tmp_path):
    params = PipelineParams(
        cohort="SKCM",
        out_dir=tmp_path,
        covariates=("age_at_initial_pathologic_diagnosis", "missing_column"),
        expression_genes=("MYC",),
    )
    expr = client.fetch_expression("SKCM", genes=["MYC"])
    out = build_outcome_table(client.clinical, params=params, samples=client.sequenced, expression=expr)

    assert out.columns.tolist() == ["OS_1095d", "age_at_initial_pathologic_diagnosis", "MYC_expr"]
    assert out.index.name == "sample"
    assert set(out.index) <= set(client.sequenced)
    assert set(out["OS_1095d"].unique()) == {0.0, 1.0}
    assert abs(out["MYC_expr"].mean()) < 0.5


def test_run_pipeline_writes_tables_and_figures(client, tmp_path):
    out_dir = tmp_path / "run"
    params = PipelineParams(
        cohort="SKCM",
        out_dir=out_dir,
        covariates=("age_at_initial_pathologic_diagnosis",),
        cnv_genes=("MYC",),
        min_feature_samples=5,
        test_fraction=0.3,
        seed=11,
        show_progress=False,
    )
    run = run_pipeline(params, client=client)

    assert 0.0 <= run["auc"] <= 1.0
    assert run["auc_split"] == "test"
    assert run["formula"].startswith("OS_1095d ~ 1 + age_at_initial_pathologic_diagnosis + ")
    assert run["n_biomarkers"] == 3

    tables = out_dir / "tables"
    for name in [
        "endpoints.tsv",
        "biomarker_matrix.tsv",
        "biomarker_survival_screen.tsv",
        "km_groups.tsv",
        "biomarker_effects.tsv",
        "coefficients.tsv",
        "predictions.tsv",
    ]:
        assert (tables / name).exists(), name
    effects = pd.read_csv(tables / "biomarker_effects.tsv", sep="\t")
    assert effects.set_index("feature").loc["BRAF", "estimate"] > 0.5

    matrix = pd.read_csv(tables / "biomarker_matrix.tsv", sep="\t", index_col=0)
    assert set(matrix.index) <= set(client.sequenced)

    figures = out_dir / "figures"
    assert (figures / "SKCM__roc.png").exists()
    assert (figures / "SKCM__probability_histogram.png").exists()
    assert (figures / "biomarker_effects.png").exists()
    assert any((figures / "km").glob("*.png"))

    summary = json.loads((out_dir / "run_summary.json").read_text())
    assert summary["params"]["cohort"] == "SKCM"
    assert summary["n_train"] + summary["n_eval"] <= len(client.sequenced)


def test_run_pipeline_custom_formula_without_plots(client, tmp_path):
    params = PipelineParams(
        cohort="SKCM",
        out_dir=tmp_path / "run",
        formula="OS_1095d ~ 1 + __BIOM",
        make_plots=False,
        show_progress=False,
    )
    run = run_pipeline(params, client=client)
    assert run["formula"] == "OS_1095d ~ 1 + BRAF + NRAS"
    assert run["auc_split"] == "train"
    assert run["auc"] > 0.6
    assert not (tmp_path / "run" / "figures").exists()


def test_run_pipeline_refuses_non_empty_out_dir(client, tmp_path):
    (tmp_path / "stale.txt").write_text("x")
    with pytest.raises(FileExistsError):
        run_pipeline(PipelineParams(cohort="SKCM", out_dir=tmp_path, make_plots=False), client=client)


@pytest.mark.parametrize("fraction", [1.0, 1.5, -0.1])
def test_test_fraction_out_of_range(fraction, tmp_path):
    with pytest.raises(ValueError, match="test_fraction"):
        PipelineParams(cohort="SKCM", out_dir=tmp_path, test_fraction=fraction)


def test_split_rejects_single_class_hold_out():
    outcome = pd.DataFrame({"y": [1.0, 1.0]}, index=["A", "B"])
    with pytest.raises(ValueError):
        _split(outcome, outcome_col="y", test_fraction=0.5, seed=0)
    train, test = _split(outcome, outcome_col="y", test_fraction=0.0, seed=0)
    assert test is None
    assert train.index.tolist() == ["A", "B"]


def test_unusable_split_fails_before_fitting(client, tmp_path):
    # every sample dies within the horizon, so no hold-out can hold both classes
    client.clinical["OS"] = 1
    client.clinical["OS.time"] = 100.0
    out_dir = tmp_path / "run"
    params = PipelineParams(cohort="SKCM", out_dir=out_dir, test_fraction=0.5, make_plots=False, show_progress=False)
    with pytest.raises(ValueError):
        run_pipeline(params, client=client)
    assert not (out_dir / "tables" / "coefficients.tsv").exists()
    assert not (out_dir / "tables" / "biomarker_effects.tsv").exists()


def test_cli_rejects_test_fraction_of_one():
    path = Path(__file__).resolve().parents[1] / "scripts" / "run_biomarker_pipeline.py"
    module_spec = importlib.util.spec_from_file_location("run_biomarker_pipeline", path)
    cli = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(cli)

    parser = cli.build_parser()
    assert parser.parse_args(["--cohort", "SKCM", "--test-fraction", "0.25"]).test_fraction == 0.25
    with pytest.raises(SystemExit):
        parser.parse_args(["--cohort", "SKCM", "--test-fraction", "1.0"])
