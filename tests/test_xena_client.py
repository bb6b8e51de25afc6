import pandas as pd
import pytest
import xenaPython

from tcga_biomarkers.config import MutationColumns, XenaDatasets
from tcga_biomarkers.errors import RetrievalError
from tcga_biomarkers.xena_client import XenaClient

SURV_SAMPLES = [
    "TCGA-AA-0001-01",
    "TCGA-AA-0001-11",
    "TCGA-AA-0002-06",
    "TCGA-AA-0002-01",
    "TCGA-BB-0003-01",
]
SURV_FIELDS = {
    "sampleID": SURV_SAMPLES,
    # coded: 0=SKCM, 1=LUAD
    "cancer type abbreviation": [0, 0, 0, 0, 1],
    "OS": [1, 1, 0, 0, 1],
    "OS.time": [120.0, 120.0, 900.0, 900.0, 50.0],
}
MUT_EVENTS = [
    ("TCGA-AA-0001-01", "BRAF", "Missense_Mutation", "p.V600E"),
    ("TCGA-AA-0002-01", "NRAS", "Missense_Mutation", "p.Q61R"),
    ("TCGA-BB-0003-01", "EGFR", "Missense_Mutation", "p.L858R"),
]


class FakeHub:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.samples = {
            XenaDatasets.SURVIVAL: SURV_SAMPLES,
            XenaDatasets.MUT_VEC: ["TCGA-AA-0001-01", "TCGA-AA-0002-01", "TCGA-BB-0003-01"],
            XenaDatasets.RNA: ["TCGA-AA-0001-01", "TCGA-AA-0002-01"],
            XenaDatasets.CNV_GENE: ["TCGA-AA-0002-01"],
        }
        self.fields = {
            XenaDatasets.SURVIVAL: list(SURV_FIELDS),
            XenaDatasets.MUT_GENE: ["sampleID", "BRAF", "NRAS", "EGFR"],
            XenaDatasets.RNA: ["sampleID", "BRAF", "MYC"],
            XenaDatasets.CNV_GENE: ["sampleID", "MYC"],
        }

    def install(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ["dataset_samples", "dataset_field", "dataset_fetch", "field_codes", "sparse_data"]:
            monkeypatch.setattr(xenaPython, name, getattr(self, name))

    def dataset_samples(self, host, dataset, limit):
        self.calls.append("dataset_samples")
        return list(self.samples[dataset])

    def dataset_field(self, host, dataset):
        self.calls.append("dataset_field")
        return list(self.fields[dataset])

    def dataset_fetch(self, host, dataset, samples, probes):
        self.calls.append("dataset_fetch")
        if dataset == XenaDatasets.SURVIVAL:
            pos = [SURV_SAMPLES.index(s) for s in samples]
            return [[SURV_FIELDS[f][i] for i in pos] for f in probes]
        return [[float(len(p)) + i for i, _ in enumerate(samples)] for p in probes]

    def field_codes(self, host, dataset, fields):
        self.calls.append("field_codes")
        return [{"name": "cancer type abbreviation", "code": "SKCM\tLUAD"}]

    def sparse_data(self, host, dataset, samples, genes):
        self.calls.append("sparse_data")
        hits = [e for e in MUT_EVENTS if e[0] in samples and e[1] in genes]
        return {
            "rows": {
                "sampleID": [e[0] for e in hits],
                "genes": [[e[1]] for e in hits],
                "effect": [e[2] for e in hits],
                "amino-acid": [e[3] for e in hits],
                "position": [{"chrom": "chr1"} for _ in hits],
            }
        }


@pytest.fixture
def hub(monkeypatch):
    h = FakeHub()
    h.install(monkeypatch)
    return h


@pytest.fixture
def client(tmp_path):
    return XenaClient(cache_dir=tmp_path / "cache", show_progress=False)


def test_fetch_clinical_selects_one_tumor_sample_per_patient(hub, client):
    clinical = client.fetch_clinical("SKCM")
    assert clinical.index.tolist() == ["TCGA-AA-0001-01", "TCGA-AA-0002-01"]
    assert clinical.index.name == MutationColumns.SAMPLE
    assert clinical["cancer"].unique().tolist() == ["SKCM"]
    assert clinical["OS.time"].tolist() == [120.0, 900.0]


def test_unknown_cohort_raises_retrieval_error(hub, client):
    with pytest.raises(RetrievalError) as exc:
        client.fetch_clinical("XXXX")
    assert exc.value.cohort == "XXXX"


def test_hub_failure_is_wrapped(monkeypatch, client):
    def dataset_samples(host, dataset, limit):
        raise ConnectionError("hub unreachable")

    monkeypatch.setattr(xenaPython, "dataset_samples", dataset_samples)
    with pytest.raises(RetrievalError) as exc:
        client.fetch_mutations("SKCM")
    assert isinstance(exc.value.__cause__, ConnectionError)
    assert exc.value.dataset == XenaDatasets.SURVIVAL


def test_fetch_mutations_normalizes_columns(hub, client):
    muts = client.fetch_mutations("SKCM")
    assert muts.columns.tolist() == MutationColumns.ALL
    assert muts["sample"].tolist() == ["TCGA-AA-0001-01", "TCGA-AA-0002-01"]
    assert muts["gene"].tolist() == ["BRAF", "NRAS"]
    assert muts["amino_acid"].tolist() == ["p.V600E", "p.Q61R"]


def test_fetch_mutations_is_cached(hub, client):
    first = client.fetch_mutations("SKCM", genes=["BRAF"])
    n_sparse = hub.calls.count("sparse_data")
    second = client.fetch_mutations("SKCM", genes=["BRAF"])
    assert hub.calls.count("sparse_data") == n_sparse
    pd.testing.assert_frame_equal(first, second)
    assert second["gene"].tolist() == ["BRAF"]


def test_fetch_expression_and_copy_number_use_profiled_samples(hub, client):
    expr = client.fetch_expression("SKCM")
    assert expr.index.tolist() == ["BRAF", "MYC"]
    assert expr.columns.tolist() == ["TCGA-AA-0001-01", "TCGA-AA-0002-01"]
    assert str(expr.dtypes.iloc[0]) == "float32"

    cnv = client.fetch_copy_number("SKCM", genes=["MYC"])
    assert cnv.shape == (1, 1)
    assert cnv.columns.tolist() == ["TCGA-AA-0002-01"]


def test_copy_number_without_profiled_samples(hub, client):
    hub.samples[XenaDatasets.CNV_GENE] = []
    with pytest.raises(RetrievalError):
        client.fetch_copy_number("SKCM")
