import pandas as pd

from tcga_biomarkers.cohorts import (
    cohort_samples,
    dedupe_by_patient,
    is_tumor_sample,
    list_cohorts,
    sample_type_code,
    tcga_patient_id,
)


def test_barcode_parsing():
    assert tcga_patient_id("TCGA-AB-1234-01") == "TCGA-AB-1234"
    assert sample_type_code("TCGA-AB-1234-01A") == "01"
    assert sample_type_code("TCGA-AB-1234") is None
    assert is_tumor_sample("TCGA-AB-1234-06")
    assert not is_tumor_sample("TCGA-AB-1234-11")


def test_dedupe_prefers_primary():
    assert dedupe_by_patient(["TCGA-AB-1234-06", "TCGA-AB-1234-01", "TCGA-CD-5678-06"]) == [
        "TCGA-AB-1234-01",
        "TCGA-CD-5678-06",
    ]


def _surv() -> pd.DataFrame:
    rows = []
    for i in range(6):
        rows.append((f"TCGA-AA-{i:04d}-01", "SKCM", i % 2, 100.0 * (i + 1)))
    for i in range(4):
        rows.append((f"TCGA-BB-{i:04d}-01", "LUAD", 1, 50.0 * (i + 1)))
    rows.append(("TCGA-BB-0000-11", "LUAD", 1, 50.0))
    return pd.DataFrame(rows, columns=["sample", "cancer type abbreviation", "OS", "OS.time"]).set_index("sample")


def test_cohort_samples():
    assert len(cohort_samples(_surv(), cancer="SKCM")) == 6
    assert "TCGA-BB-0000-11" not in cohort_samples(_surv(), cancer="LUAD")
    assert "TCGA-BB-0000-11" in cohort_samples(_surv(), cancer="LUAD", tumor_only=False, dedupe_patients=False)
    assert cohort_samples(_surv(), cancer="XXXX") == []


def test_list_cohorts_worst_first():
    out = list_cohorts(_surv())
    assert out["cancer"].tolist() == ["LUAD", "SKCM"]
    assert out.set_index("cancer").loc["SKCM", "os_events"] == 3
    assert list_cohorts(_surv(), min_samples=5)["cancer"].tolist() == ["SKCM"]
