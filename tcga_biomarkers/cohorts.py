from __future__ import annotations

import re

import pandas as pd

from tcga_biomarkers.survival import ENDPOINTS, km_median_time


def tcga_patient_id(sample_id: str) -> str:
    parts = sample_id.split("-")
    if len(parts) < 3:
        return sample_id
    return "-".join(parts[:3])


def sample_type_code(sample_id: str) -> str | None:
    parts = sample_id.split("-")
    if len(parts) < 4:
        return None
    # PanCanAtlas barcodes end in ...-01, ...-11 (sometimes ...-01A)
    m = re.match(r"^(\d\d)", parts[3])
    return m.group(1) if m else None


# 01 primary solid, 03 primary blood-derived (LAML), 06 metastatic (most of SKCM)
TUMOR_SAMPLE_TYPES = frozenset({"01", "03", "06"})


def is_tumor_sample(sample_id: str, *, types: frozenset[str] = TUMOR_SAMPLE_TYPES) -> bool:
    return sample_type_code(sample_id) in types


def dedupe_by_patient(sample_ids: list[str]) -> list[str]:
    """Keep the first sample per patient in sorted barcode order, so -01 wins over -06."""
    seen: set[str] = set()
    kept: list[str] = []
    for sid in sorted(sample_ids):
        pid = tcga_patient_id(sid)
        if pid in seen:
            continue
        seen.add(pid)
        kept.append(sid)
    return kept


def prepare_survival_table(surv: pd.DataFrame) -> pd.DataFrame:
    df = surv.copy()
    for ep in ENDPOINTS:
        if ep in df.columns:
            df[ep] = pd.to_numeric(df[ep], errors="coerce").astype("Int64")
        if f"{ep}.time" in df.columns:
            df[f"{ep}.time"] = pd.to_numeric(df[f"{ep}.time"], errors="coerce")
    if "cancer type abbreviation" in df.columns:
        df["cancer"] = df["cancer type abbreviation"].astype(str)
    return df


def cohort_samples(
    surv: pd.DataFrame,
    *,
    cancer: str,
    tumor_only: bool = True,
    dedupe_patients: bool = True,
) -> list[str]:
    df = prepare_survival_table(surv)
    df = df[df["cancer"] == cancer]
    ids = df.index.astype(str).tolist()
    if tumor_only:
        ids = [s for s in ids if is_tumor_sample(s)]
    if dedupe_patients:
        ids = dedupe_by_patient(ids)
    return ids


def list_cohorts(surv: pd.DataFrame, *, min_samples: int = 0, min_events: int = 0) -> pd.DataFrame:
    """
    One row per cancer type with sample/event counts and KM median OS,
    sorted by median OS ascending (worst prognosis first).
    """
    df = prepare_survival_table(surv)
    df = df[df.index.to_series().astype(str).map(is_tumor_sample)]
    kept = set(dedupe_by_patient(df.index.astype(str).tolist()))
    df = df[df.index.isin(kept)]

    rows: list[dict] = []
    for cancer, sub in df.groupby("cancer"):
        n = int(sub.shape[0])
        events = int(sub["OS"].fillna(0).astype(int).sum()) if "OS" in sub else 0
        if n < min_samples or events < min_events:
            continue
        rows.append(
            {
                "cancer": cancer,
                "n": n,
                "os_events": events,
                "os_median_days": km_median_time(sub["OS.time"], sub["OS"]) if "OS" in sub else None,
            }
        )
    out = pd.DataFrame(rows, columns=["cancer", "n", "os_events", "os_median_days"])
    return out.sort_values(["os_median_days", "cancer"], na_position="last").reset_index(drop=True)
