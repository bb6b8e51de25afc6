from __future__ import annotations

import hashlib
from pathlib import Path

import pandas as pd


def slugify_dataset_name(dataset: str) -> str:
    return dataset.replace("/", "__")


def stable_hash(items: list[str]) -> str:
    h = hashlib.md5()
    for item in items:
        h.update(item.encode("utf-8"))
        h.update(b"\n")
    return h.hexdigest()[:12]


def cache_path(cache_dir: Path, dataset: str, *, cohort: str, items: list[str] | None = None, suffix: str = ".parquet") -> Path:
    """
    <cache_dir>/<dataset slug>/<cohort>[__n<k>__<hash>]<suffix>

    `items` (genes, probes) are folded into the key so different gene panels
    for the same cohort never collide.
    """
    key = cohort
    if items is not None:
        key = f"{cohort}__n{len(items)}__{stable_hash(sorted(items))}"
    return cache_dir / slugify_dataset_name(dataset) / f"{key}{suffix}"


def read_cached(path: Path) -> pd.DataFrame:
    if path.suffix == ".pkl":
        return pd.read_pickle(path)
    return pd.read_parquet(path)


def write_cached(df: pd.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".pkl":
        # mixed-dtype clinical tables do not round-trip through parquet
        df.to_pickle(path)
    else:
        df.to_parquet(path, index=True)
