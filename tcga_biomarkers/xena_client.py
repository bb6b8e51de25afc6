from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, TypeVar

import numpy as np
import pandas as pd
import xenaPython
from tqdm import tqdm

from tcga_biomarkers.cache import cache_path, read_cached, slugify_dataset_name, write_cached
from tcga_biomarkers.cohorts import cohort_samples, prepare_survival_table
from tcga_biomarkers.config import MutationColumns, XenaDatasets
from tcga_biomarkers.errors import RetrievalError

T = TypeVar("T")

logger = logging.getLogger(__name__)


def _drop_sampleid_field(fields: list[str]) -> list[str]:
    return [f for f in fields if f != "sampleID"]


def _chunks(seq: list[str], size: int) -> Iterable[list[str]]:
    for i in range(0, len(seq), size):
        yield seq[i : i + size]


def _first_gene(x: object) -> object:
    return x[0] if isinstance(x, list) and x else x


@dataclass
class XenaClient:
    """
    Read-only access to the PanCanAtlas Xena hub for one cancer-type cohort at
    a time. Every download is cached under `cache_dir`; any hub failure or an
    unknown cohort raises RetrievalError.
    """

    hub: str = XenaDatasets.HUB
    cache_dir: Path = Path("cache")
    overwrite_cache: bool = False
    show_progress: bool = True
    tumor_only: bool = True
    _survival: pd.DataFrame | None = field(default=None, init=False, repr=False)

    def _call(self, fn: Callable[..., T], *args: object, dataset: str, cohort: str | None = None) -> T:
        try:
            return fn(self.hub, dataset, *args)
        except Exception as e:
            raise RetrievalError(f"Xena request {fn.__name__} failed: {e}", cohort=cohort, dataset=dataset) from e

    def dataset_samples(self, dataset: str, limit: int = 1_000_000) -> list[str]:
        return self._call(xenaPython.dataset_samples, limit, dataset=dataset)

    def dataset_fields(self, dataset: str) -> list[str]:
        return _drop_sampleid_field(self._call(xenaPython.dataset_field, dataset=dataset))

    def decode_field_codes(self, dataset: str, df: pd.DataFrame, *, fields: list[str]) -> pd.DataFrame:
        """
        Decode clinicalMatrix categorical fields that Xena stores as integer codes (0,1,2,...).
        """
        out = df.copy()
        code_map: dict[str, list[str]] = {}
        for entry in self._call(xenaPython.field_codes, fields, dataset=dataset):
            name = entry.get("name")
            if name:
                code_map[name] = str(entry.get("code") or "").split("\t")

        def decode_val(v: object, labels: list[str]) -> object:
            s = "" if v is None else str(v).strip()
            if not s or s.lower() == "nan":
                return np.nan
            try:
                i = int(float(s))
            except ValueError:
                return v
            if 0 <= i < len(labels) and labels[i]:
                return labels[i]
            return np.nan

        for name, labels in code_map.items():
            if name in out.columns:
                out[name] = out[name].apply(lambda v: decode_val(v, labels))
        return out

    def survival_table(self) -> pd.DataFrame:
        """Pan-cancer survival/clinical table (one row per sample), fetched once per client."""
        if self._survival is not None:
            return self._survival
        dataset = XenaDatasets.SURVIVAL
        path = cache_path(self.cache_dir, dataset, cohort="all", suffix=".pkl")
        if path.exists() and not self.overwrite_cache:
            df = read_cached(path)
            logger.debug("cache hit: clinical %s shape=%s", dataset, df.shape)
        else:
            samples = self.dataset_samples(dataset)
            fields = self.dataset_fields(dataset)
            values = self._call(xenaPython.dataset_fetch, samples, fields, dataset=dataset)
            df = pd.DataFrame(values, index=fields, columns=samples).T
            df = self.decode_field_codes(dataset, df, fields=XenaDatasets.SURVIVAL_CODED_FIELDS)
            write_cached(df, path)
            logger.info("loaded clinical %s: %d samples x %d fields", dataset, df.shape[0], df.shape[1])
        self._survival = prepare_survival_table(df)
        return self._survival

    def cohort_samples(self, cohort: str) -> list[str]:
        samples = cohort_samples(self.survival_table(), cancer=cohort, tumor_only=self.tumor_only)
        if not samples:
            raise RetrievalError("unknown cohort or no tumour samples", cohort=cohort, dataset=XenaDatasets.SURVIVAL)
        return samples

    def profiled_samples(self, dataset: str, samples: list[str]) -> list[str]:
        """Subset of `samples` actually present in `dataset` (e.g. sequenced for mutations)."""
        available = set(self.dataset_samples(dataset))
        return [s for s in samples if s in available]

    def fetch_clinical(self, cohort: str) -> pd.DataFrame:
        clinical = self.survival_table().loc[self.cohort_samples(cohort)].copy()
        clinical.index.name = MutationColumns.SAMPLE
        logger.info("[%s] clinical: %d samples x %d fields", cohort, clinical.shape[0], clinical.shape[1])
        return clinical

    def fetch_mutations(self, cohort: str, *, genes: list[str] | None = None, gene_chunk_size: int = 500) -> pd.DataFrame:
        """
        Somatic mutation events (MC3) for the cohort's sequenced samples:
        one row per event with columns MutationColumns.ALL. All genes of the
        non-silent gene matrix unless `genes` is given.
        """
        dataset = XenaDatasets.MUT_VEC
        path = cache_path(self.cache_dir, dataset, cohort=cohort, items=genes)
        if path.exists() and not self.overwrite_cache:
            return read_cached(path)

        samples = self.profiled_samples(dataset, self.cohort_samples(cohort))
        if not samples:
            raise RetrievalError("no mutation-profiled samples", cohort=cohort, dataset=dataset)
        genes = genes if genes is not None else self.dataset_fields(XenaDatasets.MUT_GENE)

        parts: list[pd.DataFrame] = []
        for chunk in tqdm(
            list(_chunks(genes, gene_chunk_size)),
            desc=f"[{cohort}] mutations",
            disable=not self.show_progress,
        ):
            res = self._call(xenaPython.sparse_data, samples, chunk, dataset=dataset, cohort=cohort)
            rows = res.get("rows") or {}
            if rows:
                parts.append(pd.DataFrame(rows))

        raw_cols = ["sampleID", "genes", "effect", "amino-acid"]
        df = pd.concat(parts, ignore_index=True) if parts else pd.DataFrame(columns=raw_cols)
        df = df.rename(
            columns={
                "sampleID": MutationColumns.SAMPLE,
                "genes": MutationColumns.GENE,
                "amino-acid": MutationColumns.AMINO_ACID,
            }
        )
        df[MutationColumns.GENE] = df[MutationColumns.GENE].apply(_first_gene)
        for c in MutationColumns.ALL:
            if c not in df.columns:
                df[c] = np.nan
        df = df[MutationColumns.ALL].astype({MutationColumns.SAMPLE: str, MutationColumns.GENE: str})
        df = df.sort_values([MutationColumns.SAMPLE, MutationColumns.GENE], kind="mergesort").reset_index(drop=True)

        write_cached(df, path)
        logger.info("[%s] mutations: %d events in %d samples", cohort, len(df), df[MutationColumns.SAMPLE].nunique())
        return df

    def fetch_dense_matrix(
        self,
        dataset: str,
        *,
        cohort: str,
        samples: list[str],
        probes: list[str],
        probe_chunk_size: int = 500,
        cache_items: list[str] | None = None,
    ) -> pd.DataFrame:
        path = cache_path(self.cache_dir, dataset, cohort=cohort, items=cache_items)
        if path.exists() and not self.overwrite_cache:
            df = read_cached(path)
            logger.debug("cache hit: %s cohort=%s shape=%s", dataset, cohort, df.shape)
            return df

        parts: list[pd.DataFrame] = []
        for chunk in tqdm(
            list(_chunks(_drop_sampleid_field(probes), probe_chunk_size)),
            desc=f"Xena fetch {slugify_dataset_name(dataset)}",
            disable=not self.show_progress,
        ):
            rows = self._call(xenaPython.dataset_fetch, samples, chunk, dataset=dataset, cohort=cohort)
            parts.append(pd.DataFrame(np.array(rows, dtype="float32"), index=chunk, columns=samples))
        df = pd.concat(parts, axis=0) if parts else pd.DataFrame(columns=samples, dtype="float32")

        write_cached(df, path)
        logger.info("[%s] loaded %s: %d probes x %d samples", cohort, dataset, df.shape[0], df.shape[1])
        return df

    def _fetch_gene_matrix(self, dataset: str, cohort: str, genes: list[str] | None) -> pd.DataFrame:
        samples = self.profiled_samples(dataset, self.cohort_samples(cohort))
        if not samples:
            raise RetrievalError("no profiled samples", cohort=cohort, dataset=dataset)
        probes = genes if genes is not None else self.dataset_fields(dataset)
        return self.fetch_dense_matrix(dataset, cohort=cohort, samples=samples, probes=probes, cache_items=genes)

    def fetch_expression(self, cohort: str, *, genes: list[str] | None = None) -> pd.DataFrame:
        """Batch-corrected RNA-seq expression, genes x samples (float32)."""
        return self._fetch_gene_matrix(XenaDatasets.RNA, cohort, genes)

    def fetch_copy_number(self, cohort: str, *, genes: list[str] | None = None) -> pd.DataFrame:
        """Gene-level copy number, genes x samples (float32)."""
        return self._fetch_gene_matrix(XenaDatasets.CNV_GENE, cohort, genes)
