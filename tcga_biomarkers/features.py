from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Union

import numpy as np
import pandas as pd

from tcga_biomarkers.config import MutationColumns
from tcga_biomarkers.errors import KeyMismatchError, SchemaError

logger = logging.getLogger(__name__)

VALUE_POLICIES = ("presence", "count")

TRUNCATING_EFFECTS = {
    "Nonsense_Mutation",
    "Frame_Shift_Ins",
    "Frame_Shift_Del",
    "Nonstop_Mutation",
    "Translation_Start_Site",
}


def _clean(v: object) -> str | None:
    if v is None or (isinstance(v, float) and np.isnan(v)):
        return None
    s = str(v).strip()
    if not s or s.lower() in {"nan", "none"}:
        return None
    return s


def classify_effect(effect: str | float | None) -> str | None:
    """Collapse MC3 variant classifications into coarse functional classes."""
    e = _clean(effect)
    if e is None:
        return None
    if e in TRUNCATING_EFFECTS:
        return "truncating"
    if e == "Splice_Site":
        return "splice"
    if e == "Missense_Mutation":
        return "missense"
    if e in {"In_Frame_Ins", "In_Frame_Del"}:
        return "inframe"
    if e in {"amplification", "deletion"}:
        return e
    return "other"


@dataclass(frozen=True)
class LabelRule:
    """
    Derives a feature label from one mutation record (a row of the mutation
    table). `columns` lists the fields the rule reads; a `None` label drops the
    record.
    """

    name: str
    columns: tuple[str, ...]
    func: Callable[[pd.Series], str | None]

    def __call__(self, record: pd.Series) -> str | None:
        return self.func(record)


def _joined(*parts: str | None) -> str | None:
    if any(p is None for p in parts):
        return None
    return ":".join(parts)  # type: ignore[arg-type]


def _aa(v: object) -> str | None:
    s = _clean(v)
    return s[2:] if s and s.startswith("p.") else s


GENE = LabelRule("gene", (MutationColumns.GENE,), lambda r: _clean(r[MutationColumns.GENE]))
GENE_EFFECT = LabelRule(
    "gene_effect",
    (MutationColumns.GENE, MutationColumns.EFFECT),
    lambda r: _joined(_clean(r[MutationColumns.GENE]), _clean(r[MutationColumns.EFFECT])),
)
GENE_AA = LabelRule(
    "gene_aa",
    (MutationColumns.GENE, MutationColumns.AMINO_ACID),
    lambda r: _joined(_clean(r[MutationColumns.GENE]), _aa(r[MutationColumns.AMINO_ACID])),
)
GENE_CLASS = LabelRule(
    "gene_class",
    (MutationColumns.GENE, MutationColumns.EFFECT),
    lambda r: _joined(_clean(r[MutationColumns.GENE]), classify_effect(r[MutationColumns.EFFECT])),
)

LABEL_RULES: dict[str, LabelRule] = {r.name: r for r in (GENE, GENE_EFFECT, GENE_AA, GENE_CLASS)}

RuleLike = Union[LabelRule, Callable[[pd.Series], object]]


def _derive_labels(mutations: pd.DataFrame, rule: RuleLike) -> pd.Series:
    if mutations.empty:
        return pd.Series(dtype=object, index=mutations.index)
    try:
        labels = mutations.apply(rule, axis=1)
    except KeyError as e:
        raise SchemaError(str(e.args[0]), table="mutation") from e
    return labels.map(_clean)


def build_biomarker_matrix(
    mutations: pd.DataFrame,
    rule: RuleLike,
    *,
    value: str = "presence",
    samples: list[str] | pd.Index | None = None,
    sample_col: str = MutationColumns.SAMPLE,
) -> pd.DataFrame:
    """
    Pivot long-format mutation events into a samples x labels matrix.

    value="presence" gives 0/1 cells, value="count" the number of events per
    (sample, label). Columns are exactly the distinct labels the rule derives,
    sorted. When `samples` is given the rows are reindexed onto it (left-join
    semantics): samples without events become all-zero rows, samples not listed
    are dropped.
    """
    if value not in VALUE_POLICIES:
        raise ValueError(f"value must be one of {VALUE_POLICIES}, got {value!r}")
    for c in [sample_col, *getattr(rule, "columns", ())]:
        if c not in mutations.columns:
            raise SchemaError(c, table="mutation")

    n_missing = int(mutations[sample_col].isna().sum())
    if n_missing:
        logger.warning("dropped %d mutation records without a sample id", n_missing)
        mutations = mutations[mutations[sample_col].notna()]

    labels = _derive_labels(mutations, rule)
    events = pd.DataFrame(
        {"sample": mutations[sample_col].astype(str).to_numpy(), "label": labels.to_numpy()}
    ).dropna()

    if events.empty:
        matrix = pd.DataFrame(index=pd.Index([], dtype=object), dtype="int64")
    else:
        matrix = pd.crosstab(events["sample"], events["label"])
        if value == "presence":
            matrix = (matrix > 0).astype("int64")
        matrix = matrix.sort_index().sort_index(axis=1).astype("int64")

    matrix.index.name = sample_col
    matrix.columns.name = None
    if samples is not None:
        matrix = matrix.reindex(pd.Index([str(s) for s in samples], name=sample_col), fill_value=0)
        matrix = matrix.astype("int64")
    logger.debug(
        "biomarker matrix (%s, %s): %d samples x %d features",
        getattr(rule, "name", "custom"),
        value,
        matrix.shape[0],
        matrix.shape[1],
    )
    return matrix


def _indexed_by_sample(outcome: pd.DataFrame, sample_col: str) -> pd.DataFrame:
    if sample_col in outcome.columns:
        df = outcome.set_index(sample_col)
    elif outcome.index.name == sample_col:
        df = outcome.copy()
    else:
        raise SchemaError(sample_col, table="outcome")
    df.index = df.index.astype(str)
    if df.index.has_duplicates:
        dupes = df.index[df.index.duplicated()].unique().tolist()[:5]
        raise KeyMismatchError(f"duplicate sample ids in outcome table, e.g. {dupes}", sample_col=sample_col)
    return df


def join_outcome(
    outcome: pd.DataFrame,
    matrix: pd.DataFrame,
    *,
    sample_col: str = MutationColumns.SAMPLE,
    how: str = "left",
) -> pd.DataFrame:
    """
    Join an outcome table (sample key as column or index) with a biomarker
    matrix, returning a frame indexed by sample id in outcome order.

    how="left" keeps every outcome sample and zero-fills biomarkers for
    samples absent from the matrix; how="inner" keeps only shared samples.
    Either way, zero shared sample ids is a KeyMismatchError.
    """
    if how not in {"left", "inner"}:
        raise ValueError(f"how must be 'left' or 'inner', got {how!r}")
    df = _indexed_by_sample(outcome, sample_col)
    clash = sorted(set(df.columns) & set(matrix.columns))
    if clash:
        raise ValueError(f"biomarker labels collide with outcome columns: {clash}")

    shared = df.index.intersection(matrix.index.astype(str))
    if df.empty or shared.empty:
        raise KeyMismatchError(
            f"no overlap between {len(df)} outcome samples and {len(matrix)} biomarker samples",
            sample_col=sample_col,
        )

    m = matrix.copy()
    m.index = m.index.astype(str)
    joined = df.join(m, how=how)
    if how == "left":
        if len(m.columns):
            joined[list(m.columns)] = joined[list(m.columns)].fillna(0).astype("int64")
        n_missing = len(df) - len(shared)
        if n_missing:
            logger.info("%d of %d outcome samples have no biomarker events (zero-filled)", n_missing, len(df))
    else:
        logger.info("inner join kept %d of %d outcome samples", len(joined), len(df))
    joined.index.name = sample_col
    return joined


def drop_rare_features(matrix: pd.DataFrame, *, min_samples: int) -> pd.DataFrame:
    """Keep features present (cell > 0) in at least `min_samples` rows."""
    if min_samples <= 1 or matrix.empty:
        return matrix
    keep = (matrix > 0).sum(axis=0) >= min_samples
    dropped = int((~keep).sum())
    if dropped:
        logger.info("dropped %d features seen in < %d samples (kept %d)", dropped, min_samples, int(keep.sum()))
    return matrix.loc[:, keep]


def top_features(matrix: pd.DataFrame, *, n: int) -> pd.DataFrame:
    """The `n` most frequent features (ties by label), in label order."""
    if n <= 0 or matrix.shape[1] <= n:
        return matrix
    freq = (matrix > 0).sum(axis=0).rename("n").rename_axis("feature").reset_index()
    freq = freq.sort_values(["n", "feature"], ascending=[False, True], kind="mergesort")
    return matrix.loc[:, sorted(freq["feature"].head(n))]


def copy_number_events(
    cnv: pd.DataFrame,
    *,
    genes: list[str] | None = None,
    amp_threshold: float = 1.0,
    del_threshold: float = -1.0,
) -> pd.DataFrame:
    """
    Turn a genes x samples copy-number matrix into mutation-shaped events so
    they can be labelled and pivoted like mutations. Values >= amp_threshold
    become `amplification`, values <= del_threshold become `deletion`.
    """
    if genes is not None:
        cnv = cnv.loc[cnv.index.intersection(genes)]
    long = cnv.rename_axis(index=MutationColumns.GENE).reset_index().melt(
        id_vars=MutationColumns.GENE, var_name=MutationColumns.SAMPLE, value_name="value"
    )
    long = long.dropna(subset=["value"])

    effect = pd.Series(pd.NA, index=long.index, dtype="object")
    effect[long["value"] >= amp_threshold] = "amplification"
    effect[long["value"] <= del_threshold] = "deletion"
    long[MutationColumns.EFFECT] = effect
    long[MutationColumns.AMINO_ACID] = np.nan
    out = long.dropna(subset=[MutationColumns.EFFECT])[MutationColumns.ALL]
    return out.sort_values([MutationColumns.SAMPLE, MutationColumns.GENE]).reset_index(drop=True)
