from __future__ import annotations


class BiomarkerError(Exception):
    """Base class for all errors raised by tcga_biomarkers."""


class RetrievalError(BiomarkerError):
    def __init__(self, message: str, *, cohort: str | None = None, dataset: str | None = None) -> None:
        self.cohort = cohort
        self.dataset = dataset
        ctx = ", ".join(f"{k}={v}" for k, v in (("cohort", cohort), ("dataset", dataset)) if v)
        super().__init__(f"{message} ({ctx})" if ctx else message)


class SchemaError(BiomarkerError):
    def __init__(self, column: str, *, table: str = "input") -> None:
        self.column = column
        self.table = table
        super().__init__(f"column {column!r} missing from {table} table")


class KeyMismatchError(BiomarkerError):
    def __init__(self, message: str, *, sample_col: str) -> None:
        self.sample_col = sample_col
        super().__init__(f"{message} (key={sample_col})")


class FormulaSubstitutionError(BiomarkerError):
    def __init__(self, message: str, *, formula: str) -> None:
        self.formula = formula
        super().__init__(f"{message}: {formula}")


class FittingError(BiomarkerError):
    """
    Wraps any exception raised by a fitting backend.
    The original exception is kept on `.original` and as `__cause__`.
    """

    def __init__(self, original: BaseException, *, formula: str, backend: str) -> None:
        self.original = original
        self.formula = formula
        self.backend = backend
        super().__init__(f"{backend} fit failed: {original} [formula: {formula}]")
