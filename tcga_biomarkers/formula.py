from __future__ import annotations

import json
import keyword
import re
from dataclasses import dataclass
from typing import Iterable

from tcga_biomarkers.config import BIOMARKER_PLACEHOLDER
from tcga_biomarkers.errors import FormulaSubstitutionError


def quote_term(name: str) -> str:
    """Column name as a patsy term; non-identifiers (e.g. `BRAF:V600E`) become Q("...")."""
    if name.isidentifier() and not keyword.iskeyword(name):
        return name
    return f"Q({json.dumps(name)})"


_QUOTED_NAME = re.compile(r"""^Q\(\s*("(?:[^"\\]|\\.)*"|'[^']*')\s*\)$""")


def _unquote_term(term: str) -> str:
    """Inverse of quote_term for a bare `Q("...")` term."""
    m = _QUOTED_NAME.match(term.strip())
    if not m:
        return term.strip()
    lit = m.group(1)
    return json.loads(lit) if lit.startswith('"') else lit[1:-1]


def _split_terms(rhs: str) -> tuple[list[str], list[str]]:
    """
    Split a right-hand side on top-level '+' and '-' into added and removed
    terms. C(x, Treatment('a')), I(a - b) and Q("a+b") stay whole.
    """
    added: list[str] = []
    removed: list[str] = []
    sign = "+"
    depth = 0
    quote: str | None = None
    buf: list[str] = []

    def flush() -> None:
        term = "".join(buf).strip()
        if term:
            (removed if sign == "-" else added).append(term)
        buf.clear()

    for ch in rhs:
        if quote:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch in "+-" and depth == 0:
            flush()
            sign = ch
            continue
        buf.append(ch)
    flush()
    return added, removed


@dataclass(frozen=True)
class ModelFormula:
    """
    Additive model formula kept as an explicit term list. One term may
    be the biomarker placeholder, which `expand` replaces by one term per
    biomarker column. `removed` holds subtracted terms such as `- 1`.
    """

    outcome: str
    terms: tuple[str, ...] = ("1", BIOMARKER_PLACEHOLDER)
    placeholder: str = BIOMARKER_PLACEHOLDER
    removed: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str, *, placeholder: str = BIOMARKER_PLACEHOLDER) -> ModelFormula:
        if text.count("~") != 1:
            raise FormulaSubstitutionError("expected exactly one '~'", formula=text)
        lhs, rhs = text.split("~")
        if not lhs.strip():
            raise FormulaSubstitutionError("missing outcome on the left of '~'", formula=text)
        added, removed = _split_terms(rhs)
        return cls(
            outcome=_unquote_term(lhs),
            terms=tuple(added),
            placeholder=placeholder,
            removed=tuple(removed),
        )

    @classmethod
    def additive(
        cls, outcome: str, *, covariates: Iterable[str] = (), biomarkers: bool = True, intercept: bool = True
    ) -> ModelFormula:
        terms = ["1"] if intercept else ["0"]
        terms.extend(quote_term(c) for c in covariates)
        if biomarkers:
            terms.append(BIOMARKER_PLACEHOLDER)
        return cls(outcome=outcome, terms=tuple(terms))

    @property
    def has_placeholder(self) -> bool:
        return self.placeholder in self.terms

    def expand(self, labels: Iterable[str]) -> ModelFormula:
        labels = list(labels)
        if not self.has_placeholder:
            if labels:
                raise FormulaSubstitutionError(
                    f"placeholder {self.placeholder} absent but {len(labels)} biomarker columns supplied",
                    formula=self.render(),
                )
            return self
        if not labels:
            raise FormulaSubstitutionError(
                f"no biomarker columns to substitute for {self.placeholder}", formula=self.render()
            )
        terms: list[str] = []
        for t in self.terms:
            if t == self.placeholder:
                terms.extend(quote_term(label) for label in labels)
            else:
                terms.append(t)
        return ModelFormula(
            outcome=self.outcome, terms=tuple(terms), placeholder=self.placeholder, removed=self.removed
        )

    def term_labels(self, labels: Iterable[str]) -> dict[str, str]:
        """Map rendered term -> biomarker label (patsy names coefficients after the term)."""
        return {quote_term(label): label for label in labels}

    def render(self) -> str:
        rhs = " + ".join(self.terms) if self.terms else "1"
        rhs += "".join(f" - {t}" for t in self.removed)
        return f"{quote_term(self.outcome)} ~ {rhs}"

    def __str__(self) -> str:
        return self.render()
