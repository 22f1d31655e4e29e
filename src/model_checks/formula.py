"""Model-specification parsing and the log-transform preprocessor.

Specification grammar
~~~~~~~~~~~~~~~~~~~~~
Mean and dispersion sub-models are written as formula strings::

    <outcome> ~ <term> (+ <term>)*      mean spec,       e.g. "y ~ x + log(z) + x:g"
              ~ <term> (+ <term>)*      dispersion spec, e.g. "~a+b"

where ``<term>`` is an identifier, ``log(<identifier>)``, an
interaction of those joined by ``:``, or the intercept ``1``.  The
intercept is always part of the model; writing ``1`` is accepted and
adds nothing.

Rather than pattern-matching ``log(...)`` over raw text, the string is
tokenised and parsed into a small AST (:class:`Formula` →
:class:`Term` → :class:`Factor`).  Each token keeps its character
span, which lets :func:`prepare` rewrite exactly the ``log(x)`` token
groups while leaving every other character of the user's text intact.

Log preprocessing
~~~~~~~~~~~~~~~~~
``log(x)`` diverges when ``x`` contains zeros.  :func:`prepare`
replaces zeros in ``x`` with :data:`LOG_ZERO_FUDGE` (0.001), appends a
``log_x`` column and rewrites ``log(x)`` to ``log_x`` in the spec.
The constant is fixed: prior analyses were produced with it and the
transformed columns must stay comparable.

The rewritten spec contains no ``log(...)``, so running
:func:`prepare` again is a no-op.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, as_dataset
from .exceptions import InvalidSpecification, NumericInstability

logger = logging.getLogger(__name__)

LOG_ZERO_FUDGE = 0.001
"""Value substituted for exact zeros before a log transform."""

LOG_PREFIX = "log_"

# ------------------------------------------------------------------ #
# AST
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class Factor:
    """A single column reference, optionally log-transformed."""

    name: str
    transform: str = "identity"

    @property
    def is_log(self) -> bool:
        return self.transform == "log"

    @property
    def column(self) -> str:
        """Column holding this factor's values after :func:`prepare`."""
        return f"{LOG_PREFIX}{self.name}" if self.is_log else self.name

    def __str__(self) -> str:
        return f"log({self.name})" if self.is_log else self.name


@dataclass(frozen=True)
class Term:
    """A main effect (one factor) or an interaction (several)."""

    factors: tuple[Factor, ...]

    @property
    def is_interaction(self) -> bool:
        return len(self.factors) > 1

    @property
    def key(self) -> frozenset[Factor]:
        """Order-free identity: ``a:b`` and ``b:a`` are the same term."""
        return frozenset(self.factors)

    def matches(self, other: Term) -> bool:
        return self.key == other.key

    def __str__(self) -> str:
        return ":".join(str(f) for f in self.factors)


@dataclass(frozen=True)
class Formula:
    """Parsed specification.

    Attributes:
        outcome: Outcome factor (``None`` for dispersion specs).
        terms: Predictor terms, deduplicated, in order of appearance.
        text: The specification string as written.
    """

    outcome: Factor | None
    terms: tuple[Term, ...]
    text: str

    @property
    def is_intercept_only(self) -> bool:
        return not self.terms

    @property
    def factors(self) -> list[Factor]:
        """Every factor referenced, outcome first, without duplicates."""
        seen: dict[Factor, None] = {}
        if self.outcome is not None:
            seen[self.outcome] = None
        for term in self.terms:
            for factor in term.factors:
                seen.setdefault(factor, None)
        return list(seen)

    @property
    def log_variables(self) -> list[str]:
        """Names referenced inside ``log(...)``, first appearance order."""
        return list(dict.fromkeys(f.name for f in self.factors if f.is_log))

    def has_term(self, term: Term | str) -> bool:
        """Exact term membership (no substring matching)."""
        if isinstance(term, str):
            term = parse_term(term)
        return any(t.matches(term) for t in self.terms)

    def __str__(self) -> str:
        rhs = " + ".join(str(t) for t in self.terms) or "1"
        if self.outcome is None:
            return f"~ {rhs}"
        return f"{self.outcome} ~ {rhs}"


# ------------------------------------------------------------------ #
# Tokeniser
# ------------------------------------------------------------------ #

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<ident>[A-Za-z_.][A-Za-z0-9_.]*)
  | (?P<number>[0-9]+(?:\.[0-9]*)?)
  | (?P<op>[~+:()])
    """,
    re.VERBOSE,
)


class _Token(NamedTuple):
    kind: str
    text: str
    start: int
    end: int


def _tokenize(spec: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(spec):
        match = _TOKEN_RE.match(spec, pos)
        if match is None:
            raise InvalidSpecification(
                f"Unexpected character {spec[pos]!r} at position {pos}.",
                stage="parse",
                spec=spec,
            )
        kind = match.lastgroup
        assert kind is not None
        if kind != "ws":
            text = match.group()
            token_kind = text if kind == "op" else kind
            tokens.append(_Token(token_kind, text, pos, match.end()))
        pos = match.end()
    return tokens


# ------------------------------------------------------------------ #
# Parser
# ------------------------------------------------------------------ #


class _Parser:
    """Recursive-descent parser over the token list.

    Records the character span of every ``log(<ident>)`` group in
    :attr:`log_spans` so the preprocessor can rewrite them in place.
    """

    def __init__(self, spec: str) -> None:
        self.spec = spec
        self.tokens = _tokenize(spec)
        self.pos = 0
        self.log_spans: list[tuple[int, int, str]] = []

    # ---- token helpers ---------------------------------------------

    def _peek(self, offset: int = 0) -> _Token | None:
        idx = self.pos + offset
        return self.tokens[idx] if idx < len(self.tokens) else None

    def _error(self, expected: str) -> InvalidSpecification:
        tok = self._peek()
        found = f"{tok.text!r} at position {tok.start}" if tok else "end of input"
        return InvalidSpecification(
            f"Expected {expected}, found {found}.", stage="parse", spec=self.spec
        )

    def _expect(self, kind: str, expected: str) -> _Token:
        tok = self._peek()
        if tok is None or tok.kind != kind:
            raise self._error(expected)
        self.pos += 1
        return tok

    # ---- grammar ---------------------------------------------------

    def parse(self) -> Formula:
        outcome = None
        first = self._peek()
        if first is not None and first.kind != "~":
            outcome = self._factor()
        self._expect("~", "'~'")
        terms = self._rhs()
        if self._peek() is not None:
            raise self._error("'+' or end of input")
        return Formula(outcome=outcome, terms=terms, text=self.spec)

    def _rhs(self) -> tuple[Term, ...]:
        terms: dict[frozenset[Factor], Term] = {}
        while True:
            term = self._term()
            if term is not None:
                terms.setdefault(term.key, term)
            tok = self._peek()
            if tok is None or tok.kind != "+":
                break
            self.pos += 1
        return tuple(terms.values())

    def _term(self) -> Term | None:
        tok = self._peek()
        if tok is not None and tok.kind == "number":
            if tok.text != "1":
                raise InvalidSpecification(
                    f"Only the intercept '1' may appear as a number, got "
                    f"{tok.text!r} at position {tok.start}.",
                    stage="parse",
                    spec=self.spec,
                )
            self.pos += 1
            return None
        factors = [self._factor()]
        while (tok := self._peek()) is not None and tok.kind == ":":
            self.pos += 1
            factors.append(self._factor())
        if len(set(factors)) != len(factors):
            raise InvalidSpecification(
                f"Interaction repeats a factor: {':'.join(map(str, factors))}.",
                stage="parse",
                spec=self.spec,
            )
        return Term(tuple(factors))

    def _factor(self) -> Factor:
        name_tok = self._expect("ident", "a column name")
        nxt = self._peek()
        if name_tok.text == "log" and nxt is not None and nxt.kind == "(":
            self.pos += 1
            inner = self._expect("ident", "a column name inside log()")
            close = self._expect(")", "')' closing log(")
            self.log_spans.append((name_tok.start, close.end, inner.text))
            return Factor(inner.text, "log")
        return Factor(name_tok.text)


def parse_formula(spec: str) -> Formula:
    """Parse a mean or dispersion specification string.

    Args:
        spec: Formula text, e.g. ``"y ~ x + log(z)"`` or ``"~1"``.

    Returns:
        The parsed :class:`Formula`.

    Raises:
        InvalidSpecification: If *spec* does not follow the grammar.
    """
    _check_is_string(spec)
    return _Parser(spec).parse()


def _check_is_string(spec: object) -> None:
    if not isinstance(spec, str):
        raise InvalidSpecification(
            f"Specification must be a string, got {type(spec).__name__}.",
            stage="parse",
        )


def parse_term(text: str) -> Term:
    """Parse a single term such as ``"x"``, ``"a:b"`` or ``"log(z)"``."""
    formula = parse_formula(f"~ {text}")
    if len(formula.terms) != 1:
        raise InvalidSpecification(
            f"Expected exactly one term, got {text!r}.", stage="parse", spec=text
        )
    return formula.terms[0]


def log_variables(spec: str) -> list[str]:
    """Return the identifiers referenced inside ``log(...)`` in *spec*."""
    return parse_formula(spec).log_variables


# ------------------------------------------------------------------ #
# Preprocessor
# ------------------------------------------------------------------ #


class PreparedSpec(NamedTuple):
    """Result of :func:`prepare`: the rewritten spec and the new dataset."""

    spec: str
    data: pd.DataFrame


def _rewrite_logs(spec: str, log_spans: list[tuple[int, int, str]]) -> str:
    """Replace each ``log(<ident>)`` span with ``log_<ident>``."""
    pieces: list[str] = []
    cursor = 0
    for start, end, name in log_spans:
        pieces.append(spec[cursor:start])
        pieces.append(f"{LOG_PREFIX}{name}")
        cursor = end
    pieces.append(spec[cursor:])
    return "".join(pieces)


def _add_log_column(data: pd.DataFrame, name: str, spec: str) -> None:
    """Fudge zeros in ``data[name]`` and append ``log_<name>`` in place.

    *data* is always the caller-private copy made by :func:`prepare`.
    """
    if name not in data.columns:
        raise InvalidSpecification(
            f"log({name}) references unknown column {name!r}.",
            stage="prepare",
            spec=spec,
        )
    column = data[name]
    if not pd.api.types.is_numeric_dtype(column) or pd.api.types.is_bool_dtype(column):
        raise InvalidSpecification(
            f"log({name}) requires a numeric column, got dtype {column.dtype}.",
            stage="prepare",
            spec=spec,
        )
    values = column.astype(float)
    if values.isna().any():
        raise NumericInstability(
            f"Column {name!r} has missing values; log({name}) would be NaN.",
            stage="prepare",
            spec=spec,
        )
    if (values < 0).any():
        raise NumericInstability(
            f"Column {name!r} has negative values; log({name}) would be NaN.",
            stage="prepare",
            spec=spec,
        )

    is_zero = values == 0.0
    if is_zero.any():
        values = values.where(~is_zero, LOG_ZERO_FUDGE)
    logged = np.log(values.to_numpy())

    target = f"{LOG_PREFIX}{name}"
    if target in data.columns:
        # Already derived from this column (e.g. by an earlier spec).
        if _same_values(data[target], logged):
            return
        raise InvalidSpecification(
            f"log({name}) would be written to {target!r}, but the dataset "
            f"already has a different column of that name.  Rename it first.",
            stage="prepare",
            spec=spec,
        )
    if is_zero.any():
        logger.debug(
            "Replacing %d zero(s) in %r with %g before log transform.",
            int(is_zero.sum()),
            name,
            LOG_ZERO_FUDGE,
        )
        data[name] = values
    data[target] = logged


def _same_values(column: pd.Series, logged: np.ndarray) -> bool:
    if not pd.api.types.is_numeric_dtype(column) or pd.api.types.is_bool_dtype(column):
        return False
    existing = column.to_numpy(dtype=float, na_value=np.nan)
    return bool(np.allclose(existing, logged, rtol=1e-12, atol=0.0))


def prepare(spec: str, data: DataFrameLike) -> PreparedSpec:
    """Resolve every ``log(x)`` in *spec* to a finite ``log_x`` column.

    The input frame is never modified: the returned dataset is a copy
    with the zero-fudged source columns and the new ``log_*`` columns.

    Args:
        spec: Mean or dispersion specification.
        data: The working dataset.

    Returns:
        ``(rewritten_spec, new_data)``.

    Raises:
        InvalidSpecification: If *spec* is malformed, or a ``log()``
            argument is not a numeric column of *data*, or *data*
            already has a ``log_x`` column that differs from ``log(x)``.
        NumericInstability: If a ``log()`` argument has negative or
            missing values.
    """
    _check_is_string(spec)
    frame = as_dataset(data, stage="prepare").copy()
    parser = _Parser(spec)
    formula = parser.parse()
    for name in formula.log_variables:
        _add_log_column(frame, name, spec)
    rewritten = _rewrite_logs(spec, parser.log_spans)
    if rewritten != spec:
        logger.debug("Rewrote specification %r -> %r", spec, rewritten)
    return PreparedSpec(rewritten, frame)


def prepare_specs(
    mean_spec: str,
    dispersion_spec: str,
    data: DataFrameLike,
) -> tuple[str, str, pd.DataFrame]:
    """Prepare a mean and a dispersion spec against one dataset copy."""
    mean_spec, frame = prepare(mean_spec, data)
    dispersion_spec, frame = prepare(dispersion_spec, frame)
    return mean_spec, dispersion_spec, frame
