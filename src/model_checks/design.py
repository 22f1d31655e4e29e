"""Design-matrix construction from parsed specifications.

Turns a :class:`~model_checks.formula.Formula` and a dataset into the
numeric matrix a sub-model is fitted on:

* **Intercept** — a leading ``Intercept`` column of ones (always
  present unless the caller asks otherwise, e.g. ordinal models whose
  thresholds play the intercept's role).
* **Numeric factors** — entered as-is, cast to ``float``.
* **Categorical factors** (object, category, bool or string dtype) —
  treatment coded against the first level.  ``category`` columns use
  their declared categories, so a declared level with zero
  observations yields an all-zero column and the rank check rejects
  the design.  Other dtypes use their sorted observed levels.
  Columns are named ``name[T.level]``.
* **Interactions** — row-wise products of every combination of the
  factors' coded columns, named ``a:b``.
* **log factors** — computed on the fly for specs that did not go
  through :func:`~model_checks.formula.prepare`.  A non-finite result
  raises :class:`~model_checks.exceptions.NumericInstability` instead
  of handing ``-inf`` to the optimizer.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from .exceptions import FitFailure, InvalidSpecification, NumericInstability
from .formula import Factor, Formula

INTERCEPT = "Intercept"


def _is_categorical(series: pd.Series) -> bool:
    return bool(
        isinstance(series.dtype, pd.CategoricalDtype)
        or pd.api.types.is_bool_dtype(series)
        or pd.api.types.is_object_dtype(series)
        or pd.api.types.is_string_dtype(series)
    )


def factor_levels(series: pd.Series) -> list:
    """Levels of a categorical column, reference level first."""
    if isinstance(series.dtype, pd.CategoricalDtype):
        return list(series.cat.categories)
    observed = pd.unique(series.dropna())
    try:
        return sorted(observed)
    except TypeError:
        # Mixed types: fall back to a stable string ordering.
        return sorted(observed, key=str)


def _lookup(data: pd.DataFrame, name: str, spec: str) -> pd.Series:
    if name not in data.columns:
        raise InvalidSpecification(
            f"Specification references unknown column {name!r}.",
            stage="design",
            spec=spec,
        )
    return data[name]


def factor_values(factor: Factor, data: pd.DataFrame, spec: str) -> pd.Series:
    """Raw values of *factor*, log-transformed when tagged ``log``.

    ``log(x)`` is always computed from ``x``; a ``log_x`` column in
    *data* is an ordinary variable and never stands in for it.
    """
    if not factor.is_log:
        return _lookup(data, factor.name, spec)
    raw = _lookup(data, factor.name, spec)
    if _is_categorical(raw):
        raise InvalidSpecification(
            f"{factor} requires a numeric column, got dtype {raw.dtype}.",
            stage="design",
            spec=spec,
        )
    with np.errstate(divide="ignore", invalid="ignore"):
        logged = np.log(raw.astype(float))
    n_bad = int((~np.isfinite(logged) & raw.notna()).sum())
    if n_bad:
        raise NumericInstability(
            f"{factor} is not finite for {n_bad} row(s); zero or negative "
            f"values reached the log transform.  Run prepare() on the "
            f"specification first.",
            stage="design",
            spec=spec,
        )
    return pd.Series(logged, index=raw.index, name=factor.column)


def _code_factor(factor: Factor, data: pd.DataFrame, spec: str) -> pd.DataFrame:
    values = factor_values(factor, data, spec)
    if not _is_categorical(values):
        return pd.DataFrame({str(factor): values.astype(float)}, index=data.index)
    levels = factor_levels(values)
    coded = {
        f"{factor}[T.{level}]": (values == level).astype(float)
        for level in levels[1:]
    }
    # Rows with a missing level must stay missing, not become the reference.
    missing = values.isna()
    frame = pd.DataFrame(coded, index=data.index)
    if missing.any():
        frame.loc[missing, :] = np.nan
    return frame


def _interact(left: pd.DataFrame, right: pd.DataFrame) -> pd.DataFrame:
    return pd.DataFrame(
        {
            f"{a}:{b}": left[a].to_numpy() * right[b].to_numpy()
            for a in left.columns
            for b in right.columns
        },
        index=left.index,
    )


def build_design(
    formula: Formula,
    data: pd.DataFrame,
    *,
    intercept: bool = True,
) -> pd.DataFrame:
    """Build the design matrix for the right-hand side of *formula*.

    Args:
        formula: Parsed mean or dispersion specification.
        data: Dataset holding every referenced column.
        intercept: Whether to prepend the ``Intercept`` column.

    Returns:
        A float ``DataFrame`` of shape ``(n, k)`` aligned with *data*.

    Raises:
        InvalidSpecification: Unknown column.
        NumericInstability: Non-finite values in a log factor.
        FitFailure: Missing values in a referenced column.
    """
    blocks: list[pd.DataFrame] = []
    if intercept:
        blocks.append(pd.DataFrame({INTERCEPT: 1.0}, index=data.index))
    for term in formula.terms:
        coded = _code_factor(term.factors[0], data, formula.text)
        for factor in term.factors[1:]:
            coded = _interact(coded, _code_factor(factor, data, formula.text))
        blocks.append(coded)
    if not blocks:
        return pd.DataFrame(index=data.index)
    design = pd.concat(blocks, axis=1)
    design = design.loc[:, ~design.columns.duplicated()]

    n_missing = int(design.isna().any(axis=1).sum())
    if n_missing:
        raise FitFailure(
            f"{n_missing} row(s) have missing values in the predictors.",
            stage="design",
            spec=formula.text,
        )
    return design


def response_values(formula: Formula, data: pd.DataFrame) -> pd.Series:
    """Outcome column of a mean specification (log applied if requested)."""
    if formula.outcome is None:
        raise InvalidSpecification(
            "Mean specification must name an outcome, e.g. 'y ~ x'.",
            stage="design",
            spec=formula.text,
        )
    values = factor_values(formula.outcome, data, formula.text)
    if values.isna().any():
        raise FitFailure(
            f"Outcome {formula.outcome} has {int(values.isna().sum())} "
            f"missing value(s).",
            stage="design",
            spec=formula.text,
        )
    return values


def check_full_rank(design: pd.DataFrame, *, spec: str, family: str) -> None:
    """Raise :class:`FitFailure` unless *design* has full column rank.

    All-zero columns (a factor level with no observations) are named
    in the message; otherwise the rank deficit is reported.
    """
    if design.shape[1] == 0:
        return
    matrix = design.to_numpy(dtype=float)
    nonzero = np.any(matrix != 0.0, axis=0)
    empty = [col for col, used in zip(design.columns, nonzero) if not used]
    if empty:
        raise FitFailure(
            f"Design matrix has all-zero column(s) {empty}; a factor level "
            f"has no observations.",
            stage="fit",
            spec=spec,
            family=family,
        )
    rank = int(np.linalg.matrix_rank(matrix))
    if rank < matrix.shape[1]:
        raise FitFailure(
            f"Design matrix is rank deficient (rank {rank} < "
            f"{matrix.shape[1]} columns); predictors are collinear.",
            stage="fit",
            spec=spec,
            family=family,
        )
