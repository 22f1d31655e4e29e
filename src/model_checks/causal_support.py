"""Causal support — model-averaged evidence for one term.

For one or two predictors every nested mean specification is fitted
with the normal family: 2 models for a single predictor ``A``
(``y ~ 1``, ``y ~ A``) and 8 for two predictors (every in/exclusion
pattern of ``A``, ``B`` and ``A:B``).  With a uniform prior over the
enumerated models the log posterior odds that the target term belongs
in the model is::

    [lse(ℓ_with) − log n_with] − [lse(ℓ_without) − log n_without]
        + log(n_with / n_without)

where ``ℓ`` are total log-likelihoods and ``lse`` is a max-shifted
log-sum-exp.  Positive scores favour including the term.

Membership is decided on parsed terms, not on text: ``a:b`` and
``b:a`` are the same term, and ``x`` never matches ``x2``.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Sequence

import numpy as np
from scipy.special import logsumexp

from ._compat import DataFrameLike, as_dataset
from .exceptions import InvalidSpecification, NumericInstability
from .fitting import fit
from .formula import Term, parse_formula, parse_term, prepare_specs

logger = logging.getLogger(__name__)


def _candidate_terms(predictors: Sequence[str]) -> list[str]:
    if isinstance(predictors, str):
        predictors = [predictors]
    predictors = list(predictors)
    if not 1 <= len(predictors) <= 2:
        raise InvalidSpecification(
            f"Causal support needs one or two predictors, got {len(predictors)}.",
            stage="causal_support",
        )
    terms = [parse_term(p) for p in predictors]
    if any(t.is_interaction for t in terms):
        raise InvalidSpecification(
            "Predictors must be single columns; the interaction is "
            "enumerated automatically.",
            stage="causal_support",
        )
    if len(terms) == 2:
        if terms[0].matches(terms[1]):
            raise InvalidSpecification(
                f"Predictors must be distinct, got {predictors}.",
                stage="causal_support",
            )
        return [str(terms[0]), str(terms[1]), f"{terms[0]}:{terms[1]}"]
    return [str(terms[0])]


def enumerate_mean_specs(outcome: str, predictors: Sequence[str]) -> list[str]:
    """All nested mean specs over *predictors* and their interaction.

    Args:
        outcome: Outcome column name.
        predictors: One or two predictor column names.

    Returns:
        2 specs for one predictor, 8 for two, starting with the
        intercept-only model ``"<outcome> ~ 1"``.

    Raises:
        InvalidSpecification: For zero or more than two predictors.

    Examples:
        >>> enumerate_mean_specs("y", ["a"])
        ['y ~ 1', 'y ~ a']
    """
    candidates = _candidate_terms(predictors)
    specs = []
    for included in itertools.product((False, True), repeat=len(candidates)):
        terms = [t for t, keep in zip(candidates, reversed(included)) if keep]
        specs.append(f"{outcome} ~ {' + '.join(terms) or '1'}")
    return specs


def _partition_score(with_term: np.ndarray, without_term: np.ndarray) -> float:
    n_with, n_without = len(with_term), len(without_term)
    return float(
        (logsumexp(with_term) - np.log(n_with))
        - (logsumexp(without_term) - np.log(n_without))
        + np.log(n_with / n_without)
    )


def causal_support(
    data: DataFrameLike,
    outcome: str,
    predictors: Sequence[str],
    target_term: str | Term,
    dispersion_spec: str = "~1",
) -> float:
    """Log posterior odds that *target_term* belongs in the mean model.

    Args:
        data: Dataset holding the outcome and predictor columns.
        outcome: Outcome column name.
        predictors: One or two predictor column names.
        target_term: Term to score, e.g. ``"a"`` or ``"a:b"``.
        dispersion_spec: Dispersion spec shared by every fitted model.

    Returns:
        The model-averaged log-odds score (unbounded real number).

    Raises:
        InvalidSpecification: Bad predictor count, or *target_term* is
            not among the enumerated terms.
        FitFailure: One of the nested models could not be fitted.
        NumericInstability: A non-finite log-likelihood or score.
    """
    frame = as_dataset(data, stage="causal_support")
    specs = enumerate_mean_specs(outcome, predictors)
    target = parse_term(target_term) if isinstance(target_term, str) else target_term
    full = parse_formula(specs[-1])
    if not full.has_term(target):
        raise InvalidSpecification(
            f"Target term {str(target)!r} is not one of "
            f"{[str(t) for t in full.terms]}.",
            stage="causal_support",
            spec=specs[-1],
        )

    with_term: list[float] = []
    without_term: list[float] = []
    for spec in specs:
        mean, dispersion, prepared = prepare_specs(spec, dispersion_spec, frame)
        summary = fit(mean, dispersion, "normal", prepared)
        loglik = summary.log_likelihood
        if not np.isfinite(loglik):
            raise NumericInstability(
                f"Log-likelihood of {spec!r} is not finite ({loglik}).",
                stage="causal_support",
                spec=spec,
                family="normal",
            )
        logger.debug("Causal support: %s  loglik=%.4f", spec, loglik)
        if parse_formula(spec).has_term(target):
            with_term.append(loglik)
        else:
            without_term.append(loglik)

    score = _partition_score(np.asarray(with_term), np.asarray(without_term))
    if not np.isfinite(score):
        raise NumericInstability(
            f"Causal support score for {str(target)!r} is not finite.",
            stage="causal_support",
        )
    return score
