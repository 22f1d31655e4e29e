"""Model fitter — spec strings + dataset → :class:`FittedModelSummary`.

Steps, in order:

1. **Family resolution** — ``"normal"`` / ``"poisson"`` / … or a
   pre-configured ``ModelFamily`` instance.
2. **Parsing** — both specs into :class:`~model_checks.formula.Formula`
   ASTs.  The mean spec must name an outcome, the dispersion spec must
   not; families without a dispersion sub-model accept only ``~1``.
3. **Design** — location and dispersion design matrices, each checked
   for full column rank so that collinear predictors and empty factor
   levels fail here with a clear message rather than inside the
   optimizer.
4. **Maximum likelihood** — delegated to ``family.fit``.
5. **Summary** — per-observation link-scale estimates and standard
   errors, residual degrees of freedom (observations minus estimated
   parameters) and, for Gaussian-type families with an intercept-only
   dispersion spec, the residual standard deviation
   ``s = sqrt(RSS / df)`` used by the scaled-inverse-χ² draw.

Any :class:`~model_checks.exceptions.ModelCheckError` raised along the
way is re-raised with the spec and family filled in.  The point
estimates are deterministic: nothing here draws random numbers.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, as_dataset
from ._results import FittedModelSummary
from .design import build_design, check_full_rank, response_values
from .exceptions import FitFailure, InvalidSpecification, ModelCheckError
from .families import ModelFamily, resolve_family
from .formula import parse_formula

logger = logging.getLogger(__name__)


def fit(
    mean_spec: str,
    dispersion_spec: str = "~1",
    family: str | ModelFamily = "normal",
    data: DataFrameLike | None = None,
) -> FittedModelSummary:
    """Fit a mean (and dispersion) sub-model by maximum likelihood.

    Args:
        mean_spec: Mean specification, e.g. ``"y ~ x + g"``.
        dispersion_spec: Dispersion specification, e.g. ``"~1"`` or
            ``"~ g"``.
        family: Family name or ``ModelFamily`` instance.
        data: Dataset holding every referenced column.  Specs using
            ``log(x)`` should be run through
            :func:`~model_checks.formula.prepare` first; otherwise a
            zero in ``x`` raises ``NumericInstability``.

    Returns:
        A :class:`FittedModelSummary`.

    Raises:
        InvalidSpecification: Malformed spec, unknown column, or a spec
            the family cannot fit.
        FitFailure: Rank-deficient design, non-convergence, singular
            information matrix, or no residual degrees of freedom.
        NumericInstability: Non-finite values reached a log transform.
    """
    if data is None:
        raise TypeError("fit() requires a dataset.")
    resolved = resolve_family(family)
    try:
        frame = as_dataset(data, stage="fit")
        return _fit(mean_spec, dispersion_spec, resolved, frame)
    except ModelCheckError as exc:
        if exc.spec is None:
            exc.spec = mean_spec
        if exc.family is None:
            exc.family = resolved.name
        logger.debug("Fit failed: %s", exc)
        raise


def _fit(
    mean_spec: str,
    dispersion_spec: str,
    family: ModelFamily,
    data: pd.DataFrame,
) -> FittedModelSummary:
    mean = parse_formula(mean_spec)
    dispersion = parse_formula(dispersion_spec)
    if mean.outcome is None:
        raise InvalidSpecification(
            "Mean specification must name an outcome, e.g. 'y ~ x'.",
            stage="parse",
            spec=mean_spec,
        )
    if dispersion.outcome is not None:
        raise InvalidSpecification(
            "Dispersion specification must not name an outcome, e.g. '~ x'.",
            stage="parse",
            spec=dispersion_spec,
        )
    if not family.has_dispersion and not dispersion.is_intercept_only:
        raise InvalidSpecification(
            f"The {family.name} family has no dispersion sub-model; "
            f"dispersion specification must be '~1'.",
            stage="parse",
            spec=dispersion_spec,
        )

    y = response_values(mean, data)
    X = build_design(mean, data, intercept=family.location_intercept)
    check_full_rank(X, spec=mean_spec, family=family.name)
    Z = None
    if family.has_dispersion:
        Z = build_design(dispersion, data)
        check_full_rank(Z, spec=dispersion_spec, family=family.name)

    n_params_min = X.shape[1] + (Z.shape[1] if Z is not None else 0)
    if len(y) <= n_params_min:
        raise FitFailure(
            f"{len(y)} observation(s) cannot identify {n_params_min} "
            f"parameters with residual degrees of freedom left over.",
            stage="fit",
        )

    logger.debug(
        "Fitting %s model %r / %r on %d rows (%d + %d columns)",
        family.name,
        mean_spec,
        dispersion_spec,
        len(y),
        X.shape[1],
        0 if Z is None else Z.shape[1],
    )
    result = family.fit(y, X, Z)

    df_resid = len(y) - result.n_params
    if df_resid < 1:
        raise FitFailure(
            f"No residual degrees of freedom ({len(y)} observations, "
            f"{result.n_params} parameters).",
            stage="fit",
        )

    residual_scale = None
    if family.uses_residual_variance(Z) and result.residuals is not None:
        residual_scale = float(np.sqrt(np.sum(result.residuals**2) / df_resid))

    return FittedModelSummary(
        family=family,
        mean_spec=mean_spec,
        dispersion_spec=dispersion_spec,
        outcome=mean.outcome.column,
        data=data,
        response=y.to_numpy(),
        location=np.asarray(result.location, dtype=float),
        location_se=np.asarray(result.location_se, dtype=float),
        df_resid=int(df_resid),
        log_likelihood=float(result.log_likelihood),
        coefficients=result.coefficients,
        dispersion=result.dispersion,
        dispersion_se=result.dispersion_se,
        residual_scale=residual_scale,
        extras=dict(result.extras),
    )
