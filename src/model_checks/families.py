"""Distribution families: fitting, back-transform and sampling strategies.

The ``ModelFamily`` protocol defines the interface every distribution
family implements.  It decouples family-specific behaviour (response
validation, maximum-likelihood fitting, link back-transforms, native
random generation) from the pipeline stages in ``fitting.py``,
``propagation.py`` and ``sampling.py``, which dispatch through the
protocol instead of branching on a family tag.

Each concrete family is a frozen ``@dataclass`` that carries no
mutable state.  ``resolve_family`` maps a user-facing string
(``"normal"``, ``"poisson"``, …) to a family instance via the
``_FAMILIES`` registry.

Families and their links
~~~~~~~~~~~~~~~~~~~~~~~~
==========================  ===========  ===========  ========================
Family                      Location     Dispersion   Sampling distribution
==========================  ===========  ===========  ========================
``NormalFamily``            identity     log          N(μ, σ)
``LogNormalFamily``         identity*    log          exp(N(μ, σ))
``LogitNormalFamily``       identity*    log          expit(N(μ, σ))
``LogisticFamily``          logit        —            Bernoulli(p)
``PoissonFamily``           log          —            Poisson(μ)
``NegativeBinomialFamily``  log          log          NBII(μ, σ)
``OrdinalFamily``           identity     —            cumulative probit
==========================  ===========  ===========  ========================

\\* on the log / logit transformed outcome.

The Gaussian-type families and the negative binomial fit a location
and a dispersion sub-model jointly through statsmodels'
``GenericLikelihoodModel``; the single-predictor families use
statsmodels ``GLM`` / ``OrderedModel``.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import special
from sklearn.linear_model import LinearRegression
from statsmodels.base.model import GenericLikelihoodModel
from statsmodels.miscmodels.ordinal_model import OrderedModel
from statsmodels.tools.numdiff import approx_fprime
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning as SmConvergenceWarning,
)
from statsmodels.tools.sm_exceptions import (
    HessianInversionWarning,
    PerfectSeparationWarning,
)

from .design import factor_levels
from .exceptions import (
    FitFailure,
    InvalidSpecification,
    NumericInstability,
    SamplingFailure,
)

logger = logging.getLogger(__name__)

_HALF_LOG_2PI = 0.5 * np.log(2.0 * np.pi)

# ------------------------------------------------------------------ #
# Fit result
# ------------------------------------------------------------------ #


@dataclass(frozen=True, eq=False)
class FamilyFit:
    """Link-scale output of ``ModelFamily.fit``.

    The fitter turns this into a ``FittedModelSummary`` by adding the
    specs, the data and the residual degrees of freedom.
    """

    location: np.ndarray
    location_se: np.ndarray
    log_likelihood: float
    n_params: int
    coefficients: pd.DataFrame
    dispersion: np.ndarray | None = None
    dispersion_se: np.ndarray | None = None
    residuals: np.ndarray | None = None
    extras: dict[str, Any] = field(default_factory=dict)


# ------------------------------------------------------------------ #
# ModelFamily protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class ModelFamily(Protocol):
    """Interface that every distribution family must implement.

    Attributes:
        name: Short identifier used in errors, logs and results
            (e.g. ``"normal"``, ``"poisson"``).
        has_dispersion: Whether the family takes a dispersion
            sub-model.  Families without one reject any dispersion
            spec other than ``~1``.
        location_intercept: Whether the location design carries an
            ``Intercept`` column (ordinal thresholds replace it).
        outputs: Output types the sampler accepts, default first.
    """

    @property
    def name(self) -> str: ...

    @property
    def has_dispersion(self) -> bool: ...

    @property
    def location_intercept(self) -> bool: ...

    @property
    def outputs(self) -> tuple[str, ...]: ...

    def validate_y(self, y: pd.Series) -> np.ndarray:
        """Return *y* as a numeric array, or raise if unsuitable.

        Raises:
            InvalidSpecification: The outcome type does not match the
                family (non-numeric, non-binary, non-count).
            NumericInstability: The outcome would leave the family's
                transformed scale finite range (e.g. ``log(0)``).
        """
        ...

    def fit(
        self,
        y: pd.Series,
        X: pd.DataFrame,
        Z: pd.DataFrame | None,
    ) -> FamilyFit:
        """Maximum-likelihood fit of the location (and dispersion) sub-models.

        Args:
            y: Outcome column.
            X: Location design matrix ``(n, p)``.
            Z: Dispersion design matrix ``(n, q)``, or ``None`` for
                families without a dispersion sub-model.

        Raises:
            FitFailure: Non-convergence or a singular information matrix.
        """
        ...

    def uses_residual_variance(self, Z: pd.DataFrame | None) -> bool:
        """Whether the dispersion is drawn from the residual variance.

        ``True`` selects the scaled-inverse-χ² path in the propagator
        instead of a t draw on the log-dispersion predictor.
        """
        ...

    def back_transform(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
    ) -> tuple[np.ndarray, np.ndarray | None]:
        """Map link-scale draws to the distribution's natural parameters.

        *dispersion* arrives already on the positive scale.
        """
        ...

    def check_parameters(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
    ) -> None:
        """Raise ``SamplingFailure`` if any parameter is outside its domain."""
        ...

    def draw(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
        rng: np.random.Generator,
        *,
        output: str,
        extras: dict[str, Any],
    ) -> np.ndarray:
        """Draw one outcome per parameter row from the native distribution."""
        ...


# ------------------------------------------------------------------ #
# Shared helpers
# ------------------------------------------------------------------ #


def _predictor_se(design: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """Per-row standard error of ``design @ params``: ``sqrt(diag(X V Xᵀ))``."""
    var = np.einsum("ij,jk,ik->i", design, cov, design)
    # Round-off can push a zero variance slightly negative.
    return np.sqrt(np.maximum(var, 0.0))


def _invert_information(hessian: np.ndarray, family: str) -> np.ndarray:
    """Covariance ``(-H)⁻¹`` of the MLE, or ``FitFailure`` if singular."""
    if not np.all(np.isfinite(hessian)):
        raise FitFailure(
            "Hessian of the log-likelihood is not finite at the optimum.",
            stage="fit",
            family=family,
        )
    try:
        cov = np.linalg.inv(-hessian)
    except np.linalg.LinAlgError:
        raise FitFailure(
            "Information matrix is singular; parameters are not identified.",
            stage="fit",
            family=family,
        ) from None
    return _check_covariance(cov, family)


def _check_covariance(cov: np.ndarray, family: str) -> np.ndarray:
    """Return *cov* if its variances are finite and positive."""
    diag = np.diag(cov)
    if not np.all(np.isfinite(diag)) or np.any(diag <= 0):
        raise FitFailure(
            "Information matrix is not positive definite at the optimum.",
            stage="fit",
            family=family,
        )
    return cov


def _coefficient_table(
    blocks: list[tuple[str, list[str]]],
    params: np.ndarray,
    cov: np.ndarray,
) -> pd.DataFrame:
    """Tidy ``(submodel, term, estimate, std_error)`` table."""
    rows = [(sub, term) for sub, terms in blocks for term in terms]
    se = np.sqrt(np.diag(cov))[: len(rows)]
    return pd.DataFrame(
        {
            "submodel": [r[0] for r in rows],
            "term": [r[1] for r in rows],
            "estimate": np.asarray(params, dtype=float)[: len(rows)],
            "std_error": se,
        }
    )


def _numeric_y(y: pd.Series, family: str) -> np.ndarray:
    if not pd.api.types.is_numeric_dtype(y) or pd.api.types.is_bool_dtype(y):
        raise InvalidSpecification(
            f"{family} family requires a numeric outcome, got dtype {y.dtype}.",
            stage="validate",
            family=family,
        )
    values = y.to_numpy(dtype=float)
    if not np.all(np.isfinite(values)):
        raise NumericInstability(
            f"{family} family requires finite outcome values.",
            stage="validate",
            family=family,
        )
    return values


def _require_positive_finite(values: np.ndarray, label: str, family: str) -> None:
    bad = ~np.isfinite(values) | (values <= 0)
    if np.any(bad):
        raise SamplingFailure(
            f"{label} must be finite and > 0 for the {family} family; "
            f"{int(bad.sum())} of {values.size} draw(s) are not "
            f"(e.g. {values[bad][0]!r}).",
            stage="sample",
            family=family,
        )


def _require_finite(values: np.ndarray, label: str, family: str) -> None:
    bad = ~np.isfinite(values)
    if np.any(bad):
        raise SamplingFailure(
            f"{label} must be finite for the {family} family; "
            f"{int(bad.sum())} of {values.size} draw(s) are not.",
            stage="sample",
            family=family,
        )


def _maximize(
    model: GenericLikelihoodModel,
    start_params: np.ndarray,
    methods: tuple[str, ...],
    family: str,
    maxiter: int = 200,
) -> np.ndarray:
    """Maximise *model*'s likelihood, retrying with the next method.

    Each retry starts from where the previous optimizer stopped (when
    that point is finite).  Raises ``FitFailure`` when no method
    converges.
    """
    start = np.asarray(start_params, dtype=float)
    for method in methods:
        with warnings.catch_warnings():
            # Convergence is judged from mle_retvals below.
            warnings.filterwarnings("ignore", category=SmConvergenceWarning)
            warnings.filterwarnings("ignore", category=HessianInversionWarning)
            warnings.filterwarnings("ignore", category=RuntimeWarning)
            try:
                result = model.fit(
                    start_params=start, method=method, maxiter=maxiter, disp=0
                )
            except (np.linalg.LinAlgError, ValueError, OverflowError) as exc:
                logger.debug("%s: %s optimizer raised %s", family, method, exc)
                continue
        params = np.asarray(result.params, dtype=float)
        converged = bool(result.mle_retvals.get("converged", False))
        if converged and np.all(np.isfinite(params)):
            logger.debug(
                "%s: %s converged after %s iteration(s)",
                family,
                method,
                result.mle_retvals.get("iterations", "?"),
            )
            return params
        logger.debug("%s: %s did not converge", family, method)
        if np.all(np.isfinite(params)):
            start = params
    raise FitFailure(
        f"Optimizer did not converge (tried {', '.join(methods)}).",
        stage="fit",
        family=family,
    )


def _fit_glm(
    y: np.ndarray,
    X: np.ndarray,
    glm_family: sm.families.Family,
    family: str,
) -> Any:
    """Fit a statsmodels GLM, converting failure warnings to ``FitFailure``."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            result = sm.GLM(y, X, family=glm_family).fit()
        except (np.linalg.LinAlgError, ValueError) as exc:
            raise FitFailure(
                f"GLM fit failed: {exc}", stage="fit", family=family
            ) from exc
    for w in caught:
        if issubclass(w.category, PerfectSeparationWarning):
            raise FitFailure(
                "Perfect separation detected; the location sub-model is not "
                "identified.",
                stage="fit",
                family=family,
            )
        if issubclass(w.category, RuntimeWarning):
            logger.debug("%s: GLM fit warning: %s", family, w.message)
    if not result.converged:
        raise FitFailure(
            "IRLS did not converge.", stage="fit", family=family
        )
    return result


# ------------------------------------------------------------------ #
# Location-scale likelihoods
# ------------------------------------------------------------------ #
#
# Two linear predictors share one parameter vector:
#
#   params = [β (location, p values), γ (log-dispersion, q values)]
#   η_μ = X β,    η_σ = Z γ
#
# statsmodels sees the column-stacked [X | Z] as exog so that its
# bookkeeping (nobs, parameter count) matches the joint model.


class _LocationScaleModel(GenericLikelihoodModel):
    """Base for likelihoods with a location and a log-dispersion predictor."""

    def __init__(
        self,
        endog: np.ndarray,
        exog_location: np.ndarray,
        exog_dispersion: np.ndarray,
        **kwds: Any,
    ) -> None:
        self.exog_location = np.asarray(exog_location, dtype=float)
        self.exog_dispersion = np.asarray(exog_dispersion, dtype=float)
        self.k_location = self.exog_location.shape[1]
        exog = np.column_stack([self.exog_location, self.exog_dispersion])
        super().__init__(endog, exog, **kwds)

    def linear_predictors(self, params: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        params = np.asarray(params, dtype=float)
        beta = params[: self.k_location]
        gamma = params[self.k_location :]
        return self.exog_location @ beta, self.exog_dispersion @ gamma

    def score(self, params: np.ndarray) -> np.ndarray:
        return self.score_obs(params).sum(axis=0)

    def _stack_obs(
        self, d_location: np.ndarray, d_dispersion: np.ndarray
    ) -> np.ndarray:
        return np.column_stack(
            [
                self.exog_location * d_location[:, None],
                self.exog_dispersion * d_dispersion[:, None],
            ]
        )


class _GaussianLocationScale(_LocationScaleModel):
    """Heteroscedastic normal: ``y ~ N(Xβ, exp(Zγ))``.

    Score and Hessian are analytic, so Newton's method converges in a
    handful of iterations from the least-squares start.
    """

    def loglikeobs(self, params: np.ndarray) -> np.ndarray:
        mu, log_sigma = self.linear_predictors(params)
        z = (self.endog - mu) * np.exp(-log_sigma)
        return -log_sigma - _HALF_LOG_2PI - 0.5 * z**2

    def score_obs(self, params: np.ndarray) -> np.ndarray:
        mu, log_sigma = self.linear_predictors(params)
        inv_var = np.exp(-2.0 * log_sigma)
        resid = self.endog - mu
        return self._stack_obs(resid * inv_var, resid**2 * inv_var - 1.0)

    def hessian(self, params: np.ndarray) -> np.ndarray:
        mu, log_sigma = self.linear_predictors(params)
        inv_var = np.exp(-2.0 * log_sigma)
        resid = self.endog - mu
        X, Z = self.exog_location, self.exog_dispersion
        h_mm = -(X * inv_var[:, None]).T @ X
        h_ms = -(X * (2.0 * resid * inv_var)[:, None]).T @ Z
        h_ss = -(Z * (2.0 * resid**2 * inv_var)[:, None]).T @ Z
        return np.block([[h_mm, h_ms], [h_ms.T, h_ss]])


class _NBIILocationScale(_LocationScaleModel):
    """Negative binomial type II (Poisson–Gamma mixture).

    With ``μ = exp(Xβ)``, ``σ = exp(Zγ)`` and size ``n = μ/σ``:
    ``E[Y] = μ`` and ``Var[Y] = μ(1 + σ)``.
    """

    def loglikeobs(self, params: np.ndarray) -> np.ndarray:
        log_mu, log_sigma = self.linear_predictors(params)
        y = self.endog
        size = np.exp(log_mu - log_sigma)
        return (
            special.gammaln(y + size)
            - special.gammaln(size)
            - special.gammaln(y + 1.0)
            + y * log_sigma
            - (y + size) * np.log1p(np.exp(log_sigma))
        )

    def score_obs(self, params: np.ndarray) -> np.ndarray:
        log_mu, log_sigma = self.linear_predictors(params)
        y = self.endog
        sigma = np.exp(log_sigma)
        size = np.exp(log_mu - log_sigma)
        d_size = special.digamma(y + size) - special.digamma(size) - np.log1p(sigma)
        d_log_mu = size * d_size
        d_log_sigma = -size * d_size + y - (y + size) * sigma / (1.0 + sigma)
        return self._stack_obs(d_log_mu, d_log_sigma)

    def hessian(self, params: np.ndarray) -> np.ndarray:
        hess = approx_fprime(np.asarray(params, dtype=float), self.score, centered=True)
        return 0.5 * (hess + hess.T)


_NBII_SIGMA_FLOOR = 1e-4
_NBII_SIGMA_SMALL = 0.05


def _moment_sigma(y: np.ndarray, mu: np.ndarray) -> float:
    """Moment estimate of NBII σ at the Poisson fit: ``mean(((y − μ)² − y)/μ)``.

    Zero or negative values mean the counts are no more variable than
    Poisson and the likelihood keeps rising as σ shrinks.
    """
    return float(np.mean(((y - mu) ** 2 - y) / mu))



def _boundary_params(
    poisson: Any, k_dispersion: int
) -> tuple[np.ndarray, np.ndarray]:
    """Parameters and covariance with log σ fixed at the floor."""
    beta = np.asarray(poisson.params, dtype=float)
    gamma = np.zeros(k_dispersion)
    gamma[0] = np.log(_NBII_SIGMA_FLOOR)
    k = beta.size
    cov = np.zeros((k + k_dispersion, k + k_dispersion))
    cov[:k, :k] = np.asarray(poisson.cov_params(), dtype=float)
    return np.concatenate([beta, gamma]), cov


def _split_coefficients(
    X: pd.DataFrame,
    Z: pd.DataFrame,
    params: np.ndarray,
    cov: np.ndarray,
    names: tuple[str, str],
) -> pd.DataFrame:
    return _coefficient_table(
        [(names[0], list(X.columns)), (names[1], list(Z.columns))], params, cov
    )


# ------------------------------------------------------------------ #
# Gaussian-type families
# ------------------------------------------------------------------ #
#
# normal, log-normal and logit-normal differ only in the transform
# applied to the outcome before fitting (identity / log / logit) and
# in the inverse applied after the Gaussian draw.  The log-likelihood
# reported on the summary includes the transform's Jacobian so that
# it is a density of the outcome as observed.


@dataclass(frozen=True)
class NormalFamily:
    """Gaussian location-scale family.

    Location on the identity link, dispersion (σ) on the log link,
    fitted jointly by Newton's method on the exact likelihood from a
    least-squares start, with one BFGS retry.

    With an intercept-only dispersion spec (``~1``) the propagator
    draws σ from the scaled-inverse-χ² sampling distribution of the
    residual standard deviation rather than from the log-σ predictor.
    """

    @property
    def name(self) -> str:
        return "normal"

    @property
    def has_dispersion(self) -> bool:
        return True

    @property
    def location_intercept(self) -> bool:
        return True

    @property
    def outputs(self) -> tuple[str, ...]:
        return ("continuous",)

    # ---- Outcome transform -----------------------------------------

    def _transform(self, y: np.ndarray) -> np.ndarray:
        return y

    def _log_jacobian(self, y: np.ndarray) -> float:
        return 0.0

    def _inverse(self, z: np.ndarray) -> np.ndarray:
        return z

    # ---- Validation ------------------------------------------------

    def validate_y(self, y: pd.Series) -> np.ndarray:
        values = _numeric_y(y, self.name)
        if np.ptp(values) == 0:
            raise FitFailure(
                f"{self.name} family requires a non-constant outcome.",
                stage="validate",
                family=self.name,
            )
        return values

    # ---- Fitting ---------------------------------------------------

    def fit(
        self,
        y: pd.Series,
        X: pd.DataFrame,
        Z: pd.DataFrame | None,
    ) -> FamilyFit:
        values = self.validate_y(y)
        z = self._transform(values)
        if Z is None:
            Z = pd.DataFrame({"Intercept": np.ones(len(z))}, index=X.index)
        X_arr = X.to_numpy(dtype=float)
        Z_arr = Z.to_numpy(dtype=float)

        # Least-squares start for β, log residual SD for the γ intercept.
        ols = LinearRegression(fit_intercept=False).fit(X_arr, z)
        beta0 = np.ravel(ols.coef_)
        resid_sd = float(np.std(z - X_arr @ beta0))
        if resid_sd <= 0 or not np.isfinite(resid_sd):
            raise FitFailure(
                "Residual variance is zero; the location sub-model fits the "
                "outcome exactly and the scale is not identified.",
                stage="fit",
                family=self.name,
            )
        gamma0 = np.zeros(Z_arr.shape[1])
        gamma0[0] = np.log(resid_sd)

        model = _GaussianLocationScale(z, X_arr, Z_arr)
        params = _maximize(
            model, np.concatenate([beta0, gamma0]), ("newton", "bfgs"), self.name
        )
        cov = _invert_information(model.hessian(params), self.name)
        k = X_arr.shape[1]
        mu, log_sigma = model.linear_predictors(params)
        return FamilyFit(
            location=mu,
            location_se=_predictor_se(X_arr, cov[:k, :k]),
            dispersion=log_sigma,
            dispersion_se=_predictor_se(Z_arr, cov[k:, k:]),
            residuals=z - mu,
            log_likelihood=float(model.loglike(params)) + self._log_jacobian(values),
            n_params=len(params),
            coefficients=_split_coefficients(X, Z, params, cov, ("mu", "sigma")),
        )

    def uses_residual_variance(self, Z: pd.DataFrame | None) -> bool:
        return Z is None or Z.shape[1] <= 1

    # ---- Propagation & sampling ------------------------------------

    def back_transform(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
    ) -> tuple[np.ndarray, np.ndarray | None]:
        return location, dispersion

    def check_parameters(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
    ) -> None:
        _require_finite(location, "location", self.name)
        if dispersion is None:
            raise SamplingFailure(
                f"{self.name} family requires a dispersion parameter.",
                stage="sample",
                family=self.name,
            )
        _require_positive_finite(dispersion, "scale", self.name)

    def draw(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
        rng: np.random.Generator,
        *,
        output: str,
        extras: dict[str, Any],
    ) -> np.ndarray:
        return self._inverse(rng.normal(location, dispersion))


@dataclass(frozen=True)
class LogNormalFamily(NormalFamily):
    """Log-normal: Gaussian location-scale model for ``log(y)``.

    Ensemble parameters are the log-scale mean and SD (``meanlog``,
    ``sdlog``); draws are exponentiated Gaussian draws.
    """

    @property
    def name(self) -> str:
        return "lognormal"

    def validate_y(self, y: pd.Series) -> np.ndarray:
        values = _numeric_y(y, self.name)
        if np.any(values <= 0):
            raise NumericInstability(
                f"{self.name} family requires a strictly positive outcome; "
                f"{int(np.sum(values <= 0))} value(s) would reach log() at or "
                f"below zero.",
                stage="validate",
                family=self.name,
            )
        if np.ptp(values) == 0:
            raise FitFailure(
                f"{self.name} family requires a non-constant outcome.",
                stage="validate",
                family=self.name,
            )
        return values

    def _transform(self, y: np.ndarray) -> np.ndarray:
        return np.log(y)

    def _log_jacobian(self, y: np.ndarray) -> float:
        return float(-np.sum(np.log(y)))

    def _inverse(self, z: np.ndarray) -> np.ndarray:
        return np.exp(z)


@dataclass(frozen=True)
class LogitNormalFamily(NormalFamily):
    """Logit-normal: Gaussian location-scale model for ``logit(y)``.

    For outcomes that are proportions in the open interval (0, 1).
    Draws are Gaussian on the logit scale passed through the logistic
    function and either kept as proportions (``output="proportion"``,
    default) or realised as a Bernoulli outcome (``output="binary"``).
    """

    @property
    def name(self) -> str:
        return "logitnormal"

    @property
    def outputs(self) -> tuple[str, ...]:
        return ("proportion", "binary")

    def validate_y(self, y: pd.Series) -> np.ndarray:
        values = _numeric_y(y, self.name)
        outside = (values <= 0) | (values >= 1)
        if np.any(outside):
            raise NumericInstability(
                f"{self.name} family requires outcome values strictly between "
                f"0 and 1; {int(outside.sum())} value(s) would reach logit() "
                f"outside its finite range.",
                stage="validate",
                family=self.name,
            )
        if np.ptp(values) == 0:
            raise FitFailure(
                f"{self.name} family requires a non-constant outcome.",
                stage="validate",
                family=self.name,
            )
        return values

    def _transform(self, y: np.ndarray) -> np.ndarray:
        return special.logit(y)

    def _log_jacobian(self, y: np.ndarray) -> float:
        return float(-np.sum(np.log(y) + np.log1p(-y)))

    def _inverse(self, z: np.ndarray) -> np.ndarray:
        return special.expit(z)

    def draw(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
        rng: np.random.Generator,
        *,
        output: str,
        extras: dict[str, Any],
    ) -> np.ndarray:
        p = special.expit(rng.normal(location, dispersion))
        if output == "binary":
            return rng.binomial(1, p)
        return p


# ------------------------------------------------------------------ #
# Single-predictor GLM families
# ------------------------------------------------------------------ #


def _binary_encoding(y: pd.Series, family: str) -> tuple[np.ndarray, list | None]:
    """0/1 encoding of a two-valued outcome plus its labels (if not 0/1)."""
    if pd.api.types.is_bool_dtype(y):
        return y.to_numpy(dtype=float), None
    if pd.api.types.is_numeric_dtype(y) and set(np.unique(y)) <= {0, 1}:
        return y.to_numpy(dtype=float), None
    levels = factor_levels(y)
    if len(levels) != 2:
        raise InvalidSpecification(
            f"{family} family requires a binary outcome (0/1, bool or two "
            f"levels), got {len(levels)} distinct value(s).",
            stage="validate",
            family=family,
        )
    return (y == levels[1]).to_numpy(dtype=float), levels


def _binary_extras(y: pd.Series, levels: list | None) -> dict[str, Any]:
    """How draws map back to the outcome's own values."""
    if levels is not None:
        return {"levels": levels}
    if pd.api.types.is_bool_dtype(y):
        return {"boolean": True}
    return {}


@dataclass(frozen=True)
class LogisticFamily:
    """Binary outcomes: binomial likelihood on the log-odds scale.

    Accepts 0/1, boolean, or any two-level outcome (the second level
    in sorted / declared order is coded 1 and draws are mapped back to
    the labels).  Has no dispersion sub-model.
    """

    @property
    def name(self) -> str:
        return "logistic"

    @property
    def has_dispersion(self) -> bool:
        return False

    @property
    def location_intercept(self) -> bool:
        return True

    @property
    def outputs(self) -> tuple[str, ...]:
        return ("binary",)

    def validate_y(self, y: pd.Series) -> np.ndarray:
        return _binary_encoding(y, self.name)[0]

    def fit(
        self,
        y: pd.Series,
        X: pd.DataFrame,
        Z: pd.DataFrame | None,
    ) -> FamilyFit:
        values, levels = _binary_encoding(y, self.name)
        if np.ptp(values) == 0:
            raise FitFailure(
                "logistic family requires both outcome classes to be observed.",
                stage="validate",
                family=self.name,
            )
        X_arr = X.to_numpy(dtype=float)
        result = _fit_glm(values, X_arr, sm.families.Binomial(), self.name)
        cov = _check_covariance(np.asarray(result.cov_params()), self.name)
        eta = X_arr @ np.asarray(result.params)
        return FamilyFit(
            location=eta,
            location_se=_predictor_se(X_arr, cov),
            log_likelihood=float(result.llf),
            n_params=X_arr.shape[1],
            coefficients=_coefficient_table(
                [("mu", list(X.columns))], np.asarray(result.params), cov
            ),
            extras=_binary_extras(y, levels),
        )

    def uses_residual_variance(self, Z: pd.DataFrame | None) -> bool:
        return False

    def back_transform(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
    ) -> tuple[np.ndarray, np.ndarray | None]:
        return special.expit(location), None

    def check_parameters(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
    ) -> None:
        bad = ~np.isfinite(location) | (location < 0) | (location > 1)
        if np.any(bad):
            raise SamplingFailure(
                f"probability must lie in [0, 1]; {int(bad.sum())} draw(s) do not.",
                stage="sample",
                family=self.name,
            )

    def draw(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
        rng: np.random.Generator,
        *,
        output: str,
        extras: dict[str, Any],
    ) -> np.ndarray:
        outcomes = rng.binomial(1, location)
        levels = extras.get("levels")
        if levels is not None:
            return np.asarray(levels, dtype=object)[outcomes]
        if extras.get("boolean"):
            return outcomes.astype(bool)
        return outcomes


def _count_y(y: pd.Series, family: str) -> np.ndarray:
    values = _numeric_y(y, family)
    if np.any(values < 0):
        raise InvalidSpecification(
            f"{family} family requires non-negative counts.",
            stage="validate",
            family=family,
        )
    if not np.allclose(values, np.round(values)):
        raise InvalidSpecification(
            f"{family} family requires integer-valued counts.",
            stage="validate",
            family=family,
        )
    return values


@dataclass(frozen=True)
class PoissonFamily:
    """Count outcomes: Poisson likelihood with a log link, no dispersion."""

    @property
    def name(self) -> str:
        return "poisson"

    @property
    def has_dispersion(self) -> bool:
        return False

    @property
    def location_intercept(self) -> bool:
        return True

    @property
    def outputs(self) -> tuple[str, ...]:
        return ("count",)

    def validate_y(self, y: pd.Series) -> np.ndarray:
        return _count_y(y, self.name)

    def fit(
        self,
        y: pd.Series,
        X: pd.DataFrame,
        Z: pd.DataFrame | None,
    ) -> FamilyFit:
        values = self.validate_y(y)
        X_arr = X.to_numpy(dtype=float)
        result = _fit_glm(values, X_arr, sm.families.Poisson(), self.name)
        cov = _check_covariance(np.asarray(result.cov_params()), self.name)
        eta = X_arr @ np.asarray(result.params)
        return FamilyFit(
            location=eta,
            location_se=_predictor_se(X_arr, cov),
            log_likelihood=float(result.llf),
            n_params=X_arr.shape[1],
            coefficients=_coefficient_table(
                [("mu", list(X.columns))], np.asarray(result.params), cov
            ),
        )

    def uses_residual_variance(self, Z: pd.DataFrame | None) -> bool:
        return False

    def back_transform(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
    ) -> tuple[np.ndarray, np.ndarray | None]:
        with np.errstate(over="ignore"):
            return np.exp(location), None

    def check_parameters(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
    ) -> None:
        _require_positive_finite(location, "rate", self.name)

    def draw(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
        rng: np.random.Generator,
        *,
        output: str,
        extras: dict[str, Any],
    ) -> np.ndarray:
        return rng.poisson(location)


@dataclass(frozen=True)
class NegativeBinomialFamily:
    """Overdispersed counts: NBII Poisson–Gamma mixture.

    Location ``μ`` and dispersion ``σ`` each have a log-linked
    sub-model; ``Var[Y] = μ(1 + σ)``.  Fitted with BFGS on the analytic
    score, then polished with Newton.

    Counts that are not overdispersed have their likelihood maximum at
    σ → 0.  σ is then held at ``1e-4`` (with zero standard error) and
    β is the Poisson estimate.

    Parameters
    ----------
    mixture : bool
        When ``True`` the sampler draws ``λ ~ Gamma(μ/σ, scale=σ)``
        then ``Y ~ Poisson(λ)`` instead of drawing the negative
        binomial directly.  The two have the same distribution; the
        mixture form exposes the Poisson–Gamma reading of the model.
    """

    mixture: bool = False

    @property
    def name(self) -> str:
        return "negative_binomial"

    @property
    def has_dispersion(self) -> bool:
        return True

    @property
    def location_intercept(self) -> bool:
        return True

    @property
    def outputs(self) -> tuple[str, ...]:
        return ("count",)

    def validate_y(self, y: pd.Series) -> np.ndarray:
        return _count_y(y, self.name)

    def fit(
        self,
        y: pd.Series,
        X: pd.DataFrame,
        Z: pd.DataFrame | None,
    ) -> FamilyFit:
        values = self.validate_y(y)
        if Z is None:
            Z = pd.DataFrame({"Intercept": np.ones(len(values))}, index=X.index)
        X_arr = X.to_numpy(dtype=float)
        Z_arr = Z.to_numpy(dtype=float)

        # Poisson start for β; moment estimate of σ from Var = μ(1 + σ).
        poisson = _fit_glm(values, X_arr, sm.families.Poisson(), self.name)
        mu0 = np.asarray(poisson.fittedvalues)
        sigma_moment = _moment_sigma(values, mu0)
        sigma0 = max(sigma_moment, _NBII_SIGMA_SMALL)
        gamma0 = np.zeros(Z_arr.shape[1])
        gamma0[0] = np.log(sigma0)

        model = _NBIILocationScale(values, X_arr, Z_arr)
        try:
            params = _maximize(
                model,
                np.concatenate([np.asarray(poisson.params), gamma0]),
                ("bfgs", "newton"),
                self.name,
                maxiter=500,
            )
            cov = _invert_information(model.hessian(params), self.name)
            at_boundary = bool(
                np.all(model.linear_predictors(params)[1] < np.log(_NBII_SIGMA_FLOOR))
            )
        except FitFailure:
            if sigma_moment > _NBII_SIGMA_SMALL:
                raise
            at_boundary = True
        if at_boundary:
            # σ → 0 is the optimum, or close to it: the counts are about
            # as variable as Poisson.  Hold σ at the floor and take β
            # from the Poisson fit.
            logger.debug(
                "%s: no overdispersion; holding sigma at %g",
                self.name,
                _NBII_SIGMA_FLOOR,
            )
            params, cov = _boundary_params(poisson, Z_arr.shape[1])
        k = X_arr.shape[1]
        log_mu, log_sigma = model.linear_predictors(params)
        return FamilyFit(
            location=log_mu,
            location_se=_predictor_se(X_arr, cov[:k, :k]),
            dispersion=log_sigma,
            dispersion_se=_predictor_se(Z_arr, cov[k:, k:]),
            log_likelihood=float(model.loglike(params)),
            n_params=len(params),
            coefficients=_split_coefficients(X, Z, params, cov, ("mu", "sigma")),
        )

    def uses_residual_variance(self, Z: pd.DataFrame | None) -> bool:
        return False

    def back_transform(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
    ) -> tuple[np.ndarray, np.ndarray | None]:
        with np.errstate(over="ignore"):
            return np.exp(location), dispersion

    def check_parameters(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
    ) -> None:
        _require_positive_finite(location, "mean", self.name)
        if dispersion is None:
            raise SamplingFailure(
                f"{self.name} family requires a dispersion parameter.",
                stage="sample",
                family=self.name,
            )
        _require_positive_finite(dispersion, "dispersion", self.name)

    def draw(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
        rng: np.random.Generator,
        *,
        output: str,
        extras: dict[str, Any],
    ) -> np.ndarray:
        assert dispersion is not None
        size = location / dispersion
        if self.mixture:
            return rng.poisson(rng.gamma(shape=size, scale=dispersion))
        return rng.negative_binomial(size, 1.0 / (1.0 + dispersion))


@dataclass(frozen=True)
class OrdinalFamily:
    """Ordered categorical outcomes: cumulative probit model.

    The location predictor ``Xβ`` carries no intercept (the K − 1
    thresholds take its place).  Draws add standard-normal noise to
    the location and cut the latent value at the fitted thresholds.
    Outcome levels are the declared categories of an ordered
    ``category`` column, or the sorted distinct values otherwise.
    """

    @property
    def name(self) -> str:
        return "ordinal"

    @property
    def has_dispersion(self) -> bool:
        return False

    @property
    def location_intercept(self) -> bool:
        return False

    @property
    def outputs(self) -> tuple[str, ...]:
        return ("category",)

    def validate_y(self, y: pd.Series) -> np.ndarray:
        levels = factor_levels(y)
        if len(levels) < 2:
            raise InvalidSpecification(
                "ordinal family requires at least two outcome levels.",
                stage="validate",
                family=self.name,
            )
        codes = pd.Categorical(y, categories=levels, ordered=True).codes
        if len(set(codes)) < len(levels):
            raise FitFailure(
                "ordinal family requires every outcome level to be observed.",
                stage="validate",
                family=self.name,
            )
        return codes.astype(float)

    def fit(
        self,
        y: pd.Series,
        X: pd.DataFrame,
        Z: pd.DataFrame | None,
    ) -> FamilyFit:
        codes = self.validate_y(y)
        levels = factor_levels(y)
        if X.shape[1] == 0:
            raise InvalidSpecification(
                "ordinal family requires at least one predictor term.",
                stage="fit",
                family=self.name,
            )
        X_arr = X.to_numpy(dtype=float)
        model = OrderedModel(codes.astype(int), X_arr, distr="probit")
        params = _maximize(
            model,
            model.start_params,
            ("bfgs", "newton"),
            self.name,
            maxiter=500,
        )
        cov = _invert_information(model.hessian(params), self.name)
        k = X_arr.shape[1]
        thresholds = np.asarray(model.transform_threshold_params(params), dtype=float)
        return FamilyFit(
            location=X_arr @ params[:k],
            location_se=_predictor_se(X_arr, cov[:k, :k]),
            log_likelihood=float(model.loglike(params)),
            n_params=len(params),
            coefficients=_coefficient_table(
                [
                    ("mu", list(X.columns)),
                    ("threshold", [f"{a}|{b}" for a, b in zip(levels, levels[1:])]),
                ],
                params,
                cov,
            ),
            extras={"levels": levels, "thresholds": thresholds[1:-1]},
        )

    def uses_residual_variance(self, Z: pd.DataFrame | None) -> bool:
        return False

    def back_transform(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
    ) -> tuple[np.ndarray, np.ndarray | None]:
        return location, None

    def check_parameters(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
    ) -> None:
        _require_finite(location, "location", self.name)

    def draw(
        self,
        location: np.ndarray,
        dispersion: np.ndarray | None,
        rng: np.random.Generator,
        *,
        output: str,
        extras: dict[str, Any],
    ) -> np.ndarray:
        latent = location + rng.standard_normal(location.shape)
        idx = np.searchsorted(extras["thresholds"], latent)
        return np.asarray(extras["levels"], dtype=object)[idx]


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #

_FAMILIES: dict[str, type] = {}
"""Registry mapping family name strings to concrete ModelFamily classes."""

_ALIASES = {
    "gaussian": "normal",
    "log_normal": "lognormal",
    "logit_normal": "logitnormal",
    "binary": "logistic",
    "negbinomial": "negative_binomial",
    "negative_binomial": "negative_binomial",
}


def _normalise(name: str) -> str:
    key = name.strip().lower().replace("-", "_").replace(" ", "_")
    return _ALIASES.get(key, key)


def register_family(name: str, cls: type) -> None:
    """Register a concrete ``ModelFamily`` class under *name*.

    Args:
        name: Lookup key (e.g. ``"normal"``, ``"poisson"``).
        cls: A class implementing the ``ModelFamily`` protocol,
            constructible without arguments.

    Raises:
        TypeError: If *cls* does not satisfy the ``ModelFamily``
            protocol.
    """
    try:
        instance = cls()
    except Exception:  # noqa: BLE001
        msg = f"{cls!r} could not be instantiated for protocol check."
        raise TypeError(msg) from None
    if not isinstance(instance, ModelFamily):
        msg = f"{cls!r} does not implement the ModelFamily protocol."
        raise TypeError(msg)
    _FAMILIES[_normalise(name)] = cls


def resolve_family(family: str | ModelFamily) -> ModelFamily:
    """Resolve a family string or instance to a concrete ``ModelFamily``.

    Instances pass through unchanged, so callers can supply
    pre-configured families such as ``NegativeBinomialFamily(mixture=True)``.
    Strings are matched case-insensitively; ``-`` and ``_`` are
    interchangeable and a few aliases are accepted (``"gaussian"``,
    ``"log-normal"``, ``"logit-normal"``, ``"negbinomial"``).

    Raises:
        InvalidSpecification: If *family* names no registered family.
    """
    if isinstance(family, ModelFamily):
        return family
    if not isinstance(family, str):
        raise InvalidSpecification(
            f"family must be a string or ModelFamily, got {type(family).__name__}.",
            stage="resolve",
        )
    key = _normalise(family)
    if key not in _FAMILIES:
        available = ", ".join(sorted(_FAMILIES)) or "(none registered)"
        raise InvalidSpecification(
            f"Unknown family {family!r}.  Available families: {available}.",
            stage="resolve",
        )
    instance: ModelFamily = _FAMILIES[key]()
    return instance


# ------------------------------------------------------------------ #
# Register built-in families
# ------------------------------------------------------------------ #

register_family("normal", NormalFamily)
register_family("lognormal", LogNormalFamily)
register_family("logitnormal", LogitNormalFamily)
register_family("logistic", LogisticFamily)
register_family("poisson", PoissonFamily)
register_family("negative_binomial", NegativeBinomialFamily)
register_family("ordinal", OrdinalFamily)
