"""Uncertainty propagator — fitted summary → rectangular parameter ensemble.

Each observation's link-scale estimates are turned into ``N``
independent parameter draws that stand in for posterior samples under
a diffuse prior:

* **Location** — ``est + t · se`` with ``t ~ Student-t(df_resid)``.
* **Dispersion, residual-variance path** — Gaussian-type families
  with an intercept-only dispersion spec draw the residual standard
  deviation from its scaled-inverse-χ² sampling distribution::

      x ~ χ²(df),   σ = sqrt(df · s² / x),   s² = RSS / df

* **Dispersion, log-scale path** — otherwise the log-dispersion
  predictor gets its own t draw, which is then exponentiated.

The family's back-transform then maps both to the natural scale.
All randomness comes from one caller-owned ``numpy.random.Generator``
(location draws first, then dispersion), so a fixed seed reproduces
the ensemble exactly and global RNG state is never touched.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from ._config import resolve_draws
from ._results import FittedModelSummary, ParameterEnsemble
from ._typing import RandomState, as_generator

logger = logging.getLogger(__name__)


def _t_draws(
    estimate: np.ndarray,
    se: np.ndarray,
    df: int,
    n_draws: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """``(n, n_draws)`` array of ``estimate + t · se``."""
    t = rng.standard_t(df, size=(estimate.shape[0], n_draws))
    return estimate[:, None] + t * se[:, None]


def _residual_sd_draws(
    scale: float,
    df: int,
    n_obs: int,
    n_draws: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """``(n, n_draws)`` scaled-inverse-χ² draws of the residual SD."""
    x = rng.chisquare(df, size=(n_obs, n_draws))
    return np.sqrt(df * scale**2 / x)


def propagate(
    summary: FittedModelSummary,
    n_draws: int | None = None,
    *,
    random_state: RandomState = None,
) -> ParameterEnsemble:
    """Draw a rectangular ensemble of natural-scale parameters.

    Args:
        summary: Output of :func:`~model_checks.fit`.
        n_draws: Draws per observation.  ``None`` uses the configured
            default (see :func:`~model_checks.get_default_draws`).
        random_state: Seed or ``numpy.random.Generator``.

    Returns:
        A :class:`ParameterEnsemble` with ``summary.nobs × n_draws``
        rows ordered by observation, then draw.

    Raises:
        ValueError: If *n_draws* is not a positive integer.
    """
    n_draws = resolve_draws(n_draws)
    rng = as_generator(random_state)
    family = summary.family
    df = summary.df_resid
    n = summary.nobs

    location = _t_draws(summary.location, summary.location_se, df, n_draws, rng)

    if summary.residual_scale is not None:
        dispersion = _residual_sd_draws(summary.residual_scale, df, n, n_draws, rng)
        path = "residual variance"
    elif summary.dispersion is not None and summary.dispersion_se is not None:
        log_dispersion = _t_draws(
            summary.dispersion, summary.dispersion_se, df, n_draws, rng
        )
        with np.errstate(over="ignore"):
            dispersion = np.exp(log_dispersion)
        path = "log scale"
    else:
        dispersion = None
        path = "none"

    location, dispersion = family.back_transform(location, dispersion)
    logger.debug(
        "Propagated %s fit: %d obs x %d draws, df=%d, dispersion path: %s",
        family.name,
        n,
        n_draws,
        df,
        path,
    )

    draws = pd.DataFrame(
        {
            ".row": np.repeat(np.arange(n), n_draws),
            ".draw": np.tile(np.arange(1, n_draws + 1), n),
            "location": np.asarray(location, dtype=float).ravel(),
            "dispersion": (
                np.full(n * n_draws, np.nan)
                if dispersion is None
                else np.asarray(dispersion, dtype=float).ravel()
            ),
        }
    )
    return ParameterEnsemble(summary=summary, draws=draws, n_draws=n_draws)
