"""Predictive sampler — parameter ensemble → long table of outcome draws.

The returned frame stacks the fitted dataset ``N + 1`` times:

* one **observed** block (``.source == "observed"``, ``.draw == 0``)
  holding the real outcome values, and
* ``N`` **model** blocks (``.source == "model"``, ``.draw`` in
  ``1..N``) in which the outcome column holds one simulated value per
  observation, drawn from the family's native distribution at that
  draw's ``location`` / ``dispersion``.

Every other data column is repeated unchanged, so a plotting layer can
facet or colour by any predictor and group by ``.draw``.  ``.row``
is the observation's position in the fitted data.

Parameters outside the family's domain raise
:class:`~model_checks.exceptions.SamplingFailure`; they are never
clamped.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from ._results import ParameterEnsemble
from ._typing import RandomState, as_generator
from .exceptions import InvalidSpecification, ModelCheckError
from .families import ModelFamily, resolve_family

logger = logging.getLogger(__name__)

OBSERVED = "observed"
MODEL = "model"


def _resolve_sampling_family(
    ensemble: ParameterEnsemble,
    family: str | ModelFamily | None,
) -> ModelFamily:
    if family is None:
        return ensemble.family
    resolved = resolve_family(family)
    if resolved.name != ensemble.family.name:
        raise InvalidSpecification(
            f"Ensemble was fitted with the {ensemble.family.name} family; "
            f"cannot sample it as {resolved.name}.",
            stage="sample",
            spec=ensemble.summary.mean_spec,
            family=resolved.name,
        )
    return resolved


def _resolve_output(family: ModelFamily, output: str | None) -> str:
    if output is None:
        return family.outputs[0]
    if output not in family.outputs:
        raise InvalidSpecification(
            f"output must be one of {list(family.outputs)} for the "
            f"{family.name} family, got {output!r}.",
            stage="sample",
            family=family.name,
        )
    return output


def sample(
    ensemble: ParameterEnsemble,
    family: str | ModelFamily | None = None,
    *,
    random_state: RandomState = None,
    output: str | None = None,
) -> pd.DataFrame:
    """Draw one outcome per ensemble row and stack it under the data.

    Args:
        ensemble: Output of :func:`~model_checks.propagate`.
        family: Family to sample with.  Defaults to the fitted family;
            a differently configured instance of the same family (e.g.
            ``NegativeBinomialFamily(mixture=True)``) is accepted.
        random_state: Seed or ``numpy.random.Generator``.
        output: Outcome type, one of ``family.outputs``
            (``"proportion"`` or ``"binary"`` for logit-normal).
            ``None`` selects the family's default.

    Returns:
        A ``DataFrame`` with ``nobs × (n_draws + 1)`` rows: the data
        columns plus ``.row``, ``.draw``, ``.source``, ``location`` and
        ``dispersion``.

    Raises:
        SamplingFailure: A parameter draw is outside the family's
            valid domain.
        InvalidSpecification: *family* differs from the fitted family
            or *output* is not supported by it.
    """
    summary = ensemble.summary
    resolved = _resolve_sampling_family(ensemble, family)
    output = _resolve_output(resolved, output)
    rng = as_generator(random_state)

    draws = ensemble.draws
    location = draws["location"].to_numpy()
    dispersion = draws["dispersion"].to_numpy() if resolved.has_dispersion else None
    try:
        resolved.check_parameters(location, dispersion)
        simulated = resolved.draw(
            location, dispersion, rng, output=output, extras=summary.extras
        )
    except ModelCheckError as exc:
        if exc.spec is None:
            exc.spec = summary.mean_spec
        raise

    data = summary.data.reset_index(drop=True)
    n = summary.nobs

    observed = data.copy()
    observed[summary.outcome] = summary.response
    observed[".row"] = np.arange(n)
    observed[".draw"] = 0
    observed[".source"] = OBSERVED
    observed["location"] = np.nan
    observed["dispersion"] = np.nan

    rows = draws[".row"].to_numpy()
    model = data.iloc[rows].reset_index(drop=True)
    model[summary.outcome] = simulated
    model[".row"] = rows
    model[".draw"] = draws[".draw"].to_numpy()
    model[".source"] = MODEL
    model["location"] = location
    model["dispersion"] = draws["dispersion"].to_numpy()
    # One replicate of the dataset per draw.
    model = model.sort_values([".draw", ".row"], kind="stable")

    logger.debug(
        "Sampled %s (%s): %d observed + %d model rows",
        resolved.name,
        output,
        n,
        len(model),
    )
    return pd.concat([observed, model], ignore_index=True)
