"""Typed result objects passed between pipeline stages.

Frozen dataclasses that provide:

* **Attribute access** — ``summary.df_resid``, ``ensemble.draws``.
* **Dict-like access** — ``summary["df_resid"]``, ``summary.get(key)``,
  ``"key" in summary``.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with NumPy and pandas values converted to native Python.

Two result types mirror the two hand-offs in the pipeline:

* :class:`FittedModelSummary` — model fitter → uncertainty propagator.
* :class:`ParameterEnsemble` — uncertainty propagator → predictive
  sampler.

Both are frozen: a summary is a snapshot of one completed fit and an
ensemble is one set of draws from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from .families import ModelFamily

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _to_python(obj: Any) -> Any:
    """Recursively convert NumPy / pandas values to Python-native types."""
    if isinstance(obj, pd.DataFrame):
        return [_to_python(row) for row in obj.to_dict(orient="records")]
    if isinstance(obj, pd.Series):
        return _to_python(obj.to_list())
    if isinstance(obj, np.ndarray):
        return _to_python(obj.tolist())
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(_to_python(item) for item in obj)
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access and ``to_dict`` for result dataclasses.

    Subclasses list fields to skip in ``_EXCLUDE_FROM_DICT`` and
    per-field converters in ``_SERIALIZERS``.
    """

    _SERIALIZERS: ClassVar[dict[str, Any]] = {
        "family": lambda f: f.name,
    }

    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset()

    def __getitem__(self, key: str) -> Any:
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serialisable dictionary."""
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._EXCLUDE_FROM_DICT:
                continue
            val = getattr(self, f.name)
            if f.name in self._SERIALIZERS:
                val = self._SERIALIZERS[f.name](val)
            result[f.name] = _to_python(val)
        return result


# ------------------------------------------------------------------ #
# FittedModelSummary
# ------------------------------------------------------------------ #


@dataclass(frozen=True, eq=False)
class FittedModelSummary(_DictAccessMixin):
    """Per-observation point estimates and standard errors of one fit.

    Location and dispersion are reported on their **link scale**
    (identity / log / logit for the location, log for the
    dispersion); the family back-transforms after propagation.
    """

    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset({"data"})

    family: ModelFamily
    """Family the model was fitted with."""

    mean_spec: str
    """Mean specification as fitted (after preprocessing)."""

    dispersion_spec: str
    """Dispersion specification as fitted."""

    outcome: str
    """Name of the outcome column."""

    data: pd.DataFrame
    """Dataset the model was fitted on."""

    response: np.ndarray
    """Observed outcome values, shape ``(n,)``."""

    location: np.ndarray
    """Location linear predictor, shape ``(n,)``."""

    location_se: np.ndarray
    """Standard error of the location linear predictor, shape ``(n,)``."""

    df_resid: int
    """Observations minus estimated parameters."""

    log_likelihood: float
    """Total log-likelihood of the observed outcome."""

    coefficients: pd.DataFrame
    """One row per parameter: ``submodel``, ``term``, ``estimate``,
    ``std_error``."""

    dispersion: np.ndarray | None = None
    """Log-dispersion linear predictor, or ``None`` without a
    dispersion sub-model."""

    dispersion_se: np.ndarray | None = None
    """Standard error of the log-dispersion predictor."""

    residual_scale: float | None = None
    """Residual standard deviation ``sqrt(RSS / df)``; set when the
    dispersion is drawn from a scaled-inverse-χ² distribution instead
    of its own sub-model."""

    extras: dict[str, Any] = field(default_factory=dict)
    """Family-specific values the sampler needs (outcome levels,
    ordinal thresholds)."""

    @property
    def nobs(self) -> int:
        return int(self.location.shape[0])


# ------------------------------------------------------------------ #
# ParameterEnsemble
# ------------------------------------------------------------------ #


@dataclass(frozen=True, eq=False)
class ParameterEnsemble(_DictAccessMixin):
    """Rectangular ensemble of natural-scale parameter draws.

    ``draws`` has ``nobs × n_draws`` rows ordered by observation, then
    draw, with columns ``.row`` (position of the observation in the
    fitted data), ``.draw`` (1-based draw index), ``location`` and
    ``dispersion`` (NaN for families without one).
    """

    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset({"summary"})
    _SERIALIZERS: ClassVar[dict[str, Any]] = {}

    summary: FittedModelSummary
    """The fit the draws were generated from."""

    draws: pd.DataFrame
    """Long table of parameter draws."""

    n_draws: int
    """Draws per observation."""

    @property
    def family(self) -> ModelFamily:
        return self.summary.family

    @property
    def nobs(self) -> int:
        return self.summary.nobs
