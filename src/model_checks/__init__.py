"""model_checks — Visual model checks for regression models.

Fits a location-scale model (mean and dispersion sub-models) from
formula strings, propagates the sampling uncertainty of the fitted
parameters into a small ensemble of parameter draws, and simulates one
outcome per draw so that observed and model-generated data can be
plotted side by side.  Families: normal, log-normal, logit-normal,
logistic, Poisson, negative binomial (NBII) and ordinal (probit).

Public API:
    .. autosummary::
        model_check
        prepare
        prepare_specs
        parse_formula
        log_variables
        fit
        propagate
        sample
        causal_support
        enumerate_mean_specs
        get_default_draws
        set_default_draws
        ModelFamily
        NormalFamily
        LogNormalFamily
        LogitNormalFamily
        LogisticFamily
        PoissonFamily
        NegativeBinomialFamily
        OrdinalFamily
        resolve_family
        register_family
        FittedModelSummary
        ParameterEnsemble
        ModelCheckError
        InvalidSpecification
        FitFailure
        SamplingFailure
        NumericInstability
"""

from ._config import get_default_draws, set_default_draws
from ._results import FittedModelSummary, ParameterEnsemble
from .causal_support import causal_support, enumerate_mean_specs
from .core import model_check
from .exceptions import (
    FitFailure,
    InvalidSpecification,
    ModelCheckError,
    NumericInstability,
    SamplingFailure,
)
from .families import (
    LogisticFamily,
    LogitNormalFamily,
    LogNormalFamily,
    ModelFamily,
    NegativeBinomialFamily,
    NormalFamily,
    OrdinalFamily,
    PoissonFamily,
    register_family,
    resolve_family,
)
from .fitting import fit
from .formula import (
    Formula,
    PreparedSpec,
    log_variables,
    parse_formula,
    prepare,
    prepare_specs,
)
from .propagation import propagate
from .sampling import sample

__all__ = [
    "FittedModelSummary",
    "ParameterEnsemble",
    "model_check",
    "prepare",
    "prepare_specs",
    "PreparedSpec",
    "parse_formula",
    "Formula",
    "log_variables",
    "fit",
    "propagate",
    "sample",
    "causal_support",
    "enumerate_mean_specs",
    "get_default_draws",
    "set_default_draws",
    "ModelFamily",
    "NormalFamily",
    "LogNormalFamily",
    "LogitNormalFamily",
    "LogisticFamily",
    "PoissonFamily",
    "NegativeBinomialFamily",
    "OrdinalFamily",
    "resolve_family",
    "register_family",
    "ModelCheckError",
    "InvalidSpecification",
    "FitFailure",
    "SamplingFailure",
    "NumericInstability",
]

__version__ = "0.1.0"
