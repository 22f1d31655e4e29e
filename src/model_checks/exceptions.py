"""Error taxonomy for the model-checking pipeline.

Every stage raises a subclass of :class:`ModelCheckError` so that a
host application can catch the whole family with one clause, while
the second base class keeps each error compatible with the builtin
exception a caller would otherwise expect:

=========================  ====================  =====================
Exception                  Builtin base          Raised by
=========================  ====================  =====================
``InvalidSpecification``   ``ValueError``        formula parsing,
                                                 preprocessing, design
``FitFailure``             ``RuntimeError``      model fitter
``SamplingFailure``        ``ValueError``        predictive sampler
``NumericInstability``     ``ArithmeticError``   log transforms,
                                                 causal support
=========================  ====================  =====================

Each instance carries structured context (``stage``, ``spec``,
``family``) so the caller can log and retry at a higher level without
parsing the message text.
"""

from __future__ import annotations

from typing import Any


class ModelCheckError(Exception):
    """Base class for all errors raised by ``model_checks``.

    Args:
        message: Human-readable description of the failure.
        stage: Pipeline stage that failed (``"prepare"``, ``"design"``,
            ``"fit"``, ``"propagate"``, ``"sample"``,
            ``"causal_support"``).
        spec: The specification string being processed, if any.
        family: Name of the distribution family, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        spec: str | None = None,
        family: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.spec = spec
        self.family = family

    @property
    def context(self) -> dict[str, Any]:
        """Structured context suitable for ``logger.error(..., extra=...)``."""
        return {"stage": self.stage, "spec": self.spec, "family": self.family}

    def __str__(self) -> str:
        parts = [
            f"{key}={value!r}"
            for key, value in self.context.items()
            if value is not None
        ]
        if not parts:
            return self.message
        return f"{self.message} [{', '.join(parts)}]"


class InvalidSpecification(ModelCheckError, ValueError):
    """Malformed specification text or a reference to a missing column."""


class FitFailure(ModelCheckError, RuntimeError):
    """Optimizer non-convergence or a degenerate design matrix."""


class SamplingFailure(ModelCheckError, ValueError):
    """A distribution parameter left its valid domain during sampling."""


class NumericInstability(ModelCheckError, ArithmeticError):
    """A non-finite value where a finite one is required.

    Raised when a log transform would produce ``-inf`` / ``NaN`` and
    when the log-sum-exp in the causal-support score overflows.
    """
