"""Ensemble-size configuration for the model_checks package.

Controls how many parameter draws :func:`~model_checks.propagate`
generates per observation when the caller does not pass ``n_draws``.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_default_draws`.
    2. The ``MODEL_CHECKS_N_DRAWS`` environment variable.
    3. The built-in default of 10 draws.

Examples:
    Use a smaller ensemble from the shell::

        export MODEL_CHECKS_N_DRAWS=5

    Override programmatically::

        import model_checks
        model_checks.set_default_draws(5)

    Restore the default resolution order::

        model_checks.set_default_draws(None)
"""

from __future__ import annotations

import numbers
import os

DEFAULT_N_DRAWS = 10

ENV_VAR = "MODEL_CHECKS_N_DRAWS"

# Sentinel indicating "no programmatic override has been set".
_draws_override: int | None = None


def _validate_draws(value: object, source: str) -> int:
    """Coerce *value* to a positive ``int`` or raise ``ValueError``."""
    if (
        not isinstance(value, numbers.Integral)
        or isinstance(value, bool)
        or value < 1
    ):
        raise ValueError(f"{source} must be a positive integer, got {value!r}.")
    return int(value)


def get_default_draws() -> int:
    """Return the active default ensemble size.

    Returns:
        The number of parameter draws per observation.

    Raises:
        ValueError: If ``MODEL_CHECKS_N_DRAWS`` is set to something
            other than a positive integer.
    """
    # 1. Programmatic override
    if _draws_override is not None:
        return _draws_override

    # 2. Environment variable
    env = os.environ.get(ENV_VAR, "").strip()
    if env:
        try:
            value = int(env)
        except ValueError:
            raise ValueError(
                f"{ENV_VAR} must be a positive integer, got {env!r}."
            ) from None
        return _validate_draws(value, ENV_VAR)

    # 3. Built-in default
    return DEFAULT_N_DRAWS


def set_default_draws(n_draws: int | None) -> None:
    """Override the default ensemble size.

    Args:
        n_draws: A positive integer, or ``None`` to restore the default
            resolution order.

    Raises:
        ValueError: If *n_draws* is not a positive integer.
    """
    global _draws_override
    if n_draws is None:
        _draws_override = None
        return
    _draws_override = _validate_draws(n_draws, "n_draws")


def resolve_draws(n_draws: int | None) -> int:
    """Return *n_draws* validated, or the configured default when ``None``."""
    if n_draws is None:
        return get_default_draws()
    return _validate_draws(n_draws, "n_draws")
