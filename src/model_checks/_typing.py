"""Shared type aliases for the model_checks package."""

import numpy as np

# Seeds accepted wherever randomness is drawn.  ``None`` means fresh
# OS entropy; an ``int`` or a caller-owned ``Generator`` pins the stream.
RandomState = int | np.random.Generator | None


def as_generator(random_state: RandomState) -> np.random.Generator:
    """Return a ``Generator`` for *random_state* without touching global state."""
    if isinstance(random_state, np.random.Generator):
        return random_state
    return np.random.default_rng(random_state)
