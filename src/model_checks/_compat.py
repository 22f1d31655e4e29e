"""Dataset boundary: the working dataset as a pandas frame.

The pipeline works on ``pandas.DataFrame`` objects throughout: column
dtypes drive categorical coding in :mod:`model_checks.design` and the
long-format output is a pandas frame.  Callers that load data with
Polars can pass a ``polars.DataFrame`` or ``polars.LazyFrame`` to any
public function; it is converted here, once, at the boundary.

Specs refer to columns by name, so a dataset whose column names are
not unique is rejected here rather than surfacing later as a frame
where a column was expected.

Polars is **not** a required dependency.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias

import pandas as pd

from .exceptions import InvalidSpecification

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame

try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _to_pandas(obj: DataFrameLike, name: str) -> pd.DataFrame:
    if isinstance(obj, pd.DataFrame):
        return obj
    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            obj = obj.collect()
        if isinstance(obj, pl.DataFrame):
            return obj.to_pandas()
    kinds = "a pandas DataFrame"
    if _HAS_POLARS:
        kinds += " or a Polars DataFrame/LazyFrame"
    raise TypeError(f"{name!r} must be {kinds}, got {type(obj).__name__}.")


def as_dataset(
    obj: DataFrameLike, *, name: str = "data", stage: str | None = None
) -> pd.DataFrame:
    """Return the caller's dataset as a :class:`pandas.DataFrame`.

    pandas frames are returned as-is (callers copy before mutating).

    Raises:
        TypeError: *obj* is not a recognised DataFrame type.
        InvalidSpecification: Two or more columns share a name.
    """
    frame = _to_pandas(obj, name)
    duplicated = frame.columns[frame.columns.duplicated()]
    if len(duplicated):
        names = ", ".join(repr(c) for c in dict.fromkeys(duplicated))
        raise InvalidSpecification(
            f"{name!r} has duplicate column name(s): {names}.",
            stage=stage,
        )
    return frame
