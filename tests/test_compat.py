"""Tests for Polars DataFrame input compatibility."""

import numpy as np
import pandas as pd
import pytest

from model_checks import causal_support, fit, model_check, prepare
from model_checks._compat import as_dataset

# Import polars; skip all tests in this module if not installed.
pl = pytest.importorskip("polars")


class TestAsDataset:
    """Tests for the as_dataset boundary converter."""

    def test_pandas_passthrough(self):
        df = pd.DataFrame({"a": [1, 2, 3]})
        result = as_dataset(df)
        assert result is df  # exact same object, no copy

    def test_polars_converted(self):
        pl_df = pl.DataFrame({"a": [1, 2, 3]})
        result = as_dataset(pl_df)
        assert isinstance(result, pd.DataFrame)
        assert list(result.columns) == ["a"]
        assert result["a"].tolist() == [1, 2, 3]

    def test_polars_lazyframe_collected_and_converted(self):
        lf = pl.DataFrame({"a": [1, 2, 3]}).lazy()
        result = as_dataset(lf)
        assert isinstance(result, pd.DataFrame)
        assert result["a"].tolist() == [1, 2, 3]

    def test_rejects_invalid_type(self):
        with pytest.raises(TypeError, match="must be a pandas DataFrame"):
            as_dataset([1, 2, 3])

    def test_error_includes_name(self):
        with pytest.raises(TypeError, match="'X'"):
            as_dataset({"a": 1}, name="X")


class TestPolarsEndToEnd:
    """Verify that public API functions accept Polars DataFrames."""

    @staticmethod
    def _make_polars_data(n=60, seed=42):
        rng = np.random.default_rng(seed)
        x = rng.standard_normal(n)
        return pl.DataFrame(
            {
                "y": 1.0 + 2.0 * x + rng.standard_normal(n) * 0.5,
                "x": x,
                "z": rng.uniform(0.0, 2.0, n),
            }
        )

    def test_prepare(self):
        spec, data = prepare("y ~ log(z)", self._make_polars_data())
        assert spec == "y ~ log_z"
        assert isinstance(data, pd.DataFrame)

    def test_fit(self):
        summary = fit("y ~ x", "~1", "normal", self._make_polars_data())
        assert summary.nobs == 60

    def test_model_check(self):
        out = model_check(self._make_polars_data(), "y ~ x", n_draws=3, random_state=0)
        assert len(out) == 60 * 4

    def test_lazyframe_model_check(self):
        lf = self._make_polars_data().lazy()
        out = model_check(lf, "y ~ x", n_draws=2, random_state=0)
        assert len(out) == 60 * 3

    def test_causal_support(self):
        score = causal_support(self._make_polars_data(), "y", ["x"], "x")
        assert score > 0
