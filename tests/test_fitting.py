"""Tests for the model fitter and the FittedModelSummary result."""

import numpy as np
import pandas as pd
import pytest

from model_checks import FittedModelSummary, fit
from model_checks.exceptions import (
    FitFailure,
    InvalidSpecification,
    NumericInstability,
)
from model_checks.families import NegativeBinomialFamily
from model_checks.formula import prepare

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def small_df():
    return pd.DataFrame({"y": [1.0, 2.0, 3.0, 4.0, 5.0], "x": [0, 0, 0, 1, 1]})


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


@pytest.fixture()
def grouped_df(rng):
    n = 120
    g = np.repeat(["a", "b", "c"], n // 3)
    x = rng.standard_normal(n)
    shift = pd.Series(g).map({"a": 0.0, "b": 1.0, "c": -1.0}).to_numpy()
    scale = pd.Series(g).map({"a": 0.5, "b": 1.0, "c": 2.0}).to_numpy()
    y = 2.0 + 1.5 * x + shift + rng.normal(0, scale)
    return pd.DataFrame({"y": y, "x": x, "g": g})


# ------------------------------------------------------------------ #
# Normal family
# ------------------------------------------------------------------ #


class TestFitNormal:
    def test_two_cluster_scenario(self, small_df):
        summary = fit("y~x", "~1", "normal", small_df)
        assert isinstance(summary, FittedModelSummary)
        assert summary.nobs == 5
        np.testing.assert_allclose(summary.location, [2, 2, 2, 4.5, 4.5], atol=1e-6)
        assert summary.location[:3].max() < summary.location[3:].min()

    def test_residual_degrees_of_freedom(self, small_df):
        summary = fit("y~x", "~1", "normal", small_df)
        # Two location coefficients and one log-scale intercept.
        assert summary.df_resid == 2

    def test_residual_scale(self, small_df):
        summary = fit("y~x", "~1", "normal", small_df)
        # RSS = 1 + 0 + 1 + 0.25 + 0.25
        assert summary.residual_scale == pytest.approx(np.sqrt(2.5 / 2))

    def test_standard_errors_positive(self, small_df):
        summary = fit("y~x", "~1", "normal", small_df)
        assert np.all(summary.location_se > 0)
        assert np.all(summary.dispersion_se > 0)

    def test_deterministic(self, grouped_df):
        first = fit("y ~ x + g", "~ g", "normal", grouped_df)
        second = fit("y ~ x + g", "~ g", "normal", grouped_df)
        np.testing.assert_array_equal(first.location, second.location)
        np.testing.assert_array_equal(first.dispersion, second.dispersion)
        assert first.log_likelihood == second.log_likelihood

    def test_dispersion_submodel(self, grouped_df):
        summary = fit("y ~ x + g", "~ g", "normal", grouped_df)
        assert summary.residual_scale is None
        sigma = np.exp(summary.dispersion)
        by_group = pd.Series(sigma).groupby(grouped_df["g"]).mean()
        assert by_group["a"] < by_group["b"] < by_group["c"]

    def test_coefficient_table(self, grouped_df):
        summary = fit("y ~ x + g", "~ g", "normal", grouped_df)
        table = summary.coefficients
        assert list(table.columns) == ["submodel", "term", "estimate", "std_error"]
        assert list(table["term"]) == [
            "Intercept",
            "x",
            "g[T.b]",
            "g[T.c]",
            "Intercept",
            "g[T.b]",
            "g[T.c]",
        ]
        assert list(table["submodel"]) == ["mu"] * 4 + ["sigma"] * 3

    def test_data_not_modified(self, small_df):
        before = small_df.copy()
        fit("y ~ x", "~1", "normal", small_df)
        pd.testing.assert_frame_equal(small_df, before)


class TestFitLogTransform:
    @pytest.fixture()
    def log_df(self):
        return pd.DataFrame(
            {
                "y": [1.2, 1.9, 3.1, 3.9, 5.2, 6.1],
                "x": [0.0, 1.0, 2.0, 3.0, 4.0, 5.0],
            }
        )

    def test_raw_log_of_zero_fails(self, log_df):
        with pytest.raises(NumericInstability) as exc_info:
            fit("y ~ log(x)", "~1", "normal", log_df)
        assert exc_info.value.spec == "y ~ log(x)"
        assert exc_info.value.family == "normal"

    def test_prepared_spec_fits(self, log_df):
        spec, data = prepare("y ~ log(x)", log_df)
        summary = fit(spec, "~1", "normal", data)
        assert np.all(np.isfinite(summary.location))
        assert summary.mean_spec == "y ~ log_x"

    def test_log_outcome(self, log_df):
        spec, data = prepare("log(y) ~ x", log_df)
        summary = fit(spec, "~1", "normal", data)
        assert summary.outcome == "log_y"
        np.testing.assert_allclose(summary.response, np.log(log_df["y"]))

    def test_unprepared_log_ignores_same_named_column(self, rng):
        x = rng.uniform(1.0, 20.0, 80)
        df = pd.DataFrame(
            {
                "y": np.log(x) + rng.normal(0, 0.05, 80),
                "x": x,
                "log_x": rng.standard_normal(80),
            }
        )
        summary = fit("y ~ log(x)", "~1", "normal", df)
        coef = summary.coefficients.set_index(["submodel", "term"])["estimate"]
        assert coef[("mu", "log(x)")] == pytest.approx(1.0, abs=0.05)


# ------------------------------------------------------------------ #
# Other families
# ------------------------------------------------------------------ #


class TestFitOtherFamilies:
    def test_poisson(self, rng):
        x = rng.standard_normal(200)
        df = pd.DataFrame({"y": rng.poisson(np.exp(1.0 + 0.4 * x)), "x": x})
        summary = fit("y ~ x", "~1", "poisson", df)
        assert summary.dispersion is None
        assert summary.residual_scale is None
        assert summary.df_resid == 198

    def test_negative_binomial_instance(self, rng):
        x = rng.standard_normal(300)
        mu = np.exp(1.5 + 0.3 * x)
        y = rng.negative_binomial(mu / 1.5, 1.0 / 2.5)
        df = pd.DataFrame({"y": y, "x": x})
        family = NegativeBinomialFamily(mixture=True)
        summary = fit("y ~ x", "~1", family, df)
        assert summary.family is family
        assert summary.df_resid == 297

    def test_logistic(self, rng):
        x = rng.standard_normal(200)
        y = rng.binomial(1, 1.0 / (1.0 + np.exp(-x)))
        summary = fit("y ~ x", "~1", "logistic", pd.DataFrame({"y": y, "x": x}))
        assert summary.dispersion is None

    def test_ordinal_thresholds_on_summary(self, rng):
        x = rng.standard_normal(300)
        y = np.searchsorted([-0.3, 0.6], x + rng.standard_normal(300))
        summary = fit("y ~ x", "~1", "ordinal", pd.DataFrame({"y": y, "x": x}))
        assert len(summary.extras["thresholds"]) == 2
        assert summary.df_resid == 300 - 3


# ------------------------------------------------------------------ #
# Failures
# ------------------------------------------------------------------ #


class TestFitFailures:
    def test_collinear_predictors(self, small_df):
        small_df["x2"] = 2 * small_df["x"]
        with pytest.raises(FitFailure, match="rank deficient"):
            fit("y ~ x + x2", "~1", "normal", small_df)

    def test_empty_factor_level(self, grouped_df):
        grouped_df["g"] = pd.Categorical(grouped_df["g"], categories=["a", "b", "c", "d"])
        with pytest.raises(FitFailure, match="no observations"):
            fit("y ~ g", "~1", "normal", grouped_df)

    def test_too_few_observations(self):
        df = pd.DataFrame({"y": [1.0, 2.0, 4.0], "x": [0.0, 1.0, 3.0]})
        with pytest.raises(FitFailure, match="observation"):
            fit("y ~ x", "~1", "normal", df)

    def test_dispersion_spec_rejected_without_submodel(self, rng):
        df = pd.DataFrame({"y": rng.poisson(2.0, 50), "x": rng.standard_normal(50)})
        with pytest.raises(InvalidSpecification, match="no dispersion sub-model"):
            fit("y ~ x", "~ x", "poisson", df)

    def test_ordinal_rejects_dispersion_spec(self, rng):
        x = rng.standard_normal(60)
        y = np.searchsorted([-0.3, 0.6], x + rng.standard_normal(60))
        df = pd.DataFrame({"y": y, "x": x})
        with pytest.raises(InvalidSpecification, match="no dispersion sub-model"):
            fit("y ~ x", "~ x", "ordinal", df)

    def test_duplicate_column_names(self, small_df):
        df = pd.concat([small_df, small_df[["x"]]], axis=1)
        with pytest.raises(InvalidSpecification, match="'x'") as exc_info:
            fit("y ~ x", "~1", "normal", df)
        assert exc_info.value.stage == "fit"
        assert exc_info.value.spec == "y ~ x"

    def test_mean_spec_requires_outcome(self, small_df):
        with pytest.raises(InvalidSpecification, match="outcome"):
            fit("~ x", "~1", "normal", small_df)

    def test_dispersion_spec_must_not_have_outcome(self, small_df):
        with pytest.raises(InvalidSpecification, match="must not name an outcome"):
            fit("y ~ x", "y ~ 1", "normal", small_df)

    def test_unknown_column(self, small_df):
        with pytest.raises(InvalidSpecification, match="unknown column"):
            fit("y ~ w", "~1", "normal", small_df)

    def test_error_context(self, small_df):
        small_df["x2"] = small_df["x"]
        with pytest.raises(FitFailure) as exc_info:
            fit("y ~ x + x2", "~1", "normal", small_df)
        err = exc_info.value
        assert err.spec == "y ~ x + x2"
        assert err.family == "normal"
        assert err.stage == "fit"

    def test_requires_data(self):
        with pytest.raises(TypeError, match="dataset"):
            fit("y ~ x")


# ------------------------------------------------------------------ #
# Result object
# ------------------------------------------------------------------ #


class TestFittedModelSummary:
    def test_dict_access(self, small_df):
        summary = fit("y ~ x", "~1", "normal", small_df)
        assert summary["df_resid"] == summary.df_resid
        assert "location" in summary
        assert summary.get("missing", 7) == 7
        with pytest.raises(KeyError):
            summary["missing"]

    def test_to_dict(self, small_df):
        summary = fit("y ~ x", "~1", "normal", small_df)
        d = summary.to_dict()
        assert d["family"] == "normal"
        assert "data" not in d
        assert isinstance(d["location"], list)
        assert isinstance(d["df_resid"], int)

    def test_frozen(self, small_df):
        summary = fit("y ~ x", "~1", "normal", small_df)
        with pytest.raises(AttributeError):
            summary.df_resid = 10
