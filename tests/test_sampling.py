"""Tests for the predictive sampler."""

import dataclasses

import numpy as np
import pandas as pd
import pytest

from model_checks import fit, propagate, sample
from model_checks.exceptions import InvalidSpecification, SamplingFailure
from model_checks.families import NegativeBinomialFamily

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def small_df():
    return pd.DataFrame({"y": [1.0, 2.0, 3.0, 4.0, 5.0], "x": [0, 0, 0, 1, 1]})


@pytest.fixture()
def small_ensemble(small_df):
    return propagate(fit("y~x", "~1", "normal", small_df), 5, random_state=1)


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


# ------------------------------------------------------------------ #
# Output layout
# ------------------------------------------------------------------ #


class TestOutputLayout:
    def test_row_count(self, small_ensemble):
        out = sample(small_ensemble, "normal", random_state=2)
        assert len(out) == 30
        counts = out[".source"].value_counts()
        assert counts["observed"] == 5
        assert counts["model"] == 25

    def test_columns(self, small_ensemble, small_df):
        out = sample(small_ensemble, random_state=2)
        extra = [".row", ".draw", ".source", "location", "dispersion"]
        for col in list(small_df.columns) + extra:
            assert col in out.columns

    def test_observed_rows(self, small_ensemble, small_df):
        out = sample(small_ensemble, random_state=2)
        observed = out[out[".source"] == "observed"]
        assert (observed[".draw"] == 0).all()
        np.testing.assert_allclose(observed["y"], small_df["y"])
        assert observed["location"].isna().all()
        assert observed["dispersion"].isna().all()

    def test_model_rows_one_per_draw_and_observation(self, small_ensemble, small_df):
        out = sample(small_ensemble, random_state=2)
        model = out[out[".source"] == "model"]
        assert (model.groupby(".row").size() == 5).all()
        assert (model.groupby(".draw").size() == 5).all()
        # Predictor columns repeat the observation they belong to.
        np.testing.assert_array_equal(
            model["x"].to_numpy(), small_df["x"].to_numpy()[model[".row"].to_numpy()]
        )

    def test_model_rows_grouped_by_draw(self, small_ensemble):
        out = sample(small_ensemble, random_state=2)
        model = out[out[".source"] == "model"]
        assert list(model[".draw"].iloc[:5]) == [1, 1, 1, 1, 1]
        assert list(model[".row"].iloc[:5]) == [0, 1, 2, 3, 4]

    def test_parameters_carried_through(self, small_ensemble):
        out = sample(small_ensemble, random_state=2)
        model = out[out[".source"] == "model"].sort_values([".row", ".draw"])
        np.testing.assert_allclose(
            model["location"].to_numpy(), small_ensemble.draws["location"].to_numpy()
        )

    def test_reproducible(self, small_ensemble):
        a = sample(small_ensemble, random_state=3)
        b = sample(small_ensemble, random_state=3)
        pd.testing.assert_frame_equal(a, b)

    def test_index_is_fresh(self, small_df):
        small_df.index = [10, 20, 30, 40, 50]
        ensemble = propagate(fit("y~x", "~1", "normal", small_df), 2, random_state=1)
        out = sample(ensemble, random_state=2)
        assert list(out.index) == list(range(15))


# ------------------------------------------------------------------ #
# Families and outputs
# ------------------------------------------------------------------ #


class TestFamilyOutputs:
    def test_logitnormal_proportion_and_binary(self, rng):
        x = rng.standard_normal(40)
        y = 1.0 / (1.0 + np.exp(-(0.3 * x + rng.normal(0, 0.5, 40))))
        ensemble = propagate(
            fit("y ~ x", "~1", "logitnormal", pd.DataFrame({"y": y, "x": x})),
            3,
            random_state=0,
        )
        prop = sample(ensemble, random_state=1)
        model = prop[prop[".source"] == "model"]["y"]
        assert ((model > 0) & (model < 1)).all()

        binary = sample(ensemble, random_state=1, output="binary")
        model = binary[binary[".source"] == "model"]["y"]
        assert set(model.unique()) <= {0, 1}

    def test_rejects_unsupported_output(self, small_ensemble):
        with pytest.raises(InvalidSpecification, match="output must be one of"):
            sample(small_ensemble, output="binary")

    def test_rejects_different_family(self, small_ensemble):
        with pytest.raises(InvalidSpecification, match="fitted with the normal"):
            sample(small_ensemble, "poisson")

    def test_negative_binomial_mixture_override(self, rng):
        x = rng.standard_normal(80)
        y = rng.negative_binomial(3.0, 0.4, 80)
        ensemble = propagate(
            fit("y ~ x", "~1", "negative_binomial", pd.DataFrame({"y": y, "x": x})),
            4,
            random_state=0,
        )
        out = sample(ensemble, NegativeBinomialFamily(mixture=True), random_state=1)
        model = out[out[".source"] == "model"]["y"].to_numpy()
        assert np.all(model >= 0)
        assert np.allclose(model, np.round(model))

    def test_logistic_labels(self, rng):
        x = rng.standard_normal(60)
        y = np.where(rng.binomial(1, 1.0 / (1.0 + np.exp(-x))) == 1, "yes", "no")
        ensemble = propagate(
            fit("y ~ x", "~1", "logistic", pd.DataFrame({"y": y, "x": x})),
            3,
            random_state=0,
        )
        out = sample(ensemble, random_state=1)
        assert set(out["y"]) <= {"no", "yes"}

    def test_logistic_bool_outcome_stays_bool(self, rng):
        x = rng.standard_normal(60)
        y = rng.random(60) < 1.0 / (1.0 + np.exp(-x))
        ensemble = propagate(
            fit("y ~ x", "~1", "logistic", pd.DataFrame({"y": y, "x": x})),
            3,
            random_state=0,
        )
        out = sample(ensemble, random_state=1)
        assert pd.api.types.is_bool_dtype(out["y"])



# ------------------------------------------------------------------ #
# Domain checks
# ------------------------------------------------------------------ #


class TestSamplingFailure:
    def test_negative_scale(self, small_ensemble):
        draws = small_ensemble.draws.copy()
        draws.loc[3, "dispersion"] = -0.5
        bad = dataclasses.replace(small_ensemble, draws=draws)
        with pytest.raises(SamplingFailure, match="scale") as exc_info:
            sample(bad, random_state=0)
        assert exc_info.value.spec == "y~x"
        assert exc_info.value.stage == "sample"

    def test_non_finite_location(self, small_ensemble):
        draws = small_ensemble.draws.copy()
        draws.loc[0, "location"] = np.nan
        bad = dataclasses.replace(small_ensemble, draws=draws)
        with pytest.raises(SamplingFailure, match="location"):
            sample(bad, random_state=0)
