"""Tests for the error taxonomy."""

import pytest

from model_checks.exceptions import (
    FitFailure,
    InvalidSpecification,
    ModelCheckError,
    NumericInstability,
    SamplingFailure,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "cls, builtin",
        [
            (InvalidSpecification, ValueError),
            (FitFailure, RuntimeError),
            (SamplingFailure, ValueError),
            (NumericInstability, ArithmeticError),
        ],
    )
    def test_dual_inheritance(self, cls, builtin):
        assert issubclass(cls, ModelCheckError)
        assert issubclass(cls, builtin)

    def test_catch_as_builtin(self):
        with pytest.raises(ValueError):
            raise InvalidSpecification("bad spec")


class TestContext:
    def test_context_dict(self):
        err = FitFailure("did not converge", stage="fit", spec="y ~ x", family="normal")
        assert err.context == {"stage": "fit", "spec": "y ~ x", "family": "normal"}

    def test_str_includes_context(self):
        err = SamplingFailure("scale <= 0", stage="sample", family="normal")
        assert str(err) == "scale <= 0 [stage='sample', family='normal']"

    def test_str_without_context(self):
        assert str(NumericInstability("overflow")) == "overflow"

    def test_message_attribute(self):
        assert InvalidSpecification("oops", stage="parse").message == "oops"
