"""
Unit tests for priors and parameter domains.

Tests cover:
- Log-densities against scipy.stats
- Hyperparameter validation
- Domain bijections and log-Jacobians
- Prior support versus parameter domain
"""

import math

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy import stats

from trialbayes.errors import ConfigurationError
from trialbayes.models.priors import (
    CORRELATION,
    POSITIVE,
    REAL,
    Exponential,
    Fixed,
    Gamma,
    HalfNormal,
    HalfStudentT,
    LKJCorr,
    Normal,
    StudentT,
    Uniform,
)


class TestLogDensities:
    """Scalar log-densities match scipy.stats."""

    @pytest.mark.parametrize("value", [-3.0, 0.0, 0.7, 12.5])
    def test_normal(self, value: float) -> None:
        prior = Normal(1.0, 2.5)
        assert_allclose(prior.log_density(value), stats.norm.logpdf(value, 1.0, 2.5))

    @pytest.mark.parametrize("value", [-4.0, 0.0, 2.0])
    def test_student_t(self, value: float) -> None:
        prior = StudentT(nu=3.0, mu=0.5, sigma=2.0)
        assert_allclose(prior.log_density(value), stats.t.logpdf(value, 3.0, 0.5, 2.0))

    def test_half_normal(self) -> None:
        prior = HalfNormal(1.5)
        assert_allclose(prior.log_density(0.8), stats.halfnorm.logpdf(0.8, scale=1.5))
        assert prior.log_density(-0.1) == -math.inf

    def test_half_student_t(self) -> None:
        prior = HalfStudentT(nu=3.0, sigma=2.0)
        expected = math.log(2.0) + stats.t.logpdf(1.3, 3.0, 0.0, 2.0)
        assert_allclose(prior.log_density(1.3), expected)
        assert prior.log_density(-1.0) == -math.inf

    def test_exponential(self) -> None:
        prior = Exponential(0.5)
        assert_allclose(prior.log_density(3.0), stats.expon.logpdf(3.0, scale=2.0))

    def test_gamma_uses_rate(self) -> None:
        prior = Gamma(alpha=2.0, beta=4.0)
        assert_allclose(prior.log_density(0.3), stats.gamma.logpdf(0.3, 2.0, scale=0.25))
        assert prior.log_density(0.0) == -math.inf

    @pytest.mark.parametrize("eta", [1.0, 2.0, 4.5])
    def test_lkj_matches_scaled_beta(self, eta: float) -> None:
        prior = LKJCorr(eta)
        rho = 0.35
        expected = stats.beta.logpdf((rho + 1) / 2, eta, eta) - math.log(2.0)
        assert_allclose(prior.log_density(rho), expected)
        assert prior.log_density(1.0) == -math.inf

    def test_uniform(self) -> None:
        prior = Uniform(0.0, 4.0)
        assert_allclose(prior.log_density(1.0), -math.log(4.0))
        assert prior.log_density(5.0) == -math.inf


class TestValidation:
    """Out-of-domain hyperparameters raise ConfigurationError."""

    @pytest.mark.parametrize(
        "factory",
        [
            lambda: Normal(0.0, 0.0),
            lambda: Normal(float("nan"), 1.0),
            lambda: StudentT(nu=-1.0),
            lambda: HalfNormal(-2.0),
            lambda: Exponential(0.0),
            lambda: Gamma(alpha=0.0),
            lambda: LKJCorr(eta=0.0),
            lambda: Uniform(2.0, 1.0),
            lambda: Fixed(float("inf")),
        ],
    )
    def test_invalid_hyperparameters(self, factory) -> None:
        with pytest.raises(ConfigurationError):
            factory()

    def test_positive_prior_on_real_parameter_is_accepted(self) -> None:
        HalfNormal(1.0).check_domain(REAL, "beta")

    def test_real_prior_on_positive_parameter_is_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="sigma"):
            Normal(0.0, 1.0).check_domain(POSITIVE, "sigma")

    def test_fixed_must_lie_strictly_inside(self) -> None:
        Fixed(0.3).check_domain(CORRELATION, "rho")
        with pytest.raises(ConfigurationError):
            Fixed(1.0).check_domain(CORRELATION, "rho")
        with pytest.raises(ConfigurationError):
            Fixed(0.0).check_domain(POSITIVE, "tau_slope")

    def test_equality_and_repr(self) -> None:
        assert Normal(0.0, 2.0) == Normal(0.0, 2.0)
        assert Normal(0.0, 2.0) != Normal(0.0, 3.0)
        assert repr(HalfStudentT(3.0, 1.0)) == "HalfStudentT(nu=3.0, sigma=1.0)"
        assert "_const" not in repr(StudentT())


class TestDomains:
    """Bijections between sampling and parameter scales."""

    def test_round_trip(self) -> None:
        x = np.array([-2.0, 0.0, 1.5])
        for domain in (REAL, POSITIVE, CORRELATION):
            assert_allclose(domain.unconstrain(domain.constrain(x)), x, atol=1e-12)

    def test_tanh_log_jacobian(self) -> None:
        x = np.array([-3.0, -0.2, 0.0, 0.9, 25.0])
        expected = np.log1p(-np.tanh(x[:-1]) ** 2)
        assert_allclose(CORRELATION.log_jacobian(x)[:-1], expected, atol=1e-12)
        # stays finite where 1 - tanh(x)^2 underflows
        assert np.isfinite(CORRELATION.log_jacobian(x)[-1])

    def test_positive_log_jacobian_is_identity(self) -> None:
        x = np.array([-1.0, 2.0])
        assert_allclose(POSITIVE.log_jacobian(x), x)
