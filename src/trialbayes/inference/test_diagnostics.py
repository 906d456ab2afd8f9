"""
Tests for convergence diagnostics.

Progressive sizing:
- Small (synthetic): R-hat and ESS on hand-built chains (instant)
- Medium: the convergence checker on multi-parameter draws (instant)
"""

import numpy as np
import pytest

from trialbayes.errors import ConvergenceWarning
from trialbayes.inference.diagnostics import ConvergenceChecker, DiagnosticsComputer


# ============================================================================
# SMALL TESTS: Synthetic diagnostics
# ============================================================================


def test_small_rhat_perfect_convergence():
    """Identical constant chains give R-hat = 1."""
    chains = np.array([np.ones(100), np.ones(100)])
    assert DiagnosticsComputer.rhat(chains) == 1.0


def test_small_rhat_stuck_chains_disagree():
    """Constant chains at different values never converge."""
    chains = np.array([np.zeros(100), np.ones(100)])
    assert DiagnosticsComputer.rhat(chains) == np.inf


def test_small_rhat_mixed_chains():
    rng = np.random.default_rng(0)
    chains = rng.normal(size=(4, 1000))
    assert DiagnosticsComputer.rhat(chains) < 1.01


def test_small_rhat_poor_convergence():
    """Chains centred at -5 and 5 disagree."""
    rng = np.random.default_rng(42)
    chains = np.array([rng.normal(-5, 1, 100), rng.normal(5, 1, 100)])
    assert DiagnosticsComputer.rhat(chains) > 1.05


def test_small_split_rhat_detects_drift():
    """A single trending chain passes unsplit but fails split R-hat."""
    rng = np.random.default_rng(1)
    trend = np.linspace(0, 10, 500)
    chains = np.array([trend + rng.normal(size=500), trend + rng.normal(size=500)])
    assert DiagnosticsComputer.rhat(chains, split=False) < 1.05
    assert DiagnosticsComputer.rhat(chains) > 1.1


def test_small_rhat_requires_multiple_chains():
    single_chain = np.random.default_rng(2).normal(size=(1, 100))
    with pytest.raises(ValueError):
        DiagnosticsComputer.rhat(single_chain, split=False)
    # split halves make a single chain usable
    assert np.isfinite(DiagnosticsComputer.rhat(single_chain))


def test_small_ess_high_autocorr():
    """Random walk: ESS far below the draw count."""
    n = 1000
    x = np.cumsum(np.random.default_rng(3).normal(size=n)) / np.sqrt(n)
    ess = DiagnosticsComputer.ess(x)
    assert 0 < ess < 0.3 * n


def test_small_ess_white_noise():
    x = np.random.default_rng(42).normal(size=1000)
    assert DiagnosticsComputer.ess(x) > 500


def test_small_ess_constant():
    assert DiagnosticsComputer.ess(np.ones(1000)) == 1000


def test_small_ess_ar1_matches_theory():
    """AR(1) with phi=0.5: ESS ~ n (1 - phi) / (1 + phi)."""
    rng = np.random.default_rng(4)
    n, phi = 20000, 0.5
    x = np.zeros(n)
    for t in range(1, n):
        x[t] = phi * x[t - 1] + rng.normal()
    ess = DiagnosticsComputer.ess(x)
    assert abs(ess / (n / 3) - 1) < 0.2


# ============================================================================
# MEDIUM TESTS: convergence checker
# ============================================================================


def test_medium_checker_passes_good_draws():
    values = np.random.default_rng(5).normal(size=(4, 500, 3))
    report = ConvergenceChecker().check(values, ["a", "b", "c"], acceptance_rates=[0.3] * 4)
    assert report.ok
    assert set(report.rhat) == {"a", "b", "c"}
    assert report.max_rhat < 1.1
    assert report.min_ess > 100
    assert report.acceptance_rates == (0.3, 0.3, 0.3, 0.3)


def test_medium_checker_flags_bad_parameter():
    rng = np.random.default_rng(6)
    values = rng.normal(size=(2, 300, 2))
    values[1, :, 1] += 10.0  # second chain of "b" is stuck elsewhere
    report = ConvergenceChecker().check(values, ["a", "b"])
    assert not report.ok
    assert all(isinstance(w, ConvergenceWarning) for w in report.warnings)
    assert {w.parameter for w in report.warnings} == {"b"}
    assert report.to_dict()["ok"] is False


def test_medium_checker_min_ess():
    values = np.random.default_rng(7).normal(size=(2, 100, 1))
    report = ConvergenceChecker(min_ess=10_000).check(values, ["a"])
    assert [w.parameter for w in report.warnings] == ["a"]
    assert "Effective sample size" in str(report.warnings[0])


def test_medium_checker_validation():
    with pytest.raises(ValueError):
        ConvergenceChecker(rhat_threshold=1.0)
    with pytest.raises(ValueError, match="shape"):
        ConvergenceChecker().check(np.zeros((2, 10, 3)), ["a"])
