"""
End-to-end tests: fit, convergence checking, caching and decision metrics.

Progressive sizing:
- Medium: short fits on simulated cohorts (seconds)
- Large: parameter recovery on a 200-patient trial
- Slow: frequentist calibration of credible intervals
"""

import numpy as np
import pytest

from trialbayes import (
    CategoricalCovariate,
    Cohort,
    DesignSpec,
    EngineConfig,
    GaussianModel,
    Interaction,
    NumericCovariate,
    PosteriorStore,
    RandomEffectsModel,
    TimeCovariate,
    TreatmentIndicator,
    WeibullModel,
    analyze,
    fit,
)
from trialbayes.decision.metrics import summarize
from trialbayes.simulation import TIMEPOINTS, TrialSimulator

FULL_DESIGN = DesignSpec(
    [
        TreatmentIndicator(),
        NumericCovariate("age", center=65),
        CategoricalCovariate("sex", reference="Male", levels=["Female"]),
        NumericCovariate("baseline_risk"),
    ]
)


def _ols_treatment(model: GaussianModel) -> float:
    beta, *_ = np.linalg.lstsq(model.design.values, model.y, rcond=None)
    return float(beta[model.design.index("treatment")])


# ============================================================================
# MEDIUM TESTS: short fits
# ============================================================================


class TestFit:
    """fit() returns merged, diagnosed draws."""

    def test_shapes_and_report(self, trial_cohort: Cohort, fast_config: EngineConfig) -> None:
        model = GaussianModel(trial_cohort, FULL_DESIGN, "primary_outcome")
        posterior = fit(model, fast_config)
        assert posterior.values.shape == (2, 200, 6)
        assert posterior.parameter_names == model.parameter_names
        assert posterior.model_id == model.fingerprint
        assert set(posterior.report.rhat) == set(model.parameter_names)
        assert len(posterior.report.acceptance_rates) == 2

    def test_identical_seed_identical_posterior(
        self, trial_cohort: Cohort, fast_config: EngineConfig
    ) -> None:
        model = GaussianModel(trial_cohort, FULL_DESIGN, "primary_outcome")
        a = fit(model, fast_config)
        b = fit(model.rebind(Cohort(trial_cohort.frame)), fast_config)
        assert np.array_equal(a.values, b.values)

    def test_store_avoids_refitting(self, trial_cohort: Cohort, fast_config: EngineConfig) -> None:
        store = PosteriorStore()
        model = GaussianModel(trial_cohort, FULL_DESIGN, "primary_outcome")
        first = fit(model, fast_config, store)
        second = fit(model, fast_config, store)
        assert first is second
        assert len(store) == 1

        reseeded = fast_config.model_copy(
            update={"sampler": fast_config.sampler.model_copy(update={"seed": 8})}
        )
        third = fit(model, reseeded, store)
        assert third is not first
        assert len(store) == 2

    def test_unconverged_fit_flags_summary(self, trial_cohort: Cohort) -> None:
        # dispersed starts, no warm-up and very short chains
        config = EngineConfig.from_mapping(
            {
                "sampler": {
                    "chains": 2,
                    "draws": 20,
                    "warmup": 0,
                    "thin": 1,
                    "init_radius": 10.0,
                    "optimize_init": False,
                },
                "convergence": {"min_ess": 0},
            }
        )
        model = GaussianModel(trial_cohort, FULL_DESIGN, "primary_outcome")
        posterior = fit(model, config)
        assert not posterior.convergence_ok
        assert posterior.report.max_rhat > 1.1
        assert any("R-hat" in str(w) for w in posterior.report.warnings)

        summary = analyze(model, "treatment", config)
        assert summary.convergence_ok is False

    def test_analyze_uses_decision_config(self, trial_cohort: Cohort) -> None:
        config = EngineConfig.from_mapping(
            {
                "sampler": {"chains": 2, "draws": 200, "warmup": 200, "thin": 2},
                "decision": {"ci_level": 0.9, "thresholds": [1.0, 0.0]},
            }
        )
        model = GaussianModel(trial_cohort, FULL_DESIGN, "primary_outcome")
        summary = analyze(model, "treatment", config)
        assert summary.ci_level == 0.9
        assert list(summary.probabilities) == [0.0, 1.0]
        assert summary.probability_above(0.0) >= summary.probability_above(1.0)
        assert summary.ci_lower < summary.mean < summary.ci_upper

    def test_random_effects_treatment_by_time(self, fast_config: EngineConfig) -> None:
        sim = TrialSimulator(seed=21)
        trial = sim.generate_trial(n_patients=60)
        cohort = Cohort(sim.generate_biomarker(trial), subject_column="patient_id")
        time = TimeCovariate("timepoint", levels=TIMEPOINTS)
        design = DesignSpec([TreatmentIndicator(), time, Interaction(TreatmentIndicator(), time)])
        model = RandomEffectsModel(cohort, design, "biomarker_value", time=time)

        posterior = fit(model, fast_config)
        slope = summarize(posterior, "treatment:time")
        # simulated treatment-by-time effect is 3 per visit
        assert abs(slope.mean - 3.0) < 1.5
        assert slope.probability_above(0.0) > 0.95

        week_12 = summarize(posterior, {"treatment": 1.0, "treatment:time": 2.0}, label="Week 12")
        expected = posterior["treatment"].mean() + 2.0 * posterior["treatment:time"].mean()
        assert week_12.parameter == "Week 12"
        assert abs(week_12.mean - expected) < 1e-9
        assert np.all(posterior["tau_intercept"] > 0)
        assert np.all(np.abs(posterior["rho"]) < 1)

    def test_weibull_hazard_ratio(self, fast_config: EngineConfig) -> None:
        frame = TrialSimulator(seed=9).generate_survival(n_patients=300, log_hazard_ratio=-0.7)
        model = WeibullModel(Cohort(frame), DesignSpec([TreatmentIndicator()]), "time", "event")
        posterior = fit(model, fast_config)
        summary = summarize(posterior, "treatment")
        assert abs(summary.mean - (-0.7)) < 0.5
        assert abs(float(np.mean(posterior["shape"])) - 1.5) < 0.4


# ============================================================================
# LARGE TESTS: parameter recovery
# ============================================================================


@pytest.fixture(scope="module")
def recovery_model() -> GaussianModel:
    """
    A 200-patient trial (effect 1.7, residual SD 2.0) whose least-squares
    estimate lies close to the true effect, so the posterior check is about
    the sampler and not about sampling noise in the data.
    """
    for seed in range(200):
        frame = TrialSimulator(seed=seed).generate_trial(
            n_patients=200, treatment_effect=1.7, residual_sd=2.0
        )
        model = GaussianModel(Cohort(frame), FULL_DESIGN, "primary_outcome")
        if abs(_ols_treatment(model) - 1.7) < 0.2:
            return model
    raise RuntimeError("no simulated trial close to the true effect")


def test_large_recovers_treatment_effect(recovery_model: GaussianModel) -> None:
    config = EngineConfig.from_mapping({"sampler": {"chains": 2, "draws": 500, "warmup": 500}})
    posterior = fit(recovery_model, config)
    summary = summarize(posterior, "treatment")

    assert abs(summary.mean - 1.7) < 0.5
    assert abs(summary.mean - _ols_treatment(recovery_model)) < 0.15
    assert summary.probability_above(0.0) > 0.9
    assert summary.ci_lower < 1.7 < summary.ci_upper
    assert posterior.report.max_rhat < 1.1


# ============================================================================
# SLOW TESTS: calibration
# ============================================================================


@pytest.mark.slow
def test_slow_credible_interval_coverage() -> None:
    config = EngineConfig.from_mapping(
        {
            "sampler": {"chains": 2, "draws": 400, "warmup": 200, "thin": 2},
            "convergence": {"min_ess": 0},
        }
    )
    true_effect = 1.0
    covered = 0
    n_trials = 100
    for seed in range(n_trials):
        frame = TrialSimulator(seed=1000 + seed).generate_trial(
            n_patients=60, treatment_effect=true_effect, effect_sd=0.0
        )
        model = GaussianModel(Cohort(frame), FULL_DESIGN, "primary_outcome")
        summary = analyze(model, "treatment", config)
        covered += summary.ci_lower <= true_effect <= summary.ci_upper

    assert 0.87 <= covered / n_trials <= 1.0
