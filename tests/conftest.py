"""Shared fixtures: simulated cohorts and a fast engine configuration."""

import pandas as pd
import pytest

from trialbayes import Cohort, EngineConfig
from trialbayes.simulation import TrialSimulator


@pytest.fixture
def trial_frame() -> pd.DataFrame:
    return TrialSimulator(seed=42).generate_trial(n_patients=120)


@pytest.fixture
def trial_cohort(trial_frame: pd.DataFrame) -> Cohort:
    return Cohort(trial_frame, subject_column="patient_id", name="trial")


@pytest.fixture
def biomarker_cohort() -> Cohort:
    sim = TrialSimulator(seed=11)
    trial = sim.generate_trial(n_patients=40)
    return Cohort(sim.generate_biomarker(trial), subject_column="patient_id", name="biomarker")


@pytest.fixture
def survival_cohort() -> Cohort:
    frame = TrialSimulator(seed=5).generate_survival(n_patients=150, dropout_rate=0.02)
    return Cohort(frame, subject_column="patient_id", name="survival")


@pytest.fixture
def fast_config() -> EngineConfig:
    return EngineConfig.from_mapping(
        {
            "sampler": {"chains": 2, "draws": 200, "warmup": 200, "thin": 2, "seed": 7},
            "convergence": {"min_ess": 20},
        }
    )
