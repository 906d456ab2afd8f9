"""
Synthetic clinical-trial cohorts.

Generates the three record layouts the engine analyzes:
- generate_trial: one row per patient, two arms, continuous outcomes
- generate_biomarker: repeated biomarker measurements per patient
- generate_survival: right-censored Weibull event times per patient

The generating models match the fitted families, so simulated cohorts are
used for recovery and calibration checks.
"""

from typing import Optional, Sequence

import numpy as np
import pandas as pd

TIMEPOINTS = ("Baseline", "Week 6", "Week 12")


class TrialSimulator:
    """
    Simulator for two-arm trial cohorts.

    Attributes
    ----------
    treated : str
        Label of the treatment arm.
    control : str
        Label of the control arm.
    seed : int, optional
        Seed of the numpy Generator; the same seed gives the same cohorts.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        treated: str = "Treatment",
        control: str = "Control",
    ) -> None:
        if treated == control:
            raise ValueError(f"Arm labels must differ. Got {treated!r} twice")
        self.seed = seed
        self.treated = treated
        self.control = control
        self.rng = np.random.default_rng(seed)

    def _arms(self, n_patients: int) -> np.ndarray:
        # First half treated, second half control
        n_treated = n_patients // 2
        return np.array([self.treated] * n_treated + [self.control] * (n_patients - n_treated))

    def generate_trial(
        self,
        n_patients: int = 200,
        treatment_effect: float = 1.7,
        residual_sd: float = 1.0,
        effect_sd: float = 0.5,
    ) -> pd.DataFrame:
        """
        Generate one row per patient.

        primary_outcome = baseline_risk + effect + 0.05 (age - 65)
                          + 0.5 [sex == Female] + ε,  ε ~ Normal(0, residual_sd)

        where effect ~ Normal(treatment_effect, effect_sd) for treated patients
        and Normal(0, effect_sd) for controls.

        Parameters
        ----------
        n_patients : int
            Cohort size (at least 2, so both arms are present). Default 200.
        treatment_effect : float
            Mean shift of the treated arm. Default 1.7.
        residual_sd : float
            Outcome noise SD. Default 1.0.
        effect_sd : float
            Patient-level heterogeneity of the effect. Default 0.5.

        Returns
        -------
        trial : pd.DataFrame
            Columns patient_id, treatment, age, sex, baseline_risk,
            primary_outcome, secondary_outcome.
        """
        if n_patients < 2:
            raise ValueError(f"n_patients must be >= 2. Got {n_patients}")
        if residual_sd <= 0 or effect_sd < 0:
            raise ValueError(
                f"residual_sd must be > 0 and effect_sd >= 0. Got {residual_sd}, {effect_sd}"
            )

        rng = self.rng
        treatment = self._arms(n_patients)
        age = np.round(rng.normal(65, 10, n_patients)).astype(int)
        sex = rng.choice(["Male", "Female"], size=n_patients, p=[0.55, 0.45])
        baseline_risk = rng.normal(5, 1, n_patients)

        effect = rng.normal(0.0, effect_sd, n_patients) if effect_sd > 0 else np.zeros(n_patients)
        effect = effect + np.where(treatment == self.treated, treatment_effect, 0.0)

        primary = (
            baseline_risk
            + effect
            + 0.05 * (age - 65)
            + 0.5 * (sex == "Female")
            + rng.normal(0, residual_sd, n_patients)
        )
        secondary = 0.6 * primary + rng.normal(0, 0.8, n_patients)

        return pd.DataFrame(
            {
                "patient_id": np.arange(1, n_patients + 1),
                "treatment": treatment,
                "age": age,
                "sex": sex,
                "baseline_risk": baseline_risk,
                "primary_outcome": primary,
                "secondary_outcome": secondary,
            }
        )

    def generate_biomarker(
        self,
        trial: pd.DataFrame,
        timepoints: Sequence[str] = TIMEPOINTS,
        baseline: float = 50.0,
        time_slope: float = 5.0,
        treatment_slope: float = 3.0,
        intercept_sd: float = 5.0,
        slope_sd: float = 1.0,
        residual_sd: float = 2.0,
    ) -> pd.DataFrame:
        """
        Generate longitudinal biomarker values for the patients of a trial.

        For patient j at time offset t (0 for the first label, 1, 2, ...):

            y = baseline + u0[j] + (time_slope + u1[j]) t
                + treatment_slope t [treated] + ε

        with u0 ~ Normal(0, intercept_sd), u1 ~ Normal(0, slope_sd) and
        ε ~ Normal(0, residual_sd).

        Returns
        -------
        biomarker : pd.DataFrame
            Columns patient_id, treatment, timepoint, biomarker_value, one
            row per patient and timepoint (patient-major order).
        """
        for column in ("patient_id", "treatment"):
            if column not in trial.columns:
                raise ValueError(f"trial is missing column '{column}'")
        if len(timepoints) < 2:
            raise ValueError(f"Need at least 2 timepoints. Got {list(timepoints)}")

        rng = self.rng
        n_patients = len(trial)
        n_times = len(timepoints)

        intercepts = rng.normal(0, intercept_sd, n_patients)
        slopes = rng.normal(0, slope_sd, n_patients)
        treated = (trial["treatment"].to_numpy() == self.treated).astype(float)

        t = np.arange(n_times, dtype=float)
        mean = (
            baseline
            + intercepts[:, None]
            + (time_slope + slopes[:, None] + treatment_slope * treated[:, None]) * t[None, :]
        )
        values = mean + rng.normal(0, residual_sd, (n_patients, n_times))

        return pd.DataFrame(
            {
                "patient_id": np.repeat(trial["patient_id"].to_numpy(), n_times),
                "treatment": np.repeat(trial["treatment"].to_numpy(), n_times),
                "timepoint": np.tile(np.asarray(timepoints, dtype=object), n_patients),
                "biomarker_value": values.reshape(-1),
            }
        )

    def generate_survival(
        self,
        n_patients: int = 200,
        shape: float = 1.5,
        baseline_scale: float = 12.0,
        log_hazard_ratio: float = -0.5,
        follow_up: float = 24.0,
        dropout_rate: float = 0.0,
    ) -> pd.DataFrame:
        """
        Generate right-censored Weibull survival times.

        Event times follow the proportional-hazards Weibull with cumulative
        hazard H(t) = (t / baseline_scale)^shape exp(log_hazard_ratio [treated]).
        Times are censored at follow_up and, if dropout_rate > 0, at an
        exponential dropout time.

        Returns
        -------
        survival : pd.DataFrame
            Columns patient_id, treatment, age, sex, time, event (1 = event
            observed, 0 = censored).
        """
        if n_patients < 2:
            raise ValueError(f"n_patients must be >= 2. Got {n_patients}")
        if shape <= 0 or baseline_scale <= 0 or follow_up <= 0 or dropout_rate < 0:
            raise ValueError(
                "shape, baseline_scale and follow_up must be > 0 and dropout_rate >= 0"
            )

        rng = self.rng
        treatment = self._arms(n_patients)
        age = np.round(rng.normal(65, 10, n_patients)).astype(int)
        sex = rng.choice(["Male", "Female"], size=n_patients, p=[0.55, 0.45])

        # Inverse of H: t = scale * (E exp(-lp))^(1/shape), E ~ Exp(1)
        lp = np.where(treatment == self.treated, log_hazard_ratio, 0.0)
        e = rng.exponential(1.0, n_patients)
        event_time = baseline_scale * (e * np.exp(-lp)) ** (1.0 / shape)

        censor_time = np.full(n_patients, float(follow_up))
        if dropout_rate > 0:
            censor_time = np.minimum(censor_time, rng.exponential(1.0 / dropout_rate, n_patients))

        event = (event_time <= censor_time).astype(int)
        time = np.minimum(event_time, censor_time)

        return pd.DataFrame(
            {
                "patient_id": np.arange(1, n_patients + 1),
                "treatment": treatment,
                "age": age,
                "sex": sex,
                "time": time,
                "event": event,
            }
        )

    def __repr__(self) -> str:
        return (
            f"TrialSimulator(seed={self.seed}, treated={self.treated!r}, "
            f"control={self.control!r})"
        )
