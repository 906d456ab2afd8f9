"""
Weibull survival model with right-censoring.

Linear predictor η = X β, shape α > 0, scale λ = exp(-η / α), so the hazard
is proportional in exp(η):

    h(t) = α t^(α-1) exp(η)
    H(t) = (t / λ)^α = exp(α log t + η)           cumulative hazard
    log f(t) = log h(t) - H(t)                     event observed
    log S(t) = -H(t)                               right-censored

Event rows contribute the log-density, censored rows only the log-survival.
"""

import math
from typing import Dict, Mapping, Optional

import numpy as np
import pandas as pd

from trialbayes.cohort import Cohort
from trialbayes.errors import ValidationError
from trialbayes.models.base import ModelSpec, Values
from trialbayes.models.design import DesignSpec
from trialbayes.models.priors import POSITIVE, REAL, Exponential, Normal, Prior


class WeibullModel(ModelSpec):
    """
    Censored Weibull regression.

    Parameters
    ----------
    cohort : Cohort
        One row per patient.
    design : DesignSpec
        Covariates of the linear predictor.
    time : str
        Time-to-event (or censoring) column, strictly positive.
    event : str
        Event indicator column: 1 = event observed, 0 = censored.
    priors : Mapping[str, Prior], optional
        Overrides by parameter name. Defaults: intercept
        Normal(-log(mean t), 5), coefficients Normal(0, 2.5), shape
        Exponential(1).
    """

    family = "weibull_censored"

    def __init__(
        self,
        cohort: Cohort,
        design: DesignSpec,
        time: str,
        event: str,
        priors: Optional[Mapping[str, Prior]] = None,
    ) -> None:
        super().__init__(cohort, design, priors)
        self.time_column = time
        self.event_column = event

        self.times = cohort.numeric(time)
        bad = self.times <= 0
        if bad.any():
            row = cohort.frame.index[int(np.argmax(bad))]
            raise ValidationError(
                f"Survival time must be > 0. Got {self.times[bad][0]}", row=row, column=time
            )
        self.events = self._event_indicator(cohort, event)
        self._log_t = np.log(self.times)
        self._X = self.design.values
        self._p = self.design.n_columns

        defaults: Dict[str, Prior] = {}
        for name in self.design.columns:
            if name == design.intercept_name:
                defaults[name] = Normal(-math.log(float(np.mean(self.times))), 5.0)
            else:
                defaults[name] = Normal(0.0, 2.5)
        defaults["shape"] = Exponential(1.0)

        self._bind_parameters(
            [(name, REAL) for name in self.design.columns] + [("shape", POSITIVE)],
            defaults,
        )

    @staticmethod
    def _event_indicator(cohort: Cohort, column: str) -> np.ndarray:
        series = cohort.values(column)
        numeric = pd.to_numeric(
            series.map(lambda v: int(v) if isinstance(v, (bool, np.bool_)) else v),
            errors="coerce",
        )
        bad = ~numeric.isin([0, 1])
        if bad.any():
            row = series.index[int(np.argmax(bad.to_numpy()))]
            raise ValidationError(
                f"Event indicator must be 0 or 1. Got {series.loc[row]!r}", row=row, column=column
            )
        events = numeric.to_numpy(dtype=np.int64).astype(bool)
        events.flags.writeable = False
        return events

    @property
    def n_events(self) -> int:
        return int(self.events.sum())

    def log_likelihood(self, values: Values) -> float:
        full = self.vector(values)
        beta = full[: self._p]
        alpha = full[self._p]
        if not alpha > 0:
            return -math.inf

        eta = self._X @ beta
        cum_hazard = np.exp(alpha * self._log_t + eta)
        log_hazard = math.log(alpha) + (alpha - 1.0) * self._log_t + eta

        # every row contributes log S(t) = -H(t); events add log h(t)
        return float(np.sum(log_hazard[self.events]) - np.sum(cum_hazard))

    def scale(self, values: Values) -> np.ndarray:
        """Per-row Weibull scale λ = exp(-η / α)."""
        full = self.vector(values)
        return np.exp(-(self._X @ full[: self._p]) / full[self._p])

    def _initial_values(self) -> Dict[str, float]:
        values = {name: 0.0 for name in self.design.columns}
        if self.design_spec.intercept:
            # exponential fit: events / total exposure
            rate = max(self.n_events, 1) / float(np.sum(self.times))
            values[self.design_spec.intercept_name] = math.log(rate)
        values["shape"] = 1.0
        return values

    def _identity_parts(self):
        return super()._identity_parts() + [self.time_column, self.event_column]

    def rebind(self, cohort: Cohort) -> "WeibullModel":
        return WeibullModel(cohort, self.design_spec, self.time_column, self.event_column, priors=self.priors)
