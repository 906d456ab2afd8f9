"""
Gaussian linear outcome model.

    y ~ Normal(X β, σ)

β holds the intercept and one coefficient per design column, the treatment
indicator included. Default priors follow the autoscaled weakly informative
scheme: β from autoscaled_coefficient_priors, σ ~ Exponential(1 / sd(y)).
"""

import math
from typing import Dict, Mapping, Optional

import numpy as np

from trialbayes.cohort import Cohort
from trialbayes.models.base import ModelSpec, Values, autoscaled_coefficient_priors
from trialbayes.models.design import DesignSpec
from trialbayes.models.priors import POSITIVE, REAL, Exponential, Prior

_HALF_LOG_2PI = 0.5 * math.log(2.0 * math.pi)


class GaussianModel(ModelSpec):
    """Linear regression of a continuous outcome."""

    family = "gaussian"

    def __init__(
        self,
        cohort: Cohort,
        design: DesignSpec,
        outcome: str,
        priors: Optional[Mapping[str, Prior]] = None,
    ) -> None:
        super().__init__(cohort, design, priors)
        self.outcome = outcome
        self.y = cohort.numeric(outcome)
        self._X = self.design.values
        self._p = self.design.n_columns

        sy = float(np.std(self.y))
        defaults: Dict[str, Prior] = autoscaled_coefficient_priors(
            self.design, self.y, design.intercept_name
        )
        defaults["sigma"] = Exponential(1.0 / sy if sy > 0 else 1.0)

        self._bind_parameters(
            [(name, REAL) for name in self.design.columns] + [("sigma", POSITIVE)],
            defaults,
        )

    def log_likelihood(self, values: Values) -> float:
        full = self.vector(values)
        beta = full[: self._p]
        sigma = full[self._p]
        if not sigma > 0:
            return -math.inf
        resid = self.y - self._X @ beta
        n = len(self.y)
        return float(-n * (_HALF_LOG_2PI + math.log(sigma)) - 0.5 * (resid @ resid) / sigma**2)

    def _initial_values(self) -> Dict[str, float]:
        beta, *_ = np.linalg.lstsq(self._X, self.y, rcond=None)
        resid = self.y - self._X @ beta
        sigma = float(np.std(resid))
        values = {name: float(b) for name, b in zip(self.design.columns, beta)}
        values["sigma"] = sigma if sigma > 0 else 1.0
        return values

    def _identity_parts(self):
        return super()._identity_parts() + [self.outcome]

    def rebind(self, cohort: Cohort) -> "GaussianModel":
        return GaussianModel(cohort, self.design_spec, self.outcome, priors=self.priors)
