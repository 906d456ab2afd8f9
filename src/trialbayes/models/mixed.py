"""
Longitudinal Gaussian model with subject-level random intercept and slope.

Mathematical model:
    y_i = X_i β + u0[s_i] + u1[s_i] t_i + ε_i,     ε_i ~ Normal(0, σ)
    (u0[j], u1[j]) ~ Normal(0, Σ)
    Σ = diag(τ) Ω diag(τ),   Ω = [[1, ρ], [ρ, 1]],   ρ ∈ (-1, 1)

The random effects are integrated out per subject j with records i ∈ j:

    y_j ~ MVN(X_j β, Z_j Σ Z_jᵀ + σ² I),   Z_j = [1, t_j]

which leaves β, σ, τ_intercept, τ_slope and ρ as the sampled parameters and
targets the same posterior for them. Subjects are batched by record count so
each evaluation is a handful of stacked Cholesky factorizations.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Union

import numpy as np
from numpy.typing import NDArray

from trialbayes.cohort import Cohort
from trialbayes.errors import ConfigurationError
from trialbayes.models.base import ModelSpec, Values, autoscaled_coefficient_priors
from trialbayes.models.design import DesignSpec, TimeCovariate
from trialbayes.models.priors import CORRELATION, POSITIVE, REAL, HalfStudentT, LKJCorr, Prior

_LOG_2PI = math.log(2.0 * math.pi)

RANDOM_EFFECT_PARAMETERS = ("sigma", "tau_intercept", "tau_slope", "rho")


@dataclass(frozen=True)
class _Block:
    """Subjects sharing the same number of records."""

    subjects: NDArray[np.int64]  # (m,) 0-based subject codes
    y: NDArray[np.float64]  # (m, k)
    X: NDArray[np.float64]  # (m, k, p)
    t: NDArray[np.float64]  # (m, k)


class RandomEffectsModel(ModelSpec):
    """
    Gaussian model with per-subject random intercept and slope.

    Parameters
    ----------
    cohort : Cohort
        Long-format records, one row per subject-timepoint.
    design : DesignSpec
        Fixed effects (e.g. treatment, time, treatment:time).
    outcome : str
        Continuous outcome column.
    time : TimeCovariate or str
        Time offset used by the random slope.
    subject_column : str, optional
        Subject identifier column. Defaults to cohort.subject_column.
    priors : Mapping[str, Prior], optional
        Overrides by parameter name.
    """

    family = "gaussian_random_effects"

    def __init__(
        self,
        cohort: Cohort,
        design: DesignSpec,
        outcome: str,
        time: Union[TimeCovariate, str],
        subject_column: Optional[str] = None,
        priors: Optional[Mapping[str, Prior]] = None,
    ) -> None:
        super().__init__(cohort, design, priors)
        self.outcome = outcome
        self.time = time if isinstance(time, TimeCovariate) else TimeCovariate(time)
        self.subject_column = subject_column or cohort.subject_column
        if self.subject_column is None:
            raise ConfigurationError("Random-effects model needs a subject column")

        self.y = cohort.numeric(outcome)
        self.t = self.time.offsets(cohort)
        self.subjects = cohort.subject_index(self.subject_column)
        self._p = self.design.n_columns
        self._blocks = self._build_blocks()

        sy = float(np.std(self.y))
        scale = sy if sy > 0 else 1.0
        defaults: Dict[str, Prior] = autoscaled_coefficient_priors(
            self.design, self.y, design.intercept_name
        )
        defaults.update(
            sigma=HalfStudentT(3.0, scale),
            tau_intercept=HalfStudentT(3.0, scale),
            tau_slope=HalfStudentT(3.0, scale),
            rho=LKJCorr(1.0),
        )

        self._bind_parameters(
            [(name, REAL) for name in self.design.columns]
            + [
                ("sigma", POSITIVE),
                ("tau_intercept", POSITIVE),
                ("tau_slope", POSITIVE),
                ("rho", CORRELATION),
            ],
            defaults,
        )

    def _build_blocks(self) -> List[_Block]:
        codes = self.subjects.codes - 1
        order = np.argsort(codes, kind="stable")
        counts = np.bincount(codes, minlength=self.subjects.n_subjects)
        rows_by_subject = np.split(order, np.cumsum(counts)[:-1])

        grouped: Dict[int, List[int]] = {}
        for j, rows in enumerate(rows_by_subject):
            grouped.setdefault(len(rows), []).append(j)

        X = self.design.values
        blocks = []
        for k in sorted(grouped):
            subjects = np.array(grouped[k], dtype=np.int64)
            rows = np.vstack([rows_by_subject[j] for j in subjects])
            blocks.append(_Block(subjects=subjects, y=self.y[rows], X=X[rows], t=self.t[rows]))
        return blocks

    @property
    def n_subjects(self) -> int:
        return self.subjects.n_subjects

    def _split(self, full: np.ndarray):
        p = self._p
        return full[:p], full[p], full[p + 1], full[p + 2], full[p + 3]

    def _marginal_cov(self, block: _Block, sigma, tau0, tau1, rho) -> NDArray[np.float64]:
        ta = block.t[:, :, None]
        tb = block.t[:, None, :]
        V = tau0**2 + rho * tau0 * tau1 * (ta + tb) + tau1**2 * ta * tb
        k = block.t.shape[1]
        V = V + sigma**2 * np.eye(k)
        return V

    def log_likelihood(self, values: Values) -> float:
        full = self.vector(values)
        beta, sigma, tau0, tau1, rho = self._split(full)
        if not (sigma > 0 and tau0 > 0 and tau1 > 0 and -1 < rho < 1):
            return -math.inf

        total = 0.0
        for block in self._blocks:
            m, k = block.y.shape
            resid = block.y - block.X @ beta
            V = self._marginal_cov(block, sigma, tau0, tau1, rho)
            try:
                L = np.linalg.cholesky(V)
            except np.linalg.LinAlgError:
                return -math.inf
            z = np.linalg.solve(L, resid[:, :, None])[:, :, 0]
            log_det = 2.0 * np.sum(np.log(np.diagonal(L, axis1=1, axis2=2)))
            total += -0.5 * (m * k * _LOG_2PI + log_det + np.sum(z * z))
        return float(total)

    def random_effects_covariance(self, values: Values) -> NDArray[np.float64]:
        """Σ = diag(τ) Ω diag(τ) for a parameter draw."""
        _, _, tau0, tau1, rho = self._split(self.vector(values))
        return np.array([[tau0**2, rho * tau0 * tau1], [rho * tau0 * tau1, tau1**2]])

    def conditional_random_effects(self, values: Values) -> NDArray[np.float64]:
        """
        E[(u0_j, u1_j) | y, θ] for every subject, shape (J, 2).

        Row j-1 belongs to subject index j (see Cohort.subject_index).
        """
        full = self.vector(values)
        beta, sigma, tau0, tau1, rho = self._split(full)
        Sigma = self.random_effects_covariance(full)

        out = np.zeros((self.n_subjects, 2))
        for block in self._blocks:
            resid = block.y - block.X @ beta
            V = self._marginal_cov(block, sigma, tau0, tau1, rho)
            w = np.linalg.solve(V, resid[:, :, None])[:, :, 0]  # V^-1 r, (m, k)
            Zt_w = np.stack([w.sum(axis=1), (block.t * w).sum(axis=1)], axis=1)  # (m, 2)
            out[block.subjects] = Zt_w @ Sigma.T
        return out

    def _initial_values(self) -> Dict[str, float]:
        X = self.design.values
        beta, *_ = np.linalg.lstsq(X, self.y, rcond=None)
        resid = self.y - X @ beta
        sd = float(np.std(resid))
        sd = sd if sd > 0 else 1.0
        values = {name: float(b) for name, b in zip(self.design.columns, beta)}
        t_sd = float(np.std(self.t))
        values.update(
            sigma=sd / 2,
            tau_intercept=sd / 2,
            tau_slope=sd / (2 * t_sd) if t_sd > 0 else sd / 2,
            rho=0.0,
        )
        return values

    def _identity_parts(self):
        return super()._identity_parts() + [self.outcome, repr(self.time), str(self.subject_column)]

    def rebind(self, cohort: Cohort) -> "RandomEffectsModel":
        return RandomEffectsModel(
            cohort,
            self.design_spec,
            self.outcome,
            self.time,
            subject_column=self.subject_column,
            priors=self.priors,
        )
