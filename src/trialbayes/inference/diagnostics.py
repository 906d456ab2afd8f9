"""
Convergence diagnostics for multi-chain MCMC output.

Key diagnostics:
- Split R-hat (potential scale reduction): each chain is cut in half and
  between-half variance is compared with within-half variance. Values near
  1 indicate the chains agree; the default warning threshold is 1.1.
- ESS (effective sample size): draws discounted for autocorrelation, using
  the multi-chain autocorrelation estimate with Geyer's initial monotone
  sequence truncation.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from trialbayes.config import ConvergenceConfig
from trialbayes.errors import ConvergenceWarning
from trialbayes.logging_utils import get_logger

logger = get_logger(__name__)


class DiagnosticsComputer:
    """Compute R-hat and effective sample size from posterior samples."""

    @staticmethod
    def split_chains(posterior_samples: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Split each chain into two halves.

        Parameters
        ----------
        posterior_samples : NDArray[np.float64]
            Shape (chains, draws). An odd trailing draw is dropped.

        Returns
        -------
        halves : NDArray[np.float64]
            Shape (2 * chains, draws // 2).
        """
        samples = np.atleast_2d(np.asarray(posterior_samples, dtype=np.float64))
        half = samples.shape[1] // 2
        return np.concatenate([samples[:, :half], samples[:, half : 2 * half]], axis=0)

    @staticmethod
    def rhat(posterior_samples: NDArray[np.float64], split: bool = True) -> float:
        """
        Compute R-hat (potential scale reduction factor).

        Parameters
        ----------
        posterior_samples : NDArray[np.float64]
            Posterior samples, shape (chains, draws).
        split : bool
            Split chains in half first (detects within-chain drift and works
            with a single chain). Default True.

        Returns
        -------
        rhat : float
            Potential scale reduction factor. 1.0 for identical constant
            chains, inf for constant chains stuck at different values.
        """
        samples = np.atleast_2d(np.asarray(posterior_samples, dtype=np.float64))
        if split:
            samples = DiagnosticsComputer.split_chains(samples)
        n_chains, n_draws = samples.shape

        if n_chains < 2:
            raise ValueError("Need at least 2 chains (or split halves) for Rhat")
        if n_draws < 2:
            raise ValueError(f"Need at least 2 draws per sequence for Rhat. Got {n_draws}")

        # Between-chain variance
        chain_means = np.mean(samples, axis=1)
        B = n_draws * np.var(chain_means, ddof=1)

        # Within-chain variance
        W = np.mean(np.var(samples, axis=1, ddof=1))

        var_hat = ((n_draws - 1) / n_draws) * W + B / n_draws

        if W > 0:
            return float(np.sqrt(var_hat / W))
        # every chain constant
        return 1.0 if B == 0 else float("inf")

    @staticmethod
    def autocovariance(x: NDArray[np.float64]) -> NDArray[np.float64]:
        """Biased autocovariance along the last axis via FFT."""
        x = np.asarray(x, dtype=np.float64)
        n = x.shape[-1]
        centered = x - x.mean(axis=-1, keepdims=True)
        size = 1 << int(np.ceil(np.log2(2 * n)))
        f = np.fft.rfft(centered, n=size, axis=-1)
        return np.fft.irfft(f * np.conjugate(f), n=size, axis=-1)[..., :n] / n

    @staticmethod
    def ess(posterior_samples: NDArray[np.float64], split: bool = True) -> float:
        """
        Compute effective sample size (ESS).

        Parameters
        ----------
        posterior_samples : NDArray[np.float64]
            Samples of shape (chains, draws) or a single chain (draws,).
        split : bool
            Split chains in half before estimating. Default True.

        Returns
        -------
        ess : float
            Effective sample size; the total draw count for constant samples.
        """
        samples = np.atleast_2d(np.asarray(posterior_samples, dtype=np.float64))
        total = samples.size
        if split and samples.shape[1] >= 8:
            samples = DiagnosticsComputer.split_chains(samples)
        m, n = samples.shape

        if n < 4:
            return float(total)

        chain_vars = np.var(samples, axis=1, ddof=1)
        if np.mean(chain_vars) < 1e-12 * max(1.0, float(np.mean(samples**2))):
            return float(total)  # No variation

        acov = DiagnosticsComputer.autocovariance(samples)
        acov_mean = acov.mean(axis=0)
        mean_var = acov_mean[0] * n / (n - 1)
        var_plus = mean_var * (n - 1) / n
        if m > 1:
            var_plus += np.var(samples.mean(axis=1), ddof=1)

        rho = np.zeros(n)
        rho[0] = 1.0
        rho_even = 1.0
        rho_odd = 1.0 - (mean_var - acov_mean[1]) / var_plus
        rho[1] = rho_odd

        # Geyer's initial positive sequence over pairs of lags
        t = 1
        while t < n - 3 and rho_even + rho_odd > 0:
            rho_even = 1.0 - (mean_var - acov_mean[t + 1]) / var_plus
            rho_odd = 1.0 - (mean_var - acov_mean[t + 2]) / var_plus
            if rho_even + rho_odd >= 0:
                rho[t + 1] = rho_even
                rho[t + 2] = rho_odd
            t += 2
        max_t = t
        if rho_even > 0:
            rho[max_t + 1] = rho_even

        # Initial monotone sequence
        t = 1
        while t <= max_t - 2:
            if rho[t + 1] + rho[t + 2] > rho[t - 1] + rho[t]:
                rho[t + 1] = (rho[t - 1] + rho[t]) / 2
                rho[t + 2] = rho[t + 1]
            t += 2

        n_eff = m * n
        tau = -1.0 + 2.0 * np.sum(rho[:max_t]) + np.sum(rho[max_t : max_t + 2])
        tau = max(tau, 1.0 / np.log10(n_eff))
        return float(n_eff / tau)


@dataclass(frozen=True)
class ConvergenceReport:
    """Per-parameter diagnostics and the resulting verdict."""

    rhat: Dict[str, float]
    ess: Dict[str, float]
    acceptance_rates: Tuple[float, ...] = ()
    warnings: Tuple[ConvergenceWarning, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return not self.warnings

    @property
    def max_rhat(self) -> float:
        return max(self.rhat.values()) if self.rhat else float("nan")

    @property
    def min_ess(self) -> float:
        return min(self.ess.values()) if self.ess else float("nan")

    def to_dict(self) -> Dict[str, object]:
        return {
            "ok": self.ok,
            "rhat": dict(self.rhat),
            "ess": dict(self.ess),
            "acceptance_rates": list(self.acceptance_rates),
            "warnings": [str(w) for w in self.warnings],
        }


class ConvergenceChecker:
    """
    Decide whether merged draws are trustworthy.

    R-hat above rhat_threshold or ESS below min_ess produces a
    ConvergenceWarning. Warnings are returned as data, never raised.
    """

    def __init__(self, rhat_threshold: float = 1.1, min_ess: float = 100.0) -> None:
        if not rhat_threshold > 1.0:
            raise ValueError(f"rhat_threshold must be > 1. Got {rhat_threshold}")
        if min_ess < 0:
            raise ValueError(f"min_ess must be >= 0. Got {min_ess}")
        self.rhat_threshold = rhat_threshold
        self.min_ess = min_ess

    @classmethod
    def from_config(cls, config: Optional[ConvergenceConfig]) -> "ConvergenceChecker":
        config = config or ConvergenceConfig()
        return cls(rhat_threshold=config.rhat_threshold, min_ess=config.min_ess)

    def check(
        self,
        values: NDArray[np.float64],
        names: Sequence[str],
        acceptance_rates: Sequence[float] = (),
    ) -> ConvergenceReport:
        """
        Diagnose draws of shape (chains, draws, parameters).
        """
        values = np.asarray(values, dtype=np.float64)
        if values.ndim != 3 or values.shape[2] != len(names):
            raise ValueError(
                f"values must have shape (chains, draws, {len(names)}). Got {values.shape}"
            )

        rhats: Dict[str, float] = {}
        esss: Dict[str, float] = {}
        warnings = []
        for k, name in enumerate(names):
            samples = values[:, :, k]
            r = DiagnosticsComputer.rhat(samples)
            e = DiagnosticsComputer.ess(samples)
            rhats[name] = r
            esss[name] = e

            if not np.isfinite(r) or r > self.rhat_threshold:
                warnings.append(
                    ConvergenceWarning(
                        f"R-hat for '{name}' is {r:.3f} (threshold {self.rhat_threshold})",
                        parameter=name,
                    )
                )
            if not np.isfinite(e) or e < self.min_ess:
                warnings.append(
                    ConvergenceWarning(
                        f"Effective sample size for '{name}' is {e:.1f} (minimum {self.min_ess})",
                        parameter=name,
                    )
                )

        for w in warnings:
            logger.warning("%s", w)

        return ConvergenceReport(
            rhat=rhats,
            ess=esss,
            acceptance_rates=tuple(float(a) for a in acceptance_rates),
            warnings=tuple(warnings),
        )
