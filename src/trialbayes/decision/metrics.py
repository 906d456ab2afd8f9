"""
Decision metrics from posterior draws.

All metrics are computed from the sorted draws, so they do not depend on the
order in which draws are stored:

- point estimate: posterior mean
- credible interval at level 1 - α: empirical (α/2, 1 - α/2) quantiles
- exceedance: P(θ > t) as the fraction of draws strictly above t, which is
  non-increasing in t by construction
"""

from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, Field

from trialbayes.inference.posterior import PosteriorDraws


class EffectSummary(BaseModel):
    """Posterior summary of one parameter or derived contrast."""

    model_config = ConfigDict(frozen=True)

    parameter: str
    mean: float
    sd: float
    ci_lower: float
    ci_upper: float
    ci_level: float = Field(0.95, gt=0.0, lt=1.0)
    probabilities: Dict[float, float] = Field(default_factory=dict)
    convergence_ok: bool = True
    n_draws: int = 0

    def probability_above(self, threshold: float) -> float:
        try:
            return self.probabilities[float(threshold)]
        except KeyError:
            raise KeyError(
                f"No exceedance probability for threshold {threshold}; "
                f"available: {sorted(self.probabilities)}"
            ) from None


def _sorted_draws(draws: Sequence[float]) -> NDArray[np.float64]:
    x = np.asarray(draws, dtype=np.float64).reshape(-1)
    if x.size == 0:
        raise ValueError("No draws")
    if not np.all(np.isfinite(x)):
        raise ValueError("Draws contain non-finite values")
    return np.sort(x)


def point_estimate(draws: Sequence[float]) -> float:
    """Posterior mean."""
    return float(np.mean(_sorted_draws(draws)))


def credible_interval(draws: Sequence[float], level: float = 0.95) -> Tuple[float, float]:
    """Equal-tailed credible interval: the (α/2, 1 - α/2) quantiles."""
    if not 0.0 < level < 1.0:
        raise ValueError(f"level must be in (0, 1). Got {level}")
    alpha = 1.0 - level
    lower, upper = np.quantile(_sorted_draws(draws), [alpha / 2, 1 - alpha / 2])
    return float(lower), float(upper)


def exceedance_probabilities(
    draws: Sequence[float], thresholds: Sequence[float]
) -> Dict[float, float]:
    """P(θ > t) for every threshold, keyed by threshold in ascending order."""
    x = _sorted_draws(draws)
    ts = sorted(set(float(t) for t in thresholds))
    # draws strictly above t = n - (number of draws <= t)
    at_or_below = np.searchsorted(x, ts, side="right")
    return {t: float((x.size - k) / x.size) for t, k in zip(ts, at_or_below)}


def summarize(
    posterior: Union[PosteriorDraws, Sequence[float]],
    parameter: Union[str, Mapping[str, float]],
    thresholds: Sequence[float] = (0.0,),
    ci_level: float = 0.95,
    label: Optional[str] = None,
    convergence_ok: Optional[bool] = None,
) -> EffectSummary:
    """
    Summarize one parameter or a weighted contrast of parameters.

    Parameters
    ----------
    posterior : PosteriorDraws or array-like
        Merged draws, or a plain vector of draws.
    parameter : str or Mapping[str, float]
        Parameter name, or weights for PosteriorDraws.linear_combination.
    thresholds : Sequence[float]
        Decision thresholds t for P(θ > t).
    ci_level : float
        Credible-interval mass. Default 0.95.
    label : str, optional
        Name reported in the summary (defaults to the parameter name).
    convergence_ok : bool, optional
        Override; defaults to the PosteriorDraws verdict (True for plain arrays).
    """
    if isinstance(posterior, PosteriorDraws):
        if isinstance(parameter, str):
            draws = posterior[parameter]
        else:
            draws = posterior.linear_combination(parameter)
        if convergence_ok is None:
            convergence_ok = posterior.convergence_ok
    else:
        draws = np.asarray(posterior, dtype=np.float64)
        if convergence_ok is None:
            convergence_ok = True

    if label is None:
        if isinstance(parameter, str):
            label = parameter
        else:
            label = " + ".join(f"{w:g}*{name}" for name, w in parameter.items())

    x = _sorted_draws(draws)
    lower, upper = credible_interval(x, ci_level)
    return EffectSummary(
        parameter=label,
        mean=float(np.mean(x)),
        sd=float(np.std(x, ddof=1)) if x.size > 1 else 0.0,
        ci_lower=lower,
        ci_upper=upper,
        ci_level=ci_level,
        probabilities=exceedance_probabilities(x, thresholds),
        convergence_ok=bool(convergence_ok),
        n_draws=int(x.size),
    )
