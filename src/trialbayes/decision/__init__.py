"""
Decision metrics computed from posterior draws.

- point_estimate: posterior mean
- credible_interval: equal-tailed interval at a chosen level
- exceedance_probabilities: P(θ > t) per clinical threshold
- summarize: EffectSummary of one parameter or weighted contrast

Subgroup fitting lives in trialbayes.decision.subgroups.
"""

from trialbayes.decision.metrics import (
    EffectSummary,
    credible_interval,
    exceedance_probabilities,
    point_estimate,
    summarize,
)

__all__ = [
    "EffectSummary",
    "point_estimate",
    "credible_interval",
    "exceedance_probabilities",
    "summarize",
]
