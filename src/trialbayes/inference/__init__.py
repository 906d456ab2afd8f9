"""
MCMC inference: sampling, convergence diagnostics and posterior storage.

**Usage:**
```python
from trialbayes.inference import AdaptiveMetropolisSampler, ConvergenceChecker, PosteriorStore

sampler = AdaptiveMetropolisSampler(chains=4, draws=1000, warmup=1000)
chains = sampler.sample(model)

report = ConvergenceChecker().check(
    np.stack([c.draws for c in chains]), model.parameter_names
)
posterior = PosteriorStore.merge(chains, model, report)
```

**Key Classes:**
- AdaptiveMetropolisSampler: parallel adaptive random-walk Metropolis chains
- PendingFit: chains of one fit in flight (join or cancel as a unit)
- DiagnosticsComputer: split R-hat and effective sample size
- ConvergenceChecker: thresholds diagnostics into ConvergenceWarnings
- PosteriorDraws / PosteriorStore: merged draws and the fit cache
"""

from trialbayes.inference.diagnostics import (
    ConvergenceChecker,
    ConvergenceReport,
    DiagnosticsComputer,
)
from trialbayes.inference.posterior import PosteriorDraws, PosteriorStore, cache_key
from trialbayes.inference.sampler import (
    AdaptiveMetropolisSampler,
    ChainResult,
    PendingFit,
    derive_seed,
)

__all__ = [
    "AdaptiveMetropolisSampler",
    "ChainResult",
    "PendingFit",
    "derive_seed",
    "DiagnosticsComputer",
    "ConvergenceChecker",
    "ConvergenceReport",
    "PosteriorDraws",
    "PosteriorStore",
    "cache_key",
]
