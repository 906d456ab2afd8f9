"""
Fit pipeline: ModelSpec -> Sampler -> Convergence Checker -> Posterior Store.

```python
from trialbayes import EngineConfig, analyze

config = EngineConfig.from_mapping({"sampler": {"chains": 2, "draws": 500}})
summary = analyze(model, "treatment", config)
```
"""

from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Mapping, Optional, Sequence, Union

import numpy as np

from trialbayes.config import EngineConfig
from trialbayes.decision.metrics import EffectSummary, summarize
from trialbayes.inference.diagnostics import ConvergenceChecker
from trialbayes.inference.posterior import PosteriorDraws, PosteriorStore, cache_key
from trialbayes.inference.sampler import AdaptiveMetropolisSampler, PendingFit
from trialbayes.logging_utils import get_logger
from trialbayes.models.base import ModelSpec

logger = get_logger(__name__)


def start_fit(
    model: ModelSpec,
    executor: Executor,
    config: Optional[EngineConfig] = None,
    partition_index: int = 0,
    label: Optional[str] = None,
) -> PendingFit:
    """Submit every chain of one fit to executor without waiting."""
    config = config or EngineConfig()
    sampler = AdaptiveMetropolisSampler(config.sampler)
    return sampler.submit(model, executor, partition_index=partition_index, label=label)


def finish_fit(
    model: ModelSpec,
    pending: PendingFit,
    config: Optional[EngineConfig] = None,
    store: Optional[PosteriorStore] = None,
    partition_index: int = 0,
) -> PosteriorDraws:
    """
    Wait for every chain, check convergence and merge the draws.

    Raises whatever the fit raised (FatalSamplerError, FitCancelledError);
    nothing is stored for a failed fit.
    """
    config = config or EngineConfig()
    chains = pending.result()

    checker = ConvergenceChecker.from_config(config.convergence)
    report = checker.check(
        np.stack([c.draws for c in chains], axis=0),
        model.parameter_names,
        acceptance_rates=[c.acceptance_rate for c in chains],
    )
    posterior = PosteriorStore.merge(chains, model, report)
    if store is not None:
        store.put(cache_key(model.fingerprint, config.sampler, partition_index), posterior)

    logger.info(
        "Fit %s complete: %d draws, max R-hat %.3f, min ESS %.0f, convergence_ok=%s",
        pending.label,
        posterior.total_draws,
        report.max_rhat,
        report.min_ess,
        report.ok,
    )
    return posterior


def fit(
    model: ModelSpec,
    config: Optional[EngineConfig] = None,
    store: Optional[PosteriorStore] = None,
    partition_index: int = 0,
) -> PosteriorDraws:
    """
    Fit one model and return its merged, diagnosed draws.

    Parameters
    ----------
    model : ModelSpec
        Model bound to its cohort.
    config : EngineConfig, optional
        Sampler and convergence settings. Defaults to EngineConfig().
    store : PosteriorStore, optional
        Cache consulted before sampling and filled afterwards.
    partition_index : int
        Seed partition; 0 for the overall cohort.

    Returns
    -------
    posterior : PosteriorDraws
    """
    config = config or EngineConfig()
    if store is not None:
        cached = store.get(cache_key(model.fingerprint, config.sampler, partition_index))
        if cached is not None:
            logger.debug("Posterior cache hit for %r", model)
            return cached

    workers = config.sampler.max_workers or config.sampler.chains
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="chain") as executor:
        pending = start_fit(model, executor, config, partition_index)
        return finish_fit(model, pending, config, store, partition_index)


def analyze(
    model: ModelSpec,
    parameter: Union[str, Mapping[str, float]],
    config: Optional[EngineConfig] = None,
    store: Optional[PosteriorStore] = None,
    thresholds: Optional[Sequence[float]] = None,
    label: Optional[str] = None,
) -> EffectSummary:
    """Fit model and summarize one parameter (or weighted contrast)."""
    config = config or EngineConfig()
    posterior = fit(model, config, store)
    return summarize(
        posterior,
        parameter,
        thresholds=config.decision.thresholds if thresholds is None else thresholds,
        ci_level=config.decision.ci_level,
        label=label,
    )
