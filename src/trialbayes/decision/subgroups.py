"""
Subgroup analysis: the same model fitted independently per cohort partition.

The Overall cohort is always fitted first (partition index 0); declared
partitions follow in declaration order (indices 1..K). There is no pooling
across partitions. Every chain of every fit is submitted to one shared worker
pool before any fit is joined, so partitions run concurrently without nested
pools.

```python
from trialbayes import Partition, SubgroupOrchestrator, age_bands

partitions = [Partition.equals("sex", "Male"), Partition.equals("sex", "Female")]
partitions += age_bands("age", breaks=[50, 65])
results = SubgroupOrchestrator(model.rebind, "treatment", config).run(cohort, partitions)
```
"""

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict

from trialbayes.cohort import Cohort
from trialbayes.config import EngineConfig
from trialbayes.decision.metrics import EffectSummary, summarize
from trialbayes.errors import (
    ConfigurationError,
    FatalSamplerError,
    FitCancelledError,
    ValidationError,
)
from trialbayes.inference.posterior import PosteriorDraws, PosteriorStore, cache_key
from trialbayes.logging_utils import get_logger
from trialbayes.models.base import ModelSpec
from trialbayes.pipeline import finish_fit, start_fit

logger = get_logger(__name__)

OVERALL = "Overall"

Predicate = Callable[[pd.DataFrame], Sequence[bool]]


@dataclass(frozen=True)
class Partition:
    """
    A named row filter over the cohort.

    Attributes
    ----------
    key : str
        Label reported in results (must be unique within one run).
    predicate : Callable[[pd.DataFrame], Sequence[bool]]
        Row mask over the cohort frame. Missing values count as False.
    variable : str, optional
        Grouping variable, e.g. "sex" or "age".
    """

    key: str
    predicate: Predicate
    variable: Optional[str] = None

    @classmethod
    def equals(cls, column: str, value: object, key: Optional[str] = None) -> "Partition":
        return cls(
            key=key or f"{column}={value}",
            predicate=lambda frame: frame[column] == value,
            variable=column,
        )

    @classmethod
    def between(
        cls,
        column: str,
        lower: Optional[float] = None,
        upper: Optional[float] = None,
        key: Optional[str] = None,
    ) -> "Partition":
        """Rows with lower < value <= upper. A None bound is unbounded."""
        lo = -np.inf if lower is None else float(lower)
        hi = np.inf if upper is None else float(upper)
        if not lo < hi:
            raise ConfigurationError(f"Empty interval ({lo}, {hi}] for '{column}'")

        def predicate(frame: pd.DataFrame):
            x = pd.to_numeric(frame[column], errors="coerce")
            return (x > lo) & (x <= hi)

        return cls(key=key or f"{column} in ({lo:g}, {hi:g}]", predicate=predicate, variable=column)

    @classmethod
    def where(cls, key: str, predicate: Predicate, variable: Optional[str] = None) -> "Partition":
        return cls(key=key, predicate=predicate, variable=variable)

    def mask(self, cohort: Cohort) -> np.ndarray:
        """
        Boolean row mask over cohort.

        Any failure of the predicate, or a mask of the wrong shape, is
        reported as ConfigurationError naming the partition.
        """
        frame = cohort.frame
        try:
            raw = self.predicate(frame)
        except KeyError as e:
            raise ConfigurationError(
                f"Partition '{self.key}' refers to a missing column: {e}"
            ) from e
        except Exception as e:
            raise ConfigurationError(
                f"Partition '{self.key}' predicate failed: {type(e).__name__}: {e}"
            ) from e
        shape = np.shape(raw)
        if shape != (len(cohort),):
            raise ConfigurationError(
                f"Partition '{self.key}' mask has shape {shape}, expected ({len(cohort)},)"
            )
        return pd.Series(raw, index=frame.index).eq(True).to_numpy()


def age_bands(
    column: str,
    breaks: Sequence[float],
    labels: Optional[Sequence[str]] = None,
) -> List[Partition]:
    """
    Right-closed bands covering the real line.

    breaks=[50, 65] gives (-inf, 50], (50, 65] and (65, inf), so every row
    with a numeric value falls in exactly one band.
    """
    edges = [float(b) for b in breaks]
    if not edges:
        raise ConfigurationError("age_bands needs at least one break")
    if any(b >= c for b, c in zip(edges, edges[1:])):
        raise ConfigurationError(f"breaks must be strictly increasing. Got {list(breaks)}")

    bounds = list(zip([None] + edges, edges + [None]))
    if labels is None:
        labels = []
        for lo, hi in bounds:
            if lo is None:
                labels.append(f"{column} <= {hi:g}")
            elif hi is None:
                labels.append(f"{column} > {lo:g}")
            else:
                labels.append(f"{lo:g} < {column} <= {hi:g}")
    if len(labels) != len(bounds):
        raise ConfigurationError(f"Expected {len(bounds)} labels for {len(edges)} breaks. Got {len(labels)}")

    return [Partition.between(column, lo, hi, key=label) for (lo, hi), label in zip(bounds, labels)]


class SubgroupResult(BaseModel):
    """Outcome of one partition fit: a summary, or the error that stopped it."""

    model_config = ConfigDict(frozen=True)

    partition_key: str
    variable: Optional[str] = None
    partition_index: int = 0
    n: int = 0
    low_sample_size: bool = False
    summary: Optional[EffectSummary] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.summary is not None and self.error is None


@dataclass
class _Job:
    key: str
    variable: Optional[str]
    index: int
    cohort: Optional[Cohort] = None
    error: Optional[Exception] = None


class SubgroupOrchestrator:
    """
    Fit one model per partition and summarize the treatment effect.

    Parameters
    ----------
    model_factory : Callable[[Cohort], ModelSpec]
        Builds the model on a cohort, e.g. ``model.rebind`` or a function
        constructing a GaussianModel with fixed design and priors.
    parameter : str or Mapping[str, float]
        Parameter (or weighted contrast) to summarize.
    config : EngineConfig, optional
    store : PosteriorStore, optional
        Shared cache; fits already present are not resampled.
    """

    def __init__(
        self,
        model_factory: Callable[[Cohort], ModelSpec],
        parameter: Union[str, Mapping[str, float]],
        config: Optional[EngineConfig] = None,
        store: Optional[PosteriorStore] = None,
    ) -> None:
        if not callable(model_factory):
            raise ConfigurationError("model_factory must be callable")
        self.model_factory = model_factory
        self.parameter = parameter
        self.config = config or EngineConfig()
        self.store = store

    def _parameter_names(self) -> Tuple[str, ...]:
        if isinstance(self.parameter, str):
            return (self.parameter,)
        return tuple(self.parameter)

    def _jobs(self, cohort: Cohort, partitions: Sequence[Partition]) -> List[_Job]:
        keys = [OVERALL] + [p.key for p in partitions]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate partition keys: {duplicates}")

        jobs = [_Job(OVERALL, None, 0, cohort)]
        for index, partition in enumerate(partitions, start=1):
            job = _Job(partition.key, partition.variable, index)
            try:
                mask = partition.mask(cohort)
            except ConfigurationError as e:
                job.error = e
                jobs.append(job)
                continue
            if not mask.any():
                logger.info("Partition '%s' is empty; skipped", partition.key)
                continue
            job.cohort = cohort.subset(mask, name=partition.key)
            jobs.append(job)
        return jobs

    def _build(self, job: _Job) -> ModelSpec:
        model = self.model_factory(job.cohort)
        missing = [name for name in self._parameter_names() if name not in model.parameter_names]
        if missing:
            raise ConfigurationError(
                f"Parameter(s) {missing} not in model; parameters are {list(model.parameter_names)}"
            )
        return model

    def _failed(self, job: _Job, error: Exception) -> SubgroupResult:
        logger.warning("Partition '%s' failed: %s: %s", job.key, type(error).__name__, error)
        return SubgroupResult(
            partition_key=job.key,
            variable=job.variable,
            partition_index=job.index,
            n=len(job.cohort) if job.cohort is not None else 0,
            low_sample_size=self._is_small(job),
            error=str(error),
            error_type=type(error).__name__,
        )

    def _is_small(self, job: _Job) -> bool:
        n = len(job.cohort) if job.cohort is not None else 0
        return n < self.config.subgroups.min_partition_size

    def _succeeded(self, job: _Job, posterior: PosteriorDraws) -> SubgroupResult:
        summary = summarize(
            posterior,
            self.parameter,
            thresholds=self.config.decision.thresholds,
            ci_level=self.config.decision.ci_level,
        )
        return SubgroupResult(
            partition_key=job.key,
            variable=job.variable,
            partition_index=job.index,
            n=len(job.cohort),
            low_sample_size=self._is_small(job),
            summary=summary,
        )

    def run(self, cohort: Cohort, partitions: Sequence[Partition] = ()) -> List[SubgroupResult]:
        """
        Fit Overall and every non-empty partition.

        Returns
        -------
        results : List[SubgroupResult]
            Overall first, then partitions in declaration order. Empty
            partitions are omitted; failed partitions carry their error.
        """
        partitions = list(partitions)
        jobs = self._jobs(cohort, partitions)
        for job in jobs:
            if job.cohort is not None and self._is_small(job):
                logger.warning(
                    "Partition '%s' has %d rows (< %d); results flagged low_sample_size",
                    job.key,
                    len(job.cohort),
                    self.config.subgroups.min_partition_size,
                )

        sampler = self.config.sampler
        workers = sampler.max_workers or (os.cpu_count() or 1)
        results: Dict[int, SubgroupResult] = {}
        in_flight = {}

        logger.info("Running %d fits (%d partitions + Overall)", len(jobs), len(jobs) - 1)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="subgroup") as executor:
            try:
                for job in jobs:
                    if job.error is not None:
                        results[job.index] = self._failed(job, job.error)
                        continue
                    try:
                        model = self._build(job)
                    except (ValidationError, ConfigurationError) as e:
                        results[job.index] = self._failed(job, e)
                        continue

                    if self.store is not None:
                        cached = self.store.get(cache_key(model.fingerprint, sampler, job.index))
                        if cached is not None:
                            logger.debug("Posterior cache hit for partition '%s'", job.key)
                            results[job.index] = self._succeeded(job, cached)
                            continue

                    pending = start_fit(model, executor, self.config, job.index, label=job.key)
                    in_flight[job.index] = (model, pending)

                for job in jobs:
                    if job.index not in in_flight:
                        continue
                    model, pending = in_flight.pop(job.index)
                    try:
                        posterior = finish_fit(model, pending, self.config, self.store, job.index)
                    except (FatalSamplerError, FitCancelledError) as e:
                        results[job.index] = self._failed(job, e)
                        continue
                    results[job.index] = self._succeeded(job, posterior)
            except BaseException:
                for _, pending in in_flight.values():
                    pending.cancel()
                raise

        return [results[job.index] for job in jobs]


def results_frame(results: Sequence[SubgroupResult]) -> pd.DataFrame:
    """One row per partition, ready for a forest plot or a report table."""
    rows = []
    for r in results:
        row = {
            "partition": r.partition_key,
            "variable": r.variable,
            "n": r.n,
            "low_sample_size": r.low_sample_size,
            "mean": np.nan,
            "sd": np.nan,
            "ci_lower": np.nan,
            "ci_upper": np.nan,
            "convergence_ok": None,
            "error_type": r.error_type,
            "error": r.error,
        }
        if r.summary is not None:
            s = r.summary
            row.update(
                mean=s.mean,
                sd=s.sd,
                ci_lower=s.ci_lower,
                ci_upper=s.ci_upper,
                convergence_ok=s.convergence_ok,
            )
            for t, p in s.probabilities.items():
                row[f"p_gt_{t:g}"] = p
        rows.append(row)
    return pd.DataFrame(rows)
