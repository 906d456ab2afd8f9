"""
Posterior draws and the posterior store.

PosteriorDraws holds the merged post-warm-up draws of every chain of one fit,
shape (chains, draws, parameters), stamped with the model fingerprint and the
convergence verdict. Draws are equally weighted; the chain axis is kept only
for diagnostics.

PosteriorStore merges chain results into PosteriorDraws and caches them per
(model fingerprint, sampler settings, partition) so repeated questions over
the same data do not refit.
"""

import hashlib
import threading
from typing import Callable, Dict, Iterator, Mapping, Optional, Sequence, Tuple

import arviz as az
import numpy as np
import pandas as pd
from numpy.typing import NDArray

from trialbayes.config import SamplerConfig
from trialbayes.errors import ConvergenceWarning
from trialbayes.inference.diagnostics import ConvergenceReport


class PosteriorDraws:
    """
    Validated, merged draws of one model fit.

    Attributes
    ----------
    parameter_names : Tuple[str, ...]
        Names in model order.
    values : NDArray[np.float64]
        Read-only array of shape (chains, draws, parameters).
    model_id : str
        Fingerprint of the ModelSpec and data snapshot.
    report : ConvergenceReport
        Diagnostics and warnings.
    """

    def __init__(
        self,
        parameter_names: Sequence[str],
        values: NDArray[np.float64],
        model_id: str,
        report: ConvergenceReport,
        family: str = "",
        n_observations: int = 0,
    ) -> None:
        values = np.array(values, dtype=np.float64)
        names = tuple(parameter_names)
        if values.ndim != 3 or values.shape[2] != len(names):
            raise ValueError(
                f"values must have shape (chains, draws, {len(names)}). Got {values.shape}"
            )
        values.flags.writeable = False

        self.parameter_names = names
        self.values = values
        self.model_id = model_id
        self.report = report
        self.family = family
        self.n_observations = n_observations
        self._index = {name: i for i, name in enumerate(names)}

    @property
    def n_chains(self) -> int:
        return self.values.shape[0]

    @property
    def n_draws(self) -> int:
        """Draws per chain."""
        return self.values.shape[1]

    @property
    def total_draws(self) -> int:
        return self.n_chains * self.n_draws

    @property
    def warnings(self) -> Tuple[ConvergenceWarning, ...]:
        return self.report.warnings

    @property
    def convergence_ok(self) -> bool:
        return self.report.ok

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def __iter__(self) -> Iterator[str]:
        return iter(self.parameter_names)

    def _column(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise KeyError(
                f"No parameter '{name}'. Parameters: {list(self.parameter_names)}"
            ) from None

    def __getitem__(self, name: str) -> NDArray[np.float64]:
        """All draws of one parameter, chains concatenated."""
        return self.values[:, :, self._column(name)].reshape(-1)

    def chain_values(self, name: str) -> NDArray[np.float64]:
        """Draws of one parameter, shape (chains, draws)."""
        return self.values[:, :, self._column(name)]

    def linear_combination(self, weights: Mapping[str, float]) -> NDArray[np.float64]:
        """
        Draws of Σ_k w_k θ_k, e.g. {"treatment": 1, "treatment:time": 2}
        for the treatment effect two time units after baseline.
        """
        if not weights:
            raise ValueError("weights must name at least one parameter")
        cols = [self._column(name) for name in weights]
        w = np.array([float(v) for v in weights.values()])
        return (self.values[:, :, cols] @ w).reshape(-1)

    def to_frame(self) -> pd.DataFrame:
        """Long table with chain and draw columns, one column per parameter."""
        chains, draws, _ = self.values.shape
        frame = pd.DataFrame(self.values.reshape(-1, len(self.parameter_names)), columns=self.parameter_names)
        frame.insert(0, "draw", np.tile(np.arange(draws), chains))
        frame.insert(0, "chain", np.repeat(np.arange(chains), draws))
        return frame

    def to_inference_data(self) -> az.InferenceData:
        """ArviZ InferenceData with one posterior variable per parameter."""
        posterior = {
            name: np.array(self.values[:, :, i]) for i, name in enumerate(self.parameter_names)
        }
        return az.from_dict(posterior=posterior)

    def __repr__(self) -> str:
        return (
            f"PosteriorDraws(family={self.family!r}, chains={self.n_chains}, "
            f"draws={self.n_draws}, parameters={list(self.parameter_names)}, "
            f"convergence_ok={self.convergence_ok})"
        )


def cache_key(model_id: str, sampler: SamplerConfig, partition_index: int = 0) -> str:
    """Identity of a fit: model + data, sampler settings and seed partition."""
    digest = hashlib.sha1(model_id.encode("utf-8"))
    digest.update(sampler.model_dump_json().encode("utf-8"))
    digest.update(str(partition_index).encode("utf-8"))
    return digest.hexdigest()


class PosteriorStore:
    """Merges chain results and caches PosteriorDraws. Thread-safe."""

    def __init__(self) -> None:
        self._cache: Dict[str, PosteriorDraws] = {}
        self._lock = threading.Lock()

    @staticmethod
    def merge(chains, model, report: ConvergenceReport) -> PosteriorDraws:
        """
        Stack completed chains into one PosteriorDraws.

        Parameters
        ----------
        chains : Sequence[ChainResult]
            Every chain of the fit, all completed.
        model : ModelSpec
            The model the chains sampled.
        report : ConvergenceReport
            Verdict from the convergence checker.
        """
        if not chains:
            raise ValueError("Cannot merge an empty chain set")
        ordered = sorted(chains, key=lambda c: c.chain)
        lengths = {c.draws.shape for c in ordered}
        if len(lengths) != 1:
            raise ValueError(f"Chains have mismatched draw shapes: {sorted(lengths)}")

        values = np.stack([c.draws for c in ordered], axis=0)
        return PosteriorDraws(
            parameter_names=model.parameter_names,
            values=values,
            model_id=model.fingerprint,
            report=report,
            family=model.family,
            n_observations=model.n_observations,
        )

    def get(self, key: str) -> Optional[PosteriorDraws]:
        with self._lock:
            return self._cache.get(key)

    def put(self, key: str, draws: PosteriorDraws) -> None:
        with self._lock:
            self._cache[key] = draws

    def get_or_fit(self, key: str, fit: Callable[[], PosteriorDraws]) -> PosteriorDraws:
        cached = self.get(key)
        if cached is not None:
            return cached
        draws = fit()
        self.put(key, draws)
        return draws

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
