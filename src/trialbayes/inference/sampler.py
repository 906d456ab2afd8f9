"""
Adaptive random-walk Metropolis sampler with parallel chains.

Each chain:
1. Draws a jittered start around the model's initial point (retrying up to
   max_init_attempts times while the log density is undefined).
2. Optionally refines the start with BFGS and seeds the proposal covariance
   with the inverse of a finite-difference Hessian at the mode (falling back
   to the BFGS inverse-Hessian estimate).
3. Warm-up: Gaussian random-walk proposals whose step scale is tuned towards
   a target acceptance rate (Robbins-Monro) and whose covariance is
   re-estimated at the end of doubling adaptation windows. A window with too
   few accepted moves keeps the previous covariance. Discarded.
4. Sampling: the kernel is frozen, so every step is a plain Metropolis step
   that leaves the posterior invariant. One draw is kept every `thin` steps.

Chains run on a thread pool and share nothing but the read-only model.
Seeds are derived from (master seed, partition index, chain index).
"""

import math
import threading
import time
from concurrent.futures import CancelledError, Executor, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import minimize

from trialbayes.config import SamplerConfig
from trialbayes.errors import FatalSamplerError, FitCancelledError, TrialBayesError
from trialbayes.logging_utils import get_logger

logger = get_logger(__name__)

_PENALTY = 1e100
_CHECK_EVERY = 64


def derive_seed(master: int, partition_index: int, chain_index: int) -> np.random.SeedSequence:
    """Deterministic, independent seed for one chain of one partition fit."""
    return np.random.SeedSequence(entropy=master, spawn_key=(partition_index, chain_index))


def adaptation_windows(
    n_steps: int,
    init_fraction: float = 0.15,
    term_fraction: float = 0.1,
    base_window: int = 25,
) -> Tuple[int, List[int]]:
    """
    Warm-up schedule for covariance adaptation.

    Returns the step where covariance collection starts and the steps at
    which it is re-estimated. Windows double in length; the last one absorbs
    the remainder before the terminal scale-only buffer.
    """
    if n_steps < 20:
        return n_steps, []
    start = int(init_fraction * n_steps)
    end = n_steps - int(term_fraction * n_steps)
    ends = []
    pos = start
    size = base_window
    while pos < end:
        nxt = pos + size
        if nxt + 2 * size > end:
            nxt = end
        ends.append(nxt)
        pos = nxt
        size *= 2
    return start, ends


def numerical_hessian(
    func: Callable[[NDArray[np.float64]], float],
    x: NDArray[np.float64],
    rel_step: float = 1e-3,
) -> NDArray[np.float64]:
    """Central-difference Hessian of a scalar function at x."""
    x = np.asarray(x, dtype=np.float64)
    d = x.size
    h = rel_step * np.maximum(1.0, np.abs(x))
    hess = np.empty((d, d))
    for i in range(d):
        ei = np.zeros(d)
        ei[i] = h[i]
        for j in range(i, d):
            ej = np.zeros(d)
            ej[j] = h[j]
            value = (
                func(x + ei + ej) - func(x + ei - ej) - func(x - ei + ej) + func(x - ei - ej)
            ) / (4.0 * h[i] * h[j])
            hess[i, j] = hess[j, i] = value
    return hess


def window_cholesky(
    window: NDArray[np.float64],
    moves: int,
    previous: NDArray[np.float64],
    shrinkage: float = 5.0,
    collapse_ratio: float = 1e-8,
) -> Optional[NDArray[np.float64]]:
    """
    Re-estimate the proposal Cholesky factor from one adaptation window.

    Returns None, meaning keep `previous`, when the window holds fewer than
    d + 2 accepted moves or when any variance collapses below
    collapse_ratio times its previous value. The estimate is shrunk towards
    the previous diagonal.
    """
    window = np.atleast_2d(np.asarray(window, dtype=np.float64))
    n, d = window.shape
    if moves < d + 2 or n < d + 2:
        return None
    cov = np.atleast_2d(np.cov(window, rowvar=False))
    prev_var = np.diag(previous @ previous.T)
    if not np.all(np.isfinite(cov)) or np.any(np.diag(cov) <= collapse_ratio * prev_var):
        return None
    target = np.diag(1e-3 * prev_var)
    cov = (n * cov + shrinkage * target) / (n + shrinkage)
    try:
        return np.linalg.cholesky(cov)
    except np.linalg.LinAlgError:
        return None


@dataclass(frozen=True)
class ChainResult:
    """Output of one completed chain."""

    chain: int
    seed_key: Tuple[int, ...]
    warmup: int
    draws: NDArray[np.float64]  # (draws, parameters), constrained scale
    acceptance_rate: float
    step_scale: float
    elapsed: float


class _Chain:
    """One sequential Markov chain. Never shared between threads."""

    def __init__(
        self,
        model,
        chain: int,
        seed: np.random.SeedSequence,
        config: SamplerConfig,
        cancel: threading.Event,
    ) -> None:
        self.model = model
        self.chain = chain
        self.seed = seed
        self.config = config
        self.cancel = cancel
        self.rng = np.random.default_rng(seed)
        self.dim = model.dim
        self._deadline: Optional[float] = None

    def _target_acceptance(self) -> float:
        if self.config.target_acceptance is not None:
            return self.config.target_acceptance
        return 0.234 if self.dim >= 5 else 0.44 - 0.04 * (self.dim - 1)

    def _check(self) -> None:
        if self.cancel.is_set():
            raise FitCancelledError(f"chain {self.chain} cancelled")
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise FatalSamplerError(
                f"timed out after {self.config.chain_timeout:.1f}s", chain=self.chain
            )

    def _initialize(self) -> Tuple[NDArray[np.float64], float]:
        base = self.model.initial_point()
        radius = self.config.init_radius
        for _ in range(self.config.max_init_attempts):
            x = base + self.rng.uniform(-radius, radius, size=self.dim)
            lp = self.model.log_density(x)
            if math.isfinite(lp):
                return x, lp
        raise FatalSamplerError(
            f"log density undefined at all {self.config.max_init_attempts} initial points",
            chain=self.chain,
        )

    def _optimize(
        self, x: NDArray[np.float64], lp: float
    ) -> Tuple[NDArray[np.float64], float, Optional[NDArray[np.float64]]]:
        def objective(z):
            v = self.model.log_density(z)
            return -v if math.isfinite(v) else _PENALTY

        res = minimize(objective, x, method="BFGS", options={"maxiter": 200, "gtol": 1e-5})
        cov = None
        if np.all(np.isfinite(res.x)):
            lp_opt = self.model.log_density(res.x)
            if math.isfinite(lp_opt) and lp_opt >= lp:
                x, lp = res.x, lp_opt
                cov = self._mode_covariance(x)
                if cov is None:
                    # BFGS only learns curvature along its path
                    hess_inv = np.asarray(res.hess_inv, dtype=np.float64)
                    cov = 0.5 * (hess_inv + hess_inv.T)
        return x, lp, cov

    def _mode_covariance(self, x: NDArray[np.float64]) -> Optional[NDArray[np.float64]]:
        """Inverse negative Hessian at the mode, or None if not positive definite."""
        precision = -numerical_hessian(self.model.log_density, x)
        if not np.all(np.isfinite(precision)):
            return None
        try:
            np.linalg.cholesky(precision)
        except np.linalg.LinAlgError:
            return None
        cov = np.linalg.inv(precision)
        return 0.5 * (cov + cov.T)

    @staticmethod
    def _cholesky(cov: Optional[NDArray[np.float64]]) -> Optional[NDArray[np.float64]]:
        if cov is None or not np.all(np.isfinite(cov)):
            return None
        try:
            return np.linalg.cholesky(cov)
        except np.linalg.LinAlgError:
            return None

    def run(self) -> ChainResult:
        start_time = time.monotonic()
        if self.config.chain_timeout is not None:
            self._deadline = start_time + self.config.chain_timeout

        d = self.dim
        cfg = self.config
        x, lp = self._initialize()

        chol = None
        if cfg.optimize_init:
            x, lp, cov = self._optimize(x, lp)
            chol = self._cholesky(cov)
        if chol is None:
            chol = np.eye(d) * 0.1

        base_log_scale = math.log(2.38 / math.sqrt(d))
        log_scale = base_log_scale
        target = self._target_acceptance()

        n_warm = cfg.warmup * cfg.thin
        collect_start, window_ends = adaptation_windows(n_warm)
        window: List[NDArray[np.float64]] = []
        moves = 0
        next_end = 0
        steps_since_reset = 0

        def step(x, lp, scale):
            proposal = x + scale * (chol @ self.rng.standard_normal(d))
            lp_prop = self.model.log_density(proposal)
            log_alpha = lp_prop - lp if math.isfinite(lp_prop) else -math.inf
            accept = math.log(self.rng.random()) < log_alpha
            if accept:
                return proposal, lp_prop, True, 1.0
            return x, lp, False, math.exp(min(0.0, log_alpha))

        # Warm-up
        for i in range(n_warm):
            if i % _CHECK_EVERY == 0:
                self._check()
            x, lp, acc, accept_prob = step(x, lp, math.exp(log_scale))
            steps_since_reset += 1
            log_scale += (accept_prob - target) / steps_since_reset**0.6

            if i >= collect_start and next_end < len(window_ends):
                window.append(x)
                moves += acc
                if i + 1 == window_ends[next_end]:
                    new_chol = window_cholesky(np.asarray(window), moves, chol)
                    if new_chol is not None:
                        chol = new_chol
                        log_scale = base_log_scale
                    # restart the step-size gain either way
                    steps_since_reset = 0
                    logger.debug(
                        "chain %d: window %d/%d ended at step %d (%d draws, %d moves, covariance %s)",
                        self.chain,
                        next_end + 1,
                        len(window_ends),
                        i + 1,
                        len(window),
                        moves,
                        "updated" if new_chol is not None else "kept",
                    )
                    window = []
                    moves = 0
                    next_end += 1

        # Sampling
        scale = math.exp(log_scale)
        draws = np.empty((cfg.draws, len(self.model.parameter_names)))
        accepted = 0
        steps = 0
        for k in range(cfg.draws):
            if k % _CHECK_EVERY == 0:
                self._check()
            for _ in range(cfg.thin):
                x, lp, acc, _ = step(x, lp, scale)
                accepted += acc
                steps += 1
            draws[k] = self.model.constrained_vector(x)

        elapsed = time.monotonic() - start_time
        result = ChainResult(
            chain=self.chain,
            seed_key=tuple(self.seed.spawn_key),
            warmup=cfg.warmup,
            draws=draws,
            acceptance_rate=accepted / steps if steps else 0.0,
            step_scale=scale,
            elapsed=elapsed,
        )
        logger.debug(
            "chain %d finished: acceptance %.3f, scale %.3f, %.2fs",
            self.chain,
            result.acceptance_rate,
            scale,
            elapsed,
        )
        return result


class PendingFit:
    """
    Chains of one fit in flight.

    result() waits for every chain. If any chain fails the remaining chains
    are cancelled and the fit raises; partial draws are never returned.
    """

    def __init__(self, label: str, futures: Dict[Future, int], cancel: threading.Event) -> None:
        self.label = label
        self._futures = futures
        self._cancel = cancel
        self._cancelled = False

    def cancel(self) -> None:
        """Cancel every chain of this fit."""
        self._cancelled = True
        self._cancel.set()
        for future in self._futures:
            future.cancel()

    def done(self) -> bool:
        return all(f.done() for f in self._futures)

    def result(self) -> List[ChainResult]:
        results: Dict[int, ChainResult] = {}
        failures: List[TrialBayesError] = []

        pending = set(self._futures)
        while pending:
            finished, pending = wait_futures(pending, return_when="FIRST_COMPLETED")
            for future in finished:
                chain = self._futures[future]
                try:
                    results[chain] = future.result()
                except CancelledError:
                    failures.append(FitCancelledError(f"chain {chain} cancelled"))
                except TrialBayesError as e:
                    failures.append(e)
                except Exception as e:  # kernel or model crash
                    failures.append(
                        FatalSamplerError(f"crashed: {type(e).__name__}: {e}", chain=chain)
                    )
                if failures and not self._cancel.is_set():
                    self._cancel.set()
                    for other in pending:
                        other.cancel()

        if self._cancelled:
            raise FitCancelledError(f"fit '{self.label}' was cancelled")
        if failures:
            fatal = [f for f in failures if not isinstance(f, FitCancelledError)]
            error = fatal[0] if fatal else failures[0]
            logger.warning("Fit '%s' failed: %s", self.label, error)
            raise error

        return [results[k] for k in sorted(results)]


class AdaptiveMetropolisSampler:
    """
    Multi-chain adaptive Metropolis sampler.

    Parameters
    ----------
    config : SamplerConfig, optional
        Chains, draws, warm-up, thinning, seed, pool size and timeouts.
    **overrides
        Individual SamplerConfig fields, e.g. chains=2, draws=500.
    """

    def __init__(self, config: Optional[SamplerConfig] = None, **overrides) -> None:
        config = config or SamplerConfig()
        if overrides:
            config = SamplerConfig(**{**config.model_dump(), **overrides})
        self.config = config

    def submit(
        self,
        model,
        executor: Executor,
        partition_index: int = 0,
        label: Optional[str] = None,
    ) -> PendingFit:
        """Start every chain of one fit on executor and return immediately."""
        cfg = self.config
        label = label or f"{model.family}[{partition_index}]"
        logger.info(
            "Sampling %s: %d chains x %d draws (warmup %d, thin %d, dim %d)",
            label,
            cfg.chains,
            cfg.draws,
            cfg.warmup,
            cfg.thin,
            model.dim,
        )
        cancel = threading.Event()
        futures: Dict[Future, int] = {}
        for chain in range(cfg.chains):
            runner = _Chain(model, chain, derive_seed(cfg.seed, partition_index, chain), cfg, cancel)
            futures[executor.submit(runner.run)] = chain
        return PendingFit(label, futures, cancel)

    def sample(self, model, partition_index: int = 0) -> List[ChainResult]:
        """Run all chains of one fit on a private worker pool and wait."""
        workers = self.config.max_workers or self.config.chains
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="chain") as executor:
            return self.submit(model, executor, partition_index).result()

    def __repr__(self) -> str:
        cfg = self.config
        return (
            f"AdaptiveMetropolisSampler(chains={cfg.chains}, draws={cfg.draws}, "
            f"warmup={cfg.warmup}, thin={cfg.thin}, seed={cfg.seed})"
        )
