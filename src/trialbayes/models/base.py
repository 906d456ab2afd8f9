"""
Model specification base class.

A ModelSpec binds a cohort, a design and one prior per named parameter, and
exposes the log posterior density in two forms:

    log_posterior(values)  constrained scale, log p(y | θ) + log p(θ)
    log_density(x)         unconstrained sampling scale, plus log-Jacobian

Parameter ordering is fixed at construction: design coefficients in
declaration order, then family parameters (sigma, shape, ...). Parameters
with a Fixed prior are held at their value and excluded from the sampled
vector but still reported by name.
"""

import hashlib
import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from trialbayes.cohort import Cohort
from trialbayes.errors import ConfigurationError
from trialbayes.models.design import DesignMatrix, DesignSpec
from trialbayes.models.priors import CORRELATION, POSITIVE, REAL, Domain, Normal, Prior

Values = Union[Mapping[str, float], Sequence[float], NDArray[np.float64]]


@dataclass(frozen=True)
class Parameter:
    """Named model parameter with its domain and prior."""

    name: str
    domain: Domain
    prior: Prior


def autoscaled_coefficient_priors(
    design: DesignMatrix,
    y: NDArray[np.float64],
    intercept_name: str = "Intercept",
    scale: float = 2.5,
) -> Dict[str, Prior]:
    """
    Weakly informative coefficient priors scaled to the outcome.

    Intercept ~ Normal(mean(y), scale * sd(y));
    slope_k ~ Normal(0, scale * sd(y) / sd(x_k)).
    """
    sy = float(np.std(y)) if len(y) > 1 else 0.0
    if not sy > 0:
        sy = 1.0
    my = float(np.mean(y)) if len(y) else 0.0

    priors: Dict[str, Prior] = {}
    for name in design.columns:
        if name == intercept_name:
            priors[name] = Normal(my, scale * sy)
            continue
        sx = float(np.std(design.column(name)))
        priors[name] = Normal(0.0, scale * sy / sx if sx > 0 else scale * sy)
    return priors


class ModelSpec:
    """
    Base class for likelihood families.

    Subclasses build their data arrays, then call _bind_parameters() with the
    ordered (name, domain) list and their default priors, and implement
    log_likelihood() and _initial_values().
    """

    family: str = ""

    def __init__(
        self,
        cohort: Cohort,
        design: DesignSpec,
        priors: Optional[Mapping[str, Prior]] = None,
    ) -> None:
        if len(cohort) == 0:
            raise ConfigurationError(f"Cohort '{cohort.name}' is empty")
        self.cohort = cohort
        self.design_spec = design
        self.design = design.build(cohort)
        self._prior_overrides = dict(priors or {})
        self.parameters: Tuple[Parameter, ...] = ()

    # ------------------------------------------------------------------
    # Parameter binding
    # ------------------------------------------------------------------

    def _bind_parameters(
        self,
        domains: Sequence[Tuple[str, Domain]],
        defaults: Mapping[str, Prior],
    ) -> None:
        names = [name for name, _ in domains]
        unknown = sorted(set(self._prior_overrides) - set(names))
        if unknown:
            raise ConfigurationError(
                f"Priors given for unknown parameter(s) {unknown}; model parameters are {names}"
            )

        params: List[Parameter] = []
        for name, domain in domains:
            prior = self._prior_overrides.get(name, defaults.get(name))
            if prior is None:
                raise ConfigurationError(f"No prior for parameter '{name}'")
            if not isinstance(prior, Prior):
                raise ConfigurationError(f"Prior for '{name}' must be a Prior. Got {prior!r}")
            prior.check_domain(domain, name)
            params.append(Parameter(name, domain, prior))
        self.parameters = tuple(params)

        self._index = {p.name: i for i, p in enumerate(params)}
        self._free = np.array([i for i, p in enumerate(params) if not p.prior.is_fixed], dtype=np.int64)
        if len(self._free) == 0:
            raise ConfigurationError("All parameters are fixed; nothing to sample")

        self._template = np.full(len(params), np.nan)
        for i, p in enumerate(params):
            if p.prior.is_fixed:
                self._template[i] = p.prior.value

        # positions of each domain in the free vector and in the full vector
        self._domain_slots = []
        for domain in (REAL, POSITIVE, CORRELATION):
            x_pos = np.array(
                [k for k, i in enumerate(self._free) if params[i].domain is domain], dtype=np.int64
            )
            if len(x_pos):
                self._domain_slots.append((domain, x_pos, self._free[x_pos]))

        self._free_priors = [(int(i), params[i].prior) for i in self._free]

    @property
    def parameter_names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.parameters)

    @property
    def free_parameter_names(self) -> Tuple[str, ...]:
        return tuple(self.parameters[i].name for i in self._free)

    @property
    def coefficient_names(self) -> Tuple[str, ...]:
        return self.design.columns

    @property
    def priors(self) -> Dict[str, Prior]:
        return {p.name: p.prior for p in self.parameters}

    @property
    def dim(self) -> int:
        """Dimension of the sampled (unconstrained) vector."""
        return len(self._free)

    @property
    def n_observations(self) -> int:
        return len(self.cohort)

    def index(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise KeyError(f"No parameter '{name}'. Parameters: {list(self.parameter_names)}") from None

    # ------------------------------------------------------------------
    # Transforms
    # ------------------------------------------------------------------

    def vector(self, values: Values) -> NDArray[np.float64]:
        """Full constrained parameter vector from a mapping or sequence."""
        if isinstance(values, Mapping):
            missing = [n for n in self.parameter_names if n not in values and n not in self._fixed_names]
            if missing:
                raise KeyError(f"Missing parameter value(s): {missing}")
            full = self._template.copy()
            for name, value in values.items():
                full[self.index(name)] = float(value)
            return full
        full = np.asarray(values, dtype=np.float64)
        if full.shape != (len(self.parameters),):
            raise ValueError(
                f"Parameter vector must have shape ({len(self.parameters)},). Got {full.shape}"
            )
        return full

    @property
    def _fixed_names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.parameters if p.prior.is_fixed)

    def _expand(self, x: NDArray[np.float64]) -> Tuple[NDArray[np.float64], float]:
        full = self._template.copy()
        log_jac = 0.0
        for domain, x_pos, full_pos in self._domain_slots:
            xs = x[x_pos]
            full[full_pos] = domain.constrain(xs)
            log_jac += float(np.sum(domain.log_jacobian(xs)))
        return full, log_jac

    def constrained_vector(self, x: Sequence[float]) -> NDArray[np.float64]:
        full, _ = self._expand(np.asarray(x, dtype=np.float64))
        return full

    def constrain(self, x: Sequence[float]) -> Dict[str, float]:
        full = self.constrained_vector(x)
        return {name: float(v) for name, v in zip(self.parameter_names, full)}

    def unconstrain(self, values: Values) -> NDArray[np.float64]:
        full = self.vector(values)
        x = np.empty(self.dim)
        for domain, x_pos, full_pos in self._domain_slots:
            x[x_pos] = domain.unconstrain(full[full_pos])
        return x

    # ------------------------------------------------------------------
    # Densities
    # ------------------------------------------------------------------

    def log_likelihood(self, values: Values) -> float:
        raise NotImplementedError

    def log_prior(self, values: Values) -> float:
        full = self.vector(values)
        total = 0.0
        for i, prior in self._free_priors:
            total += prior.log_density(full[i])
            if total == -math.inf:
                break
        return total

    def log_posterior(self, values: Values) -> float:
        """log p(y | θ) + log p(θ) on the constrained scale."""
        full = self.vector(values)
        lp = self.log_prior(full)
        if lp == -math.inf:
            return lp
        return lp + self.log_likelihood(full)

    def log_density(self, x: NDArray[np.float64]) -> float:
        """
        Unnormalized log posterior of the unconstrained vector x.

        Returns -inf (never NaN) where the density is undefined.
        """
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            full, log_jac = self._expand(x)
            if not np.all(np.isfinite(full)):
                return -math.inf
            lp = self.log_prior(full)
            if not math.isfinite(lp):
                return -math.inf
            total = lp + self.log_likelihood(full) + log_jac
        return float(total) if math.isfinite(total) else -math.inf

    # ------------------------------------------------------------------
    # Initialization and identity
    # ------------------------------------------------------------------

    def _initial_values(self) -> Dict[str, float]:
        raise NotImplementedError

    def initial_point(self) -> NDArray[np.float64]:
        """Data-informed starting point on the unconstrained scale."""
        values = self._initial_values()
        for p in self.parameters:
            if p.prior.is_fixed:
                values[p.name] = p.prior.value
        return self.unconstrain(values)

    def _identity_parts(self) -> List[str]:
        return [self.family, repr(self.design_spec.terms), str(self.design_spec.intercept)]

    @property
    def fingerprint(self) -> str:
        """Stable identity of family, design, priors and data."""
        digest = hashlib.sha1()
        for part in self._identity_parts():
            digest.update(part.encode("utf-8"))
        for p in self.parameters:
            digest.update(f"{p.name}={p.prior!r}".encode("utf-8"))
        digest.update(self.cohort.fingerprint.encode("utf-8"))
        return digest.hexdigest()

    def rebind(self, cohort: Cohort) -> "ModelSpec":
        """Same family, design and resolved priors on another cohort."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(family={self.family!r}, n={self.n_observations}, "
            f"parameters={list(self.parameter_names)})"
        )
