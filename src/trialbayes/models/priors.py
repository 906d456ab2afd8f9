"""
Prior distributions and parameter domains.

Each parameter of a model lives in a Domain (real line, positive half-line,
or the open correlation interval (-1, 1)). The sampler works on the
unconstrained scale; the Domain supplies the bijection and its log-Jacobian:

    REAL:         v = x
    POSITIVE:     v = exp(x),   log|dv/dx| = x
    CORRELATION:  v = tanh(x),  log|dv/dx| = log(1 - tanh(x)^2)

Priors are scalar log-densities with validated hyperparameters. A prior is
only accepted for a parameter when its support lies inside the parameter's
domain; Fixed(value) pins a parameter and must lie strictly inside it.
"""

import math
from dataclasses import dataclass
from typing import Callable

import numpy as np
from numpy.typing import NDArray
from scipy.special import betaln, gammaln

from trialbayes.errors import ConfigurationError

_LOG_2PI = math.log(2.0 * math.pi)
_LOG_2 = math.log(2.0)
_LOG_4 = math.log(4.0)


@dataclass(frozen=True)
class Domain:
    """Support of a model parameter plus its unconstraining bijection."""

    name: str
    lower: float
    upper: float
    constrain: Callable[[NDArray[np.float64]], NDArray[np.float64]]
    unconstrain: Callable[[NDArray[np.float64]], NDArray[np.float64]]
    log_jacobian: Callable[[NDArray[np.float64]], NDArray[np.float64]]

    def contains(self, value: float) -> bool:
        return self.lower < value < self.upper


def _tanh_log_jacobian(x: NDArray[np.float64]) -> NDArray[np.float64]:
    ax = np.abs(x)
    return _LOG_4 - 2.0 * ax - 2.0 * np.log1p(np.exp(-2.0 * ax))


REAL = Domain(
    "real",
    -math.inf,
    math.inf,
    constrain=lambda x: x,
    unconstrain=lambda v: v,
    log_jacobian=np.zeros_like,
)
POSITIVE = Domain(
    "positive",
    0.0,
    math.inf,
    constrain=np.exp,
    unconstrain=np.log,
    log_jacobian=lambda x: x,
)
CORRELATION = Domain(
    "correlation",
    -1.0,
    1.0,
    constrain=np.tanh,
    unconstrain=np.arctanh,
    log_jacobian=_tanh_log_jacobian,
)


class Prior:
    """Base class: scalar log-density with support [lower, upper]."""

    lower: float = -math.inf
    upper: float = math.inf

    def log_density(self, value: float) -> float:
        raise NotImplementedError

    def check_domain(self, domain: Domain, parameter: str) -> None:
        """Raise ConfigurationError unless the prior support lies inside domain."""
        if self.lower < domain.lower or self.upper > domain.upper:
            raise ConfigurationError(
                f"Prior {self!r} on '{parameter}' has support [{self.lower}, {self.upper}] "
                f"outside the {domain.name} domain ({domain.lower}, {domain.upper})"
            )

    @property
    def is_fixed(self) -> bool:
        return False

    def _params(self) -> dict:
        return {k: v for k, v in vars(self).items() if not k.startswith("_")}

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self._params() == other._params()

    def __hash__(self) -> int:
        return hash(repr(self))

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self._params().items())
        return f"{type(self).__name__}({args})"


def _positive(name: str, value: float) -> float:
    value = float(value)
    if not (value > 0 and math.isfinite(value)):
        raise ConfigurationError(f"{name} must be positive and finite. Got {value}")
    return value


def _finite(name: str, value: float) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise ConfigurationError(f"{name} must be finite. Got {value}")
    return value


class Normal(Prior):
    def __init__(self, mu: float = 0.0, sigma: float = 1.0) -> None:
        self.mu = _finite("mu", mu)
        self.sigma = _positive("sigma", sigma)

    def log_density(self, value: float) -> float:
        z = (value - self.mu) / self.sigma
        return -0.5 * _LOG_2PI - math.log(self.sigma) - 0.5 * z * z


class StudentT(Prior):
    def __init__(self, nu: float = 3.0, mu: float = 0.0, sigma: float = 1.0) -> None:
        self.nu = _positive("nu", nu)
        self.mu = _finite("mu", mu)
        self.sigma = _positive("sigma", sigma)
        self._const = float(
            gammaln((self.nu + 1) / 2)
            - gammaln(self.nu / 2)
            - 0.5 * math.log(self.nu * math.pi)
            - math.log(self.sigma)
        )

    def log_density(self, value: float) -> float:
        z = (value - self.mu) / self.sigma
        return self._const - 0.5 * (self.nu + 1) * math.log1p(z * z / self.nu)


class HalfNormal(Prior):
    lower = 0.0

    def __init__(self, sigma: float = 1.0) -> None:
        self.sigma = _positive("sigma", sigma)

    def log_density(self, value: float) -> float:
        if value < 0:
            return -math.inf
        z = value / self.sigma
        return _LOG_2 - 0.5 * _LOG_2PI - math.log(self.sigma) - 0.5 * z * z


class HalfStudentT(StudentT):
    lower = 0.0

    def __init__(self, nu: float = 3.0, sigma: float = 1.0) -> None:
        super().__init__(nu=nu, mu=0.0, sigma=sigma)

    def log_density(self, value: float) -> float:
        if value < 0:
            return -math.inf
        return _LOG_2 + super().log_density(value)

    def __repr__(self) -> str:
        return f"HalfStudentT(nu={self.nu!r}, sigma={self.sigma!r})"


class Exponential(Prior):
    lower = 0.0

    def __init__(self, rate: float = 1.0) -> None:
        self.rate = _positive("rate", rate)

    def log_density(self, value: float) -> float:
        if value < 0:
            return -math.inf
        return math.log(self.rate) - self.rate * value


class Gamma(Prior):
    """Gamma(alpha, beta) with shape alpha and rate beta."""

    lower = 0.0

    def __init__(self, alpha: float = 2.0, beta: float = 1.0) -> None:
        self.alpha = _positive("alpha", alpha)
        self.beta = _positive("beta", beta)

    def log_density(self, value: float) -> float:
        if value <= 0:
            return -math.inf
        return (
            self.alpha * math.log(self.beta)
            - float(gammaln(self.alpha))
            + (self.alpha - 1) * math.log(value)
            - self.beta * value
        )


class LKJCorr(Prior):
    """
    LKJ prior for the correlation of a 2x2 correlation matrix.

    p(rho) is proportional to (1 - rho^2)^(eta - 1), i.e. (rho + 1)/2 ~ Beta(eta, eta).
    eta = 1 is uniform on (-1, 1); larger eta shrinks towards zero.
    """

    lower = -1.0
    upper = 1.0

    def __init__(self, eta: float = 1.0) -> None:
        self.eta = _positive("eta", eta)
        self._const = float(-(self.eta - 1) * _LOG_4 - betaln(self.eta, self.eta) - _LOG_2)

    def log_density(self, value: float) -> float:
        if not -1.0 < value < 1.0:
            return -math.inf
        if self.eta == 1.0:
            return self._const
        return self._const + (self.eta - 1) * math.log1p(-value * value)


class Uniform(Prior):
    def __init__(self, lower: float, upper: float) -> None:
        lower = float(lower)
        upper = float(upper)
        if not (math.isfinite(lower) and math.isfinite(upper) and lower < upper):
            raise ConfigurationError(f"Uniform bounds must be finite with lower < upper. Got ({lower}, {upper})")
        self.lower = lower
        self.upper = upper
        self._log_width = math.log(upper - lower)

    def log_density(self, value: float) -> float:
        if not self.lower <= value <= self.upper:
            return -math.inf
        return -self._log_width


class Fixed(Prior):
    """Point mass: the parameter is held at value and not sampled."""

    def __init__(self, value: float) -> None:
        self.value = _finite("value", value)
        self.lower = self.value
        self.upper = self.value

    @property
    def is_fixed(self) -> bool:
        return True

    def log_density(self, value: float) -> float:
        return 0.0 if value == self.value else -math.inf

    def check_domain(self, domain: Domain, parameter: str) -> None:
        if not domain.contains(self.value):
            raise ConfigurationError(
                f"Fixed value {self.value} for '{parameter}' lies outside the "
                f"{domain.name} domain ({domain.lower}, {domain.upper})"
            )

    def __repr__(self) -> str:
        return f"Fixed(value={self.value!r})"
