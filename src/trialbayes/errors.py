"""
Exception taxonomy for the inference engine.

- ValidationError: malformed observation rows (fatal to the fit)
- ConfigurationError: invalid model, prior or engine configuration
- FatalSamplerError: a chain could not produce valid draws
- FitCancelledError: a fit was cancelled as a unit
- ConvergenceWarning: diagnostics outside thresholds (carried as data)
"""

from typing import Optional


class TrialBayesError(Exception):
    """Base class for engine errors."""


class ValidationError(TrialBayesError):
    """Malformed observation data. Aborts the fit, never drops rows."""

    def __init__(
        self,
        message: str,
        row: Optional[object] = None,
        column: Optional[str] = None,
    ) -> None:
        self.row = row
        self.column = column
        location = []
        if row is not None:
            location.append(f"row={row!r}")
        if column is not None:
            location.append(f"column={column!r}")
        if location:
            message = f"{message} ({', '.join(location)})"
        super().__init__(message)


class ConfigurationError(TrialBayesError):
    """Invalid model specification, prior or engine setting."""


class FatalSamplerError(TrialBayesError):
    """A chain failed (no valid initial point, timeout, crash)."""

    def __init__(self, message: str, chain: Optional[int] = None) -> None:
        self.chain = chain
        if chain is not None:
            message = f"chain {chain}: {message}"
        super().__init__(message)


class FitCancelledError(TrialBayesError):
    """The fit was cancelled before all chains completed."""


class ConvergenceWarning(UserWarning):
    """R-hat or effective sample size outside the configured thresholds."""

    def __init__(self, message: str, parameter: Optional[str] = None) -> None:
        self.parameter = parameter
        super().__init__(message)
