"""
Typed design-matrix builder.

A DesignSpec is an ordered list of terms. Every term declares the parameter
names it contributes, so coefficients are always looked up by name:

    design = DesignSpec([
        TreatmentIndicator("treatment", treated="Treatment", control="Control"),
        NumericCovariate("age"),
        CategoricalCovariate("sex", reference="Male", levels=["Female"]),
    ])
    design.columns  # ("Intercept", "treatment", "age", "sex[Female]")

The treatment indicator is 1 for the treated arm and 0 for control, so its
coefficient is the treatment effect.
"""

from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from trialbayes.cohort import Cohort
from trialbayes.errors import ConfigurationError, ValidationError


class Term:
    """One or more design columns derived from cohort columns."""

    @property
    def names(self) -> Tuple[str, ...]:
        raise NotImplementedError

    @property
    def source_columns(self) -> Tuple[str, ...]:
        raise NotImplementedError

    def evaluate(self, cohort: Cohort) -> NDArray[np.float64]:
        """Return an array of shape (n_rows, len(self.names))."""
        raise NotImplementedError

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({args})"


def _check_levels(series: pd.Series, allowed: Sequence[object], column: str) -> None:
    bad = ~series.isin(list(allowed))
    if bad.any():
        row = series.index[np.argmax(bad.to_numpy())]
        raise ValidationError(
            f"Unexpected level {series.loc[row]!r}; expected one of {list(allowed)}",
            row=row,
            column=column,
        )


class TreatmentIndicator(Term):
    """Two-level treatment arm coded 1 = treated, 0 = control."""

    def __init__(
        self,
        column: str = "treatment",
        treated: object = "Treatment",
        control: object = "Control",
        name: str = "treatment",
    ) -> None:
        if treated == control:
            raise ConfigurationError("Treated and control levels must differ")
        self.column = column
        self.treated = treated
        self.control = control
        self.name = name

    @property
    def names(self) -> Tuple[str, ...]:
        return (self.name,)

    @property
    def source_columns(self) -> Tuple[str, ...]:
        return (self.column,)

    def evaluate(self, cohort: Cohort) -> NDArray[np.float64]:
        series = cohort.values(self.column)
        _check_levels(series, [self.treated, self.control], self.column)
        return (series == self.treated).to_numpy(dtype=np.float64).reshape(-1, 1)


class NumericCovariate(Term):
    """
    Numeric covariate, optionally centred.

    center=True subtracts the cohort mean; a float subtracts that constant.
    """

    def __init__(
        self,
        column: str,
        name: Optional[str] = None,
        center: Union[bool, float] = False,
    ) -> None:
        self.column = column
        self.name = name or column
        self.center = center

    @property
    def names(self) -> Tuple[str, ...]:
        return (self.name,)

    @property
    def source_columns(self) -> Tuple[str, ...]:
        return (self.column,)

    def evaluate(self, cohort: Cohort) -> NDArray[np.float64]:
        x = np.array(cohort.numeric(self.column), dtype=np.float64)
        if self.center is True:
            x = x - x.mean()
        elif self.center is not False:
            x = x - float(self.center)
        return x.reshape(-1, 1)


class CategoricalCovariate(Term):
    """Dummy coding against a reference level: one column per other level."""

    def __init__(
        self,
        column: str,
        reference: object,
        levels: Sequence[object],
        name: Optional[str] = None,
    ) -> None:
        levels = list(levels)
        if not levels:
            raise ConfigurationError(f"'{column}' needs at least one non-reference level")
        if reference in levels:
            raise ConfigurationError(f"Reference level {reference!r} repeated in levels of '{column}'")
        if len(set(levels)) != len(levels):
            raise ConfigurationError(f"Duplicate levels for '{column}': {levels}")
        self.column = column
        self.reference = reference
        self.levels = levels
        self.name = name or column

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(f"{self.name}[{level}]" for level in self.levels)

    @property
    def source_columns(self) -> Tuple[str, ...]:
        return (self.column,)

    def evaluate(self, cohort: Cohort) -> NDArray[np.float64]:
        series = cohort.values(self.column)
        _check_levels(series, [self.reference, *self.levels], self.column)
        return np.column_stack(
            [(series == level).to_numpy(dtype=np.float64) for level in self.levels]
        )


class TimeCovariate(Term):
    """
    Time offset for longitudinal records.

    With levels, ordered labels map to 0, 1, 2, ... (e.g. Baseline, Week 6,
    Week 12). Without levels the column must already be numeric.
    """

    def __init__(
        self,
        column: str,
        levels: Optional[Sequence[object]] = None,
        name: str = "time",
    ) -> None:
        self.column = column
        self.levels = list(levels) if levels is not None else None
        self.name = name

    @property
    def names(self) -> Tuple[str, ...]:
        return (self.name,)

    @property
    def source_columns(self) -> Tuple[str, ...]:
        return (self.column,)

    def offsets(self, cohort: Cohort) -> NDArray[np.float64]:
        if self.levels is None:
            return np.array(cohort.numeric(self.column), dtype=np.float64)
        series = cohort.values(self.column)
        _check_levels(series, self.levels, self.column)
        mapping: Dict[object, float] = {level: float(i) for i, level in enumerate(self.levels)}
        return series.map(mapping).to_numpy(dtype=np.float64)

    def evaluate(self, cohort: Cohort) -> NDArray[np.float64]:
        return self.offsets(cohort).reshape(-1, 1)


class Interaction(Term):
    """Elementwise products of every column of left with every column of right."""

    def __init__(self, left: Term, right: Term) -> None:
        self.left = left
        self.right = right

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(f"{a}:{b}" for a in self.left.names for b in self.right.names)

    @property
    def source_columns(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(self.left.source_columns + self.right.source_columns))

    def evaluate(self, cohort: Cohort) -> NDArray[np.float64]:
        a = self.left.evaluate(cohort)
        b = self.right.evaluate(cohort)
        return (a[:, :, None] * b[:, None, :]).reshape(len(cohort), -1)


class DesignMatrix:
    """Read-only design matrix with named columns."""

    def __init__(self, values: NDArray[np.float64], columns: Sequence[str]) -> None:
        values = np.array(values, dtype=np.float64)
        columns = tuple(columns)
        if values.ndim != 2:
            raise ConfigurationError(f"Design matrix must be 2-D. Got shape {values.shape}")
        if values.shape[1] != len(columns):
            raise ConfigurationError(
                f"Design matrix has {values.shape[1]} columns but {len(columns)} "
                f"names were declared: {list(columns)}"
            )
        if len(set(columns)) != len(columns):
            raise ConfigurationError(f"Duplicate design column names: {list(columns)}")

        values.flags.writeable = False
        self.values = values
        self.columns = columns
        self._index = {name: i for i, name in enumerate(columns)}

    @property
    def n_rows(self) -> int:
        return self.values.shape[0]

    @property
    def n_columns(self) -> int:
        return self.values.shape[1]

    def index(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise KeyError(f"No design column '{name}'. Columns: {list(self.columns)}") from None

    def column(self, name: str) -> NDArray[np.float64]:
        return self.values[:, self.index(name)]

    def check_rank(self) -> None:
        """Raise ConfigurationError for singular (rank-deficient) designs."""
        if self.n_rows < self.n_columns:
            raise ConfigurationError(
                f"Design has {self.n_rows} rows for {self.n_columns} coefficients"
            )
        rank = np.linalg.matrix_rank(self.values)
        if rank < self.n_columns:
            constant = [
                name
                for name in self.columns
                if name != "Intercept" and np.ptp(self.column(name)) == 0
            ]
            detail = f"; constant columns: {constant}" if constant else ""
            raise ConfigurationError(
                f"Rank-deficient design (rank {rank} < {self.n_columns} columns){detail}"
            )

    def __repr__(self) -> str:
        return f"DesignMatrix(shape={self.values.shape}, columns={list(self.columns)})"


class DesignSpec:
    """Ordered covariate terms plus an optional intercept."""

    def __init__(
        self,
        terms: Sequence[Term],
        intercept: bool = True,
        intercept_name: str = "Intercept",
    ) -> None:
        self.terms = tuple(terms)
        self.intercept = intercept
        self.intercept_name = intercept_name

        names = self.columns
        if not names:
            raise ConfigurationError("Design has no columns")
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate design column names: {list(names)}")

    @property
    def columns(self) -> Tuple[str, ...]:
        names: Tuple[str, ...] = (self.intercept_name,) if self.intercept else ()
        for term in self.terms:
            names += term.names
        return names

    @property
    def source_columns(self) -> Tuple[str, ...]:
        cols: Dict[str, None] = {}
        for term in self.terms:
            cols.update(dict.fromkeys(term.source_columns))
        return tuple(cols)

    def build(self, cohort: Cohort, check_rank: bool = True) -> DesignMatrix:
        cohort.require_columns(*self.source_columns)
        blocks = []
        if self.intercept:
            blocks.append(np.ones((len(cohort), 1)))
        for term in self.terms:
            block = term.evaluate(cohort)
            if block.shape != (len(cohort), len(term.names)):
                raise ConfigurationError(
                    f"{term!r} produced shape {block.shape}; expected "
                    f"({len(cohort)}, {len(term.names)})"
                )
            blocks.append(block)

        values = np.hstack(blocks) if blocks else np.empty((len(cohort), 0))
        design = DesignMatrix(values, self.columns)
        if check_rank:
            design.check_rank()
        return design

    def __repr__(self) -> str:
        return f"DesignSpec(columns={list(self.columns)})"
