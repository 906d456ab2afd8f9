"""
Read-only cohort of trial observations.

A Cohort wraps a pandas DataFrame of patient (or patient-timepoint) records.
The engine never mutates it: partitions are new Cohort objects built from
boolean masks, and numeric columns are handed out as non-writeable arrays.
"""

import hashlib
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from trialbayes.errors import ConfigurationError, ValidationError


@dataclass(frozen=True)
class SubjectIndex:
    """Stable 1..J mapping from subject identifiers to integer indices."""

    codes: NDArray[np.int64]
    levels: Tuple[object, ...]

    @property
    def n_subjects(self) -> int:
        return len(self.levels)

    def index_of(self, subject: object) -> int:
        try:
            return self.levels.index(subject) + 1
        except ValueError:
            raise KeyError(f"Unknown subject {subject!r}") from None


class Cohort:
    """
    Immutable observation set.

    Attributes
    ----------
    name : str
        Label used in logs and results.
    subject_column : str, optional
        Column holding subject identifiers (needed for longitudinal models).
    """

    def __init__(
        self,
        frame: pd.DataFrame,
        subject_column: Optional[str] = None,
        name: str = "cohort",
    ) -> None:
        if not isinstance(frame, pd.DataFrame):
            raise TypeError(f"frame must be a pandas DataFrame. Got {type(frame).__name__}")
        if not frame.index.is_unique:
            raise ValidationError("Row index must be unique to reference observations")

        self._frame = frame.copy()
        self.subject_column = subject_column
        self.name = name
        self._fingerprint: Optional[str] = None

        if subject_column is not None:
            self.require_columns(subject_column)

    @property
    def frame(self) -> pd.DataFrame:
        """Underlying records. Treat as read-only."""
        return self._frame

    @property
    def columns(self) -> Tuple[str, ...]:
        return tuple(self._frame.columns)

    def __len__(self) -> int:
        return len(self._frame)

    def require_columns(self, *columns: str) -> None:
        missing = [c for c in columns if c not in self._frame.columns]
        if missing:
            raise ConfigurationError(
                f"Cohort '{self.name}' is missing required column(s): {missing}"
            )

    def values(self, column: str) -> pd.Series:
        self.require_columns(column)
        return self._frame[column]

    def numeric(self, column: str) -> NDArray[np.float64]:
        """
        Numeric column as a read-only float array.

        Raises ValidationError on the first missing or non-numeric value.
        """
        series = self.values(column)
        converted = pd.to_numeric(series, errors="coerce")
        bad = converted.isna()
        if bad.any():
            row = series.index[np.argmax(bad.to_numpy())]
            raise ValidationError(
                f"Missing or non-numeric value {series.loc[row]!r}", row=row, column=column
            )
        arr = converted.to_numpy(dtype=np.float64, copy=True)
        arr.flags.writeable = False
        return arr

    def subset(self, mask: Sequence[bool], name: Optional[str] = None) -> "Cohort":
        """Rows where mask is True, as a new Cohort."""
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (len(self),):
            raise ValueError(f"mask must have shape ({len(self)},). Got {mask.shape}")
        return Cohort(
            self._frame.loc[mask],
            subject_column=self.subject_column,
            name=name or self.name,
        )

    def subject_index(self, column: Optional[str] = None) -> SubjectIndex:
        """Map subject identifiers to 1..J in sorted identifier order."""
        column = column or self.subject_column
        if column is None:
            raise ConfigurationError(f"Cohort '{self.name}' has no subject column")
        series = self.values(column)
        if series.isna().any():
            row = series.index[np.argmax(series.isna().to_numpy())]
            raise ValidationError("Missing subject identifier", row=row, column=column)

        levels = tuple(sorted(series.unique()))
        lookup = {level: i + 1 for i, level in enumerate(levels)}
        codes = series.map(lookup).to_numpy(dtype=np.int64)
        codes.flags.writeable = False
        return SubjectIndex(codes=codes, levels=levels)

    @property
    def fingerprint(self) -> str:
        """Content hash of the records (index and values)."""
        if self._fingerprint is None:
            hashed = pd.util.hash_pandas_object(self._frame, index=True).to_numpy()
            digest = hashlib.sha1(hashed.tobytes())
            digest.update(",".join(map(str, self._frame.columns)).encode("utf-8"))
            self._fingerprint = digest.hexdigest()
        return self._fingerprint

    def __repr__(self) -> str:
        return f"Cohort(name={self.name!r}, n={len(self)}, columns={list(self.columns)})"
