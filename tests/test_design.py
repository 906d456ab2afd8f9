"""
Unit tests for the cohort store and the typed design builder.

Tests cover:
- Cohort immutability, subsets and the subject index
- Row-level validation errors
- Term naming and evaluation
- Rank checks
"""

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from trialbayes.cohort import Cohort
from trialbayes.errors import ConfigurationError, ValidationError
from trialbayes.models.design import (
    CategoricalCovariate,
    DesignMatrix,
    DesignSpec,
    Interaction,
    NumericCovariate,
    TimeCovariate,
    TreatmentIndicator,
)


def _frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "patient_id": ["p3", "p1", "p2", "p1"],
            "treatment": ["Treatment", "Control", "Treatment", "Control"],
            "age": [60, 70, 55, 71],
            "sex": ["Male", "Female", "Female", "Male"],
            "timepoint": ["Baseline", "Week 6", "Week 12", "Baseline"],
            "y": [1.0, 2.0, 3.5, 0.5],
        }
    )


class TestCohort:
    """Read-only wrapper around a DataFrame."""

    def test_source_frame_is_copied(self) -> None:
        frame = _frame()
        cohort = Cohort(frame)
        frame.loc[0, "y"] = 99.0
        assert cohort.frame.loc[0, "y"] == 1.0

    def test_numeric_is_read_only(self) -> None:
        y = Cohort(_frame()).numeric("y")
        with pytest.raises(ValueError):
            y[0] = 5.0

    def test_numeric_reports_row_and_column(self) -> None:
        frame = _frame()
        frame.loc[2, "y"] = np.nan
        with pytest.raises(ValidationError) as excinfo:
            Cohort(frame).numeric("y")
        assert excinfo.value.row == 2
        assert excinfo.value.column == "y"

    def test_missing_column(self) -> None:
        with pytest.raises(ConfigurationError, match="bmi"):
            Cohort(_frame()).require_columns("age", "bmi")

    def test_subset_does_not_mutate(self) -> None:
        cohort = Cohort(_frame(), name="all")
        sub = cohort.subset([True, False, True, False], name="half")
        assert len(sub) == 2
        assert len(cohort) == 4
        assert sub.name == "half"
        assert list(sub.frame.index) == [0, 2]

    def test_subject_index_sorted_one_based(self) -> None:
        index = Cohort(_frame(), subject_column="patient_id").subject_index()
        assert index.levels == ("p1", "p2", "p3")
        assert_array_equal(index.codes, [3, 1, 2, 1])
        assert index.n_subjects == 3
        assert index.index_of("p2") == 2

    def test_fingerprint_tracks_content(self) -> None:
        a = Cohort(_frame())
        b = Cohort(_frame())
        frame = _frame()
        frame.loc[1, "y"] = 2.5
        c = Cohort(frame)
        assert a.fingerprint == b.fingerprint
        assert a.fingerprint != c.fingerprint

    def test_duplicate_index_rejected(self) -> None:
        frame = _frame()
        frame.index = [0, 0, 1, 2]
        with pytest.raises(ValidationError):
            Cohort(frame)


class TestTerms:
    """Each term declares its parameter names."""

    def test_treatment_indicator(self) -> None:
        term = TreatmentIndicator()
        assert term.names == ("treatment",)
        assert_array_equal(term.evaluate(Cohort(_frame()))[:, 0], [1, 0, 1, 0])

    def test_unknown_arm_is_a_validation_error(self) -> None:
        frame = _frame()
        frame.loc[3, "treatment"] = "Placebo"
        with pytest.raises(ValidationError) as excinfo:
            TreatmentIndicator().evaluate(Cohort(frame))
        assert excinfo.value.row == 3

    def test_numeric_centering(self) -> None:
        cohort = Cohort(_frame())
        assert_allclose(NumericCovariate("age", center=65).evaluate(cohort)[:, 0], [-5, 5, -10, 6])
        centred = NumericCovariate("age", center=True).evaluate(cohort)[:, 0]
        assert abs(centred.mean()) < 1e-12

    def test_categorical_names(self) -> None:
        term = CategoricalCovariate("sex", reference="Male", levels=["Female"])
        assert term.names == ("sex[Female]",)
        assert_array_equal(term.evaluate(Cohort(_frame()))[:, 0], [0, 1, 1, 0])

    def test_categorical_reference_repeated(self) -> None:
        with pytest.raises(ConfigurationError):
            CategoricalCovariate("sex", reference="Male", levels=["Male", "Female"])

    def test_time_levels_map_to_offsets(self) -> None:
        term = TimeCovariate("timepoint", levels=["Baseline", "Week 6", "Week 12"])
        assert_array_equal(term.offsets(Cohort(_frame())), [0, 1, 2, 0])

    def test_interaction(self) -> None:
        time = TimeCovariate("timepoint", levels=["Baseline", "Week 6", "Week 12"])
        term = Interaction(TreatmentIndicator(), time)
        assert term.names == ("treatment:time",)
        assert_array_equal(term.evaluate(Cohort(_frame()))[:, 0], [0, 0, 2, 0])


class TestDesignSpec:
    """Assembling and checking design matrices."""

    def test_columns_in_declaration_order(self) -> None:
        spec = DesignSpec(
            [
                TreatmentIndicator(),
                NumericCovariate("age"),
                CategoricalCovariate("sex", reference="Male", levels=["Female"]),
            ]
        )
        assert spec.columns == ("Intercept", "treatment", "age", "sex[Female]")
        design = spec.build(Cohort(_frame()))
        assert design.values.shape == (4, 4)
        assert_array_equal(design.column("Intercept"), np.ones(4))

    def test_duplicate_names_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="Duplicate"):
            DesignSpec([NumericCovariate("age"), NumericCovariate("age")])

    def test_one_arm_cohort_is_rank_deficient(self) -> None:
        cohort = Cohort(_frame()).subset([True, False, True, False])
        with pytest.raises(ConfigurationError, match="treatment"):
            DesignSpec([TreatmentIndicator()]).build(cohort)

    def test_more_coefficients_than_rows(self) -> None:
        cohort = Cohort(_frame()).subset([True, True, False, False])
        spec = DesignSpec([TreatmentIndicator(), NumericCovariate("age")])
        with pytest.raises(ConfigurationError, match="rows"):
            spec.build(cohort)

    def test_design_matrix_column_mismatch(self) -> None:
        with pytest.raises(ConfigurationError):
            DesignMatrix(np.ones((3, 2)), ["a"])
