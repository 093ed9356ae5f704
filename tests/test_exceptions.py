"""Tests for custom exceptions.

This module tests the exception classes raised for malformed training inputs
and for rows that cannot be scored, ensuring proper inheritance, attribute
storage and catchability patterns.
"""

from __future__ import annotations

import pytest
from pytest_check import check

from carpforest.exceptions import (
    ColumnsNotFoundError,
    DuplicateColumnsError,
    EmptyDatasetError,
    InsufficientClassesError,
    InvalidInputError,
    MissingValuesError,
    RowFailure,
    SchemaMismatchError,
    UnknownClassError,
    UnsupportedColumnTypeError,
)


class TestInvalidInputHierarchy:
    """Every training input error should be catchable as InvalidInputError and ValueError."""

    @pytest.mark.parametrize(
        "error",
        [
            EmptyDatasetError(),
            ColumnsNotFoundError(missing_columns=["yolk_diameter"], available_columns=["stage"]),
            DuplicateColumnsError(columns=["stage", "stage"]),
            MissingValuesError("membrane_diameter", 3),
            UnsupportedColumnTypeError("collected_on", "Date"),
            UnknownClassError(["grass_carp"], ["silver_carp", "freshwater_drum"]),
            InsufficientClassesError(["silver_carp"]),
        ],
        ids=["empty", "columns_not_found", "duplicates", "missing_values", "dtype", "unknown_class", "one_class"],
    )
    def test_subclasses_invalid_input_error(self, error: InvalidInputError) -> None:
        """Verify each input error is an InvalidInputError and a ValueError.

        Args:
            error (InvalidInputError): The error instance under test.
        """
        with check:
            assert isinstance(error, InvalidInputError)
        with check:
            assert isinstance(error, ValueError)
        with pytest.raises(InvalidInputError):
            raise error

    def test_schema_mismatch_is_not_an_input_error(self) -> None:
        """Scoring failures are reported separately from training input errors."""
        error = SchemaMismatchError([RowFailure(0, "stage", "missing value")])

        with check:
            assert isinstance(error, ValueError)
        with check:
            assert not isinstance(error, InvalidInputError)


class TestErrorAttributes:
    """Tests for the attributes carried by individual errors."""

    def test_columns_not_found_stores_columns(self) -> None:
        """Verify the missing and available columns are kept and the message is sorted."""
        error = ColumnsNotFoundError(missing_columns=["yolk", "chorion"], available_columns=["stage"])

        with check:
            assert error.missing_columns == ["yolk", "chorion"]
        with check:
            assert error.available_columns == ["stage"]
        with check:
            assert "['chorion', 'yolk']" in str(error)

    def test_duplicate_columns_lists_each_duplicate_once(self) -> None:
        """Verify repeated names are listed once, in first-repeat order."""
        error = DuplicateColumnsError(columns=["stage", "embryo", "stage", "embryo", "stage"])

        assert error.duplicate_columns == ["stage", "embryo"]

    def test_missing_values_message(self) -> None:
        """Verify the column and null count appear in the message."""
        error = MissingValuesError("membrane_diameter", 4)

        with check:
            assert error.null_count == 4
        with check:
            assert "membrane_diameter" in str(error)
        with check:
            assert "4 null" in str(error)

    def test_unknown_class_sorts_labels(self) -> None:
        """Verify unknown labels are stored sorted."""
        error = UnknownClassError(["grass_carp", "black_carp"], ["silver_carp", "native"])

        with check:
            assert error.unknown_labels == ["black_carp", "grass_carp"]
        with check:
            assert error.classes == ["silver_carp", "native"]


class TestRowFailure:
    """Tests for RowFailure."""

    def test_str_with_value(self) -> None:
        """Verify the offending value is quoted."""
        assert str(RowFailure(4, "stage", "unseen level", "hatched")) == "row 4: stage unseen level 'hatched'"

    def test_str_without_value(self) -> None:
        """Verify no value suffix is rendered for nulls."""
        assert str(RowFailure(2, "membrane_diameter", "missing value")) == "row 2: membrane_diameter missing value"


class TestSchemaMismatchError:
    """Tests for SchemaMismatchError."""

    def test_failed_rows_are_sorted_and_unique(self) -> None:
        """Verify a row failing in two columns is listed once."""
        error = SchemaMismatchError([
            RowFailure(5, "stage", "unseen level", "adult"),
            RowFailure(1, "stage", "missing value"),
            RowFailure(5, "membrane_diameter", "missing value"),
        ])

        with check:
            assert error.failed_rows == [1, 5]
        with check:
            assert len(error.failures) == 3

    def test_message_previews_first_five_failures(self) -> None:
        """Verify long failure lists are truncated in the message."""
        failures = [RowFailure(row_index, "stage", "missing value") for row_index in range(8)]

        message = str(SchemaMismatchError(failures))

        with check:
            assert message.startswith("8 schema mismatch(es): row 0: stage missing value")
        with check:
            assert "row 5:" not in message
        with check:
            assert message.endswith("(and 3 more)")

    def test_repr_includes_failures(self) -> None:
        """Verify repr exposes the failures for debugging."""
        error = SchemaMismatchError([RowFailure(0, "stage", "missing value")])

        assert repr(error).startswith("SchemaMismatchError(failures=[RowFailure(")
