"""Custom exceptions for carpforest.

Training input errors (subclass InvalidInputError, itself a ValueError):
- EmptyDatasetError: The training dataset has no rows.
- ColumnsNotFoundError: Requested columns do not exist in a DataFrame.
- DuplicateColumnsError: A column list names the same column twice.
- MissingValuesError: A predictor or response column contains nulls.
- UnsupportedColumnTypeError: A predictor column has a dtype that cannot be
  declared as numeric or categorical.
- UnknownClassError: The response contains labels outside the declared classes.
- InsufficientClassesError: Fewer than two declared classes are observed.

Prediction errors:
- SchemaMismatchError: One or more rows cannot be scored against the schema
  recorded at training time. Carries one RowFailure per offending cell.

Undefined metrics are not exceptions; they are reported as ``None``.
"""

from __future__ import annotations

from typing import NamedTuple


class RowFailure(NamedTuple):
    """One row that could not be scored against a training schema.

    Attributes:
        row_index (int): Zero-based position of the row in the scored DataFrame.
        column (str): The predictor column that failed.
        reason (str): One of `"missing column"`, `"missing value"`, `"invalid value"`
            or `"unseen level"`.
        value (str | None): The offending value rendered as text, if any.
    """

    row_index: int
    column: str
    reason: str
    value: str | None = None

    def __str__(self) -> str:
        """Return a one-line description such as `row 4: stage unseen level 'X'`.

        Returns:
            str: Human-readable failure description.
        """
        suffix = f" {self.value!r}" if self.value is not None else ""
        return f"row {self.row_index}: {self.column} {self.reason}{suffix}"


class InvalidInputError(ValueError):
    """Base class for malformed training inputs.

    Catch this to handle every input error raised before a forest is trained.
    """


class EmptyDatasetError(InvalidInputError):
    """Raised when a training dataset has no rows."""

    def __init__(self) -> None:
        """Initialize EmptyDatasetError."""
        super().__init__("Training dataset is empty")


class ColumnsNotFoundError(InvalidInputError):
    """Raised when requested columns do not exist in a DataFrame.

    Attributes:
        missing_columns (list[str]): Column names that were not found.
        available_columns (list[str]): Column names present in the DataFrame.

    Examples:
        >>> err = ColumnsNotFoundError(
        ...     missing_columns=["yolk_diameter"],
        ...     available_columns=["membrane_diameter", "stage"],
        ... )
        >>> err.missing_columns
        ['yolk_diameter']
    """

    missing_columns: list[str]
    available_columns: list[str]

    def __init__(
        self,
        missing_columns: list[str],
        available_columns: list[str],
    ) -> None:
        """Initialize ColumnsNotFoundError.

        Args:
            missing_columns (list[str]): Column names not found in the DataFrame.
            available_columns (list[str]): Column names present in the DataFrame.
        """
        super().__init__(f"Columns not found in DataFrame: {sorted(missing_columns)}")
        self.missing_columns = missing_columns
        self.available_columns = available_columns


class DuplicateColumnsError(InvalidInputError):
    """Raised when duplicate column names are provided.

    Attributes:
        columns (list[str]): The column list that contains duplicates.
        duplicate_columns (list[str]): Each duplicated name, listed once.

    Examples:
        >>> err = DuplicateColumnsError(columns=["stage", "stage", "temperature"])
        >>> err.duplicate_columns
        ['stage']
    """

    columns: list[str]
    duplicate_columns: list[str]

    def __init__(self, columns: list[str]) -> None:
        """Initialize DuplicateColumnsError.

        Args:
            columns (list[str]): The column list containing duplicates.
        """
        super().__init__("Duplicate column names are not allowed")
        self.columns = columns
        seen: set[str] = set()
        self.duplicate_columns = []
        for col in columns:
            if col in seen and col not in self.duplicate_columns:
                self.duplicate_columns.append(col)
            seen.add(col)


class MissingValuesError(InvalidInputError):
    """Raised when a training column contains null values.

    Attributes:
        column (str): The column with nulls.
        null_count (int): Number of null entries.
    """

    column: str
    null_count: int

    def __init__(self, column: str, null_count: int) -> None:
        """Initialize MissingValuesError.

        Args:
            column (str): The column with nulls.
            null_count (int): Number of null entries.
        """
        super().__init__(
            f"Column '{column}' contains {null_count} null value(s). Remove or impute nulls before training."
        )
        self.column = column
        self.null_count = null_count


class UnsupportedColumnTypeError(InvalidInputError):
    """Raised when a predictor column cannot be declared numeric or categorical.

    Attributes:
        column (str): The offending column.
        dtype (str): The column's dtype rendered as text.
    """

    column: str
    dtype: str

    def __init__(self, column: str, dtype: str) -> None:
        """Initialize UnsupportedColumnTypeError.

        Args:
            column (str): The offending column.
            dtype (str): The column's dtype rendered as text.
        """
        super().__init__(f"Column '{column}' has unsupported dtype {dtype}")
        self.column = column
        self.dtype = dtype


class UnknownClassError(InvalidInputError):
    """Raised when a response column holds labels outside the declared classes.

    Attributes:
        unknown_labels (list[str]): Labels not present in `classes`, sorted.
        classes (list[str]): The declared class list.
    """

    unknown_labels: list[str]
    classes: list[str]

    def __init__(self, unknown_labels: list[str], classes: list[str]) -> None:
        """Initialize UnknownClassError.

        Args:
            unknown_labels (list[str]): Labels not present in `classes`.
            classes (list[str]): The declared class list.
        """
        super().__init__(f"Response labels {sorted(unknown_labels)} are not among the declared classes {classes}")
        self.unknown_labels = sorted(unknown_labels)
        self.classes = classes


class InsufficientClassesError(InvalidInputError):
    """Raised when fewer than two distinct classes are observed in the response.

    Attributes:
        observed_classes (list[str]): The classes actually present.
    """

    observed_classes: list[str]

    def __init__(self, observed_classes: list[str]) -> None:
        """Initialize InsufficientClassesError.

        Args:
            observed_classes (list[str]): The classes actually present.
        """
        super().__init__(f"Response must contain at least two distinct classes, observed {observed_classes}")
        self.observed_classes = observed_classes


class SchemaMismatchError(ValueError):
    """Raised when rows cannot be scored against a forest's training schema.

    Attributes:
        failures (list[RowFailure]): Every failing (row, column) pair, ordered
            by row index then column order.

    Examples:
        >>> err = SchemaMismatchError([RowFailure(3, "stage", "unseen level", "hatched")])
        >>> err.failed_rows
        [3]
    """

    failures: list[RowFailure]

    def __init__(self, failures: list[RowFailure]) -> None:
        """Initialize SchemaMismatchError.

        Args:
            failures (list[RowFailure]): The failing rows.
        """
        preview = "; ".join(str(failure) for failure in failures[:5])
        more = f" (and {len(failures) - 5} more)" if len(failures) > 5 else ""
        super().__init__(f"{len(failures)} schema mismatch(es): {preview}{more}")
        self.failures = failures

    @property
    def failed_rows(self) -> list[int]:
        """Sorted, de-duplicated indices of the failing rows."""
        return sorted({failure.row_index for failure in self.failures})

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including the failures.
        """
        return f"{self.__class__.__name__}(failures={self.failures!r})"
