"""Column schema declaration and feature/response encoding.

A schema is declared once from the training DataFrame and reused unchanged
for every later dataset scored by the same forest. Categorical columns are
encoded to integer level codes in declared level order; numeric columns are
encoded as float64.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Annotated, Literal, NamedTuple

import numpy as np
import polars as pl
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from carpforest.exceptions import (
    ColumnsNotFoundError,
    DuplicateColumnsError,
    InvalidInputError,
    MissingValuesError,
    RowFailure,
    UnknownClassError,
    UnsupportedColumnTypeError,
)

type ColumnKind = Literal["numeric", "categorical", "excluded"]

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class NumericColumn(BaseModel):
    """A continuous predictor such as membrane diameter or water temperature.

    Attributes:
        kind (Literal["numeric"]): Discriminator field; always `"numeric"`.
        name (str): Column name in the source DataFrame.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["numeric"] = Field(default="numeric", description='Discriminator field. Always "numeric".')
    name: str = Field(min_length=1, description="Column name in the source DataFrame.")


class CategoricalColumn(BaseModel):
    """A predictor drawn from a small fixed alphabet, such as developmental stage.

    Attributes:
        kind (Literal["categorical"]): Discriminator field; always `"categorical"`.
        name (str): Column name in the source DataFrame.
        levels (list[str]): Declared levels. The position of a level is its
            integer code.

    Examples:
        >>> stage = CategoricalColumn(name="stage", levels=["blastula", "gastrula", "organogenesis"])
        >>> stage.levels.index("gastrula")
        1
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["categorical"] = Field(
        default="categorical", description='Discriminator field. Always "categorical".'
    )
    name: str = Field(min_length=1, description="Column name in the source DataFrame.")
    levels: list[str] = Field(min_length=1, description="Declared levels; list position is the level code.")

    @field_validator("levels", mode="after")
    @classmethod
    def _validate_levels_unique(cls, value: list[str]) -> list[str]:
        """Reject level lists containing duplicates.

        Args:
            value (list[str]): The declared levels.

        Returns:
            list[str]: The validated levels, unchanged.

        Raises:
            ValueError: If a level appears more than once.
        """
        if len(set(value)) != len(value):
            raise ValueError(f"levels must be unique, got {value}")
        return value


type ColumnSpec = Annotated[NumericColumn | CategoricalColumn, Field(discriminator="kind")]


class DatasetSchema(BaseModel):
    """Ordered predictor declarations shared by training and validation data.

    Attributes:
        columns (list[ColumnSpec]): One spec per predictor, in feature-matrix order.
    """

    model_config = ConfigDict(frozen=True)

    columns: list[ColumnSpec] = Field(min_length=1, description="Predictor declarations in feature-matrix order.")

    @model_validator(mode="after")
    def _validate_unique_names(self) -> DatasetSchema:
        """Reject schemas that declare the same column twice.

        Returns:
            DatasetSchema: The validated model instance.

        Raises:
            ValueError: If two specs share a name.
        """
        names = self.names
        if len(set(names)) != len(names):
            raise ValueError(f"schema column names must be unique, got {names}")
        return self

    @property
    def names(self) -> list[str]:
        """Predictor names in feature-matrix order."""
        return [column.name for column in self.columns]

    def column(self, name: str) -> NumericColumn | CategoricalColumn:
        """Look up a column spec by name.

        Args:
            name (str): Predictor name.

        Returns:
            NumericColumn | CategoricalColumn: The matching spec.

        Raises:
            KeyError: If no column has that name.
        """
        for column in self.columns:
            if column.name == name:
                return column
        raise KeyError(name)


class EncodedFeatures(NamedTuple):
    """Feature matrix produced from a DataFrame and the rows that failed encoding.

    Attributes:
        matrix (np.ndarray): Float64 array of shape `(n_rows, n_features)`.
            Failed cells hold `NaN`.
        failures (list[RowFailure]): Failing cells ordered by row then column.
    """

    matrix: np.ndarray
    failures: list[RowFailure]

    @property
    def valid_mask(self) -> np.ndarray:
        """Boolean mask of rows without any failure."""
        mask = np.ones(self.matrix.shape[0], dtype=bool)
        for failure in self.failures:
            mask[failure.row_index] = False
        return mask


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def infer_schema(
    df: pl.DataFrame,
    columns: Sequence[str],
    *,
    levels: Mapping[str, Sequence[str]] | None = None,
) -> DatasetSchema:
    """Declare a schema for `columns` from their dtypes in `df`.

    Numeric dtypes become `NumericColumn`. Boolean, string, categorical and
    enum dtypes become `CategoricalColumn`; enums keep their declared level
    order, booleans use `["false", "true"]`, and other columns use their
    sorted distinct values. Entries in `levels` override the inferred level
    set (and force the column to be categorical).

    Args:
        df (pl.DataFrame): Training data.
        columns (Sequence[str]): Predictor names, in feature-matrix order.
        levels (Mapping[str, Sequence[str]] | None): Explicit level sets.

    Returns:
        DatasetSchema: The declared schema.

    Raises:
        InvalidInputError: If `columns` is empty, or declared levels do not
            cover the observed values.
        DuplicateColumnsError: If `columns` has duplicates.
        ColumnsNotFoundError: If a column is absent from `df`.
        UnsupportedColumnTypeError: If a column dtype is neither numeric nor categorical.
    """
    validate_columns(columns, df.columns)
    declared_levels = dict(levels or {})
    unknown_overrides = set(declared_levels) - set(columns)
    if unknown_overrides:
        raise InvalidInputError(f"Levels declared for columns that are not predictors: {sorted(unknown_overrides)}")

    specs: list[NumericColumn | CategoricalColumn] = []
    for name in columns:
        series = df[name]
        if name in declared_levels:
            specs.append(_declared_categorical(series, declared_levels[name]))
            continue
        column_kind = _classify_column(series.dtype)
        if column_kind == "numeric":
            specs.append(NumericColumn(name=name))
        elif column_kind == "categorical":
            specs.append(CategoricalColumn(name=name, levels=_infer_levels(series)))
        else:
            raise UnsupportedColumnTypeError(name, str(series.dtype))
    return DatasetSchema(columns=specs)


def encode_features(df: pl.DataFrame, schema: DatasetSchema) -> EncodedFeatures:
    """Encode the schema's predictors of `df` into a float64 feature matrix.

    Rows are never dropped. A missing column, a null or NaN value, an
    infinite value or one that cannot be read as a number, and a categorical
    level outside the declared set are each recorded as a `RowFailure`.

    Args:
        df (pl.DataFrame): Data to encode.
        schema (DatasetSchema): Schema recorded at training time.

    Returns:
        EncodedFeatures: The matrix and the per-row failures.
    """
    n_rows = df.height
    column_arrays: list[np.ndarray] = []
    failures: list[RowFailure] = []

    for spec in schema.columns:
        if spec.name not in df.columns:
            failures.extend(RowFailure(row_index, spec.name, "missing column") for row_index in range(n_rows))
            column_arrays.append(np.full(n_rows, np.nan))
            continue
        series = df[spec.name]
        if isinstance(spec, NumericColumn):
            column_array, column_failures = _encode_numeric(series, spec.name)
        else:
            column_array, column_failures = _encode_categorical(series, spec)
        column_arrays.append(column_array)
        failures.extend(column_failures)

    column_order = {name: position for position, name in enumerate(schema.names)}
    failures.sort(key=lambda failure: (failure.row_index, column_order[failure.column]))
    matrix = np.column_stack(column_arrays) if column_arrays else np.empty((n_rows, 0), dtype=np.float64)
    return EncodedFeatures(matrix=matrix.astype(np.float64, copy=False), failures=failures)


def encode_response(series: pl.Series, classes: Sequence[str]) -> np.ndarray:
    """Encode a response column to integer class codes in declared class order.

    Args:
        series (pl.Series): The response column.
        classes (Sequence[str]): Declared class labels; position is the code.

    Returns:
        np.ndarray: 1-D `intp` array of class codes.

    Raises:
        MissingValuesError: If the response has nulls.
        UnknownClassError: If a label is not among `classes`.
    """
    null_count = series.null_count()
    if null_count > 0:
        raise MissingValuesError(series.name, null_count)
    labels = series.cast(pl.String)
    unknown_labels = set(labels.unique().to_list()) - set(classes)
    if unknown_labels:
        raise UnknownClassError(sorted(unknown_labels), list(classes))
    codes = labels.replace_strict(list(classes), list(range(len(classes))), return_dtype=pl.Int64)
    return codes.to_numpy().astype(np.intp)


def dataset_fingerprint(df: pl.DataFrame, columns: Sequence[str]) -> int:
    """Hash the selected columns of `df`, row order included.

    Two frames get the same fingerprint only when they hold the same values
    in the same row positions. The value is stable within one polars version.

    Args:
        df (pl.DataFrame): Data to fingerprint.
        columns (Sequence[str]): Columns to include, in order.

    Returns:
        int: Unsigned 64-bit fingerprint.
    """
    row_hashes = df.select(columns).with_row_index("_row").hash_rows(seed=0)
    return int(row_hashes.sum())


def validate_columns(columns: Sequence[str], df_columns: Sequence[str]) -> None:
    """Validate that columns exist in the DataFrame and contain no duplicates.

    Args:
        columns (Sequence[str]): Column names to validate.
        df_columns (Sequence[str]): Column names present in the DataFrame.

    Raises:
        InvalidInputError: If `columns` is empty.
        DuplicateColumnsError: If `columns` contain duplicates.
        ColumnsNotFoundError: If any column does not exist in the DataFrame.
    """
    if len(columns) == 0:
        raise InvalidInputError("At least one predictor column is required")
    if len(columns) != len(set(columns)):
        raise DuplicateColumnsError(columns=list(columns))
    missing_columns = [col for col in columns if col not in df_columns]
    if missing_columns:
        raise ColumnsNotFoundError(missing_columns=missing_columns, available_columns=list(df_columns))


# ---------------------------------------------------------------------------
# Private helpers -- Column classification
# ---------------------------------------------------------------------------

_DTYPE_TO_COLUMN_KIND: dict[type[pl.DataType] | pl.DataType, ColumnKind] = {
    pl.Int8: "numeric",
    pl.Int16: "numeric",
    pl.Int32: "numeric",
    pl.Int64: "numeric",
    pl.UInt8: "numeric",
    pl.UInt16: "numeric",
    pl.UInt32: "numeric",
    pl.UInt64: "numeric",
    pl.Float32: "numeric",
    pl.Float64: "numeric",
    pl.Boolean: "categorical",
    pl.String: "categorical",
    pl.Categorical: "categorical",
}


def _classify_column(dtype: pl.DataType) -> ColumnKind:
    """Classify a Polars dtype as numeric, categorical or excluded.

    Parameterized dtypes such as `Enum([...])` do not hash like their bare
    class, so an `isinstance` fallback handles them.

    Args:
        dtype (pl.DataType): The Polars data type of the column.

    Returns:
        ColumnKind: `"numeric"`, `"categorical"` or `"excluded"`.
    """
    result = _DTYPE_TO_COLUMN_KIND.get(dtype)
    if result is not None:
        return result
    if isinstance(dtype, (pl.Enum, pl.Categorical)):
        return "categorical"
    return "excluded"


def _infer_levels(series: pl.Series) -> list[str]:
    """Derive the level set of a categorical-like column.

    Args:
        series (pl.Series): A boolean, string, categorical or enum column.

    Returns:
        list[str]: Enum categories in declared order, `["false", "true"]`
            for booleans, otherwise the sorted distinct non-null values.

    Raises:
        InvalidInputError: If the column has no non-null values.
    """
    if isinstance(series.dtype, pl.Enum):
        return list(series.dtype.categories.to_list())
    if series.dtype == pl.Boolean:
        return ["false", "true"]
    observed = series.cast(pl.String).drop_nulls().unique().sort().to_list()
    if not observed:
        raise InvalidInputError(f"Column '{series.name}' has no non-null values to declare levels from")
    return observed


def _declared_categorical(series: pl.Series, levels: Sequence[str]) -> CategoricalColumn:
    """Build a categorical spec from explicit levels, checking the observed values.

    Args:
        series (pl.Series): The training column.
        levels (Sequence[str]): Declared levels.

    Returns:
        CategoricalColumn: The declared spec.

    Raises:
        InvalidInputError: If the column holds values outside `levels`.
    """
    observed = set(series.cast(pl.String).drop_nulls().unique().to_list())
    undeclared = observed - set(levels)
    if undeclared:
        raise InvalidInputError(f"Column '{series.name}' has values outside its declared levels: {sorted(undeclared)}")
    return CategoricalColumn(name=series.name, levels=list(levels))


# ---------------------------------------------------------------------------
# Private helpers -- Encoding
# ---------------------------------------------------------------------------


def _encode_numeric(series: pl.Series, name: str) -> tuple[np.ndarray, list[RowFailure]]:
    """Encode a numeric predictor, reporting nulls, NaNs, infinities and unreadable values.

    Args:
        series (pl.Series): The column to encode.
        name (str): Predictor name used in failures.

    Returns:
        tuple[np.ndarray, list[RowFailure]]: Float64 values (`NaN` on failure) and failures.
    """
    is_numeric_dtype = _classify_column(series.dtype) == "numeric"
    values = series.cast(pl.Float64, strict=False).fill_null(np.nan).to_numpy().astype(np.float64)
    original_nulls = series.is_null().to_numpy()
    failures: list[RowFailure] = []
    for position in np.flatnonzero(~np.isfinite(values)):
        row_index = int(position)
        if np.isnan(values[row_index]) and (is_numeric_dtype or original_nulls[row_index]):
            failures.append(RowFailure(row_index, name, "missing value"))
        else:
            failures.append(RowFailure(row_index, name, "invalid value", str(series[row_index])))
    values[~np.isfinite(values)] = np.nan
    return values, failures


def _encode_categorical(series: pl.Series, spec: CategoricalColumn) -> tuple[np.ndarray, list[RowFailure]]:
    """Encode a categorical predictor to level codes, reporting nulls and unseen levels.

    Args:
        series (pl.Series): The column to encode.
        spec (CategoricalColumn): The declared levels.

    Returns:
        tuple[np.ndarray, list[RowFailure]]: Float64 codes (`NaN` on failure) and failures.
    """
    labels = series.cast(pl.String)
    codes = labels.replace_strict(
        spec.levels,
        list(range(len(spec.levels))),
        default=None,
        return_dtype=pl.Float64,
    )
    values = codes.fill_null(np.nan).to_numpy().astype(np.float64)
    original_nulls = labels.is_null().to_numpy()
    failures: list[RowFailure] = []
    for row_index in np.flatnonzero(np.isnan(values)):
        if original_nulls[row_index]:
            failures.append(RowFailure(int(row_index), spec.name, "missing value"))
        else:
            failures.append(RowFailure(int(row_index), spec.name, "unseen level", labels[int(row_index)]))
    return values, failures
