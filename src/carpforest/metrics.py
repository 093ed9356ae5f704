"""Per-class performance metrics and confusion matrices for fitted classifiers.

For a target class `C`:

- accuracy: share of rows observed as `C` that were predicted `C`
  (the per-class recall reported in the manuscript tables).
- false-positive rate: share of rows observed as anything but `C` that were
  predicted `C`.
- precision: share of rows predicted `C` that were observed as `C`.

A metric whose denominator is zero is undefined and reported as `None`.
Nothing is rounded.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import polars as pl
from pydantic import BaseModel, ConfigDict, Field
from sklearn.metrics import confusion_matrix as sklearn_confusion_matrix

from carpforest.exceptions import InvalidInputError

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

type Labels = pl.Series | Sequence[str | None]

_METRICS_SCHEMA: dict[str, pl.DataType] = {
    "model_id": pl.String(),
    "dataset": pl.String(),
    "target_class": pl.String(),
    "accuracy": pl.Float64(),
    "false_positive_rate": pl.Float64(),
    "precision": pl.Float64(),
    "true_positives": pl.Int64(),
    "false_positives": pl.Int64(),
    "observed_positives": pl.Int64(),
    "observed_negatives": pl.Int64(),
    "predicted_positives": pl.Int64(),
}


# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class ClassMetrics(BaseModel):
    """Metrics for one target class, with the counts they were computed from.

    Attributes:
        target_class (str): The class treated as positive.
        accuracy (float | None): `TP / observed_positives`.
        false_positive_rate (float | None): `FP / observed_negatives`.
        precision (float | None): `TP / predicted_positives`.
        true_positives (int): Rows observed and predicted as the class.
        false_positives (int): Rows predicted as the class but observed otherwise.
        observed_positives (int): Rows observed as the class.
        observed_negatives (int): Rows observed as any other class.
        predicted_positives (int): Rows predicted as the class.
    """

    model_config = ConfigDict(frozen=True)

    target_class: str
    accuracy: float | None = Field(ge=0.0, le=1.0)
    false_positive_rate: float | None = Field(ge=0.0, le=1.0)
    precision: float | None = Field(ge=0.0, le=1.0)
    true_positives: int = Field(ge=0)
    false_positives: int = Field(ge=0)
    observed_positives: int = Field(ge=0)
    observed_negatives: int = Field(ge=0)
    predicted_positives: int = Field(ge=0)


class MetricRecord(ClassMetrics):
    """Class metrics labelled with the model and dataset they describe.

    Attributes:
        model_id (str): Identifier of the fitted model, e.g. `"species_full"`.
        dataset (str): Which data the predictions were made on, e.g.
            `"training"` or `"validation"`.
    """

    model_id: str = Field(min_length=1)
    dataset: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def compute_class_metrics(observed: Labels, predicted: Labels, target_class: str) -> ClassMetrics:
    """Compute accuracy, false-positive rate and precision for one class.

    Args:
        observed (Labels): Observed labels.
        predicted (Labels): Predicted labels, aligned with `observed`.
        target_class (str): The class treated as positive.

    Returns:
        ClassMetrics: The metrics; undefined ones are `None`.

    Raises:
        InvalidInputError: If the label sequences differ in length.

    Examples:
        >>> m = compute_class_metrics(["A", "A", "B"], ["A", "B", "B"], "A")
        >>> m.accuracy, m.false_positive_rate, m.precision
        (0.5, 0.0, 1.0)
    """
    observed_array, predicted_array = _aligned_arrays(observed, predicted)
    is_observed = observed_array == target_class
    is_predicted = predicted_array == target_class

    true_positives = int(np.sum(is_observed & is_predicted))
    false_positives = int(np.sum(~is_observed & is_predicted))
    observed_positives = int(np.sum(is_observed))
    observed_negatives = len(observed_array) - observed_positives
    predicted_positives = int(np.sum(is_predicted))

    return ClassMetrics(
        target_class=target_class,
        accuracy=_ratio(true_positives, observed_positives),
        false_positive_rate=_ratio(false_positives, observed_negatives),
        precision=_ratio(true_positives, predicted_positives),
        true_positives=true_positives,
        false_positives=false_positives,
        observed_positives=observed_positives,
        observed_negatives=observed_negatives,
        predicted_positives=predicted_positives,
    )


def evaluate_model(
    model_id: str,
    observed: Labels,
    predicted: Labels,
    classes: Sequence[str],
    *,
    dataset: str,
) -> list[MetricRecord]:
    """Compute one `MetricRecord` per declared class.

    Args:
        model_id (str): Identifier of the fitted model.
        observed (Labels): Observed labels.
        predicted (Labels): Predicted labels, aligned with `observed`.
        classes (Sequence[str]): Classes to report, in output order.
        dataset (str): Name of the scored dataset.

    Returns:
        list[MetricRecord]: One record per class, in `classes` order.

    Raises:
        InvalidInputError: If the label sequences differ in length.
    """
    return [
        MetricRecord(
            model_id=model_id,
            dataset=dataset,
            **compute_class_metrics(observed, predicted, target_class).model_dump(),
        )
        for target_class in classes
    ]


def metrics_table(records: Sequence[MetricRecord]) -> pl.DataFrame:
    """Collect metric records into a DataFrame; undefined metrics become nulls.

    Args:
        records (Sequence[MetricRecord]): Records to tabulate.

    Returns:
        pl.DataFrame: One row per record with a fixed column schema, also
            when `records` is empty.
    """
    return pl.DataFrame([record.model_dump() for record in records], schema=_METRICS_SCHEMA)


def confusion_matrix(observed: Labels, predicted: Labels, classes: Sequence[str]) -> pl.DataFrame:
    """Tabulate observed against predicted labels.

    Args:
        observed (Labels): Observed labels.
        predicted (Labels): Predicted labels, aligned with `observed`.
        classes (Sequence[str]): Class order for rows and columns.

    Returns:
        pl.DataFrame: An `observed` label column followed by one count
            column per predicted class.

    Raises:
        InvalidInputError: If the label sequences differ in length.
    """
    observed_array, predicted_array = _aligned_arrays(observed, predicted)
    counts = sklearn_confusion_matrix(observed_array, predicted_array, labels=list(classes))
    return pl.DataFrame({"observed": list(classes)}).with_columns(
        pl.Series(label, counts[:, column_index], dtype=pl.Int64) for column_index, label in enumerate(classes)
    )


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _aligned_arrays(observed: Labels, predicted: Labels) -> tuple[np.ndarray, np.ndarray]:
    """Convert two label sequences to object arrays after checking their lengths.

    Args:
        observed (Labels): Observed labels.
        predicted (Labels): Predicted labels.

    Returns:
        tuple[np.ndarray, np.ndarray]: `(observed, predicted)` as object arrays.

    Raises:
        InvalidInputError: If the lengths differ.
    """
    observed_array = np.asarray(list(observed), dtype=object)
    predicted_array = np.asarray(list(predicted), dtype=object)
    if len(observed_array) != len(predicted_array):
        raise InvalidInputError(
            f"observed and predicted must have equal length, got {len(observed_array)} and {len(predicted_array)}"
        )
    return observed_array, predicted_array


def _ratio(numerator: int, denominator: int) -> float | None:
    """Return `numerator / denominator`, or `None` when the denominator is zero."""
    return numerator / denominator if denominator else None
