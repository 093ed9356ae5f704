"""Study orchestration: train, reuse, score and tabulate several models at once.

A study fits one forest per `ModelSpec` on the training table, scores it
in-sample (out-of-bag by default) and on an optional held-out validation
table, and gathers the metric and importance tables behind the manuscript
figures.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import polars as pl
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, model_validator

from carpforest.config import ForestSettings
from carpforest.exceptions import ColumnsNotFoundError, RowFailure
from carpforest.forest.importance import importance_table
from carpforest.forest.models import Forest
from carpforest.forest.prediction import oob_predict, predict, predict_batch
from carpforest.forest.training import train_forest
from carpforest.grouping import collapse_labels
from carpforest.logging import STAGE_LEVEL
from carpforest.metrics import MetricRecord, evaluate_model, metrics_table
from carpforest.persistence import load_or_train_forest

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

type InSampleMethod = Literal["oob", "resubstitution"]

TRAINING_DATASET: str = "training"
VALIDATION_DATASET: str = "validation"


# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class ModelSpec(BaseModel):
    """Declaration of one model of a study.

    Attributes:
        model_id (str): Unique identifier, e.g. `"species_full"`; also the
            cache file stem.
        response (str): Response column.
        predictors (list[str]): Predictor columns, in feature order.
        classes (list[str]): Declared classes after label grouping.
        label_groups (dict[str, list[str]]): Group name to member labels,
            applied to the response before training and scoring.

    Examples:
        >>> spec = ModelSpec(
        ...     model_id="carp_vs_native",
        ...     response="taxon",
        ...     predictors=["membrane_diameter", "embryo_diameter"],
        ...     classes=["invasive_carp", "native"],
        ...     label_groups={"invasive_carp": ["silver_carp", "bighead_carp"], "native": ["freshwater_drum"]},
        ... )
        >>> spec.model_id
        'carp_vs_native'
    """

    model_config = ConfigDict(frozen=True)

    model_id: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_.-]+$")
    response: str = Field(min_length=1)
    predictors: list[str] = Field(min_length=1)
    classes: list[str] = Field(min_length=2)
    label_groups: dict[str, list[str]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_response_not_predictor(self) -> ModelSpec:
        """Reject a response listed among the predictors.

        Returns:
            ModelSpec: The validated model instance.

        Raises:
            ValueError: If `response` is one of `predictors`.
        """
        if self.response in self.predictors:
            raise ValueError(f"response '{self.response}' cannot also be a predictor")
        return self


@dataclass(frozen=True)
class StudyResult:
    """Everything a study produced.

    Attributes:
        forests (dict[str, Forest]): Trained forest per model id.
        metrics (pl.DataFrame): Metric rows for every model, dataset and class.
        importance (dict[str, pl.DataFrame]): Importance table per model id.
        validation_failures (dict[str, list[RowFailure]]): Validation cells
            that could not be scored, per model id.
    """

    forests: dict[str, Forest]
    metrics: pl.DataFrame
    importance: dict[str, pl.DataFrame]
    validation_failures: dict[str, list[RowFailure]] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def run_study(
    training: pl.DataFrame,
    validation: pl.DataFrame | None,
    specs: Sequence[ModelSpec],
    *,
    settings: ForestSettings | None = None,
    cache_dir: str | Path | None = None,
    force_retrain: bool = False,
    in_sample: InSampleMethod = "oob",
) -> StudyResult:
    """Train and evaluate every model of a study.

    Models are processed in `specs` order and share no state. With
    `cache_dir`, each forest is saved as `<cache_dir>/<model_id>.json` and
    reused on later runs when it matches its spec.

    Args:
        training (pl.DataFrame): Training table.
        validation (pl.DataFrame | None): Held-out table, or `None` to skip
            validation scoring.
        specs (Sequence[ModelSpec]): Models to fit; ids must be unique.
        settings (ForestSettings | None): Shared hyperparameters; `None`
            reads them from the environment.
        cache_dir (str | Path | None): Directory of saved forests.
        force_retrain (bool): Retrain even when a matching forest is saved.
        in_sample (InSampleMethod): `"oob"` scores each training row with
            the trees it was out-of-bag for; `"resubstitution"` scores it
            with every tree.

    Returns:
        StudyResult: Forests, metrics, importance tables and validation failures.

    Raises:
        ValueError: If two specs share a model id.
        InvalidInputError: If a model cannot be trained on `training`.
    """
    model_ids = [spec.model_id for spec in specs]
    if len(set(model_ids)) != len(model_ids):
        raise ValueError(f"model ids must be unique, got {model_ids}")
    settings = settings or ForestSettings()

    forests: dict[str, Forest] = {}
    importance: dict[str, pl.DataFrame] = {}
    validation_failures: dict[str, list[RowFailure]] = {}
    records: list[MetricRecord] = []

    for spec in specs:
        train_df = _prepare_frame(training, spec)
        forest = _fit(train_df, spec, settings=settings, cache_dir=cache_dir, force_retrain=force_retrain)
        forests[spec.model_id] = forest
        importance[spec.model_id] = importance_table(forest)

        in_sample_predictions = oob_predict(forest, train_df) if in_sample == "oob" else predict(forest, train_df)
        records.extend(_evaluate(spec, train_df[spec.response], in_sample_predictions, dataset=TRAINING_DATASET))

        if validation is not None:
            validation_df = _prepare_frame(validation, spec).filter(pl.col(spec.response).is_not_null())
            batch = predict_batch(forest, validation_df)
            validation_failures[spec.model_id] = batch.failures
            records.extend(
                _evaluate(spec, validation_df[spec.response], batch.predictions, dataset=VALIDATION_DATASET)
            )

        logger.log(
            STAGE_LEVEL,
            "Model evaluated",
            model_id=spec.model_id,
            validation_failed_rows=len({failure.row_index for failure in validation_failures.get(spec.model_id, [])}),
        )

    return StudyResult(
        forests=forests,
        metrics=metrics_table(records),
        importance=importance,
        validation_failures=validation_failures,
    )


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _prepare_frame(df: pl.DataFrame, spec: ModelSpec) -> pl.DataFrame:
    """Apply the spec's label groups to the response column.

    Args:
        df (pl.DataFrame): Source table.
        spec (ModelSpec): The model declaration.

    Returns:
        pl.DataFrame: The table with a String response column.

    Raises:
        ColumnsNotFoundError: If the response column is absent.
    """
    if spec.response not in df.columns:
        raise ColumnsNotFoundError(missing_columns=[spec.response], available_columns=df.columns)
    if spec.label_groups:
        return collapse_labels(df, spec.response, spec.label_groups)
    return df.with_columns(pl.col(spec.response).cast(pl.String))


def _fit(
    train_df: pl.DataFrame,
    spec: ModelSpec,
    *,
    settings: ForestSettings,
    cache_dir: str | Path | None,
    force_retrain: bool,
) -> Forest:
    """Train the spec's forest, going through the cache when one is configured.

    Args:
        train_df (pl.DataFrame): Prepared training table.
        spec (ModelSpec): The model declaration.
        settings (ForestSettings): Shared hyperparameters.
        cache_dir (str | Path | None): Directory of saved forests.
        force_retrain (bool): Retrain even when a matching forest is saved.

    Returns:
        Forest: The trained or reused forest.
    """
    if cache_dir is None:
        return train_forest(
            train_df, spec.response, spec.predictors, classes=spec.classes, **settings.training_kwargs()
        )
    return load_or_train_forest(
        Path(cache_dir) / f"{spec.model_id}.json",
        train_df,
        spec.response,
        spec.predictors,
        classes=spec.classes,
        force_retrain=force_retrain,
        **settings.training_kwargs(),
    )


def _evaluate(spec: ModelSpec, observed: pl.Series, predicted: pl.Series, *, dataset: str) -> list[MetricRecord]:
    """Compute metric records over the rows that received a prediction.

    Args:
        spec (ModelSpec): The model declaration.
        observed (pl.Series): Observed labels.
        predicted (pl.Series): Predictions; null rows are left out.
        dataset (str): Name of the scored dataset.

    Returns:
        list[MetricRecord]: One record per class of the spec.
    """
    scored = predicted.is_not_null()
    return evaluate_model(
        spec.model_id,
        observed.filter(scored).cast(pl.String),
        predicted.filter(scored),
        spec.classes,
        dataset=dataset,
    )
