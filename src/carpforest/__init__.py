"""carpforest: Random-forest classifiers for separating invasive carp eggs from native species."""

from loguru import logger

from carpforest.config import ForestSettings
from carpforest.exceptions import InvalidInputError, RowFailure, SchemaMismatchError
from carpforest.forest import (
    BatchPrediction,
    Forest,
    extract_rules,
    importance_table,
    oob_predict,
    predict,
    predict_batch,
    predict_proba,
    train_forest,
)
from carpforest.grouping import collapse_labels
from carpforest.logging import PACKAGE_NAME, enable_logging
from carpforest.metrics import (
    ClassMetrics,
    MetricRecord,
    compute_class_metrics,
    confusion_matrix,
    evaluate_model,
    metrics_table,
)
from carpforest.persistence import load_forest, load_or_train_forest, save_forest
from carpforest.pipeline import ModelSpec, StudyResult, run_study
from carpforest.schema import CategoricalColumn, DatasetSchema, NumericColumn, infer_schema

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the carpforest module by default

__all__ = [
    "BatchPrediction",
    "CategoricalColumn",
    "ClassMetrics",
    "DatasetSchema",
    "Forest",
    "ForestSettings",
    "InvalidInputError",
    "MetricRecord",
    "ModelSpec",
    "NumericColumn",
    "RowFailure",
    "SchemaMismatchError",
    "StudyResult",
    "collapse_labels",
    "compute_class_metrics",
    "confusion_matrix",
    "enable_logging",
    "evaluate_model",
    "extract_rules",
    "importance_table",
    "infer_schema",
    "load_forest",
    "load_or_train_forest",
    "metrics_table",
    "oob_predict",
    "predict",
    "predict_batch",
    "predict_proba",
    "run_study",
    "save_forest",
    "train_forest",
]
