"""Forest training: input validation, per-tree bootstrap and growth, importance reduction."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np
import polars as pl
from joblib import Parallel, delayed
from loguru import logger
from pydantic import ValidationError

from carpforest.exceptions import (
    ColumnsNotFoundError,
    EmptyDatasetError,
    InsufficientClassesError,
    InvalidInputError,
    MissingValuesError,
)
from carpforest.forest.building import build_tree
from carpforest.forest.models import DecisionTree, Forest, ForestParams
from carpforest.forest.sampling import draw_bootstrap_sample, spawn_tree_generators
from carpforest.forest.splitting import FeatureLayout
from carpforest.logging import STAGE_LEVEL
from carpforest.schema import DatasetSchema, dataset_fingerprint, encode_features, encode_response, infer_schema

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

DEFAULT_TREE_COUNT: int = 500  # randomForest's ntree default.
_MIN_CLASS_COUNT: int = 2


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def default_feature_subset_size(n_features: int) -> int:
    """Return the classic classification default `floor(sqrt(p))`, at least 1.

    Args:
        n_features (int): Number of predictors.

    Returns:
        int: Number of candidate features drawn per node.

    Examples:
        >>> default_feature_subset_size(10)
        3
        >>> default_feature_subset_size(1)
        1
    """
    return max(1, math.isqrt(n_features))


def train_forest(
    df: pl.DataFrame,
    response: str,
    predictors: Sequence[str],
    *,
    classes: Sequence[str],
    tree_count: int = DEFAULT_TREE_COUNT,
    feature_subset_size: int | None = None,
    seed: int | None = None,
    min_samples_split: int = 2,
    min_samples_leaf: int = 1,
    max_depth: int | None = None,
    max_exhaustive_levels: int = 10,
    bootstrap: bool = True,
    levels: Mapping[str, Sequence[str]] | None = None,
    n_jobs: int = 1,
) -> Forest:
    """Train a random-forest classifier on `df`.

    For each of `tree_count` trees a bootstrap sample is drawn, a tree is
    grown on it, its out-of-bag rows are recorded and its per-feature
    impurity decrease is added to the forest importance. Each tree owns a
    generator spawned from `seed`, and importance is reduced in tree-index
    order, so a fixed seed gives identical forests for any `n_jobs`.

    Args:
        df (pl.DataFrame): Training data.
        response (str): Response column name.
        predictors (Sequence[str]): Predictor column names, in feature order.
        classes (Sequence[str]): Declared response classes. Order fixes the
            class codes and the prediction tie-break.
        tree_count (int): Number of trees. Defaults to 500.
        feature_subset_size (int | None): Candidate features per node;
            `None` uses `floor(sqrt(len(predictors)))`.
        seed (int | None): Global random seed; `None` is non-deterministic.
        min_samples_split (int): Smallest node that may be split.
        min_samples_leaf (int): Smallest allowed child.
        max_depth (int | None): Depth limit; `None` grows trees fully.
        max_exhaustive_levels (int): Largest observed level count for which
            every categorical bipartition is enumerated.
        bootstrap (bool): Grow each tree on a bootstrap sample; when `False`
            every tree sees every row once and has no out-of-bag rows.
        levels (Mapping[str, Sequence[str]] | None): Declared levels for
            categorical predictors; undeclared ones are inferred.
        n_jobs (int): Parallel workers for tree growth; `1` is sequential,
            `-1` uses every core.

    Returns:
        Forest: The trained forest.

    Raises:
        EmptyDatasetError: If `df` has no rows.
        ColumnsNotFoundError: If the response or a predictor is absent.
        InvalidInputError: For any other malformed input, including a
            response listed among the predictors, invalid hyperparameters,
            missing predictor values (`MissingValuesError`), infinite or
            unreadable predictor values, labels outside
            `classes` (`UnknownClassError`) and fewer than two observed
            classes (`InsufficientClassesError`).
    """
    schema, feature_matrix, target_codes = _prepare_training_data(
        df, response, predictors, classes=classes, levels=levels
    )
    params = _build_params(
        n_features=len(schema.columns),
        tree_count=tree_count,
        feature_subset_size=feature_subset_size,
        min_samples_split=min_samples_split,
        min_samples_leaf=min_samples_leaf,
        max_depth=max_depth,
        max_exhaustive_levels=max_exhaustive_levels,
        bootstrap=bootstrap,
        seed=seed,
    )
    layout = FeatureLayout.from_schema(schema)
    generators = spawn_tree_generators(seed, tree_count)

    logger.debug(
        "Training forest",
        response=response,
        rows=df.height,
        predictors=len(schema.columns),
        tree_count=tree_count,
        feature_subset_size=params.feature_subset_size,
        n_jobs=n_jobs,
    )
    grow_kwargs: dict[str, Any] = {"layout": layout, "n_classes": len(classes), "params": params}
    if n_jobs == 1:
        trees = [
            _grow_tree(tree_index, feature_matrix, target_codes, rng=rng, **grow_kwargs)
            for tree_index, rng in enumerate(generators)
        ]
    else:
        trees = Parallel(n_jobs=n_jobs)(
            delayed(_grow_tree)(tree_index, feature_matrix, target_codes, rng=rng, **grow_kwargs)
            for tree_index, rng in enumerate(generators)
        )

    feature_importance = _reduce_importance(trees, schema.names)
    forest = Forest(
        response=response,
        classes=list(classes),
        feature_schema=schema,
        params=params,
        trees=trees,
        feature_importance=feature_importance,
        n_training_rows=df.height,
        training_fingerprint=dataset_fingerprint(df, [response, *predictors]),
    )
    logger.log(
        STAGE_LEVEL,
        "Forest trained",
        response=response,
        tree_count=tree_count,
        mean_depth=round(sum(tree.depth for tree in trees) / tree_count, 2),
        mean_leaves=round(sum(tree.leaf_count for tree in trees) / tree_count, 2),
    )
    return forest


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _grow_tree(
    tree_index: int,
    feature_matrix: np.ndarray,
    target_codes: np.ndarray,
    *,
    layout: FeatureLayout,
    n_classes: int,
    params: ForestParams,
    rng: np.random.Generator,
) -> DecisionTree:
    """Draw one bootstrap sample and grow a tree on it.

    Args:
        tree_index (int): Position of the tree in the forest.
        feature_matrix (np.ndarray): Full training matrix.
        target_codes (np.ndarray): Class code per training row.
        layout (FeatureLayout): Numeric/categorical layout of the features.
        n_classes (int): Number of declared classes.
        params (ForestParams): Training hyperparameters.
        rng (np.random.Generator): Generator owned by this tree.

    Returns:
        DecisionTree: The grown tree.
    """
    sample = draw_bootstrap_sample(len(target_codes), rng, bootstrap=params.bootstrap)
    tree = build_tree(
        feature_matrix,
        target_codes,
        sample,
        layout=layout,
        n_classes=n_classes,
        params=params,
        rng=rng,
    )
    logger.debug(
        "Tree grown",
        tree_index=tree_index,
        nodes=len(tree.nodes),
        depth=tree.depth,
        oob_rows=len(tree.oob_indices),
    )
    return tree


def _prepare_training_data(
    df: pl.DataFrame,
    response: str,
    predictors: Sequence[str],
    *,
    classes: Sequence[str],
    levels: Mapping[str, Sequence[str]] | None,
) -> tuple[DatasetSchema, np.ndarray, np.ndarray]:
    """Validate the training inputs and encode features and response.

    Args:
        df (pl.DataFrame): Training data.
        response (str): Response column name.
        predictors (Sequence[str]): Predictor column names.
        classes (Sequence[str]): Declared classes.
        levels (Mapping[str, Sequence[str]] | None): Declared categorical levels.

    Returns:
        tuple[DatasetSchema, np.ndarray, np.ndarray]: Schema, feature matrix
            and class codes.

    Raises:
        EmptyDatasetError: If `df` has no rows.
        ColumnsNotFoundError: If the response is absent.
        InvalidInputError: On malformed classes, predictors or values.
    """
    if df.height == 0:
        raise EmptyDatasetError()
    if response not in df.columns:
        raise ColumnsNotFoundError(missing_columns=[response], available_columns=df.columns)
    if response in predictors:
        raise InvalidInputError(f"Response column '{response}' cannot also be a predictor")
    if len(set(classes)) != len(classes):
        raise InvalidInputError(f"Declared classes must be unique, got {list(classes)}")
    if len(classes) < _MIN_CLASS_COUNT:
        raise InsufficientClassesError(observed_classes=list(classes))

    target_codes = encode_response(df[response], classes)
    observed_classes = [classes[code] for code in np.unique(target_codes)]
    if len(observed_classes) < _MIN_CLASS_COUNT:
        raise InsufficientClassesError(observed_classes=observed_classes)

    schema = infer_schema(df, predictors, levels=levels)
    encoded = encode_features(df, schema)
    if encoded.failures:
        first = encoded.failures[0]
        failing_rows = {
            failure.row_index
            for failure in encoded.failures
            if failure.column == first.column and failure.reason == first.reason
        }
        if first.reason == "missing value":
            raise MissingValuesError(first.column, len(failing_rows))
        raise InvalidInputError(f"Column '{first.column}' has {len(failing_rows)} unusable value(s), first at {first}")
    return schema, encoded.matrix, target_codes


def _build_params(*, n_features: int, feature_subset_size: int | None, **kwargs: object) -> ForestParams:
    """Resolve the feature subset size and validate hyperparameters.

    Args:
        n_features (int): Number of predictors.
        feature_subset_size (int | None): Requested subset size, or `None`
            for the default.
        **kwargs (object): Remaining `ForestParams` fields.

    Returns:
        ForestParams: Validated hyperparameters.

    Raises:
        InvalidInputError: If the subset size exceeds the predictor count or
            any hyperparameter is out of range.
    """
    subset_size = default_feature_subset_size(n_features) if feature_subset_size is None else feature_subset_size
    if subset_size > n_features:
        raise InvalidInputError(f"feature_subset_size ({subset_size}) cannot exceed the predictor count ({n_features})")
    try:
        return ForestParams(feature_subset_size=subset_size, **kwargs)
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid forest hyperparameters: {exc}") from exc


def _reduce_importance(trees: Sequence[DecisionTree], feature_names: Sequence[str]) -> dict[str, float]:
    """Sum per-tree impurity decrease per feature, accumulating in tree order.

    Args:
        trees (Sequence[DecisionTree]): Trees in tree-index order.
        feature_names (Sequence[str]): Predictor names in schema order.

    Returns:
        dict[str, float]: Total impurity decrease per predictor, in schema order.
    """
    totals = [0.0] * len(feature_names)
    for tree in trees:
        for feature_index, decrease in enumerate(tree.feature_decrease):
            totals[feature_index] += decrease
    return dict(zip(feature_names, totals, strict=True))
