"""Forest inference: class predictions, class probabilities and out-of-bag predictions.

Every tree is compiled to flat numpy arrays (feature, threshold, level masks,
child links and leaf histograms, in the spirit of sklearn's `tree_`
structure) so that a whole batch of rows is routed through a tree one depth
level at a time.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
import polars as pl
from loguru import logger

from carpforest.exceptions import InvalidInputError, RowFailure, SchemaMismatchError
from carpforest.forest.models import CategoricalRule, DecisionTree, Forest, LeafNode
from carpforest.schema import encode_features

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class BatchPrediction(NamedTuple):
    """Predictions for a batch in which some rows may fail schema validation.

    Attributes:
        predictions (pl.Series): Predicted class per row; null for failing rows.
        probabilities (pl.DataFrame): One column per class; nulls for failing rows.
        failures (list[RowFailure]): Every failing cell, ordered by row.
    """

    predictions: pl.Series
    probabilities: pl.DataFrame
    failures: list[RowFailure]

    @property
    def failed_rows(self) -> list[int]:
        """Sorted indices of rows that could not be scored."""
        return sorted({failure.row_index for failure in self.failures})


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def predict_proba(forest: Forest, df: pl.DataFrame) -> pl.DataFrame:
    """Compute per-class probabilities for every row of `df`.

    Leaf histograms reached in every tree are summed and normalized, so each
    row's probabilities sum to 1.

    Args:
        forest (Forest): A trained forest.
        df (pl.DataFrame): Rows to score; must contain every predictor.

    Returns:
        pl.DataFrame: One Float64 column per class, in declared class order.

    Raises:
        SchemaMismatchError: If any row is missing a predictor value or holds
            a categorical level unseen at training time.
    """
    matrix = _encode_or_raise(forest, df)
    return _probability_frame(forest, _normalize(_forest_counts(forest, matrix)))


def predict(forest: Forest, df: pl.DataFrame) -> pl.Series:
    """Predict the class of every row of `df`.

    The predicted class has the largest summed leaf count; ties go to the
    class declared first.

    Args:
        forest (Forest): A trained forest.
        df (pl.DataFrame): Rows to score; must contain every predictor.

    Returns:
        pl.Series: Predicted labels, named after the forest's response.

    Raises:
        SchemaMismatchError: If any row fails schema validation.
    """
    matrix = _encode_or_raise(forest, df)
    codes = np.argmax(_forest_counts(forest, matrix), axis=1)
    return pl.Series(forest.response, [forest.classes[code] for code in codes], dtype=pl.String)


def predict_batch(forest: Forest, df: pl.DataFrame) -> BatchPrediction:
    """Score every row that matches the training schema and report the rest.

    Unlike `predict`, a failing row does not abort the batch; its prediction
    and probabilities are null and its failures are returned.

    Args:
        forest (Forest): A trained forest.
        df (pl.DataFrame): Rows to score.

    Returns:
        BatchPrediction: Predictions, probabilities and failures.
    """
    encoded = encode_features(df, forest.feature_schema)
    valid_mask = encoded.valid_mask
    probabilities = np.full((df.height, len(forest.classes)), np.nan)
    if valid_mask.any():
        probabilities[valid_mask] = _normalize(_forest_counts(forest, encoded.matrix[valid_mask]))

    labels: list[str | None] = [None] * df.height
    for row_index in np.flatnonzero(valid_mask):
        labels[row_index] = forest.classes[int(np.argmax(probabilities[row_index]))]

    if encoded.failures:
        failed_rows = df.height - int(valid_mask.sum())
        logger.warning(
            "Rows failed schema validation",
            response=forest.response,
            failed_rows=failed_rows,
            first_failure=str(encoded.failures[0]),
        )
    return BatchPrediction(
        predictions=pl.Series(forest.response, labels, dtype=pl.String),
        probabilities=_probability_frame(forest, probabilities).fill_nan(None),
        failures=encoded.failures,
    )


def oob_predict(forest: Forest, df: pl.DataFrame) -> pl.Series:
    """Predict each training row using only the trees it was out-of-bag for.

    Args:
        forest (Forest): A forest trained on `df`.
        df (pl.DataFrame): The training data, in training row order.

    Returns:
        pl.Series: Out-of-bag prediction per row; null for rows that were in
            the bootstrap sample of every tree.

    Raises:
        InvalidInputError: If `df` does not have the training row count.
        SchemaMismatchError: If any row fails schema validation.
    """
    if df.height != forest.n_training_rows:
        raise InvalidInputError(
            f"Out-of-bag prediction needs the {forest.n_training_rows} training rows, got {df.height}"
        )
    matrix = _encode_or_raise(forest, df)
    counts = np.zeros((df.height, len(forest.classes)))
    covered = np.zeros(df.height, dtype=bool)
    for tree in forest.trees:
        if not tree.oob_indices:
            continue
        oob_rows = np.asarray(tree.oob_indices, dtype=np.intp)
        counts[oob_rows] += _compile_tree(forest, tree).leaf_counts(matrix[oob_rows])
        covered[oob_rows] = True

    labels: list[str | None] = [
        forest.classes[int(np.argmax(row_counts))] if is_covered else None
        for row_counts, is_covered in zip(counts, covered, strict=True)
    ]
    return pl.Series(forest.response, labels, dtype=pl.String)


# ---------------------------------------------------------------------------
# Private helpers -- compiled trees
# ---------------------------------------------------------------------------


class _CompiledTree(NamedTuple):
    """Array form of a `DecisionTree`, indexed by node id.

    Attributes:
        feature (np.ndarray): Split feature per node; `-1` at leaves.
        threshold (np.ndarray): Numeric threshold per node; `NaN` elsewhere.
        is_categorical (np.ndarray): Whether the node's rule is categorical.
        left_level_mask (np.ndarray): `(n_nodes, max_levels)` flags of level
            codes routed left by categorical nodes.
        left (np.ndarray): Left child per node; `-1` at leaves.
        right (np.ndarray): Right child per node; `-1` at leaves.
        value (np.ndarray): `(n_nodes, n_classes)` leaf histograms; zeros elsewhere.
    """

    feature: np.ndarray
    threshold: np.ndarray
    is_categorical: np.ndarray
    left_level_mask: np.ndarray
    left: np.ndarray
    right: np.ndarray
    value: np.ndarray

    def leaf_counts(self, matrix: np.ndarray) -> np.ndarray:
        """Route every row to its leaf and return the leaf histograms.

        Args:
            matrix (np.ndarray): Encoded rows, shape `(n_rows, n_features)`.

        Returns:
            np.ndarray: Histogram of the reached leaf per row, shape `(n_rows, n_classes)`.
        """
        node_ids = np.zeros(matrix.shape[0], dtype=np.intp)
        while True:
            active = np.flatnonzero(self.feature[node_ids] >= 0)
            if active.size == 0:
                break
            active_nodes = node_ids[active]
            values = matrix[active, self.feature[active_nodes]]
            categorical = self.is_categorical[active_nodes]
            level_codes = np.where(categorical, values, 0.0).astype(np.intp)
            goes_left = np.where(
                categorical,
                self.left_level_mask[active_nodes, level_codes],
                values <= self.threshold[active_nodes],
            )
            node_ids[active] = np.where(goes_left, self.left[active_nodes], self.right[active_nodes])
        return self.value[node_ids]


def _compile_tree(forest: Forest, tree: DecisionTree) -> _CompiledTree:
    """Convert a tree's node list into `_CompiledTree` arrays.

    Args:
        forest (Forest): Owning forest (provides schema levels and class count).
        tree (DecisionTree): The tree to compile.

    Returns:
        _CompiledTree: Array form of the tree.
    """
    n_nodes = len(tree.nodes)
    columns = forest.feature_schema.columns
    max_levels = max((len(getattr(column, "levels", ())) for column in columns), default=0) or 1

    feature = np.full(n_nodes, -1, dtype=np.intp)
    threshold = np.full(n_nodes, np.nan)
    is_categorical = np.zeros(n_nodes, dtype=bool)
    left_level_mask = np.zeros((n_nodes, max_levels), dtype=bool)
    left = np.full(n_nodes, -1, dtype=np.intp)
    right = np.full(n_nodes, -1, dtype=np.intp)
    value = np.zeros((n_nodes, len(forest.classes)))

    for node_id, node in enumerate(tree.nodes):
        if isinstance(node, LeafNode):
            value[node_id] = node.class_counts
            continue
        feature[node_id] = node.feature_index
        left[node_id] = node.left
        right[node_id] = node.right
        if isinstance(node.rule, CategoricalRule):
            is_categorical[node_id] = True
            levels = columns[node.feature_index].levels  # type: ignore[union-attr]
            left_level_mask[node_id, : len(levels)] = [level in node.rule.left_levels for level in levels]
        else:
            threshold[node_id] = node.rule.threshold

    return _CompiledTree(feature, threshold, is_categorical, left_level_mask, left, right, value)


# ---------------------------------------------------------------------------
# Private helpers -- aggregation
# ---------------------------------------------------------------------------


def _encode_or_raise(forest: Forest, df: pl.DataFrame) -> np.ndarray:
    """Encode `df` with the forest schema, raising on any failing row.

    Args:
        forest (Forest): A trained forest.
        df (pl.DataFrame): Rows to encode.

    Returns:
        np.ndarray: The encoded feature matrix.

    Raises:
        SchemaMismatchError: If any row fails schema validation.
    """
    encoded = encode_features(df, forest.feature_schema)
    if encoded.failures:
        logger.warning(
            "Prediction rejected: rows failed schema validation",
            response=forest.response,
            failures=len(encoded.failures),
        )
        raise SchemaMismatchError(encoded.failures)
    return encoded.matrix


def _forest_counts(forest: Forest, matrix: np.ndarray) -> np.ndarray:
    """Sum the leaf histograms reached in every tree, accumulating in tree order.

    Args:
        forest (Forest): A trained forest.
        matrix (np.ndarray): Encoded rows.

    Returns:
        np.ndarray: Aggregate class counts, shape `(n_rows, n_classes)`.
    """
    counts = np.zeros((matrix.shape[0], len(forest.classes)))
    for tree in forest.trees:
        counts += _compile_tree(forest, tree).leaf_counts(matrix)
    return counts


def _normalize(counts: np.ndarray) -> np.ndarray:
    """Scale each row of aggregate counts to sum to 1.

    Args:
        counts (np.ndarray): Aggregate class counts; every row sum is positive.

    Returns:
        np.ndarray: Row-normalized probabilities.
    """
    return counts / counts.sum(axis=1, keepdims=True)


def _probability_frame(forest: Forest, probabilities: np.ndarray) -> pl.DataFrame:
    """Wrap a probability matrix as a DataFrame with one column per class.

    Args:
        forest (Forest): The forest whose classes name the columns.
        probabilities (np.ndarray): Shape `(n_rows, n_classes)`.

    Returns:
        pl.DataFrame: Float64 columns in declared class order.
    """
    return pl.DataFrame(
        {label: probabilities[:, code] for code, label in enumerate(forest.classes)},
        schema=dict.fromkeys(forest.classes, pl.Float64),
    )
