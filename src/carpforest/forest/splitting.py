"""Split evaluation: Gini impurity decrease over numeric thresholds and categorical bipartitions.

All impurity quantities are sample-weighted: the decrease of a split of node
`t` into `l` and `r` is `n_t * gini(t) - n_l * gini(l) - n_r * gini(r)`.
Using `n * gini(c) = n - sum(c_k ** 2) / n`, the decrease reduces to
`S(l) + S(r) - S(t)` with `S(c) = sum(c_k ** 2) / n`, which is what the
vectorized candidate scans below compute.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import NamedTuple

import numpy as np

from carpforest.forest.models import CategoricalRule, NumericRule
from carpforest.schema import CategoricalColumn, DatasetSchema

# Decreases at or below this are treated as "no improvement".
_MIN_IMPURITY_DECREASE: float = 1e-10


class FeatureLayout(NamedTuple):
    """Per-feature facts the split evaluator needs, in feature-matrix order.

    Attributes:
        is_categorical (np.ndarray): Boolean flag per feature.
        levels (list[list[str] | None]): Declared levels for categorical
            features, `None` for numeric ones.
    """

    is_categorical: np.ndarray
    levels: list[list[str] | None]

    @classmethod
    def from_schema(cls, schema: DatasetSchema) -> FeatureLayout:
        """Build a layout from a dataset schema.

        Args:
            schema (DatasetSchema): The predictor declarations.

        Returns:
            FeatureLayout: Layout in schema order.
        """
        levels = [column.levels if isinstance(column, CategoricalColumn) else None for column in schema.columns]
        return cls(is_categorical=np.array([lv is not None for lv in levels], dtype=bool), levels=levels)

    @property
    def n_features(self) -> int:
        """Number of features."""
        return len(self.levels)


class SplitCandidate(NamedTuple):
    """The best split found for a node.

    Attributes:
        feature_index (int): Feature the split tests.
        rule (NumericRule | CategoricalRule): The split rule.
        impurity_decrease (float): Sample-weighted Gini decrease, always positive.
        left_mask (np.ndarray): For each node sample, whether it goes left.
    """

    feature_index: int
    rule: NumericRule | CategoricalRule
    impurity_decrease: float
    left_mask: np.ndarray


def gini_impurity(class_counts: Sequence[float] | np.ndarray) -> float:
    """Compute the Gini impurity `1 - sum(p_k ** 2)` of a class histogram.

    Args:
        class_counts (Sequence[float] | np.ndarray): Count per class.

    Returns:
        float: Impurity in `[0, 1 - 1/K]`; `0.0` for an empty histogram.

    Examples:
        >>> gini_impurity([5, 5])
        0.5
        >>> gini_impurity([3, 0])
        0.0
    """
    counts = np.asarray(class_counts, dtype=np.float64)
    total = counts.sum()
    if total <= 0:
        return 0.0
    proportions = counts / total
    return float(1.0 - np.sum(proportions**2))


def sample_candidate_features(
    rng: np.random.Generator,
    feature_matrix: np.ndarray,
    sample_indices: np.ndarray,
    subset_size: int,
) -> list[int]:
    """Draw the random feature subset evaluated at one node.

    Features are visited in a random permutation; features that are constant
    within the node cannot split it and are skipped without counting towards
    `subset_size`.

    Args:
        rng (np.random.Generator): Generator owned by the tree being grown.
        feature_matrix (np.ndarray): Full training matrix.
        sample_indices (np.ndarray): Rows (with duplicates) at the node.
        subset_size (int): Number of non-constant features to draw.

    Returns:
        list[int]: Chosen feature indices, ascending. May be shorter than
            `subset_size`, or empty when every feature is constant.
    """
    node_matrix = feature_matrix[sample_indices]
    chosen: list[int] = []
    for feature_index in rng.permutation(feature_matrix.shape[1]):
        column = node_matrix[:, feature_index]
        if column.min() == column.max():
            continue
        chosen.append(int(feature_index))
        if len(chosen) == subset_size:
            break
    return sorted(chosen)


def find_best_split(
    feature_matrix: np.ndarray,
    target_codes: np.ndarray,
    sample_indices: np.ndarray,
    *,
    layout: FeatureLayout,
    candidate_features: Sequence[int],
    n_classes: int,
    min_samples_leaf: int = 1,
    max_exhaustive_levels: int = 10,
) -> SplitCandidate | None:
    """Find the split of a node with the largest Gini impurity decrease.

    Features are evaluated in ascending index order and candidates within a
    feature in a fixed order (ascending thresholds; ascending bipartition
    masks or ordered prefixes), and only a strictly larger decrease replaces
    the current best, so the first best candidate wins ties.

    Args:
        feature_matrix (np.ndarray): Full training matrix, shape `(n_rows, n_features)`.
        target_codes (np.ndarray): Class code per training row.
        sample_indices (np.ndarray): Rows (with duplicates) at the node.
        layout (FeatureLayout): Numeric/categorical layout of the features.
        candidate_features (Sequence[int]): Features to evaluate.
        n_classes (int): Number of declared classes.
        min_samples_leaf (int): Smallest allowed child.
        max_exhaustive_levels (int): Largest observed level count for which
            all `2 ** (k - 1) - 1` bipartitions are enumerated; above it the
            levels are ordered by their share of the node's majority class and
            only the `k - 1` ordered prefixes are tried.

    Returns:
        SplitCandidate | None: The best split, or `None` when the node is
            pure, too small for two children, or no candidate reduces impurity.
    """
    n_samples = len(sample_indices)
    node_targets = target_codes[sample_indices]
    node_counts = np.bincount(node_targets, minlength=n_classes).astype(np.float64)
    if n_samples < 2 * min_samples_leaf or np.count_nonzero(node_counts) < 2:
        return None

    parent_term = float(np.sum(node_counts**2) / n_samples)
    best: SplitCandidate | None = None

    for feature_index in sorted(candidate_features):
        values = feature_matrix[sample_indices, feature_index]
        level_names = layout.levels[feature_index]
        if level_names is None:
            scan = _scan_numeric(values, node_targets, node_counts, min_samples_leaf=min_samples_leaf)
        else:
            scan = _scan_categorical(
                values,
                node_targets,
                node_counts,
                level_names=level_names,
                min_samples_leaf=min_samples_leaf,
                max_exhaustive_levels=max_exhaustive_levels,
            )
        if scan is None:
            continue
        children_term, rule, left_mask = scan
        decrease = children_term - parent_term
        if decrease <= _MIN_IMPURITY_DECREASE:
            continue
        if best is None or decrease > best.impurity_decrease:
            best = SplitCandidate(feature_index, rule, decrease, left_mask)

    return best


# ---------------------------------------------------------------------------
# Private helpers -- candidate scans
# ---------------------------------------------------------------------------


def _children_terms(left_counts: np.ndarray, node_counts: np.ndarray, min_samples_leaf: int) -> np.ndarray:
    """Score candidate partitions as `S(left) + S(right)`; invalid ones score `-inf`.

    Args:
        left_counts (np.ndarray): Left-child class counts, shape `(n_candidates, n_classes)`.
        node_counts (np.ndarray): Node class counts, shape `(n_classes,)`.
        min_samples_leaf (int): Smallest allowed child.

    Returns:
        np.ndarray: Score per candidate.
    """
    right_counts = node_counts - left_counts
    n_left = left_counts.sum(axis=1)
    n_right = right_counts.sum(axis=1)
    valid = (n_left >= min_samples_leaf) & (n_right >= min_samples_leaf)
    scores = np.full(len(left_counts), -np.inf)
    scores[valid] = (np.sum(left_counts[valid] ** 2, axis=1) / n_left[valid]) + (
        np.sum(right_counts[valid] ** 2, axis=1) / n_right[valid]
    )
    return scores


def _scan_numeric(
    values: np.ndarray,
    node_targets: np.ndarray,
    node_counts: np.ndarray,
    *,
    min_samples_leaf: int,
) -> tuple[float, NumericRule, np.ndarray] | None:
    """Scan midpoints between consecutive distinct values of a numeric feature.

    Args:
        values (np.ndarray): Feature values of the node samples.
        node_targets (np.ndarray): Class codes of the node samples.
        node_counts (np.ndarray): Class histogram of the node.
        min_samples_leaf (int): Smallest allowed child.

    Returns:
        tuple[float, NumericRule, np.ndarray] | None: Best `S(l) + S(r)`,
            its rule and left mask, or `None` without a valid candidate.
    """
    order = np.argsort(values, kind="stable")
    sorted_values = values[order]
    one_hot = np.zeros((len(values), len(node_counts)))
    one_hot[np.arange(len(values)), node_targets[order]] = 1.0
    # Candidate i puts sorted positions 0..i on the left.
    left_counts = np.cumsum(one_hot, axis=0)[:-1]
    scores = _children_terms(left_counts, node_counts, min_samples_leaf)
    scores[sorted_values[1:] <= sorted_values[:-1]] = -np.inf
    if not np.isfinite(scores).any():
        return None

    best_position = int(np.argmax(scores))
    lower = float(sorted_values[best_position])
    upper = float(sorted_values[best_position + 1])
    threshold = (lower + upper) / 2.0
    if not lower <= threshold < upper:
        # Midpoint rounded up to `upper` for adjacent floats.
        threshold = lower
    return float(scores[best_position]), NumericRule(threshold=threshold), values <= threshold


def _scan_categorical(
    values: np.ndarray,
    node_targets: np.ndarray,
    node_counts: np.ndarray,
    *,
    level_names: list[str],
    min_samples_leaf: int,
    max_exhaustive_levels: int,
) -> tuple[float, CategoricalRule, np.ndarray] | None:
    """Scan bipartitions of the levels observed at the node.

    Args:
        values (np.ndarray): Level codes of the node samples (as floats).
        node_targets (np.ndarray): Class codes of the node samples.
        node_counts (np.ndarray): Class histogram of the node.
        level_names (list[str]): Declared levels of the feature.
        min_samples_leaf (int): Smallest allowed child.
        max_exhaustive_levels (int): Exhaustive enumeration limit.

    Returns:
        tuple[float, CategoricalRule, np.ndarray] | None: Best `S(l) + S(r)`,
            its rule and left mask, or `None` without a valid candidate.
    """
    codes = values.astype(np.intp)
    level_counts = np.zeros((len(level_names), len(node_counts)))
    np.add.at(level_counts, (codes, node_targets), 1.0)
    observed = np.flatnonzero(level_counts.sum(axis=1) > 0)
    n_observed = len(observed)
    if n_observed < 2:
        return None

    observed_counts = level_counts[observed]
    if n_observed <= max_exhaustive_levels:
        membership = _exhaustive_bipartitions(n_observed)
    else:
        membership = _ordered_prefixes(observed_counts, majority_class=int(np.argmax(node_counts)))

    scores = _children_terms(membership.astype(np.float64) @ observed_counts, node_counts, min_samples_leaf)
    if not np.isfinite(scores).any():
        return None

    best_candidate = int(np.argmax(scores))
    left_codes = observed[membership[best_candidate]]
    rule = CategoricalRule(left_levels=frozenset(level_names[code] for code in left_codes))
    return float(scores[best_candidate]), rule, np.isin(codes, left_codes)


def _exhaustive_bipartitions(n_levels: int) -> np.ndarray:
    """Enumerate every split of `n_levels` levels into two non-empty groups.

    The first level is pinned to the left group so that each bipartition
    appears once; candidate `m` puts level `j + 1` on the left when bit `j`
    of `m` is set. The all-left mask is excluded.

    Args:
        n_levels (int): Number of observed levels (at least 2).

    Returns:
        np.ndarray: Boolean membership matrix of shape `(2 ** (n_levels - 1) - 1, n_levels)`.
    """
    masks = np.arange(2 ** (n_levels - 1) - 1)
    other_bits = ((masks[:, None] >> np.arange(n_levels - 1)) & 1).astype(bool)
    return np.column_stack([np.ones(len(masks), dtype=bool), other_bits])


def _ordered_prefixes(observed_counts: np.ndarray, *, majority_class: int) -> np.ndarray:
    """Build the `k - 1` prefix partitions of levels ordered by majority-class share.

    Args:
        observed_counts (np.ndarray): Class counts per observed level, shape `(k, n_classes)`.
        majority_class (int): The node's majority class code.

    Returns:
        np.ndarray: Boolean membership matrix of shape `(k - 1, k)`.
    """
    share = observed_counts[:, majority_class] / observed_counts.sum(axis=1)
    order = np.argsort(share, kind="stable")
    rank = np.empty(len(order), dtype=np.intp)
    rank[order] = np.arange(len(order))
    return rank[None, :] <= np.arange(len(order) - 1)[:, None]
