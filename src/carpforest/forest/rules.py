"""Human-readable rule extraction from the trees of a trained forest."""

from __future__ import annotations

from typing import Any

from carpforest.exceptions import InvalidInputError
from carpforest.forest.models import (
    CategoricalRule,
    ClassificationRule,
    Forest,
    LeafNode,
    Predicate,
    SplitNode,
)

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

THRESHOLD_DECIMAL_PLACES: int = 4  # Display precision of numeric thresholds in rules.
_CONFIDENCE_DECIMAL_PLACES: int = 4


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def extract_rules(forest: Forest, tree_index: int = 0) -> list[ClassificationRule]:
    """Extract one rule per leaf from a tree of the forest.

    Walks the tree from the root in preorder, so rules appear left branch
    first. Categorical splits produce `"in"` predicates on both branches:
    the right branch lists every declared level not routed left.

    Args:
        forest (Forest): A trained forest.
        tree_index (int): Which tree to describe. Defaults to the first.

    Returns:
        list[ClassificationRule]: One rule per leaf, in preorder.

    Raises:
        InvalidInputError: If `tree_index` is outside `[0, tree_count)`.

    Examples:
        >>> rules = extract_rules(forest, tree_index=3)  # doctest: +SKIP
        >>> print(rules[0])  # doctest: +SKIP
        IF membrane_diameter <= 3.5 THEN silver_carp (1.00, n=12)
    """
    if not 0 <= tree_index < len(forest.trees):
        raise InvalidInputError(f"tree_index must be in [0, {len(forest.trees)}), got {tree_index}")
    rules: list[ClassificationRule] = []
    _walk_tree(forest=forest, tree_index=tree_index, node_id=0, path_predicates=[], rules=rules)
    return rules


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _walk_tree(
    *,
    forest: Forest,
    tree_index: int,
    node_id: int,
    path_predicates: list[Predicate],
    rules: list[ClassificationRule],
) -> None:
    """Recursively walk a tree node and accumulate leaf rules.

    Args:
        forest (Forest): The owning forest.
        tree_index (int): Index of the tree being walked.
        node_id (int): The current node index.
        path_predicates (list[Predicate]): Predicates from the root to `node_id`.
        rules (list[ClassificationRule]): Accumulator; leaf rules are appended in-place.
    """
    node = forest.trees[tree_index].nodes[node_id]
    if isinstance(node, LeafNode):
        rules.append(_build_leaf_rule(forest, node, path_predicates))
        return

    left_predicate, right_predicate = _build_split_predicates(forest, node)
    shared_kwargs: dict[str, Any] = {"forest": forest, "tree_index": tree_index, "rules": rules}
    _walk_tree(**shared_kwargs, node_id=node.left, path_predicates=[*path_predicates, left_predicate])
    _walk_tree(**shared_kwargs, node_id=node.right, path_predicates=[*path_predicates, right_predicate])


def _build_split_predicates(forest: Forest, node: SplitNode) -> tuple[Predicate, Predicate]:
    """Build the left and right branch predicates of a split node.

    Args:
        forest (Forest): The owning forest (provides names and levels).
        node (SplitNode): The split node.

    Returns:
        tuple[Predicate, Predicate]: `(left_predicate, right_predicate)`.
    """
    column = forest.feature_schema.columns[node.feature_index]
    if isinstance(node.rule, CategoricalRule):
        left_levels = set(node.rule.left_levels)
        right_levels = {level for level in column.levels if level not in left_levels}  # type: ignore[union-attr]
        return (
            Predicate(variable=column.name, operator="in", value=left_levels),
            Predicate(variable=column.name, operator="in", value=right_levels),
        )

    threshold = round(node.rule.threshold, THRESHOLD_DECIMAL_PLACES)
    return (
        Predicate(variable=column.name, operator="<=", value=threshold),
        Predicate(variable=column.name, operator=">", value=threshold),
    )


def _build_leaf_rule(forest: Forest, leaf: LeafNode, path_predicates: list[Predicate]) -> ClassificationRule:
    """Construct a classification rule from a leaf's class histogram.

    Args:
        forest (Forest): The owning forest (provides class labels).
        leaf (LeafNode): The leaf node.
        path_predicates (list[Predicate]): Predicates along the root-to-leaf path.

    Returns:
        ClassificationRule: The constructed rule.
    """
    class_code = leaf.predicted_code
    confidence = leaf.class_counts[class_code] / sum(leaf.class_counts)
    return ClassificationRule(
        predicates=path_predicates,
        prediction=forest.classes[class_code],
        samples=leaf.n_samples,
        confidence=round(confidence, _CONFIDENCE_DECIMAL_PLACES),
    )
