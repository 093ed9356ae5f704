"""Pydantic models for trees, forests, split rules and extracted rules."""

from __future__ import annotations

import math
import operator
from collections.abc import Callable
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from carpforest.schema import DatasetSchema

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

type PredicateOp = Literal["<=", ">", "in"]

# ---------------------------------------------------------------------------
# Split rules and nodes
# ---------------------------------------------------------------------------


class NumericRule(BaseModel):
    """Threshold split on a numeric feature; rows with `x <= threshold` go left.

    Attributes:
        kind (Literal["numeric"]): Discriminator field; always `"numeric"`.
        threshold (float): Midpoint between two consecutive observed values; always finite.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["numeric"] = "numeric"
    threshold: float = Field(allow_inf_nan=False, description="Rows with a value <= threshold follow the left child.")


class CategoricalRule(BaseModel):
    """Bipartition of a categorical feature's levels; listed levels go left.

    Attributes:
        kind (Literal["categorical"]): Discriminator field; always `"categorical"`.
        left_levels (frozenset[str]): Levels routed to the left child. Every
            other declared level, including levels unobserved at the node,
            is routed right.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["categorical"] = "categorical"
    left_levels: frozenset[str] = Field(min_length=1, description="Levels routed to the left child.")


type SplitRule = Annotated[NumericRule | CategoricalRule, Field(discriminator="kind")]


class LeafNode(BaseModel):
    """Terminal node carrying the class histogram of the rows that reached it.

    Attributes:
        kind (Literal["leaf"]): Discriminator field; always `"leaf"`.
        class_counts (list[float]): Count of in-bag rows per class, in the
            forest's class order. Bootstrap duplicates are counted each time.
        n_samples (int): Number of in-bag rows (with duplicates) at the leaf.
        depth (int): Distance from the root.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["leaf"] = "leaf"
    class_counts: list[float] = Field(min_length=2)
    n_samples: int = Field(ge=1)
    depth: int = Field(ge=0)

    @property
    def predicted_code(self) -> int:
        """Index of the majority class; ties go to the earliest class."""
        return max(range(len(self.class_counts)), key=lambda code: (self.class_counts[code], -code))


class SplitNode(BaseModel):
    """Internal node routing rows to exactly two children.

    Attributes:
        kind (Literal["split"]): Discriminator field; always `"split"`.
        feature_index (int): Position of the split feature in the forest schema.
        rule (SplitRule): Numeric threshold or categorical level set.
        left (int): Index of the left child in the tree's node list.
        right (int): Index of the right child in the tree's node list.
        n_samples (int): Number of in-bag rows (with duplicates) at the node.
        impurity_decrease (float): Sample-weighted Gini decrease achieved by
            the split, `n * gini(node) - n_l * gini(left) - n_r * gini(right)`.
        depth (int): Distance from the root.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["split"] = "split"
    feature_index: int = Field(ge=0)
    rule: SplitRule
    left: int = Field(ge=1)
    right: int = Field(ge=1)
    n_samples: int = Field(ge=2)
    impurity_decrease: float = Field(ge=0.0)
    depth: int = Field(ge=0)


type TreeNode = Annotated[LeafNode | SplitNode, Field(discriminator="kind")]


class DecisionTree(BaseModel):
    """One fitted tree stored as a flat preorder node list.

    Attributes:
        nodes (list[TreeNode]): Node 0 is the root. Each other node is the
            child of exactly one split node.
        oob_indices (list[int]): Training rows never drawn into this tree's
            bootstrap sample, ascending.
        feature_decrease (list[float]): Summed impurity decrease per feature,
            in schema order.
    """

    model_config = ConfigDict(frozen=True)

    nodes: list[TreeNode] = Field(min_length=1)
    oob_indices: list[int] = Field(default_factory=list)
    feature_decrease: list[float] = Field(min_length=1)

    @model_validator(mode="after")
    def _validate_strict_binary_tree(self) -> DecisionTree:
        """Validate that child links form a single tree rooted at node 0.

        Returns:
            DecisionTree: The validated model instance.

        Raises:
            ValueError: If a child index is out of range, points at the root
                or at its own ancestor chain, or a node has zero or several parents.
        """
        n_nodes = len(self.nodes)
        parent_count = [0] * n_nodes
        for node_id, node in enumerate(self.nodes):
            if not isinstance(node, SplitNode):
                continue
            for child in (node.left, node.right):
                if not node_id < child < n_nodes:
                    raise ValueError(f"node {node_id} has invalid child index {child}")
                parent_count[child] += 1
        orphans_or_shared = [node_id for node_id in range(1, n_nodes) if parent_count[node_id] != 1]
        if orphans_or_shared:
            raise ValueError(f"nodes {orphans_or_shared} must have exactly one parent")
        return self

    @property
    def depth(self) -> int:
        """Largest node depth in the tree."""
        return max(node.depth for node in self.nodes)

    @property
    def leaf_count(self) -> int:
        """Number of leaf nodes."""
        return sum(1 for node in self.nodes if isinstance(node, LeafNode))


class ForestParams(BaseModel):
    """Hyperparameters a forest was trained with.

    Attributes:
        tree_count (int): Number of trees.
        feature_subset_size (int): Candidate features drawn per node.
        min_samples_split (int): Smallest node that may be split.
        min_samples_leaf (int): Smallest allowed child.
        max_depth (int | None): Depth limit; `None` grows trees fully.
        max_exhaustive_levels (int): Largest observed level count for which
            every categorical bipartition is enumerated.
        bootstrap (bool): Whether each tree is grown on a bootstrap sample.
        seed (int | None): Global seed the per-tree generators were spawned from.
    """

    model_config = ConfigDict(frozen=True)

    tree_count: int = Field(ge=1)
    feature_subset_size: int = Field(ge=1)
    min_samples_split: int = Field(default=2, ge=2)
    min_samples_leaf: int = Field(default=1, ge=1)
    max_depth: int | None = Field(default=None, ge=1)
    max_exhaustive_levels: int = Field(default=10, ge=2, le=16)
    bootstrap: bool = True
    seed: int | None = None


class Forest(BaseModel):
    """A trained random forest and everything needed to score new rows with it.

    Attributes:
        response (str): Response column the forest predicts.
        classes (list[str]): Declared classes; position is the class code and
            the tie-break order.
        feature_schema (DatasetSchema): Predictor declarations recorded at training time.
        params (ForestParams): Training hyperparameters.
        trees (list[DecisionTree]): The fitted trees, in tree-index order.
        feature_importance (dict[str, float]): Impurity decrease summed over
            all trees, keyed by predictor name in schema order.
        n_training_rows (int): Number of training rows.
        training_fingerprint (int | None): Hash of the response and predictor
            columns of the training table, used to decide whether a saved
            forest still matches its data. `None` for forests built by hand.
    """

    model_config = ConfigDict(frozen=True)

    response: str = Field(min_length=1)
    classes: list[str] = Field(min_length=2)
    feature_schema: DatasetSchema
    params: ForestParams
    trees: list[DecisionTree] = Field(min_length=1)
    feature_importance: dict[str, float]
    n_training_rows: int = Field(ge=1)
    training_fingerprint: int | None = None

    @field_validator("classes", mode="after")
    @classmethod
    def _validate_classes_unique(cls, value: list[str]) -> list[str]:
        """Reject class lists containing duplicates.

        Args:
            value (list[str]): Declared classes.

        Returns:
            list[str]: The validated classes, unchanged.

        Raises:
            ValueError: If a class appears more than once.
        """
        if len(set(value)) != len(value):
            raise ValueError(f"classes must be unique, got {value}")
        return value

    @model_validator(mode="after")
    def _validate_consistency(self) -> Forest:
        """Validate tree count, importance keys and leaf histogram widths.

        Returns:
            Forest: The validated model instance.

        Raises:
            ValueError: If the tree list length differs from `params.tree_count`,
                importance keys differ from the schema names, or a leaf
                histogram does not have one entry per class.
        """
        errors: list[str] = []
        if len(self.trees) != self.params.tree_count:
            errors.append(f"trees length ({len(self.trees)}) must equal tree_count ({self.params.tree_count})")
        if list(self.feature_importance) != self.feature_schema.names:
            errors.append(
                f"feature_importance keys {list(self.feature_importance)} must match schema {self.feature_schema.names}"
            )
        n_classes = len(self.classes)
        if any(
            len(node.class_counts) != n_classes
            for tree in self.trees
            for node in tree.nodes
            if isinstance(node, LeafNode)
        ):
            errors.append(f"every leaf histogram must have {n_classes} entries")
        if errors:
            raise ValueError("; ".join(errors))
        return self

    @property
    def predictors(self) -> list[str]:
        """Predictor names in feature-matrix order."""
        return self.feature_schema.names


# ---------------------------------------------------------------------------
# Extracted rules
# ---------------------------------------------------------------------------


class Predicate(BaseModel):
    """A single boolean condition on one predictor along a root-to-leaf path.

    Attributes:
        variable (str): Predictor name, e.g. `"membrane_diameter"`.
        operator (PredicateOp): `"<="` / `">"` for thresholds, `"in"` for level sets.
        value (float | set[str]): Threshold or set of levels.

    Examples:
        >>> p = Predicate(variable="membrane_diameter", operator="<=", value=3.5)
        >>> str(p)
        'membrane_diameter <= 3.5'
        >>> p.eval(2.0)
        True
        >>> p2 = Predicate(variable="stage", operator="in", value={"blastula", "gastrula"})
        >>> str(p2)
        'stage in {blastula, gastrula}'
    """

    variable: str = Field(description="Predictor name the condition applies to.")
    operator: PredicateOp = Field(description="'<=' or '>' for thresholds; 'in' for level sets.")
    value: float | set[str] = Field(description="Threshold, or the set of levels for 'in'.")

    @model_validator(mode="after")
    def _validate_operator_value_compatibility(self) -> Predicate:
        """Validate that the operator and value type are compatible.

        Returns:
            Predicate: The validated model instance.

        Raises:
            ValueError: If `"in"` is paired with a threshold or a threshold
                operator with a set.
        """
        try:
            _validate_operator_threshold_types(self.operator, self.value)
        except TypeError as exc:
            raise ValueError(str(exc)) from exc
        return self

    def __str__(self) -> str:
        """Return the predicate as `"<variable> <operator> <value>"`.

        Returns:
            str: e.g. `"stage in {blastula, gastrula}"` or `"temperature > 21.5"`.
        """
        if self.operator == "in":
            sorted_values = ", ".join(sorted(self.value))  # type: ignore[arg-type]
            return f"{self.variable} {self.operator} {{{sorted_values}}}"
        return f"{self.variable} {self.operator} {self.value}"

    def eval(self, x: float | str) -> bool:
        """Evaluate this predicate against a predictor value.

        Args:
            x (float | str): The predictor value to test.

        Returns:
            bool: `True` if the predicate holds for `x`.
        """
        return _apply_operator(self.operator, x, self.value)


class ClassificationRule(BaseModel):
    """The path from a tree's root to one leaf, with the leaf's prediction.

    Attributes:
        predicates (list[Predicate]): Conditions along the path. Empty for a
            single-leaf tree.
        prediction (str): Majority class at the leaf.
        samples (int): In-bag rows (with duplicates) that reached the leaf.
        confidence (float): Share of the leaf's rows in the majority class.
    """

    predicates: list[Predicate]
    prediction: str
    samples: int = Field(ge=1)
    confidence: float = Field(ge=0.0, le=1.0)

    def __str__(self) -> str:
        """Return the rule as `"IF a AND b THEN class (confidence)"`.

        Returns:
            str: Human-readable rule.
        """
        condition = " AND ".join(str(predicate) for predicate in self.predicates) or "TRUE"
        return f"IF {condition} THEN {self.prediction} ({self.confidence:.2f}, n={self.samples})"


# ---------------------------------------------------------------------------
# Private helpers -- operator evaluation
# ---------------------------------------------------------------------------

_SCALAR_OPS: dict[str, Callable[[Any, Any], bool]] = {
    "<=": operator.le,
    ">": operator.gt,
}


def _apply_operator(op: PredicateOp, x: float | str, threshold: float | frozenset[str] | set[str]) -> bool:
    """Apply a comparison operator between a predictor value and a threshold.

    Args:
        op (PredicateOp): The comparison operator.
        x (float | str): The predictor value.
        threshold (float | frozenset[str] | set[str]): Threshold or level set.

    Returns:
        bool: Result of applying `op`.

    Raises:
        ValueError: If `op` is not a recognized operator.
    """
    _validate_operator_threshold_types(op, threshold)
    if op in _SCALAR_OPS:
        return _SCALAR_OPS[op](x, threshold)
    if op == "in" and isinstance(threshold, (set, frozenset)):
        return x in threshold
    raise ValueError(f"Unexpected operator: {op!r}")


def _validate_operator_threshold_types(op: PredicateOp, threshold: float | frozenset[str] | set[str]) -> None:
    """Raise TypeError when operator and threshold types are incompatible.

    Args:
        op (PredicateOp): The comparison operator.
        threshold (float | frozenset[str] | set[str]): The threshold value.

    Raises:
        TypeError: If a scalar operator is paired with a set or `"in"` with a scalar.
    """
    is_set = isinstance(threshold, (set, frozenset))
    if op in _SCALAR_OPS and is_set:
        raise TypeError(f"Scalar operator '{op}' cannot compare against a set")
    if op == "in" and not is_set:
        raise TypeError("Membership operator 'in' requires a set of levels")
    if op in _SCALAR_OPS and isinstance(threshold, float) and math.isnan(threshold):
        raise TypeError(f"Scalar operator '{op}' cannot compare against NaN")
