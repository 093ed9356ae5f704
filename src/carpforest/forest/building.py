"""Recursive growth of a single classification tree."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from carpforest.forest.models import DecisionTree, ForestParams, LeafNode, SplitNode
from carpforest.forest.sampling import BootstrapSample
from carpforest.forest.splitting import FeatureLayout, find_best_split, sample_candidate_features


def build_tree(
    feature_matrix: np.ndarray,
    target_codes: np.ndarray,
    sample: BootstrapSample,
    *,
    layout: FeatureLayout,
    n_classes: int,
    params: ForestParams,
    rng: np.random.Generator,
) -> DecisionTree:
    """Grow one unpruned tree on a bootstrap sample.

    Each node draws `params.feature_subset_size` candidate features, asks the
    split evaluator for the best split among them and recurses into both
    children. A node becomes a leaf when it has fewer than
    `params.min_samples_split` rows, is pure, sits at `params.max_depth`, or
    has no valid split.

    Args:
        feature_matrix (np.ndarray): Full training matrix, shape `(n_rows, n_features)`.
        target_codes (np.ndarray): Class code per training row.
        sample (BootstrapSample): Rows the tree is grown on and its out-of-bag rows.
        layout (FeatureLayout): Numeric/categorical layout of the features.
        n_classes (int): Number of declared classes.
        params (ForestParams): Stopping rules and feature subset size.
        rng (np.random.Generator): Generator owned by this tree.

    Returns:
        DecisionTree: The grown tree with its out-of-bag rows and per-feature
            impurity decrease.
    """
    builder = _TreeBuilder(
        feature_matrix=feature_matrix,
        target_codes=target_codes,
        layout=layout,
        n_classes=n_classes,
        params=params,
        rng=rng,
    )
    builder.grow(np.asarray(sample.indices, dtype=np.intp), depth=0)
    return DecisionTree(
        nodes=builder.finished_nodes(),
        oob_indices=[int(index) for index in sample.oob_indices],
        feature_decrease=builder.feature_decrease.tolist(),
    )


@dataclass
class _TreeBuilder:
    """Mutable state of one tree under construction.

    Nodes are appended in preorder: a placeholder reserves the parent's slot
    before its children are grown, then is replaced by the finished node.
    """

    feature_matrix: np.ndarray
    target_codes: np.ndarray
    layout: FeatureLayout
    n_classes: int
    params: ForestParams
    rng: np.random.Generator
    nodes: list[LeafNode | SplitNode | None] = field(default_factory=list)
    feature_decrease: np.ndarray = field(init=False)

    def __post_init__(self) -> None:
        self.feature_decrease = np.zeros(self.layout.n_features)

    def grow(self, sample_indices: np.ndarray, *, depth: int) -> int:
        """Grow the subtree for `sample_indices` and return its root node index.

        Args:
            sample_indices (np.ndarray): Rows (with duplicates) reaching this node.
            depth (int): Depth of this node.

        Returns:
            int: Index of the subtree root in the node list.
        """
        node_id = len(self.nodes)
        self.nodes.append(None)
        class_counts = np.bincount(self.target_codes[sample_indices], minlength=self.n_classes)

        split = None
        if not self._is_terminal(len(sample_indices), class_counts, depth):
            candidate_features = sample_candidate_features(
                self.rng, self.feature_matrix, sample_indices, self.params.feature_subset_size
            )
            if candidate_features:
                split = find_best_split(
                    self.feature_matrix,
                    self.target_codes,
                    sample_indices,
                    layout=self.layout,
                    candidate_features=candidate_features,
                    n_classes=self.n_classes,
                    min_samples_leaf=self.params.min_samples_leaf,
                    max_exhaustive_levels=self.params.max_exhaustive_levels,
                )

        if split is None:
            self.nodes[node_id] = LeafNode(
                class_counts=class_counts.astype(float).tolist(),
                n_samples=len(sample_indices),
                depth=depth,
            )
            return node_id

        left_id = self.grow(sample_indices[split.left_mask], depth=depth + 1)
        right_id = self.grow(sample_indices[~split.left_mask], depth=depth + 1)
        self.feature_decrease[split.feature_index] += split.impurity_decrease
        self.nodes[node_id] = SplitNode(
            feature_index=split.feature_index,
            rule=split.rule,
            left=left_id,
            right=right_id,
            n_samples=len(sample_indices),
            impurity_decrease=split.impurity_decrease,
            depth=depth,
        )
        return node_id

    def finished_nodes(self) -> list[LeafNode | SplitNode]:
        """Return the node list, asserting every placeholder was filled.

        Returns:
            list[LeafNode | SplitNode]: Nodes in preorder.

        Raises:
            RuntimeError: If a placeholder remains.
        """
        if any(node is None for node in self.nodes):
            raise RuntimeError("Invariant violation: tree has unfinished nodes")
        return [node for node in self.nodes if node is not None]

    def _is_terminal(self, n_samples: int, class_counts: np.ndarray, depth: int) -> bool:
        """Return whether a node must be a leaf before any split is evaluated.

        Args:
            n_samples (int): Rows at the node.
            class_counts (np.ndarray): Class histogram of the node.
            depth (int): Depth of the node.

        Returns:
            bool: `True` for too-small, pure or depth-limited nodes.
        """
        if n_samples < self.params.min_samples_split:
            return True
        if np.count_nonzero(class_counts) < 2:
            return True
        return self.params.max_depth is not None and depth >= self.params.max_depth
