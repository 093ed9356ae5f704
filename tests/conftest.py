"""Shared fixtures: a small synthetic fish-egg dataset and hand-built forests."""

from __future__ import annotations

import numpy as np
import polars as pl
import pytest

from carpforest.forest.models import (
    CategoricalRule,
    DecisionTree,
    Forest,
    ForestParams,
    LeafNode,
    NumericRule,
    SplitNode,
)
from carpforest.schema import CategoricalColumn, DatasetSchema, NumericColumn


# (membrane mean, embryo mean, stages the taxon is sampled at)
_EGG_PROFILES: dict[str, tuple[float, float, list[str]]] = {
    "silver_carp": (5.2, 1.8, ["mid", "late"]),
    "bighead_carp": (4.4, 1.3, ["mid", "late"]),
    "freshwater_drum": (1.6, 1.0, ["early", "mid"]),
}


def make_egg_frame(n_per_taxon: int = 20, seed: int = 7) -> pl.DataFrame:
    """Build a well-separated synthetic egg table with one row per egg.

    Args:
        n_per_taxon (int): Eggs per taxon.
        seed (int): Seed for the value generator.

    Returns:
        pl.DataFrame: Columns `membrane_diameter`, `embryo_diameter`, `stage` and `taxon`.
    """
    rng = np.random.default_rng(seed)
    frames = []
    for taxon, (membrane_mean, embryo_mean, stages) in _EGG_PROFILES.items():
        frames.append(
            pl.DataFrame({
                "membrane_diameter": rng.normal(membrane_mean, 0.15, n_per_taxon),
                "embryo_diameter": rng.normal(embryo_mean, 0.1, n_per_taxon),
                "stage": rng.choice(stages, n_per_taxon).tolist(),
                "taxon": [taxon] * n_per_taxon,
            })
        )
    return pl.concat(frames)


@pytest.fixture
def egg_frame() -> pl.DataFrame:
    """Sixty-row training table, twenty eggs per taxon.

    Returns:
        pl.DataFrame: The synthetic egg table.
    """
    return make_egg_frame()


@pytest.fixture
def three_row_frame() -> pl.DataFrame:
    """The minimal table `x = [1, 2, 5]`, `y = [A, A, B]`.

    Returns:
        pl.DataFrame: Columns `x` and `y`.
    """
    return pl.DataFrame({"x": [1.0, 2.0, 5.0], "y": ["A", "A", "B"]})


@pytest.fixture
def stage_forest() -> Forest:
    """Hand-built single-tree forest splitting `stage` into `{early}` vs the rest.

    Returns:
        Forest: Classes `["drum", "carp"]`; `early` leads to `drum`.
    """
    tree = DecisionTree(
        nodes=[
            SplitNode(
                feature_index=0,
                rule=CategoricalRule(left_levels=frozenset({"early"})),
                left=1,
                right=2,
                n_samples=4,
                impurity_decrease=2.0,
                depth=0,
            ),
            LeafNode(class_counts=[2.0, 0.0], n_samples=2, depth=1),
            LeafNode(class_counts=[0.0, 2.0], n_samples=2, depth=1),
        ],
        oob_indices=[],
        feature_decrease=[2.0, 0.0],
    )
    return Forest(
        response="taxon",
        classes=["drum", "carp"],
        feature_schema=DatasetSchema(
            columns=[
                CategoricalColumn(name="stage", levels=["early", "mid", "late"]),
                NumericColumn(name="membrane_diameter"),
            ]
        ),
        params=ForestParams(tree_count=1, feature_subset_size=1, bootstrap=False),
        trees=[tree],
        feature_importance={"stage": 2.0, "membrane_diameter": 0.0},
        n_training_rows=4,
    )


@pytest.fixture
def threshold_forest() -> Forest:
    """Hand-built two-tree forest: one split at `x <= 3.5`, one single-leaf tree.

    Returns:
        Forest: Classes `["A", "B"]`.
    """
    split_tree = DecisionTree(
        nodes=[
            SplitNode(
                feature_index=0,
                rule=NumericRule(threshold=3.5),
                left=1,
                right=2,
                n_samples=3,
                impurity_decrease=4.0 / 3.0,
                depth=0,
            ),
            LeafNode(class_counts=[2.0, 0.0], n_samples=2, depth=1),
            LeafNode(class_counts=[0.0, 1.0], n_samples=1, depth=1),
        ],
        oob_indices=[],
        feature_decrease=[4.0 / 3.0],
    )
    stump = DecisionTree(
        nodes=[LeafNode(class_counts=[1.0, 2.0], n_samples=3, depth=0)],
        oob_indices=[0],
        feature_decrease=[0.0],
    )
    return Forest(
        response="y",
        classes=["A", "B"],
        feature_schema=DatasetSchema(columns=[NumericColumn(name="x")]),
        params=ForestParams(tree_count=2, feature_subset_size=1),
        trees=[split_tree, stump],
        feature_importance={"x": 4.0 / 3.0},
        n_training_rows=3,
    )
