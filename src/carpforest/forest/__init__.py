"""Random-forest sub-package: models, sampling, splitting, building, training and prediction."""

from __future__ import annotations

from carpforest.forest.importance import importance_table
from carpforest.forest.models import (
    CategoricalRule,
    ClassificationRule,
    DecisionTree,
    Forest,
    ForestParams,
    LeafNode,
    NumericRule,
    Predicate,
    PredicateOp,
    SplitNode,
)
from carpforest.forest.prediction import BatchPrediction, oob_predict, predict, predict_batch, predict_proba
from carpforest.forest.rules import extract_rules
from carpforest.forest.training import DEFAULT_TREE_COUNT, default_feature_subset_size, train_forest

__all__ = [
    "DEFAULT_TREE_COUNT",
    "BatchPrediction",
    "CategoricalRule",
    "ClassificationRule",
    "DecisionTree",
    "Forest",
    "ForestParams",
    "LeafNode",
    "NumericRule",
    "Predicate",
    "PredicateOp",
    "SplitNode",
    "default_feature_subset_size",
    "extract_rules",
    "importance_table",
    "oob_predict",
    "predict",
    "predict_batch",
    "predict_proba",
    "train_forest",
]
