"""Mean-decrease-Gini importance ranking of a trained forest."""

from __future__ import annotations

import polars as pl

from carpforest.forest.models import Forest


def importance_table(forest: Forest) -> pl.DataFrame:
    """Rank predictors by their Gini impurity decrease summed over all trees.

    `mean_decrease_gini` divides the total by the tree count, matching the
    scale reported by R's `randomForest::importance`. `relative_importance`
    is each predictor's share of the grand total (all zeros when no tree
    ever split).

    Args:
        forest (Forest): A trained forest.

    Returns:
        pl.DataFrame: Columns `feature`, `total_decrease_gini`,
            `mean_decrease_gini` and `relative_importance`, sorted by
            decreasing importance. Ties keep schema order.
    """
    grand_total = sum(forest.feature_importance.values())
    totals = pl.DataFrame(
        {
            "feature": list(forest.feature_importance),
            "total_decrease_gini": list(forest.feature_importance.values()),
        },
        schema={"feature": pl.String, "total_decrease_gini": pl.Float64},
    )
    relative = pl.col("total_decrease_gini") / grand_total if grand_total > 0 else pl.lit(0.0)
    return totals.with_columns(
        mean_decrease_gini=pl.col("total_decrease_gini") / forest.params.tree_count,
        relative_importance=relative,
    ).sort("total_decrease_gini", descending=True, maintain_order=True)
