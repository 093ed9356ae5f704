"""Training settings loaded from the environment or a `.env` file."""

from __future__ import annotations

from typing import Any

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings

from carpforest.forest.models import ForestParams
from carpforest.forest.training import DEFAULT_TREE_COUNT


class ForestSettings(
    BaseSettings,
    env_prefix="CARPFOREST_",
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
):
    """Random-forest hyperparameters shared by every model of a study.

    Each field can be overridden with a `CARPFOREST_`-prefixed environment
    variable, e.g. `CARPFOREST_TREE_COUNT=1000` or `CARPFOREST_SEED=2024`.
    Hyperparameter bounds are those of `ForestParams`.

    Attributes:
        tree_count (int): Trees per forest.
        feature_subset_size (int | None): Candidate features per node;
            `None` uses `floor(sqrt(p))`.
        min_samples_split (int): Smallest node that may be split.
        min_samples_leaf (int): Smallest allowed child.
        max_depth (int | None): Depth limit; `None` grows trees fully.
        max_exhaustive_levels (int): Largest level count for which every
            categorical bipartition is enumerated.
        bootstrap (bool): Grow each tree on a bootstrap sample.
        seed (int | None): Global seed; `None` is non-deterministic.
        n_jobs (int): Parallel workers for tree growth.
    """

    tree_count: int = Field(default=DEFAULT_TREE_COUNT, description="Trees per forest.")
    feature_subset_size: int | None = Field(default=None, description="Candidate features per node.")
    min_samples_split: int = Field(default=2, description="Smallest node that may be split.")
    min_samples_leaf: int = Field(default=1, description="Smallest allowed child.")
    max_depth: int | None = Field(default=None, description="Depth limit; None grows trees fully.")
    max_exhaustive_levels: int = Field(default=10, description="Exhaustive categorical search limit.")
    bootstrap: bool = Field(default=True, description="Grow each tree on a bootstrap sample.")
    seed: int | None = Field(default=None, description="Global random seed.")
    n_jobs: int = Field(default=1, description="Parallel workers for tree growth; -1 uses every core.")

    @model_validator(mode="after")
    def _validate_forest_params(self) -> ForestSettings:
        """Check the hyperparameters against the bounds of `ForestParams`.

        Returns:
            ForestSettings: The validated settings.

        Raises:
            ValueError: If any hyperparameter is out of range.
        """
        fields = self.model_dump(exclude={"feature_subset_size", "n_jobs"})
        subset_size = 1 if self.feature_subset_size is None else self.feature_subset_size
        try:
            ForestParams(feature_subset_size=subset_size, **fields)
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc
        return self

    def training_kwargs(self) -> dict[str, Any]:
        """Return the settings as keyword arguments for `train_forest`.

        Returns:
            dict[str, Any]: Every field, keyed by its `train_forest` parameter name.
        """
        return self.model_dump()
