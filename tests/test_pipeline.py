"""Tests for `run_study` and `ModelSpec`."""

from __future__ import annotations

from pathlib import Path

import polars as pl
import pytest
from pydantic import ValidationError
from pytest_check import check

from carpforest.config import ForestSettings
from carpforest.exceptions import RowFailure
from carpforest.pipeline import TRAINING_DATASET, VALIDATION_DATASET, ModelSpec, run_study

EGG_PREDICTORS: list[str] = ["membrane_diameter", "embryo_diameter", "stage"]

SPECIES_SPEC = ModelSpec(
    model_id="species",
    response="taxon",
    predictors=EGG_PREDICTORS,
    classes=["silver_carp", "bighead_carp", "freshwater_drum"],
)
CARP_SPEC = ModelSpec(
    model_id="carp_vs_native",
    response="taxon",
    predictors=["membrane_diameter", "embryo_diameter"],
    classes=["invasive_carp", "native"],
    label_groups={"invasive_carp": ["silver_carp", "bighead_carp"], "native": ["freshwater_drum"]},
)


@pytest.fixture
def settings() -> ForestSettings:
    """Small, seeded settings for quick studies.

    Returns:
        ForestSettings: Ten trees, seed 5.
    """
    return ForestSettings(tree_count=10, seed=5)


@pytest.fixture
def validation_frame(egg_frame: pl.DataFrame) -> pl.DataFrame:
    """Held-out rows plus one unseen stage level and one unlabelled egg.

    Args:
        egg_frame (pl.DataFrame): Synthetic egg table, used as the row template.

    Returns:
        pl.DataFrame: Twelve rows; row 10 has stage `hatching`, row 11 no taxon.
    """
    held_out = pl.concat([egg_frame.head(4), egg_frame.slice(20, 3), egg_frame.tail(3)])
    extra = pl.DataFrame({
        "membrane_diameter": [5.0, 1.5],
        "embryo_diameter": [1.7, 1.0],
        "stage": ["hatching", "early"],
        "taxon": ["silver_carp", None],
    })
    return pl.concat([held_out, extra])


class TestModelSpec:
    """Tests for `ModelSpec` validation."""

    def test_rejects_response_among_predictors(self) -> None:
        """The response cannot also be a predictor."""
        with pytest.raises(ValidationError, match="cannot also be a predictor"):
            ModelSpec(model_id="m", response="taxon", predictors=["taxon"], classes=["a", "b"])

    @pytest.mark.parametrize("model_id", ["", "carp vs native", "../escape"])
    def test_rejects_unsafe_model_ids(self, model_id: str) -> None:
        """Model ids double as file names and must be plain tokens.

        Args:
            model_id (str): Invalid id.
        """
        with pytest.raises(ValidationError):
            ModelSpec(model_id=model_id, response="taxon", predictors=["x"], classes=["a", "b"])

    def test_requires_two_classes(self) -> None:
        """A single-class model is rejected."""
        with pytest.raises(ValidationError):
            ModelSpec(model_id="m", response="taxon", predictors=["x"], classes=["carp"])


class TestRunStudy:
    """Tests for `run_study`."""

    def test_trains_and_scores_every_model(
        self, egg_frame: pl.DataFrame, validation_frame: pl.DataFrame, settings: ForestSettings
    ) -> None:
        """Given two specs and a validation table, When running, Then metrics cover every model, dataset and class.

        Args:
            egg_frame (pl.DataFrame): Synthetic egg table.
            validation_frame (pl.DataFrame): Held-out rows with one bad and one unlabelled row.
            settings (ForestSettings): Small seeded settings.
        """
        # Act
        result = run_study(egg_frame, validation_frame, [SPECIES_SPEC, CARP_SPEC], settings=settings)

        # Assert
        with check:
            assert list(result.forests) == ["species", "carp_vs_native"]
        with check:
            assert result.forests["carp_vs_native"].classes == ["invasive_carp", "native"]
        with check:
            assert result.metrics.height == 2 * (3 + 2)
        with check:
            assert set(result.metrics["dataset"].to_list()) == {TRAINING_DATASET, VALIDATION_DATASET}
        with check:
            assert result.importance["species"]["feature"].sort().to_list() == sorted(EGG_PREDICTORS)

    def test_unseen_level_reported_and_excluded(
        self, egg_frame: pl.DataFrame, validation_frame: pl.DataFrame, settings: ForestSettings
    ) -> None:
        """Given a validation row with an unseen stage, When running, Then it is reported and not scored.

        Args:
            egg_frame (pl.DataFrame): Synthetic egg table.
            validation_frame (pl.DataFrame): Held-out rows with one bad and one unlabelled row.
            settings (ForestSettings): Small seeded settings.
        """
        # Act
        result = run_study(egg_frame, validation_frame, [SPECIES_SPEC, CARP_SPEC], settings=settings)

        # Assert
        validation_rows = result.metrics.filter(
            (pl.col("model_id") == "species") & (pl.col("dataset") == VALIDATION_DATASET)
        )
        with check:
            assert result.validation_failures["species"] == [RowFailure(10, "stage", "unseen level", "hatching")]
        with check:
            assert result.validation_failures["carp_vs_native"] == []
        with check:
            assert validation_rows["observed_positives"].sum() == 10
        with check:
            carp_rows = result.metrics.filter(
                (pl.col("model_id") == "carp_vs_native") & (pl.col("dataset") == VALIDATION_DATASET)
            )
            assert carp_rows["observed_positives"].sum() == 11

    def test_well_separated_taxa_validate_accurately(
        self, egg_frame: pl.DataFrame, validation_frame: pl.DataFrame, settings: ForestSettings
    ) -> None:
        """Given well-separated taxa, When validating the carp model, Then carp accuracy is high.

        Args:
            egg_frame (pl.DataFrame): Synthetic egg table.
            validation_frame (pl.DataFrame): Held-out rows.
            settings (ForestSettings): Small seeded settings.
        """
        # Act
        result = run_study(egg_frame, validation_frame, [CARP_SPEC], settings=settings)

        # Assert
        carp = result.metrics.filter(
            (pl.col("dataset") == VALIDATION_DATASET) & (pl.col("target_class") == "invasive_carp")
        )
        assert carp["accuracy"][0] >= 0.9

    def test_resubstitution_scores_every_training_row(
        self, egg_frame: pl.DataFrame, settings: ForestSettings
    ) -> None:
        """Given in_sample="resubstitution", When running without validation, Then all training rows are counted.

        Args:
            egg_frame (pl.DataFrame): Synthetic egg table.
            settings (ForestSettings): Small seeded settings.
        """
        # Act
        result = run_study(egg_frame, None, [SPECIES_SPEC], settings=settings, in_sample="resubstitution")

        # Assert
        with check:
            assert result.metrics["observed_positives"].sum() == egg_frame.height
        with check:
            assert result.validation_failures == {}
        with check:
            assert set(result.metrics["dataset"].to_list()) == {TRAINING_DATASET}

    def test_cache_dir_saves_and_reuses_forests(
        self, egg_frame: pl.DataFrame, settings: ForestSettings, tmp_path: Path
    ) -> None:
        """Given a cache directory, When running twice, Then the second run reuses the saved forests.

        Args:
            egg_frame (pl.DataFrame): Synthetic egg table.
            settings (ForestSettings): Small seeded settings.
            tmp_path (Path): Cache directory.
        """
        # Arrange
        first = run_study(egg_frame, None, [CARP_SPEC], settings=settings, cache_dir=tmp_path)

        # Act
        second = run_study(
            egg_frame, None, [CARP_SPEC], settings=ForestSettings(tree_count=3, seed=9), cache_dir=tmp_path
        )

        # Assert
        with check:
            assert (tmp_path / "carp_vs_native.json").exists()
        with check:
            assert second.forests["carp_vs_native"] == first.forests["carp_vs_native"]
        with check:
            assert second.metrics.equals(first.metrics)

    def test_cache_dir_retrains_when_training_table_grows(
        self, egg_frame: pl.DataFrame, settings: ForestSettings, tmp_path: Path
    ) -> None:
        """Given a forest cached for a smaller table, When the table grows, Then the study retrains on it.

        Args:
            egg_frame (pl.DataFrame): Synthetic egg table.
            settings (ForestSettings): Small seeded settings.
            tmp_path (Path): Cache directory.
        """
        # Arrange
        first = run_study(egg_frame.tail(30), None, [CARP_SPEC], settings=settings, cache_dir=tmp_path)

        # Act
        second = run_study(egg_frame, None, [CARP_SPEC], settings=settings, cache_dir=tmp_path)

        # Assert
        with check:
            assert first.forests["carp_vs_native"].n_training_rows == 30
        with check:
            assert second.forests["carp_vs_native"].n_training_rows == egg_frame.height

    def test_duplicate_model_ids_rejected(self, egg_frame: pl.DataFrame, settings: ForestSettings) -> None:
        """Two specs with the same id are rejected before any training.

        Args:
            egg_frame (pl.DataFrame): Synthetic egg table.
            settings (ForestSettings): Small seeded settings.
        """
        with pytest.raises(ValueError, match="unique"):
            run_study(egg_frame, None, [CARP_SPEC, CARP_SPEC], settings=settings)
