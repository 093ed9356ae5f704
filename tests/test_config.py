"""Tests for `ForestSettings`."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError
from pytest_check import check

from carpforest.config import ForestSettings
from carpforest.forest.training import DEFAULT_TREE_COUNT


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run each test from an empty directory with no CARPFOREST_ variables set.

    Args:
        monkeypatch (pytest.MonkeyPatch): Pytest monkeypatch fixture.
        tmp_path (Path): Temporary directory used as the working directory.
    """
    for name in ("TREE_COUNT", "SEED", "N_JOBS", "MAX_DEPTH", "BOOTSTRAP", "MAX_EXHAUSTIVE_LEVELS"):
        monkeypatch.delenv(f"CARPFOREST_{name}", raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults() -> None:
    """Without overrides the settings match the training defaults."""
    # Act
    settings = ForestSettings()

    # Assert
    with check:
        assert settings.tree_count == DEFAULT_TREE_COUNT
    with check:
        assert settings.feature_subset_size is None
    with check:
        assert settings.seed is None
    with check:
        assert settings.n_jobs == 1
    with check:
        assert settings.bootstrap is True


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prefixed environment variables override the defaults.

    Args:
        monkeypatch (pytest.MonkeyPatch): Pytest monkeypatch fixture.
    """
    # Arrange
    monkeypatch.setenv("CARPFOREST_TREE_COUNT", "1000")
    monkeypatch.setenv("CARPFOREST_SEED", "2024")
    monkeypatch.setenv("CARPFOREST_BOOTSTRAP", "false")

    # Act
    settings = ForestSettings()

    # Assert
    with check:
        assert settings.tree_count == 1000
    with check:
        assert settings.seed == 2024
    with check:
        assert settings.bootstrap is False


def test_env_file_is_read(tmp_path: Path) -> None:
    """A `.env` file in the working directory is read; unrelated keys are ignored.

    Args:
        tmp_path (Path): Working directory of the test.
    """
    # Arrange
    (tmp_path / ".env").write_text("CARPFOREST_MAX_DEPTH=6\nUNRELATED_KEY=1\n", encoding="utf-8")

    # Act
    settings = ForestSettings()

    # Assert
    assert settings.max_depth == 6


def test_invalid_value_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    """Out-of-range values fail validation.

    Args:
        monkeypatch (pytest.MonkeyPatch): Pytest monkeypatch fixture.
    """
    monkeypatch.setenv("CARPFOREST_TREE_COUNT", "0")

    with pytest.raises(ValidationError):
        ForestSettings()


@pytest.mark.parametrize(
    ("name", "value"),
    [("MAX_EXHAUSTIVE_LEVELS", "17"), ("MAX_EXHAUSTIVE_LEVELS", "1"), ("MAX_DEPTH", "0")],
)
def test_bounds_match_forest_params(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    """Values outside the `ForestParams` bounds are rejected when the settings load.

    Args:
        monkeypatch (pytest.MonkeyPatch): Pytest monkeypatch fixture.
        name (str): Setting name without the prefix.
        value (str): Out-of-range value.
    """
    monkeypatch.setenv(f"CARPFOREST_{name}", value)

    with pytest.raises(ValidationError, match=name.lower()):
        ForestSettings()


def test_largest_exhaustive_level_count_accepted() -> None:
    """The upper `max_exhaustive_levels` bound of `ForestParams` is itself valid."""
    assert ForestSettings(max_exhaustive_levels=16).max_exhaustive_levels == 16


def test_training_kwargs_cover_every_field() -> None:
    """The keyword arguments name every setting."""
    # Act
    kwargs = ForestSettings(tree_count=3, seed=1).training_kwargs()

    # Assert
    with check:
        assert set(kwargs) == set(ForestSettings.model_fields)
    with check:
        assert (kwargs["tree_count"], kwargs["seed"]) == (3, 1)
