"""Saving, loading and cache-aware retraining of forests.

Forests are written as pydantic JSON. A saved forest is only reused when it
was trained for the same response, predictors and classes on the same
training table; anything else triggers retraining, and `force_retrain=True`
always retrains.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import polars as pl
from loguru import logger

from carpforest.forest.models import Forest
from carpforest.forest.training import train_forest
from carpforest.logging import STAGE_LEVEL
from carpforest.schema import dataset_fingerprint

__all__ = ["load_forest", "load_or_train_forest", "save_forest"]


def save_forest(forest: Forest, path: str | Path) -> Path:
    """Write a forest to `path` as JSON, creating parent directories.

    Args:
        forest (Forest): The forest to save.
        path (str | Path): Destination file.

    Returns:
        Path: The written path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(forest.model_dump_json(), encoding="utf-8")
    logger.debug("Forest saved", path=str(path), response=forest.response, tree_count=len(forest.trees))
    return path


def load_forest(path: str | Path) -> Forest:
    """Read a forest previously written by `save_forest`.

    Args:
        path (str | Path): File to read.

    Returns:
        Forest: The validated forest.

    Raises:
        FileNotFoundError: If `path` does not exist.
        pydantic.ValidationError: If the file is not a valid forest.
    """
    return Forest.model_validate_json(Path(path).read_text(encoding="utf-8"))


def load_or_train_forest(
    path: str | Path,
    df: pl.DataFrame,
    response: str,
    predictors: Sequence[str],
    *,
    classes: Sequence[str],
    force_retrain: bool = False,
    **train_kwargs: Any,
) -> Forest:
    """Reuse the forest saved at `path` when it fits the request, otherwise train and save one.

    Args:
        path (str | Path): Cache file.
        df (pl.DataFrame): Training data; must be the table a reused forest was trained on.
        response (str): Response column name.
        predictors (Sequence[str]): Predictor column names.
        classes (Sequence[str]): Declared classes.
        force_retrain (bool): Ignore any saved forest.
        **train_kwargs (Any): Forwarded to `train_forest`.

    Returns:
        Forest: The reused or newly trained forest.
    """
    path = Path(path)
    if not force_retrain and path.exists():
        cached = load_forest(path)
        mismatch = _cache_mismatch(cached, df, response=response, predictors=predictors, classes=classes)
        if mismatch is None:
            logger.log(STAGE_LEVEL, "Reusing saved forest", path=str(path), response=response)
            return cached
        logger.log(STAGE_LEVEL, "Saved forest does not match, retraining", path=str(path), reason=mismatch)

    forest = train_forest(df, response, predictors, classes=classes, **train_kwargs)
    save_forest(forest, path)
    return forest


def _cache_mismatch(
    forest: Forest,
    df: pl.DataFrame,
    *,
    response: str,
    predictors: Sequence[str],
    classes: Sequence[str],
) -> str | None:
    """Describe why a saved forest cannot serve a request, or return `None` if it can.

    Args:
        forest (Forest): The saved forest.
        df (pl.DataFrame): Requested training data.
        response (str): Requested response.
        predictors (Sequence[str]): Requested predictors.
        classes (Sequence[str]): Requested classes.

    Returns:
        str | None: The first mismatch found, or `None`.
    """
    if forest.response != response:
        return f"response {forest.response!r} != {response!r}"
    if forest.predictors != list(predictors):
        return f"predictors {forest.predictors} != {list(predictors)}"
    if forest.classes != list(classes):
        return f"classes {forest.classes} != {list(classes)}"
    missing_columns = [column for column in [response, *predictors] if column not in df.columns]
    if missing_columns:
        return f"training table lacks {missing_columns}"
    if forest.n_training_rows != df.height:
        return f"training rows {forest.n_training_rows} != {df.height}"
    if forest.training_fingerprint is None:
        return "saved forest has no training fingerprint"
    if forest.training_fingerprint != dataset_fingerprint(df, [response, *predictors]):
        return "training data changed"
    return None
