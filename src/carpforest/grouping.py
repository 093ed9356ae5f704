"""Collapsing fine-grained response labels into coarser groups.

The fish-egg study fits the same predictors at several taxonomic
resolutions, e.g. species level and an "invasive carp vs everything else"
level where bighead, silver and grass carp share one label.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import polars as pl

from carpforest.exceptions import ColumnsNotFoundError, InvalidInputError


def collapse_labels(
    df: pl.DataFrame,
    column: str,
    groups: Mapping[str, Sequence[str]],
    *,
    output_column: str | None = None,
) -> pl.DataFrame:
    """Replace each listed label of `column` by the name of its group.

    Labels not listed in any group are kept as they are. Nulls stay null.

    Args:
        df (pl.DataFrame): Source data.
        column (str): Label column to collapse.
        groups (Mapping[str, Sequence[str]]): Group name to member labels.
        output_column (str | None): Column to write; `None` overwrites `column`.

    Returns:
        pl.DataFrame: A copy of `df` with the collapsed String column.

    Raises:
        ColumnsNotFoundError: If `column` is absent.
        InvalidInputError: If a label is assigned to more than one group.

    Examples:
        >>> df = pl.DataFrame({"taxon": ["silver_carp", "bighead_carp", "freshwater_drum"]})
        >>> collapse_labels(df, "taxon", {"invasive_carp": ["silver_carp", "bighead_carp"]})["taxon"].to_list()
        ['invasive_carp', 'invasive_carp', 'freshwater_drum']
    """
    if column not in df.columns:
        raise ColumnsNotFoundError(missing_columns=[column], available_columns=df.columns)
    mapping = _label_mapping(groups)
    collapsed = pl.col(column).cast(pl.String).replace(mapping)
    return df.with_columns(collapsed.alias(output_column or column))


def _label_mapping(groups: Mapping[str, Sequence[str]]) -> dict[str, str]:
    """Invert `groups` into a label-to-group mapping.

    Args:
        groups (Mapping[str, Sequence[str]]): Group name to member labels.

    Returns:
        dict[str, str]: Member label to group name.

    Raises:
        InvalidInputError: If a label appears in two groups.
    """
    mapping: dict[str, str] = {}
    for group, labels in groups.items():
        for label in labels:
            if label in mapping and mapping[label] != group:
                raise InvalidInputError(f"Label '{label}' is assigned to both '{mapping[label]}' and '{group}'")
            mapping[label] = group
    return mapping
