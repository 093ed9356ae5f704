"""Bootstrap sampling and per-tree random generators."""

from __future__ import annotations

from typing import NamedTuple

import numpy as np


class BootstrapSample(NamedTuple):
    """Row indices a tree is grown on, and the rows it never saw.

    Attributes:
        indices (np.ndarray): `n_rows` draws from `[0, n_rows)`, with replacement.
        oob_indices (np.ndarray): Ascending indices never drawn (out-of-bag).
    """

    indices: np.ndarray
    oob_indices: np.ndarray


def spawn_tree_generators(seed: int | None, tree_count: int) -> list[np.random.Generator]:
    """Derive one independent generator per tree from a global seed.

    Generator `i` depends only on `seed` and `i`, so the trees of a forest
    are identical whatever order (or worker) they are built in.

    Args:
        seed (int | None): Global seed. `None` draws fresh OS entropy.
        tree_count (int): Number of generators to spawn.

    Returns:
        list[np.random.Generator]: Generators in tree-index order.

    Examples:
        >>> first = spawn_tree_generators(42, 3)
        >>> second = spawn_tree_generators(42, 3)
        >>> int(first[2].integers(1000)) == int(second[2].integers(1000))
        True
    """
    seed_sequence = np.random.SeedSequence(seed)
    return [np.random.default_rng(child) for child in seed_sequence.spawn(tree_count)]


def draw_bootstrap_sample(n_rows: int, rng: np.random.Generator, *, bootstrap: bool = True) -> BootstrapSample:
    """Draw a bootstrap sample of `n_rows` row indices.

    Args:
        n_rows (int): Size of the training dataset.
        rng (np.random.Generator): Generator owned by the tree being grown.
        bootstrap (bool): When `False`, every row is used exactly once and
            the out-of-bag set is empty.

    Returns:
        BootstrapSample: The drawn indices and the out-of-bag complement.

    Raises:
        ValueError: If `n_rows` is not positive.
    """
    if n_rows < 1:
        raise ValueError(f"n_rows must be positive, got {n_rows}")
    if not bootstrap:
        return BootstrapSample(indices=np.arange(n_rows), oob_indices=np.empty(0, dtype=np.intp))
    indices = rng.integers(0, n_rows, size=n_rows)
    in_bag = np.zeros(n_rows, dtype=bool)
    in_bag[indices] = True
    return BootstrapSample(indices=indices.astype(np.intp), oob_indices=np.flatnonzero(~in_bag))
