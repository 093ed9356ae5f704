"""Tests for bootstrap sampling and per-tree generator spawning."""

from __future__ import annotations

import numpy as np
import pytest
from pytest_check import check

from carpforest.forest.sampling import draw_bootstrap_sample, spawn_tree_generators


class TestDrawBootstrapSample:
    """Tests for `draw_bootstrap_sample`."""

    def test_draws_n_indices_in_range(self) -> None:
        """Given N rows, When sampling, Then N indices in [0, N) are drawn."""
        # Act
        sample = draw_bootstrap_sample(50, np.random.default_rng(1))

        # Assert
        with check:
            assert len(sample.indices) == 50
        with check:
            assert sample.indices.min() >= 0
        with check:
            assert sample.indices.max() < 50

    def test_oob_is_sorted_complement_of_drawn_rows(self) -> None:
        """Given a bootstrap sample, When inspecting OOB rows, Then they are exactly the undrawn rows, ascending."""
        # Act
        sample = draw_bootstrap_sample(40, np.random.default_rng(2))

        # Assert
        drawn = set(sample.indices.tolist())
        with check:
            assert set(sample.oob_indices.tolist()) == set(range(40)) - drawn
        with check:
            assert sample.oob_indices.tolist() == sorted(sample.oob_indices.tolist())

    def test_without_bootstrap_uses_every_row_once(self) -> None:
        """Given bootstrap=False, When sampling, Then each row appears once and nothing is out-of-bag."""
        # Act
        sample = draw_bootstrap_sample(5, np.random.default_rng(0), bootstrap=False)

        # Assert
        with check:
            assert sample.indices.tolist() == [0, 1, 2, 3, 4]
        with check:
            assert len(sample.oob_indices) == 0

    def test_rejects_empty_dataset(self) -> None:
        """Given zero rows, When sampling, Then a ValueError is raised."""
        with pytest.raises(ValueError, match="positive"):
            draw_bootstrap_sample(0, np.random.default_rng(0))


class TestSpawnTreeGenerators:
    """Tests for `spawn_tree_generators`."""

    def test_same_seed_gives_same_streams(self) -> None:
        """Given the same seed, When spawning twice, Then every tree stream repeats."""
        # Act
        first = [rng.integers(0, 1_000_000, 5).tolist() for rng in spawn_tree_generators(11, 4)]
        second = [rng.integers(0, 1_000_000, 5).tolist() for rng in spawn_tree_generators(11, 4)]

        # Assert
        assert first == second

    def test_streams_differ_between_trees(self) -> None:
        """Given one seed, When spawning several generators, Then their streams differ."""
        # Act
        streams = [tuple(rng.integers(0, 1_000_000, 5).tolist()) for rng in spawn_tree_generators(11, 4)]

        # Assert
        assert len(set(streams)) == 4

    def test_stream_of_tree_does_not_depend_on_tree_count(self) -> None:
        """Given one seed, When spawning more generators, Then the earlier trees keep their streams."""
        # Act
        few = spawn_tree_generators(5, 2)
        many = spawn_tree_generators(5, 10)

        # Assert
        assert few[1].integers(0, 1_000_000, 3).tolist() == many[1].integers(0, 1_000_000, 3).tolist()
