"""
Unit tests for right-hand side assembly.

Tests verify:
- History weighting 5, -4, 1 scaled by the cell volume
- Source injection at the source node only
- Zero boundary entries before projection
- Mean projection and its idempotence
"""

import numpy as np
import pytest

from acoustic_march import (
    AssemblyFailure,
    ConfigurationError,
    RHSBuilder,
    SlabPartition,
    WavefieldHistory,
    remove_constant_component,
)


@pytest.fixture
def random_history(small_grid):
    rng = np.random.default_rng(42)
    n = small_grid.num_nodes
    return WavefieldHistory(
        current=rng.normal(size=n),
        previous=rng.normal(size=n),
        previous2=rng.normal(size=n),
        previous3=rng.normal(size=n),
    )


class TestRemoveConstantComponent:
    def test_zero_mean(self):
        b = np.array([1.0, 2.0, 3.0, 10.0])
        assert remove_constant_component(b).mean() == pytest.approx(0.0)

    def test_idempotent(self):
        """Test projecting twice equals projecting once."""
        b = np.random.default_rng(1).normal(3.0, 2.0, size=100)
        once = remove_constant_component(b)
        twice = remove_constant_component(once)
        np.testing.assert_allclose(twice, once, atol=1e-14)

    def test_constant_vector_removed(self):
        np.testing.assert_allclose(remove_constant_component(np.full(10, 4.2)), 0.0, atol=1e-12)


class TestRHSAssembly:
    def test_history_weights(self, small_grid, random_history):
        """Test interior entries = vol (5 u1 - 4 u2 + u3) without source or projection."""
        builder = RHSBuilder(small_grid, 0.01, (3, 3, 3), project_mean=False)
        b = builder.build(random_history, (0.0, 0.0, 0.0))

        expected = small_grid.cell_volume * (
            5 * random_history.previous - 4 * random_history.previous2 + random_history.previous3
        )
        interior = ~small_grid.boundary_mask().ravel()
        np.testing.assert_allclose(b[interior], expected[interior])

    def test_boundary_zero(self, small_grid, random_history):
        builder = RHSBuilder(small_grid, 0.01, (3, 3, 3), project_mean=False)
        b = builder.build(random_history, (1.0, 1.0, 1.0))
        assert np.all(b[small_grid.boundary_mask().ravel()] == 0.0)

    def test_current_level_not_used(self, small_grid, random_history):
        """Test only n-1, n-2 and n-3 enter the right-hand side."""
        builder = RHSBuilder(small_grid, 0.01, (3, 3, 3))
        b1 = builder.build(random_history, (0.0, 0.0, 0.0))
        random_history.current = np.zeros(small_grid.num_nodes)
        b2 = builder.build(random_history, (0.0, 0.0, 0.0))
        np.testing.assert_array_equal(b1, b2)

    def test_source_injection(self, small_grid):
        """Test the source adds dt^2 / rho * fx at the source node only."""
        dt = 0.01
        builder = RHSBuilder(small_grid, dt, (2, 4, 3), project_mean=False)
        history = WavefieldHistory.zeros(small_grid.num_nodes)
        b = builder.build(history, (5.0e6, -7.0, 5.0e6))

        p = small_grid.index(2, 4, 3)
        assert b[p] == pytest.approx(dt**2 / 1000.0 * 5.0e6)
        assert np.count_nonzero(b) == 1

    def test_only_fx_enters(self, small_grid):
        builder = RHSBuilder(small_grid, 0.01, (3, 3, 3), project_mean=False)
        history = WavefieldHistory.zeros(small_grid.num_nodes)
        b1 = builder.build(history, (2.0, 0.0, 0.0))
        b2 = builder.build(history, (2.0, 9.0, -9.0))
        np.testing.assert_array_equal(b1, b2)

    def test_projected_mean_zero(self, small_grid, random_history):
        builder = RHSBuilder(small_grid, 0.01, (3, 3, 3))
        b = builder.build(random_history, (1e4, 0.0, 1e4))
        assert b.mean() == pytest.approx(0.0, abs=1e-9)

    def test_source_on_boundary_is_dropped(self, small_grid):
        """Test a boundary source location leaves the vector zero."""
        builder = RHSBuilder(small_grid, 0.01, (0, 3, 3), project_mean=False)
        b = builder.build(WavefieldHistory.zeros(small_grid.num_nodes), (1.0, 0.0, 1.0))
        assert np.all(b == 0.0)

    def test_source_outside_grid(self, small_grid):
        with pytest.raises(ConfigurationError):
            RHSBuilder(small_grid, 0.01, (9, 3, 3))

    def test_history_size_mismatch(self, small_grid):
        builder = RHSBuilder(small_grid, 0.01, (3, 3, 3))
        with pytest.raises(AssemblyFailure):
            builder.build(WavefieldHistory.zeros(10), (0.0, 0.0, 0.0))

    def test_non_finite_rejected(self, small_grid):
        builder = RHSBuilder(small_grid, 0.01, (3, 3, 3))
        history = WavefieldHistory.zeros(small_grid.num_nodes)
        history.previous = np.full(small_grid.num_nodes, np.nan)
        with pytest.raises(AssemblyFailure, match="non-finite"):
            builder.build(history, (0.0, 0.0, 0.0))

    @pytest.mark.parametrize("num_parts", [2, 4])
    def test_partitioned_matches_single(self, small_grid, random_history, num_parts):
        """Test slab-wise assembly equals whole-grid assembly."""
        single = RHSBuilder(small_grid, 0.01, (3, 3, 3))
        split = RHSBuilder(
            small_grid, 0.01, (3, 3, 3), partition=SlabPartition(small_grid.shape, num_parts)
        )
        np.testing.assert_allclose(
            split.build(random_history, (3.0, 0.0, 3.0)),
            single.build(random_history, (3.0, 0.0, 3.0)),
        )
