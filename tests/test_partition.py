"""Tests for slab decomposition, halo refresh and global reductions."""

import numpy as np
import pytest

from acoustic_march import ConfigurationError, SlabPartition
from acoustic_march.core.diagnostics import reduce_field


class TestSlabPartition:
    def test_ranges_cover_grid(self):
        """Test slabs tile the x axis without overlap."""
        partition = SlabPartition((10, 4, 3), 3)
        covered = []
        for rank in partition.ranks:
            xr, yr, zr = partition.local_ranges(rank)
            covered.extend(xr)
            assert yr == range(4)
            assert zr == range(3)
        assert covered == list(range(10))

    def test_remainder_goes_to_first_slabs(self):
        partition = SlabPartition((10, 4, 3), 3)
        sizes = [len(partition.local_ranges(r)[0]) for r in partition.ranks]
        assert sizes == [4, 3, 3]

    @pytest.mark.parametrize("num_parts", [0, 11])
    def test_invalid_part_count(self, num_parts):
        with pytest.raises(ConfigurationError):
            SlabPartition((10, 4, 3), num_parts)

    def test_halo_has_ghost_layers(self):
        """Test interior slabs get one ghost layer on each side."""
        field = np.arange(10 * 2 * 2, dtype=float).reshape(10, 2, 2)
        partition = SlabPartition(field.shape, 3)

        first = partition.refresh_halo(field, 0)
        middle = partition.refresh_halo(field, 1)
        last = partition.refresh_halo(field, 2)

        assert (first.offset, first.data.shape[0]) == (0, 5)
        assert (middle.offset, middle.data.shape[0]) == (3, 5)
        assert (last.offset, last.data.shape[0]) == (6, 4)
        np.testing.assert_array_equal(middle.owned(), field[4:7])

    def test_halo_is_a_copy(self):
        field = np.zeros((6, 3, 3))
        view = SlabPartition(field.shape, 2).refresh_halo(field, 0)
        view.data[:] = 1.0
        assert np.all(field == 0.0)

    def test_gather_roundtrip(self):
        field = np.random.default_rng(0).normal(size=(9, 3, 2))
        partition = SlabPartition(field.shape, 4)
        pieces = [partition.refresh_halo(field, r).owned() for r in partition.ranks]
        np.testing.assert_array_equal(partition.gather(pieces), field)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            SlabPartition((6, 3, 3), 2).refresh_halo(np.zeros((5, 3, 3)), 0)


class TestReduceField:
    @pytest.mark.parametrize("num_parts", [1, 2, 5])
    def test_matches_global(self, num_parts):
        """Test per-slab reduction equals whole-array max/min/norm."""
        u = np.random.default_rng(7).normal(size=5 * 4 * 3)
        partition = SlabPartition((5, 4, 3), num_parts)
        u_max, u_min, norm = reduce_field(u, partition)

        assert u_max == pytest.approx(u.max())
        assert u_min == pytest.approx(u.min())
        assert norm == pytest.approx(np.linalg.norm(u))
